"""
Error taxonomy for the transcription pipeline.

Every failure raised out of a pipeline component is a :class:`PipelineError`
attributed to the stage that triggered it.  The underlying exception is kept
both as ``cause`` and as the chained ``__cause__``.
"""

from __future__ import annotations

import asyncio
from typing import Optional

from .models import Stage


class PipelineError(Exception):
    stage: Stage = Stage.REENCODE

    def __init__(
        self,
        message: str,
        *,
        stage: Optional[Stage] = None,
        cause: Optional[BaseException] = None,
    ) -> None:
        super().__init__(message)
        if stage is not None:
            self.stage = stage
        self.cause = cause
        # Set when a best-effort remote delete also failed after this error.
        self.cleanup_error: Optional[PipelineError] = None

    def describe(self) -> str:
        """Message followed by the cause's message, one per line."""
        message = str(self)
        if self.cause is not None:
            message += f"\n{self.cause}"
        if self.cleanup_error is not None:
            message += f"\n{self.cleanup_error}"
        return message


class SourceNotFound(PipelineError):
    stage = Stage.REENCODE


class ReencodeFailed(PipelineError):
    stage = Stage.REENCODE


class UploadFailed(PipelineError):
    stage = Stage.UPLOAD


class RecognizeFailed(PipelineError):
    stage = Stage.RECOGNIZE


class DeleteFailed(PipelineError):
    stage = Stage.DELETE


class JobCancelled(PipelineError):
    """Raised when the caller's cancel signal is observed."""


def check_cancelled(cancel: Optional[asyncio.Event], stage: Stage) -> None:
    if cancel is not None and cancel.is_set():
        raise JobCancelled(f"Transcription cancelled during {stage.value}.", stage=stage)
