"""
Job state and notification records shared by the pipeline components.

A :class:`PipelineJob` holds the inputs of one transcription request and the
state the pipeline derives from it while running.  Observers never receive
the job itself; they receive :class:`StatusEvent` records describing each
change.
"""

from __future__ import annotations

import enum
from dataclasses import dataclass, field
from typing import Dict, List, Optional


class Stage(str, enum.Enum):
    REENCODE = "reencode"
    UPLOAD = "upload"
    RECOGNIZE = "recognize"
    DELETE = "delete"


class Status(str, enum.Enum):
    NOT_STARTED = "not_started"
    PENDING = "pending"
    DONE = "done"
    ERROR = "error"


# Stages reporting a percentage while pending.
PROGRESS_STAGES = (Stage.REENCODE, Stage.UPLOAD)


@dataclass
class PipelineJob:
    """One transcription request and its running state.

    Args:
        source_path: Local audio file to transcribe.
        speaker_count: Expected number of speakers.  Used both as the
            diarisation hint and to decide whether lines get speaker labels.
        bucket: Cloud Storage bucket receiving the reencoded file.
        language_code: BCP-47 language tag of the recording.
        recognize_timeout: Seconds to wait for the recognition job before
            giving up.
    """

    CHANNELS = 1
    SAMPLE_RATE = 48000

    source_path: str
    speaker_count: int
    bucket: str
    language_code: str = "fr-FR"
    recognize_timeout: float = 3600.0

    reencoded_path: Optional[str] = field(default=None, init=False)
    remote_uri: Optional[str] = field(default=None, init=False)
    transcript: Optional[str] = field(default=None, init=False)
    statuses: Dict[Stage, Status] = field(default_factory=dict, init=False)
    progress: Dict[Stage, float] = field(default_factory=dict, init=False)

    def __post_init__(self) -> None:
        if self.speaker_count < 1:
            raise ValueError(f"speaker_count must be positive, got {self.speaker_count}")
        self.reset()

    def reset(self) -> None:
        """Put every stage back to NOT_STARTED and forget derived state."""
        self.reencoded_path = None
        self.remote_uri = None
        self.transcript = None
        self.statuses = {stage: Status.NOT_STARTED for stage in Stage}
        self.progress = {stage: 0.0 for stage in PROGRESS_STAGES}


@dataclass(frozen=True)
class StatusEvent:
    """A stage status or progress change."""

    stage: Stage
    status: Status
    progress: Optional[float] = None


@dataclass(frozen=True)
class ElapsedEvent:
    """Wall-clock time since the run started, published by the ticker."""

    seconds: float
    formatted: str


@dataclass
class TranscriptLine:
    speaker_tag: int
    words: List[str] = field(default_factory=list)
    labelled: bool = False

    def render(self) -> str:
        text = " ".join(self.words)
        if self.labelled:
            return f"Speaker {self.speaker_tag}: {text}"
        return text
