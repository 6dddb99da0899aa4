"""
Orchestration layer for the transcription pipeline.

:class:`AudioPipeline` drives one :class:`~audioscribe.models.PipelineJob`
through its stages:

* **Reencode** the source to mono 48 kHz FLAC in a temporary file.
* **Upload** the reencoded file to the Cloud Storage bucket.
* **Recognize** the uploaded audio with diarised Speech-to-Text.
* **Delete** the uploaded object again.

A stage only runs once its predecessor is done.  Cleanup is not gated: the
remote object is deleted whenever the upload produced one, and the local
temporary file is removed at the end of every run, including failed and
cancelled ones.
"""

from __future__ import annotations

import asyncio
import contextlib
import json
import logging
from typing import Iterator, Optional

from .audio_processor import Reencoder, cleanup_temp_file
from .config import Settings
from .credentials import load_credentials
from .errors import DeleteFailed, PipelineError, check_cancelled
from .models import PipelineJob, Stage, Status, StatusEvent
from .notifications import StatusChannel
from .storage_client import ObjectStoreClient
from .stt_service import SpeechRecognizer

logger = logging.getLogger(__name__)


class AudioPipeline:
    def __init__(
        self,
        reencoder: Reencoder,
        store: ObjectStoreClient,
        recognizer: SpeechRecognizer,
        channel: Optional[StatusChannel] = None,
    ) -> None:
        self.reencoder = reencoder
        self.store = store
        self.recognizer = recognizer
        self.channel = channel or StatusChannel()

    @classmethod
    def from_settings(cls, settings: Settings, channel: Optional[StatusChannel] = None) -> "AudioPipeline":
        """Build the pipeline with real Google clients."""
        credentials, project = load_credentials(settings.credentials_path)
        return cls(
            Reencoder(settings.ffmpeg_path, ffprobe_path=settings.ffprobe_path),
            ObjectStoreClient.from_credentials(
                credentials, project, chunk_multiplier=settings.chunk_multiplier
            ),
            SpeechRecognizer.from_credentials(credentials),
            channel,
        )

    def _set_status(self, job: PipelineJob, stage: Stage, status: Status) -> None:
        job.statuses[stage] = status
        progress = job.progress.get(stage) if status is Status.PENDING else None
        self.channel.publish(StatusEvent(stage, status, progress))

    def _progress_callback(self, job: PipelineJob, stage: Stage):
        def report(percent: float) -> None:
            job.progress[stage] = percent
            self.channel.publish(StatusEvent(stage, Status.PENDING, percent))

        return report

    @contextlib.contextmanager
    def _stage(self, job: PipelineJob, stage: Stage) -> Iterator[None]:
        self._set_status(job, stage, Status.PENDING)
        logger.info(json.dumps({"event": f"{stage.value}_started", "source": job.source_path}))
        try:
            yield
        except BaseException:
            self._set_status(job, stage, Status.ERROR)
            logger.info(json.dumps({"event": f"{stage.value}_failed", "source": job.source_path}))
            raise
        self._set_status(job, stage, Status.DONE)
        logger.info(json.dumps({"event": f"{stage.value}_done", "source": job.source_path}))

    async def run(self, job: PipelineJob, cancel: Optional[asyncio.Event] = None) -> str:
        """Transcribe ``job.source_path`` and return the transcript.

        Args:
            job: The job to run.  Its state is reset first.
            cancel: Set this event to abort the run at the next checkpoint.

        Raises:
            PipelineError: The first stage failure.  When the remote delete
                also failed afterwards, that failure is attached as
                ``cleanup_error``.  A delete failure after a successful
                recognition is raised on its own as ``DeleteFailed``.
        """
        job.reset()
        for stage in Stage:
            self._set_status(job, stage, Status.NOT_STARTED)
        failure: Optional[PipelineError] = None
        delete_failure: Optional[DeleteFailed] = None
        try:
            try:
                await self._run_stages(job, cancel)
            except PipelineError as exc:
                failure = exc
            finally:
                if job.remote_uri is not None:
                    delete_failure = await self._delete_remote(job)
        finally:
            self._discard_reencoded(job)

        if failure is not None:
            if delete_failure is not None:
                failure.cleanup_error = delete_failure
                logger.warning(
                    "Remote delete of %s also failed after %s: %s",
                    job.remote_uri, failure.stage.value, delete_failure.describe(),
                )
            raise failure
        if delete_failure is not None:
            raise delete_failure
        return job.transcript

    async def _run_stages(self, job: PipelineJob, cancel: Optional[asyncio.Event]) -> None:
        check_cancelled(cancel, Stage.REENCODE)
        with self._stage(job, Stage.REENCODE):
            job.reencoded_path = await self.reencoder.convert(
                job.source_path,
                on_progress=self._progress_callback(job, Stage.REENCODE),
                cancel=cancel,
            )

        check_cancelled(cancel, Stage.UPLOAD)
        with self._stage(job, Stage.UPLOAD):
            job.remote_uri = await self.store.upload(
                job.reencoded_path,
                job.bucket,
                on_progress=self._progress_callback(job, Stage.UPLOAD),
                cancel=cancel,
            )

        check_cancelled(cancel, Stage.RECOGNIZE)
        with self._stage(job, Stage.RECOGNIZE):
            job.transcript = await self.recognizer.recognize(
                job.remote_uri,
                job.language_code,
                job.speaker_count,
                timeout=job.recognize_timeout,
                cancel=cancel,
            )

    async def _delete_remote(self, job: PipelineJob) -> Optional[DeleteFailed]:
        try:
            with self._stage(job, Stage.DELETE):
                await self.store.delete(job.remote_uri)
        except DeleteFailed as exc:
            return exc
        return None

    def _discard_reencoded(self, job: PipelineJob) -> None:
        if job.reencoded_path:
            cleanup_temp_file(job.reencoded_path)
            job.reencoded_path = None
