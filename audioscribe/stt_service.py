"""
Google Speech-to-Text service wrapper.

This module encapsulates interaction with the Google Cloud Speech API.  The
:class:`SpeechRecognizer` submits a long-running recognition job for a Cloud
Storage URI, polls it with exponential backoff until it completes or the
caller's deadline passes, and turns the diarised response into a transcript.

Usage::

    recognizer = SpeechRecognizer.from_credentials(credentials)
    text = await recognizer.recognize(
        "gs://my-bucket/1f0c.flac", "fr-FR", speaker_count=2, timeout=600
    )
"""

from __future__ import annotations

import asyncio
import json
import logging
from typing import Any, Optional

from google.cloud import speech_v1p1beta1 as speech
from google.protobuf.json_format import MessageToDict
from tenacity import AsyncRetrying, RetryError, retry_if_result, stop_after_delay, wait_exponential

from . import transcript_formatter
from .errors import PipelineError, RecognizeFailed, check_cancelled
from .models import PipelineJob, Stage

logger = logging.getLogger(__name__)


def cancellable_sleep(cancel: Optional[asyncio.Event]):
    """Backoff sleep for tenacity that returns as soon as ``cancel`` is set."""

    async def sleep(seconds: float) -> None:
        if cancel is None:
            await asyncio.sleep(seconds)
            return
        try:
            await asyncio.wait_for(cancel.wait(), timeout=seconds)
        except asyncio.TimeoutError:
            pass

    return sleep


def build_config(language_code: str, speaker_count: int) -> speech.RecognitionConfig:
    """Recognition settings matching the reencoder's FLAC output."""
    diarization_config = speech.SpeakerDiarizationConfig(
        enable_speaker_diarization=True,
        min_speaker_count=speaker_count,
        max_speaker_count=speaker_count,
    )
    return speech.RecognitionConfig(
        encoding=speech.RecognitionConfig.AudioEncoding.FLAC,
        sample_rate_hertz=PipelineJob.SAMPLE_RATE,
        audio_channel_count=PipelineJob.CHANNELS,
        language_code=language_code,
        enable_automatic_punctuation=True,
        diarization_config=diarization_config,
    )


class SpeechRecognizer:
    """Run diarised long-running recognitions.

    Args:
        client: A ``speech.SpeechClient``.
        poll_interval: First wait between two polls, in seconds.
        max_poll_interval: Upper bound of the exponential backoff.
    """

    def __init__(self, client: Any, *, poll_interval: float = 1.0, max_poll_interval: float = 30.0) -> None:
        self.client = client
        self.poll_interval = poll_interval
        self.max_poll_interval = max_poll_interval

    @classmethod
    def from_credentials(cls, credentials, **kwargs) -> "SpeechRecognizer":
        return cls(speech.SpeechClient(credentials=credentials), **kwargs)

    async def recognize(
        self,
        uri: str,
        language_code: str,
        speaker_count: int,
        *,
        timeout: float,
        cancel: Optional[asyncio.Event] = None,
    ) -> str:
        """Transcribe the audio object at ``uri``.

        Raises:
            RecognizeFailed: On authorisation errors, when ``timeout``
                seconds pass without completion, or on a malformed response.
        """
        config = build_config(language_code, speaker_count)
        audio = speech.RecognitionAudio(uri=uri)
        logger.info(json.dumps({"event": "start_recognition", "gcs_uri": uri}))
        try:
            operation = await asyncio.to_thread(
                self.client.long_running_recognize, config=config, audio=audio
            )
            await self._wait(operation, timeout, cancel)
            response = await asyncio.to_thread(operation.result)
            data = MessageToDict(response._pb)
            words = transcript_formatter.last_result_words(data)
            text = transcript_formatter.format_transcript(words, speaker_count)
        except PipelineError:
            raise
        except RetryError as exc:
            raise RecognizeFailed(
                f"Transcription did not complete within {timeout:g} seconds.", cause=exc
            ) from exc
        except Exception as exc:
            raise RecognizeFailed("An error occurred during transcription.", cause=exc) from exc
        logger.info(json.dumps({"event": "recognition_complete", "gcs_uri": uri, "words": len(words)}))
        return text

    async def _wait(self, operation: Any, timeout: float, cancel: Optional[asyncio.Event]) -> None:
        async for attempt in AsyncRetrying(
            retry=retry_if_result(lambda done: not done),
            wait=wait_exponential(multiplier=self.poll_interval, max=self.max_poll_interval),
            stop=stop_after_delay(timeout),
            sleep=cancellable_sleep(cancel),
            reraise=True,
        ):
            with attempt:
                check_cancelled(cancel, Stage.RECOGNIZE)
                done = await asyncio.to_thread(operation.done)
            if not attempt.retry_state.outcome.failed:
                attempt.retry_state.set_result(done)
