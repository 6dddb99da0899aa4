"""
Command line entrypoint.

Transcribe one recording and write the transcript to a file or stdout::

    audioscribe interview.m4a --speakers 2 --bucket my-staging-bucket -o interview.txt

Options default to the environment variables documented in
:mod:`audioscribe.config`.
"""

from __future__ import annotations

import asyncio
import logging
import signal
from dataclasses import replace
from pathlib import Path
from typing import Optional

import google.auth.exceptions
import typer

from .audio_processor import is_supported_audio
from .config import Settings
from .errors import PipelineError
from .models import PipelineJob
from .notifications import ElapsedTicker, LoggingObserver, StatusChannel
from .tasks import AudioPipeline

logger = logging.getLogger(__name__)

app = typer.Typer(help="Speaker-attributed transcription of audio recordings with Google Speech-to-Text.")


async def _transcribe(pipeline: AudioPipeline, job: PipelineJob) -> str:
    cancel = asyncio.Event()
    loop = asyncio.get_running_loop()
    try:
        loop.add_signal_handler(signal.SIGINT, cancel.set)
    except (NotImplementedError, RuntimeError):
        # Windows event loops: Ctrl-C cancels the task instead.
        pass
    try:
        async with ElapsedTicker(pipeline.channel):
            return await pipeline.run(job, cancel)
    finally:
        try:
            loop.remove_signal_handler(signal.SIGINT)
        except (NotImplementedError, RuntimeError):
            pass


@app.command()
def transcribe(
    source: Path = typer.Argument(..., help="Audio file to transcribe."),
    speakers: Optional[int] = typer.Option(None, "--speakers", "-s", min=1, help="Number of speakers."),
    bucket: Optional[str] = typer.Option(None, "--bucket", "-b", help="Cloud Storage staging bucket."),
    language: Optional[str] = typer.Option(None, "--language", "-l", help="BCP-47 language code."),
    credentials: Optional[Path] = typer.Option(None, "--credentials", help="Service account key file."),
    ffmpeg: Optional[Path] = typer.Option(None, "--ffmpeg", help="ffmpeg executable."),
    ffprobe: Optional[Path] = typer.Option(None, "--ffprobe", help="ffprobe executable."),
    timeout: Optional[float] = typer.Option(None, "--timeout", help="Recognition deadline in seconds."),
    output: Optional[Path] = typer.Option(None, "--output", "-o", help="Write the transcript to this file."),
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Log elapsed time as well."),
) -> None:
    logging.basicConfig(level=logging.DEBUG if verbose else logging.INFO)
    settings = Settings.from_env()
    settings = replace(
        settings,
        bucket=bucket or settings.bucket,
        language_code=language or settings.language_code,
        speaker_count=speakers or settings.speaker_count,
        credentials_path=str(credentials) if credentials else settings.credentials_path,
        ffmpeg_path=str(ffmpeg) if ffmpeg else settings.ffmpeg_path,
        ffprobe_path=str(ffprobe) if ffprobe else settings.ffprobe_path,
        recognize_timeout=timeout or settings.recognize_timeout,
    )
    if not settings.bucket:
        typer.echo("A bucket is required (--bucket or AUDIOSCRIBE_BUCKET).", err=True)
        raise typer.Exit(code=2)
    if not is_supported_audio(str(source)):
        logger.warning("Unusual audio extension for %s; trying anyway", source)

    channel = StatusChannel()
    channel.subscribe(LoggingObserver())
    job = PipelineJob(
        source_path=str(source),
        speaker_count=settings.speaker_count,
        bucket=settings.bucket,
        language_code=settings.language_code,
        recognize_timeout=settings.recognize_timeout,
    )
    try:
        pipeline = AudioPipeline.from_settings(settings, channel)
    except (OSError, ValueError, google.auth.exceptions.GoogleAuthError) as exc:
        typer.echo(f"Could not load Google credentials: {exc}", err=True)
        raise typer.Exit(code=1)
    try:
        transcript = asyncio.run(_transcribe(pipeline, job))
    except PipelineError as exc:
        typer.echo(f"Error during {exc.stage.value}: {exc.describe()}", err=True)
        raise typer.Exit(code=1)

    if output is not None:
        output.write_text(transcript, encoding="utf-8")
        logger.info("Saved transcript to %s", output)
    else:
        typer.echo(transcript)


if __name__ == "__main__":
    app()
