"""
Audio reencoding utilities.

This module converts incoming recordings to the format the speech recogniser
is configured for: mono, 48 kHz, 16-bit FLAC.  The source is inspected with
``ffprobe`` to find its first audio stream and duration, then ``ffmpeg``
performs the conversion while reporting its position on a progress pipe so
callers can display a percentage.
"""

from __future__ import annotations

import asyncio
import json
import logging
import os
import tempfile
import uuid
from pathlib import Path
from typing import Any, Callable, Dict, Optional

from pydub import AudioSegment
from pydub.utils import get_prober_name

from .errors import PipelineError, ReencodeFailed, SourceNotFound, check_cancelled
from .models import PipelineJob, Stage

logger = logging.getLogger(__name__)


SUPPORTED_EXTENSIONS = {".mp3", ".m4a", ".flac", ".wav", ".mp4", ".ogg", ".wma", ".aac"}

ProgressCallback = Callable[[float], None]


def is_supported_audio(path: str) -> bool:
    """Check whether the file at ``path`` has a supported audio extension."""
    return Path(path).suffix.lower() in SUPPORTED_EXTENSIONS


def cleanup_temp_file(path: Optional[str]) -> None:
    """Remove a temporary file if it exists.

    Args:
        path: Path to the temporary file.  Nothing happens if ``path`` is
            ``None`` or the file does not exist.
    """
    if path and os.path.exists(path):
        try:
            os.remove(path)
        except OSError:
            logger.warning("Could not remove temporary file %s", path, exc_info=True)


def first_audio_stream(info: Dict[str, Any]) -> Dict[str, Any]:
    """Return the first audio stream of an ffprobe description."""
    for stream in info.get("streams", []):
        if stream.get("codec_type") == "audio":
            return stream
    raise ValueError("The file does not contain any audio stream.")


def _duration_seconds(info: Dict[str, Any], stream: Dict[str, Any]) -> float:
    for value in (info.get("format", {}).get("duration"), stream.get("duration")):
        try:
            duration = float(value)
        except (TypeError, ValueError):
            continue
        if duration > 0:
            return duration
    return 0.0


def parse_progress_line(line: str) -> Optional[float]:
    """Return the elapsed output time in seconds from an ffmpeg progress line.

    ffmpeg writes ``key=value`` pairs on its progress pipe.  Both
    ``out_time_us`` and ``out_time_ms`` carry microseconds.
    """
    key, _, value = line.strip().partition("=")
    if key not in ("out_time_us", "out_time_ms"):
        return None
    try:
        return int(value) / 1_000_000
    except ValueError:
        return None


def progress_percent(elapsed: float, total: float) -> float:
    if total <= 0:
        return 0.0
    return max(0.0, min(100.0, elapsed / total * 100))


def sibling_ffprobe(ffmpeg_path: str) -> Optional[str]:
    """Return the ffprobe executable installed next to ``ffmpeg_path``.

    ``None`` when ``ffmpeg_path`` is a bare command name resolved on the
    ``PATH``.
    """
    directory, name = os.path.split(ffmpeg_path)
    if not directory:
        return None
    _, ext = os.path.splitext(name)
    return os.path.join(directory, "ffprobe" + ext)


async def mediainfo(ffprobe_path: str, path: str) -> Dict[str, Any]:
    """Describe the streams and format of ``path`` with ffprobe."""
    proc = await asyncio.create_subprocess_exec(
        ffprobe_path,
        "-v", "error",
        "-of", "json",
        "-show_format",
        "-show_streams",
        path,
        stdout=asyncio.subprocess.PIPE,
        stderr=asyncio.subprocess.PIPE,
    )
    stdout, stderr = await proc.communicate()
    if proc.returncode != 0:
        err = stderr.decode(errors="ignore").strip()
        raise RuntimeError(f"ffprobe exited with status {proc.returncode}: {err[:500]}")
    return json.loads(stdout.decode("utf-8"))


class Reencoder:
    """Convert audio files to mono 48 kHz 16-bit FLAC with ffmpeg.

    Args:
        ffmpeg_path: ffmpeg executable.  Defaults to the converter pydub
            detected on the ``PATH``.
        ffprobe_path: ffprobe executable.  Defaults to the one installed
            next to ``ffmpeg_path``, then to the one pydub detects.
        temp_dir: Directory receiving the reencoded files.
    """

    def __init__(
        self,
        ffmpeg_path: Optional[str] = None,
        temp_dir: Optional[str] = None,
        ffprobe_path: Optional[str] = None,
    ) -> None:
        self.ffmpeg_path = ffmpeg_path or AudioSegment.converter
        self.ffprobe_path = ffprobe_path or sibling_ffprobe(self.ffmpeg_path) or get_prober_name()
        self.temp_dir = temp_dir or tempfile.gettempdir()

    def _command(self, source_path: str, stream_index: int, output_path: str) -> list:
        return [
            self.ffmpeg_path,
            "-hide_banner",
            "-nostats",
            "-loglevel", "error",
            "-y",
            "-i", source_path,
            "-map", f"0:{stream_index}",
            "-vn",
            "-c:a", "flac",
            "-ar", str(PipelineJob.SAMPLE_RATE),
            "-ac", str(PipelineJob.CHANNELS),
            "-sample_fmt", "s16",
            "-progress", "pipe:1",
            output_path,
        ]

    async def convert(
        self,
        source_path: str,
        *,
        on_progress: Optional[ProgressCallback] = None,
        cancel: Optional[asyncio.Event] = None,
    ) -> str:
        """Reencode ``source_path`` and return the path of the new file.

        The output lives in the temporary directory under a random name and
        should be removed by the caller with :func:`cleanup_temp_file`.  On
        failure the partial output is removed here.

        Raises:
            SourceNotFound: If ``source_path`` does not exist.
            ReencodeFailed: If the source has no audio stream or ffmpeg fails.
        """
        if not os.path.isfile(source_path):
            raise SourceNotFound(f"The file does not exist: {source_path}")
        output_path = os.path.join(self.temp_dir, f"{uuid.uuid4()}.flac")
        try:
            await self._convert(source_path, output_path, on_progress, cancel)
        except asyncio.CancelledError:
            cleanup_temp_file(output_path)
            raise
        except PipelineError:
            cleanup_temp_file(output_path)
            raise
        except Exception as exc:
            cleanup_temp_file(output_path)
            raise ReencodeFailed(
                "An error occurred while reencoding the audio file.", cause=exc
            ) from exc
        return output_path

    async def _convert(
        self,
        source_path: str,
        output_path: str,
        on_progress: Optional[ProgressCallback],
        cancel: Optional[asyncio.Event],
    ) -> None:
        info = await mediainfo(self.ffprobe_path, source_path)
        stream = first_audio_stream(info)
        total = _duration_seconds(info, stream)
        logger.info("Reencoding %s (%.1fs) to %s", source_path, total, output_path)

        proc = await asyncio.create_subprocess_exec(
            *self._command(source_path, stream.get("index", 0), output_path),
            stdout=asyncio.subprocess.PIPE,
            stderr=asyncio.subprocess.PIPE,
        )
        stderr_task = asyncio.ensure_future(proc.stderr.read())
        try:
            async for raw in proc.stdout:
                check_cancelled(cancel, Stage.REENCODE)
                elapsed = parse_progress_line(raw.decode(errors="ignore"))
                if elapsed is not None and on_progress is not None:
                    on_progress(progress_percent(elapsed, total))
            stderr = await stderr_task
            returncode = await proc.wait()
        finally:
            if proc.returncode is None:
                proc.kill()
                await proc.wait()
            if not stderr_task.done():
                stderr_task.cancel()
        if returncode != 0:
            err = stderr.decode(errors="ignore").strip()
            raise RuntimeError(f"ffmpeg exited with status {returncode}: {err[:500]}")
