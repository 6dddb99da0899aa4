"""
Runtime settings.

Settings come from environment variables so the same code runs from a shell,
a container or a scheduled job:

* ``AUDIOSCRIBE_BUCKET`` – Cloud Storage bucket used as the staging area.
* ``AUDIOSCRIBE_LANGUAGE`` – BCP-47 language of the recordings (``fr-FR``).
* ``AUDIOSCRIBE_SPEAKERS`` – Default speaker count (``1``).
* ``GOOGLE_APPLICATION_CREDENTIALS`` – Service account key file.  When unset,
  application default credentials are used.
* ``FFMPEG_PATH`` – ffmpeg executable.  Defaults to the one pydub detects.
* ``AUDIOSCRIBE_RECOGNIZE_TIMEOUT`` – Seconds to wait for recognition.
* ``AUDIOSCRIBE_CHUNK_MULTIPLIER`` – Upload chunk size as a multiple of the
  256 KiB resumable upload minimum.
* ``FFPROBE_PATH`` – ffprobe executable.  Defaults to the one next to ffmpeg.
"""

from __future__ import annotations

import os
from dataclasses import dataclass
from typing import Mapping, Optional

DEFAULT_LANGUAGE = "fr-FR"
DEFAULT_SPEAKERS = 1
DEFAULT_RECOGNIZE_TIMEOUT = 3600.0
DEFAULT_CHUNK_MULTIPLIER = 4


@dataclass(frozen=True)
class Settings:
    bucket: Optional[str] = None
    language_code: str = DEFAULT_LANGUAGE
    speaker_count: int = DEFAULT_SPEAKERS
    credentials_path: Optional[str] = None
    ffmpeg_path: Optional[str] = None
    recognize_timeout: float = DEFAULT_RECOGNIZE_TIMEOUT
    chunk_multiplier: int = DEFAULT_CHUNK_MULTIPLIER
    ffprobe_path: Optional[str] = None

    @classmethod
    def from_env(cls, environ: Optional[Mapping[str, str]] = None) -> "Settings":
        env = os.environ if environ is None else environ
        return cls(
            bucket=env.get("AUDIOSCRIBE_BUCKET") or None,
            language_code=env.get("AUDIOSCRIBE_LANGUAGE", DEFAULT_LANGUAGE),
            speaker_count=int(env.get("AUDIOSCRIBE_SPEAKERS", DEFAULT_SPEAKERS)),
            credentials_path=env.get("GOOGLE_APPLICATION_CREDENTIALS") or None,
            ffmpeg_path=env.get("FFMPEG_PATH") or None,
            recognize_timeout=float(
                env.get("AUDIOSCRIBE_RECOGNIZE_TIMEOUT", DEFAULT_RECOGNIZE_TIMEOUT)
            ),
            chunk_multiplier=int(
                env.get("AUDIOSCRIBE_CHUNK_MULTIPLIER", DEFAULT_CHUNK_MULTIPLIER)
            ),
            ffprobe_path=env.get("FFPROBE_PATH") or None,
        )
