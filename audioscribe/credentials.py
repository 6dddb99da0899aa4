"""
Google credential loading.

Credentials are resolved once per process and key file, then handed to the
storage and speech client constructors.  Nothing is written to the process
environment.
"""

from __future__ import annotations

import functools
import logging
from typing import Optional, Tuple

import google.auth
from google.auth.credentials import Credentials
from google.oauth2 import service_account

logger = logging.getLogger(__name__)

SCOPES = ("https://www.googleapis.com/auth/cloud-platform",)


@functools.lru_cache(maxsize=None)
def load_credentials(credentials_path: Optional[str] = None) -> Tuple[Credentials, Optional[str]]:
    """Return ``(credentials, project_id)``.

    Args:
        credentials_path: Service account JSON key.  When ``None`` the
            application default credentials are used.
    """
    if credentials_path:
        logger.info("Loading service account credentials from %s", credentials_path)
        creds = service_account.Credentials.from_service_account_file(
            credentials_path, scopes=list(SCOPES)
        )
        return creds, creds.project_id
    logger.info("Using application default credentials")
    creds, project = google.auth.default(scopes=list(SCOPES))
    return creds, project
