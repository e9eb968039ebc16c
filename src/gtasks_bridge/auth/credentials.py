"""Credential ownership for both providers.

The Asana credential is a static Personal Access Token. The Google credential
is an OAuth token with a refresh token, cached on disk so the interactive
consent step only happens once. Refreshing it is a critical section: one
refresh at a time, and the new token is written to disk before anyone uses it.
"""

import json
import os
import tempfile
import threading
from dataclasses import dataclass
from pathlib import Path

import google.auth.credentials
import structlog
from google.auth.exceptions import RefreshError, TransportError
from google.auth.transport.requests import Request
from google.oauth2.credentials import Credentials
from google_auth_oauthlib.flow import InstalledAppFlow
from tenacity import retry, retry_if_exception_type, stop_after_attempt, wait_exponential

from gtasks_bridge.config import Settings
from gtasks_bridge.errors import CredentialExpired, ProviderUnavailable

logger = structlog.get_logger(__name__)

SCOPES = ["https://www.googleapis.com/auth/tasks"]

PROVIDER = "google"


@retry(
    retry=retry_if_exception_type(TransportError),
    stop=stop_after_attempt(3),
    wait=wait_exponential(multiplier=1, min=1, max=10),
    reraise=True,
)
def _refresh_with_retry(credentials: Credentials) -> None:
    credentials.refresh(Request())


def write_token_file(token_path: Path, credentials: Credentials) -> None:
    """Atomically replace the token cache with ``credentials``."""
    token_path.parent.mkdir(parents=True, exist_ok=True)
    fd, tmp_name = tempfile.mkstemp(dir=token_path.parent, prefix=f".{token_path.name}.", suffix=".tmp")
    try:
        with os.fdopen(fd, "w") as f:
            f.write(credentials.to_json())
            f.flush()
            os.fsync(f.fileno())
        os.chmod(tmp_name, 0o600)
        os.replace(tmp_name, token_path)
    except BaseException:
        Path(tmp_name).unlink(missing_ok=True)
        raise


class GoogleCredentialManager:
    """Single owner of the Google OAuth token.

    ``get_valid_token`` and ``get_credentials`` may be called from several
    worker threads; refreshes are serialized behind one lock.
    """

    def __init__(self, token_path: Path | str, scopes: list[str] | None = None) -> None:
        self.token_path = Path(token_path)
        self.scopes = scopes or SCOPES
        self._lock = threading.Lock()
        self._credentials: Credentials | None = None
        self.refresh_count = 0

    def _load(self) -> Credentials:
        if not self.token_path.exists():
            raise CredentialExpired(
                PROVIDER,
                f"No Google token cache at {self.token_path}; run `gtasks-bridge authorize`",
            )
        try:
            credentials = Credentials.from_authorized_user_file(str(self.token_path), self.scopes)
        except (ValueError, OSError, json.JSONDecodeError) as e:
            raise CredentialExpired(PROVIDER, f"Unreadable Google token cache: {e}") from e

        logger.info("google_token_loaded", token_path=str(self.token_path))
        return credentials

    def _refresh_locked(self, credentials: Credentials) -> None:
        if not credentials.refresh_token:
            raise CredentialExpired(
                PROVIDER, "Google token has no refresh token; run `gtasks-bridge authorize`"
            )

        logger.info("google_token_refreshing", expired=credentials.expired)
        try:
            _refresh_with_retry(credentials)
        except RefreshError as e:
            logger.error("google_token_refresh_failed", error=str(e))
            raise CredentialExpired(PROVIDER, f"Google token refresh was refused: {e}") from e
        except TransportError as e:
            logger.warning("google_token_refresh_unreachable", error=str(e))
            raise ProviderUnavailable(PROVIDER, f"Could not reach Google to refresh token: {e}") from e

        try:
            write_token_file(self.token_path, credentials)
        except OSError as e:
            logger.error("google_token_persist_failed", token_path=str(self.token_path), error=str(e))
            raise CredentialExpired(
                PROVIDER, f"Refreshed token could not be saved to {self.token_path}: {e}"
            ) from e

        self.refresh_count += 1
        logger.info("google_token_refreshed", token_path=str(self.token_path), expiry=str(credentials.expiry))

    def get_credentials(self) -> Credentials:
        """Return credentials holding a valid access token, refreshing if needed.

        Raises:
            CredentialExpired: If there is no usable token or refresh was refused
            ProviderUnavailable: If Google could not be reached to refresh
        """
        with self._lock:
            if self._credentials is None:
                self._credentials = self._load()
            if not self._credentials.valid:
                self._refresh_locked(self._credentials)
            return self._credentials

    def get_valid_token(self) -> str:
        """Return a valid access token string."""
        return self.get_credentials().token

    def force_refresh(self) -> Credentials:
        """Refresh even if the token looks valid (the provider rejected it)."""
        with self._lock:
            if self._credentials is None:
                self._credentials = self._load()
            self._refresh_locked(self._credentials)
            return self._credentials

    def http_credentials(self) -> "ManagedCredentials":
        """Credentials for an HTTP transport that never refresh on their own."""
        return ManagedCredentials(self)

    def authorize(self, client_secret_path: Path | str, port: int = 0) -> Credentials:
        """Run the one-time browser consent flow and cache the token.

        Args:
            client_secret_path: OAuth client secret JSON from Google Cloud
            port: Local redirect port (0 picks a free one)
        """
        flow = InstalledAppFlow.from_client_secrets_file(str(client_secret_path), self.scopes)
        credentials = flow.run_local_server(port=port)
        with self._lock:
            write_token_file(self.token_path, credentials)
            self._credentials = credentials
        logger.info("google_token_authorized", token_path=str(self.token_path))
        return credentials


class ManagedCredentials(google.auth.credentials.Credentials):
    """Read-only view of the manager's token for ``AuthorizedHttp``.

    Every request takes the current token from the manager, so refreshes stay
    behind its lock and reach the token cache before use.
    """

    def __init__(self, manager: GoogleCredentialManager) -> None:
        super().__init__()
        self._manager = manager

    def refresh(self, request) -> None:
        credentials = self._manager.get_credentials()
        self.token = credentials.token
        self.expiry = credentials.expiry

    def before_request(self, request, method, url, headers) -> None:
        self.refresh(request)
        self.apply(headers)


@dataclass
class CredentialStore:
    """Credentials for both providers, built once at startup."""

    asana_access_token: str
    google: GoogleCredentialManager

    @classmethod
    def from_settings(cls, settings: Settings) -> "CredentialStore":
        return cls(
            asana_access_token=settings.asana_access_token,
            google=GoogleCredentialManager(settings.google_token_path),
        )
