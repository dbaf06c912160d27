"""Bearer-token providers for the Gmail client.

The sync engine never manages OAuth itself: before every request it asks a
``TokenProvider`` for a currently valid access token. The Google
implementation reuses the authorized-user token file written by the
interactive login flow and refreshes it when it expires.
"""

from __future__ import annotations

import asyncio
from pathlib import Path
from typing import Any, Protocol

import structlog

from gmail_sync.exceptions import AuthenticationError, ConfigurationError

logger = structlog.get_logger()


class TokenProvider(Protocol):
    """Anything able to hand out a valid bearer token."""

    async def get_valid_access_token(self) -> str: ...


class StaticTokenProvider:
    """Always returns the same token. Useful for scripting and tests."""

    def __init__(self, token: str) -> None:
        self._token = token

    async def get_valid_access_token(self) -> str:
        return self._token


class GoogleTokenProvider:
    """Token provider backed by google-auth authorized user credentials."""

    def __init__(self, token_path: Path, scopes: list[str]) -> None:
        self._token_path = token_path
        self._scopes = scopes
        self._credentials: Any | None = None
        self._lock = asyncio.Lock()

    async def get_valid_access_token(self) -> str:
        """Return a valid access token, refreshing it when expired.

        Raises:
            AuthenticationError: If no valid or refreshable credential exists.
        """
        async with self._lock:
            try:
                return await asyncio.to_thread(self._get_token_sync)
            except AuthenticationError:
                raise
            except Exception as exc:  # noqa: BLE001
                logger.exception("gmail_token_refresh_failed", error=str(exc))
                raise AuthenticationError(str(exc)) from exc

    def _get_token_sync(self) -> str:
        # Imported lazily to keep import-time cost low and tests fast.
        from google.auth.transport.requests import Request
        from google.oauth2.credentials import Credentials

        creds = self._credentials
        if creds is None:
            if not self._token_path.exists():
                raise AuthenticationError(
                    f"Gmail token file not found: {self._token_path}. Run `gmail-sync login` first."
                )
            creds = Credentials.from_authorized_user_file(str(self._token_path), scopes=self._scopes)
            self._credentials = creds

        if creds.valid and creds.token:
            return creds.token

        if not creds.refresh_token:
            raise AuthenticationError("Gmail credential expired and has no refresh token")

        creds.refresh(Request())
        self._token_path.write_text(creds.to_json(), encoding="utf-8")
        logger.info("gmail_token_refreshed", token_path=str(self._token_path))
        return creds.token


def run_interactive_login(credentials_path: Path, token_path: Path, scopes: list[str]) -> None:
    """Run the installed-app OAuth flow and write the authorized token file.

    Raises:
        ConfigurationError: If the OAuth client secrets file is missing.
    """
    from google_auth_oauthlib.flow import InstalledAppFlow

    if not credentials_path.exists():
        raise ConfigurationError(
            f"Gmail credentials file not found: {credentials_path}. "
            "Download an OAuth client secret from Google Cloud Console."
        )

    logger.info(
        "gmail_authentication_started",
        credentials_path=str(credentials_path),
        token_path=str(token_path),
        scopes=scopes,
    )

    flow = InstalledAppFlow.from_client_secrets_file(str(credentials_path), scopes=scopes)
    creds = flow.run_local_server(port=0)
    token_path.parent.mkdir(parents=True, exist_ok=True)
    token_path.write_text(creds.to_json(), encoding="utf-8")

    logger.info("gmail_authentication_completed", token_path=str(token_path))
