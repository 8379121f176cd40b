"""
Auth module: OAuth2 token endpoint calls.

``login`` uses the client-credentials grant; ``refresh`` uses the refresh
token when the server issued one and falls back to re-login with cached
credentials otherwise.
"""

import logging
from datetime import datetime, timedelta, timezone
from typing import Any, Optional

from cloudmgr.classifier import extract_message
from cloudmgr.errors import AuthError
from cloudmgr.models.session import Credentials, Session
from cloudmgr.transport.http import HttpClient, RawResult

logger = logging.getLogger(__name__)

TOKEN_PATH = "/oauth/token"
DEFAULT_EXPIRES_IN = 3600


class Auth:
    def __init__(self, http: HttpClient, token_path: str = TOKEN_PATH):
        self._http = http
        self._token_path = token_path

    async def login(self, credentials: Credentials, workspace_id: Optional[str] = None) -> Session:
        """Exchange client credentials for a new session."""
        raw = await self._http.post_form(self._token_path, {
            "grant_type": "client_credentials",
            "client_id": credentials.client_id,
            "client_secret": credentials.client_secret.get_secret_value(),
        })
        token = self._parse(raw, "Login failed")
        logger.info("Connected as client %s", credentials.client_id)
        return self._session_from(token, workspace_id=workspace_id)

    async def refresh(self, session: Session, credentials: Optional[Credentials] = None) -> Session:
        """Renew the access token of ``session``, keeping its workspace selection."""
        if session.refresh_token:
            raw = await self._http.post_form(self._token_path, {
                "grant_type": "refresh_token",
                "refresh_token": session.refresh_token,
            })
            try:
                token = self._parse(raw, "Token refresh failed")
            except AuthError as e:
                if credentials is None:
                    raise
                logger.info("Refresh token rejected (%s), logging in again", e)
            else:
                refreshed = self._session_from(token, previous=session)
                logger.info("Access token refreshed, expires %s", refreshed.expires_at.isoformat())
                return refreshed

        if credentials is None:
            raise AuthError("Session expired and no refresh token or credentials are cached", code="refresh_failed")
        fresh = await self.login(credentials, workspace_id=session.workspace_id)
        return fresh.with_workspace(session.workspace_id, session.workspace_name) if session.workspace_id else fresh

    @staticmethod
    def _parse(raw: RawResult, prefix: str) -> dict[str, Any]:
        if raw.transport_failed:
            raise AuthError(f"{prefix}: {raw.error}", code="refresh_failed")
        body = raw.body if isinstance(raw.body, dict) else {}
        if raw.status != 200 or not body.get("access_token"):
            message = extract_message(body) or f"HTTP {raw.status}"
            raise AuthError(f"{prefix}: {message}", code="refresh_failed", details={"status": raw.status})
        return body

    @staticmethod
    def _session_from(
        token: dict[str, Any],
        workspace_id: Optional[str] = None,
        previous: Optional[Session] = None,
    ) -> Session:
        expires_at = datetime.now(timezone.utc) + timedelta(seconds=int(token.get("expires_in") or DEFAULT_EXPIRES_IN))
        if previous is not None:
            return previous.with_token(token["access_token"], expires_at, token.get("refresh_token"))
        return Session(
            access_token=token["access_token"],
            expires_at=expires_at,
            refresh_token=token.get("refresh_token"),
            account_id=token.get("account_id"),
            workspace_id=workspace_id or token.get("workspace_id"),
            workspace_name=token.get("workspace_name"),
        )
