"""
Session store: holds the one active session for a client.

The session object is immutable and replaced in a single assignment, so a
reader never sees a half-refreshed token. Refreshes are single-flight: the
first caller starts the refresh, later callers holding the same stale
token await that same refresh and share its result or its error.
"""

import asyncio
import logging
from typing import Awaitable, Callable, Optional

from cloudmgr.errors import AuthError, CloudMgrError, NoSessionError
from cloudmgr.models.session import Credentials, Session

logger = logging.getLogger(__name__)

Refresher = Callable[[Session, Optional[Credentials]], Awaitable[Session]]


class SessionStore:
    def __init__(self, refresher: Optional[Refresher] = None):
        self._refresher = refresher
        self._session: Optional[Session] = None
        self._credentials: Optional[Credentials] = None
        self._inflight: Optional[tuple[str, "asyncio.Future[Session]"]] = None
        self.refresh_count = 0

    @property
    def connected(self) -> bool:
        return self._session is not None

    @property
    def session(self) -> Optional[Session]:
        return self._session

    @property
    def credentials(self) -> Optional[Credentials]:
        return self._credentials

    def connect(self, session: Session, credentials: Optional[Credentials] = None) -> Session:
        self._session = session
        self._credentials = credentials
        logger.debug("Session established: %s", session)
        return session

    def resolve(self) -> Session:
        if self._session is None:
            raise NoSessionError()
        return self._session

    async def refresh(self, stale: Session) -> Session:
        """Replace ``stale`` with a refreshed session, at most once per stale token.

        Callers arriving while a refresh for the same token is in flight await
        that refresh and share its result, including its failure.
        """
        current = self._session
        if current is None:
            raise NoSessionError()
        if current.access_token != stale.access_token:
            # Someone else already refreshed.
            return current
        if self._refresher is None:
            raise AuthError("Session expired and no refresher is configured", code="refresh_failed")

        inflight = self._inflight
        if inflight is None or inflight[0] != current.access_token:
            task = asyncio.ensure_future(self._run_refresh(current))
            inflight = self._inflight = (current.access_token, task)
            task.add_done_callback(self._refresh_done)
        return await asyncio.shield(inflight[1])

    def _refresh_done(self, task: "asyncio.Future[Session]") -> None:
        if self._inflight is not None and self._inflight[1] is task:
            self._inflight = None
        if not task.cancelled():
            # Mark the exception retrieved; every waiter re-raises it on its own.
            task.exception()

    async def _run_refresh(self, current: Session) -> Session:
        try:
            refreshed = await self._refresher(current, self._credentials)
        except AuthError:
            raise
        except CloudMgrError as e:
            raise AuthError(f"Token refresh failed: {e}", code="refresh_failed") from e
        if self._session is None:
            # Disconnected while the refresh was in flight.
            raise NoSessionError()
        self.refresh_count += 1
        self._session = refreshed
        return refreshed

    def switch_workspace(self, workspace_id: str, workspace_name: Optional[str] = None) -> Session:
        session = self.resolve().with_workspace(workspace_id, workspace_name)
        self._session = session
        logger.info("Switched to workspace %s", workspace_name or workspace_id)
        return session

    def disconnect(self) -> None:
        self._session = None
        self._credentials = None
        logger.debug("Session cleared")
