"""
AsyncCloudClient / CloudClient: main SDK clients.
"""

import asyncio
import logging
from datetime import datetime, timedelta, timezone
from typing import Any, Optional

import httpx
import pydantic

from cloudmgr.auth import Auth
from cloudmgr.cancel import CancelToken
from cloudmgr.classifier import DiagnosticContext
from cloudmgr.config import ClientConfig, load_config
from cloudmgr.errors import AuthError
from cloudmgr.executor import RequestExecutor
from cloudmgr.models.descriptor import HttpMethod, RequestDescriptor
from cloudmgr.models.outcome import Complete, Detail, Invalid, Outcome
from cloudmgr.models.session import Credentials, Session
from cloudmgr.retry import RetryPolicy
from cloudmgr.session_store import SessionStore
from cloudmgr.transport.http import HttpClient

logger = logging.getLogger(__name__)

WORKSPACE_PATH = "/workspaces/{id}"


class AsyncCloudClient:
    """Async management API client (primary)."""

    def __init__(
        self,
        base_url: Optional[str] = None,
        config: Optional[ClientConfig] = None,
        policy: Optional[RetryPolicy] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        config = config or load_config()
        if base_url:
            config = config.model_copy(update={"base_url": base_url})
        self.config = config

        self.http = HttpClient(base_url=config.base_url, timeout=config.timeout, transport=transport)
        self.auth = Auth(self.http)
        self.sessions = SessionStore(self.auth.refresh)
        self.diagnostics = DiagnosticContext()
        self.executor = RequestExecutor(self.http, self.sessions, config, self.diagnostics, policy=policy)

    @property
    def connected(self) -> bool:
        return self.sessions.connected

    @property
    def session(self) -> Optional[Session]:
        return self.sessions.session

    @property
    def last_error(self) -> Optional[Detail]:
        """Structured detail of the most recent failure, if any."""
        return self.diagnostics.last_error

    async def connect(
        self,
        client_id: Optional[str] = None,
        client_secret: Optional[str] = None,
        *,
        access_token: Optional[str] = None,
        expires_at: Optional[datetime] = None,
        refresh_token: Optional[str] = None,
        workspace_id: Optional[str] = None,
        workspace_name: Optional[str] = None,
    ) -> Session:
        """Establish a session, either from client credentials or an existing token."""
        if access_token:
            session = Session(
                access_token=access_token,
                expires_at=expires_at or datetime.now(timezone.utc) + timedelta(hours=1),
                refresh_token=refresh_token,
                workspace_id=workspace_id,
                workspace_name=workspace_name,
            )
            credentials = None
            if client_id and client_secret:
                credentials = Credentials(client_id=client_id, client_secret=client_secret)
            return self.sessions.connect(session, credentials)

        if not client_id or not client_secret:
            raise AuthError("client_id and client_secret (or access_token) required", code="missing_credentials")
        credentials = Credentials(client_id=client_id, client_secret=client_secret)
        session = await self.auth.login(credentials, workspace_id=workspace_id)
        if workspace_name:
            session = session.with_workspace(session.workspace_id or "", workspace_name)
        return self.sessions.connect(session, credentials)

    async def switch_workspace(self, workspace_id: str, workspace_name: Optional[str] = None) -> Session:
        """Select the workspace used for workspace-scoped calls.

        When no display name is given it is looked up from the API.
        """
        if workspace_name is None:
            outcome = await self.get(WORKSPACE_PATH.format(id=workspace_id))
            outcome.raise_for_outcome()
            data = outcome.data if isinstance(outcome, Complete) else None
            if isinstance(data, dict):
                workspace_name = data.get("name") or data.get("displayName")
        return self.sessions.switch_workspace(workspace_id, workspace_name)

    async def disconnect(self) -> None:
        self.sessions.disconnect()
        self.diagnostics.clear()

    async def close(self) -> None:
        await self.http.close()

    async def __aenter__(self) -> "AsyncCloudClient":
        return self

    async def __aexit__(self, *exc: Any) -> None:
        await self.close()

    async def execute(self, descriptor: RequestDescriptor, cancel: Optional[CancelToken] = None) -> Outcome:
        return await self.executor.execute(descriptor, cancel)

    async def request(
        self,
        method: str,
        uri: str,
        body: Optional[Any] = None,
        params: Optional[dict[str, Any]] = None,
        *,
        dry_run: bool = False,
        skip_pagination_limit: bool = False,
        skip_session_check: bool = False,
        collection: bool = False,
        workspace_scoped: bool = False,
        cancel: Optional[CancelToken] = None,
    ) -> Outcome:
        try:
            descriptor = RequestDescriptor(
                method=HttpMethod(method.upper()),
                uri=uri,
                body=body,
                params=params or {},
                dry_run=dry_run,
                skip_pagination_limit=skip_pagination_limit,
                skip_session_check=skip_session_check,
                collection=collection,
                workspace_scoped=workspace_scoped,
            )
        except (ValueError, pydantic.ValidationError) as e:
            detail = Detail(message=f"Invalid request: {e}", code="invalid_request")
            self.diagnostics.record(detail)
            return Invalid(problems=[str(e)], detail=detail)
        return await self.execute(descriptor, cancel)

    async def get(self, uri: str, params: Optional[dict[str, Any]] = None, **options: Any) -> Outcome:
        return await self.request("GET", uri, params=params, **options)

    async def list(self, uri: str, params: Optional[dict[str, Any]] = None, **options: Any) -> Outcome:
        """GET a collection, following every continuation."""
        return await self.request("GET", uri, params=params, collection=True, **options)

    async def post(self, uri: str, body: Any, **options: Any) -> Outcome:
        return await self.request("POST", uri, body, **options)

    async def put(self, uri: str, body: Any, **options: Any) -> Outcome:
        return await self.request("PUT", uri, body, **options)

    async def patch(self, uri: str, body: Any, **options: Any) -> Outcome:
        return await self.request("PATCH", uri, body, **options)

    async def delete(self, uri: str, **options: Any) -> Outcome:
        return await self.request("DELETE", uri, **options)


class CloudClient:
    """Sync wrapper around AsyncCloudClient. Runs the event loop internally."""

    def __init__(self, **kwargs: Any):
        self._loop = asyncio.new_event_loop()
        self._async = AsyncCloudClient(**kwargs)

    def _run(self, coro: Any) -> Any:
        return self._loop.run_until_complete(coro)

    @property
    def connected(self) -> bool:
        return self._async.connected

    @property
    def session(self) -> Optional[Session]:
        return self._async.session

    @property
    def last_error(self) -> Optional[Detail]:
        return self._async.last_error

    def connect(self, *args: Any, **kwargs: Any) -> Session:
        return self._run(self._async.connect(*args, **kwargs))

    def switch_workspace(self, workspace_id: str, workspace_name: Optional[str] = None) -> Session:
        return self._run(self._async.switch_workspace(workspace_id, workspace_name))

    def disconnect(self) -> None:
        self._run(self._async.disconnect())

    def close(self) -> None:
        self._run(self._async.close())
        self._loop.close()

    def execute(self, descriptor: RequestDescriptor) -> Outcome:
        return self._run(self._async.execute(descriptor))

    def request(self, method: str, uri: str, body: Optional[Any] = None, **kwargs: Any) -> Outcome:
        return self._run(self._async.request(method, uri, body, **kwargs))

    def get(self, uri: str, **kwargs: Any) -> Outcome:
        return self._run(self._async.get(uri, **kwargs))

    def list(self, uri: str, **kwargs: Any) -> Outcome:
        return self._run(self._async.list(uri, **kwargs))

    def post(self, uri: str, body: Any, **kwargs: Any) -> Outcome:
        return self._run(self._async.post(uri, body, **kwargs))

    def put(self, uri: str, body: Any, **kwargs: Any) -> Outcome:
        return self._run(self._async.put(uri, body, **kwargs))

    def patch(self, uri: str, body: Any, **kwargs: Any) -> Outcome:
        return self._run(self._async.patch(uri, body, **kwargs))

    def delete(self, uri: str, **kwargs: Any) -> Outcome:
        return self._run(self._async.delete(uri, **kwargs))
