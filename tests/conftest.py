"""Shared fixtures: sessions and a client wired to an in-memory transport."""

from __future__ import annotations

import datetime
from typing import Any, Callable, Optional

import httpx
import pytest

from cloudmgr import AsyncCloudClient, ClientConfig, RetryPolicy, Session

BASE_URL = "https://mgmt.test"
TOKEN = "tok-live-1234567890"
REFRESHED_TOKEN = "tok-refreshed-0987654321"


def _now() -> datetime.datetime:
    return datetime.datetime.now(datetime.timezone.utc)


class Recorder:
    """Wraps a handler and keeps every request that reached the transport."""

    def __init__(self, handler: Callable[[httpx.Request], Any]):
        self._handler = handler
        self.requests: list[httpx.Request] = []

    async def __call__(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        response = self._handler(request)
        if not isinstance(response, httpx.Response):
            response = await response
        return response

    def calls(self, path: str) -> list[httpx.Request]:
        return [r for r in self.requests if r.url.path == path]


def token_response(token: str = REFRESHED_TOKEN, expires_in: int = 3600) -> httpx.Response:
    return httpx.Response(200, json={
        "access_token": token,
        "expires_in": expires_in,
        "refresh_token": "refresh-2",
        "account_id": "acct-1",
    })


def make_client(
    handler: Callable[[httpx.Request], Any],
    session: Optional[Session] = None,
    max_attempts: int = 4,
    **config: Any,
) -> tuple[AsyncCloudClient, Recorder]:
    recorder = Recorder(handler)
    client = AsyncCloudClient(
        config=ClientConfig(base_url=BASE_URL, **config),
        policy=RetryPolicy(max_attempts=max_attempts, base_delay=0.0, max_delay=0.0),
        transport=httpx.MockTransport(recorder),
    )
    if session is not None:
        client.sessions.connect(session)
    return client, recorder


@pytest.fixture
def fresh_session() -> Session:
    return Session(
        access_token=TOKEN,
        expires_at=_now() + datetime.timedelta(hours=1),
        refresh_token="refresh-1",
        account_id="acct-1",
        workspace_id="ws-1",
        workspace_name="Production",
    )


@pytest.fixture
def expired_session() -> Session:
    return Session(
        access_token=TOKEN,
        expires_at=_now() - datetime.timedelta(minutes=5),
        refresh_token="refresh-1",
        account_id="acct-1",
        workspace_id="ws-1",
    )


@pytest.fixture
def unscoped_session() -> Session:
    return Session(access_token=TOKEN, expires_at=_now() + datetime.timedelta(hours=1))
