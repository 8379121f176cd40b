"""Tests for the request executor: session handling, dry runs, auth retry."""

from __future__ import annotations

import asyncio

import httpx
import pytest

from cloudmgr import (
    Authentication,
    Complete,
    DryRun,
    Failed,
    Invalid,
    PartialSuccess,
    Session,
)
from cloudmgr.models.descriptor import HttpMethod, RequestDescriptor

from conftest import REFRESHED_TOKEN, TOKEN, make_client, token_response

TOKEN_PATH = "/oauth/token"


def ok(request: httpx.Request) -> httpx.Response:
    if request.url.path == TOKEN_PATH:
        return token_response()
    return httpx.Response(200, json={"status": "success", "data": {"path": request.url.path}})


class TestDryRun:
    @pytest.mark.asyncio
    async def test_no_transport_call_and_no_token(self, fresh_session: Session) -> None:
        client, recorder = make_client(ok, fresh_session)
        body = {"name": "edge-01", "tags": ["lab"]}
        outcome = await client.post("/workspaces/{workspace_id}/devices", body, dry_run=True)
        assert isinstance(outcome, DryRun)
        assert recorder.requests == []
        rendered = outcome.request
        assert rendered.method == "POST"
        assert rendered.url == "https://mgmt.test/workspaces/ws-1/devices"
        assert rendered.body == body
        assert rendered.headers["Authorization"] == "Bearer ********"
        assert TOKEN not in rendered.to_text()
        assert TOKEN not in outcome.model_dump_json()

    @pytest.mark.asyncio
    async def test_dry_run_collection_shows_first_page(self, fresh_session: Session) -> None:
        client, recorder = make_client(ok, fresh_session, page_size=50)
        outcome = await client.list("/devices", dry_run=True)
        assert isinstance(outcome, DryRun)
        assert outcome.request.params == {"limit": 50}
        assert recorder.requests == []

    @pytest.mark.asyncio
    async def test_validation_precedes_dry_run(self, fresh_session: Session) -> None:
        client, recorder = make_client(ok, fresh_session)
        outcome = await client.request("POST", "/devices", dry_run=True)
        assert isinstance(outcome, Invalid)
        assert "POST requires a body" in outcome.problems
        assert recorder.requests == []

    @pytest.mark.asyncio
    async def test_dry_run_after_failed_session_check_is_not_rendered(self) -> None:
        client, recorder = make_client(ok)
        outcome = await client.get("/devices", dry_run=True)
        assert isinstance(outcome, Authentication)
        assert outcome.detail.code == "no_session"
        assert recorder.requests == []


class TestValidation:
    @pytest.mark.asyncio
    async def test_unknown_method(self, fresh_session: Session) -> None:
        client, _ = make_client(ok, fresh_session)
        outcome = await client.request("BREW", "/coffee")
        assert isinstance(outcome, Invalid)
        assert client.last_error.code == "invalid_request"

    @pytest.mark.asyncio
    async def test_unresolved_placeholder(self, fresh_session: Session) -> None:
        client, recorder = make_client(ok, fresh_session)
        outcome = await client.get("/devices/{device_id}")
        assert isinstance(outcome, Invalid)
        assert recorder.requests == []

    @pytest.mark.asyncio
    async def test_workspace_required(self, unscoped_session: Session) -> None:
        client, recorder = make_client(ok, unscoped_session)
        outcome = await client.get("/workspaces/{workspace_id}/users")
        assert isinstance(outcome, Invalid)
        assert outcome.detail.code == "workspace_not_selected"
        assert recorder.requests == []


class TestSession:
    @pytest.mark.asyncio
    async def test_no_session_is_terminating(self) -> None:
        client, recorder = make_client(ok)
        outcome = await client.get("/devices")
        assert isinstance(outcome, Authentication)
        assert outcome.detail.code == "no_session"
        assert client.last_error.code == "no_session"
        assert recorder.requests == []

    @pytest.mark.asyncio
    async def test_skip_session_check_sends_without_auth(self) -> None:
        client, recorder = make_client(ok)
        outcome = await client.get("/health", skip_session_check=True)
        assert isinstance(outcome, Complete)
        assert "authorization" not in recorder.requests[0].headers

    @pytest.mark.asyncio
    async def test_bearer_token_sent(self, fresh_session: Session) -> None:
        client, recorder = make_client(ok, fresh_session)
        outcome = await client.get("/workspaces/{workspace_id}/settings")
        assert isinstance(outcome, Complete)
        assert outcome.data == {"path": "/workspaces/ws-1/settings"}
        assert recorder.requests[0].headers["authorization"] == f"Bearer {TOKEN}"

    @pytest.mark.asyncio
    async def test_expired_session_refreshed_before_call(self, expired_session: Session) -> None:
        client, recorder = make_client(ok, expired_session)
        outcome = await client.get("/devices")
        assert isinstance(outcome, Complete)
        assert len(recorder.calls(TOKEN_PATH)) == 1
        assert recorder.calls("/devices")[0].headers["authorization"] == f"Bearer {REFRESHED_TOKEN}"
        assert client.session.access_token == REFRESHED_TOKEN
        assert client.session.workspace_id == "ws-1"

    @pytest.mark.asyncio
    async def test_refresh_failure_is_authentication(self, expired_session: Session) -> None:
        def handler(request: httpx.Request) -> httpx.Response:
            if request.url.path == TOKEN_PATH:
                return httpx.Response(400, json={"error": "invalid_grant", "error_description": "revoked"})
            return httpx.Response(200, json={})

        client, recorder = make_client(handler, expired_session)
        outcome = await client.get("/devices")
        assert isinstance(outcome, Authentication)
        assert recorder.calls("/devices") == []

    @pytest.mark.asyncio
    async def test_concurrent_refresh_is_single_flight(self, expired_session: Session) -> None:
        async def slow_token(request: httpx.Request) -> httpx.Response:
            await asyncio.sleep(0.05)
            return token_response()

        def handler(request: httpx.Request):
            if request.url.path == TOKEN_PATH:
                return slow_token(request)
            return httpx.Response(200, json={"ok": True})

        client, recorder = make_client(handler, expired_session)
        first, second = await asyncio.gather(client.get("/devices"), client.get("/servers"))
        assert isinstance(first, Complete)
        assert isinstance(second, Complete)
        assert len(recorder.calls(TOKEN_PATH)) == 1
        for path in ("/devices", "/servers"):
            assert recorder.calls(path)[0].headers["authorization"] == f"Bearer {REFRESHED_TOKEN}"

    @pytest.mark.asyncio
    async def test_concurrent_failed_refresh_is_single_flight(self, expired_session: Session) -> None:
        async def slow_rejection(request: httpx.Request) -> httpx.Response:
            await asyncio.sleep(0.05)
            return httpx.Response(400, json={"error": "invalid_grant", "error_description": "revoked"})

        def handler(request: httpx.Request):
            if request.url.path == TOKEN_PATH:
                return slow_rejection(request)
            return httpx.Response(200, json={"ok": True})

        client, recorder = make_client(handler, expired_session)
        first, second = await asyncio.gather(client.get("/devices"), client.get("/servers"))
        assert isinstance(first, Authentication)
        assert isinstance(second, Authentication)
        assert len(recorder.calls(TOKEN_PATH)) == 1
        assert recorder.calls("/devices") == []
        assert recorder.calls("/servers") == []


class TestAuthRetry:
    @pytest.mark.asyncio
    async def test_401_refreshes_and_retries_once(self, fresh_session: Session) -> None:
        def handler(request: httpx.Request) -> httpx.Response:
            if request.url.path == TOKEN_PATH:
                return token_response()
            if request.headers["authorization"] == f"Bearer {TOKEN}":
                return httpx.Response(401, json={"message": "token revoked"})
            return httpx.Response(200, json={"id": "fw-2"})

        client, recorder = make_client(handler, fresh_session)
        outcome = await client.get("/firmware/fw-2")
        assert isinstance(outcome, Complete)
        assert len(recorder.calls("/firmware/fw-2")) == 2
        assert len(recorder.calls(TOKEN_PATH)) == 1

    @pytest.mark.asyncio
    async def test_second_401_terminates_after_two_calls(self, fresh_session: Session) -> None:
        def handler(request: httpx.Request) -> httpx.Response:
            if request.url.path == TOKEN_PATH:
                return token_response()
            return httpx.Response(401, json={"error": {"code": "UNAUTHORIZED", "message": "not allowed"}})

        client, recorder = make_client(handler, fresh_session)
        outcome = await client.get("/devices")
        assert isinstance(outcome, Authentication)
        assert outcome.detail.code == "UNAUTHORIZED"
        assert outcome.detail.status == 401
        assert len(recorder.calls("/devices")) == 2
        assert len(recorder.calls(TOKEN_PATH)) == 1

    @pytest.mark.asyncio
    async def test_403_without_session_is_not_refreshed(self) -> None:
        def handler(request: httpx.Request) -> httpx.Response:
            return httpx.Response(403, json={"message": "forbidden"})

        client, recorder = make_client(handler)
        outcome = await client.get("/public", skip_session_check=True)
        assert isinstance(outcome, Authentication)
        assert len(recorder.requests) == 1


class TestTerminalOutcomes:
    @pytest.mark.asyncio
    async def test_always_transient_exhausts(self, fresh_session: Session) -> None:
        def handler(request: httpx.Request) -> httpx.Response:
            return httpx.Response(503, json={"message": "service unavailable"})

        client, recorder = make_client(handler, fresh_session, max_attempts=3)
        outcome = await client.get("/devices")
        assert isinstance(outcome, Failed)
        assert outcome.reason == "transient_exhausted"
        assert len(recorder.requests) == 3
        assert client.last_error.message == "service unavailable"

    @pytest.mark.asyncio
    async def test_timeouts_are_retried(self, fresh_session: Session) -> None:
        attempts = []

        def handler(request: httpx.Request) -> httpx.Response:
            attempts.append(request)
            if len(attempts) < 3:
                raise httpx.ReadTimeout("read timed out", request=request)
            return httpx.Response(200, json={"ok": True})

        client, _ = make_client(handler, fresh_session)
        outcome = await client.get("/devices")
        assert isinstance(outcome, Complete)
        assert len(attempts) == 3

    @pytest.mark.asyncio
    async def test_slow_attempt_bounded_by_timeout(self, fresh_session: Session) -> None:
        async def stalled(request: httpx.Request) -> httpx.Response:
            await asyncio.sleep(5)
            return httpx.Response(200, json={"ok": True})

        client, recorder = make_client(stalled, fresh_session, max_attempts=2, timeout=0.05)
        outcome = await asyncio.wait_for(client.get("/devices"), 2)
        assert isinstance(outcome, Failed)
        assert outcome.reason == "transient_exhausted"
        assert outcome.detail.code == "timeout"
        assert len(recorder.requests) == 2

    @pytest.mark.asyncio
    async def test_partial_success_batch(self, fresh_session: Session) -> None:
        def handler(request: httpx.Request) -> httpx.Response:
            return httpx.Response(206, json={"items": [
                {"id": "u1", "status": "success"},
                {"id": "u2", "status": "success"},
                {"id": "u3", "status": "failed", "error": {"code": "ROLE_NOT_FOUND", "message": "role missing"}},
            ]})

        client, recorder = make_client(handler, fresh_session)
        outcome = await client.post("/workspaces/{workspace_id}/users:batch", {"users": ["u1", "u2", "u3"]})
        assert isinstance(outcome, PartialSuccess)
        assert len(outcome.items) == 3
        assert [i.ok for i in outcome.items] == [True, True, False]
        assert outcome.failed[0].code == "ROLE_NOT_FOUND"
        assert len(recorder.requests) == 1

    @pytest.mark.asyncio
    async def test_diagnostics_empty_after_clean_success(self, fresh_session: Session) -> None:
        def handler(request: httpx.Request) -> httpx.Response:
            if request.url.path == "/bad":
                return httpx.Response(404, json={"message": "nope"})
            return httpx.Response(200, json={})

        client, _ = make_client(handler, fresh_session)
        await client.get("/bad")
        assert client.last_error.message == "nope"
        await client.get("/good")
        assert client.last_error is None

    @pytest.mark.asyncio
    async def test_new_call_keeps_earlier_failure_until_it_succeeds(self, fresh_session: Session) -> None:
        release = asyncio.Event()

        async def slow_ok(request: httpx.Request) -> httpx.Response:
            await release.wait()
            return httpx.Response(200, json={})

        def handler(request: httpx.Request):
            if request.url.path == "/bad":
                return httpx.Response(404, json={"message": "nope"})
            return slow_ok(request)

        client, recorder = make_client(handler, fresh_session)
        await client.get("/bad")
        pending = asyncio.ensure_future(client.get("/slow"))
        while not recorder.calls("/slow"):
            await asyncio.sleep(0)
        assert client.last_error.message == "nope"
        release.set()
        assert isinstance(await pending, Complete)
        assert client.last_error is None

    @pytest.mark.asyncio
    async def test_success_does_not_clear_concurrent_failure(self, fresh_session: Session) -> None:
        release = asyncio.Event()

        async def slow_ok(request: httpx.Request) -> httpx.Response:
            await release.wait()
            return httpx.Response(200, json={})

        def handler(request: httpx.Request):
            if request.url.path == "/bad":
                return httpx.Response(404, json={"message": "nope"})
            return slow_ok(request)

        client, recorder = make_client(handler, fresh_session)
        pending = asyncio.ensure_future(client.get("/slow"))
        while not recorder.calls("/slow"):
            await asyncio.sleep(0)
        failed = await client.get("/bad")
        release.set()
        assert isinstance(await pending, Complete)
        assert client.last_error == failed.detail


class TestDescriptor:
    def test_get_with_body_rejected(self) -> None:
        descriptor = RequestDescriptor(method=HttpMethod.GET, uri="/x", body={"a": 1})
        assert descriptor.validate_request() == ["GET must not carry a body"]

    def test_collection_must_be_get(self) -> None:
        descriptor = RequestDescriptor(method=HttpMethod.DELETE, uri="/x", collection=True)
        assert "collection requests must use GET" in descriptor.validate_request()

    def test_with_params_returns_new_descriptor(self) -> None:
        first = RequestDescriptor(method=HttpMethod.GET, uri="/x", params={"limit": 10})
        second = first.with_params(cursor="abc")
        assert first.params == {"limit": 10}
        assert second.params == {"limit": 10, "cursor": "abc"}
