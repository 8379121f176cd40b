"""
Request executor: turns a RequestDescriptor into exactly one Outcome.

Order of operations: validate the descriptor, resolve (and if needed
refresh) the session, short-circuit dry runs, then send through the retry
engine, paginating collection requests. A 401/403 triggers one session
refresh and one end-to-end retry per logical call; a second auth failure
is terminating.
"""

import logging
from dataclasses import dataclass
from typing import Optional, Union

from cloudmgr.cancel import CancelToken
from cloudmgr.classifier import DiagnosticContext, ErrorClassifier
from cloudmgr.config import ClientConfig
from cloudmgr.dry_run import render
from cloudmgr.errors import AuthError, NoSessionError, SessionError
from cloudmgr.models.descriptor import RequestDescriptor
from cloudmgr.models.outcome import Authentication, Cancelled, Detail, DryRun, Invalid, Outcome
from cloudmgr.models.session import Session
from cloudmgr.pagination import Paginator
from cloudmgr.retry import AttemptResult, RetryEngine, RetryPolicy, RetryState, Sender
from cloudmgr.session_store import SessionStore
from cloudmgr.transport.http import HttpClient

logger = logging.getLogger(__name__)


@dataclass
class _Call:
    """Per-call state shared by every page of one logical request."""
    session: Optional[Session]
    refreshed: bool = False
    refresh_error: Optional[Detail] = None
    transport_calls: int = 0

    @property
    def token(self) -> Optional[str]:
        return self.session.access_token if self.session is not None else None


class RequestExecutor:
    def __init__(
        self,
        http: HttpClient,
        store: SessionStore,
        config: Optional[ClientConfig] = None,
        diagnostics: Optional[DiagnosticContext] = None,
        policy: Optional[RetryPolicy] = None,
        send: Optional[Sender] = None,
    ):
        self._http = http
        self._store = store
        self.config = config or ClientConfig()
        self.classifier = ErrorClassifier(diagnostics)
        self.engine = RetryEngine(send or http.send, policy or RetryPolicy.from_config(self.config), self.classifier)

    @property
    def diagnostics(self) -> DiagnosticContext:
        return self.classifier.diagnostics

    def _paginator(self, call: _Call, cancel: Optional[CancelToken]) -> Paginator:
        return Paginator(
            lambda page: self._attempt(page, call, cancel),
            self.classifier,
            page_size=self.config.page_size,
            max_pages=self.config.max_pages,
        )

    async def execute(self, descriptor: RequestDescriptor, cancel: Optional[CancelToken] = None) -> Outcome:
        """Run one logical call and publish its result to the diagnostics.

        A failure is recorded when the call completes. A clean success clears
        the last error only if no other call recorded one while it ran.
        """
        mark = self.diagnostics.writes
        outcome = await self._execute(descriptor, cancel)
        if outcome.ok:
            self.diagnostics.clear(since=mark)
        else:
            self.diagnostics.record(outcome.detail)
        return outcome

    async def _execute(self, descriptor: RequestDescriptor, cancel: Optional[CancelToken]) -> Outcome:
        problems = descriptor.validate_request()
        if problems:
            return self._invalid(problems, "invalid_request")

        session: Optional[Session] = None
        if not descriptor.skip_session_check:
            resolved = await self._ensure_session()
            if not isinstance(resolved, Session):
                return resolved
            session = resolved
            if descriptor.needs_workspace and not session.has_workspace:
                return self._invalid(["no workspace selected; switch to a workspace first"], "workspace_not_selected")
        elif descriptor.needs_workspace:
            session = self._store.session
            if session is None or not session.has_workspace:
                return self._invalid(["no workspace selected; switch to a workspace first"], "workspace_not_selected")

        call = _Call(session=None if descriptor.skip_session_check else session)
        target = descriptor.resolve(session)

        if descriptor.dry_run:
            if target.collection:
                target = self._paginator(call, cancel).first_page(target)
            logger.info("Dry run: %s", target)
            return DryRun(request=render(target, call.session, self._http.base_url))

        if target.collection:
            outcome = await self._paginator(call, cancel).fetch_all(target, cancel)
        else:
            outcome = self._finish(await self._attempt(target, call, cancel), cancel)

        if isinstance(outcome, Authentication) and call.refresh_error is not None:
            self.diagnostics.record(call.refresh_error)
            outcome = Authentication(detail=call.refresh_error)
        logger.debug("%s -> %s after %d transport calls", descriptor, outcome.category, call.transport_calls)
        return outcome

    async def _ensure_session(self) -> Union[Session, Authentication]:
        try:
            session = self._store.resolve()
        except NoSessionError as e:
            return self._auth_failure(e.message, e.code)
        if not session.is_expired:
            return session
        logger.info("Session expired, refreshing")
        try:
            return await self._store.refresh(session)
        except (AuthError, SessionError) as e:
            return self._auth_failure(e.message, e.code)

    async def _attempt(
        self,
        descriptor: RequestDescriptor,
        call: _Call,
        cancel: Optional[CancelToken],
    ) -> AttemptResult:
        result = await self.engine.attempt(descriptor, call.token, cancel)
        call.transport_calls += result.attempts
        if result.state != RetryState.AUTH_REQUIRED or call.session is None or call.refreshed:
            return result

        call.refreshed = True
        logger.info("%s: HTTP %s, refreshing session and retrying once", descriptor, result.raw.status)
        try:
            call.session = await self._store.refresh(call.session)
        except (AuthError, SessionError) as e:
            call.refresh_error = Detail(message=e.message, code=e.code, status=result.raw.status)
            return result

        retry = await self.engine.attempt(descriptor, call.token, cancel)
        call.transport_calls += retry.attempts
        return retry

    def _finish(self, result: AttemptResult, cancel: Optional[CancelToken]) -> Outcome:
        if result.state == RetryState.CANCELLED:
            detail = Detail(message=cancel.reason if cancel is not None else "Request cancelled", code="cancelled")
            self.diagnostics.record(detail)
            return Cancelled(detail=detail)
        return self.classifier.classify(result.raw, result.bucket)

    def _invalid(self, problems: list[str], code: str) -> Invalid:
        detail = Detail(message="; ".join(problems), code=code)
        self.diagnostics.record(detail)
        return Invalid(problems=problems, detail=detail)

    def _auth_failure(self, message: str, code: str) -> Authentication:
        detail = Detail(message=message, code=code)
        self.diagnostics.record(detail)
        return Authentication(detail=detail)
