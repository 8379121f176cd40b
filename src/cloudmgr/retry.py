"""
Retry/backoff engine for a single logical request attempt.

The engine is a small state machine:

    IDLE -> ATTEMPTING -> SUCCEEDED
                       -> BACKOFF_WAIT -> ATTEMPTING ...
                       -> TERMINAL | AUTH_REQUIRED | EXHAUSTED | CANCELLED

Only transient results (timeouts, connection errors, 5xx and the listed
rate-limit statuses) are retried. Authentication failures are handed back
to the executor, which owns session refresh. Business failures are
returned as-is.
"""

import asyncio
import logging
import random
from dataclasses import dataclass, field
from datetime import datetime, timezone
from email.utils import parsedate_to_datetime
from enum import Enum
from typing import Awaitable, Callable, Optional

from cloudmgr.cancel import CancelToken
from cloudmgr.classifier import TRANSIENT_STATUSES, Bucket, ErrorClassifier, classify_bucket
from cloudmgr.config import ClientConfig
from cloudmgr.models.descriptor import RequestDescriptor
from cloudmgr.transport.http import RawResult

logger = logging.getLogger(__name__)

MAX_ATTEMPTS = 4
BASE_DELAY = 0.5
MAX_DELAY = 8.0
MULTIPLIER = 2.0
JITTER = 0.25

Sender = Callable[[RequestDescriptor, Optional[str]], Awaitable[RawResult]]


class RetryState(str, Enum):
    IDLE = "idle"
    ATTEMPTING = "attempting"
    BACKOFF_WAIT = "backoff_wait"
    SUCCEEDED = "succeeded"
    TERMINAL = "terminal"
    AUTH_REQUIRED = "auth_required"
    EXHAUSTED = "exhausted"
    CANCELLED = "cancelled"


@dataclass
class RetryPolicy:
    """Bounded exponential backoff with jitter.

    ``max_attempts`` counts every transport call, the first one included.
    """

    max_attempts: int = MAX_ATTEMPTS
    base_delay: float = BASE_DELAY
    max_delay: float = MAX_DELAY
    multiplier: float = MULTIPLIER
    jitter: float = JITTER  # fraction of the delay added on top, 0.25 => 100-125%
    retry_statuses: frozenset[int] = TRANSIENT_STATUSES

    def __post_init__(self) -> None:
        if self.max_attempts < 1:
            raise ValueError("max_attempts must be at least 1")
        if self.base_delay < 0 or self.max_delay < self.base_delay:
            raise ValueError("require 0 <= base_delay <= max_delay")

    @classmethod
    def from_config(cls, config: ClientConfig) -> "RetryPolicy":
        return cls(
            max_attempts=config.max_attempts,
            base_delay=config.base_delay,
            max_delay=config.max_delay,
        )

    def backoff(self, rng: Callable[[], float] = random.random) -> "Backoff":
        return Backoff(self, rng)


class Backoff:
    """Delay sequence for one attempt chain; never decreases, never exceeds max_delay."""

    def __init__(self, policy: RetryPolicy, rng: Callable[[], float] = random.random):
        self._policy = policy
        self._rng = rng
        self._retries = 0
        self._previous = 0.0

    def next_delay(self, retry_after: Optional[float] = None) -> float:
        p = self._policy
        delay = min(p.max_delay, p.base_delay * p.multiplier ** self._retries)
        delay *= 1 + p.jitter * self._rng()
        if retry_after is not None:
            delay = max(delay, retry_after)
        delay = min(max(delay, self._previous), p.max_delay)
        self._retries += 1
        self._previous = delay
        return delay


def retry_after_seconds(raw: RawResult) -> Optional[float]:
    value = raw.headers.get("retry-after") or raw.headers.get("Retry-After")
    if not value:
        return None
    try:
        return max(0.0, float(value))
    except ValueError:
        pass
    try:
        when = parsedate_to_datetime(value)
    except (TypeError, ValueError):
        return None
    if when.tzinfo is None:
        when = when.replace(tzinfo=timezone.utc)
    return max(0.0, (when - datetime.now(timezone.utc)).total_seconds())


@dataclass
class AttemptResult:
    state: RetryState
    raw: Optional[RawResult] = None
    bucket: Optional[Bucket] = None
    attempts: int = 0
    delays: list[float] = field(default_factory=list)
    history: list[RetryState] = field(default_factory=list)


class RetryEngine:
    def __init__(
        self,
        send: Sender,
        policy: Optional[RetryPolicy] = None,
        classifier: Optional[ErrorClassifier] = None,
    ):
        self._send = send
        self.policy = policy or RetryPolicy()
        self._classifier = classifier or ErrorClassifier()

    async def attempt(
        self,
        descriptor: RequestDescriptor,
        token: Optional[str] = None,
        cancel: Optional[CancelToken] = None,
    ) -> AttemptResult:
        result = AttemptResult(state=RetryState.IDLE)
        backoff = self.policy.backoff()

        def move(state: RetryState) -> None:
            result.state = state
            result.history.append(state)

        while True:
            if cancel is not None and cancel.cancelled:
                move(RetryState.CANCELLED)
                return result

            move(RetryState.ATTEMPTING)
            result.attempts += 1
            raw = await self._send(descriptor, token)
            bucket = classify_bucket(raw, self.policy.retry_statuses)
            result.raw, result.bucket = raw, bucket

            if bucket in (Bucket.SUCCESS, Bucket.PARTIAL):
                move(RetryState.SUCCEEDED)
                return result

            detail = self._classifier.record(raw)
            if bucket == Bucket.AUTH:
                move(RetryState.AUTH_REQUIRED)
                return result
            if bucket == Bucket.TERMINAL:
                move(RetryState.TERMINAL)
                return result
            if result.attempts >= self.policy.max_attempts:
                logger.warning("%s: giving up after %d attempts: %s", descriptor, result.attempts, detail.message)
                move(RetryState.EXHAUSTED)
                return result

            delay = backoff.next_delay(retry_after_seconds(raw))
            result.delays.append(delay)
            move(RetryState.BACKOFF_WAIT)
            logger.warning(
                "%s: transient failure (%s), retry %d/%d in %.2fs",
                descriptor, detail.message, result.attempts, self.policy.max_attempts - 1, delay,
            )
            if cancel is not None:
                if await cancel.sleep(delay):
                    move(RetryState.CANCELLED)
                    return result
            elif delay > 0:
                await asyncio.sleep(delay)
