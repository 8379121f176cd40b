"""
Outcome models: exactly one per executed request descriptor.

Each variant carries only the fields that matter for its category; the
``category`` literal is the discriminator.
"""

import json
from typing import Annotated, Any, Literal, Optional, Union

from pydantic import BaseModel, Field

from cloudmgr.errors import (
    APIError,
    AuthError,
    CancelledError,
    PaginationError,
    PartialSuccessError,
    TransientError,
    ValidationError,
)


class Detail(BaseModel):
    """Structured failure detail: the richest message available plus code/status."""
    message: str
    code: Optional[str] = None
    status: Optional[int] = None


class ItemResult(BaseModel):
    """One sub-item of a batch request."""
    id: Optional[str] = None
    ok: bool
    status: Optional[int] = None
    code: Optional[str] = None
    message: Optional[str] = None
    data: Optional[Any] = None


class RenderedRequest(BaseModel):
    method: str
    url: str
    headers: dict[str, str] = {}
    params: dict[str, Any] = {}
    body: Optional[Any] = None

    def to_text(self) -> str:
        lines = [f"{self.method} {self.url}"]
        if self.params:
            query = "&".join(f"{k}={v}" for k, v in self.params.items())
            lines[0] += f"?{query}"
        lines.extend(f"{name}: {value}" for name, value in self.headers.items())
        if self.body is not None:
            lines.append("")
            lines.append(json.dumps(self.body, indent=2, default=str))
        return "\n".join(lines)


class _BaseOutcome(BaseModel):
    @property
    def ok(self) -> bool:
        return False

    def raise_for_outcome(self) -> "Outcome":
        return self  # type: ignore[return-value]


class Complete(_BaseOutcome):
    category: Literal["complete"] = "complete"
    data: Optional[Any] = None
    status: Optional[int] = None
    pages: int = 1

    @property
    def ok(self) -> bool:
        return True


class DryRun(_BaseOutcome):
    category: Literal["dry_run"] = "dry_run"
    request: RenderedRequest

    @property
    def ok(self) -> bool:
        return True


class PartialSuccess(_BaseOutcome):
    category: Literal["partial_success"] = "partial_success"
    items: list[ItemResult]
    status: Optional[int] = None
    detail: Detail

    @property
    def succeeded(self) -> list[ItemResult]:
        return [item for item in self.items if item.ok]

    @property
    def failed(self) -> list[ItemResult]:
        return [item for item in self.items if not item.ok]

    def raise_for_outcome(self) -> "Outcome":
        raise PartialSuccessError(
            self.detail.message,
            items=[item.model_dump() for item in self.items],
            status=self.status,
        )


FailureReason = Literal["business", "transient_exhausted", "pagination_exhausted", "transport"]


class Failed(_BaseOutcome):
    category: Literal["failed"] = "failed"
    reason: FailureReason = "business"
    detail: Detail

    def raise_for_outcome(self) -> "Outcome":
        if self.reason == "transient_exhausted":
            raise TransientError(self.detail.message, status=self.detail.status)
        if self.reason == "pagination_exhausted":
            raise PaginationError(self.detail.message, code=self.detail.code or "pagination_exhausted")
        raise APIError(self.detail.message, code=self.detail.code or "api_error", status=self.detail.status)


class Authentication(_BaseOutcome):
    category: Literal["authentication"] = "authentication"
    detail: Detail

    def raise_for_outcome(self) -> "Outcome":
        raise AuthError(self.detail.message, code=self.detail.code or "auth_error")


class Invalid(_BaseOutcome):
    category: Literal["invalid"] = "invalid"
    problems: list[str]
    detail: Detail

    def raise_for_outcome(self) -> "Outcome":
        raise ValidationError(self.detail.message, problems=self.problems)


class Cancelled(_BaseOutcome):
    category: Literal["cancelled"] = "cancelled"
    detail: Detail
    items_fetched: int = 0

    def raise_for_outcome(self) -> "Outcome":
        raise CancelledError(self.detail.message)


Outcome = Annotated[
    Union[Complete, DryRun, PartialSuccess, Failed, Authentication, Invalid, Cancelled],
    Field(discriminator="category"),
]
