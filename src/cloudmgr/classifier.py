"""
Error classifier: maps raw transport results onto outcome categories.

The richest available message wins: a structured message in the response
body is preferred over the generic transport/HTTP text.
"""

import logging
from enum import Enum
from typing import Any, Optional

from cloudmgr.models.outcome import (
    Authentication,
    Complete,
    Detail,
    Failed,
    ItemResult,
    Outcome,
    PartialSuccess,
)
from cloudmgr.transport.http import RawResult

logger = logging.getLogger(__name__)

TRANSIENT_STATUSES = frozenset({408, 425, 429, 500, 502, 503, 504})
AUTH_STATUSES = frozenset({401, 403})
PARTIAL_STATUSES = frozenset({206, 207})

_ITEM_KEYS = ("items", "results", "responses")
_OK_WORDS = ("success", "succeeded", "ok", "completed", "created", "updated", "deleted")


class Bucket(str, Enum):
    SUCCESS = "success"
    PARTIAL = "partial"
    TRANSIENT = "transient"
    AUTH = "auth"
    TERMINAL = "terminal"


class DiagnosticContext:
    """Most recent failure detail, readable after any failed call."""

    def __init__(self) -> None:
        self.last_error: Optional[Detail] = None
        self.writes = 0

    def record(self, detail: Detail) -> None:
        self.last_error = detail
        self.writes += 1

    def clear(self, since: Optional[int] = None) -> None:
        """Forget the last error, unless something was recorded after ``since``."""
        if since is None or self.writes == since:
            self.last_error = None


# ---------------------------------------------------------------------------
# Body inspection
# ---------------------------------------------------------------------------


def _error_field(body: Any) -> Any:
    if isinstance(body, dict):
        return body.get("error")
    return None


def extract_message(body: Any) -> Optional[str]:
    """Pull a human-readable message out of an API error body."""
    if not isinstance(body, dict):
        return None
    # {"error": "message"} and {"error": {"message": "..."}}
    error = body.get("error")
    if isinstance(error, str) and error:
        return error
    if isinstance(error, dict):
        for key in ("message", "detail", "description"):
            if error.get(key):
                return str(error[key])
    for key in ("message", "detail", "error_description", "errorMessage"):
        value = body.get(key)
        if isinstance(value, str) and value:
            return value
    errors = body.get("errors")
    if isinstance(errors, list) and errors:
        first = errors[0]
        if isinstance(first, dict) and first.get("message"):
            return str(first["message"])
        if isinstance(first, str):
            return first
    return None


def extract_code(body: Any) -> Optional[str]:
    if not isinstance(body, dict):
        return None
    error = body.get("error")
    if isinstance(error, dict) and error.get("code") is not None:
        return str(error["code"])
    for key in ("code", "errorCode", "error_code"):
        if body.get(key) is not None:
            return str(body[key])
    errors = body.get("errors")
    if isinstance(errors, list) and errors and isinstance(errors[0], dict) and errors[0].get("code"):
        return str(errors[0]["code"])
    return None


def has_embedded_error(body: Any) -> bool:
    """True for a 2xx body that reports an application-level failure."""
    if not isinstance(body, dict):
        return False
    if body.get("error"):
        return True
    if isinstance(body.get("status"), str) and body["status"].lower() in ("error", "failed", "failure"):
        return True
    return body.get("success") is False


def unwrap(body: Any) -> Any:
    """Unwrap the ``{"status": "success", "data": ...}`` envelope."""
    if isinstance(body, dict) and "status" in body and "data" in body:
        return body["data"]
    return body


def _item_ok(raw: dict[str, Any]) -> bool:
    if "success" in raw:
        return bool(raw["success"])
    status = raw.get("status")
    if isinstance(status, int):
        return 200 <= status < 300
    if isinstance(status, str):
        return status.lower() in _OK_WORDS
    return not raw.get("error")


def extract_items(body: Any) -> Optional[list[ItemResult]]:
    """Per-item results of a batch response, or None when the body has none."""
    if not isinstance(body, dict):
        return None
    raw_items = next((body[k] for k in _ITEM_KEYS if isinstance(body.get(k), list)), None)
    if raw_items is None:
        return None
    items = []
    for raw in raw_items:
        if not isinstance(raw, dict):
            items.append(ItemResult(ok=True, data=raw))
            continue
        ok = _item_ok(raw)
        status = raw.get("status") if isinstance(raw.get("status"), int) else None
        item_id = raw.get("id", raw.get("itemId", raw.get("name")))
        items.append(ItemResult(
            id=str(item_id) if item_id is not None else None,
            ok=ok,
            status=status,
            code=None if ok else extract_code(raw),
            message=None if ok else extract_message(raw),
            data=raw,
        ))
    return items


# ---------------------------------------------------------------------------
# Classification
# ---------------------------------------------------------------------------


def classify_bucket(raw: RawResult, transient_statuses: frozenset[int] = TRANSIENT_STATUSES) -> Bucket:
    if raw.transport_failed or raw.status is None:
        return Bucket.TRANSIENT
    status = raw.status
    if status in AUTH_STATUSES:
        return Bucket.AUTH
    if status in transient_statuses or status >= 500:
        return Bucket.TRANSIENT
    if 200 <= status < 300:
        if status in PARTIAL_STATUSES:
            items = extract_items(raw.body)
            if items is not None and any(not item.ok for item in items):
                return Bucket.PARTIAL
        if has_embedded_error(raw.body):
            return Bucket.TERMINAL
        return Bucket.SUCCESS
    return Bucket.TERMINAL


def detail_for(raw: RawResult) -> Detail:
    """Build the richest Detail available for a failed result."""
    if raw.transport_failed:
        return Detail(message=raw.error or "Transport failure", code=raw.error_kind)
    message = extract_message(raw.body)
    if not message:
        message = f"HTTP {raw.status}: {raw.text[:200]}" if raw.text else f"HTTP {raw.status}"
    return Detail(message=message, code=extract_code(raw.body), status=raw.status)


class ErrorClassifier:
    def __init__(self, diagnostics: Optional[DiagnosticContext] = None):
        self.diagnostics = diagnostics or DiagnosticContext()

    def record(self, raw: RawResult) -> Detail:
        detail = detail_for(raw)
        self.diagnostics.record(detail)
        return detail

    def classify(self, raw: RawResult, bucket: Optional[Bucket] = None, pages: int = 1) -> Outcome:
        bucket = bucket or classify_bucket(raw)
        if bucket == Bucket.SUCCESS:
            return Complete(data=unwrap(raw.body), status=raw.status, pages=pages)

        if bucket == Bucket.PARTIAL:
            items = extract_items(raw.body) or []
            failed = [item for item in items if not item.ok]
            detail = detail_for(raw)
            if not extract_message(raw.body):
                first = failed[0].message if failed and failed[0].message else "item failed"
                detail = Detail(
                    message=f"{len(failed)} of {len(items)} items failed: {first}",
                    code=failed[0].code if failed else None,
                    status=raw.status,
                )
            self.diagnostics.record(detail)
            logger.info("Partial success: %d of %d items failed", len(failed), len(items))
            return PartialSuccess(items=items, status=raw.status, detail=detail)

        detail = self.record(raw)
        if bucket == Bucket.AUTH:
            return Authentication(detail=detail)
        if bucket == Bucket.TRANSIENT:
            return Failed(reason="transient_exhausted", detail=detail)
        return Failed(reason="business", detail=detail)
