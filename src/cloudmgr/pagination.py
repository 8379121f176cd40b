"""
Pagination aggregator: follows continuation cursors, links or offsets and
concatenates pages in fetch order.

Each page goes through the retry engine on its own, so a transient failure
on page 3 retries page 3 only.
"""

import logging
from dataclasses import dataclass
from typing import Any, Awaitable, Callable, Optional

from cloudmgr.cancel import CancelToken
from cloudmgr.classifier import Bucket, ErrorClassifier, unwrap
from cloudmgr.models.descriptor import RequestDescriptor
from cloudmgr.models.outcome import Cancelled, Complete, Detail, Failed, Outcome
from cloudmgr.retry import AttemptResult, RetryState

logger = logging.getLogger(__name__)

DEFAULT_PAGE_SIZE = 100
DEFAULT_MAX_PAGES = 100

_ITEM_KEYS = ("items", "data", "results", "value")
_CURSOR_KEYS = ("next_cursor", "nextCursor", "continuation_token", "continuationToken", "next_page_token")
_LINK_KEYS = ("next", "nextLink", "next_link", "@odata.nextLink")
_TOTAL_KEYS = ("total", "total_count", "totalCount")

PageFetcher = Callable[[RequestDescriptor], Awaitable[AttemptResult]]


@dataclass
class Page:
    items: list[Any]
    next: Optional[RequestDescriptor] = None
    marker: Optional[str] = None


def _first(mapping: dict[str, Any], keys: tuple[str, ...]) -> Any:
    for key in keys:
        if mapping.get(key) not in (None, ""):
            return mapping[key]
    return None


def read_page(descriptor: RequestDescriptor, body: Any) -> Page:
    """Split one page body into its items and the descriptor for the next page.

    Continuation keys are looked up on the outer envelope as well as on the
    unwrapped ``data``, so ``{"status": ..., "data": [...], "next_cursor": ...}``
    keeps its cursor.
    """
    inner = unwrap(body)
    outer = body if isinstance(body, dict) and inner is not body else {}
    if isinstance(inner, list):
        items, scope = inner, outer
    elif isinstance(inner, dict):
        items = next((inner[k] for k in _ITEM_KEYS if isinstance(inner.get(k), list)), [])
        scope = {**outer, **inner}
    else:
        items, scope = ([] if inner is None else [inner]), outer
    if not scope:
        return Page(items=items)

    meta = scope.get("pagination") or scope.get("metadata") or scope.get("meta") or {}
    if not isinstance(meta, dict):
        meta = {}

    cursor = _first(scope, _CURSOR_KEYS) or _first(meta, _CURSOR_KEYS)
    if cursor is not None:
        return Page(items=items, next=descriptor.with_params(cursor=cursor), marker=f"cursor:{cursor}")

    link = _first(scope, _LINK_KEYS) or _first(meta, _LINK_KEYS)
    links = scope.get("links")
    if link is None and isinstance(links, dict):
        link = links.get("next")
        if isinstance(link, dict):
            link = link.get("href")
    if isinstance(link, str) and link:
        if link.startswith("http") or link.startswith("/"):
            return Page(
                items=items,
                next=descriptor.model_copy(update={"uri": link, "params": {}}),
                marker=f"link:{link}",
            )
        return Page(items=items, next=descriptor.with_params(cursor=link), marker=f"cursor:{link}")

    total = _first(scope, _TOTAL_KEYS)
    if total is None:
        total = _first(meta, _TOTAL_KEYS)
    if total is not None and items:
        offset = scope.get("offset", meta.get("offset", descriptor.params.get("offset", 0))) or 0
        next_offset = int(offset) + len(items)
        if next_offset < int(total):
            return Page(items=items, next=descriptor.with_params(offset=next_offset), marker=f"offset:{next_offset}")

    return Page(items=items)


class Paginator:
    def __init__(
        self,
        fetch_page: PageFetcher,
        classifier: ErrorClassifier,
        page_size: int = DEFAULT_PAGE_SIZE,
        max_pages: int = DEFAULT_MAX_PAGES,
    ):
        self._fetch_page = fetch_page
        self._classifier = classifier
        self.page_size = page_size
        self.max_pages = max_pages

    def first_page(self, descriptor: RequestDescriptor) -> RequestDescriptor:
        if descriptor.skip_pagination_limit or "limit" in descriptor.params:
            return descriptor
        return descriptor.with_params(limit=self.page_size)

    def _cancelled(self, cancel: Optional[CancelToken], fetched: int) -> Cancelled:
        message = cancel.reason if cancel is not None else "Request cancelled"
        detail = Detail(message=message, code="cancelled")
        self._classifier.diagnostics.record(detail)
        return Cancelled(detail=detail, items_fetched=fetched)

    async def fetch_all(self, descriptor: RequestDescriptor, cancel: Optional[CancelToken] = None) -> Outcome:
        unbounded = descriptor.skip_pagination_limit
        current = self.first_page(descriptor)
        items: list[Any] = []
        seen: set[str] = set()
        pages = 0
        status: Optional[int] = None

        while True:
            if cancel is not None and cancel.cancelled:
                logger.info("%s: cancelled after %d pages", descriptor, pages)
                return self._cancelled(cancel, len(items))

            result = await self._fetch_page(current)
            if result.state == RetryState.CANCELLED:
                return self._cancelled(cancel, len(items))
            if result.state != RetryState.SUCCEEDED or result.bucket == Bucket.PARTIAL:
                return self._classifier.classify(result.raw, result.bucket, pages=pages + 1)

            pages += 1
            status = result.raw.status
            page = read_page(current, result.raw.body)
            items.extend(page.items)
            logger.debug("%s: page %d -> %d items", descriptor, pages, len(page.items))

            if page.next is None:
                return Complete(data=items, status=status, pages=pages)

            if page.marker in seen:
                return self._exhausted(f"Continuation {page.marker} repeated after page {pages}")
            if not unbounded and pages >= self.max_pages:
                return self._exhausted(f"Still more pages after the {self.max_pages}-page limit")
            seen.add(page.marker)
            current = page.next

    def _exhausted(self, message: str) -> Failed:
        detail = Detail(message=message, code="pagination_exhausted")
        self._classifier.diagnostics.record(detail)
        logger.warning(message)
        return Failed(reason="pagination_exhausted", detail=detail)
