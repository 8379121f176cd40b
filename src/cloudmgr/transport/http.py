"""
REST transport over httpx: one bounded-timeout request per call, no retries.

``send`` never raises for HTTP status codes; the caller classifies the
``RawResult``. Timeouts and connection failures are reported through
``error_kind`` so they can be retried as transient.
"""

import asyncio
import logging
from dataclasses import dataclass, field
from typing import Any, Optional

import httpx

from cloudmgr.config import DEFAULT_BASE_URL
from cloudmgr.models.descriptor import RequestDescriptor

logger = logging.getLogger(__name__)

DEFAULT_TIMEOUT = 30.0
USER_AGENT = "cloudmgr-sdk/0.1.0"


@dataclass
class RawResult:
    """Raw transport result for a single attempt."""
    status: Optional[int] = None
    body: Any = None
    headers: dict[str, str] = field(default_factory=dict)
    text: str = ""
    error: Optional[str] = None
    error_kind: Optional[str] = None  # "timeout" | "network"

    @property
    def transport_failed(self) -> bool:
        return self.error_kind is not None


def base_headers() -> dict[str, str]:
    return {"User-Agent": USER_AGENT, "Accept": "application/json"}


def auth_headers(token: Optional[str], has_body: bool) -> dict[str, str]:
    headers: dict[str, str] = {}
    if has_body:
        headers["Content-Type"] = "application/json"
    if token:
        headers["Authorization"] = f"Bearer {token}"
    return headers


class HttpClient:
    def __init__(
        self,
        base_url: str = DEFAULT_BASE_URL,
        timeout: float = DEFAULT_TIMEOUT,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self._base_url = base_url.rstrip("/")
        self._timeout = timeout
        self._client = httpx.AsyncClient(
            base_url=self._base_url,
            headers=base_headers(),
            timeout=httpx.Timeout(timeout),
            transport=transport,
        )

    @property
    def base_url(self) -> str:
        return self._base_url

    def build_url(self, uri: str) -> str:
        if uri.startswith("http://") or uri.startswith("https://"):
            return uri
        return f"{self._base_url}/{uri.lstrip('/')}"

    def same_origin(self, url: str) -> bool:
        target, base = httpx.URL(url), httpx.URL(self._base_url)
        return (target.scheme, target.host, target.port) == (base.scheme, base.host, base.port)

    @staticmethod
    def _decode(resp: httpx.Response) -> Any:
        if not resp.content:
            return None
        try:
            return resp.json()
        except ValueError:
            return None

    async def _request(self, method: str, url: str, **kwargs: Any) -> RawResult:
        """One request, bounded by ``timeout`` end to end, including the body read."""
        try:
            resp = await asyncio.wait_for(self._client.request(method, url, **kwargs), self._timeout)
        except httpx.TimeoutException as e:
            logger.debug("Timeout on %s %s: %s", method, url, e)
            return RawResult(error=f"Request timed out: {e}", error_kind="timeout")
        except asyncio.TimeoutError:
            logger.debug("Timeout on %s %s after %ss", method, url, self._timeout)
            return RawResult(error=f"Request timed out after {self._timeout}s", error_kind="timeout")
        except httpx.TransportError as e:
            logger.debug("Connection error on %s %s: %s", method, url, e)
            return RawResult(error=f"Connection error: {e}", error_kind="network")

        logger.debug("%s %s -> HTTP %s", method, url, resp.status_code)
        return RawResult(
            status=resp.status_code,
            body=self._decode(resp),
            headers=dict(resp.headers),
            text=resp.text[:500],
        )

    async def send(self, descriptor: RequestDescriptor, token: Optional[str] = None) -> RawResult:
        """Issue one HTTP request for ``descriptor``.

        The bearer token is only attached when the URL shares the base URL's
        origin; absolute links to other hosts go out unauthenticated.
        """
        url = self.build_url(descriptor.uri)
        if token and not self.same_origin(url):
            logger.warning("Not sending credentials to foreign origin %s", httpx.URL(url).host)
            token = None
        has_body = descriptor.body is not None
        params = {k: v for k, v in descriptor.params.items() if v is not None}
        return await self._request(
            descriptor.method.value,
            url,
            params=params or None,
            json=descriptor.body if has_body else None,
            headers=auth_headers(token, has_body),
        )

    async def post_form(self, path: str, data: dict[str, str]) -> RawResult:
        """Unauthenticated form POST, used for the token endpoint."""
        return await self._request("POST", self.build_url(path), data=data)

    async def close(self) -> None:
        await self._client.aclose()
