"""
Dry-run renderer: shows the request that would be sent, without sending it.

The bearer token is needed to prove the request is complete but is never
written into the rendered output.
"""

from typing import Optional

from cloudmgr.models.descriptor import RequestDescriptor
from cloudmgr.models.outcome import RenderedRequest
from cloudmgr.models.session import Session
from cloudmgr.transport.http import auth_headers, base_headers

TOKEN_MASK = "********"


def mask_headers(headers: dict[str, str]) -> dict[str, str]:
    masked = {}
    for name, value in headers.items():
        if name.lower() == "authorization":
            scheme = value.split(" ", 1)[0] if " " in value else "Bearer"
            masked[name] = f"{scheme} {TOKEN_MASK}"
        else:
            masked[name] = value
    return masked


def render(descriptor: RequestDescriptor, session: Optional[Session], base_url: str) -> RenderedRequest:
    resolved = descriptor.resolve(session)
    if resolved.uri.startswith("http://") or resolved.uri.startswith("https://"):
        url = resolved.uri
    else:
        url = f"{base_url.rstrip('/')}/{resolved.uri.lstrip('/')}"
    token = session.access_token if session is not None else None
    headers = {**base_headers(), **auth_headers(token, resolved.body is not None)}
    return RenderedRequest(
        method=resolved.method.value,
        url=url,
        headers=mask_headers(headers),
        params={k: v for k, v in resolved.params.items() if v is not None},
        body=resolved.body,
    )
