"""
Request descriptor: one logical call against the management API.
"""

import re
from enum import Enum
from typing import Any, Optional

from pydantic import BaseModel, ConfigDict

from cloudmgr.models.session import Session

WORKSPACE_PLACEHOLDER = "{workspace_id}"
_PLACEHOLDER_RE = re.compile(r"\{[A-Za-z_][A-Za-z0-9_]*\}")


class HttpMethod(str, Enum):
    GET = "GET"
    POST = "POST"
    PUT = "PUT"
    PATCH = "PATCH"
    DELETE = "DELETE"
    HEAD = "HEAD"

    @property
    def is_mutating(self) -> bool:
        return self in (HttpMethod.POST, HttpMethod.PUT, HttpMethod.PATCH)


class RequestDescriptor(BaseModel):
    """Method, URI, body and option flags for one call.

    Descriptors are frozen; pagination derives a new one per page with
    ``with_params``.
    """
    model_config = ConfigDict(frozen=True)

    method: HttpMethod
    uri: str
    body: Optional[Any] = None
    params: dict[str, Any] = {}
    dry_run: bool = False
    skip_pagination_limit: bool = False
    skip_session_check: bool = False
    collection: bool = False
    workspace_scoped: bool = False

    @property
    def needs_workspace(self) -> bool:
        return self.workspace_scoped or WORKSPACE_PLACEHOLDER in self.uri

    def validate_request(self) -> list[str]:
        """Return a list of problems; empty when the descriptor is well-formed."""
        problems: list[str] = []
        if not self.uri or not self.uri.strip():
            problems.append("uri is required")
        if self.method.is_mutating and self.body is None:
            problems.append(f"{self.method.value} requires a body")
        if self.method in (HttpMethod.GET, HttpMethod.HEAD) and self.body is not None:
            problems.append(f"{self.method.value} must not carry a body")
        if self.collection and self.method != HttpMethod.GET:
            problems.append("collection requests must use GET")
        leftover = [p for p in _PLACEHOLDER_RE.findall(self.uri) if p != WORKSPACE_PLACEHOLDER]
        if leftover:
            problems.append(f"unresolved uri placeholders: {', '.join(leftover)}")
        return problems

    def with_params(self, **params: Any) -> "RequestDescriptor":
        merged = {**self.params, **{k: v for k, v in params.items() if v is not None}}
        return self.model_copy(update={"params": merged})

    def resolve(self, session: Optional[Session]) -> "RequestDescriptor":
        """Substitute the selected workspace into the URI."""
        if WORKSPACE_PLACEHOLDER not in self.uri or session is None or not session.workspace_id:
            return self
        return self.model_copy(update={"uri": self.uri.replace(WORKSPACE_PLACEHOLDER, session.workspace_id)})

    def __str__(self) -> str:
        return f"{self.method.value} {self.uri}"
