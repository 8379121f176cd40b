"""
cloudmgr: request orchestration for the cloud management API.

Authenticated, paginated, retried and optionally dry-run calls that
always resolve to exactly one typed Outcome.
"""

from cloudmgr.cancel import CancelToken
from cloudmgr.client import AsyncCloudClient, CloudClient
from cloudmgr.config import ClientConfig, load_config
from cloudmgr.errors import (
    APIError,
    AuthError,
    CancelledError,
    CloudMgrError,
    NoSessionError,
    PaginationError,
    PartialSuccessError,
    SessionError,
    TransientError,
    ValidationError,
)
from cloudmgr.models import (
    Authentication,
    Cancelled,
    Complete,
    Detail,
    DryRun,
    Failed,
    HttpMethod,
    Invalid,
    ItemResult,
    Outcome,
    PartialSuccess,
    RequestDescriptor,
    Session,
)
from cloudmgr.retry import RetryPolicy

__version__ = "0.1.0"
__all__ = [
    "APIError",
    "AsyncCloudClient",
    "AuthError",
    "Authentication",
    "CancelToken",
    "Cancelled",
    "CancelledError",
    "ClientConfig",
    "CloudClient",
    "CloudMgrError",
    "Complete",
    "Detail",
    "DryRun",
    "Failed",
    "HttpMethod",
    "Invalid",
    "ItemResult",
    "NoSessionError",
    "Outcome",
    "PaginationError",
    "PartialSuccess",
    "PartialSuccessError",
    "RequestDescriptor",
    "RetryPolicy",
    "Session",
    "SessionError",
    "TransientError",
    "ValidationError",
    "load_config",
]
