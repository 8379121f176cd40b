from cloudmgr.models.descriptor import HttpMethod, RequestDescriptor
from cloudmgr.models.outcome import (
    Authentication,
    Cancelled,
    Complete,
    Detail,
    DryRun,
    Failed,
    Invalid,
    ItemResult,
    Outcome,
    PartialSuccess,
    RenderedRequest,
)
from cloudmgr.models.session import Credentials, Session

__all__ = [
    "Authentication",
    "Cancelled",
    "Complete",
    "Credentials",
    "Detail",
    "DryRun",
    "Failed",
    "HttpMethod",
    "Invalid",
    "ItemResult",
    "Outcome",
    "PartialSuccess",
    "RenderedRequest",
    "RequestDescriptor",
    "Session",
]
