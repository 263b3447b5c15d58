"""
Inbox Error Taxonomy

Typed errors raised by the ingestion, enrichment and routing pipeline.
Each error carries a stable code used for structured API responses and
for dead-letter categorization.
"""
from typing import Any, Dict, Optional


class InboxError(Exception):
    """Base class for pipeline errors"""

    code = "inbox_error"
    retryable = False

    def __init__(self, message: str, *, details: Optional[Dict[str, Any]] = None):
        super().__init__(message)
        self.message = message
        self.details = details or {}

    def to_dict(self) -> Dict[str, Any]:
        payload = {"code": self.code, "message": self.message}
        if self.details:
            payload["details"] = self.details
        return payload


class AdapterError(InboxError):
    """Malformed or unexpected platform payload"""

    code = "adapter_error"

    def __init__(self, message: str, *, platform: Optional[str] = None,
                 item_id: Optional[str] = None, details: Optional[Dict[str, Any]] = None):
        super().__init__(message, details=details)
        self.platform = platform
        self.item_id = item_id


class AuthError(InboxError):
    """Expired or invalid platform credentials"""

    code = "auth_error"

    def __init__(self, message: str, *, platform: Optional[str] = None,
                 connection_id: Optional[str] = None, details: Optional[Dict[str, Any]] = None):
        super().__init__(message, details=details)
        self.platform = platform
        self.connection_id = connection_id


class PlatformAPIError(InboxError):
    """Platform API call failed for a non-auth reason"""

    code = "platform_api_error"
    retryable = True

    def __init__(self, message: str, *, status_code: Optional[int] = None,
                 details: Optional[Dict[str, Any]] = None):
        super().__init__(message, details=details)
        self.status_code = status_code


class EnrichmentError(InboxError):
    """AI provider call failed, timed out or returned nothing usable"""

    code = "enrichment_error"

    def __init__(self, message: str, *, stage: Optional[str] = None,
                 details: Optional[Dict[str, Any]] = None):
        super().__init__(message, details=details)
        self.stage = stage


class RoutingError(InboxError):
    """No agent available or a routing side effect failed"""

    code = "routing_error"


class PersistenceError(InboxError):
    """Storage unavailable; fails the whole task so it can be retried"""

    code = "persistence_error"
    retryable = True


class NotFoundError(InboxError):
    """Referenced record does not exist in the caller's organization"""

    code = "not_found"


class ConflictError(InboxError):
    """Operation not allowed in the record's current state"""

    code = "conflict"
