"""
Platform Adapter contract

An adapter turns one platform's webhook or sync payload into canonical
InteractionDraft records. Malformed items are skipped and reported on the
NormalizationResult; only an unusable envelope raises AdapterError.

Sync payloads use a common envelope produced by ``fetch_resource``::

    {"object": "sync", "resource": "<kind>", "resource_id": "...",
     "context": {...}, "data": [...]}
"""
import base64
import json
import logging
import re
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from typing import Any, Callable, Dict, Iterable, List, Optional, Union

from social_inbox.core.config import get_settings
from social_inbox.core.errors import AdapterError, AuthError
from social_inbox.core.http_client import HTTPClient
from social_inbox.core import metrics
from social_inbox.integrations.constants import GOOGLE_TOKEN_URL, STAR_RATINGS

logger = logging.getLogger(__name__)

SYNC_ENVELOPE = "sync"


@dataclass
class InteractionDraft:
    """Normalized, not yet persisted interaction"""
    organization_id: str
    platform: str
    type: str
    platform_id: str
    content: str = ""
    connection_id: Optional[str] = None
    content_type: str = "text"
    language: Optional[str] = None
    platform_url: Optional[str] = None
    author_platform_id: Optional[str] = None
    author_name: str = "Anonymous"
    author_username: Optional[str] = None
    author_profile_url: Optional[str] = None
    author_avatar_url: Optional[str] = None
    author_verified: bool = False
    parent_id: Optional[str] = None
    thread_id: Optional[str] = None
    reply_count: int = 0
    has_replies: bool = False
    post_id: Optional[str] = None
    platform_metadata: Dict[str, Any] = field(default_factory=dict)
    rating: Optional[int] = None
    review_date: Optional[datetime] = None
    sentiment: Optional[str] = None
    platform_created_at: Optional[datetime] = None
    platform_updated_at: Optional[datetime] = None


@dataclass
class NormalizationResult:
    drafts: List[InteractionDraft] = field(default_factory=list)
    errors: List[AdapterError] = field(default_factory=list)

    def add_error(self, error: AdapterError):
        self.errors.append(error)
        metrics.adapter_item_errors_total.labels(platform=error.platform or "unknown").inc()
        logger.warning(f"Skipped {error.platform} item {error.item_id}: {error.message}")


@dataclass
class SyncResource:
    """A unit of sync work: one media's comments, one location's reviews, ..."""
    kind: str
    resource_id: str
    context: Dict[str, Any] = field(default_factory=dict)


@dataclass
class TokenRefresh:
    access_token: str
    expires_at: Optional[datetime] = None
    refresh_token: Optional[str] = None


_ITEM_ERRORS = (AdapterError, KeyError, TypeError, ValueError, AttributeError)
_FRACTION = re.compile(r"\.(\d+)")
_COMPACT_OFFSET = re.compile(r"([+-]\d{2})(\d{2})$")


def parse_timestamp(value: Any) -> Optional[datetime]:
    """Parse unix seconds or ISO-8601 (Z, +0000, any fraction length) into aware UTC."""
    if value is None or value == "":
        return None
    if isinstance(value, datetime):
        return value if value.tzinfo else value.replace(tzinfo=timezone.utc)
    if isinstance(value, (int, float)) or (isinstance(value, str) and value.isdigit()):
        return datetime.fromtimestamp(int(value), tz=timezone.utc)

    text = str(value).strip().replace("Z", "+00:00")
    text = _FRACTION.sub(lambda m: "." + m.group(1)[:6].ljust(6, "0"), text)
    text = _COMPACT_OFFSET.sub(r"\1:\2", text)
    parsed = datetime.fromisoformat(text)
    return parsed if parsed.tzinfo else parsed.replace(tzinfo=timezone.utc)


def parse_rating(value: Union[int, str, None]) -> Optional[int]:
    """Accept 1..5 as int, numeric string or enum name ("FIVE")."""
    if value is None:
        return None
    if isinstance(value, str):
        upper = value.strip().upper()
        if upper in STAR_RATINGS:
            return STAR_RATINGS[upper]
        if upper.isdigit():
            value = int(upper)
        else:
            raise ValueError(f"Unrecognized star rating: {value}")
    rating = int(value)
    if not 1 <= rating <= 5:
        raise ValueError(f"Star rating out of range: {rating}")
    return rating


def sentiment_from_rating(rating: Optional[int]) -> Optional[str]:
    if rating is None:
        return None
    if rating >= 4:
        return "positive"
    if rating <= 2:
        return "negative"
    return "neutral"


def decode_pubsub_message(payload: Dict[str, Any]) -> Dict[str, Any]:
    """
    Decode a Pub/Sub push body ``{"message": {"data": <base64 json>}}``.

    Already decoded notifications (no ``message`` key) are returned as-is.
    """
    if not isinstance(payload, dict):
        raise AdapterError("Pub/Sub payload must be an object")
    message = payload.get("message")
    if message is None:
        return payload
    try:
        raw = base64.b64decode(message["data"])
        decoded = json.loads(raw)
    except (KeyError, TypeError, ValueError) as e:
        raise AdapterError(f"Undecodable Pub/Sub message: {e}") from e
    if not isinstance(decoded, dict):
        raise AdapterError("Pub/Sub message data is not an object")
    return decoded


def is_sync_envelope(payload: Dict[str, Any]) -> bool:
    return isinstance(payload, dict) and payload.get("object") == SYNC_ENVELOPE


def sync_envelope(resource: SyncResource, data: List[Dict[str, Any]]) -> Dict[str, Any]:
    return {
        "object": SYNC_ENVELOPE,
        "resource": resource.kind,
        "resource_id": resource.resource_id,
        "context": resource.context,
        "data": data,
    }


class PlatformAdapter(ABC):
    """Base class for platform adapters"""

    platform: str = ""

    def __init__(self, http_client: Optional[HTTPClient] = None):
        self._http = http_client

    @property
    def http(self) -> HTTPClient:
        if self._http is None:
            self._http = HTTPClient()
        return self._http

    @abstractmethod
    def normalize(self, raw_payload: Dict[str, Any], organization_id: str,
                  connection_id: Optional[str] = None) -> NormalizationResult:
        """Convert a webhook or sync payload into drafts."""

    async def hydrate_webhook(self, raw_payload: Dict[str, Any], connection) -> Dict[str, Any]:
        """Return a normalizable payload; notification-only platforms fetch the referenced resource."""
        return raw_payload

    async def list_sync_resources(self, connection) -> List[SyncResource]:
        return []

    async def fetch_resource(self, connection, resource: SyncResource) -> Dict[str, Any]:
        raise NotImplementedError(f"{self.platform} does not support sync")

    async def refresh_access_token(self, connection) -> TokenRefresh:
        raise AuthError(
            f"{self.platform} tokens cannot be refreshed; reconnect the account",
            platform=self.platform,
            connection_id=getattr(connection, "id", None)
        )

    @abstractmethod
    async def post_reply(self, connection, interaction, text: str) -> Dict[str, Any]:
        """Publish a reply; returns {"platform_response_id": ...}."""

    # Helpers shared by adapters

    def _require_entries(self, raw_payload: Dict[str, Any]) -> List[Dict[str, Any]]:
        if not isinstance(raw_payload, dict):
            raise AdapterError("Payload must be an object", platform=self.platform)
        entries = raw_payload.get("entry")
        if not isinstance(entries, list):
            raise AdapterError("Payload has no entry list", platform=self.platform)
        return entries

    def _require_sync_data(self, raw_payload: Dict[str, Any]) -> List[Dict[str, Any]]:
        data = raw_payload.get("data")
        if not isinstance(data, list):
            raise AdapterError("Sync payload has no data list", platform=self.platform)
        return data

    def _collect(self, result: NormalizationResult, items: Iterable[Any],
                 build: Callable[[Any], Union[InteractionDraft, List[InteractionDraft], None]],
                 item_key: str = "id"):
        """Build drafts item by item; a failing item is recorded and skipped."""
        for item in items:
            try:
                built = build(item)
            except _ITEM_ERRORS as e:
                item_id = item.get(item_key) if isinstance(item, dict) else None
                message = e.message if isinstance(e, AdapterError) else f"{type(e).__name__}: {e}"
                result.add_error(AdapterError(message, platform=self.platform, item_id=item_id))
                continue
            if built is None:
                continue
            if isinstance(built, list):
                result.drafts.extend(built)
            else:
                result.drafts.append(built)

    @staticmethod
    def _conversation_messages(conversation: Dict[str, Any]) -> List[Dict[str, Any]]:
        messages = (conversation.get("messages") or {}).get("data", [])
        if not isinstance(messages, list):
            raise TypeError("conversation messages must be a list")
        return messages

    def _require(self, item: Dict[str, Any], key: str) -> Any:
        value = item.get(key) if isinstance(item, dict) else None
        if value in (None, ""):
            raise AdapterError(f"Missing required field '{key}'", platform=self.platform)
        return value


class GoogleOAuthMixin:
    """Refresh flow shared by Google-hosted platforms"""

    async def refresh_access_token(self, connection) -> TokenRefresh:
        if not connection.refresh_token:
            raise AuthError(
                "Refresh token not available",
                platform=self.platform,
                connection_id=connection.id
            )
        settings = get_settings()
        data = await self.http.post_json(GOOGLE_TOKEN_URL, data={
            "client_id": settings.google_client_id,
            "client_secret": settings.google_client_secret,
            "refresh_token": connection.refresh_token,
            "grant_type": "refresh_token",
        })
        expires_at = None
        if data.get("expires_in"):
            expires_at = datetime.now(timezone.utc) + timedelta(seconds=int(data["expires_in"]))
        return TokenRefresh(access_token=data["access_token"], expires_at=expires_at,
                            refresh_token=data.get("refresh_token"))

    def _auth_headers(self, connection) -> Dict[str, str]:
        return {"Authorization": f"Bearer {connection.access_token}"}
