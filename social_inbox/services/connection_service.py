"""
Platform connection bookkeeping: token validity, sync statistics and error log
"""
import logging
from datetime import datetime, timedelta, timezone
from typing import Dict, List, Optional

from sqlalchemy.orm import Session

from social_inbox.core.errors import AuthError, InboxError
from social_inbox.db.models import PlatformConnection, as_utc
from social_inbox.integrations.base import PlatformAdapter

logger = logging.getLogger(__name__)

# Refresh slightly before the platform's own deadline
TOKEN_EXPIRY_MARGIN = timedelta(minutes=5)


class ConnectionService:
    """Service methods for PlatformConnection records"""

    def __init__(self, db: Session):
        self.db = db
        # platform -> {account key: connection}, built once per service instance
        self._webhook_index: Dict[str, Dict[str, PlatformConnection]] = {}

    def get(self, connection_id: str, organization_id: Optional[str] = None) -> Optional[PlatformConnection]:
        query = self.db.query(PlatformConnection).filter(PlatformConnection.id == connection_id)
        if organization_id is not None:
            query = query.filter(PlatformConnection.organization_id == organization_id)
        return query.first()

    def find_active(self, organization_id: str, platform: str) -> Optional[PlatformConnection]:
        return self.db.query(PlatformConnection).filter(
            PlatformConnection.organization_id == organization_id,
            PlatformConnection.platform == platform,
            PlatformConnection.is_active.is_(True)
        ).order_by(PlatformConnection.created_at).first()

    def resolve_webhook_connection(self, platform: str, account_key: str) -> Optional[PlatformConnection]:
        """
        Find the active connection owning a webhook account key.

        Meta entries carry the page/business account id (or WhatsApp phone
        number id), Google notifications a location id, YouTube a channel id.
        Active connections of the platform are loaded once per service
        instance, so a multi-entry webhook costs a single query.
        """
        index = self._webhook_index.get(platform)
        if index is None:
            index = self._build_webhook_index(platform)
            self._webhook_index[platform] = index
        return index.get(account_key)

    def _build_webhook_index(self, platform: str) -> Dict[str, PlatformConnection]:
        index: Dict[str, PlatformConnection] = {}
        candidates = self.db.query(PlatformConnection).filter(
            PlatformConnection.platform == platform,
            PlatformConnection.is_active.is_(True)
        ).order_by(PlatformConnection.created_at).all()
        for connection in candidates:
            data = connection.platform_data or {}
            keys = [
                connection.platform_user_id,
                data.get("business_account_id"),
                data.get("page_id"),
                data.get("phone_number_id"),
                data.get("channel_id"),
            ]
            keys.extend(data.get("location_ids") or [])
            for key in keys:
                if key not in (None, ""):
                    index.setdefault(str(key), connection)
        return index

    def list_auto_sync(self) -> List[PlatformConnection]:
        connections = self.db.query(PlatformConnection).filter(
            PlatformConnection.is_active.is_(True),
            PlatformConnection.status.in_(("connected", "error"))
        ).all()
        return [c for c in connections if (c.settings or {}).get("auto_sync", True)]

    @staticmethod
    def is_token_expired(connection: PlatformConnection, now: Optional[datetime] = None) -> bool:
        expires_at = as_utc(connection.token_expires_at)
        if expires_at is None:
            return False
        now = now or datetime.now(timezone.utc)
        return expires_at <= now + TOKEN_EXPIRY_MARGIN

    async def ensure_valid_token(self, connection: PlatformConnection, adapter: PlatformAdapter) -> str:
        """
        Return a usable access token, refreshing once if it has expired.

        Raises:
            AuthError: refresh impossible or rejected; the connection is marked token_expired
        """
        if not self.is_token_expired(connection):
            return connection.access_token

        logger.info(f"Refreshing expired token for connection {connection.id} ({connection.platform})")
        try:
            refreshed = await adapter.refresh_access_token(connection)
        except AuthError as e:
            e.connection_id = e.connection_id or connection.id
            self.mark_token_expired(connection, e)
            raise

        connection.access_token = refreshed.access_token
        connection.token_expires_at = refreshed.expires_at
        if refreshed.refresh_token:
            connection.refresh_token = refreshed.refresh_token
        self.db.commit()
        return connection.access_token

    def mark_token_expired(self, connection: PlatformConnection, error: InboxError):
        connection.status = "token_expired"
        connection.last_error = error.message
        connection.last_error_code = error.code
        connection.last_error_at = datetime.now(timezone.utc)
        self.db.commit()
        logger.warning(f"Connection {connection.id} marked token_expired: {error.message}")

    def record_sync_result(self, connection: PlatformConnection, *, success: bool, count: int = 0,
                           error: Optional[Exception] = None):
        """Write the run's sync statistics; called exactly once per sync run."""
        now = datetime.now(timezone.utc)
        connection.last_sync_at = now
        if success:
            connection.last_sync_count = count
            connection.total_interactions_synced = (connection.total_interactions_synced or 0) + count
            connection.failed_sync_attempts = 0
            connection.status = "connected"
        else:
            connection.failed_sync_attempts = (connection.failed_sync_attempts or 0) + 1
            connection.last_sync_count = count
            connection.total_interactions_synced = (connection.total_interactions_synced or 0) + count
            self._log_error(connection, error, now)
            connection.status = "token_expired" if isinstance(error, AuthError) else "error"
        self.db.commit()

    @staticmethod
    def _log_error(connection: PlatformConnection, error: Optional[Exception], now: datetime):
        connection.last_error = str(error) if error else "Sync failed"
        connection.last_error_code = getattr(error, "code", None) or (type(error).__name__ if error else None)
        connection.last_error_at = now
