"""
Ingestion Dispatcher

Entry point for both ingestion paths:

- webhook: a single platform payload is normalized and upserted
- sync: a connection's candidate resources are fetched one by one

Every interaction created by a dispatch call gets exactly one enrichment
task. Per-item and per-resource failures are logged and skipped.
"""
import logging
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, List, Optional, Set

from sqlalchemy.orm import Session

from social_inbox.core import metrics
from social_inbox.core.dead_letters import dead_letter
from social_inbox.core.errors import AuthError, InboxError
from social_inbox.db.models import Interaction, PlatformConnection
from social_inbox.integrations.base import NormalizationResult
from social_inbox.integrations.registry import AdapterRegistry
from social_inbox.services.connection_service import ConnectionService
from social_inbox.services.persistence_gate import InteractionRepository

logger = logging.getLogger(__name__)

EnrichmentScheduler = Callable[[str], Any]

# Platforms whose webhooks only reference a resource that must be fetched
NOTIFICATION_ONLY_PLATFORMS = ("google", "youtube")

# Failures that end a sync run or one of its resources without escaping the run
SYNC_ERRORS = (InboxError, KeyError, TypeError, ValueError)


def schedule_enrichment_task(interaction_id: str):
    """Publish enrich_interaction on the enrichment queue with bounded publish retries."""
    from social_inbox.tasks.enrichment_tasks import enrich_interaction

    return enrich_interaction.apply_async(
        args=[interaction_id],
        queue="enrichment",
        retry=True,
        retry_policy={
            "max_retries": 3,
            "interval_start": 2,
            "interval_step": 2,
            "interval_max": 8,
        }
    )


@dataclass
class SyncReport:
    connection_id: str
    platform: str
    success: bool = True
    resources: int = 0
    seen: int = 0
    created: int = 0
    item_errors: int = 0
    failed_resources: List[str] = field(default_factory=list)
    error: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "connection_id": self.connection_id,
            "platform": self.platform,
            "success": self.success,
            "resources": self.resources,
            "seen": self.seen,
            "created": self.created,
            "item_errors": self.item_errors,
            "failed_resources": self.failed_resources,
            "error": self.error,
        }


class IngestionDispatcher:
    """Routes payloads through adapters and the persistence gate."""

    def __init__(self, db: Session, registry: Optional[AdapterRegistry] = None,
                 schedule_enrichment: Optional[EnrichmentScheduler] = None):
        self.db = db
        self.registry = registry or AdapterRegistry()
        self.repository = InteractionRepository(db)
        self.connections = ConnectionService(db)
        self.schedule_enrichment = schedule_enrichment or schedule_enrichment_task

    async def dispatch(self, platform: str, raw_payload: Dict[str, Any], organization_id: str,
                       connection: Optional[PlatformConnection] = None) -> List[Interaction]:
        """
        Process one webhook payload.

        Args:
            platform: Platform identifier
            raw_payload: Webhook body as received
            organization_id: Tenant owning the payload
            connection: Owning connection, looked up when omitted

        Returns:
            Interactions handled by this call (created or already known)

        Raises:
            AdapterError: the payload envelope is unusable
            AuthError: hydration needed a token that could not be refreshed
            PersistenceError: storage unavailable
        """
        adapter = self.registry.get(platform)
        if connection is None:
            connection = self.connections.find_active(organization_id, platform)

        payload = raw_payload
        if platform in NOTIFICATION_ONLY_PLATFORMS:
            if connection is None:
                logger.warning(f"No active {platform} connection for organization {organization_id}; dropping notification")
                return []
            await self.connections.ensure_valid_token(connection, adapter)
            payload = await adapter.hydrate_webhook(raw_payload, connection)

        result = adapter.normalize(payload, organization_id, connection.id if connection else None)
        handled, created_ids = self._persist(result)
        self._schedule(created_ids, organization_id)

        logger.info(
            f"Dispatched {platform} payload for organization {organization_id}: "
            f"{len(handled)} handled, {len(created_ids)} new, {len(result.errors)} skipped"
        )
        return handled

    async def sync_connection(self, connection: PlatformConnection) -> SyncReport:
        """
        Pull candidate resources for a connection and ingest them.

        Per-resource failures do not abort the run. Sync statistics are
        written once at the end.
        """
        adapter = self.registry.get(connection.platform)
        report = SyncReport(connection_id=connection.id, platform=connection.platform)
        failure: Optional[Exception] = None
        created_ids: List[str] = []

        try:
            await self.connections.ensure_valid_token(connection, adapter)
            resources = await adapter.list_sync_resources(connection)
        except SYNC_ERRORS as e:
            logger.error(f"Sync of connection {connection.id} could not start: {type(e).__name__}: {e}")
            return self._finish_sync(connection, report, created_ids, error=e)

        report.resources = len(resources)
        for resource in resources:
            try:
                payload = await adapter.fetch_resource(connection, resource)
                result = adapter.normalize(payload, connection.organization_id, connection.id)
            except AuthError as e:
                # Every remaining call would fail the same way
                report.failed_resources.append(resource.resource_id)
                failure = e
                logger.error(f"Auth failure syncing {resource.kind} {resource.resource_id}: {e}")
                break
            except SYNC_ERRORS as e:
                report.failed_resources.append(resource.resource_id)
                failure = e
                logger.error(f"Failed to sync {resource.kind} {resource.resource_id} for connection {connection.id}: {e}")
                continue

            handled, new_ids = self._persist(result)
            report.seen += len(handled)
            report.item_errors += len(result.errors)
            created_ids.extend(new_ids)

        all_failed = bool(resources) and len(report.failed_resources) == len(resources)
        if isinstance(failure, AuthError) or all_failed:
            return self._finish_sync(connection, report, created_ids, error=failure)
        return self._finish_sync(connection, report, created_ids)

    def _finish_sync(self, connection: PlatformConnection, report: SyncReport, created_ids: List[str],
                     error: Optional[Exception] = None) -> SyncReport:
        report.created = len(created_ids)
        report.success = error is None
        report.error = str(error) if error else None

        self.connections.record_sync_result(connection, success=report.success, count=report.created, error=error)
        metrics.sync_runs_total.labels(
            platform=connection.platform, status="success" if report.success else "failure"
        ).inc()
        self._schedule(created_ids, connection.organization_id)

        logger.info(
            f"Sync of connection {connection.id} finished: success={report.success} "
            f"resources={report.resources} created={report.created} failed={len(report.failed_resources)}"
        )
        return report

    def _persist(self, result: NormalizationResult):
        handled: List[Interaction] = []
        created_ids: List[str] = []
        for draft in result.drafts:
            upsert = self.repository.upsert(draft)
            handled.append(upsert.interaction)
            if upsert.created:
                created_ids.append(upsert.interaction.id)
        return handled, created_ids

    def _schedule(self, interaction_ids: List[str], organization_id: str):
        scheduled: Set[str] = set()
        for interaction_id in interaction_ids:
            if interaction_id in scheduled:
                continue
            scheduled.add(interaction_id)
            try:
                self.schedule_enrichment(interaction_id)
            except Exception as e:
                # The row is already committed; leave a trail for operators instead of failing ingestion
                logger.error(f"Could not schedule enrichment for interaction {interaction_id}: {e}")
                dead_letter(
                    task_id=f"enrich-{interaction_id}",
                    task_name="social_inbox.tasks.enrichment_tasks.enrich_interaction",
                    queue="enrichment",
                    error=e,
                    organization_id=organization_id,
                    args=(interaction_id,)
                )
