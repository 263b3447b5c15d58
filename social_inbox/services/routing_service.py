"""
Routing Engine

Rule-based routing after enrichment:

1. auto-reply eligible interactions with a draft go to the auto-reply hook
2. everything else is assigned to the least-loaded active agent
3. negative comments on a post are checked for a spike and escalated

Assignment and notification are separate side effects; a failure in one is
logged and recorded on the outcome without undoing the other.
"""
import logging
from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from typing import Any, Callable, Dict, List, Optional

from sqlalchemy import func
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from social_inbox.core import metrics
from social_inbox.core.config import get_settings
from social_inbox.core.errors import InboxError, RoutingError
from social_inbox.db.models import Interaction, User, OPEN_WORKLOAD_STATUSES
from social_inbox.services.notification_service import NotificationService
from social_inbox.services.persistence_gate import InteractionRepository

logger = logging.getLogger(__name__)

AutoReplyHook = Callable[[Interaction], Any]

ESCALATION_ROLES = ("manager", "admin")


def log_auto_reply_candidate(interaction: Interaction):
    """Default auto-reply hook: sending is disabled, the candidate is only logged."""
    logger.info(
        f"Interaction {interaction.id} is auto-reply eligible "
        f"({interaction.platform} {interaction.type}); sending is disabled"
    )


@dataclass
class RoutingOutcome:
    interaction_id: str
    decision: str = "unassigned"  # auto_reply, assigned, unassigned, already_assigned
    assigned_to: Optional[int] = None
    escalated: bool = False
    spike_count: int = 0
    notified_user_id: Optional[int] = None
    errors: List[InboxError] = field(default_factory=list)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "interaction_id": self.interaction_id,
            "decision": self.decision,
            "assigned_to": self.assigned_to,
            "escalated": self.escalated,
            "spike_count": self.spike_count,
            "notified_user_id": self.notified_user_id,
            "errors": [e.to_dict() for e in self.errors],
        }


class RoutingEngine:
    """Assignment, auto-reply and escalation rules"""

    def __init__(self, db: Session, notifications: Optional[NotificationService] = None,
                 auto_reply_hook: Optional[AutoReplyHook] = None,
                 now: Optional[Callable[[], datetime]] = None, settings=None):
        self.db = db
        self.settings = settings or get_settings()
        self.repository = InteractionRepository(db)
        self.notifications = notifications or NotificationService(db)
        self.auto_reply_hook = auto_reply_hook or log_auto_reply_candidate
        self._now = now or (lambda: datetime.now(timezone.utc))

    def route(self, interaction: Interaction) -> RoutingOutcome:
        """
        Route an enriched interaction.

        Args:
            interaction: Interaction with enrichment fields populated

        Returns:
            RoutingOutcome describing what happened; routing problems are
            recorded on it rather than raised
        """
        outcome = RoutingOutcome(interaction_id=interaction.id)

        if interaction.auto_reply_eligible and interaction.ai_suggestion:
            outcome.decision = "auto_reply"
            try:
                self.auto_reply_hook(interaction)
            except Exception as e:
                logger.error(f"Auto-reply hook failed for interaction {interaction.id}: {e}")
                outcome.errors.append(RoutingError(f"Auto-reply hook failed: {e}"))
        elif interaction.assigned_to is not None:
            outcome.decision = "already_assigned"
            outcome.assigned_to = interaction.assigned_to
        else:
            self._assign(interaction, outcome)

        self._check_negative_spike(interaction, outcome)

        metrics.routing_decisions_total.labels(decision=outcome.decision).inc()
        logger.info(
            f"Routed interaction {interaction.id}: decision={outcome.decision} "
            f"assigned_to={outcome.assigned_to} escalated={outcome.escalated}"
        )
        return outcome

    def agent_loads(self, organization_id: str) -> Dict[int, int]:
        """Open workload per active agent, in stable id order."""
        agents = self._active_agents(organization_id)
        if not agents:
            return {}
        counts = dict(
            self.db.query(Interaction.assigned_to, func.count(Interaction.id)).filter(
                Interaction.assigned_to.in_([agent.id for agent in agents]),
                Interaction.status.in_(OPEN_WORKLOAD_STATUSES)
            ).group_by(Interaction.assigned_to).all()
        )
        return {agent.id: counts.get(agent.id, 0) for agent in agents}

    def _active_agents(self, organization_id: str) -> List[User]:
        return self.db.query(User).filter(
            User.organization_id == organization_id,
            User.role == "agent",
            User.is_active.is_(True)
        ).order_by(User.id).all()

    def _assign(self, interaction: Interaction, outcome: RoutingOutcome):
        loads = self.agent_loads(interaction.organization_id)
        if not loads:
            logger.warning(f"No active agents in organization {interaction.organization_id}; "
                           f"interaction {interaction.id} left unassigned")
            outcome.errors.append(RoutingError("No active agents available"))
            return

        # min() keeps the first agent among equals; loads is in id order
        agent_id = min(loads, key=lambda candidate: loads[candidate])
        now = self._now()
        try:
            self.repository.update_fields(interaction.id, {
                "assigned_to": agent_id,
                "assigned_at": now,
                "assignment_reason": "ai_unable",
                "status": "assigned",
            })
        except (SQLAlchemyError, InboxError) as e:
            self.db.rollback()
            logger.error(f"Failed to persist assignment of interaction {interaction.id}: {e}")
            outcome.errors.append(RoutingError(f"Assignment failed: {e}"))
            return

        outcome.decision = "assigned"
        outcome.assigned_to = agent_id

        agent = self.db.get(User, agent_id)
        try:
            self.notifications.notify(
                agent,
                type="assignment",
                title="New interaction assigned",
                message=f"A {interaction.platform} {interaction.type} from {interaction.author_name} "
                        f"was assigned to you.",
                interaction_id=interaction.id,
                post_id=interaction.post_id,
                action_url=f"{self.settings.frontend_url}/inbox/{interaction.id}"
            )
        except SQLAlchemyError as e:
            self.db.rollback()
            logger.error(f"Failed to notify agent {agent_id} about interaction {interaction.id}: {e}")
            outcome.errors.append(RoutingError(f"Assignment notification failed: {e}"))

    def _check_negative_spike(self, interaction: Interaction, outcome: RoutingOutcome):
        if interaction.sentiment != "negative" or interaction.type != "comment" or not interaction.post_id:
            return

        window_start = self._now() - timedelta(hours=self.settings.negative_spike_window_hours)
        count = self.db.query(Interaction).filter(
            Interaction.organization_id == interaction.organization_id,
            Interaction.post_id == interaction.post_id,
            Interaction.type == "comment",
            Interaction.sentiment == "negative",
            Interaction.received_at >= window_start
        ).count()
        outcome.spike_count = count

        if count < self.settings.negative_spike_threshold:
            return

        try:
            self.repository.update_fields(interaction.id, {"priority": "urgent", "urgency": "urgent"})
            outcome.escalated = True
            metrics.negative_spike_alerts_total.inc()
        except (SQLAlchemyError, InboxError) as e:
            self.db.rollback()
            logger.error(f"Failed to escalate interaction {interaction.id}: {e}")
            outcome.errors.append(RoutingError(f"Escalation failed: {e}"))

        self._notify_spike(interaction, count, window_start, outcome)

    def _notify_spike(self, interaction: Interaction, count: int, window_start: datetime,
                      outcome: RoutingOutcome):
        try:
            if self.notifications.find_recent(interaction.organization_id, "negative_spike",
                                              interaction.post_id, window_start):
                logger.debug(f"Spike on post {interaction.post_id} already notified in this window")
                return

            managers = self.db.query(User).filter(
                User.organization_id == interaction.organization_id,
                User.role.in_(ESCALATION_ROLES),
                User.is_active.is_(True)
            ).order_by(User.id).all()
            if not managers:
                logger.warning(f"Negative spike on post {interaction.post_id} but no manager to notify")
                outcome.errors.append(RoutingError("No manager or admin to notify"))
                return

            # Managers before admins
            recipient = sorted(managers, key=lambda user: ESCALATION_ROLES.index(user.role))[0]
            self.notifications.notify(
                recipient,
                type="negative_spike",
                title="Negative comment spike detected",
                message=f"{count} negative comments on {interaction.platform} post {interaction.post_id} "
                        f"in the last {self.settings.negative_spike_window_hours} hours.",
                interaction_id=interaction.id,
                post_id=interaction.post_id,
                action_url=f"{self.settings.frontend_url}/inbox/{interaction.id}"
            )
            outcome.notified_user_id = recipient.id
            logger.warning(f"Negative spike on post {interaction.post_id}: {count} comments, "
                           f"notified user {recipient.id}")
        except SQLAlchemyError as e:
            self.db.rollback()
            logger.error(f"Failed to send spike notification for post {interaction.post_id}: {e}")
            outcome.errors.append(RoutingError(f"Spike notification failed: {e}"))
