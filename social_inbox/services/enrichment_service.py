"""
Enrichment Pipeline

sentiment -> intent -> topics -> response draft -> eligibility -> routing

Each stage is best-effort: a failed AI call writes the stage's safe default
and the pipeline moves on. Stages write only the columns they own, so a
retried or concurrent run never clobbers workflow fields.
"""
import logging
import time
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from social_inbox.core import metrics
from social_inbox.core.config import get_settings
from social_inbox.core.errors import EnrichmentError
from social_inbox.db.models import Interaction, KnowledgeBaseEntry, Organization
from social_inbox.integrations.base import sentiment_from_rating
from social_inbox.services.ai_service import (
    AIService, AutoReplyPolicy, NEUTRAL_SENTIMENT, SENTIMENT_SCORES, SentimentResult,
    can_auto_reply, get_ai_service
)
from social_inbox.services.persistence_gate import InteractionRepository
from social_inbox.services.routing_service import RoutingEngine, RoutingOutcome

logger = logging.getLogger(__name__)


class EnrichmentPipeline:
    """Runs AI enrichment for one interaction and hands it to routing"""

    def __init__(self, db: Session, ai_service: Optional[AIService] = None,
                 routing_engine: Optional[RoutingEngine] = None, settings=None):
        self.db = db
        self.settings = settings or get_settings()
        self.ai = ai_service or get_ai_service()
        self.routing = routing_engine or RoutingEngine(db, settings=self.settings)
        self.repository = InteractionRepository(db)
        self.last_outcome: Optional[RoutingOutcome] = None

    async def enrich(self, interaction_id: str) -> Interaction:
        """
        Enrich and route an interaction.

        Args:
            interaction_id: Interaction to process

        Returns:
            The enriched Interaction

        Raises:
            EnrichmentError: the interaction does not exist
            PersistenceError: storage unavailable
        """
        interaction = self.repository.get(interaction_id)
        if interaction is None:
            raise EnrichmentError(f"Interaction {interaction_id} not found", stage="load")

        started = time.monotonic()

        sentiment = await self._sentiment(interaction)
        self.repository.update_fields(interaction.id, {
            "sentiment": sentiment.sentiment,
            "sentiment_score": sentiment.score,
            "sentiment_confidence": sentiment.confidence,
        })

        intent = await self._stage("intent", self.ai.detect_intent(interaction.content), default="other")
        self.repository.update_fields(interaction.id, {"intent": intent})

        topics = await self._stage("topics", self.ai.extract_topics(interaction.content), default=[])
        self.repository.update_fields(interaction.id, {"topics": topics})

        knowledge_base = self._knowledge_base(interaction.organization_id)
        draft = await self._stage("response", self.ai.generate_response(interaction, knowledge_base), default=None)
        self.repository.update_fields(interaction.id, {"ai_suggestion": draft})
        if draft is not None and knowledge_base:
            self._record_knowledge_base_usage(knowledge_base)

        policy = self._auto_reply_policy(interaction.organization_id)
        eligible = draft is not None and can_auto_reply(interaction, policy)
        self.repository.update_fields(interaction.id, {
            "auto_reply_eligible": eligible,
            "enriched_at": datetime.now(timezone.utc),
        })

        metrics.enrichment_duration_seconds.observe(time.monotonic() - started)
        logger.info(
            f"Enriched interaction {interaction.id}: sentiment={interaction.sentiment} "
            f"intent={interaction.intent} topics={len(interaction.topics or [])} "
            f"draft={'yes' if draft else 'no'} auto_reply_eligible={eligible}"
        )

        self.last_outcome = self.routing.route(interaction)
        return interaction

    async def _stage(self, stage: str, call, default: Any) -> Any:
        try:
            return await call
        except EnrichmentError as e:
            metrics.enrichment_stage_failures_total.labels(stage=stage).inc()
            logger.warning(f"Enrichment stage {stage} failed, using default: {e}")
            return default

    async def _sentiment(self, interaction: Interaction) -> SentimentResult:
        fallback = NEUTRAL_SENTIMENT
        # A star rating is a better default than neutral
        rated = sentiment_from_rating(interaction.rating)
        if rated:
            fallback = SentimentResult(sentiment=rated, score=SENTIMENT_SCORES[rated],
                                       confidence=NEUTRAL_SENTIMENT.confidence)
        return await self._stage("sentiment", self.ai.analyze_sentiment(interaction.content), default=fallback)

    def _knowledge_base(self, organization_id: str) -> List[KnowledgeBaseEntry]:
        try:
            return self.db.query(KnowledgeBaseEntry).filter(
                KnowledgeBaseEntry.organization_id == organization_id,
                KnowledgeBaseEntry.is_active.is_(True),
                KnowledgeBaseEntry.is_training_data.is_(True)
            ).order_by(
                KnowledgeBaseEntry.training_weight.desc(), KnowledgeBaseEntry.id
            ).limit(self.settings.knowledge_base_context_limit).all()
        except SQLAlchemyError as e:
            self.db.rollback()
            logger.warning(f"Knowledge base unavailable for organization {organization_id}: {e}")
            return []

    def _record_knowledge_base_usage(self, entries: List[KnowledgeBaseEntry]):
        now = datetime.now(timezone.utc)
        try:
            for entry in entries:
                entry.usage_count = (entry.usage_count or 0) + 1
                entry.last_used_at = now
            self.db.commit()
        except SQLAlchemyError as e:
            self.db.rollback()
            logger.warning(f"Could not record knowledge base usage: {e}")

    def _auto_reply_policy(self, organization_id: str) -> AutoReplyPolicy:
        organization = self.db.get(Organization, organization_id)
        overrides: Dict[str, Any] = ((organization.settings or {}) if organization else {}).get("auto_reply") or {}
        return AutoReplyPolicy.from_overrides(overrides)
