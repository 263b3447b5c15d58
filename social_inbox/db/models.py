from datetime import datetime, timezone
from typing import Optional
import uuid

from sqlalchemy import Column, Integer, String, DateTime, Float, Boolean, Text, JSON, ForeignKey, Index, UniqueConstraint
from sqlalchemy.orm import relationship

from social_inbox.db.database import Base


def _uuid() -> str:
    return str(uuid.uuid4())


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def as_utc(value: Optional[datetime]) -> Optional[datetime]:
    """SQLite hands back naive datetimes; treat them as UTC."""
    if value is None or value.tzinfo is not None:
        return value
    return value.replace(tzinfo=timezone.utc)


# Enumerations shared by the pipeline and the API layer

PLATFORMS = ("instagram", "facebook", "whatsapp", "youtube", "google")
INTERACTION_TYPES = ("comment", "dm", "review", "mention")
SENTIMENTS = ("positive", "negative", "neutral")
INTENTS = ("inquiry", "complaint", "praise", "feedback", "support", "other")
INTERACTION_STATUSES = ("unread", "read", "assigned", "replied", "resolved", "archived", "escalated")
URGENCY_LEVELS = ("low", "normal", "high", "urgent")
CONNECTION_STATUSES = ("connected", "disconnected", "error", "token_expired")

# Statuses that count toward an agent's open workload
OPEN_WORKLOAD_STATUSES = ("assigned", "unread")


class Organization(Base):
    """Tenant owning connections, interactions and agents"""
    __tablename__ = "organizations"

    id = Column(String(36), primary_key=True, default=_uuid)
    name = Column(String, nullable=False)
    slug = Column(String, unique=True, nullable=False, index=True)

    # Per-organization policy overrides, e.g. {"auto_reply": {"min_confidence": 0.8}}
    settings = Column(JSON, default=dict)

    is_active = Column(Boolean, default=True)
    created_at = Column(DateTime(timezone=True), default=utcnow)

    users = relationship("User", back_populates="organization")
    connections = relationship("PlatformConnection", back_populates="organization")


class User(Base):
    """Inbox user; agents receive assignments, managers and admins receive escalations"""
    __tablename__ = "users"

    id = Column(Integer, primary_key=True, index=True)
    organization_id = Column(String(36), ForeignKey("organizations.id", ondelete="CASCADE"), nullable=False, index=True)
    email = Column(String, unique=True, nullable=False, index=True)
    name = Column(String)
    role = Column(String, default="agent", index=True)  # admin, manager, agent, viewer
    is_active = Column(Boolean, default=True, index=True)
    created_at = Column(DateTime(timezone=True), default=utcnow)

    organization = relationship("Organization", back_populates="users")

    __table_args__ = (
        Index('idx_user_org_role_active', organization_id, role, is_active),
    )


class PlatformConnection(Base):
    """Authorized binding between an organization and a platform account"""
    __tablename__ = "platform_connections"

    id = Column(String(36), primary_key=True, default=_uuid)
    organization_id = Column(String(36), ForeignKey("organizations.id", ondelete="CASCADE"), nullable=False, index=True)
    created_by = Column(Integer, ForeignKey("users.id"), nullable=True)
    platform = Column(String, nullable=False, index=True)

    # Platform account details
    platform_user_id = Column(String, nullable=False, index=True)
    platform_username = Column(String)
    platform_display_name = Column(String)
    platform_email = Column(String)

    # OAuth tokens
    access_token = Column(Text, nullable=False)
    refresh_token = Column(Text)
    token_expires_at = Column(DateTime(timezone=True))
    scope = Column(JSON, default=list)

    # business_account_id, page_id, channel_id, location_ids, phone_number_id
    platform_data = Column(JSON, default=dict)

    # Connection status
    is_active = Column(Boolean, default=True, index=True)
    status = Column(String, default="connected")  # connected, disconnected, error, token_expired

    # Sync statistics
    last_sync_at = Column(DateTime(timezone=True))
    last_sync_count = Column(Integer, default=0)
    total_interactions_synced = Column(Integer, default=0)
    failed_sync_attempts = Column(Integer, default=0)

    # Error tracking
    last_error = Column(Text)
    last_error_code = Column(String)
    last_error_at = Column(DateTime(timezone=True))

    # {"auto_sync": true, "sync_interval": 5, "enable_webhooks": true}
    settings = Column(JSON, default=dict)

    created_at = Column(DateTime(timezone=True), default=utcnow)
    updated_at = Column(DateTime(timezone=True), default=utcnow, onupdate=utcnow)

    organization = relationship("Organization", back_populates="connections")

    __table_args__ = (
        UniqueConstraint('organization_id', 'platform', 'platform_user_id', name='uq_platform_connection_account'),
        Index('idx_platform_connection_org_platform', organization_id, platform),
        Index('idx_platform_connection_org_active', organization_id, is_active),
    )


class Interaction(Base):
    """Canonical inbox item: a comment, DM, review or mention from any platform"""
    __tablename__ = "interactions"

    id = Column(String(36), primary_key=True, default=_uuid)
    organization_id = Column(String(36), ForeignKey("organizations.id", ondelete="CASCADE"), nullable=False, index=True)
    connection_id = Column(String(36), ForeignKey("platform_connections.id"), nullable=True)

    # Classification and identity
    platform = Column(String, nullable=False, index=True)
    type = Column(String, nullable=False, index=True)  # comment, dm, review, mention
    platform_id = Column(String, nullable=False)
    platform_url = Column(String)

    # Content
    content = Column(Text, nullable=False, default="")
    content_type = Column(String, default="text")
    language = Column(String)

    # Author
    author_platform_id = Column(String)
    author_name = Column(String, default="Anonymous")
    author_username = Column(String)
    author_profile_url = Column(String)
    author_avatar_url = Column(String)
    author_verified = Column(Boolean, default=False)

    # Threading
    parent_id = Column(String, index=True)
    thread_id = Column(String, index=True)
    reply_count = Column(Integer, default=0)
    has_replies = Column(Boolean, default=False)

    # Post, media or video the interaction refers to
    post_id = Column(String, index=True)
    platform_metadata = Column(JSON, default=dict)

    # Enrichment (written only by the enrichment pipeline)
    sentiment = Column(String)  # positive, negative, neutral
    sentiment_score = Column(Float)  # -1..1
    sentiment_confidence = Column(Float)  # 0..1
    intent = Column(String)
    topics = Column(JSON, default=list)
    ai_suggestion = Column(JSON)  # {"content", "confidence", "generated_at"}
    auto_reply_eligible = Column(Boolean, default=False)
    enriched_at = Column(DateTime(timezone=True))

    # Workflow (routing engine and agents)
    status = Column(String, default="unread", index=True)
    assigned_to = Column(Integer, ForeignKey("users.id"), nullable=True, index=True)
    assigned_at = Column(DateTime(timezone=True))
    assignment_reason = Column(String)
    priority = Column(String, default="normal")
    urgency = Column(String, default="normal")
    labels = Column(JSON, default=list)
    internal_notes = Column(JSON, default=list)
    replies = Column(JSON, default=list)
    is_read = Column(Boolean, default=False)
    read_at = Column(DateTime(timezone=True))
    resolved_at = Column(DateTime(timezone=True))

    # Review-specific
    rating = Column(Integer)
    review_date = Column(DateTime(timezone=True))

    # Timestamps
    platform_created_at = Column(DateTime(timezone=True))
    platform_updated_at = Column(DateTime(timezone=True))
    received_at = Column(DateTime(timezone=True), default=utcnow, index=True)
    updated_at = Column(DateTime(timezone=True), default=utcnow, onupdate=utcnow)

    connection = relationship("PlatformConnection")
    assignee = relationship("User", foreign_keys=[assigned_to])

    __table_args__ = (
        UniqueConstraint('organization_id', 'platform', 'platform_id', name='uq_interaction_platform_identity'),
        Index('idx_interaction_org_status', organization_id, status),
        Index('idx_interaction_assignee_status', assigned_to, status),
        Index('idx_interaction_post_sentiment', organization_id, post_id, sentiment, received_at),
    )


class KnowledgeBaseEntry(Base):
    """Context document used when drafting replies"""
    __tablename__ = "knowledge_base_entries"

    id = Column(String(36), primary_key=True, default=_uuid)
    organization_id = Column(String(36), ForeignKey("organizations.id", ondelete="CASCADE"), nullable=False, index=True)

    title = Column(String, nullable=False)
    content = Column(Text, nullable=False)
    type = Column(String, default="general")  # faq, product_info, policy, brand_voice, procedure, general

    training_weight = Column(Integer, default=5)  # 1-10
    is_training_data = Column(Boolean, default=True)
    is_active = Column(Boolean, default=True)

    usage_count = Column(Integer, default=0)
    last_used_at = Column(DateTime(timezone=True))

    created_at = Column(DateTime(timezone=True), default=utcnow)
    updated_at = Column(DateTime(timezone=True), default=utcnow, onupdate=utcnow)

    __table_args__ = (
        Index('idx_knowledge_base_org_active_weight', organization_id, is_active, training_weight),
    )


class Notification(Base):
    """In-app notification, optionally delivered by email"""
    __tablename__ = "notifications"

    id = Column(String(36), primary_key=True, default=_uuid)
    user_id = Column(Integer, ForeignKey("users.id"), nullable=False, index=True)
    organization_id = Column(String(36), ForeignKey("organizations.id", ondelete="CASCADE"), nullable=False, index=True)

    type = Column(String, nullable=False, index=True)  # assignment, negative_spike, ...
    title = Column(String, nullable=False)
    message = Column(Text, nullable=False)

    interaction_id = Column(String(36), ForeignKey("interactions.id"), nullable=True)
    post_id = Column(String, index=True)
    action_url = Column(String)

    is_read = Column(Boolean, default=False)
    read_at = Column(DateTime(timezone=True))

    email_sent = Column(Boolean, default=False)
    email_sent_at = Column(DateTime(timezone=True))
    delivery_error = Column(Text)

    created_at = Column(DateTime(timezone=True), default=utcnow, index=True)

    user = relationship("User")

    __table_args__ = (
        Index('idx_notification_user_read', user_id, is_read),
        Index('idx_notification_org_type_post', organization_id, type, post_id),
    )


class DeadLetter(Base):
    """A pipeline task that gave up; kept until an operator requeues or discards it"""
    __tablename__ = "dead_letters"

    id = Column(Integer, primary_key=True)
    task_id = Column(String, nullable=False, unique=True)
    task_name = Column(String, nullable=False)
    queue = Column(String, nullable=False, index=True)
    organization_id = Column(String(36), index=True)

    args = Column(JSON)
    kwargs = Column(JSON)

    kind = Column(String, nullable=False, index=True)  # see core.dead_letters.FailureKind
    error = Column(Text)
    traceback = Column(Text)
    attempts = Column(Integer, default=0)
    context = Column(JSON)

    needs_review = Column(Boolean, default=False)
    failed_at = Column(DateTime(timezone=True), default=utcnow, nullable=False, index=True)
    last_failed_at = Column(DateTime(timezone=True), default=utcnow)
    requeued_at = Column(DateTime(timezone=True))

    @property
    def is_requeued(self) -> bool:
        return self.requeued_at is not None
