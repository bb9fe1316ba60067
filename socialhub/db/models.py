from datetime import datetime, timezone
from typing import Optional

from sqlalchemy import (
    Column, Integer, String, Boolean, DateTime, Date, Text, JSON, ForeignKey, Index, UniqueConstraint, Numeric
)
from sqlalchemy.orm import relationship
from sqlalchemy.sql import func

from socialhub.core.encryption import SecretStore, get_encryption
from socialhub.db.database import Base


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


class ChannelType:
    FACEBOOK = "facebook"
    INSTAGRAM = "instagram"
    WHATSAPP = "whatsapp"
    ALL = (FACEBOOK, INSTAGRAM, WHATSAPP)


class ChannelStatus:
    ACTIVE = "active"
    EXPIRED = "expired"
    REVOKED = "revoked"
    ERROR = "error"


class WebhookStatus:
    PENDING = "pending"
    PROCESSING = "processing"
    PROCESSED = "processed"
    FAILED = "failed"


class ConversationStatus:
    OPEN = "open"
    CLOSED = "closed"
    PENDING = "pending"


class MessageDirection:
    IN = "in"
    OUT = "out"


class PostStatus:
    DRAFT = "draft"
    SCHEDULED = "scheduled"
    PUBLISHED = "published"
    FAILED = "failed"
    MUTABLE = (DRAFT, FAILED)


class JobStatus:
    PENDING = "pending"
    RUNNING = "running"
    COMPLETED = "completed"
    FAILED = "failed"


class CommentStatus:
    VISIBLE = "visible"
    HIDDEN = "hidden"
    SPAM = "spam"
    DELETED = "deleted"


class Tenant(Base):
    __tablename__ = "tenants"

    id = Column(Integer, primary_key=True, index=True)
    name = Column(String(255), nullable=False)
    slug = Column(String(255), unique=True, nullable=False)
    status = Column(String(20), default="active", nullable=False)  # active, restricted, suspended

    created_at = Column(DateTime(timezone=True), server_default=func.now())
    updated_at = Column(DateTime(timezone=True), onupdate=func.now())

    channels = relationship("Channel", back_populates="tenant", cascade="all, delete-orphan")


class SystemSetting(Base):
    """Key/value settings row; system scope overrides static config"""
    __tablename__ = "settings"

    id = Column(Integer, primary_key=True, index=True)
    key = Column(String(255), nullable=False)
    value = Column(JSON)
    scope = Column(String(20), default="system", nullable=False)  # system, tenant
    tenant_id = Column(Integer, ForeignKey("tenants.id", ondelete="CASCADE"), nullable=True)

    created_at = Column(DateTime(timezone=True), server_default=func.now())
    updated_at = Column(DateTime(timezone=True), onupdate=func.now())

    __table_args__ = (
        UniqueConstraint('key', 'scope', 'tenant_id', name='uq_settings_key_scope_tenant'),
        Index('idx_settings_scope', 'scope'),
    )


class Channel(Base):
    """
    A tenant's connected Facebook page, Instagram account or WhatsApp number.

    Tokens are stored as Fernet ciphertext. Reads return SecretStore values,
    writes go through set_tokens().
    """
    __tablename__ = "channels"

    # identifiers key holding the platform id used for webhook routing
    PRIMARY_IDENTIFIERS = {
        ChannelType.FACEBOOK: "page_id",
        ChannelType.INSTAGRAM: "instagram_account_id",
        ChannelType.WHATSAPP: "phone_number_id",
    }

    id = Column(Integer, primary_key=True, index=True)
    tenant_id = Column(Integer, ForeignKey("tenants.id", ondelete="CASCADE"), nullable=False, index=True)
    type = Column(String(20), nullable=False)  # facebook, instagram, whatsapp
    identifiers = Column(JSON, nullable=False, default=dict)
    encrypted_access_token = Column("access_token", Text, nullable=False)
    encrypted_refresh_token = Column("refresh_token", Text, nullable=True)
    expires_at = Column(DateTime(timezone=True), nullable=True)
    status = Column(String(20), default=ChannelStatus.ACTIVE, nullable=False)

    created_at = Column(DateTime(timezone=True), server_default=func.now())
    updated_at = Column(DateTime(timezone=True), onupdate=func.now())

    tenant = relationship("Tenant", back_populates="channels")
    conversations = relationship("Conversation", back_populates="channel", cascade="all, delete-orphan")

    __table_args__ = (
        Index('idx_channels_tenant_type', 'tenant_id', 'type'),
        Index('idx_channels_status', 'status'),
    )

    @property
    def access_token(self) -> SecretStore:
        return SecretStore(self.encrypted_access_token)

    @property
    def refresh_token(self) -> Optional[SecretStore]:
        if not self.encrypted_refresh_token:
            return None
        return SecretStore(self.encrypted_refresh_token)

    def set_tokens(self, access_token: str, refresh_token: Optional[str] = None, expires_at: Optional[datetime] = None):
        """Encrypt and store plaintext tokens received from the platform"""
        cipher = get_encryption()
        self.encrypted_access_token = cipher.encrypt(access_token)
        if refresh_token is not None:
            self.encrypted_refresh_token = cipher.encrypt(refresh_token)
        if expires_at is not None:
            self.expires_at = expires_at

    def identifier(self, key: str) -> Optional[str]:
        value = (self.identifiers or {}).get(key)
        return str(value) if value is not None else None

    @property
    def external_id(self) -> Optional[str]:
        """Platform id addressed by send/publish calls"""
        return self.identifier(self.PRIMARY_IDENTIFIERS.get(self.type, ""))

    @property
    def is_active(self) -> bool:
        return self.status == ChannelStatus.ACTIVE

    def __repr__(self):
        return f"<Channel id={self.id} tenant_id={self.tenant_id} type={self.type} status={self.status}>"


class WebhookEvent(Base):
    __tablename__ = "webhook_events"

    id = Column(Integer, primary_key=True, index=True)
    tenant_id = Column(Integer, ForeignKey("tenants.id", ondelete="CASCADE"), nullable=True, index=True)
    channel_id = Column(Integer, ForeignKey("channels.id", ondelete="SET NULL"), nullable=True, index=True)
    provider = Column(String(20), nullable=False)  # facebook, whatsapp
    signature = Column(String(255), nullable=True)
    payload = Column(JSON, nullable=False)
    status = Column(String(20), default=WebhookStatus.PENDING, nullable=False)
    processed_at = Column(DateTime(timezone=True), nullable=True)
    error = Column(Text, nullable=True)

    created_at = Column(DateTime(timezone=True), server_default=func.now(), index=True)
    updated_at = Column(DateTime(timezone=True), onupdate=func.now())

    __table_args__ = (
        Index('idx_webhook_events_provider_status', 'provider', 'status'),
    )


class Conversation(Base):
    __tablename__ = "conversations"

    id = Column(Integer, primary_key=True, index=True)
    tenant_id = Column(Integer, ForeignKey("tenants.id", ondelete="CASCADE"), nullable=False, index=True)
    channel_id = Column(Integer, ForeignKey("channels.id", ondelete="CASCADE"), nullable=False, index=True)
    peer_id = Column(String(255), nullable=False)  # external user id
    subject = Column(String(255), nullable=True)
    status = Column(String(20), default=ConversationStatus.OPEN, nullable=False)
    assigned_to = Column(Integer, nullable=True)  # user id in the CRUD layer
    last_message_at = Column(DateTime(timezone=True), nullable=True, index=True)

    created_at = Column(DateTime(timezone=True), server_default=func.now())
    updated_at = Column(DateTime(timezone=True), onupdate=func.now())

    channel = relationship("Channel", back_populates="conversations")
    messages = relationship("Message", back_populates="conversation", cascade="all, delete-orphan")

    __table_args__ = (
        UniqueConstraint('channel_id', 'peer_id', name='uq_conversations_channel_peer'),
        Index('idx_conversations_tenant_status', 'tenant_id', 'status'),
    )


class Message(Base):
    __tablename__ = "messages"

    id = Column(Integer, primary_key=True, index=True)
    conversation_id = Column(Integer, ForeignKey("conversations.id", ondelete="CASCADE"), nullable=False, index=True)
    provider_message_id = Column(String(255), unique=True, nullable=False)  # idempotency key
    direction = Column(String(3), nullable=False)  # in, out
    body = Column(Text, nullable=True)
    media = Column(JSON, nullable=True)
    type = Column(String(20), default="text", nullable=False)  # text, image, video, audio, file
    delivered_at = Column(DateTime(timezone=True), nullable=True)
    read_at = Column(DateTime(timezone=True), nullable=True)
    meta = Column(JSON, nullable=True)  # raw platform fragment

    created_at = Column(DateTime(timezone=True), server_default=func.now(), index=True)
    updated_at = Column(DateTime(timezone=True), onupdate=func.now())

    conversation = relationship("Conversation", back_populates="messages")


class MediaAsset(Base):
    __tablename__ = "media_assets"

    id = Column(Integer, primary_key=True, index=True)
    tenant_id = Column(Integer, ForeignKey("tenants.id", ondelete="CASCADE"), nullable=False)
    file_name = Column(String(255), nullable=False)
    mime_type = Column(String(100), nullable=False)
    storage_path = Column(String(1024), nullable=False)
    provider_url = Column(String(1024), nullable=True)  # Meta CDN URL once uploaded
    meta = Column(JSON, nullable=True)

    created_at = Column(DateTime(timezone=True), server_default=func.now())

    __table_args__ = (
        Index('idx_media_assets_tenant_created', 'tenant_id', 'created_at'),
    )


class Post(Base):
    __tablename__ = "posts"

    id = Column(Integer, primary_key=True, index=True)
    tenant_id = Column(Integer, ForeignKey("tenants.id", ondelete="CASCADE"), nullable=False)
    channel_id = Column(Integer, ForeignKey("channels.id", ondelete="CASCADE"), nullable=False)
    caption = Column(Text, nullable=True)
    media = Column(JSON, nullable=True)  # ordered media asset ids or URLs
    status = Column(String(20), default=PostStatus.DRAFT, nullable=False)
    scheduled_for = Column(DateTime(timezone=True), nullable=True, index=True)
    published_at = Column(DateTime(timezone=True), nullable=True)
    provider_post_id = Column(String(255), nullable=True)
    error = Column(Text, nullable=True)

    # Engagement counters
    likes_count = Column(Integer, default=0)
    comments_count = Column(Integer, default=0)
    shares_count = Column(Integer, default=0)
    reach = Column(Integer, nullable=True)
    impressions = Column(Integer, nullable=True)

    created_at = Column(DateTime(timezone=True), server_default=func.now())
    updated_at = Column(DateTime(timezone=True), onupdate=func.now())

    channel = relationship("Channel")

    __table_args__ = (
        Index('idx_posts_tenant_status', 'tenant_id', 'status'),
        Index('idx_posts_channel_status', 'channel_id', 'status'),
    )

    @property
    def is_mutable(self) -> bool:
        """Published posts are immutable"""
        return self.status in PostStatus.MUTABLE


class ScheduledJob(Base):
    __tablename__ = "scheduled_jobs"

    id = Column(Integer, primary_key=True, index=True)
    tenant_id = Column(Integer, ForeignKey("tenants.id", ondelete="CASCADE"), nullable=False)
    job_type = Column(String(50), nullable=False)  # publish_post, fetch_insights
    payload = Column(JSON, nullable=False, default=dict)
    run_at = Column(DateTime(timezone=True), nullable=False)
    status = Column(String(20), default=JobStatus.PENDING, nullable=False)
    error = Column(Text, nullable=True)
    attempts = Column(Integer, default=0, nullable=False)
    started_at = Column(DateTime(timezone=True), nullable=True)
    completed_at = Column(DateTime(timezone=True), nullable=True)

    created_at = Column(DateTime(timezone=True), server_default=func.now())
    updated_at = Column(DateTime(timezone=True), onupdate=func.now())

    __table_args__ = (
        Index('idx_scheduled_jobs_run_at_status', 'run_at', 'status'),
        Index('idx_scheduled_jobs_tenant_status', 'tenant_id', 'status'),
    )

    def mark_running(self):
        self.status = JobStatus.RUNNING
        self.started_at = utcnow()
        self.attempts = (self.attempts or 0) + 1

    def mark_completed(self):
        self.status = JobStatus.COMPLETED
        self.completed_at = utcnow()

    def mark_failed(self, error: str):
        self.status = JobStatus.FAILED
        self.error = error
        self.completed_at = utcnow()


class Comment(Base):
    __tablename__ = "comments"

    id = Column(Integer, primary_key=True, index=True)
    tenant_id = Column(Integer, ForeignKey("tenants.id", ondelete="CASCADE"), nullable=False)
    channel_id = Column(Integer, ForeignKey("channels.id", ondelete="CASCADE"), nullable=False)
    post_id = Column(Integer, ForeignKey("posts.id", ondelete="CASCADE"), nullable=True)
    provider_comment_id = Column(String(255), unique=True, nullable=False)
    provider_post_id = Column(String(255), nullable=True)
    provider_user_id = Column(String(255), nullable=True)
    provider_username = Column(String(255), nullable=True)
    message = Column(Text, nullable=True)
    parent_id = Column(Integer, ForeignKey("comments.id", ondelete="CASCADE"), nullable=True)
    status = Column(String(20), default=CommentStatus.VISIBLE, nullable=False)
    is_reply = Column(Boolean, default=False, nullable=False)
    commented_at = Column(DateTime(timezone=True), nullable=True)
    replied_at = Column(DateTime(timezone=True), nullable=True)
    meta = Column(JSON, nullable=True)

    created_at = Column(DateTime(timezone=True), server_default=func.now())
    updated_at = Column(DateTime(timezone=True), onupdate=func.now())

    channel = relationship("Channel")

    __table_args__ = (
        Index('idx_comments_tenant_status', 'tenant_id', 'status'),
        Index('idx_comments_channel_status', 'channel_id', 'status'),
    )


class Insight(Base):
    __tablename__ = "insights"

    id = Column(Integer, primary_key=True, index=True)
    tenant_id = Column(Integer, ForeignKey("tenants.id", ondelete="CASCADE"), nullable=False)
    channel_id = Column(Integer, ForeignKey("channels.id", ondelete="CASCADE"), nullable=False)
    metric = Column(String(100), nullable=False)  # impressions, reach, followers, ...
    value = Column(Numeric(15, 2), nullable=False)
    date = Column(Date, nullable=False)
    period = Column(String(20), default="day", nullable=False)
    meta = Column(JSON, nullable=True)

    created_at = Column(DateTime(timezone=True), server_default=func.now())
    updated_at = Column(DateTime(timezone=True), onupdate=func.now())

    __table_args__ = (
        UniqueConstraint('channel_id', 'metric', 'date', 'period', name='uq_insights_channel_metric_date_period'),
        Index('idx_insights_tenant_date', 'tenant_id', 'date'),
    )


class UsageRecord(Base):
    __tablename__ = "usage_records"

    id = Column(Integer, primary_key=True, index=True)
    tenant_id = Column(Integer, ForeignKey("tenants.id", ondelete="CASCADE"), nullable=False)
    metric = Column(String(50), nullable=False)  # messages, api_calls, posts
    quantity = Column(Integer, default=0, nullable=False)
    period_date = Column(Date, nullable=False, index=True)

    created_at = Column(DateTime(timezone=True), server_default=func.now())
    updated_at = Column(DateTime(timezone=True), onupdate=func.now())

    __table_args__ = (
        UniqueConstraint('tenant_id', 'metric', 'period_date', name='uq_usage_tenant_metric_period'),
    )


class AuditLog(Base):
    """Persisted record of every third-party platform API call"""
    __tablename__ = "audit_logs"

    id = Column(Integer, primary_key=True, index=True)
    tenant_id = Column(Integer, ForeignKey("tenants.id", ondelete="CASCADE"), nullable=True, index=True)
    channel_id = Column(Integer, ForeignKey("channels.id", ondelete="SET NULL"), nullable=True, index=True)
    action = Column(String(100), nullable=False, index=True)
    request = Column(JSON, nullable=True)  # scrubbed request payload
    response = Column(JSON, nullable=True)
    status = Column(String(20), nullable=False)  # success, error
    latency_ms = Column(Integer, nullable=True)

    created_at = Column(DateTime(timezone=True), server_default=func.now(), index=True)
