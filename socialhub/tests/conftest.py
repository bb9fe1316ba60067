"""
Shared fixtures: in-memory SQLite database, eager Celery, test credentials
"""
import os

from cryptography.fernet import Fernet

# Settings are cached on first import, so the environment is set up first
os.environ.setdefault("ENVIRONMENT", "test")
os.environ.setdefault("DATABASE_URL", "sqlite://")
os.environ.setdefault("CELERY_BROKER_URL", "memory://")
os.environ.setdefault("CELERY_RESULT_BACKEND", "cache+memory://")
os.environ.setdefault("TOKEN_ENCRYPTION_KEY", Fernet.generate_key().decode())
os.environ.setdefault("META_APP_ID", "test-app-id")
os.environ.setdefault("META_APP_SECRET", "test-app-secret")
os.environ.setdefault("META_VERIFY_TOKEN", "meta-verify-token")
os.environ.setdefault("WHATSAPP_VERIFY_TOKEN", "whatsapp-verify-token")
os.environ.setdefault("MEDIA_BASE_URL", "https://cdn.example.com/media/")

import json
from datetime import timedelta

import pytest
from sqlalchemy import create_engine
from sqlalchemy.pool import StaticPool

from socialhub.core.webhook_security import compute_signature
from socialhub.db.database import Base, SessionLocal
from socialhub.db.models import Channel, ChannelStatus, ChannelType, Conversation, Tenant, utcnow
from socialhub.tasks.celery_app import celery_app

APP_SECRET = os.environ["META_APP_SECRET"]

test_engine = create_engine(
    "sqlite://",
    connect_args={"check_same_thread": False},
    poolclass=StaticPool,
)
SessionLocal.configure(bind=test_engine)

celery_app.conf.task_always_eager = True
celery_app.conf.task_eager_propagates = False


def sign(body: bytes, secret: str = APP_SECRET) -> str:
    return compute_signature(body, secret)


def dump(payload) -> bytes:
    return json.dumps(payload).encode("utf-8")


@pytest.fixture
def test_db():
    """Fresh schema per test"""
    Base.metadata.create_all(bind=test_engine)
    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()
        Base.metadata.drop_all(bind=test_engine)


@pytest.fixture
def tenant(test_db):
    tenant = Tenant(name="Acme Coffee", slug="acme-coffee")
    test_db.add(tenant)
    test_db.commit()
    return tenant


def make_channel(db, tenant, channel_type, identifiers, token="page-token", status=ChannelStatus.ACTIVE, expires_in_days=60):
    channel = Channel(tenant_id=tenant.id, type=channel_type, identifiers=identifiers, status=status)
    channel.set_tokens(token, expires_at=utcnow() + timedelta(days=expires_in_days))
    db.add(channel)
    db.commit()
    return channel


@pytest.fixture
def facebook_channel(test_db, tenant):
    return make_channel(test_db, tenant, ChannelType.FACEBOOK, {"page_id": "1001"})


@pytest.fixture
def instagram_channel(test_db, tenant):
    return make_channel(test_db, tenant, ChannelType.INSTAGRAM, {"instagram_account_id": "17841400000000000", "page_id": "1001"})


@pytest.fixture
def whatsapp_channel(test_db, tenant):
    return make_channel(test_db, tenant, ChannelType.WHATSAPP, {"phone_number_id": "555", "waba_id": "777"})


@pytest.fixture
def conversation(test_db, facebook_channel):
    conversation = Conversation(tenant_id=facebook_channel.tenant_id, channel_id=facebook_channel.id, peer_id="psid-42")
    test_db.add(conversation)
    test_db.commit()
    return conversation
