"""
Shared fixtures: an isolated in-memory database per test plus factories
for organizations, users and platform connections.
"""
import os

os.environ.setdefault("ENVIRONMENT", "test")
os.environ.setdefault("DATABASE_URL", "sqlite://")
os.environ.setdefault("META_APP_SECRET", "test-app-secret")
os.environ.setdefault("META_VERIFY_TOKEN", "test-verify-token")
os.environ.setdefault("OPENAI_API_KEY", "")

import itertools
from datetime import datetime, timedelta, timezone

import pytest
from sqlalchemy import create_engine, event
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

from social_inbox.core.logging import setup_test_logging
from social_inbox.db.database import Base
from social_inbox.db.models import Organization, PlatformConnection, User

setup_test_logging()

_sequence = itertools.count(1)


@pytest.fixture
def engine():
    engine = create_engine(
        "sqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool
    )

    # Let SQLAlchemy manage transactions so SAVEPOINTs behave on pysqlite
    @event.listens_for(engine, "connect")
    def _disable_driver_transactions(dbapi_connection, connection_record):
        dbapi_connection.isolation_level = None

    @event.listens_for(engine, "begin")
    def _emit_begin(conn):
        conn.exec_driver_sql("BEGIN")

    Base.metadata.create_all(engine)
    yield engine
    Base.metadata.drop_all(engine)
    engine.dispose()


@pytest.fixture
def db_session(engine):
    session = sessionmaker(bind=engine, autocommit=False, autoflush=False)()
    yield session
    session.close()


@pytest.fixture
def organization(db_session):
    org = Organization(name="Acme Coffee", slug=f"acme-{next(_sequence)}", settings={})
    db_session.add(org)
    db_session.commit()
    return org


@pytest.fixture
def make_user(db_session, organization):
    def _make_user(role="agent", name=None, is_active=True, org=None):
        n = next(_sequence)
        user = User(
            organization_id=(org or organization).id,
            email=f"user{n}@example.com",
            name=name or f"User {n}",
            role=role,
            is_active=is_active,
        )
        db_session.add(user)
        db_session.commit()
        return user
    return _make_user


@pytest.fixture
def make_connection(db_session, organization):
    def _make_connection(platform="instagram", platform_data=None, **overrides):
        n = next(_sequence)
        values = dict(
            organization_id=organization.id,
            platform=platform,
            platform_user_id=f"{platform}-account-{n}",
            platform_username=f"acme_{platform}",
            access_token="access-token",
            refresh_token="refresh-token",
            token_expires_at=datetime.now(timezone.utc) + timedelta(days=30),
            platform_data=platform_data or {},
            settings={"auto_sync": True},
            status="connected",
            is_active=True,
        )
        values.update(overrides)
        connection = PlatformConnection(**values)
        db_session.add(connection)
        db_session.commit()
        return connection
    return _make_connection


class RecordingScheduler:
    """Stands in for a Celery apply_async publisher"""

    def __init__(self, fail=False):
        self.calls = []
        self.fail = fail

    def __call__(self, *args):
        if self.fail:
            raise ConnectionError("broker unavailable")
        self.calls.append(args[0] if len(args) == 1 else args)
        return f"task-{len(self.calls)}"


@pytest.fixture
def recording_scheduler():
    return RecordingScheduler()
