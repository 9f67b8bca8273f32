"""Pytest configuration and shared fixtures."""

import os

# Must be set before keyholder_tracker is imported: config and the JWT manager load eagerly
os.environ.setdefault(
    "KEYHOLDER_JWT_SECRET_KEY", "kt-test-secret-5f1c9a7e2b4d8f0a3c6e9b1d4f7a0c2e"
)
os.environ.setdefault("KEYHOLDER_LOG_TO_FILE", "0")

from pathlib import Path
from typing import Generator

import pytest
import pytest_asyncio
from alembic import command
from alembic.config import Config
from fastapi.testclient import TestClient
from sqlalchemy.orm import sessionmaker

from keyholder_tracker.config import DomainConfig
from keyholder_tracker.db.database import create_database_engine
from keyholder_tracker.db.models import (
    ChastityDataModel,
    EventModel,
    InviteCodeModel,
    RelationshipModel,
    RelationshipRequestModel,
    SessionModel,
    TaskModel,
)
from keyholder_tracker.events.subscriptions import SubscriptionHub
from keyholder_tracker.repositories.memory_impl import MemoryStore, create_memory_container
from keyholder_tracker.repositories.sqlalchemy_impl import create_sqlalchemy_container
from keyholder_tracker.services import build_services
from keyholder_tracker.services.notifications import RecordingNotificationSink

from tests.helpers.clock import FixedClock
from tests.helpers.factories import link

PROJECT_ROOT = Path(__file__).resolve().parents[1]

# Child tables first so foreign keys never block the cleanup
CLEANUP_ORDER = [
    EventModel,
    TaskModel,
    SessionModel,
    ChastityDataModel,
    InviteCodeModel,
    RelationshipRequestModel,
    RelationshipModel,
]


# ---------- in-memory service graph ----------


@pytest.fixture
def clock() -> FixedClock:
    return FixedClock()


@pytest.fixture
def store() -> MemoryStore:
    return MemoryStore()


@pytest.fixture
def container(store):
    return create_memory_container(store)


@pytest.fixture
def hub() -> SubscriptionHub:
    return SubscriptionHub()


@pytest.fixture
def sink() -> RecordingNotificationSink:
    return RecordingNotificationSink()


@pytest.fixture
def domain_config() -> DomainConfig:
    return DomainConfig()


@pytest.fixture
def services(container, clock, hub, sink, domain_config):
    return build_services(container, clock, hub, sink, domain_config)


@pytest_asyncio.fixture
async def relationship(services):
    """An ACTIVE relationship between the default submissive and keyholder."""
    return await link(services)


# ---------- migrated SQLite database ----------


@pytest.fixture(scope="session")
def migrated_db_url(tmp_path_factory) -> str:
    """Temporary SQLite database with all Alembic migrations applied."""
    db_path = tmp_path_factory.mktemp("db") / "keyholder_test.db"
    db_url = f"sqlite:///{db_path}"

    alembic_cfg = Config(str(PROJECT_ROOT / "alembic.ini"))
    alembic_cfg.set_main_option("script_location", str(PROJECT_ROOT / "alembic"))
    alembic_cfg.set_main_option("sqlalchemy.url", db_url)
    alembic_cfg.attributes["configure_logger"] = False
    alembic_cfg.attributes["url_explicit"] = True
    command.upgrade(alembic_cfg, "head")

    return db_url


@pytest.fixture
def session_factory(migrated_db_url) -> Generator[sessionmaker, None, None]:
    """Session factory over the migrated database; tables are emptied afterwards."""
    engine = create_database_engine(migrated_db_url)
    factory = sessionmaker(autocommit=False, autoflush=False, bind=engine)

    yield factory

    with factory() as cleanup:
        for model in CLEANUP_ORDER:
            cleanup.query(model).delete()
        cleanup.commit()
    engine.dispose()


@pytest.fixture
def db_session(session_factory):
    session = session_factory()
    yield session
    session.close()


@pytest.fixture
def sql_container(db_session):
    return create_sqlalchemy_container(db_session)


@pytest.fixture
def sql_services(sql_container, clock, hub, sink, domain_config):
    return build_services(sql_container, clock, hub, sink, domain_config)


# ---------- FastAPI application ----------


@pytest.fixture
def client(store, clock, hub, sink) -> Generator[TestClient, None, None]:
    """Test client whose services run on the in-memory store and the fixed clock."""
    from keyholder_tracker.api.dependencies import (
        get_clock,
        get_notification_sink,
        get_subscription_hub,
    )
    from keyholder_tracker.main import app
    from keyholder_tracker.repositories.dependencies import get_repository_container

    app.dependency_overrides[get_repository_container] = lambda: create_memory_container(store)
    app.dependency_overrides[get_clock] = lambda: clock
    app.dependency_overrides[get_subscription_hub] = lambda: hub
    app.dependency_overrides[get_notification_sink] = lambda: sink

    with TestClient(app) as test_client:
        yield test_client

    # Clear overrides to avoid affecting other tests
    app.dependency_overrides.clear()
