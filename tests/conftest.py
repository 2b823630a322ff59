"""Shared pytest fixtures and configuration."""

import os
import pytest
from unittest.mock import MagicMock
from freezegun import freeze_time

# Set test environment variables
os.environ.setdefault("ENVIRONMENT", "test")
os.environ.setdefault("SUPABASE_URL", "https://test.supabase.co")
os.environ.setdefault("SUPABASE_SERVICE_ROLE_KEY", "test-key")
os.environ["STORE_BACKEND"] = "memory"
os.environ.setdefault("NOTIFICATION_CHANNELS", "email")
os.environ.setdefault("BREVO_API_KEY", "test-brevo-key")
os.environ.setdefault("LOG_FORMAT", "text")

from realer.models.property import Property
from realer.services.change_feed import ChangeFeed
from realer.services.orchestrator import NegotiationOrchestrator, set_orchestrator
from realer.services.store import InMemoryStore
from realer.services.supabase_client import reset_supabase_client
from realer.utils.config import EngineSettings, reset_settings
from realer.utils.logging_config import LoggingConfig
from tests.utils.factories import create_contact, create_property, create_user_id, fake


@pytest.fixture(scope="session", autouse=True)
def configure_logging():
    """Configure logging once so later setup calls leave pytest's capture handlers alone."""
    LoggingConfig.setup_logging()


@pytest.fixture(autouse=True)
def reset_singletons():
    """Drop cached settings, clients and the global orchestrator between tests."""
    reset_settings()
    reset_supabase_client()
    set_orchestrator(None)
    yield
    reset_settings()
    reset_supabase_client()
    set_orchestrator(None)


@pytest.fixture
def settings():
    """Engine settings for the in-memory store with e-mail delivery enabled."""
    return EngineSettings(
        store_backend="memory",
        notification_channels=["email"],
        brevo_api_key="test-brevo-key",
        outbox_max_attempts=3,
        outbox_retry_base_seconds=30,
        store_retry_attempts=2,
    )


@pytest.fixture
def store():
    return InMemoryStore()


@pytest.fixture
def feed():
    return ChangeFeed(retention=50)


@pytest.fixture
def orchestrator(store, feed, settings):
    return NegotiationOrchestrator(store, feed=feed, settings=settings)


@pytest.fixture
def seller_id():
    return create_user_id()


@pytest.fixture
def buyer_id():
    return create_user_id()


@pytest.fixture
def other_buyer_id():
    return create_user_id()


@pytest.fixture
def listed_property(store, seller_id, buyer_id, other_buyer_id) -> Property:
    """A property owned by ``seller_id`` with profiles for every party."""
    prop = store.add_property(create_property(owner_id=seller_id, title="Maple House", asking_price=450000))
    store.add_profile(seller_id, name="Sam Seller", email="sam.seller@example.com", phone="555-010-2000")
    store.add_profile(buyer_id, name="Bea Buyer", email="bea.buyer@example.com", phone="555-010-3000")
    store.add_profile(other_buyer_id, name=fake.name(), email=fake.email())
    return prop


@pytest.fixture
def buyer_contact():
    return create_contact(name="Bea Buyer", email="bea.buyer@example.com", phone="555-010-3000")


@pytest.fixture
def mock_supabase_client():
    """Mock Supabase client whose query builders chain back to themselves."""
    client = MagicMock()
    query = MagicMock()
    for method in ("select", "eq", "neq", "in_", "is_", "gt", "lte", "or_", "order", "limit",
                   "insert", "upsert", "update"):
        getattr(query, method).return_value = query
    query.execute.return_value = MagicMock(data=[])
    client.table.return_value = query
    client.rpc.return_value = MagicMock()
    client.query = query
    return client


@pytest.fixture
def freeze_time_fixture():
    """Fixture for freezing time in tests."""
    with freeze_time("2026-10-01 12:00:00") as frozen_time:
        yield frozen_time


@pytest.fixture(scope="function")
def reset_environment(monkeypatch):
    """Reset environment variables for each test."""
    original_env = os.environ.copy()
    yield
    os.environ.clear()
    os.environ.update(original_env)
