# backend/modules/incentives/tests/conftest.py

"""
Pytest fixtures for incentives module tests.

Unit tests share one in-memory SQLite connection through a single session.
Tests that open several sessions at once (batch runs, concurrent spins)
use the file-backed ``file_session_factory`` instead.
"""

import random
from datetime import date, datetime
from typing import Any, Dict, Optional
from unittest.mock import Mock

import pytest
from sqlalchemy.orm import sessionmaker

from core.database import Base, create_db_engine
from modules.incentives import models  # noqa: F401  registers the tables
from modules.incentives.config.incentive_config import IncentiveConfig
from modules.incentives.enums.incentive_enums import RuleKind, TargetType
from modules.incentives.models.rule_models import DEFAULT_SCOPE
from modules.incentives.services.incentive_engine import IncentiveEngine
from modules.incentives.services.notifications import IncentiveNotifier

from .factories import bind_factories

RULES_FROM = datetime(2024, 1, 1)
NOW = datetime(2024, 5, 15, 10, 30)
TODAY = NOW.date()

# Daily-target rules are resolved under the metric they reward
DAILY_TARGET_SCOPE = TargetType.CUSTOMER_COUNT.value


# Database fixtures
@pytest.fixture
def test_engine():
    """In-memory SQLite engine with the incentive tables."""
    engine = create_db_engine("sqlite://")
    Base.metadata.create_all(engine)
    yield engine
    Base.metadata.drop_all(engine)
    engine.dispose()


@pytest.fixture
def db_session(test_engine):
    TestingSessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=test_engine)
    session = TestingSessionLocal()
    bind_factories(session)
    try:
        yield session
    finally:
        bind_factories(None)
        session.close()


@pytest.fixture
def file_engine(tmp_path):
    """File-backed SQLite engine; every session gets its own connection."""
    engine = create_db_engine(f"sqlite:///{tmp_path / 'incentives.db'}")
    Base.metadata.create_all(engine)
    yield engine
    engine.dispose()


@pytest.fixture
def file_session_factory(file_engine):
    return sessionmaker(autocommit=False, autoflush=False, bind=file_engine)


# Collaborators
@pytest.fixture
def now():
    return NOW


@pytest.fixture
def clock(now):
    return lambda: now


@pytest.fixture
def rng():
    return random.Random(20240515)


@pytest.fixture
def notifier():
    notifier = Mock(spec=IncentiveNotifier)
    notifier.payout_created.return_value = True
    notifier.spin_completed.return_value = True
    return notifier


@pytest.fixture
def incentive_config():
    return IncentiveConfig()


@pytest.fixture
def incentive_engine(db_session, clock, rng, notifier, incentive_config):
    return IncentiveEngine(
        db_session, clock=clock, rng=rng, notifier=notifier, config=incentive_config
    )


@pytest.fixture
def rule_store(incentive_engine):
    return incentive_engine.rules


@pytest.fixture
def ledger(incentive_engine):
    return incentive_engine.ledger


@pytest.fixture
def publish_rule(rule_store):
    """Publish a rule effective from the start of 2024 unless told otherwise."""

    def publish(
        kind: RuleKind,
        payload: Dict[str, Any],
        scope: str = DEFAULT_SCOPE,
        effective_from: datetime = RULES_FROM,
        effective_to: Optional[datetime] = None,
        name: Optional[str] = None,
    ):
        return rule_store.publish_rule(
            kind,
            name or f"{kind.value.title()} rule",
            payload,
            effective_from=effective_from,
            effective_to=effective_to,
            scope=scope,
            actor="ops@example.com",
        )

    return publish


@pytest.fixture
def daily_inputs():
    """Factory for raw daily inputs at a champion store."""

    def create_inputs(**overrides) -> Dict[str, Any]:
        inputs = {
            "customer_count": 15,
            "paid_bills_count": 4,
            "revenue_pre_tax": "12500.00",
            "items_sold": 9,
            "sku_counts": {},
            "product_revenue": {},
            "store_type": "CHAMPION",
            "city": "Pune",
            "state": "MH",
            "country": "IN",
            "user_level": "A",
        }
        inputs.update(overrides)
        return inputs

    return create_inputs


@pytest.fixture
def performance_date() -> date:
    return TODAY
