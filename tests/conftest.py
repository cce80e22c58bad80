from datetime import datetime, timezone

import mongomock
import pytest

from database import MongoStore
from schemas import Plan


@pytest.fixture
def now():
    return datetime(2024, 5, 15, 12, 0, tzinfo=timezone.utc)


@pytest.fixture
def store():
    return MongoStore(mongomock.MongoClient()["water_ledger_test"])


@pytest.fixture
def plan():
    return Plan(liters_per_month=100, bonus_liters=20, delivery_day="Monday", delivery_time="09:00")
