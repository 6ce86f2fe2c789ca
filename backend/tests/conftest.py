"""Shared fixtures."""
import os
import tempfile

# Settings are read at import time, so configure before importing the app
os.environ.setdefault(
    "DATABASE_URL",
    "sqlite:///" + os.path.join(tempfile.gettempdir(), "variantlab_test.db")
)
os.environ.setdefault("SEED_DEMO_DATA", "false")

from datetime import datetime, timedelta
from unittest.mock import MagicMock

import pytest

from app.schemas.analytics import AnalyticsPointCreate
from app.schemas.tests import TestCreate
from app.services.storage import ABTestStorage


@pytest.fixture
def db():
    """Create test database session on a fresh schema."""
    from app.database import SessionLocal, engine, Base
    import app.models  # noqa: F401  registers tables

    # Create tables (dropping leftovers from an interrupted run)
    Base.metadata.drop_all(bind=engine)
    Base.metadata.create_all(bind=engine)

    # Create session
    session = SessionLocal()

    yield session

    # Cleanup
    session.close()
    Base.metadata.drop_all(bind=engine)


@pytest.fixture
def storage(db):
    return ABTestStorage(db)


@pytest.fixture
def make_test(storage):
    """Factory for a running test with autonomous optimization on."""
    def _make(variants: int = 2, **overrides):
        now = datetime.utcnow()
        data = {
            "name": "Hero video test",
            "product_name": "Trail Sneakers",
            "target_population": 10000,
            "start_time": now - timedelta(days=7),
            "end_time": now + timedelta(days=7),
            "status": "running",
            "autonomous_optimization": True,
            "min_sample_size": 100,
            "kill_switch_threshold": 30,
            "auto_win_threshold": 50,
            "variants": [
                {
                    "name": f"Variant {chr(ord('A') + i)}",
                    "video_url": f"/objects/video-{i}.mp4",
                    "thumbnail_url": f"/objects/thumb-{i}.jpg",
                }
                for i in range(variants)
            ],
        }
        data.update(overrides)
        return storage.create_test(TestCreate(**data))
    return _make


@pytest.fixture
def record(storage):
    """Factory that stores one cumulative snapshot for a variant."""
    def _record(test, variant, views: int, conversions: int, minutes_ago: int = 5):
        storage.create_analytics_batch(test.id, [
            AnalyticsPointCreate(
                variant_id=variant.id,
                timestamp=datetime.utcnow() - timedelta(minutes=minutes_ago),
                views=views,
                conversions=conversions,
                interactions=views // 10
            )
        ])
    return _record


@pytest.fixture
def mock_redis():
    """Create a mock Redis client where the evaluation lock is free."""
    redis_mock = MagicMock()
    redis_mock.set.return_value = True
    redis_mock.get.return_value = None
    redis_mock.scan_iter.return_value = []
    return redis_mock


@pytest.fixture
def client(db, mock_redis):
    """API client sharing the test session and a mock Redis lock."""
    from fastapi.testclient import TestClient
    from app.main import app
    from app.database import get_db
    from app.api.deps import get_redis

    def override_get_db():
        yield db

    app.dependency_overrides[get_db] = override_get_db
    app.dependency_overrides[get_redis] = lambda: mock_redis

    yield TestClient(app)

    app.dependency_overrides.clear()
