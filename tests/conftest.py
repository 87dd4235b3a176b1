from typing import Dict, Optional
from unittest.mock import AsyncMock, Mock

import pytest
import pytest_asyncio

from eatsense.app.config.app_config import GlobalAppConfig
from eatsense.app.event_bus import EventBus
from eatsense.app.services.detection.detection_models import ClassificationFrame
from eatsense.app.services.storage.storage_models import DetectionMetricsData, FoodEntry, FoodLogData


@pytest.fixture
def app_config(tmp_path):
    """Application configuration with all storage under a temporary directory."""
    return GlobalAppConfig(
        storage={"user_data_root": str(tmp_path / "user_data")},
        logging={"enable_logs": False, "log_to_file": False},
    )


@pytest.fixture
def test_mode_config(app_config):
    """Configuration using the 30s cooldown / 0.2 threshold test-mode pair."""
    app_config.detection.test_mode = True
    return app_config


@pytest.fixture
def mock_event_bus():
    """Event bus double recording subscriptions and publishes."""
    bus = Mock()
    bus.publish = AsyncMock()
    bus.subscribe = Mock()
    return bus


@pytest_asyncio.fixture
async def event_bus():
    """Real event bus with a running worker, stopped after the test."""
    bus = EventBus(high_priority_sleep=0.0, low_priority_sleep=0.0)
    await bus.start_worker()
    yield bus
    await bus.stop_worker()


@pytest.fixture
def mock_storage():
    """Storage double returning empty models and accepting every write."""

    async def mock_read(model_type):
        if model_type == FoodLogData:
            return FoodLogData(entries=[])
        if model_type == DetectionMetricsData:
            return DetectionMetricsData()
        return None

    storage = Mock()
    storage.read = AsyncMock(side_effect=mock_read)
    storage.write = AsyncMock(return_value=True)
    return storage


@pytest.fixture
def make_frame():
    """Factory for classification frames."""

    def _make(classifications: Optional[Dict[str, float]] = None, timestamp: float = 0.0) -> ClassificationFrame:
        return ClassificationFrame(timestamp=timestamp, classifications=classifications or {})

    return _make


@pytest.fixture
def make_entry():
    """Factory for food entries; actual food defaults to the predicted one."""

    def _make(predicted: str, actual: Optional[str] = None, calories: int = 100, timestamp: float = 0.0) -> FoodEntry:
        actual = actual if actual is not None else predicted
        return FoodEntry(
            food_name=actual,
            predicted_food=predicted,
            actual_food=actual,
            calories=calories,
            was_prediction_correct=predicted == actual,
            timestamp=timestamp,
        )

    return _make
