from unittest.mock import Mock

import pytest

from eatsense.app.events.detection_events import (
    ClassificationFrameEvent,
    EatingStateChangedEvent,
    EndEatingEpisodeCommand,
    ResetCooldownCommand,
    UpdateDetectionSettingsCommand,
)
from eatsense.app.services.detection.eating_detection_service import EatingDetectionService


@pytest.fixture
def detection_service(mock_event_bus, test_mode_config):
    return EatingDetectionService(event_bus=mock_event_bus, config=test_mode_config, clock=lambda: 1000.0)


def _published_changes(mock_event_bus):
    return [call.args[0] for call in mock_event_bus.publish.call_args_list if isinstance(call.args[0], EatingStateChangedEvent)]


def test_debouncer_uses_effective_config(detection_service):
    assert detection_service.debouncer.eating_threshold == 0.2
    assert detection_service.debouncer.cooldown_seconds == 30.0


def test_production_values_without_test_mode(mock_event_bus, app_config):
    service = EatingDetectionService(event_bus=mock_event_bus, config=app_config)

    assert service.debouncer.eating_threshold == 0.6
    assert service.debouncer.cooldown_seconds == 900.0


def test_setup_subscriptions(detection_service, mock_event_bus):
    detection_service.setup_subscriptions()

    subscribed = {call.kwargs["event_type"] for call in mock_event_bus.subscribe.call_args_list}
    assert subscribed == {
        ClassificationFrameEvent,
        EndEatingEpisodeCommand,
        ResetCooldownCommand,
        UpdateDetectionSettingsCommand,
    }


@pytest.mark.asyncio
async def test_frame_opening_episode_publishes_state_change(detection_service, mock_event_bus):
    await detection_service._handle_classification_frame(
        ClassificationFrameEvent(classifications={"chewing": 0.5}, timestamp=3.0)
    )

    changes = _published_changes(mock_event_bus)
    assert len(changes) == 1
    assert changes[0].is_eating is True
    assert changes[0].predicted_label == "chewing"
    assert changes[0].confidence == pytest.approx(0.5)
    assert changes[0].timestamp == 3.0
    assert detection_service.frames_processed == 1


@pytest.mark.asyncio
async def test_frame_without_change_publishes_nothing(detection_service, mock_event_bus):
    await detection_service._handle_classification_frame(ClassificationFrameEvent(classifications={"Speech": 0.9}, timestamp=1.0))

    mock_event_bus.publish.assert_not_called()


@pytest.mark.asyncio
async def test_frame_without_timestamp_uses_clock(detection_service, mock_event_bus):
    await detection_service._handle_classification_frame(ClassificationFrameEvent(classifications={"chewing": 0.5}))

    assert _published_changes(mock_event_bus)[0].timestamp == 1000.0


@pytest.mark.asyncio
async def test_invalid_frame_is_dropped(detection_service, mock_event_bus):
    await detection_service._handle_classification_frame(
        ClassificationFrameEvent(classifications={"chewing": 3.0}, timestamp=1.0)
    )

    assert detection_service.frames_rejected == 1
    assert detection_service.frames_processed == 0
    assert detection_service.debouncer.is_eating is False
    mock_event_bus.publish.assert_not_called()


@pytest.mark.asyncio
async def test_end_episode_publishes_closing_change(detection_service, mock_event_bus):
    await detection_service._handle_classification_frame(ClassificationFrameEvent(classifications={"chewing": 0.5}, timestamp=1.0))

    await detection_service._handle_end_episode(EndEatingEpisodeCommand(reason="dismissed", timestamp=4.0))

    changes = _published_changes(mock_event_bus)
    assert [c.is_eating for c in changes] == [True, False]
    assert changes[1].reason == "dismissed"
    assert changes[1].timestamp == 4.0
    assert detection_service.debouncer.state.last_episode_end == 4.0


@pytest.mark.asyncio
async def test_end_episode_when_idle_publishes_nothing(detection_service, mock_event_bus):
    await detection_service._handle_end_episode(EndEatingEpisodeCommand(timestamp=4.0))

    mock_event_bus.publish.assert_not_called()


@pytest.mark.asyncio
async def test_reset_cooldown_command(detection_service):
    await detection_service._handle_classification_frame(ClassificationFrameEvent(classifications={"chewing": 0.5}, timestamp=1.0))
    await detection_service._handle_end_episode(EndEatingEpisodeCommand(timestamp=2.0))

    detection_service._handle_reset_cooldown(ResetCooldownCommand())

    await detection_service._handle_classification_frame(ClassificationFrameEvent(classifications={"chewing": 0.5}, timestamp=3.0))
    assert detection_service.debouncer.is_eating is True


def test_settings_update_command(detection_service):
    detection_service._handle_settings_update(UpdateDetectionSettingsCommand(eating_threshold=0.7, cooldown_seconds=60.0))

    assert detection_service.debouncer.eating_threshold == 0.7
    assert detection_service.debouncer.cooldown_seconds == 60.0


def test_invalid_settings_update_is_rejected(detection_service):
    detection_service.debouncer.update_settings = Mock(side_effect=ValueError("bad threshold"))

    detection_service._handle_settings_update(UpdateDetectionSettingsCommand(eating_threshold=0.7))

    assert detection_service.debouncer.eating_threshold == 0.2


@pytest.mark.asyncio
async def test_episode_timeout_closes_stale_episode(mock_event_bus, test_mode_config):
    test_mode_config.detection.episode_timeout_seconds = 120.0
    service = EatingDetectionService(event_bus=mock_event_bus, config=test_mode_config)

    await service._handle_classification_frame(ClassificationFrameEvent(classifications={"chewing": 0.5}, timestamp=0.0))
    await service._handle_classification_frame(ClassificationFrameEvent(classifications={"Silence": 1.0}, timestamp=60.0))
    assert service.debouncer.is_eating is True

    await service._handle_classification_frame(ClassificationFrameEvent(classifications={"Silence": 1.0}, timestamp=120.0))

    changes = _published_changes(mock_event_bus)
    assert [c.is_eating for c in changes] == [True, False]
    assert changes[1].reason == "timeout"
    assert service.debouncer.state.last_episode_end == 120.0


@pytest.mark.asyncio
async def test_no_timeout_by_default(detection_service, mock_event_bus):
    await detection_service._handle_classification_frame(ClassificationFrameEvent(classifications={"chewing": 0.5}, timestamp=0.0))
    await detection_service._handle_classification_frame(ClassificationFrameEvent(classifications={}, timestamp=100000.0))

    assert detection_service.debouncer.is_eating is True
    assert len(_published_changes(mock_event_bus)) == 1
