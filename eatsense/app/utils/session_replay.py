"""Replay of recorded sessions through the event bus.

A session file is JSON lines; each record has a "type" naming the event it
becomes and the event's fields, e.g.::

    {"type": "frame", "timestamp": 12.5, "classifications": {"chewing": 0.7}}
    {"type": "response", "user_logged_food": true, "predicted_food_correct": false, "selected_food": "pizza"}
    {"type": "end_episode"}
    {"type": "food", "predicted_food": "pizza", "food_name": "jelly", "calories": 120, "was_prediction_correct": false}

Blank lines and lines starting with '#' are ignored.
"""

import json
import logging
from pathlib import Path
from typing import Dict, Iterator, List, Optional, Type, Union

from pydantic import ValidationError

from eatsense.app.event_bus import EventBus
from eatsense.app.events.base_event import BaseEvent
from eatsense.app.events.detection_events import (
    ClassificationFrameEvent,
    DetectionResponseEvent,
    EndEatingEpisodeCommand,
    LogFoodEntryCommand,
    ManualFoodLogCommand,
    ResetCooldownCommand,
    UpdateDetectionSettingsCommand,
    UpdateMetricsSettingsCommand,
)

logger = logging.getLogger(__name__)

REPLAY_EVENT_TYPES: Dict[str, Type[BaseEvent]] = {
    "frame": ClassificationFrameEvent,
    "response": DetectionResponseEvent,
    "end_episode": EndEatingEpisodeCommand,
    "manual_log": ManualFoodLogCommand,
    "reset_cooldown": ResetCooldownCommand,
    "detection_settings": UpdateDetectionSettingsCommand,
    "metrics_settings": UpdateMetricsSettingsCommand,
    "food": LogFoodEntryCommand,
}


class ReplayFormatError(ValueError):
    """A session record could not be turned into an event."""

    def __init__(self, line_number: int, message: str) -> None:
        super().__init__(f"line {line_number}: {message}")
        self.line_number = line_number


def parse_record(record: Dict, line_number: int = 0) -> BaseEvent:
    """Build the event for one decoded session record.

    Raises:
        ReplayFormatError: On an unknown type or invalid fields.
    """
    fields = dict(record)
    record_type = fields.pop("type", None)
    event_type = REPLAY_EVENT_TYPES.get(record_type)
    if event_type is None:
        raise ReplayFormatError(line_number, f"unknown record type {record_type!r}")
    try:
        return event_type(**fields)
    except ValidationError as e:
        raise ReplayFormatError(line_number, str(e)) from e


def iter_session_events(lines: Union[List[str], Iterator[str]]) -> Iterator[BaseEvent]:
    """Decode session lines into events, keeping record order."""
    for line_number, line in enumerate(lines, start=1):
        line = line.strip()
        if not line or line.startswith("#"):
            continue
        try:
            record = json.loads(line)
        except json.JSONDecodeError as e:
            raise ReplayFormatError(line_number, f"invalid JSON: {e}") from e
        if not isinstance(record, dict):
            raise ReplayFormatError(line_number, "record must be a JSON object")
        yield parse_record(record, line_number=line_number)


def load_session(path: Union[str, Path]) -> List[BaseEvent]:
    with open(path, "r", encoding="utf-8") as f:
        return list(iter_session_events(f))


async def replay_session(event_bus: EventBus, events: List[BaseEvent], idle_timeout: Optional[float] = 5.0) -> int:
    """Publish events one at a time, letting the bus go idle between them.

    Waiting for idle keeps the recorded order even though the bus dispatches by
    priority. Episode-closing commands without a timestamp inherit the time of the
    most recent frame so cooldowns are measured on the recording's clock.

    Returns:
        Number of events published.
    """
    last_frame_time: Optional[float] = None
    published = 0

    for event in events:
        if isinstance(event, ClassificationFrameEvent) and event.timestamp is not None:
            last_frame_time = event.timestamp
        elif isinstance(event, EndEatingEpisodeCommand) and event.timestamp is None and last_frame_time is not None:
            event = event.model_copy(update={"timestamp": last_frame_time})

        await event_bus.publish(event)
        published += 1
        await event_bus.wait_until_idle(timeout=idle_timeout)

    logger.info(f"Replayed {published} session events")
    return published
