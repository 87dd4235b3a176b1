from enum import IntEnum

from pydantic import BaseModel


class EventPriority(IntEnum):
    """Priority levels for event processing in the event bus.

    Lower values are dequeued first. CRITICAL events also skip the worker's
    inter-event sleep.

    Attributes:
        CRITICAL: Detection state transitions and episode resolution.
        HIGH: User responses that must be tallied before the next transition.
        NORMAL: Classification frames and configuration commands.
        LOW: Informational notifications.
    """

    CRITICAL = 10
    HIGH = 20
    NORMAL = 50
    LOW = 80


class BaseEvent(BaseModel):
    """Root of the event hierarchy; everything published on the EventBus subclasses it."""

    priority: EventPriority = EventPriority.NORMAL
