from typing import Dict, List, Optional

from pydantic import Field

from eatsense.app.events.base_event import BaseEvent, EventPriority


class ClassificationFrameEvent(BaseEvent):
    """One analysis window from the external sound classifier.

    Attributes:
        classifications: Label to confidence mapping for the window.
        timestamp: Window time in seconds; the service clock is used when omitted.
    """

    classifications: Dict[str, float] = Field(default_factory=dict, description="Label to confidence for this window")
    timestamp: Optional[float] = Field(default=None, description="Window timestamp in seconds")
    priority: EventPriority = EventPriority.NORMAL


class EatingStateChangedEvent(BaseEvent):
    """Debounced eating state transition.

    Attributes:
        is_eating: True when an episode opened, False when it was resolved.
        confidence: Aggregate eating confidence of the triggering frame.
        predicted_label: Most confident label of the triggering frame.
        timestamp: Time of the transition in seconds.
        reason: Why an episode closed (user, timeout, ...); None for openings.
    """

    is_eating: bool
    confidence: float = 0.0
    predicted_label: Optional[str] = None
    timestamp: float
    reason: Optional[str] = None
    priority: EventPriority = EventPriority.CRITICAL


class NotificationSentEvent(BaseEvent):
    """An eating episode was surfaced to the user."""

    predicted_label: Optional[str] = None
    total_sent: int
    priority: EventPriority = EventPriority.LOW


class EndEatingEpisodeCommand(BaseEvent):
    """Close the open eating episode; a no-op when nothing is open."""

    reason: str = Field(default="user", description="Why the episode is being closed")
    timestamp: Optional[float] = None
    priority: EventPriority = EventPriority.CRITICAL


class ResetCooldownCommand(BaseEvent):
    """Forget the last episode end so a new episode may trigger immediately."""

    priority: EventPriority = EventPriority.NORMAL


class UpdateDetectionSettingsCommand(BaseEvent):
    """Change debouncer settings; unset fields keep their current value."""

    eating_threshold: Optional[float] = Field(default=None, ge=0.0, le=1.0)
    cooldown_seconds: Optional[float] = Field(default=None, gt=0)
    eating_keywords: Optional[List[str]] = None
    priority: EventPriority = EventPriority.NORMAL


class DetectionResponseEvent(BaseEvent):
    """User's answer to a surfaced eating episode.

    Attributes:
        user_logged_food: True if the user logged food (confirmation), False if dismissed.
        predicted_food_correct: Whether the predicted food type was right, when judged.
        selected_food: Food the user picked, if any.
    """

    user_logged_food: bool
    predicted_food_correct: Optional[bool] = None
    selected_food: Optional[str] = None
    priority: EventPriority = EventPriority.HIGH


class ManualFoodLogCommand(BaseEvent):
    """User logged food without a detection prompt."""

    priority: EventPriority = EventPriority.HIGH


class UpdateMetricsSettingsCommand(BaseEvent):
    """Switch the modality/model partitions that subsequent outcomes are recorded under."""

    modality: str
    model: str
    priority: EventPriority = EventPriority.NORMAL


class LogFoodEntryCommand(BaseEvent):
    """Append a confirmed or corrected food entry to the food log."""

    predicted_food: str
    food_name: str
    calories: int = Field(default=0, ge=0)
    was_prediction_correct: bool
    timestamp: Optional[float] = None
    priority: EventPriority = EventPriority.HIGH


class FoodEntryLoggedEvent(BaseEvent):
    """A food entry was appended to the log."""

    food_name: str
    predicted_food: str
    total_entries: int
    priority: EventPriority = EventPriority.LOW
