from typing import Dict, List

from pydantic import BaseModel, ConfigDict, Field

from eatsense.app.services.metrics.outcome_models import DetectionOutcome


class StorageData(BaseModel):
    """Base class for all storage models with versioning support."""

    version: int = Field(default=1, description="Schema version for migrations")


class FoodEntry(BaseModel):
    """A confirmed or corrected food log entry.

    actual_food is the food the user confirmed, so it matches food_name.
    """

    model_config = ConfigDict(frozen=True)

    food_name: str
    predicted_food: str
    actual_food: str
    calories: int = Field(default=0, ge=0)
    was_prediction_correct: bool
    timestamp: float


class FoodLogData(StorageData):
    """Storage model for the chronological food log."""

    entries: List[FoodEntry] = Field(default_factory=list, description="Food entries in insertion order")


class DetectionMetricsData(StorageData):
    """Storage model for detection outcome counters and partition logs."""

    notifications_sent: int = 0
    true_positives: int = 0
    false_positives: int = 0
    false_negatives: int = 0
    correct_food_predictions: int = 0
    incorrect_food_predictions: int = 0
    detection_by_modality: Dict[str, List[DetectionOutcome]] = Field(default_factory=dict)
    detection_by_model: Dict[str, List[DetectionOutcome]] = Field(default_factory=dict)
