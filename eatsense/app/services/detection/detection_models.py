from dataclasses import dataclass
from enum import Enum
from typing import Dict, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator


class ClassificationFrame(BaseModel):
    """One analysis window of classifier output.

    Labels are unique by construction (mapping keys); the mapping keeps the order
    the classifier reported them in, which is what breaks ties for the most
    confident label.
    """

    model_config = ConfigDict(frozen=True)

    timestamp: float
    classifications: Dict[str, float] = Field(default_factory=dict)

    @field_validator("classifications")
    @classmethod
    def validate_confidences(cls, v: Dict[str, float]) -> Dict[str, float]:
        for label, confidence in v.items():
            if not 0.0 <= confidence <= 1.0:
                raise ValueError(f"Confidence for '{label}' must be within [0, 1], got {confidence}")
        return v

    def top_label(self) -> Optional[str]:
        """Most confident label; the first one reported wins a tie. None for an empty frame."""
        best_label = None
        best_confidence = -1.0
        for label, confidence in self.classifications.items():
            if confidence > best_confidence:
                best_label = label
                best_confidence = confidence
        return best_label


class DetectionPhase(str, Enum):
    IDLE = "idle"
    EATING = "eating"


@dataclass(frozen=True)
class DetectionState:
    """Read-only snapshot of the debouncer state."""

    phase: DetectionPhase
    confidence: float = 0.0
    predicted_label: Optional[str] = None
    last_transition_time: Optional[float] = None
    last_episode_end: Optional[float] = None

    @property
    def is_eating(self) -> bool:
        return self.phase is DetectionPhase.EATING


@dataclass(frozen=True)
class EatingStateChange:
    """A debounced transition; opening changes carry the triggering frame's score and top label."""

    is_eating: bool
    confidence: float
    predicted_label: Optional[str]
    timestamp: float
    reason: Optional[str] = None
