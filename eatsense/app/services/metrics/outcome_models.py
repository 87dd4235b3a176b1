from typing import Annotated, Dict, Literal, Optional, Union

from pydantic import BaseModel, ConfigDict, Field


class TruePositiveOutcome(BaseModel):
    """Detection confirmed by the user logging food."""

    model_config = ConfigDict(frozen=True)

    kind: Literal["true_positive"] = "true_positive"
    food_logged: bool = True
    food_type: Optional[str] = None


class FalsePositiveOutcome(BaseModel):
    """Detection dismissed by the user."""

    model_config = ConfigDict(frozen=True)

    kind: Literal["false_positive"] = "false_positive"


class FalseNegativeOutcome(BaseModel):
    """Food logged manually with no detection."""

    model_config = ConfigDict(frozen=True)

    kind: Literal["false_negative"] = "false_negative"


class UnknownOutcome(BaseModel):
    model_config = ConfigDict(frozen=True)

    kind: Literal["unknown"] = "unknown"


DetectionOutcome = Annotated[
    Union[TruePositiveOutcome, FalsePositiveOutcome, FalseNegativeOutcome, UnknownOutcome],
    Field(discriminator="kind"),
]


class AccuracyMetrics(BaseModel):
    """Detection accuracy overall and per partition, all as fractions in [0, 1]."""

    overall_accuracy: float = 0.0
    by_modality: Dict[str, float] = Field(default_factory=dict)
    by_model: Dict[str, float] = Field(default_factory=dict)
