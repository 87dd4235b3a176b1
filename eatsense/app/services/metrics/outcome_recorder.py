import logging
import threading
from collections import defaultdict
from typing import Dict, List, Optional

from eatsense.app.services.metrics.outcome_models import (
    AccuracyMetrics,
    DetectionOutcome,
    FalseNegativeOutcome,
    FalsePositiveOutcome,
    TruePositiveOutcome,
)
from eatsense.app.services.storage.storage_models import DetectionMetricsData

logger = logging.getLogger(__name__)


def _partition_accuracy(partitions: Dict[str, List[DetectionOutcome]]) -> Dict[str, float]:
    accuracy: Dict[str, float] = {}
    for name, outcomes in partitions.items():
        true_pos = sum(1 for outcome in outcomes if isinstance(outcome, TruePositiveOutcome))
        accuracy[name] = true_pos / len(outcomes) if outcomes else 0.0
    return accuracy


class OutcomeRecorder:
    """Tallies how surfaced eating detections were resolved.

    Keeps monotonic counters (notifications, TP/FP/FN, food prediction
    correctness) and two append-only outcome logs partitioned by the current
    detection modality and model. Every outcome lands in both partitions. All
    operations are plain counter/log updates under an RLock and never fail.

    Attributes:
        current_modality: Partition key for the modality log.
        current_model: Partition key for the model log.
    """

    def __init__(self, modality: str = "Native", model: str = "Native") -> None:
        self._lock = threading.RLock()
        self.current_modality = modality
        self.current_model = model

        self.notifications_sent = 0
        self.true_positives = 0
        self.false_positives = 0
        self.false_negatives = 0
        self.correct_food_predictions = 0
        self.incorrect_food_predictions = 0

        self._by_modality: Dict[str, List[DetectionOutcome]] = defaultdict(list)
        self._by_model: Dict[str, List[DetectionOutcome]] = defaultdict(list)

    def update_settings(self, modality: str, model: str) -> None:
        """Record subsequent outcomes under a new modality/model pair."""
        with self._lock:
            self.current_modality = modality
            self.current_model = model
        logger.info(f"Outcome partitions set to modality='{modality}', model='{model}'")

    def record_notification_sent(self) -> int:
        """Count one surfaced eating episode and return the running total."""
        with self._lock:
            self.notifications_sent += 1
            return self.notifications_sent

    def record_response(
        self,
        user_logged_food: bool,
        predicted_correct: Optional[bool] = None,
        selected_food: Optional[str] = None,
    ) -> DetectionOutcome:
        """Record the user's answer to a surfaced detection.

        Logging food confirms the detection (true positive); dismissing it is a
        false positive. Food prediction counters only move when the prediction
        was actually judged.

        Args:
            user_logged_food: Whether the user logged food in response.
            predicted_correct: Whether the predicted food type was right, if known.
            selected_food: Food the user selected.

        Returns:
            The appended outcome.
        """
        with self._lock:
            if user_logged_food:
                self.true_positives += 1
                if predicted_correct is not None:
                    if predicted_correct:
                        self.correct_food_predictions += 1
                    else:
                        self.incorrect_food_predictions += 1
                outcome: DetectionOutcome = TruePositiveOutcome(food_logged=True, food_type=selected_food)
            else:
                self.false_positives += 1
                outcome = FalsePositiveOutcome()

            self._append(outcome)

        logger.debug(f"Recorded {outcome.kind} (selected_food={selected_food}, predicted_correct={predicted_correct})")
        return outcome

    def record_manual_log(self) -> DetectionOutcome:
        """Record food logged without a detection as a false negative.

        Callers must only use this when no episode is open.
        """
        with self._lock:
            self.false_negatives += 1
            outcome = FalseNegativeOutcome()
            self._append(outcome)
        logger.debug("Recorded false_negative from manual food log")
        return outcome

    def _append(self, outcome: DetectionOutcome) -> None:
        self._by_modality[self.current_modality].append(outcome)
        self._by_model[self.current_model].append(outcome)

    def outcomes_by_modality(self) -> Dict[str, List[DetectionOutcome]]:
        with self._lock:
            return {name: list(outcomes) for name, outcomes in self._by_modality.items()}

    def outcomes_by_model(self) -> Dict[str, List[DetectionOutcome]]:
        with self._lock:
            return {name: list(outcomes) for name, outcomes in self._by_model.items()}

    def accuracy_metrics(self) -> AccuracyMetrics:
        """Overall accuracy TP / (TP + FP + FN) plus per-partition TP share (0.0 when empty)."""
        with self._lock:
            total = self.true_positives + self.false_positives + self.false_negatives
            overall = self.true_positives / total if total > 0 else 0.0
            return AccuracyMetrics(
                overall_accuracy=overall,
                by_modality=_partition_accuracy(self._by_modality),
                by_model=_partition_accuracy(self._by_model),
            )

    def food_prediction_accuracy(self) -> float:
        with self._lock:
            judged = self.correct_food_predictions + self.incorrect_food_predictions
            return self.correct_food_predictions / judged if judged > 0 else 0.0

    def snapshot(self) -> DetectionMetricsData:
        """Copy of all counters and partition logs as a storage model."""
        with self._lock:
            return DetectionMetricsData(
                notifications_sent=self.notifications_sent,
                true_positives=self.true_positives,
                false_positives=self.false_positives,
                false_negatives=self.false_negatives,
                correct_food_predictions=self.correct_food_predictions,
                incorrect_food_predictions=self.incorrect_food_predictions,
                detection_by_modality={name: list(v) for name, v in self._by_modality.items()},
                detection_by_model={name: list(v) for name, v in self._by_model.items()},
            )

    def restore(self, data: DetectionMetricsData) -> None:
        """Replace counters and partition logs with a previously taken snapshot.

        The current modality and model are kept: they come from configuration and
        update_settings(), not from persisted state.
        """
        with self._lock:
            self.notifications_sent = data.notifications_sent
            self.true_positives = data.true_positives
            self.false_positives = data.false_positives
            self.false_negatives = data.false_negatives
            self.correct_food_predictions = data.correct_food_predictions
            self.incorrect_food_predictions = data.incorrect_food_predictions
            self._by_modality = defaultdict(list, {k: list(v) for k, v in data.detection_by_modality.items()})
            self._by_model = defaultdict(list, {k: list(v) for k, v in data.detection_by_model.items()})
        logger.info(
            f"Restored detection metrics: notifications={data.notifications_sent}, TP={data.true_positives}, "
            f"FP={data.false_positives}, FN={data.false_negatives}"
        )
