"""Food-type prediction quality from the confirmed food log.

Builds a confusion matrix (rows = actual food, columns = predicted food) and the
per-class and aggregate metrics derived from it. Everything is recomputed from
the entries on construction; nothing is cached between calls to the class.
Any ratio whose denominator is zero is reported as 0.0.
"""

import logging
from typing import Dict, Iterable, List, Optional, Sequence

import numpy as np
from pydantic import BaseModel, Field

from eatsense.app.config.app_config import DEFAULT_CONSTRAINED_LABELS
from eatsense.app.services.storage.storage_models import FoodEntry

logger = logging.getLogger(__name__)


class PerClassMetrics(BaseModel):
    precision: float = 0.0
    recall: float = 0.0
    f1: float = 0.0
    support: int = 0


class AnalyticsSummary(BaseModel):
    """Everything an analytics report needs, in plain types."""

    labels: List[str] = Field(default_factory=list)
    confusion_matrix: List[List[int]] = Field(default_factory=list)
    per_class: Dict[str, PerClassMetrics] = Field(default_factory=dict)
    overall_accuracy: float = 0.0
    macro_f1: float = 0.0
    entry_count: int = 0
    counted_entries: int = 0


def label_set(
    entries: Iterable[FoodEntry], constrained: bool = False, constrained_labels: Optional[Sequence[str]] = None
) -> List[str]:
    """Labels indexing the confusion matrix.

    Args:
        entries: Food log entries.
        constrained: Use the curated vocabulary instead of the labels seen in the log.
        constrained_labels: Curated vocabulary (defaults to the trained food categories).

    Returns:
        The curated labels in curated order, or the sorted union of predicted and
        actual foods.
    """
    if constrained:
        curated = constrained_labels if constrained_labels is not None else DEFAULT_CONSTRAINED_LABELS
        return list(dict.fromkeys(curated))
    seen = set()
    for entry in entries:
        seen.add(entry.predicted_food)
        seen.add(entry.actual_food)
    return sorted(seen)


def build_confusion_matrix(entries: Iterable[FoodEntry], labels: Sequence[str]) -> np.ndarray:
    """Count (actual, predicted) pairs; entries with a label outside `labels` are skipped."""
    index = {label: i for i, label in enumerate(labels)}
    matrix = np.zeros((len(labels), len(labels)), dtype=np.int64)
    for entry in entries:
        actual_idx = index.get(entry.actual_food)
        predicted_idx = index.get(entry.predicted_food)
        if actual_idx is None or predicted_idx is None:
            continue
        matrix[actual_idx, predicted_idx] += 1
    return matrix


def _safe_ratio(numerator: float, denominator: float) -> float:
    return float(numerator) / float(denominator) if denominator else 0.0


class PredictionAnalytics:
    """Confusion matrix and metrics for one food log.

    Attributes:
        entries: The food entries analysed (never mutated).
        labels: Matrix row/column labels.
        confusion_matrix: Integer matrix, matrix[i, j] = actual labels[i] predicted as labels[j].
    """

    def __init__(
        self,
        entries: Sequence[FoodEntry],
        constrained: bool = False,
        constrained_labels: Optional[Sequence[str]] = None,
    ) -> None:
        self.entries: List[FoodEntry] = list(entries)
        self.constrained = constrained
        self.labels: List[str] = label_set(self.entries, constrained=constrained, constrained_labels=constrained_labels)
        self.label_index: Dict[str, int] = {label: i for i, label in enumerate(self.labels)}
        self.confusion_matrix: np.ndarray = build_confusion_matrix(self.entries, self.labels)

        counted = int(self.confusion_matrix.sum())
        if counted < len(self.entries):
            logger.debug(f"{len(self.entries) - counted} food entries fall outside the label set and were skipped")

    def per_class_metrics(self) -> Dict[str, PerClassMetrics]:
        """Precision, recall, F1 and support for every label, in label order."""
        matrix = self.confusion_matrix
        column_sums = matrix.sum(axis=0)
        row_sums = matrix.sum(axis=1)

        result: Dict[str, PerClassMetrics] = {}
        for i, label in enumerate(self.labels):
            true_pos = int(matrix[i, i])
            false_pos = int(column_sums[i]) - true_pos
            false_neg = int(row_sums[i]) - true_pos
            precision = _safe_ratio(true_pos, true_pos + false_pos)
            recall = _safe_ratio(true_pos, true_pos + false_neg)
            f1 = _safe_ratio(2 * precision * recall, precision + recall)
            result[label] = PerClassMetrics(precision=precision, recall=recall, f1=f1, support=int(row_sums[i]))
        return result

    def overall_accuracy(self) -> float:
        return _safe_ratio(int(np.trace(self.confusion_matrix)), int(self.confusion_matrix.sum()))

    def macro_f1(self) -> float:
        """Unweighted mean of per-class F1; 0.0 without labels."""
        metrics = self.per_class_metrics()
        if not metrics:
            return 0.0
        return sum(m.f1 for m in metrics.values()) / len(metrics)

    def summary(self) -> AnalyticsSummary:
        return AnalyticsSummary(
            labels=list(self.labels),
            confusion_matrix=self.confusion_matrix.tolist(),
            per_class=self.per_class_metrics(),
            overall_accuracy=self.overall_accuracy(),
            macro_f1=self.macro_f1(),
            entry_count=len(self.entries),
            counted_entries=int(self.confusion_matrix.sum()),
        )
