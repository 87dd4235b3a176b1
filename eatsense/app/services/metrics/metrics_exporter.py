import csv
import io
import logging
import os
import uuid
from pathlib import Path
from typing import Union

from eatsense.app.services.analytics.prediction_analytics import PredictionAnalytics
from eatsense.app.services.metrics.outcome_recorder import OutcomeRecorder

logger = logging.getLogger(__name__)


def _csv_writer(buffer: io.StringIO):
    return csv.writer(buffer, lineterminator="\n")


def export_metrics_csv(recorder: OutcomeRecorder) -> str:
    """Render detection counters and partition accuracies as a two-column report.

    Accuracies are raw fractions; partition rows are sorted by name. Names
    containing commas or quotes are quoted.
    """
    snapshot = recorder.snapshot()
    accuracy = recorder.accuracy_metrics()

    buffer = io.StringIO()
    writer = _csv_writer(buffer)
    writer.writerows(
        [
            ["Metric", "Value"],
            ["Notifications Sent", snapshot.notifications_sent],
            ["True Positives", snapshot.true_positives],
            ["False Positives", snapshot.false_positives],
            ["False Negatives", snapshot.false_negatives],
            ["Correct Food Predictions", snapshot.correct_food_predictions],
            ["Incorrect Food Predictions", snapshot.incorrect_food_predictions],
            [],
            ["Accuracy by Modality"],
        ]
    )
    writer.writerows([name, value] for name, value in sorted(accuracy.by_modality.items()))
    writer.writerow([])
    writer.writerow(["Accuracy by Model"])
    writer.writerows([name, value] for name, value in sorted(accuracy.by_model.items()))

    return buffer.getvalue()


def export_confusion_matrix_csv(analytics: PredictionAnalytics) -> str:
    """Render the confusion matrix followed by per-class and aggregate metrics."""
    summary = analytics.summary()

    buffer = io.StringIO()
    writer = _csv_writer(buffer)
    writer.writerow(["actual\\predicted"] + summary.labels)
    for label, row in zip(summary.labels, summary.confusion_matrix):
        writer.writerow([label] + row)

    writer.writerow([])
    writer.writerow(["Label", "Precision", "Recall", "F1", "Support"])
    for label, metrics in summary.per_class.items():
        writer.writerow([label, metrics.precision, metrics.recall, metrics.f1, metrics.support])

    writer.writerow([])
    writer.writerow(["Overall Accuracy", summary.overall_accuracy])
    writer.writerow(["Macro F1", summary.macro_f1])

    return buffer.getvalue()


def write_report(path: Union[str, Path], text: str) -> Path:
    """Atomically write a report, creating parent directories.

    Raises:
        OSError: If the file cannot be written.
    """
    path = Path(path)
    path.parent.mkdir(parents=True, exist_ok=True)
    temp_path = path.with_suffix(f".tmp.{uuid.uuid4().hex}")
    try:
        with open(temp_path, "w", encoding="utf-8", newline="") as f:
            f.write(text)
        os.replace(temp_path, path)
    finally:
        if temp_path.exists():
            os.remove(temp_path)

    logger.info(f"Report written to {path}")
    return path
