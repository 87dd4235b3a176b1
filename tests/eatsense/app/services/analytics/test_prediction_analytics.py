import numpy as np
import pytest
from sklearn.metrics import confusion_matrix as sk_confusion_matrix
from sklearn.metrics import f1_score, precision_recall_fscore_support

from eatsense.app.config.app_config import DEFAULT_CONSTRAINED_LABELS
from eatsense.app.services.analytics.prediction_analytics import PredictionAnalytics, build_confusion_matrix, label_set


@pytest.fixture
def pizza_jelly_entries(make_entry):
    """One correct pizza, one jelly predicted as pizza, one correct jelly."""
    return [make_entry("pizza"), make_entry("pizza", "jelly"), make_entry("jelly")]


def test_label_set_is_sorted_union(make_entry):
    entries = [make_entry("soup", "ribs"), make_entry("aloe")]

    assert label_set(entries) == ["aloe", "ribs", "soup"]


def test_label_set_constrained_keeps_curated_order(make_entry):
    labels = label_set([make_entry("zucchini")], constrained=True)

    assert labels == DEFAULT_CONSTRAINED_LABELS
    assert "zucchini" not in labels


def test_label_set_custom_constrained_labels():
    assert label_set([], constrained=True, constrained_labels=["soup", "aloe", "soup"]) == ["soup", "aloe"]


def test_pizza_jelly_confusion_matrix(pizza_jelly_entries):
    analytics = PredictionAnalytics(pizza_jelly_entries)

    assert analytics.labels == ["jelly", "pizza"]
    np.testing.assert_array_equal(analytics.confusion_matrix, np.array([[1, 1], [0, 1]]))


def test_pizza_jelly_metrics(pizza_jelly_entries):
    analytics = PredictionAnalytics(pizza_jelly_entries)

    per_class = analytics.per_class_metrics()

    assert analytics.overall_accuracy() == pytest.approx(2 / 3)
    assert per_class["pizza"].precision == pytest.approx(0.5)
    assert per_class["pizza"].recall == pytest.approx(1.0)
    assert per_class["jelly"].precision == pytest.approx(1.0)
    assert per_class["jelly"].recall == pytest.approx(0.5)
    assert per_class["jelly"].support == 2
    assert per_class["pizza"].support == 1
    assert per_class["pizza"].f1 == pytest.approx(2 / 3)


def test_matrix_sum_counts_only_in_set_entries(make_entry):
    entries = [make_entry("pizza"), make_entry("pizza", "zucchini"), make_entry("kale", "soup")]

    matrix = build_confusion_matrix(entries, ["pizza", "soup"])

    assert matrix.sum() == 1
    assert matrix[0, 0] == 1


def test_constrained_mode_skips_out_of_set_entries(make_entry):
    entries = [make_entry("pizza"), make_entry("pizza", "zucchini"), make_entry("soup", "jelly")]

    analytics = PredictionAnalytics(entries, constrained=True)
    summary = analytics.summary()

    assert len(analytics.labels) == len(DEFAULT_CONSTRAINED_LABELS)
    assert analytics.confusion_matrix.shape == (20, 20)
    assert summary.entry_count == 3
    assert summary.counted_entries == 2
    assert analytics.overall_accuracy() == pytest.approx(0.5)


def test_empty_log():
    analytics = PredictionAnalytics([])

    assert analytics.labels == []
    assert analytics.confusion_matrix.shape == (0, 0)
    assert analytics.overall_accuracy() == 0.0
    assert analytics.macro_f1() == 0.0
    assert analytics.per_class_metrics() == {}


def test_zero_support_class_reports_zeros(make_entry):
    analytics = PredictionAnalytics([make_entry("pizza")], constrained=True)

    soup = analytics.per_class_metrics()["soup"]

    assert (soup.precision, soup.recall, soup.f1, soup.support) == (0.0, 0.0, 0.0, 0)


def test_never_predicted_class_has_zero_precision(make_entry):
    analytics = PredictionAnalytics([make_entry("pizza", "jelly")])

    jelly = analytics.per_class_metrics()["jelly"]

    assert jelly.precision == 0.0
    assert jelly.recall == 0.0
    assert jelly.support == 1
    assert analytics.overall_accuracy() == 0.0


def test_macro_f1_is_unweighted_mean(pizza_jelly_entries, make_entry):
    analytics = PredictionAnalytics(pizza_jelly_entries + [make_entry("soup", "ribs")])

    per_class = analytics.per_class_metrics()

    expected = sum(m.f1 for m in per_class.values()) / 4
    assert analytics.macro_f1() == pytest.approx(expected)


def test_entries_are_not_mutated(pizza_jelly_entries):
    before = list(pizza_jelly_entries)

    PredictionAnalytics(pizza_jelly_entries).summary()

    assert pizza_jelly_entries == before


def test_summary_is_plain_data(pizza_jelly_entries):
    summary = PredictionAnalytics(pizza_jelly_entries).summary()

    assert summary.confusion_matrix == [[1, 1], [0, 1]]
    assert summary.model_dump()["per_class"]["jelly"]["recall"] == pytest.approx(0.5)


def test_matches_sklearn(make_entry):
    pairs = [
        ("pizza", "pizza"),
        ("pizza", "jelly"),
        ("jelly", "jelly"),
        ("soup", "soup"),
        ("soup", "ribs"),
        ("ribs", "soup"),
        ("ribs", "ribs"),
        ("fries", "chips"),
        ("chips", "chips"),
    ]
    entries = [make_entry(predicted, actual) for predicted, actual in pairs]
    y_pred = [predicted for predicted, _ in pairs]
    y_true = [actual for _, actual in pairs]

    analytics = PredictionAnalytics(entries)
    labels = analytics.labels

    np.testing.assert_array_equal(analytics.confusion_matrix, sk_confusion_matrix(y_true, y_pred, labels=labels))

    precision, recall, f1, support = precision_recall_fscore_support(
        y_true, y_pred, labels=labels, zero_division=0
    )
    per_class = analytics.per_class_metrics()
    for i, label in enumerate(labels):
        assert per_class[label].precision == pytest.approx(precision[i])
        assert per_class[label].recall == pytest.approx(recall[i])
        assert per_class[label].f1 == pytest.approx(f1[i])
        assert per_class[label].support == support[i]

    assert analytics.macro_f1() == pytest.approx(f1_score(y_true, y_pred, labels=labels, average="macro", zero_division=0))
