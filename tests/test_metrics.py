from __future__ import annotations

from dataclasses import replace

import pytest

from provider_quality.metrics import derive_all, derive_metrics, safe_ratio


def test_counts_and_rates(make_review):
    d = derive_metrics(make_review(tp=18, tn=6, fp=2, fn=4, significance=3))
    assert d.negative_count == 8
    assert d.positive_count == 22
    assert d.total_count == d.negative_count + d.positive_count
    assert d.rates.false_positive_rate == pytest.approx(2 / 8)
    assert d.rates.false_negative_rate == pytest.approx(4 / 22)
    assert d.rates.error_rate == pytest.approx(6 / 30)
    assert d.rates.weighted_fpr == pytest.approx(3 * 2 / 8)
    assert d.rates.weighted_fnr == pytest.approx(3 * 4 / 22)
    assert d.rates.weighted_error_rate == pytest.approx(3 * 6 / 30)
    assert d.rates.error_rate * d.total_count == pytest.approx(6)


def test_zero_denominators_are_undefined(make_review):
    d = derive_metrics(make_review(tp=5, fn=1))
    assert d.negative_count == 0
    assert d.rates.false_positive_rate is None
    assert d.rates.weighted_fpr is None
    assert d.rates.false_negative_rate == pytest.approx(1 / 6)

    empty = derive_metrics(make_review())
    assert empty.total_count == 0
    assert empty.rates.error_rate is None
    assert empty.rates.weighted_error_rate is None


def test_missing_significance_weighs_zero(make_review):
    d = derive_metrics(make_review(tp=9, fn=1))
    assert d.significance_weight == 0.0
    assert d.rates.weighted_fnr == 0.0
    assert d.rates.false_negative_rate == pytest.approx(0.1)


def test_missing_raw_count_is_not_imputed(make_review):
    review = make_review(tp=4, tn=4, fp=1, fn=1)
    d = derive_metrics(replace(review, true_negative=None))
    assert d.negative_count is None
    assert d.total_count is None
    assert d.rates.false_positive_rate is None
    assert d.rates.error_rate is None
    assert d.positive_count == 5


def test_safe_ratio():
    assert safe_ratio(1, 4) == 0.25
    assert safe_ratio(1, 0) is None
    assert safe_ratio(None, 2) is None


def test_derive_all_preserves_order(make_review):
    reviews = [make_review(exam_id=str(i), tp=i + 1) for i in range(5)]
    derived = derive_all(reviews)
    assert [d.review.exam_id for d in derived] == ["0", "1", "2", "3", "4"]
    for d in derived:
        if d.rates.error_rate is not None:
            assert d.rates.error_rate * d.total_count == pytest.approx(
                d.review.total_diagnostic_errors
            )
