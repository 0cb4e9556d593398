from __future__ import annotations

import logging

import pytest

from provider_quality.aggregate import (
    WeightedMean,
    aggregate_providers,
    collapse_exams,
    mean_of,
    sum_of,
    weighted_mean,
)
from provider_quality.metrics import derive_all


def test_weighted_mean_skips_undefined_and_zero_weight():
    acc = WeightedMean()
    acc.add(0.5, 10)
    acc.add(None, 5)
    acc.add(0.9, 0)
    acc.add(0.2, None)
    acc.add(0.0, 10)
    assert acc.count == 2
    assert acc.value == pytest.approx(0.25)
    assert WeightedMean().value is None


def test_plain_helpers():
    assert mean_of([1.0, None, 3.0]) == 2.0
    assert mean_of([None, None]) is None
    assert sum_of([None, 2.0, 3.0]) == 5.0
    assert sum_of([]) == 0.0
    assert weighted_mean([(1.0, 1.0), (4.0, 3.0)]) == pytest.approx(3.25)


def test_single_review_collapse_is_identity(make_review):
    (derived,) = derive_all([make_review(tp=7, tn=5, fp=2, fn=1, significance=2)])
    (exam,) = collapse_exams([derived])
    assert exam.review_count == 1
    assert (exam.exam_id, exam.provider_id) == ("e1", "p1")
    assert exam.true_positive == 7
    assert exam.negative_count == derived.negative_count
    assert exam.positive_count == derived.positive_count
    assert exam.total_count == derived.total_count
    assert exam.significance_weight == derived.significance_weight
    assert exam.rad_peer_score == derived.review.rad_peer_score
    for got, expected in [
        (exam.rates.false_positive_rate, derived.rates.false_positive_rate),
        (exam.rates.weighted_fpr, derived.rates.weighted_fpr),
        (exam.rates.false_negative_rate, derived.rates.false_negative_rate),
        (exam.rates.weighted_fnr, derived.rates.weighted_fnr),
        (exam.rates.error_rate, derived.rates.error_rate),
        (exam.rates.weighted_error_rate, derived.rates.weighted_error_rate),
    ]:
        assert got == pytest.approx(expected)


def test_collapse_keys_by_exam_and_provider(make_review):
    reviews = [
        make_review(exam_id="x", provider_id="a", reviewer_id="r1", tp=1),
        make_review(exam_id="x", provider_id="a", reviewer_id="r2", tp=3),
        make_review(exam_id="x", provider_id="b", reviewer_id="r1", tp=5),
    ]
    exams = collapse_exams(derive_all(reviews))
    assert [(e.exam_id, e.provider_id, e.review_count) for e in exams] == [
        ("x", "a", 2),
        ("x", "b", 1),
    ]
    assert exams[0].true_positive == 2


def test_two_reviewer_exam_is_count_weighted(make_review):
    reviews = [
        make_review(exam_id="X", reviewer_id="r1", tp=18, fn=2),
        make_review(exam_id="X", reviewer_id="r2", tp=2, fn=0),
        make_review(exam_id="Y", reviewer_id="r1", tn=2),
    ]
    exams = collapse_exams(derive_all(reviews))
    exam_x = exams[0]
    assert exam_x.total_count == 11
    assert exam_x.rates.error_rate == pytest.approx(2 / 22)
    assert exam_x.rates.false_negative_rate == pytest.approx(2 / 22)
    assert exam_x.rates.false_positive_rate is None

    (provider,) = aggregate_providers(exams)
    assert provider.exam_count == 2
    assert provider.rates.false_negative_rate == pytest.approx(2 / 22)
    assert provider.rates.error_rate == pytest.approx(
        provider.total_diagnostic_errors / provider.total_count, abs=1e-9
    )
    naive = (exam_x.rates.error_rate + exams[1].rates.error_rate) / 2
    assert provider.rates.error_rate != pytest.approx(naive)


def test_unweighted_collapse_averages_rates(make_review):
    reviews = [
        make_review(exam_id="X", reviewer_id="r1", tp=18, fn=2),
        make_review(exam_id="X", reviewer_id="r2", tp=2, fn=0),
    ]
    (exam,) = collapse_exams(derive_all(reviews), weighted_rates=False)
    assert exam.rates.error_rate == pytest.approx(0.05)


def test_all_undefined_rate_stays_undefined(make_review):
    reviews = [
        make_review(exam_id="X", reviewer_id="r1", tp=3),
        make_review(exam_id="X", reviewer_id="r2", tp=4),
    ]
    (exam,) = collapse_exams(derive_all(reviews))
    assert exam.rates.false_positive_rate is None
    (provider,) = aggregate_providers([exam])
    assert provider.rates.false_positive_rate is None
    assert provider.negative_count == 0


def test_divergent_intrinsic_attributes_warn_and_keep_first(make_review, caplog):
    reviews = [
        make_review(exam_id="X", reviewer_id="r1", tp=1, body_part="CHEST"),
        make_review(exam_id="X", reviewer_id="r2", tp=1, body_part="HEAD"),
    ]
    with caplog.at_level(logging.WARNING):
        (exam,) = collapse_exams(derive_all(reviews))
    assert exam.body_part == "CHEST"
    assert "body_part" in caplog.text
    assert "exam=X" in caplog.text


def test_provider_rates_match_summed_counts(separated_reviews):
    providers = aggregate_providers(collapse_exams(derive_all(separated_reviews)))
    assert [p.provider_id for p in providers] == sorted(p.provider_id for p in providers)
    for p in providers:
        assert p.negative_count > 0
        assert p.rates.false_positive_rate == pytest.approx(
            p.false_positive / p.negative_count, abs=1e-9
        )
        assert p.rates.false_negative_rate == pytest.approx(
            p.false_negative / p.positive_count, abs=1e-9
        )
        assert p.rates.error_rate == pytest.approx(
            p.total_diagnostic_errors / p.total_count, abs=1e-9
        )
        assert p.total_count == p.negative_count + p.positive_count


def test_exam_count_and_score_means(make_review):
    reviews = [
        make_review(exam_id="1", tp=1, rad_peer=1.0, technical=None),
        make_review(exam_id="2", tp=1, rad_peer=3.0, technical=2.0),
    ]
    (provider,) = aggregate_providers(collapse_exams(derive_all(reviews)))
    assert provider.exam_count == 2
    assert provider.rad_peer_score == 2.0
    assert provider.technical_performance_score == 2.0


def test_missing_raw_count_keeps_rate_and_sums_consistent(make_review):
    reviews = [
        make_review(exam_id="1", tp=4, tn=4, fp=1),
        make_review(exam_id="2", tp=4, tn=None, fp=1),
    ]
    (provider,) = aggregate_providers(collapse_exams(derive_all(reviews)))
    assert provider.rates.false_positive_rate == pytest.approx(0.2)
    assert provider.false_positive == 1
    assert provider.true_negative == 4
    assert provider.negative_count == 5
    assert provider.rates.false_positive_rate == pytest.approx(
        provider.false_positive / provider.negative_count, abs=1e-9
    )
    assert provider.rates.error_rate == pytest.approx(
        provider.total_diagnostic_errors / provider.total_count, abs=1e-9
    )
    assert provider.true_positive == 8
    assert provider.rates.false_negative_rate == 0.0


def test_missing_raw_count_within_one_exam(make_review):
    reviews = [
        make_review(exam_id="X", reviewer_id="r1", tp=4, tn=4, fp=1),
        make_review(exam_id="X", reviewer_id="r2", tp=4, tn=None, fp=3),
    ]
    (exam,) = collapse_exams(derive_all(reviews))
    assert exam.false_positive == 1
    assert exam.negative_count == 5
    assert exam.rates.false_positive_rate == pytest.approx(exam.false_positive / exam.negative_count)
