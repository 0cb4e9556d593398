"""Exam-level collapse and provider-level roll-up.

Both stages share one rule for rates: a rate is averaged with the count it
was computed from as the weight (``negative_count`` for the false-positive
rates, ``positive_count`` for the false-negative rates, ``total_count`` for
the error rates). Rows whose rate is undefined, or whose weight is zero or
undefined, drop out of both the numerator and the denominator. The result is
the rate recomputed from summed counts, e.g. provider FPR equals
``sum(false_positive) / sum(negative_count)``.
"""

from __future__ import annotations

import logging
from collections import OrderedDict
from typing import Callable, Dict, Iterable, List, Optional, Sequence, Tuple, TypeVar

from provider_quality.records import (
    DerivedReview,
    ExamRecord,
    ProviderSummary,
    Rates,
)

LOGGER = logging.getLogger(__name__)

T = TypeVar("T")
K = TypeVar("K")


# ----------------------------------------------------------------------------
# Accumulators
# ----------------------------------------------------------------------------


class WeightedMean:
    """Running ``sum(w * x) / sum(w)`` that skips undefined values."""

    def __init__(self) -> None:
        self.weighted_sum = 0.0
        self.weight_sum = 0.0
        self.count = 0

    def add(self, value: Optional[float], weight: Optional[float]) -> None:
        if value is None or weight is None or weight == 0:
            return
        self.weighted_sum += weight * value
        self.weight_sum += weight
        self.count += 1

    @property
    def value(self) -> Optional[float]:
        if self.weight_sum == 0:
            return None
        return self.weighted_sum / self.weight_sum


def weighted_mean(pairs: Iterable[Tuple[Optional[float], Optional[float]]]) -> Optional[float]:
    acc = WeightedMean()
    for value, weight in pairs:
        acc.add(value, weight)
    return acc.value


def mean_of(values: Iterable[Optional[float]]) -> Optional[float]:
    """Arithmetic mean ignoring ``None``; ``None`` when nothing is defined."""
    return weighted_mean((v, 1.0) for v in values)


def sum_of(values: Iterable[Optional[float]]) -> float:
    return float(sum(v for v in values if v is not None))


def counted(value: Optional[float], denominator: Optional[float]) -> Optional[float]:
    """``value`` when the count it belongs to is defined, otherwise ``None``.

    A raw count whose partner count is missing has no defined denominator and
    would otherwise enter a summed numerator without its rate being counted.
    """
    if denominator is None:
        return None
    return value


def group_by(items: Iterable[T], key: Callable[[T], K]) -> "OrderedDict[K, List[T]]":
    groups: "OrderedDict[K, List[T]]" = OrderedDict()
    for item in items:
        groups.setdefault(key(item), []).append(item)
    return groups


# ----------------------------------------------------------------------------
# Rate combination
# ----------------------------------------------------------------------------


def _count_weighted_rates(
    rows: Sequence[Tuple[Rates, Optional[float], Optional[float], Optional[float]]],
) -> Rates:
    """Combine ``(rates, negative_count, positive_count, total_count)`` rows."""
    return Rates(
        false_positive_rate=weighted_mean((r.false_positive_rate, n) for r, n, _, _ in rows),
        weighted_fpr=weighted_mean((r.weighted_fpr, n) for r, n, _, _ in rows),
        false_negative_rate=weighted_mean((r.false_negative_rate, p) for r, _, p, _ in rows),
        weighted_fnr=weighted_mean((r.weighted_fnr, p) for r, _, p, _ in rows),
        error_rate=weighted_mean((r.error_rate, t) for r, _, _, t in rows),
        weighted_error_rate=weighted_mean((r.weighted_error_rate, t) for r, _, _, t in rows),
    )


def _mean_rates(rates: Sequence[Rates]) -> Rates:
    return Rates(
        false_positive_rate=mean_of(r.false_positive_rate for r in rates),
        weighted_fpr=mean_of(r.weighted_fpr for r in rates),
        false_negative_rate=mean_of(r.false_negative_rate for r in rates),
        weighted_fnr=mean_of(r.weighted_fnr for r in rates),
        error_rate=mean_of(r.error_rate for r in rates),
        weighted_error_rate=mean_of(r.weighted_error_rate for r in rates),
    )


# ----------------------------------------------------------------------------
# Exam collapse
# ----------------------------------------------------------------------------


def _first_checked(
    group: Sequence[DerivedReview],
    attribute: str,
    accessor: Callable[[DerivedReview], object],
    key: Tuple[str, str],
) -> object:
    first = accessor(group[0])
    for other in group[1:]:
        value = accessor(other)
        if value != first:
            LOGGER.warning(
                "Data integrity: %s differs across reviews of exam=%s provider=%s "
                "(%r vs %r); keeping first value",
                attribute,
                key[0],
                key[1],
                first,
                value,
            )
    return first


def collapse_group(
    key: Tuple[str, str],
    group: Sequence[DerivedReview],
    weighted_rates: bool = True,
) -> ExamRecord:
    sex = _first_checked(group, "subject_sex", lambda d: d.review.subject_sex, key)
    age = _first_checked(group, "subject_age", lambda d: d.review.subject_age, key)
    body_part = _first_checked(group, "body_part", lambda d: d.review.body_part, key)

    if weighted_rates:
        rates = _count_weighted_rates(
            [(d.rates, d.negative_count, d.positive_count, d.total_count) for d in group]
        )
    else:
        rates = _mean_rates([d.rates for d in group])

    return ExamRecord(
        exam_id=key[0],
        provider_id=key[1],
        review_count=len(group),
        subject_sex=sex,  # type: ignore[arg-type]
        subject_age=age,  # type: ignore[arg-type]
        body_part=body_part,  # type: ignore[arg-type]
        true_positive=mean_of(counted(d.review.true_positive, d.positive_count) for d in group),
        true_negative=mean_of(counted(d.review.true_negative, d.negative_count) for d in group),
        false_positive=mean_of(counted(d.review.false_positive, d.negative_count) for d in group),
        false_negative=mean_of(counted(d.review.false_negative, d.positive_count) for d in group),
        total_diagnostic_errors=mean_of(
            counted(d.review.total_diagnostic_errors, d.total_count) for d in group
        ),
        negative_count=mean_of(d.negative_count for d in group),
        positive_count=mean_of(d.positive_count for d in group),
        total_count=mean_of(d.total_count for d in group),
        rad_peer_score=mean_of(d.review.rad_peer_score for d in group),
        technical_performance_score=mean_of(
            d.review.technical_performance_score for d in group
        ),
        significance_weight=mean_of(d.significance_weight for d in group),
        rates=rates,
    )


def collapse_exams(
    reviews: Iterable[DerivedReview],
    weighted_rates: bool = True,
) -> List[ExamRecord]:
    """Merge every review of the same ``(exam_id, provider_id)`` into one record.

    Counts, scores and the significance weight are arithmetic means ignoring
    undefined values; a raw count only enters when the denominator it belongs
    to is defined. With the default ``weighted_rates=True`` rates are NOT a
    plain arithmetic mean: each review's rate is weighted by its own
    denominator count, which equals re-deriving the rate from the mean counts
    and keeps ``rate == errors / count`` true after collapse. Pass
    ``weighted_rates=False`` for the plain arithmetic mean of each rate.
    """
    groups = group_by(reviews, lambda d: (d.review.exam_id, d.review.provider_id))
    exams = [collapse_group(key, group, weighted_rates) for key, group in groups.items()]
    multi = sum(1 for e in exams if e.review_count > 1)
    LOGGER.info("Collapsed reviews into %d exams (%d with multiple reviews)", len(exams), multi)
    return exams


# ----------------------------------------------------------------------------
# Provider roll-up
# ----------------------------------------------------------------------------


def summarize_provider(provider_id: str, exams: Sequence[ExamRecord]) -> ProviderSummary:
    return ProviderSummary(
        provider_id=provider_id,
        exam_count=len(exams),
        rad_peer_score=mean_of(e.rad_peer_score for e in exams),
        technical_performance_score=mean_of(e.technical_performance_score for e in exams),
        true_positive=sum_of(counted(e.true_positive, e.positive_count) for e in exams),
        true_negative=sum_of(counted(e.true_negative, e.negative_count) for e in exams),
        false_positive=sum_of(counted(e.false_positive, e.negative_count) for e in exams),
        false_negative=sum_of(counted(e.false_negative, e.positive_count) for e in exams),
        total_diagnostic_errors=sum_of(
            counted(e.total_diagnostic_errors, e.total_count) for e in exams
        ),
        negative_count=sum_of(e.negative_count for e in exams),
        positive_count=sum_of(e.positive_count for e in exams),
        total_count=sum_of(e.total_count for e in exams),
        rates=_count_weighted_rates(
            [(e.rates, e.negative_count, e.positive_count, e.total_count) for e in exams]
        ),
    )


def aggregate_providers(exams: Iterable[ExamRecord]) -> List[ProviderSummary]:
    """One summary per provider, ordered by provider id."""
    groups: Dict[str, List[ExamRecord]] = group_by(exams, lambda e: e.provider_id)
    summaries = [summarize_provider(pid, groups[pid]) for pid in sorted(groups)]
    LOGGER.info("Aggregated %d providers", len(summaries))
    return summaries
