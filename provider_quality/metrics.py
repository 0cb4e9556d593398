"""Per-review accuracy metrics derived from confusion-matrix counts.

A rate whose denominator is zero is undefined (``None``) rather than 0, so
that later weighted means can skip it instead of treating "no cases" as
"no errors".
"""

from __future__ import annotations

import logging
from typing import Iterable, List, Optional

from provider_quality.records import DerivedReview, ExamReview, Rates

LOGGER = logging.getLogger(__name__)


def safe_ratio(numerator: Optional[float], denominator: Optional[float]) -> Optional[float]:
    if numerator is None or denominator is None or denominator == 0:
        return None
    return numerator / denominator


def _add(*values: Optional[float]) -> Optional[float]:
    if any(v is None for v in values):
        return None
    return float(sum(values))  # type: ignore[arg-type]


def _weigh(weight: float, rate: Optional[float]) -> Optional[float]:
    if rate is None:
        return None
    return weight * rate


def derive_metrics(review: ExamReview) -> DerivedReview:
    negative_count = _add(review.false_positive, review.true_negative)
    positive_count = _add(review.false_negative, review.true_positive)
    total_count = _add(negative_count, positive_count)

    fpr = safe_ratio(review.false_positive, negative_count)
    fnr = safe_ratio(review.false_negative, positive_count)
    err = safe_ratio(review.total_diagnostic_errors, total_count)

    significance = review.significance_of_errors
    weight = float(significance) if significance is not None else 0.0

    return DerivedReview(
        review=review,
        negative_count=negative_count,
        positive_count=positive_count,
        total_count=total_count,
        significance_weight=weight,
        rates=Rates(
            false_positive_rate=fpr,
            weighted_fpr=_weigh(weight, fpr),
            false_negative_rate=fnr,
            weighted_fnr=_weigh(weight, fnr),
            error_rate=err,
            weighted_error_rate=_weigh(weight, err),
        ),
    )


def derive_all(reviews: Iterable[ExamReview]) -> List[DerivedReview]:
    derived = [derive_metrics(review) for review in reviews]
    undefined = sum(1 for d in derived if d.rates.error_rate is None)
    LOGGER.info(
        "Derived metrics for %d reviews (%d with undefined error rate)",
        len(derived),
        undefined,
    )
    incomplete = sum(1 for d in derived if d.total_count is None)
    if incomplete:
        LOGGER.warning(
            "%d reviews have a missing raw count; their counts stay out of the "
            "sums for the affected rates",
            incomplete,
        )
    return derived
