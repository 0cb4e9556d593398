"""Typed records flowing through the provider quality pipeline.

Each stage returns a new immutable structure rather than mutating a shared
table:

    ExamReview -> DerivedReview -> ExamRecord -> ProviderSummary
        -> ScaledProvider -> LabeledProvider

Undefined values (a rate with a zero denominator, the mean of an empty group)
are represented as ``None`` on the records and as ``NaN`` once they are packed
into numpy matrices.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Callable, Optional, Sequence, Tuple

import numpy as np


# ----------------------------------------------------------------------------
# Raw and exam-level records
# ----------------------------------------------------------------------------


@dataclass(frozen=True)
class ExamReview:
    """One reviewer's record of one exam."""

    exam_id: str
    provider_id: str
    reviewer_id: str
    true_positive: Optional[float]
    true_negative: Optional[float]
    false_positive: Optional[float]
    false_negative: Optional[float]
    total_diagnostic_errors: Optional[float]
    rad_peer_score: Optional[float]
    technical_performance_score: Optional[float]
    significance_of_errors: Optional[float] = None
    subject_sex: Optional[str] = None
    subject_age: Optional[float] = None
    body_part: Optional[str] = None


@dataclass(frozen=True)
class Rates:
    """The six error rates tracked at every granularity."""

    false_positive_rate: Optional[float] = None
    weighted_fpr: Optional[float] = None
    false_negative_rate: Optional[float] = None
    weighted_fnr: Optional[float] = None
    error_rate: Optional[float] = None
    weighted_error_rate: Optional[float] = None


@dataclass(frozen=True)
class DerivedReview:
    review: ExamReview
    negative_count: Optional[float]
    positive_count: Optional[float]
    total_count: Optional[float]
    significance_weight: float
    rates: Rates


@dataclass(frozen=True)
class ExamRecord:
    """All reviews of one exam for one provider, collapsed to a single row."""

    exam_id: str
    provider_id: str
    review_count: int
    subject_sex: Optional[str]
    subject_age: Optional[float]
    body_part: Optional[str]
    true_positive: Optional[float]
    true_negative: Optional[float]
    false_positive: Optional[float]
    false_negative: Optional[float]
    total_diagnostic_errors: Optional[float]
    negative_count: Optional[float]
    positive_count: Optional[float]
    total_count: Optional[float]
    rad_peer_score: Optional[float]
    technical_performance_score: Optional[float]
    significance_weight: Optional[float]
    rates: Rates


@dataclass(frozen=True)
class ProviderSummary:
    provider_id: str
    exam_count: int
    rad_peer_score: Optional[float]
    technical_performance_score: Optional[float]
    true_positive: float
    true_negative: float
    false_positive: float
    false_negative: float
    total_diagnostic_errors: float
    negative_count: float
    positive_count: float
    total_count: float
    rates: Rates


# ----------------------------------------------------------------------------
# Feature descriptors
# ----------------------------------------------------------------------------


@dataclass(frozen=True)
class Feature:
    """A provider-level feature fed to the normalizer and the clustering.

    ``accessor`` reads the value straight off a :class:`ProviderSummary`;
    ``is_rate`` marks features whose undefined scaled value becomes 0.
    """

    name: str
    accessor: Callable[[ProviderSummary], Optional[float]]
    is_rate: bool

    def value(self, summary: ProviderSummary) -> Optional[float]:
        return self.accessor(summary)


RAD_PEER_SCORE = Feature("rad_peer_score", lambda p: p.rad_peer_score, False)
TECHNICAL_PERFORMANCE_SCORE = Feature(
    "technical_performance_score", lambda p: p.technical_performance_score, False
)
FALSE_POSITIVE_RATE = Feature(
    "false_positive_rate", lambda p: p.rates.false_positive_rate, True
)
WEIGHTED_FPR = Feature("weighted_fpr", lambda p: p.rates.weighted_fpr, True)
FALSE_NEGATIVE_RATE = Feature(
    "false_negative_rate", lambda p: p.rates.false_negative_rate, True
)
WEIGHTED_FNR = Feature("weighted_fnr", lambda p: p.rates.weighted_fnr, True)
ERROR_RATE = Feature("error_rate", lambda p: p.rates.error_rate, True)
WEIGHTED_ERROR_RATE = Feature(
    "weighted_error_rate", lambda p: p.rates.weighted_error_rate, True
)

SCORE_FEATURES: Tuple[Feature, ...] = (RAD_PEER_SCORE, TECHNICAL_PERFORMANCE_SCORE)
RATE_FEATURES: Tuple[Feature, ...] = (
    FALSE_POSITIVE_RATE,
    WEIGHTED_FPR,
    FALSE_NEGATIVE_RATE,
    WEIGHTED_FNR,
    ERROR_RATE,
    WEIGHTED_ERROR_RATE,
)
ALL_FEATURES: Tuple[Feature, ...] = SCORE_FEATURES + RATE_FEATURES


# ----------------------------------------------------------------------------
# Normalization and clustering records
# ----------------------------------------------------------------------------


@dataclass(frozen=True)
class NormalizationParameters:
    """Per-feature mean and population standard deviation for one run."""

    features: Tuple[Feature, ...]
    means: Tuple[float, ...]
    scales: Tuple[float, ...]

    def index(self, feature: Feature) -> int:
        try:
            return self.features.index(feature)
        except ValueError:
            raise KeyError(f"Feature not normalized in this run: {feature.name}") from None

    def scale(self, feature: Feature, value: Optional[float]) -> Optional[float]:
        if value is None:
            return None
        i = self.index(feature)
        return (value - self.means[i]) / self.scales[i]

    def unscale(self, feature: Feature, value: Optional[float]) -> Optional[float]:
        if value is None:
            return None
        i = self.index(feature)
        return value * self.scales[i] + self.means[i]

    def unscale_vector(self, features: Sequence[Feature], vector: np.ndarray) -> np.ndarray:
        idx = [self.index(f) for f in features]
        means = np.asarray(self.means, dtype=float)[idx]
        scales = np.asarray(self.scales, dtype=float)[idx]
        return np.asarray(vector, dtype=float) * scales + means


@dataclass(frozen=True)
class ScaledProvider:
    """A provider summary plus its scaled features.

    ``scaled`` is aligned with ``NormalizationParameters.features``; rate
    features are never ``None`` here (undefined rates were replaced by 0).
    """

    summary: ProviderSummary
    features: Tuple[Feature, ...]
    scaled: Tuple[Optional[float], ...]

    @property
    def provider_id(self) -> str:
        return self.summary.provider_id

    def scaled_value(self, feature: Feature) -> Optional[float]:
        return self.scaled[self.features.index(feature)]


@dataclass(frozen=True)
class ClusterAssignment:
    provider_id: str
    cluster_index: int
    label: str


@dataclass(frozen=True)
class LabeledProvider:
    scaled: ScaledProvider
    assignment: Optional[ClusterAssignment]

    @property
    def provider_id(self) -> str:
        return self.scaled.provider_id
