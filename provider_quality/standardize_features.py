from __future__ import annotations

import logging
import warnings
from typing import List, Optional, Sequence, Tuple

import numpy as np
from sklearn.preprocessing import StandardScaler

from provider_quality.errors import ConfigurationError
from provider_quality.records import (
    ALL_FEATURES,
    Feature,
    NormalizationParameters,
    ProviderSummary,
    ScaledProvider,
)

LOGGER = logging.getLogger(__name__)


def feature_matrix(
    summaries: Sequence[ProviderSummary],
    features: Sequence[Feature],
) -> np.ndarray:
    """Pack provider features into a float matrix, undefined values as NaN."""
    matrix = np.full((len(summaries), len(features)), np.nan, dtype=float)
    for i, summary in enumerate(summaries):
        for j, feature in enumerate(features):
            value = feature.value(summary)
            if value is not None:
                matrix[i, j] = float(value)
    return matrix


def validate_features(features: Optional[Sequence[Feature]]) -> Tuple[Feature, ...]:
    if not features:
        raise ConfigurationError("Feature list for normalization is empty")
    unknown = [f.name for f in features if f not in ALL_FEATURES]
    if unknown:
        raise ConfigurationError(f"Unknown features: {', '.join(unknown)}")
    return tuple(features)


def fit_normalization(
    summaries: Sequence[ProviderSummary],
    features: Sequence[Feature] = ALL_FEATURES,
) -> NormalizationParameters:
    """Fit per-feature mean and population standard deviation.

    Undefined values are ignored while fitting. A feature with zero (or
    undefined) variance gets scale 1.0.
    """
    features = validate_features(features)
    if not summaries:
        raise ConfigurationError("Cannot normalize an empty provider table")

    matrix = feature_matrix(summaries, features)
    LOGGER.info(
        "Fitting StandardScaler on %d providers x %d features", matrix.shape[0], matrix.shape[1]
    )
    scaler = StandardScaler()
    with warnings.catch_warnings():
        # all-NaN columns (a rate nobody has a denominator for) warn inside numpy
        warnings.simplefilter("ignore", category=RuntimeWarning)
        scaler.fit(matrix)

    means = np.asarray(scaler.mean_, dtype=float)
    scales = np.asarray(scaler.scale_, dtype=float)
    scales = np.where(np.isfinite(scales) & (scales > 0), scales, 1.0)
    for feature, mean in zip(features, means):
        if not np.isfinite(mean):
            LOGGER.warning("Feature %s is undefined for every provider", feature.name)

    return NormalizationParameters(
        features=features,
        means=tuple(float(m) for m in means),
        scales=tuple(float(s) for s in scales),
    )


def scale_matrix(matrix: np.ndarray, params: NormalizationParameters) -> np.ndarray:
    """Z-score ``matrix`` and replace undefined rate features by 0."""
    means = np.asarray(params.means, dtype=float)
    scales = np.asarray(params.scales, dtype=float)
    scaled = (matrix - means) / scales
    rate_columns = np.array([f.is_rate for f in params.features], dtype=bool)
    scaled[:, rate_columns] = np.nan_to_num(scaled[:, rate_columns], nan=0.0)
    return scaled


def normalize_providers(
    summaries: Sequence[ProviderSummary],
    params: NormalizationParameters,
) -> List[ScaledProvider]:
    matrix = feature_matrix(summaries, params.features)
    scaled = scale_matrix(matrix, params)
    results: List[ScaledProvider] = []
    for summary, row in zip(summaries, scaled):
        values = tuple(None if np.isnan(v) else float(v) for v in row)
        results.append(ScaledProvider(summary=summary, features=params.features, scaled=values))

    missing_scores = sum(1 for r in results if any(v is None for v in r.scaled))
    if missing_scores:
        LOGGER.warning("%d providers have an undefined score after scaling", missing_scores)
    return results
