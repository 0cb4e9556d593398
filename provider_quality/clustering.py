"""Two-cluster classification of providers.

This module consumes the scaled provider features produced by
``provider_quality.standardize_features`` and partitions providers into a
"good" and a "bad" cluster:

* Build the clustering matrix from the six scaled rate features and,
  optionally, the two scaled score features.
* Weight providers by exam volume, either by passing ``sample_weight`` to
  scikit-learn's K-Means or by replicating each provider row once per exam
  (the volume expansion fallback).
* Fit K-Means with k=2 and several random restarts, keeping the lowest
  inertia run. A fixed seed makes the labels reproducible.
* Label the cluster whose centroid carries the lower error signal across the
  rate features as "good".

The fraction of variance explained by the partition is reported as a
diagnostic only; a 2-cluster result is always returned.
"""

from __future__ import annotations

import enum
import logging
from dataclasses import dataclass
from typing import Dict, List, Optional, Sequence, Tuple

import numpy as np
import pandas as pd
from sklearn.cluster import KMeans

from provider_quality.errors import ConfigurationError, DataIntegrityViolation
from provider_quality.records import (
    RATE_FEATURES,
    SCORE_FEATURES,
    ClusterAssignment,
    Feature,
    LabeledProvider,
    NormalizationParameters,
    ScaledProvider,
)

LOGGER = logging.getLogger(__name__)

N_CLUSTERS = 2
DEFAULT_N_INIT = 20
GOOD = "good"
BAD = "bad"


class Weighting(str, enum.Enum):
    NONE = "none"
    SAMPLE_WEIGHT = "sample_weight"
    EXPAND = "expand"


class LabelPolicy(str, enum.Enum):
    SUM = "sum"
    NORM = "norm"


# ----------------------------------------------------------------------------
# Data containers
# ----------------------------------------------------------------------------


@dataclass(frozen=True)
class ClusteringInput:
    """Rows handed to K-Means, one per provider (or per exam when expanded)."""

    features: Tuple[Feature, ...]
    data: np.ndarray
    provider_ids: np.ndarray
    weights: Optional[np.ndarray]


@dataclass(frozen=True)
class ClusteringResult:
    weighting: Weighting
    policy: LabelPolicy
    features: Tuple[Feature, ...]
    centroids: np.ndarray
    good_cluster: int
    inertia: float
    explained_variance: float
    cluster_sizes: Dict[int, int]
    assignments: Dict[str, ClusterAssignment]
    excluded: Tuple[str, ...]
    seed: int
    n_init: int

    def label_for(self, cluster_index: int) -> str:
        return GOOD if cluster_index == self.good_cluster else BAD


# ----------------------------------------------------------------------------
# Input construction
# ----------------------------------------------------------------------------


def clustering_features(include_scores: bool) -> Tuple[Feature, ...]:
    if include_scores:
        return RATE_FEATURES + SCORE_FEATURES
    return RATE_FEATURES


def eligible_providers(
    providers: Sequence[ScaledProvider],
    features: Sequence[Feature],
) -> Tuple[List[ScaledProvider], List[str]]:
    """Split providers into those with every clustering feature defined and the rest."""
    eligible: List[ScaledProvider] = []
    excluded: List[str] = []
    for provider in providers:
        if any(provider.scaled_value(f) is None for f in features):
            excluded.append(provider.provider_id)
        else:
            eligible.append(provider)
    if excluded:
        LOGGER.warning(
            "Excluding %d providers with undefined scores from clustering: %s",
            len(excluded),
            ", ".join(excluded),
        )
    return eligible, excluded


def provider_matrix(
    providers: Sequence[ScaledProvider],
    features: Sequence[Feature],
) -> np.ndarray:
    return np.array(
        [[provider.scaled_value(f) for f in features] for provider in providers],
        dtype=float,
    ).reshape(len(providers), len(features))


def expand_by_volume(
    providers: Sequence[ScaledProvider],
    features: Sequence[Feature],
) -> ClusteringInput:
    """Repeat each provider's scaled row once per exam it contributed.

    Only meant as a weighting device for unweighted K-Means; the expanded
    rows must not feed any other aggregate statistic.
    """
    base = provider_matrix(providers, features)
    counts = np.array([p.summary.exam_count for p in providers], dtype=int)
    ids = np.array([p.provider_id for p in providers], dtype=object)
    return ClusteringInput(
        features=tuple(features),
        data=np.repeat(base, counts, axis=0),
        provider_ids=np.repeat(ids, counts),
        weights=None,
    )


def collapse_expanded_labels(provider_ids: np.ndarray, labels: np.ndarray) -> Dict[str, int]:
    """Reduce per-exam labels to one cluster index per provider."""
    frame = pd.DataFrame({"provider_id": provider_ids, "cluster": labels}).drop_duplicates()
    conflicting = frame.loc[frame["provider_id"].duplicated(keep=False), "provider_id"]
    if not conflicting.empty:
        first = str(conflicting.iloc[0])
        raise DataIntegrityViolation(
            f"Expanded rows of provider {first} were assigned to different clusters",
            key=first,
        )
    return {str(pid): int(c) for pid, c in zip(frame["provider_id"], frame["cluster"])}


def build_input(
    providers: Sequence[ScaledProvider],
    features: Sequence[Feature],
    weighting: Weighting,
) -> ClusteringInput:
    if weighting is Weighting.EXPAND:
        return expand_by_volume(providers, features)
    weights = None
    if weighting is Weighting.SAMPLE_WEIGHT:
        weights = np.array([p.summary.exam_count for p in providers], dtype=float)
    return ClusteringInput(
        features=tuple(features),
        data=provider_matrix(providers, features),
        provider_ids=np.array([p.provider_id for p in providers], dtype=object),
        weights=weights,
    )


# ----------------------------------------------------------------------------
# Diagnostics and labelling
# ----------------------------------------------------------------------------


def explained_variance_ratio(
    data: np.ndarray,
    labels: np.ndarray,
    weights: Optional[np.ndarray] = None,
) -> float:
    """Between-cluster sum of squares over total sum of squares."""
    w = np.ones(data.shape[0], dtype=float) if weights is None else np.asarray(weights, float)
    overall = np.average(data, axis=0, weights=w)
    total = float(np.sum(w * np.sum((data - overall) ** 2, axis=1)))
    if total == 0:
        return float("nan")
    within = 0.0
    for cluster in np.unique(labels):
        mask = labels == cluster
        centroid = np.average(data[mask], axis=0, weights=w[mask])
        within += float(np.sum(w[mask] * np.sum((data[mask] - centroid) ** 2, axis=1)))
    return (total - within) / total


def error_signal(centroid: np.ndarray, rate_columns: Sequence[int], policy: LabelPolicy) -> float:
    rates = np.asarray(centroid, dtype=float)[list(rate_columns)]
    if policy is LabelPolicy.NORM:
        return float(np.linalg.norm(rates))
    return float(np.sum(rates))


def choose_good_cluster(
    centroids: np.ndarray,
    features: Sequence[Feature],
    policy: LabelPolicy = LabelPolicy.SUM,
) -> int:
    """Index of the centroid with the lower error signal over the rate features."""
    rate_columns = [i for i, f in enumerate(features) if f.is_rate]
    signals = [error_signal(c, rate_columns, policy) for c in centroids]
    LOGGER.info("Cluster error signals (%s): %s", policy.value, signals)
    if np.isclose(signals[0], signals[1]):
        LOGGER.warning("Cluster error signals tie; labelling cluster 0 as good")
        return 0
    return int(np.argmin(signals))


# ----------------------------------------------------------------------------
# Engine
# ----------------------------------------------------------------------------


def fit_kmeans(inputs: ClusteringInput, n_init: int, seed: int) -> KMeans:
    LOGGER.info(
        "Fitting K-Means with k=%d, n_init=%d on %d rows (seed=%d)",
        N_CLUSTERS,
        n_init,
        inputs.data.shape[0],
        seed,
    )
    model = KMeans(n_clusters=N_CLUSTERS, n_init=int(n_init), random_state=seed)
    model.fit(inputs.data, sample_weight=inputs.weights)
    return model


def cluster_providers(
    providers: Sequence[ScaledProvider],
    params: NormalizationParameters,
    weighting: Weighting = Weighting.SAMPLE_WEIGHT,
    include_scores: bool = True,
    policy: LabelPolicy = LabelPolicy.SUM,
    n_init: int = DEFAULT_N_INIT,
    seed: int = 42,
) -> Tuple[List[LabeledProvider], ClusteringResult]:
    """Cluster providers into "good" and "bad".

    Providers whose clustering features include an undefined score are left
    unlabeled. Raises :class:`ConfigurationError` when fewer than two
    providers remain.
    """
    features = clustering_features(include_scores)
    missing = [f.name for f in features if f not in params.features]
    if missing:
        raise ConfigurationError(f"Clustering features were not normalized: {', '.join(missing)}")
    if n_init < 1:
        raise ConfigurationError("n_init must be at least 1")

    eligible, excluded = eligible_providers(providers, features)
    if len(eligible) < N_CLUSTERS:
        raise ConfigurationError(
            f"Need at least {N_CLUSTERS} providers to cluster, got {len(eligible)}"
        )

    inputs = build_input(eligible, features, weighting)
    model = fit_kmeans(inputs, n_init, seed)
    row_labels = np.asarray(model.labels_, dtype=int)

    if weighting is Weighting.EXPAND:
        per_provider = collapse_expanded_labels(inputs.provider_ids, row_labels)
    else:
        per_provider = {str(pid): int(c) for pid, c in zip(inputs.provider_ids, row_labels)}

    centroids = np.asarray(model.cluster_centers_, dtype=float)
    good = choose_good_cluster(centroids, features, policy)
    evr = explained_variance_ratio(inputs.data, row_labels, inputs.weights)
    LOGGER.info("Explained variance (between SS / total SS): %.4f", evr)

    assignments = {
        pid: ClusterAssignment(
            provider_id=pid,
            cluster_index=cluster,
            label=GOOD if cluster == good else BAD,
        )
        for pid, cluster in per_provider.items()
    }
    sizes = {c: sum(1 for v in per_provider.values() if v == c) for c in range(N_CLUSTERS)}
    result = ClusteringResult(
        weighting=weighting,
        policy=policy,
        features=features,
        centroids=centroids,
        good_cluster=good,
        inertia=float(model.inertia_),
        explained_variance=evr,
        cluster_sizes=sizes,
        assignments=assignments,
        excluded=tuple(excluded),
        seed=seed,
        n_init=int(n_init),
    )
    labeled = [
        LabeledProvider(scaled=p, assignment=assignments.get(p.provider_id)) for p in providers
    ]
    return labeled, result


def centroid_table(result: ClusteringResult, params: NormalizationParameters) -> pd.DataFrame:
    """Centroids in scaled units and unscaled back to the original feature units."""
    unscaled = np.vstack(
        [params.unscale_vector(result.features, c) for c in result.centroids]
    )
    rows = []
    for index in range(result.centroids.shape[0]):
        row: Dict[str, object] = {
            "cluster_index": index,
            "cluster_label": result.label_for(index),
            "providers": result.cluster_sizes.get(index, 0),
        }
        for j, feature in enumerate(result.features):
            row[f"scaled_{feature.name}"] = float(result.centroids[index, j])
            row[feature.name] = float(unscaled[index, j])
        rows.append(row)
    return pd.DataFrame(rows)
