"""End-to-end provider classification pipeline.

    reviews -> derive metrics -> collapse exams -> aggregate providers
        -> normalize -> cluster (k=2) -> labeled provider table

Run directly as a script::

    python -m provider_quality.pipeline --reviews-csv data/exam_reviews.csv \
        --weighting sample_weight --seed 42

Tables land under ``<output-root>/tables`` and a JSON summary of the
clustering under ``<output-root>/notes``.
"""

from __future__ import annotations

import argparse
import json
import logging
from dataclasses import dataclass, field
from pathlib import Path
from typing import Dict, List, Optional, Sequence

import numpy as np
import pandas as pd

from provider_quality.aggregate import aggregate_providers, collapse_exams
from provider_quality.attributes import (
    PROVIDER_COLUMN,
    crosstab_by_cluster,
    join_provider_attributes,
    load_attribute_table,
)
from provider_quality.clustering import (
    DEFAULT_N_INIT,
    N_CLUSTERS,
    ClusteringResult,
    LabelPolicy,
    Weighting,
    centroid_table,
    cluster_providers,
)
from provider_quality.errors import ConfigurationError
from provider_quality.ingest import load_exam_reviews
from provider_quality.metrics import derive_all
from provider_quality.records import (
    ALL_FEATURES,
    DerivedReview,
    ExamRecord,
    ExamReview,
    LabeledProvider,
    NormalizationParameters,
    ProviderSummary,
    ScaledProvider,
)
from provider_quality.standardize_features import fit_normalization, normalize_providers

LOGGER = logging.getLogger(__name__)


# ---------------------------------------------------------------------------
# Configuration
# ---------------------------------------------------------------------------

@dataclass
class PipelineConfig:
    reviews_csv: Optional[Path] = None
    output_root: Path = Path("outputs")
    seed: int = 42
    n_init: int = DEFAULT_N_INIT
    k: int = N_CLUSTERS
    weighting: Weighting = Weighting.SAMPLE_WEIGHT
    include_scores: bool = True
    label_policy: LabelPolicy = LabelPolicy.SUM
    weighted_collapse: bool = True
    attribute_tables: Dict[str, Path] = field(default_factory=dict)

    def validate(self) -> None:
        if self.k != N_CLUSTERS:
            raise ConfigurationError(f"Cluster count is fixed at {N_CLUSTERS}, got k={self.k}")
        if self.n_init < 1:
            raise ConfigurationError("n_init must be at least 1")


@dataclass(frozen=True)
class PipelineResult:
    reviews: List[DerivedReview]
    exams: List[ExamRecord]
    providers: List[ProviderSummary]
    scaled: List[ScaledProvider]
    labeled: List[LabeledProvider]
    normalization: NormalizationParameters
    clustering: ClusteringResult


# ---------------------------------------------------------------------------
# Pipeline
# ---------------------------------------------------------------------------

def run_pipeline(reviews: Sequence[ExamReview], config: PipelineConfig) -> PipelineResult:
    config.validate()
    derived = derive_all(reviews)
    exams = collapse_exams(derived, weighted_rates=config.weighted_collapse)
    providers = aggregate_providers(exams)
    if len(providers) < config.k:
        raise ConfigurationError(
            f"Need at least {config.k} distinct providers, got {len(providers)}"
        )
    params = fit_normalization(providers, ALL_FEATURES)
    scaled = normalize_providers(providers, params)
    labeled, clustering = cluster_providers(
        scaled,
        params,
        weighting=config.weighting,
        include_scores=config.include_scores,
        policy=config.label_policy,
        n_init=config.n_init,
        seed=config.seed,
    )
    LOGGER.info(
        "Labeled %d providers (good=%d, bad=%d, excluded=%d)",
        len(clustering.assignments),
        sum(1 for a in clustering.assignments.values() if a.label == "good"),
        sum(1 for a in clustering.assignments.values() if a.label == "bad"),
        len(clustering.excluded),
    )
    return PipelineResult(
        reviews=derived,
        exams=exams,
        providers=providers,
        scaled=scaled,
        labeled=labeled,
        normalization=params,
        clustering=clustering,
    )


# ---------------------------------------------------------------------------
# Tables
# ---------------------------------------------------------------------------

def providers_to_frame(labeled: Sequence[LabeledProvider]) -> pd.DataFrame:
    rows = []
    for item in labeled:
        summary = item.scaled.summary
        rates = summary.rates
        row: Dict[str, object] = {
            PROVIDER_COLUMN: summary.provider_id,
            "exam_count": summary.exam_count,
            "rad_peer_score": summary.rad_peer_score,
            "technical_performance_score": summary.technical_performance_score,
            "true_positive": summary.true_positive,
            "true_negative": summary.true_negative,
            "false_positive": summary.false_positive,
            "false_negative": summary.false_negative,
            "total_diagnostic_errors": summary.total_diagnostic_errors,
            "negative_count": summary.negative_count,
            "positive_count": summary.positive_count,
            "total_count": summary.total_count,
            "false_positive_rate": rates.false_positive_rate,
            "weighted_fpr": rates.weighted_fpr,
            "false_negative_rate": rates.false_negative_rate,
            "weighted_fnr": rates.weighted_fnr,
            "error_rate": rates.error_rate,
            "weighted_error_rate": rates.weighted_error_rate,
        }
        for feature, value in zip(item.scaled.features, item.scaled.scaled):
            row[f"scaled_{feature.name}"] = value
        row["cluster_index"] = item.assignment.cluster_index if item.assignment else None
        row["cluster_label"] = item.assignment.label if item.assignment else None
        rows.append(row)
    return pd.DataFrame(rows)


def normalization_table(params: NormalizationParameters) -> pd.DataFrame:
    return pd.DataFrame(
        {
            "feature": [f.name for f in params.features],
            "mean": params.means,
            "std": params.scales,
            "is_rate": [f.is_rate for f in params.features],
        }
    )


def clustering_summary(result: ClusteringResult) -> Dict[str, object]:
    return {
        "k": N_CLUSTERS,
        "seed": result.seed,
        "n_init": result.n_init,
        "weighting": result.weighting.value,
        "label_policy": result.policy.value,
        "features": [f.name for f in result.features],
        "good_cluster": result.good_cluster,
        "inertia": result.inertia,
        "explained_variance": None
        if np.isnan(result.explained_variance)
        else result.explained_variance,
        "cluster_sizes": {str(k): v for k, v in result.cluster_sizes.items()},
        "excluded_providers": list(result.excluded),
    }


def ensure_directory(path: Path) -> None:
    path.mkdir(parents=True, exist_ok=True)


def write_outputs(
    result: PipelineResult,
    output_root: Path,
    attribute_tables: Optional[Dict[str, Path]] = None,
) -> pd.DataFrame:
    tables_dir = output_root / "tables"
    notes_dir = output_root / "notes"
    ensure_directory(tables_dir)
    ensure_directory(notes_dir)

    providers = providers_to_frame(result.labeled)
    providers.to_csv(tables_dir / "provider_summary.csv", index=False)
    centroid_table(result.clustering, result.normalization).to_csv(
        tables_dir / "cluster_centroids.csv", index=False
    )
    normalization_table(result.normalization).to_csv(
        tables_dir / "normalization_parameters.csv", index=False
    )
    summary_path = notes_dir / "cluster_summary.json"
    summary_path.write_text(
        json.dumps(clustering_summary(result.clustering), indent=2, sort_keys=True),
        encoding="utf-8",
    )
    LOGGER.info("Wrote provider table (%d rows) and clustering summary to %s", len(providers), output_root)

    for name, path in (attribute_tables or {}).items():
        attributes = load_attribute_table(path)
        joined = join_provider_attributes(providers, attributes, name)
        for column in attributes.columns:
            if column == PROVIDER_COLUMN:
                continue
            target = tables_dir / f"attributes_{name}_{column}_by_cluster.csv"
            crosstab_by_cluster(joined, column).to_csv(target)
            LOGGER.info("Wrote %s cross-tab to %s", name, target)
    return providers


# ---------------------------------------------------------------------------
# Command-line interface
# ---------------------------------------------------------------------------

def parse_args(argv: Optional[Sequence[str]] = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(
        description="Classify imaging providers as good/bad from peer-review records"
    )
    parser.add_argument(
        "--reviews-csv",
        type=Path,
        required=True,
        help="Exam review table, one row per reviewer per exam.",
    )
    parser.add_argument(
        "--output-root",
        type=Path,
        default=Path("outputs"),
        help="Root directory for generated tables and notes.",
    )
    parser.add_argument(
        "--weighting",
        type=str,
        default=Weighting.SAMPLE_WEIGHT.value,
        choices=[w.value for w in Weighting],
        help="How providers are weighted by exam volume during clustering.",
    )
    parser.add_argument(
        "--label-policy",
        type=str,
        default=LabelPolicy.SUM.value,
        choices=[p.value for p in LabelPolicy],
        help="How the centroid error signal is aggregated to pick the good cluster.",
    )
    parser.add_argument(
        "--rates-only",
        action="store_true",
        help="Cluster on the six rate features only (drop the two scores).",
    )
    parser.add_argument(
        "--unweighted-collapse",
        action="store_true",
        help="Average review rates arithmetically when collapsing exams.",
    )
    parser.add_argument(
        "--n-init",
        type=int,
        default=DEFAULT_N_INIT,
        help="Number of K-Means random restarts.",
    )
    parser.add_argument(
        "--equipment-csv",
        type=Path,
        default=None,
        help="Optional provider equipment table joined after clustering.",
    )
    parser.add_argument(
        "--subspecialty-csv",
        type=Path,
        default=None,
        help="Optional provider sub-specialization table joined after clustering.",
    )
    parser.add_argument(
        "--seed",
        type=int,
        default=42,
        help="Random seed for reproducible clustering.",
    )
    parser.add_argument(
        "--log-level",
        type=str,
        default="INFO",
        choices=["DEBUG", "INFO", "WARNING", "ERROR"],
        help="Logging verbosity.",
    )
    return parser.parse_args(argv)


def config_from_args(args: argparse.Namespace) -> PipelineConfig:
    tables: Dict[str, Path] = {}
    if args.equipment_csv is not None:
        tables["equipment"] = args.equipment_csv
    if args.subspecialty_csv is not None:
        tables["subspecialty"] = args.subspecialty_csv
    return PipelineConfig(
        reviews_csv=args.reviews_csv,
        output_root=args.output_root,
        seed=args.seed,
        n_init=args.n_init,
        weighting=Weighting(args.weighting),
        include_scores=not args.rates_only,
        label_policy=LabelPolicy(args.label_policy),
        weighted_collapse=not args.unweighted_collapse,
        attribute_tables=tables,
    )


def configure_logging(level: str) -> None:
    logging.basicConfig(
        level=getattr(logging, level.upper()),
        format="%(asctime)s [%(levelname)s] %(message)s",
    )


def main(argv: Optional[Sequence[str]] = None) -> None:
    args = parse_args(argv)
    configure_logging(args.log_level)
    config = config_from_args(args)
    config.validate()

    reviews = load_exam_reviews(config.reviews_csv)
    result = run_pipeline(reviews, config)
    write_outputs(result, config.output_root, config.attribute_tables)


if __name__ == "__main__":
    main()
