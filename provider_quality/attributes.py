"""Read-only provider side tables (equipment, sub-specialization).

These are joined onto the labeled provider table after clustering purely for
descriptive cross-tabulation; nothing upstream depends on them.
"""

from __future__ import annotations

import logging
from pathlib import Path

import pandas as pd

LOGGER = logging.getLogger(__name__)

PROVIDER_COLUMN = "provider_id"
LABEL_COLUMN = "cluster_label"


def load_attribute_table(csv_path: Path, provider_column: str = PROVIDER_COLUMN) -> pd.DataFrame:
    if not csv_path.exists():
        raise FileNotFoundError(f"Provider attribute table not found: {csv_path}")
    frame = pd.read_csv(csv_path, dtype={provider_column: str})
    if provider_column not in frame.columns:
        raise KeyError(f"Attribute table {csv_path} missing column: {provider_column}")
    if provider_column != PROVIDER_COLUMN:
        frame = frame.rename(columns={provider_column: PROVIDER_COLUMN})
    return frame


def join_provider_attributes(
    providers: pd.DataFrame,
    attributes: pd.DataFrame,
    name: str,
) -> pd.DataFrame:
    """Left-join ``attributes`` onto the provider table by provider id.

    Attribute rows naming a provider that is not in the provider table are
    logged as data integrity warnings and otherwise ignored.
    """
    known = set(providers[PROVIDER_COLUMN].astype(str))
    unknown = sorted(set(attributes[PROVIDER_COLUMN].astype(str)) - known)
    for provider_id in unknown:
        LOGGER.warning(
            "Data integrity: %s table references unknown provider %s", name, provider_id
        )
    return providers.merge(attributes, on=PROVIDER_COLUMN, how="left")


def crosstab_by_cluster(joined: pd.DataFrame, column: str) -> pd.DataFrame:
    """Count providers per attribute value and cluster label."""
    if column not in joined.columns:
        raise KeyError(f"Joined table missing column: {column}")
    labeled = joined[joined[LABEL_COLUMN].notna()]
    return pd.crosstab(labeled[column].fillna("(missing)"), labeled[LABEL_COLUMN])
