"""Load exam review tables into :class:`ExamReview` records.

Parsing is intentionally thin: a CSV with one row per reviewer per exam and a
:class:`ColumnMap` naming the columns. Missing raw counts stay undefined; no
imputation happens here.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from pathlib import Path
from typing import List, Optional

import pandas as pd

from provider_quality.records import ExamReview

LOGGER = logging.getLogger(__name__)


@dataclass(frozen=True)
class ColumnMap:
    exam_id: str = "exam_id"
    provider_id: str = "provider_id"
    reviewer_id: str = "reviewer_id"
    true_positive: str = "true_positive"
    true_negative: str = "true_negative"
    false_positive: str = "false_positive"
    false_negative: str = "false_negative"
    total_diagnostic_errors: str = "total_diagnostic_errors"
    rad_peer_score: str = "rad_peer_score"
    technical_performance_score: str = "technical_performance_score"
    significance_of_errors: str = "significance_of_errors"
    subject_sex: str = "subject_sex"
    subject_age: str = "subject_age"
    body_part: str = "body_part"

    def required(self) -> List[str]:
        return [
            self.exam_id,
            self.provider_id,
            self.reviewer_id,
            self.true_positive,
            self.true_negative,
            self.false_positive,
            self.false_negative,
            self.total_diagnostic_errors,
            self.rad_peer_score,
            self.technical_performance_score,
        ]


def _number(value: object) -> Optional[float]:
    if value is None or pd.isna(value):
        return None
    return float(value)  # type: ignore[arg-type]


def _text(value: object) -> Optional[str]:
    if value is None or pd.isna(value):
        return None
    return str(value)


def reviews_from_frame(frame: pd.DataFrame, columns: ColumnMap = ColumnMap()) -> List[ExamReview]:
    missing = sorted(set(columns.required()) - set(frame.columns))
    if missing:
        raise KeyError(f"Exam review table missing columns: {', '.join(missing)}")

    def optional(column: str) -> pd.Series:
        if column in frame.columns:
            return frame[column]
        return pd.Series([None] * len(frame), index=frame.index, dtype=object)

    significance = optional(columns.significance_of_errors)
    sex = optional(columns.subject_sex)
    age = optional(columns.subject_age)
    body_part = optional(columns.body_part)

    reviews: List[ExamReview] = []
    for i in frame.index:
        reviews.append(
            ExamReview(
                exam_id=str(frame.at[i, columns.exam_id]),
                provider_id=str(frame.at[i, columns.provider_id]),
                reviewer_id=str(frame.at[i, columns.reviewer_id]),
                true_positive=_number(frame.at[i, columns.true_positive]),
                true_negative=_number(frame.at[i, columns.true_negative]),
                false_positive=_number(frame.at[i, columns.false_positive]),
                false_negative=_number(frame.at[i, columns.false_negative]),
                total_diagnostic_errors=_number(frame.at[i, columns.total_diagnostic_errors]),
                rad_peer_score=_number(frame.at[i, columns.rad_peer_score]),
                technical_performance_score=_number(
                    frame.at[i, columns.technical_performance_score]
                ),
                significance_of_errors=_number(significance.at[i]),
                subject_sex=_text(sex.at[i]),
                subject_age=_number(age.at[i]),
                body_part=_text(body_part.at[i]),
            )
        )
    return reviews


def load_exam_reviews(csv_path: Path, columns: ColumnMap = ColumnMap()) -> List[ExamReview]:
    if not csv_path.exists():
        raise FileNotFoundError(f"Exam review table not found: {csv_path}")
    LOGGER.info("Loading exam reviews from %s", csv_path)
    frame = pd.read_csv(
        csv_path,
        dtype={columns.exam_id: str, columns.provider_id: str, columns.reviewer_id: str},
    )
    reviews = reviews_from_frame(frame, columns)
    LOGGER.info("Loaded %d reviews", len(reviews))
    return reviews
