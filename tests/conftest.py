from __future__ import annotations

from typing import Callable, List

import pytest

from provider_quality.records import ExamReview


def _review(
    exam_id: str = "e1",
    provider_id: str = "p1",
    reviewer_id: str = "r1",
    tp: float = 0,
    tn: float = 0,
    fp: float = 0,
    fn: float = 0,
    errors: float = None,
    rad_peer: float = 1.0,
    technical: float = 4.0,
    significance: float = None,
    sex: str = "F",
    age: float = 50.0,
    body_part: str = "CHEST",
) -> ExamReview:
    return ExamReview(
        exam_id=exam_id,
        provider_id=provider_id,
        reviewer_id=reviewer_id,
        true_positive=tp,
        true_negative=tn,
        false_positive=fp,
        false_negative=fn,
        total_diagnostic_errors=fp + fn if errors is None else errors,
        rad_peer_score=rad_peer,
        technical_performance_score=technical,
        significance_of_errors=significance,
        subject_sex=sex,
        subject_age=age,
        body_part=body_part,
    )


@pytest.fixture
def make_review() -> Callable[..., ExamReview]:
    return _review


@pytest.fixture
def separated_reviews() -> List[ExamReview]:
    """Four accurate providers and four error-prone ones with uneven volume."""
    reviews: List[ExamReview] = []
    for i in range(4):
        for e in range(3 + i):
            reviews.append(
                _review(
                    exam_id=f"g{i}-{e}",
                    provider_id=f"good{i}",
                    tp=10,
                    tn=20,
                    fp=e % 2,
                    fn=0,
                    rad_peer=1.0,
                    technical=4.0,
                    significance=1.0,
                )
            )
    for i in range(4):
        for e in range(2 + i):
            for reviewer in ("r1", "r2"):
                reviews.append(
                    _review(
                        exam_id=f"b{i}-{e}",
                        provider_id=f"bad{i}",
                        reviewer_id=reviewer,
                        tp=6,
                        tn=7,
                        fp=3 + (i % 2),
                        fn=4,
                        rad_peer=3.0,
                        technical=2.0,
                        significance=2.0,
                    )
                )
    return reviews
