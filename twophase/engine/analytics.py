"""Roll-ups over stored attempt results for the faculty dashboard views."""

from __future__ import annotations

import statistics
from typing import Dict, Iterable, List

from pydantic import BaseModel

from twophase.catalog import QuestionSource, as_question_lookup
from twophase.core.models import AttemptResult, PatternType

from .grading import round_half_up
from .ledger import Response


class CategoryPerformance(BaseModel):
    category: str
    correct: int
    total: int
    accuracy: float


class PatternCount(BaseModel):
    pattern_type: PatternType
    count: int
    percentage: float


class ClassSummary(BaseModel):
    attempts: int = 0
    completed: int = 0
    abandoned: int = 0
    average_score: float = 0.0
    average_answer_accuracy: float = 0.0
    average_rationale_accuracy: float = 0.0
    suspicious: int = 0
    flagged: int = 0


def category_performance(responses: Iterable[Response], questions: QuestionSource) -> List[CategoryPerformance]:
    """Answer accuracy per question category, sorted by category name."""

    lookup = as_question_lookup(questions)
    tallies: Dict[str, List[int]] = {}
    for response in responses:
        question = lookup.get(response.question_id)
        if question is None:
            continue
        tally = tallies.setdefault(question.category, [0, 0])
        tally[1] += 1
        if question.is_correct_answer(response.answer_id):
            tally[0] += 1
    return [
        CategoryPerformance(
            category=category,
            correct=correct,
            total=total,
            accuracy=round_half_up(correct / total * 100),
        )
        for category, (correct, total) in sorted(tallies.items())
    ]


def pattern_distribution(results: Iterable[AttemptResult]) -> List[PatternCount]:
    """How many results carry each pattern type, as a count and a share of all results."""

    records = list(results)
    counts: Dict[PatternType, int] = {pattern_type: 0 for pattern_type in PatternType}
    for result in records:
        for pattern_type in {pattern.pattern_type for pattern in result.patterns}:
            counts[pattern_type] += 1
    total = len(records)
    return [
        PatternCount(
            pattern_type=pattern_type,
            count=count,
            percentage=round_half_up(count / total * 100) if total else 0.0,
        )
        for pattern_type, count in counts.items()
    ]


def class_summary(results: Iterable[AttemptResult]) -> ClassSummary:
    records = list(results)
    if not records:
        return ClassSummary()
    return ClassSummary(
        attempts=len(records),
        completed=sum(1 for result in records if result.outcome == "complete"),
        abandoned=sum(1 for result in records if result.outcome == "abandoned"),
        average_score=round_half_up(statistics.fmean(result.score for result in records)),
        average_answer_accuracy=round_half_up(statistics.fmean(result.answer_accuracy for result in records)),
        average_rationale_accuracy=round_half_up(statistics.fmean(result.rationale_accuracy for result in records)),
        suspicious=sum(1 for result in records if result.suspicious_behavior),
        flagged=sum(1 for result in records if result.patterns),
    )


__all__ = [
    "CategoryPerformance",
    "ClassSummary",
    "PatternCount",
    "category_performance",
    "class_summary",
    "pattern_distribution",
]
