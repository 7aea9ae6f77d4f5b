from datetime import datetime, timezone

import pytest

from twophase.core.models import AttemptResult, GamingPattern, PatternType
from twophase.engine.analytics import category_performance, class_summary, pattern_distribution

from tests.mocks.records import make_question, make_response

STARTED = datetime(2024, 1, 1, 9, 0, tzinfo=timezone.utc)
ENDED = datetime(2024, 1, 1, 9, 20, tzinfo=timezone.utc)


def _result(student_id: str, score: float, *patterns: PatternType, outcome: str = "complete", suspicious: bool = False):
    return AttemptResult(
        assessment_id="quiz-1",
        student_id=student_id,
        started_at=STARTED,
        ended_at=ENDED,
        score=score,
        answer_accuracy=score,
        rationale_accuracy=score / 2,
        suspicious_behavior=suspicious,
        outcome=outcome,
        patterns=[GamingPattern(student_id=student_id, pattern_type=kind, confidence=0.9) for kind in patterns],
    )


def test_category_performance_groups_by_question_category() -> None:
    questions = [
        make_question("q-1", category="pharmacology"),
        make_question("q-2", category="pharmacology"),
        make_question("q-3", category="cardiac"),
    ]
    responses = [
        make_response("s-1", "q-1", "a", "r1"),
        make_response("s-1", "q-2", "b", "r1"),
        make_response("s-2", "q-2", "a"),
        make_response("s-1", "q-3", "c", "r2"),
        make_response("s-1", "q-404", "a", "r1"),
    ]
    rows = category_performance(responses, questions)

    assert [(row.category, row.correct, row.total) for row in rows] == [("cardiac", 0, 1), ("pharmacology", 2, 3)]
    assert rows[1].accuracy == pytest.approx(66.7)


def test_pattern_distribution_counts_results_not_patterns() -> None:
    results = [
        _result("s-1", 40, PatternType.RATIONALE_MINING, PatternType.RATIONALE_MINING),
        _result("s-2", 90),
        _result("s-3", 55, PatternType.RATIONALE_MINING, PatternType.RAPID_RESPONSE),
        _result("s-4", 70),
    ]
    distribution = {row.pattern_type: row for row in pattern_distribution(results)}

    assert distribution[PatternType.RATIONALE_MINING].count == 2
    assert distribution[PatternType.RATIONALE_MINING].percentage == 50.0
    assert distribution[PatternType.RAPID_RESPONSE].percentage == 25.0
    assert distribution[PatternType.NO_VARIANCE].count == 0
    assert all(row.percentage == 0.0 for row in pattern_distribution([]))


def test_class_summary() -> None:
    results = [
        _result("s-1", 40, PatternType.RATIONALE_MINING, suspicious=True),
        _result("s-2", 90),
        _result("s-3", 65, outcome="abandoned"),
    ]
    summary = class_summary(results)

    assert summary.attempts == 3
    assert (summary.completed, summary.abandoned) == (2, 1)
    assert summary.average_score == 65.0
    assert summary.average_rationale_accuracy == 32.5
    assert (summary.suspicious, summary.flagged) == (1, 1)
    assert class_summary([]).attempts == 0
