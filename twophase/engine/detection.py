"""
Integrity pattern detectors.

Every detector is a pure function over an immutable snapshot of response
records or peer evaluations. Given the same input and the same
``detected_at`` stamp, re-running a detector yields equal output. Degenerate
inputs (too few samples, zero means) produce no pattern rather than an error.
"""

from __future__ import annotations

import logging
import statistics
from collections import OrderedDict
from datetime import datetime
from typing import Dict, Iterable, List, Mapping, Optional, Sequence, Tuple

from twophase.catalog import QuestionSource, as_question_lookup
from twophase.core.config import DetectionSettings, PatternDedupe
from twophase.core.models import GamingPattern, PatternType, PeerEvaluation, Question, utcnow

from .ledger import Response

LOGGER = logging.getLogger(__name__)

DEFAULT_SETTINGS = DetectionSettings()

DETECTOR_ORDER: Tuple[PatternType, ...] = (
    PatternType.RATIONALE_MINING,
    PatternType.ANSWER_RATIONALE_MISMATCH,
    PatternType.RAPID_RESPONSE,
    PatternType.RECIPROCAL_INFLATION,
    PatternType.NO_VARIANCE,
)

INTERVENTIONS: Dict[PatternType, Tuple[str, ...]] = {
    PatternType.RATIONALE_MINING: (
        "Review test-taking strategies with student",
        "Implement stricter time controls between phases",
    ),
    PatternType.RECIPROCAL_INFLATION: (
        "Adjust peer evaluation weights",
        "Require faculty calibration for this group",
    ),
    PatternType.NO_VARIANCE: (
        "Provide rubric training session",
        "Require written justification for scores",
    ),
    PatternType.ANSWER_RATIONALE_MISMATCH: (
        "Schedule individual meeting to discuss understanding",
        "Recommend additional practice with rationale selection",
    ),
    PatternType.RAPID_RESPONSE: (
        "Discuss pacing expectations with student",
        "Enforce a minimum time on each question",
    ),
}


def _rationale_sample(responses: Sequence[Response], questions: QuestionSource) -> List[Tuple[Response, Question]]:
    lookup = as_question_lookup(questions)
    sample: List[Tuple[Response, Question]] = []
    for response in responses:
        if not response.has_rationale:
            continue
        question = lookup.get(response.question_id)
        if question is None:
            continue
        sample.append((response, question))
    return sample


def detect_rationale_mining(
    responses: Iterable[Response],
    questions: QuestionSource,
    settings: DetectionSettings | None = None,
    *,
    detected_at: datetime | None = None,
) -> Optional[GamingPattern]:
    """Flag rationale accuracy running well ahead of answer accuracy.

    Only responses that carry a rationale and reference a known question
    count toward the sample.
    """

    settings = settings or DEFAULT_SETTINGS
    records = list(responses)
    sample = _rationale_sample(records, questions)
    total = len(sample)
    if total < settings.min_rationale_sample:
        return None

    correct_answers = sum(1 for response, question in sample if question.is_correct_answer(response.answer_id))
    correct_rationales = sum(1 for response, question in sample if question.is_correct_rationale(response.rationale_id))
    answer_accuracy = 100 * correct_answers / total
    rationale_accuracy = 100 * correct_rationales / total
    difference = rationale_accuracy - answer_accuracy
    if difference <= settings.rationale_gap_threshold:
        return None

    student_id = sample[0][0].student_id
    LOGGER.debug("rationale_mining flagged for %s (gap=%.2f, n=%d)", student_id, difference, total)
    return GamingPattern(
        student_id=student_id,
        pattern_type=PatternType.RATIONALE_MINING,
        confidence=min(difference / settings.rationale_confidence_scale, 1.0),
        detected_at=detected_at or utcnow(),
        details={
            "answer_accuracy": round(answer_accuracy, 2),
            "rationale_accuracy": round(rationale_accuracy, 2),
            "difference": round(difference, 2),
            "sample_size": total,
        },
    )


def detect_answer_rationale_mismatch(
    responses: Iterable[Response],
    questions: QuestionSource,
    settings: DetectionSettings | None = None,
    *,
    detected_at: datetime | None = None,
) -> Optional[GamingPattern]:
    """Flag students whose answer and rationale correctness disagree too often."""

    settings = settings or DEFAULT_SETTINGS
    sample = _rationale_sample(list(responses), questions)
    total = len(sample)
    if total < settings.min_rationale_sample:
        return None

    mismatches = sum(
        1
        for response, question in sample
        if question.is_correct_answer(response.answer_id) != question.is_correct_rationale(response.rationale_id)
    )
    rate = mismatches / total
    if rate <= settings.mismatch_threshold:
        return None

    student_id = sample[0][0].student_id
    LOGGER.debug("answer_rationale_mismatch flagged for %s (rate=%.3f)", student_id, rate)
    return GamingPattern(
        student_id=student_id,
        pattern_type=PatternType.ANSWER_RATIONALE_MISMATCH,
        confidence=min(rate / settings.mismatch_confidence_scale, 1.0),
        detected_at=detected_at or utcnow(),
        details={
            "mismatch_count": mismatches,
            "total_evaluated": total,
            "mismatch_rate": round(rate, 4),
        },
    )


def detect_rapid_response(
    responses: Iterable[Response],
    settings: DetectionSettings | None = None,
    *,
    detected_at: datetime | None = None,
) -> Optional[GamingPattern]:
    """Flag a majority of answers locked faster than a human can read the item."""

    settings = settings or DEFAULT_SETTINGS
    records = list(responses)
    if len(records) < settings.min_rapid_sample:
        return None

    rapid = [record for record in records if record.time_on_question < settings.rapid_response_seconds]
    rate = len(rapid) / len(records)
    if rate <= settings.rapid_response_rate:
        return None

    student_id = records[0].student_id
    LOGGER.debug("rapid_response flagged for %s (rate=%.3f)", student_id, rate)
    return GamingPattern(
        student_id=student_id,
        pattern_type=PatternType.RAPID_RESPONSE,
        confidence=min(rate, 1.0),
        detected_at=detected_at or utcnow(),
        details={
            "rapid_response_count": len(rapid),
            "total_responses": len(records),
            "average_time": round(statistics.fmean(record.time_on_question for record in records), 2),
            "rapid_response_threshold": settings.rapid_response_seconds,
        },
    )


def detect_reciprocal_inflation(
    evaluations: Iterable[PeerEvaluation],
    test_scores: Mapping[str, float],
    settings: DetectionSettings | None = None,
    *,
    detected_at: datetime | None = None,
) -> List[GamingPattern]:
    """Flag pairs of students who rate each other far above their own test performance.

    Each unordered pair is examined once; when both directions are inflated,
    one pattern is emitted per evaluator. Students without a test score are
    treated as scoring 0.
    """

    settings = settings or DEFAULT_SETTINGS
    records = list(evaluations)
    stamp = detected_at or utcnow()
    by_direction: Dict[Tuple[str, str], PeerEvaluation] = {}
    for evaluation in records:
        by_direction.setdefault((evaluation.evaluator_id, evaluation.teacher_id), evaluation)

    seen: set[Tuple[str, str]] = set()
    patterns: List[GamingPattern] = []
    for evaluation in records:
        if evaluation.evaluator_id == evaluation.teacher_id:
            continue
        reciprocal = by_direction.get((evaluation.teacher_id, evaluation.evaluator_id))
        if reciprocal is None:
            continue
        pair = tuple(sorted((evaluation.evaluator_id, evaluation.teacher_id)))
        if pair in seen:
            continue
        seen.add(pair)

        forward = by_direction[(evaluation.evaluator_id, evaluation.teacher_id)]
        forward_score = float(test_scores.get(forward.evaluator_id, 0.0))
        reverse_score = float(test_scores.get(reciprocal.evaluator_id, 0.0))
        if not (
            forward.total_score > forward_score + settings.peer_test_threshold
            and reciprocal.total_score > reverse_score + settings.peer_test_threshold
        ):
            continue

        for given, own_score in ((forward, forward_score), (reciprocal, reverse_score)):
            patterns.append(
                GamingPattern(
                    student_id=given.evaluator_id,
                    pattern_type=PatternType.RECIPROCAL_INFLATION,
                    confidence=settings.reciprocal_confidence,
                    detected_at=stamp,
                    details={
                        "paired_with": given.teacher_id,
                        "peer_score": given.total_score,
                        "test_score": own_score,
                        "difference": round(given.total_score - own_score, 2),
                    },
                )
            )
        LOGGER.debug("reciprocal_inflation flagged for pair %s", pair)
    return patterns


def detect_no_variance(
    evaluations: Iterable[PeerEvaluation],
    settings: DetectionSettings | None = None,
    *,
    detected_at: datetime | None = None,
) -> List[GamingPattern]:
    """Flag evaluators who give (nearly) the same total to everyone."""

    settings = settings or DEFAULT_SETTINGS
    stamp = detected_at or utcnow()
    grouped: "OrderedDict[str, List[float]]" = OrderedDict()
    for evaluation in evaluations:
        grouped.setdefault(evaluation.evaluator_id, []).append(evaluation.total_score)

    patterns: List[GamingPattern] = []
    for evaluator_id in sorted(grouped):
        scores = grouped[evaluator_id]
        if len(scores) < settings.min_variance_sample:
            continue
        mean = statistics.fmean(scores)
        if mean <= 0:
            continue
        stddev = statistics.pstdev(scores)
        coefficient = stddev / mean
        if coefficient >= settings.variance_threshold:
            continue
        patterns.append(
            GamingPattern(
                student_id=evaluator_id,
                pattern_type=PatternType.NO_VARIANCE,
                confidence=max(0.0, 1.0 - coefficient),
                detected_at=stamp,
                details={
                    "scores": list(scores),
                    "mean": round(mean, 2),
                    "standard_deviation": round(stddev, 2),
                    "coefficient_of_variation": round(coefficient, 4),
                    "evaluation_count": len(scores),
                },
            )
        )
    return patterns


def _group_by_student(responses: Iterable[Response]) -> Dict[str, List[Response]]:
    grouped: Dict[str, List[Response]] = {}
    for response in responses:
        grouped.setdefault(response.student_id, []).append(response)
    return {student_id: grouped[student_id] for student_id in sorted(grouped)}


def detect_response_patterns(
    responses: Iterable[Response],
    questions: QuestionSource,
    settings: DetectionSettings | None = None,
    *,
    detected_at: datetime | None = None,
) -> List[GamingPattern]:
    """Run the ledger-based detectors for every student in the snapshot."""

    settings = settings or DEFAULT_SETTINGS
    stamp = detected_at or utcnow()
    lookup = as_question_lookup(questions)
    grouped = _group_by_student(responses)
    patterns: List[GamingPattern] = []

    if settings.is_enabled(PatternType.RATIONALE_MINING):
        for records in grouped.values():
            pattern = detect_rationale_mining(records, lookup, settings, detected_at=stamp)
            if pattern:
                patterns.append(pattern)
    if settings.is_enabled(PatternType.ANSWER_RATIONALE_MISMATCH):
        for records in grouped.values():
            pattern = detect_answer_rationale_mismatch(records, lookup, settings, detected_at=stamp)
            if pattern:
                patterns.append(pattern)
    if settings.is_enabled(PatternType.RAPID_RESPONSE):
        for records in grouped.values():
            pattern = detect_rapid_response(records, settings, detected_at=stamp)
            if pattern:
                patterns.append(pattern)
    return patterns


def detect_peer_patterns(
    evaluations: Iterable[PeerEvaluation],
    test_scores: Mapping[str, float] | None = None,
    settings: DetectionSettings | None = None,
    *,
    detected_at: datetime | None = None,
) -> List[GamingPattern]:
    settings = settings or DEFAULT_SETTINGS
    stamp = detected_at or utcnow()
    records = list(evaluations)
    patterns: List[GamingPattern] = []
    if settings.is_enabled(PatternType.RECIPROCAL_INFLATION):
        patterns.extend(detect_reciprocal_inflation(records, test_scores or {}, settings, detected_at=stamp))
    if settings.is_enabled(PatternType.NO_VARIANCE):
        patterns.extend(detect_no_variance(records, settings, detected_at=stamp))
    return patterns


def detect_all_patterns(
    responses: Iterable[Response],
    questions: QuestionSource,
    evaluations: Iterable[PeerEvaluation] = (),
    test_scores: Mapping[str, float] | None = None,
    settings: DetectionSettings | None = None,
    *,
    detected_at: datetime | None = None,
) -> List[GamingPattern]:
    """Run every enabled detector and return one pattern per (student, type).

    A student caught by the same detector more than once (for example in two
    inflated reciprocal pairs) keeps only the strongest instance. Output is
    ordered by detector, then by student id.
    """

    stamp = detected_at or utcnow()
    patterns = detect_response_patterns(responses, questions, settings, detected_at=stamp)
    patterns.extend(detect_peer_patterns(evaluations, test_scores, settings, detected_at=stamp))
    return sorted(
        dedupe_patterns(patterns),
        key=lambda pattern: (DETECTOR_ORDER.index(pattern.pattern_type), pattern.student_id),
    )


def dedupe_patterns(patterns: Iterable[GamingPattern]) -> List[GamingPattern]:
    """Keep the highest-confidence pattern per (student, pattern type), in first-seen order."""

    best: Dict[Tuple[str, PatternType], GamingPattern] = {}
    for pattern in patterns:
        key = (pattern.student_id, pattern.pattern_type)
        current = best.get(key)
        if current is None or pattern.confidence > current.confidence:
            best[key] = pattern
    return list(best.values())


def merge_patterns(
    previous: Sequence[GamingPattern],
    fresh: Sequence[GamingPattern],
    strategy: PatternDedupe = PatternDedupe.REPLACE,
) -> List[GamingPattern]:
    """Fold a fresh detector run into a stored list without unbounded growth."""

    if strategy is PatternDedupe.HIGHEST:
        return dedupe_patterns([*previous, *fresh])
    return dedupe_patterns(fresh)


def overall_confidence(patterns: Sequence[GamingPattern]) -> float:
    if not patterns:
        return 0.0
    return min(statistics.fmean(pattern.confidence for pattern in patterns), 1.0)


def recommend_interventions(patterns: Iterable[GamingPattern]) -> List[str]:
    recommendations: List[str] = []
    for pattern in patterns:
        for item in INTERVENTIONS.get(pattern.pattern_type, ()):
            if item not in recommendations:
                recommendations.append(item)
    return recommendations


__all__ = [
    "DETECTOR_ORDER",
    "INTERVENTIONS",
    "dedupe_patterns",
    "detect_all_patterns",
    "detect_answer_rationale_mismatch",
    "detect_no_variance",
    "detect_peer_patterns",
    "detect_rapid_response",
    "detect_rationale_mining",
    "detect_reciprocal_inflation",
    "detect_response_patterns",
    "merge_patterns",
    "overall_confidence",
    "recommend_interventions",
]
