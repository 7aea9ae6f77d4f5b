"""
Weighted final-grade calculator.

All functions are pure and tolerate missing data: an absent assessment type,
an empty evaluation list, or a response pointing at an unknown question
contributes 0 (or is skipped) instead of raising.
"""

from __future__ import annotations

import logging
import math
import statistics
from typing import Dict, Iterable, List, Mapping, Optional, Sequence

from twophase.catalog import QuestionSource, as_question_lookup
from twophase.core.config import GradingSettings
from twophase.core.models import (
    Assessment,
    AssessmentType,
    GamingPattern,
    GradeAdjustments,
    GradeCalculation,
    GradeComponents,
    PeerEvaluation,
    Question,
    ReflectionStats,
)

from .ledger import Response

LOGGER = logging.getLogger(__name__)

DEFAULT_SETTINGS = GradingSettings()

# Engagement blend: time on task, completion, evaluation participation, attendance
ENGAGEMENT_BLEND = (0.3, 0.3, 0.2, 0.2)
POINTS_PER_EVALUATION = 20.0
# Feedback quality blend: section variance, substantive comment, range used
FEEDBACK_BLEND = (0.3, 0.4, 0.3)
VARIANCE_SCALE = 1000.0
POINTS_PER_REFLECTION = 25.0


def round_half_up(value: float, digits: int = 1) -> float:
    factor = 10**digits
    return math.floor(value * factor + 0.5) / factor


def _clamp(value: float, low: float = 0.0, high: float = 100.0) -> float:
    return min(high, max(low, value))


def assessment_score(
    responses: Iterable[Response],
    questions: QuestionSource,
    settings: GradingSettings | None = None,
) -> float:
    """Two-phase score for one set of responses.

    Each answered question is worth one point: ``answer_weight`` for the
    correct answer plus ``rationale_weight`` for a correct rationale.
    """

    settings = settings or DEFAULT_SETTINGS
    lookup = as_question_lookup(questions)
    answered = 0
    points = 0.0
    for response in responses:
        question = lookup.get(response.question_id)
        if question is None:
            continue
        answered += 1
        if question.is_correct_answer(response.answer_id):
            points += settings.answer_weight
        if response.has_rationale and question.is_correct_rationale(response.rationale_id):
            points += settings.rationale_weight
    if answered == 0:
        return 0.0
    return round_half_up(points / answered * 100)


def _assessment_questions(assessment: Assessment, lookup: Mapping[str, Question]) -> List[Question]:
    questions: List[Question] = []
    for question_id in assessment.question_ids:
        question = lookup.get(question_id)
        if question is not None:
            questions.append(question)
    return questions


def type_average(
    assessment_type: AssessmentType,
    responses: Sequence[Response],
    questions: QuestionSource,
    assessments: Iterable[Assessment],
    settings: GradingSettings | None = None,
) -> float:
    """Mean assessment score across attempted assessments of one type (0 if none)."""

    lookup = as_question_lookup(questions)
    scores: List[float] = []
    for assessment in assessments:
        if assessment.type != assessment_type:
            continue
        attempt = [response for response in responses if response.assessment_id == assessment.id]
        if not attempt:
            continue
        scores.append(assessment_score(attempt, _assessment_questions(assessment, lookup), settings))
    return statistics.fmean(scores) if scores else 0.0


def overall_test_average(
    responses: Sequence[Response],
    questions: QuestionSource,
    assessments: Sequence[Assessment],
    settings: GradingSettings | None = None,
) -> float:
    """Mean of the quiz, exam, and final averages."""

    averages = [
        type_average(kind, responses, questions, assessments, settings)
        for kind in (AssessmentType.QUIZ, AssessmentType.EXAM, AssessmentType.FINAL)
    ]
    return sum(averages) / 3


def student_test_scores(
    responses: Iterable[Response],
    questions: QuestionSource,
    assessments: Sequence[Assessment],
    settings: GradingSettings | None = None,
) -> Dict[str, float]:
    """Per-student test averages, the baseline the reciprocal-inflation detector compares against."""

    grouped: Dict[str, List[Response]] = {}
    for response in responses:
        grouped.setdefault(response.student_id, []).append(response)
    return {
        student_id: overall_test_average(records, questions, assessments, settings)
        for student_id, records in sorted(grouped.items())
    }


def _mean_total(evaluations: Sequence[PeerEvaluation]) -> Optional[float]:
    if not evaluations:
        return None
    return statistics.fmean(evaluation.total_score for evaluation in evaluations)


def teaching_score(
    evaluations_received: Sequence[PeerEvaluation],
    faculty_benchmarks: Sequence[PeerEvaluation],
    test_avg: float,
    settings: GradingSettings | None = None,
) -> float:
    """Peer teaching score with anti-inflation and faculty calibration."""

    settings = settings or DEFAULT_SETTINGS
    peer_mean = _mean_total(evaluations_received)
    if peer_mean is None:
        return 0.0

    adjusted = peer_mean
    if peer_mean > test_avg + settings.peer_inflation_margin:
        adjusted = peer_mean * settings.peer_adjustment_factor

    faculty_mean = _mean_total(faculty_benchmarks)
    if faculty_mean is not None and faculty_mean > 0:
        deviation = abs(adjusted - faculty_mean) / faculty_mean
        if deviation > settings.faculty_deviation_threshold:
            adjusted = (adjusted + faculty_mean) / 2

    return _clamp(adjusted)


def group_performance(
    member_ids: Iterable[str],
    responses_by_member: Mapping[str, Sequence[Response]],
    questions: QuestionSource,
    settings: GradingSettings | None = None,
) -> float:
    """Mean two-phase score across group members who have responses."""

    lookup = as_question_lookup(questions)
    scores: List[float] = []
    for member_id in member_ids:
        records = responses_by_member.get(member_id) or []
        if not records:
            continue
        scores.append(assessment_score(records, lookup, settings))
    return statistics.fmean(scores) if scores else 0.0


def engagement_score(
    responses: Sequence[Response],
    evaluations_given: Sequence[PeerEvaluation],
    attendance_rate: float,
    settings: GradingSettings | None = None,
) -> float:
    settings = settings or DEFAULT_SETTINGS
    time_weight, completion_weight, evaluation_weight, attendance_weight = ENGAGEMENT_BLEND
    if responses:
        average_time = statistics.fmean(response.time_on_question for response in responses)
        time_score = min(100.0, average_time / settings.engagement_time_reference * 100)
        completed = sum(1 for response in responses if response.has_rationale)
        completion_score = completed / len(responses) * 100
    else:
        time_score = 0.0
        completion_score = 0.0
    evaluation_score = min(100.0, len(evaluations_given) * POINTS_PER_EVALUATION)
    attendance_score = _clamp(attendance_rate, 0.0, 1.0) * 100
    return (
        time_score * time_weight
        + completion_score * completion_weight
        + evaluation_score * evaluation_weight
        + attendance_score * attendance_weight
    )


def feedback_quality(
    evaluations_given: Sequence[PeerEvaluation],
    settings: GradingSettings | None = None,
) -> float:
    """Rewards differentiated section scores, substantive comments, and use of the rubric range."""

    settings = settings or DEFAULT_SETTINGS
    if not evaluations_given:
        return 0.0
    variance_weight, comment_weight, range_weight = FEEDBACK_BLEND
    total = 0.0
    for evaluation in evaluations_given:
        sections = evaluation.rubric_scores.section_scores
        variance_score = min(100.0, statistics.pvariance(sections) * VARIANCE_SCALE)
        comment_score = 100.0 if len(evaluation.comments) > settings.comment_min_length else 0.0
        range_score = (max(sections) - min(sections)) / settings.section_range * 100
        total += variance_score * variance_weight + comment_score * comment_weight + range_score * range_weight
    return total / len(evaluations_given)


def reflection_score(count: int, quality: float) -> float:
    quantity = min(100.0, count * POINTS_PER_REFLECTION)
    return quantity * 0.5 + quality * 0.5


def gaming_penalty(patterns: Iterable[GamingPattern], settings: GradingSettings | None = None) -> float:
    settings = settings or DEFAULT_SETTINGS
    raw = sum(settings.penalty_per_confidence * pattern.confidence for pattern in patterns)
    return min(settings.penalty_cap, raw)


def letter_grade(grade: float, settings: GradingSettings | None = None) -> str:
    settings = settings or DEFAULT_SETTINGS
    for cutoff, letter in settings.letter_cutoffs:
        if grade >= cutoff:
            return letter
    return settings.failing_letter


def weighted_total(components: GradeComponents, settings: GradingSettings | None = None) -> float:
    settings = settings or DEFAULT_SETTINGS
    weights = settings.weights
    return sum(getattr(components, name) * getattr(weights, name) for name in GradeComponents.model_fields)


def combine_components(
    student_id: str,
    components: GradeComponents,
    patterns: Iterable[GamingPattern] = (),
    settings: GradingSettings | None = None,
    *,
    peer_adjustment: float | None = None,
) -> GradeCalculation:
    """Weight the components, subtract the gaming penalty, and assign a letter."""

    settings = settings or DEFAULT_SETTINGS
    total = weighted_total(components, settings)
    penalty = gaming_penalty(patterns, settings)
    adjusted = max(0.0, total - penalty)
    final_grade = round_half_up(adjusted)
    LOGGER.debug("Grade for %s: weighted=%.3f penalty=%.2f final=%.1f", student_id, total, penalty, final_grade)
    return GradeCalculation(
        student_id=student_id,
        components=components,
        adjustments=GradeAdjustments(gaming_penalty=penalty, peer_evaluation_adjustment=peer_adjustment),
        weighted_total=total,
        final_grade=final_grade,
        # letter follows the unrounded grade, so 92.96 is an A- even though it displays as 93.0
        letter_grade=letter_grade(adjusted, settings),
    )


def calculate_final_grade(
    student_id: str,
    responses: Sequence[Response],
    questions: QuestionSource,
    assessments: Sequence[Assessment],
    evaluations_received: Sequence[PeerEvaluation] = (),
    evaluations_given: Sequence[PeerEvaluation] = (),
    faculty_benchmarks: Sequence[PeerEvaluation] = (),
    group_member_ids: Sequence[str] = (),
    group_responses: Mapping[str, Sequence[Response]] | None = None,
    patterns: Sequence[GamingPattern] = (),
    attendance_rate: float = 0.95,
    reflection: ReflectionStats | None = None,
    settings: GradingSettings | None = None,
) -> GradeCalculation:
    """Aggregate every grade component for one student into a GradeCalculation."""

    settings = settings or DEFAULT_SETTINGS
    reflection = reflection or ReflectionStats()
    lookup = as_question_lookup(questions)
    records = list(responses)

    quizzes = type_average(AssessmentType.QUIZ, records, lookup, assessments, settings)
    exams = type_average(AssessmentType.EXAM, records, lookup, assessments, settings)
    final = type_average(AssessmentType.FINAL, records, lookup, assessments, settings)
    tests = (quizzes + exams + final) / 3

    teaching = teaching_score(evaluations_received, faculty_benchmarks, tests, settings)
    peer_mean = _mean_total(evaluations_received)
    peer_adjustment = None
    if peer_mean is not None and not math.isclose(teaching, peer_mean):
        peer_adjustment = teaching - peer_mean

    components = GradeComponents(
        quizzes=quizzes,
        exams=exams,
        final=final,
        teaching=teaching,
        group_performance=group_performance(group_member_ids, group_responses or {}, lookup, settings),
        engagement=engagement_score(records, evaluations_given, attendance_rate, settings),
        feedback_quality=feedback_quality(evaluations_given, settings),
        reflection=reflection_score(reflection.count, reflection.quality),
    )
    return combine_components(student_id, components, patterns, settings, peer_adjustment=peer_adjustment)


_REPORT_ROWS = (
    ("INDIVIDUAL COMPONENTS", (("Quizzes", "quizzes"), ("Exams", "exams"), ("Final Exam", "final"))),
    ("GROUP COMPONENTS", (("Teaching Quality", "teaching"), ("Group Performance", "group_performance"))),
    (
        "PARTICIPATION",
        (("Engagement", "engagement"), ("Feedback Quality", "feedback_quality"), ("Reflections", "reflection")),
    ),
)


def render_grade_report(calculation: GradeCalculation, settings: GradingSettings | None = None) -> str:
    """Plain-text grade breakdown for faculty review."""

    settings = settings or DEFAULT_SETTINGS
    weights = settings.weights
    title = f"Grade Report for Student: {calculation.student_id}"
    lines = [title, "=" * len(title), ""]
    for heading, rows in _REPORT_ROWS:
        section_weight = sum(getattr(weights, key) for _, key in rows)
        header = f"{heading} ({section_weight * 100:.0f}%)"
        lines.extend([header, "-" * len(header)])
        for label, key in rows:
            name = f"{label} ({getattr(weights, key) * 100:.0f}%):"
            lines.append(f"{name:<26}{getattr(calculation.components, key):.1f}%")
        lines.append("")
    lines.extend(
        [
            "ADJUSTMENTS",
            "-----------",
            f"{'Gaming Penalty:':<26}-{calculation.adjustments.gaming_penalty:.1f}%",
            "",
            "FINAL GRADE",
            "-----------",
            f"{'Numerical Grade:':<26}{calculation.final_grade:.1f}%",
            f"{'Letter Grade:':<26}{calculation.letter_grade}",
        ]
    )
    return "\n".join(lines) + "\n"


__all__ = [
    "assessment_score",
    "calculate_final_grade",
    "combine_components",
    "engagement_score",
    "feedback_quality",
    "gaming_penalty",
    "group_performance",
    "letter_grade",
    "reflection_score",
    "render_grade_report",
    "round_half_up",
    "teaching_score",
    "overall_test_average",
    "student_test_scores",
    "type_average",
    "weighted_total",
]
