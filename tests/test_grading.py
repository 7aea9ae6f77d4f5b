import unittest

import pytest

from twophase.core.config import GradingSettings
from twophase.core.models import GamingPattern, GradeComponents, PatternType, ReflectionStats
from twophase.engine.grading import (
    assessment_score,
    calculate_final_grade,
    combine_components,
    engagement_score,
    feedback_quality,
    gaming_penalty,
    group_performance,
    letter_grade,
    reflection_score,
    render_grade_report,
    round_half_up,
    student_test_scores,
    teaching_score,
    type_average,
)

from tests.mocks.records import make_assessment, make_evaluation, make_questions, make_response


def _patterns(count: int, confidence: float = 1.0):
    return [
        GamingPattern(student_id="s-1", pattern_type=PatternType.RATIONALE_MINING, confidence=confidence)
        for _ in range(count)
    ]


EXAMPLE_COMPONENTS = GradeComponents(
    quizzes=82.5,
    exams=78.3,
    final=0,
    teaching=88.2,
    group_performance=76.5,
    engagement=91,
    feedback_quality=85,
    reflection=80,
)


class CombineComponentsTests(unittest.TestCase):
    def test_reference_example(self) -> None:
        calculation = combine_components("s-1", EXAMPLE_COMPONENTS)
        self.assertAlmostEqual(calculation.weighted_total, 69.825)
        self.assertEqual(calculation.final_grade, 69.8)
        self.assertEqual(calculation.letter_grade, "D+")
        self.assertEqual(calculation.adjustments.gaming_penalty, 0.0)

    def test_penalty_is_subtracted_before_rounding(self) -> None:
        calculation = combine_components("s-1", EXAMPLE_COMPONENTS, _patterns(1, 0.9))
        self.assertAlmostEqual(calculation.adjustments.gaming_penalty, 4.5)
        self.assertEqual(calculation.final_grade, 65.3)
        self.assertEqual(calculation.letter_grade, "D")

    def test_letter_follows_the_unrounded_grade(self) -> None:
        perfect = GradeComponents(**{name: 100 for name in GradeComponents.model_fields})
        calculation = combine_components("s-1", perfect, _patterns(2, 0.704))
        self.assertAlmostEqual(calculation.adjustments.gaming_penalty, 7.04)
        self.assertEqual(calculation.final_grade, 93.0)
        self.assertEqual(calculation.letter_grade, "A-")

        borderline = GradeComponents(**{name: 66.96 for name in GradeComponents.model_fields})
        calculation = combine_components("s-1", borderline)
        self.assertEqual(calculation.final_grade, 67.0)
        self.assertEqual(calculation.letter_grade, "D")

    def test_grade_floors_at_zero(self) -> None:
        calculation = combine_components("s-1", GradeComponents(reflection=10), _patterns(4))
        self.assertEqual(calculation.final_grade, 0.0)
        self.assertEqual(calculation.letter_grade, "F")

    def test_penalty_cap(self) -> None:
        self.assertEqual(gaming_penalty(_patterns(4)), 20.0)
        self.assertEqual(gaming_penalty(_patterns(5)), 20.0)
        self.assertAlmostEqual(gaming_penalty(_patterns(2, 0.5)), 5.0)
        self.assertEqual(gaming_penalty([]), 0.0)


class LetterGradeTests(unittest.TestCase):
    def test_cutoffs(self) -> None:
        cases = {
            100: "A",
            93: "A",
            92.9: "A-",
            87: "B+",
            83.5: "B",
            80: "B-",
            77: "C+",
            73: "C",
            70: "C-",
            67: "D+",
            63: "D",
            60: "D-",
            59.9: "F",
            0: "F",
        }
        for grade, expected in cases.items():
            with self.subTest(grade=grade):
                self.assertEqual(letter_grade(grade), expected)

    def test_round_half_up(self) -> None:
        self.assertEqual(round_half_up(12.75), 12.8)
        self.assertEqual(round_half_up(0.25), 0.3)
        self.assertEqual(round_half_up(12.34), 12.3)


class AssessmentScoreTests(unittest.TestCase):
    def setUp(self) -> None:
        self.questions = make_questions(3)

    def test_two_phase_weighting(self) -> None:
        responses = [
            make_response("s-1", "q-1", "a", "r1"),
            make_response("s-1", "q-2", "a", "r2"),
        ]
        self.assertEqual(assessment_score(responses, self.questions), 85.0)

    def test_answer_only_and_wrong_answer_with_right_rationale(self) -> None:
        self.assertEqual(assessment_score([make_response("s-1", "q-1", "a")], self.questions), 70.0)
        self.assertEqual(assessment_score([make_response("s-1", "q-1", "b", "r1")], self.questions), 30.0)

    def test_unknown_questions_skipped_and_empty_is_zero(self) -> None:
        responses = [make_response("s-1", "q-1", "a", "r1"), make_response("s-1", "q-404", "b", "r2")]
        self.assertEqual(assessment_score(responses, self.questions), 100.0)
        self.assertEqual(assessment_score([], self.questions), 0.0)
        self.assertEqual(assessment_score([make_response("s-1", "q-404", "a")], self.questions), 0.0)

    def test_custom_phase_weights(self) -> None:
        settings = GradingSettings(answer_weight=0.5, rationale_weight=0.5)
        self.assertEqual(assessment_score([make_response("s-1", "q-1", "a")], self.questions, settings), 50.0)


class TypeAverageTests(unittest.TestCase):
    def test_mean_over_attempted_assessments_of_type(self) -> None:
        quiz_one = make_questions(2, prefix="a")
        quiz_two = make_questions(2, prefix="b")
        exam = make_questions(1, prefix="c")
        assessments = [
            make_assessment(quiz_one, assessment_id="quiz-1"),
            make_assessment(quiz_two, assessment_id="quiz-2"),
            make_assessment(exam, assessment_id="exam-1", assessment_type="exam"),
            make_assessment(make_questions(1, prefix="d"), assessment_id="quiz-3"),
        ]
        questions = quiz_one + quiz_two + exam
        responses = [
            make_response("s-1", "a-1", "a", "r1", assessment_id="quiz-1"),
            make_response("s-1", "a-2", "a", "r1", assessment_id="quiz-1"),
            make_response("s-1", "b-1", "b", "r2", assessment_id="quiz-2"),
            make_response("s-1", "c-1", "a", "r2", assessment_id="exam-1"),
        ]
        self.assertEqual(type_average("quiz", responses, questions, assessments), 50.0)
        self.assertEqual(type_average("exam", responses, questions, assessments), 70.0)
        self.assertEqual(type_average("final", responses, questions, assessments), 0.0)

        scores = student_test_scores(responses, questions, assessments)
        self.assertAlmostEqual(scores["s-1"], 40.0)


class TeachingScoreTests(unittest.TestCase):
    def test_no_evaluations(self) -> None:
        self.assertEqual(teaching_score([], [], 80.0), 0.0)

    def test_inflation_correction(self) -> None:
        received = [make_evaluation("s-2", "s-1", 90)]
        self.assertEqual(teaching_score(received, [], 60.0), 67.5)
        self.assertEqual(teaching_score(received, [], 70.0), 90.0)

    def test_faculty_calibration(self) -> None:
        received = [make_evaluation("s-2", "s-1", 90)]
        faculty = [make_evaluation("f-1", "s-1", 80)]
        self.assertEqual(teaching_score(received, faculty, 60.0), 73.75)
        close = [make_evaluation("f-1", "s-1", 85)]
        self.assertEqual(teaching_score(received, close, 75.0), 90.0)

    def test_zero_faculty_mean_skips_calibration(self) -> None:
        received = [make_evaluation("s-2", "s-1", 90)]
        self.assertEqual(teaching_score(received, [make_evaluation("f-1", "s-1", 0)], 75.0), 90.0)


class ParticipationComponentTests(unittest.TestCase):
    def test_engagement_with_no_responses(self) -> None:
        self.assertAlmostEqual(engagement_score([], [], 0.95), 19.0)

    def test_engagement_blend(self) -> None:
        responses = [
            make_response("s-1", "q-1", "a", "r1", time_on_question=30),
            make_response("s-1", "q-2", "a", time_on_question=90),
        ]
        evaluations = [make_evaluation("s-1", "s-2", 80)] * 6
        # time 60s -> 100, completion 50, evaluations capped at 100, attendance 100
        self.assertAlmostEqual(engagement_score(responses, evaluations, 1.0), 85.0)

    def test_feedback_quality(self) -> None:
        detailed = make_evaluation(
            "s-1",
            "s-2",
            100,
            sections=(30, 25, 25, 20),
            comments="Strong pharmacology content; pacing slipped during the case study walkthrough.",
        )
        self.assertAlmostEqual(feedback_quality([detailed]), 80.0)

        flat = make_evaluation("s-1", "s-3", 80, sections=(20, 20, 20, 20), comments="Good job")
        self.assertAlmostEqual(feedback_quality([flat]), 0.0)
        self.assertAlmostEqual(feedback_quality([detailed, flat]), 40.0)
        self.assertEqual(feedback_quality([]), 0.0)

    def test_reflection(self) -> None:
        self.assertEqual(reflection_score(4, 75), 87.5)
        self.assertEqual(reflection_score(10, 60), 80.0)
        self.assertEqual(reflection_score(0, 0), 0.0)

    def test_group_performance(self) -> None:
        questions = make_questions(2)
        by_member = {
            "s-1": [make_response("s-1", "q-1", "a", "r1")],
            "s-2": [make_response("s-2", "q-1", "a", "r2"), make_response("s-2", "q-2", "b", "r2")],
        }
        self.assertAlmostEqual(group_performance(["s-1", "s-2", "s-3"], by_member, questions), 67.5)
        self.assertEqual(group_performance([], by_member, questions), 0.0)


class FinalGradeTests(unittest.TestCase):
    def test_missing_data_never_raises(self) -> None:
        calculation = calculate_final_grade("s-1", [], [], [])
        self.assertEqual(calculation.components.quizzes, 0.0)
        self.assertAlmostEqual(calculation.components.engagement, 19.0)
        self.assertAlmostEqual(calculation.components.reflection, 87.5)
        self.assertEqual(calculation.final_grade, 4.1)
        self.assertEqual(calculation.letter_grade, "F")
        self.assertIsNone(calculation.adjustments.peer_evaluation_adjustment)

    def test_full_calculation_records_peer_adjustment(self) -> None:
        questions = make_questions(2)
        assessments = [make_assessment(questions)]
        responses = [make_response("s-1", "q-1", "a", "r1"), make_response("s-1", "q-2", "a", "r2")]
        calculation = calculate_final_grade(
            "s-1",
            responses,
            questions,
            assessments,
            evaluations_received=[make_evaluation("s-2", "s-1", 90)],
            group_member_ids=["s-1"],
            group_responses={"s-1": responses},
            patterns=_patterns(1, 0.8),
            attendance_rate=1.0,
            reflection=ReflectionStats(count=4, quality=100),
        )
        self.assertEqual(calculation.components.quizzes, 85.0)
        # test average (85 + 0 + 0) / 3 is far below the peer mean, so 90 * 0.75
        self.assertEqual(calculation.components.teaching, 67.5)
        self.assertEqual(calculation.adjustments.peer_evaluation_adjustment, -22.5)
        self.assertEqual(calculation.adjustments.gaming_penalty, pytest.approx(4.0))
        self.assertEqual(calculation.components.group_performance, 85.0)


def test_grade_report_lists_every_component() -> None:
    report = render_grade_report(combine_components("s-7", EXAMPLE_COMPONENTS, _patterns(1, 0.5)))
    assert report.startswith("Grade Report for Student: s-7\n")
    assert "INDIVIDUAL COMPONENTS (60%)" in report
    assert "GROUP COMPONENTS (25%)" in report
    assert "PARTICIPATION (15%)" in report
    assert "Exams (30%):" in report
    assert "Gaming Penalty:" in report and "-2.5%" in report
    assert "Letter Grade:" in report
