"""
Two-phase attempt state machine.

``AssessmentSession`` owns one student's attempt: it walks the question list,
collects an answer (locked, irreversible) and then a rationale per question,
writes the ledger, and keeps a live list of integrity patterns for the student.
Out-of-order actions are ignored and reported by returning ``False``.
"""

from __future__ import annotations

import logging
import math
import threading
from datetime import datetime
from enum import Enum
from typing import List, Literal, Optional, Sequence, Tuple

from twophase.catalog import QuestionSource, as_question_lookup
from twophase.core.config import DetectionSettings, GradingSettings, SessionSettings
from twophase.core.models import (
    AnsweredResponse,
    Assessment,
    AttemptResult,
    GamingPattern,
    Question,
    ResponseKey,
    new_attempt_id,
)

from .detection import detect_response_patterns, merge_patterns
from .grading import assessment_score, round_half_up
from .ledger import Response, ResponseLedger
from .timer import Clock, SessionTimer, SystemClock

LOGGER = logging.getLogger(__name__)

QuestionStatus = Literal["unanswered", "answered", "completed"]


class Phase(str, Enum):
    ANSWER = "answer"
    RATIONALE = "rationale"
    COMPLETE = "complete"
    ABANDONED = "abandoned"

    @property
    def active(self) -> bool:
        return self in (Phase.ANSWER, Phase.RATIONALE)


def _whole_seconds(start: datetime, end: datetime) -> int:
    return max(0, math.floor((end - start).total_seconds()))


class AssessmentSession:
    """One student's pass through an assessment."""

    def __init__(
        self,
        assessment: Assessment,
        questions: Sequence[Question],
        student_id: str,
        *,
        ledger: ResponseLedger | None = None,
        clock: Clock | None = None,
        settings: SessionSettings | None = None,
        detection: DetectionSettings | None = None,
        grading: GradingSettings | None = None,
        catalog: QuestionSource | None = None,
        attempt_id: str | None = None,
    ) -> None:
        if not questions:
            raise ValueError(f"Assessment {assessment.id!r} has no questions to deliver")
        unanswerable = [question.id for question in questions if not question.rationales]
        if unanswerable:
            raise ValueError(f"Questions without rationales cannot be delivered: {', '.join(unanswerable)}")
        self.assessment = assessment
        self.questions: Tuple[Question, ...] = tuple(questions)
        # Detection looks across the student's whole ledger, which may span other assessments
        self.catalog = as_question_lookup(catalog if catalog is not None else self.questions)
        self.student_id = student_id
        self.attempt_id = attempt_id or new_attempt_id()
        self.ledger = ledger if ledger is not None else ResponseLedger()
        self.clock = clock or SystemClock()
        self.settings = settings or SessionSettings()
        self.detection = detection or DetectionSettings()
        self.grading = grading or GradingSettings()

        self._lock = threading.RLock()
        self.timer = SessionTimer(assessment.time_limit)
        self.phase = Phase.ANSWER
        self.index = 0
        self.started_at = self.clock.now()
        self.ended_at: Optional[datetime] = None
        self.selected_answer: Optional[str] = None
        self.selected_rationale: Optional[str] = None
        self._question_started_at = self.started_at
        self._answer_locked_at: Optional[datetime] = None

        self._last_click_at: Optional[datetime] = None
        self._rapid_clicks = 0
        self.suspicious_behavior = False
        self._patterns: List[GamingPattern] = []
        self._result: Optional[AttemptResult] = None
        # Set by AssessmentService once the result is persisted
        self.recorded_result: Optional[AttemptResult] = None

    # ------------------------------------------------------------------
    # Read-only views

    @property
    def current_question(self) -> Question:
        return self.questions[self.index]

    @property
    def elapsed(self) -> int:
        return self.timer.elapsed

    @property
    def remaining(self) -> int:
        return self.timer.remaining

    @property
    def expired(self) -> bool:
        return self.timer.expired

    @property
    def active(self) -> bool:
        return self.phase.active

    @property
    def flagged(self) -> bool:
        """True while any live integrity pattern exists for this student."""
        with self._lock:
            return bool(self._patterns)

    @property
    def patterns(self) -> List[GamingPattern]:
        with self._lock:
            return list(self._patterns)

    @property
    def responses(self) -> List[Response]:
        with self._lock:
            return self.ledger.for_attempt(self.student_id, self.assessment.id, self.attempt_id)

    def _key(self, question_id: str) -> ResponseKey:
        return (self.student_id, self.assessment.id, question_id, self.attempt_id)

    def _ignore(self, action: str) -> bool:
        LOGGER.debug("Ignoring %s for %s in phase %s", action, self.student_id, self.phase.value)
        return False

    # ------------------------------------------------------------------
    # Answer phase

    def select_answer(self, choice_id: str) -> bool:
        with self._lock:
            if self.phase is not Phase.ANSWER:
                return self._ignore("select_answer")
            question = self.current_question
            if question.options and not question.has_option(choice_id):
                return self._ignore(f"select_answer({choice_id!r})")
            self._track_click(self.clock.now())
            self.selected_answer = choice_id
            return True

    def _track_click(self, now: datetime) -> None:
        if self._last_click_at is not None:
            gap_ms = (now - self._last_click_at).total_seconds() * 1000
            self._rapid_clicks = self._rapid_clicks + 1 if gap_ms < self.settings.rapid_click_window_ms else 0
        self._last_click_at = now
        if self._rapid_clicks > self.settings.rapid_click_limit and not self.suspicious_behavior:
            LOGGER.debug("Rapid answer switching by %s on %s", self.student_id, self.current_question.id)
            self.suspicious_behavior = True

    def lock_answer(self) -> bool:
        with self._lock:
            if self.phase is not Phase.ANSWER or self.selected_answer is None:
                return self._ignore("lock_answer")
            question = self.current_question
            if self._key(question.id) in self.ledger:
                return self._ignore("lock_answer")
            now = self.clock.now()
            record = AnsweredResponse(
                student_id=self.student_id,
                question_id=question.id,
                assessment_id=self.assessment.id,
                attempt_id=self.attempt_id,
                answer_id=self.selected_answer,
                answer_locked_at=now,
                time_on_question=_whole_seconds(self._question_started_at, now),
            )
            self.ledger.record_answer(record)
            self._answer_locked_at = now
            self.phase = Phase.RATIONALE
            return True

    # ------------------------------------------------------------------
    # Rationale phase

    def select_rationale(self, choice_id: str) -> bool:
        with self._lock:
            if self.phase is not Phase.RATIONALE:
                return self._ignore("select_rationale")
            if not self.current_question.has_rationale(choice_id):
                return self._ignore(f"select_rationale({choice_id!r})")
            self.selected_rationale = choice_id
            return True

    def submit_rationale(self) -> bool:
        with self._lock:
            if self.phase is not Phase.RATIONALE or self.selected_rationale is None:
                return self._ignore("submit_rationale")
            now = self.clock.now()
            locked_at = self._answer_locked_at or now
            self.ledger.attach_rationale(
                self._key(self.current_question.id),
                self.selected_rationale,
                now,
                _whole_seconds(locked_at, now),
            )
            self._refresh_patterns(now)
            self._advance(now)
            return True

    def _refresh_patterns(self, now: datetime) -> None:
        fresh = detect_response_patterns(
            self.ledger.for_student(self.student_id),
            self.catalog,
            self.detection,
            detected_at=now,
        )
        self._patterns = merge_patterns(self._patterns, fresh, self.detection.dedupe)

    def _advance(self, now: datetime) -> None:
        self.selected_answer = None
        self.selected_rationale = None
        self._answer_locked_at = None
        if self.index + 1 < len(self.questions):
            self.index += 1
            self.phase = Phase.ANSWER
            self._question_started_at = now
            self._last_click_at = None
            self._rapid_clicks = 0
            return
        self._finish(Phase.COMPLETE, now)

    def _finish(self, phase: Phase, now: datetime) -> None:
        self.phase = phase
        self.ended_at = now
        self.timer.cancel()
        LOGGER.debug("Attempt %s/%s ended as %s", self.student_id, self.assessment.id, phase.value)

    # ------------------------------------------------------------------
    # Other actions

    def can_proceed(self) -> bool:
        with self._lock:
            if self.phase is Phase.ANSWER:
                return self.selected_answer is not None
            if self.phase is Phase.RATIONALE:
                return self.selected_rationale is not None
            return False

    def flag_for_review(self) -> bool:
        with self._lock:
            key = self._key(self.current_question.id)
            if key not in self.ledger:
                return self._ignore("flag_for_review")
            self.ledger.mark_flagged(key)
            return True

    def navigate_to(self, index: int) -> bool:
        with self._lock:
            if self.phase is not Phase.COMPLETE or not 0 <= index < len(self.questions):
                return self._ignore(f"navigate_to({index})")
            self.index = index
            return True

    def abandon(self) -> bool:
        with self._lock:
            if not self.phase.active:
                return self._ignore("abandon")
            self._finish(Phase.ABANDONED, self.clock.now())
            return True

    def tick(self) -> bool:
        """Advance the attempt timer by one second; False once the attempt is over."""
        with self._lock:
            if not self.phase.active:
                return False
            return self.timer.tick()

    # ------------------------------------------------------------------
    # Progress and results

    def question_status(self, question_id: str) -> QuestionStatus:
        with self._lock:
            record = self.ledger.get(self._key(question_id))
        if record is None:
            return "unanswered"
        return "completed" if record.has_rationale else "answered"

    def progress(self) -> float:
        """Percentage of questions with a submitted rationale."""
        completed = sum(1 for question in self.questions if self.question_status(question.id) == "completed")
        return completed / len(self.questions) * 100

    def result(self, student_name: str | None = None) -> Optional[AttemptResult]:
        """Summary of a terminal attempt; repeated calls keep the same result id."""
        with self._lock:
            if self.phase.active or self.ended_at is None:
                return None
            responses = self.ledger.for_attempt(self.student_id, self.assessment.id, self.attempt_id)
            score = assessment_score(responses, self.questions, self.grading)
            answer_accuracy, rationale_accuracy = self._accuracies(responses)
            self._result = AttemptResult(
                **({"id": self._result.id} if self._result is not None else {}),
                attempt_id=self.attempt_id,
                assessment_id=self.assessment.id,
                student_id=self.student_id,
                student_name=student_name,
                responses=responses,
                patterns=list(self._patterns),
                started_at=self.started_at,
                ended_at=self.ended_at,
                total_time_spent=self.timer.elapsed,
                score=score,
                answer_accuracy=answer_accuracy,
                rationale_accuracy=rationale_accuracy,
                passed=self.phase is Phase.COMPLETE and score >= self.assessment.passing_score,
                suspicious_behavior=self.suspicious_behavior,
                outcome="complete" if self.phase is Phase.COMPLETE else "abandoned",
            )
            return self._result

    def _accuracies(self, responses: Sequence[Response]) -> Tuple[float, float]:
        lookup = {question.id: question for question in self.questions}
        scored = [(response, lookup[response.question_id]) for response in responses if response.question_id in lookup]
        if not scored:
            return 0.0, 0.0
        answers = sum(1 for response, question in scored if question.is_correct_answer(response.answer_id))
        rationales = sum(1 for response, question in scored if question.is_correct_rationale(response.rationale_id))
        total = len(scored)
        return round_half_up(answers / total * 100), round_half_up(rationales / total * 100)


__all__ = ["AssessmentSession", "Phase", "QuestionStatus"]
