"""Attempt lifecycle glue: start sessions, persist results, raise and triage alerts."""

from __future__ import annotations

import logging
from typing import Any, List, Optional

from twophase.catalog import QuestionCatalog
from twophase.core.config import EngineConfig
from twophase.core.models import AlertStatus, AttemptResult, InterventionAlert
from twophase.core.provenance import AuditLog, AuditStage
from twophase.storage import ResultRepository

from .alerts import build_intervention_alert
from .ledger import Response, ResponseLedger
from .session import AssessmentSession
from .timer import Clock, SystemClock

LOGGER = logging.getLogger(__name__)


class AssessmentService:
    """Creates sessions from the catalog and records what they produce."""

    def __init__(
        self,
        catalog: QuestionCatalog,
        repository: ResultRepository,
        *,
        config: EngineConfig | None = None,
        clock: Clock | None = None,
        audit: AuditLog | None = None,
    ) -> None:
        self.catalog = catalog
        self.repository = repository
        self.config = config or EngineConfig()
        self.clock = clock or SystemClock()
        self.audit = audit

    def _audit(self, stage: AuditStage, **fields: Any) -> None:
        if self.audit is not None:
            self.audit.record(stage, timestamp=self.clock.now(), **fields)

    def history(self, student_id: str) -> List[Response]:
        """Every stored response of the student, each tagged with the attempt that produced it."""

        records: List[Response] = []
        for result in self.repository.get_results_for_student(student_id):
            attempt_id = result.attempt_id or result.id
            for response in result.responses:
                if response.attempt_id is None:
                    response = response.model_copy(update={"attempt_id": attempt_id})
                records.append(response)
        return records

    def start(self, student_id: str, assessment_id: str, *, ledger: ResponseLedger | None = None) -> AssessmentSession:
        assessment = self.catalog.assessment(assessment_id)
        questions = self.catalog.list_questions(assessment_id)
        if ledger is None:
            # Live detection scores the whole history, not just this attempt
            ledger = ResponseLedger(self.history(student_id))
        session = AssessmentSession(
            assessment,
            questions,
            student_id,
            ledger=ledger,
            clock=self.clock,
            settings=self.config.session,
            detection=self.config.detection,
            grading=self.config.grading,
            catalog=self.catalog,
        )
        LOGGER.info("Started %s for %s (%d questions)", assessment_id, student_id, len(questions))
        self._audit(
            "attempt_started",
            student_id=student_id,
            assessment_id=assessment_id,
            attempt_id=session.attempt_id,
            question_count=len(questions),
            prior_responses=len(ledger),
        )
        return session

    def finish(self, session: AssessmentSession, student_name: str | None = None) -> AttemptResult:
        """Persist a terminal attempt and raise an alert if needed; a second call returns the stored result."""

        if session.recorded_result is not None:
            LOGGER.debug("Attempt %s already recorded as %s", session.attempt_id, session.recorded_result.id)
            return session.recorded_result
        result = session.result(student_name)
        if result is None:
            raise ValueError(
                f"Attempt {session.assessment.id} for {session.student_id} is still {session.phase.value}"
            )
        self.repository.save_attempt_result(result)
        session.recorded_result = result
        self._audit(
            "attempt_finished",
            student_id=result.student_id,
            assessment_id=result.assessment_id,
            attempt_id=result.attempt_id,
            result_id=result.id,
            score=result.score,
            outcome=result.outcome,
            patterns=[pattern.pattern_type.value for pattern in result.patterns],
        )

        alert = build_intervention_alert(
            result.student_id,
            result.patterns,
            student_name=student_name,
            settings=self.config.alerts,
            clock=self.clock,
        )
        if alert is not None:
            self.repository.save_alert(alert)
            LOGGER.info("Alert %s raised for %s (%s)", alert.id, alert.target_id, alert.priority)
            self._audit(
                "alert_raised",
                alert_id=alert.id,
                student_id=alert.target_id,
                reason=alert.reason,
                priority=alert.priority,
                pattern_types=[pattern_type.value for pattern_type in alert.pattern_types],
            )
        return result

    def acknowledge_alert(self, alert_id: str, notes: str | None = None) -> Optional[InterventionAlert]:
        return self._transition(alert_id, "acknowledged", notes)

    def resolve_alert(self, alert_id: str, notes: str | None = None) -> Optional[InterventionAlert]:
        return self._transition(alert_id, "resolved", notes)

    def _transition(self, alert_id: str, status: AlertStatus, notes: str | None) -> Optional[InterventionAlert]:
        updated = self.repository.update_alert_status(alert_id, status, notes)
        if updated is not None:
            stage: AuditStage = "alert_acknowledged" if status == "acknowledged" else "alert_resolved"
            self._audit(stage, alert_id=alert_id, student_id=updated.target_id, notes=notes)
        return updated


__all__ = ["AssessmentService"]
