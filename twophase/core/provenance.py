"""Append-only JSONL audit trail for attempt and alert lifecycle events."""

from __future__ import annotations

from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Dict, List, Literal, Optional

from pydantic import BaseModel, Field, model_validator

AuditStage = Literal[
    "attempt_started",
    "attempt_finished",
    "alert_raised",
    "alert_acknowledged",
    "alert_resolved",
]

ATTEMPT_STAGES = frozenset({"attempt_started", "attempt_finished"})


class AuditEvent(BaseModel):
    """
    One lifecycle step of an attempt or an alert.

    Attempt stages must name the student and assessment; alert stages must
    name the alert. ``details`` carries the remaining numbers (score, outcome,
    pattern types, notes) and is not interpreted.
    """

    timestamp: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))
    stage: AuditStage
    student_id: Optional[str] = None
    assessment_id: Optional[str] = None
    attempt_id: Optional[str] = None
    alert_id: Optional[str] = None
    details: Dict[str, Any] = Field(default_factory=dict)

    @model_validator(mode="after")
    def check_subject(self) -> "AuditEvent":
        if self.stage in ATTEMPT_STAGES:
            if not (self.student_id and self.assessment_id):
                raise ValueError(f"{self.stage} events need student_id and assessment_id")
        elif not self.alert_id:
            raise ValueError(f"{self.stage} events need alert_id")
        return self

    @property
    def summary(self) -> str:
        if self.stage in ATTEMPT_STAGES:
            return f"{self.stage}: {self.student_id} / {self.assessment_id}"
        return f"{self.stage}: {self.alert_id}"


class AuditLog:
    """JSONL file of ``AuditEvent`` lines; events are only ever appended."""

    def __init__(self, output_path: Path):
        self.output_path = Path(output_path)
        self.output_path.parent.mkdir(parents=True, exist_ok=True)

    def record(self, stage: AuditStage, *, timestamp: datetime | None = None, **fields: Any) -> AuditEvent:
        """Validate and append one event. Unknown keyword fields land in ``details``."""

        subject = {key: fields.pop(key) for key in ("student_id", "assessment_id", "attempt_id", "alert_id") if key in fields}
        event = AuditEvent(
            stage=stage,
            details=fields,
            **subject,
            **({"timestamp": timestamp} if timestamp is not None else {}),
        )
        with self.output_path.open("a", encoding="utf-8") as handle:
            handle.write(event.model_dump_json() + "\n")
        return event

    def read(
        self,
        *,
        student_id: str | None = None,
        alert_id: str | None = None,
    ) -> List[AuditEvent]:
        if not self.output_path.exists():
            return []
        events = [
            AuditEvent.model_validate_json(line)
            for line in self.output_path.read_text(encoding="utf-8").splitlines()
            if line.strip()
        ]
        if student_id is not None:
            events = [event for event in events if event.student_id == student_id]
        if alert_id is not None:
            events = [event for event in events if event.alert_id == alert_id]
        return events


__all__ = ["ATTEMPT_STAGES", "AuditEvent", "AuditLog", "AuditStage"]
