"""Response ledger: one record per (student, assessment, question, attempt)."""

from __future__ import annotations

from datetime import datetime
from typing import Dict, Iterable, Iterator, List, Optional, Tuple, Union

from twophase.core.models import AnsweredResponse, RationalizedResponse, ResponseKey

Response = Union[AnsweredResponse, RationalizedResponse]


class LedgerError(ValueError):
    """Raised when a write would break the one-record / one-rationale invariants."""


class ResponseLedger:
    """
    Insertion-ordered store of response records.

    Records enter as ``AnsweredResponse`` and may be upgraded to
    ``RationalizedResponse`` once. Records are never removed.
    """

    def __init__(self, records: Iterable[Response] = ()) -> None:
        self._records: Dict[ResponseKey, Response] = {}
        for record in records:
            self._insert(record)

    def __len__(self) -> int:
        return len(self._records)

    def __iter__(self) -> Iterator[Response]:
        return iter(self._records.values())

    def __contains__(self, key: object) -> bool:
        return key in self._records

    def _insert(self, record: Response) -> None:
        if record.key in self._records:
            raise LedgerError(f"Response already recorded for {record.key}")
        self._records[record.key] = record

    def get(self, key: ResponseKey) -> Optional[Response]:
        return self._records.get(key)

    def record_answer(self, record: AnsweredResponse) -> AnsweredResponse:
        if not isinstance(record, AnsweredResponse):
            raise LedgerError("New ledger entries must be answer-only records")
        self._insert(record)
        return record

    def attach_rationale(
        self,
        key: ResponseKey,
        rationale_id: str,
        submitted_at: datetime,
        time_on_rationale: int,
    ) -> RationalizedResponse:
        current = self._records.get(key)
        if current is None:
            raise LedgerError(f"No answer recorded for {key}")
        if not isinstance(current, AnsweredResponse):
            raise LedgerError(f"Rationale already submitted for {key}")
        updated = current.with_rationale(rationale_id, submitted_at, time_on_rationale)
        self._records[key] = updated
        return updated

    def mark_flagged(self, key: ResponseKey) -> Response:
        current = self._records.get(key)
        if current is None:
            raise LedgerError(f"No answer recorded for {key}")
        flagged = current.flag()
        self._records[key] = flagged
        return flagged

    def snapshot(self) -> Tuple[Response, ...]:
        """Immutable view for detectors and calculators."""
        return tuple(self._records.values())

    def for_student(self, student_id: str) -> List[Response]:
        return [record for record in self._records.values() if record.student_id == student_id]

    def for_attempt(self, student_id: str, assessment_id: str, attempt_id: str | None = None) -> List[Response]:
        """Records of one student on one assessment, narrowed to a single attempt when ``attempt_id`` is given."""
        return [
            record
            for record in self._records.values()
            if record.student_id == student_id
            and record.assessment_id == assessment_id
            and (attempt_id is None or record.attempt_id == attempt_id)
        ]


__all__ = ["LedgerError", "Response", "ResponseLedger"]
