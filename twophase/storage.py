"""Persistence for attempt results and intervention alerts."""

from __future__ import annotations

import logging
import sqlite3
import threading
from datetime import datetime, timezone
from pathlib import Path
from typing import Callable, Dict, Iterable, List, Optional, Protocol

from twophase.core.models import AlertStatus, AttemptResult, InterventionAlert

LOGGER = logging.getLogger(__name__)


class ResultRepository(Protocol):
    def save_attempt_result(self, result: AttemptResult) -> AttemptResult: ...

    def get_results_for_student(self, student_id: str) -> List[AttemptResult]: ...

    def get_all_results(self) -> List[AttemptResult]: ...

    def save_alert(self, alert: InterventionAlert) -> InterventionAlert: ...

    def get_alerts(self, status: AlertStatus | None = None) -> List[InterventionAlert]: ...

    def update_alert_status(
        self,
        alert_id: str,
        status: AlertStatus,
        notes: str | None = None,
    ) -> Optional[InterventionAlert]: ...


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def _apply_status(
    alert: InterventionAlert,
    status: AlertStatus,
    notes: str | None,
    now: datetime,
) -> InterventionAlert:
    update: Dict[str, object] = {"status": status}
    if notes is not None:
        update["faculty_notes"] = notes
    if status == "resolved":
        update["resolved_at"] = now
    return alert.model_copy(update=update)


class InMemoryResultStore:
    """Dict-backed repository for tests and single-process runs."""

    def __init__(self, *, now: Callable[[], datetime] = _utcnow) -> None:
        self._results: Dict[str, AttemptResult] = {}
        self._alerts: Dict[str, InterventionAlert] = {}
        self._now = now
        self._lock = threading.Lock()

    def save_attempt_result(self, result: AttemptResult) -> AttemptResult:
        with self._lock:
            self._results[result.id] = result
        return result

    def get_results_for_student(self, student_id: str) -> List[AttemptResult]:
        with self._lock:
            return [result for result in self._results.values() if result.student_id == student_id]

    def get_all_results(self) -> List[AttemptResult]:
        with self._lock:
            return list(self._results.values())

    def save_alert(self, alert: InterventionAlert) -> InterventionAlert:
        with self._lock:
            self._alerts[alert.id] = alert
        return alert

    def get_alerts(self, status: AlertStatus | None = None) -> List[InterventionAlert]:
        with self._lock:
            return [alert for alert in self._alerts.values() if status is None or alert.status == status]

    def update_alert_status(
        self,
        alert_id: str,
        status: AlertStatus,
        notes: str | None = None,
    ) -> Optional[InterventionAlert]:
        with self._lock:
            current = self._alerts.get(alert_id)
            if current is None:
                LOGGER.warning("Alert %s not found; status unchanged", alert_id)
                return None
            updated = _apply_status(current, status, notes, self._now())
            self._alerts[alert_id] = updated
            return updated


class SQLiteResultStore:
    """SQLite-backed repository; each row keeps the full record as a JSON payload."""

    def __init__(self, db_path: Path, *, now: Callable[[], datetime] = _utcnow) -> None:
        self.db_path = Path(db_path)
        self._now = now
        self._ensure_schema()

    def _connect(self) -> sqlite3.Connection:
        """Create a connection, ensuring the parent directory exists."""

        self.db_path.parent.mkdir(parents=True, exist_ok=True)
        return sqlite3.connect(self.db_path)

    def _ensure_schema(self) -> None:
        schema_sql = Path(__file__).with_name("schema.sql").read_text(encoding="utf-8")
        with self._connect() as con:
            con.executescript(schema_sql)

    def execute(self, sql: str, params: tuple | None = None) -> int:
        """Execute a single SQL statement and return the number of affected rows."""

        with self._connect() as con:
            cur = con.execute(sql, params or tuple())
            con.commit()
            return int(cur.rowcount)

    def query(self, sql: str, params: tuple | None = None) -> list[tuple]:
        with self._connect() as con:
            cur = con.execute(sql, params or tuple())
            return cur.fetchall()

    # -- attempt results -------------------------------------------------

    def save_attempt_result(self, result: AttemptResult) -> AttemptResult:
        self.execute(
            "INSERT OR REPLACE INTO attempt_results (id, assessment_id, student_id, outcome, score, ended_at, payload) "
            "VALUES (?, ?, ?, ?, ?, ?, ?)",
            (
                result.id,
                result.assessment_id,
                result.student_id,
                result.outcome,
                result.score,
                result.ended_at.isoformat(),
                result.model_dump_json(),
            ),
        )
        LOGGER.info("Saved %s attempt %s for %s (score %.1f)", result.outcome, result.id, result.student_id, result.score)
        return result

    @staticmethod
    def _results(rows: Iterable[tuple]) -> List[AttemptResult]:
        return [AttemptResult.model_validate_json(row[0]) for row in rows]

    def get_results_for_student(self, student_id: str) -> List[AttemptResult]:
        rows = self.query(
            "SELECT payload FROM attempt_results WHERE student_id = ? ORDER BY ended_at, rowid",
            (student_id,),
        )
        return self._results(rows)

    def get_all_results(self) -> List[AttemptResult]:
        return self._results(self.query("SELECT payload FROM attempt_results ORDER BY ended_at, rowid"))

    # -- alerts ----------------------------------------------------------

    def save_alert(self, alert: InterventionAlert) -> InterventionAlert:
        self.execute(
            "INSERT OR REPLACE INTO intervention_alerts (id, target_id, status, priority, created_at, payload) "
            "VALUES (?, ?, ?, ?, ?, ?)",
            (
                alert.id,
                alert.target_id,
                alert.status,
                alert.priority,
                alert.created_at.isoformat(),
                alert.model_dump_json(),
            ),
        )
        LOGGER.info("Raised %s-priority alert %s for %s", alert.priority, alert.id, alert.target_id)
        return alert

    def _get_alert(self, alert_id: str) -> Optional[InterventionAlert]:
        rows = self.query("SELECT payload FROM intervention_alerts WHERE id = ?", (alert_id,))
        if not rows:
            return None
        return InterventionAlert.model_validate_json(rows[0][0])

    def get_alerts(self, status: AlertStatus | None = None) -> List[InterventionAlert]:
        if status is None:
            rows = self.query("SELECT payload FROM intervention_alerts ORDER BY created_at, rowid")
        else:
            rows = self.query(
                "SELECT payload FROM intervention_alerts WHERE status = ? ORDER BY created_at, rowid",
                (status,),
            )
        return [InterventionAlert.model_validate_json(row[0]) for row in rows]

    def update_alert_status(
        self,
        alert_id: str,
        status: AlertStatus,
        notes: str | None = None,
    ) -> Optional[InterventionAlert]:
        current = self._get_alert(alert_id)
        if current is None:
            LOGGER.warning("Alert %s not found; status unchanged", alert_id)
            return None
        updated = _apply_status(current, status, notes, self._now())
        self.execute(
            "UPDATE intervention_alerts SET status = ?, payload = ? WHERE id = ?",
            (updated.status, updated.model_dump_json(), alert_id),
        )
        return updated


__all__ = ["InMemoryResultStore", "ResultRepository", "SQLiteResultStore"]
