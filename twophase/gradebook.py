"""Loaders for response exports, peer-evaluation files, and per-student gradebook bundles."""

from __future__ import annotations

from pathlib import Path
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, Field, ValidationError, field_validator

from twophase.catalog import read_document
from twophase.core.models import (
    GamingPattern,
    PeerEvaluation,
    ReflectionStats,
    ResponseRecord,
    parse_response,
)
from twophase.engine.ledger import Response


class GradebookBundle(BaseModel):
    """
    Everything needed to grade one student.

    ``responses`` may include the student's group members; the student's own
    records are selected by ``student_id``. ``evaluations`` holds every peer
    evaluation the student gave or received. When ``patterns`` is omitted the
    detectors are run over the bundle.
    """

    student_id: str
    student_name: Optional[str] = None
    responses: List[ResponseRecord] = Field(default_factory=list)
    evaluations: List[PeerEvaluation] = Field(default_factory=list)
    faculty_benchmarks: List[PeerEvaluation] = Field(default_factory=list)
    group_member_ids: List[str] = Field(default_factory=list)
    attendance_rate: float = Field(default=0.95, ge=0.0, le=1.0)
    reflection: ReflectionStats = Field(default_factory=ReflectionStats)
    patterns: Optional[List[GamingPattern]] = None

    @field_validator("responses", mode="before")
    @classmethod
    def parse_legacy_responses(cls, value: Any) -> Any:
        if not isinstance(value, list):
            return value
        return [parse_response(item) for item in value]

    @property
    def own_responses(self) -> List[Response]:
        return [response for response in self.responses if response.student_id == self.student_id]

    @property
    def evaluations_received(self) -> List[PeerEvaluation]:
        return [evaluation for evaluation in self.evaluations if evaluation.teacher_id == self.student_id]

    @property
    def evaluations_given(self) -> List[PeerEvaluation]:
        return [evaluation for evaluation in self.evaluations if evaluation.evaluator_id == self.student_id]

    def responses_by_member(self) -> Dict[str, List[Response]]:
        grouped: Dict[str, List[Response]] = {}
        for response in self.responses:
            grouped.setdefault(response.student_id, []).append(response)
        return grouped


def _read_items(path: Path, key: str) -> List[Any]:
    path = Path(path).expanduser().resolve()
    if not path.exists():
        raise FileNotFoundError(f"{key.capitalize()} file {path} is missing")
    payload = read_document(path)
    if isinstance(payload, dict):
        payload = payload.get(key) or []
    if not isinstance(payload, list):
        raise ValueError(f"Expected a list of {key} in {path}")
    return payload


def load_responses(path: Path) -> List[Response]:
    """Read a JSON/YAML export of response records (a list, or a mapping with ``responses``)."""

    items = _read_items(path, "responses")
    try:
        return [parse_response(item) for item in items]
    except ValidationError as exc:
        raise ValueError(f"Invalid response records in {path}") from exc


def load_evaluations(path: Path) -> List[PeerEvaluation]:
    items = _read_items(path, "evaluations")
    try:
        return [PeerEvaluation.model_validate(item) for item in items]
    except ValidationError as exc:
        raise ValueError(f"Invalid peer evaluations in {path}") from exc


def load_test_scores(path: Path) -> Dict[str, float]:
    """Read a ``student_id: average`` mapping."""

    path = Path(path).expanduser().resolve()
    if not path.exists():
        raise FileNotFoundError(f"Test score file {path} is missing")
    payload = read_document(path)
    if not isinstance(payload, dict):
        raise ValueError(f"Expected a student -> score mapping in {path}")
    try:
        return {str(student_id): float(score) for student_id, score in payload.items()}
    except (TypeError, ValueError) as exc:
        raise ValueError(f"Test scores in {path} must be numeric") from exc


def load_gradebook(path: Path) -> GradebookBundle:
    path = Path(path).expanduser().resolve()
    if not path.exists():
        raise FileNotFoundError(f"Gradebook bundle {path} is missing")
    payload = read_document(path)
    if not isinstance(payload, dict):
        raise ValueError(f"Gradebook bundle {path} must be a mapping")
    try:
        return GradebookBundle.model_validate(payload)
    except ValidationError as exc:
        raise ValueError(f"Invalid gradebook bundle in {path}") from exc


__all__ = ["GradebookBundle", "load_evaluations", "load_gradebook", "load_responses", "load_test_scores"]
