"""Read-only question catalog loaded once per attempt."""

from __future__ import annotations

import json
import logging
from pathlib import Path
from typing import Any, Dict, Iterable, Iterator, List, Mapping, Optional, Sequence, Union

import yaml
from pydantic import ValidationError

from twophase.core.models import Assessment, Question

LOGGER = logging.getLogger(__name__)

QuestionSource = Union["QuestionCatalog", Mapping[str, Question], Iterable[Question]]


class QuestionCatalog:
    """In-memory question bank keyed by question id."""

    def __init__(
        self,
        questions: Iterable[Question | Mapping[str, Any]],
        assessments: Iterable[Assessment | Mapping[str, Any]] = (),
    ) -> None:
        self._questions: Dict[str, Question] = {}
        for item in questions:
            question = item if isinstance(item, Question) else Question.model_validate(item)
            if question.id in self._questions:
                raise ValueError(f"Duplicate question id {question.id!r} in catalog")
            self._questions[question.id] = question

        self._assessments: Dict[str, Assessment] = {}
        for item in assessments:
            assessment = item if isinstance(item, Assessment) else Assessment.model_validate(item)
            if assessment.id in self._assessments:
                raise ValueError(f"Duplicate assessment id {assessment.id!r} in catalog")
            self._assessments[assessment.id] = assessment

    def __contains__(self, question_id: object) -> bool:
        return question_id in self._questions

    def __iter__(self) -> Iterator[Question]:
        return iter(self._questions.values())

    def __len__(self) -> int:
        return len(self._questions)

    @property
    def questions(self) -> List[Question]:
        return list(self._questions.values())

    @property
    def assessments(self) -> List[Assessment]:
        return list(self._assessments.values())

    def get(self, question_id: str) -> Optional[Question]:
        return self._questions.get(question_id)

    def get_question(self, question_id: str) -> Question:
        try:
            return self._questions[question_id]
        except KeyError:
            raise KeyError(f"Unknown question id {question_id!r}") from None

    def assessment(self, assessment_id: str) -> Assessment:
        try:
            return self._assessments[assessment_id]
        except KeyError:
            raise KeyError(f"Unknown assessment id {assessment_id!r}") from None

    def list_questions(self, assessment_id: str) -> List[Question]:
        """Questions of an assessment in delivery order; ids missing from the bank are skipped."""

        assessment = self._assessments.get(assessment_id)
        if assessment is None:
            return [question for question in self._questions.values() if question.assessment_id == assessment_id]
        ordered: List[Question] = []
        for question_id in assessment.question_ids:
            question = self._questions.get(question_id)
            if question is None:
                LOGGER.debug("Assessment %s references unknown question %s", assessment_id, question_id)
                continue
            ordered.append(question)
        return ordered

    def subset(self, question_ids: Sequence[str]) -> List[Question]:
        return [self._questions[qid] for qid in question_ids if qid in self._questions]


class _QuestionIndex(Mapping[str, Question]):
    def __init__(self, questions: Iterable[Question]) -> None:
        self._items = {question.id: question for question in questions}

    def __getitem__(self, key: str) -> Question:
        return self._items[key]

    def __iter__(self) -> Iterator[str]:
        return iter(self._items)

    def __len__(self) -> int:
        return len(self._items)


def as_question_lookup(source: QuestionSource) -> "QuestionCatalog | Mapping[str, Question]":
    """Normalize a catalog, mapping, or plain question list into something with ``.get``."""

    if isinstance(source, (QuestionCatalog, Mapping)):
        return source
    return _QuestionIndex(source)


def read_document(path: Path) -> Any:
    """Parse a JSON or YAML document; the suffix picks the parser."""

    text = Path(path).read_text(encoding="utf-8")
    if Path(path).suffix.lower() == ".json":
        return json.loads(text)
    try:
        return yaml.safe_load(text)
    except yaml.YAMLError as exc:
        raise ValueError(f"Could not parse YAML in {path}") from exc


def load_catalog(path: Path) -> QuestionCatalog:
    """Parse a JSON/YAML question bank with ``questions`` and optional ``assessments`` lists."""

    path = Path(path).expanduser().resolve()
    if not path.exists():
        raise FileNotFoundError(f"Question catalog {path} is missing")
    payload = read_document(path)
    if isinstance(payload, list):
        payload = {"questions": payload}
    if not isinstance(payload, dict):
        raise ValueError(f"Catalog {path} must contain a mapping or a list of questions")
    questions = payload.get("questions") or []
    assessments = payload.get("assessments") or []
    if not isinstance(questions, list) or not isinstance(assessments, list):
        raise ValueError(f"Catalog {path} must define 'questions' and 'assessments' as lists")
    try:
        catalog = QuestionCatalog(questions, assessments)
    except ValidationError as exc:
        raise ValueError(f"Invalid question catalog in {path}") from exc
    LOGGER.debug("Loaded %d questions and %d assessments from %s", len(catalog), len(catalog.assessments), path)
    return catalog


__all__ = ["QuestionCatalog", "QuestionSource", "as_question_lookup", "load_catalog", "read_document"]
