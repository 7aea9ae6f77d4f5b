"""
Typed configuration for the two-phase assessment engine.

Every threshold the session, detectors, and grade calculator use lives here so
faculty can tune them from ``config/engine.yaml`` without touching code. The
defaults reproduce the published grading policy.
"""

from __future__ import annotations

import math
from enum import Enum
from pathlib import Path
from typing import Any, Dict, List, Tuple

import yaml
from pydantic import BaseModel, ConfigDict, Field, ValidationError, field_validator, model_validator

from .models import PatternType


class PatternDedupe(str, Enum):
    """How a live session folds a fresh detector run into its stored pattern list."""

    REPLACE = "replace"
    HIGHEST = "highest"


class SessionSettings(BaseModel):
    """Knobs for the answer/rationale state machine."""

    model_config = ConfigDict(extra="ignore")

    rapid_click_window_ms: int = Field(default=500, ge=1, description="Selections closer than this count as rapid.")
    rapid_click_limit: int = Field(default=5, ge=0, description="Consecutive rapid selections tolerated before flagging.")


class DetectionSettings(BaseModel):
    """Thresholds for the integrity pattern detectors."""

    model_config = ConfigDict(extra="ignore")

    min_rationale_sample: int = Field(default=5, ge=1)
    rationale_gap_threshold: float = Field(default=30.0, ge=0.0, description="Percentage points.")
    rationale_confidence_scale: float = Field(default=50.0, gt=0.0)
    mismatch_threshold: float = Field(default=0.3, ge=0.0, le=1.0)
    mismatch_confidence_scale: float = Field(default=0.5, gt=0.0)
    min_rapid_sample: int = Field(default=3, ge=1)
    rapid_response_seconds: float = Field(default=5.0, ge=0.0)
    rapid_response_rate: float = Field(default=0.5, ge=0.0, le=1.0)
    peer_test_threshold: float = Field(default=20.0, ge=0.0)
    reciprocal_confidence: float = Field(default=0.8, ge=0.0, le=1.0)
    min_variance_sample: int = Field(default=3, ge=2)
    variance_threshold: float = Field(default=0.1, ge=0.0)
    dedupe: PatternDedupe = PatternDedupe.REPLACE
    disabled: List[PatternType] = Field(default_factory=list)

    def is_enabled(self, pattern_type: PatternType) -> bool:
        return pattern_type not in self.disabled


class GradeWeights(BaseModel):
    model_config = ConfigDict(extra="forbid")

    quizzes: float = 0.15
    exams: float = 0.30
    final: float = 0.15
    teaching: float = 0.15
    group_performance: float = 0.10
    engagement: float = 0.08
    feedback_quality: float = 0.04
    reflection: float = 0.03

    @model_validator(mode="after")
    def check_total(self) -> "GradeWeights":
        total = sum(self.model_dump().values())
        if not math.isclose(total, 1.0, abs_tol=1e-6):
            raise ValueError(f"Grade weights must sum to 1.0 (received {total:.4f})")
        return self


DEFAULT_LETTER_CUTOFFS: List[Tuple[float, str]] = [
    (93.0, "A"),
    (90.0, "A-"),
    (87.0, "B+"),
    (83.0, "B"),
    (80.0, "B-"),
    (77.0, "C+"),
    (73.0, "C"),
    (70.0, "C-"),
    (67.0, "D+"),
    (63.0, "D"),
    (60.0, "D-"),
]


class GradingSettings(BaseModel):
    """Weights and correction factors for the final grade."""

    model_config = ConfigDict(extra="ignore")

    weights: GradeWeights = Field(default_factory=GradeWeights)
    answer_weight: float = Field(default=0.7, ge=0.0, le=1.0)
    rationale_weight: float = Field(default=0.3, ge=0.0, le=1.0)
    peer_inflation_margin: float = Field(default=20.0, ge=0.0)
    peer_adjustment_factor: float = Field(default=0.75, ge=0.0, le=1.0)
    faculty_deviation_threshold: float = Field(default=0.15, ge=0.0)
    penalty_per_confidence: float = Field(default=5.0, ge=0.0)
    penalty_cap: float = Field(default=20.0, ge=0.0)
    engagement_time_reference: float = Field(default=60.0, gt=0.0, description="Seconds on question that earns full credit.")
    comment_min_length: int = Field(default=50, ge=0)
    section_range: float = Field(default=30.0, gt=0.0)
    letter_cutoffs: List[Tuple[float, str]] = Field(default_factory=lambda: list(DEFAULT_LETTER_CUTOFFS))
    failing_letter: str = "F"

    @field_validator("letter_cutoffs", mode="after")
    @classmethod
    def sort_cutoffs(cls, value: List[Tuple[float, str]]) -> List[Tuple[float, str]]:
        return sorted(value, key=lambda item: item[0], reverse=True)

    @model_validator(mode="after")
    def check_phase_weights(self) -> "GradingSettings":
        if not math.isclose(self.answer_weight + self.rationale_weight, 1.0, abs_tol=1e-6):
            raise ValueError("answer_weight and rationale_weight must sum to 1.0")
        return self


class AlertSettings(BaseModel):
    model_config = ConfigDict(extra="ignore")

    alert_threshold: float = Field(default=0.7, ge=0.0, le=1.0)
    high_priority_threshold: float = Field(default=0.8, ge=0.0, le=1.0)


class EngineConfig(BaseModel):
    """Top-level configuration consumed by the service layer and CLI."""

    session: SessionSettings = Field(default_factory=SessionSettings)
    detection: DetectionSettings = Field(default_factory=DetectionSettings)
    grading: GradingSettings = Field(default_factory=GradingSettings)
    alerts: AlertSettings = Field(default_factory=AlertSettings)

    @model_validator(mode="before")
    @classmethod
    def drop_empty_sections(cls, data: Any) -> Any:
        if not isinstance(data, dict):
            return data
        # YAML renders an empty section ("detection:") as None
        return {key: value for key, value in data.items() if value is not None}


def read_yaml_file(path: Path) -> Dict[str, Any]:
    """Load a YAML file and return a dictionary."""
    with path.open("r", encoding="utf-8") as handle:
        data = yaml.safe_load(handle) or {}
    if not isinstance(data, dict):
        raise ValueError(f"Expected mapping at root of {path}, received {type(data)}")
    return data


def load_engine_config(path: Path | None = None) -> EngineConfig:
    """Load engine settings from YAML, falling back to defaults when no path is given."""
    if path is None:
        return EngineConfig()
    path = Path(path).expanduser().resolve()
    if not path.exists():
        raise FileNotFoundError(f"Engine config {path} is missing")
    data = read_yaml_file(path)
    try:
        return EngineConfig.model_validate(data)
    except ValidationError as exc:
        raise ValueError(f"Invalid engine config in {path}") from exc


def merge_engine_config(base: EngineConfig, overrides: Dict[str, Any]) -> EngineConfig:
    """
    Return a new EngineConfig with section-level overrides applied.

    Used by the CLI to fold ``--skip`` detector toggles into a loaded config.
    """
    payload = base.model_dump()
    for section, values in overrides.items():
        if isinstance(values, dict) and isinstance(payload.get(section), dict):
            payload[section] = {**payload[section], **values}
        else:
            payload[section] = values
    try:
        return EngineConfig.model_validate(payload)
    except ValidationError as exc:
        raise ValueError("Invalid overrides for EngineConfig") from exc


__all__ = [
    "AlertSettings",
    "DEFAULT_LETTER_CUTOFFS",
    "DetectionSettings",
    "EngineConfig",
    "GradeWeights",
    "GradingSettings",
    "PatternDedupe",
    "SessionSettings",
    "load_engine_config",
    "merge_engine_config",
    "read_yaml_file",
]
