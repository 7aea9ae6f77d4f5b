"""
Configuration, data model, and audit utilities for the two-phase engine.

Nothing in here depends on the session or detector modules, so loaders and the
CLI can import it on its own.
"""

from .config import EngineConfig, PatternDedupe, load_engine_config
from .models import (
    AnsweredResponse,
    Assessment,
    AssessmentType,
    AttemptResult,
    GamingPattern,
    GradeCalculation,
    InterventionAlert,
    PatternType,
    PeerEvaluation,
    Question,
    RationalizedResponse,
    RubricScores,
    parse_response,
)
from .provenance import AuditEvent, AuditLog
from .switches import parse_detector_flag

__all__ = [
    "AnsweredResponse",
    "Assessment",
    "AssessmentType",
    "AttemptResult",
    "AuditEvent",
    "AuditLog",
    "EngineConfig",
    "GamingPattern",
    "GradeCalculation",
    "InterventionAlert",
    "PatternDedupe",
    "PatternType",
    "PeerEvaluation",
    "Question",
    "RationalizedResponse",
    "RubricScores",
    "load_engine_config",
    "parse_detector_flag",
    "parse_response",
]
