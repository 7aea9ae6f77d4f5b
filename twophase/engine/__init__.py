"""Two-phase attempt state machine, integrity detectors, and grade calculator."""

from .alerts import build_intervention_alert
from .detection import detect_all_patterns, detect_response_patterns, merge_patterns
from .grading import assessment_score, calculate_final_grade, combine_components, render_grade_report
from .ledger import LedgerError, ResponseLedger
from .service import AssessmentService
from .session import AssessmentSession, Phase
from .timer import IntervalTicker, ManualClock, SessionTimer, SystemClock

__all__ = [
    "AssessmentService",
    "AssessmentSession",
    "IntervalTicker",
    "LedgerError",
    "ManualClock",
    "Phase",
    "ResponseLedger",
    "SessionTimer",
    "SystemClock",
    "assessment_score",
    "build_intervention_alert",
    "calculate_final_grade",
    "combine_components",
    "detect_all_patterns",
    "detect_response_patterns",
    "merge_patterns",
    "render_grade_report",
]
