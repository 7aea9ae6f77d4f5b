"""Faculty intervention alerts raised from high-confidence integrity patterns."""

from __future__ import annotations

import logging
from typing import Iterable, Optional

from twophase.core.config import AlertSettings
from twophase.core.models import GamingPattern, InterventionAlert

from .timer import Clock, SystemClock

LOGGER = logging.getLogger(__name__)


def _describe(pattern_type: str) -> str:
    return pattern_type.replace("_", " ")


def build_intervention_alert(
    student_id: str,
    patterns: Iterable[GamingPattern],
    *,
    student_name: str | None = None,
    settings: AlertSettings | None = None,
    clock: Clock | None = None,
) -> Optional[InterventionAlert]:
    """Return a pending alert when any pattern is confident enough, else None."""

    settings = settings or AlertSettings()
    strong = [pattern for pattern in patterns if pattern.confidence > settings.alert_threshold]
    if not strong:
        return None

    pattern_types = []
    for pattern in strong:
        if pattern.pattern_type not in pattern_types:
            pattern_types.append(pattern.pattern_type)
    high = any(pattern.confidence > settings.high_priority_threshold for pattern in strong)
    subject = student_name or student_id
    reason = f"Potential gaming patterns detected for {subject}: " + ", ".join(
        _describe(pattern_type.value) for pattern_type in pattern_types
    )
    LOGGER.debug("Alert for %s covers %d pattern(s)", student_id, len(strong))
    return InterventionAlert(
        type="individual",
        target_id=student_id,
        reason=reason,
        priority="high" if high else "medium",
        status="pending",
        created_at=(clock or SystemClock()).now(),
        pattern_types=pattern_types,
    )


__all__ = ["build_intervention_alert"]
