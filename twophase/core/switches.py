"""Helpers for switching individual integrity detectors off from the CLI."""

from __future__ import annotations

from typing import List

from .models import PatternType


def parse_detector_flag(flag_value: str | None) -> List[PatternType]:
    """
    Convert a comma-separated ``--skip`` flag into the list of disabled detectors.

    Examples
    --------
    - ``None`` or empty string → every detector runs.
    - ``rapid_response`` → rapid-response detection disabled.
    - ``no_variance,reciprocal_inflation`` → both peer-evaluation detectors off.
    """
    if not flag_value:
        return []

    disabled: List[PatternType] = []
    tokens = [token.strip().lower() for token in flag_value.split(",") if token.strip()]
    for token in tokens:
        try:
            pattern_type = PatternType(token)
        except ValueError as exc:
            valid = ", ".join(PatternType.choices())
            raise ValueError(f"Unknown detector '{token}'. Valid options: {valid}") from exc
        if pattern_type not in disabled:
            disabled.append(pattern_type)
    return disabled


def describe_enabled(disabled: List[PatternType]) -> str:
    enabled = [member.value for member in PatternType if member not in disabled]
    return ", ".join(enabled) if enabled else "none"


__all__ = ["describe_enabled", "parse_detector_flag"]
