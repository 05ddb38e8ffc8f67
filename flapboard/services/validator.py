"""Plausibility checks for a submitted run.

The bounds mirror the client's pacing: pipes spawn every 1.2s at full speed,
so no legitimate run can score faster than one point per
``MIN_EVENT_INTERVAL_MS`` (0.8s, leaving headroom for timer jitter).
"""

from __future__ import annotations

from dataclasses import dataclass

from flapboard.models.tables import FlagReason

MAX_SCORE = 1000
MIN_DURATION_MS = 1000
MAX_DURATION_MS = 30 * 60 * 1000
MIN_EVENT_INTERVAL_MS = 800
SUSPICIOUS_PACE_RATIO = 0.95


@dataclass(frozen=True, slots=True)
class ValidationResult:
    valid: bool
    flagged: bool
    flag_reason: FlagReason | None = None


def validate_run(score: int, duration_ms: int) -> ValidationResult:
    if score < 0 or score > MAX_SCORE:
        return ValidationResult(False, True, FlagReason.SCORE_OUT_OF_BOUNDS)

    # A too-short run that also claims points is reported as a timing violation:
    # the score, not the clock, is what cannot be true. A negative clock is
    # simply out of bounds.
    if 0 <= duration_ms < score * MIN_EVENT_INTERVAL_MS:
        return ValidationResult(False, True, FlagReason.IMPOSSIBLE_TIMING)

    if duration_ms < MIN_DURATION_MS or duration_ms > MAX_DURATION_MS:
        return ValidationResult(False, True, FlagReason.DURATION_OUT_OF_BOUNDS)

    # Accepted, but close enough to the physical ceiling to deserve review.
    max_expected = duration_ms // MIN_EVENT_INTERVAL_MS
    if score > max_expected * SUSPICIOUS_PACE_RATIO:
        return ValidationResult(True, True, FlagReason.SUSPICIOUSLY_FAST)

    return ValidationResult(True, False)
