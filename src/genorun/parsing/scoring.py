"""Derived region attributes: completeness and normalized confidence."""

from __future__ import annotations

import math

COMPLETE = "complete"
INCOMPLETE = "incomplete"


def classify_completeness(length: int, in_seq_edge: bool, threshold: int) -> str:
    """A region is complete iff it is off the sequence edge and longer than ``threshold``."""
    if not in_seq_edge and length > threshold:
        return COMPLETE
    return INCOMPLETE


def normalize_confidence(score: float | None, scale_max: float) -> float:
    """Map a tool score onto [0, 1] given the maximum of its scale."""
    if score is None or not math.isfinite(score) or score <= 0:
        return 0.0
    return min(score / scale_max, 1.0)


__all__ = ["COMPLETE", "INCOMPLETE", "classify_completeness", "normalize_confidence"]
