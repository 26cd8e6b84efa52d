"""Workload-based score scaling."""
from __future__ import annotations

from bookops.models import Rep

MIN_MULTIPLIER = 0.5
MAX_MULTIPLIER = 1.5
AT_TARGET = 1.0


class CapacityAdjuster:
    """Scale candidate scores by how loaded a rep already is.

    The multiplier is piecewise linear in ``current_arr / target_arr``:
    1.5 at an empty book, 1.0 exactly at target, 0.5 at ``saturation_ratio``
    times the target, and clamped to [0.5, 1.5] outside that range.
    """

    def __init__(self, saturation_ratio: float = 2.0):
        if saturation_ratio <= 1.0:
            raise ValueError("saturation_ratio must be greater than 1.0")
        self.saturation_ratio = float(saturation_ratio)

    def multiplier_for_ratio(self, ratio: float) -> float:
        if ratio <= 1.0:
            value = MAX_MULTIPLIER - (MAX_MULTIPLIER - AT_TARGET) * ratio
        else:
            span = self.saturation_ratio - 1.0
            value = AT_TARGET - (AT_TARGET - MIN_MULTIPLIER) * (ratio - 1.0) / span
        return min(MAX_MULTIPLIER, max(MIN_MULTIPLIER, value))

    def capacity_multiplier(self, rep: Rep, target_arr: float) -> float:
        if target_arr <= 0:
            return AT_TARGET
        return self.multiplier_for_ratio(max(0.0, rep.current_arr) / target_arr)
