"""Loop-closure and claim eligibility rules.

Pure functions over the best-estimate track. Nothing here keeps state: the
session controller recomputes a snapshot on every append/merge so the
``claimable`` flag can never go stale.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Dict, Sequence

from .config import (
    CLAIM_MIN_POINTS,
    CLAIM_MIN_SECONDS,
    CYCLE_MIN_PERIMETER_M,
    LOOP_CLOSE_DISTANCE_M,
    WALK_MIN_PERIMETER_M,
)
from .geometry import best_estimate, haversine_m, path_length_m
from .models import EligibilitySnapshot, Fix, TrackingMode


def _default_min_perimeters() -> Dict[TrackingMode, float]:
    return {
        TrackingMode.WALK_RUN: WALK_MIN_PERIMETER_M,
        TrackingMode.CYCLE: CYCLE_MIN_PERIMETER_M,
    }


@dataclass(frozen=True)
class EligibilityRules:
    """Policy thresholds; the defaults reject GPS noise circles."""

    min_seconds: float = CLAIM_MIN_SECONDS
    min_points: int = CLAIM_MIN_POINTS
    close_distance_m: float = LOOP_CLOSE_DISTANCE_M
    min_perimeter_m: Dict[TrackingMode, float] = field(
        default_factory=_default_min_perimeters
    )

    def min_perimeter_for(self, mode: TrackingMode | str) -> float:
        return self.min_perimeter_m[TrackingMode.parse(mode)]


DEFAULT_RULES = EligibilityRules()


def elapsed_seconds(fixes: Sequence[Fix]) -> float:
    """Seconds between the first and last raw fix (never negative)."""

    if len(fixes) < 2:
        return 0.0
    delta = fixes[-1].timestamp - fixes[0].timestamp
    return max(0.0, delta.total_seconds())


def closure_distance_m(fixes: Sequence[Fix]) -> float | None:
    if len(fixes) < 2:
        return None
    return haversine_m(fixes[0].best, fixes[-1].best)


def evaluate(
    fixes: Sequence[Fix],
    mode: TrackingMode | str,
    rules: EligibilityRules = DEFAULT_RULES,
) -> EligibilitySnapshot:
    """Compute the eligibility snapshot for ``fixes`` in ``mode``."""

    mode = TrackingMode.parse(mode)
    points = best_estimate(fixes)
    path_m = path_length_m(points)
    closure = closure_distance_m(fixes)
    close_enough = closure is not None and closure <= rules.close_distance_m
    # An open path has no meaningful perimeter: only add the closing edge
    # when the loop is actually closed.
    perimeter = path_m + closure if close_enough and closure is not None else path_m
    elapsed = elapsed_seconds(fixes)
    claimable = (
        elapsed >= rules.min_seconds
        and len(fixes) >= rules.min_points
        and close_enough
        and perimeter >= rules.min_perimeter_for(mode)
    )
    return EligibilitySnapshot(
        elapsed_seconds=elapsed,
        point_count=len(fixes),
        path_length_m=path_m,
        close_enough=close_enough,
        perimeter_estimate_m=perimeter,
        claimable=claimable,
    )


__all__ = [
    "EligibilityRules",
    "DEFAULT_RULES",
    "closure_distance_m",
    "elapsed_seconds",
    "evaluate",
]
