"""Traffic-shift policy evaluation.

Pure functions over ``TrafficShiftPolicy``; the blue/green controller
calls them to decide the green task set's next weight and how long to
hold before the next step is due.
"""

from __future__ import annotations

from datetime import timedelta

from greenshift.models.traffic import PolicyKind, TrafficShiftPolicy

FULL_WEIGHT = 100


def next_weight(
    policy: TrafficShiftPolicy,
    elapsed: timedelta | None,
    current_weight: int,
) -> int:
    """Return green's next weight.

    Parameters
    ----------
    policy:
        The traffic-shift policy being applied.
    elapsed:
        Time since the last shift, or ``None`` when no shift has happened
        yet (the first step is then applied immediately).
    current_weight:
        Green's current weight (0-100).

    The result never exceeds 100; a step that does not divide 100 evenly
    clamps to exactly 100 on its last application.
    """
    if current_weight >= FULL_WEIGHT:
        return FULL_WEIGHT

    if policy.kind == PolicyKind.ALL_AT_ONCE:
        return FULL_WEIGHT

    if policy.kind == PolicyKind.LINEAR:
        if elapsed is None or elapsed >= policy.step_interval:
            return min(FULL_WEIGHT, current_weight + policy.step_percentage)
        return current_weight

    if policy.kind == PolicyKind.CANARY:
        if current_weight == 0:
            return min(FULL_WEIGHT, policy.step_percentage)
        if elapsed is not None and elapsed >= policy.canary_bake_time:
            return FULL_WEIGHT
        return current_weight

    raise ValueError(f"Unknown policy kind: {policy.kind!r}")


def next_shift_delay(policy: TrafficShiftPolicy, current_weight: int) -> timedelta:
    """How long after the last shift the next one becomes due."""
    if current_weight == 0 or current_weight >= FULL_WEIGHT:
        return timedelta(0)
    if policy.kind == PolicyKind.LINEAR:
        return policy.step_interval
    if policy.kind == PolicyKind.CANARY:
        return policy.canary_bake_time
    return timedelta(0)


def planned_weights(policy: TrafficShiftPolicy) -> list[int]:
    """The distinct weights green passes through, ending at 100."""
    weights: list[int] = []
    current = 0
    while current < FULL_WEIGHT:
        current = next_weight(policy, None if current == 0 else timedelta.max, current)
        weights.append(current)
    return weights


def total_shift_duration(policy: TrafficShiftPolicy) -> timedelta:
    """Minimum time from the first shift until green carries all traffic."""
    total = timedelta(0)
    for weight in planned_weights(policy)[:-1]:
        total += next_shift_delay(policy, weight)
    return total
