"""Elapsed/remaining time math for every timer kind, pure logic, no state.

All ``now`` arguments are monotonic seconds (``time.monotonic()``), never
wall-clock, so a system clock change can't leak into an accumulator. Rounding
is applied only by ``present()`` at the display boundary; the raw floats
handed around everywhere else are never rounded, so nothing compounds.
"""

import math
from enum import Enum
from st.common.errors import ClockAnomaly
from st.common.logger import log


class Rounding(str, Enum):
    FLOOR = "floor"  # count-up
    CEIL = "ceil"    # count-down


def _checked_delta(run_started_at, now):
    delta = now - run_started_at
    if delta < 0:
        raise ClockAnomaly(delta)
    return delta


def live_delta(run_started_at, now):
    """Seconds spent in the current run segment, 0.0 when not running."""
    if run_started_at is None:
        return 0.0
    try:
        return _checked_delta(run_started_at, now)
    except ClockAnomaly as e:
        log.warning(f"Clock anomaly clamped to zero (started_at={run_started_at}, now={now}): {e}")
        return 0.0


def elapsed(record, now):
    return max(0.0, record.accumulated + live_delta(record.run_started_at, now))


def remaining(budget, record, now):
    return max(0.0, budget - elapsed(record, now))


def countdown_remaining(state, now):
    if state.deadline is not None:
        return max(0.0, state.deadline - now)
    if state.paused_seconds_left is not None:
        return max(0.0, state.paused_seconds_left)
    return max(0.0, float(state.duration))


def present(seconds, rounding):
    """Round a raw reading for display. Never negative."""
    if seconds <= 0:
        return 0
    if rounding == Rounding.CEIL:
        return int(math.ceil(seconds))
    return int(math.floor(seconds))
