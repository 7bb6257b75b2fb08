import math
from dataclasses import dataclass, asdict
from enum import Enum
from st.common.logger import log
from st.core import calculator
from st.core.calculator import Rounding


class TimerKind(str, Enum):
    STUDY = "study"
    POMODORO = "pomodoro"
    COUNTDOWN = "countdown"

class TimerStatus(str, Enum):
    STOPPED = "stopped"
    RUNNING = "running"
    PAUSED = "paused"

class SessionStatus(str, Enum):
    INACTIVE = "inactive"
    ACTIVE = "active"
    PAUSED = "paused"

class PomodoroPhase(str, Enum):
    WORK = "work"
    BREAK = "break"
    LONG_BREAK = "long_break"


# One pomodoro preset, all durations in seconds.
@dataclass
class PomodoroPreset:
    label: str
    work_seconds: float
    break_seconds: float
    long_break_seconds: float

    def budget(self, phase):
        if phase == PomodoroPhase.WORK:
            return float(self.work_seconds)
        if phase == PomodoroPhase.LONG_BREAK:
            return float(self.long_break_seconds)
        return float(self.break_seconds)

    def to_dict(self):
        return asdict(self)

    @staticmethod
    def from_dict(data):
        preset = PomodoroPreset(
            label=str(data["label"]),
            work_seconds=float(data["work_seconds"]),
            break_seconds=float(data["break_seconds"]),
            long_break_seconds=float(data["long_break_seconds"]),
        )
        durations = (preset.work_seconds, preset.break_seconds, preset.long_break_seconds)
        if not all(math.isfinite(d) for d in durations):
            raise ValueError(f"Preset '{preset.label}' has a non-finite duration")
        if min(durations) <= 0:
            raise ValueError(f"Preset '{preset.label}' has a non-positive duration")
        return preset

CUSTOM_LABEL = "Custom"
# Custom is always last, it's the only one the user can edit.
DEFAULT_PRESETS = (
    PomodoroPreset("Traditional", 25 * 60, 5 * 60, 15 * 60),
    PomodoroPreset("Extended Focus", 50 * 60, 10 * 60, 30 * 60),
    PomodoroPreset("Ultra Focus", 60 * 60, 15 * 60, 45 * 60),
    PomodoroPreset(CUSTOM_LABEL, 25 * 60, 5 * 60, 15 * 60),
)
def default_presets():
    return [PomodoroPreset(**p.to_dict()) for p in DEFAULT_PRESETS]

DEFAULT_WORK_SESSIONS_BEFORE_LONG_BREAK = 4
DEFAULT_COUNTDOWN_SECONDS = 2 * 3600


# This object tracks one count-up or count-down run for a timer. Time in the current run segment is measured from a
# monotonic `run_started_at`, and only gets banked into `accumulated` on pause. Nothing else ever writes to
# `accumulated` while the timer runs, so reading it over and over can't drift.
class TimerRecord:

    def __init__(self, kind, rounding, accumulated=0.0):
        self.kind = TimerKind(kind)
        self.rounding = Rounding(rounding)
        self.accumulated = max(0.0, float(accumulated))
        self.run_started_at = None
        self.status = TimerStatus.STOPPED

    @property
    def running(self):
        return self.status == TimerStatus.RUNNING

    def elapsed(self, now):
        return calculator.elapsed(self, now)

    # Start and pause. Both are no-ops if the timer is already in the requested state.
    def start(self, now):
        if self.running:
            return False
        self.run_started_at = now
        self.status = TimerStatus.RUNNING
        log.debug(f"Started {self.kind.value} timer at mono {now} with {self.accumulated:.3f}s banked")
        return True
    def pause(self, now):
        if not self.running:
            return False
        self.accumulated += calculator.live_delta(self.run_started_at, now)
        self.run_started_at = None
        self.status = TimerStatus.PAUSED
        log.debug(f"Paused {self.kind.value} timer at mono {now}, banked {self.accumulated:.3f}s")
        return True
    # Back to 0:00 and stopped, no matter what state we were in.
    def reset(self):
        self.accumulated = 0.0
        self.run_started_at = None
        self.status = TimerStatus.STOPPED
        log.debug(f"Reset {self.kind.value} timer to 0.0")

    # Marks the record as not running while keeping the banked seconds. Used when restoring from disk, where any
    # old run_started_at is meaningless.
    def settle(self):
        self.run_started_at = None
        self.status = TimerStatus.PAUSED if self.accumulated > 0 else TimerStatus.STOPPED


class PomodoroCycleState(TimerRecord):
    """Work/break cycle on top of a count-down TimerRecord.

    ``accumulated`` is time spent in the *current phase*; the phase budget
    comes from the selected preset. ``pomodoros_this_session`` counts
    finished work phases since the current study session began.
    """

    def __init__(self, modes=None, mode_index=0, phase=PomodoroPhase.WORK, accumulated=0.0,
                 work_sessions_completed=0, work_sessions_before_long_break=DEFAULT_WORK_SESSIONS_BEFORE_LONG_BREAK,
                 pomodoros_this_session=0):
        super().__init__(TimerKind.POMODORO, Rounding.CEIL, accumulated)
        self.modes = list(modes) if modes else default_presets()
        self.mode_index = mode_index if 0 <= mode_index < len(self.modes) else 0
        self.phase = PomodoroPhase(phase)
        self.work_sessions_completed = int(work_sessions_completed)
        self.work_sessions_before_long_break = max(1, int(work_sessions_before_long_break))
        self.pomodoros_this_session = int(pomodoros_this_session)

    @property
    def preset(self):
        return self.modes[self.mode_index]

    @property
    def budget(self):
        return self.preset.budget(self.phase)

    def remaining(self, now):
        return calculator.remaining(self.budget, self, now)

    # The monotonic instant the current phase runs out, only meaningful while running.
    def phase_end(self):
        if not self.running:
            return None
        return self.run_started_at + (self.budget - self.accumulated)

    def next_phase(self):
        if self.phase != PomodoroPhase.WORK:
            return PomodoroPhase.WORK
        if (self.work_sessions_completed + 1) % self.work_sessions_before_long_break == 0:
            return PomodoroPhase.LONG_BREAK
        return PomodoroPhase.BREAK

    # Moves to the next phase with a fresh budget. The new phase is anchored at `ended_at` (when the old one really
    # ran out) rather than whenever we noticed, so a late tick doesn't stretch the cycle.
    def advance(self, ended_at):
        finished = self.phase
        self.phase = self.next_phase()
        if finished == PomodoroPhase.WORK:
            self.work_sessions_completed += 1
            self.pomodoros_this_session += 1
        self.accumulated = 0.0
        if self.running:
            self.run_started_at = ended_at
        log.debug(f"Pomodoro phase {finished.value} -> {self.phase.value} at mono {ended_at}")
        return finished

    # Throws away progress in the current phase but keeps running if it was.
    def restart_phase(self, now):
        self.accumulated = 0.0
        if self.running:
            self.run_started_at = now

    def reset(self):
        super().reset()
        self.phase = PomodoroPhase.WORK
        self.work_sessions_completed = 0


# Countdown to an absolute deadline. While running only `deadline` (monotonic) matters; `end_timestamp` is the same
# instant in wall-clock time, purely for showing "ends at 14:05" to the user.
class CountdownState:

    def __init__(self, duration=DEFAULT_COUNTDOWN_SECONDS, paused_seconds_left=None):
        self.kind = TimerKind.COUNTDOWN
        self.rounding = Rounding.CEIL
        self.duration = float(duration)
        self.paused_seconds_left = None if paused_seconds_left is None else max(0.0, float(paused_seconds_left))
        self.deadline = None
        self.end_timestamp = None
        self.status = TimerStatus.STOPPED

    @property
    def running(self):
        return self.status == TimerStatus.RUNNING

    def remaining(self, now):
        return calculator.countdown_remaining(self, now)

    def start(self, now, wall_now):
        if self.running:
            return False
        # A countdown paused at zero starts over from the full duration
        if self.paused_seconds_left is not None and self.paused_seconds_left > 0:
            seconds_left = self.paused_seconds_left
        else:
            seconds_left = self.duration
        self.deadline = now + seconds_left
        self.end_timestamp = wall_now + seconds_left
        self.paused_seconds_left = None
        self.status = TimerStatus.RUNNING
        log.debug(f"Started countdown at mono {now} with {seconds_left:.3f}s left")
        return True
    def pause(self, now):
        if not self.running:
            return False
        self.paused_seconds_left = max(0.0, self.deadline - now)
        self.deadline = None
        self.end_timestamp = None
        self.status = TimerStatus.PAUSED
        log.debug(f"Paused countdown at mono {now} with {self.paused_seconds_left:.3f}s left")
        return True
    def reset(self):
        self.paused_seconds_left = None
        self.deadline = None
        self.end_timestamp = None
        self.status = TimerStatus.STOPPED
        log.debug(f"Reset countdown to {self.duration:.0f}s")

    # Ran out: stopped, and showing 0 until reset or started again.
    def finish(self):
        self.paused_seconds_left = 0.0
        self.deadline = None
        self.end_timestamp = None
        self.status = TimerStatus.STOPPED

    def settle(self):
        self.deadline = None
        self.end_timestamp = None
        self.status = TimerStatus.PAUSED if self.paused_seconds_left else TimerStatus.STOPPED
