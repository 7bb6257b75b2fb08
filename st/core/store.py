"""Timer state store, the sole owner of every timer record.

Holds the study stopwatch, the pomodoro cycle and the countdown, plus the
sync settings, the bound study-session id and the daily counters. Every
operation here is one synchronous transition; listeners registered with
``subscribe()`` are told about it before the call returns, and anything they
do in response (the sync cascade, mostly) is part of the same transition.

Persistence is coalesced to transition boundaries: a transition and whatever
it cascades into produce exactly one write, and ticks never write at all.
"""

import time
from contextlib import contextmanager
from dataclasses import dataclass, field, asdict
from enum import Enum
from st.common.errors import InvalidInput, PersistenceFailure
from st.common.logger import log
from st.core import calculator
from st.core.calculator import Rounding
from st.core.timer_state import (CUSTOM_LABEL, CountdownState, PomodoroCycleState, PomodoroPreset, PomodoroPhase,
                                 SessionStatus, TimerKind, TimerRecord, TimerStatus)
from st.util import today_iso

_SCHEMA_VERSION = 1


class TimerEvent(str, Enum):
    STARTED = "started"
    PAUSED = "paused"
    RESET = "reset"
    PHASE_COMPLETED = "phase_completed"
    COUNTDOWN_FINISHED = "countdown_finished"
    MODE_CHANGED = "mode_changed"
    SETTINGS_CHANGED = "settings_changed"
    SESSION_CHANGED = "session_changed"

@dataclass(frozen=True)
class TimerSignal:
    event: TimerEvent
    kind: TimerKind | None = None
    detail: dict = field(default_factory=dict)

# What a driver hands to the UI each tick. `seconds` is the raw float, `display` is it rounded per the timer's policy.
@dataclass(frozen=True)
class TimerReading:
    kind: TimerKind
    seconds: float
    display: int
    status: TimerStatus
    phase: str | None = None

@dataclass
class SyncSettings:
    sync_pomodoro_with_timer: bool = False
    sync_countdown_with_timer: bool = False

    def to_dict(self):
        return asdict(self)

    @staticmethod
    def from_dict(data):
        return SyncSettings(
            sync_pomodoro_with_timer=bool(data.get("sync_pomodoro_with_timer", False)),
            sync_countdown_with_timer=bool(data.get("sync_countdown_with_timer", False)),
        )

@dataclass
class DailyStats:
    date: str
    pomodoros_today: int = 0
    sessions_today: int = 0

    # Zeroes the counters if `today` isn't the day they were counted on.
    def roll_over(self, today):
        if self.date != today:
            log.info(f"Daily counters rolled over from {self.date} to {today}")
            self.date = today
            self.pomodoros_today = 0
            self.sessions_today = 0


class TimerStore:

    def __init__(self, clock=time.monotonic, wall_clock=time.time, writer=None, today=today_iso, settings=None):
        self._clock = clock
        self._wall_clock = wall_clock
        self._writer = writer
        self._today = today

        self.study = TimerRecord(TimerKind.STUDY, Rounding.FLOOR)
        self.pomodoro = PomodoroCycleState()
        self.countdown = CountdownState()

        self.settings = dict(settings or {})
        self.sync_settings = SyncSettings()
        self.session_sync_settings = {}
        self.active_session_id = None
        self.active_session_task_ids = []
        self.session_status = SessionStatus.INACTIVE
        self.stats = DailyStats(today())

        self._subscribers = []
        self._depth = 0
        self._dirty = False

    #region === Notifications ===

    # Registers `callback(signal)` for store notifications, optionally filtered by event and/or timer kind. Returns
    # a function that removes the registration again.
    def subscribe(self, callback, event=None, kind=None):
        entry = (callback, None if event is None else TimerEvent(event), None if kind is None else TimerKind(kind))
        self._subscribers.append(entry)

        def unsubscribe():
            if entry in self._subscribers:
                self._subscribers.remove(entry)
        return unsubscribe

    def _emit(self, event, kind=None, **detail):
        signal = TimerSignal(event, kind, detail)
        for callback, wanted_event, wanted_kind in list(self._subscribers):
            if wanted_event is not None and wanted_event != event:
                continue
            if wanted_kind is not None and wanted_kind != kind:
                continue
            try:
                callback(signal)
            except Exception:
                # A broken listener must not leave the transition half-applied
                log.exception(f"Listener {callback!r} failed handling {event.value} for {kind}")

    #endregion === Notifications ===

    #region === Transitions ===

    @contextmanager
    def _transition(self):
        self._depth += 1
        try:
            yield
        finally:
            self._depth -= 1
        if self._depth == 0 and self._dirty:
            self.flush()

    # Groups several operations into one transition, so they persist as a single write.
    def transaction(self):
        return self._transition()

    def record(self, kind):
        kind = TimerKind(kind)
        if kind == TimerKind.STUDY:
            return self.study
        if kind == TimerKind.POMODORO:
            return self.pomodoro
        return self.countdown

    def status(self, kind):
        return self.record(kind).status

    def start(self, kind):
        kind = TimerKind(kind)
        with self._transition():
            now = self._clock()
            if kind == TimerKind.COUNTDOWN:
                changed = self.countdown.start(now, self._wall_clock())
            else:
                changed = self.record(kind).start(now)
            if changed:
                self._dirty = True
                self._emit(TimerEvent.STARTED, kind)
        return changed

    def pause(self, kind):
        kind = TimerKind(kind)
        with self._transition():
            changed = self.record(kind).pause(self._clock())
            if changed:
                self._dirty = True
                self._emit(TimerEvent.PAUSED, kind)
        return changed

    def reset(self, kind):
        kind = TimerKind(kind)
        with self._transition():
            self.record(kind).reset()
            self._dirty = True
            self._emit(TimerEvent.RESET, kind)

    # Selects a pomodoro preset. The current phase starts over with the new preset's budget; a running timer keeps
    # running.
    def set_mode(self, kind, mode_index):
        if TimerKind(kind) != TimerKind.POMODORO:
            raise InvalidInput(f"Only the pomodoro timer has modes, not {TimerKind(kind).value}")
        if isinstance(mode_index, bool) or not isinstance(mode_index, int) \
                or not 0 <= mode_index < len(self.pomodoro.modes):
            raise InvalidInput(f"Pomodoro mode index {mode_index!r} is out of range")
        with self._transition():
            self.pomodoro.mode_index = mode_index
            self.pomodoro.restart_phase(self._clock())
            self._dirty = True
            self._emit(TimerEvent.MODE_CHANGED, TimerKind.POMODORO,
                       mode_index=mode_index, label=self.pomodoro.preset.label)

    def set_custom_pomodoro_mode(self, work_seconds, break_seconds, long_break_seconds=None):
        custom_index = next((i for i, p in enumerate(self.pomodoro.modes) if p.label == CUSTOM_LABEL),
                            len(self.pomodoro.modes) - 1)
        if long_break_seconds is None:
            long_break_seconds = self.pomodoro.modes[custom_index].long_break_seconds
        durations = {"work": work_seconds, "break": break_seconds, "long break": long_break_seconds}
        for name, value in durations.items():
            if isinstance(value, bool) or not isinstance(value, (int, float)) or not value > 0:
                raise InvalidInput(f"Custom {name} duration must be a positive number of seconds, got {value!r}")
        with self._transition():
            self.pomodoro.modes[custom_index] = PomodoroPreset(CUSTOM_LABEL, float(work_seconds),
                                                              float(break_seconds), float(long_break_seconds))
            log.info(f"Custom pomodoro preset set to {work_seconds}/{break_seconds}/{long_break_seconds}s")
            self.set_mode(TimerKind.POMODORO, custom_index)

    def set_countdown_duration(self, seconds):
        if isinstance(seconds, bool) or not isinstance(seconds, (int, float)) or not seconds > 0:
            raise InvalidInput(f"Countdown duration must be a positive number of seconds, got {seconds!r}")
        with self._transition():
            self.countdown.duration = float(seconds)
            self.countdown.reset()
            self._dirty = True
            self._emit(TimerEvent.RESET, TimerKind.COUNTDOWN, duration=float(seconds))

    # Driver-triggered: advances the pomodoro through every phase whose budget has run out by now. Each new phase
    # starts exactly when the last one ended. Returns how many phases were completed.
    def complete_phase(self, kind=TimerKind.POMODORO):
        if TimerKind(kind) != TimerKind.POMODORO:
            raise InvalidInput("Only the pomodoro timer has phases")
        completed = 0
        with self._transition():
            now = self._clock()
            end = self.pomodoro.phase_end()
            while end is not None and end <= now:
                finished = self.pomodoro.advance(end)
                completed += 1
                self._dirty = True
                if finished == PomodoroPhase.WORK:
                    self.stats.roll_over(self._today())
                    self.stats.pomodoros_today += 1
                self._emit(TimerEvent.PHASE_COMPLETED, TimerKind.POMODORO,
                           finished=finished.value, next=self.pomodoro.phase.value,
                           work_sessions_completed=self.pomodoro.work_sessions_completed)
                end = self.pomodoro.phase_end()
        return completed

    # Driver-triggered: a running countdown that hit zero goes back to stopped and says so.
    def expire_countdown(self):
        with self._transition():
            if not self.countdown.running or self.countdown.remaining(self._clock()) > 0:
                return False
            self.countdown.finish()
            self._dirty = True
            log.info("Countdown finished")
            self._emit(TimerEvent.COUNTDOWN_FINISHED, TimerKind.COUNTDOWN)
        return True

    #endregion === Transitions ===

    #region === Reads ===

    def elapsed(self, kind):
        now = self._clock()
        if TimerKind(kind) == TimerKind.COUNTDOWN:
            return max(0.0, self.countdown.duration - self.countdown.remaining(now))
        return self.record(kind).elapsed(now)

    def read(self, kind):
        kind = TimerKind(kind)
        now = self._clock()
        rec = self.record(kind)
        if kind == TimerKind.STUDY:
            seconds = rec.elapsed(now)
        else:
            seconds = rec.remaining(now)
        phase = self.pomodoro.phase.value if kind == TimerKind.POMODORO else None
        return TimerReading(kind, seconds, calculator.present(seconds, rec.rounding), rec.status, phase)

    def daily_stats(self):
        self.stats.roll_over(self._today())
        return self.stats

    #endregion === Reads ===

    #region === Sync settings and session binding ===

    # The session's own sync settings if it has some, otherwise the global ones.
    def effective_sync_settings(self):
        if self.active_session_id is not None and self.active_session_id in self.session_sync_settings:
            return self.session_sync_settings[self.active_session_id]
        return self.sync_settings

    def set_sync_settings(self, sync_pomodoro_with_timer=None, sync_countdown_with_timer=None):
        with self._transition():
            if sync_pomodoro_with_timer is not None:
                self.sync_settings.sync_pomodoro_with_timer = bool(sync_pomodoro_with_timer)
            if sync_countdown_with_timer is not None:
                self.sync_settings.sync_countdown_with_timer = bool(sync_countdown_with_timer)
            self._dirty = True
            self._emit(TimerEvent.SETTINGS_CHANGED, None, **self.sync_settings.to_dict())

    def set_session_sync_settings(self, session_id, settings):
        with self._transition():
            self.session_sync_settings[session_id] = settings
            self._dirty = True
            self._emit(TimerEvent.SETTINGS_CHANGED, None, session_id=session_id, **settings.to_dict())

    def clear_session_sync_settings(self, session_id):
        with self._transition():
            if self.session_sync_settings.pop(session_id, None) is not None:
                self._dirty = True
                self._emit(TimerEvent.SETTINGS_CHANGED, None, session_id=session_id, cleared=True)

    # Binds (or with None, unbinds) the live session. `task_ids` are kept alongside the id so a session left behind
    # by a crash can still have its tasks cleaned up; omitting them keeps whatever was bound before.
    def bind_session(self, session_id, status, task_ids=None):
        with self._transition():
            self.active_session_id = session_id
            if session_id is None:
                self.active_session_task_ids = []
            elif task_ids is not None:
                self.active_session_task_ids = sorted(task_ids, key=str)
            self.session_status = SessionStatus(status)
            self._dirty = True
            self._emit(TimerEvent.SESSION_CHANGED, TimerKind.STUDY,
                       session_id=session_id, status=self.session_status.value)

    # Bookkeeping once a session has been finalized: one more session today, and the per-session pomodoro count
    # starts over.
    def note_session_finished(self):
        with self._transition():
            self.stats.roll_over(self._today())
            self.stats.sessions_today += 1
            self.pomodoro.pomodoros_this_session = 0
            self._dirty = True

    #endregion === Sync settings and session binding ===

    #region === Persistence ===

    # The paused-equivalent projection of everything worth keeping. Running timers report what they'd have banked
    # if paused right now, but nothing is mutated and no run timestamps are included.
    def snapshot(self):
        now = self._clock()
        pomodoro_banked = min(self.pomodoro.elapsed(now), self.pomodoro.budget)
        if self.countdown.running:
            paused_left = self.countdown.remaining(now)
        else:
            paused_left = self.countdown.paused_seconds_left
        self.stats.roll_over(self._today())
        return {
            "meta": {"schema_version": _SCHEMA_VERSION},
            "settings": dict(self.settings),
            "study": {
                "accumulated_seconds": self.study.elapsed(now),
                "session_status": self.session_status.value,
            },
            "pomodoro": {
                "accumulated_seconds": pomodoro_banked,
                "phase": self.pomodoro.phase.value,
                "mode_index": self.pomodoro.mode_index,
                "work_sessions_completed": self.pomodoro.work_sessions_completed,
                "work_sessions_before_long_break": self.pomodoro.work_sessions_before_long_break,
                "pomodoros_this_session": self.pomodoro.pomodoros_this_session,
                "modes": [p.to_dict() for p in self.pomodoro.modes],
            },
            "countdown": {
                "paused_seconds_left": paused_left,
                "last_configured_duration": self.countdown.duration,
            },
            "sync_settings": self.sync_settings.to_dict(),
            "session_sync_settings": {sid: s.to_dict() for sid, s in self.session_sync_settings.items()},
            "active_session_id": self.active_session_id,
            "active_session_task_ids": list(self.active_session_task_ids),
            "stats": asdict(self.stats),
        }

    # Loads a snapshot (as produced by `snapshot()`) into the store. Every timer comes back not running: paused if
    # it has banked progress, stopped otherwise. Nothing is emitted and nothing is written.
    def restore(self, state):
        study = state["study"]
        self.study = TimerRecord(TimerKind.STUDY, Rounding.FLOOR, study["accumulated_seconds"])
        self.study.settle()

        pom = state["pomodoro"]
        self.pomodoro = PomodoroCycleState(
            modes=[PomodoroPreset.from_dict(m) for m in pom["modes"]],
            mode_index=pom["mode_index"],
            phase=pom["phase"],
            accumulated=pom["accumulated_seconds"],
            work_sessions_completed=pom["work_sessions_completed"],
            work_sessions_before_long_break=pom["work_sessions_before_long_break"],
            pomodoros_this_session=pom["pomodoros_this_session"],
        )
        self.pomodoro.settle()

        cd = state["countdown"]
        self.countdown = CountdownState(cd["last_configured_duration"], cd["paused_seconds_left"])
        self.countdown.settle()

        self.settings = dict(state.get("settings", {}))
        self.sync_settings = SyncSettings.from_dict(state["sync_settings"])
        self.session_sync_settings = {sid: SyncSettings.from_dict(s)
                                      for sid, s in state["session_sync_settings"].items()}
        self.active_session_id = state["active_session_id"]
        self.active_session_task_ids = list(state.get("active_session_task_ids", []))
        self.session_status = SessionStatus(study["session_status"])
        stats = state["stats"]
        self.stats = DailyStats(stats["date"], int(stats["pomodoros_today"]), int(stats["sessions_today"]))
        self.stats.roll_over(self._today())
        self._dirty = False

    # Writes the current snapshot if anything changed since the last successful write. A failed write is logged and
    # the store stays dirty, so the next transition tries again; in-memory state stays authoritative meanwhile.
    def flush(self, force=False):
        if not (self._dirty or force):
            return True
        if self._writer is None:
            self._dirty = False
            return True
        try:
            self._writer(self.snapshot())
        except PersistenceFailure:
            log.warning("Failed to persist timer state, will retry on the next transition", exc_info=True)
            self._dirty = True
            return False
        self._dirty = False
        return True

    @property
    def dirty(self):
        return self._dirty

    #endregion === Persistence ===
