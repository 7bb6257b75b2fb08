"""Startup restore of persisted timer state.

Whatever was on disk, timers come back *not running*: a run timestamp from a
previous process is meaningless since the tick source that kept it honest is
gone. The seconds banked before that point are still real though, and are
restored exactly. Anything unreadable falls back to defaults instead of
stopping the app from starting.
"""

import math
from st.common.logger import log
from st.core import config
from st.core.timer_state import CUSTOM_LABEL, PomodoroPhase, PomodoroPreset, SessionStatus, default_presets
from st.util import today_iso


def _number(section, key, default, defaulted, prefix, allow_none=False):
    value = section.get(key, default)
    if value is None and allow_none:
        return None
    if isinstance(value, bool) or not isinstance(value, (int, float)) or not _finite(value) or value < 0:
        defaulted.add(f"{prefix}.{key}")
        return default
    return value


# 1e999 in JSON loads as inf, and a huge integer literal overflows float conversion. Neither is a usable value here.
def _finite(value):
    try:
        return math.isfinite(value)
    except OverflowError:
        return False


def _is_task_id(value):
    return isinstance(value, (str, int)) and not isinstance(value, bool)


# Reconciles a stored preset list with the built-in one. The built-ins always win; only the user's Custom durations
# are carried over. A list with the wrong number of entries (presets from an older release) is replaced outright.
def reconcile_presets(raw_modes, defaulted):
    presets = default_presets()
    if not isinstance(raw_modes, list):
        defaulted.add("pomodoro.modes")
        return presets
    if len(raw_modes) != len(presets):
        defaulted.add("pomodoro.modes")
    for raw in raw_modes:
        if isinstance(raw, dict) and raw.get("label") == CUSTOM_LABEL:
            try:
                presets[-1] = PomodoroPreset.from_dict(raw)
            except (KeyError, TypeError, ValueError, OverflowError):
                defaulted.add("pomodoro.modes.custom")
    return presets


# Turns whatever config.load_state() returned into a clean snapshot in the shape TimerStore.restore() expects.
def project_state(state, today=None):
    defaulted = set()
    fresh = config.build_default_state()
    today = today or today_iso()

    study = state.get("study") if isinstance(state.get("study"), dict) else {}
    pom = state.get("pomodoro") if isinstance(state.get("pomodoro"), dict) else {}
    cd = state.get("countdown") if isinstance(state.get("countdown"), dict) else {}
    stats = state.get("stats") if isinstance(state.get("stats"), dict) else {}

    presets = reconcile_presets(pom.get("modes"), defaulted)
    mode_index = pom.get("mode_index", 0)
    if isinstance(mode_index, bool) or not isinstance(mode_index, int) or not 0 <= mode_index < len(presets):
        defaulted.add("pomodoro.mode_index")
        mode_index = 0
    phase = pom.get("phase", PomodoroPhase.WORK.value)
    if phase not in {p.value for p in PomodoroPhase}:
        defaulted.add("pomodoro.phase")
        phase = PomodoroPhase.WORK.value
    budget = presets[mode_index].budget(PomodoroPhase(phase))

    duration = _number(cd, "last_configured_duration", fresh["countdown"]["last_configured_duration"], defaulted,
                       "countdown")
    if duration <= 0:
        defaulted.add("countdown.last_configured_duration")
        duration = fresh["countdown"]["last_configured_duration"]

    sync = state.get("sync_settings") if isinstance(state.get("sync_settings"), dict) else fresh["sync_settings"]
    session_sync = state.get("session_sync_settings")
    if not isinstance(session_sync, dict):
        session_sync = {}
    session_sync = {str(sid): s for sid, s in session_sync.items() if isinstance(s, dict)}

    active_session_id = state.get("active_session_id")
    if active_session_id is not None and not isinstance(active_session_id, (str, int)):
        defaulted.add("active_session_id")
        active_session_id = None
    task_ids = state.get("active_session_task_ids")
    if active_session_id is None or task_ids is None:
        task_ids = []
    elif not isinstance(task_ids, list) or not all(_is_task_id(t) for t in task_ids):
        defaulted.add("active_session_task_ids")
        task_ids = []

    stats_date = stats.get("date") if isinstance(stats.get("date"), str) else today
    settings = config.default_settings()
    if isinstance(state.get("settings"), dict):
        settings.update(state["settings"])

    projected = {
        "meta": fresh["meta"],
        "settings": settings,
        "study": {
            "accumulated_seconds": float(_number(study, "accumulated_seconds", 0.0, defaulted, "study")),
            # Nothing is live after a restart
            "session_status": SessionStatus.INACTIVE.value,
        },
        "pomodoro": {
            "accumulated_seconds": min(float(_number(pom, "accumulated_seconds", 0.0, defaulted, "pomodoro")),
                                       budget),
            "phase": phase,
            "mode_index": mode_index,
            "work_sessions_completed": int(_number(pom, "work_sessions_completed", 0, defaulted, "pomodoro")),
            "work_sessions_before_long_break": max(1, int(_number(
                pom, "work_sessions_before_long_break",
                fresh["pomodoro"]["work_sessions_before_long_break"], defaulted, "pomodoro"))),
            "pomodoros_this_session": int(_number(pom, "pomodoros_this_session", 0, defaulted, "pomodoro")),
            "modes": [p.to_dict() for p in presets],
        },
        "countdown": {
            "paused_seconds_left": _number(cd, "paused_seconds_left", None, defaulted, "countdown", allow_none=True),
            "last_configured_duration": float(duration),
        },
        "sync_settings": sync,
        "session_sync_settings": session_sync,
        "active_session_id": active_session_id,
        "active_session_task_ids": task_ids,
        "stats": {
            "date": stats_date,
            "pomodoros_today": int(_number(stats, "pomodoros_today", 0, defaulted, "stats")),
            "sessions_today": int(_number(stats, "sessions_today", 0, defaulted, "stats")),
        },
    }
    return projected, defaulted


class RehydrationManager:

    def __init__(self, store, loader=None):
        self._store = store
        self._loader = loader or config.load_state
        self.done = False

    # Restores the store from disk. Must run before anything else reads the store; calling it a second time does
    # nothing, since by then the in-memory state is the newer one.
    def run(self):
        if self.done:
            log.warning("Rehydration already ran for this store, ignoring repeat call")
            return self._store
        try:
            state = self._loader()
            if not isinstance(state, dict):
                raise TypeError(f"Persisted state is {type(state).__name__}, expected a dict")
            projected, defaulted = project_state(state)
            self._store.restore(projected)
        except (KeyError, TypeError, ValueError, OverflowError):
            log.warning("Persisted timer state was unusable, starting from defaults", exc_info=True)
            projected, defaulted = project_state(config.build_default_state())
            self._store.restore(projected)
        self.done = True

        if defaulted:
            log.warning(f"Rehydrated with defaulted values: {', '.join(sorted(defaulted))}")
        log.info(f"Rehydrated timers: study {self._store.study.accumulated:.1f}s banked "
                 f"({self._store.study.status.value}), pomodoro {self._store.pomodoro.phase.value} "
                 f"({self._store.pomodoro.status.value}), countdown {self._store.countdown.status.value}, "
                 f"bound session {self._store.active_session_id}")
        return self._store
