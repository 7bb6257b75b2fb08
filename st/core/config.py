import copy
import json
from st.common.errors import PersistenceFailure
from st.common.logger import log
from st.common.setup import PATHS
from st.core.timer_state import (DEFAULT_COUNTDOWN_SECONDS, DEFAULT_WORK_SESSIONS_BEFORE_LONG_BREAK,
                                 PomodoroPhase, default_presets)
from st.util import now_iso, today_iso


_SCHEMA_VERSION = 1

#region === Helpers and Paths ===

STATE_PATH = PATHS.state_file
SNAPSHOT_DIR = PATHS.snapshots

# Default values just for the settings section of the state dict.
_SETTINGS_DEFAULTS = {
    "tick_mode": "frame",          # "frame" (~display refresh) or "interval"
    "frame_interval_ms": 16,
    "fixed_interval_ms": 100,
    "autosave_seconds": 20,
    "snapshot_min_minutes": 5,
    "countdown_alarm_enabled": True,
    "always_on_top": False,
    "backend_url": "",
    "backend_key": "",
}
_SYNC_DEFAULTS = {
    "sync_pomodoro_with_timer": False,
    "sync_countdown_with_timer": False,
}

# Helper to return a truly fresh, default state. Every timer zeroed, first pomodoro preset selected.
def build_default_state():
    return {
        "meta": {
            "schema_version": _SCHEMA_VERSION,
            "saved_at": now_iso(),
        },
        "settings": dict(_SETTINGS_DEFAULTS),
        "study": {
            "accumulated_seconds": 0.0,
            "session_status": "inactive",
        },
        "pomodoro": {
            "accumulated_seconds": 0.0,
            "phase": PomodoroPhase.WORK.value,
            "mode_index": 0,
            "work_sessions_completed": 0,
            "work_sessions_before_long_break": DEFAULT_WORK_SESSIONS_BEFORE_LONG_BREAK,
            "pomodoros_this_session": 0,
            "modes": [p.to_dict() for p in default_presets()],
        },
        "countdown": {
            "paused_seconds_left": None,
            "last_configured_duration": float(DEFAULT_COUNTDOWN_SECONDS),
        },
        "sync_settings": dict(_SYNC_DEFAULTS),
        "session_sync_settings": {},
        "active_session_id": None,
        "active_session_task_ids": [],
        "stats": {
            "date": today_iso(),
            "pomodoros_today": 0,
            "sessions_today": 0,
        },
    }

# Just the settings section, for things (like the UI) that only care about that.
def default_settings():
    return dict(_SETTINGS_DEFAULTS)

#endregion === Helpers and Paths ===

#region === Saving and Loading State ===

# Fills any missing or mistyped section of `state` from `defaults`, recording what had to be defaulted. Sections
# that are dicts get their missing keys filled individually rather than being thrown out wholesale.
def _fill_defaults(state, defaults, defaulted_values, prefix=""):
    for key, default in defaults.items():
        dotted = f"{prefix}{key}"
        if key not in state:
            defaulted_values.add(dotted)
            state[key] = copy.deepcopy(default)
        elif isinstance(default, dict):
            if not isinstance(state[key], dict):
                defaulted_values.add(dotted)
                state[key] = copy.deepcopy(default)
            else:
                _fill_defaults(state[key], default, defaulted_values, prefix=f"{dotted}.")

# Loads the persisted state from STATE_PATH, making sure every section exists. A missing file just means a fresh
# install; an unreadable or corrupted one falls back to defaults with a warning, since losing a timer is better than
# refusing to start.
def load_state():
    try:
        if not STATE_PATH.exists():
            log.info(f"No existing state.json found at '{STATE_PATH}', loading fresh state dict.")
            return build_default_state()

        with open(STATE_PATH, "r", encoding="utf-8") as f:
            state = json.load(f)
        if not isinstance(state, dict):
            raise TypeError(f"state.json top level is {type(state).__name__}, expected an object")

        defaulted_values = set()
        _fill_defaults(state, build_default_state(), defaulted_values)
        if not isinstance(state["meta"].get("schema_version"), int):
            defaulted_values.add("meta.schema_version")
            state["meta"]["schema_version"] = _SCHEMA_VERSION

        if defaulted_values:
            log.warning(f"Loaded state dict from '{STATE_PATH}', but with missing values that were defaulted: "
                        f"{', '.join(sorted(defaulted_values))}")
        else:
            log.info(f"Successfully loaded state dict from '{STATE_PATH}'.")
        return state
    except (json.JSONDecodeError, OSError, TypeError, UnicodeDecodeError):
        log.warning("Ran into an error while trying to load state.json, falling back to a fresh state dict.",
                    exc_info=True)
        return build_default_state()

# Write the given state to STATE_PATH. Written to a sibling temp file first and swapped in, so a crash mid-write
# can't leave a half-written state.json behind.
def save_state(state):
    state.setdefault("meta", {})["saved_at"] = now_iso()
    tmp_path = STATE_PATH.with_suffix(".json.tmp")
    try:
        STATE_PATH.parent.mkdir(parents=True, exist_ok=True)
        with open(tmp_path, "w", encoding="utf-8") as f:
            json.dump(state, f, indent=2)
        tmp_path.replace(STATE_PATH)
    except (OSError, TypeError, ValueError) as e:
        raise PersistenceFailure(f"Could not write state to '{STATE_PATH}': {e}") from e
    log.debug(f"Saved state to '{STATE_PATH}'")

#endregion === Saving and Loading State ===
