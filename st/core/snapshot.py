import copy
import json
import time
from datetime import datetime
from pathlib import Path
from st.common.logger import log

# Exponential-ish time-tier targets in seconds.  For each tier we keep the snapshot whose
# timestamp is closest to (now - tier).
TIERS = [
    5 * 60,       # ~5 minutes ago
    10 * 60,      # ~10 minutes ago
    20 * 60,      # ~20 minutes ago
    60 * 60,      # ~1 hour ago
    6 * 3600,     # ~6 hours ago
    24 * 3600,    # ~1 day ago
    2 * 86400,    # ~2 days ago
    4 * 86400,    # ~4 days ago
]

_PREFIX = "state_"
_STAMP = "%Y%m%d_%H%M%S_%f"

# Extracts and returns the datetime from a given snapshot's filename, such as state_20260212_140311_123456.json ->
# 2/12/2026, 2:03PM, 11.123456 seconds. None for anything that isn't one of ours.
def parse_snapshot_time(filename):
    name = Path(filename).name
    if not name.startswith(_PREFIX) or not name.endswith(".json"):
        return None
    try:
        return datetime.strptime(name[len(_PREFIX):-len(".json")], _STAMP)
    except ValueError:
        return None


# Keeps point-in-time copies of the persisted timer state next to the live state.json, so a bad write or a mistaken
# reset can be rolled back by hand. Low priority snapshots are rate limited, high priority ones (app exit, finished
# session) always go through.
class SnapshotHistory:

    def __init__(self, directory, min_minutes=5, debounce_seconds=10.0, clock=time.monotonic):
        self.directory = Path(directory)
        self.min_minutes = min_minutes
        self.debounce_seconds = debounce_seconds
        self._clock = clock
        self._last_taken = None

    # Writes a full copy of `state` unconditionally and returns its path.
    def take(self, state, reason, priority="normal"):
        self.directory.mkdir(parents=True, exist_ok=True)
        snap = copy.deepcopy(state)
        snap.setdefault("meta", {})["snapshot_reason"] = reason
        snap["meta"]["snapshot_priority"] = priority

        target_path = self.directory / f"{_PREFIX}{datetime.now().strftime(_STAMP)}.json"
        with open(target_path, "w", encoding="utf-8") as f:
            json.dump(snap, f, indent=2)
        self._last_taken = self._clock()
        log.debug(f"Saved snapshot for reason '{reason}', priority '{priority}' to {target_path}")
        return target_path

    # Takes a snapshot only if enough time has passed for its priority, then prunes. Returns the path or None.
    def maybe_take(self, state, reason, priority="low"):
        now = self._clock()
        since = float("inf") if self._last_taken is None else now - self._last_taken
        if ((priority == "low" and since > self.min_minutes * 60)
                or (priority == "medium" and since > self.debounce_seconds)
                or priority == "high"):
            path = self.take(state, reason, priority)
            self.prune()
            return path
        return None

    # Use time-tier retention to remove all snapshots that don't best fit any tier. The newest snapshot is always
    # kept, plus whichever snapshot is closest to each tier in TIERS.
    def prune(self, now=None):
        if not self.directory.is_dir():
            return 0
        entries = []
        for path in self.directory.iterdir():
            ts = parse_snapshot_time(path.name)
            if ts is not None:
                entries.append((path, ts))
        if len(entries) <= 1:
            return 0

        entries.sort(key=lambda e: e[1], reverse=True)
        now = now or datetime.now()
        keep = {entries[0][0]}
        for tier_secs in TIERS:
            target = now.timestamp() - tier_secs
            best = min(entries, key=lambda e: abs(e[1].timestamp() - target))
            keep.add(best[0])

        pruned_count = 0
        for path, _ in entries:
            if path not in keep:
                try:
                    path.unlink()
                    pruned_count += 1
                except OSError:
                    log.warning(f"Could not prune snapshot '{path}'", exc_info=True)
        if pruned_count > 0:
            log.info(f"Pruned {pruned_count} snapshot(s) from '{self.directory}'")
        return pruned_count

    def latest(self):
        if not self.directory.is_dir():
            return None
        stamped = [(parse_snapshot_time(p.name), p) for p in self.directory.iterdir()]
        stamped = [e for e in stamped if e[0] is not None]
        return max(stamped)[1] if stamped else None
