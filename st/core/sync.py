from st.common.logger import log
from st.core.store import TimerEvent
from st.core.timer_state import TimerKind

# Which store operation a study-timer event turns into on each subordinate.
_CASCADE = {
    TimerEvent.STARTED: "start",
    TimerEvent.PAUSED: "pause",
    TimerEvent.RESET: "reset",
}

# Mirrors study-timer transitions onto the pomodoro and/or countdown timers, depending on the effective sync
# settings. Only the study timer drives; it listens to nothing else, so a subordinate pausing (say, a finished
# break) can never bounce back and pause the study timer.
class SyncCoordinator:

    def __init__(self, store):
        self._store = store
        self._unsubscribe = None

    def attach(self):
        if self._unsubscribe is None:
            self._unsubscribe = self._store.subscribe(self._on_study_signal, kind=TimerKind.STUDY)
        return self

    def detach(self):
        if self._unsubscribe is not None:
            self._unsubscribe()
            self._unsubscribe = None

    @staticmethod
    def subordinates(settings):
        kinds = []
        if settings.sync_pomodoro_with_timer:
            kinds.append(TimerKind.POMODORO)
        if settings.sync_countdown_with_timer:
            kinds.append(TimerKind.COUNTDOWN)
        return kinds

    def _on_study_signal(self, signal):
        operation = _CASCADE.get(signal.event)
        if operation is None:
            return
        # Each subordinate is independent of the other, order doesn't matter
        for kind in self.subordinates(self._store.effective_sync_settings()):
            log.debug(f"Cascading study {signal.event.value} -> {operation} {kind.value}")
            getattr(self._store, operation)(kind)
