"""Precision Timer Driver: samples one timer on a tick source and delivers readings.

One driver class serves all three timers; what differs per timer (count-up
vs count-down, rounding, what happens at zero) already lives in the store
and the records. Each tick is self-contained: sample, deliver, schedule the
next one. Stopping cancels the pending tick, so a torn-down driver can never
write into a record that has since been reset.
"""

from abc import ABC, abstractmethod
from PySide6.QtCore import Qt, QTimer
from st.common.logger import log
from st.core.store import TimerEvent
from st.core.timer_state import TimerKind, TimerStatus

FRAME_INTERVAL_MS = 16
FIXED_INTERVAL_MS = 100


class TickSource(ABC):

    @abstractmethod
    def schedule(self, callback):
        """Arrange for `callback()` to run once, one tick from now."""

    @abstractmethod
    def cancel(self):
        """Drop the pending tick, if any."""

    @property
    @abstractmethod
    def pending(self):
        """Whether a tick is currently scheduled."""


# Tick source on the Qt event loop. A single-shot precise QTimer per tick, re-armed by the driver after every
# sample, so a slow tick delays the next one instead of queueing them up.
class QtTickSource(TickSource):

    def __init__(self, interval_ms=FRAME_INTERVAL_MS, parent=None):
        self.interval_ms = int(interval_ms)
        self._timer = QTimer(parent)
        self._timer.setSingleShot(True)
        self._timer.setTimerType(Qt.TimerType.PreciseTimer)
        self._timer.setInterval(self.interval_ms)
        self._callback = None
        self._timer.timeout.connect(self._fire)

    def _fire(self):
        callback, self._callback = self._callback, None
        if callback is not None:
            callback()

    def schedule(self, callback):
        self._callback = callback
        self._timer.start()

    def cancel(self):
        self._timer.stop()
        self._callback = None

    @property
    def pending(self):
        return self._timer.isActive()

    # "frame" ticks at roughly display refresh rate, "interval" at a relaxed fixed rate.
    @staticmethod
    def from_settings(settings, parent=None):
        if settings.get("tick_mode") == "interval":
            return QtTickSource(settings.get("fixed_interval_ms", FIXED_INTERVAL_MS), parent)
        return QtTickSource(settings.get("frame_interval_ms", FRAME_INTERVAL_MS), parent)


class PrecisionTimerDriver:

    def __init__(self, store, kind, tick_source, callback):
        self._store = store
        self.kind = TimerKind(kind)
        self._ticks = tick_source
        self._callback = callback
        self._active = False
        self._unsubscribe = None

    @property
    def active(self):
        return self._active

    # Follows the store from here on: starts ticking when this timer starts, stops when it pauses or resets.
    def attach(self):
        if self._unsubscribe is None:
            self._unsubscribe = self._store.subscribe(self._on_signal, kind=self.kind)
        self.start()
        return self

    # Teardown. After this nothing scheduled by this driver can fire.
    def detach(self):
        if self._unsubscribe is not None:
            self._unsubscribe()
            self._unsubscribe = None
        self.stop()

    def start(self):
        if self._store.status(self.kind) != TimerStatus.RUNNING:
            return False
        if self._active:
            return True
        self._active = True
        log.debug(f"Driver for {self.kind.value} started")
        self._ticks.schedule(self._tick)
        return True

    def stop(self):
        self._ticks.cancel()
        if self._active:
            self._active = False
            log.debug(f"Driver for {self.kind.value} stopped")

    def _on_signal(self, signal):
        if signal.event == TimerEvent.STARTED:
            self.start()
        elif signal.event in (TimerEvent.PAUSED, TimerEvent.RESET, TimerEvent.COUNTDOWN_FINISHED,
                              TimerEvent.MODE_CHANGED):
            if self._store.status(self.kind) != TimerStatus.RUNNING:
                self.stop()
            # Push the settled value so the display doesn't sit on the last live one
            self._callback(self._store.read(self.kind))

    def sample(self):
        reading = self._store.read(self.kind)
        if reading.status == TimerStatus.RUNNING and reading.seconds <= 0:
            if self.kind == TimerKind.POMODORO:
                self._store.complete_phase(self.kind)
                reading = self._store.read(self.kind)
            elif self.kind == TimerKind.COUNTDOWN:
                self._store.expire_countdown()
                reading = self._store.read(self.kind)
        return reading

    def _tick(self):
        if not self._active:
            return
        if self._store.status(self.kind) != TimerStatus.RUNNING:
            self.stop()
            return
        reading = self.sample()
        self._callback(reading)
        if self._active and reading.status == TimerStatus.RUNNING:
            self._ticks.schedule(self._tick)
