import sys
from PySide6.QtCore import Qt, QTimer, Signal
from PySide6.QtWidgets import (
    QApplication,
    QCheckBox,
    QComboBox,
    QGridLayout,
    QHBoxLayout,
    QInputDialog,
    QLabel,
    QLineEdit,
    QMainWindow,
    QMessageBox,
    QPushButton,
    QSpinBox,
    QVBoxLayout,
    QWidget,
)
from st.backend import backend_from_settings
from st.common.errors import InvalidInput, InvalidTransition, PersistenceFailure
from st.common.logger import log
from st.core import config
from st.core.driver import PrecisionTimerDriver, QtTickSource
from st.core.rehydrate import RehydrationManager
from st.core.session import SessionController
from st.core.snapshot import SnapshotHistory
from st.core.store import TimerEvent, TimerStore
from st.core.sync import SyncCoordinator
from st.core.timer_state import SessionStatus, TimerKind, TimerStatus
from st.util import format_hms, parse_hms

_PHASE_TITLES = {"work": "Focus", "break": "Short Break", "long_break": "Long Break"}


# Main window of the study tracker. Three timer rows (study, pomodoro, countdown), the session controls and the
# sync toggles. All the actual timing lives in the store; this only renders readings and forwards clicks.
class MainWindow(QMainWindow):

    # Carries a finished fetch Future from the backend worker thread back to the UI thread
    history_fetched = Signal(object)

    def __init__(self, store=None, backend=None, snapshots=None):
        super().__init__()
        self.setWindowTitle("Study Tracker")

        # -- Restore everything before anything reads the store --
        self.store = store or TimerStore(writer=config.save_state, settings=config.default_settings())
        RehydrationManager(self.store).run()
        s = self.store.settings
        if s.get("always_on_top", False):
            self.setWindowFlags(self.windowFlags() | Qt.WindowStaysOnTopHint)

        self.backend = backend or backend_from_settings(s)
        self.controller = SessionController(self.store, self.backend)
        self.coordinator = SyncCoordinator(self.store).attach()
        self.snapshots = snapshots or SnapshotHistory(config.SNAPSHOT_DIR,
                                                      min_minutes=s.get("snapshot_min_minutes", 5))

        self._build_ui()

        # -- One driver per timer, each on its own tick source --
        self.drivers = {}
        for kind in TimerKind:
            ticks = QtTickSource.from_settings(s, self)
            self.drivers[kind] = PrecisionTimerDriver(self.store, kind, ticks, self._on_reading).attach()
        self._unsubscribe = self.store.subscribe(self._on_signal)

        for kind in TimerKind:
            self._on_reading(self.store.read(kind))
        self._refresh_session_controls()

        # Autosave only matters while something runs; transitions already persist on their own
        self._autosave = QTimer(self)
        self._autosave.setInterval(int(s.get("autosave_seconds", 20)) * 1000)
        self._autosave.timeout.connect(self._on_autosave)
        self._autosave.start()

        self._closing = False
        self.history_fetched.connect(self._show_session_history)
        self._refresh_session_history()

        if self.controller.has_orphaned_session:
            QTimer.singleShot(0, self._ask_about_orphaned_session)

    #region === Layout ===

    def _build_ui(self):
        central = QWidget()
        root = QVBoxLayout(central)
        grid = QGridLayout()
        root.addLayout(grid)

        self.time_labels = {}
        self.status_labels = {}
        self.start_buttons = {}
        titles = {TimerKind.STUDY: "Study", TimerKind.POMODORO: "Pomodoro", TimerKind.COUNTDOWN: "Countdown"}
        for row, kind in enumerate(TimerKind):
            grid.addWidget(QLabel(titles[kind]), row, 0)
            time_label = QLabel("00:00:00")
            time_label.setStyleSheet("font-size: 20pt; font-family: monospace;")
            grid.addWidget(time_label, row, 1)
            status_label = QLabel("")
            grid.addWidget(status_label, row, 2)
            self.time_labels[kind] = time_label
            self.status_labels[kind] = status_label

            # Study time is driven by the session buttons, not directly
            if kind == TimerKind.STUDY:
                continue
            start_btn = QPushButton("Start")
            start_btn.clicked.connect(lambda _=False, k=kind: self._on_start_pause(k))
            reset_btn = QPushButton("Reset")
            reset_btn.clicked.connect(lambda _=False, k=kind: self.store.reset(k))
            grid.addWidget(start_btn, row, 3)
            grid.addWidget(reset_btn, row, 4)
            self.start_buttons[kind] = start_btn

        # -- Pomodoro presets --
        preset_row = QHBoxLayout()
        self.mode_combo = QComboBox()
        for preset in self.store.pomodoro.modes:
            self.mode_combo.addItem(preset.label)
        self.mode_combo.setCurrentIndex(self.store.pomodoro.mode_index)
        self.mode_combo.currentIndexChanged.connect(self._on_mode_selected)
        preset_row.addWidget(self.mode_combo)

        custom = self.store.pomodoro.modes[-1]
        self.custom_work = QSpinBox()
        self.custom_work.setRange(0, 600)
        self.custom_work.setSuffix(" min work")
        self.custom_work.setValue(int(custom.work_seconds // 60))
        self.custom_break = QSpinBox()
        self.custom_break.setRange(0, 600)
        self.custom_break.setSuffix(" min break")
        self.custom_break.setValue(int(custom.break_seconds // 60))
        apply_btn = QPushButton("Apply Custom")
        apply_btn.clicked.connect(self._on_apply_custom)
        preset_row.addWidget(self.custom_work)
        preset_row.addWidget(self.custom_break)
        preset_row.addWidget(apply_btn)
        root.addLayout(preset_row)
        self.custom_error = QLabel("")
        self.custom_error.setStyleSheet("color: #c0392b;")
        root.addWidget(self.custom_error)

        # -- Countdown duration --
        countdown_row = QHBoxLayout()
        self.countdown_input = QLineEdit(format_hms(self.store.countdown.duration))
        set_duration_btn = QPushButton("Set Countdown")
        set_duration_btn.clicked.connect(self._on_set_countdown)
        countdown_row.addWidget(self.countdown_input)
        countdown_row.addWidget(set_duration_btn)
        root.addLayout(countdown_row)

        # -- Sync toggles --
        sync = self.store.sync_settings
        self.sync_pomodoro = QCheckBox("Sync pomodoro with study timer")
        self.sync_pomodoro.setChecked(sync.sync_pomodoro_with_timer)
        self.sync_pomodoro.toggled.connect(lambda on: self.store.set_sync_settings(sync_pomodoro_with_timer=on))
        self.sync_countdown = QCheckBox("Sync countdown with study timer")
        self.sync_countdown.setChecked(sync.sync_countdown_with_timer)
        self.sync_countdown.toggled.connect(lambda on: self.store.set_sync_settings(sync_countdown_with_timer=on))
        root.addWidget(self.sync_pomodoro)
        root.addWidget(self.sync_countdown)

        # -- Session controls --
        session_row = QHBoxLayout()
        self.session_label = QLabel("No active session")
        self.start_session_btn = QPushButton("Start Session")
        self.start_session_btn.clicked.connect(self._on_start_session)
        self.pause_session_btn = QPushButton("Pause")
        self.pause_session_btn.clicked.connect(self._on_pause_resume_session)
        self.finish_session_btn = QPushButton("Finish")
        self.finish_session_btn.clicked.connect(self._on_finish_session)
        root.addWidget(self.session_label)
        session_row.addWidget(self.start_session_btn)
        session_row.addWidget(self.pause_session_btn)
        session_row.addWidget(self.finish_session_btn)
        root.addLayout(session_row)

        self.stats_label = QLabel("")
        root.addWidget(self.stats_label)
        self.history_label = QLabel("")
        root.addWidget(self.history_label)
        self.setCentralWidget(central)

    #endregion === Layout ===

    #region === Store callbacks ===

    def _on_reading(self, reading):
        self.time_labels[reading.kind].setText(format_hms(reading.display))
        status = reading.status.value.capitalize()
        if reading.kind == TimerKind.POMODORO:
            status = f"{_PHASE_TITLES.get(reading.phase, reading.phase)} ({status})"
        self.status_labels[reading.kind].setText(status)
        button = self.start_buttons.get(reading.kind)
        if button is not None:
            button.setText("Pause" if reading.status == TimerStatus.RUNNING else "Start")

    def _on_signal(self, signal):
        if signal.event == TimerEvent.SESSION_CHANGED:
            self._refresh_session_controls()
        elif signal.event == TimerEvent.PHASE_COMPLETED:
            self.statusBar().showMessage(
                f"{_PHASE_TITLES[signal.detail['finished']]} finished, "
                f"{_PHASE_TITLES[signal.detail['next']].lower()} next", 10000)
            self._refresh_stats()
        elif signal.event == TimerEvent.COUNTDOWN_FINISHED:
            self.statusBar().showMessage("Countdown finished", 10000)
            if self.store.settings.get("countdown_alarm_enabled", True):
                QApplication.beep()
        elif signal.event in (TimerEvent.STARTED, TimerEvent.PAUSED, TimerEvent.RESET) and signal.kind is not None:
            self._on_reading(self.store.read(signal.kind))

    def _refresh_session_controls(self):
        status = self.controller.status
        session = self.controller.session
        if session is None:
            self.session_label.setText("No active session")
        else:
            self.session_label.setText(f"{session.title} ({status.value})")
        self.start_session_btn.setEnabled(status == SessionStatus.INACTIVE and not self.controller.has_orphaned_session)
        self.pause_session_btn.setEnabled(status != SessionStatus.INACTIVE)
        self.pause_session_btn.setText("Resume" if status == SessionStatus.PAUSED else "Pause")
        self.finish_session_btn.setEnabled(status != SessionStatus.INACTIVE)
        self._refresh_stats()

    def _refresh_stats(self):
        stats = self.store.daily_stats()
        self.stats_label.setText(f"Today: {stats.pomodoros_today} pomodoro(s), {stats.sessions_today} session(s)")

    # Today's sessions as the backend has them. Runs on the backend's worker pool; asking again while a fetch is still
    # out joins it instead of starting another.
    def _refresh_session_history(self):
        future = self.backend.refresh_sessions()
        future.add_done_callback(self._on_history_done)
        return future

    def _on_history_done(self, future):
        if not self._closing:
            self.history_fetched.emit(future)

    def _show_session_history(self, future):
        try:
            rows = future.result()
        except PersistenceFailure as e:
            log.warning(f"Could not load today's sessions: {e}")
            self.history_label.setText("Session history unavailable")
            return
        finished = sum(1 for row in rows if row.get("ended") or row.get("ended_at"))
        self.history_label.setText(f"Logged today: {len(rows)} session(s), {finished} finished")

    #endregion === Store callbacks ===

    #region === User actions ===

    def _on_start_pause(self, kind):
        if self.store.status(kind) == TimerStatus.RUNNING:
            self.store.pause(kind)
        else:
            self.store.start(kind)

    def _on_mode_selected(self, index):
        if index < 0 or index == self.store.pomodoro.mode_index:
            return
        self.store.set_mode(TimerKind.POMODORO, index)

    def _on_apply_custom(self):
        try:
            self.store.set_custom_pomodoro_mode(self.custom_work.value() * 60, self.custom_break.value() * 60)
        except InvalidInput:
            self.custom_error.setText("Work and break durations must both be at least one minute.")
            return
        self.custom_error.setText("")
        self.mode_combo.blockSignals(True)
        self.mode_combo.setCurrentIndex(self.store.pomodoro.mode_index)
        self.mode_combo.blockSignals(False)

    def _on_set_countdown(self):
        seconds = parse_hms(self.countdown_input.text())
        try:
            self.store.set_countdown_duration(seconds)
        except InvalidInput:
            QMessageBox.warning(self, "Invalid Duration", "Enter a duration like 01:30:00, 45:00 or 90.")
            return
        self.countdown_input.setText(format_hms(seconds))

    def _on_start_session(self):
        title, ok = QInputDialog.getText(self, "Start Session", "What are you studying?")
        if not ok:
            return
        try:
            self.controller.start_session(title)
        except InvalidInput as e:
            QMessageBox.warning(self, "Start Session", str(e))
        except PersistenceFailure as e:
            QMessageBox.warning(self, "Start Session", f"Could not create the session:\n{e}")
        else:
            self._refresh_session_history()
        self._refresh_session_controls()

    def _on_pause_resume_session(self):
        try:
            if self.controller.status == SessionStatus.PAUSED:
                self.controller.resume_session()
            else:
                self.controller.pause_session()
        except InvalidTransition as e:
            log.warning(f"Ignored session button press: {e}")
        self._refresh_session_controls()

    def _on_finish_session(self):
        try:
            summary = self.controller.finish_session()
        except InvalidTransition as e:
            log.warning(f"Ignored finish press: {e}")
            return
        except PersistenceFailure as e:
            QMessageBox.warning(self, "Finish Session",
                                f"Could not save the session, it is still open so you can retry:\n{e}")
            return
        self._try_snapshot(reason="session_finished", priority="high")
        self._refresh_session_history()
        QMessageBox.information(self, "Session Finished",
                                f"{summary.title}\n\nStudied {format_hms(summary.duration_seconds)}\n"
                                f"Pomodoros: {summary.pomodoros}\nTasks completed: {summary.tasks_completed}")
        self._refresh_session_controls()

    def _ask_about_orphaned_session(self):
        answer = QMessageBox.question(
            self, "Unfinished Session",
            f"A study session from last time was never finished ({format_hms(self.store.read(TimerKind.STUDY).display)}"
            f" recorded). Pick it back up?",
        )
        if answer == QMessageBox.Yes:
            title, _ = QInputDialog.getText(self, "Resume Session", "Session title:")
            self.controller.reattach_session(title)
        else:
            self.controller.discard_orphaned_session()
            self._refresh_session_history()
        self._refresh_session_controls()

    #endregion === User actions ===

    #region === Saving ===

    def _on_autosave(self):
        if any(self.store.status(kind) == TimerStatus.RUNNING for kind in TimerKind):
            self.store.flush(force=True)
            self._try_snapshot(reason="autosave")

    def _try_snapshot(self, reason, priority="low"):
        return self.snapshots.maybe_take(self.store.snapshot(), reason, priority)

    def closeEvent(self, event):
        self._closing = True
        self._autosave.stop()
        for driver in self.drivers.values():
            driver.detach()
        self.coordinator.detach()
        self._unsubscribe()
        try:
            if not self.store.flush(force=True):
                raise PersistenceFailure("state.json could not be written, see the log for details")
            self._try_snapshot(reason="app_exit", priority="high")
        except (PersistenceFailure, OSError) as e:
            QMessageBox.warning(self, "Save Error",
                                f"Failed to save state:\n{e}")
        self.backend.close()
        event.accept()

    #endregion === Saving ===


def main():
    app = QApplication(sys.argv)
    window = MainWindow()
    window.show()
    sys.exit(app.exec())
