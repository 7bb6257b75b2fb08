import timer_fakes  # noqa: F401
import unittest
from timer_fakes import FakeClock, RecordingWriter, make_store


class TestTransitions(unittest.TestCase):

    def setUp(self):
        self.clock = FakeClock()
        self.writer = RecordingWriter()
        self.store = make_store(self.clock, self.writer)
        self.signals = []
        self.store.subscribe(self.signals.append)

    def test_running_study_timer_reads_elapsed_seconds(self):
        from st.core.timer_state import TimerKind, TimerStatus
        self.store.start(TimerKind.STUDY)
        self.clock.advance(125.4)
        reading = self.store.read(TimerKind.STUDY)
        self.assertEqual(reading.display, 125)
        self.assertEqual(reading.status, TimerStatus.RUNNING)
        self.assertAlmostEqual(reading.seconds, 125.4)

    def test_reads_never_write(self):
        from st.core.timer_state import TimerKind
        self.store.start(TimerKind.STUDY)
        writes_after_start = len(self.writer.writes)
        for _ in range(50):
            self.clock.advance(0.016)
            self.store.read(TimerKind.STUDY)
        self.assertEqual(len(self.writer.writes), writes_after_start)

    def test_each_transition_writes_once(self):
        from st.core.timer_state import TimerKind
        self.store.start(TimerKind.STUDY)
        self.clock.advance(10)
        self.store.pause(TimerKind.STUDY)
        self.assertEqual(len(self.writer.writes), 2)
        self.assertEqual(self.writer.writes[-1]["study"]["accumulated_seconds"], 10.0)

    def test_noop_transition_does_not_write_or_notify(self):
        from st.core.timer_state import TimerKind
        self.assertFalse(self.store.pause(TimerKind.STUDY))
        self.assertEqual(self.writer.writes, [])
        self.assertEqual(self.signals, [])

    def test_transaction_coalesces_into_one_write(self):
        from st.core.store import SyncSettings
        from st.core.timer_state import SessionStatus, TimerKind
        with self.store.transaction():
            self.store.set_session_sync_settings("s1", SyncSettings(sync_pomodoro_with_timer=True))
            self.store.bind_session("s1", SessionStatus.ACTIVE)
            self.store.start(TimerKind.STUDY)
        self.assertEqual(len(self.writer.writes), 1)
        self.assertEqual(self.writer.writes[0]["active_session_id"], "s1")

    def test_failed_write_is_retried_on_next_transition(self):
        from st.core.timer_state import TimerKind
        writer = RecordingWriter(fail_times=1)
        store = make_store(self.clock, writer)
        with self.assertLogs("studytracker", level="WARNING"):
            store.start(TimerKind.STUDY)
        self.assertTrue(store.dirty)
        self.assertEqual(store.status(TimerKind.STUDY).value, "running")

        self.clock.advance(5)
        store.pause(TimerKind.STUDY)
        self.assertFalse(store.dirty)
        self.assertEqual(writer.attempts, 2)
        self.assertEqual(len(writer.writes), 1)

    def test_reset_always_notifies(self):
        from st.core.store import TimerEvent
        from st.core.timer_state import TimerKind
        self.store.reset(TimerKind.COUNTDOWN)
        self.assertEqual([(s.event, s.kind) for s in self.signals], [(TimerEvent.RESET, TimerKind.COUNTDOWN)])

    def test_broken_listener_does_not_break_the_transition(self):
        from st.core.timer_state import TimerKind

        def explode(signal):
            raise RuntimeError("boom")
        self.store.subscribe(explode)
        later = []
        self.store.subscribe(later.append)
        with self.assertLogs("studytracker", level="ERROR"):
            self.assertTrue(self.store.start(TimerKind.STUDY))
        self.assertEqual(len(later), 1)
        self.assertEqual(len(self.writer.writes), 1)

    def test_subscription_filters_and_unsubscribe(self):
        from st.core.store import TimerEvent
        from st.core.timer_state import TimerKind
        paused_pomodoro = []
        unsubscribe = self.store.subscribe(paused_pomodoro.append, event=TimerEvent.PAUSED, kind=TimerKind.POMODORO)
        self.store.start(TimerKind.POMODORO)
        self.store.start(TimerKind.STUDY)
        self.store.pause(TimerKind.STUDY)
        self.store.pause(TimerKind.POMODORO)
        self.assertEqual(len(paused_pomodoro), 1)
        unsubscribe()
        self.store.start(TimerKind.POMODORO)
        self.store.pause(TimerKind.POMODORO)
        self.assertEqual(len(paused_pomodoro), 1)


class TestPomodoroModes(unittest.TestCase):

    def setUp(self):
        self.clock = FakeClock()
        self.store = make_store(self.clock)

    def test_set_mode_validates_index_and_kind(self):
        from st.common.errors import InvalidInput
        from st.core.timer_state import TimerKind
        for bad in (-1, 4, 1.0, True, "1"):
            with self.subTest(index=bad):
                with self.assertRaises(InvalidInput):
                    self.store.set_mode(TimerKind.POMODORO, bad)
        with self.assertRaises(InvalidInput):
            self.store.set_mode(TimerKind.STUDY, 0)
        self.assertEqual(self.store.pomodoro.mode_index, 0)

    def test_set_mode_restarts_current_phase_and_keeps_running(self):
        from st.core.timer_state import TimerKind, TimerStatus
        self.store.start(TimerKind.POMODORO)
        self.clock.advance(100)
        self.store.set_mode(TimerKind.POMODORO, 1)
        self.assertEqual(self.store.status(TimerKind.POMODORO), TimerStatus.RUNNING)
        self.assertEqual(self.store.read(TimerKind.POMODORO).display, 50 * 60)
        self.clock.advance(30)
        self.assertEqual(self.store.read(TimerKind.POMODORO).display, 50 * 60 - 30)

    def test_custom_mode_rejects_non_positive_durations(self):
        from st.common.errors import InvalidInput
        for work, brk in ((0, 300), (600, -1), (600, 0), ("10", 60)):
            with self.subTest(work=work, brk=brk):
                with self.assertRaises(InvalidInput):
                    self.store.set_custom_pomodoro_mode(work, brk)
        self.assertEqual(self.store.pomodoro.modes[-1].work_seconds, 25 * 60)

    def test_custom_mode_is_selected_once_applied(self):
        self.store.set_custom_pomodoro_mode(600, 120)
        self.assertEqual(self.store.pomodoro.mode_index, 3)
        self.assertEqual(self.store.pomodoro.preset.label, "Custom")
        self.assertEqual(self.store.pomodoro.budget, 600.0)
        self.assertEqual(self.store.pomodoro.preset.long_break_seconds, 15 * 60)


class TestPhaseCompletion(unittest.TestCase):

    def setUp(self):
        from st.core.timer_state import TimerKind
        self.clock = FakeClock()
        self.store = make_store(self.clock)
        self.store.set_custom_pomodoro_mode(2, 1, 1)
        self.signals = []
        self.store.subscribe(self.signals.append, event="phase_completed")
        self.store.start(TimerKind.POMODORO)

    def test_nothing_happens_before_the_budget_runs_out(self):
        self.clock.advance(1.5)
        self.assertEqual(self.store.complete_phase(), 0)
        self.assertEqual(self.signals, [])

    def test_work_phase_completes_into_break(self):
        from st.core.timer_state import PomodoroPhase, TimerKind
        self.clock.advance(2)
        self.assertEqual(self.store.complete_phase(), 1)
        self.assertEqual(self.store.pomodoro.phase, PomodoroPhase.BREAK)
        self.assertEqual(self.store.read(TimerKind.POMODORO).display, 1)
        self.assertEqual(self.signals[0].detail["finished"], "work")
        self.assertEqual(self.signals[0].detail["next"], "break")
        self.assertEqual(self.store.daily_stats().pomodoros_today, 1)

    def test_late_tick_completes_every_overdue_phase(self):
        from st.core.timer_state import PomodoroPhase, TimerKind
        self.clock.advance(3.5)
        self.assertEqual(self.store.complete_phase(), 2)
        self.assertEqual(self.store.pomodoro.phase, PomodoroPhase.WORK)
        # Second work phase began at +3s, not at +3.5s
        self.assertAlmostEqual(self.store.read(TimerKind.POMODORO).seconds, 1.5)
        self.assertEqual(self.store.pomodoro.pomodoros_this_session, 1)


class TestCountdownExpiry(unittest.TestCase):

    def test_expiry_stops_at_zero_and_restart_uses_full_duration(self):
        from st.common.errors import InvalidInput
        from st.core.store import TimerEvent
        from st.core.timer_state import TimerKind, TimerStatus
        clock = FakeClock()
        store = make_store(clock)
        finished = []
        store.subscribe(finished.append, event=TimerEvent.COUNTDOWN_FINISHED)
        with self.assertRaises(InvalidInput):
            store.set_countdown_duration(0)

        store.set_countdown_duration(10)
        store.start(TimerKind.COUNTDOWN)
        clock.advance(9)
        self.assertFalse(store.expire_countdown())
        clock.advance(1)
        self.assertTrue(store.expire_countdown())
        reading = store.read(TimerKind.COUNTDOWN)
        self.assertEqual((reading.display, reading.status), (0, TimerStatus.STOPPED))
        self.assertEqual(len(finished), 1)

        store.start(TimerKind.COUNTDOWN)
        self.assertEqual(store.read(TimerKind.COUNTDOWN).display, 10)


class TestSettingsAndStats(unittest.TestCase):

    def test_session_sync_settings_override_global(self):
        from st.core.store import SyncSettings
        from st.core.timer_state import SessionStatus
        store = make_store()
        store.set_sync_settings(sync_pomodoro_with_timer=True)
        override = SyncSettings(sync_countdown_with_timer=True)
        store.set_session_sync_settings("s1", override)
        self.assertTrue(store.effective_sync_settings().sync_pomodoro_with_timer)
        store.bind_session("s1", SessionStatus.ACTIVE)
        self.assertIs(store.effective_sync_settings(), override)
        store.clear_session_sync_settings("s1")
        self.assertTrue(store.effective_sync_settings().sync_pomodoro_with_timer)

    def test_daily_counters_roll_over_at_midnight(self):
        day = ["2026-10-19"]
        store = make_store(today=lambda: day[0])
        store.note_session_finished()
        self.assertEqual(store.daily_stats().sessions_today, 1)
        day[0] = "2026-10-20"
        stats = store.daily_stats()
        self.assertEqual((stats.date, stats.sessions_today), ("2026-10-20", 0))


class TestSnapshotAndRestore(unittest.TestCase):

    def test_snapshot_is_paused_equivalent_and_restores_not_running(self):
        from st.core.timer_state import TimerKind, TimerStatus
        clock = FakeClock()
        store = make_store(clock)
        store.start(TimerKind.STUDY)
        store.set_countdown_duration(600)
        store.start(TimerKind.COUNTDOWN)
        clock.advance(125)
        snap = store.snapshot()
        self.assertEqual(snap["study"]["accumulated_seconds"], 125.0)
        self.assertEqual(snap["countdown"]["paused_seconds_left"], 475.0)
        # Taking a snapshot doesn't stop anything
        self.assertEqual(store.status(TimerKind.STUDY), TimerStatus.RUNNING)

        other = make_store(FakeClock(50.0))
        other.restore(snap)
        self.assertEqual(other.status(TimerKind.STUDY), TimerStatus.PAUSED)
        self.assertEqual(other.read(TimerKind.STUDY).display, 125)
        self.assertEqual(other.status(TimerKind.COUNTDOWN), TimerStatus.PAUSED)
        self.assertEqual(other.read(TimerKind.COUNTDOWN).display, 475)
        self.assertFalse(other.dirty)

    def test_pomodoro_snapshot_never_exceeds_budget(self):
        from st.core.timer_state import TimerKind
        clock = FakeClock()
        store = make_store(clock)
        store.start(TimerKind.POMODORO)
        clock.advance(30 * 60)
        self.assertEqual(store.snapshot()["pomodoro"]["accumulated_seconds"], 25 * 60)


if __name__ == "__main__":
    unittest.main()
