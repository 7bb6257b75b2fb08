import timer_fakes  # noqa: F401
import json
import shutil
import tempfile
import unittest
from pathlib import Path
from timer_fakes import FakeClock, make_store


class TestRehydration(unittest.TestCase):

    def _run(self, state):
        from st.core.rehydrate import RehydrationManager
        store = make_store(FakeClock())
        RehydrationManager(store, loader=lambda: state).run()
        return store

    def test_banked_time_comes_back_exactly_and_not_running(self):
        from st.core.timer_state import SessionStatus, TimerKind, TimerStatus
        store = self._run({
            "study": {"accumulated_seconds": 125.0, "session_status": "active"},
            "countdown": {"paused_seconds_left": 42.0, "last_configured_duration": 600},
            "active_session_id": "s-9",
        })
        self.assertEqual(store.status(TimerKind.STUDY), TimerStatus.PAUSED)
        self.assertEqual(store.read(TimerKind.STUDY).display, 125)
        self.assertEqual(store.status(TimerKind.COUNTDOWN), TimerStatus.PAUSED)
        self.assertEqual(store.read(TimerKind.COUNTDOWN).display, 42)
        self.assertEqual(store.status(TimerKind.POMODORO), TimerStatus.STOPPED)
        # The session id survives, but nothing is live until someone reattaches
        self.assertEqual(store.active_session_id, "s-9")
        self.assertEqual(store.session_status, SessionStatus.INACTIVE)
        self.assertFalse(store.dirty)

    def test_linked_task_ids_come_back_with_the_session(self):
        from st.core.rehydrate import project_state
        store = self._run({"active_session_id": "s-9", "active_session_task_ids": ["t1", 7]})
        self.assertEqual(store.active_session_task_ids, ["t1", 7])

        projected, defaulted = project_state({"active_session_id": "s-9", "active_session_task_ids": "t1"})
        self.assertEqual(projected["active_session_task_ids"], [])
        self.assertIn("active_session_task_ids", defaulted)
        projected, _ = project_state({"active_session_task_ids": ["t1"]})
        self.assertEqual(projected["active_session_task_ids"], [])

    def test_unusable_state_falls_back_to_defaults(self):
        from st.core.timer_state import TimerKind, TimerStatus
        with self.assertLogs("studytracker", level="WARNING"):
            store = self._run(["not", "a", "dict"])
        self.assertEqual(store.status(TimerKind.STUDY), TimerStatus.STOPPED)
        self.assertEqual(store.read(TimerKind.COUNTDOWN).display, 2 * 3600)
        self.assertEqual(store.pomodoro.mode_index, 0)

    def test_bad_values_are_defaulted_individually(self):
        from st.core.rehydrate import project_state
        projected, defaulted = project_state({
            "study": {"accumulated_seconds": "abc"},
            "pomodoro": {"mode_index": 99, "phase": "nap", "accumulated_seconds": -3},
            "countdown": {"last_configured_duration": 0},
        })
        self.assertEqual(projected["study"]["accumulated_seconds"], 0.0)
        self.assertEqual(projected["pomodoro"]["mode_index"], 0)
        self.assertEqual(projected["pomodoro"]["phase"], "work")
        self.assertEqual(projected["countdown"]["last_configured_duration"], 2 * 3600)
        for key in ("study.accumulated_seconds", "pomodoro.mode_index", "pomodoro.phase",
                    "pomodoro.accumulated_seconds", "countdown.last_configured_duration"):
            self.assertIn(key, defaulted)

    def test_pomodoro_progress_is_clamped_to_phase_budget(self):
        store = self._run({"pomodoro": {"accumulated_seconds": 9999.0, "phase": "break", "mode_index": 0}})
        self.assertEqual(store.pomodoro.accumulated, 5 * 60)

    def test_built_in_presets_win_and_custom_is_kept(self):
        store = self._run({"pomodoro": {"modes": [
            {"label": "Traditional", "work_seconds": 1, "break_seconds": 1, "long_break_seconds": 1},
            {"label": "Custom", "work_seconds": 600, "break_seconds": 120, "long_break_seconds": 300},
        ]}})
        labels = [p.label for p in store.pomodoro.modes]
        self.assertEqual(labels, ["Traditional", "Extended Focus", "Ultra Focus", "Custom"])
        self.assertEqual(store.pomodoro.modes[0].work_seconds, 25 * 60)
        self.assertEqual(store.pomodoro.modes[-1].work_seconds, 600)

    def test_broken_custom_preset_is_replaced(self):
        from st.core.rehydrate import reconcile_presets
        defaulted = set()
        presets = reconcile_presets([{"label": "Custom", "work_seconds": -5}], defaulted)
        self.assertEqual(presets[-1].work_seconds, 25 * 60)
        self.assertIn("pomodoro.modes.custom", defaulted)

    def test_infinite_counter_is_defaulted(self):
        from st.core.timer_state import TimerKind
        state = json.loads('{"pomodoro": {"work_sessions_completed": 1e999, "pomodoros_this_session": 2}}')
        with self.assertLogs("studytracker", level="WARNING") as logs:
            store = self._run(state)
        self.assertEqual(store.pomodoro.work_sessions_completed, 0)
        self.assertEqual(store.pomodoro.pomodoros_this_session, 2)
        self.assertTrue(any("pomodoro.work_sessions_completed" in line for line in logs.output))
        self.assertEqual(store.read(TimerKind.POMODORO).display, 25 * 60)

    def test_infinite_banked_seconds_are_defaulted(self):
        from st.core.timer_state import TimerKind, TimerStatus
        state = json.loads('{"study": {"accumulated_seconds": 1e999}, '
                           '"countdown": {"paused_seconds_left": 1e999, "last_configured_duration": 1e999}}')
        with self.assertLogs("studytracker", level="WARNING"):
            store = self._run(state)
        self.assertEqual(store.read(TimerKind.STUDY).display, 0)
        self.assertEqual(store.status(TimerKind.STUDY), TimerStatus.STOPPED)
        self.assertEqual(store.read(TimerKind.COUNTDOWN).display, 2 * 3600)

    def test_oversized_integer_is_defaulted(self):
        from st.core.rehydrate import project_state
        projected, defaulted = project_state(json.loads('{"stats": {"sessions_today": 1' + "0" * 400 + '}}'))
        self.assertEqual(projected["stats"]["sessions_today"], 0)
        self.assertIn("stats.sessions_today", defaulted)

    def test_infinite_custom_preset_is_replaced(self):
        from st.core.timer_state import PomodoroPreset, TimerKind
        state = json.loads('{"pomodoro": {"mode_index": 3, "modes": [{"label": "Custom", "work_seconds": 1e999, '
                           '"break_seconds": 60, "long_break_seconds": 60}]}}')
        with self.assertLogs("studytracker", level="WARNING"):
            store = self._run(state)
        self.assertEqual(store.pomodoro.modes[-1].work_seconds, 25 * 60)
        self.assertEqual(store.read(TimerKind.POMODORO).display, 25 * 60)
        with self.assertRaises(ValueError):
            PomodoroPreset.from_dict({"label": "Custom", "work_seconds": float("inf"),
                                      "break_seconds": 60, "long_break_seconds": 60})

    def test_stale_daily_counters_roll_over(self):
        store = self._run({"stats": {"date": "2000-01-01", "pomodoros_today": 5, "sessions_today": 2}})
        stats = store.daily_stats()
        self.assertEqual((stats.date, stats.pomodoros_today, stats.sessions_today), ("2026-10-19", 0, 0))

    def test_second_run_is_ignored(self):
        from st.core.rehydrate import RehydrationManager
        from st.core.timer_state import TimerKind
        store = make_store(FakeClock())
        manager = RehydrationManager(store, loader=lambda: {"study": {"accumulated_seconds": 10.0}})
        manager.run()
        store.start(TimerKind.STUDY)
        with self.assertLogs("studytracker", level="WARNING"):
            manager.run()
        self.assertTrue(store.study.running)


class TestRehydrationFromDisk(unittest.TestCase):

    def setUp(self):
        from st.core import config
        self.tmpdir = tempfile.mkdtemp()
        self._orig_state_path = config.STATE_PATH
        config.STATE_PATH = Path(self.tmpdir) / "state.json"

    def tearDown(self):
        from st.core import config
        config.STATE_PATH = self._orig_state_path
        shutil.rmtree(self.tmpdir, ignore_errors=True)

    def test_saved_store_rehydrates_into_a_new_one(self):
        from st.core import config
        from st.core.rehydrate import RehydrationManager
        from st.core.timer_state import TimerKind, TimerStatus
        clock = FakeClock()
        store = make_store(clock, writer=config.save_state)
        store.start(TimerKind.STUDY)
        clock.advance(125)
        store.pause(TimerKind.STUDY)

        restored = RehydrationManager(make_store(FakeClock(5.0))).run()
        self.assertEqual(restored.read(TimerKind.STUDY).display, 125)
        self.assertEqual(restored.status(TimerKind.STUDY), TimerStatus.PAUSED)

    def test_corrupt_file_gives_defaults(self):
        from st.core import config
        from st.core.rehydrate import RehydrationManager
        from st.core.timer_state import TimerKind
        config.STATE_PATH.write_text("{ this is not json", encoding="utf-8")
        with self.assertLogs("studytracker", level="WARNING"):
            store = RehydrationManager(make_store(FakeClock())).run()
        self.assertEqual(store.read(TimerKind.STUDY).display, 0)

    def test_running_timer_on_disk_is_restored_paused(self):
        from st.core import config
        from st.core.rehydrate import RehydrationManager
        from st.core.timer_state import TimerKind, TimerStatus
        clock = FakeClock()
        store = make_store(clock, writer=config.save_state)
        store.start(TimerKind.STUDY)
        clock.advance(30)
        store.flush(force=True)

        with open(config.STATE_PATH, encoding="utf-8") as f:
            self.assertEqual(json.load(f)["study"]["accumulated_seconds"], 30.0)
        restored = RehydrationManager(make_store(FakeClock())).run()
        self.assertEqual(restored.status(TimerKind.STUDY), TimerStatus.PAUSED)
        self.assertEqual(restored.read(TimerKind.STUDY).display, 30)


if __name__ == "__main__":
    unittest.main()
