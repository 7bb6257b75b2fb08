"""Session persistence collaborator, the only remote calls the timer core makes.

The core talks to it at exactly two points: when a study session starts
(create it, link its tasks, flag the tasks active) and when one finishes
(finalize it, clear the flags). Everything else about tasks lives elsewhere.
"""

import itertools
from abc import ABC, abstractmethod
from datetime import date
from st.backend.inflight import InFlightRequests
from st.common.errors import PersistenceFailure
from st.common.logger import log


class SessionBackend(ABC):

    def __init__(self, inflight=None):
        self._inflight = inflight or InFlightRequests()

    @abstractmethod
    def create_session(self, title, description=""):
        """Create a study session record and return its id."""

    @abstractmethod
    def link_tasks_to_session(self, session_id, task_ids):
        """Associate tasks with a session."""

    @abstractmethod
    def finalize_session(self, session_id, duration_seconds, completed_task_ids, pomodoros=0):
        """Record the final duration, completed tasks and pomodoro count."""

    @abstractmethod
    def update_task_active_flag(self, task_id, active):
        """Mark a task as being worked on (or not) right now."""

    @abstractmethod
    def fetch_sessions(self, day):
        """Return the session records that started on `day`, as dicts."""

    # Asynchronous fetch for the "today's sessions" style panels. Several panels refreshing at once share one
    # request per day.
    def refresh_sessions(self, day=None):
        day = day or date.today()
        return self._inflight.submit(f"sessions:{day.isoformat()}", self.fetch_sessions, day)

    def close(self):
        self._inflight.shutdown(wait=False)


# Keeps everything in process memory. Used when no backend URL is configured, and by the tests. `fail_next` makes
# the next call of the named operation raise PersistenceFailure, which is how the failure paths get exercised.
class MemorySessionBackend(SessionBackend):

    def __init__(self, inflight=None):
        super().__init__(inflight)
        self.sessions = {}
        self.session_tasks = {}
        self.active_tasks = set()
        self.fail_next = set()
        self.calls = []
        self._ids = itertools.count(1)

    def _call(self, operation, *args):
        self.calls.append((operation,) + args)
        if operation in self.fail_next:
            self.fail_next.discard(operation)
            raise PersistenceFailure(f"Simulated failure in {operation}")

    def create_session(self, title, description=""):
        self._call("create_session", title, description)
        session_id = f"local-{next(self._ids)}"
        self.sessions[session_id] = {
            "id": session_id,
            "name": title,
            "description": description,
            "started_at": date.today().isoformat(),
            "duration_seconds": None,
            "tasks_completed": [],
            "pomodoros_completed": 0,
            "ended": False,
        }
        log.info(f"Created local session {session_id} '{title}'")
        return session_id

    def link_tasks_to_session(self, session_id, task_ids):
        self._call("link_tasks_to_session", session_id, tuple(task_ids))
        self.session_tasks.setdefault(session_id, set()).update(task_ids)

    def finalize_session(self, session_id, duration_seconds, completed_task_ids, pomodoros=0):
        self._call("finalize_session", session_id, duration_seconds, tuple(completed_task_ids), pomodoros)
        if session_id not in self.sessions:
            raise PersistenceFailure(f"Unknown session {session_id}")
        self.sessions[session_id].update({
            "duration_seconds": duration_seconds,
            "tasks_completed": list(completed_task_ids),
            "pomodoros_completed": pomodoros,
            "ended": True,
        })

    def update_task_active_flag(self, task_id, active):
        self._call("update_task_active_flag", task_id, active)
        if active:
            self.active_tasks.add(task_id)
        else:
            self.active_tasks.discard(task_id)

    def fetch_sessions(self, day):
        self._call("fetch_sessions", day)
        return [dict(s) for s in self.sessions.values() if s["started_at"] == day.isoformat()]
