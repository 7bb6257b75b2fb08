"""Study-session lifecycle: inactive -> active <-> paused -> (finished) inactive.

The controller owns the session entity (title, description, linked tasks)
and drives the study timer through the store. It never copies timer data,
the store only learns which session id is bound, its status and the ids
of its linked tasks.
"""

from dataclasses import dataclass, field
from st.common.errors import InvalidInput, InvalidTransition, PersistenceFailure
from st.common.logger import log
from st.core.calculator import present, Rounding
from st.core.timer_state import SessionStatus, TimerKind


@dataclass
class SessionEntity:
    id: str
    title: str
    description: str = ""
    linked_task_ids: set = field(default_factory=set)
    status: SessionStatus = SessionStatus.INACTIVE

# What the finish dialog shows once a session has been finalized.
@dataclass(frozen=True)
class SessionSummary:
    session_id: str
    title: str
    duration_seconds: int
    pomodoros: int
    tasks_completed: int


def _clean_title(title):
    title = (title or "").strip()
    if not title:
        raise InvalidInput("A study session needs a title")
    return title


class SessionController:

    def __init__(self, store, backend):
        self._store = store
        self._backend = backend
        self.session = None

    @property
    def status(self):
        return self.session.status if self.session else SessionStatus.INACTIVE

    # True after a restart when the store still has a session bound that nobody has picked back up.
    @property
    def has_orphaned_session(self):
        return self.session is None and self._store.active_session_id is not None

    def _require(self, operation, *allowed):
        if self.status not in allowed:
            raise InvalidTransition(operation, self.status.value)

    # Links the tasks and flags them active. If any call fails, flags already set are cleared again and the error
    # propagates; the remote session row itself has no delete call, so its id is logged for reconciliation.
    def _activate_tasks(self, session_id, task_ids):
        flagged = []
        try:
            self._backend.link_tasks_to_session(session_id, task_ids)
            for task_id in task_ids:
                self._backend.update_task_active_flag(task_id, True)
                flagged.append(task_id)
        except PersistenceFailure:
            log.error(f"Session {session_id} was created remotely but its tasks could not be set up, "
                      f"it is left unfinished there", exc_info=True)
            self._deactivate_tasks(flagged)
            raise

    # Best effort: a task left flagged is cosmetic, so failures are logged and skipped.
    def _deactivate_tasks(self, task_ids):
        for task_id in task_ids:
            try:
                self._backend.update_task_active_flag(task_id, False)
            except PersistenceFailure:
                log.warning(f"Could not clear active flag on task {task_id}", exc_info=True)

    def start_session(self, title, linked_task_ids=(), description="", sync_settings=None):
        title = _clean_title(title)
        self._require("start a session", SessionStatus.INACTIVE)
        if self.has_orphaned_session:
            raise InvalidTransition("start a session", "inactive with an unfinished session from a previous run")
        task_ids = set(linked_task_ids)

        # Remote side first: if any of it fails nothing local has changed yet
        session_id = self._backend.create_session(title, description)
        if task_ids:
            self._activate_tasks(session_id, sorted(task_ids, key=str))

        self.session = SessionEntity(session_id, title, description, task_ids, SessionStatus.ACTIVE)
        with self._store.transaction():
            if sync_settings is not None:
                self._store.set_session_sync_settings(session_id, sync_settings)
            self._store.bind_session(session_id, SessionStatus.ACTIVE, task_ids)
            self._store.start(TimerKind.STUDY)
        log.info(f"Started study session {session_id} '{title}' with {len(task_ids)} linked task(s)")
        return self.session

    def pause_session(self):
        self._require("pause", SessionStatus.ACTIVE)
        self.session.status = SessionStatus.PAUSED
        with self._store.transaction():
            self._store.bind_session(self.session.id, SessionStatus.PAUSED)
            self._store.pause(TimerKind.STUDY)
        log.info(f"Paused study session {self.session.id}")

    def resume_session(self):
        self._require("resume", SessionStatus.PAUSED)
        self.session.status = SessionStatus.ACTIVE
        with self._store.transaction():
            self._store.bind_session(self.session.id, SessionStatus.ACTIVE)
            self._store.start(TimerKind.STUDY)
        log.info(f"Resumed study session {self.session.id}")

    # Title/description/task edits while a session is live. Newly linked tasks are linked remotely before the
    # entity changes.
    def edit_session(self, title=None, description=None, linked_task_ids=None):
        self._require("edit", SessionStatus.ACTIVE, SessionStatus.PAUSED)
        new_title = _clean_title(title) if title is not None else self.session.title
        if linked_task_ids is not None:
            added = set(linked_task_ids) - self.session.linked_task_ids
            if added:
                self._backend.link_tasks_to_session(self.session.id, added)
            self.session.linked_task_ids = set(linked_task_ids)
            self._store.bind_session(self.session.id, self.session.status, self.session.linked_task_ids)
        self.session.title = new_title
        if description is not None:
            self.session.description = description
        return self.session

    # Finalizes the session remotely and only then tears it down locally. If the remote call fails, the session and
    # the study timer stay exactly as they were so the user can try again; we don't retry on our own because a
    # half-applied write could leave a duplicate session behind.
    def finish_session(self, final_linked_task_ids=None):
        self._require("finish", SessionStatus.ACTIVE, SessionStatus.PAUSED)
        session = self.session
        completed = set(final_linked_task_ids) if final_linked_task_ids is not None else set(session.linked_task_ids)
        duration = present(self._store.elapsed(TimerKind.STUDY), Rounding.FLOOR)
        pomodoros = self._store.pomodoro.pomodoros_this_session

        try:
            self._backend.finalize_session(session.id, duration, completed, pomodoros)
        except PersistenceFailure:
            log.warning(f"Finalizing session {session.id} failed, keeping it {session.status.value}", exc_info=True)
            raise

        self._deactivate_tasks(sorted(session.linked_task_ids | completed, key=str))

        with self._store.transaction():
            self._store.reset(TimerKind.STUDY)
            self._store.clear_session_sync_settings(session.id)
            self._store.note_session_finished()
            self._store.bind_session(None, SessionStatus.INACTIVE)
        self.session = None

        log.info(f"Finished study session {session.id} '{session.title}' after {duration}s, {pomodoros} pomodoro(s)")
        return SessionSummary(session.id, session.title, duration, pomodoros, len(completed))

    # Picks a session left bound by a previous run back up, paused, so it can be resumed or finished. The linked
    # tasks default to the ones stored with the session id.
    def reattach_session(self, title="", description="", linked_task_ids=None):
        if not self.has_orphaned_session:
            raise InvalidTransition("reattach", self.status.value)
        session_id = self._store.active_session_id
        if linked_task_ids is None:
            linked_task_ids = self._store.active_session_task_ids
        self.session = SessionEntity(session_id, (title or "").strip() or "Untitled Session", description,
                                     set(linked_task_ids), SessionStatus.PAUSED)
        self._store.bind_session(session_id, SessionStatus.PAUSED, self.session.linked_task_ids)
        log.info(f"Reattached study session {session_id} from a previous run")
        return self.session

    # Drops a session left bound by a previous run. Its banked study time goes with it: the remote record is closed
    # with a zero duration and its tasks are no longer flagged active. Remote failures are logged, the local discard
    # happens regardless.
    def discard_orphaned_session(self):
        if not self.has_orphaned_session:
            raise InvalidTransition("discard", self.status.value)
        session_id = self._store.active_session_id
        task_ids = list(self._store.active_session_task_ids)
        try:
            self._backend.finalize_session(session_id, 0, (), 0)
        except PersistenceFailure:
            log.warning(f"Could not close discarded session {session_id} remotely", exc_info=True)
        self._deactivate_tasks(task_ids)

        with self._store.transaction():
            self._store.reset(TimerKind.STUDY)
            self._store.clear_session_sync_settings(session_id)
            self._store.bind_session(None, SessionStatus.INACTIVE)
        log.info(f"Discarded unfinished study session {session_id}")
