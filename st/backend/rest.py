from datetime import datetime, time as dtime, timedelta, timezone
import requests
from st.backend.base import SessionBackend
from st.common.errors import PersistenceFailure
from st.common.logger import log
from st.util import format_hms

REQUEST_TIMEOUT = 10

# Talks to a PostgREST-style HTTP API (the hosted relational store the rest of the app uses). Sessions live in
# `study_laps`, the task links in `session_tasks`, and the "currently working on this" flag on `tasks.activetask`.
class RestSessionBackend(SessionBackend):

    def __init__(self, base_url, api_key, http=None, inflight=None):
        super().__init__(inflight)
        self.base_url = base_url.rstrip("/")
        self._http = http or requests.Session()
        self._http.headers.update({
            "apikey": api_key,
            "Authorization": f"Bearer {api_key}",
            "Content-Type": "application/json",
        })

    def _url(self, table):
        return f"{self.base_url}/rest/v1/{table}"

    # Every request funnels through here so transport and HTTP errors all come out as PersistenceFailure.
    def _send(self, method, table, params=None, payload=None, prefer=None):
        headers = {"Prefer": prefer} if prefer else None
        try:
            response = self._http.request(method, self._url(table), params=params, json=payload,
                                          headers=headers, timeout=REQUEST_TIMEOUT)
            response.raise_for_status()
        except requests.RequestException as e:
            log.warning(f"{method} {table} failed: {e}")
            raise PersistenceFailure(f"{method} {table} failed: {e}") from e
        if not response.content:
            return None
        try:
            return response.json()
        except ValueError as e:
            raise PersistenceFailure(f"{method} {table} returned a non-JSON body") from e

    def create_session(self, title, description=""):
        rows = self._send("POST", "study_laps", payload={
            "name": title,
            "description": description,
            "started_at": datetime.now(timezone.utc).isoformat(),
        }, prefer="return=representation")
        if not rows or "id" not in rows[0]:
            raise PersistenceFailure("study_laps insert returned no id")
        session_id = rows[0]["id"]
        log.info(f"Created remote session {session_id} '{title}'")
        return session_id

    def link_tasks_to_session(self, session_id, task_ids):
        task_ids = list(task_ids)
        if not task_ids:
            return
        self._send("POST", "session_tasks",
                   payload=[{"session_id": session_id, "task_id": task_id} for task_id in task_ids],
                   prefer="resolution=ignore-duplicates")

    def finalize_session(self, session_id, duration_seconds, completed_task_ids, pomodoros=0):
        completed = list(completed_task_ids)
        self._send("PATCH", "study_laps", params={"id": f"eq.{session_id}"}, payload={
            "duration": format_hms(duration_seconds),
            "ended_at": datetime.now(timezone.utc).isoformat(),
            "tasks_completed": len(completed),
            "pomodoros_completed": pomodoros,
        })
        log.info(f"Finalized remote session {session_id} at {format_hms(duration_seconds)}")

    def update_task_active_flag(self, task_id, active):
        self._send("PATCH", "tasks", params={"id": f"eq.{task_id}"}, payload={"activetask": bool(active)})

    def fetch_sessions(self, day):
        start = datetime.combine(day, dtime.min).astimezone()
        end = start + timedelta(days=1)
        rows = self._send("GET", "study_laps", params=[
            ("select", "*"),
            ("started_at", f"gte.{start.isoformat()}"),
            ("started_at", f"lt.{end.isoformat()}"),
            ("order", "started_at.asc"),
        ])
        return rows or []
