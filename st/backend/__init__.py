from st.backend.base import SessionBackend, MemorySessionBackend
from st.backend.inflight import InFlightRequests
from st.backend.rest import RestSessionBackend


# Builds the backend the settings ask for: the HTTP one when a URL is configured, in-memory otherwise.
def backend_from_settings(settings):
    url = (settings.get("backend_url") or "").strip()
    if url:
        return RestSessionBackend(url, settings.get("backend_key", ""))
    return MemorySessionBackend()
