import threading
from concurrent.futures import ThreadPoolExecutor
from st.common.logger import log

# De-duplicates concurrent identical requests. While a request for some key is still running, anybody else asking
# for the same key gets the very same Future back instead of a second network call. Once it settles the key is
# forgotten, so the next ask starts a fresh request.
class InFlightRequests:

    def __init__(self, max_workers=4, executor=None):
        self._executor = executor or ThreadPoolExecutor(max_workers=max_workers, thread_name_prefix="studytracker-io")
        self._owns_executor = executor is None
        self._pending = {}
        self._lock = threading.Lock()

    def submit(self, key, fn, *args, **kwargs):
        with self._lock:
            future = self._pending.get(key)
            if future is not None:
                log.debug(f"Joining in-flight request '{key}'")
                return future
            future = self._executor.submit(fn, *args, **kwargs)
            self._pending[key] = future
        future.add_done_callback(lambda f, k=key: self._forget(k, f))
        return future

    def _forget(self, key, future):
        with self._lock:
            if self._pending.get(key) is future:
                del self._pending[key]

    def pending_keys(self):
        with self._lock:
            return set(self._pending)

    def shutdown(self, wait=True):
        if self._owns_executor:
            self._executor.shutdown(wait=wait)
