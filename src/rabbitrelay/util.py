import logging
import threading
from datetime import timedelta
from typing import Callable, Optional
from urllib.parse import urlsplit, urlunsplit

logger = logging.getLogger(__name__)


class PeriodicTask:
    """
    Run an action on a daemon thread at a fixed interval until stopped.

    The first run happens one interval after `start`. Exceptions raised by the
    action are logged and do not stop the task. `stop` may be called from
    inside the action itself; the loop exits once the action returns.
    """

    def __init__(self, name: str, interval: timedelta, action: Callable[[], None]):
        self._name = name
        self._interval = interval.total_seconds()
        self._action = action

        self._lock = threading.Lock()
        self._thread: Optional[threading.Thread] = None
        self._stop_event: Optional[threading.Event] = None

    @property
    def name(self) -> str:
        return self._name

    @property
    def is_running(self) -> bool:
        with self._lock:
            return self._stop_event is not None

    def start(self) -> None:
        with self._lock:
            if self._stop_event is not None:
                return

            logger.info("Starting periodic task %s", self._name)
            # each run gets its own event so a stopping thread never sees a restart
            stop_event = threading.Event()
            self._stop_event = stop_event
            self._thread = threading.Thread(
                target=self._run, args=(stop_event,), name=self._name, daemon=True
            )
            self._thread.start()

    def stop(self, timeout: float = 5.0) -> None:
        with self._lock:
            if self._stop_event is None:
                return

            logger.info("Stopping periodic task %s", self._name)
            self._stop_event.set()
            self._stop_event = None
            thread = self._thread
            self._thread = None

        if thread is not None and thread is not threading.current_thread():
            thread.join(timeout=timeout)

    def _run(self, stop_event: threading.Event) -> None:
        while not stop_event.wait(self._interval):
            try:
                self._action()
            except Exception as e:
                logger.exception("Error in periodic task %s: %s", self._name, e)


def redact_url(url: Optional[str]) -> str:
    """Replace the password of a broker URL with asterisks for logging."""
    if not url:
        return ""

    parts = urlsplit(url)
    if parts.password is None:
        return url

    netloc = parts.hostname or ""
    if parts.port is not None:
        netloc = f"{netloc}:{parts.port}"
    netloc = f"{parts.username}:****@{netloc}"
    return urlunsplit(parts._replace(netloc=netloc))
