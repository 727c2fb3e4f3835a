"""
Background operations with ordered progress events.

A Task runs one operation on a worker thread.  The operation receives a
Reporter and talks to the UI only through it; every call becomes a
TaskEvent on a queue, delivered to the single consumer in send order.  The
last event of a task is exactly one SUCCESS or ERROR.
"""

import logging
import queue
import threading
from dataclasses import dataclass
from enum import Enum
from typing import Any, Callable, Iterator, List, Optional

from .config import load_config, LogSession
from .errors import DebkmError

log = logging.getLogger(__name__)


class EventKind(Enum):
    STATUS = "status"
    PROGRESS = "progress"
    LOG = "log"
    SUCCESS = "success"
    ERROR = "error"


TERMINAL = (EventKind.SUCCESS, EventKind.ERROR)


@dataclass(frozen=True)
class TaskEvent:
    kind: EventKind
    text: str = ""
    fraction: Optional[float] = None
    result: Any = None
    error: Optional[BaseException] = None

    @property
    def terminal(self) -> bool:
        return self.kind in TERMINAL


class Reporter:
    """What an operation uses to report.  Lines also go to the log session, if any."""

    def __init__(self, emit: Callable[[TaskEvent], None] = None,
                 session: Optional[LogSession] = None):
        self._emit = emit
        self.session = session

    def _send(self, event: TaskEvent) -> None:
        if self._emit:
            self._emit(event)

    def status(self, text: str) -> None:
        log.info("%s", text)
        self._send(TaskEvent(EventKind.STATUS, text))

    def progress(self, fraction: float, text: Optional[str] = None) -> None:
        fraction = max(0.0, min(1.0, fraction))
        self._send(TaskEvent(EventKind.PROGRESS, text or f"{int(round(fraction * 100))}%", fraction))

    def log(self, text: str) -> None:
        log.debug("%s", text)
        if self.session:
            self.session.append(text)
        self._send(TaskEvent(EventKind.LOG, text))

    def warning(self, text: str) -> None:
        log.warning("%s", text)
        self.log(f"WARNING: {text}")


class LineProgress:
    """
    Streams command output into the log while nudging the bar forward one
    step per line, never past `cap`.  With `markers`, only lines containing
    one of them ('Unpacking', 'Setting up', ...) count as a step.
    """

    def __init__(self, reporter: Reporter, start: float = 0.3, step: float = 0.01,
                 cap: float = 0.85, markers: Optional[tuple] = None):
        self.reporter = reporter
        self.fraction = start
        self.step = step
        self.cap = cap
        self.markers = markers

    def __call__(self, line: str) -> None:
        self.reporter.log(line)
        if self.markers and not any(m in line for m in self.markers):
            return
        if self.fraction < self.cap:
            self.fraction = min(self.cap, self.fraction + self.step)
            self.reporter.progress(self.fraction)


# ─── Task ─────────────────────────────────────────────────────────────────────

class Task:
    """
    Task(name, fn, *args) runs fn(reporter, *args) in the background.
    No cancellation: a started task always runs to its terminal event.
    """

    def __init__(self, name: str, fn: Callable, *args, log_session: Optional[bool] = None,
                 log_dir=None, **kwargs):
        self.name = name
        self.fn = fn
        self.args = args
        self.kwargs = kwargs
        if log_session is None:
            log_session = load_config().get("log_sessions", True)
        self._log_session = log_session
        self._log_dir = log_dir
        self._queue: "queue.Queue[TaskEvent]" = queue.Queue()
        self._thread: Optional[threading.Thread] = None
        self._consumer: Optional[int] = None
        self._finished = False
        self.result: Any = None
        self.error: Optional[BaseException] = None

    def start(self) -> "Task":
        if self._thread is not None:
            raise RuntimeError(f"Task {self.name} already started")
        self._thread = threading.Thread(target=self._run, name=f"debkm-{self.name}", daemon=True)
        self._thread.start()
        return self

    def _run(self) -> None:
        session = None
        if self._log_session:
            try:
                session = LogSession(self.name, log_dir=self._log_dir)
            except OSError as e:
                log.warning("Could not open log session for %s: %s", self.name, e)
        try:
            reporter = Reporter(self._queue.put, session)
            self.result = self.fn(reporter, *self.args, **self.kwargs)
        except DebkmError as e:
            self.error = e
            self._queue.put(TaskEvent(EventKind.ERROR, str(e), error=e))
        except Exception as e:
            log.exception("Task %s crashed", self.name)
            self.error = e
            self._queue.put(TaskEvent(EventKind.ERROR, f"{type(e).__name__}: {e}", error=e))
        else:
            self._queue.put(TaskEvent(EventKind.SUCCESS, result=self.result))
        finally:
            if session:
                session.close()

    def _claim(self) -> None:
        me = threading.get_ident()
        if self._consumer is None:
            self._consumer = me
        elif self._consumer != me:
            raise RuntimeError(f"Task {self.name} events already consumed by another thread")

    def poll(self) -> List[TaskEvent]:
        """Every event queued so far, without blocking."""
        self._claim()
        events = []
        while True:
            try:
                event = self._queue.get_nowait()
            except queue.Empty:
                break
            events.append(event)
            if event.terminal:
                self._finished = True
                break
        return events

    def events(self, timeout: Optional[float] = None) -> Iterator[TaskEvent]:
        """Blocking iteration up to and including the terminal event."""
        self._claim()
        while not self._finished:
            event = self._queue.get(timeout=timeout)
            if event.terminal:
                self._finished = True
            yield event

    @property
    def started(self) -> bool:
        return self._thread is not None

    @property
    def finished(self) -> bool:
        """True once the consumer has received the terminal event."""
        return self._finished

    def join(self, timeout: Optional[float] = None) -> None:
        """Wait for the worker, which closes the log session after the terminal event."""
        if self._thread:
            self._thread.join(timeout)
