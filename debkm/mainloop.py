"""
GLib main-loop bridge for Tasks.

Worker threads never touch the UI.  A GLib timeout on the main thread
drains the task's event queue every tick and hands each event to the
callback, in send order.
"""

import logging
from typing import Callable

from gi.repository import GLib

from .tasks import Task, TaskEvent

log = logging.getLogger(__name__)

POLL_INTERVAL_MS = 100


def attach_task(task: Task, on_event: Callable[[TaskEvent], None],
                interval_ms: int = POLL_INTERVAL_MS) -> int:
    """Poll `task` from the default main context; returns the GLib source id."""
    def tick():
        for event in task.poll():
            on_event(event)
        if task.finished:
            return GLib.SOURCE_REMOVE
        return GLib.SOURCE_CONTINUE

    return GLib.timeout_add(interval_ms, tick)


def call_on_main(fn: Callable, *args) -> int:
    """Run fn(*args) once on the main thread (safe to call from any thread)."""
    def once():
        fn(*args)
        return GLib.SOURCE_REMOVE
    return GLib.idle_add(once)


def run_task_loop(task: Task, on_event: Callable[[TaskEvent], None],
                  interval_ms: int = POLL_INTERVAL_MS) -> Task:
    """
    Start `task` and spin a GLib main loop until its terminal event has
    been delivered.  For callers that have no loop of their own (the CLI).
    """
    loop = GLib.MainLoop()

    def deliver(event: TaskEvent):
        on_event(event)
        if event.terminal:
            loop.quit()

    if not task.started:
        task.start()
    attach_task(task, deliver, interval_ms)
    loop.run()
    return task
