import tempfile
import threading
import unittest
from pathlib import Path

from debkm.errors import PreconditionError
from debkm.tasks import EventKind, LineProgress, Reporter, Task


def _work(reporter, value):
    reporter.status("Working...")
    reporter.progress(0.5)
    reporter.log("half way")
    return value * 2


def _refuse(reporter):
    reporter.status("Checking...")
    raise PreconditionError("nothing to do")


def _crash(reporter):
    raise ValueError("boom")


class TestTask(unittest.TestCase):

    def run_task(self, fn, *args, **kwargs):
        task = Task("test", fn, *args, log_session=False, **kwargs).start()
        return task, list(task.events(timeout=5))

    def test_events_in_order(self):
        task, events = self.run_task(_work, 21)
        self.assertEqual([e.kind for e in events],
                         [EventKind.STATUS, EventKind.PROGRESS, EventKind.LOG, EventKind.SUCCESS])
        self.assertEqual(events[-1].result, 42)
        self.assertEqual(task.result, 42)
        self.assertTrue(task.finished)

    def test_single_terminal_event(self):
        for fn in (_refuse, _crash):
            _, events = self.run_task(fn)
            self.assertEqual(sum(e.terminal for e in events), 1)
            self.assertTrue(events[-1].terminal)

    def test_refusal_reported(self):
        task, events = self.run_task(_refuse)
        self.assertEqual(events[-1].kind, EventKind.ERROR)
        self.assertEqual(events[-1].text, "nothing to do")
        self.assertIsInstance(task.error, PreconditionError)

    def test_crash_reported(self):
        with self.assertLogs("debkm.tasks", level="ERROR"):
            task, events = self.run_task(_crash)
        self.assertEqual(events[-1].text, "ValueError: boom")
        self.assertIsNone(task.result)

    def test_start_twice(self):
        task, _ = self.run_task(_work, 1)
        with self.assertRaises(RuntimeError):
            task.start()

    def test_single_consumer(self):
        task, _ = self.run_task(_work, 1)
        errors = []

        def other():
            try:
                task.poll()
            except RuntimeError as e:
                errors.append(e)

        t = threading.Thread(target=other)
        t.start()
        t.join()
        self.assertEqual(len(errors), 1)

    def test_poll_after_finish(self):
        task, _ = self.run_task(_work, 1)
        self.assertEqual(task.poll(), [])

    def test_log_session_file(self):
        with tempfile.TemporaryDirectory() as d:
            task = Task("session", _work, 1, log_session=True, log_dir=Path(d)).start()
            list(task.events(timeout=5))
            task.join(5)
            logs = list(Path(d).glob("session_*.log"))
            self.assertEqual(len(logs), 1)
            text = logs[0].read_text()
            self.assertIn("half way", text)
            self.assertIn("=== Log ended ===", text)


class TestReporter(unittest.TestCase):

    def setUp(self):
        self.events = []
        self.reporter = Reporter(self.events.append)

    def test_progress_clamped(self):
        self.reporter.progress(1.5)
        self.reporter.progress(-1)
        self.assertEqual([e.fraction for e in self.events], [1.0, 0.0])
        self.assertEqual(self.events[0].text, "100%")

    def test_warning_is_log_line(self):
        with self.assertLogs("debkm.tasks", level="WARNING"):
            self.reporter.warning("disk almost full")
        self.assertEqual(self.events[-1].kind, EventKind.LOG)
        self.assertEqual(self.events[-1].text, "WARNING: disk almost full")

    def test_line_progress_markers_and_cap(self):
        progress = LineProgress(self.reporter, start=0.5, step=0.08, cap=0.85,
                                markers=("Unpacking", "Setting up"))
        for line in ("Reading package lists...", "Unpacking a", "Setting up a",
                     "Unpacking b", "Setting up b", "Unpacking c"):
            progress(line)
        fractions = [e.fraction for e in self.events if e.kind is EventKind.PROGRESS]
        self.assertEqual(len(fractions), 5)
        self.assertAlmostEqual(fractions[0], 0.58)
        self.assertEqual(fractions[-1], 0.85)
        self.assertEqual(len([e for e in self.events if e.kind is EventKind.LOG]), 6)


if __name__ == "__main__":
    unittest.main()
