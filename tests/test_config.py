import json
import tempfile
import unittest
from pathlib import Path

from debkm.config import DEFAULT_CONFIG, load_config, LogSession, save_config


class TestConfig(unittest.TestCase):

    def setUp(self):
        self._dir = tempfile.TemporaryDirectory()
        self.path = Path(self._dir.name) / "config.json"

    def tearDown(self):
        self._dir.cleanup()

    def test_defaults_when_missing(self):
        self.assertEqual(load_config(self.path), DEFAULT_CONFIG)

    def test_file_overrides_defaults(self):
        save_config({"grub_timeout": 5}, self.path)
        config = load_config(self.path)
        self.assertEqual(config["grub_timeout"], 5)
        self.assertEqual(config["kernel_cache_ttl"], 900)

    def test_unreadable_file_ignored(self):
        self.path.write_text("{not json")
        self.assertEqual(load_config(self.path), DEFAULT_CONFIG)

    def test_saved_as_json(self):
        save_config({"backup_dir": "/var/backups"}, self.path)
        self.assertEqual(json.loads(self.path.read_text()), {"backup_dir": "/var/backups"})


class TestLogSession(unittest.TestCase):

    def test_markers_and_sink(self):
        lines = []
        with tempfile.TemporaryDirectory() as d:
            with LogSession("install", sink=lines.append, log_dir=Path(d)) as session:
                session.append("Setting up foo")
                path = session.path
            text = path.read_text()
        self.assertTrue(path.name.startswith("install_"))
        self.assertIn("=== Log started:", text)
        self.assertIn("Setting up foo\n", text)
        self.assertTrue(text.rstrip().endswith("=== Log ended ==="))
        self.assertIn("Setting up foo\n", lines)

    def test_disabled_session(self):
        lines = []
        session = LogSession("x", sink=lines.append, enabled=False)
        session.append("hello")
        session.close()
        session.close()
        self.assertIsNone(session.path)
        self.assertEqual(lines, ["hello\n"])


if __name__ == "__main__":
    unittest.main()
