"""Shared configuration (single source of truth) and log session files."""

import json
import logging
from datetime import datetime
from pathlib import Path

CONFIG_DIR = Path.home() / ".config" / "debkm"
CONFIG_FILE = CONFIG_DIR / "config.json"
LOG_DIR = CONFIG_DIR / "logs"
DEFAULT_CONFIG = {
    "kernel_cache_ttl": 900,
    "apt_update_ttl": 300,
    "grub_timeout": 10,
    "grub_default_file": "/etc/default/grub",
    "backup_dir": "/tmp",
    "log_sessions": True,
}

# Environment handed to every external tool. apt and dpkg output is parsed,
# so the locale must be C.
TOOL_ENV = {
    "LANG": "C",
    "LC_ALL": "C",
    "DEBIAN_FRONTEND": "noninteractive",
    "APT_LISTCHANGES_FRONTEND": "none",
    "NEEDRESTART_MODE": "l",
}

log = logging.getLogger(__name__)


def load_config(path: Path = None) -> dict:
    """Load config from disk, merging with defaults. Safe to call from any thread."""
    path = path or CONFIG_FILE
    try:
        if path.exists():
            with open(path, "r", encoding="utf-8") as f:
                return {**DEFAULT_CONFIG, **json.load(f)}
    except (OSError, ValueError) as e:
        log.debug("Ignoring unreadable config %s: %s", path, e)
    return DEFAULT_CONFIG.copy()


def save_config(data: dict, path: Path = None) -> None:
    """Persist config to disk."""
    path = path or CONFIG_FILE
    path.parent.mkdir(parents=True, exist_ok=True)
    with open(path, "w", encoding="utf-8") as f:
        json.dump(data, f, indent=2)


def setup_logging(debug: bool = False) -> None:
    root = logging.getLogger("debkm")
    if root.handlers:
        root.setLevel(logging.DEBUG if debug else logging.WARNING)
        return
    handler = logging.StreamHandler()
    handler.setFormatter(logging.Formatter("[%(levelname)s] %(name)s: %(message)s"))
    root.addHandler(handler)
    root.setLevel(logging.DEBUG if debug else logging.WARNING)


# ─── Log Sessions ─────────────────────────────────────────────────────────────

class LogSession:
    """
    One log file per privileged operation.

    Lines appended while the session is open go to the file and to the
    optional `sink` (the UI log view, or stdout for the CLI).  Closing twice
    is harmless.
    """

    def __init__(self, prefix: str, sink=None, log_dir: Path = None, enabled: bool = True):
        self.prefix = prefix
        self.sink = sink
        self.path = None
        self._handle = None
        if enabled:
            log_dir = log_dir or LOG_DIR
            log_dir.mkdir(parents=True, exist_ok=True)
            ts = datetime.now().strftime("%Y-%m-%d_%H-%M-%S")
            self.path = log_dir / f"{prefix}_{ts}.log"
            self._handle = open(self.path, "w", encoding="utf-8")
            self.append(f"\n=== Log started: {self.path} ===\n")

    def append(self, text: str) -> None:
        if not text.endswith("\n"):
            text += "\n"
        if self.sink:
            self.sink(text)
        if self._handle:
            try:
                self._handle.write(text)
                self._handle.flush()
            except OSError as e:
                log.warning("Log session %s stopped writing: %s", self.path, e)
                self._handle = None

    def close(self) -> None:
        if self._handle:
            self.append("\n=== Log ended ===\n")
            self._handle.close()
        self._handle = None

    def __enter__(self):
        return self

    def __exit__(self, *_):
        self.close()
