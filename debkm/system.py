"""Read-only view of the running system used by one detection pass."""

import logging
import platform
from pathlib import Path
from typing import List, Optional, Set

from .parsers import parse_lsmod
from .runner import CommandResult, CommandRunner

log = logging.getLogger(__name__)

MODALIAS_BUSES = ("pci", "usb")


class SystemProbe:
    """
    Runs probes through an injected CommandRunner and reads files below
    `root` ('/' on a real system, a fixture directory in tests).

    `lsmod` output is read once per probe object; build a new probe for
    every detection pass.
    """

    def __init__(self, runner: Optional[CommandRunner] = None, root: str = "/"):
        self.runner = runner or CommandRunner()
        self.root = Path(root)
        self._modules: Optional[Set[str]] = None
        self._release: Optional[str] = None

    # ── Files ────────────────────────────────────────────────────────────────

    def path(self, p: str) -> Path:
        return self.root / p.lstrip("/")

    def exists(self, p: str) -> bool:
        return self.path(p).exists()

    def read_text(self, p: str) -> str:
        try:
            return self.path(p).read_text(encoding="utf-8", errors="replace")
        except OSError:
            return ""

    def glob(self, directory: str, pattern: str) -> List[Path]:
        d = self.path(directory)
        if not d.is_dir():
            return []
        return sorted(d.glob(pattern))

    # ── Commands ─────────────────────────────────────────────────────────────

    def run(self, argv) -> CommandResult:
        return self.runner.run(list(argv))

    def output(self, argv) -> str:
        """stdout of argv, or '' when the tool failed."""
        result = self.run(argv)
        return result.stdout if result.ok else ""

    def succeeds(self, argv) -> bool:
        return self.run(argv).ok

    def mentions(self, argv, word: str) -> bool:
        word = word.lower()
        return any(word in line.lower() for line in self.output(argv).splitlines())

    def service_active(self, name: str) -> bool:
        return self.run(["systemctl", "is-active", name]).stdout.strip() == "active"

    def process_running(self, name: str) -> bool:
        return self.succeeds(["pgrep", "-x", name])

    # ── Kernel ───────────────────────────────────────────────────────────────

    def loaded_modules(self) -> Set[str]:
        if self._modules is None:
            self._modules = parse_lsmod(self.output(["lsmod"]))
        return self._modules

    def module_loaded(self, name: str) -> bool:
        return name in self.loaded_modules()

    def kernel_release(self) -> str:
        if self._release is None:
            out = self.output(["uname", "-r"]).strip()
            self._release = out or platform.uname().release
        return self._release

    def modaliases(self) -> List[str]:
        aliases = []
        for bus in MODALIAS_BUSES:
            for f in self.glob(f"/sys/bus/{bus}/devices", "*/modalias"):
                try:
                    aliases.append(f.read_text().strip())
                except OSError:
                    continue
        return aliases
