"""Command execution boundary: every external tool is spawned through here."""

import logging
import os
import re
import shutil
import subprocess
from typing import Callable, List, NamedTuple, Optional

from .config import TOOL_ENV
from .errors import PreconditionError

log = logging.getLogger(__name__)

# Return code reported when the tool could not be spawned at all.
SPAWN_FAILED = 127

# Allowlist for valid Debian/Ubuntu package name characters.
# Per policy: lowercase letters, digits, plus, minus, dots.
_PKG_NAME_RE = re.compile(r'^[a-z0-9][a-z0-9+\-.]*$')


class CommandResult(NamedTuple):
    returncode: int
    stdout: str = ""
    stderr: str = ""

    @property
    def ok(self) -> bool:
        return self.returncode == 0


def sanitize_pkg_name(name: str) -> str:
    """
    Validate a package name against the Debian naming policy.
    Raises PreconditionError for names that do not match, so a malformed
    name can never end up on a privileged command line.
    """
    if not _PKG_NAME_RE.match(name or ""):
        raise PreconditionError(f"Unsafe or invalid package name rejected: {name!r}")
    return name


def privileged(argv: List[str]) -> List[str]:
    return ["pkexec"] + list(argv)


class CommandRunner:
    """
    Spawns tools synchronously. Failures never raise: a tool that cannot be
    started yields returncode 127 so callers can degrade that one signal.
    """

    def __init__(self, env: Optional[dict] = None):
        self.env = {**os.environ, **TOOL_ENV, **(env or {})}

    def run(self, argv: List[str], timeout: Optional[float] = None) -> CommandResult:
        try:
            proc = subprocess.run(
                argv, stdout=subprocess.PIPE, stderr=subprocess.PIPE,
                text=True, errors="replace", env=self.env, timeout=timeout,
            )
        except (OSError, subprocess.SubprocessError) as e:
            log.debug("Could not run %s: %s", argv[0], e)
            return CommandResult(SPAWN_FAILED, "", str(e))
        if proc.returncode != 0:
            log.debug("%s exited with %d", " ".join(argv), proc.returncode)
        return CommandResult(proc.returncode, proc.stdout, proc.stderr)

    def stream(self, argv: List[str], on_line: Callable[[str], None]) -> int:
        """Run argv, handing each output line (stdout+stderr) to on_line as it arrives."""
        try:
            proc = subprocess.Popen(argv, stdout=subprocess.PIPE, stderr=subprocess.STDOUT,
                                    text=True, errors="replace", bufsize=1, env=self.env)
        except OSError as e:
            on_line(f"ERROR: {e}")
            return SPAWN_FAILED
        for line in proc.stdout:
            on_line(line.rstrip("\n"))
        return proc.wait()

    def which(self, name: str) -> Optional[str]:
        return shutil.which(name)
