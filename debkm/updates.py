"""Upgradable packages: listing and the privileged upgrade command."""

import logging
import threading
import time
from typing import Callable, List, Optional

from .errors import MutationError, PreconditionError
from .models import PackageUpdate
from .parsers import parse_apt_list_output
from .runner import CommandRunner, privileged, sanitize_pkg_name
from .tasks import LineProgress, Reporter

log = logging.getLogger(__name__)

APT_UPDATE_TTL = 300


class AptUpdateThrottle:
    """Remembers the last successful `apt update` so it is not repeated within ttl."""

    def __init__(self, ttl: float = APT_UPDATE_TTL, clock: Callable[[], float] = time.monotonic):
        self.ttl = ttl
        self.clock = clock
        self._lock = threading.Lock()
        self._last: Optional[float] = None

    def needs_update(self) -> bool:
        with self._lock:
            return self._last is None or self.clock() - self._last > self.ttl

    def mark(self) -> None:
        with self._lock:
            self._last = self.clock()

    def reset(self) -> None:
        with self._lock:
            self._last = None


apt_update_throttle = AptUpdateThrottle()


def run_apt_update_if_needed(runner: CommandRunner, reporter: Reporter,
                             throttle: Optional[AptUpdateThrottle] = None) -> bool:
    """Returns False when the update was skipped.  A failed update raises MutationError."""
    throttle = apt_update_throttle if throttle is None else throttle
    if not throttle.needs_update():
        reporter.log("Apt cache is up to date, skipping apt update...")
        return False
    reporter.log("Running the apt update command...")
    rc = runner.stream(privileged(["apt", "update"]), reporter.log)
    if rc != 0:
        raise MutationError(f"apt update failed (exit {rc})", rc)
    throttle.mark()
    reporter.log("apt update completed successfully.")
    return True


def get_upgradable_packages(runner: Optional[CommandRunner] = None) -> List[PackageUpdate]:
    runner = runner or CommandRunner()
    return parse_apt_list_output(runner.run(["apt", "list", "--upgradable"]).stdout)


def check_updates(reporter: Reporter, runner: Optional[CommandRunner] = None,
                  throttle: Optional[AptUpdateThrottle] = None) -> List[PackageUpdate]:
    runner = runner or CommandRunner()
    reporter.status("Checking the package list...")
    reporter.progress(0.1)
    run_apt_update_if_needed(runner, reporter, throttle)

    reporter.status("Checking for upgradable packages...")
    reporter.progress(0.6)
    result = runner.run(["apt", "list", "--upgradable"])
    for line in result.stdout.splitlines():
        reporter.log(line)
    if not result.ok:
        raise MutationError("Unable to retrieve package list.", result.returncode)

    reporter.progress(0.9)
    packages = parse_apt_list_output(result.stdout)
    reporter.progress(1.0)
    if packages:
        reporter.status(f"{len(packages)} updates found")
    else:
        reporter.status("All packages are up to date")
    return packages


def build_install_command(packages: List[str]) -> str:
    return "apt update && apt install --only-upgrade -y " + " ".join(packages)


def install_packages(packages: List[str], runner: Optional[CommandRunner] = None,
                     reporter: Optional[Reporter] = None) -> None:
    """Upgrade the given packages.  An empty selection is refused."""
    if not packages:
        raise PreconditionError("No package selected")
    for name in packages:
        sanitize_pkg_name(name)
    runner = runner or CommandRunner()
    reporter = reporter or Reporter()

    reporter.status("Installing updates...")
    reporter.progress(0.1)
    cmd = build_install_command(packages)
    reporter.log(f"$ pkexec sh -c '{cmd}'")
    reporter.progress(0.3)
    rc = runner.stream(privileged(["sh", "-c", cmd]), LineProgress(reporter, cap=0.9))
    if rc != 0:
        raise MutationError(f"apt install exited with code {rc}", rc)
    apt_update_throttle.mark()
    reporter.progress(1.0)
    reporter.status(f"{len(packages)} packages upgraded")
