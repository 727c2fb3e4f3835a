"""Package database queries backed by dpkg / apt command output."""

import logging
from typing import Dict, Iterable, List, Optional

from .parsers import (
    parse_apt_search_names, parse_apt_show_sizes, parse_dpkg_list, SIZE_NOT_AVAILABLE,
)
from .runner import CommandRunner

log = logging.getLogger(__name__)

# Substrings that make an installed package interesting to driver detection.
DRIVER_PACKAGE_PATTERNS = (
    "nvidia", "amdgpu", "intel", "radeon", "nouveau",
    "broadcom", "realtek", "atheros", "iwlwifi",
    "alsa", "pulseaudio", "pipewire", "bluez", "bluetooth",
    "firmware", "microcode",
    "dkms", "driver",
)


def is_driver_package(name: str) -> bool:
    n = name.lower()
    return any(p in n for p in DRIVER_PACKAGE_PATTERNS)


class CommandPackageOracle:
    """
    The package manager as a queryable oracle.  Every answer comes from a
    fresh command run; a failing tool yields an empty answer.
    """

    def __init__(self, runner: Optional[CommandRunner] = None):
        self.runner = runner or CommandRunner()
        self._available: Dict[str, bool] = {}

    def installed_packages(self, pattern: Optional[str] = None,
                           statuses: Iterable[str] = ("ii",)) -> Dict[str, str]:
        argv = ["dpkg", "-l"] if pattern is None else ["dpkg", "--list", pattern]
        result = self.runner.run(argv)
        if not result.ok and not result.stdout:
            return {}
        return parse_dpkg_list(result.stdout, statuses)

    def installed_drivers(self) -> Dict[str, str]:
        return {k: v for k, v in self.installed_packages().items() if is_driver_package(k)}

    def is_available(self, package: str) -> bool:
        """True when the repository metadata knows the package (`apt show` succeeds)."""
        if package not in self._available:
            self._available[package] = self.runner.run(["apt", "show", package]).ok
        return self._available[package]

    def search(self, term: str) -> List[str]:
        result = self.runner.run(["apt", "search", term])
        return parse_apt_search_names(result.stdout) if result.ok else []

    def sizes(self, package_names: List[str]) -> Dict[str, str]:
        if not package_names:
            return {}
        result = self.runner.run(["apt-cache", "show"] + list(package_names))
        if not result.stdout:
            return {name: SIZE_NOT_AVAILABLE for name in package_names}
        return parse_apt_show_sizes(result.stdout, package_names)
