"""
Package oracle that reads the apt cache through python-apt.

Answers the same questions as CommandPackageOracle without spawning dpkg
or apt.  Importing this module requires the python3-apt bindings.
"""

import logging
import os
from typing import Dict, Iterable, List, Optional

import apt

from .packages import is_driver_package
from .parsers import format_size, SIZE_NOT_AVAILABLE

log = logging.getLogger(__name__)


class SilentCache(apt.Cache):
    def __init__(self, *args, **kwargs):
        # apt prints progress chatter on fd 2 while the cache opens.
        # Save the real stderr and restore it afterwards.
        _null = os.open("/dev/null", os.O_WRONLY)
        _saved = os.dup(2)
        os.dup2(_null, 2)
        os.close(_null)
        try:
            super().__init__(*args, **kwargs)
        finally:
            os.dup2(_saved, 2)
            os.close(_saved)


class AptCacheOracle:
    def __init__(self, cache=None):
        self.cache = cache

    def _open_cache(self):
        """Open (or re-open) the apt cache."""
        try:
            if self.cache is None:
                self.cache = SilentCache()
            else:
                # open(None) re-reads from disk, needed after apt operations.
                self.cache.open(None)
        except Exception as e:
            self.cache = None
            log.warning("Failed to open apt cache: %s", e)
        return self.cache

    def refresh(self) -> None:
        self._open_cache()

    def _get_cache(self):
        return self.cache if self.cache is not None else self._open_cache()

    def installed_packages(self, pattern: Optional[str] = None,
                           statuses: Iterable[str] = ("ii",)) -> Dict[str, str]:
        cache = self._get_cache()
        if cache is None:
            return {}
        prefix = pattern.rstrip("*") if pattern else ""
        installed = {}
        for pkg in cache:
            if pkg.is_installed and pkg.shortname.startswith(prefix):
                installed[pkg.shortname] = pkg.installed.version
        return installed

    def installed_drivers(self) -> Dict[str, str]:
        return {k: v for k, v in self.installed_packages().items() if is_driver_package(k)}

    def is_available(self, package: str) -> bool:
        cache = self._get_cache()
        if cache is None or package not in cache:
            return False
        pkg = cache[package]
        return pkg.candidate is not None or pkg.is_installed

    def search(self, term: str) -> List[str]:
        cache = self._get_cache()
        if cache is None:
            return []
        term = term.lstrip("^").lower()
        return sorted(pkg.shortname for pkg in cache if pkg.shortname.startswith(term))

    def sizes(self, package_names: List[str]) -> Dict[str, str]:
        cache = self._get_cache()
        sizes = {}
        for name in package_names:
            size = SIZE_NOT_AVAILABLE
            if cache is not None and name in cache:
                version = cache[name].candidate or cache[name].installed
                if version is not None:
                    if version.size:
                        size = format_size(version.size)
                    elif version.installed_size:
                        size = format_size(version.installed_size)
            sizes[name] = size
        return sizes
