"""
Kernel enumeration: installed and available linux-image packages, the
running kernel, and the process-wide kernel list cache.
"""

import logging
import threading
import time
from typing import Callable, List, Optional

from .models import KernelRecord, KernelType
from .packages import CommandPackageOracle
from .parsers import parse_apt_search_names, parse_dpkg_list
from .system import SystemProbe
from .versions import sort_kernels

log = logging.getLogger(__name__)

KERNEL_CACHE_TTL = 900

# Long-term support lines (major, minor).
LTS_SERIES = frozenset({
    (6, 12), (6, 6), (6, 1), (5, 15), (5, 10), (5, 4), (4, 19),
})

IMAGE_PREFIX = "linux-image-"

# Longest first: 'linux-image-unsigned-' must win over 'linux-image-'.
KERNEL_PACKAGE_PREFIXES = (
    "linux-modules-extra-",
    "linux-image-unsigned-",
    "linux-headers-",
    "linux-modules-",
    "linux-image-",
)

VARIANT_MARKERS = ("-unsigned", "-dbg", "-headers")

RELATED_PACKAGE_TYPES = (
    "linux-image",
    "linux-headers",
    "linux-modules",
    "linux-modules-extra",
    "linux-image-unsigned",
    "linux-headers-generic",
)


# ─── Version Helpers ──────────────────────────────────────────────────────────

def extract_kernel_version(package_name: str) -> Optional[str]:
    """'linux-image-6.1.0-13-amd64' → '6.1.0-13-amd64'; meta packages → None."""
    if not package_name.startswith(IMAGE_PREFIX):
        return None
    rest = package_name[len(IMAGE_PREFIX):]
    return rest if rest[:1].isdigit() else None


def kernel_version_of_package(package_name: str) -> Optional[str]:
    """
    Like extract_kernel_version but also understands the unsigned image,
    headers and modules packages of a kernel:
        linux-headers-6.1.0-13-amd64 → 6.1.0-13-amd64
    """
    for prefix in KERNEL_PACKAGE_PREFIXES:
        if package_name.startswith(prefix):
            rest = package_name[len(prefix):]
            return rest if rest[:1].isdigit() else None
    return None


def normalize_kernel_version(version: str) -> str:
    """Drop repository path segments and the -unsigned / -dbg markers."""
    clean = (version or "").strip().split("/")[0]
    return clean.replace("-unsigned", "").replace("-dbg", "")


def kernels_match(a: str, b: str) -> bool:
    return normalize_kernel_version(a) == normalize_kernel_version(b)


def major_version_of(version: str) -> str:
    parts = version.split(".")
    return f"{parts[0]}.{parts[1]}" if len(parts) >= 2 else version


def kernel_type_of(version: str) -> KernelType:
    parts = version.split(".")
    if len(parts) >= 2 and parts[0].isdigit() and parts[1].isdigit():
        if (int(parts[0]), int(parts[1])) in LTS_SERIES:
            return KernelType.LTS
        return KernelType.MAINLINE
    return KernelType.UNKNOWN


def make_kernel_record(package_name: str, version: str, is_installed: bool,
                       current: str = "") -> KernelRecord:
    version = version.split("/")[0]
    return KernelRecord(
        version=version,
        full_version=version,
        kernel_type=kernel_type_of(version),
        is_installed=is_installed,
        is_current=bool(current) and kernels_match(current, version),
        major_version=major_version_of(version),
        package_name=package_name,
    )


def is_variant_package(package_name: str) -> bool:
    return any(marker in package_name for marker in VARIANT_MARKERS)


# ─── Enumeration ──────────────────────────────────────────────────────────────

def get_installed_kernels(probe: SystemProbe, current: Optional[str] = None) -> List[KernelRecord]:
    """Installed (ii/hi) kernel images, one record per normalized version."""
    current = probe.kernel_release() if current is None else current
    result = probe.run(["dpkg", "--list", "linux-image-*"])
    if not result.ok:
        return []
    kernels = []
    seen = set()
    for package, _ in parse_dpkg_list(result.stdout, ("ii", "hi")).items():
        if is_variant_package(package):
            continue
        version = extract_kernel_version(package)
        if version is None:
            continue
        key = normalize_kernel_version(version)
        if key in seen:
            continue
        seen.add(key)
        kernels.append(make_kernel_record(package, version, True, current))
    return kernels


def get_available_kernels(probe: SystemProbe, current: Optional[str] = None) -> List[KernelRecord]:
    """
    Every kernel image the repositories offer, merged with the installed ones.
    The running kernel is always present, synthesized from `uname -r` when
    no package scan reported it.
    """
    current = probe.kernel_release() if current is None else current
    installed = get_installed_kernels(probe, current)
    installed_versions = {normalize_kernel_version(k.version) for k in installed}
    installed_packages = {k.package_name for k in installed}

    kernels = []
    seen = set()
    result = probe.run(["apt", "search", "^linux-image-[0-9]"])
    names = parse_apt_search_names(result.stdout) if result.ok else []
    for package in names:
        version = extract_kernel_version(package)
        if version is None or is_variant_package(package):
            continue
        key = normalize_kernel_version(version)
        if key in seen:
            continue
        seen.add(key)
        is_installed = package in installed_packages or key in installed_versions
        kernels.append(make_kernel_record(package, version, is_installed, current))

    if current and not any(k.is_current for k in kernels):
        clean = normalize_kernel_version(current)
        if clean not in seen:
            log.debug("Running kernel %s missing from scans, synthesizing it", current)
            record = make_kernel_record(IMAGE_PREFIX + clean, clean, True, current)
            kernels.append(record)
            seen.add(clean)

    for record in installed:
        key = normalize_kernel_version(record.version)
        if key not in seen and record.package_name not in {k.package_name for k in kernels}:
            kernels.append(record)
            seen.add(key)
    return kernels


def find_related_kernel_packages(package_name: str, installed: dict) -> List[str]:
    """
    The named package plus every installed header / modules / unsigned
    package of the same kernel version.  The named package always comes first.
    """
    packages = [package_name]
    version = kernel_version_of_package(package_name)
    if version is None:
        return packages
    for package_type in RELATED_PACKAGE_TYPES:
        expected = f"{package_type}-{version}"
        if expected in installed and expected not in packages:
            packages.append(expected)
    return packages


# ─── Cache ────────────────────────────────────────────────────────────────────

class KernelCache:
    """
    The kernel list with a single 'last checked' timestamp.  Shared between
    the worker thread that fills it and whoever reads it, hence the lock.
    """

    def __init__(self, ttl: float = KERNEL_CACHE_TTL, clock: Callable[[], float] = time.monotonic):
        self.ttl = ttl
        self.clock = clock
        self._lock = threading.Lock()
        self._checked_at: Optional[float] = None
        self._kernels: Optional[List[KernelRecord]] = None

    def set_ttl(self, ttl: float) -> None:
        with self._lock:
            self.ttl = ttl

    def needs_check(self) -> bool:
        with self._lock:
            return self._stale()

    def _stale(self) -> bool:
        return self._checked_at is None or self.clock() - self._checked_at > self.ttl

    def get(self) -> Optional[List[KernelRecord]]:
        """The cached list, or None when it is missing or older than ttl."""
        with self._lock:
            if self._kernels is None or self._stale():
                return None
            return list(self._kernels)

    def set(self, kernels: List[KernelRecord]) -> None:
        with self._lock:
            self._kernels = list(kernels)
            self._checked_at = self.clock()

    def invalidate(self) -> None:
        with self._lock:
            self._kernels = None
            self._checked_at = None


kernel_cache = KernelCache()


def list_kernels(probe: Optional[SystemProbe] = None, oracle=None,
                 cache: Optional[KernelCache] = None, force: bool = False,
                 with_sizes: bool = True) -> List[KernelRecord]:
    """Sorted kernel list, served from the cache while it is fresh."""
    cache = kernel_cache if cache is None else cache
    if not force:
        cached = cache.get()
        if cached is not None:
            log.debug("Using cached kernel list (%d entries)", len(cached))
            return cached

    probe = probe or SystemProbe()
    kernels = get_available_kernels(probe)
    if with_sizes and kernels:
        oracle = oracle or CommandPackageOracle(probe.runner)
        sizes = oracle.sizes([k.package_name for k in kernels])
        for k in kernels:
            k.size = sizes.get(k.package_name, k.size)
    kernels = sort_kernels(kernels)
    cache.set(kernels)
    return kernels
