"""
Mutation planning and execution: kernel install/remove, driver
install/remove.  Plans are computed before anything privileged runs; every
refusal raises PreconditionError with nothing changed.
"""

import logging
from dataclasses import dataclass, field
from typing import Dict, List, Optional

from .config import load_config
from .drivers import create_driver_backup
from .errors import CurrentKernelProtected, DebkmError, MutationError, PreconditionError
from .kernels import (
    find_related_kernel_packages, kernel_cache, kernel_version_of_package, kernels_match,
    KernelCache,
)
from .packages import CommandPackageOracle
from .repos import nonfree_enabled
from .runner import CommandRunner, privileged, sanitize_pkg_name
from .system import SystemProbe
from .tasks import LineProgress, Reporter

log = logging.getLogger(__name__)

INSTALL_MARKERS = ("Unpacking", "Setting up", "Processing")
REMOVE_MARKERS = ("Removing", "Purging")

# Package name fragment → kernel modules the package provides.
DRIVER_MODULES = (
    ("nvidia", ("nvidia",)),
    ("amdgpu", ("amdgpu",)),
    ("rtl8192eu", ("rtl8192eu",)),
    ("rtl8821ce", ("rtl8821ce",)),
    ("r8168", ("r8168",)),
    ("broadcom-sta", ("wl",)),
)

NONFREE_HELP = (
    "Non-free repository required for NVIDIA drivers.\n\n"
    "To enable:\nsudo apt edit-sources\n\n"
    "And add 'non-free' (and 'non-free-firmware') at the end of the line."
)


def modules_for_package(package: str) -> tuple:
    for fragment, modules in DRIVER_MODULES:
        if fragment in package:
            return modules
    return ()


def require_in_apt_search(package: str, runner: CommandRunner) -> None:
    """Fail before the password prompt when the repositories do not know the package."""
    oracle = CommandPackageOracle(runner)
    if package not in oracle.search(package):
        raise PreconditionError(f"Package not found: {package}\n\n"
                                f"Check available packages:\napt search {package}")


# ─── Kernels ──────────────────────────────────────────────────────────────────

@dataclass
class KernelRemovalPlan:
    target: str
    version: Optional[str]
    packages: List[str] = field(default_factory=list)

    def commands(self) -> List[List[str]]:
        cmds = [privileged(["apt", "remove", "--purge", "-y", p]) for p in self.packages]
        cmds.append(privileged(["apt", "autoremove", "-y"]))
        return cmds


def plan_kernel_removal(target_package: str, current_kernel: str,
                        installed: Optional[Dict[str, str]] = None,
                        runner: Optional[CommandRunner] = None) -> KernelRemovalPlan:
    """
    Expand one kernel package into every installed package of the same
    kernel version.  Refuses, before looking anything up, when the target
    is the running kernel, whether named by package or by bare version.
    Anything that is not a versioned linux-* kernel package is refused too.
    """
    sanitize_pkg_name(target_package)
    version = kernel_version_of_package(target_package)
    if current_kernel and kernels_match(current_kernel, version or target_package):
        raise CurrentKernelProtected(current_kernel)
    if version is None:
        raise PreconditionError(f"Not a kernel package: {target_package}\n\n"
                                f"Name the package, e.g. linux-image-{current_kernel or '<version>'}")
    if installed is None:
        installed = CommandPackageOracle(runner).installed_packages()
    packages = find_related_kernel_packages(target_package, installed)
    log.info("Packages to remove for %s: %s", target_package, packages)
    return KernelRemovalPlan(target_package, version, packages)


def execute_kernel_removal(plan: KernelRemovalPlan, reporter: Reporter,
                           runner: Optional[CommandRunner] = None,
                           cache: Optional[KernelCache] = None) -> List[str]:
    """
    Remove every package of the plan, then autoremove.  A failing package
    is reported and skipped; the packages that failed are returned.
    """
    runner = runner or CommandRunner()
    cache = kernel_cache if cache is None else cache
    failed = []
    total = len(plan.packages)
    try:
        for i, package in enumerate(plan.packages):
            reporter.status(f"Removing {package}...")
            reporter.progress(0.1 + 0.7 * i / max(total, 1))
            rc = runner.stream(privileged(["apt", "remove", "--purge", "-y", package]), reporter.log)
            if rc != 0:
                reporter.warning(f"{package} package removal failed, continuing...")
                failed.append(package)

        reporter.status("Cleaning up orphaned packages...")
        reporter.progress(0.85)
        if runner.stream(privileged(["apt", "autoremove", "-y"]), reporter.log) != 0:
            reporter.warning("Autoremove operation failed")
    finally:
        cache.invalidate()
    reporter.progress(1.0)
    reporter.status("Kernel removal completed")
    return failed


def remove_kernel(reporter: Reporter, package: str, current_kernel: Optional[str] = None,
                  runner: Optional[CommandRunner] = None,
                  cache: Optional[KernelCache] = None) -> List[str]:
    runner = runner or CommandRunner()
    if current_kernel is None:
        current_kernel = SystemProbe(runner).kernel_release()
    reporter.status("Planning kernel removal...")
    plan = plan_kernel_removal(package, current_kernel, runner=runner)
    reporter.log("Packages to remove: " + " ".join(plan.packages))
    return execute_kernel_removal(plan, reporter, runner, cache)


def install_kernel(reporter: Reporter, package: str, runner: Optional[CommandRunner] = None,
                   cache: Optional[KernelCache] = None) -> None:
    runner = runner or CommandRunner()
    cache = kernel_cache if cache is None else cache
    sanitize_pkg_name(package)
    reporter.status(f"Checking {package}...")
    reporter.progress(0.1)
    require_in_apt_search(package, runner)

    reporter.status(f"Installing {package}...")
    reporter.progress(0.3)
    try:
        rc = runner.stream(privileged(["apt", "install", "-y", package]),
                           LineProgress(reporter, start=0.3, step=0.02, cap=0.9,
                                        markers=INSTALL_MARKERS))
    finally:
        cache.invalidate()
    if rc != 0:
        raise MutationError("Kernel installation failed", rc)
    reporter.progress(1.0)
    reporter.status(f"{package} installed")


# ─── Drivers ──────────────────────────────────────────────────────────────────

def _backup(reporter: Reporter, runner: CommandRunner, backup_dir: str) -> None:
    reporter.status("Backing up system status...")
    reporter.progress(0.1)
    try:
        path = create_driver_backup(runner, backup_dir)
    except DebkmError as e:
        reporter.warning(f"Backup warning: {e}")
    else:
        reporter.log(f"Backup created: {path}")


def install_driver(reporter: Reporter, package: str, runner: Optional[CommandRunner] = None,
                   root: str = "/", backup_dir: Optional[str] = None) -> None:
    runner = runner or CommandRunner()
    backup_dir = backup_dir or load_config()["backup_dir"]
    sanitize_pkg_name(package)

    reporter.status("Preparing driver installation...")
    reporter.progress(0.05)
    reporter.log(f"Driver package: {package}")
    if "nvidia" in package and not nonfree_enabled(root):
        raise PreconditionError(NONFREE_HELP)
    require_in_apt_search(package, runner)

    _backup(reporter, runner, backup_dir)

    reporter.status("Updating package list...")
    reporter.progress(0.2)
    if runner.stream(privileged(["apt", "update"]), reporter.log) != 0:
        reporter.warning("apt update failed, continuing...")
    reporter.progress(0.4)

    reporter.status(f"Installing {package}...")
    reporter.progress(0.5)
    rc = runner.stream(privileged(["apt", "install", "-y", package]),
                       LineProgress(reporter, start=0.5, step=0.08, cap=0.85,
                                    markers=INSTALL_MARKERS))
    if rc != 0:
        raise MutationError("Driver installation failed. Check the package name or "
                            "repository settings.", rc)

    reporter.status("Configuring the driver...")
    reporter.progress(0.9)
    modules = modules_for_package(package)
    if modules:
        reporter.log("Loading module: " + " ".join(modules))
        result = runner.run(privileged(["modprobe", "-a"] + list(modules)))
        if not result.ok:
            reporter.warning("Module could not be loaded now; it will load after a reboot")
    reporter.progress(1.0)
    reporter.status("Driver successfully installed")


def remove_driver(reporter: Reporter, package: str, runner: Optional[CommandRunner] = None,
                  backup_dir: Optional[str] = None) -> None:
    runner = runner or CommandRunner()
    backup_dir = backup_dir or load_config()["backup_dir"]
    sanitize_pkg_name(package)

    reporter.status("Driver is being removed...")
    reporter.progress(0.05)
    _backup(reporter, runner, backup_dir)

    modules = modules_for_package(package)
    reporter.status("Stopping driver modules...")
    reporter.progress(0.2)
    if modules:
        result = runner.run(privileged(["modprobe", "-r"] + list(modules)))
        if not result.ok:
            reporter.warning("Module is in use; it will unload after a reboot")

    reporter.status("Removing the package...")
    reporter.progress(0.3)
    rc = runner.stream(privileged(["apt", "remove", "--purge", "-y", package]),
                       LineProgress(reporter, start=0.3, step=0.15, cap=0.7,
                                    markers=REMOVE_MARKERS))
    if rc != 0:
        raise MutationError("Driver uninstall failed", rc)

    reporter.status("System is being cleaned...")
    reporter.progress(0.8)
    for argv in (["apt", "autoremove", "-y"], ["apt", "autoclean"]):
        if not runner.run(privileged(argv)).ok:
            reporter.warning(" ".join(argv) + " failed")
    reporter.progress(1.0)
    reporter.status("Driver successfully removed")
