"""Command line interface: detection listings and the privileged operations."""

import argparse
import json
import sys
from dataclasses import asdict
from typing import List, Optional

from . import APP_VERSION
from .config import load_config, setup_logging
from .drivers import detect_active_modules, detect_drivers, filter_drivers
from .errors import DebkmError
from .grub import set_default_kernel
from .hardware import rescan_hardware
from .kernels import kernel_cache, list_kernels
from .models import DriverType
from .packages import CommandPackageOracle
from .planner import install_driver, install_kernel, remove_driver, remove_kernel
from .repos import (
    add_repository, get_repositories, remove_repository, toggle_repository, update_repositories,
)
from .runner import CommandRunner
from .system import SystemProbe
from .tasks import EventKind, Task, TaskEvent
from .updates import check_updates, install_packages
from .versions import group_drivers_by_type, group_kernels_by_major_version, version_key


def parse_args(argv: Optional[List[str]] = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(
        prog="debkm",
        description="Kernel, driver and update manager for Debian-family systems.",
        epilog="Example: debkm drivers --status installed",
    )
    parser.add_argument("--version", action="version", version=f"%(prog)s {APP_VERSION}")
    parser.add_argument("--debug", action="store_true", help="Enable verbose debug output.")
    parser.add_argument("--json", action="store_true", help="Print listings as JSON.")
    parser.add_argument("--glib", action="store_true",
                        help="Drive operations from a GLib main loop (needs PyGObject).")
    parser.add_argument("--apt-cache", action="store_true",
                        help="Query packages through python-apt instead of dpkg/apt.")
    sub = parser.add_subparsers(dest="command", required=True)

    p = sub.add_parser("drivers", help="Detect hardware and list candidate drivers.")
    p.add_argument("--type", default="all",
                   choices=["all"] + [t.value for t in DriverType])
    p.add_argument("--license", default="all", choices=["all", "free", "nonfree"])
    p.add_argument("--status", default="all", choices=["all", "installed", "active", "available"])
    p.add_argument("--modules", action="store_true", help="List loaded kernel modules instead.")
    p.add_argument("--modaliases", action="store_true",
                   help="List the PCI and USB modaliases exported by the kernel instead.")
    p.add_argument("--rescan", action="store_true", help="Ask udev to re-announce devices first.")

    p = sub.add_parser("kernels", help="List installed and available kernels.")
    p.add_argument("--refresh", action="store_true", help="Ignore the cached kernel list.")
    p.add_argument("--no-sizes", action="store_true", help="Skip the download size lookup.")

    p = sub.add_parser("updates", help="List upgradable packages, or upgrade them.")
    p.add_argument("--install", nargs="+", metavar="PKG", help="Upgrade these packages.")
    p.add_argument("--all", action="store_true", help="Upgrade every upgradable package.")

    for name, help_text in (("install-driver", "Install a driver package."),
                            ("remove-driver", "Remove a driver package."),
                            ("install-kernel", "Install a kernel package."),
                            ("remove-kernel", "Remove a kernel and its related packages.")):
        p = sub.add_parser(name, help=help_text)
        p.add_argument("package")

    p = sub.add_parser("set-default-kernel", help="Make a kernel the GRUB default entry.")
    p.add_argument("version", help="Kernel version, e.g. 6.1.0-13-amd64")

    p = sub.add_parser("repos", help="List or edit APT repositories.")
    group = p.add_mutually_exclusive_group()
    group.add_argument("--add", nargs=3, metavar=("URI", "DIST", "COMPONENTS"))
    group.add_argument("--remove", type=int, metavar="N", help="Remove repository number N.")
    group.add_argument("--toggle", type=int, metavar="N", help="Enable/disable repository number N.")
    group.add_argument("--update", action="store_true", help="Run apt update.")

    return parser.parse_args(argv)


# ─── Output ───────────────────────────────────────────────────────────────────

def _jsonable(record) -> dict:
    if hasattr(record, "to_dict"):
        return record.to_dict()
    d = asdict(record)
    return {k: getattr(v, "value", v) for k, v in d.items()}


def _print_json(records) -> None:
    print(json.dumps([_jsonable(r) for r in records], indent=2, ensure_ascii=False))


def print_event(event: TaskEvent) -> None:
    if event.kind is EventKind.STATUS:
        print(f"==> {event.text}")
    elif event.kind is EventKind.LOG:
        print(event.text)
    elif event.kind is EventKind.ERROR:
        print(f"ERROR: {event.text}", file=sys.stderr)


def run_operation(args, name: str, fn, *fn_args) -> int:
    task = Task(name, fn, *fn_args)
    if args.glib:
        from .mainloop import run_task_loop
        run_task_loop(task, print_event)
    else:
        task.start()
        for event in task.events():
            print_event(event)
    task.join()
    return 1 if task.error else 0


# ─── Commands ─────────────────────────────────────────────────────────────────

def make_oracle(args, runner: CommandRunner):
    if args.apt_cache:
        from .apt_cache import AptCacheOracle
        return AptCacheOracle()
    return CommandPackageOracle(runner)


def cmd_drivers(args, probe: SystemProbe) -> int:
    if args.rescan:
        rescan_hardware(probe.runner)
    if args.modaliases:
        aliases = probe.modaliases()
        print(json.dumps(aliases) if args.json else "\n".join(aliases))
        return 0
    if args.modules:
        modules = detect_active_modules(probe)
        print(json.dumps(modules) if args.json else "\n".join(modules))
        return 0
    drivers = detect_drivers(probe, make_oracle(args, probe.runner))
    drivers = filter_drivers(drivers, args.type, args.license, args.status)
    if args.json:
        _print_json(drivers)
        return 0
    if not drivers:
        print("No drivers found for the detected hardware.")
    for driver_type, group in sorted(group_drivers_by_type(drivers).items(),
                                     key=lambda kv: kv[0].value):
        print(f"\n{driver_type.display_name}")
        for d in group:
            flags = " (recommended)" if d.is_recommended else ""
            print(f"  [{d.status:9}] {d.name:28} {d.version:20} {d.license.value:7} "
                  f"{d.description}{flags}")
    return 0


def cmd_kernels(args, probe: SystemProbe) -> int:
    kernels = list_kernels(probe, make_oracle(args, probe.runner), cache=kernel_cache,
                           force=args.refresh, with_sizes=not args.no_sizes)
    if args.json:
        _print_json(kernels)
        return 0
    groups = group_kernels_by_major_version(kernels)
    for major in sorted(groups, key=version_key, reverse=True):
        print(f"\nLinux {major}")
        for k in groups[major]:
            state = "running" if k.is_current else "installed" if k.is_installed else ""
            print(f"  {k.version:32} {k.kernel_type.value:8} {k.size:>9}  {state}")
    return 0


def cmd_updates(args, runner: CommandRunner) -> int:
    if args.install or args.all:
        if args.all:
            task = Task("check-updates", check_updates, runner)
            task.start()
            list(task.events())
            task.join()
            if task.error:
                print(f"ERROR: {task.error}", file=sys.stderr)
                return 1
            packages = [p.name for p in task.result]
        else:
            packages = args.install
        return run_operation(args, "updates", lambda r: install_packages(packages, runner, r))

    task = Task("check-updates", check_updates, runner, log_session=False)
    task.start()
    for event in task.events():
        if args.debug or event.kind is EventKind.ERROR:
            print_event(event)
    task.join()
    if task.error:
        return 1
    if args.json:
        _print_json(task.result)
    elif not task.result:
        print("All packages are up to date.")
    else:
        for p in task.result:
            print(f"{p.name:32} {p.current_version:24} → {p.new_version:24} {p.update_type.value}")
    return 0


def cmd_repos(args, runner: CommandRunner) -> int:
    repos = get_repositories()
    if args.add:
        add_repository(*args.add, runner=runner)
        return 0
    if args.remove is not None or args.toggle is not None:
        index = args.remove if args.remove is not None else args.toggle
        if not 0 <= index < len(repos):
            print(f"ERROR: no repository number {index}", file=sys.stderr)
            return 1
        if args.remove is not None:
            remove_repository(repos[index], runner)
        else:
            toggle_repository(repos[index], runner)
        return 0
    if args.update:
        update_repositories(runner, print)
        return 0
    if args.json:
        _print_json(repos)
        return 0
    for i, r in enumerate(repos):
        state = "enabled " if r.enabled else "disabled"
        print(f"{i:3} {state} {r.to_sources_list_line().lstrip('# ')}  ({r.file_path})")
    return 0


def apply_config(config: dict) -> None:
    """Push config into process-wide state: the TTL of the shared kernel cache."""
    kernel_cache.set_ttl(config["kernel_cache_ttl"])


def main(argv: Optional[List[str]] = None) -> int:
    args = parse_args(argv)
    setup_logging(args.debug)
    config = load_config()
    apply_config(config)
    runner = CommandRunner()
    probe = SystemProbe(runner)
    try:
        if args.command == "drivers":
            return cmd_drivers(args, probe)
        if args.command == "kernels":
            return cmd_kernels(args, probe)
        if args.command == "updates":
            return cmd_updates(args, runner)
        if args.command == "repos":
            return cmd_repos(args, runner)
        if args.command == "install-driver":
            return run_operation(args, "install-driver", install_driver, args.package, runner)
        if args.command == "remove-driver":
            return run_operation(args, "remove-driver", remove_driver, args.package, runner)
        if args.command == "install-kernel":
            return run_operation(args, "install-kernel", install_kernel, args.package, runner)
        if args.command == "remove-kernel":
            return run_operation(args, "remove-kernel",
                                 lambda r: remove_kernel(r, args.package, runner=runner))
        if args.command == "set-default-kernel":
            return run_operation(args, "set-default-kernel", lambda r: set_default_kernel(
                args.version, probe, runner, config["grub_default_file"],
                config["grub_timeout"], on_line=r.log))
    except DebkmError as e:
        print(f"ERROR: {e}", file=sys.stderr)
        return 1
    return 2


if __name__ == "__main__":
    sys.exit(main())
