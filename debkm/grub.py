"""
GRUB default-entry selection.

The boot menu is addressed by title path ('<submenu>><entry>').  The entry
for a kernel is found by trying an ordered list of strategies, most precise
first, until one returns a string.  The chosen entry is then written into
/etc/default/grub by a privileged shell script, and the generated config is
rebuilt with whichever regeneration tool is installed.
"""

import logging
import re
import shlex
from dataclasses import dataclass, field
from typing import Callable, List, Optional, Sequence

from .distro import (
    ADVANCED_PREFIX, DEFAULT_DISTRO, GRUB_CFG_PATHS,
    detect_distribution_name, is_lmde_system, lmde_release_name,
)
from .errors import GrubConfigError
from .runner import privileged

log = logging.getLogger(__name__)

DEFAULT_GRUB_FILE = "/etc/default/grub"
DEFAULT_TIMEOUT = 10

# Lowercased substrings that mark the "advanced options" submenu, localized.
ADVANCED_MARKERS = ("advanced", "gelişmiş", "options", "seçenekler")

REMOVED_KEYS = (
    "GRUB_DEFAULT",
    "GRUB_SAVEDEFAULT",
    "GRUB_TIMEOUT",
    "GRUB_HIDDEN_TIMEOUT",
    "#GRUB_HIDDEN_TIMEOUT",
    "GRUB_TIMEOUT_STYLE",
)

REGEN_COMMANDS = (
    ["update-grub"],
    ["/usr/sbin/update-grub"],
    ["/usr/bin/update-grub"],
    ["grub-mkconfig", "-o", "/boot/grub/grub.cfg"],
    ["/usr/sbin/grub-mkconfig", "-o", "/boot/grub/grub.cfg"],
    ["grub2-mkconfig", "-o", "/boot/grub2/grub.cfg"],
    ["/usr/sbin/grub2-mkconfig", "-o", "/boot/grub2/grub.cfg"],
)

_TITLE_RE = re.compile(r"""^(?:submenu|menuentry)\s+(['"])(.*?)\1""")


# ─── Menu Parsing ─────────────────────────────────────────────────────────────

@dataclass
class Submenu:
    title: str
    entries: List[str] = field(default_factory=list)


@dataclass
class GrubMenu:
    entries: List[str] = field(default_factory=list)
    submenus: List[Submenu] = field(default_factory=list)


def menu_title(line: str) -> Optional[str]:
    """Title of a 'submenu'/'menuentry' header line, quoting rules honoured."""
    try:
        parts = shlex.split(line)
    except ValueError:
        m = _TITLE_RE.match(line)
        return m.group(2) if m else None
    return parts[1] if len(parts) > 1 else None


def parse_menu(text: str) -> GrubMenu:
    """
    Walk grub.cfg tracking brace depth.  Entries are attributed to the
    innermost enclosing submenu; a submenu's scope ends at its matching '}'.
    """
    menu = GrubMenu()
    # One slot per open block: the Submenu it opened, or None
    stack: List[Optional[Submenu]] = []
    for raw in text.splitlines():
        line = raw.strip()
        if not line or line.startswith("#"):
            continue
        if line.startswith("}"):
            if stack:
                stack.pop()
            continue
        opens = line.endswith("{")
        if line.startswith("submenu "):
            sub = Submenu(menu_title(line) or "")
            menu.submenus.append(sub)
            if opens:
                stack.append(sub)
            continue
        if line.startswith("menuentry "):
            title = menu_title(line)
            parent = next((s for s in reversed(stack) if s is not None), None)
            if title is not None:
                (parent.entries if parent else menu.entries).append(title)
            if opens:
                stack.append(None)
            continue
        if opens:
            stack.append(None)
    return menu


def mentions_version(title: str, version: str) -> bool:
    """'6.1.0-1' must not match '... with Linux 6.1.0-13-amd64'."""
    pattern = r"(?<![\w.\-])" + re.escape(version) + r"(?![\w.\-])"
    return re.search(pattern, title) is not None


def guessed_entry(distro: str, version: str) -> str:
    return f"{ADVANCED_PREFIX}{distro}>{distro}, with Linux {version}"


# ─── Strategies ───────────────────────────────────────────────────────────────

@dataclass
class GrubContext:
    version: str
    config_text: str = ""
    lmde_release: Optional[str] = None
    distro_name: Callable[[], str] = lambda: DEFAULT_DISTRO
    _menu: Optional[GrubMenu] = field(default=None, repr=False)

    @property
    def menu(self) -> GrubMenu:
        if self._menu is None:
            self._menu = parse_menu(self.config_text)
        return self._menu


class EntryStrategy:
    name = "base"

    def try_resolve(self, ctx: GrubContext) -> Optional[str]:
        raise NotImplementedError


class SubmenuEntryStrategy(EntryStrategy):
    """The exact '<advanced submenu>><entry>' path found in grub.cfg."""
    name = "submenu-entry"

    def try_resolve(self, ctx):
        for sub in ctx.menu.submenus:
            if not any(m in sub.title.lower() for m in ADVANCED_MARKERS):
                continue
            for entry in sub.entries:
                if "recovery" in entry.lower():
                    continue
                if mentions_version(entry, ctx.version):
                    return f"{sub.title}>{entry}"
        return None


class LmdeStrategy(EntryStrategy):
    name = "lmde"

    def try_resolve(self, ctx):
        if not ctx.lmde_release:
            return None
        return guessed_entry(ctx.lmde_release, ctx.version)


class SubmenuTitleGuessStrategy(EntryStrategy):
    """Distribution name taken from an 'Advanced options for <X>' title."""
    name = "submenu-title"

    def try_resolve(self, ctx):
        for sub in ctx.menu.submenus:
            if sub.title.startswith(ADVANCED_PREFIX):
                distro = sub.title[len(ADVANCED_PREFIX):]
                if distro:
                    return guessed_entry(distro, ctx.version)
        return None


class DistroNameGuessStrategy(EntryStrategy):
    name = "distro-name"

    def try_resolve(self, ctx):
        return guessed_entry(ctx.distro_name() or DEFAULT_DISTRO, ctx.version)


DEFAULT_STRATEGIES: Sequence[EntryStrategy] = (
    SubmenuEntryStrategy(),
    LmdeStrategy(),
    SubmenuTitleGuessStrategy(),
    DistroNameGuessStrategy(),
)


@dataclass
class EntryChoice:
    entry: str
    strategy: str


def synthesize_default_entry(target_version: str, ctx: Optional[GrubContext] = None,
                             strategies: Sequence[EntryStrategy] = DEFAULT_STRATEGIES) -> EntryChoice:
    version = target_version.split("/")[0]
    if ctx is None:
        ctx = GrubContext(version)
    else:
        ctx.version = version
    for strategy in strategies:
        entry = strategy.try_resolve(ctx)
        if entry:
            log.info("GRUB entry via %s: %s", strategy.name, entry)
            return EntryChoice(entry, strategy.name)
    raise GrubConfigError(f"No GRUB entry could be derived for {version}")


# ─── Writing ──────────────────────────────────────────────────────────────────

def build_grub_defaults_script(entry: str, grub_file: str = DEFAULT_GRUB_FILE,
                               timeout: int = DEFAULT_TIMEOUT) -> str:
    """Shell script: timestamped backup, drop the old keys, append the new ones."""
    f = shlex.quote(grub_file)
    lines = [f"cp {f} {f}.backup-$(date +%Y%m%d-%H%M%S)"]
    lines += [f"sed -i '/^{key}=/d' {f}" for key in REMOVED_KEYS]
    for setting in (f'GRUB_DEFAULT="{entry}"',
                    "GRUB_SAVEDEFAULT=false",
                    f"GRUB_TIMEOUT={int(timeout)}",
                    "GRUB_TIMEOUT_STYLE=menu"):
        lines.append(f"echo {shlex.quote(setting)} >> {f}")
    return "\n".join(lines) + "\n"


def manual_steps(entry: str) -> List[str]:
    return [
        "Check GRUB settings:",
        f"  grep GRUB_DEFAULT {DEFAULT_GRUB_FILE}",
        "Regenerate the GRUB config:",
        "  sudo update-grub",
        "  or: sudo grub-mkconfig -o /boot/grub/grub.cfg",
        "One-time test:",
        f"  sudo grub-reboot {shlex.quote(entry)}",
    ]


@dataclass
class GrubUpdateResult:
    entry: str
    strategy: str
    regenerated_with: Optional[str] = None
    manual_steps: List[str] = field(default_factory=list)

    @property
    def regenerated(self) -> bool:
        return self.regenerated_with is not None


def regenerate_grub_config(runner, on_line: Callable[[str], None] = log.info) -> Optional[str]:
    """First regeneration command that is installed and succeeds, or None."""
    for argv in REGEN_COMMANDS:
        if not runner.which(argv[0]):
            continue
        cmd = " ".join(argv)
        on_line(f"Trying: {cmd}")
        if runner.stream(privileged(argv), on_line) == 0:
            return cmd
    return None


def context_for(probe, version: str) -> GrubContext:
    config_text = ""
    for path in GRUB_CFG_PATHS:
        if probe.exists(path):
            config_text = probe.read_text(path)
            log.debug("GRUB config found: %s", path)
            break
    return GrubContext(
        version=version,
        config_text=config_text,
        lmde_release=lmde_release_name(probe) if is_lmde_system(probe) else None,
        distro_name=lambda: detect_distribution_name(probe),
    )


def set_default_kernel(kernel_version: str, probe, runner=None,
                       grub_file: str = DEFAULT_GRUB_FILE, timeout: int = DEFAULT_TIMEOUT,
                       on_line: Callable[[str], None] = log.info) -> GrubUpdateResult:
    """
    Make `kernel_version` the default boot entry.  Raises GrubConfigError
    when the defaults file could not be written; a failed regeneration is
    reported through `manual_steps` instead.
    """
    runner = runner or probe.runner
    version = kernel_version.split("/")[0]
    choice = synthesize_default_entry(version, context_for(probe, version))

    script = build_grub_defaults_script(choice.entry, grub_file, timeout)
    rc = runner.stream(privileged(["sh", "-c", script]), on_line)
    if rc != 0:
        raise GrubConfigError(f"GRUB config update failed (exit {rc})", rc)
    on_line(f"GRUB_DEFAULT is set: {choice.entry}")

    result = GrubUpdateResult(choice.entry, choice.strategy)
    result.regenerated_with = regenerate_grub_config(runner, on_line)
    if result.regenerated:
        on_line(f"Kernel {version} will be selected on the next boot")
    else:
        result.manual_steps = manual_steps(choice.entry)
        log.warning("No GRUB regeneration command succeeded")
        for step in result.manual_steps:
            on_line(step)
    return result
