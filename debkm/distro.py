"""Distribution display name and Mint desktop detection."""

import logging
import os
from typing import Mapping, Optional

from .parsers import parse_dpkg_list, parse_os_release
from .system import SystemProbe

log = logging.getLogger(__name__)

DEFAULT_DISTRO = "Debian GNU/Linux"

GRUB_CFG_PATHS = (
    "/boot/grub/grub.cfg",
    "/boot/grub2/grub.cfg",
    "/boot/efi/EFI/debian/grub.cfg",
    "/boot/efi/EFI/ubuntu/grub.cfg",
)

ADVANCED_PREFIX = "Advanced options for "

# (substring, desktop) in probe order
_DESKTOP_MARKERS = (
    (("cinnamon",), "Cinnamon"),
    (("xfce",), "Xfce"),
    (("mate",), "MATE"),
    (("kde", "plasma"), "KDE"),
    (("gnome",), "GNOME"),
)
_SESSION_MARKERS = _DESKTOP_MARKERS[:3]
_DESKTOP_PROCESSES = (
    ("cinnamon", "Cinnamon"),
    ("xfce4-session", "Xfce"),
    ("mate-session", "MATE"),
    ("plasmashell", "KDE"),
    ("gnome-shell", "GNOME"),
)
_DESKTOP_PACKAGES = (
    ("cinnamon", "Cinnamon"),
    ("xfce4", "Xfce"),
    ("mate-desktop", "MATE"),
    ("plasma-desktop", "KDE"),
    ("gnome-shell", "GNOME"),
)

_KNOWN_NAMES = {
    "debian": "Debian GNU/Linux",
    "ubuntu": "Ubuntu",
    "kali": "Kali GNU/Linux",
    "kali gnu/linux": "Kali GNU/Linux",
    "elementary": "elementary OS",
    "elementary os": "elementary OS",
}


def _match_marker(value: str, markers) -> Optional[str]:
    value = value.lower()
    for needles, desktop in markers:
        if any(n in value for n in needles):
            return desktop
    return None


def detect_mint_desktop(probe: SystemProbe, env: Optional[Mapping[str, str]] = None) -> Optional[str]:
    """
    $XDG_CURRENT_DESKTOP, then $DESKTOP_SESSION, then a running session
    process, then an installed desktop package.
    """
    env = os.environ if env is None else env
    desktop = _match_marker(env.get("XDG_CURRENT_DESKTOP", ""), _DESKTOP_MARKERS)
    if desktop:
        return desktop
    desktop = _match_marker(env.get("DESKTOP_SESSION", ""), _SESSION_MARKERS)
    if desktop:
        return desktop
    for process, desktop in _DESKTOP_PROCESSES:
        result = probe.run(["pgrep", process])
        if result.ok and result.stdout.strip():
            return desktop
    for package, desktop in _DESKTOP_PACKAGES:
        if package in parse_dpkg_list(probe.output(["dpkg", "-l", package])):
            return desktop
    return None


def normalize_distro_name(name: str, probe: Optional[SystemProbe] = None,
                          env: Optional[Mapping[str, str]] = None) -> str:
    lower = name.lower()
    if lower in _KNOWN_NAMES:
        return _KNOWN_NAMES[lower]
    if "lmde" in lower:
        return name
    if "mint" in lower:
        desktop = detect_mint_desktop(probe, env) if probe else None
        return f"Linux Mint {desktop}" if desktop else "Linux Mint"
    if "debian" in lower:
        return DEFAULT_DISTRO
    return name


def distro_from_grub(text: str) -> Optional[str]:
    """'Advanced options for <X>' submenu title → X"""
    # Imported here: grub imports this module for the name fallback
    from .grub import parse_menu
    for submenu in parse_menu(text).submenus:
        if submenu.title.startswith(ADVANCED_PREFIX):
            return submenu.title[len(ADVANCED_PREFIX):]
    return None


def _read_os_release(probe: SystemProbe) -> dict:
    return parse_os_release(probe.read_text("/etc/os-release"))


def detect_distribution_name(probe: Optional[SystemProbe] = None,
                             env: Optional[Mapping[str, str]] = None) -> str:
    """
    GRUB submenu title → /etc/os-release → `lsb_release -si` →
    /etc/debian_version → "Debian GNU/Linux".
    """
    probe = probe or SystemProbe()
    for path in GRUB_CFG_PATHS:
        if probe.exists(path):
            name = distro_from_grub(probe.read_text(path))
            if name:
                log.debug("Distribution from GRUB (%s): %s", path, name)
                return name

    info = _read_os_release(probe)
    if info:
        name, distro_id, version = info.get("name", ""), info.get("id", ""), info.get("version", "")
        if distro_id == "lmde" or "lmde" in name.lower():
            return f"LMDE {version}" if version else "LMDE"
        if distro_id == "linuxmint" or "linux mint" in name.lower():
            desktop = detect_mint_desktop(probe, env)
            if desktop:
                number = version.split()[0] if version.split() else version
                return f"Linux Mint {number} {desktop}"
            return f"Linux Mint {version}"
        if name:
            return normalize_distro_name(name, probe, env)

    lsb = probe.output(["lsb_release", "-si"]).strip()
    if lsb:
        if "mint" in lsb.lower():
            desktop = detect_mint_desktop(probe, env)
            if desktop:
                release = probe.output(["lsb_release", "-sr"]).strip()
                return f"Linux Mint {release} {desktop}" if release else f"Linux Mint {desktop}"
        return normalize_distro_name(lsb, probe, env)

    if probe.exists("/etc/debian_version"):
        log.debug("Distribution from /etc/debian_version")
        return "Debian GNU/Linux"
    return DEFAULT_DISTRO


def is_lmde_system(probe: Optional[SystemProbe] = None) -> bool:
    probe = probe or SystemProbe()
    info = _read_os_release(probe)
    if info.get("id") == "lmde" or "lmde" in info.get("name", "").lower():
        return True
    return "lmde" in probe.output(["lsb_release", "-si"]).lower()


def lmde_release_name(probe: SystemProbe) -> str:
    """'LMDE 6 Faye' from os-release, the release the hardcoded entry was written for otherwise."""
    info = _read_os_release(probe)
    number = info.get("version_id", "")
    codename = info.get("version_codename", "")
    if number and codename:
        return f"LMDE {number} {codename.capitalize()}"
    return "LMDE 6 Faye"
