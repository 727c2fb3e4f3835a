"""
Hardware classification.

Devices from `lspci -nn` are bucketed with keyword rules instead of a real
hardware database.  A GPU usually exposes several PCI functions (display,
HDMI audio, USB-C controller) that the flat listing does not tell apart, so
every rule is: at least one keyword from EACH `any_of` group, and none of
the `none_of` keywords.

Rules search the lowercased device class AND description
(`DeviceRecord.search_text`), not the description alone.  The class column
is what says "VGA compatible controller" or "Audio device" for a chip whose
description is only a codename, and the `none_of` lists (e.g. "audio" on
the GPU rules) are written against that combined text.  Narrowing the
haystack to the description would silently change which rules fire.

A device may satisfy several rules (a combo Wi-Fi/Bluetooth chip is both a
network and a bluetooth device); it is then reported in every bucket.
"""

import logging
import re
from dataclasses import dataclass, field
from functools import lru_cache
from typing import Dict, List, Optional, Tuple

from .models import DeviceRecord
from .parsers import parse_lspci

log = logging.getLogger(__name__)

DISPLAY_MARKERS = ("vga", "3d controller", "display controller", "graphics")
WIFI_MARKERS = ("wireless", "wi-fi", "802.11", "wlan")


@lru_cache(maxsize=None)
def _keyword_re(keyword: str):
    # Whole-word match: 'ati' must not fire inside 'compatible'.
    return re.compile(r"(?<![a-z0-9])" + re.escape(keyword) + r"(?![a-z0-9])")


def has_keyword(text: str, keywords) -> bool:
    return any(_keyword_re(k).search(text) for k in keywords)


@dataclass(frozen=True)
class KeywordRule:
    name: str
    category: str
    vendor: str
    any_of: Tuple[Tuple[str, ...], ...]
    none_of: Tuple[str, ...] = ()

    def matches(self, device: DeviceRecord) -> bool:
        text = device.search_text
        if has_keyword(text, self.none_of):
            return False
        return all(has_keyword(text, group) for group in self.any_of)


# ─── Rule Tables ──────────────────────────────────────────────────────────────

GRAPHICS_RULES = (
    KeywordRule(
        "nvidia", "graphics", "NVIDIA",
        any_of=(("nvidia",),
                ("vga", "3d", "display", "graphics", "geforce", "quadro", "tesla")),
        none_of=("audio", "high definition audio", "usb", "serial bus", "hdmi"),
    ),
    KeywordRule(
        "amd", "graphics", "AMD",
        any_of=(("amd", "radeon", "ati", "advanced micro devices"),
                DISPLAY_MARKERS),
        none_of=("audio", "hdmi", "nvidia", "sound"),
    ),
    KeywordRule(
        "intel", "graphics", "Intel",
        any_of=(("intel",), DISPLAY_MARKERS + ("integrated graphics",)),
        none_of=("audio", "hdmi", "sound"),
    ),
)

NETWORK_RULES = (
    KeywordRule("realtek-ethernet", "network", "Realtek",
                any_of=(("realtek",), ("ethernet",))),
    KeywordRule("realtek-wifi", "network", "Realtek",
                any_of=(("realtek",), WIFI_MARKERS)),
    KeywordRule("broadcom-wifi", "network", "Broadcom",
                any_of=(("broadcom",), WIFI_MARKERS)),
    KeywordRule("intel-wifi", "network", "Intel",
                any_of=(("intel",), ("wireless", "wi-fi", "802.11", "centrino"))),
    KeywordRule("atheros", "network", "Atheros",
                any_of=(("atheros",),)),
)

AUDIO_RULE = KeywordRule("audio", "audio", "Generic",
                         any_of=(("audio", "sound"),), none_of=("hdmi",))

BLUETOOTH_RULE = KeywordRule("bluetooth", "bluetooth", "Generic",
                             any_of=(("bluetooth",),))

ALL_RULES = GRAPHICS_RULES + NETWORK_RULES + (AUDIO_RULE, BLUETOOTH_RULE)


# ─── Classification ───────────────────────────────────────────────────────────

@dataclass
class HardwareProfile:
    devices: List[DeviceRecord] = field(default_factory=list)
    matches: Dict[str, List[DeviceRecord]] = field(default_factory=dict)
    has_audio: bool = False
    has_bluetooth: bool = False
    intel_cpu: bool = False
    modaliases: List[str] = field(default_factory=list)

    def matching(self, rule_name: str) -> List[DeviceRecord]:
        return self.matches.get(rule_name, [])

    def has(self, rule_name: str) -> bool:
        return bool(self.matches.get(rule_name))

    @property
    def graphics(self) -> Dict[str, List[Tuple[str, str]]]:
        """vendor rule → [(description, device_id)]"""
        return {r.name: [(d.description, d.device_id) for d in self.matching(r.name)]
                for r in GRAPHICS_RULES if self.has(r.name)}

    @property
    def network(self) -> Dict[str, List[Tuple[str, str]]]:
        return {r.name: [(d.description, d.device_id) for d in self.matching(r.name)]
                for r in NETWORK_RULES if self.has(r.name)}

    def categories_of(self, device: DeviceRecord) -> List[str]:
        cats = []
        for rule in ALL_RULES:
            if device in self.matching(rule.name) and rule.category not in cats:
                cats.append(rule.category)
        return cats


def classify(devices: List[DeviceRecord], rules=ALL_RULES) -> HardwareProfile:
    """Pure classification of parsed devices; no probes are run."""
    profile = HardwareProfile(devices=list(devices))
    for rule in rules:
        hits = [d for d in devices if rule.matches(d)]
        if hits:
            profile.matches[rule.name] = hits
            for d in hits:
                log.debug("%s device: %s [%s]", rule.name, d.description, d.device_id)
    profile.has_audio = profile.has(AUDIO_RULE.name)
    profile.has_bluetooth = profile.has(BLUETOOTH_RULE.name)
    return profile


# ─── Probing ──────────────────────────────────────────────────────────────────

def has_bluetooth_hardware(probe, devices: Optional[List[DeviceRecord]] = None) -> bool:
    """
    Any one signal suffices: PCI listing, USB listing, /sys/class/bluetooth,
    or `rfkill list`.  A disabled adapter still counts.
    """
    if devices is not None:
        pci = any(BLUETOOTH_RULE.matches(d) for d in devices)
    else:
        pci = probe.mentions(["lspci"], "bluetooth")
    return (pci
            or probe.mentions(["lsusb"], "bluetooth")
            or probe.exists("/sys/class/bluetooth")
            or probe.mentions(["rfkill", "list"], "bluetooth"))


def has_intel_cpu(probe) -> bool:
    return probe.mentions(["lscpu"], "intel")


def detect_hardware(probe) -> HardwareProfile:
    """Scan `lspci -nn`, classify, then fold in the non-PCI signals."""
    devices = parse_lspci(probe.output(["lspci", "-nn"]))
    log.info("%d hardware devices parsed", len(devices))
    profile = classify(devices)
    profile.has_audio = profile.has_audio or probe.exists("/proc/asound")
    profile.has_bluetooth = has_bluetooth_hardware(probe, devices)
    profile.intel_cpu = has_intel_cpu(probe)
    profile.modaliases = probe.modaliases()
    return profile


def modalias_for(device_id: str, aliases: List[str]) -> Optional[str]:
    """
    The PCI modalias of a 'vvvv:dddd' device id, if the kernel exported one:
        10de:2503 → pci:v000010DEd00002503sv...
    """
    vendor, sep, device = device_id.partition(":")
    if not sep:
        return None
    needle = f"v0000{vendor.upper()}d0000{device.upper()}"
    for alias in aliases:
        if alias.startswith("pci:") and needle in alias:
            return alias
    return None


def rescan_hardware(runner) -> None:
    """Ask udev to re-announce USB and PCI devices, then wait for it to settle."""
    runner.run(["udevadm", "trigger", "--subsystem-match=usb"])
    runner.run(["udevadm", "trigger", "--subsystem-match=pci"])
    runner.run(["udevadm", "settle"])
