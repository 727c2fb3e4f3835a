"""
Driver resolution.

Each hardware bucket found by the classifier maps to a fixed list of
candidate packages.  For every candidate two signals are read, whether the
package is in the installed map and whether its kernel module / tool /
service is live, and the candidate's InstallPolicy folds them into the
installed and active flags.  Policies are declared per candidate in the
tables below; nothing is decided inline.

Every record satisfies is_active ⟹ is_installed.
"""

import logging
import os
import time
from dataclasses import dataclass
from enum import Enum
from pathlib import Path
from typing import Callable, Dict, List, Optional, Tuple

from .errors import MutationError
from .hardware import detect_hardware, HardwareProfile, modalias_for
from .models import DriverLicense, DriverRecord, DriverType
from .packages import CommandPackageOracle
from .system import SystemProbe

log = logging.getLogger(__name__)

FREE = DriverLicense.FREE
NON_FREE = DriverLicense.NON_FREE


class InstallPolicy(Enum):
    REQUIRE_BOTH = "both"        # package present AND live
    EITHER_SIGNAL = "either"     # package present OR live
    PACKAGE_ONLY = "package"     # package present; presence counts as active
    MODULE_ONLY = "module"       # built-in kernel driver; liveness is everything


def resolve_status(policy: InstallPolicy, package_installed: bool, live: bool,
                   active_requires_package: bool = False) -> Tuple[bool, bool]:
    """(is_installed, is_active) for one candidate."""
    if policy is InstallPolicy.REQUIRE_BOTH:
        installed = package_installed and live
    elif policy is InstallPolicy.EITHER_SIGNAL:
        installed = package_installed or live
    elif policy is InstallPolicy.PACKAGE_ONLY:
        installed = live = package_installed
    else:
        installed = live
    active = live and installed
    if active_requires_package:
        active = active and package_installed
    return installed, active


# ─── Liveness Probes ──────────────────────────────────────────────────────────

def modules_loaded(*names: str) -> Callable[[SystemProbe], bool]:
    def check(probe: SystemProbe) -> bool:
        return any(probe.module_loaded(n) for n in names)
    return check


def nvidia_live(probe: SystemProbe) -> bool:
    """Proprietary stack: an nvidia* module without nouveau, or a working nvidia-smi."""
    modules = probe.loaded_modules()
    if any(m.startswith("nvidia") for m in modules) and "nouveau" not in modules:
        return True
    return probe.succeeds(["nvidia-smi"])


def path_exists(path: str) -> Callable[[SystemProbe], bool]:
    return lambda probe: probe.exists(path)


def process_running(name: str) -> Callable[[SystemProbe], bool]:
    return lambda probe: probe.process_running(name)


def service_active(name: str) -> Callable[[SystemProbe], bool]:
    return lambda probe: probe.service_active(name)


def never(probe: SystemProbe) -> bool:
    return False


# ─── Installed-map Matching ───────────────────────────────────────────────────

EXACT = "exact"
SUBSTRING = "substring"      # nvidia-driver also matches nvidia-driver-libs etc.
FAMILY = "family"            # pipewire also matches pipewire-pulse, pipewire-bin


def package_present(installed: Dict[str, str], package: str, match: str = EXACT) -> bool:
    if package in installed:
        return True
    if match == SUBSTRING:
        return any(package in k for k in installed)
    if match == FAMILY:
        return any(k.startswith(package) or f"{package}-" in k for k in installed)
    return False


# ─── Candidate Tables ─────────────────────────────────────────────────────────

@dataclass(frozen=True)
class Candidate:
    package: str
    description: str
    license: DriverLicense
    live: Callable[[SystemProbe], bool]
    policy: InstallPolicy = InstallPolicy.REQUIRE_BOTH
    recommended: bool = False
    name: Optional[str] = None
    match: str = EXACT
    check_available: bool = True
    active_requires_package: bool = False
    installed_label: str = "Active"

    @property
    def display_name(self) -> str:
        return self.name or self.package


@dataclass(frozen=True)
class Detector:
    """
    `gate` is a hardware rule name, or one of the pseudo gates 'intel-cpu',
    'audio', 'bluetooth', 'always'.  Per-device detectors describe each
    candidate with the device it was found for.
    """
    gate: str
    driver_type: DriverType
    vendor: str
    candidates: Tuple[Candidate, ...]
    per_device: bool = False
    device_id: str = ""


def _builtin(package, description, license, live, name=None, recommended=True):
    return Candidate(package, description, license, live, policy=InstallPolicy.MODULE_ONLY,
                     recommended=recommended, name=name, check_available=False,
                     installed_label="Built-in")


def _firmware(package, description, recommended=True, license=NON_FREE):
    return Candidate(package, description, license, never,
                     policy=InstallPolicy.PACKAGE_ONLY, recommended=recommended)


DETECTORS = (
    Detector("nvidia", DriverType.GRAPHICS, "NVIDIA", (
        Candidate("nvidia-driver", "NVIDIA Driver (Metapackage)", NON_FREE, nvidia_live,
                  policy=InstallPolicy.EITHER_SIGNAL, recommended=True, match=SUBSTRING),
        Candidate("nvidia-driver-full", "NVIDIA Full Driver Suite", NON_FREE, nvidia_live,
                  policy=InstallPolicy.EITHER_SIGNAL, match=SUBSTRING),
        Candidate("xserver-xorg-video-nvidia", "NVIDIA Xorg Driver", NON_FREE, nvidia_live,
                  policy=InstallPolicy.EITHER_SIGNAL, match=SUBSTRING),
        Candidate("xserver-xorg-video-nouveau", "Nouveau (Open Source)", FREE,
                  modules_loaded("nouveau"),
                  policy=InstallPolicy.EITHER_SIGNAL, match=SUBSTRING),
    ), per_device=True),
    Detector("amd", DriverType.GRAPHICS, "AMD", (
        _builtin("xserver-xorg-video-amdgpu", "AMDGPU (Open Source)", FREE,
                 modules_loaded("amdgpu"), name="amdgpu"),
        _builtin("xserver-xorg-video-radeon", "Radeon (Legacy Open Source)", FREE,
                 modules_loaded("radeon"), name="radeon", recommended=False),
    ), per_device=True),
    Detector("intel", DriverType.GRAPHICS, "Intel", (
        _builtin("xserver-xorg-video-intel", "Intel Graphics (Built-in)", FREE,
                 modules_loaded("i915"), name="intel"),
    ), per_device=True),
    Detector("intel-cpu", DriverType.CHIPSET, "Intel", (
        Candidate("intel-microcode", "Intel Microcode Updates", NON_FREE,
                  path_exists("/sys/devices/system/cpu/microcode"), recommended=True),
    ), device_id="CPU"),
    Detector("realtek-ethernet", DriverType.NETWORK, "Realtek", (
        _builtin("r8168-dkms", "Realtek Ethernet Driver", FREE,
                 modules_loaded("r8169", "r8168")),
    ), per_device=True),
    Detector("realtek-wifi", DriverType.NETWORK, "Realtek", (
        Candidate("rtl8192eu-dkms", "Realtek RTL8192EU WiFi", FREE, modules_loaded("rtl8192eu")),
        Candidate("rtl8821ce-dkms", "Realtek RTL8821CE WiFi", FREE, modules_loaded("rtl8821ce")),
    ), per_device=True),
    Detector("broadcom-wifi", DriverType.NETWORK, "Broadcom", (
        Candidate("broadcom-sta-dkms", "Broadcom STA (Proprietary)", NON_FREE,
                  modules_loaded("wl"), recommended=True),
        Candidate("b43-fwcutter", "B43 Firmware Cutter (Open Source)", FREE,
                  modules_loaded("b43")),
    )),
    Detector("intel-wifi", DriverType.NETWORK, "Intel", (
        _builtin("iwlwifi", "Intel WiFi Driver", FREE, modules_loaded("iwlwifi")),
    )),
    Detector("audio", DriverType.AUDIO, "Generic", (
        Candidate("alsa-base", "ALSA Sound System", FREE, path_exists("/proc/asound"),
                  policy=InstallPolicy.EITHER_SIGNAL, match=FAMILY,
                  active_requires_package=True),
        Candidate("pulseaudio", "PulseAudio", FREE, process_running("pulseaudio"),
                  policy=InstallPolicy.EITHER_SIGNAL, match=FAMILY,
                  active_requires_package=True, recommended=True),
        Candidate("pipewire", "PipeWire", FREE, process_running("pipewire"),
                  policy=InstallPolicy.EITHER_SIGNAL, match=FAMILY,
                  active_requires_package=True),
    )),
    Detector("bluetooth", DriverType.BLUETOOTH, "Generic", (
        Candidate("bluez", "BlueZ Bluetooth Stack", FREE, service_active("bluetooth"),
                  recommended=True),
        Candidate("bluetooth", "Bluetooth Support", FREE, service_active("bluetooth")),
    )),
    Detector("realtek-wifi", DriverType.OTHER, "Realtek", (
        _firmware("firmware-realtek", "Realtek WiFi Firmware"),
    )),
    Detector("intel-wifi", DriverType.OTHER, "Intel", (
        _firmware("firmware-iwlwifi", "Intel WiFi Firmware"),
    )),
    Detector("atheros", DriverType.OTHER, "Atheros", (
        _firmware("firmware-atheros", "Atheros Firmware"),
    )),
    Detector("always", DriverType.OTHER, "Various", (
        _firmware("firmware-linux", "Linux Firmware (Free)", recommended=False, license=FREE),
        _firmware("firmware-linux-nonfree", "Linux Firmware (Non-free)"),
    )),
)


# ─── Resolution ───────────────────────────────────────────────────────────────

def _targets(detector: Detector, profile: HardwareProfile) -> List[Tuple[str, str]]:
    """(device description, device id) pairs the detector runs for; [] if gated off."""
    gate = detector.gate
    if gate == "always":
        present = True
    elif gate == "intel-cpu":
        present = profile.intel_cpu
    elif gate == "audio":
        present = profile.has_audio
    elif gate == "bluetooth":
        present = profile.has_bluetooth
    else:
        devices = profile.matching(gate)
        if detector.per_device:
            return [(d.description, d.device_id) for d in devices]
        present = bool(devices)
    return [("", detector.device_id)] if present else []


def resolve_candidate(candidate: Candidate, detector: Detector, installed: Dict[str, str],
                      probe: SystemProbe, device_name: str = "", device_id: str = "",
                      modalias: Optional[str] = None) -> DriverRecord:
    package_installed = package_present(installed, candidate.package, candidate.match)
    live = candidate.live(probe)
    is_installed, is_active = resolve_status(candidate.policy, package_installed, live,
                                             candidate.active_requires_package)
    if not is_installed:
        version = "Available"
    elif candidate.policy is InstallPolicy.MODULE_ONLY:
        version = candidate.installed_label
    else:
        version = installed.get(candidate.package, candidate.installed_label)

    description = candidate.description
    if device_name:
        description = f"{description} - {device_name}"

    log.debug("%s: package=%s live=%s → installed=%s active=%s",
              candidate.package, package_installed, live, is_installed, is_active)
    return DriverRecord(
        name=candidate.display_name,
        description=description,
        package_name=candidate.package,
        version=version,
        driver_type=detector.driver_type,
        license=candidate.license,
        vendor=detector.vendor,
        device_id=device_id,
        is_installed=is_installed,
        is_active=is_active,
        is_recommended=candidate.recommended,
        modalias=modalias,
    )


def detect_drivers(probe: Optional[SystemProbe] = None, oracle=None,
                   profile: Optional[HardwareProfile] = None) -> List[DriverRecord]:
    """
    One full detection pass.  Each package appears once even when several
    devices call for it; the first device found names it.
    """
    probe = probe or SystemProbe()
    oracle = oracle or CommandPackageOracle(probe.runner)
    profile = profile or detect_hardware(probe)
    installed = oracle.installed_drivers()
    log.info("%d installed driver packages", len(installed))

    drivers: List[DriverRecord] = []
    seen = set()
    for detector in DETECTORS:
        for device_name, device_id in _targets(detector, profile):
            for candidate in detector.candidates:
                if candidate.package in seen:
                    continue
                if candidate.check_available and not oracle.is_available(candidate.package):
                    log.info("Package not available, skipping: %s", candidate.package)
                    continue
                seen.add(candidate.package)
                drivers.append(resolve_candidate(
                    candidate, detector, installed, probe, device_name, device_id,
                    modalias_for(device_id, profile.modaliases)))
    log.info("%d drivers found", len(drivers))
    return drivers


def filter_drivers(drivers: List[DriverRecord], type_filter: str = "all",
                   license_filter: str = "all", status_filter: str = "all") -> List[DriverRecord]:
    """Unknown filter values (including 'all') let everything through."""
    types = {t.value: t for t in DriverType}
    licenses = {"free": FREE, "nonfree": NON_FREE}

    def keep(d: DriverRecord) -> bool:
        if type_filter in types and d.driver_type is not types[type_filter]:
            return False
        if license_filter in licenses and d.license is not licenses[license_filter]:
            return False
        if status_filter == "installed" and not d.is_installed:
            return False
        if status_filter == "active" and not d.is_active:
            return False
        if status_filter == "available" and d.is_installed:
            return False
        return True

    return [d for d in drivers if keep(d)]


def detect_active_modules(probe: Optional[SystemProbe] = None) -> List[str]:
    return sorted((probe or SystemProbe()).loaded_modules())


def create_driver_backup(runner, backup_dir: str = "/tmp", clock=time.time) -> Path:
    """
    Snapshot installed packages, loaded modules and the PCI listing so a
    broken driver change can be diagnosed afterwards.
    """
    path = Path(backup_dir) / f"debkm_driver_backup_{int(clock())}"
    snapshots = (
        ("installed_packages.txt", ["dpkg", "-l"]),
        ("active_modules.txt", ["lsmod"]),
        ("hardware_info.txt", ["lspci", "-nn"]),
    )
    try:
        os.makedirs(path, exist_ok=True)
        for filename, argv in snapshots:
            (path / filename).write_text(runner.run(argv).stdout, encoding="utf-8")
    except OSError as e:
        raise MutationError(f"Could not create driver backup in {path}: {e}") from e
    log.info("Driver backup created: %s", path)
    return path
