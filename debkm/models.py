"""Records produced by a detection pass."""

from dataclasses import asdict, dataclass, field
from enum import Enum
from typing import Optional


class DriverType(Enum):
    GRAPHICS = "graphics"
    NETWORK = "network"
    AUDIO = "audio"
    BLUETOOTH = "bluetooth"
    CHIPSET = "chipset"
    STORAGE = "storage"
    INPUT = "input"
    OTHER = "other"

    @property
    def display_name(self) -> str:
        return _DRIVER_TYPE_NAMES[self]


_DRIVER_TYPE_NAMES = {
    DriverType.GRAPHICS: "GPU",
    DriverType.NETWORK: "Network Cards",
    DriverType.AUDIO: "Audio Cards",
    DriverType.BLUETOOTH: "Bluetooth",
    DriverType.CHIPSET: "Chipset",
    DriverType.STORAGE: "Storage",
    DriverType.INPUT: "Input Devices",
    DriverType.OTHER: "Other",
}


class DriverLicense(Enum):
    FREE = "free"
    NON_FREE = "nonfree"
    UNKNOWN = "unknown"


class KernelType(Enum):
    LTS = "LTS"
    MAINLINE = "Mainline"
    UNKNOWN = "Unknown"


class UpdateType(Enum):
    SECURITY = "Security"
    SOFTWARE = "Software"


@dataclass(frozen=True)
class DeviceRecord:
    """One `lspci -nn` row: '<bus>: <description> [<device_id>]'."""
    bus_info: str
    description: str
    device_id: str

    @property
    def device_class(self) -> str:
        """'01:00.0 VGA compatible controller [0300]' → 'VGA compatible controller [0300]'."""
        parts = self.bus_info.split(" ", 1)
        return parts[1] if len(parts) == 2 else ""

    @property
    def search_text(self) -> str:
        """Lowercased class + description, the haystack for keyword rules."""
        return f"{self.device_class} {self.description}".lower()


@dataclass
class DriverRecord:
    name: str
    description: str
    package_name: str
    version: str
    driver_type: DriverType
    license: DriverLicense
    vendor: str
    device_id: str = ""
    is_installed: bool = False
    is_active: bool = False
    is_recommended: bool = False
    modalias: Optional[str] = None

    @property
    def status(self) -> str:
        if self.is_active:
            return "Active"
        if self.is_installed:
            return "Installed"
        return "Available"

    def to_dict(self) -> dict:
        d = asdict(self)
        d["driver_type"] = self.driver_type.value
        d["license"] = self.license.value
        d["status"] = self.status
        return d


@dataclass
class KernelRecord:
    version: str
    full_version: str
    kernel_type: KernelType
    is_installed: bool
    is_current: bool
    major_version: str
    package_name: str
    size: str = "N/A"

    def to_dict(self) -> dict:
        d = asdict(self)
        d["kernel_type"] = self.kernel_type.value
        return d


@dataclass
class PackageUpdate:
    name: str
    current_version: str
    new_version: str
    update_type: UpdateType = UpdateType.SOFTWARE


@dataclass
class Repository:
    name: str
    uri: str
    distribution: str
    components: str
    enabled: bool = True
    is_source: bool = False
    file_path: Optional[str] = None
    line_number: Optional[int] = None
    options: list = field(default_factory=list)

    def to_sources_list_line(self) -> str:
        repo_type = "deb-src" if self.is_source else "deb"
        comment = "" if self.enabled else "# "
        opts = f" [{' '.join(self.options)}]" if self.options else ""
        return f"{comment}{repo_type}{opts} {self.uri} {self.distribution} {self.components}"
