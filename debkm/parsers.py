"""
Parsers for the text the external tools print.

Every function here is pure: it takes the raw output and returns records.
Malformed lines are skipped, never reported as errors.
"""

from typing import Dict, Iterable, List, Set

from .models import DeviceRecord, PackageUpdate, UpdateType

SIZE_NOT_AVAILABLE = "N/A"

_SIZE_UNITS = ("B", "KB", "MB", "GB")


def parse_lspci(text: str) -> List[DeviceRecord]:
    """
    Parse `lspci -nn` output.

    The device ID is the LAST bracketed token on the line; what precedes it
    splits on the first ': ' into bus info and description:
        01:00.0 VGA compatible controller [0300]: NVIDIA Corporation GA106 [10de:2503] (rev a1)
        → bus_info    '01:00.0 VGA compatible controller [0300]'
          description 'NVIDIA Corporation GA106'
          device_id   '10de:2503'
    """
    devices = []
    for line in text.splitlines():
        start = line.rfind("[")
        end = line.rfind("]")
        if start == -1 or end == -1 or start >= end:
            continue
        device_id = line[start + 1:end]
        remaining = line[:start].strip()
        bus_info, sep, description = remaining.partition(": ")
        if not sep:
            continue
        devices.append(DeviceRecord(bus_info.strip(), description.strip(), device_id))
    return devices


def parse_dpkg_list(text: str, statuses: Iterable[str] = ("ii",)) -> Dict[str, str]:
    """
    Parse `dpkg -l` rows into {package: version}.
    Only rows whose status flag is in `statuses` count; kernel scans also
    accept 'hi' (held, installed).
    """
    statuses = tuple(statuses)
    installed = {}
    for line in text.splitlines():
        parts = line.split()
        if len(parts) >= 3 and parts[0] in statuses:
            # Multi-arch names come as 'pkg:amd64'
            installed[parts[1].split(":")[0]] = parts[2]
    return installed


def parse_lsmod(text: str) -> Set[str]:
    """Module names from `lsmod` (first column, header skipped)."""
    modules = set()
    for line in text.splitlines():
        parts = line.split()
        if not parts or parts[0] == "Module":
            continue
        modules.add(parts[0])
    return modules


def format_size(n: int) -> str:
    """Binary scaling; bytes without decimals, everything else with one."""
    size = float(n)
    unit = 0
    while size >= 1024 and unit < len(_SIZE_UNITS) - 1:
        size /= 1024
        unit += 1
    if unit == 0:
        return f"{size:.0f} {_SIZE_UNITS[unit]}"
    return f"{size:.1f} {_SIZE_UNITS[unit]}"


def _leading_int(value: str):
    token = value.split()[0] if value.split() else ""
    return int(token) if token.isdigit() else None


def parse_apt_show_sizes(text: str, package_names: Iterable[str]) -> Dict[str, str]:
    """
    Map each requested package to a human-readable size from `apt-cache show`
    paragraphs.  `Size:` (bytes) wins; `Installed-Size:` (KiB) is used only
    when the paragraph has no `Size:`.  Names nobody reported get 'N/A'.
    """
    sizes: Dict[str, str] = {}
    current = ""
    installed_kib = None

    def flush_installed_size():
        if current and installed_kib is not None and current not in sizes:
            sizes[current] = format_size(installed_kib * 1024)

    for raw in text.splitlines():
        line = raw.strip()
        if line.startswith("Package:"):
            flush_installed_size()
            parts = line.split()
            current = parts[1] if len(parts) > 1 else ""
            installed_kib = None
        elif not line:
            flush_installed_size()
            current, installed_kib = "", None
        elif line.startswith("Size:") and current:
            value = _leading_int(line[len("Size:"):])
            if value is not None:
                sizes.setdefault(current, format_size(value))
            current, installed_kib = "", None
        elif line.startswith("Installed-Size:") and current:
            installed_kib = _leading_int(line[len("Installed-Size:"):])
    flush_installed_size()

    return {name: sizes.get(name, SIZE_NOT_AVAILABLE) for name in package_names}


def parse_os_release(text: str) -> Dict[str, str]:
    """`/etc/os-release` as a dict with lowercased keys and unquoted values."""
    info = {}
    for line in text.splitlines():
        line = line.strip()
        if not line or line.startswith("#") or "=" not in line:
            continue
        key, value = line.split("=", 1)
        info[key.lower()] = value.strip().strip('"\'')
    return info


def _is_security_suite(repo: str) -> bool:
    suites = repo.partition("/")[2].split(",")
    return any(s == "security" or s.endswith("-security") for s in suites)


def parse_apt_list_output(text: str) -> List[PackageUpdate]:
    """
    Parse `apt list --upgradable`:
        bash/stable 5.1-2+deb11u1 amd64 [upgradable from: 5.1-2]
    The 'Listing...' header and blank lines are skipped.  A repository part
    naming a security suite ('pkg/security', 'pkg/stable-security') marks a
    security update.
    """
    packages = []
    for line in text.splitlines():
        if not line.strip() or line.startswith("Listing"):
            continue
        parts = line.split()
        if len(parts) < 4:
            continue
        repo = parts[0]
        name = repo.split("/")[0]
        new_version = parts[1]
        if not name or not new_version:
            continue

        current_version = ""
        if "from:" in parts:
            idx = parts.index("from:")
            if idx + 1 < len(parts):
                current_version = parts[idx + 1].rstrip("]")

        update_type = UpdateType.SECURITY if _is_security_suite(repo) else UpdateType.SOFTWARE
        packages.append(PackageUpdate(name, current_version, new_version, update_type))
    return packages


def parse_apt_search_names(text: str) -> List[str]:
    """Package names from `apt search` output (the part before '/')."""
    names = []
    for line in text.splitlines():
        if not line or line[0].isspace() or line.startswith("WARNING") or "/" not in line:
            continue
        name = line.split()[0].split("/")[0].strip()
        if name and name not in names:
            names.append(name)
    return names
