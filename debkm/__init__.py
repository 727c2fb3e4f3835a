"""
Debian Kernel & Driver Manager
Hardware / driver / kernel detection and the privileged operations built on it.
"""

APP_VERSION = "1.0.0"

from .errors import (
    DebkmError, PreconditionError, CurrentKernelProtected, MutationError, GrubConfigError,
)
from .models import (
    DeviceRecord, DriverRecord, DriverType, DriverLicense,
    KernelRecord, KernelType, PackageUpdate, UpdateType,
)

__all__ = [
    "APP_VERSION",
    "DebkmError", "PreconditionError", "CurrentKernelProtected", "MutationError", "GrubConfigError",
    "DeviceRecord", "DriverRecord", "DriverType", "DriverLicense",
    "KernelRecord", "KernelType", "PackageUpdate", "UpdateType",
]
