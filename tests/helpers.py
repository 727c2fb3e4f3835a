"""Fakes and fixture text shared by the test suites."""

import tempfile
from pathlib import Path

from debkm.runner import CommandResult

NOT_FOUND = CommandResult(1, "", "not found")


class FakeRunner:
    """
    Stands in for CommandRunner.  Responses are keyed on the argv tuple;
    a str value means success with that stdout, an int is a bare return code.
    Every call is recorded in `calls`.
    """

    def __init__(self, responses=None, which=(), default=NOT_FOUND):
        self.responses = {}
        for argv, value in (responses or {}).items():
            self.set(argv, value)
        self.available = set(which)
        self.default = default
        self.calls = []

    def set(self, argv, value):
        if isinstance(value, str):
            value = CommandResult(0, value)
        elif isinstance(value, int):
            value = CommandResult(value)
        self.responses[tuple(argv)] = value

    def _lookup(self, argv):
        return self.responses.get(tuple(argv), self.default)

    def run(self, argv, timeout=None):
        self.calls.append(list(argv))
        return self._lookup(argv)

    def stream(self, argv, on_line):
        self.calls.append(list(argv))
        result = self._lookup(argv)
        for line in result.stdout.splitlines():
            on_line(line)
        return result.returncode

    def which(self, name):
        return f"/usr/bin/{name}" if name in self.available else None

    def privileged_calls(self):
        return [c[1:] for c in self.calls if c and c[0] == "pkexec"]


class RecordingReporter:
    """Reporter double collecting (kind, payload) tuples."""

    def __init__(self):
        self.events = []

    def status(self, text):
        self.events.append(("status", text))

    def progress(self, fraction, text=None):
        self.events.append(("progress", fraction))

    def log(self, text):
        self.events.append(("log", text))

    def warning(self, text):
        self.events.append(("warning", text))

    def texts(self, kind):
        return [payload for k, payload in self.events if k == kind]


class TempRoot:
    """A throwaway filesystem root: write('/etc/os-release', '...')."""

    def __init__(self):
        self._dir = tempfile.TemporaryDirectory()
        self.path = Path(self._dir.name)

    def write(self, rel, text=""):
        p = self.path / rel.lstrip("/")
        p.parent.mkdir(parents=True, exist_ok=True)
        p.write_text(text, encoding="utf-8")
        return p

    def mkdir(self, rel):
        p = self.path / rel.lstrip("/")
        p.mkdir(parents=True, exist_ok=True)
        return p

    def cleanup(self):
        self._dir.cleanup()

    def __str__(self):
        return str(self.path)


# ─── Fixture Text ─────────────────────────────────────────────────────────────

LSPCI = """\
00:00.0 Host bridge [0600]: Intel Corporation 8th Gen Core Processor Host Bridge/DRAM Registers [8086:3ec2] (rev 07)
00:02.0 VGA compatible controller [0300]: Intel Corporation UHD Graphics 630 (Desktop) [8086:3e92]
00:1f.3 Audio device [0403]: Intel Corporation Cannon Lake PCH cAVS [8086:a348] (rev 10)
01:00.0 VGA compatible controller [0300]: NVIDIA Corporation GA106 [GeForce RTX 3060] [10de:2503] (rev a1)
01:00.1 Audio device [0403]: NVIDIA Corporation GA106 High Definition Audio Controller [10de:228e] (rev a1)
03:00.0 Ethernet controller [0200]: Realtek Semiconductor Co., Ltd. RTL8111/8168/8411 PCI Express Gigabit Ethernet Controller [10ec:8168] (rev 15)
04:00.0 Network controller [0280]: Intel Corporation Wi-Fi 6 AX200 [8086:2723] (rev 1a)
"""

LSMOD = """\
Module                  Size  Used by
nvidia_drm             77824  4
nvidia               56537088  205 nvidia_drm
i915                 3661824  0
r8169                 106496  0
iwlwifi               491520  1 iwlmvm
"""

DPKG_L = """\
Desired=Unknown/Install/Remove/Purge/Hold
| Status=Not/Inst/Conf-files/Unpacked/halF-conf/Half-inst/trig-aWait/Trig-pend
|/ Err?=(none)/Reinst-required (Status,Err: uppercase=bad)
||/ Name                           Version              Architecture Description
+++-==============================-====================-============-=================================
ii  bash                           5.2.15-2+b2          amd64        GNU Bourne Again SHell
ii  firmware-iwlwifi               20230210-5           all          Binary firmware for Intel Wireless cards
ii  firmware-linux-nonfree         20230210-5           all          Binary firmware for various drivers
ii  linux-headers-6.1.0-12-amd64   6.1.52-1             amd64        Header files for Linux 6.1.0-12-amd64
ii  linux-image-6.1.0-12-amd64     6.1.52-1             amd64        Linux 6.1 for 64-bit PCs (signed)
ii  linux-image-6.1.0-13-amd64     6.1.55-1             amd64        Linux 6.1 for 64-bit PCs (signed)
ii  nvidia-driver                  535.129.03-1         amd64        NVIDIA metapackage
ii  pulseaudio                     16.1+dfsg1-2+b1      amd64        PulseAudio sound server
rc  r8168-dkms                     8.051.02-1           all          dkms source for the r8168 network driver
"""

GRUB_CFG = """\
### BEGIN /etc/grub.d/10_linux ###
function gfxmode {
	set gfxpayload="${1}"
}
menuentry 'Debian GNU/Linux' --class debian --class gnu-linux --class os $menuentry_id_option 'gnulinux-simple-1234' {
	load_video
	linux	/boot/vmlinuz-6.1.0-13-amd64 root=UUID=1234 ro quiet
}
submenu 'Advanced options for Debian GNU/Linux' $menuentry_id_option 'gnulinux-advanced-1234' {
	menuentry 'Debian GNU/Linux, with Linux 6.1.0-13-amd64' --class debian --class gnu-linux --class os $menuentry_id_option 'gnulinux-6.1.0-13-amd64-advanced-1234' {
		load_video
		if [ x$grub_platform = xxen ]; then insmod xzio; insmod lzopio; fi
		echo	'Loading Linux 6.1.0-13-amd64 ...'
		linux	/boot/vmlinuz-6.1.0-13-amd64 root=UUID=1234 ro quiet
	}
	menuentry 'Debian GNU/Linux, with Linux 6.1.0-13-amd64 (recovery mode)' --class debian $menuentry_id_option 'gnulinux-6.1.0-13-amd64-recovery-1234' {
		linux	/boot/vmlinuz-6.1.0-13-amd64 root=UUID=1234 ro single
	}
	menuentry 'Debian GNU/Linux, with Linux 6.1.0-12-amd64' --class debian $menuentry_id_option 'gnulinux-6.1.0-12-amd64-advanced-1234' {
		linux	/boot/vmlinuz-6.1.0-12-amd64 root=UUID=1234 ro quiet
	}
}
### END /etc/grub.d/10_linux ###
menuentry 'UEFI Firmware Settings' $menuentry_id_option 'uefi-firmware' {
	fwsetup
}
"""
