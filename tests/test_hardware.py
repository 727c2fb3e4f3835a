import unittest

from debkm.hardware import (
    classify, detect_hardware, has_bluetooth_hardware, has_keyword, modalias_for,
)
from debkm.parsers import parse_lspci
from debkm.system import SystemProbe
from tests.helpers import FakeRunner, LSPCI, TempRoot

AMD_GPU = (
    "03:00.0 VGA compatible controller [0300]: Advanced Micro Devices, Inc. [AMD/ATI] "
    "Navi 23 [Radeon RX 6600] [1002:73ff] (rev c1)\n"
    "03:00.1 Audio device [0403]: Advanced Micro Devices, Inc. [AMD/ATI] "
    "Navi 21/23 HDMI/DP Audio Controller [1002:ab28]\n"
)

COMBO = "02:00.0 Network controller [0280]: Intel Corporation Wi-Fi 6 AX201 / Bluetooth [8086:a0f0]\n"


class TestClassification(unittest.TestCase):

    def setUp(self):
        self.profile = classify(parse_lspci(LSPCI))

    # ── graphics ─────────────────────────────────────────────────────────────

    def test_nvidia_display_function_only(self):
        ids = [d.device_id for d in self.profile.matching("nvidia")]
        self.assertEqual(ids, ["10de:2503"])

    def test_nvidia_audio_function_is_audio(self):
        ids = [d.device_id for d in self.profile.matching("audio")]
        self.assertIn("10de:228e", ids)
        self.assertIn("8086:a348", ids)

    def test_compatible_is_not_ati(self):
        self.assertFalse(self.profile.has("amd"))
        self.assertFalse(has_keyword("vga compatible controller", ("ati",)))

    def test_intel_graphics(self):
        self.assertEqual([d.device_id for d in self.profile.matching("intel")], ["8086:3e92"])

    def test_amd_gpu_and_hdmi_audio(self):
        profile = classify(parse_lspci(AMD_GPU))
        self.assertEqual([d.device_id for d in profile.matching("amd")], ["1002:73ff"])
        self.assertFalse(profile.has("audio"))
        self.assertIn("amd", profile.graphics)

    def test_codename_only_description_classified_by_class(self):
        text = ("01:00.0 VGA compatible controller [0300]: NVIDIA Corporation Device [10de:2882] (rev a1)\n"
                "01:00.1 Audio device [0403]: NVIDIA Corporation Device [10de:22be] (rev a1)\n")
        profile = classify(parse_lspci(text))
        self.assertEqual([d.device_id for d in profile.matching("nvidia")], ["10de:2882"])
        self.assertIn("10de:22be", [d.device_id for d in profile.matching("audio")])

    # ── network ──────────────────────────────────────────────────────────────

    def test_network_buckets(self):
        self.assertTrue(self.profile.has("realtek-ethernet"))
        self.assertFalse(self.profile.has("realtek-wifi"))
        self.assertTrue(self.profile.has("intel-wifi"))
        self.assertEqual(set(self.profile.network), {"realtek-ethernet", "intel-wifi"})

    def test_combo_device_in_every_bucket(self):
        profile = classify(parse_lspci(COMBO))
        device = profile.devices[0]
        self.assertEqual(profile.categories_of(device), ["network", "bluetooth"])
        self.assertTrue(profile.has_bluetooth)


class TestProbing(unittest.TestCase):

    def setUp(self):
        self.root = TempRoot()

    def tearDown(self):
        self.root.cleanup()

    def test_bluetooth_from_usb_listing(self):
        runner = FakeRunner({("lsusb",): "Bus 001 Device 003: ID 8087:0026 Intel Corp. AX201 Bluetooth\n"})
        self.assertTrue(has_bluetooth_hardware(SystemProbe(runner, str(self.root)), []))

    def test_bluetooth_from_sysfs(self):
        self.root.mkdir("/sys/class/bluetooth")
        self.assertTrue(has_bluetooth_hardware(SystemProbe(FakeRunner(), str(self.root)), []))

    def test_modalias_lookup(self):
        aliases = ["usb:v8087p0026d0002dcE0dsc01dp01icE0isc01ip01in00",
                   "pci:v000010DEd00002503sv00001458sd0000404Bbc03sc00i00"]
        self.assertEqual(modalias_for("10de:2503", aliases), aliases[1])
        self.assertIsNone(modalias_for("10de:1e82", aliases))
        self.assertIsNone(modalias_for("CPU", aliases))

    def test_sysfs_modaliases(self):
        self.root.write("/sys/bus/usb/devices/1-4/modalias", "usb:v8087p0026\n")
        self.root.write("/sys/bus/pci/devices/0000:00:02.0/modalias", "pci:v00008086d00003E92\n")
        probe = SystemProbe(FakeRunner(), str(self.root))
        self.assertEqual(probe.modaliases(), ["pci:v00008086d00003E92", "usb:v8087p0026"])

    def test_no_bluetooth(self):
        self.assertFalse(has_bluetooth_hardware(SystemProbe(FakeRunner(), str(self.root)), []))

    def test_detect_hardware_folds_in_probes(self):
        self.root.mkdir("/proc/asound")
        runner = FakeRunner({("lspci", "-nn"): AMD_GPU,
                             ("lscpu",): "Vendor ID:           GenuineIntel\n"})
        profile = detect_hardware(SystemProbe(runner, str(self.root)))
        self.assertTrue(profile.has_audio)
        self.assertTrue(profile.intel_cpu)
        self.assertFalse(profile.has_bluetooth)
        self.assertTrue(profile.has("amd"))


if __name__ == "__main__":
    unittest.main()
