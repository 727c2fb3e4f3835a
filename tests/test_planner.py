import unittest

from debkm.errors import CurrentKernelProtected, MutationError, PreconditionError
from debkm.kernels import KernelCache
from debkm.parsers import parse_dpkg_list
from debkm.planner import (
    execute_kernel_removal, install_driver, install_kernel, modules_for_package,
    plan_kernel_removal, remove_driver, remove_kernel,
)
from debkm.runner import CommandResult
from tests.helpers import DPKG_L, FakeRunner, RecordingReporter, TempRoot

CURRENT = "6.1.0-13-amd64"


class TestKernelRemovalGuard(unittest.TestCase):
    """The running kernel is refused before any command runs."""

    def assert_refused(self, package, current=CURRENT):
        runner = FakeRunner({("dpkg", "-l"): DPKG_L})
        with self.assertRaises(CurrentKernelProtected):
            remove_kernel(RecordingReporter(), package, current_kernel=current,
                          runner=runner, cache=KernelCache())
        self.assertEqual(runner.calls, [])

    def test_image(self):
        self.assert_refused("linux-image-6.1.0-13-amd64")

    def test_unsigned_image(self):
        self.assert_refused("linux-image-unsigned-6.1.0-13-amd64")

    def test_headers(self):
        self.assert_refused("linux-headers-6.1.0-13-amd64")

    def test_current_with_suffix(self):
        self.assert_refused("linux-image-6.1.0-13-amd64", current="6.1.0-13-amd64-unsigned")

    def test_bare_version(self):
        self.assert_refused("6.1.0-13-amd64")

    def test_bare_version_with_suffix(self):
        self.assert_refused("6.1.0-13-amd64-unsigned")

    def test_bare_version_plan(self):
        with self.assertRaises(CurrentKernelProtected):
            plan_kernel_removal(CURRENT, CURRENT, installed={})

    def test_non_kernel_target(self):
        for package in ("6.1.0-12-amd64", "linux-image-amd64", "bash"):
            runner = FakeRunner({("dpkg", "-l"): DPKG_L})
            with self.assertRaises(PreconditionError):
                remove_kernel(RecordingReporter(), package, current_kernel=CURRENT,
                              runner=runner, cache=KernelCache())
            self.assertEqual(runner.calls, [], package)

    def test_invalid_name(self):
        runner = FakeRunner()
        with self.assertRaises(PreconditionError):
            plan_kernel_removal("linux-image-6.1.0-12-amd64; rm -rf /", CURRENT, runner=runner)
        self.assertEqual(runner.calls, [])


class TestKernelRemoval(unittest.TestCase):

    def test_plan_expands_related(self):
        plan = plan_kernel_removal("linux-image-6.1.0-12-amd64", CURRENT,
                                   installed=parse_dpkg_list(DPKG_L))
        self.assertEqual(plan.version, "6.1.0-12-amd64")
        self.assertEqual(plan.packages, ["linux-image-6.1.0-12-amd64",
                                         "linux-headers-6.1.0-12-amd64"])
        self.assertEqual(plan.commands()[-1], ["pkexec", "apt", "autoremove", "-y"])

    def test_failure_continues(self):
        runner = FakeRunner({
            ("pkexec", "apt", "remove", "--purge", "-y", "linux-image-6.1.0-12-amd64"): "Removing ...\n",
            ("pkexec", "apt", "autoremove", "-y"): "",
        })
        cache = KernelCache()
        cache.set(["stale"])
        plan = plan_kernel_removal("linux-image-6.1.0-12-amd64", CURRENT,
                                   installed=parse_dpkg_list(DPKG_L))
        reporter = RecordingReporter()
        failed = execute_kernel_removal(plan, reporter, runner, cache)
        self.assertEqual(failed, ["linux-headers-6.1.0-12-amd64"])
        self.assertEqual(len(runner.privileged_calls()), 3)
        self.assertTrue(any("linux-headers-6.1.0-12-amd64" in w for w in reporter.texts("warning")))
        self.assertIsNone(cache.get())
        self.assertEqual(reporter.texts("progress")[-1], 1.0)

    def test_remove_kernel_reads_installed(self):
        runner = FakeRunner({("dpkg", "-l"): DPKG_L}, default=CommandResult(0))
        failed = remove_kernel(RecordingReporter(), "linux-image-6.1.0-12-amd64",
                               current_kernel=CURRENT, runner=runner, cache=KernelCache())
        self.assertEqual(failed, [])
        self.assertIn(["apt", "remove", "--purge", "-y", "linux-headers-6.1.0-12-amd64"],
                      runner.privileged_calls())


class TestKernelInstall(unittest.TestCase):

    SEARCH = ("linux-image-6.1.0-15-amd64/stable 6.1.66-1 amd64\n"
              "  Linux 6.1 for 64-bit PCs (signed)\n")

    def test_install(self):
        package = "linux-image-6.1.0-15-amd64"
        runner = FakeRunner({
            ("apt", "search", package): self.SEARCH,
            ("pkexec", "apt", "install", "-y", package): "Unpacking x\nSetting up x\n",
        })
        cache = KernelCache()
        cache.set(["stale"])
        reporter = RecordingReporter()
        install_kernel(reporter, package, runner, cache)
        self.assertIsNone(cache.get())
        self.assertEqual(reporter.texts("log"), ["Unpacking x", "Setting up x"])
        self.assertEqual(reporter.texts("progress")[-1], 1.0)

    def test_unknown_package_refused_before_pkexec(self):
        runner = FakeRunner({("apt", "search", "linux-image-9.9.9-amd64"): self.SEARCH})
        with self.assertRaises(PreconditionError):
            install_kernel(RecordingReporter(), "linux-image-9.9.9-amd64", runner, KernelCache())
        self.assertEqual(runner.privileged_calls(), [])

    def test_apt_failure(self):
        package = "linux-image-6.1.0-15-amd64"
        runner = FakeRunner({("apt", "search", package): self.SEARCH})
        with self.assertRaises(MutationError):
            install_kernel(RecordingReporter(), package, runner, KernelCache())


class TestDrivers(unittest.TestCase):

    def setUp(self):
        self.root = TempRoot()
        self.backups = self.root.mkdir("/backups")

    def tearDown(self):
        self.root.cleanup()

    def test_modules_table(self):
        self.assertEqual(modules_for_package("nvidia-driver"), ("nvidia",))
        self.assertEqual(modules_for_package("broadcom-sta-dkms"), ("wl",))
        self.assertEqual(modules_for_package("firmware-linux"), ())

    def test_nvidia_needs_nonfree(self):
        self.root.write("/etc/apt/sources.list",
                        "deb http://deb.debian.org/debian bookworm main\n")
        runner = FakeRunner()
        with self.assertRaises(PreconditionError) as ctx:
            install_driver(RecordingReporter(), "nvidia-driver", runner, str(self.root),
                           str(self.backups))
        self.assertIn("non-free", str(ctx.exception))
        self.assertEqual(runner.calls, [])

    def test_nvidia_install(self):
        self.root.write("/etc/apt/sources.list",
                        "deb http://deb.debian.org/debian bookworm main contrib non-free\n")
        runner = FakeRunner({
            ("apt", "search", "nvidia-driver"): "nvidia-driver/stable 535.129.03-1 amd64\n",
            ("pkexec", "apt", "update"): "Hit:1 http://deb.debian.org/debian bookworm InRelease\n",
            ("pkexec", "apt", "install", "-y", "nvidia-driver"): "Unpacking nvidia-driver\n",
            ("pkexec", "modprobe", "-a", "nvidia"): "",
        })
        reporter = RecordingReporter()
        install_driver(reporter, "nvidia-driver", runner, str(self.root), str(self.backups))
        self.assertIn(["modprobe", "-a", "nvidia"], runner.privileged_calls())
        self.assertEqual(reporter.texts("warning"), [])
        self.assertEqual(reporter.texts("status")[-1], "Driver successfully installed")

    def test_install_failure(self):
        runner = FakeRunner({("apt", "search", "pipewire"): "pipewire/stable 0.3.65-3 amd64\n"})
        with self.assertRaises(MutationError):
            install_driver(RecordingReporter(), "pipewire", runner, str(self.root),
                           str(self.backups))

    def test_remove_unknown_module_not_unloaded(self):
        runner = FakeRunner({
            ("pkexec", "apt", "remove", "--purge", "-y", "pipewire"): "Removing pipewire\n",
            ("pkexec", "apt", "autoremove", "-y"): "",
            ("pkexec", "apt", "autoclean"): "",
        })
        reporter = RecordingReporter()
        remove_driver(reporter, "pipewire", runner, str(self.backups))
        self.assertFalse(any(c[0] == "modprobe" for c in runner.privileged_calls()))
        self.assertEqual(reporter.texts("warning"), [])

    def test_remove_module_in_use_is_warning(self):
        runner = FakeRunner({
            ("pkexec", "apt", "remove", "--purge", "-y", "nvidia-driver"): "Removing nvidia\n",
            ("pkexec", "apt", "autoremove", "-y"): "",
            ("pkexec", "apt", "autoclean"): "",
        })
        reporter = RecordingReporter()
        remove_driver(reporter, "nvidia-driver", runner, str(self.backups))
        self.assertEqual(len(reporter.texts("warning")), 1)

    def test_remove_failure(self):
        with self.assertRaises(MutationError):
            remove_driver(RecordingReporter(), "pipewire", FakeRunner(), str(self.backups))


if __name__ == "__main__":
    unittest.main()
