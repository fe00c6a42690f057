"""Tests for XcodeToolchain with subprocess and the platform mocked out."""

import subprocess

import pytest

from trunk_swift.core.config import ProjectConfig
from trunk_swift.core.errors import NotFoundError, ToolUnavailableError
from trunk_swift.core.toolchain import XcodeToolchain, filter_devices, parse_schemes

LIST_OUTPUT = """\
Information about project "Broke":
    Targets:
        Broke
        BrokeTests

    Build Configurations:
        Debug
        Release

    Schemes:
        Broke
        BrokeWidget

"""

DEVICES_OUTPUT = """\
== Devices ==
-- iOS 17.2 --
    iPhone 15 (5A1B2C3D-0000-0000-0000-000000000001) (Shutdown)
    iPhone 15 Pro (5A1B2C3D-0000-0000-0000-000000000002) (Shutdown)
    iPad Air (5th generation) (5A1B2C3D-0000-0000-0000-000000000003) (Shutdown)
-- watchOS 10.2 --
    Apple Watch Series 9 (45mm) (5A1B2C3D-0000-0000-0000-000000000004) (Shutdown)
"""


def _completed(returncode=0, stdout="", stderr=""):
    return subprocess.CompletedProcess(args=[], returncode=returncode, stdout=stdout, stderr=stderr)


@pytest.fixture
def project(tmp_path):
    return ProjectConfig(name="Broke", root=tmp_path)


@pytest.fixture
def toolchain(project, tmp_path):
    return XcodeToolchain(project, derived_data_dir=tmp_path / "DerivedData")


@pytest.fixture
def run(mocker):
    return mocker.patch("trunk_swift.core.toolchain.subprocess.run", return_value=_completed())


class TestParsing:

    def test_parse_schemes(self):
        assert parse_schemes(LIST_OUTPUT) == ["Broke", "BrokeWidget"]

    def test_parse_schemes_without_section(self):
        assert parse_schemes("Information about project \"Broke\":\n") == []

    def test_filter_devices(self):
        lines = filter_devices(DEVICES_OUTPUT)

        assert len(lines) == 3
        assert lines[0].startswith("iPhone 15 (")
        assert not any("Apple Watch" in line for line in lines)

    def test_filter_devices_limit(self):
        assert len(filter_devices(DEVICES_OUTPUT, limit=1)) == 1


class TestCheckDependencies:

    def test_requires_macos(self, toolchain, mocker):
        mocker.patch("trunk_swift.core.toolchain.platform.system", return_value="Linux")

        with pytest.raises(ToolUnavailableError, match="macOS"):
            toolchain.check_dependencies()

    def test_missing_xcodebuild(self, toolchain, mocker):
        mocker.patch("trunk_swift.core.toolchain.platform.system", return_value="Darwin")
        mocker.patch("trunk_swift.core.toolchain.shutil.which", return_value=None)

        with pytest.raises(ToolUnavailableError, match="xcodebuild not found"):
            toolchain.check_dependencies()

    def test_command_line_tools_only(self, toolchain, mocker, run):
        mocker.patch("trunk_swift.core.toolchain.platform.system", return_value="Darwin")
        mocker.patch("trunk_swift.core.toolchain.shutil.which", return_value="/usr/bin/tool")
        run.return_value = _completed(returncode=1, stderr="xcode-select: error")

        with pytest.raises(ToolUnavailableError, match="xcode-select --switch"):
            toolchain.check_dependencies()

    def test_passes(self, toolchain, mocker, run):
        mocker.patch("trunk_swift.core.toolchain.platform.system", return_value="Darwin")
        mocker.patch("trunk_swift.core.toolchain.shutil.which", return_value="/usr/bin/tool")
        run.return_value = _completed(stdout="Xcode 15.2\nBuild version 15C500b\n")

        toolchain.check_dependencies()
        assert run.call_args.args[0] == ["xcodebuild", "-version"]


class TestBuildAndClean:

    def test_build_command(self, toolchain):
        assert toolchain.build_command() == [
            "xcodebuild", "build",
            "-project", "Broke.xcodeproj",
            "-scheme", "Broke",
            "-configuration", "Debug",
            "-destination", "generic/platform=iOS",
        ]

    def test_build_streams_and_returns_status(self, toolchain, project, run):
        run.return_value = _completed(returncode=65)

        assert toolchain.build() == 65
        run.assert_called_once_with(toolchain.build_command(), cwd=project.root)

    def test_clean(self, toolchain, project, run):
        assert toolchain.clean() == 0
        run.assert_called_once_with(
            ["xcodebuild", "clean", "-project", "Broke.xcodeproj",
             "-scheme", "Broke", "-configuration", "Debug"],
            cwd=project.root,
        )

    def test_missing_executable(self, toolchain, run):
        run.side_effect = FileNotFoundError("xcodebuild")

        with pytest.raises(ToolUnavailableError, match="Command Line Tools"):
            toolchain.build()

    def test_query_timeout(self, toolchain, run):
        run.side_effect = subprocess.TimeoutExpired(cmd="xcodebuild", timeout=60)

        with pytest.raises(ToolUnavailableError, match="did not respond"):
            toolchain.list_schemes()


class TestQueries:

    def test_list_schemes(self, toolchain, run):
        run.return_value = _completed(stdout=LIST_OUTPUT)

        assert toolchain.list_schemes() == ["Broke", "BrokeWidget"]
        assert run.call_args.args[0] == ["xcodebuild", "-list", "-project", "Broke.xcodeproj"]

    def test_list_schemes_failure_is_empty(self, toolchain, run):
        run.return_value = _completed(returncode=74)
        assert toolchain.list_schemes() == []

    def test_list_devices_failure(self, toolchain, run):
        run.return_value = _completed(returncode=1, stderr="No runtimes")

        with pytest.raises(ToolUnavailableError, match="No runtimes"):
            toolchain.list_devices()


class TestBoot:

    def test_unknown_device(self, toolchain, run):
        run.return_value = _completed(stdout=DEVICES_OUTPUT)

        with pytest.raises(NotFoundError, match="iPhone 99"):
            toolchain.boot("iPhone 99")

    def test_name_prefix_is_not_a_match(self, toolchain, run):
        run.return_value = _completed(stdout=DEVICES_OUTPUT)

        with pytest.raises(NotFoundError):
            toolchain.boot("iPhone 1")

    def test_boots_device(self, toolchain, run):
        run.side_effect = [_completed(stdout=DEVICES_OUTPUT), _completed()]

        assert toolchain.boot("iPhone 15") == 0
        assert run.call_args.args[0] == ["xcrun", "simctl", "boot", "iPhone 15"]

    def test_already_booted_counts_as_success(self, toolchain, run):
        run.side_effect = [
            _completed(stdout=DEVICES_OUTPUT),
            _completed(returncode=149,
                       stderr="Unable to boot device in current state: Booted"),
        ]

        assert toolchain.boot("iPhone 15") == 0

    def test_other_boot_failure_is_returned(self, toolchain, run):
        run.side_effect = [
            _completed(stdout=DEVICES_OUTPUT),
            _completed(returncode=2, stderr="launchd failed"),
        ]

        assert toolchain.boot("iPhone 15 Pro") == 2

    def test_open_simulator(self, toolchain, run):
        assert toolchain.open_simulator() == 0
        assert run.call_args.args[0] == ["open", "-a", "Simulator"]


class TestDerivedData:

    def test_removes_only_project_entries(self, toolchain, tmp_path):
        derived = tmp_path / "DerivedData"
        (derived / "Broke-abcdef" / "Build").mkdir(parents=True)
        (derived / "Broke-abcdef" / "Build" / "app.o").write_bytes(b"\0")
        (derived / "Broke-stale.log").write_text("log")
        (derived / "Other-123").mkdir()

        removed = toolchain.remove_derived_data()

        assert sorted(p.name for p in removed) == ["Broke-abcdef", "Broke-stale.log"]
        assert not (derived / "Broke-abcdef").exists()
        assert (derived / "Other-123").is_dir()

    def test_missing_directory(self, toolchain):
        assert toolchain.remove_derived_data() == []
