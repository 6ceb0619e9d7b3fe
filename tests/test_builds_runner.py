"""Tests for builds/runner.py module.

Tests command composition and execution.
Uses mocked subprocess for failure paths.
"""

import subprocess
import sys
from pathlib import Path
from unittest.mock import MagicMock, patch

import pytest

from native_rebuild.builds.runner import (
    compose_node_gyp_command,
    compose_prebuild_install_command,
    run_command,
)
from native_rebuild.errors import BuildProcessError
from native_rebuild.types import TargetIdentity

IDENTITY = TargetIdentity("28.1.0", "arm64")


class TestComposeNodeGypCommand:
    """Tests for compose_node_gyp_command function."""

    def test_release(self) -> None:
        cmd = compose_node_gyp_command(
            "node-gyp", IDENTITY, "https://h.example.com", Path("/cache")
        )
        assert cmd == [
            "node-gyp",
            "rebuild",
            "--target=28.1.0",
            "--arch=arm64",
            "--dist-url=https://h.example.com",
            "--devdir=/cache",
            "--build-from-source",
        ]

    def test_debug(self) -> None:
        cmd = compose_node_gyp_command(
            "node-gyp", IDENTITY.with_overrides(debug=True), "u", Path("/c")
        )
        assert cmd[-1] == "--debug"

    def test_executable_with_arguments(self) -> None:
        cmd = compose_node_gyp_command("npx node-gyp", IDENTITY, "u", Path("/c"))
        assert cmd[:3] == ["npx", "node-gyp", "rebuild"]

    def test_gyp_options_sorted_after_flags(self) -> None:
        cmd = compose_node_gyp_command(
            "node-gyp",
            IDENTITY,
            "u",
            Path("/c"),
            gyp_options={"module_path": "/m/lib/binding", "module_name": "addon"},
        )
        assert cmd[-3:] == [
            "--build-from-source",
            "--module_name=addon",
            "--module_path=/m/lib/binding",
        ]


class TestComposePrebuildInstallCommand:
    """Tests for compose_prebuild_install_command function."""

    def test_flags(self) -> None:
        cmd = compose_prebuild_install_command("prebuild-install", IDENTITY, "electron")
        assert cmd[0] == "prebuild-install"
        assert "--runtime=electron" in cmd
        assert "--target=28.1.0" in cmd
        assert "--arch=arm64" in cmd
        assert "--force" in cmd


class TestRunCommand:
    """Tests for run_command function."""

    def test_success_captures_output(self, tmp_path: Path) -> None:
        log_path = tmp_path / "build.log"
        result = run_command(
            [sys.executable, "-c", "print('compiled ok')"],
            cwd=tmp_path,
            log_path=log_path,
        )
        assert result.success is True
        assert result.exit_code == 0
        assert result.duration_seconds >= 0
        log = log_path.read_text()
        assert "compiled ok" in log
        assert "# Exit code: 0" in log

    def test_non_zero_exit(self, tmp_path: Path) -> None:
        result = run_command(
            [sys.executable, "-c", "import sys; sys.exit(3)"],
            cwd=tmp_path,
            log_path=tmp_path / "build.log",
        )
        assert result.success is False
        assert result.exit_code == 3
        assert "exit code 3" in result.error_message

    def test_env_override(self, tmp_path: Path) -> None:
        log_path = tmp_path / "build.log"
        run_command(
            [sys.executable, "-c", "import os; print(os.environ['CC'])"],
            cwd=tmp_path,
            log_path=log_path,
            env_override={"CC": "/opt/clang/bin/clang"},
        )
        assert "/opt/clang/bin/clang" in log_path.read_text()

    def test_append(self, tmp_path: Path) -> None:
        log_path = tmp_path / "build.log"
        log_path.write_text("previous attempt\n")
        run_command(
            [sys.executable, "-c", "pass"],
            cwd=tmp_path,
            log_path=log_path,
            append=True,
        )
        assert log_path.read_text().startswith("previous attempt")

    def test_timeout(self, tmp_path: Path) -> None:
        with patch(
            "native_rebuild.builds.runner.subprocess.run",
            side_effect=subprocess.TimeoutExpired(cmd="node-gyp", timeout=5),
        ):
            with pytest.raises(BuildProcessError) as exc_info:
                run_command(["node-gyp"], cwd=tmp_path, log_path=tmp_path / "b.log", timeout=5)

        assert exc_info.value.code == "build_timeout"
        assert "TIMEOUT" in (tmp_path / "b.log").read_text()

    def test_missing_executable(self, tmp_path: Path) -> None:
        with patch(
            "native_rebuild.builds.runner.subprocess.run",
            side_effect=FileNotFoundError("node-gyp"),
        ):
            with pytest.raises(BuildProcessError) as exc_info:
                run_command(["node-gyp"], cwd=tmp_path, log_path=tmp_path / "b.log")

        assert exc_info.value.code == "execution_error"

    def test_subprocess_arguments(self, tmp_path: Path) -> None:
        mock_run = MagicMock(return_value=MagicMock(returncode=0))
        with patch("native_rebuild.builds.runner.subprocess.run", mock_run):
            run_command(["node-gyp", "rebuild"], cwd=tmp_path, log_path=tmp_path / "b.log")

        kwargs = mock_run.call_args.kwargs
        assert kwargs["cwd"] == tmp_path
        assert kwargs["stderr"] == subprocess.STDOUT
        assert kwargs["env"] is None
