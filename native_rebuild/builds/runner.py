"""Build runner for external native build tools.

This module handles:
- Composing ``node-gyp`` and ``prebuild-install`` command lines for a
  target identity
- Executing a command with subprocess in a module directory
- Capturing stdout/stderr to a log file
- Enforcing build timeouts
"""

from __future__ import annotations

import logging
import os
import shlex
import subprocess
from dataclasses import dataclass
from datetime import datetime, timezone
from pathlib import Path

from native_rebuild.errors import BuildProcessError
from native_rebuild.types import TargetIdentity, host_platform

logger = logging.getLogger(__name__)

LOG_FILENAME = ".native-rebuild.log"


@dataclass
class CommandResult:
    """Result of an external build command.

    Attributes:
        success: Whether the command exited with status 0.
        exit_code: Process exit code.
        log_path: Path to the captured output.
        started_at: Start time.
        finished_at: Finish time.
        command: The command that was executed.
        error_message: Error message if the command failed.
    """

    success: bool
    exit_code: int
    log_path: Path
    started_at: datetime
    finished_at: datetime
    command: str
    error_message: str | None = None

    @property
    def duration_seconds(self) -> float:
        return (self.finished_at - self.started_at).total_seconds()


def compose_node_gyp_command(
    node_gyp: str,
    identity: TargetIdentity,
    dist_url: str,
    devdir: Path,
    gyp_options: dict[str, str] | None = None,
) -> list[str]:
    """Compose a ``node-gyp rebuild`` command for an identity.

    Args:
        node_gyp: node-gyp executable (may include arguments).
        identity: Target identity to build against.
        dist_url: URL serving the runtime headers.
        devdir: Directory holding the provisioned headers.
        gyp_options: Extra gyp variables, passed as ``--<key>=<value>``.

    Returns:
        Command as list of strings suitable for subprocess.
    """
    cmd = shlex.split(node_gyp)
    cmd.append("rebuild")
    cmd.append(f"--target={identity.runtime_version}")
    cmd.append(f"--arch={identity.arch.value}")
    cmd.append(f"--dist-url={dist_url}")
    cmd.append(f"--devdir={devdir}")
    cmd.append("--build-from-source")
    if identity.debug:
        cmd.append("--debug")
    for key, value in sorted((gyp_options or {}).items()):
        cmd.append(f"--{key}={value}")
    return cmd


def compose_prebuild_install_command(
    prebuild_install: str,
    identity: TargetIdentity,
    runtime_name: str,
) -> list[str]:
    """Compose a ``prebuild-install`` command for an identity.

    Args:
        prebuild_install: prebuild-install executable (may include arguments).
        identity: Target identity to fetch a binary for.
        runtime_name: Runtime name understood by the prebuilt host.

    Returns:
        Command as list of strings suitable for subprocess.
    """
    cmd = shlex.split(prebuild_install)
    cmd.append(f"--runtime={runtime_name}")
    cmd.append(f"--target={identity.runtime_version}")
    cmd.append(f"--arch={identity.arch.value}")
    cmd.append(f"--platform={host_platform()}")
    cmd.append("--force")
    cmd.append("--verbose")
    return cmd


def run_command(
    cmd: list[str],
    cwd: Path,
    log_path: Path,
    timeout: int | None = None,
    env_override: dict[str, str] | None = None,
    append: bool = False,
) -> CommandResult:
    """Run an external build command, capturing output to a log file.

    Args:
        cmd: Command to execute.
        cwd: Working directory (the module directory).
        log_path: File receiving stdout and stderr.
        timeout: Timeout in seconds (None = no timeout).
        env_override: Environment variable overrides.
        append: Append to an existing log instead of truncating it.

    Returns:
        CommandResult with execution details.

    Raises:
        BuildProcessError: If the command cannot be started or times out.
    """
    cmd_str = shlex.join(cmd)
    logger.debug("Executing %s in %s", cmd_str, cwd)

    started_at = datetime.now(timezone.utc)
    error_message: str | None = None

    env: dict[str, str] | None = None
    if env_override:
        env = dict(os.environ)
        env.update(env_override)

    try:
        with log_path.open("a" if append else "w") as log_file:
            log_file.write(f"# Command: {cmd_str}\n")
            log_file.write(f"# Started: {started_at.isoformat()}\n")
            log_file.write(f"# CWD: {cwd}\n")
            if env_override:
                log_file.write(f"# Env: {' '.join(sorted(env_override))}\n")
            log_file.write("# " + "=" * 70 + "\n\n")
            log_file.flush()

            result = subprocess.run(
                cmd,
                cwd=cwd,
                stdout=log_file,
                stderr=subprocess.STDOUT,
                timeout=timeout,
                env=env,
                check=False,
            )

        exit_code = result.returncode
        success = exit_code == 0
        if not success:
            error_message = f"{cmd[0]} failed with exit code {exit_code}"

    except subprocess.TimeoutExpired as e:
        error_message = f"{cmd[0]} timed out after {timeout} seconds"
        with log_path.open("a") as log_file:
            log_file.write(f"\n# TIMEOUT after {timeout} seconds\n")
        raise BuildProcessError(
            error_message,
            exit_code=-1,
            log_path=log_path,
            code="build_timeout",
        ) from e

    except OSError as e:
        raise BuildProcessError(
            f"Failed to execute {cmd[0]}: {e}",
            log_path=log_path,
            code="execution_error",
        ) from e

    finished_at = datetime.now(timezone.utc)

    with log_path.open("a") as log_file:
        log_file.write(f"\n# Finished: {finished_at.isoformat()}\n")
        log_file.write(f"# Exit code: {exit_code}\n")
        duration = (finished_at - started_at).total_seconds()
        log_file.write(f"# Duration: {duration:.1f}s\n\n")

    return CommandResult(
        success=success,
        exit_code=exit_code,
        log_path=log_path,
        started_at=started_at,
        finished_at=finished_at,
        command=cmd_str,
        error_message=error_message,
    )


__all__ = [
    "LOG_FILENAME",
    "CommandResult",
    "compose_node_gyp_command",
    "compose_prebuild_install_command",
    "run_command",
]
