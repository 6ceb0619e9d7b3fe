"""Ways a module can obtain its compiled native binary.

Two variants share one contract: ``produce()`` leaves ``.node`` binaries in
the module's ``build/<Release|Debug>`` directory and returns the command
result, or raises BuildProcessError.

- LocalCompileStrategy: compile from the module's ``binding.gyp``
- PrebuiltDownloadStrategy: fetch a published binary for the identity
"""

from __future__ import annotations

import logging
from pathlib import Path

from native_rebuild.builds.binary import resolve_binary_layout
from native_rebuild.builds.runner import (
    CommandResult,
    compose_node_gyp_command,
    compose_prebuild_install_command,
    run_command,
)
from native_rebuild.config import Settings
from native_rebuild.errors import BuildProcessError
from native_rebuild.toolchain.service import ToolchainBundle
from native_rebuild.types import BuildKind, ModuleCandidate, TargetIdentity

logger = logging.getLogger(__name__)


def find_built_binaries(module_dir: Path, build_type: str) -> list[Path]:
    """List compiled addon binaries in a module's build output directory."""
    output_dir = module_dir / "build" / build_type
    if not output_dir.is_dir():
        return []
    return sorted(p for p in output_dir.glob("*.node") if p.is_file())


class BinaryStrategy:
    """Base class for obtaining a module's compiled binary."""

    kind: BuildKind

    def __init__(self, settings: Settings) -> None:
        self.settings = settings

    def command(
        self,
        candidate: ModuleCandidate,
        identity: TargetIdentity,
        toolchain: ToolchainBundle,
    ) -> list[str]:
        raise NotImplementedError

    def produce(
        self,
        candidate: ModuleCandidate,
        identity: TargetIdentity,
        toolchain: ToolchainBundle,
        log_path: Path,
        append_log: bool = False,
    ) -> CommandResult:
        """Run the strategy and check that it produced a binary.

        Raises:
            BuildProcessError: On non-zero exit, timeout or missing output.
        """
        result = run_command(
            self.command(candidate, identity, toolchain),
            cwd=candidate.path,
            log_path=log_path,
            timeout=self.settings.build_timeout,
            env_override=toolchain.env or None,
            append=append_log,
        )
        if not result.success:
            raise BuildProcessError(
                result.error_message or "build failed",
                exit_code=result.exit_code,
                log_path=log_path,
            )

        if not find_built_binaries(candidate.path, identity.build_type):
            raise BuildProcessError(
                f"{self.kind.value} produced no binary in build/{identity.build_type}",
                exit_code=result.exit_code,
                log_path=log_path,
                code="missing_output",
            )
        return result


class LocalCompileStrategy(BinaryStrategy):
    """Compile the addon with node-gyp against the provisioned headers."""

    kind = BuildKind.LOCAL_COMPILE

    def command(
        self,
        candidate: ModuleCandidate,
        identity: TargetIdentity,
        toolchain: ToolchainBundle,
    ) -> list[str]:
        layout = resolve_binary_layout(candidate, identity, self.settings.runtime_name)
        return compose_node_gyp_command(
            self.settings.node_gyp,
            identity,
            dist_url=toolchain.dist_url,
            devdir=toolchain.devdir,
            gyp_options=layout.gyp_options if layout else None,
        )

    def produce(
        self,
        candidate: ModuleCandidate,
        identity: TargetIdentity,
        toolchain: ToolchainBundle,
        log_path: Path,
        append_log: bool = False,
    ) -> CommandResult:
        if not candidate.descriptor_path.is_file():
            raise BuildProcessError(
                f"No build descriptor at {candidate.descriptor_path}",
                code="descriptor_missing",
            )
        return super().produce(candidate, identity, toolchain, log_path, append_log)


class PrebuiltDownloadStrategy(BinaryStrategy):
    """Fetch a binary published for the identity with prebuild-install."""

    kind = BuildKind.PREBUILT

    def command(
        self,
        candidate: ModuleCandidate,
        identity: TargetIdentity,
        toolchain: ToolchainBundle,
    ) -> list[str]:
        return compose_prebuild_install_command(
            self.settings.prebuild_install,
            identity,
            runtime_name=self.settings.runtime_name,
        )


def select_strategies(
    candidate: ModuleCandidate,
    identity: TargetIdentity,
    settings: Settings,
    build_from_source: bool = False,
) -> list[BinaryStrategy]:
    """Choose the ordered strategies to attempt for a module.

    Published binaries only exist for release builds with the default
    compiler, so debug or compiler-override identities always compile.
    """
    prebuilt_allowed = (
        candidate.build_kind is BuildKind.PREBUILT
        and not build_from_source
        and not identity.debug
        and identity.compiler is None
    )
    if not prebuilt_allowed:
        return [LocalCompileStrategy(settings)]

    strategies: list[BinaryStrategy] = [PrebuiltDownloadStrategy(settings)]
    if candidate.descriptor_path.is_file():
        strategies.append(LocalCompileStrategy(settings))
    return strategies


__all__ = [
    "BinaryStrategy",
    "LocalCompileStrategy",
    "PrebuiltDownloadStrategy",
    "find_built_binaries",
    "select_strategies",
]
