"""Native build invoker.

This module drives the rebuild of a single module:
1. Provision the toolchain bundle for the target identity
2. Obtain a binary with the selected strategy (prebuilt download or local
   compile), falling back to compilation when a download fails
3. Install the binary over any pre-gyp ``binary.module_path`` location
4. Record the identity in the module's ABI cache
"""

from __future__ import annotations

import logging
import os
import shutil
import tempfile
from dataclasses import dataclass, field
from pathlib import Path

from native_rebuild.builds.abi_cache import AbiCache
from native_rebuild.builds.binary import resolve_binary_layout
from native_rebuild.builds.runner import LOG_FILENAME
from native_rebuild.builds.strategies import find_built_binaries, select_strategies
from native_rebuild.config import Settings, get_settings
from native_rebuild.errors import BuildProcessError, CacheWriteError
from native_rebuild.toolchain.service import ToolchainBundle, ToolchainProvider
from native_rebuild.types import BuildKind, ModuleCandidate, TargetIdentity

logger = logging.getLogger(__name__)


@dataclass
class BuildResult:
    """Successful rebuild of one module.

    Attributes:
        candidate: Module that was rebuilt.
        identity: Identity it was rebuilt for.
        strategy: Strategy that produced the binary.
        binaries: Binaries in the module's build output directory.
        installed: Extra locations the binaries were copied to.
        log_path: Captured tool output.
        duration_seconds: Wall time of the external tool(s).
        warnings: Non-fatal problems (e.g. cache record not written).
    """

    candidate: ModuleCandidate
    identity: TargetIdentity
    strategy: BuildKind
    binaries: list[Path] = field(default_factory=list)
    installed: list[Path] = field(default_factory=list)
    log_path: Path | None = None
    duration_seconds: float = 0.0
    warnings: list[str] = field(default_factory=list)


def _replace_file(source: Path, dest: Path) -> None:
    dest.parent.mkdir(parents=True, exist_ok=True)
    with tempfile.NamedTemporaryFile(
        dir=dest.parent, prefix=f".{dest.name}-", suffix=".tmp", delete=False
    ) as tmp_file:
        tmp_path = Path(tmp_file.name)
    try:
        shutil.copy2(source, tmp_path)
        os.replace(tmp_path, dest)
    finally:
        tmp_path.unlink(missing_ok=True)


class NativeBuildInvoker:
    """Rebuild one module at a time for a target identity.

    Safe to share between worker threads: each call only touches the
    module's own directory and the shared, lock-protected toolchain cache.

    Args:
        settings: Application settings.
        toolchain: Toolchain provider (created from settings if omitted).
        cache: ABI cache (default location if omitted).
        build_from_source: Never use prebuilt downloads.
    """

    def __init__(
        self,
        settings: Settings | None = None,
        toolchain: ToolchainProvider | None = None,
        cache: AbiCache | None = None,
        build_from_source: bool = False,
    ) -> None:
        self.settings = settings or get_settings()
        self.toolchain = toolchain or ToolchainProvider(self.settings)
        self.cache = cache or AbiCache()
        self.build_from_source = build_from_source

    def prepare(self, identity: TargetIdentity) -> ToolchainBundle:
        """Provision the toolchain for an identity.

        Raises:
            ToolchainAcquisitionError: If the bundle is unavailable.
        """
        return self.toolchain.prepare(identity)

    def build(self, candidate: ModuleCandidate, identity: TargetIdentity) -> BuildResult:
        """Rebuild a module for an identity and record it in the ABI cache.

        Args:
            candidate: Module to rebuild.
            identity: Target identity.

        Returns:
            BuildResult describing the successful build.

        Raises:
            BuildProcessError: If no strategy produced a binary.
            ToolchainAcquisitionError: If the toolchain is unavailable.
        """
        bundle = self.prepare(identity)
        log_path = candidate.path / LOG_FILENAME
        strategies = select_strategies(
            candidate, identity, self.settings, build_from_source=self.build_from_source
        )

        logger.info("Building %s for %s", candidate.name, identity)

        used: BuildKind | None = None
        duration = 0.0
        for index, strategy in enumerate(strategies):
            try:
                result = strategy.produce(
                    candidate, identity, bundle, log_path, append_log=index > 0
                )
            except BuildProcessError as e:
                if index + 1 < len(strategies):
                    logger.warning(
                        "%s failed for %s (%s); falling back to %s",
                        strategy.kind.value,
                        candidate.name,
                        e,
                        strategies[index + 1].kind.value,
                    )
                    continue
                logger.error("Build of %s failed: %s", candidate.name, e)
                raise
            used = strategy.kind
            duration += result.duration_seconds
            break

        assert used is not None
        binaries = find_built_binaries(candidate.path, identity.build_type)
        installed = self.install_binaries(candidate, identity, binaries)

        build_result = BuildResult(
            candidate=candidate,
            identity=identity,
            strategy=used,
            binaries=binaries,
            installed=installed,
            log_path=log_path,
            duration_seconds=duration,
        )

        try:
            self.cache.record(candidate, identity)
        except CacheWriteError as e:
            logger.warning("Built %s but could not record ABI: %s", candidate.name, e)
            build_result.warnings.append(str(e))

        logger.info(
            "Built %s with %s in %.1fs", candidate.name, used.value, duration
        )
        return build_result

    def install_binaries(
        self,
        candidate: ModuleCandidate,
        identity: TargetIdentity,
        binaries: list[Path],
    ) -> list[Path]:
        """Copy rebuilt binaries over the module's declared load location.

        Modules using pre-gyp load their addon from ``binary.module_path``
        rather than ``build/<type>``. The template is expanded for the
        identity (``{node_abi}`` becomes e.g. ``electron-v28.1``), the
        directory is created if needed and any existing binary there is
        replaced atomically.

        Returns:
            Destination paths written.

        Raises:
            BuildProcessError: If the manifest cannot be read, ``module_path``
                is invalid or leaves the module, or a copy fails.
        """
        layout = resolve_binary_layout(candidate, identity, self.settings.runtime_name)
        if layout is None:
            return []

        if layout.module_name:
            wanted = f"{layout.module_name}.node"
            binaries = [b for b in binaries if b.name == wanted] or binaries

        written: list[Path] = []
        try:
            for binary in binaries:
                dest = layout.module_dir / binary.name
                if dest == binary.resolve():
                    continue
                _replace_file(binary, dest)
                written.append(dest)
        except OSError as e:
            raise BuildProcessError(
                f"Failed to install binary for {candidate.name}: {e}",
                code="install_error",
            ) from e

        if written:
            logger.debug(
                "Installed %d binary file(s) for %s into %s",
                len(written),
                candidate.name,
                layout.module_dir,
            )
        return written


__all__ = ["BuildResult", "NativeBuildInvoker"]
