"""Toolchain provisioning service.

This module provides high-level APIs for the shared toolchain cache:
- ToolchainProvider.ensure_headers(): runtime headers for a version
- ToolchainProvider.ensure_compiler(): alternative compiler bundle
- ToolchainProvider.prepare(): everything a TargetIdentity needs

Bundles are downloaded once per cache directory. Concurrent first-time
provisioning (threads or processes) is serialized with a file lock, and a
bundle only becomes visible after it has been fully extracted into a
temporary directory and renamed into place.
"""

from __future__ import annotations

import fcntl
import logging
import os
import shutil
import tempfile
import threading
import time
from collections.abc import Callable, Iterator
from contextlib import contextmanager
from dataclasses import dataclass, field
from pathlib import Path

import httpx

from native_rebuild.config import Settings, get_settings
from native_rebuild.errors import ToolchainAcquisitionError
from native_rebuild.toolchain.fetch import (
    BundleURLs,
    DownloadError,
    ExtractionError,
    VerificationError,
    build_compiler_url,
    build_headers_url,
    download_file,
    extract_tarball,
    fetch_shasums,
    parse_shasums,
)
from native_rebuild.types import Architecture, TargetIdentity, host_platform

logger = logging.getLogger(__name__)

# Marker written last into a bundle directory before it is renamed into place
COMPLETE_MARKER = ".complete"

# Devdir layout version understood by node-gyp
INSTALL_VERSION = "11"

# Executables used when a compiler override is requested: (C, C++)
COMPILER_EXECUTABLES: dict[str, tuple[str, str]] = {
    "clang": ("clang", "clang++"),
    "gcc": ("gcc", "g++"),
}


@dataclass
class CompilerBundle:
    """An extracted alternative compiler toolchain."""

    name: str
    root: Path

    @property
    def bin_dir(self) -> Path:
        return self.root / "bin"

    def environment(self) -> dict[str, str]:
        """Environment overrides substituting the default compiler and linker."""
        cc, cxx = COMPILER_EXECUTABLES.get(self.name, (self.name, f"{self.name}++"))
        cc_path = str(self.bin_dir / cc)
        cxx_path = str(self.bin_dir / cxx)
        return {
            "CC": cc_path,
            "CXX": cxx_path,
            "LINK": cxx_path,
            "CC_host": cc_path,
            "CXX_host": cxx_path,
        }


@dataclass
class ToolchainBundle:
    """Everything needed to build native addons for one TargetIdentity.

    Attributes:
        identity: Identity the bundle was prepared for.
        devdir: Directory passed to node-gyp as ``--devdir``.
        headers_dir: Version directory holding ``include/node``.
        dist_url: URL passed to node-gyp as ``--dist-url``.
        compiler: Alternative compiler, if requested.
    """

    identity: TargetIdentity
    devdir: Path
    headers_dir: Path
    dist_url: str
    compiler: CompilerBundle | None = None
    env: dict[str, str] = field(default_factory=dict)


@contextmanager
def toolchain_lock(
    cache_dir: Path,
    name: str,
    timeout: float | None = None,
) -> Iterator[None]:
    """Acquire a lock for provisioning one toolchain bundle.

    Uses a file-based lock so concurrent threads and processes sharing a
    cache directory download a given bundle only once.

    Args:
        cache_dir: Root cache directory.
        name: Bundle name to lock on.
        timeout: Lock acquisition timeout in seconds (None = blocking).

    Yields:
        None when lock is acquired.

    Raises:
        TimeoutError: If lock cannot be acquired within timeout.
    """
    lock_dir = cache_dir / ".locks"
    lock_dir.mkdir(parents=True, exist_ok=True)
    lock_file = lock_dir / f"{name.replace('/', '_')}.lock"

    logger.debug("Acquiring toolchain lock for %s", name)

    fd = os.open(str(lock_file), os.O_RDWR | os.O_CREAT, 0o600)
    lock_acquired = False
    try:
        if timeout is not None:
            start = time.monotonic()
            while True:
                try:
                    fcntl.flock(fd, fcntl.LOCK_EX | fcntl.LOCK_NB)
                    lock_acquired = True
                    break
                except BlockingIOError:
                    if time.monotonic() - start >= timeout:
                        raise TimeoutError(
                            f"Timeout waiting for toolchain lock on {name}"
                        ) from None
                    time.sleep(0.1)
        else:
            fcntl.flock(fd, fcntl.LOCK_EX)
            lock_acquired = True

        yield
    finally:
        if lock_acquired:
            fcntl.flock(fd, fcntl.LOCK_UN)
            logger.debug("Toolchain lock released for %s", name)
        os.close(fd)


def is_bundle_complete(bundle_dir: Path) -> bool:
    """Check whether a bundle directory was fully provisioned."""
    return (bundle_dir / COMPLETE_MARKER).is_file()


class ToolchainProvider:
    """Provision header and compiler bundles into the shared cache.

    Args:
        settings: Application settings (cache dir, URLs, offline mode).
        client: Optional HTTPX client; one is created per download otherwise.
        headers_url: Override for ``settings.headers_url``.
    """

    def __init__(
        self,
        settings: Settings | None = None,
        client: httpx.Client | None = None,
        headers_url: str | None = None,
    ) -> None:
        self.settings = settings or get_settings()
        self.client = client
        self.headers_url = (headers_url or self.settings.headers_url).rstrip("/")
        self.cache_dir = self.settings.cache_dir
        self._prepared: dict[TargetIdentity, ToolchainBundle] = {}
        self._memo_lock = threading.Lock()

    def headers_dir(self, version: str) -> Path:
        return self.cache_dir / version

    def compiler_dir(self, identity: TargetIdentity) -> Path:
        assert identity.compiler is not None
        return (
            self.cache_dir
            / "toolchains"
            / identity.runtime_version
            / f"{identity.compiler}-{host_platform()}-{Architecture.host().value}"
        )

    def prepare(self, identity: TargetIdentity) -> ToolchainBundle:
        """Ensure every bundle required by an identity is available.

        Results are memoized per provider, so repeated calls for the same
        identity do no I/O.

        Raises:
            ToolchainAcquisitionError: If any bundle cannot be provisioned.
        """
        with self._memo_lock:
            cached = self._prepared.get(identity)
            if cached is not None:
                return cached

            compiler: CompilerBundle | None = None
            try:
                headers_dir = self.ensure_headers(identity.runtime_version)
                if identity.compiler:
                    compiler = self.ensure_compiler(identity)
            except ToolchainAcquisitionError as e:
                raise ToolchainAcquisitionError(
                    f"{e} (target {identity})", code=e.code, target=identity
                ) from e

            bundle = ToolchainBundle(
                identity=identity,
                devdir=self.cache_dir,
                headers_dir=headers_dir,
                dist_url=self.headers_url,
                compiler=compiler,
                env=compiler.environment() if compiler else {},
            )
            self._prepared[identity] = bundle
            return bundle

    def ensure_headers(self, version: str) -> Path:
        """Ensure runtime headers for a version are in the cache.

        Returns:
            Path to the version directory (contains ``include/node``).

        Raises:
            ToolchainAcquisitionError: If headers cannot be provisioned.
        """
        final_dir = self.headers_dir(version)

        def populate(staging_dir: Path) -> None:
            self._download_and_extract(build_headers_url(version, self.headers_url), staging_dir)
            (staging_dir / "installVersion").write_text(INSTALL_VERSION + "\n")

        return self._provision(f"headers-{version}", final_dir, populate)

    def ensure_compiler(self, identity: TargetIdentity) -> CompilerBundle:
        """Ensure the compiler bundle requested by an identity is in the cache.

        Raises:
            ToolchainAcquisitionError: If the bundle cannot be provisioned.
        """
        assert identity.compiler is not None
        final_dir = self.compiler_dir(identity)
        urls = build_compiler_url(
            identity.runtime_version,
            Architecture.host(),
            identity.compiler,
            self.headers_url,
        )
        root = self._provision(
            f"{identity.compiler}-{identity.runtime_version}",
            final_dir,
            lambda staging_dir: self._download_and_extract(urls, staging_dir),
        )
        bundle = CompilerBundle(name=identity.compiler, root=root)
        if not bundle.bin_dir.is_dir():
            raise ToolchainAcquisitionError(
                f"Compiler bundle {root} has no bin directory",
                code="invalid_bundle",
            )
        return bundle

    def _ensure_online(self, what: str) -> None:
        if self.settings.offline:
            raise ToolchainAcquisitionError(
                f"Cannot download {what} in offline mode",
                code="offline_mode",
            )

    def _provision(
        self,
        name: str,
        final_dir: Path,
        populate: Callable[[Path], None],
    ) -> Path:
        if is_bundle_complete(final_dir):
            return final_dir

        self._ensure_online(name)
        final_dir.parent.mkdir(parents=True, exist_ok=True)

        try:
            with toolchain_lock(self.cache_dir, name, timeout=self.settings.download_timeout):
                return self._install(name, final_dir, populate)
        except TimeoutError as e:
            raise ToolchainAcquisitionError(str(e), code="lock_timeout") from e

    def _install(
        self,
        name: str,
        final_dir: Path,
        populate: Callable[[Path], None],
    ) -> Path:
        # Another worker may have finished while we waited
        if is_bundle_complete(final_dir):
            return final_dir

        staging_dir = Path(
            tempfile.mkdtemp(dir=final_dir.parent, prefix=f".{final_dir.name}-")
        )
        try:
            populate(staging_dir)
            (staging_dir / COMPLETE_MARKER).touch()
            if final_dir.exists():
                logger.warning("Replacing incomplete bundle at %s", final_dir)
                shutil.rmtree(final_dir)
            os.replace(staging_dir, final_dir)
        except OSError as e:
            raise ToolchainAcquisitionError(
                f"Failed to install {name} into {final_dir}: {e}",
                code="os_error",
            ) from e
        finally:
            if staging_dir.exists():
                shutil.rmtree(staging_dir, ignore_errors=True)

        logger.info("Installed %s into %s", name, final_dir)
        return final_dir

    def _download(self, urls: BundleURLs, dest_path: Path) -> None:
        client = self.client or httpx.Client(follow_redirects=True)
        try:
            listing = fetch_shasums(client, urls.shasums_url)
            expected = parse_shasums(listing, urls.archive_relpath)
            if expected is None:
                raise ToolchainAcquisitionError(
                    f"No checksum listed for {urls.archive_relpath} in {urls.shasums_url}",
                    code="checksum_missing",
                )
            download_file(
                client,
                urls.archive_url,
                dest_path,
                expected_checksum=expected,
                timeout=self.settings.download_timeout,
            )
        except (DownloadError, VerificationError) as e:
            raise ToolchainAcquisitionError(str(e), code=e.code) from e
        finally:
            if self.client is None:
                client.close()

    def _download_and_extract(self, urls: BundleURLs, staging_dir: Path) -> None:
        archive_path = staging_dir.parent / f"{staging_dir.name}.tar.gz"
        try:
            self._download(urls, archive_path)
            extract_tarball(archive_path, staging_dir)
        except ExtractionError as e:
            raise ToolchainAcquisitionError(str(e), code=e.code) from e
        finally:
            archive_path.unlink(missing_ok=True)


__all__ = [
    "COMPILER_EXECUTABLES",
    "CompilerBundle",
    "ToolchainBundle",
    "ToolchainProvider",
    "is_bundle_complete",
    "toolchain_lock",
]
