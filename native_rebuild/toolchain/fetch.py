"""Toolchain bundle fetch module.

This module handles:
- URL construction for runtime header archives and compiler bundles
- Download with SHASUMS256 checksum verification
- Safe extraction of tarballs
"""

from __future__ import annotations

import hashlib
import logging
import tarfile
from dataclasses import dataclass
from pathlib import Path

import httpx

from native_rebuild.types import Architecture, host_platform

logger = logging.getLogger(__name__)

# Timeout for small metadata requests (seconds)
METADATA_TIMEOUT = 30

# Timeout for archive downloads (seconds)
DOWNLOAD_TIMEOUT = 600

# Chunk size for downloads (bytes)
DOWNLOAD_CHUNK_SIZE = 64 * 1024  # 64 KB

SHASUMS_FILENAME = "SHASUMS256.txt"


class DownloadError(Exception):
    """Raised when a bundle download fails."""

    def __init__(self, message: str, code: str = "download_error") -> None:
        super().__init__(message)
        self.code = code


class VerificationError(Exception):
    """Raised when checksum verification fails."""

    def __init__(self, message: str, code: str = "verification_error") -> None:
        super().__init__(message)
        self.code = code


class ExtractionError(Exception):
    """Raised when archive extraction fails."""

    def __init__(self, message: str, code: str = "extraction_error") -> None:
        super().__init__(message)
        self.code = code


@dataclass
class BundleURLs:
    """URLs for a toolchain archive and its checksum listing."""

    archive_url: str
    shasums_url: str

    def __post_init__(self) -> None:
        """Validate URLs after initialization."""
        if not self.archive_url:
            raise ValueError("archive_url must be provided")
        if not self.shasums_url:
            raise ValueError("shasums_url must be provided")

    @property
    def archive_filename(self) -> str:
        """Final path component of the archive URL."""
        return self.archive_url.rsplit("/", 1)[-1]

    @property
    def archive_relpath(self) -> str:
        """Archive path relative to the directory holding the checksum listing."""
        prefix = self.shasums_url.rsplit("/", 1)[0] + "/"
        if self.archive_url.startswith(prefix):
            return self.archive_url[len(prefix) :]
        return self.archive_filename


def _release_prefix(base_url: str, version: str) -> str:
    return f"{base_url.rstrip('/')}/v{version}"


def build_headers_url(version: str, base_url: str) -> BundleURLs:
    """Build URLs for the runtime header archive.

    Args:
        version: Runtime version without leading 'v' (e.g., '28.1.0').
        base_url: Base URL of the runtime header distribution.

    Returns:
        BundleURLs for the headers tarball and SHASUMS256.txt.
    """
    prefix = _release_prefix(base_url, version)
    return BundleURLs(
        archive_url=f"{prefix}/node-v{version}-headers.tar.gz",
        shasums_url=f"{prefix}/{SHASUMS_FILENAME}",
    )


def build_compiler_url(
    version: str,
    arch: Architecture,
    compiler: str,
    base_url: str,
    platform_name: str | None = None,
) -> BundleURLs:
    """Build URLs for a compiler bundle published alongside a runtime release.

    Args:
        version: Runtime version.
        arch: Host architecture the compiler runs on.
        compiler: Compiler name (e.g., 'clang').
        base_url: Base URL of the runtime header distribution.
        platform_name: Host platform; defaults to the running platform.

    Returns:
        BundleURLs for ``toolchains/<compiler>-<platform>-<arch>.tar.gz``.
    """
    prefix = _release_prefix(base_url, version)
    platform_name = platform_name or host_platform()
    return BundleURLs(
        archive_url=f"{prefix}/toolchains/{compiler}-{platform_name}-{arch.value}.tar.gz",
        shasums_url=f"{prefix}/{SHASUMS_FILENAME}",
    )


def parse_shasums(content: str, filename: str) -> str | None:
    """Parse a SHASUMS256.txt listing to find the checksum of one file.

    Args:
        content: Content of the listing.
        filename: Filename (or relative path) to look up.

    Returns:
        SHA256 checksum string, or None if not listed.
    """
    for line in content.splitlines():
        line = line.strip()
        if not line or line.startswith("#"):
            continue

        parts = line.split(maxsplit=1)
        if len(parts) != 2:
            continue

        checksum, listed = parts
        # Remove leading '*' if present (binary mode indicator)
        listed = listed.lstrip("*").strip()

        if listed == filename:
            return checksum.lower()

    return None


def fetch_shasums(
    client: httpx.Client,
    shasums_url: str,
    timeout: float = METADATA_TIMEOUT,
) -> str:
    """Fetch a SHASUMS256.txt listing.

    Raises:
        DownloadError: If fetch fails.
    """
    logger.debug("Fetching checksums from %s", shasums_url)

    try:
        response = client.get(shasums_url, timeout=timeout)
        response.raise_for_status()
        return response.text

    except httpx.HTTPStatusError as e:
        raise DownloadError(
            f"HTTP error fetching checksums: {e.response.status_code}",
            code="http_error",
        ) from e
    except httpx.TimeoutException as e:
        raise DownloadError(
            f"Timeout fetching checksums from {shasums_url}",
            code="timeout",
        ) from e
    except httpx.RequestError as e:
        raise DownloadError(
            f"Network error fetching checksums: {e}",
            code="network_error",
        ) from e


def download_file(
    client: httpx.Client,
    url: str,
    dest_path: Path,
    expected_checksum: str | None = None,
    timeout: float = DOWNLOAD_TIMEOUT,
    chunk_size: int = DOWNLOAD_CHUNK_SIZE,
) -> str:
    """Download a file with optional checksum verification.

    Args:
        client: HTTPX client instance.
        url: URL to download from.
        dest_path: Destination path for the downloaded file.
        expected_checksum: Expected SHA256 checksum (optional).
        timeout: Download timeout in seconds.
        chunk_size: Size of chunks to download.

    Returns:
        SHA256 hex digest of the downloaded content.

    Raises:
        DownloadError: If download fails.
        VerificationError: If checksum verification fails.
    """
    logger.info("Downloading %s", url)

    try:
        with client.stream("GET", url, timeout=timeout) as response:
            response.raise_for_status()

            total_bytes = 0
            sha256 = hashlib.sha256()
            dest_path.parent.mkdir(parents=True, exist_ok=True)

            with dest_path.open("wb") as f:
                for chunk in response.iter_bytes(chunk_size):
                    f.write(chunk)
                    sha256.update(chunk)
                    total_bytes += len(chunk)

    except httpx.HTTPStatusError as e:
        dest_path.unlink(missing_ok=True)
        raise DownloadError(
            f"HTTP error downloading {url}: {e.response.status_code} {e.response.reason_phrase}",
            code="http_error",
        ) from e
    except httpx.TimeoutException as e:
        dest_path.unlink(missing_ok=True)
        raise DownloadError(f"Timeout downloading {url}", code="timeout") from e
    except httpx.RequestError as e:
        dest_path.unlink(missing_ok=True)
        raise DownloadError(
            f"Network error downloading {url}: {e}",
            code="network_error",
        ) from e

    computed_checksum = sha256.hexdigest()
    if expected_checksum and computed_checksum != expected_checksum.lower():
        dest_path.unlink(missing_ok=True)
        raise VerificationError(
            f"Checksum mismatch for {url}: "
            f"expected {expected_checksum}, got {computed_checksum}"
        )

    logger.info(
        "Downloaded %s (%d bytes, checksum: %s)",
        dest_path.name,
        total_bytes,
        computed_checksum[:16] + "...",
    )
    return computed_checksum


def extract_tarball(archive_path: Path, dest_dir: Path, strip_components: int = 1) -> Path:
    """Extract a gzip tarball, dropping leading path components.

    Archives are published with a single top-level directory
    (``node-v<ver>/include/...``) which is stripped so the bundle lands
    directly in ``dest_dir``.

    Args:
        archive_path: Path to the ``.tar.gz`` archive.
        dest_dir: Destination directory.
        strip_components: Number of leading path components to drop.

    Returns:
        The destination directory.

    Raises:
        ExtractionError: If the archive is empty, unsafe or unreadable.
    """
    logger.debug("Extracting %s to %s", archive_path.name, dest_dir)
    dest_dir.mkdir(parents=True, exist_ok=True)

    try:
        with tarfile.open(archive_path, "r:gz") as tar:
            members = []
            for member in tar.getmembers():
                member_path = Path(member.name)
                # Security: prevent path traversal
                if member_path.is_absolute() or ".." in member_path.parts:
                    raise ExtractionError(
                        f"Refusing to extract {member.name}: path traversal detected",
                        code="path_traversal",
                    )
                stripped = member_path.parts[strip_components:]
                if not stripped:
                    continue
                member.name = str(Path(*stripped))
                members.append(member)

            if not members:
                raise ExtractionError(
                    f"Archive {archive_path} is empty",
                    code="empty_archive",
                )
            tar.extractall(dest_dir, members=members, filter="data")

    except tarfile.TarError as e:
        raise ExtractionError(
            f"Failed to extract {archive_path}: {e}",
            code="tar_error",
        ) from e
    except OSError as e:
        raise ExtractionError(
            f"OS error extracting {archive_path}: {e}",
            code="os_error",
        ) from e

    return dest_dir


__all__ = [
    "DOWNLOAD_TIMEOUT",
    "SHASUMS_FILENAME",
    "BundleURLs",
    "DownloadError",
    "ExtractionError",
    "VerificationError",
    "build_compiler_url",
    "build_headers_url",
    "download_file",
    "extract_tarball",
    "fetch_shasums",
    "parse_shasums",
]
