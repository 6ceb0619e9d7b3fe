"""Toolchain provisioning module.

This module handles:
- Building URLs for runtime header and compiler archives
- Downloading and verifying archives against SHASUMS256.txt
- Installing bundles into the shared cache with acquire-once locking
"""

from native_rebuild.toolchain.fetch import (
    BundleURLs,
    DownloadError,
    ExtractionError,
    VerificationError,
    build_compiler_url,
    build_headers_url,
)
from native_rebuild.toolchain.service import (
    CompilerBundle,
    ToolchainBundle,
    ToolchainProvider,
    toolchain_lock,
)

__all__ = [
    # Fetch module
    "BundleURLs",
    "DownloadError",
    "ExtractionError",
    "VerificationError",
    "build_compiler_url",
    "build_headers_url",
    # Service module
    "CompilerBundle",
    "ToolchainBundle",
    "ToolchainProvider",
    "toolchain_lock",
]
