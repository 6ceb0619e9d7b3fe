"""Build orchestration module.

This module handles:
- ABI cache records and skip decisions
- Running node-gyp and prebuild-install
- Per-module build strategies and binary installation
- Pre-gyp binary layouts for a target identity
- Scheduling builds with bounded concurrency
"""

from native_rebuild.builds.abi_cache import AbiCache, CacheRecord
from native_rebuild.builds.invoker import BuildResult, NativeBuildInvoker

__all__ = ["AbiCache", "BuildResult", "CacheRecord", "NativeBuildInvoker"]

# Access the scheduler via native_rebuild.builds.scheduler
