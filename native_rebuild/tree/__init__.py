"""Dependency tree module.

This module handles:
- Reading package manifests
- Resolving installed dependency locations
- Walking the tree to find native-addon modules
"""

from native_rebuild.tree.manifest import PackageManifest, load_manifest
from native_rebuild.tree.walker import WalkResult, walk_dependency_tree

__all__ = ["PackageManifest", "WalkResult", "load_manifest", "walk_dependency_tree"]
