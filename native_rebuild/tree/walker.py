"""Dependency graph walker.

This module handles:
- Traversing the installed dependency tree from the project root
- Following only the requested dependency classes (required and optional
  by default; development edges are never followed unless asked for)
- Visiting every physical install location of a package exactly once
- Collecting structural errors without aborting sibling subtrees

The resulting candidate set depends only on the tree on disk, never on
traversal order: candidates are keyed by physical location and sorted.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from pathlib import Path

from native_rebuild.errors import StructuralTreeError
from native_rebuild.tree.manifest import (
    BUILD_DESCRIPTOR,
    MODULES_DIRNAME,
    PREBUILT_FETCHER,
    PackageManifest,
    has_native_addon,
    load_manifest,
    resolve_dependency,
)
from native_rebuild.types import (
    DEFAULT_DEPENDENCY_CLASSES,
    BuildKind,
    DependencyClass,
    ModuleCandidate,
)

logger = logging.getLogger(__name__)


@dataclass
class WalkResult:
    """Result of walking a dependency tree.

    Attributes:
        root: Resolved project root.
        candidates: Native-addon modules found, sorted by (name, path).
        errors: Structural errors for subtrees that could not be walked.
        visited: Number of physical package directories visited.
    """

    root: Path
    candidates: list[ModuleCandidate] = field(default_factory=list)
    errors: list[StructuralTreeError] = field(default_factory=list)
    visited: int = 0

    def names(self) -> list[str]:
        """Logical names of all candidates (may contain duplicates)."""
        return [c.name for c in self.candidates]


def logical_name(package_dir: Path) -> str:
    """Derive a package's logical name from its install location.

    The name is the path below the nearest ``node_modules`` directory, so a
    scoped package yields ``@scope/name``.
    """
    parts = package_dir.parts
    for index in range(len(parts) - 1, -1, -1):
        if parts[index] == MODULES_DIRNAME:
            return "/".join(parts[index + 1 :])
    return package_dir.name


def _build_kind(package_dir: Path, manifest: PackageManifest) -> BuildKind:
    if not (package_dir / BUILD_DESCRIPTOR).is_file():
        return BuildKind.PREBUILT
    if manifest.depends_on(PREBUILT_FETCHER):
        return BuildKind.PREBUILT
    return BuildKind.LOCAL_COMPILE


def walk_dependency_tree(
    root_dir: Path,
    types: frozenset[DependencyClass] | set[DependencyClass] = DEFAULT_DEPENDENCY_CLASSES,
    extra_modules: list[str] | None = None,
) -> WalkResult:
    """Find every installed native-addon module reachable from the root.

    Args:
        root_dir: Project root containing ``package.json`` and ``node_modules``.
        types: Dependency classes to follow at every level.
        extra_modules: Additional package names to walk as if the root
            required them.

    Returns:
        WalkResult with sorted candidates and any subtree errors.

    Raises:
        StructuralTreeError: If the root manifest itself cannot be read.
    """
    root = root_dir.resolve()
    root_manifest = load_manifest(root)
    include = frozenset(types)

    result = WalkResult(root=root)
    visited: set[Path] = set()
    found: dict[Path, ModuleCandidate] = {}

    stack: list[tuple[str, Path, DependencyClass]] = [
        (name, root, dep_class)
        for name, dep_class in root_manifest.classified_dependencies(include).items()
    ]
    for name in extra_modules or []:
        stack.append((name, root, DependencyClass.REQUIRED))

    logger.debug("Walking dependency tree at %s (classes=%s)", root, sorted(include))

    while stack:
        name, from_dir, dep_class = stack.pop()

        try:
            package_dir = resolve_dependency(name, from_dir, root)
        except ValueError as e:
            result.errors.append(
                StructuralTreeError(
                    str(e),
                    path=from_dir,
                    package_name=name,
                    code="invalid_dependency_name",
                )
            )
            continue

        if package_dir is None:
            if dep_class is DependencyClass.OPTIONAL:
                logger.debug("Optional dependency %s not installed (from %s)", name, from_dir)
            else:
                logger.warning("Dependency %s not installed (from %s)", name, from_dir)
                result.errors.append(
                    StructuralTreeError(
                        f"Dependency {name} is not installed",
                        path=from_dir,
                        package_name=name,
                        code="missing_dependency",
                    )
                )
            continue

        if package_dir in visited:
            continue
        visited.add(package_dir)

        try:
            manifest = load_manifest(package_dir)
        except StructuralTreeError as e:
            if e.package_name is None:
                e.package_name = name
            logger.warning("Skipping subtree of %s: %s", name, e)
            result.errors.append(e)
            continue

        if has_native_addon(package_dir):
            found[package_dir] = ModuleCandidate(
                name=logical_name(package_dir),
                path=package_dir,
                has_native_addon=True,
                build_kind=_build_kind(package_dir, manifest),
                version=manifest.version,
            )

        for child, child_class in manifest.classified_dependencies(include).items():
            stack.append((child, package_dir, child_class))

    result.visited = len(visited)
    result.candidates = sorted(found.values(), key=lambda c: (c.name, str(c.path)))
    result.errors.sort(key=lambda e: (str(e.path), e.package_name or ""))

    logger.info(
        "Found %d native module(s) in %d package(s) (%d error(s))",
        len(result.candidates),
        result.visited,
        len(result.errors),
    )
    return result


__all__ = ["WalkResult", "logical_name", "walk_dependency_tree"]
