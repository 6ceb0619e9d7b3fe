"""Package manifest reading and dependency resolution.

This module handles:
- Loading and validating ``package.json`` manifests
- Classifying declared dependencies (required, optional, development)
- Resolving a dependency name to its installed directory using the
  nearest-``node_modules`` lookup rule
- Detecting whether a package ships a native addon
"""

from __future__ import annotations

import json
import logging
from pathlib import Path
from typing import Any

from pydantic import BaseModel, ConfigDict, Field, ValidationError, field_validator

from native_rebuild.errors import StructuralTreeError
from native_rebuild.types import DependencyClass

logger = logging.getLogger(__name__)

MANIFEST_FILENAME = "package.json"
MODULES_DIRNAME = "node_modules"
BUILD_DESCRIPTOR = "binding.gyp"
PREBUILDS_DIRNAME = "prebuilds"

# Dependency whose presence marks a module as able to fetch prebuilt binaries
PREBUILT_FETCHER = "prebuild-install"


class BinarySpec(BaseModel):
    """Pre-gyp ``binary`` section describing where a module loads its addon from."""

    model_config = ConfigDict(extra="ignore", populate_by_name=True)

    module_name: str | None = None
    module_path: str | None = None
    host: str | None = None
    napi_versions: list[int] = Field(default_factory=list)


class PackageManifest(BaseModel):
    """Subset of ``package.json`` relevant to rebuilding native addons."""

    model_config = ConfigDict(extra="ignore", populate_by_name=True)

    name: str | None = None
    version: str | None = None
    dependencies: dict[str, str] = Field(default_factory=dict)
    optional_dependencies: dict[str, str] = Field(
        default_factory=dict, alias="optionalDependencies"
    )
    dev_dependencies: dict[str, str] = Field(
        default_factory=dict, alias="devDependencies"
    )
    binary: BinarySpec | None = None

    @field_validator(
        "dependencies", "optional_dependencies", "dev_dependencies", mode="before"
    )
    @classmethod
    def validate_dependency_map(cls, v: Any) -> Any:
        """Treat a null dependency section as empty."""
        if v is None:
            return {}
        return v

    def classified_dependencies(
        self,
        include: frozenset[DependencyClass] | set[DependencyClass],
    ) -> dict[str, DependencyClass]:
        """Return declared dependencies mapped to their class, filtered by class.

        A name declared under several sections takes the class of its
        strongest edge: optional wins over required (npm semantics) and
        either wins over development.

        Args:
            include: Dependency classes to keep.

        Returns:
            Mapping of dependency name to class, sorted by name.
        """
        classified: dict[str, DependencyClass] = {}
        for name in self.dev_dependencies:
            classified[name] = DependencyClass.DEVELOPMENT
        for name in self.dependencies:
            classified[name] = DependencyClass.REQUIRED
        for name in self.optional_dependencies:
            classified[name] = DependencyClass.OPTIONAL

        return {
            name: classified[name]
            for name in sorted(classified)
            if classified[name] in include
        }

    def depends_on(self, name: str) -> bool:
        """Check whether the package declares a runtime dependency on ``name``."""
        return name in self.dependencies or name in self.optional_dependencies


def load_manifest(package_dir: Path) -> PackageManifest:
    """Load and validate the manifest of an installed package.

    Args:
        package_dir: Package directory containing ``package.json``.

    Returns:
        Validated PackageManifest.

    Raises:
        StructuralTreeError: If the manifest is missing, unreadable or malformed.
    """
    manifest_path = package_dir / MANIFEST_FILENAME
    try:
        with manifest_path.open(encoding="utf-8") as f:
            data = json.load(f)
    except FileNotFoundError as e:
        raise StructuralTreeError(
            f"Missing manifest: {manifest_path}",
            path=package_dir,
            code="missing_manifest",
        ) from e
    except (OSError, UnicodeDecodeError) as e:
        raise StructuralTreeError(
            f"Unreadable manifest {manifest_path}: {e}",
            path=package_dir,
            code="unreadable_manifest",
        ) from e
    except json.JSONDecodeError as e:
        raise StructuralTreeError(
            f"Malformed manifest {manifest_path}: {e}",
            path=package_dir,
            code="malformed_manifest",
        ) from e

    if not isinstance(data, dict):
        raise StructuralTreeError(
            f"Expected a JSON object in {manifest_path}, got {type(data).__name__}",
            path=package_dir,
            code="malformed_manifest",
        )

    try:
        return PackageManifest.model_validate(data)
    except ValidationError as e:
        raise StructuralTreeError(
            f"Invalid manifest {manifest_path}: {e.error_count()} validation error(s)",
            path=package_dir,
            package_name=data.get("name") if isinstance(data.get("name"), str) else None,
            code="invalid_manifest",
        ) from e


def package_subpath(name: str) -> Path:
    """Return the relative directory for a package name.

    Scoped names (``@scope/name``) map to a nested ``@scope/name`` directory
    but remain a single logical package.
    """
    parts = name.split("/")
    if name.startswith("@"):
        if len(parts) != 2 or not all(parts):
            raise ValueError(f"Invalid scoped package name: {name}")
    elif len(parts) != 1 or not name:
        raise ValueError(f"Invalid package name: {name}")
    return Path(*parts)


def resolve_dependency(name: str, from_dir: Path, root_dir: Path) -> Path | None:
    """Resolve where a dependency of ``from_dir`` is installed.

    Looks in ``from_dir/node_modules`` first, then in each ancestor package's
    ``node_modules`` up to and including ``root_dir``.

    Args:
        name: Dependency name (may be scoped).
        from_dir: Directory of the package declaring the dependency.
        root_dir: Project root; the lookup never goes above it.

    Returns:
        Absolute package directory, or None if not installed.
    """
    subpath = package_subpath(name)
    current = from_dir
    while True:
        candidate = current / MODULES_DIRNAME / subpath
        if candidate.is_dir():
            return candidate.resolve()
        if current == root_dir or root_dir not in current.parents:
            return None
        current = current.parent
        # Skip over the node_modules (and scope) directories between packages
        while current.name == MODULES_DIRNAME or current.name.startswith("@"):
            current = current.parent


def has_native_addon(package_dir: Path) -> bool:
    """Check whether a package ships a native addon.

    A package qualifies if it contains a native build descriptor or a
    prebuilt binaries directory.
    """
    return (package_dir / BUILD_DESCRIPTOR).is_file() or (
        package_dir / PREBUILDS_DIRNAME
    ).is_dir()


__all__ = [
    "BUILD_DESCRIPTOR",
    "MANIFEST_FILENAME",
    "MODULES_DIRNAME",
    "PREBUILDS_DIRNAME",
    "PREBUILT_FETCHER",
    "BinarySpec",
    "PackageManifest",
    "has_native_addon",
    "load_manifest",
    "package_subpath",
    "resolve_dependency",
]
