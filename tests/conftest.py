"""Shared fixtures for building fake installed dependency trees."""

import json
from pathlib import Path

import pytest

from native_rebuild.config import Settings


class FakeTree:
    """Writes package.json manifests and node_modules layouts under a root."""

    def __init__(self, root: Path) -> None:
        self.root = root

    def manifest(
        self,
        package_dir: Path,
        name: str,
        version: str = "1.0.0",
        dependencies: dict[str, str] | None = None,
        optional: dict[str, str] | None = None,
        dev: dict[str, str] | None = None,
        **extra,
    ) -> Path:
        package_dir.mkdir(parents=True, exist_ok=True)
        data = {"name": name, "version": version, **extra}
        if dependencies:
            data["dependencies"] = dependencies
        if optional:
            data["optionalDependencies"] = optional
        if dev:
            data["devDependencies"] = dev
        (package_dir / "package.json").write_text(json.dumps(data))
        return package_dir

    def project(self, deps=(), optional=(), dev=()) -> Path:
        return self.manifest(
            self.root,
            "app",
            dependencies={d: "*" for d in deps},
            optional={d: "*" for d in optional},
            dev={d: "*" for d in dev},
        )

    def package(
        self,
        name: str,
        parent: Path | None = None,
        deps=(),
        optional=(),
        dev=(),
        native: bool = False,
        prebuilds: bool = False,
        version: str = "1.0.0",
        **extra,
    ) -> Path:
        """Install ``name`` into ``parent``'s node_modules (root by default)."""
        base = parent or self.root
        package_dir = base / "node_modules" / Path(*name.split("/"))
        self.manifest(
            package_dir,
            name,
            version=version,
            dependencies={d: "*" for d in deps},
            optional={d: "*" for d in optional},
            dev={d: "*" for d in dev},
            **extra,
        )
        if native:
            (package_dir / "binding.gyp").write_text('{"targets": []}')
        if prebuilds:
            (package_dir / "prebuilds").mkdir()
        return package_dir.resolve()


@pytest.fixture
def tree(tmp_path: Path) -> FakeTree:
    """Fake project rooted at tmp_path/app."""
    return FakeTree(tmp_path / "app")


@pytest.fixture
def settings(tmp_path: Path) -> Settings:
    """Settings isolated to a temporary toolchain cache."""
    return Settings(
        cache_dir=tmp_path / "toolchains",
        headers_url="https://headers.example.com",
        max_concurrent_builds=2,
    )
