"""Tests for tree/manifest.py module."""

from pathlib import Path

import pytest

from native_rebuild.errors import StructuralTreeError
from native_rebuild.tree.manifest import (
    PackageManifest,
    has_native_addon,
    load_manifest,
    package_subpath,
    resolve_dependency,
)
from native_rebuild.types import DependencyClass


class TestPackageManifest:
    """Tests for manifest parsing and dependency classification."""

    def test_aliases(self) -> None:
        manifest = PackageManifest.model_validate(
            {
                "name": "app",
                "dependencies": {"a": "1"},
                "optionalDependencies": {"b": "1"},
                "devDependencies": {"c": "1"},
                "scripts": {"test": "jest"},
            }
        )
        assert manifest.optional_dependencies == {"b": "1"}
        assert manifest.dev_dependencies == {"c": "1"}

    def test_null_sections_are_empty(self) -> None:
        manifest = PackageManifest.model_validate({"name": "x", "dependencies": None})
        assert manifest.dependencies == {}

    def test_classified_excludes_development_by_default(self) -> None:
        manifest = PackageManifest.model_validate(
            {
                "dependencies": {"b": "1", "a": "1"},
                "optionalDependencies": {"c": "1"},
                "devDependencies": {"d": "1"},
            }
        )
        result = manifest.classified_dependencies(
            {DependencyClass.REQUIRED, DependencyClass.OPTIONAL}
        )
        assert list(result) == ["a", "b", "c"]
        assert result["c"] is DependencyClass.OPTIONAL

    def test_runtime_section_wins_over_development(self) -> None:
        """A name listed as both required and development is followed."""
        manifest = PackageManifest.model_validate(
            {"dependencies": {"a": "1"}, "devDependencies": {"a": "1"}}
        )
        result = manifest.classified_dependencies({DependencyClass.REQUIRED})
        assert result == {"a": DependencyClass.REQUIRED}

    def test_depends_on(self) -> None:
        manifest = PackageManifest.model_validate(
            {"dependencies": {"prebuild-install": "7"}, "devDependencies": {"tap": "1"}}
        )
        assert manifest.depends_on("prebuild-install")
        assert not manifest.depends_on("tap")


class TestLoadManifest:
    """Tests for load_manifest error mapping."""

    def test_missing(self, tmp_path: Path) -> None:
        with pytest.raises(StructuralTreeError) as exc_info:
            load_manifest(tmp_path)
        assert exc_info.value.code == "missing_manifest"

    def test_malformed_json(self, tmp_path: Path) -> None:
        (tmp_path / "package.json").write_text("{not json")
        with pytest.raises(StructuralTreeError) as exc_info:
            load_manifest(tmp_path)
        assert exc_info.value.code == "malformed_manifest"

    def test_non_object(self, tmp_path: Path) -> None:
        (tmp_path / "package.json").write_text("[1, 2]")
        with pytest.raises(StructuralTreeError) as exc_info:
            load_manifest(tmp_path)
        assert exc_info.value.code == "malformed_manifest"

    def test_invalid_section_type(self, tmp_path: Path) -> None:
        (tmp_path / "package.json").write_text('{"name": "x", "dependencies": ["a"]}')
        with pytest.raises(StructuralTreeError) as exc_info:
            load_manifest(tmp_path)
        assert exc_info.value.code == "invalid_manifest"
        assert exc_info.value.package_name == "x"


class TestPackageSubpath:
    """Tests for package name to directory mapping."""

    def test_plain(self) -> None:
        assert package_subpath("bcrypt") == Path("bcrypt")

    def test_scoped(self) -> None:
        assert package_subpath("@serialport/bindings") == Path("@serialport", "bindings")

    @pytest.mark.parametrize("name", ["", "a/b", "@scope", "@scope/", "@a/b/c"])
    def test_invalid(self, name: str) -> None:
        with pytest.raises(ValueError):
            package_subpath(name)


class TestResolveDependency:
    """Tests for nearest-node_modules resolution."""

    def test_nested_copy_preferred(self, tree) -> None:
        tree.project(deps=["a"])
        a = tree.package("a", deps=["b"])
        tree.package("b", version="2.0.0")
        nested = tree.package("b", parent=a, version="1.0.0")

        assert resolve_dependency("b", a, tree.root.resolve()) == nested

    def test_falls_back_to_root(self, tree) -> None:
        tree.project(deps=["a"])
        a = tree.package("a", deps=["b"])
        b = tree.package("b")

        assert resolve_dependency("b", a, tree.root.resolve()) == b

    def test_scoped_from_scoped_parent(self, tree) -> None:
        tree.project(deps=["@scope/a"])
        a = tree.package("@scope/a", deps=["c"])
        c = tree.package("c")

        assert resolve_dependency("c", a, tree.root.resolve()) == c

    def test_missing(self, tree) -> None:
        tree.project()
        assert resolve_dependency("nope", tree.root.resolve(), tree.root.resolve()) is None


class TestHasNativeAddon:
    """Tests for native addon detection."""

    def test_descriptor(self, tree) -> None:
        assert has_native_addon(tree.package("a", native=True))

    def test_prebuilds_dir(self, tree) -> None:
        assert has_native_addon(tree.package("a", prebuilds=True))

    def test_pure_js(self, tree) -> None:
        assert not has_native_addon(tree.package("a"))
