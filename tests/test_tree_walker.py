"""Tests for tree/walker.py module.

Each test builds a fake installed tree under tmp_path and checks which
native-addon modules the walker reports.
"""

from pathlib import Path

import pytest

from native_rebuild.errors import StructuralTreeError
from native_rebuild.tree.walker import logical_name, walk_dependency_tree
from native_rebuild.types import BuildKind, DependencyClass


class TestLogicalName:
    """Tests for logical_name function."""

    def test_plain(self) -> None:
        assert logical_name(Path("/p/node_modules/a/node_modules/b")) == "b"

    def test_scoped(self) -> None:
        assert logical_name(Path("/p/node_modules/@s/n")) == "@s/n"

    def test_no_modules_dir(self) -> None:
        assert logical_name(Path("/p/app")) == "app"


class TestWalkDependencyTree:
    """Tests for walk_dependency_tree function."""

    def test_finds_transitive_native_modules(self, tree) -> None:
        tree.project(deps=["a"])
        tree.package("a", deps=["b"])
        tree.package("b", native=True)

        result = walk_dependency_tree(tree.root)

        assert result.names() == ["b"]
        assert result.errors == []
        assert result.visited == 2

    def test_pure_js_packages_excluded(self, tree) -> None:
        tree.project(deps=["lodash", "bcrypt"])
        tree.package("lodash")
        tree.package("bcrypt", native=True)

        assert walk_dependency_tree(tree.root).names() == ["bcrypt"]

    def test_root_dev_dependencies_excluded(self, tree) -> None:
        tree.project(deps=["a"], dev=["devtool"])
        tree.package("a", native=True)
        tree.package("devtool", native=True, deps=["devnative"])
        tree.package("devnative", native=True)

        assert walk_dependency_tree(tree.root).names() == ["a"]

    def test_child_dev_dependencies_excluded(self, tree) -> None:
        tree.project(deps=["a"])
        tree.package("a", dev=["b"])
        tree.package("b", native=True)

        assert walk_dependency_tree(tree.root).names() == []

    def test_dev_package_included_when_also_required(self, tree) -> None:
        tree.project(deps=["a"], dev=["shared"])
        tree.package("a", deps=["shared"])
        tree.package("shared", native=True)

        assert walk_dependency_tree(tree.root).names() == ["shared"]

    def test_development_followed_when_requested(self, tree) -> None:
        tree.project(dev=["devtool"])
        tree.package("devtool", native=True)

        result = walk_dependency_tree(
            tree.root,
            types={DependencyClass.REQUIRED, DependencyClass.DEVELOPMENT},
        )
        assert result.names() == ["devtool"]

    def test_optional_dependencies_followed(self, tree) -> None:
        tree.project(optional=["fsevents"])
        tree.package("fsevents", native=True)

        assert walk_dependency_tree(tree.root).names() == ["fsevents"]

    def test_missing_optional_is_silent(self, tree) -> None:
        tree.project(optional=["fsevents"])

        result = walk_dependency_tree(tree.root)
        assert result.candidates == []
        assert result.errors == []

    def test_missing_required_is_reported(self, tree) -> None:
        tree.project(deps=["ghost", "a"])
        tree.package("a", native=True)

        result = walk_dependency_tree(tree.root)
        assert result.names() == ["a"]
        assert [e.code for e in result.errors] == ["missing_dependency"]
        assert result.errors[0].package_name == "ghost"

    def test_scoped_package(self, tree) -> None:
        tree.project(deps=["@serialport/bindings"])
        path = tree.package("@serialport/bindings", native=True)

        result = walk_dependency_tree(tree.root)
        assert result.names() == ["@serialport/bindings"]
        assert result.candidates[0].path == path

    def test_nested_copies_yield_one_candidate_each(self, tree) -> None:
        tree.project(deps=["a", "farmhash"])
        a = tree.package("a", deps=["farmhash"])
        top = tree.package("farmhash", native=True, version="3.0.0")
        nested = tree.package("farmhash", parent=a, native=True, version="2.0.0")

        result = walk_dependency_tree(tree.root)
        assert result.names() == ["farmhash", "farmhash"]
        assert {c.path for c in result.candidates} == {top, nested}
        assert {c.version for c in result.candidates} == {"2.0.0", "3.0.0"}

    def test_shared_copy_visited_once(self, tree) -> None:
        tree.project(deps=["a", "b"])
        tree.package("a", deps=["shared"])
        tree.package("b", deps=["shared"])
        tree.package("shared", native=True)

        result = walk_dependency_tree(tree.root)
        assert result.names() == ["shared"]
        assert result.visited == 3

    def test_cycles_terminate(self, tree) -> None:
        tree.project(deps=["a"])
        tree.package("a", deps=["b"], native=True)
        tree.package("b", deps=["a"], native=True)

        assert walk_dependency_tree(tree.root).names() == ["a", "b"]

    def test_malformed_manifest_skips_only_that_subtree(self, tree) -> None:
        tree.project(deps=["broken", "good"])
        broken = tree.package("broken", deps=["hidden"])
        (broken / "package.json").write_text("{oops")
        tree.package("hidden", native=True)
        tree.package("good", native=True)

        result = walk_dependency_tree(tree.root)
        assert result.names() == ["good"]
        assert len(result.errors) == 1
        assert result.errors[0].code == "malformed_manifest"
        assert result.errors[0].package_name == "broken"

    def test_unreadable_root_raises(self, tmp_path: Path) -> None:
        with pytest.raises(StructuralTreeError):
            walk_dependency_tree(tmp_path)

    def test_extra_modules(self, tree) -> None:
        tree.project()
        tree.package("unlisted", native=True)

        result = walk_dependency_tree(tree.root, extra_modules=["unlisted"])
        assert result.names() == ["unlisted"]

    def test_build_kind(self, tree) -> None:
        tree.project(deps=["compiled", "prebuilt", "downloadable"])
        tree.package("compiled", native=True)
        tree.package("prebuilt", prebuilds=True)
        tree.package("downloadable", native=True, deps=["prebuild-install"])
        tree.package("prebuild-install")

        kinds = {c.name: c.build_kind for c in walk_dependency_tree(tree.root).candidates}
        assert kinds == {
            "compiled": BuildKind.LOCAL_COMPILE,
            "prebuilt": BuildKind.PREBUILT,
            "downloadable": BuildKind.PREBUILT,
        }

    def test_result_is_deterministic(self, tree) -> None:
        """Declaration order does not change the candidate list."""
        tree.project(deps=["z", "m", "a"])
        for name in ["z", "m", "a"]:
            tree.package(name, native=True)
        first = walk_dependency_tree(tree.root)

        tree.project(deps=["a", "m", "z"])
        second = walk_dependency_tree(tree.root)

        assert first.candidates == second.candidates
        assert first.names() == ["a", "m", "z"]
