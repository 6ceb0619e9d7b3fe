"""Tests for shared types module."""

from pathlib import Path

import pytest

from native_rebuild.types import (
    Architecture,
    BuildKind,
    BuildOutcome,
    DependencyClass,
    LifecycleEventKind,
    ModuleCandidate,
    OutcomeStatus,
    TargetIdentity,
)


class TestEnums:
    """Test enum definitions."""

    def test_dependency_class_values(self) -> None:
        assert DependencyClass.REQUIRED.value == "required"
        assert DependencyClass.OPTIONAL.value == "optional"
        assert DependencyClass.DEVELOPMENT.value == "development"

    def test_lifecycle_event_kind_values(self) -> None:
        assert [k.value for k in LifecycleEventKind] == [
            "found",
            "skip",
            "start",
            "done",
            "failed",
        ]

    def test_build_kind_values(self) -> None:
        assert BuildKind.LOCAL_COMPILE.value == "local-compile"
        assert BuildKind.PREBUILT.value == "prebuilt"

    def test_host_architecture_is_known(self) -> None:
        """The test host must map to a supported architecture."""
        assert isinstance(Architecture.host(), Architecture)


class TestTargetIdentity:
    """Test TargetIdentity equivalence and normalization."""

    def test_strips_leading_v(self) -> None:
        identity = TargetIdentity("v28.1.0", Architecture.X64)
        assert identity.runtime_version == "28.1.0"

    def test_coerces_arch_string(self) -> None:
        identity = TargetIdentity("28.1.0", "arm64")
        assert identity.arch is Architecture.ARM64

    def test_rejects_unknown_arch(self) -> None:
        with pytest.raises(ValueError):
            TargetIdentity("28.1.0", "sparc")

    def test_rejects_empty_version(self) -> None:
        with pytest.raises(ValueError):
            TargetIdentity(" ", Architecture.X64)

    def test_blank_compiler_is_none(self) -> None:
        assert TargetIdentity("28.1.0", "x64", compiler="").compiler is None

    def test_equality_requires_every_field(self) -> None:
        """Debug is part of the identity: debug never matches release."""
        release = TargetIdentity("28.1.0", "x64")
        assert release == TargetIdentity("v28.1.0", "x64")
        assert release != TargetIdentity("28.1.0", "x64", debug=True)
        assert release != TargetIdentity("28.1.0", "arm64")
        assert release != TargetIdentity("28.1.1", "x64")
        assert release != TargetIdentity("28.1.0", "x64", compiler="clang")

    def test_build_type(self) -> None:
        assert TargetIdentity("28.1.0", "x64").build_type == "Release"
        assert TargetIdentity("28.1.0", "x64", debug=True).build_type == "Debug"

    def test_with_overrides(self) -> None:
        base = TargetIdentity("28.1.0", "x64")
        folded = base.with_overrides(debug=True, compiler="clang")
        assert folded.debug is True
        assert folded.compiler == "clang"
        assert base.with_overrides() == base

    def test_str(self) -> None:
        assert str(TargetIdentity("28.1.0", "x64")) == "28.1.0/x64/release"
        assert (
            str(TargetIdentity("28.1.0", "arm64", debug=True, compiler="clang"))
            == "28.1.0/arm64/debug/clang"
        )

    def test_to_dict(self) -> None:
        assert TargetIdentity("28.1.0", "x64").to_dict() == {
            "runtime_version": "28.1.0",
            "arch": "x64",
            "debug": False,
            "compiler": None,
        }


class TestBuildOutcome:
    """Test BuildOutcome helpers."""

    def test_failed_property_and_dict(self) -> None:
        candidate = ModuleCandidate(name="bcrypt", path=Path("/p/node_modules/bcrypt"))
        outcome = BuildOutcome(
            candidate=candidate,
            status=OutcomeStatus.FAILED,
            reason="node-gyp failed with exit code 1",
            code="build_failed",
        )
        assert outcome.failed is True
        data = outcome.to_dict()
        assert data["name"] == "bcrypt"
        assert data["status"] == "failed"
        assert data["log_path"] is None
        assert candidate.descriptor_path == Path("/p/node_modules/bcrypt/binding.gyp")
