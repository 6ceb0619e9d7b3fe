"""Shared type definitions for native_rebuild.

This module contains enums and dataclasses shared across subpackages to
avoid circular imports.
"""

from __future__ import annotations

import platform
import sys
from dataclasses import dataclass, field, replace
from enum import Enum
from pathlib import Path
from typing import Any


class Architecture(str, Enum):
    """CPU architectures a native addon can be built for."""

    IA32 = "ia32"
    X64 = "x64"
    ARM = "arm"
    ARMV7L = "armv7l"
    ARM64 = "arm64"
    MIPS64EL = "mips64el"
    PPC64 = "ppc64"
    S390X = "s390x"
    RISCV64 = "riscv64"

    @classmethod
    def host(cls) -> Architecture:
        """Return the architecture of the running interpreter's host."""
        machine = platform.machine().lower()
        aliases = {
            "x86_64": cls.X64,
            "amd64": cls.X64,
            "i386": cls.IA32,
            "i686": cls.IA32,
            "x86": cls.IA32,
            "aarch64": cls.ARM64,
            "arm64": cls.ARM64,
            "armv7l": cls.ARMV7L,
            "armv6l": cls.ARM,
            "ppc64le": cls.PPC64,
        }
        if machine in aliases:
            return aliases[machine]
        return cls(machine)


class DependencyClass(str, Enum):
    """Declared role of a dependency edge."""

    REQUIRED = "required"
    OPTIONAL = "optional"
    DEVELOPMENT = "development"


class BuildKind(str, Enum):
    """How a module obtains its compiled binary."""

    LOCAL_COMPILE = "local-compile"
    PREBUILT = "prebuilt"


class OutcomeStatus(str, Enum):
    """Terminal status of one module in a rebuild run."""

    SKIPPED = "skipped"
    BUILT = "built"
    FAILED = "failed"


class LifecycleEventKind(str, Enum):
    """Kinds of lifecycle notifications emitted during a run."""

    FOUND = "found"
    SKIP = "skip"
    START = "start"
    DONE = "done"
    FAILED = "failed"


DEFAULT_DEPENDENCY_CLASSES = frozenset(
    {DependencyClass.REQUIRED, DependencyClass.OPTIONAL}
)


def host_platform() -> str:
    """Return the platform name used by native build tools (linux, darwin, win32)."""
    if sys.platform.startswith("linux"):
        return "linux"
    return sys.platform


@dataclass(frozen=True)
class TargetIdentity:
    """ABI identity a native addon is built against.

    Two identities are compatible only when every field matches; a debug
    build never satisfies a release request for the same version and arch.

    Attributes:
        runtime_version: Version of the host runtime (e.g. '28.1.0').
        arch: Target CPU architecture.
        debug: Build with debug configuration.
        compiler: Optional alternative compiler toolchain name (e.g. 'clang').
    """

    runtime_version: str
    arch: Architecture
    debug: bool = False
    compiler: str | None = None

    def __post_init__(self) -> None:
        """Normalize and validate fields."""
        version = self.runtime_version.strip().lstrip("v")
        if not version:
            raise ValueError("runtime_version must be provided")
        object.__setattr__(self, "runtime_version", version)
        object.__setattr__(self, "arch", Architecture(self.arch))
        if self.compiler is not None and not self.compiler.strip():
            object.__setattr__(self, "compiler", None)

    @property
    def build_type(self) -> str:
        """Output directory convention for this identity (Debug or Release)."""
        return "Debug" if self.debug else "Release"

    def with_overrides(
        self,
        debug: bool = False,
        compiler: str | None = None,
    ) -> TargetIdentity:
        """Return a copy with debug/compiler options folded in."""
        return replace(
            self,
            debug=self.debug or debug,
            compiler=compiler or self.compiler,
        )

    def to_dict(self) -> dict[str, Any]:
        """Convert to a JSON-serializable dictionary."""
        return {
            "runtime_version": self.runtime_version,
            "arch": self.arch.value,
            "debug": self.debug,
            "compiler": self.compiler,
        }

    def __str__(self) -> str:
        parts = [self.runtime_version, self.arch.value, self.build_type.lower()]
        if self.compiler:
            parts.append(self.compiler)
        return "/".join(parts)


@dataclass(frozen=True)
class ModuleCandidate:
    """A physically installed package that may contain a native addon.

    Attributes:
        name: Logical package name, including any '@scope/' prefix.
        path: Absolute path to the installed package directory.
        has_native_addon: Whether a build descriptor or prebuilt dir exists.
        build_kind: Preferred way of obtaining the compiled binary.
        version: Installed package version, if declared.
    """

    name: str
    path: Path
    has_native_addon: bool = True
    build_kind: BuildKind = BuildKind.LOCAL_COMPILE
    version: str | None = None

    @property
    def descriptor_path(self) -> Path:
        """Path to the module's native build descriptor."""
        return self.path / "binding.gyp"

    def to_dict(self) -> dict[str, Any]:
        """Convert to a JSON-serializable dictionary."""
        return {
            "name": self.name,
            "path": str(self.path),
            "has_native_addon": self.has_native_addon,
            "build_kind": self.build_kind.value,
            "version": self.version,
        }


@dataclass(frozen=True)
class LifecycleEvent:
    """Observability notification produced by the build scheduler."""

    kind: LifecycleEventKind
    candidate: ModuleCandidate
    detail: str | None = None


@dataclass
class BuildOutcome:
    """Terminal outcome for one module in a rebuild run."""

    candidate: ModuleCandidate
    status: OutcomeStatus
    reason: str | None = None
    code: str | None = None
    warnings: list[str] = field(default_factory=list)
    log_path: Path | None = None
    duration_seconds: float | None = None

    @property
    def failed(self) -> bool:
        return self.status is OutcomeStatus.FAILED

    def to_dict(self) -> dict[str, Any]:
        """Convert to a JSON-serializable dictionary."""
        return {
            "name": self.candidate.name,
            "path": str(self.candidate.path),
            "status": self.status.value,
            "reason": self.reason,
            "code": self.code,
            "warnings": list(self.warnings),
            "log_path": str(self.log_path) if self.log_path else None,
            "duration_seconds": self.duration_seconds,
        }


__all__ = [
    "DEFAULT_DEPENDENCY_CLASSES",
    "Architecture",
    "BuildKind",
    "BuildOutcome",
    "DependencyClass",
    "LifecycleEvent",
    "LifecycleEventKind",
    "ModuleCandidate",
    "OutcomeStatus",
    "TargetIdentity",
    "host_platform",
]
