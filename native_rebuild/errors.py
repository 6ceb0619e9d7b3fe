"""Error taxonomy for rebuild operations.

Each error carries a stable ``code`` for structured handling by callers
(CLI JSON output, programmatic consumers).
"""

from __future__ import annotations

from pathlib import Path
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from native_rebuild.types import BuildOutcome, TargetIdentity


class StructuralTreeError(Exception):
    """Raised when a manifest in the dependency tree is unreadable or malformed."""

    def __init__(
        self,
        message: str,
        path: Path,
        package_name: str | None = None,
        code: str = "structural_tree_error",
    ) -> None:
        super().__init__(message)
        self.path = path
        self.package_name = package_name
        self.code = code

    def to_dict(self) -> dict[str, str | None]:
        """Convert to dictionary for JSON serialization."""
        return {
            "code": self.code,
            "message": str(self),
            "path": str(self.path),
            "package": self.package_name,
        }


class ToolchainAcquisitionError(Exception):
    """Raised when the header/toolchain bundle for an identity is unavailable.

    Attributes:
        target: Identity being provisioned, when known.
    """

    def __init__(
        self,
        message: str,
        code: str = "toolchain_error",
        target: TargetIdentity | None = None,
    ) -> None:
        super().__init__(message)
        self.code = code
        self.target = target


class BuildProcessError(Exception):
    """Raised when building a single module fails."""

    def __init__(
        self,
        message: str,
        exit_code: int | None = None,
        log_path: Path | None = None,
        code: str = "build_failed",
    ) -> None:
        super().__init__(message)
        self.exit_code = exit_code
        self.log_path = log_path
        self.code = code


class CacheWriteError(Exception):
    """Raised when an ABI cache record cannot be persisted."""

    def __init__(self, message: str, path: Path, code: str = "cache_write_error") -> None:
        super().__init__(message)
        self.path = path
        self.code = code


class RebuildError(Exception):
    """Raised when one or more modules failed to rebuild.

    Attributes:
        target: Identity the run built against.
        outcomes: Every outcome of the run, failed or not.
    """

    def __init__(
        self,
        target: TargetIdentity,
        outcomes: list[BuildOutcome],
        code: str = "rebuild_failed",
    ) -> None:
        self.target = target
        self.outcomes = outcomes
        self.code = code
        names = ", ".join(f"{o.candidate.name} ({o.candidate.path})" for o in self.failures)
        super().__init__(
            f"{len(self.failures)} module(s) failed to rebuild for {target}: {names}"
        )

    @property
    def failures(self) -> list[BuildOutcome]:
        """Outcomes that failed."""
        return [o for o in self.outcomes if o.failed]


class RebuildCancelledError(Exception):
    """Raised when a rebuild run was cancelled before every module was dispatched."""

    def __init__(self, dropped: list[str], code: str = "cancelled") -> None:
        super().__init__(f"Rebuild cancelled; {len(dropped)} module(s) not started")
        self.dropped = dropped
        self.code = code


__all__ = [
    "BuildProcessError",
    "CacheWriteError",
    "RebuildCancelledError",
    "RebuildError",
    "StructuralTreeError",
    "ToolchainAcquisitionError",
]
