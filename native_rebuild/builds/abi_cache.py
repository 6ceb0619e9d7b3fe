"""ABI compatibility cache.

This module handles:
- Canonical identity keys for a TargetIdentity
- Reading the per-module record of the last successful build
- Deciding skip-vs-build for a module
- Atomically persisting a record after a successful build

Records live inside each module's own directory; there is no shared or
cross-run cache. Manual edits to a module can make a record stale and this
is not detected.
"""

from __future__ import annotations

import hashlib
import json
import logging
import os
import tempfile
from datetime import datetime, timezone
from pathlib import Path

from pydantic import BaseModel, ConfigDict, ValidationError, field_validator

from native_rebuild.errors import CacheWriteError
from native_rebuild.types import Architecture, ModuleCandidate, TargetIdentity

logger = logging.getLogger(__name__)

# Schema version for the record format; bump when the record format changes
CACHE_RECORD_SCHEMA_VERSION = "1"

# Record location relative to the module directory
CACHE_RECORD_RELPATH = Path("build") / ".native-rebuild.json"


def compute_identity_key(identity: TargetIdentity) -> str:
    """Compute a stable hash for a target identity.

    Args:
        identity: TargetIdentity to hash.

    Returns:
        Identity key as hex string (sha256:...).
    """
    canonical_json = json.dumps(
        {"schema_version": CACHE_RECORD_SCHEMA_VERSION, **identity.to_dict()},
        sort_keys=True,
        separators=(",", ":"),
    )
    digest = hashlib.sha256(canonical_json.encode("utf-8")).hexdigest()
    return f"sha256:{digest}"


class CacheRecord(BaseModel):
    """Persisted record of the identity a module was last built for."""

    model_config = ConfigDict(extra="forbid")

    schema_version: str = CACHE_RECORD_SCHEMA_VERSION
    runtime_version: str
    arch: Architecture
    debug: bool
    compiler: str | None = None
    identity_key: str
    recorded_at: datetime

    @field_validator("runtime_version")
    @classmethod
    def validate_runtime_version(cls, v: str) -> str:
        """Normalize like TargetIdentity; an empty version is not a valid record."""
        version = v.strip().lstrip("v")
        if not version:
            raise ValueError("runtime_version must not be empty")
        return version

    @classmethod
    def for_identity(cls, identity: TargetIdentity) -> CacheRecord:
        """Create a record for an identity, stamped with the current time."""
        return cls(
            runtime_version=identity.runtime_version,
            arch=identity.arch,
            debug=identity.debug,
            compiler=identity.compiler,
            identity_key=compute_identity_key(identity),
            recorded_at=datetime.now(timezone.utc),
        )

    def to_identity(self) -> TargetIdentity:
        """Rebuild the TargetIdentity stored in this record."""
        return TargetIdentity(
            runtime_version=self.runtime_version,
            arch=self.arch,
            debug=self.debug,
            compiler=self.compiler,
        )

    def matches(self, identity: TargetIdentity) -> bool:
        """Check whether this record satisfies the requested identity."""
        if self.schema_version != CACHE_RECORD_SCHEMA_VERSION:
            return False
        return self.to_identity() == identity


class AbiCache:
    """Per-module ABI record store.

    Args:
        relpath: Record location relative to each module directory.
    """

    def __init__(self, relpath: Path = CACHE_RECORD_RELPATH) -> None:
        self.relpath = relpath

    def record_path(self, candidate: ModuleCandidate) -> Path:
        """Return the record file for a module."""
        return candidate.path / self.relpath

    def read(self, candidate: ModuleCandidate) -> CacheRecord | None:
        """Read the stored record for a module.

        Returns:
            CacheRecord, or None if absent or unreadable.
        """
        path = self.record_path(candidate)
        try:
            return CacheRecord.model_validate_json(path.read_bytes())
        except FileNotFoundError:
            return None
        except (OSError, ValidationError) as e:
            logger.warning("Ignoring unreadable ABI record %s: %s", path, e)
            return None

    def should_build(
        self,
        candidate: ModuleCandidate,
        identity: TargetIdentity,
        force: bool = False,
    ) -> bool:
        """Decide whether a module needs to be rebuilt for an identity.

        Args:
            candidate: Module to check.
            identity: Requested target identity.
            force: Rebuild regardless of any stored record.

        Returns:
            True if the module must be built.
        """
        if force:
            return True
        record = self.read(candidate)
        if record is None:
            logger.debug("No ABI record for %s", candidate.name)
            return True
        if not record.matches(identity):
            logger.debug(
                "ABI record for %s is for %s, need %s",
                candidate.name,
                record.to_identity(),
                identity,
            )
            return True
        return False

    def record(self, candidate: ModuleCandidate, identity: TargetIdentity) -> Path:
        """Persist the identity a module was successfully built for.

        The record is written to a temporary file in the same directory and
        renamed over the previous one, so a partial record is never visible.

        Returns:
            Path to the written record.

        Raises:
            CacheWriteError: If the record cannot be written.
        """
        path = self.record_path(candidate)
        payload = CacheRecord.for_identity(identity).model_dump_json(indent=2)
        tmp_path: Path | None = None
        try:
            path.parent.mkdir(parents=True, exist_ok=True)
            with tempfile.NamedTemporaryFile(
                "w",
                dir=path.parent,
                prefix=".native-rebuild-",
                suffix=".tmp",
                delete=False,
                encoding="utf-8",
            ) as tmp_file:
                tmp_path = Path(tmp_file.name)
                tmp_file.write(payload)
                tmp_file.flush()
                os.fsync(tmp_file.fileno())
            os.replace(tmp_path, path)
        except OSError as e:
            if tmp_path is not None:
                tmp_path.unlink(missing_ok=True)
            raise CacheWriteError(
                f"Failed to write ABI record {path}: {e}", path=path
            ) from e

        logger.debug("Recorded ABI %s for %s", identity, candidate.name)
        return path


__all__ = [
    "CACHE_RECORD_RELPATH",
    "CACHE_RECORD_SCHEMA_VERSION",
    "AbiCache",
    "CacheRecord",
    "compute_identity_key",
]
