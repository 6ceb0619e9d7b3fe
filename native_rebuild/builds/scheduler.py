"""Build scheduler.

This module owns a run over a list of candidate modules:
- Filtering by allow-list and ignore-list (filtered modules emit nothing)
- Synchronous ABI cache checks (``found`` then ``skip``)
- Bounded concurrent builds (``found``, ``start``, then ``done``/``failed``)
- Aggregation of per-module outcomes without fail-fast

Events for one module are always emitted in order; events for different
modules may interleave.
"""

from __future__ import annotations

import logging
import threading
import time
from concurrent.futures import ThreadPoolExecutor, as_completed
from dataclasses import dataclass, field
from pathlib import Path

from native_rebuild.builds.abi_cache import AbiCache
from native_rebuild.builds.invoker import NativeBuildInvoker
from native_rebuild.errors import BuildProcessError, ToolchainAcquisitionError
from native_rebuild.lifecycle import LifecycleEmitter
from native_rebuild.types import (
    BuildOutcome,
    LifecycleEvent,
    LifecycleEventKind,
    ModuleCandidate,
    OutcomeStatus,
    TargetIdentity,
)

logger = logging.getLogger(__name__)

# Default bound on concurrent module builds
DEFAULT_MAX_WORKERS = 4


@dataclass(frozen=True)
class ScheduleOptions:
    """Options controlling one scheduler run.

    Attributes:
        identity: Target identity to build against.
        only_modules: When non-empty, only these logical names are processed.
        ignore_modules: Logical names never processed.
        force: Rebuild even when the ABI cache matches.
        only_modules_bypass_cache: Treat allow-listed modules as forced.
        max_workers: Bound on concurrent builds.
    """

    identity: TargetIdentity
    only_modules: frozenset[str] = frozenset()
    ignore_modules: frozenset[str] = frozenset()
    force: bool = False
    only_modules_bypass_cache: bool = False
    max_workers: int = DEFAULT_MAX_WORKERS


@dataclass
class ScheduleResult:
    """Outcome of a scheduler run.

    Attributes:
        outcomes: Terminal outcome per processed module, sorted by name/path.
        dropped: Modules not started because the run was cancelled.
    """

    outcomes: list[BuildOutcome] = field(default_factory=list)
    dropped: list[ModuleCandidate] = field(default_factory=list)

    @property
    def failures(self) -> list[BuildOutcome]:
        return [o for o in self.outcomes if o.failed]

    def count(self, status: OutcomeStatus) -> int:
        return sum(1 for o in self.outcomes if o.status is status)


class BuildScheduler:
    """Run module builds with a bounded worker pool and lifecycle events.

    Args:
        invoker: Builds one module for an identity.
        cache: ABI cache consulted for skip decisions.
        emitter: Receives lifecycle events.
        cancel_event: When set, modules not yet started are dropped.
    """

    def __init__(
        self,
        invoker: NativeBuildInvoker,
        cache: AbiCache | None = None,
        emitter: LifecycleEmitter | None = None,
        cancel_event: threading.Event | None = None,
    ) -> None:
        self.invoker = invoker
        self.cache = cache or invoker.cache
        self.emitter = emitter or LifecycleEmitter()
        self.cancel_event = cancel_event or threading.Event()

    def select(
        self,
        candidates: list[ModuleCandidate],
        options: ScheduleOptions,
    ) -> list[ModuleCandidate]:
        """Apply the allow-list and ignore-list to candidates."""
        selected = []
        for candidate in candidates:
            if options.only_modules and candidate.name not in options.only_modules:
                continue
            if candidate.name in options.ignore_modules:
                continue
            selected.append(candidate)
        return selected

    def run(
        self,
        candidates: list[ModuleCandidate],
        options: ScheduleOptions,
    ) -> ScheduleResult:
        """Process candidates and settle once every module is terminal.

        Args:
            candidates: Modules found by the walker.
            options: Run options, including the target identity.

        Returns:
            ScheduleResult with one outcome per processed module.

        Raises:
            ToolchainAcquisitionError: If the toolchain for the identity is
                unavailable; no module build is started.
        """
        identity = options.identity
        result = ScheduleResult()
        to_build: list[ModuleCandidate] = []

        for candidate in self.select(candidates, options):
            if self.cancel_event.is_set():
                result.dropped.append(candidate)
                continue

            self._emit(LifecycleEventKind.FOUND, candidate)
            force = options.force or (
                options.only_modules_bypass_cache
                and candidate.name in options.only_modules
            )
            if self.cache.should_build(candidate, identity, force=force):
                to_build.append(candidate)
                continue

            logger.info("Skipping %s: already built for %s", candidate.name, identity)
            self._emit(LifecycleEventKind.SKIP, candidate, "ABI cache matches")
            result.outcomes.append(
                BuildOutcome(candidate=candidate, status=OutcomeStatus.SKIPPED)
            )

        if to_build and not self.cancel_event.is_set():
            # Any failure here is fatal to every module still to be built
            self.invoker.prepare(identity)

            workers = max(1, min(options.max_workers, len(to_build)))
            logger.debug("Building %d module(s) with %d worker(s)", len(to_build), workers)
            with ThreadPoolExecutor(
                max_workers=workers, thread_name_prefix="native-rebuild"
            ) as pool:
                futures = {
                    pool.submit(self._build_one, candidate, identity): candidate
                    for candidate in to_build
                }
                for future in as_completed(futures):
                    outcome = future.result()
                    if outcome is None:
                        result.dropped.append(futures[future])
                    else:
                        result.outcomes.append(outcome)
        else:
            result.dropped.extend(to_build)

        result.outcomes.sort(key=lambda o: (o.candidate.name, str(o.candidate.path)))
        result.dropped.sort(key=lambda c: (c.name, str(c.path)))
        return result

    def _build_one(
        self,
        candidate: ModuleCandidate,
        identity: TargetIdentity,
    ) -> BuildOutcome | None:
        if self.cancel_event.is_set():
            logger.debug("Dropping %s: run cancelled", candidate.name)
            return None

        self._emit(LifecycleEventKind.START, candidate)
        started = time.monotonic()
        try:
            build = self.invoker.build(candidate, identity)
        except BuildProcessError as e:
            return self._failed(candidate, started, str(e), e.code, e.log_path)
        except ToolchainAcquisitionError:
            raise
        except Exception as e:
            logger.exception("Unexpected error building %s", candidate.name)
            return self._failed(
                candidate, started, f"{type(e).__name__}: {e}", "unexpected_error"
            )

        outcome = BuildOutcome(
            candidate=candidate,
            status=OutcomeStatus.BUILT,
            warnings=list(build.warnings),
            log_path=build.log_path,
            duration_seconds=time.monotonic() - started,
        )
        self._emit(LifecycleEventKind.DONE, candidate, build.strategy.value)
        return outcome

    def _failed(
        self,
        candidate: ModuleCandidate,
        started: float,
        reason: str,
        code: str,
        log_path: Path | None = None,
    ) -> BuildOutcome:
        outcome = BuildOutcome(
            candidate=candidate,
            status=OutcomeStatus.FAILED,
            reason=reason,
            code=code,
            log_path=log_path,
            duration_seconds=time.monotonic() - started,
        )
        self._emit(LifecycleEventKind.FAILED, candidate, reason)
        return outcome

    def _emit(
        self,
        kind: LifecycleEventKind,
        candidate: ModuleCandidate,
        detail: str | None = None,
    ) -> None:
        self.emitter.emit(LifecycleEvent(kind=kind, candidate=candidate, detail=detail))


__all__ = [
    "DEFAULT_MAX_WORKERS",
    "BuildScheduler",
    "ScheduleOptions",
    "ScheduleResult",
]
