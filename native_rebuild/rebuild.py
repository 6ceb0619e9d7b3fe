"""Rebuild orchestration entry point.

This module provides the high-level API:
- rebuild(): walk the tree at ``build_path`` and rebuild every native addon
  for a target identity, returning a RebuildHandle
- RebuildHandle: subscribe to lifecycle events, start, wait, cancel or
  ``await`` the run

The run starts on ``handle.start()`` or on the first ``handle.result()`` /
``await handle``, so subscribers attached right after ``rebuild()`` see
every event.
"""

from __future__ import annotations

import asyncio
import logging
import threading
from collections.abc import Generator, Iterable
from concurrent.futures import Future
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

from native_rebuild.builds.abi_cache import AbiCache
from native_rebuild.builds.invoker import NativeBuildInvoker
from native_rebuild.builds.scheduler import BuildScheduler, ScheduleOptions
from native_rebuild.config import Settings, get_settings
from native_rebuild.errors import RebuildCancelledError, RebuildError, StructuralTreeError
from native_rebuild.lifecycle import LifecycleEmitter, Subscriber
from native_rebuild.toolchain.service import ToolchainProvider
from native_rebuild.tree.walker import walk_dependency_tree
from native_rebuild.types import (
    DEFAULT_DEPENDENCY_CLASSES,
    BuildOutcome,
    DependencyClass,
    LifecycleEventKind,
    OutcomeStatus,
    TargetIdentity,
)

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class RebuildOptions:
    """Options for a rebuild run.

    Attributes:
        only_modules: Logical names to process; empty means all.
        force: Rebuild even when the ABI cache matches.
        debug: Build the debug configuration.
        compiler_override: Alternative compiler bundled with the runtime.
        ignore_modules: Logical names never processed.
        extra_modules: Extra root-level packages to walk as required.
        types: Dependency classes followed during the walk.
        build_from_source: Never use prebuilt binary downloads.
        sequential: Build one module at a time.
        headers_url: Override for the header distribution URL.
        only_modules_bypass_cache: Allow-listed modules rebuild even when
            ``force`` is false and the cache matches.
    """

    only_modules: frozenset[str] = frozenset()
    force: bool = False
    debug: bool = False
    compiler_override: str | None = None
    ignore_modules: frozenset[str] = frozenset()
    extra_modules: tuple[str, ...] = ()
    types: frozenset[DependencyClass] = DEFAULT_DEPENDENCY_CLASSES
    build_from_source: bool = False
    sequential: bool = False
    headers_url: str | None = None
    only_modules_bypass_cache: bool = False

    def __post_init__(self) -> None:
        """Normalize collection fields given as lists or sets."""
        object.__setattr__(self, "only_modules", frozenset(self.only_modules))
        object.__setattr__(self, "ignore_modules", frozenset(self.ignore_modules))
        object.__setattr__(self, "extra_modules", tuple(self.extra_modules))
        object.__setattr__(
            self, "types", frozenset(DependencyClass(t) for t in self.types)
        )


@dataclass
class RebuildResult:
    """Aggregate result of a rebuild run."""

    target: TargetIdentity
    build_path: Path
    outcomes: list[BuildOutcome] = field(default_factory=list)
    tree_errors: list[StructuralTreeError] = field(default_factory=list)
    dropped: list[str] = field(default_factory=list)

    @property
    def success(self) -> bool:
        return not self.failures

    @property
    def failures(self) -> list[BuildOutcome]:
        return [o for o in self.outcomes if o.failed]

    def count(self, status: OutcomeStatus) -> int:
        return sum(1 for o in self.outcomes if o.status is status)

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary for JSON serialization."""
        return {
            "success": self.success,
            "target": self.target.to_dict(),
            "build_path": str(self.build_path),
            "built": self.count(OutcomeStatus.BUILT),
            "skipped": self.count(OutcomeStatus.SKIPPED),
            "failed": self.count(OutcomeStatus.FAILED),
            "outcomes": [o.to_dict() for o in self.outcomes],
            "tree_errors": [e.to_dict() for e in self.tree_errors],
            "dropped": list(self.dropped),
        }


class RebuildHandle:
    """Handle to a rebuild run.

    Attributes:
        lifecycle: Emitter to subscribe to before the run starts.
        target: Identity the run builds against.
        build_path: Project root being rebuilt.
    """

    def __init__(
        self,
        target: TargetIdentity,
        build_path: Path,
        options: RebuildOptions,
        settings: Settings,
        invoker: NativeBuildInvoker | None = None,
    ) -> None:
        self.target = target
        self.build_path = build_path
        self.options = options
        self.settings = settings
        self.lifecycle = LifecycleEmitter()
        self._invoker = invoker
        self._cancel = threading.Event()
        self._future: Future[RebuildResult] = Future()
        self._start_lock = threading.Lock()
        self._thread: threading.Thread | None = None

    def on(self, kind: LifecycleEventKind | str, callback: Subscriber) -> RebuildHandle:
        """Subscribe to a lifecycle event kind; returns the handle for chaining."""
        self.lifecycle.on(kind, callback)
        return self

    def start(self) -> RebuildHandle:
        """Start the run in a background thread (no-op if already started)."""
        with self._start_lock:
            if self._thread is None:
                self._thread = threading.Thread(
                    target=self._run, name="native-rebuild-run", daemon=True
                )
                self._thread.start()
        return self

    def cancel(self) -> None:
        """Request cancellation; modules not yet started are dropped."""
        logger.info("Cancellation requested for rebuild of %s", self.build_path)
        self._cancel.set()

    @property
    def done(self) -> bool:
        return self._future.done()

    def result(self, timeout: float | None = None) -> RebuildResult:
        """Start the run if needed and wait for it to settle.

        Raises:
            RebuildError: If any module failed.
            RebuildCancelledError: If the run was cancelled before every
                module was started.
            ToolchainAcquisitionError: If the toolchain is unavailable.
            StructuralTreeError: If the root manifest cannot be read.
            TimeoutError: If the run does not settle within ``timeout``.
        """
        self.start()
        return self._future.result(timeout)

    def __await__(self) -> Generator[Any, None, RebuildResult]:
        self.start()
        return asyncio.wrap_future(self._future).__await__()

    def _run(self) -> None:
        if not self._future.set_running_or_notify_cancel():
            return
        try:
            result = self._execute()
        except BaseException as e:
            self._future.set_exception(e)
        else:
            self._future.set_result(result)

    def _execute(self) -> RebuildResult:
        options = self.options
        invoker = self._invoker or NativeBuildInvoker(
            settings=self.settings,
            toolchain=ToolchainProvider(self.settings, headers_url=options.headers_url),
            cache=AbiCache(),
            build_from_source=options.build_from_source,
        )

        logger.info("Rebuilding native modules in %s for %s", self.build_path, self.target)
        walk = walk_dependency_tree(
            self.build_path,
            types=options.types,
            extra_modules=list(options.extra_modules),
        )
        for error in walk.errors:
            logger.warning("Dependency tree error: %s", error)

        scheduler = BuildScheduler(
            invoker, emitter=self.lifecycle, cancel_event=self._cancel
        )
        schedule = scheduler.run(
            walk.candidates,
            ScheduleOptions(
                identity=self.target,
                only_modules=options.only_modules,
                ignore_modules=options.ignore_modules,
                force=options.force,
                only_modules_bypass_cache=options.only_modules_bypass_cache,
                max_workers=1 if options.sequential else self.settings.max_concurrent_builds,
            ),
        )

        result = RebuildResult(
            target=self.target,
            build_path=walk.root,
            outcomes=schedule.outcomes,
            tree_errors=walk.errors,
            dropped=[c.name for c in schedule.dropped],
        )
        logger.info(
            "Rebuild finished: %d built, %d skipped, %d failed",
            result.count(OutcomeStatus.BUILT),
            result.count(OutcomeStatus.SKIPPED),
            result.count(OutcomeStatus.FAILED),
        )

        if result.failures:
            raise RebuildError(self.target, result.outcomes)
        if result.dropped:
            raise RebuildCancelledError(result.dropped)
        return result


def rebuild(
    target: TargetIdentity,
    build_path: Path | str,
    options: RebuildOptions | None = None,
    settings: Settings | None = None,
    invoker: NativeBuildInvoker | None = None,
) -> RebuildHandle:
    """Rebuild every native addon under ``build_path`` for a target identity.

    ``options.debug`` and ``options.compiler_override`` are folded into the
    target identity, so they take part in ABI cache matching.

    Args:
        target: Runtime version and architecture to build against.
        build_path: Project root containing ``package.json``.
        options: Run options.
        settings: Application settings; loaded from the environment if omitted.
        invoker: Custom module builder (mainly for embedding and tests).

    Returns:
        RebuildHandle; call ``result()`` or ``await`` it to run.
    """
    options = options or RebuildOptions()
    identity = target.with_overrides(
        debug=options.debug, compiler=options.compiler_override
    )
    return RebuildHandle(
        identity,
        Path(build_path),
        options,
        settings or get_settings(),
        invoker=invoker,
    )


def only_modules_from(names: Iterable[str] | None) -> frozenset[str]:
    """Normalize a comma-separated or repeated module list."""
    modules: set[str] = set()
    for name in names or []:
        modules.update(part.strip() for part in name.split(",") if part.strip())
    return frozenset(modules)


__all__ = [
    "RebuildHandle",
    "RebuildOptions",
    "RebuildResult",
    "only_modules_from",
    "rebuild",
]
