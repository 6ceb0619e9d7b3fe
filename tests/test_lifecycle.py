"""Tests for lifecycle.py module."""

import logging
import threading
from pathlib import Path

import pytest

from native_rebuild.lifecycle import LifecycleEmitter
from native_rebuild.types import LifecycleEvent, LifecycleEventKind, ModuleCandidate

CANDIDATE = ModuleCandidate(name="bcrypt", path=Path("/p/node_modules/bcrypt"))


def _event(kind: LifecycleEventKind) -> LifecycleEvent:
    return LifecycleEvent(kind=kind, candidate=CANDIDATE)


class TestLifecycleEmitter:
    """Tests for LifecycleEmitter."""

    def test_on_filters_by_kind(self) -> None:
        emitter = LifecycleEmitter()
        seen: list[str] = []
        emitter.on(LifecycleEventKind.DONE, lambda e: seen.append(e.kind.value))

        emitter.emit(_event(LifecycleEventKind.START))
        emitter.emit(_event(LifecycleEventKind.DONE))

        assert seen == ["done"]

    @pytest.mark.parametrize("kind", ["done", "module-done", LifecycleEventKind.DONE])
    def test_kind_aliases(self, kind) -> None:
        emitter = LifecycleEmitter()
        seen: list[LifecycleEvent] = []
        emitter.on(kind, seen.append)
        emitter.emit(_event(LifecycleEventKind.DONE))
        assert len(seen) == 1

    def test_unknown_kind_rejected(self) -> None:
        with pytest.raises(ValueError):
            LifecycleEmitter().on("module-exploded", print)

    def test_on_any_and_off(self) -> None:
        emitter = LifecycleEmitter()
        seen: list[str] = []
        callback = emitter.on_any(lambda e: seen.append(e.kind.value))

        emitter.emit(_event(LifecycleEventKind.FOUND))
        emitter.off(callback)
        emitter.emit(_event(LifecycleEventKind.SKIP))

        assert seen == ["found"]
        assert [e.kind for e in emitter.history] == [
            LifecycleEventKind.FOUND,
            LifecycleEventKind.SKIP,
        ]

    def test_failing_subscriber_is_isolated(self, caplog) -> None:
        emitter = LifecycleEmitter()
        seen: list[str] = []

        def broken(event):
            raise RuntimeError("subscriber bug")

        emitter.on_any(broken)
        emitter.on_any(lambda e: seen.append(e.candidate.name))

        with caplog.at_level(logging.ERROR, logger="native_rebuild.lifecycle"):
            emitter.emit(_event(LifecycleEventKind.START))

        assert seen == ["bcrypt"]
        assert "subscriber failed" in caplog.text

    def test_concurrent_emit(self) -> None:
        emitter = LifecycleEmitter()
        threads = [
            threading.Thread(
                target=lambda: [emitter.emit(_event(LifecycleEventKind.FOUND)) for _ in range(50)]
            )
            for _ in range(4)
        ]
        for t in threads:
            t.start()
        for t in threads:
            t.join()

        assert emitter.count("found") == 200
