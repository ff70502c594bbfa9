"""Tests for the background observer subsystem."""

from __future__ import annotations

import asyncio
import gc

import pytest

from conftest import RecordingListener, T0, make_quantity
from healthsync.domains.health.store.memory import InMemoryHealthStore
from healthsync.domains.health.sync.codec import SampleKind
from healthsync.domains.health.sync.errors import UnavailableError
from healthsync.domains.health.sync.observer import DEFAULT_OBSERVED_KINDS, BackgroundObserver


def _run(coro):
    loop = asyncio.new_event_loop()
    try:
        return loop.run_until_complete(coro)
    finally:
        loop.close()


class _FailingListener:
    def __init__(self) -> None:
        self.calls = 0

    async def on_background_update(self) -> None:
        self.calls += 1
        raise RuntimeError("listener crashed")


class TestLifecycle:
    def test_start_installs_one_subscription_per_kind(self, store, listener):
        observer = BackgroundObserver(store, listener=listener)

        assert _run(observer.start()) is True
        assert observer.is_watching
        assert observer.watched_kinds == list(DEFAULT_OBSERVED_KINDS)
        for kind in DEFAULT_OBSERVED_KINDS:
            assert len(store.observers(kind)) == 1
        assert store.background_delivery == set(DEFAULT_OBSERVED_KINDS)

    def test_double_start_keeps_single_subscription(self, store, listener):
        observer = BackgroundObserver(store, listener=listener)

        async def scenario():
            await observer.start()
            await observer.start()
            await store.notify_changed(SampleKind.GLUCOSE)

        _run(scenario())
        assert len(store.observers(SampleKind.GLUCOSE)) == 1
        assert len(store.observers(SampleKind.STEPS)) == 1
        assert listener.calls == 1

    def test_concurrent_starts_keep_single_subscription(self, store, listener):
        observer = BackgroundObserver(store, listener=listener)

        async def scenario():
            await asyncio.gather(observer.start(), observer.start(), observer.start())

        _run(scenario())
        assert len(store.observers()) == len(DEFAULT_OBSERVED_KINDS)

    def test_stop_silences_delivery(self, store, listener):
        observer = BackgroundObserver(store, listener=listener)

        async def scenario():
            await observer.start()
            assert await observer.stop() is True
            await store.notify_changed(SampleKind.GLUCOSE)
            await store.notify_changed(SampleKind.STEPS)

        _run(scenario())
        assert listener.calls == 0
        assert store.observers() == []
        assert not observer.is_watching

    def test_stop_when_idle_succeeds(self, store):
        observer = BackgroundObserver(store)
        assert _run(observer.stop()) is True

    def test_restart_after_stop(self, store, listener):
        observer = BackgroundObserver(store, listener=listener)

        async def scenario():
            await observer.start()
            await observer.stop()
            await observer.start()
            await store.notify_changed(SampleKind.STEPS)

        _run(scenario())
        assert listener.calls == 1

    def test_unavailable_store(self):
        observer = BackgroundObserver(InMemoryHealthStore(available=False))
        with pytest.raises(UnavailableError):
            _run(observer.start())


class TestDelivery:
    def test_each_kind_notifies_shared_listener(self, store, listener):
        observer = BackgroundObserver(store, listener=listener)

        async def scenario():
            await observer.start()
            await store.notify_changed(SampleKind.GLUCOSE)
            await store.notify_changed(SampleKind.STEPS)

        _run(scenario())
        assert listener.calls == 2

    def test_unwatched_kind_is_silent(self, store, listener):
        observer = BackgroundObserver(store, listener=listener)

        async def scenario():
            await observer.start()
            await store.notify_changed(SampleKind.WEIGHT)

        _run(scenario())
        assert listener.calls == 0

    def test_writes_trigger_delivery(self, store, listener):
        observer = BackgroundObserver(store, listener=listener)

        async def scenario():
            await observer.start()
            await store.save(make_quantity(SampleKind.GLUCOSE, 120, "mg/dL", T0))
            await store.wait_for_deliveries()

        _run(scenario())
        assert listener.calls == 1

    def test_every_delivery_acknowledged(self, store, listener):
        observer = BackgroundObserver(store, listener=listener)

        async def scenario():
            await observer.start()
            for _ in range(3):
                await store.notify_changed(SampleKind.GLUCOSE)

        _run(scenario())
        assert store.deliveries_started == 3
        assert store.pending_acknowledgements == 0

    def test_failing_listener_still_acknowledged(self, store):
        failing = _FailingListener()
        observer = BackgroundObserver(store, listener=failing)

        async def scenario():
            await observer.start()
            await store.notify_changed(SampleKind.GLUCOSE)

        _run(scenario())
        assert failing.calls == 1
        assert store.pending_acknowledgements == 0

    def test_no_listener_still_acknowledged(self, store):
        observer = BackgroundObserver(store)

        async def scenario():
            await observer.start()
            await store.notify_changed(SampleKind.STEPS)

        _run(scenario())
        assert store.deliveries_started == 1
        assert store.pending_acknowledgements == 0

    def test_listener_held_weakly(self, store):
        listener = RecordingListener()
        observer = BackgroundObserver(store, listener=listener)
        del listener
        gc.collect()

        async def scenario():
            await observer.start()
            await store.notify_changed(SampleKind.GLUCOSE)

        _run(scenario())
        assert store.pending_acknowledgements == 0

    def test_set_listener_replaces(self, store, listener):
        other = RecordingListener()
        observer = BackgroundObserver(store, listener=listener)
        observer.set_listener(other)

        async def scenario():
            await observer.start()
            await store.notify_changed(SampleKind.GLUCOSE)

        _run(scenario())
        assert listener.calls == 0
        assert other.calls == 1


class TestBackgroundDelivery:
    def test_enable_failure_is_not_fatal(self, store, listener):
        store.fail_next("background_delivery", "Entitlement missing", kind=SampleKind.STEPS)
        observer = BackgroundObserver(store, listener=listener)

        async def scenario():
            assert await observer.start() is True
            await store.notify_changed(SampleKind.STEPS)

        _run(scenario())
        assert store.background_delivery == {SampleKind.GLUCOSE}
        assert listener.calls == 1

    def test_custom_kinds(self, store, listener):
        observer = BackgroundObserver(store, [SampleKind.GLUCOSE, SampleKind.WEIGHT], listener)
        _run(observer.start())
        assert observer.watched_kinds == [SampleKind.GLUCOSE, SampleKind.WEIGHT]
        assert store.observers(SampleKind.STEPS) == []
