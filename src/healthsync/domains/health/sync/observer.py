"""Background observer subsystem.

Keeps one passive subscription alive per watched kind. Every firing, from
any kind, goes to the same listener; kinds fire independently of each other.
After the listener returns, the delivery is acknowledged to the store so the
platform can reclaim the background wake-up.

State machine::

    idle --start()--> watching --stop()--> idle
    watching --start()--> watching   (old subscriptions torn down first)

Start and stop are serialized by a single lock so overlapping calls cannot
leave two live subscriptions for one kind.
"""

from __future__ import annotations

import asyncio
import logging
import weakref
from typing import Callable, Iterable, Protocol, runtime_checkable

from healthsync.domains.health.store import HealthStore, HealthStoreError, ObserverQuery
from healthsync.domains.health.sync.codec import SampleKind
from healthsync.domains.health.sync.errors import UnavailableError

logger = logging.getLogger(__name__)

DEFAULT_OBSERVED_KINDS = (SampleKind.GLUCOSE, SampleKind.STEPS)


@runtime_checkable
class BackgroundUpdateListener(Protocol):
    """Receives a payload-free notice that watched health data changed."""

    async def on_background_update(self) -> None:
        ...


class BackgroundObserver:
    """Owns the live observer subscriptions and fans them in to one listener.

    The listener is held weakly: the host owns its lifetime, and a listener
    that has been garbage-collected simply stops receiving notices.

    Usage::

        observer = BackgroundObserver(store, listener=host)
        await observer.start()
        ...
        await observer.stop()
    """

    def __init__(
        self,
        store: HealthStore,
        kinds: Iterable[SampleKind] = DEFAULT_OBSERVED_KINDS,
        listener: BackgroundUpdateListener | None = None,
    ) -> None:
        self._store = store
        self._kinds = tuple(dict.fromkeys(kinds))
        self._subscriptions: dict[SampleKind, ObserverQuery] = {}
        self._lock = asyncio.Lock()
        self._listener_ref: Callable[[], BackgroundUpdateListener | None] = lambda: None
        if listener is not None:
            self.set_listener(listener)

    def set_listener(self, listener: BackgroundUpdateListener | None) -> None:
        """Register (or clear, with None) the shared notification listener."""
        if listener is None:
            self._listener_ref = lambda: None
        else:
            self._listener_ref = weakref.ref(listener)

    @property
    def is_watching(self) -> bool:
        return bool(self._subscriptions)

    @property
    def watched_kinds(self) -> list[SampleKind]:
        return list(self._subscriptions)

    async def start(self) -> bool:
        """Install a fresh subscription per kind, replacing any live one."""
        if not self._store.is_available():
            raise UnavailableError("Health store not available")
        async with self._lock:
            for kind in self._kinds:
                previous = self._subscriptions.pop(kind, None)
                if previous is not None:
                    self._store.stop_query(previous)
                self._subscriptions[kind] = self._store.start_observer(
                    kind, self._make_handler(kind)
                )
            for kind in self._kinds:
                await self._enable_background_delivery(kind)
        logger.info(
            "Background observers started for %s",
            ", ".join(k.value for k in self._kinds),
        )
        return True

    async def stop(self) -> bool:
        """Tear down every live subscription. Succeeds when already idle."""
        async with self._lock:
            for kind, query in list(self._subscriptions.items()):
                self._store.stop_query(query)
                del self._subscriptions[kind]
                logger.info("%s observer stopped", kind.value.capitalize())
        return True

    def _make_handler(self, kind: SampleKind):
        async def handle(error: Exception | None, complete: Callable[[], None]) -> None:
            try:
                if error is not None:
                    logger.warning("%s observer error: %s", kind.value, error)
                    return
                listener = self._listener_ref()
                if listener is None:
                    logger.debug("%s data updated but no listener is registered", kind.value)
                    return
                logger.info("%s data updated - notifying listener", kind.value)
                await listener.on_background_update()
            except Exception:
                logger.exception("Background update listener failed for %s", kind.value)
            finally:
                complete()

        return handle

    async def _enable_background_delivery(self, kind: SampleKind) -> None:
        try:
            enabled = await self._store.enable_background_delivery(kind)
        except HealthStoreError as exc:
            logger.warning("Failed to enable %s background delivery: %s", kind.value, exc)
            return
        if enabled:
            logger.info("%s background delivery enabled", kind.value)
