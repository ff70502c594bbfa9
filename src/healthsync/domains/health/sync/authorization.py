"""Authorization manager — one combined grant for every kind the engine touches."""

from __future__ import annotations

import logging

from healthsync.domains.health.store import HealthStore, HealthStoreError
from healthsync.domains.health.sync.codec import SampleKind, WRITABLE_KINDS
from healthsync.domains.health.sync.errors import AuthorizationError, UnavailableError

logger = logging.getLogger(__name__)

READ_KINDS = frozenset({
    SampleKind.GLUCOSE,
    SampleKind.INSULIN,
    SampleKind.WORKOUT,
    SampleKind.STEPS,
    SampleKind.DISTANCE,
    SampleKind.SLEEP,
    SampleKind.WEIGHT,
    SampleKind.WATER,
    SampleKind.MENSTRUAL_FLOW,
    SampleKind.MINDFULNESS,
})

SHARE_KINDS = WRITABLE_KINDS


class AuthorizationManager:
    """Requests read/write access for the fixed kind sets in a single call.

    The platform may prompt the user the first time a given set is
    requested. Failures are reported once and never retried.
    """

    def __init__(self, store: HealthStore) -> None:
        self._store = store

    async def request_authorization(self) -> bool:
        if not self._store.is_available():
            raise UnavailableError("Health store not available")
        try:
            granted = await self._store.request_authorization(SHARE_KINDS, READ_KINDS)
        except HealthStoreError as exc:
            logger.warning("Authorization request failed: %s", exc)
            raise AuthorizationError(str(exc)) from exc
        logger.info(
            "Authorization requested: %d read kinds, %d share kinds (success=%s)",
            len(READ_KINDS),
            len(SHARE_KINDS),
            granted,
        )
        return granted
