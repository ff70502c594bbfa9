"""Delete resolver — "delete the sample near this timestamp".

The store has no key linking a record back to the write that created it, so
deletion is always query-then-filter:

1. Window query: samples of the kind starting within ±tolerance of the
   timestamp (clients round timestamps before sending them).
2. No candidates → NotFoundError.
3. Candidates written by this app → delete all of them; one timestamp can
   legitimately hold several of our own samples.
4. Otherwise the record came from another app or was re-ingested → delete
   only the candidate nearest to the timestamp.
"""

from __future__ import annotations

import logging
from datetime import datetime, timedelta

from healthsync.domains.health.store import HealthStore, HealthStoreError
from healthsync.domains.health.sync.codec import Sample, SampleKind
from healthsync.domains.health.sync.errors import (
    DeleteFailedError,
    InvalidArgumentError,
    NotFoundError,
    UnavailableError,
)
from healthsync.domains.health.sync.reader import TypedReadDispatcher
from healthsync.domains.health.sync.writer import writable_kind

logger = logging.getLogger(__name__)

DEFAULT_TOLERANCE = timedelta(seconds=1)

_KIND_LABELS = {
    SampleKind.GLUCOSE: "blood glucose",
    SampleKind.INSULIN: "insulin delivery",
}


def select_for_deletion(
    candidates: list[Sample],
    timestamp: datetime,
    bundle_identifier: str,
) -> list[Sample]:
    """Apply the ownership-then-nearest policy to a non-empty candidate set."""
    own = [c for c in candidates if c.source.bundle_identifier == bundle_identifier]
    if own:
        return own
    # min() keeps the first of several equidistant candidates.
    nearest = min(candidates, key=lambda c: abs((c.start - timestamp).total_seconds()))
    return [nearest]


class DeleteResolver:
    """Resolves and deletes glucose/insulin samples written near a timestamp."""

    def __init__(
        self,
        store: HealthStore,
        reader: TypedReadDispatcher,
        bundle_identifier: str,
        *,
        tolerance: timedelta = DEFAULT_TOLERANCE,
    ) -> None:
        self._store = store
        self._reader = reader
        self._bundle_identifier = bundle_identifier
        self._tolerance = tolerance

    async def delete(self, kind: SampleKind | str | None, timestamp: datetime | None) -> int:
        """Delete the sample(s) matching *timestamp* and return how many.

        Raises:
            UnavailableError: No health store on this platform.
            InvalidArgumentError: Missing timestamp.
            InvalidTypeError: Kind is not glucose or insulin.
            QueryError: The window query failed.
            NotFoundError: Nothing starts within the tolerance window.
            DeleteFailedError: The store refused the delete.
        """
        if not self._store.is_available():
            raise UnavailableError("Health store not available")
        resolved = writable_kind(kind)
        if timestamp is None:
            raise InvalidArgumentError("Missing timestamp")

        candidates = await self._reader.query(
            resolved,
            timestamp - self._tolerance,
            timestamp + self._tolerance,
            newest_first=None,
        )
        if not candidates:
            raise NotFoundError(
                f"No {_KIND_LABELS[resolved]} sample found at timestamp"
            )

        targets = select_for_deletion(candidates, timestamp, self._bundle_identifier)
        own = targets[0].source.bundle_identifier == self._bundle_identifier
        logger.info(
            "Deleting %d %s sample(s) near %s (%s)",
            len(targets),
            resolved.value,
            timestamp.isoformat(),
            "own" if own else "nearest foreign",
        )

        try:
            deleted = await self._store.delete(targets)
        except HealthStoreError as exc:
            raise DeleteFailedError(str(exc)) from exc
        if not deleted:
            raise DeleteFailedError("Failed to delete samples")
        return len(targets)
