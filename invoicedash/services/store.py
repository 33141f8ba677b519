"""In-memory store for the document collection and per-record sync states."""

import asyncio
import logging
from typing import Callable

from invoicedash.models import CanonicalRecord, SyncState
from invoicedash.services.normalizer import DEFAULT_CURRENCY, normalize
from invoicedash.services.webhook import WebhookClient, WebhookError

logger = logging.getLogger(__name__)

Listener = Callable[["RecordStore"], None]


class RecordNotFoundError(KeyError):
    """Raised when a record id is not in the collection."""


class RecordStore:
    """
    Owner of the document collection and the sync-status map.

    Consumers read through the accessors, mutate through ``replace`` and
    ``set_sync_state``, and may subscribe to be told about every change.
    The collection is rebuilt from scratch on each refresh.
    """

    def __init__(self, client: WebhookClient, default_currency: str = DEFAULT_CURRENCY):
        self.client = client
        self.default_currency = default_currency
        self._records: list[CanonicalRecord] = []
        self._sync: dict[str, SyncState] = {}
        self._listeners: list[Listener] = []
        self.loading = False
        self.loaded = False
        self.error: str | None = None
        self._fetching: asyncio.Task | None = None

    # ---- reads ----

    @property
    def records(self) -> list[CanonicalRecord]:
        return list(self._records)

    @property
    def total_amount(self) -> float:
        """Sum of raw amounts over the whole collection, dated or not."""
        return sum(r.raw_amount for r in self._records)

    def get(self, record_id: str) -> CanonicalRecord:
        for record in self._records:
            if record.id == record_id:
                return record
        raise RecordNotFoundError(record_id)

    def sync_state(self, record_id: str) -> SyncState:
        return self._sync.get(record_id, SyncState.CLEAN)

    @property
    def sync_states(self) -> dict[str, SyncState]:
        return dict(self._sync)

    # ---- subscriptions ----

    def subscribe(self, listener: Listener) -> Callable[[], None]:
        """Register a change listener; returns a function that unsubscribes it."""
        self._listeners.append(listener)

        def unsubscribe() -> None:
            if listener in self._listeners:
                self._listeners.remove(listener)

        return unsubscribe

    def _notify(self) -> None:
        for listener in list(self._listeners):
            listener(self)

    # ---- mutations ----

    def replace(self, record: CanonicalRecord) -> None:
        """Swap in a new version of an existing record, keeping its position."""
        for i, existing in enumerate(self._records):
            if existing.id == record.id:
                self._records[i] = record
                self._notify()
                return
        raise RecordNotFoundError(record.id)

    def set_sync_state(self, record_id: str, state: SyncState) -> None:
        if state == SyncState.CLEAN:
            self._sync.pop(record_id, None)
        else:
            self._sync[record_id] = state
        self._notify()

    def load(self, records: list[CanonicalRecord]) -> None:
        self._records = list(records)
        self.loaded = True
        self.error = None
        self._notify()

    async def refresh(self) -> None:
        """
        Re-fetch and re-normalize the whole collection.

        A failed fetch leaves the store in an error state with no records;
        the error is not raised.
        """
        task = asyncio.create_task(self._fetch())
        self._fetching = task
        await asyncio.shield(task)

    async def ensure_loaded(self) -> None:
        """Load the collection once; callers arriving mid-fetch wait for that fetch."""
        if self.loaded:
            return
        if self._fetching is None:
            self._fetching = asyncio.create_task(self._fetch())
        await asyncio.shield(self._fetching)

    async def _fetch(self) -> None:
        self.loading = True
        self.error = None
        self._notify()
        try:
            raw = await self.client.fetch_records()
        except WebhookError as e:
            logger.error(f"Failed to fetch documents: {e}")
            self._records = []
            self.error = e.message
        else:
            self._records = normalize(raw, self.default_currency)
            self.loaded = True
            logger.info(f"Loaded {len(self._records)} documents")
        finally:
            self.loading = False
            if self._fetching is asyncio.current_task():
                self._fetching = None
            self._notify()
