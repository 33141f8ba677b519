"""Optimistic category edits and their reconciliation with the workflow backend.

A category edit is applied to the store immediately, then pushed to the
update webhook in the background. Each record carries a small sync state
machine:

    clean -> syncing -> success -> clean  (after the display window)
    clean -> syncing -> error             (kept until the next edit)

Every push is tagged with a per-record sequence number. A response only
moves the state machine if it belongs to the latest push for that record,
so a slow answer to a superseded edit cannot overwrite a newer state.
"""

import asyncio
import logging

from invoicedash.models import Category, DocumentStatus, SyncState
from invoicedash.services.store import RecordStore
from invoicedash.services.webhook import WebhookClient, WebhookError

logger = logging.getLogger(__name__)

ALLOWED_TRANSITIONS: dict[SyncState, frozenset[SyncState]] = {
    SyncState.CLEAN: frozenset({SyncState.SYNCING}),
    SyncState.SYNCING: frozenset({SyncState.SYNCING, SyncState.SUCCESS, SyncState.ERROR}),
    SyncState.SUCCESS: frozenset({SyncState.SYNCING, SyncState.CLEAN}),
    SyncState.ERROR: frozenset({SyncState.SYNCING}),
}


class InvalidSyncTransition(Exception):
    """Raised when a sync state change is not allowed by the state machine."""


def status_after_category_change(current: DocumentStatus) -> DocumentStatus:
    """A category edit files pending documents as categorized and never downgrades."""
    if current == DocumentStatus.PENDING:
        return DocumentStatus.CATEGORIZED
    return current


class SyncCoordinator:
    """Applies category edits to the store and reconciles them in the background."""

    def __init__(self, store: RecordStore, client: WebhookClient, success_display_seconds: float = 3.0):
        self.store = store
        self.client = client
        self.success_display_seconds = success_display_seconds
        self._latest_seq: dict[str, int] = {}
        self._tasks: set[asyncio.Task] = set()

    def _transition(self, record_id: str, new_state: SyncState) -> None:
        current = self.store.sync_state(record_id)
        if new_state not in ALLOWED_TRANSITIONS[current]:
            raise InvalidSyncTransition(f"{record_id}: {current.value} -> {new_state.value}")
        logger.debug(f"[SYNC] {record_id}: {current.value} -> {new_state.value}")
        self.store.set_sync_state(record_id, new_state)

    def _is_latest(self, record_id: str, seq: int) -> bool:
        return self._latest_seq.get(record_id) == seq

    def update_category(self, record_id: str, category: Category) -> asyncio.Task:
        """
        Change a record's category optimistically and schedule the push.

        Must be called from a running event loop. Returns the background task;
        callers do not need to await it, the outcome shows up as the record's
        sync state.

        Raises:
            RecordNotFoundError: If no record has this id
        """
        record = self.store.get(record_id)
        status = status_after_category_change(record.status)
        self.store.replace(record.model_copy(update={"category": category, "status": status}))

        seq = self._latest_seq.get(record_id, 0) + 1
        self._latest_seq[record_id] = seq
        self._transition(record_id, SyncState.SYNCING)

        task = asyncio.create_task(self._reconcile(record_id, category, status, seq))
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)
        return task

    async def _reconcile(self, record_id: str, category: Category, status: DocumentStatus, seq: int) -> None:
        try:
            await self.client.update_record(record_id, category.value, status.value)
        except WebhookError as e:
            if self._is_latest(record_id, seq):
                logger.warning(f"Category sync failed for {record_id}: {e}")
                self._transition(record_id, SyncState.ERROR)
            return

        if not self._is_latest(record_id, seq):
            logger.debug(f"[SYNC] {record_id}: dropping stale response #{seq}")
            return

        self._transition(record_id, SyncState.SUCCESS)
        await asyncio.sleep(self.success_display_seconds)
        # A newer edit may have started while the success mark was showing
        if self._is_latest(record_id, seq) and self.store.sync_state(record_id) == SyncState.SUCCESS:
            self._transition(record_id, SyncState.CLEAN)

    async def drain(self) -> None:
        """Wait for every in-flight reconciliation to finish."""
        while self._tasks:
            await asyncio.gather(*list(self._tasks), return_exceptions=True)
