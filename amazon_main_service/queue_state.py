"""
Queue state store for batch processing.

Holds the ordered list of queue items plus the cursor/running/paused flags.
Only the batch controller mutates it; everyone else reads immutable
snapshots, so an observer never sees a half-applied update.
"""

from __future__ import annotations

from dataclasses import dataclass, field, replace
from enum import Enum
from threading import RLock
import time
from typing import Iterable, List, Optional, Tuple
import uuid

from .transform_client import FinishedImage


class ItemStatus(str, Enum):
    PENDING = "pending"
    PROCESSING = "processing"
    COMPLETED = "completed"
    FAILED = "failed"


@dataclass(frozen=True)
class QueueItem:
    source_ref: str
    id: str = field(default_factory=lambda: uuid.uuid4().hex)
    status: ItemStatus = ItemStatus.PENDING
    result: Optional[FinishedImage] = None
    error: Optional[str] = None
    enqueued_at: float = field(default_factory=time.time)

    @property
    def is_finished(self) -> bool:
        return self.status in (ItemStatus.COMPLETED, ItemStatus.FAILED)


@dataclass(frozen=True)
class QueueSnapshot:
    items: Tuple[QueueItem, ...] = ()
    cursor: Optional[int] = None
    running: bool = False
    paused: bool = False

    def _count(self, status: ItemStatus) -> int:
        return sum(1 for item in self.items if item.status is status)

    @property
    def pending_count(self) -> int:
        return self._count(ItemStatus.PENDING)

    @property
    def completed_count(self) -> int:
        return self._count(ItemStatus.COMPLETED)

    @property
    def failed_count(self) -> int:
        return self._count(ItemStatus.FAILED)

    def get(self, item_id: str) -> QueueItem:
        for item in self.items:
            if item.id == item_id:
                return item
        raise KeyError(item_id)


class QueueStore:
    """Thread-safe holder of the current queue; every read is a snapshot."""

    def __init__(self):
        self._lock = RLock()
        self._items: List[QueueItem] = []
        self._cursor: Optional[int] = None
        self._running = False
        self._paused = False

    def snapshot(self) -> QueueSnapshot:
        with self._lock:
            return QueueSnapshot(
                items=tuple(self._items),
                cursor=self._cursor,
                running=self._running,
                paused=self._paused,
            )

    def add_images(self, source_refs: Iterable[str]) -> List[QueueItem]:
        new_items = [QueueItem(source_ref=ref) for ref in source_refs]
        with self._lock:
            self._items.extend(new_items)
        return new_items

    def remove_image(self, item_id: str) -> None:
        with self._lock:
            index = self._index_of(item_id)
            if self._items[index].status is ItemStatus.PROCESSING:
                raise ValueError(f"item {item_id} is being processed")
            del self._items[index]

    def _index_of(self, item_id: str) -> int:
        for index, item in enumerate(self._items):
            if item.id == item_id:
                return index
        raise KeyError(item_id)

    def index_of(self, item_id: str) -> int:
        with self._lock:
            return self._index_of(item_id)

    def update_item_status(
        self,
        item_id: str,
        status: ItemStatus,
        result: Optional[FinishedImage] = None,
        error: Optional[str] = None,
    ) -> QueueItem:
        """
        Replace the item with its new status.

        `result` is kept only for COMPLETED and `error` only for FAILED, and
        at most one item may be PROCESSING.
        """
        if status is ItemStatus.COMPLETED and result is None:
            raise ValueError("a completed item needs a result")
        if status is ItemStatus.FAILED and not error:
            raise ValueError("a failed item needs an error message")

        with self._lock:
            index = self._index_of(item_id)
            if status is ItemStatus.PROCESSING:
                busy = next(
                    (it for it in self._items if it.status is ItemStatus.PROCESSING and it.id != item_id),
                    None,
                )
                if busy is not None:
                    raise ValueError(f"item {busy.id} is already processing")
            updated = replace(
                self._items[index],
                status=status,
                result=result if status is ItemStatus.COMPLETED else None,
                error=error if status is ItemStatus.FAILED else None,
            )
            self._items[index] = updated
            return updated

    def set_cursor(self, index: Optional[int]) -> None:
        with self._lock:
            self._cursor = index

    def set_running(self, running: bool) -> None:
        with self._lock:
            self._running = running

    def set_paused(self, paused: bool) -> None:
        with self._lock:
            self._paused = paused

    def reset(self) -> None:
        with self._lock:
            self._items = []
            self._cursor = None
            self._running = False
            self._paused = False
