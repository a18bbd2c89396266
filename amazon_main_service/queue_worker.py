"""
Sequential batch worker.

`BatchProcessor` drives queued photos through the transformation client one
at a time, in submission order, and records each outcome in the queue
store. Pause and cancel are cooperative: the worker checks the controller
state before every item, so a request already in flight always finishes
and its outcome is recorded; cancel then takes effect before the next item.

Progress is reported through `ProcessingCallbacks` or, for callers that
prefer pulling, through the `QueueEvent` stream returned by `iter_events`.
"""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
import logging
import queue
import threading
from typing import Any, Callable, Iterator, List, Optional, Sequence, Tuple

from . import config
from .errors import AmazonMainError, QueueBusyError
from .queue_state import ItemStatus, QueueItem, QueueSnapshot, QueueStore
from .transform_client import FinishedImage, TransformationClient

logger = logging.getLogger(__name__)


class ControllerState(str, Enum):
    IDLE = "idle"
    RUNNING = "running"
    PAUSED = "paused"
    CANCELLING = "cancelling"
    DONE = "done"


_ACTIVE_STATES = (ControllerState.RUNNING, ControllerState.PAUSED, ControllerState.CANCELLING)


@dataclass
class ProcessingCallbacks:
    on_item_start: Optional[Callable[[int], Any]] = None
    on_item_done: Optional[Callable[[int, FinishedImage], Any]] = None
    on_item_failed: Optional[Callable[[int, str], Any]] = None
    on_progress: Optional[Callable[[int, int], Any]] = None
    on_queue_done: Optional[Callable[[int, int], Any]] = None


@dataclass(frozen=True)
class QueueEvent:
    kind: str  # item_start | item_done | item_failed | progress | queue_done
    index: Optional[int] = None
    result: Optional[FinishedImage] = None
    error: Optional[str] = None
    done: Optional[int] = None
    total: Optional[int] = None
    success_count: Optional[int] = None
    failure_count: Optional[int] = None


def _fire(callback: Optional[Callable[..., Any]], *args: Any) -> None:
    if callback is None:
        return
    try:
        callback(*args)
    except Exception:  # noqa: BLE001
        logger.exception("batch: callback %r raised; continuing", callback)


class BatchProcessor:
    def __init__(
        self,
        client: Optional[TransformationClient] = None,
        store: Optional[QueueStore] = None,
        poll_interval: Optional[float] = None,
        settings: Optional[config.Settings] = None,
    ):
        settings = settings or config.get_settings()
        self.client = client or TransformationClient(settings=settings)
        self.store = store or QueueStore()
        self.poll_interval = poll_interval if poll_interval is not None else settings.pause_poll_interval
        self._cond = threading.Condition()
        self._state = ControllerState.IDLE
        self._cancelled = False
        # Held while an item is PROCESSING so retries never overlap the main loop.
        self._work_lock = threading.RLock()

    # ------------------------------------------------------------------
    # Controls
    # ------------------------------------------------------------------

    @property
    def state(self) -> ControllerState:
        with self._cond:
            return self._state

    @property
    def is_paused(self) -> bool:
        return self.state is ControllerState.PAUSED

    @property
    def is_cancelled(self) -> bool:
        """True once cancel was requested for the current or most recent run."""
        with self._cond:
            return self._cancelled

    def pause(self) -> None:
        with self._cond:
            if self._state is ControllerState.RUNNING:
                self._state = ControllerState.PAUSED
                self.store.set_paused(True)
                logger.info("batch: paused")
            self._cond.notify_all()

    def resume(self) -> None:
        with self._cond:
            if self._state is ControllerState.PAUSED:
                self._state = ControllerState.RUNNING
                self.store.set_paused(False)
                logger.info("batch: resumed")
            self._cond.notify_all()

    def cancel(self) -> None:
        with self._cond:
            if self._state in (ControllerState.RUNNING, ControllerState.PAUSED):
                self._state = ControllerState.CANCELLING
                self._cancelled = True
                self.store.set_paused(False)
                logger.info("batch: cancel requested")
            self._cond.notify_all()

    def snapshot(self) -> QueueSnapshot:
        return self.store.snapshot()

    def remove_image(self, item_id: str) -> None:
        with self._cond:
            if self._state in _ACTIVE_STATES:
                raise QueueBusyError("Cannot remove images while a batch is running")
            self.store.remove_image(item_id)

    def reset(self) -> None:
        """Discard the queue once the caller has consumed the results."""
        with self._cond:
            if self._state in _ACTIVE_STATES:
                raise QueueBusyError("Cannot reset the queue while a batch is running")
            self.store.reset()
            self._state = ControllerState.IDLE
            self._cancelled = False

    # ------------------------------------------------------------------
    # Processing
    # ------------------------------------------------------------------

    def process_queue(
        self,
        source_refs: Optional[Sequence[str]] = None,
        callbacks: Optional[ProcessingCallbacks] = None,
    ) -> Tuple[int, int]:
        """
        Process a batch synchronously and return (success_count, failure_count).

        With `source_refs` the references are enqueued first; without, the
        PENDING items already in the store are processed.
        """
        items = self._begin(source_refs)
        return self._drive(items, callbacks or ProcessingCallbacks())

    def start(
        self,
        source_refs: Optional[Sequence[str]] = None,
        callbacks: Optional[ProcessingCallbacks] = None,
    ) -> threading.Thread:
        """Run `process_queue` on a background thread and return it."""
        items = self._begin(source_refs)
        worker = threading.Thread(
            target=self._drive,
            args=(items, callbacks or ProcessingCallbacks()),
            name="batch-processor",
            daemon=True,
        )
        worker.start()
        return worker

    def iter_events(self, source_refs: Optional[Sequence[str]] = None) -> Iterator[QueueEvent]:
        """
        Run the batch in the background and yield its events in order.

        The stream always ends with a `queue_done` event unless the worker
        itself crashed, in which case the error is re-raised here.
        """
        events: "queue.Queue[Optional[QueueEvent]]" = queue.Queue()
        failure: List[BaseException] = []
        callbacks = ProcessingCallbacks(
            on_item_start=lambda i: events.put(QueueEvent("item_start", index=i)),
            on_item_done=lambda i, r: events.put(QueueEvent("item_done", index=i, result=r)),
            on_item_failed=lambda i, e: events.put(QueueEvent("item_failed", index=i, error=e)),
            on_progress=lambda d, t: events.put(QueueEvent("progress", done=d, total=t)),
            on_queue_done=lambda s, f: events.put(
                QueueEvent("queue_done", success_count=s, failure_count=f)
            ),
        )
        items = self._begin(source_refs)

        def run() -> None:
            try:
                self._drive(items, callbacks)
            except BaseException as exc:  # noqa: BLE001
                failure.append(exc)
            finally:
                events.put(None)

        threading.Thread(target=run, name="batch-processor", daemon=True).start()
        while True:
            event = events.get()
            if event is None:
                break
            yield event
        if failure:
            raise failure[0]

    def retry_item(self, item_id: str) -> QueueItem:
        """
        Re-run one item outside the main loop and return its updated record.

        Only that item changes; the cursor and every other item are left as
        they are. A PENDING item of a running batch is left to the loop.
        """
        item = self.store.snapshot().get(item_id)
        if item.status is ItemStatus.PROCESSING:
            raise QueueBusyError(f"Item {item_id} is already being processed")
        if item.status is ItemStatus.PENDING and self.state in _ACTIVE_STATES:
            raise QueueBusyError(f"Item {item_id} is still queued in the running batch")

        logger.info("batch: retrying item %s", item_id)
        updated = self._run_item(item_id)
        if updated.status is ItemStatus.FAILED:
            logger.warning("batch: retry of %s failed: %s", item_id, updated.error)
        return updated

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------

    def _begin(self, source_refs: Optional[Sequence[str]]) -> List[QueueItem]:
        with self._cond:
            if self._state in _ACTIVE_STATES:
                raise QueueBusyError()
            if source_refs is not None:
                refs = list(source_refs)
                if not refs:
                    raise ValueError("source_refs must not be empty")
                items = self.store.add_images(refs)
            else:
                items = [it for it in self.store.snapshot().items if it.status is ItemStatus.PENDING]
                if not items:
                    raise ValueError("no pending items to process")
            self._cancelled = False
            self._state = ControllerState.RUNNING
            self.store.set_running(True)
            self.store.set_paused(False)
        logger.info("batch: starting %d items", len(items))
        return items

    def _checkpoint(self) -> bool:
        """Block while paused; return False once the batch is cancelled."""
        with self._cond:
            if self._state is ControllerState.CANCELLING:
                return False
            while self._state is ControllerState.PAUSED:
                self._cond.wait(timeout=self.poll_interval)
            return self._state is not ControllerState.CANCELLING

    def _drive(self, items: List[QueueItem], callbacks: ProcessingCallbacks) -> Tuple[int, int]:
        total = len(items)
        success_count = 0
        failure_count = 0
        try:
            for index, item in enumerate(items):
                if not self._checkpoint():
                    logger.info("batch: cancelled before item %d/%d", index + 1, total)
                    break

                self.store.set_cursor(self.store.index_of(item.id))
                updated = self._run_item(item.id, on_start=lambda i=index: _fire(callbacks.on_item_start, i))

                if updated.status is ItemStatus.COMPLETED:
                    success_count += 1
                    _fire(callbacks.on_item_done, index, updated.result)
                else:
                    failure_count += 1
                    _fire(callbacks.on_item_failed, index, updated.error)
                _fire(callbacks.on_progress, success_count + failure_count, total)
        finally:
            self.store.set_cursor(None)
            self.store.set_running(False)
            self.store.set_paused(False)
            with self._cond:
                self._state = ControllerState.DONE
                self._cond.notify_all()

        logger.info("batch: finished success=%d failed=%d of %d", success_count, failure_count, total)
        _fire(callbacks.on_queue_done, success_count, failure_count)
        return success_count, failure_count

    def _run_item(self, item_id: str, on_start: Optional[Callable[[], None]] = None) -> QueueItem:
        with self._work_lock:
            item = self.store.update_item_status(item_id, ItemStatus.PROCESSING)
            if on_start is not None:
                on_start()
            try:
                result = self.client.transform_ref(item.source_ref)
            except AmazonMainError as exc:
                logger.warning("batch: item %s failed: %s", item_id, exc.message)
                return self.store.update_item_status(item_id, ItemStatus.FAILED, error=exc.message)
            except Exception as exc:  # noqa: BLE001
                logger.exception("batch: item %s crashed", item_id)
                return self.store.update_item_status(
                    item_id, ItemStatus.FAILED, error=str(exc) or exc.__class__.__name__
                )
            return self.store.update_item_status(item_id, ItemStatus.COMPLETED, result=result)
