"""
Single-flight reconciliation scheduler.

Each collection has at most one current reconciliation task. A new
notification cancels the current task and schedules a fresh one after a short
coalescing delay, so a burst of notifications collapses into a single
latest-wins reconciliation.

Task lifecycle::

    SCHEDULED -> RUNNING -> COMMITTING -> COMPLETED
                    \\           \\
                     -> CANCELED  -> FAILED

Cancellation is cooperative. A SCHEDULED task has its delay interrupted; a
RUNNING task is flagged and stops at the claim check before committing. Once
a task is COMMITTING it always runs to completion. The task that replaces it
waits for that commit to finish before reconciling, so commits to one
collection never overlap and the last one reflects the newest table state.
"""

import asyncio
import functools
import itertools
import logging
import time
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Awaitable, Callable, Dict, Optional, Set

from ledger_sync.errors import SyncError
from ledger_sync.reconciliation.reconciler import ReconciliationResult, Reconciler
from ledger_sync.stores.base import CommitOutcome, LedgerStore
from ledger_sync.utils.correlation import CorrelationContext, get_correlation_id
from ledger_sync.utils.retry import RetryExecutor

logger = logging.getLogger(__name__)


class TaskState(str, Enum):
    SCHEDULED = "scheduled"
    RUNNING = "running"
    COMMITTING = "committing"
    COMPLETED = "completed"
    FAILED = "failed"
    CANCELED = "canceled"


TERMINAL_STATES = frozenset({TaskState.COMPLETED, TaskState.FAILED, TaskState.CANCELED})


@dataclass(eq=False)
class ReconciliationTask:
    """One attempt to reconcile a collection."""

    collection: str
    sequence: int
    payload: Any = None
    correlation_id: Optional[str] = None
    created_at: float = field(default_factory=time.monotonic)
    state: TaskState = TaskState.SCHEDULED
    cancel_requested: bool = False
    result: Optional[ReconciliationResult] = None
    outcome: Optional[CommitOutcome] = None
    error: Optional[BaseException] = None
    handle: Optional[asyncio.Task] = field(default=None, repr=False)
    predecessor: Optional[asyncio.Task] = field(default=None, repr=False)

    @property
    def is_terminal(self) -> bool:
        return self.state in TERMINAL_STATES

    def request_cancel(self) -> bool:
        """
        Ask the task to stop before it commits.

        Returns:
            True if the request can still take effect, False if the task has
            finished or is already committing
        """
        if self.is_terminal or self.state == TaskState.COMMITTING:
            return False

        self.cancel_requested = True
        if self.state == TaskState.SCHEDULED and self.handle is not None and not self.handle.done():
            self.handle.cancel()
        return True

    async def wait(self) -> TaskState:
        """Wait for the task to reach a terminal state without raising."""
        if self.handle is not None:
            await asyncio.wait({self.handle})
        return self.state


class TaskScheduler:
    """
    Owns the collection → current task map.

    Constructed once per process and injected into the webhook app. All
    mutation happens on the event loop thread, so the map needs no lock. The
    map is process-local: separate instances of the service do not see each
    other's tasks.
    """

    def __init__(
        self,
        reconciler: Reconciler,
        ledger_store: LedgerStore,
        retry_executor: Optional[RetryExecutor] = None,
        coalesce_delay: float = 2.0,
        sleep: Optional[Callable[[float], Awaitable[Any]]] = None,
        metrics=None
    ):
        """
        Initialize the scheduler.

        Args:
            reconciler: Computes the diff for a collection
            ledger_store: Commit target
            retry_executor: Wraps commits; defaults to 5 attempts from 1s
            coalesce_delay: Seconds to wait before reconciling
            sleep: Awaitable sleep used for the coalescing delay
            metrics: Optional SyncMetrics
        """
        self.reconciler = reconciler
        self.ledger_store = ledger_store
        self.retry_executor = retry_executor or RetryExecutor(metrics=metrics)
        self.coalesce_delay = coalesce_delay
        self.sleep = sleep or asyncio.sleep
        self.metrics = metrics

        self._current: Dict[str, ReconciliationTask] = {}
        self._outstanding: Set[ReconciliationTask] = set()
        self._sequence = itertools.count(1)

    def enqueue(
        self,
        collection: str,
        payload: Any = None,
        correlation_id: Optional[str] = None
    ) -> ReconciliationTask:
        """
        Schedule a reconciliation, superseding any current one.

        Must be called from a running event loop. Returns immediately.

        Args:
            collection: Collection key
            payload: Notification body, kept on the task for inspection
            correlation_id: Carried into the task's logs

        Returns:
            The newly scheduled task
        """
        loop = asyncio.get_running_loop()

        predecessor = None
        previous = self._current.get(collection)
        if previous is not None and not previous.is_terminal:
            if previous.request_cancel():
                logger.info(
                    f"Superseding {collection} task #{previous.sequence} "
                    f"({previous.state.value})"
                )
                if self.metrics:
                    self.metrics.record_superseded(collection)
                # A superseded task may itself have been waiting on a commit
                predecessor = previous.predecessor
            else:
                logger.warning(
                    f"{collection} task #{previous.sequence} is already committing; "
                    f"the new task will wait for it"
                )
                predecessor = previous.handle

        task = ReconciliationTask(
            collection=collection,
            sequence=next(self._sequence),
            payload=payload,
            correlation_id=correlation_id or get_correlation_id(),
            predecessor=predecessor
        )
        self._current[collection] = task
        self._outstanding.add(task)

        task.handle = loop.create_task(self._run(task))
        task.handle.add_done_callback(functools.partial(self._on_done, task))
        self._update_inflight(collection)

        logger.info(
            f"Scheduled {collection} task #{task.sequence} "
            f"in {self.coalesce_delay:.2f}s"
        )
        return task

    def cancel(self, collection: str) -> bool:
        """
        Cancel the current task for a collection without replacing it.

        Returns:
            True if a task was told to stop before committing
        """
        task = self._current.get(collection)
        if task is None:
            return False
        return task.request_cancel()

    def get_task(self, collection: str) -> Optional[ReconciliationTask]:
        return self._current.get(collection)

    def active_tasks(self) -> Dict[str, str]:
        """State of the current task per collection, for health reporting."""
        return {
            collection: task.state.value
            for collection, task in self._current.items()
            if not task.is_terminal
        }

    async def drain(self) -> None:
        """Wait until every outstanding task, including superseded ones, finishes."""
        while self._outstanding:
            handles = [t.handle for t in list(self._outstanding) if t.handle is not None]
            if not handles:
                break
            await asyncio.wait(handles)
            # Done callbacks run on the next loop iteration
            await asyncio.sleep(0)

    async def shutdown(self) -> None:
        """Cancel tasks still waiting out their delay, then drain the rest."""
        for collection, task in list(self._current.items()):
            if task.state == TaskState.SCHEDULED:
                self.cancel(collection)
        await self.drain()
        logger.info("Scheduler shut down")

    def _claim(self, task: ReconciliationTask) -> bool:
        """Only the most recently enqueued task for a collection may commit."""
        return not task.cancel_requested and self._current.get(task.collection) is task

    async def _run(self, task: ReconciliationTask) -> None:
        with CorrelationContext(task.correlation_id):
            await self.sleep(self.coalesce_delay)

            if task.predecessor is not None and not task.predecessor.done():
                logger.info(
                    f"{task.collection} task #{task.sequence} waiting for the "
                    f"previous commit to finish"
                )
                await asyncio.wait({task.predecessor})
            task.predecessor = None

            if task.cancel_requested:
                task.state = TaskState.CANCELED
                return

            task.state = TaskState.RUNNING
            collection = task.collection
            logger.info(f"Reconciling {collection} (task #{task.sequence})")

            try:
                result = await self.reconciler.reconcile(collection)
                task.result = result

                if not self._claim(task):
                    task.state = TaskState.CANCELED
                    logger.info(f"{collection} task #{task.sequence} superseded before commit")
                    return

                if not result.changed:
                    task.state = TaskState.COMPLETED
                    return

                task.state = TaskState.COMMITTING
                task.outcome = await self.retry_executor.retry(
                    lambda: self.ledger_store.commit(collection, result.next_state),
                    label="commit"
                )
                task.state = TaskState.COMPLETED
                logger.info(
                    f"Committed {len(result.next_state)} {collection} records "
                    f"(tx {task.outcome.transaction_hash if task.outcome else 'unknown'})"
                )

            except SyncError as e:
                task.state = TaskState.FAILED
                task.error = e
                logger.error(f"Reconciliation of {collection} failed: {e}")
            except Exception as e:
                task.state = TaskState.FAILED
                task.error = e
                logger.exception(f"Reconciliation of {collection} failed unexpectedly: {e}")

    def _on_done(self, task: ReconciliationTask, handle: asyncio.Task) -> None:
        if handle.cancelled():
            task.state = TaskState.CANCELED
        elif handle.exception() is not None and not task.is_terminal:
            task.state = TaskState.FAILED
            task.error = handle.exception()

        duration = time.monotonic() - task.created_at
        logger.info(
            f"{task.collection} task #{task.sequence} finished: {task.state.value} "
            f"after {duration:.2f}s",
            extra={"collection": task.collection, "task_state": task.state.value, "duration": duration}
        )
        if self.metrics:
            self.metrics.record_run(task.collection, task.state.value, duration)

        self._outstanding.discard(task)
        if self._current.get(task.collection) is task:
            del self._current[task.collection]
        self._update_inflight(task.collection)

    def _update_inflight(self, collection: str) -> None:
        if self.metrics:
            count = sum(1 for t in self._outstanding if t.collection == collection)
            self.metrics.set_inflight(collection, count)
