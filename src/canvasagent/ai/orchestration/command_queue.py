"""Per-document command queue.

Each document owns one :class:`DocumentCommandQueue`. The queue is a mailbox
drained by a single task, so at most one command per document is processing
at any time without explicit locks. Pending commands expire after a fixed
wait budget and are never executed late.
"""

from __future__ import annotations

import asyncio
import logging
from collections import deque
from dataclasses import dataclass
from typing import Any, Awaitable, Callable, Generic, Protocol, TypeVar

from .errors import (
    CommandCancelledError,
    CommandError,
    CommandTimeoutError,
    InternalCommandError,
    QueueFullError,
)
from .types import Command, CommandStatus, QueueEntry

__all__ = [
    "DEFAULT_CAPACITY",
    "DEFAULT_TIMEOUT_SECONDS",
    "QueueSnapshot",
    "QueueListener",
    "DocumentCommandQueue",
    "CommandQueueRegistry",
]

LOGGER = logging.getLogger(__name__)

DEFAULT_CAPACITY = 5
DEFAULT_TIMEOUT_SECONDS = 30.0

ResultT = TypeVar("ResultT")


# -----------------------------------------------------------------------------
# Observer types
# -----------------------------------------------------------------------------


@dataclass(slots=True, frozen=True)
class QueueSnapshot:
    """Queue contents at the moment of a state transition.

    Attributes:
        document_id: Document the queue serializes.
        pending: Waiting commands in order.
        current: The command being processed, if any.
        changed: The command whose status just changed.
    """

    document_id: str
    pending: tuple[Command, ...]
    current: Command | None
    changed: Command | None = None

    @property
    def size(self) -> int:
        return len(self.pending) + (1 if self.current is not None else 0)

    def position_of(self, command_id: str) -> int | None:
        """Return 0 for the processing command, 1.. for pending ones."""
        if self.current is not None and self.current.id == command_id:
            return 0
        for index, command in enumerate(self.pending, start=1):
            if command.id == command_id:
                return index
        return None


class QueueListener(Protocol):
    def __call__(self, snapshot: QueueSnapshot) -> None:
        ...


# -----------------------------------------------------------------------------
# Document queue
# -----------------------------------------------------------------------------


class DocumentCommandQueue(Generic[ResultT]):
    """Serializes commands for one document.

    Args:
        document_id: Document served by this queue.
        processor: Coroutine run for each command once it reaches the head.
        capacity: Maximum pending plus processing commands.
        timeout_seconds: Longest a command may wait before it times out.
        is_success: Decides whether a processor result completes or fails the command.
        on_idle: Called once the drain task exits with nothing left to run.
    """

    def __init__(
        self,
        document_id: str,
        processor: Callable[[Command], Awaitable[ResultT]],
        *,
        capacity: int = DEFAULT_CAPACITY,
        timeout_seconds: float = DEFAULT_TIMEOUT_SECONDS,
        is_success: Callable[[ResultT], bool] | None = None,
        on_idle: Callable[[DocumentCommandQueue[ResultT]], None] | None = None,
    ) -> None:
        if capacity < 1:
            raise ValueError("capacity must be at least 1")
        self._document_id = document_id
        self._processor = processor
        self._capacity = capacity
        self._timeout = timeout_seconds
        self._is_success = is_success or (lambda _result: True)
        self._on_idle = on_idle
        self._pending: deque[QueueEntry] = deque()
        self._current: QueueEntry | None = None
        self._futures: dict[str, asyncio.Future[ResultT]] = {}
        self._timers: dict[str, asyncio.TimerHandle] = {}
        self._listeners: list[QueueListener] = []
        self._worker: asyncio.Task[None] | None = None

    # ------------------------------------------------------------------
    # Public State
    # ------------------------------------------------------------------

    @property
    def document_id(self) -> str:
        return self._document_id

    @property
    def capacity(self) -> int:
        return self._capacity

    @property
    def current(self) -> Command | None:
        return self._current.command if self._current is not None else None

    def __len__(self) -> int:
        return len(self._pending) + (1 if self._current is not None else 0)

    def snapshot(self, changed: Command | None = None) -> QueueSnapshot:
        return QueueSnapshot(
            document_id=self._document_id,
            pending=tuple(entry.command for entry in self._pending),
            current=self.current,
            changed=changed,
        )

    def status(self) -> QueueSnapshot:
        """Return the pending commands and the one processing, if any."""
        return self.snapshot()

    def position(self, command_id: str) -> int | None:
        return self.snapshot().position_of(command_id)

    def is_idle(self) -> bool:
        return not self._pending and self._current is None

    # ------------------------------------------------------------------
    # Admission
    # ------------------------------------------------------------------

    def enqueue(self, command: Command) -> asyncio.Future[ResultT]:
        """Admit ``command`` and return a future for its result.

        Raises:
            QueueFullError: If the queue already holds ``capacity`` commands.
        """
        if command.document_id != self._document_id:
            raise ValueError(f"Command {command.id} targets {command.document_id}, not {self._document_id}")
        if len(self) >= self._capacity:
            LOGGER.warning(
                "Queue for %s is full (%s/%s); rejecting %s",
                self._document_id,
                len(self),
                self._capacity,
                command.id,
            )
            raise QueueFullError(details={"document_id": self._document_id, "capacity": self._capacity})

        loop = asyncio.get_running_loop()
        entry = QueueEntry(command=command, enqueued_at=loop.time())
        future: asyncio.Future[ResultT] = loop.create_future()
        self._pending.append(entry)
        self._futures[command.id] = future
        self._timers[command.id] = loop.call_later(self._timeout, self._expire, command.id)
        LOGGER.info(
            "Queued command %s for %s (position %s)",
            command.id,
            self._document_id,
            self.position(command.id),
        )
        self._notify(command)
        self._ensure_worker()
        return future

    async def submit(self, command: Command) -> ResultT:
        """Enqueue ``command`` and wait for its terminal result."""
        return await self.enqueue(command)

    def cancel(self, command_id: str, user_id: str) -> bool:
        """Cancel a pending command on behalf of its originator.

        Returns:
            True if the command was cancelled; False if it is not pending,
            belongs to another user, or is already processing.
        """
        entry = self._find_pending(command_id)
        if entry is None:
            if self._current is not None and self._current.command_id == command_id:
                LOGGER.info("Command %s is processing and cannot be cancelled", command_id)
            return False
        if entry.command.user_id != user_id:
            LOGGER.warning("User %s may not cancel command %s", user_id, command_id)
            return False
        self._pending.remove(entry)
        self._finish_pending(entry, CommandStatus.CANCELLED, CommandCancelledError(details={"command_id": command_id}))
        LOGGER.info("Cancelled command %s for %s", command_id, self._document_id)
        return True

    def clear(self) -> int:
        """Cancel every pending command; the processing one runs to completion."""
        entries = list(self._pending)
        self._pending.clear()
        for entry in entries:
            self._finish_pending(
                entry,
                CommandStatus.CANCELLED,
                CommandCancelledError(message="Queue cleared", details={"command_id": entry.command_id}),
            )
        if entries:
            LOGGER.info("Cleared %s pending command(s) for %s", len(entries), self._document_id)
        return len(entries)

    # ------------------------------------------------------------------
    # Observers
    # ------------------------------------------------------------------

    def subscribe(self, listener: QueueListener) -> Callable[[], None]:
        self._listeners.append(listener)

        def _unsubscribe() -> None:
            if listener in self._listeners:
                self._listeners.remove(listener)

        return _unsubscribe

    def _notify(self, changed: Command | None) -> None:
        if not self._listeners:
            return
        snapshot = self.snapshot(changed)
        for listener in list(self._listeners):
            try:
                listener(snapshot)
            except Exception:
                LOGGER.debug("Queue listener failed for %s", self._document_id, exc_info=True)

    # ------------------------------------------------------------------
    # Worker
    # ------------------------------------------------------------------

    async def wait_idle(self) -> None:
        """Wait until the drain task has emptied the queue."""
        while self._worker is not None and not self._worker.done():
            await asyncio.shield(self._worker)

    def _ensure_worker(self) -> None:
        if self._worker is None or self._worker.done():
            self._worker = asyncio.get_running_loop().create_task(
                self._drain(), name=f"command-queue:{self._document_id}"
            )

    async def _drain(self) -> None:
        loop = asyncio.get_running_loop()
        try:
            while self._pending:
                entry = self._pending.popleft()
                self._cancel_timer(entry.command_id)
                waited = loop.time() - entry.enqueued_at
                if waited >= self._timeout:
                    self._time_out(entry, waited)
                    continue
                await self._process(entry)
        finally:
            if self._on_idle is not None and self.is_idle():
                self._on_idle(self)

    async def _process(self, entry: QueueEntry) -> None:
        command = entry.command
        future = self._futures.pop(command.id, None)
        command.transition(CommandStatus.PROCESSING)
        self._current = entry
        LOGGER.info("Processing command %s for %s", command.id, self._document_id)
        self._notify(command)
        try:
            result = await self._processor(command)
        except CommandError as exc:
            command.transition(CommandStatus.FAILED)
            LOGGER.info("Command %s failed: %s", command.id, exc)
            _set_exception(future, exc)
        except asyncio.CancelledError:
            command.transition(CommandStatus.FAILED)
            _set_exception(future, InternalCommandError(message="Command processing was interrupted"))
            raise
        except Exception as exc:
            command.transition(CommandStatus.FAILED)
            LOGGER.exception("Command %s raised unexpectedly", command.id)
            _set_exception(future, InternalCommandError(details={"error": str(exc)}))
        else:
            succeeded = self._is_success(result)
            command.transition(CommandStatus.COMPLETED if succeeded else CommandStatus.FAILED)
            LOGGER.info("Command %s %s", command.id, command.status.value)
            if future is not None and not future.done():
                future.set_result(result)
        finally:
            self._current = None
            self._notify(command)

    # ------------------------------------------------------------------
    # Expiry
    # ------------------------------------------------------------------

    def _expire(self, command_id: str) -> None:
        self._timers.pop(command_id, None)
        entry = self._find_pending(command_id)
        if entry is None:
            return
        self._pending.remove(entry)
        loop = asyncio.get_running_loop()
        self._time_out(entry, loop.time() - entry.enqueued_at)

    def _time_out(self, entry: QueueEntry, waited: float) -> None:
        LOGGER.warning(
            "Command %s timed out after %.1fs in queue for %s",
            entry.command_id,
            waited,
            self._document_id,
        )
        self._finish_pending(
            entry,
            CommandStatus.TIMED_OUT,
            CommandTimeoutError(
                suggestions=("Try again when the canvas is less busy",),
                details={"command_id": entry.command_id, "waited_seconds": round(waited, 3)},
            ),
        )

    def _finish_pending(self, entry: QueueEntry, status: CommandStatus, error: CommandError) -> None:
        entry.command.transition(status)
        self._cancel_timer(entry.command_id)
        _set_exception(self._futures.pop(entry.command_id, None), error)
        self._notify(entry.command)

    def _cancel_timer(self, command_id: str) -> None:
        handle = self._timers.pop(command_id, None)
        if handle is not None:
            handle.cancel()

    def _find_pending(self, command_id: str) -> QueueEntry | None:
        for entry in self._pending:
            if entry.command_id == command_id:
                return entry
        return None


def _set_exception(future: asyncio.Future[Any] | None, exc: BaseException) -> None:
    if future is not None and not future.done():
        future.set_exception(exc)


# -----------------------------------------------------------------------------
# Registry of queues
# -----------------------------------------------------------------------------


class CommandQueueRegistry(Generic[ResultT]):
    """Creates one queue per document on demand.

    Queues for different documents drain independently.
    """

    def __init__(
        self,
        processor: Callable[[Command], Awaitable[ResultT]],
        *,
        capacity: int = DEFAULT_CAPACITY,
        timeout_seconds: float = DEFAULT_TIMEOUT_SECONDS,
        is_success: Callable[[ResultT], bool] | None = None,
    ) -> None:
        self._processor = processor
        self._capacity = capacity
        self._timeout = timeout_seconds
        self._is_success = is_success
        self._queues: dict[str, DocumentCommandQueue[ResultT]] = {}
        self._listeners: list[QueueListener] = []

    def get(self, document_id: str) -> DocumentCommandQueue[ResultT]:
        queue = self._queues.get(document_id)
        if queue is None:
            queue = DocumentCommandQueue(
                document_id,
                self._processor,
                capacity=self._capacity,
                timeout_seconds=self._timeout,
                is_success=self._is_success,
                on_idle=self._discard,
            )
            for listener in self._listeners:
                queue.subscribe(listener)
            self._queues[document_id] = queue
        return queue

    def enqueue(self, command: Command) -> asyncio.Future[ResultT]:
        return self.get(command.document_id).enqueue(command)

    async def submit(self, command: Command) -> ResultT:
        return await self.get(command.document_id).submit(command)

    def cancel(self, document_id: str, command_id: str, user_id: str) -> bool:
        queue = self._queues.get(document_id)
        return queue.cancel(command_id, user_id) if queue is not None else False

    def snapshot(self, document_id: str) -> QueueSnapshot:
        queue = self._queues.get(document_id)
        if queue is None:
            return QueueSnapshot(document_id=document_id, pending=(), current=None)
        return queue.snapshot()

    @property
    def document_ids(self) -> tuple[str, ...]:
        """Documents with a live queue."""
        return tuple(self._queues)

    def subscribe(self, listener: QueueListener) -> Callable[[], None]:
        """Observe every current and future document queue."""
        self._listeners.append(listener)
        for queue in self._queues.values():
            queue.subscribe(listener)

        def _unsubscribe() -> None:
            if listener in self._listeners:
                self._listeners.remove(listener)
            for queue in self._queues.values():
                queue._listeners[:] = [item for item in queue._listeners if item is not listener]

        return _unsubscribe

    def _discard(self, queue: DocumentCommandQueue[ResultT]) -> None:
        if self._queues.get(queue.document_id) is queue:
            del self._queues[queue.document_id]
            LOGGER.debug("Dropped idle command queue for %s", queue.document_id)

    async def wait_idle(self) -> None:
        await asyncio.gather(*(queue.wait_idle() for queue in list(self._queues.values())))

    def clear(self, document_id: str | None = None) -> int:
        if document_id is not None:
            queue = self._queues.get(document_id)
            return queue.clear() if queue is not None else 0
        return sum(queue.clear() for queue in self._queues.values())
