"""Ingestion operation context: state machine, best-effort progress and cancellation."""

import logging
import threading
import uuid
from datetime import datetime, timezone
from enum import Enum

from vulntrail.schemas.upload import OperationStatus
from vulntrail.services.errors import BatchCancelledError

logger = logging.getLogger(__name__)


class IngestState(str, Enum):
    IDLE = "IDLE"
    VALIDATING = "VALIDATING"
    ARCHIVING = "ARCHIVING"
    REPLACING = "REPLACING"
    DIFFING = "DIFFING"
    COMMITTED = "COMMITTED"
    FAILED = "FAILED"


# Archive/replace/diff repeat once per file, so DIFFING may go back to ARCHIVING.
_TRANSITIONS: dict[IngestState, frozenset[IngestState]] = {
    IngestState.IDLE: frozenset({IngestState.VALIDATING}),
    IngestState.VALIDATING: frozenset({IngestState.ARCHIVING}),
    IngestState.ARCHIVING: frozenset({IngestState.REPLACING}),
    IngestState.REPLACING: frozenset({IngestState.DIFFING}),
    IngestState.DIFFING: frozenset({IngestState.ARCHIVING, IngestState.COMMITTED}),
    IngestState.COMMITTED: frozenset(),
    IngestState.FAILED: frozenset(),
}

_TERMINAL = frozenset({IngestState.COMMITTED, IngestState.FAILED})


class IngestOperation:
    """
    One batch in flight. Passed by reference into the orchestrator, which moves it
    through the states; pollers read it concurrently. Any state may go to FAILED.
    """

    def __init__(self, files_total: int = 0, operation_id: str | None = None) -> None:
        self.id = operation_id or str(uuid.uuid4())
        self.state = IngestState.IDLE
        self.files_total = files_total
        self.files_done = 0
        self.current_file: str | None = None
        self.error: str | None = None
        self.started_at = datetime.now(timezone.utc)
        self.finished_at: datetime | None = None
        self._cancel = threading.Event()
        self._lock = threading.Lock()

    @property
    def is_terminal(self) -> bool:
        return self.state in _TERMINAL

    def transition(self, new_state: IngestState, current_file: str | None = None) -> None:
        """
        Move to new_state. Leaving VALIDATING for ARCHIVING raises BatchCancelledError
        when a cancel was accepted; the check and the move happen under one lock.
        """
        with self._lock:
            if new_state != IngestState.FAILED and new_state not in _TRANSITIONS[self.state]:
                raise ValueError(f"Invalid ingest state transition {self.state.value} -> {new_state.value}")
            if self.state == IngestState.VALIDATING and new_state == IngestState.ARCHIVING:
                self._raise_if_cancelled()
            self.state = new_state
            if current_file is not None:
                self.current_file = current_file
            if new_state in _TERMINAL:
                self.finished_at = datetime.now(timezone.utc)
        logger.debug(
            "Ingest state changed",
            extra={"operation_id": self.id, "state": new_state.value, "report_file": current_file},
        )

    def file_done(self) -> None:
        with self._lock:
            self.files_done += 1

    def fail(self, error: str) -> None:
        if self.is_terminal:
            return
        self.error = error
        self.transition(IngestState.FAILED)

    def cancel(self) -> bool:
        """Request cancellation. Accepted only while nothing has been written (IDLE or VALIDATING)."""
        with self._lock:
            if self.state not in (IngestState.IDLE, IngestState.VALIDATING):
                return False
            self._cancel.set()
            return True

    @property
    def cancel_requested(self) -> bool:
        return self._cancel.is_set()

    def raise_if_cancelled(self) -> None:
        with self._lock:
            self._raise_if_cancelled()

    def _raise_if_cancelled(self) -> None:
        if self._cancel.is_set():
            raise BatchCancelledError("Batch was cancelled before any data was written.")

    def to_status(self) -> OperationStatus:
        with self._lock:
            return OperationStatus(
                operation_id=self.id,
                state=self.state.value,
                files_total=self.files_total,
                files_done=self.files_done,
                current_file=self.current_file,
                error=self.error,
                started_at=self.started_at,
                finished_at=self.finished_at,
            )


class OperationRegistry:
    """Thread-safe map of operation id -> IngestOperation, bounded to the most recent entries."""

    def __init__(self, max_entries: int = 1000) -> None:
        self.max_entries = max_entries
        self._ops: dict[str, IngestOperation] = {}
        self._lock = threading.Lock()

    def create(self, files_total: int, operation_id: str | None = None) -> IngestOperation:
        """
        Register a new operation. A caller-chosen operation_id lets clients poll or cancel
        before the upload returns; ValueError when that id is already registered.
        """
        op = IngestOperation(files_total=files_total, operation_id=operation_id)
        with self._lock:
            if op.id in self._ops:
                raise ValueError(f"Operation {op.id} already exists.")
            self._ops[op.id] = op
            self._evict_finished()
        return op

    def get(self, operation_id: str) -> IngestOperation | None:
        with self._lock:
            return self._ops.get(operation_id)

    def _evict_finished(self) -> None:
        # Oldest finished operations go first; running ones are never evicted.
        overflow = len(self._ops) - self.max_entries
        if overflow <= 0:
            return
        for op_id in [k for k, op in self._ops.items() if op.is_terminal][:overflow]:
            del self._ops[op_id]
