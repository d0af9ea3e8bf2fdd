"""Bounded undo log over the unsynchronized operations log.

The log groups operations into batches at UndoPoint boundaries and keeps
only the most recent ``limit`` of them. Older batches stay in the
operations log for synchronization but can no longer be undone. The store
rebuilds the log from the operations log on every snapshot, so batches
cleared by synchronization are evicted with it.
"""

from collections import deque
from typing import Iterable

from taskledger.operations import Operation, OperationBatch, UndoPoint


def split_batches(operations: Iterable[Operation]) -> list[OperationBatch]:
    """Group a flat operations log into batches ending at UndoPoints.

    Trailing operations without a closing UndoPoint form a final batch.
    """
    batches: list[OperationBatch] = []
    current = OperationBatch()
    for op in operations:
        current.append(op)
        if isinstance(op, UndoPoint):
            if current.has_changes:
                batches.append(current)
            current = OperationBatch()
    if current.has_changes:
        batches.append(current)
    return batches


class UndoLog:
    """Most-recent-last arena of undoable batches."""

    def __init__(self, limit: int = 100):
        self.limit = limit
        self._batches: deque[OperationBatch] = deque(maxlen=limit)

    @classmethod
    def from_operations(cls, operations: Iterable[Operation], limit: int = 100) -> "UndoLog":
        log = cls(limit)
        for batch in split_batches(operations):
            log.push(batch)
        return log

    def push(self, batch: OperationBatch) -> None:
        if batch.has_changes:
            self._batches.append(batch)

    def peek(self) -> OperationBatch | None:
        return self._batches[-1] if self._batches else None

    def __len__(self) -> int:
        return len(self._batches)
