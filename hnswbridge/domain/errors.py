"""Error taxonomy and the status codes they map to at the boundary."""

from __future__ import annotations

from enum import IntEnum


class StatusCode(IntEnum):
    """Integer results returned across the boundary instead of exceptions."""

    OK = 0
    WORKER_FAILURE = 1
    INVALID_ARGUMENT = 2
    INVALID_CONFIGURATION = 3
    CAPACITY = 4
    INSUFFICIENT_CANDIDATES = 5
    ALLOCATION_FAILURE = 6
    RELEASED_HANDLE = 7
    IO_ERROR = 8
    INTERNAL = 99


class HnswBridgeError(Exception):
    """Base class for every error raised by this package."""

    status: StatusCode = StatusCode.INTERNAL


class InvalidConfigurationError(HnswBridgeError, ValueError):
    """Unrecognised space selector or an invalid index parameter."""

    status = StatusCode.INVALID_CONFIGURATION


class IndexIOError(HnswBridgeError, OSError):
    """An index file could not be written or read."""

    status = StatusCode.IO_ERROR


class CapacityError(HnswBridgeError):
    """The index cannot hold the requested number of elements."""

    status = StatusCode.CAPACITY


class InsufficientCandidatesError(HnswBridgeError):
    """A search could not produce a full row of ``k`` results."""

    status = StatusCode.INSUFFICIENT_CANDIDATES

    def __init__(self, requested: int, found: int | None = None) -> None:
        got = "fewer" if found is None else str(found)
        super().__init__(
            f"search returned {got} candidate(s), {requested} requested; "
            "the index may be too small or ef/M too restrictive"
        )
        self.requested = requested
        self.found = found


class AllocationFailure(HnswBridgeError, MemoryError):
    """The result buffer for a batch search could not be allocated."""

    status = StatusCode.ALLOCATION_FAILURE


class BatchShapeError(HnswBridgeError, ValueError):
    """The batch descriptor does not match the index (size, labels, k)."""

    status = StatusCode.INVALID_ARGUMENT


class LabelNotFoundError(HnswBridgeError, KeyError):
    """The label is unknown to the index or has been marked deleted."""

    status = StatusCode.INVALID_ARGUMENT

    def __init__(self, label: int) -> None:
        super().__init__(label)
        self.label = label

    def __str__(self) -> str:
        return f"label {self.label} not found"


class HandleReleasedError(HnswBridgeError):
    """An index handle or result buffer was used after being released."""

    status = StatusCode.RELEASED_HANDLE


class EngineError(HnswBridgeError):
    """Any other fault reported by the ANN engine."""

    status = StatusCode.INTERNAL


class WorkerFailure(HnswBridgeError):
    """First exception raised by a batch worker, with where it happened."""

    status = StatusCode.WORKER_FAILURE

    def __init__(self, row: int, worker_slot: int, cause: BaseException) -> None:
        super().__init__(
            f"row {row} failed on worker {worker_slot}: "
            f"{type(cause).__name__}: {cause}"
        )
        self.row = row
        self.worker_slot = worker_slot
        self.cause = cause
