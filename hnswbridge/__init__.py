"""hnswbridge: batch-parallel client layer over an HNSW nearest-neighbour index."""

from hnswbridge.client import HnswIndex
from hnswbridge.domain.errors import (
    AllocationFailure,
    BatchShapeError,
    CapacityError,
    EngineError,
    HandleReleasedError,
    HnswBridgeError,
    IndexIOError,
    InsufficientCandidatesError,
    InvalidConfigurationError,
    LabelNotFoundError,
    StatusCode,
    WorkerFailure,
)
from hnswbridge.domain.models import ResultBuffer, SearchHit, SpaceType
from hnswbridge.services.index_handle import IndexHandle

__version__ = "0.1.0"

__all__ = [
    "AllocationFailure",
    "BatchShapeError",
    "CapacityError",
    "EngineError",
    "HandleReleasedError",
    "HnswBridgeError",
    "HnswIndex",
    "IndexHandle",
    "IndexIOError",
    "InsufficientCandidatesError",
    "InvalidConfigurationError",
    "LabelNotFoundError",
    "ResultBuffer",
    "SearchHit",
    "SpaceType",
    "StatusCode",
    "WorkerFailure",
]
