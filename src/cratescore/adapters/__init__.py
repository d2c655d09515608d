"""Registry adapters and the generic fetch layer."""

from cratescore.adapters.base import (
    DecodeError,
    HttpStatusError,
    MissingDataError,
    PaginationConsistencyError,
    ScoreError,
    TransportError,
)
from cratescore.adapters.crates import CratesAdapter

__all__ = [
    "CratesAdapter",
    "DecodeError",
    "HttpStatusError",
    "MissingDataError",
    "PaginationConsistencyError",
    "ScoreError",
    "TransportError",
]
