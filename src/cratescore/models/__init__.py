"""Data models and schemas."""

from cratescore.models.schemas import (
    PackageRecord,
    RepositoryRecord,
    ScoredPackage,
    ScoredRepository,
    ScoreMode,
    ScoreTerm,
)

__all__ = [
    "PackageRecord",
    "RepositoryRecord",
    "ScoredPackage",
    "ScoredRepository",
    "ScoreMode",
    "ScoreTerm",
]
