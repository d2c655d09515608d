"""Analyzers for fetching, scoring and ranking."""

from cratescore.analyzers.github import GitHubFetcher
from cratescore.analyzers.pipeline import ScoringPipeline, rank
from cratescore.analyzers.scorer import Scorer

__all__ = ["GitHubFetcher", "ScoringPipeline", "Scorer", "rank"]
