"""End-to-end scoring pipeline: aggregate, score, batch and rank."""

from __future__ import annotations

import asyncio
import logging
import sys
from dataclasses import dataclass
from datetime import datetime

from cratescore.adapters.base import MissingDataError, normalize_repo_id
from cratescore.adapters.crates import CratesAdapter
from cratescore.analyzers.github import GitHubFetcher
from cratescore.analyzers.scorer import Scorer
from cratescore.models.schemas import ScoredPackage, ScoredRepository, ScoreMode

logger = logging.getLogger(__name__)

# Sort key of failed entries: below any real score, degenerate ones included
MIN_SCORE = -sys.float_info.max

DEFAULT_CONCURRENCY = 8


@dataclass(frozen=True)
class EntityScores:
    """Scores obtained for one identifier.

    In package-and-repo mode a repository failure is kept next to the
    package score instead of failing the entity.
    """

    mode: ScoreMode
    package: ScoredPackage | None = None
    repository: ScoredRepository | None = None
    repository_error: Exception | None = None

    def sort_score(self, positive_only: bool = False) -> float:
        """Package score when there is one, repository score otherwise."""
        scored = self.package if self.package is not None else self.repository
        if scored is None:
            return MIN_SCORE
        return scored.positive if positive_only else scored.total


@dataclass(frozen=True)
class BatchOutcome:
    """An identifier paired with its scores or the error that prevented them."""

    id: str
    scores: EntityScores | None = None
    error: Exception | None = None

    @property
    def ok(self) -> bool:
        return self.error is None

    def sort_score(self, positive_only: bool = False) -> float:
        if self.scores is None:
            return MIN_SCORE
        return self.scores.sort_score(positive_only)


@dataclass(frozen=True)
class RankedEntry:
    rank: int  # 1-based
    sort_score: float
    outcome: BatchOutcome


class ScoringPipeline:
    """Orchestrates fetching and scoring of crates and repositories.

    Pipeline stages per identifier:
    1. Aggregate the crate's registry data
    2. Aggregate its GitHub repository data (depending on the mode)
    3. Score each record
    """

    def __init__(
        self,
        github_token: str | None = None,
        adapter: CratesAdapter | None = None,
        scorer: Scorer | None = None,
        now: datetime | None = None,
    ) -> None:
        """Initialize the pipeline.

        Args:
            github_token: GitHub personal access token. Required for any
                mode that scores repositories.
            adapter: Registry adapter. Defaults to a new CratesAdapter.
            scorer: Score calculator. Defaults to a new Scorer.
            now: Fixed reference time for ages; the current time if None.
        """
        self.github_token = github_token
        self.adapter = adapter or CratesAdapter()
        self.scorer = scorer or Scorer()
        self.now = now

    def _github(self) -> GitHubFetcher:
        if not self.github_token:
            raise MissingDataError("A GitHub access token is required to score repositories")
        return GitHubFetcher(token=self.github_token)

    async def score_package(self, name: str) -> ScoredPackage:
        record = await self.adapter.get_package_record(name)
        return self.scorer.score_package(record, self.now)

    async def score_repository(self, repo: str) -> ScoredRepository:
        """Score a repository given as ``owner/repo`` or a GitHub URL.

        Raises:
            MissingDataError: If no repository id can be derived.
        """
        repo_id = normalize_repo_id(repo)
        if repo_id is None:
            raise MissingDataError(f"No GitHub repository id in '{repo}'")
        record = await self._github().fetch_repo_record(repo_id)
        return self.scorer.score_repository(record, self.now)

    async def score(self, name: str, mode: ScoreMode = ScoreMode.PACKAGE_AND_REPO) -> EntityScores:
        """Score one crate according to ``mode``."""
        if mode == ScoreMode.PACKAGE_ONLY:
            return EntityScores(mode=mode, package=await self.score_package(name))

        # Fail before touching the network if repositories can't be fetched
        github = self._github()
        record = await self.adapter.get_package_record(name)
        repo_id = self.adapter.get_source_repo(record)

        if mode == ScoreMode.REPO_ONLY:
            if repo_id is None:
                raise MissingDataError(f"Repo-only score requested but '{name}' has no GitHub repository")
            repo_record = await github.fetch_repo_record(repo_id)
            return EntityScores(mode=mode, repository=self.scorer.score_repository(repo_record, self.now))

        package = self.scorer.score_package(record, self.now)
        if repo_id is None:
            logger.debug(f"No GitHub repository for {name}, scoring crate only")
            return EntityScores(mode=ScoreMode.PACKAGE_ONLY, package=package)

        try:
            repo_record = await github.fetch_repo_record(repo_id)
        except Exception as e:
            logger.warning(f"Repository score for {name} ({repo_id}) failed: {e}")
            return EntityScores(mode=mode, package=package, repository_error=e)

        return EntityScores(
            mode=mode,
            package=package,
            repository=self.scorer.score_repository(repo_record, self.now),
        )

    async def score_many(
        self,
        ids: list[str],
        mode: ScoreMode = ScoreMode.PACKAGE_AND_REPO,
        concurrency_limit: int = DEFAULT_CONCURRENCY,
        timeout: float | None = None,
    ) -> list[BatchOutcome]:
        """Score many crates concurrently.

        At most ``concurrency_limit`` identifiers are in flight at once. A
        failure is recorded in that identifier's outcome and never affects
        the others. Outcomes are returned in input order.

        Args:
            ids: Crate names.
            mode: Which entities to score.
            concurrency_limit: Maximum identifiers processed simultaneously.
            timeout: Optional deadline in seconds for the whole batch. Every
                identifier still outstanding then gets a TimeoutError outcome.
        """
        if concurrency_limit < 1:
            raise ValueError(f"concurrency_limit must be at least 1, got {concurrency_limit}")

        semaphore = asyncio.Semaphore(concurrency_limit)
        loop = asyncio.get_running_loop()
        deadline = loop.time() + timeout if timeout is not None else None

        async def bounded(id: str) -> EntityScores:
            async with semaphore:
                return await self.score(id, mode)

        async def run(id: str) -> BatchOutcome:
            try:
                if deadline is None:
                    scores = await bounded(id)
                else:
                    scores = await asyncio.wait_for(bounded(id), max(deadline - loop.time(), 0.0))
            except Exception as e:
                logger.warning(f"Failed to get score info for {id}: {e!r}")
                return BatchOutcome(id=id, error=e)
            return BatchOutcome(id=id, scores=scores)

        return list(await asyncio.gather(*(run(id) for id in ids)))

    async def search(
        self,
        query: str,
        search_limit: int,
        mode: ScoreMode = ScoreMode.PACKAGE_AND_REPO,
        concurrency_limit: int = DEFAULT_CONCURRENCY,
        timeout: float | None = None,
    ) -> list[BatchOutcome]:
        """Search the registry and score every hit."""
        names = await self.adapter.search(query, search_limit)
        return await self.score_many(names, mode, concurrency_limit, timeout)


async def score_many(
    ids: list[str],
    token: str | None,
    mode: ScoreMode = ScoreMode.PACKAGE_AND_REPO,
    concurrency_limit: int = DEFAULT_CONCURRENCY,
    timeout: float | None = None,
) -> list[BatchOutcome]:
    """Convenience wrapper around ScoringPipeline.score_many."""
    pipeline = ScoringPipeline(github_token=token)
    return await pipeline.score_many(ids, mode, concurrency_limit, timeout)


def rank(outcomes: list[BatchOutcome], sort_by_positive_only: bool, limit: int) -> list[RankedEntry]:
    """Order outcomes by score, best first, and keep the top ``limit``.

    The key is the positive score alone or positive + negative. Failed
    outcomes sort last. Ties keep their input order. Truncation happens
    only after sorting.
    """
    keyed = [(outcome.sort_score(sort_by_positive_only), outcome) for outcome in outcomes]
    # sorted() is stable, also with reverse=True
    keyed = sorted(keyed, key=lambda pair: pair[0], reverse=True)
    return [
        RankedEntry(rank=i, sort_score=score, outcome=outcome)
        for i, (score, outcome) in enumerate(keyed[:limit], 1)
    ]
