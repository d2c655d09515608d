"""GitHub data fetcher for repository scoring."""

from __future__ import annotations

import asyncio
import logging
from typing import ClassVar

from pydantic import RootModel

from cratescore.adapters.base import PAGE_SIZE_CAP, Fetchable, MissingDataError
from cratescore.models.schemas import (
    ContributorInfo,
    IssueInfo,
    PullRequestInfo,
    RepoGeneralInfo,
    RepositoryRecord,
)

logger = logging.getLogger(__name__)

API_URL = "https://api.github.com"


class RepoInfo(Fetchable, RepoGeneralInfo):
    URL_TEMPLATE: ClassVar[str] = f"{API_URL}/repos/:id"


class RepoClosedIssues(Fetchable, RootModel[list[IssueInfo]]):
    """Most recently updated closed issues."""

    URL_TEMPLATE: ClassVar[str] = (
        f"{API_URL}/repos/:id/issues?state=closed&sort=updated&per_page={PAGE_SIZE_CAP}"
    )


class RepoPullRequests(Fetchable, RootModel[list[PullRequestInfo]]):
    """Most recent pull requests in any state."""

    URL_TEMPLATE: ClassVar[str] = f"{API_URL}/repos/:id/pulls?state=all&per_page={PAGE_SIZE_CAP}"


class RepoContributors(Fetchable, RootModel[list[ContributorInfo]]):
    """Top contributors by contribution count."""

    URL_TEMPLATE: ClassVar[str] = f"{API_URL}/repos/:id/contributors?per_page={PAGE_SIZE_CAP}"

    @classmethod
    def from_bytes(cls, data: bytes, url: str | None = None) -> "RepoContributors":
        # GitHub answers 204 with no body for empty repositories
        if not data.strip():
            return cls([])
        return super().from_bytes(data, url)


class GitHubFetcher:
    """Fetches repository data from the GitHub API.

    Requires a GitHub personal access token for usable rate limits. The
    token is passed as the ``access_token`` query parameter.
    """

    def __init__(self, token: str) -> None:
        """Initialize the fetcher.

        Args:
            token: GitHub personal access token.
        """
        self._token = token

    async def fetch_repo_record(self, repo_id: str) -> RepositoryRecord:
        """Fetch all data the repository score needs.

        Repository info, closed issues, pull requests and contributors are
        fetched concurrently; any failure fails the whole record.

        Args:
            repo_id: Repository id in ``owner/repo`` form.

        Raises:
            MissingDataError: If the repository has no contributors.
            ScoreError: Any fetch or decode error, unchanged.
        """
        general, issues, pulls, contributors = await asyncio.gather(
            RepoInfo.from_id_with_token(repo_id, self._token),
            RepoClosedIssues.from_id_with_token(repo_id, self._token),
            RepoPullRequests.from_id_with_token(repo_id, self._token),
            RepoContributors.from_id_with_token(repo_id, self._token),
        )

        if not contributors.root:
            raise MissingDataError(f"Empty contributors list for '{repo_id}'")

        logger.debug(
            f"Fetched {repo_id}: {len(issues.root)} closed issues, {len(pulls.root)} pull requests, "
            f"{len(contributors.root)} contributors"
        )

        return RepositoryRecord(
            id=repo_id,
            general=general,
            closed_issues=issues.root,
            pull_requests=pulls.root,
            contributors=contributors.root,
        )
