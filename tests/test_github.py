"""Tests for the GitHub repository fetcher."""

import pytest

from cratescore.adapters.base import DecodeError, HttpStatusError, MissingDataError
from cratescore.analyzers.github import GitHubFetcher

from conftest import GITHUB_API, repo_json, route_repo

TOKEN = "tok"


def contributors(*counts):
    return [{"login": f"user{i}", "contributions": c} for i, c in enumerate(counts)]


class TestFetchRepoRecord:
    """Repository aggregation."""

    @pytest.mark.asyncio
    async def test_aggregates_all_four_sources(self, router):
        route_repo(
            router,
            "owner/demo",
            TOKEN,
            repo_json(subscribers=12),
            issues=[{"number": 3, "closed_at": "2024-05-20T00:00:00Z"}, {"number": 1, "closed_at": "2024-05-25T00:00:00Z"}],
            pulls=[
                {"number": 9, "merged_at": None},
                {"number": 8, "merged_at": "2024-04-01T00:00:00Z"},
                {"number": 7, "merged_at": "2024-04-15T00:00:00Z"},
            ],
            contributors=contributors(5, 40, 10),
        )

        record = await GitHubFetcher(TOKEN).fetch_repo_record("owner/demo")

        assert record.id == "owner/demo"
        assert record.general.subscribers_count == 12
        assert [c.contributions for c in record.contributors] == [40, 10, 5]
        assert len(record.merged_pull_requests) == 2
        assert record.last_merged_at.isoformat() == "2024-04-15T00:00:00+00:00"
        assert record.last_closed_at.isoformat() == "2024-05-25T00:00:00+00:00"
        assert len(router.requests) == 4
        assert all("access_token=tok" in str(r.url) for r in router.requests)

    @pytest.mark.asyncio
    async def test_four_sources_fetched_concurrently(self, router):
        router.delay = 0.05
        route_repo(router, "owner/demo", TOKEN, repo_json(), contributors=contributors(3))

        await GitHubFetcher(TOKEN).fetch_repo_record("owner/demo")

        assert router.peak == 4

    @pytest.mark.asyncio
    async def test_empty_contributors_is_error(self, router):
        route_repo(router, "owner/demo", TOKEN, repo_json())

        with pytest.raises(MissingDataError, match="contributors"):
            await GitHubFetcher(TOKEN).fetch_repo_record("owner/demo")

    @pytest.mark.asyncio
    async def test_any_failing_source_fails_record(self, router):
        route_repo(router, "owner/demo", TOKEN, repo_json(), contributors=contributors(3))
        router.add(f"{GITHUB_API}/repos/owner/demo/pulls?state=all&per_page=100&access_token={TOKEN}", {}, status=500)

        with pytest.raises(HttpStatusError):
            await GitHubFetcher(TOKEN).fetch_repo_record("owner/demo")

    @pytest.mark.asyncio
    async def test_wrong_shape_is_decode_error(self, router):
        route_repo(router, "owner/demo", TOKEN, {"message": "Moved"}, contributors=contributors(3))

        with pytest.raises(DecodeError):
            await GitHubFetcher(TOKEN).fetch_repo_record("owner/demo")

    @pytest.mark.asyncio
    async def test_missing_pushed_at_falls_back_to_created_at(self, router):
        repo = repo_json()
        repo["pushed_at"] = None
        route_repo(router, "owner/demo", TOKEN, repo, contributors=contributors(3))

        record = await GitHubFetcher(TOKEN).fetch_repo_record("owner/demo")

        assert record.general.last_push == record.general.created_at
