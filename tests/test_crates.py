"""Tests for the crates.io adapter and package records."""

from datetime import timedelta

import pytest

from cratescore.adapters.base import HttpStatusError
from cratescore.adapters.crates import CratesAdapter, requirement_matches
from cratescore.models.schemas import CrateGeneralInfo, PackageRecord, ReleaseInfo

from conftest import CRATES_API, NOW, crate_json, route_crate, search_json, version_json


def make_record(releases, max_version="1.0.0", **kwargs):
    info = CrateGeneralInfo(
        id="demo",
        created_at=NOW - timedelta(days=1000),
        updated_at=NOW - timedelta(days=10),
        max_version=max_version,
    )
    return PackageRecord(info=info, releases=releases, **kwargs)


def release(num, days_old, yanked=False, downloads=10, license="MIT"):
    return ReleaseInfo(
        num=num,
        created_at=NOW - timedelta(days=days_old),
        downloads=downloads,
        yanked=yanked,
        license=license,
    )


class TestPackageRecord:
    """Derived release sets."""

    def test_releases_sorted_newest_first(self):
        record = make_record([release("0.1.0", 300), release("1.0.0", 5), release("0.2.0", 100)])
        assert [r.num for r in record.releases] == ["1.0.0", "0.2.0", "0.1.0"]

    def test_stable_excludes_prerelease_yanked_and_invalid(self):
        record = make_record(
            [
                release("1.0.0", 5),
                release("1.1.0-beta.1", 3),
                release("0.9.0", 50, yanked=True),
                release("not-a-version", 60),
            ]
        )
        assert [r.num for r in record.non_yanked_releases] == ["1.1.0-beta.1", "1.0.0", "not-a-version"]
        assert [r.num for r in record.stable_releases] == ["1.0.0"]
        assert record.last_stable_version == "1.0.0"

    def test_license_comes_from_max_version(self):
        record = make_record([release("1.0.0", 5, license="Apache-2.0"), release("0.9.0", 50, license="MIT")])
        assert record.license == "Apache-2.0"

    def test_license_missing_when_max_version_not_released(self):
        record = make_record([release("0.9.0", 50)], max_version="1.0.0")
        assert record.license is None

    @pytest.mark.parametrize(
        "releases,max_version",
        [
            ([], "1.0.0"),
            ([release("0.0.0", 5)], "0.0.0"),
            ([release("1.0.0", 5, yanked=True), release("0.9.0", 50, yanked=True)], "1.0.0"),
        ],
    )
    def test_degenerate(self, releases, max_version):
        assert make_record(releases, max_version=max_version).degenerate

    def test_not_degenerate(self):
        record = make_record([release("1.0.0", 5, yanked=True), release("0.9.0", 50)])
        assert not record.degenerate


class TestCurrentVersions:
    """Versions treated as current for dependency matching."""

    def test_includes_missing_max_version(self):
        record = make_record([release("0.9.0", 400)], max_version="1.0.0")
        assert record.current_versions(NOW) == ["0.9.0", "1.0.0"]

    def test_recent_releases_sorted_without_duplicates(self):
        record = make_record(
            [
                release("2.0.0-rc.1", 2),
                release("1.2.0", 10),
                release("1.1.0", 20),
                release("1.0.0", 200),
            ],
            max_version="2.0.0-rc.1",
        )
        versions = record.current_versions(NOW)
        assert versions == sorted(versions)
        assert len(versions) == len(set(versions))
        assert versions == ["1.1.0", "1.2.0", "2.0.0-rc.1"]

    def test_yanked_releases_not_current(self):
        record = make_record([release("1.1.0", 3, yanked=True), release("1.0.0", 200)])
        assert record.current_versions(NOW) == ["1.0.0"]

    def test_month_boundary(self):
        record = make_record([release("1.0.1", 30), release("1.0.0", 31)], max_version="1.0.1")
        # 30 days is inside one 30.5-day month, 31 days is not
        assert record.current_versions(NOW) == ["1.0.1"]


class TestRequirementMatches:
    """Cargo version requirements."""

    @pytest.mark.parametrize(
        "req,version,expected",
        [
            ("^1.0", "1.4.2", True),
            ("1.0", "1.4.2", True),
            ("1.0", "2.0.0", False),
            ("0.9", "0.9.7", True),
            ("0.9", "0.10.0", False),
            ("~1.2", "1.2.9", True),
            ("~1.2", "1.3.0", False),
            ("=1.2.3", "1.2.3", True),
            (">=1.0, <2.0", "1.9.0", True),
            (">=1.0, <2.0", "2.0.0", False),
            ("*", "3.1.4", True),
            ("1.*", "1.7.0", True),
            ("garbage!", "1.0.0", False),
            ("^1.0", "not-a-version", False),
            ("^1.0", "1.1.0-alpha.1", False),
            ("^1.0.0-beta", "1.0.0-beta.2", True),
            ("^1.0.0-beta", "1.0.0", True),
            ("^1.0.0-beta", "1.0.1-beta", False),
            ("1.0.0-beta.1", "1.0.0-beta.2", True),
            ("1.0.0-beta.1", "1.0.0-alpha.9", False),
            (">=1.0.0-rc.1, <2.0.0", "1.0.0-rc.2", True),
            (">=1.0.0-rc.1, <2.0.0", "2.0.0-alpha", False),
            ("~1.2.0-beta", "1.2.0-beta.3", True),
            ("=1.2.3-rc.1", "1.2.3-rc.1", True),
            ("*", "1.0.0-alpha", False),
            ("=1.2", "1.2.7", True),
            ("=1.2", "1.3.0", False),
            (">1.2", "1.2.5", False),
            ("<=1.2", "1.2.9", True),
            ("^0.0.3", "0.0.4", False),
            ("^0", "0.9.0", True),
            ("==1.2.3", "1.2.3", False),
        ],
    )
    def test_matches(self, req, version, expected):
        assert requirement_matches(req, version) is expected


class TestCratesAdapter:
    """Package aggregation against a mocked registry."""

    @pytest.mark.asyncio
    async def test_get_package_record(self, router):
        route_crate(
            router,
            "demo",
            crate_json([version_json("1.0.0", "2024-05-17T00:00:00.000000+00:00")]),
            owners=[1, 2],
            dependants=[("a", True, False, "^1.0"), ("mine", True, False, "1")],
        )
        router.add(f"{CRATES_API}/crates?per_page=100&user_id=1", search_json(["demo", "mine"]))
        router.add(f"{CRATES_API}/crates?per_page=100&user_id=2", search_json(["other"]))

        record = await CratesAdapter().get_package_record("demo")

        assert record.name == "demo"
        assert record.owner_ids == [1, 2]
        assert [d.name for d in record.dependants] == ["a", "mine"]
        assert record.owner_crates == frozenset({"demo", "mine", "other"})

    @pytest.mark.asyncio
    async def test_sub_fetches_run_concurrently(self, router):
        router.delay = 0.05
        route_crate(router, "demo", crate_json([version_json("1.0.0", "2024-05-17T00:00:00Z")]), owners=[1])
        router.add(f"{CRATES_API}/crates?per_page=100&user_id=1", search_json(["demo"]))

        await CratesAdapter().get_package_record("demo")

        # info, owners and reverse dependencies together, then the owner search
        assert router.peak == 3
        assert len(router.requests) == 4

    @pytest.mark.asyncio
    async def test_owner_searches_run_concurrently(self, router):
        router.delay = 0.05
        for uid in range(4):
            router.add(f"{CRATES_API}/crates?per_page=100&user_id={uid}", search_json([f"crate-{uid}"]))

        owned = await CratesAdapter().get_owner_crates([0, 1, 2, 3])

        assert owned == frozenset({"crate-0", "crate-1", "crate-2", "crate-3"})
        assert router.peak == 4

    @pytest.mark.asyncio
    async def test_owner_search_failure_fails_record(self, router):
        route_crate(router, "demo", crate_json([version_json("1.0.0", "2024-05-17T00:00:00Z")]), owners=[9])

        with pytest.raises(HttpStatusError):
            await CratesAdapter().get_package_record("demo")

    @pytest.mark.asyncio
    async def test_missing_owners_fails_record(self, router):
        router.add(f"{CRATES_API}/crates/demo", crate_json([version_json("1.0.0", "2024-05-17T00:00:00Z")]))
        router.add(
            f"{CRATES_API}/crates/demo/reverse_dependencies?per_page=100",
            {"dependencies": [], "versions": [], "meta": {"total": 0}},
        )

        with pytest.raises(HttpStatusError):
            await CratesAdapter().get_package_record("demo")

    @pytest.mark.asyncio
    async def test_search(self, router):
        router.add(f"{CRATES_API}/crates?per_page=3&q=serde+json", search_json(["serde_json", "json5", "simd-json"], total=80))

        names = await CratesAdapter().search("serde  json", 3)

        assert names == ["serde_json", "json5", "simd-json"]

    @pytest.mark.asyncio
    async def test_search_terms_are_encoded(self, router):
        router.add(f"{CRATES_API}/crates?per_page=5&q=c%2B%2B+a%26b+100%25", search_json(["cxx"]))

        names = await CratesAdapter().search("c++  a&b 100%", 5)

        assert names == ["cxx"]

    def test_get_source_repo(self):
        record = make_record([release("1.0.0", 5)])
        assert CratesAdapter().get_source_repo(record) is None

        info = record.info.model_copy(update={"repository": "https://github.com/owner/demo.git"})
        record = PackageRecord(info=info, releases=record.releases)
        assert CratesAdapter().get_source_repo(record) == "owner/demo"
