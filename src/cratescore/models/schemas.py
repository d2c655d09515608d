"""Pydantic models for package and repository data."""

from datetime import datetime
from enum import Enum

import semantic_version
from pydantic import BaseModel, ConfigDict, Field, field_validator

from cratescore.time_utils import age_in_months


class ScoreMode(str, Enum):
    """Which entities are scored for each package identifier."""

    PACKAGE_AND_REPO = "package_and_repo"
    PACKAGE_ONLY = "package_only"
    REPO_ONLY = "repo_only"


class PageMeta(BaseModel):
    """Pagination metadata returned by the registry."""

    total: int


# --- Registry Models ---


class CrateGeneralInfo(BaseModel):
    """Top-level registry information about a crate."""

    id: str  # crate name
    created_at: datetime
    updated_at: datetime
    max_version: str
    description: str | None = None
    repository: str | None = None
    documentation: str | None = None


class ReleaseInfo(BaseModel):
    """One published version of a crate."""

    num: str  # version
    created_at: datetime
    downloads: int = 0
    yanked: bool = False
    license: str | None = None

    @property
    def is_stable(self) -> bool:
        """Non-yanked with a valid semver version and no pre-release part."""
        if self.yanked:
            return False
        try:
            return not semantic_version.Version(self.num).prerelease
        except ValueError:
            return False


class OwnerInfo(BaseModel):
    """A crate owner account."""

    id: int
    login: str | None = None


class DependantRecord(BaseModel):
    """A crate that depends on the subject crate."""

    model_config = ConfigDict(frozen=True)

    name: str
    hard: bool  # default features and not optional
    req: str  # version requirement


class PackageRecord(BaseModel):
    """Everything fetched from the registry about one crate.

    Releases are kept newest first by creation time.
    """

    model_config = ConfigDict(frozen=True)

    info: CrateGeneralInfo
    releases: list[ReleaseInfo] = Field(default_factory=list)
    owner_ids: list[int] = Field(default_factory=list)
    dependants: list[DependantRecord] = Field(default_factory=list)
    owner_crates: frozenset[str] = frozenset()

    @field_validator("releases")
    @classmethod
    def _newest_first(cls, releases: list[ReleaseInfo]) -> list[ReleaseInfo]:
        return sorted(releases, key=lambda r: r.created_at, reverse=True)

    @property
    def name(self) -> str:
        return self.info.id

    @property
    def max_version(self) -> str:
        return self.info.max_version

    @property
    def non_yanked_releases(self) -> list[ReleaseInfo]:
        return [r for r in self.releases if not r.yanked]

    @property
    def stable_releases(self) -> list[ReleaseInfo]:
        return [r for r in self.releases if r.is_stable]

    @property
    def degenerate(self) -> bool:
        """No releases, an empty ``0.0.0`` max version, or everything yanked."""
        no_releases = not self.releases
        empty_release = self.max_version == "0.0.0"
        all_yanked = not self.non_yanked_releases
        return no_releases or empty_release or all_yanked

    @property
    def license(self) -> str | None:
        """License of the release matching the declared max version."""
        for release in self.releases:
            if release.num == self.max_version:
                return release.license
        return None

    @property
    def last_stable_version(self) -> str | None:
        stable = self.stable_releases
        return stable[0].num if stable else None

    def version_age(self, version: str | None, now: datetime | None = None) -> float | None:
        """Age in months of the release ``version``, if it exists."""
        for release in self.releases:
            if release.num == version:
                return age_in_months(release.created_at, now)
        return None

    def current_versions(self, now: datetime | None = None) -> list[str]:
        """Versions considered active for dependency matching.

        The declared max version (even when it is yanked or missing from the
        release list), the last non-yanked release, the last stable release,
        and every non-yanked release younger than one month.
        """
        versions = [self.max_version]

        non_yanked = self.non_yanked_releases
        if non_yanked:
            versions.append(non_yanked[0].num)
        stable = self.stable_releases
        if stable:
            versions.append(stable[0].num)

        for release in non_yanked:
            if age_in_months(release.created_at, now) <= 1.0:
                versions.append(release.num)
            else:
                break

        return sorted(set(versions))


# --- GitHub Models ---


class RepoGeneralInfo(BaseModel):
    """Basic GitHub repository data."""

    subscribers_count: int = 0
    created_at: datetime
    # Same as created_at if the repo is empty
    pushed_at: datetime | None = None

    @property
    def last_push(self) -> datetime:
        return self.pushed_at or self.created_at


class IssueInfo(BaseModel):
    number: int
    closed_at: datetime | None = None


class PullRequestInfo(BaseModel):
    number: int
    merged_at: datetime | None = None


class ContributorInfo(BaseModel):
    login: str | None = None
    contributions: int = 0


class RepositoryRecord(BaseModel):
    """Everything fetched from GitHub about one repository.

    Contributors are ranked by contribution count, highest first.
    """

    model_config = ConfigDict(frozen=True)

    id: str  # owner/repo
    general: RepoGeneralInfo
    closed_issues: list[IssueInfo] = Field(default_factory=list)
    pull_requests: list[PullRequestInfo] = Field(default_factory=list)
    contributors: list[ContributorInfo] = Field(default_factory=list)

    @field_validator("contributors")
    @classmethod
    def _ranked(cls, contributors: list[ContributorInfo]) -> list[ContributorInfo]:
        return sorted(contributors, key=lambda c: c.contributions, reverse=True)

    @property
    def merged_pull_requests(self) -> list[PullRequestInfo]:
        return [pr for pr in self.pull_requests if pr.merged_at is not None]

    @property
    def last_merged_at(self) -> datetime | None:
        merged = [pr.merged_at for pr in self.merged_pull_requests]
        return max(merged) if merged else None

    @property
    def last_closed_at(self) -> datetime | None:
        closed = [issue.closed_at for issue in self.closed_issues if issue.closed_at is not None]
        return max(closed) if closed else None


# --- Scoring Models ---


class ScoreTerm(BaseModel):
    """One row of a score table."""

    model_config = ConfigDict(frozen=True)

    label: str
    expression: str  # "count * weight"
    contribution: float

    @property
    def is_negative(self) -> bool:
        return self.contribution < 0


class PackageMetrics(BaseModel):
    """Derived inputs of the package score."""

    model_config = ConfigDict(frozen=True)

    # +ve
    has_description: int
    has_documentation: int
    has_license: int
    activity_span_months: float
    releases: int
    non_yanked_releases: int
    stable_releases: int
    recent_downloads: float
    dependant_count: int
    hard_dependant_count: int
    dependants_on_current_versions: int
    dependants_from_non_owners: int
    # -ve
    months_since_last_release: float
    degenerate: int


class RepositoryMetrics(BaseModel):
    """Derived inputs of the repository score."""

    model_config = ConfigDict(frozen=True)

    subscribers: int
    contributors: int
    contributions: int
    secondary_contribution_pct: int
    tertiary_contribution_pct: int
    push_span_months: float
    merged_pull_requests: int
    months_since_last_pr_merged: float
    months_since_last_issue_closed: float
    months_since_last_push: float


class ScoredPackage(BaseModel):
    """A package record with its derived metrics and score."""

    model_config = ConfigDict(frozen=True)

    record: PackageRecord
    metrics: PackageMetrics
    table: tuple[ScoreTerm, ...]
    positive: float
    negative: float

    @property
    def total(self) -> float:
        return self.positive + self.negative


class ScoredRepository(BaseModel):
    """A repository record with its derived metrics and score."""

    model_config = ConfigDict(frozen=True)

    record: RepositoryRecord
    metrics: RepositoryMetrics
    table: tuple[ScoreTerm, ...]
    positive: float
    negative: float

    @property
    def total(self) -> float:
        return self.positive + self.negative
