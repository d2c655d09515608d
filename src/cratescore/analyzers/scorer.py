"""Score calculator for crates and their repositories."""

import math
from datetime import datetime

from cratescore.adapters.crates import requirement_matches
from cratescore.models.schemas import (
    PackageMetrics,
    PackageRecord,
    RepositoryMetrics,
    RepositoryRecord,
    ScoredPackage,
    ScoredRepository,
    ScoreTerm,
)
from cratescore.time_utils import age_in_months, span_in_months, utc_now

# Secondary/tertiary contribution percentages are noise below this many
# contributions, so they only count for repositories at or above it.
CONTRIBUTION_PCT_THRESHOLD = 50


class ScoreSheet:
    """Accumulates score terms in display order.

    Terms with a negative weight go to the negative sum, all others to the
    positive sum. The two sums are never merged here.
    """

    def __init__(self) -> None:
        self.terms: list[ScoreTerm] = []
        self.positive = 0.0
        self.negative = 0.0

    def add(self, label: str, count: float, weight: float) -> None:
        incr = count * weight
        self.terms.append(
            ScoreTerm(
                label=label,
                expression=f"{count:.3f} * {weight:.3f}",
                contribution=incr,
            )
        )
        if weight < 0:
            self.negative += incr
        else:
            self.positive += incr

    def result(self) -> tuple[tuple[ScoreTerm, ...], float, float]:
        return tuple(self.terms), self.positive, self.negative


def _label(name: str, exponent: float) -> str:
    return name if exponent == 1.0 else f"{name} ^ {exponent}"


def _ceil_pct(share: float) -> int:
    # round first so float noise like 30.000000000000004 doesn't bump the ceiling
    return math.ceil(round(share * 100.0, 9))


class Scorer:
    """Calculates crate and repository scores from fetched records.

    Each term is ``metric ^ exponent * weight``. Exponents and weights are
    fixed. Positive and negative contributions are summed separately.
    """

    # (metric, exponent, weight)
    PACKAGE_TERMS = (
        # +ve
        ("has_description", 1.0, 5.0),
        ("has_license", 1.0, 5.0),
        ("has_documentation", 1.0, 15.0),
        ("activity_span_months", 0.5, 6.0),
        ("releases", 1.0, 0.5),
        ("non_yanked_releases", 1.0, 0.5),
        ("stable_releases", 1.0, 0.5),
        ("recent_downloads", 0.5, 0.1),
        ("dependant_count", 1.0, 0.5),
        ("hard_dependant_count", 1.0, 0.75),
        ("dependants_on_current_versions", 1.0, 0.75),
        ("dependants_from_non_owners", 1.0, 2.5),
        # -ve
        ("months_since_last_release", 1.5, -2.0),
        ("degenerate", 1.0, -5000.0),
    )

    REPOSITORY_TERMS = (
        # +ve
        ("subscribers", 0.5, 8.0),
        ("contributors", 1.0, 3.0),
        ("contributions", 0.5, 2.0),
        ("secondary_contribution_pct", 1.0, 2.5),
        ("tertiary_contribution_pct", 1.0, 5.0),
        ("push_span_months", 0.5, 5.0),
        ("merged_pull_requests", 1.0, 2.5),
        # -ve
        ("months_since_last_pr_merged", 1.5, -1.0),
        ("months_since_last_issue_closed", 1.5, -1.0),
        ("months_since_last_push", 1.5, -4.0),
    )

    CONTRIBUTION_PCT_TERMS = frozenset({"secondary_contribution_pct", "tertiary_contribution_pct"})

    def score_package(self, record: PackageRecord, now: datetime | None = None) -> ScoredPackage:
        """Derive metrics from a package record and score them.

        Args:
            record: Aggregated registry data.
            now: Reference time for ages. Defaults to the current time.
        """
        metrics = package_metrics(record, now)
        table, positive, negative = self.package_score_table(metrics)
        return ScoredPackage(
            record=record,
            metrics=metrics,
            table=table,
            positive=positive,
            negative=negative,
        )

    def score_repository(self, record: RepositoryRecord, now: datetime | None = None) -> ScoredRepository:
        """Derive metrics from a repository record and score them."""
        metrics = repository_metrics(record, now)
        table, positive, negative = self.repository_score_table(metrics)
        return ScoredRepository(
            record=record,
            metrics=metrics,
            table=table,
            positive=positive,
            negative=negative,
        )

    def package_score_table(self, metrics: PackageMetrics) -> tuple[tuple[ScoreTerm, ...], float, float]:
        sheet = ScoreSheet()
        for name, exponent, weight in self.PACKAGE_TERMS:
            count = float(getattr(metrics, name)) ** exponent
            sheet.add(_label(name, exponent), count, weight)
        return sheet.result()

    def repository_score_table(self, metrics: RepositoryMetrics) -> tuple[tuple[ScoreTerm, ...], float, float]:
        sheet = ScoreSheet()
        with_pct = metrics.contributions >= CONTRIBUTION_PCT_THRESHOLD
        for name, exponent, weight in self.REPOSITORY_TERMS:
            if name in self.CONTRIBUTION_PCT_TERMS and not with_pct:
                continue
            count = float(getattr(metrics, name)) ** exponent
            sheet.add(_label(name, exponent), count, weight)
        return sheet.result()


def package_metrics(record: PackageRecord, now: datetime | None = None) -> PackageMetrics:
    """Compute the package score inputs."""
    now = now or utc_now()
    info = record.info
    non_yanked = record.non_yanked_releases

    recent_downloads = float(sum(r.downloads for r in non_yanked[:2]))

    if non_yanked:
        months_since_last_release = age_in_months(non_yanked[0].created_at, now)
    else:
        months_since_last_release = age_in_months(info.created_at, now)

    # Reverse dependencies
    dependants = record.dependants
    current_versions = record.current_versions(now)
    hard_dependants = sum(1 for d in dependants if d.hard)
    on_current = sum(
        1 for d in dependants if any(requirement_matches(d.req, ver) for ver in current_versions)
    )
    by_owners = sum(1 for d in dependants if d.name in record.owner_crates)

    return PackageMetrics(
        has_description=int(info.description is not None),
        has_documentation=int(info.documentation is not None),
        has_license=int(record.license is not None),
        activity_span_months=span_in_months(info.created_at, info.updated_at),
        releases=len(record.releases),
        non_yanked_releases=len(non_yanked),
        stable_releases=len(record.stable_releases),
        recent_downloads=recent_downloads,
        dependant_count=len(dependants),
        hard_dependant_count=hard_dependants,
        dependants_on_current_versions=on_current,
        dependants_from_non_owners=len(dependants) - by_owners,
        months_since_last_release=months_since_last_release,
        degenerate=int(record.degenerate),
    )


def repository_metrics(record: RepositoryRecord, now: datetime | None = None) -> RepositoryMetrics:
    """Compute the repository score inputs.

    Expects a non-empty contributor list (the fetcher refuses empty ones).
    """
    now = now or utc_now()
    general = record.general
    contributors = record.contributors

    contributions = sum(c.contributions for c in contributors)
    if contributions > 0:
        top_share = contributors[0].contributions / contributions
        second_share = contributors[1].contributions / contributions if len(contributors) > 1 else 0.0
    else:
        top_share, second_share = 1.0, 0.0

    last_merged = record.last_merged_at
    last_closed = record.last_closed_at

    return RepositoryMetrics(
        subscribers=general.subscribers_count,
        contributors=len(contributors),
        contributions=contributions,
        secondary_contribution_pct=_ceil_pct(1.0 - top_share),
        tertiary_contribution_pct=_ceil_pct(1.0 - top_share - second_share),
        push_span_months=span_in_months(general.created_at, general.last_push),
        merged_pull_requests=len(record.merged_pull_requests),
        months_since_last_pr_merged=age_in_months(last_merged or general.created_at, now),
        months_since_last_issue_closed=age_in_months(last_closed or general.created_at, now),
        months_since_last_push=age_in_months(general.last_push, now),
    )
