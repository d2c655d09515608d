"""crates.io registry adapter."""

from __future__ import annotations

import asyncio
import logging
import operator
import re
from dataclasses import dataclass
from typing import ClassVar
from urllib.parse import quote_plus

import semantic_version
from pydantic import BaseModel, Field

from cratescore.adapters.base import (
    PAGE_SIZE_CAP,
    Fetchable,
    Paginated,
    add_query_param,
    collect_all,
    parse_github_repo,
)
from cratescore.models.schemas import (
    CrateGeneralInfo,
    DependantRecord,
    OwnerInfo,
    PackageRecord,
    PageMeta,
    ReleaseInfo,
)

logger = logging.getLogger(__name__)

API_URL = "https://crates.io/api/v1"


# --- Fetch targets ---


class CrateInfo(Fetchable, BaseModel):
    """Crate self-info: general info plus the full release list."""

    URL_TEMPLATE: ClassVar[str] = f"{API_URL}/crates/:id"

    crate: CrateGeneralInfo
    versions: list[ReleaseInfo] = Field(default_factory=list)


class CrateOwners(Fetchable, BaseModel):
    URL_TEMPLATE: ClassVar[str] = f"{API_URL}/crates/:id/owners"

    users: list[OwnerInfo] = Field(default_factory=list)


class ReverseDependency(BaseModel):
    crate_id: str  # the depended-upon crate
    default_features: bool = True
    optional: bool = False
    req: str
    version_id: int | None = None


class DependantVersion(BaseModel):
    """The dependant crate's version that declares a reverse dependency."""

    crate: str
    num: str | None = None


class ReverseDependencies(Paginated, BaseModel):
    """Reverse dependencies of a crate.

    ``dependencies`` and ``versions`` are index aligned: the i-th version
    entry names the crate that declares the i-th dependency.
    """

    URL_TEMPLATE: ClassVar[str] = f"{API_URL}/crates/:id/reverse_dependencies?per_page={PAGE_SIZE_CAP}"
    INNER_FIELDS: ClassVar[tuple[str, ...]] = ("dependencies", "versions")

    dependencies: list[ReverseDependency] | None = None
    versions: list[DependantVersion] | None = None
    meta: PageMeta

    def dependants(self) -> list[DependantRecord]:
        return [
            DependantRecord(
                name=version.crate,
                hard=dep.default_features and not dep.optional,
                req=dep.req,
            )
            for dep, version in zip(self.dependencies or [], self.versions or [])
        ]


class CrateSearch(Paginated, BaseModel):
    """Search results. The id is the raw query string (e.g. ``user_id=42``)."""

    URL_TEMPLATE: ClassVar[str] = f"{API_URL}/crates?per_page={PAGE_SIZE_CAP}&:id"
    INNER_FIELDS: ClassVar[tuple[str, ...]] = ("crates",)

    crates: list[CrateGeneralInfo] = Field(default_factory=list)
    meta: PageMeta

    def names(self) -> list[str]:
        return [c.id for c in self.crates]


# --- Version requirements ---

_CLAUSE_RE = re.compile(r"^(<=|>=|<|>|\^|~|=)?\s*(\S+)$")
_PARTIAL_RE = re.compile(
    r"^(?P<major>\d+|[*xX])(?:\.(?P<minor>\d+|[*xX]))?(?:\.(?P<patch>\d+|[*xX]))?"
    r"(?:-(?P<pre>[0-9A-Za-z.-]+))?(?:\+[0-9A-Za-z.-]+)?$"
)

_COMPARE = {
    "==": operator.eq,
    ">": operator.gt,
    ">=": operator.ge,
    "<": operator.lt,
    "<=": operator.le,
}


def _version(major: int, minor: int | None = 0, patch: int | None = 0, pre: str = "") -> semantic_version.Version:
    text = f"{major}.{minor or 0}.{patch or 0}"
    return semantic_version.Version(f"{text}-{pre}" if pre else text)


@dataclass(frozen=True)
class Comparator:
    """One clause of a Cargo requirement, expanded to explicit bounds.

    The partial version as written is kept because it decides which
    pre-releases the clause lets through.
    """

    major: int | None
    minor: int | None
    patch: int | None
    pre: str
    bounds: tuple[tuple[str, semantic_version.Version], ...]

    def matches(self, version: semantic_version.Version) -> bool:
        return all(_COMPARE[op](version, bound) for op, bound in self.bounds)

    def allows_prerelease(self, version: semantic_version.Version) -> bool:
        """A pre-release only matches a clause naming a pre-release of the same release."""
        same_release = (self.major, self.minor, self.patch) == (version.major, version.minor, version.patch)
        return bool(self.pre) and same_release


def _component(value: str | None) -> int | None:
    return int(value) if value is not None and value.isdigit() else None


def parse_comparator(clause: str) -> Comparator:
    """Parse one Cargo requirement clause such as ``^1.2``, ``~0.3``, ``>=1.0.0-rc.1`` or ``1.*``.

    A bare version is a caret requirement. A bare wildcard, or an ``=`` with a
    partial version, matches every release of that major (or minor).

    Raises:
        ValueError: If the clause isn't valid Cargo syntax.
    """
    match = _CLAUSE_RE.match(clause)
    if not match:
        raise ValueError(f"Invalid requirement clause: {clause!r}")
    op, text = match.groups()
    parts = _PARTIAL_RE.match(text)
    if not parts:
        raise ValueError(f"Invalid version in requirement: {text!r}")

    raw = parts.group("major", "minor", "patch")
    major, minor, patch = (_component(value) for value in raw)
    pre = parts.group("pre") or ""
    wildcard = any(value is not None and not value.isdigit() for value in raw)

    if (minor is None and patch is not None) or (pre and patch is None):
        raise ValueError(f"Invalid version in requirement: {text!r}")
    if wildcard and op not in (None, "="):
        raise ValueError(f"Wildcard not allowed after {op!r}: {clause!r}")
    if major is None:
        return Comparator(None, None, None, "", ())

    if op is None:
        op = "=" if wildcard else "^"

    lower = _version(major, minor, patch, pre)
    if minor is None:
        next_partial = _version(major + 1)
    else:
        next_partial = _version(major, minor + 1)

    if op == "=":
        bounds = (("==", lower),) if patch is not None else ((">=", lower), ("<", next_partial))
    elif op == "^":
        if major > 0 or minor is None:
            upper = _version(major + 1)
        elif minor > 0 or patch is None:
            upper = _version(0, minor + 1)
        else:
            upper = _version(0, 0, patch + 1)
        bounds = ((">=", lower), ("<", upper))
    elif op == "~":
        bounds = ((">=", lower), ("<", next_partial))
    elif op == ">":
        bounds = ((">", lower),) if patch is not None else ((">=", next_partial),)
    elif op == ">=":
        bounds = ((">=", lower),)
    elif op == "<":
        bounds = (("<", lower),)
    else:  # <=
        bounds = (("<=", lower),) if patch is not None else (("<", next_partial),)

    return Comparator(major, minor, patch, pre, bounds)


def parse_requirement(req: str) -> list[Comparator]:
    """Parse a comma separated Cargo requirement. An empty one matches any release."""
    return [parse_comparator(clause.strip()) for clause in req.split(",") if clause.strip()]


def requirement_matches(req: str, version: str) -> bool:
    """Whether ``version`` satisfies the Cargo requirement ``req``.

    Every clause must hold. A pre-release version additionally needs a clause
    that names a pre-release of the same ``major.minor.patch``, so ``^1.0``
    never picks up ``1.1.0-alpha.1``. Unparsable requirements or versions
    never match.
    """
    try:
        comparators = parse_requirement(req)
        target = semantic_version.Version(version)
    except ValueError:
        return False

    if not all(comparator.matches(target) for comparator in comparators):
        return False
    if not target.prerelease:
        return True
    return any(comparator.allows_prerelease(target) for comparator in comparators)


# --- Adapter ---


class CratesAdapter:
    """Adapter for the crates.io registry.

    Data sources:
    - Crate info and releases: /crates/{name}
    - Owners: /crates/{name}/owners
    - Reverse dependencies: /crates/{name}/reverse_dependencies (paginated)
    - Crates by owner, search: /crates?user_id={id} / /crates?q={query} (paginated)
    """

    async def get_package_record(self, name: str) -> PackageRecord:
        """Fetch and assemble everything the package score needs.

        Self-info, owners and reverse dependencies are fetched concurrently,
        then every owner's crate list is collected concurrently. Any failure
        fails the whole record.

        Raises:
            ScoreError: Any fetch, decode or pagination error, unchanged.
        """
        info, owners, reverse_deps = await asyncio.gather(
            CrateInfo.from_id(name),
            CrateOwners.from_id(name),
            collect_all(ReverseDependencies, ReverseDependencies.url_from_id(name)),
        )

        owner_ids = [user.id for user in owners.users]
        owner_crates = await self.get_owner_crates(owner_ids)

        return PackageRecord(
            info=info.crate,
            releases=info.versions,
            owner_ids=owner_ids,
            dependants=reverse_deps.dependants(),
            owner_crates=owner_crates,
        )

    async def get_owner_crates(self, owner_ids: list[int]) -> frozenset[str]:
        """Names of all crates owned by any of ``owner_ids``."""
        searches = await asyncio.gather(
            *(collect_all(CrateSearch, CrateSearch.url_from_id(f"user_id={uid}")) for uid in owner_ids)
        )
        return frozenset(name for search in searches for name in search.names())

    async def search(self, query: str, limit: int) -> list[str]:
        """Return up to ``limit`` crate names matching ``query``, in registry order.

        Only one page is fetched, so the reported total isn't checked.
        """
        terms = "+".join(quote_plus(word) for word in query.split())
        url = add_query_param(f"{API_URL}/crates?per_page={limit}", "q", terms)
        search = await collect_all(CrateSearch, url, page_size_cap=limit, multi_page=False)
        logger.debug(f"Search '{query}' returned {len(search.crates)} of {search.get_total()} crates")
        return search.names()

    def get_source_repo(self, record: PackageRecord) -> str | None:
        """GitHub ``owner/repo`` id from the crate's repository URL."""
        return parse_github_repo(record.info.repository)
