"""Fetching typed records from REST endpoints.

A fetch target is a pydantic model that also knows how to build its URL from
an identifier. Paginated targets additionally expose their inner collections
and the total count reported in their metadata, so that every page of a
collection can be retrieved concurrently and checked against that total.
"""

from __future__ import annotations

import asyncio
import logging
import math
import re
import threading
from typing import ClassVar, TypeVar

import httpx
from pydantic import ValidationError

from cratescore import __version__

logger = logging.getLogger(__name__)

# per_page=100 is the maximum allowed by both registry and GitHub APIs
PAGE_SIZE_CAP = 100

USER_AGENT = f"cratescore/{__version__}"

T = TypeVar("T", bound="Fetchable")
P = TypeVar("P", bound="Paginated")


# --- Errors ---


class ScoreError(Exception):
    """Base class for all fetch, aggregation and scoring errors."""


class TransportError(ScoreError):
    """Connection, TLS, timeout or redirect failure."""

    def __init__(self, url: str, reason: str) -> None:
        self.url = url
        super().__init__(f"Request to '{url}' failed: {reason}")


class HttpStatusError(ScoreError):
    """Non-2xx HTTP response."""

    def __init__(self, url: str, status_code: int) -> None:
        self.url = url
        self.status_code = status_code
        super().__init__(f"GET '{url}' returned HTTP {status_code}")


class DecodeError(ScoreError):
    """Malformed JSON, or JSON that does not match the expected shape."""

    def __init__(self, url: str | None, reason: str) -> None:
        self.url = url
        where = f" from '{url}'" if url else ""
        super().__init__(f"Failed to decode response{where}: {reason}")


class PaginationConsistencyError(ScoreError):
    """Collected items don't add up to the reported total."""


class MissingDataError(ScoreError):
    """Data needed for scoring is absent."""


# --- Shared HTTP client ---

_client: httpx.AsyncClient | None = None
_client_lock = threading.Lock()


def build_client(transport: httpx.AsyncBaseTransport | None = None) -> httpx.AsyncClient:
    """Build a client with the user agent, redirect policy and pool limits used for every fetch."""
    return httpx.AsyncClient(
        transport=transport,
        timeout=30.0,
        headers={"User-Agent": USER_AGENT},
        follow_redirects=True,
        max_redirects=5,
        limits=httpx.Limits(max_connections=32),
    )


def get_client() -> httpx.AsyncClient:
    """Get the process-wide HTTP client, creating it on first use."""
    global _client
    with _client_lock:
        if _client is None:
            _client = build_client()
        return _client


def set_client(client: httpx.AsyncClient | None) -> None:
    """Install a caller-built client (or drop the current one with None)."""
    global _client
    with _client_lock:
        _client = client


async def close_client() -> None:
    """Close and forget the shared client."""
    global _client
    with _client_lock:
        client, _client = _client, None
    if client is not None:
        await client.aclose()


# --- URL helpers ---


def add_query_param(url: str, name: str, value: object) -> str:
    """Append ``name=value`` to a URL that may already carry a query string."""
    separator = "&" if "?" in url else "?"
    return f"{url}{separator}{name}={value}"


def fill_id(template: str, id: str) -> str:
    return template.replace(":id", id)


_GITHUB_REPO_RE = re.compile(r".*github\.com[/:]+([^/\s]+)/([^/\s]+?)(?:\.git|/|$)")
_REPO_ID_RE = re.compile(r"^[\w.-]+/[\w.-]+$")


def parse_github_repo(url: str | None) -> str | None:
    """Extract an ``owner/repo`` id from a free-text GitHub URL.

    Handles https, ssh (``git@github.com:owner/repo.git``) and git URLs, with
    or without a ``.git`` suffix or trailing path.

    Returns:
        The repository id, or None if the URL doesn't point at a GitHub repo.
    """
    if not url:
        return None
    match = _GITHUB_REPO_RE.match(url.strip())
    if not match:
        return None
    owner, repo = match.groups()
    return f"{owner}/{repo}"


def normalize_repo_id(value: str) -> str | None:
    """Accept either an ``owner/repo`` id or a GitHub URL."""
    value = value.strip()
    if _REPO_ID_RE.match(value) and "github.com" not in value:
        return value
    return parse_github_repo(value)


# --- Resource fetcher ---


async def fetch_bytes(url: str) -> bytes:
    """Perform exactly one GET and return the response body.

    Raises:
        TransportError: On connection, TLS, timeout or redirect failures.
        HttpStatusError: On non-2xx responses.
    """
    client = get_client()
    logger.debug(f"Getting data from '{url}'")

    try:
        response = await client.get(url)
    except httpx.RequestError as e:
        # transport failures and redirect loops alike
        raise TransportError(url, str(e) or type(e).__name__) from e

    if not response.is_success:
        raise HttpStatusError(url, response.status_code)

    logger.debug(f"Got data from '{url}' (len={len(response.content)})")
    return response.content


class Fetchable:
    """Mixin for pydantic models that can be fetched by identifier.

    Subclasses set ``URL_TEMPLATE``; ``:id`` is replaced by the identifier.
    """

    URL_TEMPLATE: ClassVar[str] = ":id"

    @classmethod
    def url_from_id(cls, id: str) -> str:
        return fill_id(cls.URL_TEMPLATE, id)

    @classmethod
    def url_from_id_and_token(cls, id: str, token: str) -> str:
        return add_query_param(cls.url_from_id(id), "access_token", token)

    @classmethod
    def from_bytes(cls: type[T], data: bytes, url: str | None = None) -> T:
        try:
            return cls.model_validate_json(data)  # type: ignore[attr-defined]
        except ValidationError as e:
            raise DecodeError(url, str(e)) from e

    @classmethod
    async def from_url(cls: type[T], url: str) -> T:
        data = await fetch_bytes(url)
        return cls.from_bytes(data, url)

    @classmethod
    async def from_id(cls: type[T], id: str) -> T:
        return await cls.from_url(cls.url_from_id(id))

    @classmethod
    async def from_id_with_token(cls: type[T], id: str, token: str) -> T:
        return await cls.from_url(cls.url_from_id_and_token(id, token))


class Paginated(Fetchable):
    """Mixin for fetch targets whose payload is split over pages.

    ``INNER_FIELDS`` names the list fields holding the collection. When more
    than one is named they are parallel collections that must stay index
    aligned; the first one is counted against the reported total.
    """

    INNER_FIELDS: ClassVar[tuple[str, ...]] = ()

    def get_total(self) -> int:
        return self.meta.total  # type: ignore[attr-defined]

    def get_inner(self, field: str | None = None) -> list:
        return getattr(self, field or self.INNER_FIELDS[0]) or []

    def check_consistency(self) -> None:
        """Verify that parallel collections are all present and aligned."""
        fields = self.INNER_FIELDS
        if len(fields) < 2:
            return
        present = [getattr(self, f) is not None for f in fields]
        if any(present) and not all(present):
            missing = [f for f, p in zip(fields, present) if not p]
            raise PaginationConsistencyError(
                f"Paired collection is incomplete: missing {', '.join(missing)}"
            )
        lengths = {f: len(self.get_inner(f)) for f in fields}
        if len(set(lengths.values())) > 1:
            raise PaginationConsistencyError(f"Paired collections have diverging lengths: {lengths}")

    def merged_with(self: P, pages: list[P]) -> P:
        """Return a copy of this page with the other pages' items appended, in order."""
        update = {}
        for field in self.INNER_FIELDS:
            items = list(self.get_inner(field))
            for page in pages:
                items.extend(page.get_inner(field))
            update[field] = items
        return self.model_copy(update=update)  # type: ignore[attr-defined]


async def collect_all(
    cls: type[P],
    url: str,
    page_size_cap: int = PAGE_SIZE_CAP,
    multi_page: bool = True,
) -> P:
    """Fetch a paginated collection in full.

    Page 1 is fetched first to read the reported total; the remaining pages
    are then fetched concurrently and appended in page order.

    Args:
        cls: Paginated fetch target type.
        url: URL of the first page (without a ``page`` parameter).
        page_size_cap: Items per page.
        multi_page: If False, only page 1 is fetched and the total isn't
            checked (used for searches limited to one page).

    Raises:
        PaginationConsistencyError: If the collected count differs from the
            reported total, or parallel collections don't line up.
    """
    first = await cls.from_url(url)
    first.check_consistency()
    if not multi_page:
        return first

    total = first.get_total()
    collected = first

    if total > page_size_cap:
        num_pages = math.ceil(total / page_size_cap)
        logger.debug(f"Collecting {num_pages} pages ({total} items) from '{url}'")
        page_urls = [add_query_param(url, "page", page) for page in range(2, num_pages + 1)]
        more_pages = await asyncio.gather(*(cls.from_url(u) for u in page_urls))
        for page in more_pages:
            page.check_consistency()
        collected = first.merged_with(list(more_pages))
        collected.check_consistency()

    retrieved = len(collected.get_inner())
    if retrieved != total:
        raise PaginationConsistencyError(
            f"Reported total ({total}) does not match retrieved count ({retrieved}) for '{url}'"
        )

    return collected
