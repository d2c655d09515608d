"""Shared fixtures: a routed httpx mock transport and JSON payload builders."""

import asyncio
import json
from datetime import datetime, timezone

import httpx
import pytest

from cratescore.adapters.base import build_client, set_client

NOW = datetime(2024, 6, 1, tzinfo=timezone.utc)

CRATES_API = "https://crates.io/api/v1"
GITHUB_API = "https://api.github.com"


class Router:
    """Routes mocked requests by exact URL and records every request made.

    ``in_flight`` and ``peak`` count requests being answered at the same time.
    Setting ``delay`` slows every response down so overlapping requests show up
    in ``peak``.
    """

    def __init__(self) -> None:
        self.routes: dict[str, object] = {}
        self.requests: list[httpx.Request] = []
        self.delay = 0.0
        self.in_flight = 0
        self.peak = 0

    def add(
        self,
        url: str,
        body=None,
        status: int = 200,
        delay: float | None = None,
        raw: bytes | None = None,
        headers: dict | None = None,
    ) -> None:
        self.routes[str(httpx.URL(url))] = (status, body, delay, raw, headers)

    def add_error(self, url: str, exc: Exception) -> None:
        self.routes[str(httpx.URL(url))] = exc

    def requested(self, url: str) -> int:
        key = str(httpx.URL(url))
        return sum(1 for r in self.requests if str(r.url) == key)

    async def handle(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        self.in_flight += 1
        self.peak = max(self.peak, self.in_flight)
        try:
            return await self._respond(request)
        finally:
            self.in_flight -= 1

    async def _respond(self, request: httpx.Request) -> httpx.Response:
        route = self.routes.get(str(request.url))
        if isinstance(route, Exception):
            raise route
        delay = self.delay if route is None or route[2] is None else route[2]
        if delay:
            await asyncio.sleep(delay)
        if route is None:
            return httpx.Response(404, json={"errors": [{"detail": "Not Found"}]})
        status, body, _, raw, headers = route
        if raw is not None:
            return httpx.Response(status, content=raw, headers=headers)
        return httpx.Response(status, content=json.dumps(body).encode(), headers=headers)


@pytest.fixture
def router():
    """Install a mock-transport client as the shared HTTP client."""
    router = Router()
    set_client(build_client(httpx.MockTransport(router.handle)))
    yield router
    set_client(None)


# --- Payload builders ---


def version_json(num, created_at, downloads=100, yanked=False, license="MIT"):
    return {
        "num": num,
        "created_at": created_at,
        "downloads": downloads,
        "yanked": yanked,
        "license": license,
    }


def crate_general_json(
    name="demo",
    created_at="2020-01-01T00:00:00.000000+00:00",
    updated_at="2024-05-01T00:00:00.000000+00:00",
    max_version="1.0.0",
    description="A demo crate",
    repository="https://github.com/owner/demo",
    documentation="https://docs.rs/demo",
):
    return {
        "id": name,
        "name": name,
        "created_at": created_at,
        "updated_at": updated_at,
        "max_version": max_version,
        "description": description,
        "repository": repository,
        "documentation": documentation,
    }


def crate_json(versions=None, **general):
    return {"crate": crate_general_json(**general), "versions": versions or []}


def reverse_deps_json(entries, total=None):
    """``entries`` are (dependant name, default_features, optional, req) tuples."""
    return {
        "dependencies": [
            {"crate_id": "demo", "default_features": df, "optional": opt, "req": req, "version_id": i}
            for i, (_, df, opt, req) in enumerate(entries)
        ],
        "versions": [{"id": i, "crate": name, "num": "0.1.0"} for i, (name, *_) in enumerate(entries)],
        "meta": {"total": len(entries) if total is None else total},
    }


def search_json(names, total=None):
    return {
        "crates": [crate_general_json(name=n) for n in names],
        "meta": {"total": len(names) if total is None else total},
    }


def repo_json(subscribers=16, created_at="2020-01-01T00:00:00Z", pushed_at="2024-05-01T00:00:00Z"):
    return {
        "full_name": "owner/demo",
        "subscribers_count": subscribers,
        "created_at": created_at,
        "pushed_at": pushed_at,
    }


def route_crate(router, name, crate, owners=(), dependants=()):
    """Register every registry endpoint the package aggregator hits."""
    router.add(f"{CRATES_API}/crates/{name}", crate)
    router.add(f"{CRATES_API}/crates/{name}/owners", {"users": [{"id": uid, "login": f"u{uid}"} for uid in owners]})
    router.add(
        f"{CRATES_API}/crates/{name}/reverse_dependencies?per_page=100",
        reverse_deps_json(list(dependants)),
    )


def route_repo(router, repo_id, token, repo, issues=(), pulls=(), contributors=()):
    """Register every GitHub endpoint the repository aggregator hits."""
    base = f"{GITHUB_API}/repos/{repo_id}"
    router.add(f"{base}?access_token={token}", repo)
    router.add(f"{base}/issues?state=closed&sort=updated&per_page=100&access_token={token}", list(issues))
    router.add(f"{base}/pulls?state=all&per_page=100&access_token={token}", list(pulls))
    router.add(f"{base}/contributors?per_page=100&access_token={token}", list(contributors))
