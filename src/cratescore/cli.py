"""CLI entry point for cratescore."""

import asyncio
import logging
import os

# Load .env file if it exists
from dotenv import load_dotenv
load_dotenv()

import typer
from rich.console import Console
from rich.logging import RichHandler
from rich.progress import Progress, SpinnerColumn, TextColumn
from rich.table import Table
from rich.text import Text

from cratescore.adapters.base import ScoreError, close_client
from cratescore.analyzers.pipeline import (
    DEFAULT_CONCURRENCY,
    BatchOutcome,
    EntityScores,
    ScoringPipeline,
    rank,
)
from cratescore.models.schemas import ScoredPackage, ScoreMode, ScoreTerm

app = typer.Typer(help="Rank crates by registry and repository health scores.")

console = Console()

TOKEN_ENV_VAR = "CRATESCORE_GH_TOKEN"
LIMIT_LOW = 2
LIMIT_HIGH = 50

NO_TOKEN_HINT = (
    "Accessing GitHub's API without hitting rate limits requires an access token.\n\n"
    "Pass one with -g/--gh-token, or set CRATESCORE_GH_TOKEN in the environment.\n"
    "To acquire a token, visit: https://github.com/settings/tokens/new\n\n"
    "Alternatively, pass -o/--crate-only to skip repository scores."
)


@app.callback()
def main(
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Log every request"),
) -> None:
    """Rank crates by registry and repository health scores."""
    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.WARNING,
        format="%(message)s",
        handlers=[RichHandler(console=Console(stderr=True), show_path=False)],
    )


def _resolve_token(gh_token: str | None, needs_repo: bool) -> str | None:
    """Token from the option or the environment; exit if one is required but missing."""
    token = gh_token or os.environ.get(TOKEN_ENV_VAR)
    if needs_repo and not token:
        console.print(f"[yellow]{NO_TOKEN_HINT}[/yellow]")
        raise typer.Exit(1)
    return token


def _mode(crate_only: bool, repo_only: bool) -> ScoreMode:
    if crate_only and repo_only:
        console.print("[red]--crate-only and --repo-only are mutually exclusive[/red]")
        raise typer.Exit(1)
    if crate_only:
        return ScoreMode.PACKAGE_ONLY
    if repo_only:
        return ScoreMode.REPO_ONLY
    return ScoreMode.PACKAGE_AND_REPO


# --- Rendering ---


def score_overview(label: str, positive: float, negative: float) -> Text:
    text = Text()
    text.append(f"{label}: ", style="bold cyan")
    text.append(f"{positive + negative:.3f}", style="bold yellow")
    text.append(" (")
    text.append(f"+{positive:.3f}", style="bold green")
    text.append(" / ")
    text.append(f"{negative:.3f}", style="bold red")
    text.append(")")
    return text


def score_details(title: str, terms: tuple[ScoreTerm, ...]) -> Table:
    table = Table(title=title, title_style="bold cyan")
    table.add_column("Term", style="bold yellow")
    table.add_column("Count * Weight", justify="center")
    table.add_column("Contribution", justify="right")

    for term in terms:
        if term.is_negative:
            table.add_row(term.label, f"[red]{term.expression}[/red]", f"[red]{term.contribution:.3f}[/red]")
        else:
            table.add_row(term.label, f"[green]{term.expression}[/green]", f"[green]+{term.contribution:.3f}[/green]")

    return table


def _release(version: str | None, age: float | None) -> str:
    if version is None:
        return "N/A"
    if age is None:
        return version
    return f"{version} ({age:.1f} months old)"


def package_info(scored: ScoredPackage) -> Table:
    record = scored.record
    metrics = scored.metrics

    yanked = metrics.releases - metrics.non_yanked_releases
    pre = metrics.non_yanked_releases - metrics.stable_releases
    last_stable = record.last_stable_version

    table = Table(show_header=False, box=None)
    table.add_column("Key", style="bold cyan")
    table.add_column("Value", style="bold")

    table.add_row("Releases", f"{metrics.stable_releases} stable, {pre} pre-release, {yanked} yanked")
    table.add_row("Max Version", _release(record.max_version, record.version_age(record.max_version)))
    table.add_row("Last Stable", _release(last_stable, record.version_age(last_stable)))
    table.add_row(
        "Dependants",
        f"{metrics.dependant_count} ({metrics.dependants_from_non_owners} from non owners)",
    )
    table.add_row("License", record.license or "N/A")
    table.add_row("Repository", record.info.repository or "N/A")
    table.add_row("Description", " ".join((record.info.description or "N/A").split()))
    return table


def print_overview(id: str, scores: EntityScores) -> None:
    header = Text(id, style="bold blue")
    if scores.package is not None and scores.package.record.degenerate:
        header.append("  empty or all releases yanked", style="bold red")
    console.print(header)

    if scores.package is not None:
        console.print(score_overview("Crate Score", scores.package.positive, scores.package.negative))
    if scores.repository is not None:
        console.print(score_overview("Repo Score ", scores.repository.positive, scores.repository.negative))
    elif scores.repository_error is not None:
        console.print(Text("Repo Score : ", style="bold red") + Text("Error", style="bold"))
    elif scores.mode == ScoreMode.PACKAGE_ONLY and scores.package is not None:
        console.print(Text("Repo Score : ", style="bold cyan") + Text("N/A", style="bold"))

    if scores.package is not None:
        console.print(package_info(scores.package))


def print_detailed(id: str, scores: EntityScores) -> None:
    print_overview(id, scores)
    console.print()
    if scores.package is not None:
        console.print(score_details("Crate Score Details", scores.package.table))
    if scores.repository is not None:
        console.print(score_details("Repo Score Details", scores.repository.table))
    if scores.repository_error is not None:
        console.print(f"[red]Repository score failed: {scores.repository_error}[/red]")


def print_ranking(outcomes: list[BatchOutcome], sort_positive: bool, limit: int) -> None:
    for entry in rank(outcomes, sort_positive, limit):
        outcome = entry.outcome
        console.print(Text(f"({entry.rank}) ", style="bold blue"), end="")
        if outcome.ok and outcome.scores is not None:
            print_overview(outcome.id, outcome.scores)
        else:
            console.print(f"[bold red]{outcome.id}: Failed to get score info: {outcome.error}.[/bold red]")
        console.print()


# --- Commands ---


@app.command()
def score(
    crate: str = typer.Argument(..., help="Crate name to score"),
    crate_only: bool = typer.Option(False, "--crate-only", "-o", help="Skip the repository score"),
    repo_only: bool = typer.Option(False, "--repo-only", "-r", help="Only score the crate's repository"),
    gh_token: str | None = typer.Option(None, "--gh-token", "-g", help="GitHub access token"),
) -> None:
    """Score a single crate and show the score details."""
    mode = _mode(crate_only, repo_only)
    token = _resolve_token(gh_token, needs_repo=mode != ScoreMode.PACKAGE_ONLY)
    asyncio.run(_score(crate, mode, token))


async def _score(crate: str, mode: ScoreMode, token: str | None) -> None:
    """Async implementation of score."""
    pipeline = ScoringPipeline(github_token=token)
    try:
        with Progress(
            SpinnerColumn(),
            TextColumn("[progress.description]{task.description}"),
            console=console,
            transient=True,
        ) as progress:
            progress.add_task(f"Scoring {crate}...", total=None)
            scores = await pipeline.score(crate, mode)
    except ScoreError as e:
        console.print(f"[red]Failed to get scores for crate \"{crate}\": {e}[/red]")
        raise typer.Exit(1)
    finally:
        await close_client()

    print_detailed(crate, scores)


@app.command()
def repo(
    repository: str = typer.Argument(..., help="GitHub repository as owner/repo or URL"),
    gh_token: str | None = typer.Option(None, "--gh-token", "-g", help="GitHub access token"),
) -> None:
    """Score a GitHub repository directly."""
    token = _resolve_token(gh_token, needs_repo=True)
    asyncio.run(_repo(repository, token))


async def _repo(repository: str, token: str | None) -> None:
    """Async implementation of repo."""
    pipeline = ScoringPipeline(github_token=token)
    try:
        scored = await pipeline.score_repository(repository)
    except ScoreError as e:
        console.print(f"[red]Failed to get scores for repository \"{repository}\": {e}[/red]")
        raise typer.Exit(1)
    finally:
        await close_client()

    console.print(Text(scored.record.id, style="bold blue"))
    console.print(score_overview("Repo Score ", scored.positive, scored.negative))
    console.print()
    console.print(score_details("Repo Score Details", scored.table))


@app.command()
def search(
    terms: list[str] = typer.Argument(..., help="Search terms"),
    results_limit: int = typer.Option(10, "--results-limit", "-l", min=LIMIT_LOW, max=LIMIT_HIGH, help="Results to show"),
    search_limit: int = typer.Option(30, "--search-limit", "-s", min=LIMIT_LOW, max=LIMIT_HIGH, help="Crates to score"),
    sort_positive: bool = typer.Option(False, "--sort-positive", "-p", help="Sort by positive scores only"),
    concurrency: int = typer.Option(DEFAULT_CONCURRENCY, "--concurrency", "-j", min=1, help="Crates scored at once"),
    crate_only: bool = typer.Option(False, "--crate-only", "-o", help="Skip repository scores"),
    gh_token: str | None = typer.Option(None, "--gh-token", "-g", help="GitHub access token"),
) -> None:
    """Search crates.io and rank the results by score."""
    mode = ScoreMode.PACKAGE_ONLY if crate_only else ScoreMode.PACKAGE_AND_REPO
    token = _resolve_token(gh_token, needs_repo=not crate_only)
    query = " ".join(terms)
    asyncio.run(_search(query, mode, token, results_limit, search_limit, sort_positive, concurrency))


async def _search(
    query: str,
    mode: ScoreMode,
    token: str | None,
    results_limit: int,
    search_limit: int,
    sort_positive: bool,
    concurrency: int,
) -> None:
    """Async implementation of search."""
    pipeline = ScoringPipeline(github_token=token)
    try:
        with Progress(
            SpinnerColumn(),
            TextColumn("[progress.description]{task.description}"),
            console=console,
            transient=True,
        ) as progress:
            progress.add_task(f"Searching and scoring \"{query}\"...", total=None)
            outcomes = await pipeline.search(query, search_limit, mode, concurrency)
    except ScoreError as e:
        console.print(f"[red]Search for \"{query}\" failed: {e}[/red]")
        raise typer.Exit(1)
    finally:
        await close_client()

    if not outcomes:
        console.print(f"[yellow]Searching for \"{query}\" returned no results.[/yellow]")
        raise typer.Exit(1)

    print_ranking(outcomes, sort_positive, results_limit)


@app.command()
def version() -> None:
    """Show version information."""
    from cratescore import __version__

    console.print(f"cratescore v{__version__}")


if __name__ == "__main__":
    app()
