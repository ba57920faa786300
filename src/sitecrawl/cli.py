"""Command line interface.

Typer application with Rich output: ``crawl`` runs a session, ``validate``
checks a target, ``page`` and ``stats`` read back what a crawl stored.
"""

# ruff: noqa: B008

import asyncio
from pathlib import Path
from typing import Any

import typer
from rich.console import Console
from rich.markup import escape
from rich.table import Table
from rich.traceback import install as install_rich_traceback

from sitecrawl import __version__
from sitecrawl.backends import SQLiteRepository
from sitecrawl.config import AppConfig, CrawlMethod, load_config
from sitecrawl.exceptions import ConfigError, InvalidTargetError, SitecrawlError
from sitecrawl.reporter import ConsoleReporter
from sitecrawl.session import CrawlSession
from sitecrawl.utils import setup_logging
from sitecrawl.validator import InvalidTarget, TargetValidator

install_rich_traceback(show_locals=False)

console = Console()

app = typer.Typer(
    name="sitecrawl",
    help="sitecrawl - polite, SSRF-safe site crawler with content analysis",
    add_completion=False,
)


def version_callback(value: bool) -> None:
    """Print version and exit."""
    if value:
        console.print(f"sitecrawl version {__version__}")
        raise typer.Exit()


@app.callback()
def main(
    version: bool | None = typer.Option(
        None,
        "--version",
        "-V",
        help="Show version and exit",
        callback=version_callback,
        is_eager=True,
    ),
) -> None:
    """sitecrawl - polite, SSRF-safe site crawler with content analysis."""
    pass


def _load_app_config(path: Path | None) -> AppConfig:
    if path is None:
        return AppConfig()
    console.print(f"[cyan]Loading configuration from:[/cyan] {path}")
    return load_config(path)


def _summary_table(summary: dict[str, Any]) -> Table:
    table = Table(title="Crawl Summary")
    table.add_column("Metric", style="cyan")
    table.add_column("Value", style="white", justify="right")

    elapsed = summary["elapsedTime"]
    table.add_row("Pages scanned", str(summary["pagesScanned"]))
    table.add_row("Links found", str(summary["linksFound"]))
    table.add_row("Data", f"{summary['totalData']} KB")
    table.add_row("Media files", str(summary["mediaFiles"]))
    table.add_row("Succeeded", str(summary["successCount"]))
    table.add_row("Failed", str(summary["failureCount"]))
    table.add_row("Skipped (robots)", str(summary["skippedCount"]))
    table.add_row("Success rate", summary["successRate"])
    table.add_row("Pages/second", summary["pagesPerSecond"])
    table.add_row(
        "Elapsed", f"{elapsed['hours']}h {elapsed['minutes']}m {elapsed['seconds']}s"
    )
    return table


async def _run_crawl(app_config: AppConfig, overrides: dict[str, Any], db_path: Path) -> dict[str, Any]:
    options = app_config.crawl_options(**overrides)
    reporter = ConsoleReporter(console)
    async with SQLiteRepository(db_path) as repository:
        session = CrawlSession(options, repository, reporter=reporter, config=app_config)
        try:
            return await session.run()
        finally:
            await session.stop()


@app.command()
def crawl(
    target: str = typer.Argument(..., help="URL or hostname to crawl"),
    depth: int | None = typer.Option(None, "--depth", "-d", help="Link levels to follow (1-5)"),
    max_pages: int | None = typer.Option(None, "--max-pages", "-n", help="Page budget (1-200)"),
    delay: int | None = typer.Option(
        None, "--delay", help="Milliseconds between requests to one domain (200-10000)"
    ),
    concurrency: int | None = typer.Option(
        None, "--concurrency", "-c", help="Concurrent requests (1-10)"
    ),
    retries: int | None = typer.Option(None, "--retries", help="Retries per page (0-5)"),
    method: CrawlMethod | None = typer.Option(
        None, "--method", "-m", help="links, content, media or full"
    ),
    no_dynamic: bool = typer.Option(
        False, "--no-dynamic", help="Fetch over plain HTTP instead of a headless browser"
    ),
    no_robots: bool = typer.Option(False, "--no-robots", help="Ignore robots.txt"),
    content_only: bool = typer.Option(
        False, "--content-only", help="Do not store raw page bodies"
    ),
    db: Path | None = typer.Option(None, "--db", help="SQLite database path"),
    config: Path | None = typer.Option(
        None,
        "--config",
        help="Path to YAML config file",
        exists=True,
        file_okay=True,
        dir_okay=False,
        resolve_path=True,
    ),
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Verbose logging"),
) -> None:
    """Crawl a site and store pages, links and analysis in SQLite."""
    try:
        app_config = _load_app_config(config)
        setup_logging(verbose=verbose or app_config.log_level == "DEBUG")

        overrides: dict[str, Any] = {
            "target": target,
            "crawl_depth": depth,
            "max_pages": max_pages,
            "crawl_delay": delay,
            "max_concurrent_requests": concurrency,
            "retry_limit": retries,
            "crawl_method": method,
            "dynamic": False if no_dynamic else None,
            "respect_robots": False if no_robots else None,
            "content_only": True if content_only else None,
        }
        db_path = db or app_config.storage.db_path

        console.print(f"[green]Starting crawl:[/green] {target}")
        summary = asyncio.run(_run_crawl(app_config, overrides, db_path))
        console.print(_summary_table(summary))

    except ConfigError as e:
        console.print(f"[red]Configuration error:[/red] {e}")
        raise typer.Exit(code=1) from None

    except InvalidTargetError as e:
        console.print(f"[red]Invalid target:[/red] {e.reason}")
        raise typer.Exit(code=2) from None

    except SitecrawlError as e:
        console.print(f"[red]Crawl failed:[/red] {e}")
        if verbose:
            console.print_exception()
        raise typer.Exit(code=1) from None

    except KeyboardInterrupt:
        console.print("\n[yellow]Crawl interrupted by user[/yellow]")
        raise typer.Exit(code=130) from None


@app.command()
def validate(
    target: str = typer.Argument(..., help="URL or hostname to check"),
) -> None:
    """Check whether a target is safe to crawl and show its normalized URL."""
    outcome = asyncio.run(TargetValidator().validate(target))
    if isinstance(outcome, InvalidTarget):
        console.print(f"[red][FAIL][/red] {outcome.raw_input!r}: {outcome.reason}")
        raise typer.Exit(code=1)

    table = Table(title="Crawl Target")
    table.add_column("Field", style="cyan")
    table.add_column("Value", style="white")
    table.add_row("Input", outcome.raw_input)
    table.add_row("Normalized URL", outcome.normalized_url)
    table.add_row("Hostname", outcome.hostname)
    console.print("[green][OK] Target is allowed[/green]")
    console.print(table)


async def _page_details(db_path: Path, url: str) -> dict[str, Any] | None:
    async with SQLiteRepository(db_path) as repository:
        page = await repository.query_page(url)
        if page is None:
            return None
        links = await repository.query_links_by_source(page.id)
        return {
            **page.to_dict(),
            "links": [{"url": link.target_url, "text": link.text} for link in links],
        }


@app.command()
def page(
    url: str = typer.Argument(..., help="Page URL as stored"),
    db: Path = typer.Option(Path("./data/crawler.db"), "--db", help="SQLite database path"),
    limit: int = typer.Option(20, "--links", help="Maximum links to list"),
) -> None:
    """Show a stored page and its outgoing links."""
    if not db.exists():
        console.print(f"[red]Database not found:[/red] {db}")
        raise typer.Exit(code=1)

    details = asyncio.run(_page_details(db, url))
    if details is None:
        console.print(f"[yellow]No page stored for[/yellow] {url}")
        raise typer.Exit(code=1)

    table = Table(title=details["url"])
    table.add_column("Field", style="cyan")
    table.add_column("Value", style="white")
    for key in (
        "title", "description", "statusCode", "contentType", "dataLength", "language",
        "wordCount", "readingTime", "qualityScore", "mediaCount", "internalLinksCount",
        "externalLinksCount", "isDynamic", "crawledAt",
    ):
        value = details.get(key)
        table.add_row(key, "" if value is None else escape(str(value)))
    console.print(table)

    links = details["links"]
    if links:
        link_table = Table(title=f"Links ({len(links)})")
        link_table.add_column("URL", style="white")
        link_table.add_column("Text", style="dim")
        for link in links[:limit]:
            link_table.add_row(escape(link["url"]), escape(link["text"] or ""))
        console.print(link_table)


async def _repository_stats(db_path: Path) -> Any:
    async with SQLiteRepository(db_path) as repository:
        return await repository.get_stats()


@app.command()
def stats(
    db: Path = typer.Option(Path("./data/crawler.db"), "--db", help="SQLite database path"),
) -> None:
    """Show aggregate statistics for a crawl database."""
    if not db.exists():
        console.print(f"[red]Database not found:[/red] {db}")
        raise typer.Exit(code=1)

    repo_stats = asyncio.run(_repository_stats(db))

    table = Table(title="Repository Statistics")
    table.add_column("Metric", style="cyan")
    table.add_column("Value", style="white", justify="right")
    table.add_row("Pages", str(repo_stats.total_pages))
    table.add_row("Domains", str(repo_stats.total_domains))
    table.add_row("Links", str(repo_stats.total_links))
    table.add_row("Stored bytes", str(repo_stats.total_bytes))
    table.add_row("Avg quality", f"{repo_stats.avg_quality_score:.1f}")
    table.add_row("Avg words", f"{repo_stats.avg_word_count:.1f}")
    console.print(table)

    if repo_stats.languages:
        lang_table = Table(title="Languages")
        lang_table.add_column("Language", style="cyan")
        lang_table.add_column("Pages", justify="right")
        for language, count in sorted(repo_stats.languages.items(), key=lambda kv: -kv[1]):
            lang_table.add_row(language, str(count))
        console.print(lang_table)


if __name__ == "__main__":
    app()
