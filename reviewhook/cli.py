"""Main CLI entry point for reviewhook."""

import asyncio
import sys
from pathlib import Path

import click
from rich.console import Console
from rich.panel import Panel
from rich.table import Table

from . import __version__, db
from .config import settings
from .logging_setup import configure_logging
from .parser import parse_response

console = Console()


@click.group()
@click.version_option(version=__version__)
@click.option("--log-level", default=None, help="Override REVIEWHOOK_LOG_LEVEL")
def main(log_level: str | None) -> None:
    """Automated pull request review webhook service.

    Receives GitHub webhooks, reviews changed code with an AI model and stores the results.
    """
    configure_logging(log_level or settings.log_level)


@main.command()
@click.option("--host", default="127.0.0.1", help="Bind address")
@click.option("--port", default=8000, help="Bind port")
@click.option("--reload", is_flag=True, help="Reload on code changes (development)")
def serve(host: str, port: int, reload: bool) -> None:
    """Run the webhook HTTP server."""
    import uvicorn

    uvicorn.run(
        "reviewhook.app:create_app",
        factory=True,
        host=host,
        port=port,
        reload=reload,
        log_config=None,
    )


@main.command()
@click.option("--concurrency", "-c", default=None, type=int, help="Consumer coroutines")
def worker(concurrency: int | None) -> None:
    """Consume queued review jobs from Redis."""
    from .events import install_default_handlers
    from .redis_client import close_redis
    from .worker import ReviewWorker

    async def run() -> None:
        install_default_handlers()
        try:
            await ReviewWorker(concurrency=concurrency).run_forever()
        finally:
            await db.engine.dispose()
            await close_redis()

    asyncio.run(run())


@main.command(name="init-db")
@click.option("--drop", is_flag=True, help="Drop existing tables first")
def init_db(drop: bool) -> None:
    """Create all tables (development; use alembic in production)."""

    async def do_init() -> None:
        if drop:
            await db.drop_db()
        await db.init_db()
        await db.engine.dispose()

    asyncio.run(do_init())
    console.print("[green]Database tables created[/green]")


@main.command(name="schema-check", help="Check DB schema readiness for current code.")
def schema_check() -> None:
    from sqlalchemy import inspect

    from .models import Base

    def columns_by_table(sync_conn) -> dict[str, set[str]]:
        inspector = inspect(sync_conn)
        return {
            table: {column["name"] for column in inspector.get_columns(table)}
            for table in inspector.get_table_names()
        }

    async def check() -> dict[str, set[str]]:
        async with db.engine.connect() as conn:
            existing = await conn.run_sync(columns_by_table)
        await db.engine.dispose()
        return existing

    existing = asyncio.run(check())
    problems = []
    for table in Base.metadata.sorted_tables:
        if table.name not in existing:
            problems.append(f"missing table {table.name}")
            continue
        missing = {column.name for column in table.columns} - existing[table.name]
        if missing:
            problems.append(f"{table.name} missing columns {sorted(missing)}")

    if problems:
        for problem in problems:
            console.print(f"[red]{problem}[/red]")
        console.print("Run: `alembic upgrade head`")
        raise SystemExit(1)
    console.print("[green]Schema ready[/green]")


@main.command()
@click.argument("full_name")
@click.option("--owner", "owner_login", required=True, help="GitHub login of the repository owner")
@click.option("--installation-id", required=True, type=int, help="GitHub App installation id")
@click.option("--repo-id", "github_id", required=True, type=int, help="GitHub repository id")
@click.option("--webhook-id", required=True, type=int, help="GitHub webhook id")
@click.option("--language", default=None, help="Primary language, used in the review prompt")
@click.option("--plan", type=click.Choice(sorted(settings.plan_limits)), default="free")
@click.option("--token", default=None, help="Owner's GitHub token (defaults to the service token)")
def enroll(
    full_name: str,
    owner_login: str,
    installation_id: int,
    github_id: int,
    webhook_id: int,
    language: str | None,
    plan: str,
    token: str | None,
) -> None:
    """Register a repository for automated reviews.

    FULL_NAME: owner/name of the repository
    """

    async def do_enroll() -> None:
        async with db.get_session() as session:
            repository = await db.enroll_repository(
                session,
                owner_login=owner_login,
                installation_id=installation_id,
                github_id=github_id,
                full_name=full_name,
                webhook_id=webhook_id,
                language=language,
                plan=plan,
                github_token=token,
            )
            console.print(
                Panel(
                    f"Repository: [bold]{repository.full_name}[/bold]\n"
                    f"GitHub id: {repository.github_id}\n"
                    f"Installation: {installation_id}\n"
                    f"Plan: {plan} ({_format_limit(settings.limit_for_plan(plan))} reviews)",
                    title="Enrolled",
                )
            )
        await db.engine.dispose()

    asyncio.run(do_enroll())


@main.command()
@click.option("--limit", default=20, help="Number of reviews to show")
@click.option("--status", "status_filter", default=None, help="Filter by status")
def reviews(limit: int, status_filter: str | None) -> None:
    """List recent reviews."""

    async def list_all() -> None:
        async with db.get_session() as session:
            rows = await db.list_reviews(session, status=status_filter, limit=limit)
        await db.engine.dispose()

        if not rows:
            console.print("[dim]No reviews found[/dim]")
            return

        table = Table(title="Recent Reviews")
        table.add_column("Review", style="cyan")
        table.add_column("Repository")
        table.add_column("PR")
        table.add_column("Status")
        table.add_column("Score")
        table.add_column("Source")
        table.add_column("Created")

        for review in rows:
            score = (review.ai_analysis or {}).get("overallScore")
            table.add_row(
                review.id[:8],
                review.repository.full_name if review.repository else "-",
                f"#{review.pull_request_number}",
                _style_status(review.status),
                f"{score:g}" if isinstance(score, (int, float)) else "-",
                review.analysis_source or review.error_code or "-",
                review.created_at.strftime("%Y-%m-%d %H:%M") if review.created_at else "-",
            )
        console.print(table)

    asyncio.run(list_all())


@main.command()
@click.argument("owner_login")
def usage(owner_login: str) -> None:
    """Show an owner's review allowance for the current period."""

    async def show_usage() -> None:
        try:
            async with db.get_session() as session:
                user = await db.get_user_by_login(session, owner_login)
                counter = await db.get_usage(session, user.id) if user else None
        finally:
            await db.engine.dispose()

        if user is None:
            console.print(f"[red]Owner not found: {owner_login}[/red]")
            return

        if counter is None:
            console.print(f"[dim]{owner_login} ({user.plan}) has not used any reviews yet[/dim]")
            return
        console.print(
            Panel(
                f"Plan: [cyan]{user.plan}[/cyan]\n"
                f"Used: {counter.reviews_used}\n"
                f"In flight: {counter.reviews_reserved}\n"
                f"Limit: {_format_limit(counter.review_limit)}\n"
                f"Last review: "
                f"{user.last_review_at.strftime('%Y-%m-%d %H:%M') if user.last_review_at else '-'}",
                title=f"Usage: {owner_login}",
            )
        )

    asyncio.run(show_usage())


@main.command()
@click.argument("delivery_id")
def delivery(delivery_id: str) -> None:
    """Show whether a webhook delivery was claimed and what it stored."""
    from .dedup import DeliveryDeduplicator
    from .redis_client import close_redis
    from .store import build_store

    async def inspect_delivery() -> tuple[bool, int]:
        try:
            claimed = await DeliveryDeduplicator(build_store()).seen(delivery_id)
            async with db.get_session() as session:
                stored = await db.count_reviews(session, delivery_id)
        finally:
            await db.engine.dispose()
            await close_redis()
        return claimed, stored

    claimed, stored = asyncio.run(inspect_delivery())
    console.print(
        Panel(
            f"Claimed: {'yes' if claimed else 'no'}\n"
            f"Stored reviews: {stored}",
            title=f"Delivery {delivery_id}",
        )
    )


@main.command()
@click.argument(
    "source", type=click.Path(exists=True, dir_okay=False, path_type=Path), required=False
)
@click.option("--json", "as_json", is_flag=True, help="Print the analysis as JSON")
def parse(source: Path | None, as_json: bool) -> None:
    """Parse a raw AI review response from a file or stdin."""
    raw = source.read_text() if source else sys.stdin.read()
    result = parse_response(raw)

    if as_json:
        console.print_json(data=result.analysis.to_json())
        return

    analysis = result.analysis
    console.print(
        Panel(
            f"Score: [bold]{analysis.overall_score:g}/10[/bold]\n"
            f"Source: {result.source.value} (confidence {result.confidence:.1f})\n\n"
            f"{analysis.summary}",
            title="Parsed Review",
        )
    )
    if analysis.issues:
        table = Table(title="Issues")
        table.add_column("Severity")
        table.add_column("Location", style="cyan")
        table.add_column("Message")
        for issue in analysis.issues:
            table.add_row(issue.severity, f"{issue.file}:{issue.line}", issue.message)
        console.print(table)
    for suggestion in analysis.suggestions:
        console.print(f"[green]•[/green] {suggestion.message}")
    if result.warning is not None:
        console.print(f"[yellow]{result.warning}[/yellow]")


def _format_limit(limit: int) -> str:
    return "unlimited" if limit < 0 else str(limit)


def _style_status(status: str) -> str:
    color = {"completed": "green", "failed": "red", "skipped_quota": "yellow"}.get(status, "white")
    return f"[{color}]{status}[/{color}]"


if __name__ == "__main__":
    main()
