"""
Klio - CLI Entry Point.

Usage:
    klio serve                      Run the API server
    klio steps                      Show the onboarding steps and bounds
    klio catalog interests          Show the options for a category
    klio status --token <jwt>       Show a user's onboarding progress
    klio --help                     Show help
"""

import asyncio

import typer
from rich.console import Console
from rich.table import Table

from onboarding.catalog import FromDatabase
from onboarding.selection import SELECTION_BOUNDS, Category
from onboarding.state import STEP_NAMES, STEP_ORDER, completion_progress

app = typer.Typer(
    name="klio",
    help="Klio - local business discovery backend.",
    add_completion=False,
)
console = Console()


def _parse_category(value: str) -> Category:
    normalized = value.lower().replace("-", "")
    for category in Category:
        if category.value == normalized:
            return category
    valid = ", ".join(c.label for c in Category)
    console.print(f"[red]Unknown category: {value}. Options: {valid}[/red]")
    raise typer.Exit(code=1)


@app.command()
def serve(
    host: str = typer.Option("0.0.0.0", "--host", help="Bind address"),
    port: int = typer.Option(8000, "--port", "-p", help="Port"),
    reload: bool = typer.Option(False, "--reload", help="Reload on code changes"),
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Debug logging"),
) -> None:
    """Run the Klio API server."""
    import uvicorn

    from klio.config import settings
    from klio.logging_setup import setup_logging

    setup_logging(settings.log_level, verbose=verbose)
    uvicorn.run("klio.web.app:app", host=host, port=port, reload=reload)


@app.command()
def steps() -> None:
    """Show the onboarding steps and their selection bounds."""
    table = Table(title="Onboarding steps")
    table.add_column("#", justify="right")
    table.add_column("Step")
    table.add_column("Path")
    table.add_column("Picks", justify="center")

    for number, step in enumerate(STEP_ORDER, start=1):
        category = step.category
        picks = "-"
        if category is not None:
            bounds = SELECTION_BOUNDS[category]
            picks = f"{bounds.min}-{bounds.max}"
        table.add_row(str(number), STEP_NAMES[step], step.path, picks)

    console.print(table)


@app.command()
def catalog(
    category: str = typer.Argument(..., help="interests, subcategories or deal-breakers"),
    interests: str = typer.Option("", "--interests", "-i", help="Comma-separated interest IDs (subcategories only)"),
    offline: bool = typer.Option(False, "--offline", help="Use the built-in catalog without calling the API"),
) -> None:
    """Show the options for a category."""
    from onboarding.catalog import fallback_catalog

    parsed = _parse_category(category)
    parent_ids = [i for i in interests.split(",") if i.strip()]

    if offline:
        items, source = fallback_catalog(parsed, parent_ids), "built-in"
    else:
        result = asyncio.run(_fetch_catalog(parsed, parent_ids))
        items = result.items
        source = "database" if isinstance(result, FromDatabase) else "built-in (API unavailable)"

    table = Table(title=f"{parsed.label.title()} ({source})")
    table.add_column("ID")
    table.add_column("Label")
    if parsed == Category.SUBCATEGORIES:
        table.add_column("Interest")
    for item in items:
        row = [item.id, item.label]
        if parsed == Category.SUBCATEGORIES:
            row.append(item.parent_id or "")
        table.add_row(*row)
    console.print(table)


async def _fetch_catalog(category: Category, parent_ids: list[str]):
    from onboarding.gateway import SelectionGateway

    async with SelectionGateway.from_settings() as gateway:
        return await gateway.fetch_catalog(category, parent_ids)


@app.command()
def status(
    token: str = typer.Option(..., "--token", "-t", help="Supabase access token", envvar="KLIO_ACCESS_TOKEN"),
) -> None:
    """Show a user's onboarding progress."""
    from onboarding.errors import SyncError

    try:
        user = asyncio.run(_fetch_profile(token))
    except SyncError as e:
        console.print(f"[red]Error: {e}[/red]")
        raise typer.Exit(code=1)

    progress = completion_progress(user)
    console.print(f"[bold]User:[/bold] {user.email or user.id}")
    console.print(f"[bold]Step:[/bold] {STEP_NAMES[user.onboarding_step]}")
    console.print(
        f"[bold]Progress:[/bold] {progress['completed']}/{progress['total']} ({progress['percentage']}%)"
    )
    for category in Category:
        picks = ", ".join(sorted(user.selections(category))) or "[dim]none[/dim]"
        console.print(f"  • {category.label}: {picks}")


async def _fetch_profile(token: str):
    from onboarding.gateway import SelectionGateway

    async with SelectionGateway.from_settings(access_token=token) as gateway:
        return await gateway.fetch_profile()


if __name__ == "__main__":
    app()
