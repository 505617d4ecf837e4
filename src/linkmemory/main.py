"""
linkmemory CLI - connection memory search

Operator entry point: set up the store, add facts and run searches.
"""

import asyncio
import sys
from typing import List, Optional

import typer
from loguru import logger
from rich.console import Console

app = typer.Typer(
    name="linkmemory",
    help="Semantic search over the facts users remember about their connections",
    add_completion=False,
)

console = Console()


def setup_logging(verbose: bool = False):
    """Configure logging with loguru."""
    logger.remove()  # Remove default handler

    log_level = "DEBUG" if verbose else "INFO"
    log_file = None
    try:
        from linkmemory.config import get_settings

        settings = get_settings()
        if not verbose:
            log_level = settings.log_level.upper()
        log_file = settings.log_file
    except ValueError:
        pass

    # Console logging with colors
    logger.add(
        sys.stderr,
        format="<green>{time:YYYY-MM-DD HH:mm:ss}</green> | <level>{level: <8}</level> | <level>{message}</level>",
        level=log_level,
        colorize=True,
    )

    if log_file:
        logger.add(
            log_file,
            rotation="1 day",
            level="DEBUG",
            format="{time:YYYY-MM-DD HH:mm:ss} | {level} | {name}:{function}:{line} | {message} | {extra}",
        )


def _fail(message: str, error: Exception, verbose: bool) -> None:
    console.print(f"\n[red]{message}:[/red] {error}")
    if verbose:
        import traceback
        console.print(f"\n[dim]{traceback.format_exc()}[/dim]")
    raise typer.Exit(1)


@app.command()
def init(
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Enable verbose logging")
):
    """
    Initialize the Qdrant collections and verify connections.

    This command:
    - Verifies the Anthropic API key is configured
    - Checks connection to Qdrant
    - Creates the fact and embedding cache collections if missing
    - Checks the query expansion prompt
    - Verifies the embedding model can be loaded
    """
    setup_logging(verbose)
    console.print("[bold cyan]Initializing linkmemory...[/bold cyan]\n")

    try:
        from rich.table import Table

        from linkmemory.core.factory import create_services
        from linkmemory.models.schema import AIFeature

        services = create_services()
        settings = services.settings

        checks_table = Table(title="System Checks", show_header=True)
        checks_table.add_column("Component", style="cyan")
        checks_table.add_column("Status")
        checks_table.add_column("Details")

        async def run_checks() -> bool:
            try:
                # 1. Anthropic API key
                console.print("[yellow]→[/yellow] Checking Anthropic API key...")
                if not settings.anthropic_api_key:
                    checks_table.add_row("Anthropic API", "[red]✗ Missing[/red]", "Set ANTHROPIC_API_KEY in .env")
                    return False
                checks_table.add_row("Anthropic API", "[green]✓ Configured[/green]", f"Model: {settings.expansion_model}")

                # 2. Qdrant connection
                console.print("[yellow]→[/yellow] Connecting to Qdrant...")
                if not await services.db.check_connection():
                    checks_table.add_row("Qdrant DB", "[red]✗ Not accessible[/red]", settings.qdrant_url)
                    return False
                checks_table.add_row("Qdrant DB", "[green]✓ Connected[/green]", settings.qdrant_url)

                # 3. Collections
                console.print("[yellow]→[/yellow] Initializing collections...")
                await services.db.ensure_collections()
                checks_table.add_row(
                    "Collections",
                    "[green]✓ Ready[/green]",
                    f"'{settings.fact_collection_name}', '{settings.embedding_cache_collection_name}'",
                )

                # 4. Expansion prompt (expansion degrades gracefully without it)
                console.print("[yellow]→[/yellow] Checking system prompts...")
                try:
                    prompt = await services.prompt_store.get(AIFeature.QUERY_EXPANSION)
                    checks_table.add_row("Expansion prompt", "[green]✓ Found[/green]", prompt.source)
                except Exception as e:
                    checks_table.add_row("Expansion prompt", "[yellow]⚠ Missing[/yellow]", str(e)[:60])

                # 5. Embedding model
                console.print("[yellow]→[/yellow] Loading embedding model...")
                load = getattr(services.provider, "load", None)
                if load is not None:
                    await asyncio.to_thread(load)
                checks_table.add_row(
                    "Embeddings",
                    "[green]✓ Loaded[/green]",
                    f"{settings.embedding_model} ({settings.embedding_dimension} dims)",
                )
                return True
            finally:
                await services.close()

        ok = asyncio.run(run_checks())

        console.print()
        console.print(checks_table)
        console.print()
        if not ok:
            console.print("[red]Error:[/red] Initialization failed")
            raise typer.Exit(1)

        console.print("[bold green]✓ linkmemory initialized successfully![/bold green]")
        console.print("\n[dim]Next steps:[/dim]")
        console.print("  • [cyan]linkmemory add-fact <user> <connection> <text>[/cyan] - Remember a fact")
        console.print("  • [cyan]linkmemory search <user> <query>[/cyan] - Search facts")

    except KeyboardInterrupt:
        console.print("\n[yellow]Interrupted by user[/yellow]")
        raise typer.Exit(130)
    except typer.Exit:
        raise
    except Exception as e:
        _fail("Unexpected error", e, verbose)


@app.command()
def add_fact(
    user_id: str = typer.Argument(..., help="Owner of the connection"),
    connection_id: str = typer.Argument(..., help="Connection the facts are about"),
    facts: List[str] = typer.Argument(..., help="One or more fact texts"),
    skip_duplicates: bool = typer.Option(False, "--skip-duplicates", help="Skip facts the connection already holds"),
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Enable verbose logging"),
):
    """
    Embed and store facts about a connection.
    """
    setup_logging(verbose)

    try:
        from rich.table import Table

        from linkmemory.core.factory import create_services

        services = create_services()

        async def run():
            try:
                await services.db.ensure_collections()
                memory = services.memory_for(user_id)
                if not skip_duplicates:
                    return await memory.add_facts(connection_id, facts)
                added = []
                for text in facts:
                    fact = await memory.add_fact_if_new(connection_id, text)
                    if fact is not None:
                        added.append(fact)
                return added
            finally:
                await services.close()

        added = asyncio.run(run())

        table = Table(show_header=True, box=None, padding=(0, 2))
        table.add_column("Fact ID", style="dim")
        table.add_column("Text")
        for fact in added:
            table.add_row(fact.id[:8] + "...", fact.text)

        console.print(table)
        console.print(f"\n[bold green]✓ Stored {len(added)} fact(s)[/bold green]")

    except KeyboardInterrupt:
        console.print("\n[yellow]Interrupted by user[/yellow]")
        raise typer.Exit(130)
    except typer.Exit:
        raise
    except Exception as e:
        _fail("Error adding facts", e, verbose)


@app.command()
def search(
    user_id: str = typer.Argument(..., help="User whose facts are searched"),
    query: str = typer.Argument(..., help="Free-text query"),
    expand: bool = typer.Option(False, "--expand", "-e", help="Expand the query with related terms first"),
    limit: Optional[int] = typer.Option(None, "--limit", "-n", min=1, help="Page size"),
    offset: int = typer.Option(0, "--offset", min=0, help="Results to skip (cursor)"),
    threshold: Optional[float] = typer.Option(None, "--threshold", "-t", min=0.0, max=1.0, help="Minimum similarity"),
    connections: bool = typer.Option(False, "--connections", "-c", help="Rank connections instead of facts"),
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Enable verbose logging"),
):
    """
    Search a user's connection memory.

    Process: (Expand) → Embed (cached) → Similarity search → Page
    """
    setup_logging(verbose)

    try:
        from rich.table import Table

        from linkmemory.core.factory import create_services

        services = create_services()

        async def run():
            try:
                await services.db.ensure_collections()
                if connections:
                    return await services.pipeline.search_connections(
                        user_id, query, expand=expand, similarity_threshold=threshold,
                        limit=limit, offset=offset,
                    )
                return await services.pipeline.search(
                    user_id, query, expand=expand, similarity_threshold=threshold,
                    limit=limit, offset=offset,
                )
            finally:
                await services.close()

        page = asyncio.run(run())

        table = Table(show_header=True, box=None, padding=(0, 2))
        table.add_column("Score", style="bold")
        table.add_column("Connection", style="cyan")
        table.add_column("Fact")
        for item in page.items:
            fact = item.best_fact if connections else item
            score = item.similarity_score
            color = "green" if score > 0.6 else "yellow"
            table.add_row(f"[{color}]{score:.3f}[/{color}]", fact.connection_id, fact.text)

        if page.items:
            console.print(table)
        else:
            console.print("[yellow]No matches[/yellow]")

        if page.next_cursor is not None:
            console.print(f"\n[dim]More results: --offset {page.next_cursor}[/dim]")

    except KeyboardInterrupt:
        console.print("\n[yellow]Interrupted by user[/yellow]")
        raise typer.Exit(130)
    except typer.Exit:
        raise
    except Exception as e:
        _fail("Error during search", e, verbose)


@app.command()
def expand(
    query: str = typer.Argument(..., help="Query to expand"),
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Enable verbose logging"),
):
    """
    Show how a query is expanded before embedding.
    """
    setup_logging(verbose)

    try:
        from rich.panel import Panel

        from linkmemory.core.factory import create_services

        services = create_services()

        async def run():
            try:
                return await services.expander.expand(query)
            finally:
                await services.close()

        expanded = asyncio.run(run())
        border = "green" if expanded != query else "yellow"
        console.print(Panel(expanded, title="Expanded Query", border_style=border))

    except KeyboardInterrupt:
        console.print("\n[yellow]Interrupted by user[/yellow]")
        raise typer.Exit(130)
    except Exception as e:
        _fail("Error during expansion", e, verbose)


@app.command()
def stats(
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Enable verbose logging")
):
    """
    Display statistics about the stored facts and embedding cache.
    """
    setup_logging(verbose)
    console.print("[bold cyan]Database Statistics[/bold cyan]\n")

    try:
        from rich.panel import Panel
        from rich.table import Table

        from linkmemory.core.factory import create_services

        services = create_services()

        async def run():
            try:
                return [
                    await services.db.get_collection_info(services.db.fact_collection),
                    await services.db.get_collection_info(services.db.cache_collection),
                ]
            finally:
                await services.close()

        infos = asyncio.run(run())

        if not any(info.get("exists") for info in infos):
            console.print(
                Panel(
                    "[yellow]Collections do not exist yet.[/yellow]\n\n"
                    "Run [cyan]linkmemory init[/cyan] to create them.",
                    title="No Collections",
                    border_style="yellow",
                )
            )
            raise typer.Exit(0)

        stats_table = Table(show_header=True, box=None, padding=(0, 2))
        stats_table.add_column("Collection", style="cyan")
        stats_table.add_column("Points", justify="right", style="bold")
        stats_table.add_column("Status")
        stats_table.add_column("Vectors")

        for info in infos:
            if not info.get("exists"):
                continue
            stats_table.add_row(
                info["name"],
                f"{info['points_count']:,}",
                f"[green]{info['status'].upper()}[/green]",
                f"{info['config']['vector_size']} ({info['config']['distance']})",
            )

        console.print(stats_table)
        console.print()

    except KeyboardInterrupt:
        console.print("\n[yellow]Interrupted by user[/yellow]")
        raise typer.Exit(130)
    except typer.Exit:
        raise
    except Exception as e:
        _fail("Error", e, verbose)


def main():
    """Entry point for the CLI."""
    app()


if __name__ == "__main__":
    main()
