"""Main CLI entry point for tm-pretranslator."""

import asyncio
from pathlib import Path
from typing import Optional

import click
import structlog
from rich.console import Console
from rich.table import Table

from tm_pretranslator import __version__
from tm_pretranslator.config import AppConfig, get_config, set_config

logger = structlog.get_logger()
console = Console()


def setup_config(env_file: Optional[Path] = None) -> None:
    """Load configuration from environment."""
    set_config(AppConfig.load(env_file))


def open_store(data_dir: Optional[str]):
    """Open the JSON store, defaulting to STORAGE_DATA_DIR."""
    from tm_pretranslator.storage.json_store import JsonFileStore

    path = Path(data_dir) if data_dir else get_config().storage.data_dir
    return JsonFileStore(path)


data_dir_option = click.option(
    "--data-dir", type=click.Path(file_okay=False), help="Store directory (default: STORAGE_DATA_DIR)"
)


@click.group()
@click.option("--verbose", "-v", is_flag=True, help="Enable verbose logging")
@click.option("--quiet", "-q", is_flag=True, help="Minimal output")
@click.option("--log-file", type=click.Path(), help="Write JSON logs to file")
@click.option("--env-file", type=click.Path(exists=True), help="Path to .env file")
@click.version_option(version=__version__)
@click.pass_context
def cli(ctx, verbose: bool, quiet: bool, log_file: Optional[str], env_file: Optional[str]) -> None:
    """Translation memory search and AI pretranslation.

    Fill documents from the translation memory and let an LLM translate
    whatever the memory cannot cover.
    """
    from tm_pretranslator.log import configure_logging

    ctx.ensure_object(dict)
    ctx.obj["verbose"] = verbose
    ctx.obj["quiet"] = quiet

    verbosity = 1 if verbose else (-1 if quiet else 0)
    configure_logging(verbosity=verbosity, log_file=Path(log_file) if log_file else None)

    setup_config(Path(env_file) if env_file else None)


# =============================================================================
# Pretranslation
# =============================================================================


@cli.command()
@data_dir_option
@click.option("--document", "document_id", required=True, help="Document ID")
@click.option(
    "--low-matches/--no-low-matches", default=True, help="Send segments without exact match to AI"
)
@click.option(
    "--empty-only",
    is_flag=True,
    help="Send segments without an exact TM match to AI, even with --no-low-matches",
)
@click.option("--rewrite-confirmed", is_flag=True, help="Also retranslate confirmed segments")
@click.option("--rewrite-mt", is_flag=True, help="Also retranslate segments that have a translation")
@click.option(
    "--glossary-mode",
    default="strict_source",
    type=click.Choice(["off", "strict_source", "strict_semantic"]),
    help="Glossary enforcement in prompts",
)
@click.option("--critic", is_flag=True, help="Draft, critique and fix each segment")
@click.option("--model", help="Override the translation model")
@click.option("--temperature", type=float, help="Override the sampling temperature")
def pretranslate(
    data_dir: Optional[str],
    document_id: str,
    low_matches: bool,
    empty_only: bool,
    rewrite_confirmed: bool,
    rewrite_mt: bool,
    glossary_mode: str,
    critic: bool,
    model: Optional[str],
    temperature: Optional[float],
) -> None:
    """Pretranslate a document from the TM, then with AI.

    Examples:

        tm-pretranslator pretranslate --data-dir data --document 3f2a...

        tm-pretranslator pretranslate --document 3f2a... --empty-only --critic
    """
    from tm_pretranslator.exceptions import PretranslatorError
    from tm_pretranslator.models import GlossaryMode, PretranslateOptions
    from tm_pretranslator.services.events import EventBus
    from tm_pretranslator.services.pretranslate_service import PretranslationService

    store = open_store(data_dir)
    options = PretranslateOptions(
        apply_ai_to_low_matches=low_matches,
        apply_ai_to_empty_only=empty_only,
        rewrite_confirmed=rewrite_confirmed,
        rewrite_non_confirmed=rewrite_mt,
        glossary_mode=GlossaryMode(glossary_mode),
        use_critic=critic,
        model=model,
        temperature=temperature,
    )

    event_bus = EventBus()

    async def run():
        service = PretranslationService.from_store(store, event_bus=event_bus)
        await service.start(document_id, options)
        summary = await service.wait(document_id)
        return summary, service.get_progress(document_id)

    try:
        with console.status("Starting pretranslation...") as status:
            event_bus.subscribe(
                lambda event: status.update(event.data.get("current_message") or ""),
                event_type="job_progress",
            )
            summary, job = asyncio.run(run())
    except PretranslatorError as e:
        logger.error("pretranslate_failed", error=str(e))
        raise SystemExit(1)

    table = Table(title=f"Pretranslation: {document_id}", show_header=True, header_style="bold blue")
    table.add_column("Metric", style="cyan")
    table.add_column("Value", style="green", justify="right")
    table.add_row("Status", job.status.value)
    table.add_row("Segments", str(job.total_segments))
    table.add_row("From TM", str(summary.tm_applied))
    table.add_row("From AI", str(summary.ai_applied))
    table.add_row("Processed", str(summary.total_processed))
    console.print(table)
    if summary.cancelled:
        console.print("[yellow]Cancelled: partial results were saved.[/yellow]")


# =============================================================================
# Search
# =============================================================================


@cli.command()
@data_dir_option
@click.argument("text")
@click.option("--source", "source_locale", required=True, help="Source locale, e.g. en-US")
@click.option("--target", "target_locale", required=True, help="Target locale, e.g. ru-RU")
@click.option("--project", "project_id", help="Project scope (global entries always included)")
@click.option("--mode", default="basic", type=click.Choice(["basic", "extended"]), help="Search mode")
@click.option("--min-score", type=int, help="Minimum score (0-100)")
@click.option("--limit", type=int, help="Maximum results")
def search(
    data_dir: Optional[str],
    text: str,
    source_locale: str,
    target_locale: str,
    project_id: Optional[str],
    mode: str,
    min_score: Optional[int],
    limit: Optional[int],
) -> None:
    """Search the translation memory."""
    from tm_pretranslator.models import SearchMode
    from tm_pretranslator.retrieval.embeddings import EmbeddingGenerator
    from tm_pretranslator.retrieval.hybrid import HybridRanker, SearchOptions

    store = open_store(data_dir)
    ranker = HybridRanker(store, EmbeddingGenerator())
    matches = asyncio.run(
        ranker.search(
            text,
            SearchOptions(
                source_locale=source_locale,
                target_locale=target_locale,
                project_id=project_id,
                mode=SearchMode(mode),
                min_score=min_score,
                limit=limit,
            ),
        )
    )

    if not matches:
        click.echo("No matches found")
        return

    table = Table(show_header=True, header_style="bold blue")
    table.add_column("Score", style="magenta", justify="right")
    table.add_column("Method", style="cyan")
    table.add_column("Scope", style="dim")
    table.add_column("Source", style="white")
    table.add_column("Target", style="green")
    for match in matches:
        table.add_row(
            f"{match.score}%", match.method.value, match.scope.value, match.source_text, match.target_text
        )
    console.print(table)


# =============================================================================
# Glossary Commands
# =============================================================================


@cli.group()
def glossary():
    """Inspect and edit the glossary."""
    pass


@glossary.command("match")
@data_dir_option
@click.argument("text")
@click.option("--source", "source_locale", required=True, help="Source locale")
@click.option("--target", "target_locale", required=True, help="Target locale")
@click.option("--project", "project_id", help="Project scope")
@click.option("--domain", help="Project domain for context rules")
@click.option("--client", help="Project client for context rules")
@click.option("--document-type", help="Document type for context rules")
def glossary_match(
    data_dir: Optional[str],
    text: str,
    source_locale: str,
    target_locale: str,
    project_id: Optional[str],
    domain: Optional[str],
    client: Optional[str],
    document_type: Optional[str],
) -> None:
    """Show the glossary terms that apply to TEXT."""
    from tm_pretranslator.glossary.rag_filter import GlossaryRagFilter
    from tm_pretranslator.models import DocumentContext
    from tm_pretranslator.retrieval.embeddings import EmbeddingGenerator

    store = open_store(data_dir)
    rag = GlossaryRagFilter(store, EmbeddingGenerator())
    hits = asyncio.run(
        rag.find_relevant_terms(
            text,
            source_locale,
            target_locale,
            project_id=project_id,
            context=DocumentContext(
                project_domain=domain, project_client=client, document_type=document_type
            ),
        )
    )

    if not hits:
        click.echo("No glossary terms apply")
        return

    click.echo(f"Glossary ({len(hits)} terms):")
    for hit in hits:
        marker = " [FORBIDDEN]" if hit.forbidden else ""
        click.echo(f"  {hit.term} → {hit.translation}{marker}")


@glossary.command("add")
@data_dir_option
@click.option("--term", required=True, help="Source term")
@click.option("--translation", required=True, help="Target term")
@click.option("--source", "source_locale", required=True, help="Source locale")
@click.option("--target", "target_locale", required=True, help="Target locale")
@click.option("--project", "project_id", help="Project scope (default: global)")
@click.option("--forbidden", is_flag=True, help="Mark the translation as forbidden (must not be used)")
@click.option("--notes", help="Notes shown to the translator")
def glossary_add(
    data_dir: Optional[str],
    term: str,
    translation: str,
    source_locale: str,
    target_locale: str,
    project_id: Optional[str],
    forbidden: bool,
    notes: Optional[str],
) -> None:
    """Add a glossary term and embed it when an embedding backend is set."""
    from tm_pretranslator.models import GlossaryTerm
    from tm_pretranslator.retrieval.embeddings import EmbeddingGenerator
    from tm_pretranslator.services.glossary_service import GlossaryService

    store = open_store(data_dir)
    service = GlossaryService(store, embedder=EmbeddingGenerator())
    added = asyncio.run(
        service.add_term(
            GlossaryTerm(
                source_term=term,
                target_term=translation,
                source_locale=source_locale,
                target_locale=target_locale,
                project_id=project_id,
                forbidden=forbidden,
                notes=notes,
            )
        )
    )
    click.echo(f"Added {added.source_term} → {added.target_term} ({added.id})")


@glossary.command("resolve")
@data_dir_option
@click.option("--project", "project_id", help="Project scope (default: every term)")
def glossary_resolve(data_dir: Optional[str], project_id: Optional[str]) -> None:
    """Translate terms whose target only repeats the source term."""
    from tm_pretranslator.services.glossary_service import GlossaryService
    from tm_pretranslator.translator.provider import OpenAIProvider

    store = open_store(data_dir)
    service = GlossaryService(store)
    provider = OpenAIProvider(task="translate")
    if provider.is_mock:
        console.print("[red]No provider configured (check OPENAI_API_KEY)[/red]")
        raise SystemExit(1)

    updated = asyncio.run(service.resolve_untranslated(provider, project_id=project_id))
    if not updated:
        click.echo("No untranslated terms")
        return
    for term in updated:
        click.echo(f"  {term.source_term} → {term.target_term}")
    click.echo(f"Updated {len(updated)} terms")


# =============================================================================
# Embeddings
# =============================================================================


@cli.command()
@data_dir_option
@click.option("--batch-size", type=int, help="Records per step (default: EMBEDDING_BACKFILL_BATCH_SIZE)")
@click.option("--force", is_flag=True, help="Re-embed records that already have a vector")
def embed(data_dir: Optional[str], batch_size: Optional[int], force: bool) -> None:
    """Generate missing embeddings for TM entries and glossary terms."""
    from tm_pretranslator.exceptions import RetrievalDegradation
    from tm_pretranslator.retrieval.embeddings import EmbeddingGenerator
    from tm_pretranslator.services.embedding_service import backfill_embeddings

    store = open_store(data_dir)
    try:
        with console.status("Generating embeddings..."):
            report = asyncio.run(
                backfill_embeddings(store, EmbeddingGenerator(), batch_size=batch_size, force=force)
            )
    except RetrievalDegradation as e:
        logger.error("embed_failed", error=str(e))
        raise SystemExit(1)

    table = Table(title="Embeddings", show_header=True, header_style="bold blue")
    table.add_column("Records", style="cyan")
    table.add_column("Embedded", style="green", justify="right")
    table.add_column("Failed", style="red", justify="right")
    table.add_column("Skipped", style="dim", justify="right")
    table.add_row(
        "TM entries",
        str(report.units_embedded),
        str(report.units_failed),
        str(report.units_skipped),
    )
    table.add_row(
        "Glossary terms",
        str(report.terms_embedded),
        str(report.terms_failed),
        str(report.terms_skipped),
    )
    console.print(table)
    if report.failed:
        raise SystemExit(1)


# =============================================================================
# Segments
# =============================================================================


@cli.command()
@data_dir_option
@click.option("--segment", "segment_id", required=True, help="Segment ID")
@click.argument("translation")
def confirm(data_dir: Optional[str], segment_id: str, translation: str) -> None:
    """Confirm a segment translation and add it to the TM."""
    from tm_pretranslator.exceptions import ValidationError
    from tm_pretranslator.retrieval.embeddings import EmbeddingGenerator
    from tm_pretranslator.services.segment_service import SegmentService

    store = open_store(data_dir)
    service = SegmentService(store, embedder=EmbeddingGenerator())
    try:
        segment = asyncio.run(service.confirm(segment_id, translation))
    except ValidationError as e:
        logger.error("confirm_failed", error=str(e))
        raise SystemExit(1)
    click.echo(f"Confirmed segment {segment.index}: {segment.target_final}")


# =============================================================================
# Configuration
# =============================================================================


@cli.command("config")
def show_config() -> None:
    """Show the effective configuration."""
    from tm_pretranslator.config import log_config_summary

    log_config_summary()


@cli.command("check-provider")
def check_provider() -> None:
    """Test the connection to the translation provider."""
    from tm_pretranslator.translator import provider

    ok = asyncio.run(provider.test_provider_connection())
    if ok:
        console.print("[green]Provider connection OK[/green]")
    else:
        console.print("[red]Provider unavailable (check OPENAI_API_KEY)[/red]")
        raise SystemExit(1)


if __name__ == "__main__":
    cli()
