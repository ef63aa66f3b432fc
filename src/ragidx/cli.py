"""CLI interface for ragidx.

Typer-based command-line interface with Rich output formatting.
"""

from __future__ import annotations

import json
import logging
from dataclasses import replace
from pathlib import Path
from typing import Annotated

import typer
from rich.console import Console
from rich.logging import RichHandler
from rich.table import Table

from ragidx import __version__
from ragidx.chunk import Chunker
from ragidx.config import RagidxConfig, default_config
from ragidx.dedupe import Deduplicator
from ragidx.exceptions import RagidxError
from ragidx.pipeline import BuildPipeline
from ragidx.project import ProjectManager
from ragidx.registry import default_registry
from ragidx.render import ContextRenderer
from ragidx.search import QueryEngine
from ragidx.serialize import read_chunks_jsonl, write_chunks_jsonl
from ragidx.sources import load_source
from ragidx.store import ChromaStore

__all__ = ["app"]

app = typer.Typer(
    name="ragidx",
    help="Local-first RAG index builder with hybrid search and context hydration.",
    no_args_is_help=True,
    rich_markup_mode="rich",
)
console = Console()

# Characters of chunk text shown per row in table output
PREVIEW_CHARS = 80


@app.callback()
def main(
    verbose: Annotated[
        bool,
        typer.Option("--verbose", "-v", help="Enable debug logging"),
    ] = False,
) -> None:
    """ragidx command-line interface."""
    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.WARNING,
        format="%(message)s",
        handlers=[RichHandler(console=Console(stderr=True), show_path=False)],
        force=True,
    )


def _fail(message: str, error: Exception | None = None) -> typer.Exit:
    if error is not None:
        console.print(f"[red]{message}:[/red] {error}")
    else:
        console.print(f"[red]{message}[/red]")
    return typer.Exit(code=1)


def _require_project() -> tuple[ProjectManager, RagidxConfig]:
    root = ProjectManager.find_project_root()
    pm = ProjectManager(root) if root is not None else ProjectManager()
    if not pm.is_initialized:
        console.print(
            "[yellow]No ragidx project found.[/yellow] Run [bold]ragidx init[/bold] first."
        )
        raise typer.Exit(code=1)
    try:
        return pm, pm.load_config()
    except RagidxError as e:
        raise _fail("Failed to load config", e) from e


def _optional_config() -> RagidxConfig:
    """Project config when inside a project, defaults otherwise."""
    root = ProjectManager.find_project_root()
    if root is None:
        return default_config()
    pm = ProjectManager(root)
    if not pm.config_path.exists():
        return default_config()
    try:
        return pm.load_config()
    except RagidxError as e:
        raise _fail("Failed to load config", e) from e


def _preview(text: str) -> str:
    flat = " ".join(text.split())
    return flat if len(flat) <= PREVIEW_CHARS else flat[: PREVIEW_CHARS - 3] + "..."


@app.command()
def version() -> None:
    """Show ragidx version."""
    console.print(f"ragidx {__version__}")


@app.command()
def init(
    name: Annotated[
        str,
        typer.Option("--name", "-n", help="Project name"),
    ] = "",
) -> None:
    """Initialize a new ragidx project in the current directory."""
    pm = ProjectManager()
    try:
        rag_dir = pm.init(name=name)
    except RagidxError as e:
        raise _fail("Failed to initialize project", e) from e

    console.print(f"[green]Initialized ragidx project[/green] at {rag_dir}")

    console.print("\nCreated:")
    console.print(f"  {pm.config_path}")
    console.print(f"  {pm.checkpoint_path}")

    console.print("\nNext steps:")
    console.print("  ragidx build <file>     Index documents")
    console.print("  ragidx search <query>   Search the index")


@app.command()
def status() -> None:
    """Show project status: indexed sources, chunks, token spend."""
    root = ProjectManager.find_project_root()
    pm = ProjectManager(root) if root is not None else ProjectManager()
    try:
        st = pm.status()
    except RagidxError as e:
        raise _fail("Failed to read project status", e) from e

    if not st.initialized:
        console.print(
            "[yellow]No ragidx project found.[/yellow] Run [bold]ragidx init[/bold] first."
        )
        raise typer.Exit(code=1)

    console.print(f"[bold]ragidx project:[/bold] {st.root.name}")
    if st.config:
        console.print(
            f"  Chunking: {st.config.chunk.strategy} "
            f"(max {st.config.chunk.max_chars}, min {st.config.chunk.min_chars})"
        )
        console.print(
            f"  Embedding: {st.config.embedding.provider}/{st.config.embedding.model}"
        )

    table = Table(show_header=False, box=None, padding=(0, 2))
    table.add_column("metric", style="dim")
    table.add_column("value", style="bold")
    table.add_row("Sources", str(st.source_count))
    table.add_row("Chunks", str(st.chunk_count))
    table.add_row("Tokens", str(st.tokens_used))
    table.add_row("Est. cost", f"${st.estimated_cost_usd:.4f}")
    table.add_row("Errors", str(st.error_count))
    console.print(table)

    if st.source_count == 0:
        console.print(
            "\n[dim]No sources indexed yet. Run [bold]ragidx build <file>[/bold] to start.[/dim]"
        )


@app.command()
def chunk(
    paths: Annotated[
        list[Path],
        typer.Argument(help="Text file(s) to chunk"),
    ],
    strategy: Annotated[
        str | None,
        typer.Option("--strategy", "-s", help="Chunking strategy"),
    ] = None,
    output: Annotated[
        Path | None,
        typer.Option("--output", "-o", help="Write chunks as JSON Lines"),
    ] = None,
) -> None:
    """Chunk files and report statistics."""
    config = _optional_config()
    chunk_config = replace(config.chunk, strategy=strategy) if strategy else config.chunk

    documents = []
    for path in paths:
        try:
            documents.append(load_source(path))
        except RagidxError as e:
            console.print(f"  [red]Skipped {path}:[/red] {e}")

    try:
        result = Chunker().chunk_documents(documents, chunk_config)
    except RagidxError as e:
        raise _fail("Chunking failed", e) from e

    for error in result.errors:
        console.print(f"  [red]{error.code.value}[/red] {error.source}: {error.message}")

    stats = result.stats
    table = Table(show_header=False, box=None, padding=(0, 2))
    table.add_column("metric", style="dim")
    table.add_column("value", style="bold")
    table.add_row("Documents", str(stats.documents_processed))
    table.add_row("Chunks", str(stats.chunks_created))
    table.add_row("Below min", str(stats.chunks_below_min))
    table.add_row("At max", str(stats.chunks_at_max))
    table.add_row("Avg chars", str(stats.avg_chunk_chars))
    table.add_row("Config hash", result.config_hash[:16])
    console.print(table)

    if output is not None:
        try:
            count = write_chunks_jsonl(result.chunks, output)
        except RagidxError as e:
            raise _fail("Failed to write chunks", e) from e
        console.print(f"[green]Wrote {count} chunks[/green] to {output}")


@app.command()
def dedupe(
    chunks_file: Annotated[Path, typer.Argument(help="Chunks JSON Lines file")],
    method: Annotated[
        str | None,
        typer.Option("--method", "-m", help="exact or near"),
    ] = None,
    scope: Annotated[
        str | None,
        typer.Option("--scope", help="global or per_document"),
    ] = None,
    threshold: Annotated[
        float | None,
        typer.Option("--threshold", "-t", help="Near-duplicate Jaccard threshold (0.8-1.0)"),
    ] = None,
    output: Annotated[
        Path | None,
        typer.Option("--output", "-o", help="Write unique chunks as JSON Lines"),
    ] = None,
) -> None:
    """Remove duplicate chunks and print the duplicate report."""
    cfg = _optional_config().dedupe
    method = method or cfg.method
    scope = scope or cfg.scope
    threshold = threshold if threshold is not None else cfg.threshold

    try:
        chunks = read_chunks_jsonl(chunks_file)
        result = Deduplicator(method=method, scope=scope, threshold=threshold).dedupe(chunks)
    except RagidxError as e:
        raise _fail("Dedupe failed", e) from e

    console.print_json(json.dumps(result.report(scope=scope, threshold=threshold)))

    if output is not None:
        try:
            count = write_chunks_jsonl(result.unique, output)
        except RagidxError as e:
            raise _fail("Failed to write chunks", e) from e
        console.print(f"[green]Wrote {count} unique chunks[/green] to {output}")


@app.command()
def build(
    paths: Annotated[
        list[Path],
        typer.Argument(help="File(s) to index"),
    ],
) -> None:
    """Index files into the project store (incremental)."""
    pm, config = _require_project()

    try:
        checkpoint = pm.load_checkpoint()
        embedder = default_registry.create(config)
        store = ChromaStore(
            persist_path=pm.index_path,
            collection_name=config.store.collection_name,
        )
        pipeline = BuildPipeline(
            chunker=Chunker(),
            deduplicator=Deduplicator.from_config(config.dedupe),
            embedder=embedder,
            store=store,
            config=config,
            checkpoint=checkpoint,
            checkpoint_path=pm.checkpoint_path,
            export_path=pm.chunks_path if config.build.export_chunks else None,
        )
        result = pipeline.build(p.resolve() for p in paths)
    except RagidxError as e:
        raise _fail("Build failed", e) from e

    for error in result.errors:
        console.print(f"  [red]{error.code.value}[/red] {error.source}: {error.message}")

    console.print(
        f"[green]Indexed {result.sources_processed} source(s)[/green] "
        f"({result.chunks_created} chunks, {result.duplicates_removed} duplicates removed, "
        f"{result.vectors_stored} stored)"
    )
    if result.sources_skipped:
        console.print(f"[dim]Skipped {result.sources_skipped} unchanged source(s)[/dim]")
    if result.sources_requeued:
        console.print(
            f"[dim]Requeued {result.sources_requeued} source(s) that shared chunks "
            "with a changed source[/dim]"
        )
    console.print(
        f"[dim]Tokens: {result.tokens_used} (est. ${result.estimated_cost_usd:.6f})[/dim]"
    )
    if result.errors:
        raise typer.Exit(code=1)


@app.command()
def search(
    query: Annotated[str, typer.Argument(help="Search query")],
    mode: Annotated[
        str | None,
        typer.Option("--mode", help="keyword, semantic or hybrid"),
    ] = None,
    fusion: Annotated[
        str | None,
        typer.Option("--fusion", help="rrf or adaptive"),
    ] = None,
    top_k: Annotated[
        int | None,
        typer.Option("--top-k", "-k", help="Number of results"),
    ] = None,
    expand: Annotated[
        bool,
        typer.Option("--expand", "-e", help="Attach sibling and parent context"),
    ] = False,
    fmt: Annotated[
        str,
        typer.Option("--format", "-f", help="Output format (table, md, json)"),
    ] = "table",
) -> None:
    """Search indexed documents."""
    if fmt not in ("table", "md", "json"):
        raise _fail(f"Unknown format: {fmt!r} (expected table, md or json)")

    pm, config = _require_project()

    try:
        store = ChromaStore(
            persist_path=pm.index_path,
            collection_name=config.store.collection_name,
        )
        embedder = default_registry.create(config)
        engine = QueryEngine.from_store(store, embedder, config)
        options = replace(config.hydrate, enabled=config.hydrate.enabled or expand)
        response, hydrated = engine.search_and_hydrate(
            query, options, mode=mode, top_k=top_k, fusion=fusion
        )
    except RagidxError as e:
        raise _fail("Search failed", e) from e

    if fmt == "json":
        payload = {
            "query": query,
            "mode": response.mode.value,
            "results": [
                {
                    "chunk_id": r.chunk_id,
                    "score": r.score,
                    "text": r.text,
                    "source_id": r.source_id,
                    "metadata": dict(r.metadata),
                    "context": {
                        "parent": h.context.parent.chunk_id if h.context.parent else None,
                        "siblings_before": [c.chunk_id for c in h.context.siblings_before],
                        "siblings_after": [c.chunk_id for c in h.context.siblings_after],
                        "hierarchy_path": (
                            list(h.context.hierarchy_path) if h.context.hierarchy_path else None
                        ),
                    },
                }
                for r, h in zip(response.results, hydrated, strict=True)
            ],
            "warnings": [{"code": w.code.value, "message": w.message} for w in response.warnings],
        }
        console.print_json(json.dumps(payload))
        return

    if fmt == "md":
        try:
            text = ContextRenderer(pm.root).render(
                query, hydrated, engine.corpus, response.warnings
            )
        except RagidxError as e:
            raise _fail("Rendering failed", e) from e
        console.print(text, markup=False, highlight=False)
        return

    for warning in response.warnings:
        console.print(f"[yellow]{warning.code.value}:[/yellow] {warning.message}")
    if not response.results:
        console.print("[dim]No results.[/dim]")
        return

    table = Table(title=f"{response.mode.value} search: {query}")
    table.add_column("#", style="dim")
    table.add_column("Score")
    table.add_column("Source")
    table.add_column("Text")
    if expand:
        table.add_column("Context")
    for i, (result, item) in enumerate(zip(response.results, hydrated, strict=True), start=1):
        row = [
            str(i),
            f"{result.score:.4f}",
            Path(result.source_id).name if result.source_id else "-",
            _preview(result.text),
        ]
        if expand:
            row.append(str(item.context.size))
        table.add_row(*row)
    console.print(table)
