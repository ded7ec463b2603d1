#!/usr/bin/env python3
"""
Context RAG - developer harness for the retrieval pipeline
"""

import asyncio
import logging
import os
import sys
from pathlib import Path
from typing import Dict, Any, List, Optional

import click
from rich.console import Console
from rich.panel import Panel
from rich.progress import Progress, SpinnerColumn, TextColumn
from rich.table import Table

from context_rag import RAGPipeline, RAGQuery, QueryContext, SourceType, load_config
from context_rag.assembly.assembler import EXTENSION_LANGUAGES
from context_rag.errors import RAGError
from context_rag.feedback import FeedbackTracker
from context_rag.retrieval import ChunkMetadata, DocEntry, DocsSource, KeywordDocument, KeywordSource

logger = logging.getLogger(__name__)

CHUNK_LINES = 40
SKIP_DIRS = {".git", "node_modules", "__pycache__", ".venv", "venv", "dist", "build"}


def load_env_file():
    """Load environment variables from .env file if it exists."""
    env_file = Path(".env")
    if env_file.exists():
        with open(env_file, 'r') as f:
            for line in f:
                line = line.strip()
                if line and not line.startswith('#') and '=' in line:
                    key, value = line.split('=', 1)
                    os.environ.setdefault(key, value)


def setup_logging(config: dict):
    """Setup logging configuration."""
    log_config = config.get("logging", {})
    log_level = getattr(logging, log_config.get("level", "INFO"))
    log_format = log_config.get("format", "%(asctime)s - %(name)s - %(levelname)s - %(message)s")

    handlers: List[logging.Handler] = [logging.StreamHandler()]
    log_file = log_config.get("file")
    if log_file:
        Path(log_file).parent.mkdir(parents=True, exist_ok=True)
        handlers.append(logging.FileHandler(log_file))

    logging.basicConfig(level=log_level, format=log_format, handlers=handlers)


def chunk_file(path: Path, root: Path) -> List[KeywordDocument]:
    """Split a source file into fixed-size line windows."""
    try:
        text = path.read_text(encoding="utf-8")
    except (OSError, UnicodeDecodeError) as e:
        logger.warning(f"Skipping {path}: {e}")
        return []

    relative = path.relative_to(root).as_posix()
    language = EXTENSION_LANGUAGES.get(path.suffix.lstrip(".").lower())
    lines = text.splitlines()

    documents = []
    for start in range(0, len(lines), CHUNK_LINES):
        window = lines[start:start + CHUNK_LINES]
        if not any(line.strip() for line in window):
            continue
        end = start + len(window)
        documents.append(KeywordDocument(
            id=f"{relative}:{start + 1}",
            content="\n".join(window),
            metadata=ChunkMetadata(
                file_path=relative,
                start_line=start + 1,
                end_line=end,
                language=language,
            ),
        ))
    return documents


class ContextRAGHarness:
    """Wires a pipeline to in-process sources for manual testing."""

    def __init__(self, config: Dict[str, Any]):
        self.config = config
        self.console = Console()
        self.keyword_source = KeywordSource()
        self.docs_source = DocsSource()

        feedback_path = config.get("feedback", {}).get("storage_path")
        self.pipeline = RAGPipeline(
            config.get("rag", {}),
            feedback_tracker=FeedbackTracker(feedback_path) if feedback_path else None,
        )

    async def setup(self, data_path: Optional[str] = None, use_embeddings: bool = False):
        embedding_provider = None
        if use_embeddings:
            # Deferred: the embedding backends are heavy to import
            from context_rag.embeddings import EmbeddingManager
            embedding_provider = EmbeddingManager(self.config)

        await self.pipeline.initialize(
            sources=[self.keyword_source, self.docs_source],
            embedding_provider=embedding_provider,
        )
        if data_path:
            self.index_directory(Path(data_path))

    def index_directory(self, root: Path):
        """Index code into the keyword source and markdown into the docs source."""
        files = 0
        for path in sorted(root.rglob("*")):
            if not path.is_file() or any(part in SKIP_DIRS for part in path.parts):
                continue
            extension = path.suffix.lstrip(".").lower()
            if extension == "md":
                relative = path.relative_to(root).as_posix()
                self.docs_source.add_doc(DocEntry(
                    id=relative,
                    title=path.stem.replace("-", " ").replace("_", " "),
                    content=path.read_text(encoding="utf-8", errors="replace"),
                    file_path=relative,
                ))
                files += 1
            elif extension in EXTENSION_LANGUAGES:
                self.keyword_source.add_documents(chunk_file(path, root))
                files += 1

        logger.info(
            f"Indexed {files} files: {self.keyword_source.size} code chunks, {self.docs_source.size} docs"
        )

    async def query(self, text: str, file_path: Optional[str] = None, language: Optional[str] = None,
                    max_tokens: Optional[int] = None, sources: Optional[List[str]] = None):
        context = QueryContext(file_path=file_path, language=language) if (file_path or language) else None
        rag_query = RAGQuery(
            text=text,
            context=context,
            sources=[SourceType(name) for name in sources] if sources else None,
            max_tokens=max_tokens,
        )

        with Progress(
            SpinnerColumn(),
            TextColumn("[progress.description]{task.description}"),
            console=self.console
        ) as progress:
            task = progress.add_task("Retrieving context...", total=None)
            result = await self.pipeline.retrieve(rag_query)
            progress.update(task, description=f"Retrieved {len(result.retrieved_chunks)} chunks")

        return result

    def display_result(self, result, debug: bool = False):
        """Display the assembled context and per-source attribution."""
        sources_table = Table(title="Source Attribution")
        sources_table.add_column("Source", style="cyan")
        sources_table.add_column("Chunks", style="white")
        sources_table.add_column("Avg Score", style="white")
        sources_table.add_column("Latency (ms)", style="white")

        for attribution in result.sources:
            sources_table.add_row(
                attribution.source.value,
                str(attribution.count),
                f"{attribution.avg_score:.3f}",
                f"{attribution.latency_ms:.1f}",
            )
        self.console.print(sources_table)

        title = f"[bold blue]Context[/bold blue] ({result.token_count} tokens"
        title += ", truncated)" if result.truncated else ")"
        self.console.print(Panel(result.assembled_context or "(no context)", title=title, border_style="blue"))

        if debug:
            debug_table = Table(title="Debug Information")
            debug_table.add_column("Property", style="cyan")
            debug_table.add_column("Value", style="white")
            debug_table.add_row("Query ID", result.query_id)
            debug_table.add_row("Latency", f"{result.latency_ms:.1f}ms")
            debug_table.add_row("Cache Hit", "Yes" if result.cache_hit else "No")
            for chunk in result.retrieved_chunks:
                debug_table.add_row(chunk.id, f"{chunk.effective_score:.4f} ({chunk.source.value})")
            self.console.print(debug_table)

    async def show_health(self):
        health = await self.pipeline.check_health()
        cache_ok = await self.pipeline.cache.health_check()

        table = Table(title="Health")
        table.add_column("Component", style="cyan")
        table.add_column("Status", style="white")
        for source, healthy in health.items():
            table.add_row(source.value, "✅ OK" if healthy else "❌ Down")
        table.add_row("cache", "✅ OK" if cache_ok else "❌ Down")
        self.console.print(table)


@click.group()
@click.option('--config', '-c', default='config/config.yaml', help='Configuration file path')
@click.option('--debug', '-d', is_flag=True, help='Enable debug mode')
@click.pass_context
def cli(ctx, config, debug):
    """Context RAG developer CLI."""
    load_env_file()

    try:
        loaded = load_config(config)
    except FileNotFoundError:
        Console().print(f"[red]❌ Configuration file not found: {config}[/red]")
        sys.exit(1)
    except RAGError as e:
        Console().print(f"[red]❌ {e}[/red]")
        sys.exit(1)

    if debug:
        loaded.setdefault("logging", {})["level"] = "DEBUG"

    ctx.ensure_object(dict)
    ctx.obj['config'] = loaded
    ctx.obj['debug'] = debug
    setup_logging(loaded)


@cli.command()
@click.argument('query')
@click.option('--path', '-p', 'data_path', default='.', help='Directory to index before querying')
@click.option('--file', '-f', 'file_path', help='Restrict results to this file path')
@click.option('--language', '-l', help='Restrict results to this language')
@click.option('--max-tokens', '-t', type=int, help='Token budget for the assembled context')
@click.option('--source', '-s', 'sources', multiple=True,
              type=click.Choice([source.value for source in SourceType]), help='Sources to query')
@click.option('--embeddings', is_flag=True, help='Embed the query with the configured provider')
@click.pass_context
def query(ctx, query, data_path, file_path, language, max_tokens, sources, embeddings):
    """Index a directory and retrieve context for QUERY."""
    harness = ContextRAGHarness(ctx.obj['config'])

    async def run_query():
        await harness.setup(data_path, use_embeddings=embeddings)
        try:
            result = await harness.query(query, file_path, language, max_tokens, list(sources))
            harness.display_result(result, debug=ctx.obj['debug'])
        finally:
            await harness.pipeline.dispose()

    try:
        asyncio.run(run_query())
    except RAGError as e:
        harness.console.print(f"[red]❌ {e}[/red]")
        sys.exit(1)


@cli.command()
@click.pass_context
def health(ctx):
    """Show per-source and cache health."""
    harness = ContextRAGHarness(ctx.obj['config'])

    async def run_health():
        await harness.setup()
        try:
            await harness.show_health()
        finally:
            await harness.pipeline.dispose()

    asyncio.run(run_health())


if __name__ == "__main__":
    cli()
