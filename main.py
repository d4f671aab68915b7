#!/usr/bin/env python3
"""
Customer Reply Engine - retrieval-augmented reply pipeline CLI
"""

import asyncio
import json
import logging
import os
import sys
from pathlib import Path
from typing import Optional

import click
import yaml
from rich.console import Console
from rich.panel import Panel
from rich.progress import Progress, SpinnerColumn, TextColumn
from rich.table import Table

from reply_engine.errors import ReplyEngineError
from reply_engine.reply.models import ReplyResult
from reply_engine.service import ReplyEngine

logger = logging.getLogger(__name__)


def load_env_file():
    """Load environment variables from .env file if it exists."""
    env_file = Path(".env")
    if env_file.exists():
        with open(env_file, 'r') as f:
            for line in f:
                line = line.strip()
                if line and not line.startswith('#') and '=' in line:
                    key, value = line.split('=', 1)
                    os.environ.setdefault(key.strip(), value.strip().strip('"').strip("'"))


def load_config(config_path: str = "config/config.yaml") -> dict:
    """Load configuration from YAML file."""
    try:
        with open(config_path, 'r') as f:
            config = yaml.safe_load(f) or {}
        return config
    except FileNotFoundError:
        print(f"❌ Configuration file not found: {config_path}")
        sys.exit(1)
    except yaml.YAMLError as e:
        print(f"❌ Error parsing configuration file: {e}")
        sys.exit(1)


def setup_logging(config: dict, debug: bool = False):
    """Setup logging configuration."""
    log_config = config.get("logging", {})
    log_level = logging.DEBUG if debug else getattr(logging, log_config.get("level", "INFO"))
    log_format = log_config.get("format", "%(asctime)s - %(name)s - %(levelname)s - %(message)s")

    # Create logs directory if it doesn't exist
    log_file = log_config.get("file", "logs/reply_engine.log")
    Path(log_file).parent.mkdir(parents=True, exist_ok=True)

    logging.basicConfig(
        level=log_level,
        format=log_format,
        handlers=[
            logging.FileHandler(log_file),
            logging.StreamHandler()
        ]
    )


class ReplyEngineCLI:
    """Console front end for the reply engine."""

    def __init__(self, config: dict):
        self.config = config
        self.console = Console()
        self.engine = ReplyEngine(config)
        self.debug_mode = config.get("debug", {}).get("enabled", False)

    async def reply(self, query: str, customer_id: str, target_language: Optional[str] = None) -> ReplyResult:
        with Progress(
            SpinnerColumn(),
            TextColumn("[progress.description]{task.description}"),
            console=self.console
        ) as progress:
            progress.add_task("Composing reply...", total=None)
            result = await self.engine.generate_enhanced_reply(
                query, customer_id, target_language=target_language, debug=self.debug_mode
            )
        self.engine.history.add_message(customer_id, "customer", query)
        self.engine.history.add_message(customer_id, "agent", result.reply)
        return result

    def display_reply(self, result: ReplyResult, debug: bool = False):
        """Display a reply with its sources and signals."""
        metadata = result.metadata
        self.console.print(Panel(
            result.reply,
            title=f"[bold blue]Reply[/bold blue] (confidence {result.confidence:.2f})",
            border_style="blue"
        ))

        signals = Table(title="Signals")
        signals.add_column("Property", style="cyan")
        signals.add_column("Value", style="white")
        signals.add_row("Language", f"{metadata['language']} ({metadata['language_confidence']:.2f})")
        signals.add_row("Reply Language", metadata["reply_language"])
        signals.add_row("Sentiment", metadata["sentiment"]["sentiment"])
        signals.add_row("Intent", metadata["intent"]["intent"])
        signals.add_row("Translated", "✅ Yes" if metadata["translated"] else "No")
        if metadata["translation_fallback"]:
            signals.add_row("Translation", "[yellow]fell back to untranslated reply[/yellow]")
        self.console.print(signals)

        if result.sources:
            sources = Table(title="Sources")
            sources.add_column("#", style="dim")
            sources.add_column("ID", style="cyan")
            sources.add_column("Title", style="white")
            sources.add_column("Relevance", style="green")
            for rank, source in enumerate(result.source_dicts(), start=1):
                sources.add_row(str(rank), source["id"], source["title"], f"{source['relevance']:.3f}")
            self.console.print(sources)
        else:
            self.console.print("[yellow]No knowledge matched this query.[/yellow]")

        for warning in result.warnings:
            self.console.print(f"[yellow]⚠ {warning.stage}: {warning.reason}[/yellow]")

        if debug:
            debug_table = Table(title="Pipeline Stages")
            debug_table.add_column("Stage", style="cyan")
            debug_table.add_column("Elapsed (s)", style="white")
            for stage, elapsed in metadata["stages"].items():
                debug_table.add_row(stage, f"{elapsed:.3f}")
            self.console.print(debug_table)

    def print_json(self, data):
        self.console.print_json(json.dumps(data, ensure_ascii=False, default=str))

    def show_stats(self):
        """Display system statistics."""
        stats = self.engine.get_stats()
        knowledge, embeddings, learning = stats["knowledge"], stats["embeddings"], stats["learning"]

        kb_table = Table(title="Knowledge Base Statistics")
        kb_table.add_column("Metric", style="cyan")
        kb_table.add_column("Value", style="white")
        kb_table.add_row("Total Items", str(knowledge["total_items"]))
        kb_table.add_row("Categories", str(len(knowledge["categories"])))
        kb_table.add_row("Languages", ", ".join(f"{k} ({v})" for k, v in knowledge["languages"].items()) or "-")

        embedding_table = Table(title="Embedding Statistics")
        embedding_table.add_column("Metric", style="cyan")
        embedding_table.add_column("Value", style="white")
        embedding_table.add_row("Current Model", embeddings["current_model_version"])
        embedding_table.add_row("Up To Date", str(embeddings["items_up_to_date"]))
        embedding_table.add_row("Pending", str(embeddings["items_pending"]))
        embedding_table.add_row("Total Vectors", str(embeddings["index"]["total_vectors"]))
        embedding_table.add_row("Cache Entries", str(embeddings["cache"]["entries"]))

        learning_table = Table(title="Active Learning Statistics")
        learning_table.add_column("Metric", style="cyan")
        learning_table.add_column("Value", style="white")
        learning_table.add_row("Samples", str(learning["total_samples"]))
        learning_table.add_row("With Learning Points", str(learning["samples_with_learning_points"]))
        learning_table.add_row("Average Confidence", f"{learning['average_confidence']:.2f}")
        learning_table.add_row("Update Proposals", str(learning["proposals"]))

        llm_table = Table(title="LLM Providers")
        llm_table.add_column("Provider", style="cyan")
        llm_table.add_column("Requests", style="white")
        for name, count in stats["llm_requests"].items():
            llm_table.add_row(name, str(count))

        self.console.print(kb_table)
        self.console.print(embedding_table)
        self.console.print(learning_table)
        self.console.print(llm_table)

    async def interactive_mode(self, customer_id: str):
        """Run the engine in interactive mode as one customer."""
        self.console.print(Panel(
            "[bold blue]Customer Reply Engine[/bold blue]\n"
            f"Chatting as customer [cyan]{customer_id}[/cyan].\n"
            "Type 'quit' to exit, 'stats' for statistics, 'summary' for a conversation summary.",
            border_style="blue"
        ))

        while True:
            try:
                query = click.prompt("\nMessage")

                if query.lower() in ['quit', 'exit', 'q']:
                    break
                elif query.lower() == 'stats':
                    self.show_stats()
                    continue
                elif query.lower() == 'summary':
                    summary = await self.engine.generate_conversation_summary(customer_id)
                    self.print_json(summary.to_dict())
                    continue
                elif not query.strip():
                    continue

                result = await self.reply(query, customer_id)
                self.display_reply(result, debug=self.debug_mode)

            except KeyboardInterrupt:
                self.console.print("\n[yellow]Exiting...[/yellow]")
                break
            except ReplyEngineError as e:
                self.console.print(f"[red]Error: {e}[/red]")

        await self.engine.close()


def run(coro):
    """Run a coroutine, reporting engine errors instead of tracebacks."""
    try:
        return asyncio.run(coro)
    except ReplyEngineError as e:
        Console().print(f"[red]❌ {type(e).__name__}: {e}[/red]")
        sys.exit(1)


@click.group()
@click.option('--config', '-c', default='config/config.yaml', help='Configuration file path')
@click.option('--debug', '-d', is_flag=True, help='Enable debug mode')
@click.pass_context
def cli(ctx, config, debug):
    """Customer Reply Engine CLI."""
    # Load environment variables first
    load_env_file()

    ctx.ensure_object(dict)
    ctx.obj['config'] = load_config(config)
    ctx.obj['debug'] = debug

    setup_logging(ctx.obj['config'], debug)

    if debug:
        ctx.obj['config'].setdefault('debug', {})['enabled'] = True


@cli.command()
@click.argument('query')
@click.option('--customer', '-u', default='cli-customer', help='Customer id')
@click.option('--language', '-l', help='Reply language override (e.g. fr, zh-TW)')
@click.pass_context
def reply(ctx, query, customer, language):
    """Generate an enhanced reply for a customer query."""
    app = ReplyEngineCLI(ctx.obj['config'])

    async def run_reply():
        result = await app.reply(query, customer, language)
        app.display_reply(result, debug=ctx.obj['debug'])

    run(run_reply())


@cli.command()
@click.option('--original', '-o', required=True, help='Reply the engine generated')
@click.option('--human', '-h', 'human', required=True, help='Reply as corrected by an agent')
@click.option('--query', '-q', required=True, help='Customer query')
@click.option('--source', '-s', multiple=True, help='Knowledge item cited by the original reply')
@click.pass_context
def learn(ctx, original, human, query, source):
    """Learn from a human-corrected reply."""
    app = ReplyEngineCLI(ctx.obj['config'])

    async def run_learn():
        sample = await app.engine.active_learning(original, human, query, source)
        await app.engine.close()
        table = Table(title=f"Learning Sample {sample.id} (confidence {sample.confidence:.2f})")
        table.add_column("Kind", style="cyan")
        table.add_column("Description", style="white")
        for point in sample.learning_points:
            table.add_row(point.kind, point.description)
        app.console.print(table if sample.learning_points else "[green]Replies match, nothing to learn.[/green]")

    run(run_learn())


@cli.command()
@click.argument('text')
@click.pass_context
def detect(ctx, text):
    """Detect the language of a text."""
    app = ReplyEngineCLI(ctx.obj['config'])
    result = run(app.engine.detect_language(text))
    app.print_json(result.to_dict())


@cli.command()
@click.argument('text')
@click.option('--to', '-t', 'target', required=True, help='Target language code')
@click.option('--from', '-f', 'source', help='Source language code')
@click.pass_context
def translate(ctx, text, target, source):
    """Translate text into another language."""
    app = ReplyEngineCLI(ctx.obj['config'])
    app.console.print(run(app.engine.translate_text(text, target, source)))


@cli.command()
@click.argument('text')
@click.pass_context
def sentiment(ctx, text):
    """Analyze the sentiment of a text."""
    app = ReplyEngineCLI(ctx.obj['config'])
    app.print_json(run(app.engine.analyze_sentiment(text)).to_dict())


@cli.command()
@click.argument('text')
@click.pass_context
def intent(ctx, text):
    """Recognize the intent and entities of a text."""
    app = ReplyEngineCLI(ctx.obj['config'])
    app.print_json(run(app.engine.recognize_intent(text)).to_dict())


@cli.command()
@click.argument('customer_id')
@click.option('--limit', '-n', default=20, help='Number of recent messages')
@click.pass_context
def summary(ctx, customer_id, limit):
    """Summarize a customer's recent conversation."""
    app = ReplyEngineCLI(ctx.obj['config'])
    app.print_json(run(app.engine.generate_conversation_summary(customer_id, limit)).to_dict())


@cli.command()
@click.argument('query')
@click.option('--k', '-k', default=5, help='Number of results')
@click.option('--category', help='Only items in this category')
@click.option('--tag', multiple=True, help='Only items with one of these tags')
@click.option('--min-score', type=float, default=0.0, help='Minimum relevance')
@click.pass_context
def search(ctx, query, k, category, tag, min_score):
    """Search knowledge items similar to a query."""
    app = ReplyEngineCLI(ctx.obj['config'])
    filters = {"category": category, "tags": list(tag)} if category or tag else None
    matches = run(app.engine.search_similar_items(query, k, filters, min_score))

    table = Table(title=f"Similar Items for: {query}")
    table.add_column("Rank", style="dim")
    table.add_column("ID", style="cyan")
    table.add_column("Title", style="white")
    table.add_column("Category", style="magenta")
    table.add_column("Score", style="green")
    for match in matches:
        table.add_row(str(match.rank), match.item_id, match.item.title, match.item.category,
                      f"{match.score:.3f}{' *' if match.calibrated else ''}")
    app.console.print(table)


@cli.command('add-item')
@click.option('--title', '-t', required=True, help='Item title')
@click.option('--content', '-b', help='Item content')
@click.option('--file', '-f', 'file_path', type=click.Path(exists=True), help='Read content from a text file')
@click.option('--category', default='general', help='Item category')
@click.option('--tag', multiple=True, help='Item tag')
@click.option('--language', default='en', help='Item language')
@click.option('--no-embed', is_flag=True, help='Store without indexing')
@click.pass_context
def add_item(ctx, title, content, file_path, category, tag, language, no_embed):
    """Add a knowledge item."""
    if file_path:
        content = Path(file_path).read_text(encoding='utf-8')
    app = ReplyEngineCLI(ctx.obj['config'])
    item = run(app.engine.add_knowledge_item(
        title, content or "", embed=not no_embed, category=category, tags=list(tag),
        language=language, source=file_path or "cli",
    ))
    app.console.print(f"[green]✅ Added {item.id}[/green] ({'indexed' if item.embedding_model_version else 'not indexed'})")


@cli.command('embed-item')
@click.argument('item_id')
@click.pass_context
def embed_item(ctx, item_id):
    """Generate the embedding for one knowledge item."""
    app = ReplyEngineCLI(ctx.obj['config'])
    record = run(app.engine.generate_embedding_for_item(item_id))
    app.console.print(f"[green]✅ Embedded {record.item_id}[/green] with {record.model_version} (dim {record.dimension})")


@cli.command()
@click.option('--model-version', '-m', help='Target embedding model version')
@click.pass_context
def regenerate(ctx, model_version):
    """Re-embed all knowledge items with the current model."""
    app = ReplyEngineCLI(ctx.obj['config'])

    async def run_regenerate():
        job = app.engine.batch_regenerate_embeddings(model_version)
        with Progress(SpinnerColumn(), TextColumn("[progress.description]{task.description}"), console=app.console) as progress:
            task = progress.add_task("Regenerating embeddings...", total=None)
            while not job.done:
                progress.update(task, description=f"Regenerating embeddings... {job.processed}/{job.total}")
                await asyncio.sleep(0.2)
            await job.wait()
        return job

    job = run(run_regenerate())
    table = Table(title=f"Regeneration {job.job_id}")
    table.add_column("Metric", style="cyan")
    table.add_column("Value", style="white")
    for key in ("status", "model_version", "total", "succeeded", "skipped", "failed", "purged"):
        table.add_row(key.replace("_", " ").title(), str(getattr(job, key)))
    app.console.print(table)
    for error in job.errors:
        app.console.print(f"  • [red]{error}[/red]")


@cli.command()
@click.argument('item_ids', nargs=-1, required=True)
@click.option('--apply', 'auto_apply', is_flag=True, help='Apply the suggestions')
@click.pass_context
def organize(ctx, item_ids, auto_apply):
    """Suggest categories, tags and relations for knowledge items."""
    app = ReplyEngineCLI(ctx.obj['config'])
    summary = run(app.engine.batch_organize_items(list(item_ids), auto_apply))

    for result in summary["results"]:
        app.print_json(result.to_dict())
    app.console.print(
        f"Processed {summary['processed']}, organized {summary['organized']}, "
        f"applied {summary['applied']}, failed {summary['failed']}"
    )


@cli.command()
@click.option('--min-similarity', '-s', type=float, help='Edge threshold')
@click.option('--output', '-o', type=click.Path(), help='Write the graph as JSON')
@click.pass_context
def graph(ctx, min_similarity, output):
    """Build the knowledge similarity graph."""
    app = ReplyEngineCLI(ctx.obj['config'])
    knowledge_graph = app.engine.generate_knowledge_graph(min_similarity)
    if output:
        with open(output, 'w', encoding='utf-8') as f:
            json.dump(knowledge_graph.to_dict(), f, indent=2, ensure_ascii=False)
        app.console.print(f"[green]✅ Graph written to {output}[/green]")
    app.console.print(f"{len(knowledge_graph.nodes)} nodes, {len(knowledge_graph.edges)} edges")


@cli.command()
@click.option('--query-log', type=click.Path(exists=True), help='JSON object of query counts per category')
@click.option('--suggest/--no-suggest', default=True, help='Ask the LLM for category and tag changes')
@click.pass_context
def analyze(ctx, query_log, suggest):
    """Analyze knowledge structure and suggest taxonomy changes."""
    app = ReplyEngineCLI(ctx.obj['config'])
    log = None
    if query_log:
        with open(query_log, 'r', encoding='utf-8') as f:
            log = json.load(f)
    report = run(app.engine.analyze_knowledge_structure(log, suggest=suggest))
    app.print_json(report.to_dict())


@cli.command()
@click.pass_context
def stats(ctx):
    """Show system statistics."""
    app = ReplyEngineCLI(ctx.obj['config'])
    app.show_stats()


@cli.command()
@click.option('--customer', '-u', default='cli-customer', help='Customer id')
@click.pass_context
def interactive(ctx, customer):
    """Start interactive mode."""
    app = ReplyEngineCLI(ctx.obj['config'])
    asyncio.run(app.interactive_mode(customer))


if __name__ == '__main__':
    cli()
