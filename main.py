"""
Equity Screener — CLI entry point.

Wires the pipeline (models → intent → equities domain → orchestrator) and
runs either a single query or an interactive loop.
"""

import argparse
import asyncio
import logging
import os
import sys

from dotenv import load_dotenv
from rich import box
from rich.console import Console
from rich.panel import Panel
from rich.table import Table
from rich.text import Text

from domains.equities.config import get_tier_display_name
from domains.equities.data_selector import DataSelector
from domains.equities.provider import StockDataProvider
from domains.equities.ranking import AIFieldResolver, AIRanker
from domains.equities.records import RecordResolver
from entry.cli import CLIAdapter
from intent.adapter import IntentAdapter
from models.selector import ModelSelector
from orchestrator.orchestrator import Orchestrator
from shared.models import PipelineResult

# ─── Configuration ──────────────────────────────────────────────

logger = logging.getLogger(__name__)

# Ensure local .env is loaded before reading runtime configuration.
load_dotenv(override=False)

LOG_LEVEL = logging.INFO
PRIMARY_PROVIDER = "gemini"
PRIMARY_BASE_URL = "https://generativelanguage.googleapis.com"
PRIMARY_MODEL = "gemini-2.5-flash"
SECONDARY_PROVIDER = "openai_compatible"
SECONDARY_BASE_URL = "https://api.groq.com/openai"
SECONDARY_MODEL = "mixtral-8x7b-32768"
RESULT_COLUMNS = [("symbol", "Symbol"), ("current_price", "Price"), ("percent_change", "% Chg")]

# ─── Rich Console ───────────────────────────────────────────────

console = Console()


def setup_logging(verbose: bool = False) -> None:
    """Configure logging."""
    logging.basicConfig(
        level=logging.DEBUG if verbose else LOG_LEVEL,
        format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
        datefmt="%H:%M:%S",
    )


def build_model_chain() -> list[ModelSelector]:
    """Primary (Gemini) then secondary (OpenAI-compatible, Groq by default)."""
    chain = [
        ModelSelector.from_env(
            "PRIMARY",
            provider=PRIMARY_PROVIDER,
            base_url=PRIMARY_BASE_URL,
            model_name=PRIMARY_MODEL,
            api_key_fallback_env="GEMINI_API_KEY",
        )
    ]
    if os.getenv("SECONDARY_MODEL_API_KEY", "").strip() or os.getenv("GROQ_API_KEY", "").strip() or os.getenv(
        "SECONDARY_MODEL_PROVIDER", ""
    ).strip():
        chain.append(
            ModelSelector.from_env(
                "SECONDARY",
                provider=SECONDARY_PROVIDER,
                base_url=SECONDARY_BASE_URL,
                model_name=SECONDARY_MODEL,
                api_key_fallback_env="GROQ_API_KEY",
            )
        )
    logger.info("Model chain: %s", " → ".join(model.label for model in chain))
    return chain


def build_pipeline(skip_cache: bool = False) -> tuple[CLIAdapter, Orchestrator]:
    """Wire all layers together."""
    models = build_model_chain()
    intent_adapter = IntentAdapter(models=models)
    data_selector = DataSelector(
        provider=StockDataProvider(),
        ranker=AIRanker.from_env(models),
        field_resolver=AIFieldResolver.from_env(models),
    )
    orchestrator = Orchestrator(intent_adapter=intent_adapter, data_selector=data_selector)
    return CLIAdapter(skip_cache=skip_cache), orchestrator


def _format_value(value) -> str:
    if value is None:
        return "-"
    if isinstance(value, float):
        return f"{value:,.2f}"
    return str(value)


def render_result(result: PipelineResult) -> None:
    """Render a PipelineResult to the CLI using Rich."""
    console.print()
    if not result.success:
        console.print(Panel(
            Text(f"Error: {result.error}", style="bold red"),
            title=f"❌ Failed at {result.stage} ({result.error_kind})",
            border_style="red",
            box=box.ROUNDED,
        ))
        for suggestion in result.suggestions:
            console.print(Text(
                f"  ℹ️  '{suggestion.invalid}' → did you mean: {', '.join(suggestion.suggestions)}?",
                style="dim",
            ))
        return

    meta = result.metadata
    summary = (
        f"Found {meta.get('returned', 0)} of {meta.get('afterFiltering', 0)} matching stocks "
        f"({get_tier_display_name(meta.get('dataSource'))}, {meta.get('processingTime', 0):.0f} ms)"
    )
    console.print(Panel(Text(summary, style="bold green"), title="✅ Result", border_style="green", box=box.ROUNDED))

    clean_query = result.clean_query
    columns = list(RESULT_COLUMNS)
    if clean_query is not None:
        for field in [condition.field for condition in clean_query.conditions] + [clean_query.order_by]:
            if field and field not in [key for key, _ in columns]:
                columns.append((field, field))

    resolver = RecordResolver()
    table = Table(box=box.SIMPLE_HEAVY, show_header=True, header_style="bold cyan")
    table.add_column("#", style="dim")
    for _, title in columns:
        table.add_column(title)
    for rank, record in enumerate(result.results, start=1):
        row = [str(rank)]
        for key, _ in columns:
            if key == "symbol":
                row.append(str(record.get("symbol", "-")))
            else:
                row.append(_format_value(resolver.resolve(record, key)))
        table.add_row(*row)
    console.print(table)

    details = Table(box=box.MINIMAL, show_header=False, padding=(0, 1))
    details.add_column("Key", style="bold yellow")
    details.add_column("Value", style="white")
    details.add_row("Normalized", result.normalized_query or "")
    details.add_row("Extraction", f"{meta.get('extractionMode')} via {meta.get('extractionSource')}")
    details.add_row("Confidence", f"{meta.get('confidence', 0.0):.0%}")
    for warning in meta.get("warnings") or []:
        details.add_row("Warning", warning)
    console.print(Panel(details, title="🧠 Query", border_style="yellow", box=box.ROUNDED))


async def run_query(query: str, skip_cache: bool, as_json: bool) -> int:
    """Run one query and print the result. Returns a process exit code."""
    cli, orchestrator = build_pipeline(skip_cache=skip_cache)
    try:
        text, options = cli.read_input(query)
        result = await orchestrator.run(text, options)
    finally:
        await orchestrator.close()

    if as_json:
        print(result.model_dump_json(by_alias=True, indent=2))
    else:
        render_result(result)
    return 0 if result.success else 1


async def run_interactive_loop(skip_cache: bool) -> None:
    """Interactive query loop."""
    console.print(Panel(
        Text.from_markup(
            "[bold cyan]Equity Screener[/bold cyan]\n"
            "[dim]Ask e.g. 'top 10 gainers in nifty 50' or 'stocks with pe ratio less than 15'[/dim]\n"
            "[dim]Type 'exit' to quit[/dim]"
        ),
        title="📈",
        border_style="cyan",
        box=box.DOUBLE,
    ))

    try:
        cli, orchestrator = build_pipeline(skip_cache=skip_cache)
    except Exception as e:
        console.print(f"[bold red]Failed to initialize pipeline:[/] {e}")
        sys.exit(1)

    console.print(f"[dim]Session: {cli.session_id}[/dim]")
    try:
        while True:
            raw_input = console.input("[bold cyan]Query → [/]")
            if raw_input.strip().lower() in ("exit", "quit", "q"):
                console.print("[dim]Goodbye! 👋[/dim]")
                break
            if not raw_input.strip():
                continue

            text, options = cli.read_input(raw_input)
            with console.status("[yellow]Screening...[/yellow]", spinner="dots"):
                result = await orchestrator.run(text, options)
            render_result(result)
    finally:
        await orchestrator.close()


def main() -> None:
    """Entrypoint with CLI args."""
    parser = argparse.ArgumentParser(description="Natural-language equity screener")
    parser.add_argument("query", nargs="?", help="Query to run (omit for interactive mode)")
    parser.add_argument("--skip-cache", action="store_true", help="Bypass the extraction cache")
    parser.add_argument("--json", action="store_true", help="Print the raw pipeline result as JSON")
    parser.add_argument("--verbose", action="store_true", help="Enable debug logging")
    args = parser.parse_args()

    setup_logging(args.verbose)

    try:
        if args.query:
            sys.exit(asyncio.run(run_query(args.query, skip_cache=args.skip_cache, as_json=args.json)))
        asyncio.run(run_interactive_loop(skip_cache=args.skip_cache))
    except KeyboardInterrupt:
        pass


if __name__ == "__main__":
    main()
