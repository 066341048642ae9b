import asyncio, dataclasses, time
import click
from rich.console import Console
from rich.progress import Progress, SpinnerColumn, TextColumn, TimeElapsedColumn

from .application.use_cases import backfill_once, run_indexer
from .config import IndexerConfig
from .domain.errors import IndexerError
from .logging_config import configure_logging

console = Console()


def _load_config(program_id: str | None, db_url: str | None, log_level: str | None, json_logs: bool) -> IndexerConfig:
    try:
        config = IndexerConfig.from_env()
    except IndexerError as e:
        raise click.ClickException(str(e))
    overrides = {}
    if program_id: overrides["program_id"] = program_id
    if db_url: overrides["db_url"] = db_url
    if log_level: overrides["log_level"] = log_level
    if json_logs: overrides["log_json"] = True
    config = dataclasses.replace(config, **overrides)
    configure_logging(config.log_level, config.log_json)
    return config

def _common(f):
    f = click.option("--json-logs", is_flag=True, default=False, help="Emit JSON log lines")(f)
    f = click.option("--log-level", type=str, default=None, help="DEBUG | INFO | WARNING | ERROR")(f)
    f = click.option("--db-url", type=str, default=None, help="SQLAlchemy URL of the materialized view")(f)
    f = click.option("--program-id", type=str, default=None, help="Program whose events are indexed")(f)
    return f

@click.group()
def cli():
    """pixind: pixel canvas event indexer (live logs, backfill and place names)."""

@cli.command("run")
@_common
@click.option("--backfill/--no-backfill", default=True, show_default=True,
              help="Run the historical backfill alongside live subscriptions")
def run_cmd(program_id, db_url, log_level, json_logs, backfill):
    """Index both sources continuously until interrupted."""
    config = _load_config(program_id, db_url, log_level, json_logs)
    console.print(f"[bold]indexing[/] program={config.program_id or '?'} "
                  f"sources={', '.join(s.label for s in config.sources)}")
    try:
        asyncio.run(run_indexer(config, backfill=backfill))
    except KeyboardInterrupt:
        console.print("[yellow]stopped[/]")
    except IndexerError as e:
        raise click.ClickException(str(e))

@cli.command("backfill")
@_common
@click.option("--source", "sources", multiple=True, help="Source label; repeat to select several (default: all)")
def backfill_cmd(program_id, db_url, log_level, json_logs, sources):
    """One historical catch-up pass, then exit."""
    config = _load_config(program_id, db_url, log_level or "WARNING", json_logs)
    t0 = time.time()
    progress = Progress(SpinnerColumn(), TextColumn("[bold]backfilling[/]"), TimeElapsedColumn(), transient=True)
    try:
        with progress:
            progress.add_task("backfill", total=None)
            results = asyncio.run(backfill_once(config, sources))
    except IndexerError as e:
        raise click.ClickException(str(e))

    elapsed = time.time() - t0
    for st in results:
        status = "[red]failed[/]" if st.failed else "[green]done[/]"
        console.print(
            f"[bold]{st.label}[/]: {status}  "
            f"pages={st.pages}  seen={st.signatures_seen}  "
            f"[green]applied[/]={st.applied}  "
            f"[yellow]skipped[/]={st.skipped_seen}  "
            f"missing={st.skipped_missing}  watermark={st.watermark or '-'}"
        )
    console.print(f"[bold]elapsed[/]: {elapsed:.2f}s")
    if any(st.failed for st in results):
        raise SystemExit(1)
