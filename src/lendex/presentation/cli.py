import asyncio, json, signal
from typing import Any, NoReturn, Optional

import typer
from rich.console import Console
from rich.table import Table

from ..adapters.parquet_export import export_parquet
from ..application.event_store import EventStore
from ..application.query import QueryService
from ..application.use_cases import rescan_failed, run_indexer
from ..domain.errors import LendexError
from ..domain.models import IndexerConfig
from ..domain.signatures import DEFAULT_TABLE
from ..log import setup_logging
from ..settings import Settings, load_settings

app = typer.Typer(help="lendex: lending-pool event indexer and loan query tool.", no_args_is_help=True)
console = Console(stderr=True)


def _bootstrap(**overrides: Any) -> Settings:
    try:
        settings = load_settings(**overrides)
    except LendexError as e:
        _fail(e)
    setup_logging(settings.log_level, settings.log_format)
    return settings

def _fail(e: LendexError, code: int = 2) -> NoReturn:
    console.print(f"[red]error[/] [{e.code}]: {e.message}")
    raise typer.Exit(code=code)

def _echo_json(obj: Any) -> None:
    typer.echo(json.dumps(obj, indent=2))

def _query(settings: Settings) -> QueryService:
    store = EventStore.from_dir(settings.output_dir, chronological=settings.chronological_aggregation)
    return QueryService(store, recent_limit=settings.recent_activity_limit)

async def _run_until_signalled(config: IndexerConfig, follow: bool) -> dict[str, int]:
    stop = asyncio.Event()
    loop = asyncio.get_running_loop()
    for sig in (signal.SIGINT, signal.SIGTERM):
        try:
            loop.add_signal_handler(sig, stop.set)
        except (NotImplementedError, RuntimeError):
            pass
    stats = await run_indexer(config, follow=follow, stop_event=stop)
    return stats.as_dict()


@app.command()
def index(
    rpc_url: Optional[str] = typer.Option(None, "--rpc", help="RPC endpoint URL"),
    contract: Optional[str] = typer.Option(None, "--contract", help="Tracked contract address"),
    start_block: Optional[int] = typer.Option(None, "--from-block"),
    output_dir: Optional[str] = typer.Option(None, "--out"),
    batch_size: Optional[int] = typer.Option(None, "--batch-size", help="Blocks per eth_getLogs call"),
    poll_interval: Optional[float] = typer.Option(None, "--poll-interval", help="Seconds between live ticks"),
    unknown: Optional[str] = typer.Option(None, "--unknown", help="drop | retain unknown signatures"),
    resume: Optional[bool] = typer.Option(None, "--resume/--no-resume", help="Continue from the saved cursor"),
    once: bool = typer.Option(False, "--once", help="Stop after historical catch-up"),
):
    """Catch up from the start block, then follow the chain head until interrupted."""
    settings = _bootstrap(
        rpc_url=rpc_url, contract_address=contract, start_block=start_block, output_dir=output_dir,
        batch_size=batch_size, poll_interval_s=poll_interval, unknown_signatures=unknown, resume=resume,
    )
    try:
        config = settings.indexer_config()
        stats = asyncio.run(_run_until_signalled(config, follow=not once))
    except LendexError as e:
        _fail(e)
    console.print(f"[bold]done[/]: {stats}")


@app.command()
def rescan(
    rpc_url: Optional[str] = typer.Option(None, "--rpc"),
    contract: Optional[str] = typer.Option(None, "--contract"),
    output_dir: Optional[str] = typer.Option(None, "--out"),
):
    """Re-fetch block ranges recorded as failed in the scan manifests."""
    settings = _bootstrap(rpc_url=rpc_url, contract_address=contract, output_dir=output_dir)
    try:
        stats = asyncio.run(rescan_failed(settings.indexer_config()))
    except LendexError as e:
        _fail(e)
    console.print(f"[bold]rescan[/]: {stats.as_dict()}")


@app.command()
def events(
    event_type: Optional[str] = typer.Option(None, "--type", help="Event name, case-insensitive"),
    loan_id: Optional[str] = typer.Option(None, "--loan"),
    address: Optional[str] = typer.Option(None, "--address", help="Match any decoded field"),
    output_dir: Optional[str] = typer.Option(None, "--out"),
):
    """List stored events."""
    qs = _query(_bootstrap(output_dir=output_dir))
    _echo_json([e.to_record() for e in qs.list_events(event_type, loan_id, address)])


@app.command()
def loans(
    user: Optional[str] = typer.Option(None, "--user", help="Borrower or lender address"),
    output_dir: Optional[str] = typer.Option(None, "--out"),
):
    """List aggregated loans."""
    qs = _query(_bootstrap(output_dir=output_dir))
    recs = qs.list_user_loans(user) if user else qs.list_loans()
    _echo_json([r.to_dict() for r in recs])


@app.command()
def loan(
    loan_id: str,
    output_dir: Optional[str] = typer.Option(None, "--out"),
):
    """Show one loan."""
    rec = _query(_bootstrap(output_dir=output_dir)).get_loan(loan_id)
    if rec is None:
        console.print(f"loan {loan_id} not found")
        raise typer.Exit(code=1)
    _echo_json(rec.to_dict())


@app.command()
def stats(
    user: Optional[str] = typer.Option(None, "--user"),
    output_dir: Optional[str] = typer.Option(None, "--out"),
):
    """Global (or per-user) statistics."""
    qs = _query(_bootstrap(output_dir=output_dir))
    _echo_json(qs.get_statistics(user).to_dict())


@app.command()
def export(
    out_path: str = typer.Argument(..., help="Parquet file to write"),
    output_dir: Optional[str] = typer.Option(None, "--out"),
):
    """Export stored events to Parquet."""
    settings = _bootstrap(output_dir=output_dir)
    store = EventStore.from_dir(settings.output_dir)
    n = export_parquet(store.events(), out_path)
    console.print(f"[bold]exported[/]: {n} events -> {out_path}")


@app.command()
def signatures():
    """Print the event signature table."""
    table = Table(title="Event signatures")
    table.add_column("topic0")
    table.add_column("event")
    table.add_column("signature")
    for topic0, name in sorted(DEFAULT_TABLE.topics().items(), key=lambda kv: kv[1]):
        spec = DEFAULT_TABLE.by_name(name)
        table.add_row(topic0, name, spec.signature if spec else "")
    Console().print(table)


if __name__ == "__main__":
    app()
