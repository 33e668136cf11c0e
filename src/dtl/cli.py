import asyncio, time
import click
from rich.console import Console
from rich.progress import (
    Progress, BarColumn, TextColumn, TimeElapsedColumn,
    TimeRemainingColumn, MofNCompleteColumn, SpinnerColumn
)
from rich.panel import Panel

from .config import Settings
from .domain.errors import DTLError
from .logging import setup_logging

console = Console()

@click.group()
def cli():
    """dtl: L1 chain-data persistence for a rollup data-transport layer."""

@cli.command("sync")
@click.option("--rpc", default=None, help="L1 RPC endpoint URL (default: DTL_RPC_URL)")
@click.option("--from-block", "from_block", required=True, help="First block number, or 'earliest'")
@click.option("--to-block", "to_block", default="latest", show_default=True, help="Last block number, or 'latest'")
@click.option("--data-dir", default=None, help="Storage directory (default: DTL_DATA_DIR)")
@click.option("--earliest-block", type=int, default=None, help="Ignore blocks below this height")
@click.option("--ctc", "ctc_address", default=None, help="Canonical transaction chain address")
@click.option("--scc", "scc_address", default=None, help="State commitment chain address")
@click.option("--max-attempts", type=int, default=None, help="Attempts per block before giving up")
def sync_cmd(rpc, from_block, to_block, data_dir, earliest_block, ctc_address, scc_address, max_attempts):
    """Persist L1 blocks, relevant transactions and rollup outputs for a block range."""
    from .application.use_cases import sync_range_parquet

    overrides = {k: v for k, v in {
        "RPC_URL": rpc,
        "DATA_DIR": data_dir,
        "EARLIEST_BLOCK": earliest_block,
        "CANONICAL_TX_CHAIN_ADDRESS": ctc_address,
        "STATE_COMMITMENT_CHAIN_ADDRESS": scc_address,
        "MAX_ATTEMPTS": max_attempts,
    }.items() if v is not None}
    settings = Settings(**overrides)
    setup_logging(settings.LOG_LEVEL)

    if not (settings.CANONICAL_TX_CHAIN_ADDRESS or settings.STATE_COMMITMENT_CHAIN_ADDRESS):
        console.print("[yellow]no rollup contract configured: only blocks will be stored[/]")

    async def run():
        t0 = time.time()
        progress = Progress(SpinnerColumn(),
                            TextColumn("[bold]persisting blocks[/]"),
                            BarColumn(),
                            MofNCompleteColumn(),
                            TextColumn("•"),
                            TimeElapsedColumn(),
                            TextColumn("→"),
                            TimeRemainingColumn(),
                            TextColumn(" • {task.description}"),
                            transient=False,
                            expand=True,
                            )
        with progress:
            task = progress.add_task(description=f"{from_block}-{to_block}", total=None)

            def advance(block):
                progress.update(task, advance=1, description=f"block {block.number:,}")

            stats = await sync_range_parquet(
                settings=settings,
                start_block=_block_spec(from_block),
                end_block=_block_spec(to_block),
                on_block=advance,
            )
        elapsed = time.time() - t0
        console.print(f"[bold]done[/]: {elapsed:.2f}s")
        console.print(
            f"[bold]summary[/]: "
            f"[green]processed[/]={stats['processed']}  "
            f"[yellow]skipped[/]={stats['skipped']}  "
            f"[red]retried[/]={stats['retried']}"
        )

    try:
        asyncio.run(run())
    except (DTLError, ValueError) as e:
        raise click.ClickException(str(e))


@cli.command("status")
@click.option("--data-dir", default=None, help="Storage directory (default: DTL_DATA_DIR)")
@click.option("--block", "block_number", type=int, required=True)
def status_cmd(data_dir, block_number):
    """Show the persistence flags stored for one block."""
    from .adapters.parquet_store import ParquetDataService

    settings = Settings(**({"DATA_DIR": data_dir} if data_dir else {}))
    store = ParquetDataService(settings.DATA_DIR)
    state = asyncio.run(store.get_persistence_state(block_number))
    block = store.read_block(block_number)

    def flag(v: bool) -> str: return "[green]yes[/]" if v else "[red]no[/]"
    body = "\n".join([
        f"hash:                 {block.hash if block else '-'}",
        f"block:                {flag(state.block_persisted)}",
        f"transactions:         {flag(state.transactions_persisted)}",
        f"rollup transactions:  {flag(state.rollup_transactions_persisted)}",
        f"state roots:          {flag(state.state_roots_persisted)}",
        f"processed:            {flag(bool(block) and store.progress.is_processed(block.hash))}",
    ])
    console.print(Panel(body, title=f"block {block_number:,}"))


def _block_spec(v: str):
    s = str(v).strip().lower()
    if s in ("latest", "earliest", "genesis"):
        return s
    try:
        return int(s)
    except ValueError:
        raise click.BadParameter(f"not a block number: {v}")


if __name__ == "__main__":
    cli()
