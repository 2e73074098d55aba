# memberledger/cli/main.py
"""
CLI for inspecting and verifying a member vault, and for running a local demo network.
"""

import asyncio
import logging
import sqlite3
from pathlib import Path
from typing import Optional

import typer
from rich.console import Console
from rich.logging import RichHandler
from rich.table import Table

from memberledger.config import LedgerConfig, default_db_path
from memberledger.contract.verifier import MemberContract
from memberledger.core.types import MemberModel, Party
from memberledger.errors import MemberLedgerError
from memberledger.node import create_network
from memberledger.services.notary import Notary
from memberledger.storage import SQLiteStorage

app = typer.Typer(
    name="member-ledger",
    help="Inspect, verify and exercise a multi-party member ledger",
    add_completion=False,
    no_args_is_help=True,
)

console = Console()


def open_storage(db: Optional[Path]) -> SQLiteStorage:
    db_path = default_db_path(db)
    if not db_path.exists():
        console.print(f"[red]Database file not found: {db_path}[/]")
        console.print("[yellow]To get started:[/]")
        console.print("  • Run the demo first: member-ledger demo --db /path/to/vault.db")
        console.print("  • Set env var: export MEMBER_LEDGER_DB_PATH=/path/to/vault.db")
        raise typer.Exit(1)
    try:
        return SQLiteStorage(db_path)
    except sqlite3.Error as e:
        console.print(f"[red]Failed to open database: {str(e)}[/]")
        raise typer.Exit(1)


@app.callback()
def main(
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Log flow progress"),
):
    """Manage a member ledger vault."""
    if verbose:
        logging.basicConfig(level=logging.INFO, format="%(message)s", handlers=[RichHandler(show_path=False)])


@app.command()
def members(
    db: Optional[Path] = typer.Option(None, "--db", help="Path to SQLite vault (overrides MEMBER_LEDGER_DB_PATH)"),
    title: Optional[str] = typer.Option(None, "--title", help="Filter: title contains"),
    first_name: Optional[str] = typer.Option(None, "--first-name", help="Filter: first name contains"),
    last_name: Optional[str] = typer.Option(None, "--last-name", help="Filter: last name contains"),
):
    """List current (unconsumed) members."""
    with open_storage(db) as storage:
        found = storage.query_members(title=title, first_name=first_name, last_name=last_name)

    if not found:
        console.print("[yellow]No members found.[/]")
        return

    table = Table(title="Members")
    table.add_column("Linear ID")
    table.add_column("Title")
    table.add_column("First Name")
    table.add_column("Last Name")
    table.add_column("Creator")
    table.add_column("Viewer")
    for sar in found:
        m = sar.state
        table.add_row(m.linear_id, m.title or "—", m.first_name or "—", m.last_name or "—",
                      m.creator.name, m.viewer.name)
    console.print(table)


@app.command()
def history(
    linear_id: str = typer.Argument(..., help="Linear ID of the member"),
    db: Optional[Path] = typer.Option(None, "--db", help="Path to SQLite vault"),
):
    """Show every recorded version of a member."""
    with open_storage(db) as storage:
        versions = storage.history(linear_id)

    if not versions:
        console.print(f"[yellow]No versions found for '{linear_id}'[/]")
        raise typer.Exit(1)

    for sar, consumed_by in versions:
        status = f"[dim]consumed by {consumed_by[:12]}…[/]" if consumed_by else "[green]current[/]"
        m = sar.state
        console.print(f"[bold cyan]{sar.ref}[/] {status}")
        console.print(f"  {m.title} {m.first_name} {m.last_name} | viewer={m.viewer.name}"
                      + (f" | observer={m.observer.name}" if m.observer else ""))


@app.command()
def transactions(
    db: Optional[Path] = typer.Option(None, "--db", help="Path to SQLite vault"),
):
    """List recorded transitions."""
    with open_storage(db) as storage:
        stored = storage.list_transactions()

    if not stored:
        console.print("[yellow]No transactions recorded yet.[/]")
        return

    table = Table(title="Transactions")
    table.add_column("Transaction ID")
    table.add_column("Command")
    table.add_column("Inputs")
    table.add_column("Signatures")
    table.add_column("Recorded At")
    for t in stored:
        table.add_row(t.stx.id, t.stx.tx.command.kind, str(len(t.stx.tx.inputs)),
                      str(len(t.stx.sigs)), t.recorded_at)
    console.print(table)


@app.command()
def verify(
    tx_id: str = typer.Argument(..., help="Transaction ID to verify"),
    db: Optional[Path] = typer.Option(None, "--db", help="Path to SQLite vault"),
    notary_key: Optional[str] = typer.Option(None, "--notary-key", help="Notary public key (base64url) to check the receipt"),
):
    """Re-run the contract and signature checks on a stored transition."""
    with open_storage(db) as storage:
        try:
            stored = storage.load_transaction(tx_id)
        except ValueError as e:
            console.print(f"[red]✗ {str(e)}[/]")
            raise typer.Exit(1)

    if stored is None:
        console.print(f"[red]Transaction '{tx_id}' not found[/]")
        raise typer.Exit(1)

    config = LedgerConfig.from_env()
    result = MemberContract(enforce_linear_id=config.enforce_linear_id).verify(stored.stx.tx)
    if not result:
        console.print(f"[red]✗ Contract rejected '{tx_id}'[/]")
        for failure in result.failures:
            console.print(f"  • {failure.category}: {failure.message}")
        raise typer.Exit(1)

    try:
        stored.stx.verify_signatures()
    except MemberLedgerError as e:
        console.print(f"[red]✗ Signature check failed for '{tx_id}': {str(e)}[/]")
        raise typer.Exit(1)

    if notary_key:
        receipt = stored.receipt
        notary = Party(name=receipt.notary, public_key=notary_key) if receipt else None
        if receipt is None or not Notary.verify_receipt(receipt, notary, tx_id):
            console.print(f"[red]✗ Finality receipt of '{tx_id}' does not verify[/]")
            raise typer.Exit(1)
    elif stored.receipt is None:
        console.print("[yellow]Warning: no finality receipt recorded.[/]")

    console.print(f"[green]✓ Transaction '{tx_id}' is valid[/]")
    console.print(f"  {result.message}, {len(stored.stx.sigs)} signatures")


@app.command()
def demo(
    db: Optional[Path] = typer.Option(None, "--db", help="SQLite vault for the creator party"),
    creator: str = typer.Option("O=PartyA,L=London,C=GB", "--creator"),
    viewer: str = typer.Option("O=PartyB,L=New York,C=US", "--viewer"),
    observer: str = typer.Option("O=PartyC,L=Paris,C=FR", "--observer"),
):
    """Issue a member on a local three-party network, then edit it."""
    db_path = default_db_path(db)
    db_path.parent.mkdir(parents=True, exist_ok=True)
    config = LedgerConfig.from_env()

    async def run():
        storage = SQLiteStorage(db_path)
        network, nodes = create_network([creator, viewer, observer], config=config,
                                        storages={creator: storage})
        try:
            issued = await nodes[creator].issue(MemberModel(
                viewer=viewer, title="Mr", first_name="John", last_name="Smith"))
            edited = await nodes[creator].edit(issued.state.linear_id, MemberModel(
                viewer=viewer, observer=observer, title="Dr", first_name="John", last_name="Smith"))
            await network.join()
            return issued, edited
        finally:
            storage.close()

    try:
        issued, edited = asyncio.run(run())
    except MemberLedgerError as e:
        console.print(f"[red]Demo failed: {str(e)}[/]")
        raise typer.Exit(1)

    console.print(f"[green]Issued[/] {issued.state.linear_id} as {issued.ref}")
    console.print(f"[green]Edited[/] {edited.state.linear_id} as {edited.ref}")
    console.print(f"Vault: {db_path}")


if __name__ == "__main__":
    app()
