"""
Ledger Reconciliation Audit — session-wide tally check against the ledger.

Pulls the ledger tally of every law of a session, overwrites local counters
that diverge, and prints what changed. Optionally does the same for the
voter roster's registration flags.

Usage:
    python -m legis_ledger.audit --session-id 6f1c...
    python -m legis_ledger.audit --session-id 6f1c... --voters
    python -m legis_ledger.audit --session-id 6f1c... --database-url sqlite:///other.db --verbose

Exit status is 0 only when every reconciliation fully succeeded.
"""

from __future__ import annotations

import argparse
import asyncio
import sys
import time
from uuid import UUID

from rich.console import Console
from rich.table import Table

from legis_ledger.bootstrap import Services, build_services, configure_logging
from legis_ledger.config import settings
from legis_ledger.domain.results import OperationStatus, VoterSyncState
from legis_ledger.errors import LegislatureError

console = Console()

_STATUS_STYLE = {
    OperationStatus.SUCCEEDED: "[bold green]✓ SUCCEEDED[/bold green]",
    OperationStatus.PARTIAL: "[bold yellow]⚠ PARTIAL[/bold yellow]",
    OperationStatus.FAILED: "[bold red]✗ FAILED[/bold red]",
}


def _counters(counters: dict[str, int] | None) -> str:
    if counters is None:
        return "—"
    return " ".join(f"{name}={count}" for name, count in counters.items())


async def run_audit(
    services: Services,
    session_id: UUID,
    voters: bool = False,
    verbose: bool = False,
) -> bool:
    """
    Reconcile one session (and optionally the voter roster) and print a report.

    Args:
        services: Wired voting core.
        session_id: Session to reconcile.
        voters: Also reconcile voter registration flags.
        verbose: List every law and voter, not only the ones that changed or failed.

    Returns:
        True if everything fully succeeded, False otherwise.
    """
    console.print("\n[bold blue]═══ Ledger Reconciliation Audit ═══[/bold blue]")

    status = await services.ledger.connection_status()
    if status.connected:
        console.print(
            f"  Ledger: [green]connected[/green] "
            f"(block {status.block_number}, network {status.network_id})"
        )
    else:
        console.print(f"  Ledger: [red]unreachable[/red] ({status.error})")

    start_time = time.time()
    try:
        report = await services.engine.sync_session(session_id)
    except LegislatureError as exc:
        console.print(f"[bold red]✗ {exc.code}[/bold red]: {exc.message}")
        return False

    console.print(f"  Session: [bold]{session_id}[/bold]")
    console.print(f"  Laws checked: [bold]{len(report.results)}[/bold]")
    console.print(f"  Laws updated: [bold]{report.updated_count}[/bold]")
    console.print(f"  Status: {_STATUS_STYLE[report.status]}")

    rows = [r for r in report.results if verbose or r.updated or not r.ok]
    if rows:
        table = Table(show_lines=True)
        table.add_column("Law", style="cyan", width=10)
        table.add_column("Result", width=10)
        table.add_column("Before", style="dim")
        table.add_column("After")
        table.add_column("Error", style="red")
        for result in rows:
            if not result.ok:
                outcome = "error"
            elif result.skipped:
                outcome = "skipped"
            else:
                outcome = "updated" if result.updated else "in sync"
            table.add_row(
                str(result.law_id)[:8],
                outcome,
                _counters(result.before),
                _counters(result.after),
                result.error.message if result.error else "",
            )
        console.print(table)

    succeeded = report.status == OperationStatus.SUCCEEDED

    if voters:
        roster = await services.engine.sync_voters()
        console.print(
            f"\n  Voters checked: [bold]{len(roster.reports)}[/bold]  "
            f"updated: [bold]{roster.updated_count}[/bold]  "
            f"status: {_STATUS_STYLE[roster.status]}"
        )
        voter_rows = [
            r for r in roster.reports
            if verbose or r.updated or r.state != VoterSyncState.SYNC
        ]
        if voter_rows:
            table = Table(show_lines=True)
            table.add_column("Voter", style="cyan", width=10)
            table.add_column("Address", style="dim", width=44)
            table.add_column("State", width=12)
            table.add_column("Local", width=6)
            table.add_column("Ledger", width=6)
            table.add_column("Can vote", width=9)
            for r in voter_rows:
                table.add_row(
                    str(r.voter_id)[:8],
                    r.address,
                    r.state.value,
                    "yes" if r.local_registered else "no",
                    "—" if r.ledger_registered is None else ("yes" if r.ledger_registered else "no"),
                    "yes" if r.can_vote else "no",
                )
            console.print(table)
        succeeded = succeeded and roster.status == OperationStatus.SUCCEEDED

    console.print(f"  Audit time: {time.time() - start_time:.3f}s")
    console.print("\n[bold blue]═══ Audit Complete ═══[/bold blue]\n")
    return succeeded


async def _main(args: argparse.Namespace) -> bool:
    audit_settings = settings
    if args.database_url:
        audit_settings = settings.model_copy(update={"database_url": args.database_url})
    services = build_services(audit_settings)
    try:
        return await run_audit(services, args.session_id, voters=args.voters, verbose=args.verbose)
    finally:
        await services.close()


def main() -> None:
    parser = argparse.ArgumentParser(
        description="Reconcile a legislative session's tallies with the ledger"
    )
    parser.add_argument("--session-id", type=UUID, required=True, help="Session to reconcile")
    parser.add_argument(
        "--voters",
        action="store_true",
        help="Also reconcile voter registration flags",
    )
    parser.add_argument(
        "--database-url",
        default=None,
        help="SQLAlchemy connection string (defaults to .env settings)",
    )
    parser.add_argument(
        "--verbose", "-v",
        action="store_true",
        help="List every law and voter",
    )
    args = parser.parse_args()

    configure_logging(settings)
    ok = asyncio.run(_main(args))
    sys.exit(0 if ok else 1)


if __name__ == "__main__":
    main()
