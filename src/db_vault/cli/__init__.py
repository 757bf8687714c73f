"""CLI for db-vault backup and restore operations.

Usage:
    db-vault produce-now shop
    db-vault verify-restore shop
    db-vault restore shop --database shop_copy --yes
    db-vault list-tables shop
    db-vault restore-table shop customers --yes
    db-vault list-backups shop --tier hourly
    db-vault run-once
    db-vault daemon

Commands:
    produce-now     - Dump a target and store a new artifact
    verify-restore  - Restore an artifact into a throwaway database
    restore         - Drop and recreate the target database from an artifact
    list-tables     - List tables contained in an artifact
    restore-table   - Restore a single table from an artifact
    list-backups    - List stored artifacts
    run-once        - Run one backup/verify/prune cycle over all targets
    daemon          - Run cycles hourly until interrupted
"""

import argparse
import asyncio
import logging
import sys

from rich.console import Console
from rich.logging import RichHandler
from rich.prompt import Confirm
from rich.table import Table

from db_vault.config.loader import load_config
from db_vault.config.models import TIERS
from db_vault.models import OperationResult
from db_vault.scheduler import CYCLE_INTERVAL
from db_vault.service import BackupService

console = Console()


def _configure_logging(verbose: bool) -> None:
    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.INFO,
        format="%(message)s",
        datefmt="[%X]",
        handlers=[RichHandler(console=console, rich_tracebacks=True, show_path=False)],
        force=True,
    )


def _load_service(args: argparse.Namespace) -> BackupService | None:
    try:
        config = load_config(args.config)
    except (FileNotFoundError, ValueError) as e:
        console.print(f"[bold red]x[/bold red] {e}")
        return None
    return BackupService(config)


def _report_failure(result: OperationResult) -> int:
    error = result.error
    console.print()
    console.print(f"[bold red]x[/bold red] {result.operation} failed: {error.message}")
    context = [f"kind={error.kind}"]
    if error.target:
        context.append(f"target={error.target}")
    if error.stage:
        context.append(f"stage={error.stage}")
    console.print(f"  [dim]{', '.join(context)}[/dim]")
    return 1


def _print_restore(result: OperationResult) -> None:
    report = result.restore
    if report is None:
        return
    console.print(f"  Database: [cyan]{report.database}[/cyan]")
    if report.strategy:
        console.print(
            f"  Applied via {report.strategy}: {report.statements_executed} executed, "
            f"{report.statements_failed} failed, {report.statements_skipped} skipped"
        )
    if report.rows_restored is not None:
        console.print(f"  Rows restored: {report.rows_restored}")
    if report.verify_result is not None:
        console.print(f"  Verification result: {report.verify_result}")
    for error in report.errors:
        console.print(f"  [yellow]{error}[/yellow]")


def _confirm(args: argparse.Namespace, message: str) -> bool:
    if args.yes:
        return True
    console.print(f"[bold yellow]![/bold yellow] {message}")
    if not Confirm.ask("Continue?", default=False, console=console):
        console.print("Cancelled.")
        return False
    return True


# ============================================================================
# Async command implementations
# ============================================================================


async def _async_produce_now(args: argparse.Namespace) -> int:
    service = _load_service(args)
    if service is None:
        return 1
    console.print(f"Backing up [bold cyan]{args.target}[/bold cyan]...", style="dim")
    result = await service.produce_now(args.target)
    if not result.success:
        return _report_failure(result)
    meta = result.artifact.metadata
    console.print(f"[bold green]v[/bold green] Stored {result.artifact.path}")
    console.print(f"  sha256: {meta.sha256}")
    console.print(
        f"  {meta.size_bytes} bytes, encrypted={meta.encrypted}, dump={meta.dump_strategy}"
    )
    return 0


async def _async_verify_restore(args: argparse.Namespace) -> int:
    service = _load_service(args)
    if service is None:
        return 1
    result = await service.verify_restore(
        args.target,
        artifact=args.artifact,
        verify_query=args.verify_query,
        location=args.location,
    )
    if not result.success:
        _print_restore(result)
        return _report_failure(result)
    console.print(f"[bold green]v[/bold green] Verify-restore of {args.target} succeeded")
    _print_restore(result)
    return 0


async def _async_restore(args: argparse.Namespace) -> int:
    service = _load_service(args)
    if service is None:
        return 1
    database = args.database or "the target database"
    if args.location:
        database += f" on restore location {args.location}"
    if not _confirm(args, f"This will DROP and recreate {database} for {args.target}."):
        return 0
    result = await service.destructive_restore(
        args.target, artifact=args.artifact, database=args.database, location=args.location
    )
    if not result.success:
        _print_restore(result)
        return _report_failure(result)
    console.print(f"[bold green]v[/bold green] Restore of {args.target} complete")
    _print_restore(result)
    return 0


async def _async_list_tables(args: argparse.Namespace) -> int:
    service = _load_service(args)
    if service is None:
        return 1
    result = await service.list_tables(args.target, artifact=args.artifact)
    if not result.success:
        return _report_failure(result)
    console.print(f"[dim]{result.details.get('artifact')}[/dim]")
    for name in result.tables:
        console.print(f"  {name}")
    console.print(f"\n{len(result.tables)} table(s)")
    return 0


async def _async_restore_table(args: argparse.Namespace) -> int:
    service = _load_service(args)
    if service is None:
        return 1
    if not args.verify and not _confirm(
        args, f"This will DROP table {args.table} in {args.database or args.target}."
    ):
        return 0
    result = await service.restore_table(
        args.target,
        args.table,
        artifact=args.artifact,
        database=args.database,
        verify=args.verify,
        location=args.location,
    )
    if not result.success:
        _print_restore(result)
        return _report_failure(result)
    console.print(f"[bold green]v[/bold green] Table {args.table} restored")
    _print_restore(result)
    return 0


async def _async_run_once(args: argparse.Namespace) -> int:
    service = _load_service(args)
    if service is None:
        return 1
    result = await service.run_cycle_once()
    cycle = result.cycle
    if cycle is not None:
        table = Table(title="Cycle results")
        table.add_column("Target", style="cyan")
        table.add_column("Artifact")
        table.add_column("Verified")
        table.add_column("Pruned", justify="right")
        table.add_column("Error", style="red")
        for r in cycle.results:
            table.add_row(
                r.target,
                r.artifact.path.name if r.artifact else "-",
                "yes" if r.verify and r.verify.success else "-",
                str(sum(len(v) for v in r.pruned.values())),
                f"{r.error.kind}: {r.error.message}" if r.error else "",
            )
        console.print(table)
    return 0 if result.success else 1


async def _async_daemon(args: argparse.Namespace) -> int:
    service = _load_service(args)
    if service is None:
        return 1
    console.print(f"Running cycles every {args.interval:g}s; Ctrl-C stops after the current cycle")
    result = await service.run_cycle_daemon(interval=args.interval)
    console.print(f"Stopped after {result.details.get('cycles', 0)} cycle(s)")
    return 0 if result.success else 1


# ============================================================================
# Sync command wrappers
# ============================================================================


def cmd_produce_now(args: argparse.Namespace) -> int:
    """Handle produce-now command."""
    return asyncio.run(_async_produce_now(args))


def cmd_verify_restore(args: argparse.Namespace) -> int:
    """Handle verify-restore command."""
    return asyncio.run(_async_verify_restore(args))


def cmd_restore(args: argparse.Namespace) -> int:
    """Handle restore command."""
    return asyncio.run(_async_restore(args))


def cmd_list_tables(args: argparse.Namespace) -> int:
    """Handle list-tables command."""
    return asyncio.run(_async_list_tables(args))


def cmd_restore_table(args: argparse.Namespace) -> int:
    """Handle restore-table command."""
    return asyncio.run(_async_restore_table(args))


def cmd_list_backups(args: argparse.Namespace) -> int:
    """Handle list-backups command (reads local files only)."""
    service = _load_service(args)
    if service is None:
        return 1
    result = asyncio.run(service.list_artifacts(args.target, tier=args.tier))
    if not result.success:
        return _report_failure(result)

    table = Table(title=f"Artifacts for {args.target}")
    table.add_column("Tier", style="cyan")
    table.add_column("File")
    table.add_column("Created")
    table.add_column("Size", justify="right")
    table.add_column("Encrypted")
    table.add_column("SHA-256", style="dim")
    for artifact in result.artifacts:
        meta = artifact.metadata
        table.add_row(
            meta.tier,
            artifact.path.name,
            meta.timestamp.strftime("%Y-%m-%d %H:%M:%S"),
            str(meta.size_bytes),
            "yes" if meta.encrypted else "no",
            meta.sha256[:16],
        )
    console.print(table)
    return 0


def cmd_run_once(args: argparse.Namespace) -> int:
    """Handle run-once command."""
    return asyncio.run(_async_run_once(args))


def cmd_daemon(args: argparse.Namespace) -> int:
    """Handle daemon command."""
    return asyncio.run(_async_daemon(args))


def main() -> int:
    """Main CLI entry point.

    Returns:
        Exit code (0 for success, non-zero for errors).
    """
    parser = argparse.ArgumentParser(
        prog="db-vault",
        description="Backup lifecycle and restore orchestration for MySQL and PostgreSQL",
    )
    parser.add_argument(
        "--config",
        "-c",
        default=None,
        help="Path to db-vault.toml (default: $DB_VAULT_CONFIG or ./db-vault.toml)",
    )
    parser.add_argument("--verbose", "-v", action="store_true", help="Debug logging")

    subparsers = parser.add_subparsers(dest="command", required=True)

    p_produce = subparsers.add_parser("produce-now", help="Dump a target and store a new artifact")
    p_produce.add_argument("target", help="Target name")
    p_produce.set_defaults(func=cmd_produce_now)

    p_verify = subparsers.add_parser(
        "verify-restore", help="Restore an artifact into a throwaway database"
    )
    p_verify.add_argument("target", help="Target name")
    p_verify.add_argument("--artifact", help="Artifact path (default: newest)")
    p_verify.add_argument("--verify-query", help="Query to run after the restore")
    p_verify.add_argument("--location", help="Restore into a configured restore location")
    p_verify.set_defaults(func=cmd_verify_restore)

    p_restore = subparsers.add_parser(
        "restore", help="Drop and recreate the target database from an artifact"
    )
    p_restore.add_argument("target", help="Target name")
    p_restore.add_argument("--artifact", help="Artifact path (default: newest)")
    p_restore.add_argument("--database", help="Database to restore into (default: the target's)")
    p_restore.add_argument("--location", help="Restore into a configured restore location")
    p_restore.add_argument("--yes", "-y", action="store_true", help="Skip confirmation prompt")
    p_restore.set_defaults(func=cmd_restore)

    p_tables = subparsers.add_parser("list-tables", help="List tables contained in an artifact")
    p_tables.add_argument("target", help="Target name")
    p_tables.add_argument("--artifact", help="Artifact path (default: newest)")
    p_tables.set_defaults(func=cmd_list_tables)

    p_table = subparsers.add_parser("restore-table", help="Restore a single table from an artifact")
    p_table.add_argument("target", help="Target name")
    p_table.add_argument("table", help="Table name")
    p_table.add_argument("--artifact", help="Artifact path (default: newest)")
    p_table.add_argument("--database", help="Database to restore into (default: the target's)")
    p_table.add_argument("--location", help="Restore into a configured restore location")
    p_table.add_argument(
        "--verify", action="store_true", help="Restore into a throwaway database instead"
    )
    p_table.add_argument("--yes", "-y", action="store_true", help="Skip confirmation prompt")
    p_table.set_defaults(func=cmd_restore_table)

    p_list = subparsers.add_parser("list-backups", help="List stored artifacts")
    p_list.add_argument("target", help="Target name")
    p_list.add_argument("--tier", choices=TIERS, help="Only this tier")
    p_list.set_defaults(func=cmd_list_backups)

    p_once = subparsers.add_parser("run-once", help="Run one cycle over all targets")
    p_once.set_defaults(func=cmd_run_once)

    p_daemon = subparsers.add_parser("daemon", help="Run cycles until interrupted")
    p_daemon.add_argument(
        "--interval",
        type=float,
        default=CYCLE_INTERVAL,
        help=f"Seconds between cycles (default: {CYCLE_INTERVAL:g})",
    )
    p_daemon.set_defaults(func=cmd_daemon)

    args = parser.parse_args()
    _configure_logging(args.verbose)
    return args.func(args)


if __name__ == "__main__":
    sys.exit(main())
