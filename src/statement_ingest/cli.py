"""Command-line interface for statement ingestion."""

import argparse
import sys
from datetime import date
from pathlib import Path
from typing import Optional

from dotenv import load_dotenv
from rich.console import Console
from rich.markup import escape
from rich.table import Table

from statement_ingest import __version__
from statement_ingest.config import Config, ConfigError, load_config, sync_reference_data
from statement_ingest.models.statement import StatementFormat, StatementStatus
from statement_ingest.output.exporter import ExportEngine
from statement_ingest.output.renderers import ExportError
from statement_ingest.processing.ai.categorizer import AICategorizer
from statement_ingest.processing.classifier import Classifier
from statement_ingest.processing.feedback import FeedbackRecorder, RuleProposalJob, RuleProposer
from statement_ingest.processing.jobs import JobRunner
from statement_ingest.processing.locks import AccountLocks
from statement_ingest.processing.pipeline import IngestionPipeline, IngestionResult, Upload
from statement_ingest.processing.reclassifier import ReclassificationJob
from statement_ingest.storage.sqlite_store import NotFoundError, SQLiteStore
from statement_ingest.utils.logging_config import get_logger, setup_logging

# Load environment variables from .env file (if it exists)
load_dotenv()

console = Console()
logger = get_logger(__name__)


def create_parser() -> argparse.ArgumentParser:
    """Create and configure the argument parser.

    Returns:
        Configured ArgumentParser.
    """
    parser = argparse.ArgumentParser(
        prog="statement-ingest",
        description="Ingest bank and card statements into deduplicated, categorized transactions",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  %(prog)s ingest statements/*.csv --account chase-checking
  %(prog)s export --profile ynab --from 2025-01-01 --to 2025-01-31 --mark -o jan.csv
  %(prog)s correct 5f1c... eating-out
  %(prog)s propose-rules && %(prog)s approve-rule 9a2b...
        """,
    )

    parser.add_argument(
        "--version",
        action="version",
        version=f"%(prog)s {__version__}",
    )
    parser.add_argument(
        "--config-dir",
        type=Path,
        default=Path("config"),
        help="Base config directory (default: ./config)",
    )
    parser.add_argument(
        "--db",
        type=Path,
        default=None,
        help="SQLite database path (default: storage.db_path from settings)",
    )
    parser.add_argument(
        "--owner",
        default=None,
        help="Acting user (default: the account's owner)",
    )
    parser.add_argument(
        "-v", "--verbose",
        action="count",
        default=0,
        help="Increase verbosity (-v for info, -vv for debug)",
    )

    subparsers = parser.add_subparsers(dest="command", required=True)

    ingest = subparsers.add_parser("ingest", help="Ingest one or more statement files")
    ingest.add_argument("files", nargs="+", type=Path, help="Statement files")
    ingest.add_argument("--account", required=True, help="Account id the statements belong to")
    ingest.add_argument(
        "--format",
        choices=[f.value for f in StatementFormat],
        default=None,
        help="Skip detection and parse as this format",
    )

    export = subparsers.add_parser("export", help="Export transactions for a date range")
    export.add_argument("--profile", required=True, help="Export profile id")
    export.add_argument(
        "--from", dest="date_from", type=date.fromisoformat, default=None,
        help="Range start (YYYY-MM-DD, inclusive)",
    )
    export.add_argument(
        "--to", dest="date_to", type=date.fromisoformat, default=None,
        help="Range end (YYYY-MM-DD, inclusive)",
    )
    export.add_argument(
        "--account", dest="accounts", action="append", default=None,
        help="Account to include (repeatable; default: all)",
    )
    export.add_argument("--mark", action="store_true", help="Mark exported transactions")
    export.add_argument(
        "--reexport", action="store_true",
        help="Include transactions already exported with this profile",
    )
    export.add_argument("-o", "--output", type=Path, required=True, help="Output file")

    correct = subparsers.add_parser("correct", help="Set a transaction's category")
    correct.add_argument("transaction_id")
    correct.add_argument("category_id")

    reclassify = subparsers.add_parser(
        "reclassify", help="Re-run classification on low-confidence transactions"
    )
    reclassify.add_argument(
        "--threshold", type=float, default=None,
        help="Confidence below which Rule/AI transactions are revisited",
    )
    reclassify.add_argument(
        "--include-unclassified", action="store_true",
        help="Also revisit unclassified transactions",
    )

    subparsers.add_parser("propose-rules", help="Propose rules from recurring corrections")

    approve = subparsers.add_parser("approve-rule", help="Approve a proposed rule")
    approve.add_argument("proposal_id")

    reject = subparsers.add_parser("reject-rule", help="Reject a proposed rule")
    reject.add_argument("proposal_id")

    subparsers.add_parser("status", help="Show database statistics")

    return parser


def get_log_level(verbosity: int) -> str:
    """Convert verbosity count to log level.

    Args:
        verbosity: Number of -v flags.

    Returns:
        Log level string.
    """
    if verbosity >= 2:
        return "DEBUG"
    elif verbosity >= 1:
        return "INFO"
    else:
        return "WARNING"


def open_store(config: Config, db_path: Optional[Path]) -> SQLiteStore:
    """Open the store and sync configured categories and rules into it."""
    store = SQLiteStore(db_path or Path(config.storage.db_path), timeout=config.storage.timeout)
    sync_reference_data(config, store)
    return store


def build_classifier(config: Config, store: SQLiteStore) -> Classifier:
    categorizer = (
        AICategorizer.create(config.ai.to_client_config()) if config.ai.enabled else None
    )
    return Classifier(
        store,
        categorizer=categorizer,
        history_sample_size=config.classification.history_sample_size,
    )


def display_ingestion(results: list[tuple[Path, IngestionResult]]) -> None:
    """Print a per-file summary table."""
    table = Table(title="Ingestion Summary")
    table.add_column("File")
    table.add_column("Format")
    table.add_column("Status")
    for column in ("Rows", "New", "Duplicates", "Failed", "Flagged", "Unclassified"):
        table.add_column(column, justify="right")

    for path, result in results:
        status_style = {
            StatementStatus.PARSED_COMPLETE: "green",
            StatementStatus.PARSED_PARTIAL: "yellow",
            StatementStatus.FAILED: "red",
        }.get(result.status, "white")
        table.add_row(
            path.name,
            result.detected_format.value if result.detected_format else "-",
            f"[{status_style}]{result.status.value}[/{status_style}]",
            str(result.raw_rows),
            str(result.inserted),
            str(result.duplicates),
            str(result.failed),
            str(result.flagged),
            str(result.unclassified),
        )
    console.print(table)

    for path, result in results:
        if result.error:
            console.print(f"[red]{path.name}: {result.error}[/red]")
        if result.ai_unavailable and result.flagged:
            console.print(
                f"[yellow]{path.name}: extraction model unavailable, "
                f"{result.flagged} rows need manual mapping[/yellow]"
            )
        for failure in result.row_errors[:5]:
            console.print(f"  [dim]{path.name} line {failure.line_number}: {failure.reason}[/dim]")
        if len(result.row_errors) > 5:
            console.print(f"  [dim]... and {len(result.row_errors) - 5} more row errors[/dim]")
        for flagged in result.flagged_rows[:5]:
            console.print(
                f"  [yellow]{path.name} line {flagged.line_number} needs mapping:[/yellow] "
                f"{escape(flagged.raw_text)}"
            )
        if len(result.flagged_rows) > 5:
            console.print(f"  [dim]... and {len(result.flagged_rows) - 5} more flagged rows[/dim]")


def cmd_ingest(args: argparse.Namespace, config: Config, store: SQLiteStore) -> int:
    uploads: list[Upload] = []
    for path in args.files:
        if not path.is_file():
            console.print(f"[red]Error: File not found: {path}[/red]")
            return 1
        uploads.append(
            Upload(
                content=path.read_bytes(),
                filename=path.name,
                account_id=args.account,
                owner=args.owner,
                format_hint=StatementFormat(args.format) if args.format else None,
            )
        )

    pipeline = IngestionPipeline.from_config(config, store)
    with console.status(f"[bold green]Ingesting {len(uploads)} file(s)..."):
        results = pipeline.ingest_many(uploads)

    display_ingestion(list(zip(args.files, results)))
    if pipeline.extractor is not None and pipeline.extractor.client.usage_stats.total_requests:
        console.print(f"[dim]{pipeline.extractor.client.get_usage_summary()}[/dim]")
    return 0 if all(r.succeeded for r in results) else 2


def cmd_export(args: argparse.Namespace, config: Config, store: SQLiteStore) -> int:
    engine = ExportEngine(
        store,
        config.export_profiles,
        accounts=config.accounts,
        locks=AccountLocks(),
        fx_provider=config.fx.to_provider(),
    )
    result = engine.export(
        args.profile,
        account_ids=args.accounts,
        date_from=args.date_from,
        date_to=args.date_to,
        mark=args.mark,
        reexport=args.reexport,
        owner=args.owner,
    )

    if result.is_empty:
        console.print(
            f"[yellow]Nothing to export for {result.date_from or 'start'}..{result.date_to or 'end'}"
            f" ({result.skipped_already_exported} already exported)[/yellow]"
        )
        return 0

    args.output.parent.mkdir(parents=True, exist_ok=True)
    args.output.write_bytes(result.document)
    if result.replayed:
        console.print("[dim]Range already exported; wrote the earlier document again.[/dim]")
    console.print(
        f"[green]Exported {len(result.transaction_ids)} transactions to {args.output}[/green]"
    )
    if args.mark:
        console.print(f"  Newly marked: {len(result.marked_ids)}")
    if result.skipped_already_exported:
        console.print(f"  Skipped (already exported): {result.skipped_already_exported}")
    return 0


def cmd_correct(args: argparse.Namespace, config: Config, store: SQLiteStore) -> int:
    txn = FeedbackRecorder(store).record_correction(
        args.transaction_id, args.category_id, owner=args.owner
    )
    console.print(
        f"[green]{txn.description}[/green] -> {txn.category_id} "
        f"({txn.classification_source.value})"
    )
    return 0


def cmd_reclassify(args: argparse.Namespace, config: Config, store: SQLiteStore) -> int:
    threshold = (
        args.threshold if args.threshold is not None else config.classification.reclassify_threshold
    )
    job = ReclassificationJob(
        store,
        build_classifier(config, store),
        threshold=threshold,
        owner=args.owner,
        include_unclassified=args.include_unclassified,
    )
    with JobRunner() as runner:
        handle = runner.submit(job)
        try:
            with console.status("[bold green]Reclassifying..."):
                report = handle.result()
        except KeyboardInterrupt:
            handle.cancel()
            report = handle.result()

    console.print(
        f"Scanned {report.scanned}, updated {report.updated}, unchanged {report.unchanged}, "
        f"conflicts {report.conflicts}" + (" [yellow](cancelled)[/yellow]" if report.cancelled else "")
    )
    return 0


def cmd_propose_rules(args: argparse.Namespace, config: Config, store: SQLiteStore) -> int:
    proposer = RuleProposer(
        store,
        min_occurrences=config.classification.proposal_min_occurrences,
        lookback=config.classification.proposal_lookback,
    )
    owners = [args.owner] if args.owner else sorted({a.owner for a in config.accounts.values()})
    with JobRunner() as runner:
        handle = runner.submit(RuleProposalJob(proposer, owners))
        try:
            with console.status("[bold green]Scanning corrections..."):
                report = handle.result()
        except KeyboardInterrupt:
            handle.cancel()
            report = handle.result()
    proposals = report.created

    if report.cancelled:
        console.print("[yellow]Scan cancelled; proposals so far are kept.[/yellow]")

    if not proposals:
        console.print("No new rule proposals.")
        return 0

    table = Table(title="Proposed Rules")
    table.add_column("Id")
    table.add_column("Merchant")
    table.add_column("Category")
    table.add_column("Corrections", justify="right")
    for proposal in proposals:
        table.add_row(proposal.id, proposal.pattern, proposal.category_id, str(proposal.occurrences))
    console.print(table)
    return 0


def cmd_approve_rule(args: argparse.Namespace, config: Config, store: SQLiteStore) -> int:
    rule = RuleProposer(store).approve(args.proposal_id)
    console.print(
        f"[green]Created rule {rule.id}[/green]: merchant contains {rule.pattern!r} "
        f"-> {rule.category_id} (priority {rule.priority})"
    )
    return 0


def cmd_reject_rule(args: argparse.Namespace, config: Config, store: SQLiteStore) -> int:
    RuleProposer(store).reject(args.proposal_id)
    console.print(f"Rejected proposal {args.proposal_id}")
    return 0


def cmd_status(args: argparse.Namespace, config: Config, store: SQLiteStore) -> int:
    table = Table(title=f"Database: {store.db_path}")
    table.add_column("Table")
    table.add_column("Rows", justify="right")
    for name, count in store.get_stats().items():
        table.add_row(name, str(count))
    console.print(table)
    return 0


COMMANDS = {
    "ingest": cmd_ingest,
    "export": cmd_export,
    "correct": cmd_correct,
    "reclassify": cmd_reclassify,
    "propose-rules": cmd_propose_rules,
    "approve-rule": cmd_approve_rule,
    "reject-rule": cmd_reject_rule,
    "status": cmd_status,
}


def main(argv: Optional[list[str]] = None) -> int:
    """Main entry point for the CLI.

    Returns:
        Exit code (0 for success, non-zero for errors).
    """
    parser = create_parser()
    args = parser.parse_args(argv)

    try:
        config = load_config(args.config_dir)
    except ConfigError as e:
        console.print(f"[red]Configuration error: {e}[/red]")
        return 1

    # Set up logging; -v flags override the configured level
    log_level = get_log_level(args.verbose) if args.verbose else config.logging.level
    setup_logging(level=log_level, log_file=config.logging.file, console_output=args.verbose > 0)

    store = open_store(config, args.db)
    try:
        return COMMANDS[args.command](args, config, store)
    except NotFoundError as e:
        console.print(f"[red]Error: {e}[/red]")
        return 1
    except ExportError as e:
        console.print(f"[red]Export failed: {e}[/red]")
        return 1


if __name__ == "__main__":
    sys.exit(main())
