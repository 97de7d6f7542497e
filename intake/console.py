#!/usr/bin/env python3
"""
Console interface for the import engine.
Analyzes a spreadsheet export or imports it into its target table.
"""

import argparse
import sys
import uuid
from typing import Any, Dict, List, Optional

from rich.console import Console
from rich.panel import Panel
from rich.table import Table
from rich.text import Text
from sqlalchemy import create_engine

from intake.core.config import settings
from intake.core.logging_config import configure_logging
from intake.db.models import create_all_tables
from intake.db.session import get_engine, set_engine
from intake.domain.imports.analyzer import analyze_sheet, detect_profile
from intake.domain.imports.errors import ImportEngineError
from intake.domain.imports.orchestrator import run
from intake.domain.imports.processors.sheet_reader import read_first_sheet
from intake.domain.imports.profiles import PROFILES
from intake.domain.imports.schemas import AnalysisResult, ProcessingResult

MAX_ERRORS_SHOWN = 20


class IntakeConsole:
    """Renders analysis snapshots and run results."""

    def __init__(self, console: Optional[Console] = None):
        self.console = console or Console()

    def print_analysis(self, analysis: AnalysisResult) -> None:
        title = Text(f"Analysis: {analysis.profile}", style="bold blue")
        self.console.print(
            Panel.fit(
                f"Header row: [cyan]{analysis.header_row_index + 1}[/cyan]\n"
                f"Recognition rate: [cyan]{analysis.recognition_rate:.0%}[/cyan] "
                f"({len(analysis.proposed_mapping)} of {analysis.populated_header_count} headers)",
                title=title,
                border_style="blue",
            )
        )

        mapping_table = Table(title="Proposed mapping")
        mapping_table.add_column("Field", style="cyan", no_wrap=True)
        mapping_table.add_column("Header", style="white")
        mapping_table.add_column("Confidence", justify="right")
        mapping_table.add_column("Required", justify="center")
        for field in analysis.required_fields + analysis.optional_fields:
            header = analysis.proposed_mapping.get(field)
            confidence = analysis.confidence.get(field)
            mapping_table.add_row(
                field,
                header or "[dim]-[/dim]",
                f"{confidence:.2f}" if confidence is not None else "",
                "yes" if field in analysis.required_fields else "",
            )
        self.console.print(mapping_table)

        if analysis.missing_required:
            self.console.print(f"[red]Missing required fields:[/red] {', '.join(analysis.missing_required)}")

        if analysis.sample_rows:
            sample_table = Table(title="Sample rows")
            for index, header in enumerate(analysis.headers):
                sample_table.add_column(header or f"column {index + 1}", overflow="fold")
            for row in analysis.sample_rows:
                cells = ["" if value is None else str(value) for value in row]
                cells += [""] * (len(analysis.headers) - len(cells))
                sample_table.add_row(*cells[: len(analysis.headers)])
            self.console.print(sample_table)

    def print_result(self, result: ProcessingResult) -> None:
        status = "[yellow]cancelled[/yellow]" if result.cancelled else "[green]completed[/green]"
        self.console.print(
            Panel.fit(
                f"Status: {status}\n"
                f"Processed: [cyan]{result.processed_count}[/cyan]\n"
                f"Skipped: [cyan]{result.skipped_count}[/cyan]\n"
                f"Errors: [cyan]{len(result.errors)}[/cyan]",
                title=Text(f"Run {result.run_id}", style="bold blue"),
                border_style="green" if not result.errors else "yellow",
            )
        )
        if not result.errors:
            return

        error_table = Table(title="Rejected rows")
        error_table.add_column("Row", justify="right", style="cyan")
        error_table.add_column("Type")
        error_table.add_column("Field")
        error_table.add_column("Reason", style="white")
        for error in result.errors[:MAX_ERRORS_SHOWN]:
            error_table.add_row(str(error.row_number), error.error_type.value, error.field or "", error.reason)
        self.console.print(error_table)
        if len(result.errors) > MAX_ERRORS_SHOWN:
            self.console.print(f"[dim]... and {len(result.errors) - MAX_ERRORS_SHOWN} more[/dim]")

    def print_error(self, exc: Exception) -> None:
        self.console.print(Panel(f"[red]Import failed:[/red]\n{exc}", title="Error", border_style="red"))


def _parse_metadata(pairs: List[str]) -> Dict[str, Any]:
    metadata: Dict[str, Any] = {}
    for pair in pairs or []:
        key, sep, value = pair.partition("=")
        if not sep or not key:
            raise argparse.ArgumentTypeError(f"Metadata must be given as field=value, got '{pair}'")
        metadata[key.strip()] = value.strip()
    return metadata


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        description="Universal Intake - spreadsheet import engine",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  %(prog)s analyze export.xlsx                       # Detect profile and show the mapping
  %(prog)s import export.xlsx --profile bork_sales --location-id <id>
        """,
    )
    parser.add_argument("--log-level", default=settings.log_level, help="Log level (default: %(default)s)")
    parser.add_argument("--database-url", help="Override INTAKE_DATABASE_URL")

    subparsers = parser.add_subparsers(dest="command", required=True)

    analyze_parser = subparsers.add_parser("analyze", help="Show header detection and mapping without writing")
    analyze_parser.add_argument("file", help="Spreadsheet (.xlsx, .xls or .csv)")
    analyze_parser.add_argument("--profile", choices=sorted(PROFILES), help="Import profile (auto-detected if omitted)")

    import_parser = subparsers.add_parser("import", help="Import the first sheet into the profile's table")
    import_parser.add_argument("file", help="Spreadsheet (.xlsx, .xls or .csv)")
    import_parser.add_argument("--profile", choices=sorted(PROFILES), help="Import profile (auto-detected if omitted)")
    import_parser.add_argument("--run-id", default=None, help="Run identifier (default: random UUID)")
    import_parser.add_argument("--location-id", default=None, help="Owning location for profiles without a location column")
    import_parser.add_argument(
        "--metadata",
        action="append",
        default=[],
        metavar="FIELD=VALUE",
        help="File-level value for a field the sheet does not contain (repeatable)",
    )
    import_parser.add_argument("--create-tables", action="store_true", help="Create missing tables before importing")
    return parser


def main(argv: Optional[List[str]] = None) -> int:
    """Main entry point."""
    parser = build_parser()
    args = parser.parse_args(argv)
    configure_logging(args.log_level)
    intake_console = IntakeConsole()

    try:
        rows = read_first_sheet(args.file)
        profile = PROFILES[args.profile] if args.profile else detect_profile(rows)

        if args.command == "analyze":
            intake_console.print_analysis(analyze_sheet(rows, profile))
            return 0

        metadata = _parse_metadata(args.metadata)
        if args.database_url:
            set_engine(create_engine(args.database_url))
        engine = get_engine()
        if args.create_tables:
            create_all_tables(engine)

        result = run(
            rows,
            args.run_id or str(uuid.uuid4()),
            args.location_id,
            profile,
            metadata=metadata,
            file_name=args.file,
            engine=engine,
        )
        intake_console.print_result(result)
        return 0
    except (ImportEngineError, argparse.ArgumentTypeError) as exc:
        intake_console.print_error(exc)
        return 1


if __name__ == "__main__":
    sys.exit(main())
