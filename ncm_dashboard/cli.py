from __future__ import annotations

import argparse
import json
import sys
from pathlib import Path
from typing import Any

from ncm_dashboard import __version__ as TOOL_VERSION
from ncm_dashboard.codec import format_cell
from ncm_dashboard.config import settings
from ncm_dashboard.contracts import build_contract, build_import_summary, utc_now_iso
from ncm_dashboard.enrich import SystaxEnricher
from ncm_dashboard.errors import (
    DescriptionLookupError,
    ParseError,
    PersistenceError,
    ValidationError,
)
from ncm_dashboard.fields import EXPECTED_FIELDS, ID_FIELD
from ncm_dashboard.grid import ASCENDING, DESCENDING, DataGrid
from ncm_dashboard.lookup import NcmLookup, ReferenceTableCache
from ncm_dashboard.reader import parse
from ncm_dashboard.repository import SpreadsheetRepository
from ncm_dashboard.store import DocumentStore

EXIT_SUCCESS = 0
EXIT_COMMAND_ERROR = 1
EXIT_PARSE_FAILED = 2
EXIT_PERSISTENCE_FAILED = 3
EXIT_LOOKUP_FAILED = 4
EXIT_VALIDATION_FAILED = 5

LIST_COLUMN_WIDTH = 12


class CliError(Exception):
    def __init__(self, message: str, code: int = EXIT_COMMAND_ERROR) -> None:
        super().__init__(message)
        self.code = code


class NcmDashboardArgumentParser(argparse.ArgumentParser):
    def error(self, message: str) -> None:
        raise CliError(message, EXIT_COMMAND_ERROR)


def eprint(message: str) -> None:
    print(message, file=sys.stderr)


def emit_human(message: str, *, quiet: bool = False) -> None:
    if not quiet:
        eprint(message)


def json_dumps(payload: Any) -> str:
    return json.dumps(payload, indent=2, ensure_ascii=False, sort_keys=True, default=str)


def maybe_emit_json_stdout(payload: Any, enabled: bool) -> None:
    if enabled:
        print(json_dumps(payload))


def classify_exception(exc: Exception) -> int:
    if isinstance(exc, CliError):
        return exc.code
    if isinstance(exc, ParseError):
        return EXIT_PARSE_FAILED
    if isinstance(exc, ValidationError):
        return EXIT_VALIDATION_FAILED
    if isinstance(exc, PersistenceError):
        return EXIT_PERSISTENCE_FAILED
    if isinstance(exc, DescriptionLookupError):
        return EXIT_LOOKUP_FAILED
    return EXIT_COMMAND_ERROR


def open_repository(args: argparse.Namespace) -> SpreadsheetRepository:
    return SpreadsheetRepository(DocumentStore(args.database_url or settings.DATABASE_URL))


def parse_assignments(pairs: list[str]) -> dict[str, str]:
    draft: dict[str, str] = {}
    for pair in pairs:
        if "=" not in pair:
            raise CliError(f"Expected FIELD=VALUE, got: {pair}", EXIT_COMMAND_ERROR)
        key, value = pair.split("=", 1)
        draft[key.strip()] = value.strip()
    return draft


def render_parse_text(parsed: dict[str, Any], file_name: str) -> str:
    lines = [
        f"File: {file_name}",
        f"Sheet: {parsed['sheet_name']}",
        f"Rows parsed: {len(parsed['rows'])}",
        f"Headers: {', '.join(parsed['headers']) or 'none'}",
    ]
    if parsed["missing_fields"]:
        lines.append(f"Missing fields: {', '.join(parsed['missing_fields'])}")
    return "\n".join(lines) + "\n"


def render_grid_text(grid: DataGrid) -> str:
    columns = [ID_FIELD] + grid.columns()
    rows = grid.page_records()
    lines = [" | ".join(column[:LIST_COLUMN_WIDTH].ljust(LIST_COLUMN_WIDTH) for column in columns)]
    lines.append("-" * len(lines[0]))
    for record in rows:
        cells = []
        for column in columns:
            text = str(record.get(column, "")) if column == ID_FIELD else format_cell(column, record.get(column))
            cells.append(text[:LIST_COLUMN_WIDTH].ljust(LIST_COLUMN_WIDTH))
        lines.append(" | ".join(cells))
    total = len(grid.filtered_records())
    lines.append(f"Page {grid.page} of {max(grid.total_pages, 1)} ({total} records)")
    return "\n".join(lines) + "\n"


def render_history_text(batches: list[dict[str, Any]]) -> str:
    if not batches:
        return "No imports yet.\n"
    lines = []
    for batch in batches:
        lines.append(
            f"{format_cell('uploaded_at', batch.get('uploaded_at'))}  "
            f"{batch.get('file_name') or '-'}  sheet={batch.get('sheet_name')}  rows={batch.get('total_rows')}"
        )
    return "\n".join(lines) + "\n"


def build_parser() -> argparse.ArgumentParser:
    parser = NcmDashboardArgumentParser(prog="ncm-dashboard", description="NCM spreadsheet dashboard tools")
    parser.add_argument("--database-url", dest="database_url", help="Override DATABASE_URL")
    subparsers = parser.add_subparsers(dest="command", required=True)

    import_cmd = subparsers.add_parser("import", help="Parse a spreadsheet and save its rows.")
    import_cmd.add_argument("input", help="Input .xls, .xlsx or .csv file")
    import_cmd.add_argument("--dry-run", action="store_true", help="Parse only, do not save")
    import_cmd.add_argument("--json", action="store_true", help="Write machine JSON to stdout")
    import_cmd.add_argument("-q", "--quiet", action="store_true", help="Minimal human logs")

    list_cmd = subparsers.add_parser("list", help="List saved records.")
    list_cmd.add_argument("--query", default="", help="Case-insensitive search across all fields")
    list_cmd.add_argument("--sort", default="NCM", help="Field to sort by")
    list_cmd.add_argument("--desc", action="store_true", help="Sort descending")
    list_cmd.add_argument("--page", type=int, default=1, help="Page number (50 rows per page)")
    list_cmd.add_argument("--json", action="store_true", help="Write machine JSON to stdout")

    history = subparsers.add_parser("history", help="Show recent imports.")
    history.add_argument("--json", action="store_true", help="Write machine JSON to stdout")

    export = subparsers.add_parser("export", help="Export every saved record to .xlsx.")
    export.add_argument("-o", "--output", help="Output path (default dados_exportados_YYYY-MM-DD.xlsx)")

    create = subparsers.add_parser("create", help="Create one record by hand.")
    create.add_argument("--set", dest="assignments", action="append", default=[], metavar="FIELD=VALUE")

    lookup = subparsers.add_parser("lookup", help="Describe an NCM code.")
    lookup.add_argument("code", help="NCM code, 8 digits, dots allowed")
    lookup.add_argument("--table", help="Reference table path (default NCM_REFERENCE_TABLE)")
    lookup.add_argument("--no-enrich", dest="no_enrich", action="store_true", help="Skip the external site")
    lookup.add_argument("--json", action="store_true", help="Write machine JSON to stdout")

    delete = subparsers.add_parser("delete", help="Delete records by id.")
    delete.add_argument("ids", nargs="+", help="Record ids")
    delete.add_argument("--yes", action="store_true", help="Confirm the deletion")

    subparsers.add_parser("version", help="Print version")
    return parser


def run_import(args: argparse.Namespace) -> int:
    input_path = Path(args.input)
    if not input_path.exists():
        raise CliError(f"File not found: {input_path}", EXIT_COMMAND_ERROR)
    parsed = parse(input_path.read_bytes(), input_path.name)
    warnings = [f"Missing field: {name}" for name in parsed["missing_fields"]]

    saved = None
    if not args.dry_run:
        repository = open_repository(args)
        saved = repository.save_spreadsheet_data(
            parsed, {"file_name": input_path.name, "file_size": input_path.stat().st_size}
        )

    summary = build_import_summary(file_name=input_path.name, parsed=parsed, saved=saved, warnings=warnings)
    if args.json:
        maybe_emit_json_stdout(summary, True)
    else:
        emit_human(render_parse_text(parsed, input_path.name).rstrip(), quiet=args.quiet)
        if saved:
            print(f"Saved {saved['total_rows']} records.")
        else:
            print("Dry run: nothing saved.")
    return EXIT_SUCCESS


def run_list(args: argparse.Namespace) -> int:
    grid = DataGrid(open_repository(args))
    grid.reload()
    grid.set_query(args.query)
    grid.set_sort(args.sort, DESCENDING if args.desc else ASCENDING)
    grid.set_page(args.page)
    if args.json:
        payload = {
            "contract": build_contract("ncm_dashboard.listing"),
            "generated_at": utc_now_iso(),
            "page": grid.page,
            "total_pages": grid.total_pages,
            "total_records": len(grid.filtered_records()),
            "records": grid.page_records(),
        }
        maybe_emit_json_stdout(payload, True)
    else:
        sys.stdout.write(render_grid_text(grid))
    return EXIT_SUCCESS


def run_history(args: argparse.Namespace) -> int:
    batches = open_repository(args).get_import_history()
    if args.json:
        maybe_emit_json_stdout(batches, True)
    else:
        sys.stdout.write(render_history_text(batches))
    return EXIT_SUCCESS


def run_export(args: argparse.Namespace) -> int:
    grid = DataGrid(open_repository(args))
    grid.reload()
    output_path = Path(args.output) if args.output else Path.cwd() / grid.export_filename()
    output_path.parent.mkdir(parents=True, exist_ok=True)
    output_path.write_bytes(grid.export_visible())
    emit_human(f"Exported {len(grid.records)} records: {output_path}")
    return EXIT_SUCCESS


def run_create(args: argparse.Namespace) -> int:
    draft = parse_assignments(args.assignments)
    unknown = sorted(key for key in draft if key not in EXPECTED_FIELDS and key != "descricao")
    if unknown:
        raise CliError(f"Unknown field(s): {', '.join(unknown)}", EXIT_COMMAND_ERROR)
    saved = open_repository(args).create_record(draft)
    print(saved["document_ids"][0])
    return EXIT_SUCCESS


def run_lookup(args: argparse.Namespace) -> int:
    enricher = None
    if settings.ENABLE_ENRICHMENT and not args.no_enrich:
        enricher = SystaxEnricher()
    lookup = NcmLookup(ReferenceTableCache(), args.table or settings.REFERENCE_TABLE, enricher)
    result = lookup.lookup(args.code)
    if args.json:
        payload = {"contract": build_contract("ncm_dashboard.lookup"), **result.to_dict()}
        maybe_emit_json_stdout(payload, True)
    else:
        lines = [result.description, f"Fonte: {result.source}"]
        if result.unit:
            lines.append(f"Unidade tributável: {result.unit}")
        if result.note:
            lines.append(result.note)
        if result.link:
            lines.append(f"Consultar: {result.link}")
        print("\n".join(lines))
    return EXIT_SUCCESS if result.found else EXIT_LOOKUP_FAILED


def run_delete(args: argparse.Namespace) -> int:
    grid = DataGrid(open_repository(args))
    for record_id in args.ids:
        grid.toggle_select(record_id, True)
    request = grid.request_delete_selected()
    if not args.yes:
        raise CliError(f"{request.message} Re-run with --yes to confirm.", EXIT_COMMAND_ERROR)
    deleted = grid.confirm_delete(request)
    print(f"Deleted {deleted} records.")
    return EXIT_SUCCESS


def run_version() -> int:
    print(TOOL_VERSION)
    return EXIT_SUCCESS


def main(argv: list[str] | None = None) -> int:
    try:
        parser = build_parser()
        args = parser.parse_args(argv)
        if args.command == "import":
            return run_import(args)
        if args.command == "list":
            return run_list(args)
        if args.command == "history":
            return run_history(args)
        if args.command == "export":
            return run_export(args)
        if args.command == "create":
            return run_create(args)
        if args.command == "lookup":
            return run_lookup(args)
        if args.command == "delete":
            return run_delete(args)
        if args.command == "version":
            return run_version()
        raise CliError(f"Unknown command: {args.command}", EXIT_COMMAND_ERROR)
    except (CliError, ParseError, ValidationError, PersistenceError, DescriptionLookupError) as exc:
        eprint(str(exc))
        return classify_exception(exc)


if __name__ == "__main__":
    raise SystemExit(main())
