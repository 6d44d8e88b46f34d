from __future__ import annotations

import argparse
import json
import logging
import sys
from pathlib import Path
from typing import Any

from settings_import import __version__ as TOOL_VERSION
from settings_import.config import ConfigError, ImportSettings
from settings_import.contracts import build_import_summary, build_preview_report
from settings_import.errors import (
    NoSectionsError,
    SettingsSheetNotFoundError,
    UnreadableWorkbookError,
)
from settings_import.importer import ImportSession
from settings_import.layout import normalise_header
from settings_import.mapping_store import JsonFileMappingStore
from settings_import.preview import render_preview_text, render_results_text
from settings_import.record_store import RecordStoreError, open_record_store
from settings_import.template import TEMPLATE_FILE_NAME, write_template
from settings_import.wizard import ACTION_UPDATE, DUPLICATE_ACTIONS, PreviewRequested

EXIT_SUCCESS = 0
EXIT_COMMAND_ERROR = 1
EXIT_UNREADABLE = 2
EXIT_NO_SECTIONS = 3
EXIT_ROWS_REJECTED = 4


class CliError(Exception):
    def __init__(self, message: str, code: int = EXIT_COMMAND_ERROR) -> None:
        super().__init__(message)
        self.code = code


class SettingsImportArgumentParser(argparse.ArgumentParser):
    def error(self, message: str) -> None:
        raise CliError(message, EXIT_COMMAND_ERROR)


def eprint(message: str) -> None:
    print(message, file=sys.stderr)


def emit_human(message: str, *, quiet: bool = False) -> None:
    if not quiet:
        eprint(message)


def json_dumps(payload: Any) -> str:
    return json.dumps(payload, indent=2, ensure_ascii=False, sort_keys=True)


def maybe_emit_json_stdout(payload: Any, enabled: bool) -> None:
    if enabled:
        print(json_dumps(payload))


def remove_generated_at(value: Any) -> Any:
    if isinstance(value, dict):
        result = {}
        for key, item in value.items():
            if key in {"generated_at", "created_at", "imported_at"}:
                result[key] = "1970-01-01T00:00:00Z"
            else:
                result[key] = remove_generated_at(item)
        return result
    if isinstance(value, list):
        return [remove_generated_at(item) for item in value]
    return value


def configure_logging(args: argparse.Namespace) -> None:
    level = logging.WARNING
    if getattr(args, "verbose", False):
        level = logging.INFO
    if getattr(args, "quiet", False):
        level = logging.ERROR
    logging.basicConfig(level=level, stream=sys.stderr, format="%(levelname)s %(name)s: %(message)s")


def classify_exception(exc: Exception) -> int:
    if isinstance(exc, CliError):
        return exc.code
    if isinstance(exc, (UnreadableWorkbookError, SettingsSheetNotFoundError)):
        return EXIT_UNREADABLE
    if isinstance(exc, NoSectionsError):
        return EXIT_NO_SECTIONS
    return EXIT_COMMAND_ERROR


def parse_mapping_override(raw: str) -> tuple[str, str, str]:
    """``section:header=field`` → (section, header, field)."""
    section, sep, rest = raw.partition(":")
    header, eq, target = rest.partition("=")
    if not sep or not eq or not section.strip() or not target.strip():
        raise CliError(f"Mapping override must look like section:header=field (got {raw!r})")
    return section.strip().lower(), normalise_header(header), target.strip()


def positive_int(raw: str) -> int:
    try:
        value = int(raw)
    except ValueError as exc:
        raise argparse.ArgumentTypeError(f"expected a whole number, got {raw!r}") from exc
    if value < 1:
        raise argparse.ArgumentTypeError(f"must be at least 1, got {value}")
    return value


def resolve_settings(args: argparse.Namespace) -> ImportSettings:
    try:
        return ImportSettings.from_env().with_overrides(
            user_id=getattr(args, "user", None),
            store=getattr(args, "store", None),
            mapping_cache=getattr(args, "mapping_cache", None),
        )
    except ConfigError as exc:
        raise CliError(str(exc), EXIT_COMMAND_ERROR) from exc


def build_session(settings: ImportSettings, *, quiet: bool = False, show_progress: bool = False) -> ImportSession:
    store = open_record_store(settings.store, api_key=settings.api_key, timeout=settings.timeout_seconds)

    def report_progress(processed: int, total: int) -> None:
        if total:
            emit_human(f"Importing {processed}/{total}", quiet=quiet)

    return ImportSession(
        store,
        settings.user_id,
        mapping_store=JsonFileMappingStore(settings.mapping_cache),
        on_progress=report_progress if show_progress else None,
    )


def load_into_mapping(session: ImportSession, args: argparse.Namespace) -> None:
    input_path = Path(args.input)
    if not input_path.exists():
        raise CliError(f"File not found: {input_path}", EXIT_COMMAND_ERROR)
    session.upload(input_path)
    session.proceed_to_mapping()
    for raw in args.mappings or []:
        section, header, target = parse_mapping_override(raw)
        try:
            session.update_mapping(section, header, target)
        except (KeyError, ValueError) as exc:
            raise CliError(f"Invalid mapping override {raw!r}: {exc}", EXIT_COMMAND_ERROR) from exc


def has_invalid_rows(session: ImportSession) -> bool:
    return any(section_state.invalid_rows() for section_state in session.state.active_sections())


def build_parser() -> argparse.ArgumentParser:
    parser = SettingsImportArgumentParser(
        prog="settings-import",
        description="Import bills, subscriptions and debts from a spreadsheet Settings sheet.",
    )
    subparsers = parser.add_subparsers(dest="command", required=True)

    preview = subparsers.add_parser("preview", help="Show what an import would do without writing.")
    preview.add_argument("input", help="Workbook path (.xlsx/.xlsm)")
    preview.add_argument("--store", help="Record store: JSON file path, http(s) base URL or 'memory'")
    preview.add_argument("--user", help="User id the records belong to")
    preview.add_argument("--mapping-cache", dest="mapping_cache", help="Saved mappings JSON path")
    preview.add_argument("--map", dest="mappings", action="append", help="Override a mapping: section:header=field")
    preview.add_argument("--json", action="store_true", help="Write machine JSON to stdout")
    preview.add_argument("-q", "--quiet", action="store_true", help="Minimal human logs")
    preview.add_argument("-v", "--verbose", action="store_true", help="More human logs")

    run = subparsers.add_parser("import", help="Import the workbook into the record store.")
    run.add_argument("input", help="Workbook path (.xlsx/.xlsm)")
    run.add_argument("--store", help="Record store: JSON file path, http(s) base URL or 'memory'")
    run.add_argument("--user", help="User id the records belong to")
    run.add_argument("--mapping-cache", dest="mapping_cache", help="Saved mappings JSON path")
    run.add_argument("--map", dest="mappings", action="append", help="Override a mapping: section:header=field")
    run.add_argument(
        "--on-duplicate",
        dest="on_duplicate",
        choices=list(DUPLICATE_ACTIONS),
        default=ACTION_UPDATE,
        help="What to do with rows matching an existing record",
    )
    run.add_argument("--json", action="store_true", help="Write machine JSON to stdout")
    run.add_argument("-q", "--quiet", action="store_true", help="Minimal human logs")
    run.add_argument("-v", "--verbose", action="store_true", help="More human logs")

    template = subparsers.add_parser("template", help="Write a sample Settings workbook.")
    template.add_argument("--output", default=TEMPLATE_FILE_NAME, help="Output path")
    template.add_argument("--force", action="store_true", help="Overwrite an existing file")

    logs = subparsers.add_parser("logs", help="List recent imports.")
    logs.add_argument("--store", help="Record store: JSON file path, http(s) base URL or 'memory'")
    logs.add_argument("--user", help="User id the logs belong to")
    logs.add_argument("--limit", type=positive_int, default=20, help="Number of entries")
    logs.add_argument("--json", action="store_true", help="Write machine JSON to stdout")

    subparsers.add_parser("version", help="Print version")
    return parser


def run_preview(args: argparse.Namespace) -> int:
    try:
        settings = resolve_settings(args)
        session = build_session(settings, quiet=args.quiet)
        load_into_mapping(session, args)
        # Dispatch directly so a preview never persists mappings.
        session.dispatch(PreviewRequested())
        report = remove_generated_at(build_preview_report(session.state))
        if args.json:
            maybe_emit_json_stdout(report, True)
        else:
            emit_human(render_preview_text(session.state).rstrip(), quiet=args.quiet)
        return EXIT_ROWS_REJECTED if has_invalid_rows(session) else EXIT_SUCCESS
    except Exception as exc:
        eprint(str(exc))
        return classify_exception(exc)


def run_import(args: argparse.Namespace) -> int:
    try:
        settings = resolve_settings(args)
        session = build_session(settings, quiet=args.quiet or args.json, show_progress=args.verbose)
        load_into_mapping(session, args)
        session.proceed_to_preview()
        session.set_all_duplicate_actions(args.on_duplicate)
        results = session.run_import()
        summary = remove_generated_at(build_import_summary(session.state, audit_logged=session.audit_log is not None))
        if args.json:
            maybe_emit_json_stdout(summary, True)
        else:
            emit_human(render_results_text(results).rstrip(), quiet=args.quiet)
        if results.failures or has_invalid_rows(session):
            return EXIT_ROWS_REJECTED
        return EXIT_SUCCESS
    except Exception as exc:
        eprint(str(exc))
        return classify_exception(exc)


def run_template(args: argparse.Namespace) -> int:
    output_path = Path(args.output)
    if output_path.exists() and not args.force:
        eprint(f"Refusing to overwrite existing output: {output_path}")
        return EXIT_COMMAND_ERROR
    write_template(output_path)
    emit_human(f"Template written: {output_path}")
    return EXIT_SUCCESS


def run_logs(args: argparse.Namespace) -> int:
    try:
        settings = resolve_settings(args)
        store = open_record_store(settings.store, api_key=settings.api_key, timeout=settings.timeout_seconds)
        entries = store.list_import_logs(settings.user_id, args.limit)
    except (CliError, RecordStoreError) as exc:
        eprint(str(exc))
        return classify_exception(exc)
    if args.json:
        maybe_emit_json_stdout(entries, True)
        return EXIT_SUCCESS
    if not entries:
        print("No imports yet.")
        return EXIT_SUCCESS
    for entry in entries:
        added = sum(entry.get(f"{prefix}_added", 0) for prefix in ("bills", "subs", "debts"))
        updated = sum(entry.get(f"{prefix}_updated", 0) for prefix in ("bills", "subs", "debts"))
        skipped = sum(entry.get(f"{prefix}_skipped", 0) for prefix in ("bills", "subs", "debts"))
        print(
            f"{entry.get('imported_at', '[unknown]')}  {entry.get('file_name', '[unknown]')}  "
            f"added={added} updated={updated} skipped={skipped}"
        )
    return EXIT_SUCCESS


def run_version() -> int:
    print(TOOL_VERSION)
    return EXIT_SUCCESS


def main(argv: list[str] | None = None) -> int:
    try:
        parser = build_parser()
        args = parser.parse_args(argv)
        configure_logging(args)
        if args.command == "preview":
            return run_preview(args)
        if args.command == "import":
            return run_import(args)
        if args.command == "template":
            return run_template(args)
        if args.command == "logs":
            return run_logs(args)
        if args.command == "version":
            return run_version()
        raise CliError(f"Unknown command: {args.command}", EXIT_COMMAND_ERROR)
    except CliError as exc:
        eprint(str(exc))
        return exc.code


if __name__ == "__main__":
    raise SystemExit(main())
