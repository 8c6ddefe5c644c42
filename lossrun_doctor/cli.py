from __future__ import annotations

import argparse
import json
import os
import sys
from datetime import datetime, timezone
from pathlib import Path
from typing import Any

import pandas as pd

from lossrun_doctor import __version__ as TOOL_VERSION
from lossrun_doctor.composite import DEFAULT_MIN_KEY_FREQUENCY
from lossrun_doctor.contracts import build_contract, build_run_summary
from lossrun_doctor.field_mapping import FIELDS, resolve_overrides
from lossrun_doctor.loader import ALL_FORMATS
from lossrun_doctor.orchestrator import IngestionSession, IngestionState, Phase
from lossrun_doctor.taxonomy import ErrorKind, describe


SUPPORTED_MAPPING_SUFFIXES = {".json", ".yml", ".yaml"}
MAPPING_FILE_KEYS = {"overrides", "sheet", "min_key_frequency"}

EXIT_SUCCESS = 0
EXIT_COMMAND_ERROR = 1
EXIT_PARSE_FAILED = 2
EXIT_MAPPING_INCOMPLETE = 5
EXIT_PARTIAL = 6
EXIT_NO_VALID_ROWS = 7


class CliError(Exception):
    def __init__(self, message: str, code: int = EXIT_COMMAND_ERROR) -> None:
        super().__init__(message)
        self.code = code


class LossRunDoctorArgumentParser(argparse.ArgumentParser):
    def error(self, message: str) -> None:
        raise CliError(message, EXIT_COMMAND_ERROR)


def eprint(message: str) -> None:
    print(message, file=sys.stderr)


def emit_human(message: str, *, quiet: bool = False) -> None:
    if not quiet:
        eprint(message)


def json_dumps(payload: Any) -> str:
    return json.dumps(payload, indent=2, ensure_ascii=False, sort_keys=True)


def timestamp_token() -> str:
    override = os.environ.get("LOSSRUN_DOCTOR_OUTPUT_STAMP")
    if override:
        return override
    return datetime.now(timezone.utc).strftime("%Y%m%dT%H%M%SZ")


def default_output_dir(input_path: Path) -> Path:
    return Path.cwd() / "lossrun-doctor-output" / f"{input_path.stem}-{timestamp_token()}"


def ensure_parent(path: Path) -> None:
    path.parent.mkdir(parents=True, exist_ok=True)


def write_text(path: Path, payload: str) -> None:
    ensure_parent(path)
    path.write_text(payload, encoding="utf-8")


def write_json(path: Path, payload: Any) -> None:
    write_text(path, json_dumps(payload))


def remove_generated_at(value: Any) -> Any:
    if isinstance(value, dict):
        result = {}
        for key, item in value.items():
            if key == "generated_at":
                result[key] = "1970-01-01T00:00:00Z"
            else:
                result[key] = remove_generated_at(item)
        return result
    if isinstance(value, list):
        return [remove_generated_at(item) for item in value]
    return value


def normalize_report_for_cli(payload: Any) -> Any:
    return remove_generated_at(payload)


def safe_output_path(path: Path) -> Path:
    if path.exists():
        raise CliError(f"Refusing to overwrite existing output: {path}", EXIT_COMMAND_ERROR)
    return path


def maybe_emit_json_stdout(payload: Any, enabled: bool) -> None:
    if enabled:
        print(json_dumps(payload))


def classify_backend_exception(exc: Exception) -> int:
    if isinstance(exc, CliError):
        return exc.code
    if isinstance(exc, (ImportError, UnicodeDecodeError)):
        return EXIT_PARSE_FAILED
    if isinstance(exc, FileNotFoundError):
        return EXIT_COMMAND_ERROR
    if isinstance(exc, ValueError):
        return EXIT_PARSE_FAILED
    return EXIT_COMMAND_ERROR


def check_input(input_path: Path) -> None:
    if not input_path.exists():
        raise CliError(f"File not found: {input_path}", EXIT_COMMAND_ERROR)
    suffix = input_path.suffix.lower()
    if suffix not in ALL_FORMATS:
        raise CliError(
            f"Unsupported file type '{suffix or '[missing extension]'}'. "
            f"Supported: {', '.join(sorted(ALL_FORMATS))}",
            EXIT_COMMAND_ERROR,
        )


# ── Mapping files ─────────────────────────────────────────────────────────────

def load_mapping_file(mapping_path: Path) -> dict[str, Any]:
    if not mapping_path.exists():
        raise CliError(f"Mapping file not found: {mapping_path}", EXIT_COMMAND_ERROR)
    suffix = mapping_path.suffix.lower()
    if suffix not in SUPPORTED_MAPPING_SUFFIXES:
        raise CliError("Mapping file must be .json, .yml, or .yaml", EXIT_COMMAND_ERROR)
    if suffix in {".yml", ".yaml"}:
        raise CliError("YAML mapping files are not supported yet. Use JSON for now.", EXIT_COMMAND_ERROR)
    try:
        payload = json.loads(mapping_path.read_text(encoding="utf-8"))
    except Exception as exc:
        raise CliError(f"Could not read mapping file: {exc}", EXIT_COMMAND_ERROR) from exc
    if not isinstance(payload, dict):
        raise CliError("Mapping file root must be a JSON object.", EXIT_COMMAND_ERROR)

    unknown = sorted(set(payload) - MAPPING_FILE_KEYS)
    if unknown:
        raise CliError(f"Unknown mapping file keys: {', '.join(unknown)}", EXIT_COMMAND_ERROR)
    overrides = payload.get("overrides", {})
    if not isinstance(overrides, dict):
        raise CliError("'overrides' must be an object of field -> column.", EXIT_COMMAND_ERROR)
    sheet = payload.get("sheet")
    if sheet is not None and not isinstance(sheet, str):
        raise CliError("'sheet' must be a sheet name.", EXIT_COMMAND_ERROR)
    frequency = payload.get("min_key_frequency")
    if frequency is not None and (isinstance(frequency, bool) or not isinstance(frequency, int) or frequency < 1):
        raise CliError("'min_key_frequency' must be a positive integer.", EXIT_COMMAND_ERROR)
    return {"overrides": overrides, "sheet": sheet, "min_key_frequency": frequency}


def parse_map_arguments(pairs: list[str] | None) -> dict[str, str]:
    overrides: dict[str, str] = {}
    for pair in pairs or []:
        field_key, separator, column = pair.partition("=")
        if not separator or not field_key.strip() or not column.strip():
            raise CliError(f"--map expects FIELD=COLUMN, got {pair!r}", EXIT_COMMAND_ERROR)
        overrides[field_key.strip()] = column.strip()
    return overrides


# ── Session helpers ───────────────────────────────────────────────────────────

def open_session(input_path: Path, sheet_name: str | None, min_key_frequency: int) -> IngestionSession:
    session = IngestionSession()
    state = session.load_path(input_path)
    if state.phase == Phase.NO_FILE:
        raise CliError(state.status, EXIT_PARSE_FAILED)

    wanted = sheet_name or state.sheet_name
    if wanted is None:
        raise CliError(state.status, EXIT_PARSE_FAILED)
    if sheet_name or min_key_frequency != DEFAULT_MIN_KEY_FREQUENCY:
        state = session.select_sheet(wanted, min_key_frequency)
        if state.sheet_name != wanted:
            raise CliError(state.status, EXIT_COMMAND_ERROR)
    return session


def describe_proposals(state: IngestionState) -> dict[str, Any]:
    headers = state.context.headers if state.context else []
    proposals: dict[str, Any] = {}
    for key, definition in FIELDS.items():
        column_index = state.mapping.get(key)
        entry: dict[str, Any] = {
            "label": definition.label,
            "required": definition.required,
            "column_index": column_index,
        }
        proposals[key] = entry
        if column_index is None:
            continue
        header_match = state.header_matches.get(key)
        content_match = state.content_matches.get(key)
        if state.overrides.get(key) == column_index:
            entry["source"] = "override"
        elif header_match is not None and header_match.column_index == column_index:
            entry.update({"source": "header", "score": header_match.score})
        elif content_match is not None and content_match.column_index == column_index:
            entry.update({"source": "content", "score": content_match.score, "reason": content_match.reason})
        if column_index < len(headers):
            entry["header"] = headers[column_index]
    return proposals


def describe_sheet_selection(state: IngestionState) -> dict[str, Any]:
    context = state.context
    return {
        "sheets": [
            {"name": score.sheet_name, "score": score.score, "reasons": list(score.reasons)}
            for score in state.sheet_scores
        ],
        "selected_sheet": state.sheet_name,
        "header_row": context.header.row_index + 1 if context else None,
        "headers": context.headers if context else [],
        "composite_fields": [
            {
                "column_index": composite.column_index,
                "header": composite.header_name,
                "keys": list(composite.extracted_keys),
                "key_frequency": dict(sorted(composite.key_frequency.items())),
            }
            for composite in (context.composites if context else ())
        ],
        "mapping": describe_proposals(state),
        "missing_required": state.unmapped_required,
        "status": state.status,
    }


def render_inspect_text(payload: dict[str, Any]) -> str:
    lines = [
        "lossrun-doctor inspect",
        f"File: {payload['run_summary']['input_file']}",
        f"Sheet: {payload['selected_sheet']} (header row {payload['header_row']})",
        "Sheets:",
    ]
    lines.extend(f"- {sheet['name']}: {sheet['score']}" for sheet in payload["sheets"])
    lines.append("Mapping:")
    for key, entry in payload["mapping"].items():
        if entry["column_index"] is None:
            lines.append(f"- {key}: [unmapped]")
            continue
        detail = entry.get("source", "")
        if "score" in entry:
            detail += f", score {entry['score']}"
        lines.append(f"- {key}: {entry.get('header') or entry['column_index'] + 1} ({detail})")
    for composite in payload["composite_fields"]:
        lines.append(f"Composite column '{composite['header']}': {', '.join(composite['keys'])}")
    if payload["missing_required"]:
        lines.append("Missing required: " + ", ".join(payload["missing_required"]))
    return "\n".join(lines) + "\n"


def render_ingest_text(payload: dict[str, Any], *, verbose: bool = False) -> str:
    summary = payload["validation_summary"]
    lines = [
        "lossrun-doctor ingest",
        f"File: {payload['run_summary']['input_file']}",
        f"Sheet: {payload['selected_sheet']}",
        f"Rows: {summary['total_rows']}",
        f"Valid rows: {summary['valid_rows']}",
        f"Skipped rows: {summary['skipped_rows']}",
        f"Unparsable dates: {summary['unparsable_dates']}",
        f"Invalid amounts: {summary['invalid_amounts']}",
        f"Missing required values: {summary['missing_required']}",
        f"Sites: {len(payload['sites'])}",
        payload["status"],
    ]
    if verbose and summary["errors"]:
        lines.append("Row errors:")
        lines.extend(
            f"- row {error['row_index']} [{error['severity']}] {error['field']}: {error['message']}"
            for error in summary["errors"]
        )
    return "\n".join(lines) + "\n"


# ── Commands ──────────────────────────────────────────────────────────────────

def build_parser() -> argparse.ArgumentParser:
    parser = LossRunDoctorArgumentParser(
        prog="lossrun-doctor",
        description="Turn messy workers' compensation loss runs into canonical claim records.",
    )
    subparsers = parser.add_subparsers(dest="command", required=True)

    inspect = subparsers.add_parser("inspect", help="Rank sheets, find the header row and propose a mapping.")
    inspect.add_argument("input", help="Input file path")
    inspect.add_argument("--sheet", dest="sheet_name", help="Sheet to inspect instead of the best-ranked one")
    inspect.add_argument("--output", help="Write the inspection JSON to this path")
    inspect.add_argument("--json", action="store_true", help="Write machine JSON to stdout")
    inspect.add_argument("-q", "--quiet", action="store_true", help="Minimal human logs")

    ingest = subparsers.add_parser("ingest", help="Parse the loss run into canonical records.")
    ingest.add_argument("input", help="Input file path")
    ingest.add_argument("--sheet", dest="sheet_name", help="Sheet to ingest instead of the best-ranked one")
    ingest.add_argument("--map", dest="map_pairs", action="append", metavar="FIELD=COLUMN", help="Override a field mapping (header text or 1-based column number)")
    ingest.add_argument("--mapping", help="JSON mapping file with overrides/sheet/min_key_frequency")
    ingest.add_argument("--min-key-frequency", dest="min_key_frequency", type=int, help="Minimum recurrences for a composite key")
    ingest.add_argument("-o", "--out", dest="out_dir", help="Output directory")
    ingest.add_argument("--format", choices=["json", "csv"], default="json", help="Records output format")
    ingest.add_argument("--json", action="store_true", help="Write machine JSON to stdout")
    ingest.add_argument("-q", "--quiet", action="store_true", help="Minimal human logs")
    ingest.add_argument("-v", "--verbose", action="store_true", help="Print every row error")

    config = subparsers.add_parser("config", help="Generate configuration.")
    config_subparsers = config.add_subparsers(dest="config_command", required=True)
    config_init = config_subparsers.add_parser("init", help="Write a starter mapping file.")
    config_init.add_argument("--path", default="lossrun-doctor.json", help="Mapping file output path")

    explain = subparsers.add_parser("explain", help="Explain an error kind.")
    explain.add_argument("error_kind", help="Error kind, e.g. PLACEHOLDER_VALUE")
    explain.add_argument("--json", action="store_true", help="Write machine JSON to stdout")

    subparsers.add_parser("version", help="Print version")
    return parser


def run_inspect(args: argparse.Namespace) -> int:
    input_path = Path(args.input)
    try:
        check_input(input_path)
        output_path = safe_output_path(Path(args.output)) if args.output else None
        state = open_session(input_path, args.sheet_name, DEFAULT_MIN_KEY_FREQUENCY).state

        payload = describe_sheet_selection(state)
        payload["contract"] = build_contract("lossrun_doctor.inspect")
        payload["run_summary"] = build_run_summary(
            command="inspect",
            input_path=input_path,
            status="ok" if not payload["missing_required"] else "mapping_incomplete",
            output_paths={"inspection": output_path} if output_path else None,
            metrics={
                "sheets": len(payload["sheets"]),
                "columns": len(payload["headers"]),
                "composite_fields": len(payload["composite_fields"]),
            },
            warnings=list(state.workbook.warnings) if state.workbook else [],
        )
        payload = normalize_report_for_cli(payload)

        if output_path:
            write_json(output_path, payload)
        if args.json:
            maybe_emit_json_stdout(payload, True)
        else:
            emit_human(render_inspect_text(payload).rstrip(), quiet=args.quiet)
            if output_path:
                emit_human(f"Inspection written: {output_path}", quiet=args.quiet)
        return EXIT_MAPPING_INCOMPLETE if payload["missing_required"] else EXIT_SUCCESS
    except Exception as exc:
        eprint(str(exc))
        return classify_backend_exception(exc)


def write_records(records: list[dict[str, Any]], path: Path, output_format: str) -> None:
    ensure_parent(path)
    if output_format == "csv":
        frame = pd.DataFrame(records, columns=list(FIELDS))
        frame.to_csv(path, index=False)
    else:
        write_json(path, records)


def run_ingest(args: argparse.Namespace) -> int:
    input_path = Path(args.input)
    try:
        check_input(input_path)
        config = load_mapping_file(Path(args.mapping)) if args.mapping else {"overrides": {}, "sheet": None, "min_key_frequency": None}
        sheet_name = args.sheet_name or config["sheet"]
        min_key_frequency = args.min_key_frequency
        if min_key_frequency is None:
            min_key_frequency = config["min_key_frequency"]
        if min_key_frequency is None:
            min_key_frequency = DEFAULT_MIN_KEY_FREQUENCY
        if min_key_frequency < 1:
            raise CliError("--min-key-frequency must be at least 1", EXIT_COMMAND_ERROR)

        out_dir = Path(args.out_dir) if args.out_dir else default_output_dir(input_path)
        records_path = safe_output_path(out_dir / f"records.{args.format}")
        summary_path = safe_output_path(out_dir / "summary.json")

        session = open_session(input_path, sheet_name, min_key_frequency)
        references = {**config["overrides"], **parse_map_arguments(args.map_pairs)}
        try:
            overrides = resolve_overrides(session.state.context.headers, references)
        except ValueError as exc:
            raise CliError(str(exc), EXIT_COMMAND_ERROR) from exc

        state = session.confirm_mapping(overrides)
        if state.phase not in (Phase.DATA_LOADED, Phase.MAPPING_CONFIRMED):
            raise CliError(state.status, EXIT_MAPPING_INCOMPLETE)

        records = [record.to_dict() for record in state.records]
        summary = state.summary
        payload = describe_sheet_selection(state)
        payload.update(
            {
                "contract": build_contract("lossrun_doctor.ingest"),
                "validation_summary": summary.to_dict(),
                "sites": list(state.sites),
                "financial_defaults": state.financial_defaults.to_dict() if state.financial_defaults else None,
                "dimensions": {key: info.to_dict() for key, info in state.dimensions.items()},
            }
        )
        if not records:
            run_status = "no_valid_rows"
        elif summary.skipped_rows:
            run_status = "partial"
        else:
            run_status = "ok"
        payload["run_summary"] = build_run_summary(
            command="ingest",
            input_path=input_path,
            status=run_status,
            output_paths={"records": records_path, "summary": summary_path},
            metrics={
                "total_rows": summary.total_rows,
                "valid_rows": summary.valid_rows,
                "skipped_rows": summary.skipped_rows,
            },
            warnings=[*(state.workbook.warnings if state.workbook else ()), *summary.warnings],
        )
        payload = normalize_report_for_cli(payload)

        write_records(records, records_path, args.format)
        write_json(summary_path, payload)

        if args.json:
            maybe_emit_json_stdout({**payload, "records": records}, True)
        else:
            emit_human(render_ingest_text(payload, verbose=args.verbose).rstrip(), quiet=args.quiet)
            emit_human(f"Records written: {records_path}", quiet=args.quiet)
            emit_human(f"Summary written: {summary_path}", quiet=args.quiet)

        if run_status == "no_valid_rows":
            return EXIT_NO_VALID_ROWS
        if run_status == "partial":
            return EXIT_PARTIAL
        return EXIT_SUCCESS
    except Exception as exc:
        eprint(str(exc))
        return classify_backend_exception(exc)


def run_config_init(args: argparse.Namespace) -> int:
    config_path = Path(args.path)
    if config_path.exists():
        eprint(f"Refusing to overwrite existing config: {config_path}")
        return EXIT_COMMAND_ERROR
    payload = {
        "overrides": {
            "site_name": "Location",
            "date_of_loss": "Date of Loss",
            "total_incurred": "Total Incurred",
        },
        "sheet": None,
        "min_key_frequency": DEFAULT_MIN_KEY_FREQUENCY,
    }
    write_json(config_path, payload)
    emit_human(f"Config written: {config_path}")
    return EXIT_SUCCESS


def run_explain(args: argparse.Namespace) -> int:
    try:
        kind = ErrorKind(args.error_kind.strip().upper())
    except ValueError:
        eprint(f"Unknown error kind: {args.error_kind}")
        return EXIT_COMMAND_ERROR
    payload = describe(kind)
    if args.json:
        maybe_emit_json_stdout({**payload, "contract": build_contract("lossrun_doctor.explain")}, True)
    else:
        print(
            "\n".join(
                [
                    f"Error kind: {payload['id']}",
                    f"Scope: {payload['scope']}",
                    f"What it means: {payload['description']}",
                    f"Typical cause: {payload['evidence']}",
                ]
            )
        )
    return EXIT_SUCCESS


def run_version() -> int:
    print(TOOL_VERSION)
    return EXIT_SUCCESS


def main(argv: list[str] | None = None) -> int:
    try:
        parser = build_parser()
        args = parser.parse_args(argv)
        if args.command == "inspect":
            return run_inspect(args)
        if args.command == "ingest":
            return run_ingest(args)
        if args.command == "config":
            if args.config_command == "init":
                return run_config_init(args)
        if args.command == "explain":
            return run_explain(args)
        if args.command == "version":
            return run_version()
        raise CliError(f"Unknown command: {args.command}", EXIT_COMMAND_ERROR)
    except CliError as exc:
        eprint(str(exc))
        return exc.code


if __name__ == "__main__":
    raise SystemExit(main())
