"""Command-line entry point for running operations against files on disk."""

from __future__ import annotations

import argparse
import asyncio
import json
import logging
import os
import sys
from pathlib import Path
from typing import Any, Dict, Mapping, Optional, Sequence, TextIO, get_args, get_origin, get_type_hints

from .core.geo import Point, Range
from .editor.document_model import Document
from .errors import NinetyNineError, StructureNotFound
from .ops import OpOptions, Operation, OperationOutcome
from .providers.registry import available_providers
from .services.settings import Settings, SettingsStore, redact_settings
from .state import NinetyNine
from .utils import logging as logging_utils

_TRUE_VALUES = {"1", "true", "yes", "on", "debug"}
_FALSE_VALUES = {"0", "false", "no", "off", "disabled"}
_LOGGER = logging.getLogger(__name__)

EXIT_OK = 0
EXIT_FAILED = 1
EXIT_USAGE = 2


def configure_logging(
    debug: bool = False,
    *,
    verbosity: int = 0,
    log_dir: str | None = None,
    force: bool = False,
) -> None:
    """Route logs to the rotating file and to stderr at the requested verbosity."""

    path = logging_utils.setup_logging(debug=debug, verbosity=verbosity, log_dir=log_dir, force=force)
    _LOGGER.debug("Logging to %s (debug=%s, verbosity=%s)", path, debug, verbosity)


def load_settings(
    path: Optional[Path] = None,
    *,
    store: SettingsStore | None = None,
    overrides: Mapping[str, Any] | None = None,
) -> Settings:
    """Load persisted settings or fall back to defaults."""

    active_store = store or SettingsStore(path)
    try:
        settings = active_store.load(overrides=overrides)
    except (OSError, ValueError) as exc:
        _LOGGER.warning("Failed to load settings from %s: %s", active_store.path, exc)
        settings = Settings()
    return settings


def main(argv: Sequence[str] | None = None) -> int:
    """Entry point invoked by the `ninetynine` console script."""

    parser = _build_parser()
    args = parser.parse_args(argv)

    debug = args.debug or _env_flag("NINETYNINE_DEBUG", default=False)
    configure_logging(debug, verbosity=args.verbose, log_dir=args.log_dir)

    settings_path = args.settings_path or os.environ.get("NINETYNINE_SETTINGS_PATH")
    resolved_path = Path(settings_path).expanduser() if settings_path else None
    settings_store = SettingsStore(resolved_path)
    try:
        cli_overrides = _coerce_cli_overrides(args.overrides or [])
    except ValueError as exc:
        print(f"Invalid --set override: {exc}", file=sys.stderr)
        return EXIT_USAGE

    settings = load_settings(resolved_path, store=settings_store, overrides=cli_overrides or None)

    if args.dump_settings:
        _dump_settings(settings, settings_store, overrides=cli_overrides)
        return EXIT_OK

    if settings.debug_logging and not debug:
        configure_logging(True, verbosity=args.verbose, log_dir=args.log_dir, force=True)

    if args.command is None:
        parser.print_help(sys.stderr)
        return EXIT_USAGE
    if args.command == "providers":
        _print_providers(sys.stdout)
        return EXIT_OK
    return _run_file_command(args, settings)


def _run_file_command(args: argparse.Namespace, settings: Settings) -> int:
    path = Path(args.file).expanduser()
    try:
        text = path.read_text(encoding="utf-8")
    except OSError as exc:
        print(f"Cannot read {path}: {exc}", file=sys.stderr)
        return EXIT_USAGE

    try:
        app = NinetyNine(settings, provider=args.provider, model=args.model)
    except ValueError as exc:
        print(str(exc), file=sys.stderr)
        return EXIT_USAGE

    document = Document(text, path=path)
    opts = OpOptions(additional_prompt=args.prompt)
    try:
        outcome = asyncio.run(_run_operation(app, document, args, opts))
    except StructureNotFound as exc:
        print(str(exc), file=sys.stderr)
        return EXIT_FAILED
    except ValueError as exc:
        print(str(exc), file=sys.stderr)
        return EXIT_USAGE
    except KeyboardInterrupt:
        _LOGGER.info("Interrupted; cancelling active requests.")
        app.shutdown()
        return EXIT_FAILED

    if not outcome.ok:
        error = outcome.error
        message = str(error) if isinstance(error, NinetyNineError) else outcome.status.value
        print(f"{args.command} {outcome.status.value}: {message}", file=sys.stderr)
        return EXIT_FAILED

    if args.dry_run:
        sys.stdout.write(document.text())
        if not document.text().endswith("\n"):
            sys.stdout.write("\n")
    else:
        path.write_text(document.text(), encoding="utf-8")
        _LOGGER.info("Wrote %s", path)
    return EXIT_OK


async def _run_operation(
    app: NinetyNine,
    document: Document,
    args: argparse.Namespace,
    opts: OpOptions,
) -> OperationOutcome:
    document.bind_loop(asyncio.get_running_loop())
    operation: Operation
    if args.command == "fill":
        operation = app.fill_in_function(document, Point.from_cursor(args.line, args.col), opts)
    elif args.command == "implement":
        operation = app.implement_fn(document, Point.from_cursor(args.line, args.col), opts)
    else:
        selection = _selection(document, args.line, args.end_line)
        operation = app.visual(document, selection, opts)
    try:
        return await operation.wait()
    finally:
        app.shutdown()


def _selection(document: Document, line: int, end_line: int) -> Range:
    if line < 1 or end_line < line or end_line > document.line_count:
        raise ValueError(f"Invalid line span {line}-{end_line} for a {document.line_count}-line file")
    last = end_line - 1
    return Range.from_rows(line - 1, last, end_col=len(document.line(last)))


def _print_providers(stream: TextIO) -> None:
    for kind, provider, available in available_providers():
        marker = "yes" if available else "no"
        stream.write(f"{kind.value:<10} {marker:<4} {provider.default_model()}\n")


def _build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="ninetynine",
        description="Drive AI coding CLIs to fill in or rewrite code in a file.",
    )
    parser.add_argument(
        "--dump-settings",
        action="store_true",
        help="Print the effective settings payload (with secrets redacted) and exit.",
    )
    parser.add_argument(
        "--settings-path",
        metavar="PATH",
        help="Override the default ~/.ninetynine/settings.json path.",
    )
    parser.add_argument(
        "--set",
        dest="overrides",
        metavar="KEY=VALUE",
        action="append",
        default=[],
        help="Override persisted settings for this run (repeatable).",
    )
    parser.add_argument("--debug", action="store_true", help="Log everything, to the log file and stderr.")
    parser.add_argument(
        "-v",
        "--verbose",
        action="count",
        default=0,
        help="Show more log output on stderr (-v for info, -vv for debug).",
    )
    parser.add_argument(
        "--log-dir",
        metavar="PATH",
        help=f"Directory for {logging_utils.LOG_FILE_NAME} (default: ${logging_utils.LOG_DIR_ENV} or ~/.ninetynine/logs).",
    )

    commands = parser.add_subparsers(dest="command", metavar="<command>")
    commands.add_parser("providers", help="List providers, their availability and default model.")

    fill = commands.add_parser("fill", help="Fill in the function containing a line.")
    fill.add_argument("file")
    fill.add_argument("--line", type=int, required=True, help="1-based line inside the function.")
    fill.add_argument("--col", type=int, default=0)
    _add_shared_options(fill)

    implement = commands.add_parser("implement", help="Implement the function called at a position.")
    implement.add_argument("file")
    implement.add_argument("--line", type=int, required=True, help="1-based line of the call.")
    implement.add_argument("--col", type=int, required=True, help="0-based column on the call.")
    _add_shared_options(implement)

    replace = commands.add_parser("replace", help="Rewrite a span of lines.")
    replace.add_argument("file")
    replace.add_argument("--line", type=int, required=True, help="First 1-based line.")
    replace.add_argument("--end-line", type=int, required=True, help="Last 1-based line (inclusive).")
    _add_shared_options(replace)
    return parser


def _add_shared_options(parser: argparse.ArgumentParser) -> None:
    parser.add_argument("--prompt", default=None, help="Additional directions for the provider.")
    parser.add_argument("--provider", default=None, help="Provider name (opencode, claude, copilot, gemini, codex).")
    parser.add_argument("--model", default=None, help="Model passed to the provider.")
    parser.add_argument(
        "--dry-run",
        action="store_true",
        help="Print the updated file instead of writing it.",
    )


def _env_flag(name: str, *, default: bool = False) -> bool:
    value = os.environ.get(name)
    if value is None:
        return default
    return value.strip().lower() in _TRUE_VALUES


def _coerce_cli_overrides(items: Sequence[str]) -> Dict[str, Any]:
    overrides: Dict[str, Any] = {}
    if not items:
        return overrides

    fields = Settings.__dataclass_fields__  # type: ignore[attr-defined]
    type_hints = get_type_hints(Settings)
    for entry in items:
        if "=" not in entry:
            raise ValueError(f"Override '{entry}' must use KEY=VALUE syntax.")
        key, raw_value = entry.split("=", 1)
        key = key.strip()
        if not key:
            raise ValueError("Override is missing a field name.")
        if key not in fields:
            raise ValueError(f"Unknown setting '{key}'.")
        annotation = type_hints.get(key, fields[key].type)
        overrides[key] = _coerce_value(annotation, raw_value.strip())
    return overrides


def _coerce_value(annotation: Any, raw_value: str) -> Any:
    target = _resolve_annotation(annotation)
    normalized = raw_value.strip()

    if normalized.lower() in {"none", "null"} and target is not str:
        return None
    if target is str or target is Any:
        return normalized
    if target is bool:
        return _parse_bool(normalized)
    if target is int:
        return int(normalized, 10)
    if target is float:
        return float(normalized)
    if target is list:
        try:
            value = json.loads(normalized or "[]")
        except json.JSONDecodeError as exc:
            raise ValueError("List overrides must be valid JSON arrays") from exc
        if not isinstance(value, list):
            raise ValueError("List overrides must be valid JSON arrays")
        return value
    if target is dict:
        try:
            value = json.loads(normalized or "{}")
        except json.JSONDecodeError as exc:
            raise ValueError("Dict overrides must be valid JSON objects") from exc
        if not isinstance(value, dict):
            raise ValueError("Dict overrides must be valid JSON objects")
        return value
    return normalized


def _resolve_annotation(annotation: Any) -> Any:
    origin = get_origin(annotation)
    if origin is None:
        return annotation
    if origin in {list, dict}:
        return origin
    args = [arg for arg in get_args(annotation) if arg is not type(None)]
    if not args:
        return origin
    return _resolve_annotation(args[0])


def _parse_bool(value: str) -> bool:
    lowered = value.strip().lower()
    if lowered in _TRUE_VALUES:
        return True
    if lowered in _FALSE_VALUES:
        return False
    raise ValueError(f"Cannot coerce '{value}' to a boolean.")


def _dump_settings(
    settings: Settings,
    store: SettingsStore,
    *,
    overrides: Mapping[str, Any],
    stream: TextIO | None = None,
) -> None:
    destination = stream or sys.stdout
    metadata = {
        "path": str(store.path),
        "secret_backend": store.vault.strategy,
        "cli_overrides": sorted(overrides.keys()),
        "environment_variables": _active_env_overrides(),
    }
    output = {"settings": redact_settings(settings), "meta": metadata}
    json.dump(output, destination, indent=2)
    destination.write("\n")


def _active_env_overrides() -> list[str]:
    return sorted(name for name in os.environ if name.startswith("NINETYNINE_"))


if __name__ == "__main__":  # pragma: no cover - manual launch
    raise SystemExit(main())
