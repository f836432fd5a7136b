"""Application bootstrap and command-line entry point for the canvas agent."""

from __future__ import annotations

import argparse
import asyncio
import json
import logging
import os
import sys
from dataclasses import asdict
from pathlib import Path
from typing import Any, Dict, Mapping, Optional, Sequence, TextIO, get_args, get_origin, get_type_hints

from openai import AsyncOpenAI

from .ai.client import AIClient, ClientSettings
from .ai.orchestration.executor import OperationExecutor
from .ai.orchestration.gateway import GatewayConfig, ReasoningGateway
from .ai.orchestration.message_builder import MessageBuilder
from .ai.orchestration.orchestrator import CommandOrchestrator
from .ai.orchestration.types import CommandRequest, CommandResponse
from .ai.services.summarizer import CanvasStateSummarizer
from .ai.tools.registry import OperationRegistry, default_registry
from .ai.tools.validation import ToolCallValidator
from .canvas.store import DocumentStore, InMemoryDocumentStore
from .services.settings import Settings, SettingsStore, redact_secret
from .utils import logging as logging_utils

__all__ = [
    "configure_logging",
    "load_settings",
    "client_settings_from",
    "gateway_config_from",
    "build_orchestrator",
    "main",
]

_TRUE_VALUES = {"1", "true", "yes", "on", "debug"}
_FALSE_VALUES = {"0", "false", "no", "off", "disabled"}
_LOGGER = logging.getLogger(__name__)

EXIT_OK = 0
EXIT_FAILURE = 1
EXIT_USAGE = 2


def configure_logging(debug: bool = False, *, force: bool = False, console: bool = True) -> None:
    """Configure logging for the command line."""

    level = logging.DEBUG if debug else logging.INFO
    logging_utils.setup_logging(level, force=force, console=console)
    _LOGGER.debug("Logging configured (level=%s)", logging.getLevelName(level))


def load_settings(
    path: Optional[Path] = None,
    *,
    store: SettingsStore | None = None,
    overrides: Mapping[str, Any] | None = None,
) -> Settings:
    """Load persisted settings or fall back to defaults."""

    active_store = store or SettingsStore(path)
    try:
        return active_store.load(overrides=overrides)
    except (OSError, ValueError) as exc:
        _LOGGER.warning("Failed to load settings from %s: %s", active_store.path, exc)
        return Settings()


# -----------------------------------------------------------------------------
# Composition
# -----------------------------------------------------------------------------


def client_settings_from(settings: Settings) -> ClientSettings:
    return ClientSettings(
        base_url=settings.base_url,
        api_key=settings.api_key,
        model=settings.model,
        organization=settings.organization,
        request_timeout=settings.request_timeout,
        default_headers=settings.default_headers or None,
        metadata=settings.metadata or None,
        debug_logging=settings.debug_logging,
    )


def gateway_config_from(settings: Settings) -> GatewayConfig:
    return GatewayConfig(
        max_attempts=settings.max_attempts,
        rate_limit_backoff_seconds=settings.rate_limit_backoff_seconds,
        transient_backoff_seconds=settings.transient_backoff_seconds,
        temperature=settings.temperature,
        max_tokens=settings.max_tokens,
    )


def build_orchestrator(
    settings: Settings,
    store: DocumentStore,
    *,
    client: AsyncOpenAI | None = None,
    registry: OperationRegistry | None = None,
) -> CommandOrchestrator:
    """Wire the full command pipeline from ``settings``.

    Args:
        settings: Effective runtime settings.
        store: Document store the pipeline reads and writes.
        client: Pre-built OpenAI client, mainly for tests.
        registry: Operation catalog; the default catalog when omitted.
    """

    catalog = registry or default_registry()
    transport = AIClient(client_settings_from(settings), client=client)
    gateway = ReasoningGateway(
        transport,
        config=gateway_config_from(settings),
        message_builder=MessageBuilder(history_limit=settings.history_limit),
    )
    _LOGGER.debug(
        "Building orchestrator for model %s via %s (key=%s)",
        settings.model,
        settings.base_url,
        redact_secret(settings.api_key),
    )
    return CommandOrchestrator(
        store,
        gateway,
        registry=catalog,
        validator=ToolCallValidator(catalog),
        executor=OperationExecutor(store, pacing_delay=settings.pacing_delay_seconds),
        summarizer=CanvasStateSummarizer(
            threshold=settings.summarization_threshold,
            recent_count=settings.recent_object_count,
        ),
        max_iterations=_clamp_iterations(settings.max_iterations),
        max_command_length=settings.max_command_length,
        queue_capacity=settings.queue_capacity,
        queue_timeout_seconds=settings.queue_timeout_seconds,
    )


def _clamp_iterations(raw_value: Any) -> int:
    """Clamp the configured iteration limit into a safe operating range."""

    try:
        value = int(raw_value)
    except (TypeError, ValueError):
        value = 5
    return max(1, min(value, 20))


# -----------------------------------------------------------------------------
# Command line
# -----------------------------------------------------------------------------


def main(argv: Sequence[str] | None = None) -> int:
    """Entry point invoked by the ``canvasagent`` console script."""

    parser = _build_parser()
    args = parser.parse_args(argv)
    if args.command is None and not args.dump_settings:
        parser.print_help(sys.stderr)
        return EXIT_USAGE

    configure_logging(args.debug, console=args.verbose or args.debug)

    settings_path = args.settings_path or os.environ.get("CANVASAGENT_SETTINGS_PATH")
    resolved_path = Path(settings_path).expanduser() if settings_path else None
    settings_store = SettingsStore(resolved_path)
    try:
        cli_overrides = _coerce_cli_overrides(args.overrides or [])
    except ValueError as exc:
        print(f"Invalid --set override: {exc}", file=sys.stderr)
        return EXIT_USAGE

    settings = load_settings(resolved_path, store=settings_store, overrides=cli_overrides or None)
    if settings.debug_logging and not args.debug:
        configure_logging(True, force=True, console=args.verbose)

    if args.dump_settings:
        _dump_settings(settings, settings_store, overrides=cli_overrides)
        return EXIT_OK

    try:
        if args.command == "catalog":
            return _cmd_catalog()
        if args.command == "summarize":
            return _cmd_summarize(Path(args.canvas), settings)
        return _cmd_run(args, settings)
    except (OSError, ValueError) as exc:
        print(f"error: {exc}", file=sys.stderr)
        return EXIT_FAILURE


def _build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="canvasagent",
        description="Run natural-language commands against a canvas document.",
    )
    parser.add_argument(
        "--settings-path",
        metavar="PATH",
        help="Override the default ~/.canvasagent/settings.json path.",
    )
    parser.add_argument(
        "--set",
        dest="overrides",
        metavar="KEY=VALUE",
        action="append",
        default=[],
        help="Override persisted settings for this run (repeatable).",
    )
    parser.add_argument(
        "--dump-settings",
        action="store_true",
        help="Print the effective settings payload (with secrets redacted) and exit.",
    )
    parser.add_argument("--debug", action="store_true", help="Enable debug logging.")
    parser.add_argument("-v", "--verbose", action="store_true", help="Also log to the console.")

    subparsers = parser.add_subparsers(dest="command")
    subparsers.add_parser("catalog", help="Print the operation catalog as JSON.")

    summarize = subparsers.add_parser("summarize", help="Print the canvas digest sent to the model.")
    summarize.add_argument("canvas", metavar="CANVAS_JSON")

    run = subparsers.add_parser("run", help="Execute a command against a canvas file.")
    run.add_argument("canvas", metavar="CANVAS_JSON")
    run.add_argument("text", help="Natural-language command.")
    run.add_argument("--user", required=True, help="User id issuing the command.")
    run.add_argument(
        "--select",
        metavar="ID",
        action="append",
        default=None,
        help="Object id to treat as selected (repeatable).",
    )
    run.add_argument("--dry-run", action="store_true", help="Do not write the canvas file back.")
    return parser


def _cmd_catalog(stream: TextIO | None = None) -> int:
    destination = stream or sys.stdout
    json.dump(default_registry().describe(), destination, indent=2)
    destination.write("\n")
    return EXIT_OK


def _cmd_summarize(path: Path, settings: Settings, stream: TextIO | None = None) -> int:
    destination = stream or sys.stdout
    store, document_id = InMemoryDocumentStore.from_json_file(path)
    summarizer = CanvasStateSummarizer(
        threshold=settings.summarization_threshold,
        recent_count=settings.recent_object_count,
    )
    snapshot = asyncio.run(store.read_snapshot(document_id))
    text, tokens = summarizer.render(summarizer.summarize(snapshot))
    destination.write(text)
    destination.write(f"\n(~{tokens} tokens)\n")
    return EXIT_OK


def _cmd_run(args: argparse.Namespace, settings: Settings, stream: TextIO | None = None) -> int:
    destination = stream or sys.stdout
    path = Path(args.canvas)
    store, document_id = InMemoryDocumentStore.from_json_file(path)
    request = CommandRequest(
        text=args.text,
        document_id=document_id,
        user_id=args.user,
        selected_ids=tuple(args.select) if args.select else None,
    )
    response = asyncio.run(_run_command(settings, store, request))
    json.dump(response.to_dict(), destination, indent=2)
    destination.write("\n")
    if response.success and not args.dry_run:
        store.write_json_file(document_id, path)
        _LOGGER.info("Wrote canvas %s to %s", document_id, path)
    return EXIT_OK if response.success else EXIT_FAILURE


async def _run_command(settings: Settings, store: InMemoryDocumentStore, request: CommandRequest) -> CommandResponse:
    orchestrator = build_orchestrator(settings, store)
    try:
        return await orchestrator.handle(request)
    finally:
        await orchestrator.aclose()


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
        overrides[key] = _coerce_value(type_hints.get(key, fields[key].type), raw_value.strip())
    return overrides


def _coerce_value(annotation: Any, raw_value: str) -> Any:
    if raw_value.lower() in {"none", "null"} and type(None) in get_args(annotation):
        return None
    target = _resolve_annotation(annotation)
    if target is str or target is Any:
        return raw_value
    if target is bool:
        return _parse_bool(raw_value)
    if target is int:
        return int(raw_value, 10)
    if target is float:
        return float(raw_value)
    if target is dict:
        try:
            payload = json.loads(raw_value or "{}")
        except json.JSONDecodeError as exc:
            raise ValueError("Dict overrides must be valid JSON objects") from exc
        if not isinstance(payload, dict):
            raise ValueError("Dict overrides must be valid JSON objects")
        return payload
    return raw_value


def _resolve_annotation(annotation: Any) -> Any:
    origin = get_origin(annotation)
    if origin is None:
        return annotation
    if origin in {list, dict}:
        return origin
    args = [arg for arg in get_args(annotation) if arg is not type(None)]
    return args[0] if args else origin


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
    payload = asdict(settings)
    payload["api_key"] = redact_secret(settings.api_key)
    metadata = {
        "path": str(store.path),
        "secret_backend": store.vault.strategy,
        "cli_overrides": sorted(overrides),
        "environment_variables": sorted(name for name in os.environ if name.startswith("CANVASAGENT_")),
    }
    json.dump({"settings": payload, "meta": metadata}, destination, indent=2)
    destination.write("\n")
