"""CLI entrypoint for crpt-api."""

from __future__ import annotations

import argparse
import json
import logging
import sys
from pathlib import Path
from typing import Any

import structlog

from crpt_api.client import CrptApiClient
from crpt_api.documents import load_document
from crpt_api.errors import CrptAPIError
from crpt_api.runtime_config import load_runtime_config, set_current_runtime_config
from crpt_api.settings import Settings


class CLIError(RuntimeError):
    """User-facing CLI error."""


def _configure_logging(verbose: bool) -> None:
    level = logging.DEBUG if verbose else logging.WARNING
    structlog.configure(
        processors=[
            structlog.contextvars.merge_contextvars,
            structlog.processors.add_log_level,
            structlog.processors.TimeStamper(fmt="iso"),
            structlog.dev.ConsoleRenderer(colors=False),
        ],
        wrapper_class=structlog.make_filtering_bound_logger(level),
        logger_factory=structlog.PrintLoggerFactory(file=sys.stderr),
        cache_logger_on_first_use=False,
    )


def _load_settings(args: argparse.Namespace) -> Settings:
    config_path = Path(args.config).expanduser() if args.config else None
    try:
        runtime = load_runtime_config(config_path)
    except RuntimeError as exc:
        raise CLIError(str(exc)) from exc
    set_current_runtime_config(runtime)
    return Settings.from_runtime(
        base_url=getattr(args, "base_url", None),
        timeout_s=getattr(args, "timeout_s", None),
        window_unit=getattr(args, "unit", None),
        max_requests_per_window=getattr(args, "limit", None),
    )


def _read_document(path: Path) -> dict[str, Any]:
    try:
        payload = json.loads(path.read_text(encoding="utf-8"))
    except OSError as exc:
        raise CLIError(f"failed reading document: {path}") from exc
    except json.JSONDecodeError as exc:
        raise CLIError(f"document is not valid JSON: {path}: {exc}") from exc
    if not isinstance(payload, dict):
        raise CLIError(f"document root must be a JSON object: {path}")
    return payload


def _cmd_submit(args: argparse.Namespace) -> int:
    settings = _load_settings(args)
    if args.signature_file:
        settings = settings.model_copy(update={"signature_file": args.signature_file})
    signature = args.signature or settings.resolve_signature()
    if not signature:
        raise CLIError(
            "missing signature; pass --signature, --signature-file or set CRPT_SIGNATURE"
        )
    document = load_document(_read_document(Path(args.document)))

    with CrptApiClient.create(
        settings.rate_limit(),
        base_url=settings.base_url,
        timeout_s=settings.timeout_s,
    ) as client:
        result = client.submit(document, signature, timeout=args.wait_timeout_s)

    print(
        json.dumps(
            {
                "doc_id": document.doc_id,
                "status_code": result.status_code,
                "duration_ms": result.duration_ms,
                "wait_ms": result.wait_ms,
            },
            sort_keys=True,
        )
    )
    return 0


def _cmd_config_show(args: argparse.Namespace) -> int:
    settings = _load_settings(args)
    payload = settings.model_dump(exclude={"signature"})
    payload["signature_set"] = bool(settings.resolve_signature())
    print(json.dumps(payload, indent=2, sort_keys=True))
    return 0


def _build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog="crpt-api", description="CRPT registry client")
    parser.add_argument("--config", default="", help="Path to runtime.toml")
    parser.add_argument("-v", "--verbose", action="store_true", help="Enable debug logging")
    subparsers = parser.add_subparsers(dest="command")

    submit = subparsers.add_parser("submit", help="Submit one document")
    submit.add_argument("--document", required=True, help="Path to a JSON document")
    submit.add_argument("--signature", default="", help="Signature header value")
    submit.add_argument("--signature-file", default="", help="File holding the signature")
    submit.add_argument("--base-url", default=None)
    submit.add_argument("--limit", type=int, default=None, help="Max requests per window")
    submit.add_argument("--unit", default=None, help="Window unit: second, minute, hour, day")
    submit.add_argument("--timeout-s", type=float, default=None, help="HTTP timeout")
    submit.add_argument(
        "--wait-timeout-s",
        type=float,
        default=None,
        help="Give up if no permit is available within this many seconds",
    )
    submit.set_defaults(func=_cmd_submit)

    config = subparsers.add_parser("config", help="Configuration helpers")
    config_subparsers = config.add_subparsers(dest="config_command")
    show = config_subparsers.add_parser("show", help="Print effective settings")
    show.set_defaults(func=_cmd_config_show)

    return parser


def main(argv: list[str] | None = None) -> int:
    """Run the CLI."""
    parser = _build_parser()
    args = parser.parse_args(argv)
    _configure_logging(args.verbose)
    func = getattr(args, "func", None)
    if func is None:
        parser.print_help()
        return 0
    try:
        return int(func(args))
    except (CLIError, CrptAPIError, FileNotFoundError, ValueError) as exc:
        print(str(exc), file=sys.stderr)
        return 2
    finally:
        set_current_runtime_config(None)


if __name__ == "__main__":
    raise SystemExit(main())
