"""acmerenew command-line entry point.

Usage::

    acmerenew -c /etc/acmerenew/www.yaml
    acmerenew -c www.yaml --validate-only
    acmerenew -c www.yaml run --force
    acmerenew -c www.yaml check
    acmerenew -c www.yaml inspect
    python -m acmerenew -c www.yaml

The result of every command is one JSON object on stdout; logs go to
stderr.  Failures exit with the error class's ``exit_code`` so a
scheduler can tell them apart.
"""

from __future__ import annotations

import argparse
import json
import logging
import sys
from pathlib import Path
from typing import Any

from acmerenew.core.errors import AcmerenewError

log = logging.getLogger(__name__)

EXIT_USAGE = 1


def _get_version() -> str:
    from acmerenew import __version__  # noqa: PLC0415

    return __version__


def _build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="acmerenew",
        description="acmerenew: issue and renew certificates over ACME http-01",
    )
    parser.add_argument(
        "-c",
        "--config",
        required=True,
        metavar="PATH",
        help="Path to the configuration file (YAML or JSON).",
    )
    parser.add_argument(
        "--debug",
        action="store_true",
        default=False,
        help="Enable debug output (full tracebacks, verbose logging).",
    )
    parser.add_argument(
        "--force",
        action="store_true",
        default=False,
        help="Renew even if the installed certificate is current.",
    )
    parser.add_argument(
        "--validate-only",
        action="store_true",
        default=False,
        help="Validate the configuration file and exit.",
    )
    parser.add_argument(
        "-v",
        "--version",
        action="version",
        version=f"%(prog)s {_get_version()}",
    )

    subparsers = parser.add_subparsers(dest="command")

    run_parser = subparsers.add_parser("run", help="Renew if needed, then reload (default)")
    run_parser.add_argument("--force", action="store_true", default=False, dest="run_force")
    run_parser.add_argument(
        "--no-reload",
        action="store_true",
        default=False,
        help="Do not reload the service even if files changed.",
    )

    subparsers.add_parser("check", help="Report whether a renewal is due, without acting")
    subparsers.add_parser("inspect", help="Show the installed certificate")

    return parser


def _print_error(message: str) -> None:
    """Print a user-facing error to stderr."""
    print(f"error: {message}", file=sys.stderr)  # noqa: T201


def print_result(data: dict[str, Any]) -> None:
    """Emit the command's result line on stdout."""
    print(json.dumps(data, sort_keys=True, default=str))  # noqa: T201


def _fail(exc: AcmerenewError, *, debug: bool) -> None:
    _print_error(exc.describe())
    print_result({"changed": False, **exc.to_dict()})
    if debug:
        log.debug("Failure detail", exc_info=exc)
    sys.exit(exc.exit_code)


def main(argv: list[str] | None = None) -> None:
    """CLI entry point.  Parses arguments, loads config, dispatches."""
    parser = _build_parser()
    args = parser.parse_args(argv)

    # -- resolve config path ---
    config_path = Path(args.config)
    if not config_path.is_file():
        _print_error(f"configuration file not found: {config_path}")
        sys.exit(EXIT_USAGE)

    # -- bootstrap logging early (basic stderr until config is loaded) ---
    logging.basicConfig(
        level=logging.DEBUG if args.debug else logging.WARNING,
        format="%(levelname)s: %(message)s",
        stream=sys.stderr,
    )

    # -- load & validate config ---
    from acmerenew.config import AcmerenewConfig  # noqa: PLC0415

    try:
        config = AcmerenewConfig(config_file=config_path)
    except AcmerenewError as exc:
        _fail(exc, debug=args.debug)

    # -- replace bootstrap logging with structured logging ---
    from acmerenew.logging import configure_logging, run_context  # noqa: PLC0415

    configure_logging(config.settings.logging, level_override="DEBUG" if args.debug else None)

    if args.validate_only:
        _print_settings_summary(config)
        sys.exit(0)

    command = args.command or "run"
    with run_context(config.settings.certificate.service_name):
        try:
            if command == "check":
                from acmerenew.cli.commands.check import run_check  # noqa: PLC0415

                run_check(config, args)
            elif command == "inspect":
                from acmerenew.cli.commands.inspect import run_inspect  # noqa: PLC0415

                run_inspect(config, args)
            else:
                from acmerenew.cli.commands.run import run_renewal  # noqa: PLC0415

                run_renewal(config, args)
        except AcmerenewError as exc:
            log.error("Run failed: %s", exc.describe())  # noqa: TRY400
            _fail(exc, debug=args.debug)


def _print_settings_summary(config) -> None:
    """Print a short summary of the loaded configuration."""
    s = config.settings
    print_result(
        {
            "valid": True,
            "config": config.data.get("_source"),
            "service_name": s.certificate.service_name,
            "common_name": s.certificate.common_name,
            "sans": list(s.certificate.sans),
            "directory_url": s.acme.directory_url,
            "publisher": s.challenge.publisher,
            "install_dir": s.install.dir,
            "threshold_days": s.renewal.threshold_days,
        },
    )
