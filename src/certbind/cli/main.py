"""certbind command-line entry point.

Usage::

    certbind -c /etc/certbind/config.yaml
    certbind -c config.yaml --dev
    certbind -c config.yaml --validate-only
    certbind -c config.yaml serve --dev
    certbind -c config.yaml run
    certbind -c config.yaml plan
    certbind -c config.yaml token
    python -m certbind -c config.yaml
"""

from __future__ import annotations

import argparse
import logging
import sys
from pathlib import Path

log = logging.getLogger(__name__)


def _get_version() -> str:
    from certbind import __version__  # noqa: PLC0415

    return __version__


def _build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="certbind",
        description="certbind: ACME certificates for App Engine custom domains",
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
        "--validate-only",
        action="store_true",
        default=False,
        help="Validate the configuration file and exit.",
    )
    parser.add_argument(
        "--dev",
        action="store_true",
        default=False,
        help="Use Flask's development server instead of gunicorn.",
    )
    parser.add_argument(
        "-v",
        "--version",
        action="version",
        version=f"%(prog)s {_get_version()}",
    )

    subparsers = parser.add_subparsers(dest="command")

    serve_parser = subparsers.add_parser("serve", help="Start the HTTP server")
    serve_parser.add_argument("--dev", action="store_true", default=False, dest="dev")

    subparsers.add_parser("run", help="Run one reconciliation and print the report")
    subparsers.add_parser("plan", help="Show what a reconciliation would do")
    subparsers.add_parser("token", help="Mint a bearer token for the trigger endpoint")

    return parser


def _print_error(message: str) -> None:
    """Print a user-facing error to stderr."""
    print(f"certbind: error: {message}", file=sys.stderr)  # noqa: T201


def main(argv: list[str] | None = None) -> None:
    """CLI entry point.  Parses arguments, loads config, dispatches."""
    parser = _build_parser()
    args = parser.parse_args(argv)

    # -- resolve config path ---
    config_path = Path(args.config)
    if not config_path.is_file():
        _print_error(f"configuration file not found: {config_path}")
        sys.exit(1)

    # -- bootstrap logging early (basic stderr until config is loaded) ---
    logging.basicConfig(
        level=logging.DEBUG if args.debug else logging.WARNING,
        format="%(levelname)s: %(message)s",
        stream=sys.stderr,
    )

    # -- load & validate config ---
    from certbind.config import CertbindConfig, ConfigValidationError  # noqa: PLC0415

    try:
        config = CertbindConfig(config_file=config_path)
    except ConfigValidationError as exc:
        _print_error(str(exc))
        sys.exit(1)

    # -- replace bootstrap logging with structured logging ---
    from certbind.logging import configure_logging  # noqa: PLC0415

    configure_logging(config.settings.logging)

    if args.validate_only:
        _print_settings_summary(config)
        sys.exit(0)

    command = args.command

    if command == "run":
        from certbind.cli.commands.reconcile import run_reconcile  # noqa: PLC0415

        sys.exit(run_reconcile(config, _init_database(config, args)))
    elif command == "plan":
        from certbind.cli.commands.reconcile import run_plan  # noqa: PLC0415

        sys.exit(run_plan(config))
    elif command == "token":
        from certbind.cli.commands.token import run_token  # noqa: PLC0415

        sys.exit(run_token(config))
    else:
        # No subcommand means serve.
        _print_settings_summary(config)
        _run_serve(config, args)


def _init_database(config, args):
    """Initialise the database when the challenge store lives there."""
    if config.settings.challenges.store.backend != "database":
        return None
    try:
        from certbind.db.init import init_database  # noqa: PLC0415

        return init_database(config.settings.database)
    except Exception as exc:
        if args.debug:
            raise
        _print_error(f"database initialisation failed: {exc}")
        sys.exit(1)


def _run_serve(config, args) -> None:
    db = _init_database(config, args)

    from certbind.app import create_app  # noqa: PLC0415

    app = create_app(config=config, database=db)

    if args.dev:
        log.info("Starting development server (not for production)")
        app.run(
            host=config.settings.server.bind,
            port=config.settings.server.port,
            debug=True,
            use_reloader=False,
        )
    else:
        try:
            from certbind.server.gunicorn_app import run_gunicorn  # noqa: PLC0415

            run_gunicorn(app, config.settings.server)
        except RuntimeError as exc:
            _print_error(str(exc))
            sys.exit(1)


def _print_settings_summary(config) -> None:
    """Print a short summary of the loaded configuration."""
    s = config.settings
    lines = [
        f"certbind {_get_version()}",
        f"  config:          {config.data.get('_source', '-')}",
        f"  acme directory:  {s.acme.directory_url}",
        f"  registry:        {s.registry.backend} ({s.registry.app_id})",
        f"  renew before:    {s.renewal.renew_before_days} days",
        f"  challenge store: {s.challenges.store.backend}",
        f"  trigger path:    {s.trigger.path}",
        f"  server:          {s.server.bind}:{s.server.port} "
        f"({s.server.workers} x {s.server.worker_class})",
    ]
    print("\n".join(lines))  # noqa: T201
