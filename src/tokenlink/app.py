"""Typer application and CLI entry point for tokenlink.

This module wires together the top-level Typer application and registers
the built-in commands (``init``, ``setup``, ``login``, ``logout``,
``token``, ``status``, and the ``config`` group).

The :func:`main` function is the console-script entry point declared in
``pyproject.toml``. It installs signal handlers, registers commands, and
invokes the Typer app. :class:`~tokenlink.exceptions.TokenlinkError` is
mapped to its exit code; any other exception is written to a crash log
under the data directory.

See Also:
    :mod:`tokenlink.config`: Settings resolution.
    :mod:`tokenlink.output`: Output formatting initialised in :func:`main_callback`.
"""

from __future__ import annotations

import logging
import signal
import sys
import traceback
from datetime import datetime
from typing import Any

import typer

from tokenlink import __version__
from tokenlink.exit_codes import EXIT_GENERIC_FAILURE


app = typer.Typer(
    name="tokenlink",
    help="Obtain OAuth tokens for third-party services from the command line.",
    no_args_is_help=True,
    add_completion=True,
    rich_markup_mode="rich",
)

_LOG_FORMAT = "%(asctime)s %(levelname)s %(name)s: %(message)s"
_registered = False


def _version_callback(value: bool) -> None:
    """Print version and exit when --version is passed."""
    if value:
        typer.echo(f"tokenlink {__version__}")
        raise typer.Exit()


@app.callback()
def main_callback(
    ctx: typer.Context,
    version: bool = typer.Option(
        False,
        "--version",
        callback=_version_callback,
        is_eager=True,
        help="Show version and exit.",
    ),
    json_output: bool = typer.Option(
        False, "--json", help="JSON output format."
    ),
    plain_output: bool = typer.Option(
        False, "--plain", help="Plain text output."
    ),
    no_color: bool = typer.Option(
        False, "--no-color", help="Disable color output."
    ),
    quiet: bool = typer.Option(
        False, "--quiet", "-q", help="Suppress non-essential output."
    ),
    verbose: bool = typer.Option(
        False, "--verbose", "-v", help="Enable debug output."
    ),
    yes: bool = typer.Option(
        False, "--yes", "-y", help="Answer yes to confirmations."
    ),
    no_input: bool = typer.Option(
        False, "--no-input", help="Disable interactive prompts (confirmations answer no)."
    ),
) -> None:
    """Root callback executed before every sub-command.

    Initialises the global :class:`~tokenlink.output.OutputManager` from CLI
    flags, configures :mod:`logging`, and stores shared options in the Typer
    context so that commands can read them via ``ctx.obj``.

    Args:
        ctx: Typer invocation context.
        version: If ``True``, print the version string and exit.
        json_output: Force JSON output format.
        plain_output: Force plain-text output format.
        no_color: Disable all colour and Rich markup.
        quiet: Suppress non-essential diagnostic output.
        verbose: Enable debug output and DEBUG-level logging.
        yes: Answer every confirmation with yes.
        no_input: Answer every confirmation with no.
    """
    from tokenlink.output import OutputFormat, OutputManager, set_output

    fmt = OutputFormat.AUTO
    if json_output:
        fmt = OutputFormat.JSON
    elif plain_output:
        fmt = OutputFormat.PLAIN

    set_output(OutputManager(format=fmt, no_color=no_color, quiet=quiet, verbose=verbose))
    _configure_logging(verbose)

    ctx.ensure_object(dict)
    ctx.obj["verbose"] = verbose
    ctx.obj["yes"] = yes
    ctx.obj["no_input"] = no_input


def _configure_logging(verbose: bool) -> None:
    """Send library log records to stderr; DEBUG with ``--verbose``, else WARNING."""
    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.WARNING,
        format=_LOG_FORMAT,
        stream=sys.stderr,
        force=True,
    )
    # Keep httpx's per-request lines out of --verbose output.
    logging.getLogger("httpx").setLevel(logging.WARNING)
    logging.getLogger("httpcore").setLevel(logging.WARNING)


def _setup_signal_handlers() -> None:
    """Install a SIGINT handler so Ctrl-C exits cleanly."""

    def _handler(signum: int, frame: Any) -> None:  # noqa: ANN401
        sys.stderr.write("\nCancelled.\n")
        sys.exit(130)

    signal.signal(signal.SIGINT, _handler)


def _write_crash_log(exc: Exception) -> str:
    """Write a crash traceback to disk and return the log file path.

    Args:
        exc: The unhandled exception to log.

    Returns:
        Absolute path to the written crash log file.
    """
    from tokenlink.config import get_data_dir

    logs_dir = get_data_dir() / "logs"
    logs_dir.mkdir(parents=True, exist_ok=True)
    timestamp = datetime.now().strftime("%Y%m%d-%H%M%S")
    log_path = logs_dir / f"crash-{timestamp}.log"
    log_path.write_text(
        "".join(traceback.format_exception(type(exc), exc, exc.__traceback__))
    )
    return str(log_path)


def register_commands() -> None:
    """Attach the built-in commands to :data:`app`. Safe to call repeatedly."""
    global _registered
    if _registered:
        return
    from tokenlink.commands.auth import (
        login_command,
        logout_command,
        setup_command,
        status_command,
        token_command,
    )
    from tokenlink.commands.config import config_app
    from tokenlink.commands.init import init_command

    app.command("init")(init_command)
    app.command("setup")(setup_command)
    app.command("login")(login_command)
    app.command("logout")(logout_command)
    app.command("token")(token_command)
    app.command("status")(status_command)
    app.add_typer(config_app, name="config", help="Configuration management.")
    _registered = True


def main() -> None:
    """CLI entry point invoked by the ``tokenlink`` console script.

    Unhandled :class:`~tokenlink.exceptions.TokenlinkError` instances cause
    a clean exit with the error's ``exit_code``. All other exceptions
    produce a crash log and a generic failure exit.

    Raises:
        SystemExit: Always raised (either by Typer or explicitly).
    """
    _setup_signal_handlers()
    try:
        register_commands()
        app()
    except SystemExit:
        raise
    except KeyboardInterrupt:
        sys.stderr.write("\nCancelled.\n")
        sys.exit(130)
    except Exception as exc:
        from tokenlink.exceptions import TokenlinkError
        from tokenlink.output import error

        if isinstance(exc, TokenlinkError):
            error(str(exc))
            sys.exit(exc.exit_code)
        else:
            log_path = _write_crash_log(exc)
            error(f"Unexpected error. Debug log: {log_path}")
            sys.exit(EXIT_GENERIC_FAILURE)
