"""Config commands -- view and modify global configuration.

Provides the ``tokenlink config`` sub-command group for reading, updating,
and resetting the user's global configuration file
(:class:`~tokenlink.models.GlobalConfig`). These are the lowest-precedence
defaults for the callback port and flow timeout; environment variables and
``login`` flags override them.
"""

from __future__ import annotations

import typer

from tokenlink.output import error, info, print_record, success


config_app = typer.Typer(no_args_is_help=True)


@config_app.command("show")
def config_show() -> None:
    """Show current configuration.

    Example::

        tokenlink config show
        tokenlink --json config show
    """
    from tokenlink.config import get_config_dir, load_global_config

    config = load_global_config()
    info(f"Config directory: {get_config_dir()}")
    print_record(config.model_dump(mode="json"))


@config_app.command("set")
def config_set(
    key: str = typer.Argument(help="Config key (callback_port or timeout_seconds)."),
    value: str = typer.Argument(help="Value to set."),
) -> None:
    """Set a configuration value.

    The value is validated against :class:`~tokenlink.models.GlobalConfig`
    before saving.

    Raises:
        typer.Exit: With code 2 if the key is unknown or the value invalid.

    Example::

        tokenlink config set callback_port 9000
        tokenlink config set timeout_seconds 120
    """
    from pydantic import ValidationError

    from tokenlink.config import load_global_config, save_global_config
    from tokenlink.models import GlobalConfig

    data = load_global_config().model_dump(mode="json")
    if key not in data:
        error(f"Unknown config key: {key}")
        info(f"Known keys: {', '.join(sorted(data))}")
        raise typer.Exit(code=2)

    data[key] = value
    try:
        new_config = GlobalConfig.model_validate(data)
    except ValidationError as exc:
        error(f"Invalid value for {key}: {exc.errors()[0]['msg']}")
        raise typer.Exit(code=2) from None

    save_global_config(new_config)
    success(f"Set {key} = {getattr(new_config, key)}")


@config_app.command("reset")
def config_reset(ctx: typer.Context) -> None:
    """Reset configuration to defaults.

    Asks for confirmation unless ``--yes`` is active.

    Example::

        tokenlink config reset
        tokenlink --yes config reset
    """
    from tokenlink.commands import confirm_from_context
    from tokenlink.config import save_global_config
    from tokenlink.models import GlobalConfig

    if not confirm_from_context(ctx)("Reset all config to defaults?"):
        info("Cancelled.")
        raise typer.Exit()

    save_global_config(GlobalConfig())
    success("Configuration reset to defaults.")
