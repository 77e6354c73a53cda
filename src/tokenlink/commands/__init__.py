"""Built-in CLI sub-commands for tokenlink.

This package groups the Typer command modules registered on the root app:

* :mod:`~tokenlink.commands.init` -- create and trust the local CA.
* :mod:`~tokenlink.commands.auth` -- ``setup``, ``login``, ``logout``,
  ``token``, and ``status``.
* :mod:`~tokenlink.commands.config` -- view and modify global settings.

Single commands are plain callback functions registered directly on the
root app; the ``config`` group is a :class:`typer.Typer` sub-application.
"""

from __future__ import annotations

from typing import Callable, Optional

import typer


def confirm_from_context(ctx: Optional[typer.Context]) -> Callable[[str], bool]:
    """Return a yes/no prompt honouring the global ``--yes`` and ``--no-input`` flags."""
    obj = ctx.obj if ctx is not None and isinstance(ctx.obj, dict) else {}

    def _confirm(question: str) -> bool:
        if obj.get("yes"):
            return True
        if obj.get("no_input"):
            return False
        return typer.confirm(question, default=True, err=True)

    return _confirm
