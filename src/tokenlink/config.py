"""Configuration management with XDG paths, atomic writes, and precedence resolution.

This module handles all persistent configuration for tokenlink:

* **Directory layout** -- XDG Base Directory compliant on Linux/BSD,
  ``~/.tokenlink/`` on macOS and Windows. See :func:`get_config_dir`,
  :func:`get_data_dir`, :func:`get_certs_dir`, :func:`get_credentials_dir`.
* **Global config** -- A single :class:`~tokenlink.models.GlobalConfig`
  JSON file storing user defaults (callback port, flow timeout).
* **Precedence resolution** -- :func:`resolve_settings` merges CLI flags,
  environment variables, and global config into the
  :class:`~tokenlink.models.FlowSettings` handed to a flow.

All file writes use an atomic temp-file-then-rename strategy
(:func:`_atomic_write`) to prevent data loss on crash or power failure.
"""

from __future__ import annotations

import json
import os
import platform
import tempfile
from pathlib import Path
from typing import Optional

from tokenlink import __version__
from tokenlink.exceptions import ConfigError
from tokenlink.models import FlowSettings, GlobalConfig

_APP_NAME = "tokenlink"
_CONFIG_FILENAME = "config.json"

ENV_CALLBACK_PORT = "TOKENLINK_CALLBACK_PORT"
ENV_TIMEOUT = "TOKENLINK_TIMEOUT"


# --- XDG path resolution ---


def _is_xdg_platform() -> bool:
    """Return True if the platform follows the XDG Base Directory layout (Linux/FreeBSD)."""
    return platform.system() == "Linux" or platform.system().endswith("BSD")


def _fallback_base_dir() -> Path:
    """Fallback base directory for non-XDG platforms (macOS, Windows)."""
    return Path.home() / f".{_APP_NAME}"


def _xdg_base(env_var: str, default_segments: tuple[str, ...]) -> Path:
    """Resolve an XDG base directory from an env var with fallback segments under $HOME."""
    env_value = os.environ.get(env_var, "")
    if env_value:
        return Path(env_value)
    base = Path.home()
    for seg in default_segments:
        base = base / seg
    return base


def get_config_dir() -> Path:
    """Return the configuration directory, creating it if necessary.

    On Linux/BSD: ``$XDG_CONFIG_HOME/tokenlink/`` (default ``~/.config/tokenlink/``).
    On macOS/Windows: ``~/.tokenlink/``.
    """
    if _is_xdg_platform():
        base = _xdg_base("XDG_CONFIG_HOME", (".config",))
        path = base / _APP_NAME
    else:
        path = _fallback_base_dir()
    path.mkdir(parents=True, exist_ok=True)
    return path


def get_data_dir() -> Path:
    """Return the data directory (certificates, secrets, crash logs), creating it if necessary.

    On Linux/BSD: ``$XDG_DATA_HOME/tokenlink/`` (default ``~/.local/share/tokenlink/``).
    On macOS/Windows: ``~/.tokenlink/``.
    """
    if _is_xdg_platform():
        base = _xdg_base("XDG_DATA_HOME", (".local", "share"))
        path = base / _APP_NAME
    else:
        path = _fallback_base_dir()
    path.mkdir(parents=True, exist_ok=True)
    return path


def get_certs_dir() -> Path:
    """Return the directory holding the local CA key and certificate.

    The directory is *not* created here; the certificate manager creates it
    with owner-only permissions when it first writes the authority.
    """
    return get_data_dir() / "certs"


def get_credentials_dir() -> Path:
    """Return the secret store directory (``<data_dir>/credentials``), creating it if necessary."""
    path = get_data_dir() / "credentials"
    path.mkdir(parents=True, exist_ok=True)
    return path


# --- Atomic file writes ---


def _atomic_write(path: Path, data: str, mode: Optional[int] = None) -> None:
    """Write data to file atomically using temp file + rename.

    The temporary file is created in the same directory as *path* so that
    ``os.replace`` is guaranteed to be an atomic rename on POSIX systems.
    When *mode* is given it is applied to the temp file before any content
    is written, so secrets are never readable by others, even momentarily.
    """
    path.parent.mkdir(parents=True, exist_ok=True)

    fd = None
    tmp_path: Optional[str] = None
    try:
        fd = tempfile.NamedTemporaryFile(
            mode="w",
            dir=path.parent,
            prefix=f".{path.name}.",
            suffix=".tmp",
            delete=False,
            encoding="utf-8",
        )
        tmp_path = fd.name
        if mode is not None:
            os.chmod(tmp_path, mode)
        fd.write(data)
        fd.flush()
        os.fsync(fd.fileno())
        fd.close()
        fd = None  # prevent double-close in finally
        os.replace(tmp_path, path)
    except BaseException:
        # Clean up the temp file on any error (including KeyboardInterrupt).
        if fd is not None:
            fd.close()
        if tmp_path is not None:
            try:
                os.unlink(tmp_path)
            except OSError:
                pass
        raise


# --- Global config ---


def _global_config_path() -> Path:
    """Path to the global config file."""
    return get_config_dir() / _CONFIG_FILENAME


def load_global_config() -> GlobalConfig:
    """Load the global configuration from the XDG config directory.

    Returns:
        The deserialised :class:`~tokenlink.models.GlobalConfig`. If the
        file does not exist, a default instance is returned.

    Raises:
        ConfigError: If the file exists but contains invalid JSON or fails
            Pydantic validation.
    """
    path = _global_config_path()
    if not path.is_file():
        return GlobalConfig()
    try:
        text = path.read_text(encoding="utf-8")
        data = json.loads(text)
        return GlobalConfig.model_validate(data)
    except (json.JSONDecodeError, ValueError) as exc:
        raise ConfigError(f"Invalid global config at {path}: {exc}") from exc


def save_global_config(config: GlobalConfig) -> None:
    """Persist the global configuration atomically to disk."""
    data = config.model_dump(mode="json")
    _atomic_write(_global_config_path(), json.dumps(data, indent=2) + "\n")


# --- Precedence resolution ---


def _env_number(name: str, cast: type) -> Optional[float]:
    """Read a numeric environment variable, raising ConfigError if malformed."""
    raw = os.environ.get(name, "")
    if not raw:
        return None
    try:
        return cast(raw)
    except ValueError as exc:
        raise ConfigError(f"Environment variable {name} must be a number, got {raw!r}") from exc


def resolve_settings(
    cli_port: Optional[int] = None,
    cli_timeout: Optional[float] = None,
    verbose: bool = False,
) -> FlowSettings:
    """Resolve flow settings with the full precedence chain.

    Precedence (high to low):
        1. CLI flags (``cli_port``, ``cli_timeout``)
        2. Environment variables (``TOKENLINK_CALLBACK_PORT``, ``TOKENLINK_TIMEOUT``)
        3. User config (``~/.config/tokenlink/config.json``)
        4. Defaults

    Args:
        cli_port: ``--port`` value, if given.
        cli_timeout: ``--timeout`` value in seconds, if given.
        verbose: Whether ``--verbose`` was passed; becomes ``settings.debug``.

    Returns:
        A :class:`~tokenlink.models.FlowSettings` instance.

    Raises:
        ConfigError: If an environment variable or resolved value is invalid.
    """
    global_cfg = load_global_config()

    port: int = global_cfg.callback_port
    timeout: float = global_cfg.timeout_seconds

    env_port = _env_number(ENV_CALLBACK_PORT, int)
    if env_port is not None:
        port = int(env_port)
    env_timeout = _env_number(ENV_TIMEOUT, float)
    if env_timeout is not None:
        timeout = env_timeout

    if cli_port is not None:
        port = cli_port
    if cli_timeout is not None:
        timeout = cli_timeout

    try:
        return FlowSettings(
            callback_port=port,
            timeout_seconds=timeout,
            debug=verbose,
            version=__version__,
        )
    except ValueError as exc:
        raise ConfigError(f"Invalid flow settings: {exc}") from exc
