"""Shared utilities for Cortex CLI commands."""
import logging
import os
import sys
from pathlib import Path
from typing import Optional

import click

from ..config import CONFIG_FILENAME, DEFAULT_BASE_PATH, load_config
from ..exceptions import ConfigurationError

# Verbosity levels
VERBOSITY_QUIET = 0
VERBOSITY_NORMAL = 1
VERBOSITY_VERBOSE = 2


def get_base_path(ctx_data_dir: Optional[Path] = None) -> Path:
    """Get the base path for Cortex data.

    Priority: --data-dir flag > CORTEX_BASE_PATH env var > default path.
    """
    if ctx_data_dir:
        return Path(ctx_data_dir)
    env_path = os.getenv("CORTEX_BASE_PATH")
    if env_path:
        return Path(env_path)
    return DEFAULT_BASE_PATH


def should_print(verbosity: int, message_level: int) -> bool:
    return verbosity >= message_level


def echo_verbose(message: str, verbosity: int) -> None:
    """Print a message only in verbose mode."""
    if should_print(verbosity, VERBOSITY_VERBOSE):
        click.echo(message, err=False)


def echo_normal(message: str, verbosity: int) -> None:
    """Print a message in normal and verbose modes."""
    if should_print(verbosity, VERBOSITY_NORMAL):
        click.echo(message, err=False)


def echo_quiet(message: str, verbosity: int) -> None:
    """Print a message that is shown even in quiet mode."""
    click.echo(message, err=False)


def fail(message: str, verbosity: int = VERBOSITY_NORMAL) -> None:
    """Print a red error and exit with status 1."""
    echo_quiet(click.style(f"Error: {message}", fg="red"), verbosity)
    sys.exit(1)


def configure_logging(verbosity: int, level: str = "WARNING") -> None:
    """Root handler on stderr; -q forces ERROR, -v forces DEBUG."""
    if verbosity == VERBOSITY_QUIET:
        resolved = logging.ERROR
    elif verbosity == VERBOSITY_VERBOSE:
        resolved = logging.DEBUG
    else:
        resolved = getattr(logging, str(level).upper(), logging.WARNING)
    logging.basicConfig(
        level=resolved,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
        stream=sys.stderr,
    )
    logging.getLogger().setLevel(resolved)


def require_initialized(ctx) -> Path:
    base_path = get_base_path(ctx.obj.get('data_dir'))
    if not (base_path / CONFIG_FILENAME).exists():
        fail("Cortex not initialized. Run 'cortex init' first.", ctx.obj.get('verbosity', 1))
    return base_path


def open_cortex(ctx):
    """Build a Cortex for one command; side effects run inline so they finish before exit."""
    from ..cortex import Cortex

    base_path = require_initialized(ctx)
    verbosity = ctx.obj.get('verbosity', VERBOSITY_NORMAL)
    try:
        config = load_config(base_path)
    except ConfigurationError as e:
        fail(f"Invalid configuration: {e}", verbosity)
    config.tasks.synchronous = True
    configure_logging(verbosity, config.logging.level)
    return Cortex(config)
