"""Cortex CLI - command line surface over the memory engine.

Command groups live in separate modules:
- memory.py: store, recall, hydrate
- maintenance.py: init, stats, decay, dream, graph
- config.py: config set, get, show
- common.py: shared utilities
"""
from pathlib import Path

import click

from .. import __version__
from .common import VERBOSITY_NORMAL, VERBOSITY_QUIET, VERBOSITY_VERBOSE
from .config import config_group
from .maintenance import maintenance_group
from .memory import memory_group


@click.group()
@click.version_option(version=__version__, prog_name="cortex")
@click.option('--data-dir', type=click.Path(), default=None, envvar='CORTEX_BASE_PATH',
              help='Base directory for Cortex data (default: ~/.cortex)')
@click.option('--verbose', '-v', is_flag=True, default=False,
              help='Enable verbose output')
@click.option('--quiet', '-q', is_flag=True, default=False,
              help='Suppress non-essential output')
@click.pass_context
def cli(ctx, data_dir, verbose, quiet):
    """Cortex - long-term memory for conversational agents.

    \b
    Key Commands:
        init      Initialize a data directory
        store     Store a memory
        recall    Recall memories for a query
        hydrate   Fetch full memories by id
        stats     Memory statistics
        decay     Run one decay pass
        dream     Run one dream cycle
        graph     Knowledge graph as JSON
        config    Configuration management

    \b
    Examples:
        cortex init
        cortex store "SOL pumped 12% this morning" --tag price --importance 0.8
        cortex recall "SOL price"
        cortex stats
    """
    ctx.ensure_object(dict)

    if verbose and quiet:
        raise click.UsageError("--verbose and --quiet are mutually exclusive")

    if quiet:
        ctx.obj['verbosity'] = VERBOSITY_QUIET
    elif verbose:
        ctx.obj['verbosity'] = VERBOSITY_VERBOSE
    else:
        ctx.obj['verbosity'] = VERBOSITY_NORMAL

    ctx.obj['data_dir'] = Path(data_dir) if data_dir else None


cli.add_command(memory_group.commands['store'])
cli.add_command(memory_group.commands['recall'])
cli.add_command(memory_group.commands['hydrate'])

cli.add_command(maintenance_group.commands['init'])
cli.add_command(maintenance_group.commands['stats'])
cli.add_command(maintenance_group.commands['decay'])
cli.add_command(maintenance_group.commands['dream'])
cli.add_command(maintenance_group.commands['graph'])

cli.add_command(config_group, name='config')


def main():
    """Entry point for the CLI."""
    cli(obj={})


if __name__ == "__main__":
    main()
