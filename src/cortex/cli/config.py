"""Configuration management commands for the Cortex CLI."""
import sys

import click

from ..config import CONFIG_FILENAME, load_config
from ..exceptions import ConfigurationError
from .common import echo_normal, echo_quiet, fail, require_initialized

SECRET_KEYS = ("api_key",)


def _mask_secrets(data):
    if isinstance(data, dict):
        return {
            k: ("***" if k in SECRET_KEYS and v else _mask_secrets(v))
            for k, v in data.items()
        }
    return data


@click.group()
def config_group():
    """Configuration management commands."""
    pass


@config_group.command('set')
@click.argument('key')
@click.argument('value')
@click.pass_context
def config_set(ctx, key: str, value: str) -> None:
    """Set a configuration value.

    Values are parsed as YAML scalars, so numbers and booleans keep
    their type.

    Examples:
        cortex config set embedding.provider voyage
        cortex config set retrieval.weight_vector 4.0
        cortex config set decay.rates.episodic 0.9
    """
    import yaml

    config_path = require_initialized(ctx) / CONFIG_FILENAME
    verbosity = ctx.obj.get('verbosity', 1)

    try:
        config_data = yaml.safe_load(config_path.read_text()) or {}

        keys = key.split('.')
        current = config_data
        for k in keys[:-1]:
            if not isinstance(current.get(k), dict):
                current[k] = {}
            current = current[k]

        current[keys[-1]] = yaml.safe_load(value)

        config_path.write_text(yaml.dump(config_data, default_flow_style=False))
    except (OSError, yaml.YAMLError) as e:
        fail(f"Failed to set config: {e}", verbosity)

    try:
        load_config(config_path.parent)
    except ConfigurationError as e:
        echo_quiet(click.style(f"Warning: configuration is now invalid: {e}", fg="yellow"), verbosity)

    echo_normal(click.style(f"✓ Set {key} = {value}", fg="green"), verbosity)


@config_group.command('get')
@click.argument('key')
@click.pass_context
def config_get(ctx, key: str) -> None:
    """Get a configuration value from config.yaml.

    Examples:
        cortex config get embedding.provider
        cortex config get dream.interval_hours
    """
    import yaml

    config_path = require_initialized(ctx) / CONFIG_FILENAME
    verbosity = ctx.obj.get('verbosity', 1)

    try:
        config_data = yaml.safe_load(config_path.read_text()) or {}
    except (OSError, yaml.YAMLError) as e:
        fail(f"Failed to read config: {e}", verbosity)

    current = config_data
    for k in key.split('.'):
        if not isinstance(current, dict) or k not in current:
            echo_quiet(click.style(f"Key '{key}' not found", fg="yellow"), verbosity)
            sys.exit(1)
        current = current[k]

    echo_quiet(str(current), verbosity)


@config_group.command('show')
@click.option('--effective', is_flag=True,
              help='Show the merged configuration (defaults, file and environment)')
@click.pass_context
def config_show(ctx, effective: bool) -> None:
    """Display the configuration."""
    import yaml

    base_path = require_initialized(ctx)
    verbosity = ctx.obj.get('verbosity', 1)

    if effective:
        try:
            config = load_config(base_path)
        except ConfigurationError as e:
            fail(f"Invalid configuration: {e}", verbosity)
        echo_normal(click.style("Effective configuration:", fg="cyan", bold=True), verbosity)
        echo_quiet(yaml.dump(_mask_secrets(config.to_dict()), default_flow_style=False), verbosity)
        return

    echo_normal(click.style("Current configuration:", fg="cyan", bold=True), verbosity)
    echo_quiet((base_path / CONFIG_FILENAME).read_text(), verbosity)
