"""Setup and maintenance commands for the Cortex CLI."""
import json

import click

from ..config import CONFIG_FILENAME
from ..storage.palace import MemoryPalace
from .common import (
    echo_normal,
    echo_quiet,
    echo_verbose,
    fail,
    get_base_path,
    open_cortex,
)

CONFIG_TEMPLATE = """# Cortex Configuration File

hash_prefix: clude

database:
  enable_wal: true
  # path: /custom/path/palace.sqlite

embedding:
  provider: null  # voyage | openai | venice | ollama
  # model: voyage-3-lite
  # api_key: set VOYAGE_API_KEY / OPENAI_API_KEY instead

llm:
  provider: null  # anthropic | openai | ollama
  # model: claude-3-5-haiku-latest
  # api_key: set ANTHROPIC_API_KEY / OPENAI_API_KEY instead

retrieval:
  default_limit: 5
  weight_vector: 3.0

decay:
  min_decay: 0.05
  cutoff_hours: 24

dream:
  interval_hours: 6
  importance_threshold: 5.0

logging:
  level: WARNING
"""

STATUS_COLORS = {'completed': 'green', 'skipped': 'yellow', 'failed': 'red'}


@click.group()
def maintenance_group():
    """Maintenance commands."""
    pass


@maintenance_group.command("init")
@click.pass_context
def init(ctx) -> None:
    """Initialize a Cortex data directory.

    Creates the directory, config.yaml with default settings and the
    SQLite memory palace.
    """
    base_path = get_base_path(ctx.obj.get('data_dir'))
    verbosity = ctx.obj.get('verbosity', 1)

    echo_normal(click.style("Initializing Cortex...", fg="cyan", bold=True), verbosity)

    base_path.mkdir(parents=True, exist_ok=True)
    echo_normal(f" ✓ Created directory: {base_path}", verbosity)

    config_path = base_path / CONFIG_FILENAME
    if not config_path.exists():
        config_path.write_text(CONFIG_TEMPLATE)
        echo_normal(f" ✓ Created config: {config_path}", verbosity)
    else:
        echo_normal(f" ⚠ Config exists: {config_path}", verbosity)

    db_path = base_path / "palace.sqlite"
    try:
        MemoryPalace(db_path).close()
    except Exception as e:
        fail(f"Failed to initialize database: {e}", verbosity)
    echo_normal(f" ✓ Initialized database: {db_path}", verbosity)
    echo_quiet(click.style("✓ Cortex initialized", fg="green", bold=True), verbosity)


@maintenance_group.command("stats")
@click.option('--json-output', is_flag=True, help='Output as JSON')
@click.pass_context
def stats(ctx, json_output: bool) -> None:
    """Show memory statistics."""
    verbosity = ctx.obj.get('verbosity', 1)
    with open_cortex(ctx) as cortex:
        memory_stats = cortex.get_stats()
        graph_stats = cortex.get_graph_stats()

    if json_output:
        click.echo(json.dumps({"memories": memory_stats.to_dict(), "graph": graph_stats},
                              indent=2, default=str))
        return

    echo_normal(click.style("Memory Statistics", fg="cyan", bold=True), verbosity)
    echo_normal("=" * 60, verbosity)
    echo_quiet(f"  Total: {click.style(str(memory_stats.total), fg='cyan')}", verbosity)
    for memory_type, count in sorted(memory_stats.by_type.items()):
        echo_normal(f"    {memory_type}: {count}", verbosity)
    echo_normal(f"  Avg importance: {memory_stats.avg_importance:.2f}", verbosity)
    echo_normal(f"  Avg decay: {memory_stats.avg_decay:.2f}", verbosity)
    echo_normal(f"  Embedded: {memory_stats.embedded_count}", verbosity)
    echo_normal(f"  Unique users: {memory_stats.unique_users}", verbosity)
    echo_normal(f"  Dream sessions: {memory_stats.total_dream_sessions}", verbosity)
    if memory_stats.top_tags:
        tags = ", ".join(f"{t['tag']}({t['count']})" for t in memory_stats.top_tags)
        echo_normal(f"  Top tags: {tags}", verbosity)
    if graph_stats:
        echo_verbose(f"  Entities: {graph_stats.get('entity_count', 0)}  "
                     f"Relations: {graph_stats.get('relation_count', 0)}  "
                     f"Links: {graph_stats.get('link_count', 0)}", verbosity)


@maintenance_group.command("decay")
@click.pass_context
def decay(ctx) -> None:
    """Run one decay pass over memories not accessed recently."""
    verbosity = ctx.obj.get('verbosity', 1)
    with open_cortex(ctx) as cortex:
        count = cortex.decay()
    echo_quiet(click.style(f"✓ Decayed {count} memories", fg="green"), verbosity)


@maintenance_group.command("dream")
@click.pass_context
def dream(ctx) -> None:
    """Run one dream cycle (consolidation, reflection, emergence, compaction)."""
    verbosity = ctx.obj.get('verbosity', 1)
    with open_cortex(ctx) as cortex:
        if cortex.llm is None:
            echo_normal(click.style("No LLM configured: generating phases will be skipped",
                                    fg="yellow"), verbosity)
        results = cortex.run_dream_cycle_once()

    for result in results:
        color = STATUS_COLORS.get(result.status, 'white')
        line = f"  {result.phase}: {click.style(result.status, fg=color)}"
        if result.new_memory_ids:
            line += f" (new memories: {', '.join(map(str, result.new_memory_ids))})"
        echo_quiet(line, verbosity)
        if result.error:
            echo_verbose(f"    {result.error}", verbosity)


@maintenance_group.command("graph")
@click.option('--memories', 'include_memories', is_flag=True,
              help='Include memory nodes and mention edges')
@click.option('--links', 'include_links', is_flag=True,
              help='Include memory-to-memory links (with --memories)')
@click.option('--min-mentions', default=1, help='Minimum entity mention count')
@click.option('--limit', default=100, help='Maximum number of entities')
@click.pass_context
def graph(ctx, include_memories: bool, include_links: bool, min_mentions: int, limit: int) -> None:
    """Print the knowledge graph as JSON."""
    with open_cortex(ctx) as cortex:
        knowledge_graph = cortex.get_knowledge_graph(
            include_memories=include_memories,
            include_links=include_links,
            min_mentions=min_mentions,
            limit=limit,
        )
    click.echo(json.dumps(knowledge_graph, indent=2, default=str))
