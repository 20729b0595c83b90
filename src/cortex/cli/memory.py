"""Memory commands for the Cortex CLI: store, recall, hydrate."""
import json
from typing import Optional, Tuple

import click

from ..formatting import time_ago
from ..options import RecallOptions, StoreMemoryOptions
from ..storage.models import MEMORY_TYPES
from .common import echo_normal, echo_quiet, echo_verbose, fail, open_cortex

TYPE_COLORS = {
    'episodic': 'green',
    'semantic': 'blue',
    'procedural': 'magenta',
    'self_model': 'yellow',
}


@click.group()
def memory_group():
    """Memory commands."""
    pass


@memory_group.command("store")
@click.argument('summary')
@click.option('--content', default=None, help='Full content (defaults to the summary)')
@click.option('--type', 'memory_type', default='episodic',
              type=click.Choice(MEMORY_TYPES), help='Type of memory to store')
@click.option('--tag', '-t', 'tags', multiple=True, help='Tag (repeatable)')
@click.option('--importance', '-i', type=float, default=None,
              help='Importance 0.0-1.0 (scored from the summary when omitted)')
@click.option('--valence', type=float, default=0.0, help='Emotional valence -1.0..1.0')
@click.option('--source', default='cli', help='Source label')
@click.option('--user', 'related_user', default=None, help='Related user handle')
@click.option('--evidence', 'evidence_ids', type=int, multiple=True,
              help='Id of a supporting memory (repeatable)')
@click.pass_context
def store(ctx, summary: str, content: Optional[str], memory_type: str, tags: Tuple[str, ...],
          importance: Optional[float], valence: float, source: str,
          related_user: Optional[str], evidence_ids: Tuple[int, ...]) -> None:
    """Store a memory.

    Examples:
        cortex store "SOL pumped 12% this morning" --tag price --importance 0.8
        cortex store "Holders panic on red days" --type semantic --evidence 3 --evidence 7
    """
    verbosity = ctx.obj.get('verbosity', 1)
    with open_cortex(ctx) as cortex:
        if importance is None:
            importance = cortex.score_importance(summary)
            echo_verbose(f"Scored importance: {importance:.2f}", verbosity)

        memory_id = cortex.store(StoreMemoryOptions(
            summary=summary,
            content=content,
            memory_type=memory_type,
            tags=list(tags),
            importance=importance,
            emotional_valence=valence,
            source=source,
            related_user=related_user,
            evidence_ids=list(evidence_ids),
        ))
        if memory_id is None:
            fail("Failed to store memory", verbosity)

        memory = cortex.hydrate([memory_id])[0]
        echo_normal(click.style("✓ Memory stored", fg="green", bold=True), verbosity)
        echo_quiet(f"  ID: {click.style(str(memory.id), fg='cyan')} ({memory.hash_id})", verbosity)
        echo_normal(f"  Type: {click.style(memory.memory_type, fg='cyan')}", verbosity)
        if memory.concepts:
            echo_normal(f"  Concepts: {', '.join(memory.concepts)}", verbosity)


@memory_group.command("recall")
@click.argument('query', required=False)
@click.option('--limit', '-l', default=5, help='Maximum number of results')
@click.option('--tag', '-t', 'tags', multiple=True, help='Require one of these tags')
@click.option('--type', 'memory_types', multiple=True, type=click.Choice(MEMORY_TYPES),
              help='Restrict to memory type (repeatable)')
@click.option('--user', 'related_user', default=None, help='Related user handle')
@click.option('--summaries', is_flag=True, help='Summaries only, without tracking access')
@click.option('--context', 'as_context', is_flag=True, help='Render as a prompt context block')
@click.option('--json-output', is_flag=True, help='Output as JSON')
@click.pass_context
def recall(ctx, query: Optional[str], limit: int, tags, memory_types, related_user,
           summaries: bool, as_context: bool, json_output: bool) -> None:
    """Recall memories relevant to a query.

    Examples:
        cortex recall "SOL price"
        cortex recall --tag price --limit 10 --json-output
        cortex recall "whales" --summaries
    """
    verbosity = ctx.obj.get('verbosity', 1)
    opts = RecallOptions(
        query=query,
        tags=list(tags) or None,
        memory_types=list(memory_types) or None,
        related_user=related_user,
        limit=limit,
    )

    with open_cortex(ctx) as cortex:
        if summaries:
            results = cortex.recall_summaries(opts)
        else:
            results = cortex.recall(opts)

        if json_output:
            click.echo(json.dumps([r.to_dict() for r in results], indent=2, default=str))
            return
        if as_context and not summaries:
            click.echo(cortex.format_context(results))
            return

        echo_normal(click.style(f"Recall Results ({len(results)} found)", fg="cyan", bold=True), verbosity)
        echo_normal("=" * 60, verbosity)
        for i, mem in enumerate(results, 1):
            color = TYPE_COLORS.get(mem.memory_type, 'white')
            score = f"{mem.score:.3f}" if mem.score is not None else "-"
            echo_quiet(
                f"\n{i}. [{click.style(mem.memory_type.upper(), fg=color)}] "
                f"#{mem.id} score={score} ({time_ago(mem.created_at)})",
                verbosity,
            )
            echo_quiet(f"   {mem.summary}", verbosity)

        if not results:
            echo_normal(click.style("No memories found. Try a different query.", fg="yellow"), verbosity)


@memory_group.command("hydrate")
@click.argument('memory_ids', type=int, nargs=-1, required=True)
@click.option('--json-output', is_flag=True, help='Output as JSON')
@click.pass_context
def hydrate(ctx, memory_ids, json_output: bool) -> None:
    """Fetch full memories by id.

    Examples:
        cortex hydrate 3 7 12
    """
    verbosity = ctx.obj.get('verbosity', 1)
    with open_cortex(ctx) as cortex:
        memories = cortex.hydrate(list(memory_ids))

    if json_output:
        click.echo(json.dumps([m.to_dict() for m in memories], indent=2, default=str))
        return

    for mem in memories:
        color = TYPE_COLORS.get(mem.memory_type, 'white')
        echo_quiet(click.style(f"#{mem.id} {mem.hash_id}", bold=True), verbosity)
        echo_normal(f"  Type: {click.style(mem.memory_type, fg=color)}", verbosity)
        echo_normal(f"  Importance: {mem.importance:.2f}  Decay: {mem.decay_factor:.2f}  "
                    f"Accessed: {mem.access_count}x", verbosity)
        if mem.tags:
            echo_normal(f"  Tags: {', '.join(mem.tags)}", verbosity)
        echo_quiet(f"  {mem.content}", verbosity)

    missing = set(memory_ids) - {m.id for m in memories}
    if missing:
        echo_normal(click.style(f"Not found: {', '.join(map(str, sorted(missing)))}", fg="yellow"),
                    verbosity)
