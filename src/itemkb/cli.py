#!/usr/bin/env python3
"""
ikb: CLI for the itemkb item store

Usage:
    ikb add -t issues --title "..."    # Create an item (enriched automatically)
    ikb get 12                          # Show an item
    ikb search "query"                  # Substring search
    ikb related 12 --strategy hybrid    # Ranked related items
    ikb serve                           # Run the MCP server
"""

from __future__ import annotations

import asyncio
import difflib
import json
import os
import sys
from collections.abc import Sequence
from typing import Any, NoReturn

import click
from click.exceptions import ClickException, UsageError
from pydantic import BaseModel

from . import __version__ as ITEMKB_VERSION
from .config import ConfigurationError, PRIORITIES
from .errors import ErrorCode, KBError, format_error_json


def run_async(coro):
    """Run async function synchronously."""
    return asyncio.run(coro)


def _to_jsonable(data: Any) -> Any:
    if isinstance(data, BaseModel):
        return data.model_dump(mode="json")
    if isinstance(data, list):
        return [_to_jsonable(entry) for entry in data]
    return data


def output(data, as_json: bool = False):
    """Output data as JSON or formatted text."""
    if as_json:
        click.echo(json.dumps(_to_jsonable(data), indent=2, default=str))
    else:
        click.echo(data)


def format_table(rows: list[dict], columns: list[str], max_widths: dict | None = None) -> str:
    """Format rows as a simple left-aligned table."""
    if not rows:
        return ""
    max_widths = max_widths or {}

    def cell(row: dict, col: str) -> str:
        val = str(row.get(col, ""))
        limit = max_widths.get(col, 50)
        return val[: limit - 3] + "..." if len(val) > limit else val

    widths = {col: max([len(col)] + [len(cell(row, col)) for row in rows]) for col in columns}
    lines = [
        "  ".join(col.upper().ljust(widths[col]) for col in columns),
        "  ".join("-" * widths[col] for col in columns),
    ]
    lines.extend("  ".join(cell(row, col).ljust(widths[col]) for col in columns) for row in rows)
    return "\n".join(lines)


def _split_csv(value: str | None) -> list[str] | None:
    if value is None:
        return None
    return [part.strip() for part in value.split(",") if part.strip()]


def _parse_ids(ctx: click.Context, param: click.Parameter, value: str | None) -> list[int] | None:
    parts = _split_csv(value)
    if parts is None:
        return None
    try:
        return [int(part) for part in parts]
    except ValueError:
        raise click.BadParameter(f"expected comma-separated item ids, got {value!r}") from None


def _parse_weights(ctx: click.Context, param: click.Parameter, value: str | None) -> dict[str, float] | None:
    """Accept ``keywords=1,concepts=1,embedding=2`` or a JSON object."""
    if value is None:
        return None
    if value.strip().startswith("{"):
        try:
            data = json.loads(value)
        except json.JSONDecodeError as e:
            raise click.BadParameter(f"invalid JSON: {e}") from None
        pairs = data.items() if isinstance(data, dict) else []
    else:
        pairs = []
        for part in _split_csv(value) or []:
            name, sep, weight = part.partition("=")
            if not sep:
                raise click.BadParameter(f"expected name=weight, got {part!r}")
            pairs.append((name.strip(), weight))
    try:
        return {str(name): float(weight) for name, weight in pairs}
    except (TypeError, ValueError):
        raise click.BadParameter(f"weights must be numbers, got {value!r}") from None


# ─────────────────────────────────────────────────────────────────────────────
# JSON Error Handling
# ─────────────────────────────────────────────────────────────────────────────


def get_error_code_for_exception(exc: Exception) -> str:
    """Map Click exceptions to error codes."""
    if isinstance(exc, (click.BadParameter, click.MissingParameter, click.NoSuchOption)):
        return ErrorCode.INVALID_ARGUMENT.value
    if isinstance(exc, UsageError):
        return "USAGE_ERROR"
    return "CLI_ERROR"


class JsonErrorGroup(click.Group):
    """Click group that reports usage errors as JSON under --json-errors.

    Also suggests the closest command name for typos.
    """

    def resolve_command(self, ctx, args):
        try:
            return super().resolve_command(ctx, args)
        except UsageError as e:
            cmd_name = args[0] if args else ""
            if cmd_name and "No such command" in str(e):
                matches = difflib.get_close_matches(cmd_name, self.list_commands(ctx), n=1, cutoff=0.6)
                if matches:
                    raise UsageError(f"No such command '{cmd_name}'. Did you mean '{matches[0]}'?") from e
            raise

    def main(
        self,
        args: Sequence[str] | None = None,
        prog_name: str | None = None,
        complete_var: str | None = None,
        standalone_mode: bool = True,
        **extra: Any,
    ) -> Any:
        argv = list(args) if args is not None else list(sys.argv[1:])
        if "--json-errors" not in argv:
            return super().main(argv, prog_name, complete_var, standalone_mode, **extra)

        # Treat --json-errors as global wherever it appears
        argv = ["--json-errors"] + [a for a in argv if a != "--json-errors"]
        try:
            return super().main(argv, prog_name, complete_var, standalone_mode=False, **extra)
        except ClickException as e:
            click.echo(format_error_json(get_error_code_for_exception(e), e.format_message()), err=True)
            raise SystemExit(1)


def _handle_error(ctx: click.Context, error: Exception, exit_code: int = 1) -> NoReturn:
    """Report an error as text, or as JSON when --json-errors is set."""
    json_errors = ctx.obj.get("json_errors", False) if ctx.obj else False

    if isinstance(error, KBError):
        if json_errors:
            click.echo(error.to_json(), err=True)
        else:
            click.echo(f"Error: {error.message}", err=True)
            suggestion = error.details.get("suggestion")
            if suggestion:
                click.echo(f"Hint: {suggestion}", err=True)
    else:
        code = ErrorCode.CONFIGURATION_ERROR if isinstance(error, ConfigurationError) else ErrorCode.INTERNAL_ERROR
        if json_errors:
            click.echo(format_error_json(code, str(error)), err=True)
        else:
            click.echo(f"Error: {error}", err=True)

    sys.exit(exit_code)


def _run(ctx: click.Context, coro) -> Any:
    """Run a core coroutine, reporting expected failures through _handle_error."""
    try:
        return run_async(coro)
    except (KBError, ConfigurationError) as e:
        _handle_error(ctx, e)


def _print_item(item) -> None:
    click.echo(f"#{item.id} [{item.type}] {item.title}")
    click.echo(f"Status: {item.status}  Priority: {item.priority}")
    if item.category:
        click.echo(f"Category: {item.category}")
    if item.tags:
        click.echo(f"Tags: {', '.join(item.tags)}")
    if item.description:
        click.echo(f"\n{item.description}")
    if item.content:
        click.echo(f"\n{item.content}")
    if item.ai_summary:
        click.echo(f"\nSummary: {item.ai_summary}")


def _print_items(items, empty: str) -> None:
    if not items:
        click.echo(empty)
        return
    rows = [{"id": i.id, "type": i.type, "status": i.status, "title": i.title} for i in items]
    click.echo(format_table(rows, ["id", "type", "status", "title"], {"title": 60}))


def _print_ranked(details, empty: str) -> None:
    if not details:
        click.echo(empty)
        return
    for d in details:
        score = f" ({d.search_score:.2f})" if d.search_score is not None else ""
        click.echo(f"  #{d.id} [{d.type}] {d.title}{score}")
        if d.search_reason:
            click.echo(f"    {d.search_reason}")


# ─────────────────────────────────────────────────────────────────────────────
# Main CLI Group
# ─────────────────────────────────────────────────────────────────────────────


@click.group(cls=JsonErrorGroup)
@click.version_option(version=ITEMKB_VERSION, prog_name="ikb")
@click.option("--json-errors", "json_errors", is_flag=True, help="Output errors as JSON (for programmatic use)")
@click.option(
    "--quiet",
    "-q",
    is_flag=True,
    envvar="ITEMKB_QUIET",
    help="Suppress warnings, show only errors and essential output",
)
@click.pass_context
def cli(ctx: click.Context, json_errors: bool, quiet: bool):
    """ikb: typed knowledge items with keyword/concept enrichment.

    \b
    Quick start:
      ikb add -t issues --title "Login fails" --content "..."
      ikb list --type issues
      ikb related 1 --strategy hybrid
      ikb suggest 1

    Set ITEMKB_DB_PATH (or db_path in .kbconfig) to choose the database.
    """
    from ._logging import configure_logging

    ctx.ensure_object(dict)
    ctx.obj["json_errors"] = json_errors
    ctx.obj["quiet"] = quiet
    configure_logging(level=os.environ.get("ITEMKB_LOG_LEVEL", "WARNING"), quiet=quiet)


@cli.command()
def serve():
    """Run the MCP server on stdio."""
    from .server import mcp

    mcp.run()


# ─────────────────────────────────────────────────────────────────────────────
# Item Commands
# ─────────────────────────────────────────────────────────────────────────────


@cli.command()
@click.option("--type", "-t", "item_type", required=True, help="Item type (issues, plans, docs, ...)")
@click.option("--title", required=True, help="Item title")
@click.option("--description", "-d", default="", help="Short description")
@click.option("--content", "-c", default="", help="Body text")
@click.option("--status", "-s", help="Status (default: Open)")
@click.option("--priority", "-p", type=click.Choice(PRIORITIES, case_sensitive=False), help="Priority")
@click.option("--category", help="Free-form category")
@click.option("--tags", help="Comma-separated tags")
@click.option("--related", callback=_parse_ids, help="Comma-separated ids to link to")
@click.option("--json", "as_json", is_flag=True, help="Output as JSON")
@click.pass_context
def add(
    ctx: click.Context,
    item_type: str,
    title: str,
    description: str,
    content: str,
    status: str | None,
    priority: str | None,
    category: str | None,
    tags: str | None,
    related: list[int] | None,
    as_json: bool,
):
    """Create an item.

    \b
    Examples:
      ikb add -t issues --title "Search is slow" --tags perf,search
      ikb add -t docs --title "GraphRAG notes" -c "graph retrieval ..." --related 3,7
    """
    from .core import create_item

    item = _run(
        ctx,
        create_item(
            type=item_type,
            title=title,
            description=description,
            content=content,
            status=status,
            priority=priority,
            category=category,
            tags=_split_csv(tags),
            related=related,
        ),
    )
    if as_json:
        output(item, as_json=True)
    else:
        click.echo(f"Created #{item.id}: {item.title}")


@cli.command()
@click.argument("item_id", type=int)
@click.option("--json", "as_json", is_flag=True, help="Output as JSON")
@click.pass_context
def get(ctx: click.Context, item_id: int, as_json: bool):
    """Show an item."""
    from .core import get_item

    item = _run(ctx, get_item(item_id))
    if as_json:
        output(item, as_json=True)
    else:
        _print_item(item)


@cli.command()
@click.argument("item_id", type=int)
@click.option("--type", "-t", "item_type", help="New type")
@click.option("--title", help="New title")
@click.option("--description", "-d", help="New description")
@click.option("--content", "-c", help="New body text")
@click.option("--status", "-s", help="New status")
@click.option("--priority", "-p", type=click.Choice(PRIORITIES, case_sensitive=False), help="New priority")
@click.option("--category", help="New category")
@click.option("--tags", help="Replace tags (comma-separated)")
@click.option("--related", callback=_parse_ids, help="Replace relations (comma-separated ids)")
@click.option("--json", "as_json", is_flag=True, help="Output as JSON")
@click.pass_context
def update(ctx: click.Context, item_id: int, item_type, title, description, content, status, priority,
           category, tags, related, as_json: bool):
    """Update an item. Only the options given are changed."""
    from .core import update_item

    fields = {
        name: value
        for name, value in (
            ("type", item_type),
            ("title", title),
            ("description", description),
            ("content", content),
            ("status", status),
            ("priority", priority),
            ("category", category),
            ("tags", _split_csv(tags)),
            ("related", related),
        )
        if value is not None
    }
    if not fields:
        raise click.UsageError("Nothing to update. Pass at least one option.")

    item = _run(ctx, update_item(item_id, **fields))
    if as_json:
        output(item, as_json=True)
    else:
        click.echo(f"Updated #{item.id}: {item.title}")


@cli.command()
@click.argument("item_id", type=int)
@click.option("--json", "as_json", is_flag=True, help="Output as JSON")
@click.pass_context
def delete(ctx: click.Context, item_id: int, as_json: bool):
    """Delete an item."""
    from .core import delete_item

    result = _run(ctx, delete_item(item_id))
    if as_json:
        output(result, as_json=True)
    else:
        click.echo(f"Deleted #{item_id}")


@cli.command("list")
@click.option("--type", "-t", "item_type", help="Filter by type")
@click.option("--status", "-s", "statuses", multiple=True, help="Filter by status (repeatable)")
@click.option("--priority", "-p", "priorities", multiple=True, help="Filter by priority (repeatable)")
@click.option("--tags", help="Filter by any of these tags (comma-separated)")
@click.option("--limit", "-n", default=20, help="Max results")
@click.option("--offset", default=0, help="Skip this many results")
@click.option("--sort-by", type=click.Choice(["created", "updated", "priority"]), default="updated")
@click.option("--order", type=click.Choice(["asc", "desc"]), default="desc")
@click.option("--json", "as_json", is_flag=True, help="Output as JSON")
@click.pass_context
def list_cmd(ctx: click.Context, item_type, statuses, priorities, tags, limit, offset, sort_by, order, as_json):
    """List items.

    \b
    Examples:
      ikb list --type issues --status Open --status "In Progress"
      ikb list --tags perf --limit 5
    """
    from .core import list_items

    items = _run(
        ctx,
        list_items(
            type=item_type,
            statuses=list(statuses) or None,
            priorities=list(priorities) or None,
            tags=_split_csv(tags),
            limit=limit,
            offset=offset,
            sort_by=sort_by,
            sort_order=order,
        ),
    )
    if as_json:
        output(items, as_json=True)
    else:
        _print_items(items, "No items found.")


@cli.command()
@click.argument("query")
@click.option("--type", "-t", "types", multiple=True, help="Restrict to type (repeatable)")
@click.option("--limit", "-n", default=20, help="Max results")
@click.option("--json", "as_json", is_flag=True, help="Output as JSON")
@click.pass_context
def search(ctx: click.Context, query: str, types: tuple[str, ...], limit: int, as_json: bool):
    """Search items by text."""
    from .core import search_items

    items = _run(ctx, search_items(query, types=list(types) or None, limit=limit))
    if as_json:
        output(items, as_json=True)
    else:
        _print_items(items, "No results found.")


# ─────────────────────────────────────────────────────────────────────────────
# Relation Commands
# ─────────────────────────────────────────────────────────────────────────────


@cli.command()
@click.argument("item_id", type=int)
@click.argument("target_ids", type=int, nargs=-1, required=True)
@click.option("--json", "as_json", is_flag=True, help="Output as JSON")
@click.pass_context
def relate(ctx: click.Context, item_id: int, target_ids: tuple[int, ...], as_json: bool):
    """Link an item to one or more items (both directions)."""
    from .core import add_relations

    related = _run(ctx, add_relations(item_id, list(target_ids)))
    if as_json:
        output({"id": item_id, "related": related}, as_json=True)
    else:
        click.echo(f"#{item_id} is now related to: {', '.join(f'#{r}' for r in related)}")


@cli.command()
@click.argument("item_id", type=int)
@click.option("--depth", default=1, type=click.IntRange(1, 3), help="Hops to follow for manual relations")
@click.option("--types", help="Only show these types (comma-separated)")
@click.option(
    "--strategy",
    type=click.Choice(["keywords", "concepts", "embedding", "hybrid", "manual"]),
    help="Ranking strategy (default: follow manual relations)",
)
@click.option("--weights", callback=_parse_weights, help="Hybrid weights, e.g. keywords=1,concepts=1,embedding=2")
@click.option("--min-keyword-weight", type=float, help="Keyword threshold")
@click.option("--min-confidence", type=float, help="Concept threshold")
@click.option("--min-similarity", type=float, help="Embedding threshold")
@click.option("--json", "as_json", is_flag=True, help="Output as JSON")
@click.pass_context
def related(ctx: click.Context, item_id, depth, types, strategy, weights, min_keyword_weight, min_confidence,
            min_similarity, as_json):
    """Show items related to an item.

    \b
    Examples:
      ikb related 4                       # manual links
      ikb related 4 --depth 2
      ikb related 4 --strategy keywords
      ikb related 4 --weights keywords=1,concepts=1,embedding=2
    """
    from .core import get_related_items

    thresholds = {
        name: value
        for name, value in (
            ("min_keyword_weight", min_keyword_weight),
            ("min_confidence", min_confidence),
            ("min_similarity", min_similarity),
        )
        if value is not None
    }
    result = _run(
        ctx,
        get_related_items(
            item_id,
            depth=depth,
            types=_split_csv(types),
            strategy=strategy,
            weights=weights,
            thresholds=thresholds or None,
        ),
    )
    if as_json:
        output(result, as_json=True)
        return

    if result.strategy == "manual" and not strategy:
        if not result.items:
            click.echo("No related items.")
            return
        for d in result.items:
            click.echo(f"  {'  ' * (d.distance - 1)}#{d.id} [{d.type}] {d.title}")
    else:
        _print_ranked(result.items, "No related items.")


@cli.command()
@click.argument("item_id", type=int)
@click.option("--json", "as_json", is_flag=True, help="Output as JSON")
@click.pass_context
def suggest(ctx: click.Context, item_id: int, as_json: bool):
    """Suggest items to link to, with reasons."""
    from .core import suggest_relations

    details = _run(ctx, suggest_relations(item_id))
    if as_json:
        output(details, as_json=True)
    else:
        _print_ranked(details, "No suggestions.")


# ─────────────────────────────────────────────────────────────────────────────
# Enrichment Commands
# ─────────────────────────────────────────────────────────────────────────────


@cli.command()
@click.argument("item_id", type=int)
@click.option("--json", "as_json", is_flag=True, help="Output as JSON")
@click.pass_context
def keywords(ctx: click.Context, item_id: int, as_json: bool):
    """Show the extracted keywords and concepts of an item."""
    from .core import get_item_keywords

    result = _run(ctx, get_item_keywords(item_id))
    if as_json:
        output(result, as_json=True)
        return

    if not result.keywords and not result.concepts:
        click.echo(f"No keywords yet. Run: ikb enrich {item_id}")
        return
    click.echo("Keywords:")
    for k in result.keywords:
        click.echo(f"  {k.word} ({k.weight:.2f})")
    if result.concepts:
        click.echo("Concepts:")
        for c in result.concepts:
            click.echo(f"  {c.name} ({c.confidence:.2f})")


@cli.command()
@click.argument("item_id", type=int, required=False)
@click.option("--all", "enrich_everything", is_flag=True, help="Re-enrich every item")
@click.option("--type", "-t", "item_type", help="With --all, only this type")
@click.option("--json", "as_json", is_flag=True, help="Output as JSON")
@click.pass_context
def enrich(ctx: click.Context, item_id: int | None, enrich_everything: bool, item_type: str | None, as_json: bool):
    """Re-run keyword/concept extraction for one item or all items."""
    from .core import enrich_all, enrich_item

    if (item_id is None) == (not enrich_everything):
        raise click.UsageError("Pass an ITEM_ID or --all (not both).")

    if enrich_everything:
        ids = _run(ctx, enrich_all(item_type=item_type))
        if as_json:
            output({"enriched": ids}, as_json=True)
        else:
            click.echo(f"Enriched {len(ids)} item(s)")
        return

    item = _run(ctx, enrich_item(item_id))
    if as_json:
        output(item, as_json=True)
    else:
        click.echo(f"Enriched #{item.id}: {item.search_index or '(no keywords)'}")


@cli.command()
@click.option("--json", "as_json", is_flag=True, help="Output as JSON")
@click.pass_context
def cleanup(ctx: click.Context, as_json: bool):
    """Remove keywords and concepts no item uses."""
    from .core import cleanup_vocabulary

    result = _run(ctx, cleanup_vocabulary())
    if as_json:
        output(result, as_json=True)
    else:
        click.echo(f"Removed {result.keywords_removed} keyword(s) and {result.concepts_removed} concept(s)")


def main():
    """Entry point for the ikb script."""
    cli()


if __name__ == "__main__":
    main()
