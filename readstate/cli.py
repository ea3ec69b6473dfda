"""readstate CLI: replay event scripts and inspect the message cache."""

import logging
from datetime import datetime
from pathlib import Path

import typer

from readstate import config
from readstate.errors import ReadStateError
from readstate.replay import load_script, parse_time, replay
from readstate.stores.cache import MessageCache

from .output import echo_if_output, format_entity_row, format_local_time, output_json, set_flags

app = typer.Typer(invoke_without_command=True, no_args_is_help=False)


@app.callback()
def main_command(
    ctx: typer.Context,
    json_output: bool = typer.Option(False, "--json", "-j", help="Output in JSON format."),
    quiet_output: bool = typer.Option(False, "--quiet", "-q", help="Suppress non-essential output."),
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Log engine transitions."),
):
    """Read state engine for chat conversations and rooms."""
    set_flags(ctx, json_output, quiet_output)
    if verbose:
        logging.basicConfig(level=logging.DEBUG, format="[readstate] %(name)s: %(message)s")
    if ctx.invoked_subcommand is None:
        typer.echo(ctx.get_help())


def _fail(ctx: typer.Context, exc: Exception) -> None:
    output_json({"status": "error", "message": str(exc)}, ctx) or typer.echo(f"❌ {exc}", err=True)
    raise typer.Exit(code=1) from exc


@app.command("replay")
def replay_command(
    ctx: typer.Context,
    script: Path = typer.Argument(..., exists=True, dir_okay=False, help="YAML event script"),
    use_cache: bool = typer.Option(False, "--cache", help="Persist into the message cache."),
    max_messages: int = typer.Option(
        None, "--max-messages", min=1, help="Override timeline bound."
    ),
):
    """Replay an event script and print the resulting read state."""
    cache = None
    try:
        if use_cache:
            cache = MessageCache(config.cache_db_path())
        result = replay(load_script(script), cache=cache, max_messages=max_messages)
    except (ReadStateError, OSError) as exc:
        _fail(ctx, exc)
    finally:
        if cache is not None:
            cache.close()

    data = result.to_dict()
    if output_json(data, ctx):
        return
    echo_if_output(f"BADGE: {data['badge']}", ctx)
    for row in data["conversations"] + data["rooms"]:
        echo_if_output(f"  {format_entity_row(row)}", ctx)
    for note in data["notifications"]:
        echo_if_output(f"  🔔 {note['entity']}: {note['message']}", ctx)


@app.command("history")
def history_command(
    ctx: typer.Context,
    entity_id: str = typer.Argument(..., help="Conversation or room id"),
    before: str = typer.Option(None, "--before", help="Only messages older than this ISO time"),
    after: str = typer.Option(None, "--after", help="Only messages newer than this ISO time"),
    limit: int = typer.Option(50, "--limit", "-n", min=1),
):
    """Show cached messages for an entity."""
    try:
        before_ts: datetime | None = parse_time(before) if before else None
        after_ts: datetime | None = parse_time(after) if after else None
        cache = MessageCache(config.cache_db_path())
        try:
            messages = cache.query(entity_id, before=before_ts, after=after_ts, limit=limit)
            last_seen, last_read_at = cache.load_read_position(entity_id)
        finally:
            cache.close()
    except ReadStateError as exc:
        _fail(ctx, exc)

    if output_json(
        {
            "entity_id": entity_id,
            "last_seen_message_id": last_seen,
            "last_read_at": last_read_at.isoformat() if last_read_at else None,
            "messages": [
                {"id": m.id, "sender": m.sender, "at": m.timestamp.isoformat(), "body": m.body}
                for m in messages
            ],
        },
        ctx,
    ):
        return
    if not messages:
        echo_if_output(f"No cached messages for {entity_id}", ctx)
        return
    for m in messages:
        marker = " ◀ seen" if m.id == last_seen else ""
        echo_if_output(f"[{format_local_time(m.timestamp)}] {m.sender}: {m.body}{marker}", ctx)


@app.command("init-config")
def init_config_command(ctx: typer.Context):
    """Write the default config.yaml into the readstate home."""
    path = config.init_config()
    output_json({"config": str(path)}, ctx) or echo_if_output(f"Config: {path}", ctx)


def main() -> None:
    app()
