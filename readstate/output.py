"""CLI output formatting and helpers."""

import json
from datetime import datetime

import typer


def set_flags(ctx: typer.Context, json_output: bool, quiet_output: bool) -> None:
    if ctx.obj is None:
        ctx.obj = {}
    ctx.obj["json_output"] = json_output
    ctx.obj["quiet_output"] = quiet_output


def output_json(data, ctx: typer.Context) -> bool:
    """Output data as JSON if requested. Returns True if output, False otherwise."""
    if ctx.obj and ctx.obj.get("json_output"):
        typer.echo(json.dumps(data, indent=2))
        return True
    return False


def should_output(ctx: typer.Context) -> bool:
    """Check if output should be printed (not quiet mode)."""
    return not (ctx.obj and ctx.obj.get("quiet_output"))


def echo_if_output(msg: str, ctx: typer.Context) -> None:
    """Echo message only if not in quiet mode."""
    if should_output(ctx):
        typer.echo(msg)


def format_local_time(timestamp: datetime | str | None) -> str:
    if timestamp is None:
        return "never"
    try:
        dt = timestamp if isinstance(timestamp, datetime) else datetime.fromisoformat(timestamp)
        return dt.astimezone().strftime("%Y-%m-%d %H:%M:%S")
    except (ValueError, TypeError):
        return str(timestamp)


def format_entity_row(data: dict) -> str:
    """One-line summary of a replayed entity."""
    parts = [f"{data['unread_count']} unread"]
    if data["mentions_count"]:
        parts.append(f"{data['mentions_count']} mentions")
    if data["first_new_message_id"]:
        parts.append(f"new from {data['first_new_message_id']}")
    if data["last_seen_message_id"]:
        parts.append(f"seen {data['last_seen_message_id']}")
    return f"{data['entity_id']} ({data['kind']}) - {' | '.join(parts)}"
