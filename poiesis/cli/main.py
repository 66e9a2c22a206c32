"""Poiesis CLI — admin commands for system prompts and token usage."""

from __future__ import annotations

import json
import sys
from typing import Any

import click

from poiesis.cli.client import PoiesisClient


def _format_table(rows: list[dict], columns: list[str]) -> str:
    """Simple table formatter."""
    if not rows:
        return "No results."
    # Compute column widths
    widths = {c: len(c) for c in columns}
    for row in rows:
        for c in columns:
            val = str(row.get(c, ""))
            widths[c] = max(widths[c], len(val))

    header = "  ".join(c.upper().ljust(widths[c]) for c in columns)
    separator = "  ".join("-" * widths[c] for c in columns)
    lines = [header, separator]
    for row in rows:
        line = "  ".join(str(row.get(c, "")).ljust(widths[c]) for c in columns)
        lines.append(line)
    return "\n".join(lines)


def _preview(text: str, width: int = 60) -> str:
    text = " ".join(text.split())
    return text if len(text) <= width else text[: width - 3] + "..."


@click.group()
@click.option("--api", default="http://localhost:8400", envvar="POIESIS_API", help="API base URL")
@click.option("--format", "output_format", type=click.Choice(["table", "json"]), default="table")
@click.option("--user", "user_id", default="admin", envvar="POIESIS_USER", help="Admin user id")
@click.pass_context
def cli(ctx: click.Context, api: str, output_format: str, user_id: str) -> None:
    """Poiesis CLI — manage the system prompt and inspect token usage."""
    ctx.ensure_object(dict)
    ctx.obj = PoiesisClient(base_url=api, user_id=user_id)
    ctx.meta["output_format"] = output_format


def _output(ctx: click.Context, data: Any, columns: list[str] | None = None) -> None:
    fmt = ctx.meta.get("output_format", "table")
    if fmt == "json":
        click.echo(json.dumps(data, indent=2, default=str))
    elif isinstance(data, list) and columns:
        click.echo(_format_table(data, columns))
    else:
        click.echo(json.dumps(data, indent=2, default=str))


def _fail(error: RuntimeError) -> None:
    click.echo(str(error), err=True)
    sys.exit(1)


# --- Prompt commands ---


@cli.group()
def prompt() -> None:
    """Manage system prompt versions."""


@prompt.command("list")
@click.pass_context
def prompt_list(ctx: click.Context) -> None:
    """List all prompt versions, newest first."""
    client: PoiesisClient = ctx.obj
    try:
        data = client.list_prompts()
    except RuntimeError as e:
        _fail(e)
    if ctx.meta.get("output_format") == "table":
        data = [{**p, "text": _preview(p.get("text", ""))} for p in data]
    _output(ctx, data, ["id", "version", "active", "created_at", "text"])


@prompt.command("show")
@click.pass_context
def prompt_show(ctx: click.Context) -> None:
    """Show the active prompt."""
    client: PoiesisClient = ctx.obj
    try:
        data = client.get_active_prompt()
    except RuntimeError as e:
        _fail(e)
    _output(ctx, data)


@prompt.command("create")
@click.option("--text", default=None, help="Prompt text")
@click.option("--file", "-f", "file_path", default=None, help="Read prompt text from a file")
@click.option("--activate", is_flag=True, default=False, help="Make it the active prompt")
@click.pass_context
def prompt_create(
    ctx: click.Context, text: str | None, file_path: str | None, activate: bool
) -> None:
    """Create a prompt version."""
    client: PoiesisClient = ctx.obj
    if file_path:
        with open(file_path) as f:
            text = f.read()
    if not text:
        click.echo("Provide --text or --file", err=True)
        sys.exit(1)
    try:
        result = client.create_prompt(text, active=activate)
    except RuntimeError as e:
        _fail(e)
    _output(ctx, result)


@prompt.command("update")
@click.argument("prompt_id")
@click.option("--text", default=None, help="New prompt text (bumps the version)")
@click.option("--file", "-f", "file_path", default=None, help="Read new text from a file")
@click.pass_context
def prompt_update(ctx: click.Context, prompt_id: str, text: str | None, file_path: str | None) -> None:
    """Replace a prompt's text."""
    client: PoiesisClient = ctx.obj
    if file_path:
        with open(file_path) as f:
            text = f.read()
    if not text:
        click.echo("Provide --text or --file", err=True)
        sys.exit(1)
    try:
        result = client.update_prompt(prompt_id, {"text": text})
    except RuntimeError as e:
        _fail(e)
    _output(ctx, result)


@prompt.command("activate")
@click.argument("prompt_id")
@click.pass_context
def prompt_activate(ctx: click.Context, prompt_id: str) -> None:
    """Make a prompt the active one."""
    client: PoiesisClient = ctx.obj
    try:
        result = client.update_prompt(prompt_id, {"active": True})
    except RuntimeError as e:
        _fail(e)
    click.echo(f"Activated prompt {result['id']} (version {result['version']})")


@prompt.command("deactivate")
@click.argument("prompt_id")
@click.pass_context
def prompt_deactivate(ctx: click.Context, prompt_id: str) -> None:
    """Deactivate a prompt; the fallback instruction applies until another is activated."""
    client: PoiesisClient = ctx.obj
    try:
        result = client.update_prompt(prompt_id, {"active": False})
    except RuntimeError as e:
        _fail(e)
    click.echo(f"Deactivated prompt {result['id']}")


@prompt.command("delete")
@click.argument("prompt_id")
@click.confirmation_option(prompt="Delete this prompt version?")
@click.pass_context
def prompt_delete(ctx: click.Context, prompt_id: str) -> None:
    """Delete a prompt version."""
    client: PoiesisClient = ctx.obj
    try:
        client.delete_prompt(prompt_id)
    except RuntimeError as e:
        _fail(e)
    click.echo(f"Deleted prompt {prompt_id}")


# --- Token usage ---


@cli.command()
@click.pass_context
def tokens(ctx: click.Context) -> None:
    """Per-user token usage for the current UTC day."""
    client: PoiesisClient = ctx.obj
    try:
        report = client.token_usage()
    except RuntimeError as e:
        _fail(e)
    if ctx.meta.get("output_format") == "json":
        _output(ctx, report)
        return
    click.echo(f"Token usage for {report['date']} (UTC)")
    _output(
        ctx,
        report["users"],
        ["user_id", "total_prompt_tokens", "total_completion_tokens", "total_tokens"],
    )


if __name__ == "__main__":
    cli()
