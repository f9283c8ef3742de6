"""CLI output formatters for Rich tables and JSON.

Provides human-readable Rich output (default) and machine-parseable JSON
output (--json flag). All formatting goes through these functions so the
CLI commands stay clean.
"""

import json
from typing import Any

from rich.console import Console
from rich.table import Table

console = Console()

STATUS_COLORS = {
    "creating": "yellow",
    "running": "green",
    "stopped": "dim",
    "error": "red",
    "archived": "dim",
}

MESSAGE_COLORS = {
    "user": "cyan",
    "assistant": "white",
    "system": "dim",
    "result": "green",
    "error": "red",
}

_PREVIEW_LENGTH = 200


def _render(renderable: Any) -> str:
    with console.capture() as capture:
        console.print(renderable)
    return capture.get()


def format_session_table(sessions: list[dict], as_json: bool = False) -> str:
    """Format sessions as a Rich table or JSON."""
    if as_json:
        return json.dumps(sessions, indent=2)
    if not sessions:
        return "No sessions found."

    table = Table(title="Sessions", show_lines=True)
    table.add_column("ID", style="cyan", no_wrap=True)
    table.add_column("Name", style="white")
    table.add_column("Status")
    table.add_column("Repository")
    table.add_column("Updated")

    for s in sessions:
        color = STATUS_COLORS.get(s["status"], "white")
        table.add_row(
            s["id"][:12],
            s["name"],
            f"[{color}]{s['status']}[/{color}]",
            f"{s['repo_url']}@{s['branch']}",
            s["updated_at"][:19] if s.get("updated_at") else "—",
        )
    return _render(table)


def format_session_detail(session: dict, as_json: bool = False) -> str:
    """Format one session as labelled lines or JSON."""
    if as_json:
        return json.dumps(session, indent=2)

    color = STATUS_COLORS.get(session["status"], "white")
    lines = [
        f"[bold]Session:[/bold]   {session['id']}",
        f"[bold]Name:[/bold]      {session['name']}",
        f"[bold]Status:[/bold]    [{color}]{session['status']}[/{color}]",
        f"[bold]Repo:[/bold]      {session['repo_url']}@{session['branch']}",
        f"[bold]Container:[/bold] {(session.get('container_id') or '—')[:12]}",
    ]
    if session.get("status_message"):
        lines.append(f"[bold red]Note:[/bold red]      {session['status_message']}")
    return "\n".join(lines)


def _message_text(message: dict) -> str:
    """Best-effort one-line text for a message payload."""
    content = message.get("content")
    if not isinstance(content, dict):
        return str(content)

    if content.get("subtype") == "raw_output":
        return str(content.get("text", ""))
    if message.get("type") == "error":
        return str(content.get("message", ""))
    if message.get("type") == "result":
        return str(content.get("result", content.get("subtype", "")))

    inner = content.get("message")
    if isinstance(inner, dict):
        body = inner.get("content")
        if isinstance(body, str):
            return body
        if isinstance(body, list):
            parts = []
            for block in body:
                if not isinstance(block, dict):
                    continue
                if block.get("type") == "text":
                    parts.append(str(block.get("text", "")))
                elif block.get("type") == "tool_use":
                    parts.append(f"[tool] {block.get('name', '?')}")
                elif block.get("type") == "tool_result":
                    parts.append("[tool result]")
            return " ".join(parts)
    if isinstance(inner, str):
        return inner
    return str(content.get("subtype", ""))


def format_message(message: dict) -> str:
    """Format a log message as one Rich-markup line."""
    msg_type = message.get("type", "?")
    color = MESSAGE_COLORS.get(msg_type, "white")
    text = " ".join(_message_text(message).split())
    if len(text) > _PREVIEW_LENGTH:
        text = text[: _PREVIEW_LENGTH - 1] + "…"
    return f"[dim]{message.get('sequence', '?'):>5}[/dim] [{color}]{msg_type:<9}[/{color}] {text}"


def format_usage(usage: dict, as_json: bool = False) -> str:
    """Format token usage for display."""
    if as_json:
        return json.dumps(usage, indent=2)
    lines = [
        f"[bold]Tokens:[/bold]  {usage['display_total']} "
        f"({usage['input_tokens']} in / {usage['output_tokens']} out)",
        f"[bold]Context:[/bold] {usage['display_percent']} of {usage['context_window']}",
    ]
    if usage.get("model"):
        lines.append(f"[bold]Model:[/bold]   {usage['model']}")
    return "\n".join(lines)
