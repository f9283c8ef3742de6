"""AgentDock CLI.

Unified entry point for running the server, managing sessions and
driving agents from the terminal.

Usage:
    agentdock daemon start              Start the API server
    agentdock session list              List sessions
    agentdock agent send <id> "prompt"  Send a prompt and follow output
    agentdock reconcile                 Repair session state offline
"""

import asyncio
import logging
import os
from typing import Optional

import typer
from rich.console import Console

from src.cli.config import AgentDockConfig, load_config
from src.cli.http_client import AgentDockClient, AgentDockClientError
from src.cli.output import (
    format_message,
    format_session_detail,
    format_session_table,
    format_usage,
)

_log = logging.getLogger(__name__)

app = typer.Typer(
    name="agentdock",
    help="Sandboxed coding-agent sessions with live output",
    no_args_is_help=True,
)
daemon_app = typer.Typer(help="Manage the AgentDock server")
config_app = typer.Typer(help="Configuration management")
session_app = typer.Typer(help="Manage sessions")
agent_app = typer.Typer(help="Drive a session's agent")

app.add_typer(daemon_app, name="daemon")
app.add_typer(config_app, name="config")
app.add_typer(session_app, name="session")
app.add_typer(agent_app, name="agent")

console = Console()

# --- Global state ---
_config_path: str | None = None


@app.callback()
def main(
    config: Optional[str] = typer.Option(
        None, "--config", help="Path to agentdock.yaml config file"
    ),
):
    """AgentDock CLI."""
    global _config_path
    _config_path = config


def _load() -> AgentDockConfig:
    try:
        return load_config(config_path=_config_path)
    except FileNotFoundError as e:
        console.print(f"[red]Config file not found:[/red] {e}")
        raise typer.Exit(1)


def _client(cfg: AgentDockConfig) -> AgentDockClient:
    return AgentDockClient(base_url=f"http://{cfg.daemon.host}:{cfg.daemon.port}")


def _run_client(coro_factory) -> None:
    """Run an async client call, printing client errors and exiting 1."""
    try:
        asyncio.run(coro_factory())
    except AgentDockClientError as e:
        code = f" ({e.error_code})" if e.error_code else ""
        console.print(f"[red]Error{code}:[/red] {e.message}")
        raise typer.Exit(1)


# --- Version ---


@app.command()
def version():
    """Show AgentDock version."""
    from importlib.metadata import version as pkg_version

    try:
        v = pkg_version("agentdock")
    except Exception:
        v = "unknown"
    console.print(f"[bold]AgentDock[/bold] v{v}")


# --- Config commands ---


@config_app.command("show")
def config_show():
    """Display resolved configuration."""
    cfg = _load()

    console.print("[bold]Daemon:[/bold]")
    console.print(f"  host: {cfg.daemon.host}")
    console.print(f"  port: {cfg.daemon.port}")
    console.print(f"  log_level: {cfg.daemon.log_level}")

    console.print("\n[bold]Supervisor:[/bold]")
    console.print(f"  agent_command: {' '.join(cfg.supervisor.agent_command)}")
    console.print(f"  process_pattern: {cfg.supervisor.process_pattern}")
    console.print(f"  interrupt_grace_seconds: {cfg.supervisor.interrupt_grace_seconds}")

    console.print("\n[bold]Stream:[/bold]")
    console.print(f"  poll_interval_seconds: {cfg.stream.poll_interval_seconds}")
    console.print(f"  batch_size: {cfg.stream.batch_size}")
    console.print(f"  ping_seconds: {cfg.stream.ping_seconds}")

    console.print("\n[bold]Sandbox:[/bold]")
    console.print(f"  docker_binary: {cfg.sandbox.docker_binary}")
    console.print(f"  image: {cfg.sandbox.image}")
    console.print(f"  workdir: {cfg.sandbox.workdir}")

    api_key = os.environ.get("AGENTDOCK_API_KEY", "")
    console.print(f"\n[bold]API key:[/bold] {'set (***)' if api_key else 'not set'}")


@config_app.command("validate")
def config_validate(
    config: Optional[str] = typer.Option(None, "--config", help="Config file path"),
):
    """Validate a config file without starting the server."""
    path = config or _config_path
    try:
        cfg = load_config(config_path=path)
        console.print("[green]Config is valid.[/green]")
        console.print(f"  Agent command: {' '.join(cfg.supervisor.agent_command)}")
        console.print(f"  Sandbox image: {cfg.sandbox.image}")
    except FileNotFoundError as e:
        console.print(f"[red]Config file not found:[/red] {e}")
        raise typer.Exit(1)
    except (ValueError, TypeError) as e:
        console.print(f"[red]Config validation failed:[/red] {e}")
        raise typer.Exit(1)


# --- Daemon commands ---


@daemon_app.command("start")
def daemon_start_cmd(
    host: Optional[str] = typer.Option(None, "--host", help="Bind address"),
    port: Optional[int] = typer.Option(None, "--port", help="Bind port"),
):
    """Start the AgentDock API server in the foreground."""
    from src.cli.daemon import start_daemon

    cfg = _load()
    final_host = host or cfg.daemon.host
    final_port = port or cfg.daemon.port

    # Propagate config path so the server lifespan loads the same config.
    if _config_path:
        os.environ["AGENTDOCK_CONFIG_PATH"] = str(_config_path)

    console.print(f"[bold]Starting AgentDock on {final_host}:{final_port}[/bold]")
    start_daemon(
        host=final_host,
        port=final_port,
        pid_file=cfg.daemon.pid_file,
        log_level=cfg.daemon.log_level,
    )


@daemon_app.command("stop")
def daemon_stop_cmd():
    """Stop the AgentDock server."""
    from src.cli.daemon import stop_daemon

    cfg = _load()
    if stop_daemon(pid_file=cfg.daemon.pid_file):
        console.print("[green]Server stopped.[/green]")
    else:
        console.print("[yellow]Server is not running.[/yellow]")


@daemon_app.command("status")
def daemon_status_cmd():
    """Check server status."""
    from src.cli.daemon import daemon_status

    cfg = _load()
    status = daemon_status(
        pid_file=cfg.daemon.pid_file,
        base_url=f"http://{cfg.daemon.host}:{cfg.daemon.port}",
    )
    if status["alive"] and status["healthy"]:
        console.print(f"[green]Server running[/green] (PID {status['pid']}), healthy")
    elif status["alive"]:
        console.print(f"[yellow]Server running[/yellow] (PID {status['pid']}), unhealthy")
    else:
        console.print("[red]Server not running[/red]")


# --- Reconcile ---


@app.command()
def reconcile():
    """Repair session state against the sandbox runtime without the server.

    Use while the server is stopped: sessions whose sandbox is gone are
    marked error. Agents still running are reported but only the server
    can adopt them.
    """
    from src.db.connection import close_db, get_db_context, init_db
    from src.services.process_registry import ProcessRegistry
    from src.services.reconciliation import reconcile_sessions
    from src.services.sandbox_runtime import DockerSandboxRuntime
    from src.utils.paths import ensure_dirs_exist

    cfg = _load()
    ensure_dirs_exist()
    init_db()
    registry = ProcessRegistry()

    async def _run():
        with get_db_context() as db:
            return await reconcile_sessions(
                db,
                DockerSandboxRuntime(cfg.sandbox),
                registry,
                cfg.supervisor.process_pattern,
            )

    try:
        result = asyncio.run(_run())
    finally:
        close_db()
    console.print(
        f"Reconciled [bold]{result.total}[/bold] running session(s): "
        f"[green]{result.reconnected} reconnected[/green], "
        f"[yellow]{result.cleaned} cleaned up[/yellow], "
        f"[red]{result.failed} failed[/red]"
    )
    if result.abandoned_creates:
        console.print(
            f"  Marked {result.abandoned_creates} interrupted create(s) as error"
        )
    if registry.list_sessions():
        console.print(f"  Agents still active in {len(registry)} session(s)")
    if result.failed:
        raise typer.Exit(1)


# --- Session commands ---


@session_app.command("list")
def session_list(
    include_archived: bool = typer.Option(False, "--all", "-a", help="Include archived"),
    json_output: bool = typer.Option(False, "--json", help="Output as JSON"),
):
    """List sessions."""
    client = _client(_load())

    async def _run():
        async with client:
            sessions = await client.list_sessions(include_archived=include_archived)
            console.print(format_session_table(sessions, as_json=json_output))

    _run_client(_run)


@session_app.command("create")
def session_create(
    name: str = typer.Argument(help="Session name"),
    repo_url: str = typer.Argument(help="Repository to clone into the sandbox"),
    branch: str = typer.Option("main", "--branch", "-b", help="Branch to check out"),
):
    """Create a session and provision its sandbox."""
    client = _client(_load())

    async def _run():
        async with client:
            session = await client.create_session(name, repo_url, branch)
            console.print(format_session_detail(session))

    _run_client(_run)


@session_app.command("show")
def session_show(
    session_id: str = typer.Argument(help="Session ID"),
    json_output: bool = typer.Option(False, "--json", help="Output as JSON"),
):
    """Show one session."""
    client = _client(_load())

    async def _run():
        async with client:
            session = await client.get_session(session_id)
            console.print(format_session_detail(session, as_json=json_output))

    _run_client(_run)


@session_app.command("start")
def session_start(session_id: str = typer.Argument(help="Session ID")):
    """Start a stopped session."""
    client = _client(_load())

    async def _run():
        async with client:
            session = await client.start_session(session_id)
            console.print(f"Session {session_id[:12]} is [green]{session['status']}[/green]")

    _run_client(_run)


@session_app.command("stop")
def session_stop(session_id: str = typer.Argument(help="Session ID")):
    """Interrupt the agent and stop the sandbox."""
    client = _client(_load())

    async def _run():
        async with client:
            session = await client.stop_session(session_id)
            console.print(f"Session {session_id[:12]} is [dim]{session['status']}[/dim]")

    _run_client(_run)


@session_app.command("archive")
def session_archive(session_id: str = typer.Argument(help="Session ID")):
    """Archive a session (history is kept)."""
    client = _client(_load())

    async def _run():
        async with client:
            await client.archive_session(session_id)
            console.print(f"[yellow]Session {session_id[:12]} archived.[/yellow]")

    _run_client(_run)


@session_app.command("usage")
def session_usage(
    session_id: str = typer.Argument(help="Session ID"),
    json_output: bool = typer.Option(False, "--json", help="Output as JSON"),
):
    """Show estimated token usage."""
    client = _client(_load())

    async def _run():
        async with client:
            usage = await client.get_usage(session_id)
            console.print(format_usage(usage, as_json=json_output))

    _run_client(_run)


# --- Agent commands ---


async def _follow(client: AgentDockClient, session_id: str, history_pages: int | None) -> None:
    async for message in client.follow_session(session_id, history_pages=history_pages):
        console.print(format_message(message))


@agent_app.command("send")
def agent_send(
    session_id: str = typer.Argument(help="Session ID"),
    prompt: str = typer.Argument(help="Prompt for the agent"),
    follow: bool = typer.Option(True, "--follow/--no-follow", help="Stream output"),
):
    """Send a prompt and (by default) follow the agent's output."""
    client = _client(_load())

    async def _run():
        async with client:
            await client.send_prompt(session_id, prompt)
            console.print("[green]Prompt accepted.[/green]")
            if follow:
                await _follow(client, session_id, history_pages=1)

    try:
        _run_client(_run)
    except KeyboardInterrupt:
        console.print("\n[yellow]Stopped following (agent keeps running).[/yellow]")


@agent_app.command("watch")
def agent_watch(
    session_id: str = typer.Argument(help="Session ID"),
    full: bool = typer.Option(False, "--full", help="Replay the whole history first"),
):
    """Print recent history, then stream new messages until Ctrl-C."""
    client = _client(_load())

    async def _run():
        async with client:
            await _follow(client, session_id, history_pages=None if full else 1)

    try:
        _run_client(_run)
    except KeyboardInterrupt:
        console.print()


@agent_app.command("interrupt")
def agent_interrupt(session_id: str = typer.Argument(help="Session ID")):
    """Interrupt the running agent."""
    client = _client(_load())

    async def _run():
        async with client:
            if await client.interrupt(session_id):
                console.print("[yellow]Agent interrupted.[/yellow]")
            else:
                console.print("No agent was running.")

    _run_client(_run)


@agent_app.command("status")
def agent_status(session_id: str = typer.Argument(help="Session ID")):
    """Show whether an agent is running."""
    client = _client(_load())

    async def _run():
        async with client:
            running = await client.is_running(session_id)
            console.print("[green]running[/green]" if running else "[dim]idle[/dim]")

    _run_client(_run)


if __name__ == "__main__":
    app()
