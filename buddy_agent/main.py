"""Command-line host for Buddy Agent."""

import asyncio
import os
import signal
import sys
from pathlib import Path

import typer
from rich.console import Console
from rich.markup import escape
from rich.panel import Panel

from buddy_agent.agent import Agent, AgentStatus, create_agent
from buddy_agent.config import Config
from buddy_agent.events import AgentEvent
from buddy_agent.logging import configure_logging, log

app = typer.Typer(help="Buddy Agent - agentic coding assistant core")
console = Console()

_EXIT_CODES = {
    AgentStatus.COMPLETED: 0,
    AgentStatus.ERROR: 1,
    AgentStatus.MAX_ITERATIONS_REACHED: 2,
    AgentStatus.ABORTED: 130,
}


def render_event(event: AgentEvent) -> None:
    """Print one agent event to the console."""
    if event.kind == "task_started":
        console.print(f"[bold cyan]Task:[/bold cyan] {escape(event.task)}")
    elif event.kind == "message":
        if event.text.strip():
            console.print(event.text, markup=False)
    elif event.kind == "tool_use":
        console.print(f"[dim]> {event.invocation.name} {escape(str(event.invocation.input))}[/dim]")
    elif event.kind == "tool_result":
        style = "red" if event.outcome.is_error else "dim"
        text = event.result
        if len(text) > 2000:
            text = text[:2000] + "\n... [truncated]"
        console.print(text, style=style, markup=False, highlight=False)
    elif event.kind == "followup_question":
        console.print(Panel(escape(event.question), title="Question", border_style="yellow"))
    elif event.kind == "task_complete":
        body = event.result
        if event.suggested_command:
            body += f"\n\nSuggested command: {event.suggested_command}"
        console.print(Panel(escape(body), title="Done", border_style="green"))
    elif event.kind == "task_aborted":
        console.print(f"[yellow]{escape(event.reason)}[/yellow]")
    elif event.kind == "max_iterations_reached":
        console.print(f"[yellow]Stopped after {event.iterations} iterations[/yellow]")
    elif event.kind == "error":
        console.print(f"[bold red]Error:[/bold red] {escape(event.message)}")


async def _run_task(agent: Agent, task: str) -> AgentStatus:
    loop = asyncio.get_running_loop()
    try:
        loop.add_signal_handler(signal.SIGINT, agent.abort)
        handler_installed = True
    except (NotImplementedError, RuntimeError):
        handler_installed = False

    agent.subscribe(render_event)
    try:
        return await agent.start_task(task)
    finally:
        if handler_installed:
            loop.remove_signal_handler(signal.SIGINT)
        await agent.close()


def _load_config(config: str) -> Config:
    if not config:
        return Config.load()
    try:
        return Config.from_yaml(Path(config))
    except Exception as e:
        log.error("Failed to load config", path=config, error=str(e))
        return Config.load()


@app.command()
def run(
    task: str = typer.Argument(..., help="Task for the agent"),
    workspace: str = typer.Option("", "-w", "--workspace", help="Workspace root"),
    config: str = typer.Option("", "-c", "--config", help="Path to config file"),
    model: str = typer.Option("", "-m", "--model", help="Override model"),
    verbose: bool = typer.Option(False, "-v", "--verbose", help="Debug logging"),
) -> None:
    """Run a single task in a workspace."""
    cfg = _load_config(config)
    if verbose:
        cfg.logging.level = "DEBUG"
    if model:
        cfg.backend.model = model
    if workspace:
        cfg.workspace.path = workspace
    elif not cfg.workspace.path:
        cfg.workspace.path = os.getcwd()

    configure_logging(cfg)

    agent = create_agent(cfg)
    try:
        status = asyncio.run(_run_task(agent, task))
    except KeyboardInterrupt:
        log.info("Shutting down...")
        sys.exit(_EXIT_CODES[AgentStatus.ABORTED])
    raise typer.Exit(code=_EXIT_CODES.get(status, 1))


@app.command()
def version() -> None:
    """Show version information."""
    from buddy_agent import __version__
    print(f"Buddy Agent v{__version__}")


if __name__ == "__main__":
    app()
