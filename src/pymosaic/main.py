from __future__ import annotations

import asyncio
import json
import signal
from pathlib import Path
from typing import Optional

import typer
from rich.align import Align
from rich.console import Console
from rich.panel import Panel
from rich.table import Table

from .app_context import AppContext
from .config.models import ConfigError
from .events.store import Event
from .llm.errors import AIError
from .llm.factory import DEFAULT_CONFIG_FILE, load_provider_registry
from .runner import TurnResult, run_agent_once
from .tools.approval import ApprovalGate, ApprovalRequest
from .tools.builtin import register_builtin_tools
from .tools.registry import ToolRegistry
from .util.logging import setup_logging

app = typer.Typer(add_completion=False, help="pymosaic: terminal coding agent with approval-gated tools.")
console = Console()

_STATUS_ICONS = {"running": "⏳", "completed": "✅", "error": "❌"}


def _resolve_cwd(cwd: Path | None) -> Path:
    cwd = Path(str(cwd or Path.cwd())).expanduser()
    cwd = cwd.resolve() if cwd.is_absolute() else (Path.cwd() / cwd).resolve()
    if not cwd.is_dir():
        raise typer.BadParameter(f"--cwd must be an existing directory, got: {cwd}")
    return cwd


def _build_context(
    *,
    provider: str,
    model: Optional[str],
    config: Path,
    cwd: Optional[Path],
    session: Optional[str],
    yes: bool,
    behavior_config: Optional[Path],
    stream: Optional[bool],
) -> AppContext:
    try:
        return AppContext.from_env(
            cwd=_resolve_cwd(cwd),
            provider=provider,
            model=model,
            config_path=config,
            behavior_config=behavior_config,
            session_id=session,
            auto_approve=yes,
            stream=stream,
        )
    except (ConfigError, AIError) as e:
        console.print(f"[bold red]Configuration error:[/bold red] {e}")
        raise typer.Exit(code=2) from None


def _print_header(ctx: AppContext) -> None:
    cfg = ctx.gateway.config
    table = Table.grid(padding=(0, 2))
    table.add_row("📁 [bold green]cwd[/bold green]", f"[bright_cyan]{ctx.cwd}[/bright_cyan]")
    table.add_row("🆔 [bold green]session[/bold green]", f"[bright_cyan]{ctx.session_id}[/bright_cyan]")
    table.add_row("🔌 [bold green]provider[/bold green]", f"[bright_cyan]{cfg.name} ({ctx.gateway.label})[/bright_cyan]")
    table.add_row("🧠 [bold green]model[/bold green]", f"[bright_cyan]{cfg.model}[/bright_cyan]")
    table.add_row("🌐 [bold green]base_url[/bold green]", f"[bright_cyan]{cfg.base_url or '(default)'}[/bright_cyan]")
    loaded = ", ".join(str(p) for p in ctx.behavior.loaded_from) or "(defaults)"
    table.add_row("⚙️ [bold green]behavior_config[/bold green]", f"[bright_cyan]{loaded}[/bright_cyan]")
    if ctx.approve_all:
        table.add_row("⚠️ [bold green]approval[/bold green]", "[bright_yellow]all tools auto-approved[/bright_yellow]")
    console.print(
        Align.center(
            Panel(table, title="[bold magenta]pymosaic[/bold magenta]", border_style="bright_blue")
        )
    )


def _render_event(ev: Event) -> None:
    if ev.type != "tool.execution":
        return
    d = ev.data
    icon = _STATUS_ICONS.get(d.get("status", ""), "•")
    summary = f" [dim]{d['summary']}[/dim]" if d.get("summary") else ""
    console.print(f"{icon} [bold]{d.get('display_name')}[/bold]{summary}", highlight=False)


async def _ask(prompt: str) -> str:
    return await asyncio.to_thread(console.input, prompt)


async def _resolve_request(req: ApprovalRequest) -> None:
    console.print(
        Panel(req.preview, title=f"[bold yellow]Approve {req.tool_name}?[/bold yellow]", border_style="yellow")
    )
    while not req.resolved:
        choice = (await _ask("[bold]\\[y]es / \\[n]o / \\[a]pprove all / \\[m]odify > [/bold]")).strip().lower()
        if req.resolved:
            # The turn was cancelled while the prompt was open.
            break
        if choice in ("y", "yes"):
            req.approve()
        elif choice in ("n", "no"):
            req.reject()
        elif choice in ("a", "all"):
            req.approve_all()
        elif choice in ("m", "modify"):
            req.modify(await _ask("Instructions for the agent: "))
        else:
            console.print("[red]Answer y, n, a or m.[/red]")


async def _approval_ui(gate: ApprovalGate) -> None:
    while True:
        req = await gate.next_request()
        await _resolve_request(req)


class _InterruptHandler:
    """First Ctrl-C during a turn warns, the second cancels it."""

    def __init__(self) -> None:
        self.task: Optional[asyncio.Task] = None
        self.presses = 0

    def arm(self, task: asyncio.Task) -> None:
        self.task = task
        self.presses = 0

    def disarm(self) -> None:
        self.task = None

    def __call__(self) -> None:
        if self.task is None or self.task.done():
            console.print("\n[dim](type 'exit' or press Ctrl-D to quit)[/dim]")
            return
        self.presses += 1
        if self.presses == 1:
            console.print("\n[yellow]Press Ctrl-C again to cancel the current turn.[/yellow]")
        else:
            console.print("\n[red]Cancelling...[/red]")
            self.task.cancel()

    def install(self) -> bool:
        try:
            asyncio.get_running_loop().add_signal_handler(signal.SIGINT, self)
        except (NotImplementedError, RuntimeError):
            # No loop signal handlers on this platform; Ctrl-C keeps its default behavior.
            return False
        return True

    def uninstall(self) -> None:
        try:
            asyncio.get_running_loop().remove_signal_handler(signal.SIGINT)
        except (NotImplementedError, RuntimeError):
            pass


def _stream_sink(text: str) -> None:
    console.out(text, end="", highlight=False)


async def _turn(
    ctx: AppContext,
    prompt: str,
    max_steps: Optional[int],
    interrupts: _InterruptHandler,
) -> Optional[TurnResult]:
    task = asyncio.create_task(
        run_agent_once(ctx, prompt, max_steps, on_text=_stream_sink if ctx.stream else None)
    )
    interrupts.arm(task)
    try:
        result = await task
    except asyncio.CancelledError:
        if not task.cancelled():
            raise
        console.print("[yellow]Turn cancelled.[/yellow]")
        return None
    finally:
        interrupts.disarm()

    if ctx.stream:
        console.print()
        if result.error:
            console.print(f"[bold red]{result.error}[/bold red]")
    else:
        console.print("\n[bold]Assistant:[/bold]\n")
        console.print(result.final_text, style="bold red" if result.error else None)
    return result


async def _session(ctx: AppContext, prompts: Optional[list[str]], max_steps: Optional[int]) -> int:
    """Run one prompt, or read prompts interactively when `prompts` is None."""
    interrupts = _InterruptHandler()
    installed = interrupts.install()
    unsubscribe = ctx.events.subscribe(_render_event)
    ui = asyncio.create_task(_approval_ui(ctx.gate))
    code = 0
    try:
        if prompts is not None:
            for prompt in prompts:
                console.print(f"\n[bold]You:[/bold] {prompt}\n")
                result = await _turn(ctx, prompt, max_steps, interrupts)
                if result is None or result.error:
                    code = 1
            return code

        while True:
            try:
                user = await _ask("[bold]You[/bold]: ")
            except EOFError:
                break
            if user.strip().lower() in {"exit", "quit"}:
                break
            if not user.strip():
                continue
            await _turn(ctx, user, max_steps, interrupts)
            console.print()
        return code
    finally:
        ui.cancel()
        unsubscribe()
        if installed:
            interrupts.uninstall()


_PROVIDER_OPT = typer.Option(..., "--provider", help="Provider name registered in the YAML registry.")
_CONFIG_OPT = typer.Option(Path(DEFAULT_CONFIG_FILE), "--config", help=f"Provider YAML path (default: ./{DEFAULT_CONFIG_FILE}).")
_CWD_OPT = typer.Option(None, "--cwd", help="Workspace root. Defaults to the current directory.")
_MODEL_OPT = typer.Option(None, "--model", help="Override the provider's model.")
_SESSION_OPT = typer.Option(None, "--session", help="Session id for the event log (default: new id).")
_YES_OPT = typer.Option(False, "--yes", help="Approve every tool call without asking.")
_MAX_STEPS_OPT = typer.Option(None, "--max-steps", help="Max provider calls per turn (default from behavior config).")
_BEHAVIOR_OPT = typer.Option(None, "--behavior-config", help="Behavior JSON path (merged over global and project files).")
_STREAM_OPT = typer.Option(None, "--stream/--no-stream", help="Stream tokens while generating.")
_VERBOSE_OPT = typer.Option(False, "--verbose", "-v", help="Debug logging.")


@app.command()
def run(
    prompt: str = typer.Option(..., "--prompt", "-p", help="User prompt to run once."),
    provider: str = _PROVIDER_OPT,
    config: Path = _CONFIG_OPT,
    cwd: Path = _CWD_OPT,
    model: str = _MODEL_OPT,
    session: str = _SESSION_OPT,
    yes: bool = _YES_OPT,
    max_steps: int = _MAX_STEPS_OPT,
    behavior_config: Path = _BEHAVIOR_OPT,
    stream: bool = _STREAM_OPT,
    verbose: bool = _VERBOSE_OPT,
):
    """Run a single prompt through the agent loop."""
    setup_logging(verbose)
    ctx = _build_context(
        provider=provider, model=model, config=config, cwd=cwd, session=session,
        yes=yes, behavior_config=behavior_config, stream=stream,
    )
    _print_header(ctx)
    code = asyncio.run(_session(ctx, [prompt], max_steps))
    raise typer.Exit(code=code)


@app.command()
def repl(
    provider: str = _PROVIDER_OPT,
    config: Path = _CONFIG_OPT,
    cwd: Path = _CWD_OPT,
    model: str = _MODEL_OPT,
    session: str = _SESSION_OPT,
    yes: bool = _YES_OPT,
    max_steps: int = _MAX_STEPS_OPT,
    behavior_config: Path = _BEHAVIOR_OPT,
    stream: bool = _STREAM_OPT,
    verbose: bool = _VERBOSE_OPT,
):
    """Interactive session; type 'exit' or press Ctrl-D to quit."""
    setup_logging(verbose)
    ctx = _build_context(
        provider=provider, model=model, config=config, cwd=cwd, session=session,
        yes=yes, behavior_config=behavior_config, stream=stream,
    )
    _print_header(ctx)
    asyncio.run(_session(ctx, None, max_steps))


@app.command()
def providers(config: Path = _CONFIG_OPT):
    """List providers registered in the YAML registry."""
    try:
        reg = load_provider_registry(config)
    except ConfigError as e:
        console.print(f"[bold red]Configuration error:[/bold red] {e}")
        raise typer.Exit(code=2) from None
    table = Table(title="providers")
    for col in ("name", "type", "model", "base_url", "reasoning", "context_window"):
        table.add_column(col)
    for cfg in reg.items():
        table.add_row(
            cfg.name,
            cfg.type,
            cfg.model,
            cfg.base_url or "(default)",
            "yes" if cfg.reasoning else "no",
            str(cfg.context_window or "-"),
        )
    console.print(table)


@app.command()
def tools(as_json: bool = typer.Option(False, "--json", help="Print raw tool schemas.")):
    """List built-in tools and whether they need approval."""
    registry = ToolRegistry()
    register_builtin_tools(registry)
    if as_json:
        console.print_json(json.dumps(registry.schemas()))
        return
    gate = ApprovalGate()
    table = Table(title="tools")
    table.add_column("name", no_wrap=True)
    table.add_column("approval", no_wrap=True)
    table.add_column("description")
    for spec in registry.list_specs():
        table.add_row(spec.name, "required" if gate.needs_approval(spec.name) else "-", spec.description)
    console.print(table)


if __name__ == "__main__":
    app()
