"""
Lexia - Main Entry Point

CLI for inspecting the routing table, dry-running the controller and
chatting with Lexia from a terminal.
"""

from __future__ import annotations

import asyncio
import logging
import os
from pathlib import Path
from typing import Optional

import typer
from dotenv import load_dotenv
from rich.console import Console
from rich.panel import Panel
from rich.table import Table

from lexia.config.loader import LexiaSettings, load_settings
from lexia.controller.context import CaseContextInput
from lexia.observability.logging_config import configure_logging

# Load environment (override=True to ensure .env values take precedence)
root_env = Path(__file__).parent / ".env"
if root_env.exists():
    load_dotenv(root_env, override=True)
else:
    load_dotenv(override=True)

app = typer.Typer(
    name="lexia",
    help="Lexia - legal assistant routing core",
)
console = Console()
logger = logging.getLogger("lexia")


def _get_settings(config: Optional[Path]) -> LexiaSettings:
    """Load routing settings, with friendly error on failure."""
    try:
        return load_settings(config)
    except (FileNotFoundError, ValueError) as e:
        console.print(Panel(
            f"[red]Could not load routing config:[/]\n\n{e}",
            title="⚠ Configuration Error",
            border_style="red",
        ))
        raise typer.Exit(code=1)


def _check_env_key(var_name: str, label: str) -> str:
    """Check if an environment variable is set. Shows a friendly error if missing."""
    value = os.environ.get(var_name, "").strip()
    if not value:
        console.print(Panel(
            f"[red]Missing required key:[/] [bold]{var_name}[/]\n\n"
            f"This key is needed for: [cyan]{label}[/]\n\n"
            f"Set it in your .env file:\n"
            f"  [dim]{var_name}=your_key_here[/]",
            title="⚠ Configuration Error",
            border_style="red",
        ))
        raise typer.Exit(code=1)
    return value


def _case_input(
    case_id: Optional[str],
    case_number: Optional[str],
    title: Optional[str],
    case_type: Optional[str],
) -> Optional[CaseContextInput]:
    if not case_id:
        return None
    return CaseContextInput(
        case_id=case_id,
        case_number=case_number or "",
        title=title or "",
        type=case_type or "",
    )


# =========================================================================
# Commands
# =========================================================================


@app.command()
def routes(
    config: Optional[Path] = typer.Option(None, help="Routing YAML override"),
):
    """Show the intent routing table."""
    settings = _get_settings(config)

    table = Table(title="Lexia - Intent Routing")
    table.add_column("Intent", style="cyan")
    table.add_column("Primary", style="white")
    table.add_column("Fallback", style="yellow")
    table.add_column("Temp", justify="right")
    table.add_column("Max tokens", justify="right")
    table.add_column("Tools", style="green")
    table.add_column("Credits", justify="right", style="magenta")

    for route in settings.llm.list_routes():
        table.add_row(
            route["intent"],
            route["primary"],
            route["fallback"],
            f"{route['temperature']:.1f}",
            str(route["max_tokens"]),
            ", ".join(route["tools"]) or "[dim]all[/]",
            str(settings.credits_by_intent.get(route["intent"], "-")),
        )

    console.print(table)


@app.command()
def classify(
    message: str = typer.Argument(..., help="User message to classify"),
    case_id: Optional[str] = typer.Option(None, help="Open case id"),
    case_number: Optional[str] = typer.Option(None, help="Open case number"),
    title: Optional[str] = typer.Option(None, help="Open case title"),
    case_type: Optional[str] = typer.Option(None, "--type", help="Open case type"),
    config: Optional[Path] = typer.Option(None, help="Routing YAML override"),
):
    """Run the controller on a message (no model call, no database)."""
    from lexia.controller.classifier import IntentClassifier
    from lexia.controller.controller import LexiaController

    settings = _get_settings(config)
    controller = LexiaController(settings.llm, IntentClassifier(settings=settings.classifier))
    case_input = _case_input(case_id, case_number, title, case_type)

    pending = controller.process_request(message, case_input, user_id="cli")
    c = pending.classification
    cfg = pending.service_config

    console.print(Panel(
        f"Intent: [bold cyan]{c.intent.value}[/] (confidence {c.confidence:.2f})\n"
        f"Model: {c.model} [dim]({c.provider.value})[/]\n"
        f"Temperature: {cfg.temperature}  Max tokens: {cfg.max_tokens}\n"
        f"Tools: {', '.join(c.tools_allowed) or 'all'}\n"
        f"Requires context: {c.requires_context}  Enrich: {pending.enrich_context}\n"
        f"Credits: {settings.credits_by_intent.get(c.intent, 1)}\n"
        f"Trace: [dim]{pending.trace_id}[/]",
        title="Controller decision",
    ))


@app.command()
def chat(
    message: str = typer.Argument(..., help="Message to send"),
    user_id: str = typer.Option(..., "--user-id", help="Profile id of the caller"),
    case_id: Optional[str] = typer.Option(None, help="Open case id"),
    case_number: Optional[str] = typer.Option(None, help="Open case number"),
    title: Optional[str] = typer.Option(None, help="Open case title"),
    case_type: Optional[str] = typer.Option(None, "--type", help="Open case type"),
    offline_store: bool = typer.Option(
        False, "--offline-store", help="Use an in-memory store instead of Supabase",
    ),
    config: Optional[Path] = typer.Option(None, help="Routing YAML override"),
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Debug logging"),
):
    """Send one message through the full pipeline and stream the answer."""
    from lexia.billing.usage import QuotaManager
    from lexia.controller.classifier import IntentClassifier
    from lexia.controller.controller import LexiaController
    from lexia.llm.orchestrator import StreamingOrchestrator
    from lexia.llm.streaming import ProviderStreamer
    from lexia.pipeline import LexiaPipeline

    configure_logging(level=logging.DEBUG if verbose else logging.WARNING)
    settings = _get_settings(config)

    if not (os.environ.get("OPENAI_API_KEY") or os.environ.get("ANTHROPIC_API_KEY")):
        _check_env_key("OPENAI_API_KEY", "Model access (OpenAI or Anthropic)")

    if offline_store:
        from lexia.testing.memory_store import InMemoryDataStore
        store = InMemoryDataStore(plan_credits=settings.plan_credits)
    else:
        from lexia.integrations.supabase_client import LexiaDB
        _check_env_key("SUPABASE_URL", "Database connection")
        _check_env_key("SUPABASE_SERVICE_KEY", "Database authentication")
        store = LexiaDB(plan_credits=settings.plan_credits)

    pipeline = LexiaPipeline(
        controller=LexiaController(settings.llm, IntentClassifier(settings=settings.classifier)),
        orchestrator=StreamingOrchestrator(ProviderStreamer.from_env(config=settings.llm), settings.llm),
        quota=QuotaManager(store, settings.credits_by_intent),
        store=store,
        audit_sink=store,
    )
    case_input = _case_input(case_id, case_number, title, case_type)

    async def _run():
        run = await pipeline.start([{"role": "user", "content": message}], user_id, case_input)
        if not run.allowed:
            console.print(
                f"[red]Monthly credits exhausted[/] "
                f"({run.credits.limit} credits). Try again next month."
            )
            raise typer.Exit(code=2)

        decision = run.final_decision
        label = f"{decision.classification.intent.value} → {decision.service_config.model}"
        if run.result.is_fallback:
            label += " [yellow](fallback)[/]"
        console.print(f"[dim]{label}[/]\n")

        async for chunk in run.stream:
            if chunk.tool_progress is not None:
                console.print(f"\n[dim]⚙ {chunk.tool_name}: {chunk.tool_progress.get('state')}[/]")
            elif chunk.text:
                console.print(chunk.text, end="", soft_wrap=True, highlight=False)

        audit = await pipeline.finish(run)
        console.print(
            f"\n\n[dim]{audit.tokens_used} tokens · {audit.duration_ms} ms · "
            f"tools: {', '.join(audit.tools_invoked) or 'none'}[/]"
        )

    asyncio.run(_run())


@app.command()
def quota(
    user_id: str = typer.Argument(..., help="Profile id"),
    config: Optional[Path] = typer.Option(None, help="Routing YAML override"),
):
    """Show remaining monthly credits for a user."""
    from lexia.billing.usage import QuotaManager, get_period_start
    from lexia.integrations.supabase_client import LexiaDB

    settings = _get_settings(config)
    _check_env_key("SUPABASE_URL", "Database connection")
    _check_env_key("SUPABASE_SERVICE_KEY", "Database authentication")

    manager = QuotaManager(LexiaDB(plan_credits=settings.plan_credits), settings.credits_by_intent)

    async def _run():
        plan = await manager.get_user_plan(user_id)
        usage = await manager.get_current_period_usage(user_id)
        status = await manager.check_credits_remaining(user_id)
        return plan, usage, status

    plan, usage, status = asyncio.run(_run())
    color = "green" if status.allowed else "red"
    console.print(Panel(
        f"Plan: [bold]{plan.slug}[/] ({plan.credits_per_month} credits/month)\n"
        f"Period: {get_period_start().isoformat()}\n"
        f"Used: {usage.credits_used:g} credits, {usage.tokens_used:,} tokens\n"
        f"Remaining: [{color}]{status.remaining:g}[/] / {status.limit}",
        title=f"Quota: {user_id}",
    ))


if __name__ == "__main__":
    app()
