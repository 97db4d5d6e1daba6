"""
CLI entry point for the Agent Orchestrator.
"""

import asyncio
import logging
from dataclasses import fields

import click
from rich.console import Console
from rich.logging import RichHandler
from rich.panel import Panel
from rich.table import Table

from . import __version__
from .config import (
    DEFAULT_CONFIG_PATH,
    OrchestrationConfig,
    format_backend_help,
    get_backend_choices,
    load_config,
    save_config,
)
from .orchestrator import OrchestrationMode, OrchestrationResult, Orchestrator
from .task_analyzer import TaskAnalyzer


console = Console()


def _configure_logging(verbose: bool) -> None:
    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.WARNING,
        format="%(message)s",
        datefmt="[%X]",
        handlers=[RichHandler(console=console, rich_tracebacks=True, show_path=False)],
        force=True,
    )


@click.group()
@click.version_option(version=__version__)
@click.option("--verbose", "-v", is_flag=True, help="Show debug logging.")
def main(verbose: bool):
    """Agent Orchestrator - decide when to split a task across agents, then run it

    Each task is scored for complexity. Simple tasks fall back to a single
    agent; complex ones run through a coordination strategy (sequential,
    parallel, pipeline, hierarchical or swarm).

    \b
    Configuration:
      Config file: .swarm/orchestration.json
      CLI flags override config file settings.

    \b
    Quick start:
      orchestrate analyze "task"   Score a task without running it
      orchestrate run "task"       Orchestrate a task
      orchestrate health           Show engine health
    """
    _configure_logging(verbose)


@main.command()
@click.argument("query")
def analyze(query: str):
    """Analyze a task and show the recommended strategy (no agents run)."""
    analyzer = TaskAnalyzer()
    analysis = analyzer.analyze_task(query)
    recommendation = analyzer.get_strategy_recommendation(query)

    console.print(f"\n[bold]🔍 Analyzing:[/] {query}\n")

    table = Table(show_header=False, box=None)
    table.add_column("Field", style="cyan")
    table.add_column("Value")
    table.add_row("Complexity", f"{analysis.complexity:.2f}")
    table.add_row("Categories", ", ".join(c.value for c in analysis.categories))
    table.add_row("Strategy", f"[bold]{analysis.strategy.value}[/] (confidence {recommendation.confidence:.2f})")
    table.add_row("Alternatives", ", ".join(s.value for s in recommendation.alternatives) or "-")
    table.add_row("Agents", ", ".join(a.value for a in analysis.required_agents))
    table.add_row("Risk", analysis.risk_level.value)
    table.add_row("Estimated duration", f"{analysis.estimated_duration_minutes} min")
    table.add_row("Memory", f"{analysis.resources.memory_mb} MB")
    console.print(table)
    console.print(f"\n[dim]{recommendation.explanation}[/]")

    threshold = load_config().complexity_threshold
    verdict = "orchestrate" if analysis.complexity > threshold else "single agent"
    console.print(f"\n[bold]Decision:[/] {verdict} [dim](threshold {threshold})[/]")


def _print_result(result: OrchestrationResult) -> None:
    console.print("\n" + "━" * 50)
    if not result.success:
        console.print(f"[bold red]✗ Orchestration failed:[/] {result.error}")
    elif result.orchestrated:
        console.print(
            f"[bold green]✓ Completed[/] via [cyan]{result.strategy}[/] "
            f"with {len(result.agents)} agents in {result.execution_time_ms / 1000:.1f}s"
        )
    else:
        console.print("[bold yellow]→ Not orchestrated[/]")

    for warning in result.warnings:
        console.print(f"   [yellow]• {warning}[/]")

    if result.plan:
        plan = result.plan
        console.print(
            f"   [dim]Plan {plan['id']}: {plan['completed_steps']}/{plan['total_steps']} steps completed, "
            f"{plan['failed_steps']} failed ({plan['status']})[/]"
        )
    if result.output:
        console.print(Panel(result.output, title="Output", border_style="green"))


async def _run_task(orchestrator: Orchestrator, query: str, mode: OrchestrationMode) -> OrchestrationResult:
    await orchestrator.initialize()
    try:
        return await orchestrator.orchestrate_task(query, mode=mode)
    finally:
        await orchestrator.shutdown()


@main.command()
@click.argument("query")
@click.option(
    "--mode", "-m",
    type=click.Choice([m.value for m in OrchestrationMode]),
    default=OrchestrationMode.ADAPTIVE.value,
    help="adaptive (default) decides from complexity; full_orchestration always orchestrates.",
)
@click.option(
    "--config", "-c",
    type=click.Path(exists=True),
    help="Path to config file. Default: .swarm/orchestration.json",
)
@click.option(
    "--model-backend",
    type=click.Choice(get_backend_choices("model")),
    help=format_backend_help("model", "Model backend for agents:"),
)
@click.option(
    "--llm-model",
    default=None,
    help="Model for the anthropic-api backend (default: claude-sonnet-4-20250514).",
)
@click.option(
    "--timeout-minutes", "-t",
    type=float,
    default=None,
    help="Wall-clock limit for the orchestration (default: 30).",
)
def run(
    query: str,
    mode: str,
    config: str | None,
    model_backend: str | None,
    llm_model: str | None,
    timeout_minutes: float | None,
):
    """Run a task through the orchestration engine.

    Exits with status 1 when orchestration fails; the task should then be
    handled by a single agent.
    """
    console.print(
        Panel.fit(
            f"[bold blue]Agent Orchestrator v{__version__}[/]",
            border_style="blue",
        )
    )

    try:
        orchestration_config = load_config(config)
        overrides = {}
        if model_backend:
            overrides["model_backend"] = model_backend
        if llm_model:
            overrides["llm_model"] = llm_model
        if timeout_minutes is not None:
            overrides["timeout_minutes"] = timeout_minutes
        if overrides:
            orchestration_config = OrchestrationConfig.from_dict({**orchestration_config.to_dict(), **overrides})

        console.print(f"\n[bold blue]📋 Task:[/] {query}\n")
        orchestrator = Orchestrator(config=orchestration_config)
        result = asyncio.run(_run_task(orchestrator, query, OrchestrationMode(mode)))
    except KeyboardInterrupt:
        console.print("\n[yellow]Interrupted by user[/]")
        raise SystemExit(1)
    except Exception as e:
        console.print(f"\n[bold red]Error:[/] {e}")
        raise SystemExit(1)

    _print_result(result)
    if not result.success:
        raise SystemExit(1)


@main.command()
def health():
    """Show engine health, limits and system resource readings."""
    try:
        orchestrator = Orchestrator(config=load_config())
        status = orchestrator.get_health_status()
        system = orchestrator.monitor.get_real_time_status()
    except Exception as e:
        console.print(f"[bold red]Error:[/] {e}")
        raise SystemExit(1)

    colour = "green" if status["is_healthy"] else "red"
    console.print(f"\n[bold]🩺 Health:[/] [{colour}]{'healthy' if status['is_healthy'] else 'unhealthy'}[/]\n")

    table = Table(show_header=True, header_style="bold cyan")
    table.add_column("Metric", style="white")
    table.add_column("Value", style="green")
    table.add_row("Active tasks", str(status["active_tasks"]))
    table.add_row("Reserved memory", f"{status['memory_usage_mb']} MB ({status['memory_usage_ratio']:.0%})")
    table.add_row("Swarm", status["swarm_status"])
    table.add_row("Error status", status["error_status"])
    table.add_row("Process memory", f"{system['memory_mb']} MB")
    table.add_row("CPU", f"{system['cpu_percent']}%")
    table.add_row("System health", system["system_health"])
    console.print(table)

    for issue in status["issues"]:
        console.print(f"   [yellow]• {issue}[/]")


@main.group()
def config():
    """View and modify orchestration configuration.

    \b
    Commands:
      show    Display current configuration
      set     Update a configuration value
    """
    pass


# Map CLI keys (with hyphens) to config keys (with underscores)
CONFIG_KEYS = {f.name.replace("_", "-"): f.name for f in fields(OrchestrationConfig)}

BACKEND_TYPES = {"model_backend": "model", "store_backend": "store"}

TRUE_VALUES = {"true", "1", "yes", "on"}
FALSE_VALUES = {"false", "0", "no", "off"}


def _parse_value(config_key: str, value: str):
    """Convert a CLI string to the type of the config field's default."""
    default = getattr(OrchestrationConfig(), config_key)
    if isinstance(default, bool):
        lowered = value.lower()
        if lowered in TRUE_VALUES:
            return True
        if lowered in FALSE_VALUES:
            return False
        raise ValueError("must be true or false")
    if isinstance(default, int):
        return int(value)
    if isinstance(default, float):
        return float(value)
    return value


@config.command("show")
def config_show():
    """Display current configuration in a formatted table."""
    try:
        orchestration_config = load_config()
    except ValueError as e:
        console.print(f"[bold red]Error:[/] {e}")
        raise SystemExit(1)

    config_dict = orchestration_config.to_dict()
    source = DEFAULT_CONFIG_PATH if DEFAULT_CONFIG_PATH.exists() else "(defaults)"
    console.print("\n[bold]⚙️  Orchestration Configuration[/]\n")
    console.print(f"   [dim]Config file:[/] {source}\n")

    table = Table(show_header=True, header_style="bold cyan")
    table.add_column("Setting", style="white")
    table.add_column("Current Value", style="green")
    table.add_column("Valid Options", style="dim")

    for cli_key, config_key in CONFIG_KEYS.items():
        backend_type = BACKEND_TYPES.get(config_key)
        if backend_type:
            valid_options = ", ".join(get_backend_choices(backend_type))
        else:
            valid_options = f"({type(config_dict[config_key]).__name__})"
        table.add_row(cli_key, str(config_dict[config_key]), valid_options)

    console.print(table)


@config.command("set")
@click.argument("key")
@click.argument("value")
def config_set(key: str, value: str):
    """Set a configuration value.

    \b
    KEY is a setting name such as complexity-threshold or model-backend.
    VALUE must be valid for the given key.

    \b
    Examples:
      orchestrate config set complexity-threshold 0.5
      orchestrate config set model-backend anthropic-api
    """
    if key not in CONFIG_KEYS:
        valid_keys = ", ".join(CONFIG_KEYS.keys())
        console.print(f"[bold red]Error:[/] Unknown config key '{key}'")
        console.print(f"Valid keys: {valid_keys}")
        raise SystemExit(1)

    config_key = CONFIG_KEYS[key]
    try:
        parsed = _parse_value(config_key, value)
        current = load_config()
        updated = OrchestrationConfig.from_dict({**current.to_dict(), config_key: parsed})
    except ValueError as e:
        console.print(f"[bold red]Error:[/] Invalid value '{value}' for {key}: {e}")
        raise SystemExit(1)

    save_config(updated)
    console.print(f"[green]✓[/] Set {key} = {parsed}")


if __name__ == "__main__":
    main()
