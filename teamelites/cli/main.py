"""teamelites CLI — inspect and drive the swarm registry.

`teamelites status` shows the registry summary and routing counters,
`teamelites archive` lists the elites, `teamelites mode swarm` switches
routing, and `teamelites evolve telegram-coding ...` runs generations
against the configured Hub.
"""

from __future__ import annotations

import asyncio
import random
from pathlib import Path
from typing import Optional

import typer
from rich.console import Console
from rich.panel import Panel
from rich.table import Table

from teamelites.config import settings
from teamelites.coordination.hub import HubClient
from teamelites.events.telemetry import configure_telemetry, read_swarm_events
from teamelites.evolution.engine import EvolutionEngine
from teamelites.exceptions import TeamElitesError
from teamelites.log import configure_logging
from teamelites.registry.store import SwarmStore
from teamelites.routing.niche import parse_niche_key
from teamelites.types import SwarmMode

app = typer.Typer(
    name="teamelites",
    help="TEAM-Elites -- niche-routed agent swarm with MAP-Elites evolution.",
    no_args_is_help=True,
)
console = Console()

DataDirOption = typer.Option(None, "--data-dir", help="Registry directory (default: TEAMELITES_DATA_DIR)")


@app.callback()
def _main(
    log_level: Optional[str] = typer.Option(None, "--log-level", help="Override TEAMELITES_LOG_LEVEL"),
):
    configure_logging(log_level or settings.log_level)


def _store(data_dir: Optional[Path]) -> SwarmStore:
    directory = data_dir or settings.data_dir
    configure_telemetry(directory if settings.telemetry_enabled else None)
    return SwarmStore(directory)


@app.command()
def status(data_dir: Optional[Path] = DataDirOption):
    """Show mode, archive size and routing counters."""
    store = _store(data_dir)
    summary = store.summary()
    stats = store.get_route_stats()

    console.print(Panel(
        f"Registry:   {store.path}\n"
        f"Mode:       [bold]{summary['mode']}[/bold]\n"
        f"Generation: {summary['generation']}\n"
        f"Agents:     {summary['agents']}\n"
        f"Elites:     {summary['elites']}\n"
        f"Archive:    {'[green]ready[/green]' if summary['archive_ready'] else '[yellow]not initialized[/yellow]'}\n"
        f"Routed:     {stats.success_count} ok / {stats.fallback_count} fallback",
        title="Swarm Status",
        border_style="cyan",
    ))

    if store.agents:
        table = Table(title="Agents")
        table.add_column("Niche", style="cyan")
        table.add_column("Agent")
        table.add_column("Blueprint", style="dim")
        table.add_column("Routed", justify="right")
        for entry in store.agents:
            table.add_row(
                entry.niche_key,
                entry.agent_id,
                entry.blueprint_id,
                str(stats.success_by_niche.get(entry.niche_key, 0)),
            )
        console.print(table)

    unserved = store.chronically_unserved()
    if unserved:
        console.print(
            "[yellow]Unserved niches:[/yellow] "
            + ", ".join(f"{k} ({stats.unserved_by_niche[k]})" for k in unserved)
        )


@app.command()
def archive(data_dir: Optional[Path] = DataDirOption):
    """List the elite blueprint of every niche."""
    store = _store(data_dir)
    blueprints = sorted(store.blueprints, key=lambda bp: bp.niche.key)
    if not blueprints:
        console.print("[dim]Archive is empty.[/dim]")
        return

    table = Table(title=f"Elites (generation {store.generation})")
    table.add_column("Niche", style="cyan")
    table.add_column("Blueprint", style="dim")
    table.add_column("Gen", justify="right")
    table.add_column("Team")
    table.add_column("Strategy")
    table.add_column("Fitness", justify="right", style="green")
    for bp in blueprints:
        table.add_row(
            bp.niche.key,
            bp.id,
            str(bp.generation),
            ", ".join(f"{a.role.value}:{a.model.split('/')[-1]}" for a in bp.agents),
            bp.coordination_strategy.value,
            f"{bp.fitness.composite:.3f}",
        )
    console.print(table)


@app.command()
def mode(
    new_mode: SwarmMode = typer.Argument(help="single or swarm"),
    data_dir: Optional[Path] = DataDirOption,
):
    """Switch between single-agent and swarm routing."""
    store = _store(data_dir)
    store.mode = new_mode
    console.print(f"Mode set to [bold]{new_mode.value}[/bold]")


@app.command()
def evolve(
    niche_keys: list[str] = typer.Argument(help="Niche keys, e.g. telegram-coding"),
    generations: int = typer.Option(1, "--generations", "-g", help="Generations to run"),
    seed: Optional[int] = typer.Option(None, "--seed", help="Seed for reproducible variation"),
    data_dir: Optional[Path] = DataDirOption,
):
    """Run evolution generations for the given niches."""
    try:
        niches = [parse_niche_key(k) for k in niche_keys]
    except ValueError as e:
        console.print(f"[red]{e}[/red]")
        raise typer.Exit(2)

    store = _store(data_dir)
    engine = EvolutionEngine(
        HubClient(settings.hub_url, timeout=settings.rpc_timeout),
        store,
        config=settings.evolution_config(),
        rng=random.Random(seed) if seed is not None else None,
    )

    async def _run():
        await engine.initialize_archive(niches)
        return [await engine.run_generation(niches) for _ in range(generations)]

    try:
        reports = asyncio.run(_run())
    except TeamElitesError as e:
        console.print(f"[red]Evolution failed:[/red] {e}")
        raise typer.Exit(1)

    table = Table(title="Generations")
    table.add_column("#", justify="right")
    table.add_column("Candidates", justify="right")
    table.add_column("Merged", justify="right", style="green")
    table.add_column("Rejected", justify="right")
    table.add_column("Failed", justify="right", style="red")
    table.add_column("Archive gen", justify="right")
    for i, report in enumerate(reports, 1):
        table.add_row(
            str(i), str(report.candidates), str(report.merged),
            str(report.rejected), str(report.failed), str(report.generation),
        )
    console.print(table)
    for report in reports:
        for error in report.errors:
            console.print(f"[red]  {error}[/red]")


@app.command()
def events(
    limit: int = typer.Option(20, "--limit", "-n", help="Max events"),
    data_dir: Optional[Path] = DataDirOption,
):
    """Show the most recent swarm telemetry events."""
    _store(data_dir)
    entries = read_swarm_events(limit)
    if not entries:
        console.print("[dim]No events recorded.[/dim]")
        return

    table = Table(title="Swarm Events")
    table.add_column("Time", style="dim")
    table.add_column("Event", style="cyan")
    table.add_column("Details")
    for entry in entries:
        details = {k: v for k, v in entry.items() if k not in ("timestamp", "event")}
        table.add_row(
            str(entry.get("timestamp", ""))[:19],
            str(entry.get("event", "")),
            ", ".join(f"{k}={v}" for k, v in details.items()),
        )
    console.print(table)


def main() -> None:
    app()


if __name__ == "__main__":
    main()
