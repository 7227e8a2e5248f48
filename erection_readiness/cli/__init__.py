"""
Command Line Interface for the Erection Readiness engine.
"""

import json
from contextlib import contextmanager
from typing import Iterator

import typer
import uvicorn
from rich import print as rprint
from rich.console import Console
from rich.panel import Panel
from rich.table import Table
from sqlalchemy.orm import Session

from ..config import get_settings
from ..db.base import get_session_local, init_database
from ..db.store import EntityStore
from ..engine.cascade import CascadeCoordinator
from ..engine.errors import ValidationError
from ..engine.graph import find_cycles, validate_edge
from ..logging_config import configure_logging

app = typer.Typer(help="Erection Readiness - constraint-gated readiness for steel erection")
console = Console()


@contextmanager
def _session() -> Iterator[Session]:
    db = get_session_local()()
    try:
        yield db
    finally:
        db.close()


def _fail(exc: ValidationError) -> None:
    console.print(f"❌ {exc.code}: {exc.message}")
    if exc.details:
        console.print(json.dumps(exc.details, indent=2, default=str))
    raise typer.Exit(code=1)


@app.callback()
def main_callback() -> None:
    configure_logging()


@app.command()
def init_db():
    """Create all database tables."""
    init_database()
    console.print("✅ Database initialized")


@app.command()
def recompute(
    project_id: str = typer.Argument(..., help="Project to recompute"),
    as_json: bool = typer.Option(False, "--json", help="Print the raw result as JSON"),
):
    """Full constraint sync and re-evaluation of a project."""
    with _session() as db:
        try:
            result = CascadeCoordinator(EntityStore(db)).recompute_project(project_id)
        except ValidationError as exc:
            _fail(exc)

    if as_json:
        console.print_json(json.dumps(result.to_dict()))
        return

    table = Table(title=f"Recompute {project_id}", show_header=True, header_style="bold magenta")
    table.add_column("Step", style="cyan")
    table.add_column("Succeeded", style="green")
    table.add_column("Failed", style="red")
    table.add_row(
        "Constraints opened / updated / cleared",
        f"{result.constraints_opened} / {result.constraints_updated} / {result.constraints_cleared}",
        "",
    )
    table.add_row("Tasks evaluated", str(result.tasks_evaluated), str(result.tasks_failed))
    table.add_row("Packages rolled up", str(result.packages_rolled_up), str(result.packages_failed))
    table.add_row("Permissions updated", str(result.permissions_updated), str(result.permissions_failed))
    console.print(table)

    for failure in result.failures:
        console.print(f"🟠 {failure['stage']} {failure['id']}: {failure['error']}")
    if result.failures:
        raise typer.Exit(code=2)


@app.command(name="validate-edge")
def validate_edge_cmd(
    task_id: str = typer.Argument(..., help="Task that would gain a predecessor"),
    predecessor_id: str = typer.Argument(..., help="Proposed predecessor task"),
    project_id: str = typer.Option(..., "--project", help="Project holding both tasks"),
):
    """Check whether a predecessor edge would create a cycle."""
    with _session() as db:
        try:
            result = validate_edge(task_id, predecessor_id, EntityStore(db).tasks(project_id))
        except ValidationError as exc:
            _fail(exc)

    if result.valid:
        console.print(f"✅ {predecessor_id} -> {task_id} is acyclic")
        return
    console.print(f"❌ {result.reason}: {' -> '.join(result.cycle)}")
    raise typer.Exit(code=1)


@app.command()
def check_cycles(
    project_id: str = typer.Argument(..., help="Project to audit"),
):
    """Audit a project's predecessor graph for existing cycles."""
    with _session() as db:
        cycles = find_cycles(EntityStore(db).tasks(project_id))

    if not cycles:
        console.print("✅ No cycles found")
        return
    table = Table(title="Predecessor cycles", show_header=True, header_style="bold red")
    table.add_column("#", style="yellow")
    table.add_column("Path")
    for index, cycle in enumerate(cycles, start=1):
        table.add_row(str(index), " -> ".join(cycle))
    console.print(table)
    raise typer.Exit(code=1)


@app.command()
def serve(
    host: str = typer.Option(None, help="Host to bind the server to"),
    port: int = typer.Option(None, help="Port to run the API server on"),
    reload: bool = typer.Option(False, help="Reload on code changes"),
):
    """Run the HTTP API."""
    settings = get_settings()
    host = host or settings.api_host
    port = port or settings.api_port
    rprint(Panel.fit(f"🏗️ {settings.app_name} on http://{host}:{port}", style="bold blue"))
    uvicorn.run("erection_readiness.api:app", host=host, port=port, reload=reload)


def main():
    """Main CLI entry point."""
    app()


if __name__ == "__main__":
    main()
