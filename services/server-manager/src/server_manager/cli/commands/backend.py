from rich.table import Table
import typer

from ...orchestrators import ObservedServer
from ..runner import console, emit_json, run_with_service

app = typer.Typer(help="Inspect the active backend")


def print_observed(observed: list[ObservedServer]) -> None:
    if not observed:
        console.print("[yellow]No managed resources on the backend[/yellow]")
        return

    table = Table(title="Backend resources")
    table.add_column("Name", style="magenta")
    table.add_column("Server ID", style="cyan")
    table.add_column("Type")
    table.add_column("Region")
    table.add_column("Status")
    table.add_column("Ready", justify="right")
    for item in observed:
        table.add_row(
            item.name,
            item.server_id or "-",
            item.type or "-",
            item.region or "-",
            item.status.value,
            f"{item.ready_replicas}/{item.replicas}",
        )
    console.print(table)


@app.command("list")
def list_resources(json_output: bool = typer.Option(False, "--json", help="Output as JSON")):
    """List resources labelled as managed by server-manager"""
    observed = run_with_service(lambda service: service.list_backend_servers())
    if json_output:
        emit_json(observed)
        return
    print_observed(observed)
