from rich.markup import escape
from rich.table import Table
import typer

from ...domain import HealthStatus, ServerHealth
from ..runner import console, emit_json, run_with_service

app = typer.Typer(help="Server health")

HEALTH_STYLES = {
    HealthStatus.RUNNING: "green",
    HealthStatus.STARTING: "cyan",
    HealthStatus.STOPPED: "yellow",
    HealthStatus.ERROR: "red",
}


def print_health(health: ServerHealth) -> None:
    style = HEALTH_STYLES.get(health.status, "white")
    console.print(f"Server: [cyan]{health.server_id}[/cyan]")
    console.print(f"Status: [{style}]{health.status.value}[/{style}]")
    if health.message:
        console.print(f"Message: {escape(health.message)}")
    if health.checks:
        table = Table()
        table.add_column("Check")
        table.add_column("Status")
        table.add_column("Message")
        for check in health.checks:
            table.add_row(check.name, check.status, escape(check.message))
        console.print(table)


@app.command()
def show(
    server_id: str = typer.Argument(...),
    refresh: bool = typer.Option(False, "--refresh", help="Ask the backend instead of the store"),
    json_output: bool = typer.Option(False, "--json", help="Output as JSON"),
):
    """Show server health"""
    if refresh:
        health = run_with_service(lambda service: service.refresh_server_health(server_id))
    else:
        health = run_with_service(lambda service: service.get_server_health(server_id))
    if json_output:
        emit_json(health)
        return
    print_health(health)
