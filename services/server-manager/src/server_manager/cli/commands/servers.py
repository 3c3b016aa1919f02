from typing import Optional

from rich.markup import escape
from rich.table import Table
import typer

from ...domain import CreateServerRequest, Server, ServerFilter, ServerStatus, ServerType
from ..runner import console, emit_json, err_console, run_with_service

app = typer.Typer(help="Manage servers")

STATUS_STYLES = {
    ServerStatus.RUNNING: "green",
    ServerStatus.STOPPED: "yellow",
    ServerStatus.ERROR: "red",
    ServerStatus.CREATING: "cyan",
    ServerStatus.DELETING: "magenta",
}


def parse_env(pairs: list[str]) -> dict[str, str]:
    """Turn repeated KEY=VALUE options into a mapping."""
    env = {}
    for pair in pairs:
        key, sep, value = pair.partition("=")
        if not sep or not key:
            raise typer.BadParameter(f"expected KEY=VALUE, got {pair!r}", param_hint="--env")
        env[key] = value
    return env


def print_server(server: Server) -> None:
    style = STATUS_STYLES.get(server.status, "white")
    console.print(f"ID: [cyan]{server.id}[/cyan]")
    console.print(f"Name: [magenta]{server.name}[/magenta]")
    console.print(f"Type: {server.type.value}  Region: {server.region}")
    console.print(f"Status: [{style}]{server.status.value}[/{style}]")
    if server.status_message:
        console.print(f"Message: {escape(server.status_message)}")
    if server.backend_ref:
        console.print(f"Backend ref: {server.backend_ref}")
    console.print(f"Created: {server.created_at.isoformat()}  Updated: {server.updated_at.isoformat()}")


def print_servers(servers: list[Server]) -> None:
    if not servers:
        console.print("[yellow]No servers found[/yellow]")
        return

    table = Table(title="Servers")
    table.add_column("ID", style="cyan", no_wrap=True)
    table.add_column("Name", style="magenta")
    table.add_column("Type")
    table.add_column("Region")
    table.add_column("Status")
    table.add_column("Created")
    for server in servers:
        style = STATUS_STYLES.get(server.status, "white")
        table.add_row(
            server.id,
            server.name,
            server.type.value,
            server.region,
            f"[{style}]{server.status.value}[/{style}]",
            server.created_at.strftime("%Y-%m-%d %H:%M:%S"),
        )
    console.print(table)


@app.command("list")
def list_servers(
    server_type: Optional[ServerType] = typer.Option(None, "--type", "-t"),
    region: Optional[str] = typer.Option(None, "--region", "-r"),
    status: Optional[ServerStatus] = typer.Option(None, "--status", "-s"),
    limit: Optional[int] = typer.Option(None, "--limit", min=1),
    offset: int = typer.Option(0, "--offset", min=0),
    json_output: bool = typer.Option(False, "--json", help="Output as JSON"),
):
    """List servers, most recent first"""
    filters = ServerFilter(type=server_type, region=region, status=status, limit=limit, offset=offset)
    servers = run_with_service(lambda service: service.list_servers(filters))
    if json_output:
        emit_json(servers)
        return
    print_servers(servers)


@app.command()
def get(
    server_id: str = typer.Argument(...),
    json_output: bool = typer.Option(False, "--json", help="Output as JSON"),
):
    """Show one server"""
    server = run_with_service(lambda service: service.get_server(server_id))
    if json_output:
        emit_json(server)
        return
    print_server(server)


@app.command()
def create(
    name: str = typer.Option(..., "--name", "-n"),
    server_type: ServerType = typer.Option(..., "--type", "-t"),
    region: str = typer.Option(..., "--region", "-r"),
    env: list[str] = typer.Option([], "--env", "-e", help="KEY=VALUE, repeatable"),
    command: Optional[str] = typer.Option(None, "--command", help="Override the image command"),
    json_output: bool = typer.Option(False, "--json", help="Output as JSON"),
):
    """Create and provision a server"""
    config: dict = {}
    if env:
        config["environment"] = parse_env(env)
    if command:
        config["command"] = command
    request = CreateServerRequest(name=name, type=server_type, region=region, config=config)

    server = run_with_service(lambda service: service.create_server(request))
    if json_output:
        emit_json(server)
        return
    console.print("[bold green]✓ Server created[/bold green]")
    print_server(server)


@app.command()
def start(server_id: str = typer.Argument(...)):
    """Start a stopped server"""
    server = run_with_service(lambda service: service.start_server(server_id))
    console.print(f"[green]✓[/green] {server.name} is {server.status.value}")


@app.command()
def stop(server_id: str = typer.Argument(...)):
    """Stop a running server"""
    server = run_with_service(lambda service: service.stop_server(server_id))
    console.print(f"[green]✓[/green] {server.name} is {server.status.value}")


@app.command()
def restart(server_id: str = typer.Argument(...)):
    """Stop, wait, start"""
    server = run_with_service(lambda service: service.restart_server(server_id))
    console.print(f"[green]✓[/green] {server.name} restarted")


@app.command()
def delete(
    server_id: str = typer.Argument(...),
    yes: bool = typer.Option(False, "--yes", "-y", help="Skip confirmation"),
):
    """Tear down backend resources and delete a server"""
    if not yes:
        typer.confirm(f"Delete server {server_id} and its backend resources?", abort=True)
    run_with_service(lambda service: service.delete_server(server_id))
    console.print(f"[green]✓[/green] Server {server_id} deleted")


@app.command()
def scale(
    server_id: str = typer.Argument(...),
    replicas: int = typer.Argument(..., min=0),
):
    """Set the desired replica count (cluster backend only)"""
    run_with_service(lambda service: service.scale_server(server_id, replicas))
    console.print(f"[green]✓[/green] Server {server_id} scaled to {replicas}")


@app.command()
def recover(json_output: bool = typer.Option(False, "--json", help="Output as JSON")):
    """Mark servers left in creating/deleting by a crashed process as error"""
    servers = run_with_service(lambda service: service.recover_interrupted())
    if json_output:
        emit_json(servers)
        return
    if not servers:
        err_console.print("Nothing to recover")
        return
    print_servers(servers)
