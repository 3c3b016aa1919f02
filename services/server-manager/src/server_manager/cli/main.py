import sys

import typer

from shared.logging import detach_handlers

from ..config import get_settings
from .commands import backend, health, servers

app = typer.Typer()


@app.callback()
def callback(
    ctx: typer.Context,
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Log at DEBUG to stderr"),
):
    """
    Server manager CLI
    """
    get_settings().configure_logging("DEBUG" if verbose else "WARNING", stream=sys.stderr)
    # handlers hold the stderr of this invocation only
    ctx.call_on_close(detach_handlers)


app.add_typer(servers.app, name="servers")
app.add_typer(backend.app, name="backend")
app.add_typer(health.app, name="health")
