"""Glue between synchronous typer commands and the async service."""

import asyncio
from collections.abc import Awaitable, Callable
import json
from typing import Any, TypeVar

from pydantic import BaseModel
from rich.console import Console
from rich.markup import escape
import typer

from shared.logging import correlation_scope

from ..errors import ServerManagerError
from ..main import service_scope
from ..service import ServerService

T = TypeVar("T")

console = Console()
err_console = Console(stderr=True)


def run_with_service(operation: Callable[[ServerService], Awaitable[T]]) -> T:
    """Build a service, run one operation against it, release it.

    Server-manager errors are printed and turned into exit code 1.
    """

    async def runner() -> T:
        with correlation_scope(source="cli"):
            async with service_scope(configure_logging=False) as service:
                return await operation(service)

    try:
        return asyncio.run(runner())
    except ServerManagerError as e:
        err_console.print(f"[bold red]Error:[/bold red] {escape(e.message)}")
        raise typer.Exit(code=1) from None


def to_jsonable(value: Any) -> Any:
    if isinstance(value, BaseModel):
        return value.model_dump(mode="json")
    if isinstance(value, list):
        return [to_jsonable(item) for item in value]
    return value


def emit_json(value: Any) -> None:
    typer.echo(json.dumps(to_jsonable(value), indent=2))
