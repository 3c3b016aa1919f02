from contextlib import asynccontextmanager
import json
import logging
from unittest.mock import patch

import pytest
from typer.testing import CliRunner

from server_manager.cli import app
from server_manager.domain import ServerStatus

runner = CliRunner()


@pytest.fixture
def cli_service(service):
    """Point every CLI command at one in-memory service."""

    @asynccontextmanager
    async def scope(settings=None, configure_logging=True):
        yield service

    with patch("server_manager.cli.runner.service_scope", scope):
        yield service


def invoke(*args, **kwargs):
    return runner.invoke(app, list(args), **kwargs)


def create(name="vpn-1"):
    result = invoke("servers", "create", "--name", name, "--type", "vpn", "--region", "us-east-1", "--json")
    assert result.exit_code == 0, result.output
    return json.loads(result.stdout)


def test_create_json(cli_service):
    result = invoke(
        "servers", "create",
        "--name", "vpn-1", "--type", "vpn", "--region", "us-east-1",
        "--env", "MTU=1420", "--command", "vpn-core --fast",
        "--json",
    )

    assert result.exit_code == 0, result.output
    data = json.loads(result.stdout)
    assert data["status"] == "running"
    assert data["config"] == {"environment": {"MTU": "1420"}, "command": "vpn-core --fast"}


def test_create_human_output(cli_service):
    result = invoke("servers", "create", "--name", "vpn-1", "--type", "vpn", "--region", "us-east-1")

    assert result.exit_code == 0, result.output
    assert "Server created" in result.output


def test_create_rejects_malformed_env(cli_service):
    result = invoke(
        "servers", "create", "--name", "vpn-1", "--type", "vpn", "--region", "us-east-1", "--env", "MTU"
    )
    assert result.exit_code == 2


def test_create_invalid_name_exits_1(cli_service):
    result = invoke("servers", "create", "--name", "Bad_Name", "--type", "vpn", "--region", "us-east-1")

    assert result.exit_code == 1
    assert "invalid server name" in result.output


def test_list_and_get(cli_service):
    created = create()

    listed = json.loads(invoke("servers", "list", "--json").stdout)
    assert [s["id"] for s in listed] == [created["id"]]

    table = invoke("servers", "list")
    assert table.exit_code == 0
    assert "Servers" in table.output

    fetched = json.loads(invoke("servers", "get", created["id"], "--json").stdout)
    assert fetched["name"] == "vpn-1"


def test_list_filters(cli_service):
    create("vpn-1")

    result = invoke("servers", "list", "--status", "stopped", "--json")

    assert result.exit_code == 0
    assert json.loads(result.stdout) == []


def test_get_unknown_exits_1(cli_service):
    result = invoke("servers", "get", "nope")

    assert result.exit_code == 1
    assert "server not found" in result.output


def test_stop_start_restart(cli_service):
    server_id = create()["id"]

    assert invoke("servers", "stop", server_id).exit_code == 0
    assert invoke("servers", "start", server_id).exit_code == 0
    assert invoke("servers", "restart", server_id).exit_code == 0

    conflict = invoke("servers", "start", server_id)
    assert conflict.exit_code == 1
    assert "already running" in conflict.output


def test_delete_requires_confirmation(cli_service):
    server_id = create()["id"]

    aborted = invoke("servers", "delete", server_id, input="n\n")
    assert aborted.exit_code == 1

    deleted = invoke("servers", "delete", server_id, "--yes")
    assert deleted.exit_code == 0
    assert json.loads(invoke("servers", "list", "--json").stdout) == []


def test_scale_and_backend_list(cli_service):
    server_id = create()["id"]

    assert invoke("servers", "scale", server_id, "3").exit_code == 0

    observed = json.loads(invoke("backend", "list", "--json").stdout)
    assert observed[0]["replicas"] == 3
    assert observed[0]["server_id"] == server_id


def test_scale_rejects_negative(cli_service):
    server_id = create()["id"]
    assert invoke("servers", "scale", server_id, "--", "-1").exit_code == 2


def test_health_placeholder_and_refresh(cli_service):
    server_id = create()["id"]

    stored = json.loads(invoke("health", "show", server_id, "--json").stdout)
    assert stored["placeholder"] is True

    refreshed = invoke("health", "show", server_id, "--refresh")
    assert refreshed.exit_code == 0
    assert "running" in refreshed.output


def test_recover(cli_service):
    create()

    result = invoke("servers", "recover")

    assert result.exit_code == 0
    assert "Nothing to recover" in result.output
    [server] = json.loads(invoke("servers", "list", "--json").stdout)
    assert server["status"] == ServerStatus.RUNNING.value


def stream_handlers() -> list[logging.Handler]:
    return [h for h in logging.getLogger().handlers if type(h) is logging.StreamHandler]


def test_logging_is_detached_after_each_command(cli_service):
    create()
    assert stream_handlers() == []

    result = invoke("servers", "get", "nope")
    assert result.exit_code == 1
    assert stream_handlers() == []
