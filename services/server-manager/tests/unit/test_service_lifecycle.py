"""Lifecycle behaviour of ServerService against in-memory doubles."""

import asyncio

from fakes import CallLog, FakeOrchestrator, InMemoryServerRepository
import pytest

from server_manager.domain import (
    ALLOWED_TRANSITIONS,
    CreateServerRequest,
    Server,
    ServerFilter,
    ServerStatus,
    ServerType,
    UpdateServerRequest,
)
from server_manager.errors import (
    ConflictError,
    InfraError,
    NotFoundError,
    UnsupportedOperationError,
    ValidationError,
)
from server_manager.service import ServerService


def vpn_request(name: str = "vpn-1", **overrides) -> CreateServerRequest:
    fields = {"name": name, "type": ServerType.VPN, "region": "us-east-1"}
    fields.update(overrides)
    return CreateServerRequest(**fields)


def assert_valid_history(repository: InMemoryServerRepository) -> None:
    for history in repository.status_history.values():
        assert history[0] == ServerStatus.CREATING
        for current, nxt in zip(history, history[1:]):
            assert nxt in ALLOWED_TRANSITIONS[current], f"{current} -> {nxt}"


class TestCreate:
    @pytest.mark.asyncio
    async def test_success_end_to_end(self, service, repository, orchestrator):
        server = await service.create_server(vpn_request())

        assert server.id
        assert server.status == ServerStatus.RUNNING
        assert server.created_at is not None
        assert server.updated_at >= server.created_at
        assert server.backend_ref == "ref-vpn-1"

        stored = await service.get_server(server.id)
        assert stored.status == ServerStatus.RUNNING
        assert stored.backend_ref == "ref-vpn-1"
        assert repository.status_history[server.id] == [ServerStatus.CREATING, ServerStatus.RUNNING]

    @pytest.mark.asyncio
    async def test_backend_failure_leaves_error_entity(self, service, repository, orchestrator):
        orchestrator.failures["create"] = RuntimeError("create container: image pull denied")

        with pytest.raises(InfraError, match="image pull denied") as exc_info:
            await service.create_server(vpn_request())

        servers = await service.list_servers()
        assert len(servers) == 1
        failed = await service.get_server(servers[0].id)
        assert failed.status == ServerStatus.ERROR
        assert "image pull denied" in failed.status_message
        assert isinstance(exc_info.value.cause, RuntimeError)
        assert_valid_history(repository)

    @pytest.mark.asyncio
    async def test_backend_error_kind_is_wrapped(self, service, orchestrator):
        orchestrator.failures["create"] = ConflictError("vpn-1 already exists")

        with pytest.raises(InfraError, match="already exists"):
            await service.create_server(vpn_request())

    @pytest.mark.asyncio
    async def test_duplicate_name_is_rejected_before_any_call(self, service, calls):
        first = await service.create_server(vpn_request())
        calls.clear()

        with pytest.raises(ConflictError, match=first.id):
            await service.create_server(vpn_request())

        assert calls == []
        assert [s.id for s in await service.list_servers()] == [first.id]

    @pytest.mark.asyncio
    async def test_name_is_free_again_after_delete(self, service):
        first = await service.create_server(vpn_request())
        await service.delete_server(first.id)

        second = await service.create_server(vpn_request())

        assert second.id != first.id
        assert second.status == ServerStatus.RUNNING

    @pytest.mark.asyncio
    async def test_error_status_persist_failure_is_not_fatal(self, service, repository, orchestrator):
        orchestrator.failures["create"] = RuntimeError("daemon gone")
        repository.fail_updates_with = RuntimeError("database unavailable")

        with pytest.raises(InfraError, match="daemon gone"):
            await service.create_server(vpn_request())

        # the creating row stays; a later recovery pass turns it into error
        [server] = await service.list_servers()
        assert server.status == ServerStatus.CREATING

    @pytest.mark.asyncio
    async def test_backend_timeout(self, repository, orchestrator):
        orchestrator.latency = 0.2
        service = ServerService(repository, orchestrator, backend_call_timeout=0.01)

        with pytest.raises(InfraError, match="timed out"):
            await service.create_server(vpn_request())

        [server] = await service.list_servers()
        assert server.status == ServerStatus.ERROR

    @pytest.mark.asyncio
    @pytest.mark.parametrize(
        "request_fields",
        [
            {"name": "", "type": ServerType.VPN, "region": "us-east-1"},
            {"name": "vpn-1", "type": None, "region": "us-east-1"},
            {"name": "vpn-1", "type": ServerType.VPN, "region": ""},
            {"name": "Not_Valid", "type": ServerType.VPN, "region": "us-east-1"},
        ],
    )
    async def test_validation(self, service, calls, request_fields):
        with pytest.raises(ValidationError):
            await service.create_server(CreateServerRequest(**request_fields))
        assert calls == []

    @pytest.mark.asyncio
    async def test_concurrent_creates_never_interleave(self):
        calls = CallLog()
        repository = InMemoryServerRepository(calls, latency=0.01)
        orchestrator = FakeOrchestrator(calls, latency=0.02)
        service = ServerService(repository, orchestrator)

        await asyncio.gather(
            service.create_server(vpn_request("vpn-a")),
            service.create_server(vpn_request("vpn-b")),
        )

        names = [name for _, name in calls]
        first = names[0]
        boundary = names.index(next(n for n in names if n != first))
        assert all(n == first for n in names[:boundary])
        assert all(n != first for n in names[boundary:])
        assert calls.for_name("vpn-a") == ["repo.create", "backend.create", "repo.update"]
        assert calls.for_name("vpn-b") == ["repo.create", "backend.create", "repo.update"]


class TestReads:
    @pytest.mark.asyncio
    async def test_get_unknown(self, service):
        with pytest.raises(NotFoundError):
            await service.get_server("nope")

    @pytest.mark.asyncio
    async def test_list_filters_and_order(self, service):
        a = await service.create_server(vpn_request("vpn-a"))
        b = await service.create_server(vpn_request("gw-b", type=ServerType.GATEWAY, region="eu-west-1"))
        c = await service.create_server(vpn_request("vpn-c"))

        assert [s.id for s in await service.list_servers()] == [c.id, b.id, a.id]
        assert [s.id for s in await service.list_servers(ServerFilter(type=ServerType.VPN))] == [c.id, a.id]
        assert [s.id for s in await service.list_servers(ServerFilter(region="eu-west-1"))] == [b.id]
        assert [s.id for s in await service.list_servers(ServerFilter(limit=1, offset=1))] == [b.id]

    @pytest.mark.asyncio
    async def test_reads_are_not_blocked_by_a_mutation(self, repository, orchestrator):
        orchestrator.latency = 0.05
        service = ServerService(repository, orchestrator)
        existing = await service.create_server(vpn_request("vpn-a"))

        create = asyncio.create_task(service.create_server(vpn_request("vpn-b")))
        await asyncio.sleep(0.01)
        # vpn-b is durably "creating" while its backend call is in flight
        listed = {s.name: s.status for s in await service.list_servers()}
        assert listed == {"vpn-a": ServerStatus.RUNNING, "vpn-b": ServerStatus.CREATING}
        assert (await service.get_server(existing.id)).status == ServerStatus.RUNNING
        await create


class TestStartStop:
    @pytest.mark.asyncio
    async def test_stop_then_start(self, service, orchestrator):
        server = await service.create_server(vpn_request())

        stopped = await service.stop_server(server.id)
        assert stopped.status == ServerStatus.STOPPED
        assert orchestrator.replicas["ref-vpn-1"] == 0

        started = await service.start_server(server.id)
        assert started.status == ServerStatus.RUNNING
        assert orchestrator.replicas["ref-vpn-1"] == 1

    @pytest.mark.asyncio
    async def test_start_running_is_conflict(self, service, calls):
        server = await service.create_server(vpn_request())
        calls.clear()

        with pytest.raises(ConflictError):
            await service.start_server(server.id)

        assert (await service.get_server(server.id)).status == ServerStatus.RUNNING
        assert calls == []

    @pytest.mark.asyncio
    async def test_stop_stopped_is_conflict(self, service):
        server = await service.create_server(vpn_request())
        await service.stop_server(server.id)

        with pytest.raises(ConflictError):
            await service.stop_server(server.id)
        assert (await service.get_server(server.id)).status == ServerStatus.STOPPED

    @pytest.mark.asyncio
    async def test_start_error_server_is_conflict(self, service, orchestrator):
        orchestrator.failures["create"] = RuntimeError("boom")
        with pytest.raises(InfraError):
            await service.create_server(vpn_request())
        [server] = await service.list_servers()

        with pytest.raises(ConflictError):
            await service.start_server(server.id)

    @pytest.mark.asyncio
    async def test_backend_failure_keeps_status(self, service, orchestrator):
        server = await service.create_server(vpn_request())
        orchestrator.failures["stop"] = RuntimeError("daemon timeout")

        with pytest.raises(InfraError, match="daemon timeout"):
            await service.stop_server(server.id)
        assert (await service.get_server(server.id)).status == ServerStatus.RUNNING

    @pytest.mark.asyncio
    async def test_missing_backend_resource(self, service, orchestrator):
        server = await service.create_server(vpn_request())
        orchestrator.replicas.clear()

        with pytest.raises(NotFoundError):
            await service.stop_server(server.id)

    @pytest.mark.asyncio
    async def test_restart(self, service, calls):
        server = await service.create_server(vpn_request())
        calls.clear()

        restarted = await service.restart_server(server.id)

        assert restarted.status == ServerStatus.RUNNING
        assert [op for op, _ in calls] == ["backend.stop", "repo.update", "backend.start", "repo.update"]

    @pytest.mark.asyncio
    async def test_restart_skips_start_when_stop_fails(self, service, orchestrator, calls):
        server = await service.create_server(vpn_request())
        await service.stop_server(server.id)
        calls.clear()

        with pytest.raises(ConflictError):
            await service.restart_server(server.id)
        assert calls == []


class TestDelete:
    @pytest.mark.asyncio
    async def test_tears_down_and_soft_deletes(self, service, repository, orchestrator):
        server = await service.create_server(vpn_request())

        await service.delete_server(server.id)

        assert "ref-vpn-1" not in orchestrator.replicas
        assert await service.list_servers() == []
        with pytest.raises(NotFoundError):
            await service.get_server(server.id)
        stored = repository.servers[server.id]
        assert stored.is_deleted is True
        assert stored.deleted_at is not None
        assert repository.status_history[server.id][-1] == ServerStatus.DELETING
        assert_valid_history(repository)

    @pytest.mark.asyncio
    async def test_delete_stopped(self, service):
        server = await service.create_server(vpn_request())
        await service.stop_server(server.id)
        await service.delete_server(server.id)
        assert await service.list_servers() == []

    @pytest.mark.asyncio
    async def test_absent_backend_resources_still_delete(self, service, orchestrator):
        server = await service.create_server(vpn_request())
        orchestrator.replicas.clear()
        orchestrator.servers.clear()

        await service.delete_server(server.id)
        assert await service.list_servers() == []

    @pytest.mark.asyncio
    async def test_teardown_failure_moves_to_error(self, service, repository, orchestrator):
        server = await service.create_server(vpn_request())
        orchestrator.failures["delete"] = RuntimeError("api server 500")

        with pytest.raises(InfraError, match="api server 500"):
            await service.delete_server(server.id)

        failed = await service.get_server(server.id)
        assert failed.status == ServerStatus.ERROR
        assert failed.is_deleted is False
        assert repository.status_history[server.id][-2:] == [ServerStatus.DELETING, ServerStatus.ERROR]

        # operators can retry from error
        del orchestrator.failures["delete"]
        await service.delete_server(server.id)
        assert await service.list_servers() == []

    @pytest.mark.asyncio
    async def test_failed_create_leaves_namesake_resources_alone(self, service, orchestrator, calls):
        # a resource named vpn-1 already runs on the backend, owned by nothing in this repository
        foreign = Server(name="vpn-1", type=ServerType.VPN, region="us-east-1")
        orchestrator.replicas["ref-vpn-1"] = 1
        orchestrator.servers["ref-vpn-1"] = foreign

        with pytest.raises(InfraError, match="already exists"):
            await service.create_server(vpn_request())
        [failed] = await service.list_servers()
        assert failed.status == ServerStatus.ERROR
        assert failed.backend_ref is None

        await service.delete_server(failed.id)

        assert orchestrator.replicas == {"ref-vpn-1": 1}
        assert "backend.delete" not in [op for op, _ in calls]
        assert await service.list_servers() == []

    @pytest.mark.asyncio
    async def test_error_server_is_not_torn_down_by_name(self, service, repository, orchestrator):
        live = await service.create_server(vpn_request())
        # a second row under the same name, as written by an older process
        stale = await repository.create(
            Server(name="vpn-1", type=ServerType.VPN, region="us-east-1", status=ServerStatus.ERROR)
        )

        await service.delete_server(stale.id)

        assert orchestrator.replicas == {"ref-vpn-1": 1}
        assert (await service.get_server(live.id)).status == ServerStatus.RUNNING

    @pytest.mark.asyncio
    async def test_unreferenced_resources_are_found_by_server_id(self, service, repository, orchestrator, calls):
        # the process died after the backend created resources but before backend_ref was saved
        server = await repository.create(
            Server(name="vpn-9", type=ServerType.VPN, region="us-east-1", status=ServerStatus.ERROR)
        )
        orchestrator.replicas["ref-vpn-9"] = 1
        orchestrator.servers["ref-vpn-9"] = server

        await service.delete_server(server.id)

        assert orchestrator.replicas == {}
        assert ("backend.delete", "ref-vpn-9") in calls

    @pytest.mark.asyncio
    async def test_delete_unknown(self, service):
        with pytest.raises(NotFoundError):
            await service.delete_server("nope")

    @pytest.mark.asyncio
    async def test_delete_twice(self, service):
        server = await service.create_server(vpn_request())
        await service.delete_server(server.id)
        with pytest.raises(NotFoundError):
            await service.delete_server(server.id)


class TestUpdate:
    @pytest.mark.asyncio
    async def test_patches_name_and_config(self, service, orchestrator, calls):
        server = await service.create_server(vpn_request(config={"environment": {"A": "1"}}))
        calls.clear()

        updated = await service.update_server(
            server.id, UpdateServerRequest(name="vpn-renamed", config={"command": "serve"})
        )

        assert updated.name == "vpn-renamed"
        assert updated.config == {"environment": {"A": "1"}, "command": "serve"}
        assert (await service.get_server(server.id)).name == "vpn-renamed"
        assert not [op for op, _ in calls if op.startswith("backend.")]

    @pytest.mark.asyncio
    async def test_rename_to_taken_name_is_conflict(self, service):
        server = await service.create_server(vpn_request())
        other = await service.create_server(vpn_request("vpn-2"))

        with pytest.raises(ConflictError):
            await service.update_server(other.id, UpdateServerRequest(name="vpn-1"))

        await service.update_server(server.id, UpdateServerRequest(name="vpn-1", config={"a": 1}))
        assert (await service.get_server(other.id)).name == "vpn-2"

    @pytest.mark.asyncio
    async def test_invalid_name(self, service):
        server = await service.create_server(vpn_request())
        with pytest.raises(ValidationError):
            await service.update_server(server.id, UpdateServerRequest(name="Bad Name"))


class TestScale:
    @pytest.mark.asyncio
    async def test_pass_through(self, service, orchestrator):
        server = await service.create_server(vpn_request())
        await service.scale_server(server.id, 3)

        [observed] = await service.list_backend_servers()
        assert observed.replicas == 3
        assert observed.server_id == server.id

    @pytest.mark.asyncio
    @pytest.mark.parametrize("replicas", [0, 1, 3])
    async def test_unsupported_is_reported(self, service, orchestrator, replicas):
        server = await service.create_server(vpn_request())
        orchestrator.failures["scale"] = UnsupportedOperationError("scaling is not supported")

        with pytest.raises(UnsupportedOperationError):
            await service.scale_server(server.id, replicas)


class TestLockDiscipline:
    @pytest.mark.asyncio
    async def test_lock_released_after_failure(self, service, orchestrator):
        orchestrator.failures["create"] = RuntimeError("boom")
        with pytest.raises(InfraError):
            await service.create_server(vpn_request("vpn-a"))
        del orchestrator.failures["create"]

        server = await asyncio.wait_for(service.create_server(vpn_request("vpn-b")), timeout=1)
        assert server.status == ServerStatus.RUNNING

    @pytest.mark.asyncio
    async def test_lock_released_after_cancellation(self, repository, orchestrator):
        orchestrator.latency = 10
        service = ServerService(repository, orchestrator, backend_call_timeout=60)

        task = asyncio.create_task(service.create_server(vpn_request("vpn-a")))
        await asyncio.sleep(0.01)
        task.cancel()
        with pytest.raises(asyncio.CancelledError):
            await task

        orchestrator.latency = 0
        server = await asyncio.wait_for(service.create_server(vpn_request("vpn-b")), timeout=1)
        assert server.status == ServerStatus.RUNNING


class TestRecovery:
    @pytest.mark.asyncio
    async def test_interrupted_creates_become_error(self, repository, orchestrator):
        orchestrator.latency = 10
        service = ServerService(repository, orchestrator)
        task = asyncio.create_task(service.create_server(vpn_request("vpn-a")))
        await asyncio.sleep(0.01)
        task.cancel()
        with pytest.raises(asyncio.CancelledError):
            await task

        recovered = await service.recover_interrupted()

        assert [s.name for s in recovered] == ["vpn-a"]
        assert recovered[0].status == ServerStatus.ERROR
        assert "interrupted" in recovered[0].status_message
        assert_valid_history(repository)

    @pytest.mark.asyncio
    async def test_nothing_to_recover(self, service):
        await service.create_server(vpn_request())
        assert await service.recover_interrupted() == []
