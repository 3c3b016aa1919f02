"""Pytest configuration for server-manager tests."""

from pathlib import Path
import sys

import pytest

# Add server-manager src to path for imports
src_path = Path(__file__).parent.parent / "src"
sys.path.insert(0, str(src_path))

# Add project root for shared imports
project_root = Path(__file__).parent.parent.parent.parent
sys.path.insert(0, str(project_root))

# Make the tests directory importable for the shared fakes module
sys.path.insert(0, str(Path(__file__).parent))

from fakes import CallLog, FakeOrchestrator, InMemoryServerRepository  # noqa: E402

from server_manager.service import ServerService  # noqa: E402


@pytest.fixture
def calls() -> CallLog:
    return CallLog()


@pytest.fixture
def repository(calls) -> InMemoryServerRepository:
    return InMemoryServerRepository(calls)


@pytest.fixture
def orchestrator(calls) -> FakeOrchestrator:
    return FakeOrchestrator(calls)


@pytest.fixture
def service(repository, orchestrator) -> ServerService:
    return ServerService(repository, orchestrator, backend_call_timeout=1.0, restart_settle_delay=0)
