# tests/conftest.py
from pathlib import Path

import docker
import pytest

from tests.utils import ContainerRegistry

TESTDATA = Path(__file__).parent / "testdata"

_docker_available = None


def docker_available() -> bool:
    global _docker_available
    if _docker_available is None:
        try:
            client = docker.from_env()
            client.ping()
            client.close()
            _docker_available = True
        except Exception:
            _docker_available = False
    return _docker_available


def pytest_collection_modifyitems(config, items):
    integration = [item for item in items if "integration" in item.keywords]
    if integration and not docker_available():
        skip = pytest.mark.skip(reason="no Docker daemon available")
        for item in integration:
            item.add_marker(skip)


@pytest.fixture
def testdata():
    return TESTDATA


@pytest.fixture
def postgres_factory():
    # Every container started through the factory is removed when the test ends
    registry = ContainerRegistry()
    yield registry.run
    registry.stop_all()


@pytest.fixture(scope="module")
def module_postgres_factory():
    registry = ContainerRegistry()
    yield registry.run
    registry.stop_all()


@pytest.fixture
def no_docker(monkeypatch):
    """Build PostgresContainer objects without talking to a Docker daemon."""
    monkeypatch.setattr("testcontainers.core.container.DockerClient", lambda **kwargs: object())


@pytest.fixture(autouse=True)
def isolated_config(monkeypatch, tmp_path):
    # Keep the developer's PGCONTAINER_* environment out of the tests
    for name in (
        "PGCONTAINER_CONFIG", "PGCONTAINER_IMAGE", "PGCONTAINER_USER", "PGCONTAINER_PASSWORD",
        "PGCONTAINER_DB", "PGCONTAINER_SQL_DRIVER", "PGCONTAINER_SNAPSHOT_NAME",
        "PGCONTAINER_STARTUP_TIMEOUT", "PGCONTAINER_POLL_INTERVAL", "PGCONTAINER_LOG_LEVEL",
        "PGCONTAINER_LOG_FILE", "PGCONTAINER_LOG_TO_CONSOLE",
    ):
        monkeypatch.delenv(name, raising=False)
    monkeypatch.setenv("PGCONTAINER_CONFIG", str(tmp_path / "missing-pgcontainer.yml"))
