import logging

import pytest

from coredeploy.state_store import InMemoryStateStore
from fakes import FakeChain, FakeFactory


@pytest.fixture
def chain():
    return FakeChain()


@pytest.fixture
def factory(chain):
    return FakeFactory(chain)


@pytest.fixture
def store():
    return InMemoryStateStore()


@pytest.fixture(autouse=True)
def isolated_env(monkeypatch, tmp_path):
    # Keep tests away from a developer's real home and keys
    monkeypatch.setenv("COREDEPLOY_HOME", str(tmp_path / "home"))
    monkeypatch.delenv("COREDEPLOY_TARGETS_DIR", raising=False)
    monkeypatch.delenv("DEPLOYER_PRIVATEKEY", raising=False)


@pytest.fixture(autouse=True)
def propagate_logs():
    # setup_logging() replaces handlers; make caplog see records again
    logger = logging.getLogger("coredeploy")
    logger.propagate = True
    yield
    logger.handlers = []
