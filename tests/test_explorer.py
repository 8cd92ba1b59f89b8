"""Tests for ExplorerRegistry against a mocked Etherscan API."""

import asyncio
import json
from urllib.parse import parse_qs

import httpx
import pytest

from coredeploy.chain.artifacts import ArtifactStore
from coredeploy.chain.explorer import ExplorerRegistry
from coredeploy.errors import VerificationError
from coredeploy.finalizer import Finalizer
from coredeploy.schemas import DeploymentRecord, RunState, UnitRole, UnitSpec
from coredeploy.state_store import InMemoryStateStore
from fakes import ADMIN, addr, make_config

API_URL = "https://api.explorer.test/api"
BASE_URL = "https://explorer.test"


def _write_artifact(root, name, abi):
    source_dir = root / "contracts" / "Core" / f"{name}.sol"
    source_dir.mkdir(parents=True, exist_ok=True)
    (source_dir / f"{name}.json").write_text(json.dumps({
        "contractName": name,
        "sourceName": f"contracts/Core/{name}.sol",
        "abi": abi,
        "bytecode": "0x6080",
    }))
    (source_dir / f"{name}.dbg.json").write_text(json.dumps({"buildInfo": "../../../build-info/abc123.json"}))


@pytest.fixture
def artifacts(tmp_path):
    root = tmp_path / "artifacts"
    _write_artifact(root, "GasPool", [])
    _write_artifact(root, "TimelockTester", [{
        "type": "constructor",
        "inputs": [{"name": "delay", "type": "uint256"}, {"name": "admin", "type": "address"}],
    }])
    build_info = root / "build-info"
    build_info.mkdir(parents=True)
    (build_info / "abc123.json").write_text(json.dumps({
        "solcLongVersion": "0.8.23+commit.f704f362",
        "input": {"language": "Solidity", "sources": {}},
    }))
    return ArtifactStore(root)


class ExplorerStub:
    """Records requests and answers from scripted status responses."""

    def __init__(self, submit, statuses=()):
        self.submit = submit
        self.statuses = list(statuses)
        self.submissions = []
        self.status_checks = 0

    def __call__(self, request: httpx.Request) -> httpx.Response:
        if request.method == "POST":
            form = {k: v[0] for k, v in parse_qs(request.content.decode(), keep_blank_values=True).items()}
            self.submissions.append(form)
            return httpx.Response(200, json=self.submit)
        assert request.url.params["action"] == "checkverifystatus"
        self.status_checks += 1
        return httpx.Response(200, json=self.statuses.pop(0))


def _registry(artifacts, stub, base_url=BASE_URL, max_polls=3):
    return ExplorerRegistry(
        api_url=API_URL,
        base_url=base_url,
        api_key="KEY",
        artifacts=artifacts,
        poll_interval=0,
        max_polls=max_polls,
        transport=httpx.MockTransport(stub),
    )


def _publish(registry, name="GasPool", address=None, args=()):
    address = address or addr(0x123)
    return asyncio.run(registry.publish(address, {"contract_name": name, "constructor_args": args}))


class TestPublish:

    def test_submission_and_pass(self, artifacts):
        stub = ExplorerStub({"status": "1", "result": "guid-1"}, [{"status": "1", "result": "Pass - Verified"}])

        url = _publish(_registry(artifacts, stub))

        assert url == f"{BASE_URL}/address/{addr(0x123)}#code"
        form = stub.submissions[0]
        assert form["action"] == "verifysourcecode"
        assert form["apikey"] == "KEY"
        assert form["contractname"] == "contracts/Core/GasPool.sol:GasPool"
        assert form["compilerversion"] == "v0.8.23+commit.f704f362"
        assert form["codeformat"] == "solidity-standard-json-input"
        assert json.loads(form["sourceCode"])["language"] == "Solidity"
        assert form["constructorArguements"] == ""

    def test_constructor_args_are_abi_encoded(self, artifacts):
        stub = ExplorerStub({"status": "1", "result": "guid-1"}, [{"status": "1", "result": "Pass - Verified"}])

        _publish(_registry(artifacts, stub), name="TimelockTester", args=(300, ADMIN))

        encoded = stub.submissions[0]["constructorArguements"]
        assert encoded[:64] == f"{300:064x}"
        assert encoded[64:].endswith(ADMIN[2:].lower())

    def test_pending_then_pass(self, artifacts):
        stub = ExplorerStub(
            {"status": "1", "result": "guid-1"},
            [
                {"status": "0", "result": "Pending in queue"},
                {"status": "0", "result": "Pending in queue"},
                {"status": "1", "result": "Pass - Verified"},
            ],
        )

        _publish(_registry(artifacts, stub))

        assert stub.status_checks == 3

    def test_already_verified_at_submit(self, artifacts):
        stub = ExplorerStub({"status": "0", "result": "Contract source code already verified"})

        url = _publish(_registry(artifacts, stub))

        assert url.endswith("#code")
        assert stub.status_checks == 0

    def test_already_verified_while_polling(self, artifacts):
        stub = ExplorerStub({"status": "1", "result": "guid-1"}, [{"status": "0", "result": "Already Verified"}])
        assert _publish(_registry(artifacts, stub)).endswith("#code")

    def test_rejected_submission(self, artifacts):
        stub = ExplorerStub({"status": "0", "message": "NOTOK", "result": "Invalid API Key"})

        with pytest.raises(VerificationError, match="Invalid API Key"):
            _publish(_registry(artifacts, stub))

    def test_failed_verdict(self, artifacts):
        stub = ExplorerStub(
            {"status": "1", "result": "guid-1"},
            [{"status": "0", "result": "Fail - Unable to verify"}],
        )

        with pytest.raises(VerificationError, match="Unable to verify"):
            _publish(_registry(artifacts, stub))

    def test_no_verdict_within_poll_budget(self, artifacts):
        stub = ExplorerStub({"status": "1", "result": "guid-1"}, [{"status": "0", "result": "Pending in queue"}] * 2)

        with pytest.raises(VerificationError, match="no verdict"):
            _publish(_registry(artifacts, stub, max_polls=2))

    def test_http_error(self, artifacts):
        def handler(request):
            return httpx.Response(502, text="Bad Gateway")

        registry = ExplorerRegistry(API_URL, BASE_URL, "KEY", artifacts, poll_interval=0,
                                    transport=httpx.MockTransport(handler))

        with pytest.raises(VerificationError, match="explorer request failed"):
            _publish(registry)

    def test_missing_artifact(self, artifacts):
        stub = ExplorerStub({"status": "1", "result": "guid-1"})

        with pytest.raises(VerificationError):
            _publish(_registry(artifacts, stub), name="NoSuchContract")
        assert stub.submissions == []

    def test_missing_base_url(self, artifacts):
        stub = ExplorerStub({"status": "1", "result": "guid-1"})
        registry = _registry(artifacts, stub, base_url=None)

        assert registry.base_url is None
        with pytest.raises(VerificationError, match="base URL"):
            _publish(registry)


class TestMalformedReplies:

    def test_html_page_at_submit(self, artifacts):
        def handler(request):
            return httpx.Response(200, text="<html>Bad Gateway</html>")

        registry = ExplorerRegistry(API_URL, BASE_URL, "KEY", artifacts, poll_interval=0,
                                    transport=httpx.MockTransport(handler))

        with pytest.raises(VerificationError, match="unexpected explorer response"):
            _publish(registry)

    def test_html_page_while_polling(self, artifacts):
        def handler(request):
            if request.method == "POST":
                return httpx.Response(200, json={"status": "1", "result": "guid-1"})
            return httpx.Response(200, text="<html>Bad Gateway</html>")

        registry = ExplorerRegistry(API_URL, BASE_URL, "KEY", artifacts, poll_interval=0,
                                    transport=httpx.MockTransport(handler))

        with pytest.raises(VerificationError, match="unexpected explorer response"):
            _publish(registry)

    def test_missing_guid(self, artifacts):
        stub = ExplorerStub({"status": "1"})

        with pytest.raises(VerificationError, match="no guid"):
            _publish(_registry(artifacts, stub))
        assert stub.status_checks == 0

    def test_verify_all_keeps_running(self, artifacts, chain):
        """A garbled reply is logged by the finalizer and the marker stays unset."""
        def handler(request):
            return httpx.Response(200, text="<html>Bad Gateway</html>")

        registry = ExplorerRegistry(API_URL, BASE_URL, "KEY", artifacts, poll_interval=0,
                                    transport=httpx.MockTransport(handler))
        spec = UnitSpec(name="GasPool", role=UnitRole.GAS_POOL)
        record = DeploymentRecord(address=addr(0x123), creation_tx="0x01")
        state = RunState(config=make_config(), specs=(spec,), records={"GasPool": record})
        store = InMemoryStateStore()

        verified = asyncio.run(Finalizer(chain, store, registry=registry).verify_all(state))

        assert verified == []
        assert record.verification is None
        assert store.save_count == 0
