"""Tests for CoreDeployer and the module-level run().

Tests cover:
- A full run reaches DONE and reports the spent amount
- A second run against the same chain and state is a no-op
- A fatal provisioning failure marks the run FAILED and keeps earlier records
- Finalize steps only run when requested
- Configuration and state problems fail before any connection
"""

import asyncio
import logging

import pytest
import yaml

from coredeploy.errors import ConfigError, FatalDeployError, StateError, TransientRemoteError
from coredeploy.orchestrator import CoreDeployer, RunOptions, run
from coredeploy.schemas import RunPhase
from fakes import ADMIN, TREASURY, UPGRADES_ADMIN, FakeFactory, FakeRegistry, make_config, make_item


def _deploy(chain, store, factory=None, config=None, registry=None, options=None):
    deployer = CoreDeployer(
        config or make_config(collateral=(make_item(),)),
        chain,
        factory or FakeFactory(chain),
        store,
        registry,
        options,
    )
    return deployer, asyncio.run(deployer.run())


class TestCoreDeployer:

    def test_full_run(self, chain, store):
        deployer, result = _deploy(chain, store)

        assert result.phase == RunPhase.DONE
        assert result.target == "botanix-testnet"
        assert len(result.records) == 14
        assert result.cost_wei == 10**21 - chain.balance
        assert result.cost_wei > 0
        assert store.snapshot() == {name: r.to_dict() for name, r in result.records.items()}

    def test_second_run_is_a_no_op(self, chain, store):
        _, first = _deploy(chain, store)
        sends_before = [fn for _, fn, _ in chain.sends()]

        second_factory = FakeFactory(chain)
        _, second = _deploy(chain, store, factory=second_factory)

        assert second.phase == RunPhase.DONE
        assert second_factory.construct_calls == []
        assert {n: r.to_dict() for n, r in second.records.items()} == {
            n: r.to_dict() for n, r in first.records.items()
        }
        sends_after = [fn for _, fn, _ in chain.sends()]
        # Only the testnet softening schedule is repeated
        assert len(sends_after) == len(sends_before) + 1
        assert sends_after.count("setSoftening") == sends_before.count("setSoftening") + 1

    def test_fatal_failure_marks_failed(self, chain, store, caplog):
        factory = FakeFactory(chain, always_fail={"GasPool"})

        with pytest.raises(FatalDeployError):
            _deploy(chain, store, factory=factory)

        snapshot = store.snapshot()
        assert "GasPool" not in snapshot
        assert "ActivePool" in snapshot
        assert "failed during provisioning" in caplog.text
        assert chain.sends("setAddresses") == []

    def test_balance_failure_marks_failed(self, chain, store, caplog):
        async def get_balance(address):
            raise TransientRemoteError("connection refused")

        chain.get_balance = get_balance

        with pytest.raises(TransientRemoteError):
            _deploy(chain, store)

        assert "failed during init" in caplog.text
        assert store.save_count == 0

    def test_resume_after_failure(self, chain, store):
        with pytest.raises(FatalDeployError):
            _deploy(chain, store, factory=FakeFactory(chain, always_fail={"GasPool"}))
        recorded = set(store.snapshot())

        factory = FakeFactory(chain)
        _, result = _deploy(chain, store, factory=factory)

        assert result.phase == RunPhase.DONE
        assert not recorded & set(factory.construct_calls)
        assert "GasPool" in factory.construct_calls

    def test_logs_balance_and_cost(self, chain, store, caplog):
        caplog.set_level(logging.INFO, logger="coredeploy")
        _deploy(chain, store)
        assert "Balance:" in caplog.text
        assert "Deployment cost:" in caplog.text


class TestFinalizeOptions:

    def test_no_options_skips_finalize(self, chain, store):
        deployer, _ = _deploy(chain, store)
        assert chain.sends("transferOwnership") == []
        assert chain.sends("setSetupIsInitialized") == []
        assert not deployer.options.finalize

    def test_all_options(self, chain, store):
        registry = FakeRegistry()
        options = RunOptions(verify=True, transfer_ownership=True, complete_setup=True)

        _, result = _deploy(chain, store, registry=registry, options=options)

        assert result.phase == RunPhase.DONE
        assert chain.sends("setSetupIsInitialized")
        assert {args[0] for _, _, args in chain.sends("transferOwnership")} == {UPGRADES_ADMIN}
        assert all(record.verified for record in result.records.values())

    def test_missing_upgrades_admin_fails_run(self, chain, store):
        config = make_config(upgrades_admin=None)
        with pytest.raises(ConfigError):
            _deploy(chain, store, config=config, options=RunOptions(transfer_ownership=True))


def _write_target(targets_dir, output_file):
    targets_dir.mkdir(parents=True, exist_ok=True)
    bundle = {
        "network": {"rpc_url": "http://127.0.0.1:1"},
        "admins": {"system_params_admin": ADMIN, "treasury_wallet": TREASURY},
        "output_file": str(output_file),
    }
    (targets_dir / "localhost.yaml").write_text(yaml.safe_dump(bundle))


class TestRun:

    def test_missing_key_fails_before_connecting(self, tmp_path):
        _write_target(tmp_path / "targets", tmp_path / "out.json")
        with pytest.raises(ConfigError, match="DEPLOYER_PRIVATEKEY"):
            run("localhost", targets_dir=tmp_path / "targets")

    def test_key_from_env_file(self, tmp_path, monkeypatch):
        # Registers the variable with monkeypatch so the .env value is undone
        monkeypatch.setenv("DEPLOYER_PRIVATEKEY", "placeholder")
        monkeypatch.delenv("DEPLOYER_PRIVATEKEY")
        home = tmp_path / "home"
        home.mkdir()
        (home / ".env").write_text("DEPLOYER_PRIVATEKEY=not-a-key\n")
        _write_target(tmp_path / "targets", tmp_path / "out.json")

        with pytest.raises(ConfigError, match="not a valid private key"):
            run("localhost", home=home, targets_dir=tmp_path / "targets")

    def test_malformed_state_fails_before_connecting(self, tmp_path, monkeypatch):
        monkeypatch.setenv("DEPLOYER_PRIVATEKEY", "0x" + "11" * 32)
        output = tmp_path / "out.json"
        output.write_text("{not json")
        _write_target(tmp_path / "targets", output)

        with pytest.raises(StateError):
            run("localhost", targets_dir=tmp_path / "targets")

    def test_unknown_target(self):
        with pytest.raises(ConfigError, match="Unknown deployment target"):
            run("nowhere")
