"""Tests for WiringCoordinator.

Tests cover:
- Every ADDRESS_SETUP unit receives the 15-address bundle in on-chain order
- Units already set up are skipped
- Generic failures are logged and skipped; debt token failures are fatal
- Debt token setAddresses / addWhitelist are guarded and idempotent
- Softening is scheduled on testnets only and never fails the run
"""

import asyncio
import logging

import pytest

from coredeploy.config import DeploymentTarget
from coredeploy.errors import TransientRemoteError, WiringError
from coredeploy.schemas import Capability, UnitRole
from coredeploy.wiring import SOFTENING_GAS_LIMIT, WiringCoordinator
from fakes import TREASURY, make_config, provisioned_state, unit


def _wire(chain, state):
    return asyncio.run(WiringCoordinator(chain).wire(state))


class TestGenericPass:

    def test_every_address_setup_unit_is_wired(self, chain):
        state = provisioned_state(chain)
        addresses = _wire(chain, state)

        ordered = addresses.as_ordered_list()
        assert ordered[12] == TREASURY
        for spec in state.specs:
            handle = unit(state, spec.role)
            if spec.has(Capability.ADDRESS_SETUP):
                assert handle.addresses == ordered, spec.name
            else:
                assert not handle.address_setup

    def test_bundle_uses_unit_addresses(self, chain):
        state = provisioned_state(chain)
        addresses = _wire(chain, state)
        assert addresses.active_pool == unit(state, UnitRole.ACTIVE_POOL).address
        assert addresses.debt_token == unit(state, UnitRole.DEBT_TOKEN).address
        assert addresses.trove_manager_operations == unit(state, UnitRole.TROVE_MANAGER_OPERATIONS).address

    def test_already_set_up_is_skipped(self, chain):
        state = provisioned_state(chain)
        active_pool = unit(state, UnitRole.ACTIVE_POOL)
        active_pool.address_setup = True

        _wire(chain, state)

        assert not any(fn == "setAddresses" for fn, _, _ in active_pool.sends)
        assert ("isAddressSetupInitialized", ()) in active_pool.calls

    def test_failure_is_logged_and_skipped(self, chain, caplog):
        state = provisioned_state(chain)
        unit(state, UnitRole.DEFAULT_POOL).fail_on["setAddresses"] = TransientRemoteError("execution reverted")

        _wire(chain, state)

        assert "DefaultPool.setAddresses() failed" in caplog.text
        assert unit(state, UnitRole.FEE_COLLECTOR).address_setup

    def test_reverted_receipt_is_logged_and_skipped(self, chain, caplog):
        state = provisioned_state(chain)
        unit(state, UnitRole.SORTED_TROVES).revert_on.add("setAddresses")

        _wire(chain, state)

        assert "SortedTroves.setAddresses() failed" in caplog.text
        assert unit(state, UnitRole.STABILITY_POOL).address_setup

    def test_rerun_sends_nothing(self, chain):
        state = provisioned_state(chain)
        _wire(chain, state)
        before = len(chain.sends())

        _wire(chain, state)

        # Only the testnet softening call repeats
        assert len(chain.sends()) == before + 1
        assert len(chain.sends("setSoftening")) == 2


class TestDebtToken:

    def test_set_addresses_and_whitelist(self, chain):
        state = provisioned_state(chain)
        addresses = _wire(chain, state)

        debt_token = unit(state, UnitRole.DEBT_TOKEN)
        assert debt_token.addresses == [
            addresses.borrower_operations,
            addresses.stability_pool,
            addresses.trove_manager,
        ]
        assert addresses.fee_collector.lower() in debt_token.whitelist

    def test_guards_skip_completed_steps(self, chain):
        state = provisioned_state(chain)
        debt_token = unit(state, UnitRole.DEBT_TOKEN)
        debt_token.setup_initialized = True
        debt_token.whitelist.add(unit(state, UnitRole.FEE_COLLECTOR).address.lower())

        _wire(chain, state)

        assert debt_token.sends == []

    def test_never_receives_the_generic_bundle(self, chain):
        state = provisioned_state(chain)
        assert not state.spec_for(UnitRole.DEBT_TOKEN).has(Capability.ADDRESS_SETUP)

        _wire(chain, state)

        debt_token = unit(state, UnitRole.DEBT_TOKEN)
        assert ("isAddressSetupInitialized", ()) not in debt_token.calls
        assert [len(args) for fn, args, _ in debt_token.sends if fn == "setAddresses"] == [3]

    def test_set_addresses_failure_is_fatal(self, chain):
        state = provisioned_state(chain)
        unit(state, UnitRole.DEBT_TOKEN).fail_on["setAddresses"] = TransientRemoteError("reverted")

        with pytest.raises(WiringError) as exc_info:
            _wire(chain, state)
        assert exc_info.value.unit == "DebtToken"

    def test_failure_is_fatal(self, chain):
        state = provisioned_state(chain)
        unit(state, UnitRole.DEBT_TOKEN).fail_on["addWhitelist"] = TransientRemoteError("reverted")

        with pytest.raises(WiringError) as exc_info:
            _wire(chain, state)
        assert exc_info.value.unit == "DebtToken"

    def test_invalid_bundle_is_fatal(self, chain):
        state = provisioned_state(chain)
        unit(state, UnitRole.GAS_POOL).address = "0x" + "0" * 40

        with pytest.raises(WiringError, match="gas_pool"):
            _wire(chain, state)
        assert chain.sends("setAddresses") == []


class TestSoftening:

    def test_scheduled_on_testnet(self, chain):
        state = provisioned_state(chain)
        _wire(chain, state)

        timelock = unit(state, UnitRole.TIMELOCK)
        function, args, overrides = timelock.sends[-1]
        assert function == "setSoftening"
        assert args[0] == unit(state, UnitRole.TROVE_MANAGER_OPERATIONS).address
        assert args[1] == ""
        assert args[2] == "setRedemptionSofteningParam(9950)"
        assert overrides.gas_limit == SOFTENING_GAS_LIMIT

    def test_not_scheduled_on_mainnet(self, chain):
        state = provisioned_state(chain, make_config(DeploymentTarget.MAINNET))
        _wire(chain, state)
        assert chain.sends("setSoftening") == []

    def test_failure_only_warns(self, chain, caplog):
        state = provisioned_state(chain)
        unit(state, UnitRole.TIMELOCK).fail_on["setSoftening"] = TransientRemoteError("gas required exceeds allowance")

        with caplog.at_level(logging.WARNING):
            _wire(chain, state)

        assert "setSoftening() failed" in caplog.text
