"""
WiringCoordinator - Tell every unit where its peers live.

Two passes, both idempotent:
- Generic pass: each unit with ADDRESS_SETUP receives the full CoreAddresses
  bundle via setAddresses(address[]) unless isAddressSetupInitialized()
  already reads true. A failure is logged and the next unit is tried.
- Debt token pass: setAddresses(borrowerOperations, stabilityPool,
  troveManager) and addWhitelist(feeCollector), each guarded by a read of
  the current on-chain value. The debt token has no ADDRESS_SETUP, so this
  is its only wiring, and any failure here is fatal. On testnets the
  timelock also schedules the redemption softening parameter; failure
  there only warns.
"""

import asyncio
import logging
from dataclasses import fields

from coredeploy.chain.base import ChainClient, Receipt, UnitHandle, send_and_wait
from coredeploy.config import FeeConfig
from coredeploy.errors import WiringError
from coredeploy.fees import resolve_fee_overrides
from coredeploy.schemas import Capability, CoreAddresses, RunState, UnitRole
from coredeploy.utils import sanitize_error_message

logger = logging.getLogger(__name__)

SOFTENING_GAS_LIMIT = 500_000

# CoreAddresses fields filled from unit handles (treasury comes from config)
_ROLE_FIELDS = [f.name for f in fields(CoreAddresses) if f.name != "treasury"]


class WiringCoordinator:
    """Run the wiring phase against provisioned handles."""

    def __init__(self, chain: ChainClient, confirmations: int = 1, fees: FeeConfig = FeeConfig()):
        self.chain = chain
        self.confirmations = confirmations
        self.fees = fees

    async def _send(self, handle: UnitHandle, function: str, *args, gas_limit: int | None = None) -> Receipt:
        overrides = await resolve_fee_overrides(self.chain, self.fees)
        if gas_limit is not None:
            overrides = overrides.with_gas_limit(gas_limit)
        return await send_and_wait(
            self.chain, handle, function, *args, overrides=overrides, confirmations=self.confirmations
        )

    async def collect_addresses(self, state: RunState) -> CoreAddresses:
        """Read every unit address in one concurrent batch."""
        addresses = await asyncio.gather(
            *(state.handle_for(UnitRole(name)).get_address() for name in _ROLE_FIELDS)
        )
        values = dict(zip(_ROLE_FIELDS, addresses))
        values["treasury"] = state.config.admins.treasury_wallet
        return CoreAddresses(**values)

    async def wire(self, state: RunState) -> CoreAddresses:
        """
        Wire all units.

        Returns:
            The address bundle that was distributed

        Raises:
            WiringError: If the bundle is invalid or the debt token cannot be wired
        """
        addresses = await self.collect_addresses(state)
        try:
            addresses.validate()
        except ValueError as e:
            raise WiringError("CoreAddresses", e) from e

        await self._wire_address_setup(state, addresses)
        await self._wire_debt_token(state, addresses)
        return addresses

    async def _wire_address_setup(self, state: RunState, addresses: CoreAddresses) -> None:
        ordered = addresses.as_ordered_list()
        for spec in state.specs:
            if not spec.has(Capability.ADDRESS_SETUP):
                continue
            handle = state.handle_for(spec.role)
            try:
                if await handle.call("isAddressSetupInitialized"):
                    logger.info(f"{spec.name} is already set up", extra={"unit": spec.name})
                    continue
                logger.info(f"{spec.name}.setAddresses()...", extra={"unit": spec.name})
                await self._send(handle, "setAddresses", ordered)
            except Exception as e:
                logger.error(
                    f"{spec.name}.setAddresses() failed: {sanitize_error_message(e)}",
                    extra={"unit": spec.name},
                )

    async def _wire_debt_token(self, state: RunState, addresses: CoreAddresses) -> None:
        spec = state.spec_for(UnitRole.DEBT_TOKEN)
        debt_token = state.handle_for(UnitRole.DEBT_TOKEN)

        try:
            if spec.has(Capability.SETUP_FLAG) and await debt_token.call("isSetupInitialized"):
                logger.info(f"{spec.name} addresses already set", extra={"unit": spec.name})
            else:
                logger.info(f"{spec.name}.setAddresses()...", extra={"unit": spec.name})
                await self._send(
                    debt_token,
                    "setAddresses",
                    addresses.borrower_operations,
                    addresses.stability_pool,
                    addresses.trove_manager,
                )

            if spec.has(Capability.ALLOW_LIST):
                if await debt_token.call("whitelistedContracts", addresses.fee_collector):
                    logger.info(f"FeeCollector already whitelisted on {spec.name}", extra={"unit": spec.name})
                else:
                    logger.info(f"{spec.name}.addWhitelist(FeeCollector)...", extra={"unit": spec.name})
                    await self._send(debt_token, "addWhitelist", addresses.fee_collector)
        except Exception as e:
            raise WiringError(spec.name, e) from e

        if state.config.target.is_testnet:
            await self._schedule_softening(state, addresses)

    async def _schedule_softening(self, state: RunState, addresses: CoreAddresses) -> None:
        timelock_spec = state.spec_for(UnitRole.TIMELOCK)
        timelock = state.handle_for(UnitRole.TIMELOCK)
        trove_manager_ops = state.handle_for(UnitRole.TROVE_MANAGER_OPERATIONS)
        param = state.config.redemption_softening_param
        try:
            calldata = trove_manager_ops.encode("setRedemptionSofteningParam", param)
            logger.info(f"{timelock_spec.name}.setSoftening({param})...", extra={"unit": timelock_spec.name})
            await self._send(
                timelock,
                "setSoftening",
                addresses.trove_manager_operations,
                "",
                calldata,
                gas_limit=SOFTENING_GAS_LIMIT,
            )
        except Exception as e:
            logger.warning(
                f"{timelock_spec.name}.setSoftening() failed: {sanitize_error_message(e)}",
                extra={"unit": timelock_spec.name},
            )
