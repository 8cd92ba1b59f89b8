"""
Finalizer - Optional late-stage steps of a run.

- finalize_ownership: hand every Ownable unit to the upgrades admin
- verify_all: publish sources to the block explorer, marking each record
- complete_setup: flip a unit's one-way "setup initialized" flag

All three are idempotent: they read current state first and only write
what is still missing.
"""

import logging
from typing import Optional

from coredeploy.chain.base import ChainClient, Receipt, Registry, UnitHandle, send_and_wait
from coredeploy.config import FeeConfig
from coredeploy.errors import ConfigError, VerificationError
from coredeploy.fees import resolve_fee_overrides
from coredeploy.schemas import Capability, RunState, UnitKind, UnitRole, ZERO_ADDRESS
from coredeploy.state_store import StateStore
from coredeploy.utils import sanitize_error_message

logger = logging.getLogger(__name__)


class Finalizer:
    """
    Ownership hand-off, source verification and setup completion.

    Args:
        chain: Chain client
        store: Durable state, saved after each verification marker
        confirmations: Blocks to wait for after each write
        fees: Explicit fee overrides from the target config
        registry: Explorer registry; None disables verification
    """

    def __init__(
        self,
        chain: ChainClient,
        store: StateStore,
        confirmations: int = 1,
        fees: FeeConfig = FeeConfig(),
        registry: Optional[Registry] = None,
    ):
        self.chain = chain
        self.store = store
        self.confirmations = confirmations
        self.fees = fees
        self.registry = registry

    async def _send(self, handle: UnitHandle, function: str, *args) -> Receipt:
        overrides = await resolve_fee_overrides(self.chain, self.fees)
        return await send_and_wait(
            self.chain, handle, function, *args, overrides=overrides, confirmations=self.confirmations
        )

    async def finalize_ownership(self, state: RunState, target_admin: Optional[str]) -> list[str]:
        """
        Transfer ownership of every Ownable unit to `target_admin`.

        A failed transfer is logged and the remaining units are still tried.

        Returns:
            Names of the units whose ownership was transferred

        Raises:
            ConfigError: If no target admin is configured
        """
        if not target_admin or target_admin.lower() == ZERO_ADDRESS:
            raise ConfigError(
                "Provide an address for contract_upgrades_admin in the target config "
                "before transferring the ownerships."
            )

        logger.info(f"Transferring contract ownerships to {target_admin}...")
        transferred = []
        for spec in state.specs:
            if not spec.has(Capability.OWNABLE):
                logger.info(f" - {spec.name} is NOT Ownable", extra={"unit": spec.name})
                continue

            handle = state.handle_for(spec.role)
            current_owner = None
            try:
                current_owner = await handle.call("owner")
                if isinstance(current_owner, str) and current_owner.lower() == target_admin.lower():
                    logger.info(
                        f" - {spec.name} -> Owner had already been set to @ {target_admin}",
                        extra={"unit": spec.name},
                    )
                    continue
                await self._send(handle, "transferOwnership", target_admin)
                transferred.append(spec.name)
                logger.info(f" - {spec.name} -> Owner set to @ {target_admin}", extra={"unit": spec.name})
            except Exception as e:
                logger.error(
                    f" - {spec.name} -> ERROR [owner = {current_owner}]: {sanitize_error_message(e)}",
                    extra={"unit": spec.name},
                )
        return transferred

    async def verify_all(self, state: RunState) -> list[str]:
        """
        Publish sources for every recorded unit that is not yet verified.

        Returns:
            Names of the units verified during this call
        """
        if self.registry is None or not self.registry.base_url:
            logger.info("(No explorer URL defined, skipping contract verification)")
            return []

        verified = []
        for spec in state.specs:
            if spec.kind == UnitKind.ATTACHABLE:
                continue
            record = state.get_record(spec.name)
            if record is None or not record.deployed:
                logger.error(f"No deployed contract for {spec.name}", extra={"unit": spec.name})
                continue
            if record.verified:
                logger.info(f"Contract {spec.name} already verified", extra={"unit": spec.name})
                continue

            address = record.secondary_address or record.address
            metadata = {
                "contract_name": spec.name,
                "constructor_args": () if spec.upgradeable else spec.params,
            }
            try:
                url = await self.registry.publish(address, metadata)
            except VerificationError as e:
                logger.error(f"Error verifying {spec.name}: {e.reason}", extra={"unit": spec.name})
                continue

            record.verification = url
            state.record(spec.name, record)
            self.store.save(state.records)
            verified.append(spec.name)
            logger.info(f"Verified {spec.name}: {url}", extra={"unit": spec.name})
        return verified

    async def complete_setup(self, state: RunState, role: UnitRole = UnitRole.ADMIN_CONTRACT) -> bool:
        """
        Call setSetupIsInitialized() on the unit filling `role`.

        Returns:
            True if the flag was flipped by this call
        """
        spec = state.spec_for(role)
        if not spec.has(Capability.SETUP_FLAG):
            logger.info(f"[NOTICE] {spec.name} does not have an isSetupInitialized flag!", extra={"unit": spec.name})
            return False

        handle = state.handle_for(role)
        if await handle.call("isSetupInitialized"):
            logger.info(f"{spec.name} is already initialized!", extra={"unit": spec.name})
            return False

        await self._send(handle, "setSetupIsInitialized")
        logger.info(f"{spec.name} has been initialized", extra={"unit": spec.name})
        return True
