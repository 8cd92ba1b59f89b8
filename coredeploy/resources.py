"""
ParameterConfigurator - Register collateral types into a wired system.

For each ResourceItem from the target config:
1. validate() - a missing token or oracle address skips the item
2. register_oracle() on the price feed
3. register_risk_parameters() on the admin contract
4. native_oracle items also register the oracle for the native coin
   (the zero address)

Every step reads on-chain state first and only writes what is missing, so
a rerun against a configured system sends no transactions.
"""

import logging
from typing import Any

from web3 import Web3

from coredeploy.chain.base import ChainClient, Receipt, UnitHandle, send_and_wait
from coredeploy.config import FeeConfig
from coredeploy.errors import ResourceConfigWarning
from coredeploy.fees import resolve_fee_overrides
from coredeploy.schemas import ResourceItem, RunState, UnitRole, ZERO_ADDRESS

logger = logging.getLogger(__name__)

# PriceFeed.oracles() struct: (oracleAddress, providerType, timeoutSeconds, decimals, isEthIndexed)
_ORACLE_ADDRESS_INDEX = 0
_ORACLE_DECIMALS_INDEX = 3


def _same_address(a: Any, b: Any) -> bool:
    return isinstance(a, str) and isinstance(b, str) and a.lower() == b.lower()


def _oracle_record(raw: Any) -> tuple[str, int]:
    """Return (oracle_address, decimals) from a mapping or positional struct."""
    if isinstance(raw, dict):
        return raw.get("oracleAddress", ZERO_ADDRESS), int(raw.get("decimals", 0))
    return raw[_ORACLE_ADDRESS_INDEX], int(raw[_ORACLE_DECIMALS_INDEX])


class ParameterConfigurator:
    """Run the resource configuration phase."""

    def __init__(self, chain: ChainClient, confirmations: int = 1, fees: FeeConfig = FeeConfig()):
        self.chain = chain
        self.confirmations = confirmations
        self.fees = fees

    async def _send(self, handle: UnitHandle, function: str, *args) -> Receipt:
        overrides = await resolve_fee_overrides(self.chain, self.fees)
        return await send_and_wait(
            self.chain, handle, function, *args, overrides=overrides, confirmations=self.confirmations
        )

    async def configure_resources(self, state: RunState, items: tuple[ResourceItem, ...] | list[ResourceItem]) -> int:
        """
        Register every item.

        Returns:
            Number of items processed (skipped items excluded)

        Raises:
            TransientRemoteError: If a registration transaction fails
        """
        logger.info("Adding Collateral...")
        processed = 0
        for item in items:
            try:
                item.validate()
            except ResourceConfigWarning as w:
                logger.warning(f"WARNING: {w}", extra={"item": item.name})
                continue

            await self.register_oracle(state, item)
            await self.register_risk_parameters(state, item)
            if item.native_oracle:
                native = ResourceItem(
                    name="ETH",
                    address=ZERO_ADDRESS,
                    oracle_address=item.oracle_address,
                    oracle_provider_type=item.oracle_provider_type,
                    oracle_timeout_seconds=item.oracle_timeout_seconds,
                    oracle_is_eth_indexed=item.oracle_is_eth_indexed,
                )
                await self.register_oracle(state, native)
            processed += 1
        return processed

    async def register_oracle(self, state: RunState, item: ResourceItem) -> bool:
        """
        Set the price feed oracle for `item` if none is set yet.

        Returns:
            True if setOracle() was sent
        """
        price_feed = state.handle_for(UnitRole.PRICE_FEED)
        oracle_address, decimals = _oracle_record(await price_feed.call("oracles", item.address))

        if decimals != 0:
            if _same_address(oracle_address, item.oracle_address):
                logger.info(
                    f"[{item.name}] Oracle Price Feed had already been set @ {item.oracle_address}",
                    extra={"item": item.name},
                )
            else:
                logger.warning(
                    f"[{item.name}] WARNING: another oracle had already been set, please update via Timelock.setOracle()",
                    extra={"item": item.name},
                )
            return False

        owner = await price_feed.call("owner")
        deployer = self.chain.account
        if not _same_address(owner, deployer):
            w = ResourceConfigWarning(
                item.name, f"Cannot call PriceFeed.setOracle(): deployer = {deployer}, owner = {owner}"
            )
            logger.warning(f"WARNING: {w}", extra={"item": item.name})
            return False

        logger.info(f"[{item.name}] PriceFeed.setOracle()", extra={"item": item.name})
        await self._send(
            price_feed,
            "setOracle",
            item.address,
            item.oracle_address,
            item.oracle_provider_type,
            item.oracle_timeout_seconds,
            item.oracle_is_eth_indexed,
            False,
        )
        logger.info(f"[{item.name}] Oracle Price Feed has been set @ {item.oracle_address}", extra={"item": item.name})
        return True

    async def register_risk_parameters(self, state: RunState, item: ResourceItem) -> bool:
        """
        Add the collateral, set its risk parameters if it is not active and
        stamp its redemption start block timestamp if none is stored.

        Each of the three writes is guarded by its own read, so a run that
        stopped between them finishes the remaining ones on the next pass.

        Returns:
            True if setCollateralParameters() was sent
        """
        admin = state.handle_for(UnitRole.ADMIN_CONTRACT)

        if await admin.call("getMcr", item.address) > 0:
            logger.info(f"[{item.name}] NOTICE: collateral has already been added before", extra={"item": item.name})
        else:
            logger.info(f"[{item.name}] AdminContract.addNewCollateral() ...", extra={"item": item.name})
            await self._send(admin, "addNewCollateral", item.address, item.gas_compensation, item.decimals)
            logger.info(f"[{item.name}] Collateral added @ {item.address}", extra={"item": item.name})

        params_sent = False
        if await admin.call("getIsActive", item.address):
            logger.info(f"[{item.name}] NOTICE: collateral params have already been set", extra={"item": item.name})
        else:
            await self._set_collateral_parameters(admin, item)
            params_sent = True

        if await admin.call("getRedemptionBlockTimestamp", item.address) > 0:
            logger.info(f"[{item.name}] NOTICE: redemption block timestamp already set", extra={"item": item.name})
        else:
            block = await self.chain.get_block("latest")
            await self._send(admin, "setRedemptionBlockTimestamp", item.address, block.timestamp)
            logger.info(f"[{item.name}] Redemption block timestamp set to {block.timestamp}", extra={"item": item.name})
        return params_sent

    async def _set_collateral_parameters(self, admin: UnitHandle, item: ResourceItem) -> None:
        logger.info(f"[{item.name}] Setting collateral params...", extra={"item": item.name})
        percent_divisor = await admin.call("PERCENT_DIVISOR_DEFAULT")
        redemption_fee_floor = await admin.call("REDEMPTION_FEE_FLOOR_DEFAULT")
        borrowing_fee = item.borrowing_fee
        if borrowing_fee is None:
            borrowing_fee = await admin.call("BORROWING_FEE_DEFAULT")

        await self._send(
            admin,
            "setCollateralParameters",
            item.address,
            borrowing_fee,
            item.ccr,
            item.mcr,
            item.min_net_debt,
            item.mint_cap,
            percent_divisor,
            redemption_fee_floor,
        )
        logger.info(
            f"[{item.name}] AdminContract.setCollateralParameters() -> ok "
            f"(borrowing fee {Web3.from_wei(borrowing_fee, 'ether')})",
            extra={"item": item.name},
        )
