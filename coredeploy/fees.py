"""
Fee override resolution.

Every write carries explicit EIP-1559 fee fields. Values pinned in the
target config win; missing ones are derived from the chain's current fee
estimate (max fee = 2 * base fee + priority fee).
"""

import logging

from web3 import Web3

from coredeploy.chain.base import ChainClient, FeeOverrides
from coredeploy.config import FeeConfig

logger = logging.getLogger(__name__)


async def resolve_fee_overrides(chain: ChainClient, fees: FeeConfig) -> FeeOverrides:
    """
    Build the fee overrides for the next write.

    Args:
        chain: Chain client used when the config leaves a field unset
        fees: Explicit values from the target config

    Returns:
        FeeOverrides with both fields populated
    """
    if fees.max_fee_per_gas is not None and fees.max_priority_fee_per_gas is not None:
        return FeeOverrides(fees.max_fee_per_gas, fees.max_priority_fee_per_gas)

    estimate = await chain.get_fee_estimate()
    priority = fees.max_priority_fee_per_gas
    if priority is None:
        priority = estimate.priority_fee
    max_fee = fees.max_fee_per_gas
    if max_fee is None:
        max_fee = 2 * estimate.base_fee + priority
    if max_fee < priority:
        max_fee = priority

    logger.info(
        f"Fee estimate: base {Web3.from_wei(estimate.base_fee, 'gwei')} gwei, "
        f"using maxFee {Web3.from_wei(max_fee, 'gwei')} gwei / tip {Web3.from_wei(priority, 'gwei')} gwei"
    )
    return FeeOverrides(max_fee, priority)
