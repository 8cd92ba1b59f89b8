"""ERC-1967 proxy helpers."""

from web3 import Web3

from coredeploy.chain.base import ChainClient
from coredeploy.schemas import ZERO_ADDRESS

# bytes32(uint256(keccak256("eip1967.proxy.implementation")) - 1)
IMPLEMENTATION_SLOT = 0x360894A13BA1A3210667C828492DB98DCA3E2076CC3735A920A3CA505D382BBC


async def resolve_implementation_address(chain: ChainClient, proxy_address: str) -> str:
    """
    Read the implementation address behind an ERC-1967 proxy.

    Raises:
        ValueError: If the slot is empty (not a proxy, or not initialized)
    """
    raw = await chain.get_storage_at(proxy_address, IMPLEMENTATION_SLOT)
    implementation = "0x" + bytes(raw)[-20:].hex().rjust(40, "0")
    if implementation == ZERO_ADDRESS:
        raise ValueError(f"No implementation address stored for proxy {proxy_address}")
    return Web3.to_checksum_address(implementation)
