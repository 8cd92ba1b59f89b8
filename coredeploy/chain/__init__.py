"""
coredeploy.chain - Network-side collaborators.

Protocols (base.py) are what the orchestrator consumes. The web3 and
explorer modules are the concrete adapters wired up by coredeploy.orchestrator.run().
"""

from .base import (
    Block,
    ChainClient,
    Factory,
    FeeEstimate,
    FeeOverrides,
    Receipt,
    Registry,
    TxHash,
    UnitHandle,
    send_and_wait,
)
from .proxy import IMPLEMENTATION_SLOT, resolve_implementation_address

__all__ = [
    "Block",
    "ChainClient",
    "Factory",
    "FeeEstimate",
    "FeeOverrides",
    "Receipt",
    "Registry",
    "TxHash",
    "UnitHandle",
    "send_and_wait",
    "IMPLEMENTATION_SLOT",
    "resolve_implementation_address",
]
