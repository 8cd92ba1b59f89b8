"""Interfaces the orchestrator consumes from the network side.

This module defines the core abstractions:
- ChainClient: balance, fees, transaction submission and confirmation
- Factory: construct a new unit or attach to an existing address
- UnitHandle: call surface of one deployed unit
- Registry: explorer-side source publication

The orchestrator depends only on these protocols; web3-backed adapters live
in coredeploy.chain.web3_client and coredeploy.chain.explorer.
"""

from dataclasses import dataclass, field
from typing import Any, Optional, Protocol, runtime_checkable

from coredeploy.schemas import UnitSpec


TxHash = str


@dataclass(frozen=True)
class FeeEstimate:
    """Current EIP-1559 fee market, in wei."""

    base_fee: int
    priority_fee: int


@dataclass(frozen=True)
class FeeOverrides:
    """Explicit fee parameters attached to every write."""

    max_fee_per_gas: int
    max_priority_fee_per_gas: int
    gas_limit: Optional[int] = None

    def with_gas_limit(self, gas_limit: int) -> "FeeOverrides":
        return FeeOverrides(self.max_fee_per_gas, self.max_priority_fee_per_gas, gas_limit)

    def as_tx_params(self) -> dict[str, int]:
        params = {
            "maxFeePerGas": self.max_fee_per_gas,
            "maxPriorityFeePerGas": self.max_priority_fee_per_gas,
        }
        if self.gas_limit is not None:
            params["gas"] = self.gas_limit
        return params


@dataclass(frozen=True)
class Block:
    number: int
    timestamp: int


@dataclass(frozen=True)
class Receipt:
    """The parts of a transaction receipt the orchestrator looks at."""

    tx_hash: TxHash
    block_number: int
    status: int = 1
    contract_address: Optional[str] = None
    effective_gas_price: int = 0
    gas_used: int = 0
    raw: dict[str, Any] = field(default_factory=dict, compare=False, repr=False)


@runtime_checkable
class ChainClient(Protocol):
    """Protocol for the remote network.

    Confirmation timeouts are the client's concern: `wait` raises
    TransientRemoteError when the receipt does not arrive in time.
    """

    @property
    def account(self) -> str:
        """Address of the deployer account that signs every write."""
        ...

    async def get_balance(self, address: str) -> int:
        ...

    async def get_fee_estimate(self) -> FeeEstimate:
        ...

    async def submit(self, tx: dict[str, Any]) -> TxHash:
        """Sign and broadcast a transaction, returning its hash."""
        ...

    async def wait(self, tx_hash: TxHash, confirmations: int = 1) -> Receipt:
        """Wait for a transaction to be mined with `confirmations` blocks on top."""
        ...

    async def get_block(self, tag: str | int = "latest") -> Block:
        ...

    async def get_storage_at(self, address: str, slot: int) -> bytes:
        ...


@runtime_checkable
class UnitHandle(Protocol):
    """Call surface of one deployed unit.

    Which functions may be called is decided by the unit's capabilities in
    its UnitSpec, not by probing the handle.
    """

    async def get_address(self) -> str:
        ...

    async def call(self, function: str, *args: Any) -> Any:
        """Read-only call."""
        ...

    async def send(self, function: str, *args: Any, overrides: FeeOverrides) -> TxHash:
        """Submit a state-changing call and return the transaction hash."""
        ...

    def encode(self, function: str, *args: Any) -> str:
        """ABI-encode a call to this unit as 0x-prefixed calldata."""
        ...


@runtime_checkable
class Factory(Protocol):
    """Builds handles for units."""

    async def construct(self, spec: UnitSpec, overrides: FeeOverrides) -> tuple[UnitHandle, TxHash]:
        """Create a new instance and wait until it is confirmed."""
        ...

    async def attach(self, spec: UnitSpec, address: str) -> UnitHandle:
        """Return a handle for an already deployed instance. Pure read."""
        ...


@runtime_checkable
class Registry(Protocol):
    """Explorer that publishes verified sources."""

    @property
    def base_url(self) -> Optional[str]:
        ...

    async def publish(self, address: str, metadata: dict[str, Any]) -> str:
        """Verify `address` and return the public URL of its source page.

        Raises:
            VerificationError: If the explorer rejects the submission
        """
        ...


async def send_and_wait(
    chain: ChainClient,
    handle: UnitHandle,
    function: str,
    *args: Any,
    overrides: FeeOverrides,
    confirmations: int = 1,
) -> Receipt:
    """Submit a write through `handle` and wait for its confirmation."""
    tx_hash = await handle.send(function, *args, overrides=overrides)
    return await chain.wait(tx_hash, confirmations)
