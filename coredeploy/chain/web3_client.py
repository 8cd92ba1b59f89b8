"""web3-backed implementations of ChainClient, UnitHandle and Factory."""

import asyncio
import logging
import time
from typing import Any

from web3 import AsyncHTTPProvider, AsyncWeb3, Web3
from web3.contract import AsyncContract
from web3.exceptions import TimeExhausted, Web3Exception

from coredeploy.chain.artifacts import ArtifactStore
from coredeploy.chain.base import Block, FeeEstimate, FeeOverrides, Receipt, TxHash
from coredeploy.config import NetworkConfig
from coredeploy.errors import ConfigError, TransactionReverted, TransientRemoteError
from coredeploy.schemas import UnitSpec

logger = logging.getLogger(__name__)

PROXY_ARTIFACT = "ERC1967Proxy"

_REMOTE_ERRORS = (Web3Exception, ValueError, asyncio.TimeoutError, OSError)


class Web3ChainClient:
    """ChainClient over AsyncWeb3, signing locally with the deployer key."""

    def __init__(self, network: NetworkConfig, private_key: str) -> None:
        self.network = network
        self.w3 = AsyncWeb3(AsyncHTTPProvider(network.rpc_url, request_kwargs={"timeout": network.request_timeout}))
        self._account = self.w3.eth.account.from_key(private_key)
        self._chain_id: int | None = network.chain_id
        logger.debug(f"Chain client initialized for {network.rpc_url}")

    @property
    def account(self) -> str:
        return self._account.address

    async def connect(self) -> None:
        """Check connectivity and that the endpoint serves the expected chain."""
        if not await self.w3.is_connected():
            raise ConnectionError(f"Unable to connect to RPC endpoint {self.network.rpc_url}")
        chain_id = await self.w3.eth.chain_id
        if self._chain_id is not None and chain_id != self._chain_id:
            raise ConfigError(f"Chain ID mismatch: expected {self._chain_id} got {chain_id}")
        self._chain_id = chain_id

    async def get_balance(self, address: str) -> int:
        try:
            return int(await self.w3.eth.get_balance(Web3.to_checksum_address(address)))
        except _REMOTE_ERRORS as e:
            raise TransientRemoteError(f"get_balance failed: {e}") from e

    async def get_fee_estimate(self) -> FeeEstimate:
        try:
            block = await self.w3.eth.get_block("latest")
            base_fee = block.get("baseFeePerGas")
            if base_fee is None:
                base_fee = await self.w3.eth.gas_price
            try:
                priority_fee = await self.w3.eth.max_priority_fee
            except (Web3Exception, ValueError):
                priority_fee = 0
        except _REMOTE_ERRORS as e:
            raise TransientRemoteError(f"Fee estimation failed: {e}") from e
        return FeeEstimate(base_fee=int(base_fee), priority_fee=int(priority_fee))

    async def submit(self, tx: dict[str, Any]) -> TxHash:
        tx = dict(tx)
        tx.setdefault("from", self.account)
        try:
            tx["nonce"] = await self.w3.eth.get_transaction_count(self.account, "pending")
            if "chainId" not in tx:
                tx["chainId"] = self._chain_id if self._chain_id is not None else await self.w3.eth.chain_id
            if "gas" not in tx:
                tx["gas"] = await self.w3.eth.estimate_gas(tx)
            signed = self._account.sign_transaction(tx)
            tx_hash = await self.w3.eth.send_raw_transaction(signed.raw_transaction)
        except _REMOTE_ERRORS as e:
            raise TransientRemoteError(f"Transaction submission failed: {e}") from e
        return Web3.to_hex(tx_hash)

    async def wait(self, tx_hash: TxHash, confirmations: int = 1) -> Receipt:
        deadline = time.monotonic() + self.network.wait_timeout
        try:
            raw = await self.w3.eth.wait_for_transaction_receipt(
                tx_hash,
                timeout=self.network.wait_timeout,
                poll_latency=self.network.poll_interval,
            )
        except TimeExhausted as e:
            raise TransientRemoteError(f"Timed out waiting for {tx_hash}") from e
        except _REMOTE_ERRORS as e:
            raise TransientRemoteError(f"Receipt lookup failed for {tx_hash}: {e}") from e

        receipt = Receipt(
            tx_hash=tx_hash,
            block_number=int(raw["blockNumber"]),
            status=int(raw.get("status", 1)),
            contract_address=raw.get("contractAddress"),
            effective_gas_price=int(raw.get("effectiveGasPrice", 0)),
            gas_used=int(raw.get("gasUsed", 0)),
            raw=dict(raw),
        )
        if receipt.status == 0:
            raise TransactionReverted(tx_hash)

        while confirmations > 1:
            try:
                head = await self.w3.eth.block_number
            except _REMOTE_ERRORS as e:
                raise TransientRemoteError(f"Block number lookup failed: {e}") from e
            if head - receipt.block_number + 1 >= confirmations:
                break
            if time.monotonic() > deadline:
                raise TransientRemoteError(f"Timed out waiting for {confirmations} confirmations of {tx_hash}")
            await asyncio.sleep(self.network.poll_interval)
        return receipt

    async def get_block(self, tag: str | int = "latest") -> Block:
        try:
            block = await self.w3.eth.get_block(tag)
        except _REMOTE_ERRORS as e:
            raise TransientRemoteError(f"get_block({tag}) failed: {e}") from e
        return Block(number=int(block["number"]), timestamp=int(block["timestamp"]))

    async def get_storage_at(self, address: str, slot: int) -> bytes:
        try:
            return bytes(await self.w3.eth.get_storage_at(Web3.to_checksum_address(address), slot))
        except _REMOTE_ERRORS as e:
            raise TransientRemoteError(f"get_storage_at({address}) failed: {e}") from e


class Web3UnitHandle:
    """UnitHandle over an AsyncContract."""

    def __init__(self, contract: AsyncContract, chain: Web3ChainClient) -> None:
        self.contract = contract
        self._chain = chain

    def __repr__(self) -> str:
        return f"Web3UnitHandle(address={self.contract.address})"

    async def get_address(self) -> str:
        return self.contract.address

    async def call(self, function: str, *args: Any) -> Any:
        fn = getattr(self.contract.functions, function)
        try:
            return await fn(*args).call()
        except _REMOTE_ERRORS as e:
            raise TransientRemoteError(f"{function}() call failed: {e}") from e

    async def send(self, function: str, *args: Any, overrides: FeeOverrides) -> TxHash:
        fn = getattr(self.contract.functions, function)
        params = {"from": self._chain.account, **overrides.as_tx_params()}
        try:
            tx = await fn(*args).build_transaction(params)
        except _REMOTE_ERRORS as e:
            raise TransientRemoteError(f"{function}() could not be built: {e}") from e
        return await self._chain.submit(tx)

    def encode(self, function: str, *args: Any) -> str:
        return self.contract.encode_abi(function, args=list(args))


class ArtifactFactory:
    """
    Factory that deploys compiled Hardhat artifacts.

    Upgradeable units are deployed as an implementation plus an ERC1967Proxy
    whose constructor calls the initializer, so construction and
    initialization land in one confirmed step.
    """

    def __init__(self, chain: Web3ChainClient, artifacts: ArtifactStore, confirmations: int = 1) -> None:
        self._chain = chain
        self._artifacts = artifacts
        self._confirmations = confirmations

    def _contract(self, name: str, address: str | None = None) -> AsyncContract:
        artifact = self._artifacts.load(name)
        if address is None:
            return self._chain.w3.eth.contract(abi=artifact.abi, bytecode=artifact.bytecode)
        return self._chain.w3.eth.contract(address=Web3.to_checksum_address(address), abi=artifact.abi)

    async def _deploy(self, name: str, args: tuple[Any, ...], overrides: FeeOverrides) -> tuple[str, TxHash]:
        contract = self._contract(name)
        params = {"from": self._chain.account, **overrides.as_tx_params()}
        try:
            tx = await contract.constructor(*args).build_transaction(params)
        except _REMOTE_ERRORS as e:
            raise TransientRemoteError(f"{name} deployment could not be built: {e}") from e

        tx_hash = await self._chain.submit(tx)
        receipt = await self._chain.wait(tx_hash, self._confirmations)
        if not receipt.contract_address:
            raise TransientRemoteError(f"{name} deployment receipt has no contract address ({tx_hash})")

        logger.info(
            f"- {name} @ {receipt.contract_address} "
            f"(gas price {Web3.from_wei(receipt.effective_gas_price, 'gwei')} gwei, gas used {receipt.gas_used})"
        )
        return Web3.to_checksum_address(receipt.contract_address), tx_hash

    async def construct(self, spec: UnitSpec, overrides: FeeOverrides) -> tuple[Web3UnitHandle, TxHash]:
        if not spec.upgradeable:
            address, tx_hash = await self._deploy(spec.name, spec.params, overrides)
            return await self.attach(spec, address), tx_hash

        implementation, _ = await self._deploy(spec.name, spec.params, overrides)
        init_data = "0x"
        if spec.initializer:
            init_data = self._contract(spec.name, implementation).encode_abi(spec.initializer, args=[])
        proxy_address, tx_hash = await self._deploy(PROXY_ARTIFACT, (implementation, init_data), overrides)
        return await self.attach(spec, proxy_address), tx_hash

    async def attach(self, spec: UnitSpec, address: str) -> Web3UnitHandle:
        return Web3UnitHandle(self._contract(spec.name, address), self._chain)
