"""
UnitProvisioner - Ensure every unit in the table exists exactly once.

For each UnitSpec, in table order:
1. ATTACHABLE unit with a configured address -> attach, nothing recorded
2. Durable record with an address -> attach, no writes
3. Otherwise construct with explicit fee overrides, retrying within the
   attempt budget
4. Upgradeable units: look up the implementation behind the proxy
5. Persist the record before moving on

Step 5 is what makes a crashed run resumable: a unit is either fully
recorded or was never recorded at all.
"""

import asyncio
import logging

from coredeploy.chain.base import ChainClient, Factory, UnitHandle
from coredeploy.chain.proxy import resolve_implementation_address
from coredeploy.config import FeeConfig
from coredeploy.errors import FatalDeployError, TransientRemoteError
from coredeploy.fees import resolve_fee_overrides
from coredeploy.schemas import DeploymentRecord, RunState, UnitKind, UnitSpec, ZERO_ADDRESS
from coredeploy.state_store import StateStore
from coredeploy.utils import retry_with_backoff, sanitize_error_message

logger = logging.getLogger(__name__)


class UnitProvisioner:
    """
    Provision units into a RunState.

    Args:
        factory: Constructs or attaches unit handles
        chain: Chain client (fee estimates, proxy storage reads)
        store: Durable state, saved after every new record
        max_attempts: Construction attempts per unit, inclusive
        backoff_seconds: Wait between attempts
        fees: Explicit fee overrides from the target config
    """

    def __init__(
        self,
        factory: Factory,
        chain: ChainClient,
        store: StateStore,
        max_attempts: int = 2,
        backoff_seconds: float = 5.0,
        fees: FeeConfig = FeeConfig(),
    ):
        if max_attempts < 1:
            raise ValueError("max_attempts must be >= 1")
        self.factory = factory
        self.chain = chain
        self.store = store
        self.max_attempts = max_attempts
        self.backoff_seconds = backoff_seconds
        self.fees = fees

    async def provision(self, state: RunState, spec: UnitSpec) -> UnitHandle:
        """
        Return a handle for `spec`, constructing it only if no instance exists.

        Raises:
            FatalDeployError: If construction fails on every attempt
        """
        if spec.kind == UnitKind.ATTACHABLE:
            logger.info(f"Using existing {spec.name} from {spec.address}", extra={"unit": spec.name})
            return await self.factory.attach(spec, spec.address)

        existing = state.get_record(spec.name)
        if existing is not None and existing.deployed:
            logger.info(f"Using previous deployment: {existing.address} -> {spec.name}", extra={"unit": spec.name})
            return await self.factory.attach(spec, existing.address)

        logger.info(f"(Deploying {spec.name}...)", extra={"unit": spec.name})

        async def construct():
            overrides = await resolve_fee_overrides(self.chain, self.fees)
            return await self.factory.construct(spec, overrides)

        try:
            handle, tx_hash = await retry_with_backoff(
                construct,
                max_attempts=self.max_attempts,
                backoff_seconds=self.backoff_seconds,
                logger=logger,
                label=f"Deploy {spec.name}",
            )
        except Exception as e:
            raise FatalDeployError(spec.name, self.max_attempts, e) from e

        address = await handle.get_address()
        record = DeploymentRecord(address=address, creation_tx=tx_hash)
        if spec.upgradeable:
            try:
                record.secondary_address = await resolve_implementation_address(self.chain, address)
            except (TransientRemoteError, ValueError) as e:
                logger.warning(
                    f"Could not resolve implementation of {spec.name}: {sanitize_error_message(e)}",
                    extra={"unit": spec.name},
                )

        state.record(spec.name, record)
        self.store.save(state.records)
        logger.info(f"Deployed {spec.name} to {address}", extra={"unit": spec.name, "tx_hash": tx_hash})
        return handle

    async def provision_all(self, state: RunState) -> None:
        """
        Provision every unit of the table, in order, into `state.handles`.

        Raises:
            FatalDeployError: If a unit cannot be constructed, or a handle
                resolves to an empty address
        """
        for spec in state.specs:
            state.handles[spec.role] = await self.provision(state, spec)

        specs = list(state.specs)
        addresses = await asyncio.gather(*(state.handles[spec.role].get_address() for spec in specs))
        for spec, address in zip(specs, addresses):
            if not address or address.lower() == ZERO_ADDRESS:
                raise FatalDeployError(spec.name, 1, ValueError(f"unit resolved to an empty address ({address!r})"))
        logger.info(f"Provisioned {len(specs)} units")
