"""Orchestrator - Central entry point for a deployment run.

This module sequences the phases of a run:
1. Loads the durable state file (before any remote call)
2. Provisions every unit of the target's unit table
3. Wires the units together
4. Registers the configured collateral
5. Optionally completes setup, verifies sources and hands off ownership

Usage:
    from coredeploy.orchestrator import run, RunOptions

    # Deploy to a target (reads coredeploy/targets/<target>.yaml)
    run("botanix-testnet")

    # With the optional finalize steps
    run("arbitrum", RunOptions(verify=True, transfer_ownership=True))
"""

import asyncio
import logging
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Optional

from coredeploy.chain.base import ChainClient, Factory, Registry
from coredeploy.config import (
    TargetConfig,
    get_coredeploy_home,
    load_config,
    load_credentials,
    load_env_file,
)
from coredeploy.errors import ConfigError
from coredeploy.finalizer import Finalizer
from coredeploy.provisioner import UnitProvisioner
from coredeploy.resources import ParameterConfigurator
from coredeploy.schemas import DeploymentRecord, RunPhase, RunState, build_unit_specs
from coredeploy.state_store import FileStateStore, StateStore
from coredeploy.utils import format_units
from coredeploy.wiring import WiringCoordinator

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class RunOptions:
    """Optional finalize steps; all off by default."""
    verify: bool = False
    transfer_ownership: bool = False
    complete_setup: bool = False

    @property
    def finalize(self) -> bool:
        return self.verify or self.transfer_ownership or self.complete_setup


@dataclass
class DeployResult:
    """Outcome of a run."""
    target: str
    phase: RunPhase
    records: dict[str, DeploymentRecord] = field(default_factory=dict)
    cost_wei: int = 0

    def to_dict(self) -> dict[str, Any]:
        return {
            "target": self.target,
            "phase": self.phase.value,
            "cost_wei": self.cost_wei,
            "records": {name: record.to_dict() for name, record in self.records.items()},
        }


class CoreDeployer:
    """
    Runs one deployment against already-built collaborators.

    Owns the RunState for the duration of run() and passes it to each phase.
    """

    def __init__(
        self,
        config: TargetConfig,
        chain: ChainClient,
        factory: Factory,
        store: StateStore,
        registry: Optional[Registry] = None,
        options: Optional[RunOptions] = None,
    ):
        self.config = config
        self.chain = chain
        self.store = store
        self.options = options or RunOptions()

        self.provisioner = UnitProvisioner(
            factory,
            chain,
            store,
            max_attempts=config.deploy_attempts,
            backoff_seconds=config.retry_backoff_seconds,
            fees=config.fees,
        )
        self.wiring = WiringCoordinator(chain, config.tx_confirmations, config.fees)
        self.configurator = ParameterConfigurator(chain, config.tx_confirmations, config.fees)
        self.finalizer = Finalizer(chain, store, config.tx_confirmations, config.fees, registry)

    async def _log_balance(self, previous: Optional[int] = None) -> int:
        balance = await self.chain.get_balance(self.chain.account)
        message = f"{self.chain.account} Balance: {format_units(balance)}"
        if previous is not None and previous != balance:
            message += f" (Deployment cost: {format_units(previous - balance)})"
        logger.info(message)
        return balance

    async def run(self) -> DeployResult:
        """
        Execute every phase in order.

        Returns:
            DeployResult with the final phase, records and spent amount

        Raises:
            ConfigError: If the state file is malformed (no remote call made)
            FatalDeployError, WiringError, TransientRemoteError: On a fatal
                failure; the phase is set to FAILED before re-raising
        """
        target = self.config.target.value
        state = RunState(
            config=self.config,
            specs=build_unit_specs(self.config),
            records=self.store.load(),
        )
        logger.info(f"Deploying core units on {target}...", extra={"phase": state.phase.value})

        try:
            balance_before = await self._log_balance()
            state.advance(RunPhase.PROVISIONING)
            logger.info("Deploying core contracts...", extra={"phase": state.phase.value})
            await self.provisioner.provision_all(state)

            state.advance(RunPhase.WIRING)
            logger.info("Setting contract addresses...", extra={"phase": state.phase.value})
            await self.wiring.wire(state)

            state.advance(RunPhase.RESOURCE_CONFIG)
            await self.configurator.configure_resources(state, self.config.collateral)

            if self.options.finalize:
                state.advance(RunPhase.FINALIZE)
                await self._finalize(state)

            state.advance(RunPhase.DONE)
        except Exception:
            failed_in = state.phase
            state.advance(RunPhase.FAILED)
            logger.error(f"Deployment on {target} failed during {failed_in.value}", extra={"phase": failed_in.value})
            raise

        balance_after = await self._log_balance(balance_before)
        return DeployResult(
            target=target,
            phase=state.phase,
            records=dict(state.records),
            cost_wei=max(balance_before - balance_after, 0),
        )

    async def _finalize(self, state: RunState) -> None:
        if self.options.complete_setup:
            await self.finalizer.complete_setup(state)
        if self.options.verify:
            await self.finalizer.verify_all(state)
        if self.options.transfer_ownership:
            await self.finalizer.finalize_ownership(state, self.config.admins.contract_upgrades_admin)


def run(
    target: str,
    options: Optional[RunOptions] = None,
    home: Optional[Path] = None,
    targets_dir: Optional[Path] = None,
) -> DeployResult:
    """
    Run a deployment for `target`.

    Configuration and credentials are resolved before any network
    connection is opened.

    Args:
        target: Deployment target name (e.g. "botanix-testnet")
        options: Optional finalize steps
        home: coredeploy home holding .env (defaults to $COREDEPLOY_HOME)
        targets_dir: Directory of target YAML bundles

    Returns:
        DeployResult

    Raises:
        ConfigError: If configuration, credentials or the state file are invalid
    """
    from coredeploy.chain.artifacts import ArtifactStore
    from coredeploy.chain.explorer import ExplorerRegistry
    from coredeploy.chain.web3_client import ArtifactFactory, Web3ChainClient

    options = options or RunOptions()
    load_env_file(home or get_coredeploy_home())
    config = load_config(target, targets_dir)
    private_key = load_credentials()

    store = FileStateStore(config.output_file)
    # Malformed state fails here, before connecting
    store.load()
    try:
        chain = Web3ChainClient(config.network, private_key)
    except ValueError as e:
        raise ConfigError(f"DEPLOYER_PRIVATEKEY is not a valid private key: {e}") from e

    artifacts = ArtifactStore(config.artifacts_dir)
    factory = ArtifactFactory(chain, artifacts, config.tx_confirmations)

    registry = None
    if options.verify:
        if config.explorer.api_url:
            registry = ExplorerRegistry(
                api_url=config.explorer.api_url,
                base_url=config.explorer.base_url,
                api_key=config.explorer.api_key,
                artifacts=artifacts,
                poll_interval=config.network.poll_interval,
            )
        else:
            logger.warning(f"No explorer API configured for {config.target.value}, verification disabled")

    deployer = CoreDeployer(config, chain, factory, store, registry, options)

    async def _main() -> DeployResult:
        await chain.connect()
        return await deployer.run()

    return asyncio.run(_main())
