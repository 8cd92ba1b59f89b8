"""
Configuration management for coredeploy.

Each deployment target resolves to a YAML bundle in coredeploy/targets/
(or COREDEPLOY_TARGETS_DIR): RPC endpoint, admin addresses, collateral
list, output file and confirmation count. Secrets (the deployer key,
explorer API keys) come from the environment, optionally loaded from
$COREDEPLOY_HOME/.env.
"""

import os
from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path
from typing import Any, Optional

import yaml
from dotenv import load_dotenv
from web3 import Web3

from coredeploy.errors import ConfigError
from coredeploy.schemas.addresses import ZERO_ADDRESS
from coredeploy.schemas.resources import ResourceItem, parse_amount


DEFAULT_TARGETS_DIR = Path(__file__).parent / "targets"


class DeploymentTarget(str, Enum):
    """Supported target networks; each has a matching YAML bundle."""
    LOCALHOST = "localhost"
    ARBITRUM = "arbitrum"
    HOLESKY = "holesky"
    LINEA = "linea"
    MAINNET = "mainnet"
    MANTLE = "mantle"
    OPTIMISM = "optimism"
    POLYGON_ZKEVM = "polygon-zkevm"
    ARBITRUM_FORK = "arbitrum-fork"
    CORE_TESTNET = "core-testnet"
    BITFINITY = "bitfinity"
    BOTANIX_TESTNET = "botanix-testnet"

    @property
    def is_localhost(self) -> bool:
        return self == DeploymentTarget.LOCALHOST

    @property
    def is_testnet(self) -> bool:
        return self in _TESTNETS

    @property
    def is_layer2(self) -> bool:
        return self in _LAYER2

    @classmethod
    def parse(cls, value: "str | DeploymentTarget") -> "DeploymentTarget":
        if isinstance(value, cls):
            return value
        try:
            return cls(value)
        except ValueError:
            supported = ", ".join(t.value for t in cls)
            raise ConfigError(f"Unknown deployment target '{value}'. Supported: {supported}")


_TESTNETS = frozenset({
    DeploymentTarget.LOCALHOST,
    DeploymentTarget.HOLESKY,
    DeploymentTarget.CORE_TESTNET,
    DeploymentTarget.BITFINITY,
    DeploymentTarget.BOTANIX_TESTNET,
})

_LAYER2 = frozenset({
    DeploymentTarget.ARBITRUM,
    DeploymentTarget.ARBITRUM_FORK,
    DeploymentTarget.OPTIMISM,
})


def get_coredeploy_home() -> Path:
    """Get coredeploy home directory from env var or default."""
    return Path(os.environ.get("COREDEPLOY_HOME", "~/.config/coredeploy")).expanduser()


def get_targets_dir() -> Path:
    """Get the directory holding target YAML bundles."""
    override = os.environ.get("COREDEPLOY_TARGETS_DIR")
    return Path(override).expanduser() if override else DEFAULT_TARGETS_DIR


def load_env_file(home: Optional[Path] = None) -> None:
    """Load $COREDEPLOY_HOME/.env into the environment if it exists."""
    env_path = (home or get_coredeploy_home()) / ".env"
    if env_path.exists():
        load_dotenv(env_path, override=False)


@dataclass(frozen=True)
class NetworkConfig:
    rpc_url: str
    chain_id: Optional[int] = None
    request_timeout: float = 60.0
    wait_timeout: float = 300.0
    poll_interval: float = 2.0


@dataclass(frozen=True)
class ExplorerConfig:
    base_url: Optional[str] = None
    api_url: Optional[str] = None
    api_key_env: Optional[str] = None

    @property
    def api_key(self) -> Optional[str]:
        if not self.api_key_env:
            return None
        return os.environ.get(self.api_key_env) or None


@dataclass(frozen=True)
class AdminAddresses:
    contract_upgrades_admin: Optional[str]
    system_params_admin: str
    treasury_wallet: str


@dataclass(frozen=True)
class FeeConfig:
    """Explicit fee overrides; unset fields are derived from the chain."""
    max_fee_per_gas: Optional[int] = None
    max_priority_fee_per_gas: Optional[int] = None


@dataclass(frozen=True)
class TargetConfig:
    """Resolved configuration bundle for one deployment target."""
    target: DeploymentTarget
    network: NetworkConfig
    admins: AdminAddresses
    output_file: Path
    artifacts_dir: Path
    tx_confirmations: int = 1
    deploy_attempts: int = 2
    retry_backoff_seconds: float = 5.0
    fees: FeeConfig = field(default_factory=FeeConfig)
    explorer: ExplorerConfig = field(default_factory=ExplorerConfig)
    debt_token_address: Optional[str] = None
    redemption_softening_param: int = 9950
    collateral: tuple[ResourceItem, ...] = ()

    def __repr__(self) -> str:
        return f"TargetConfig(target={self.target.value}, collateral={len(self.collateral)})"


def _require_address(value: Any, key: str, required: bool = True) -> Optional[str]:
    if value in (None, ""):
        if required:
            raise ConfigError(f"Missing required address '{key}'")
        return None
    if isinstance(value, str):
        value = os.path.expandvars(value.strip())
    if not isinstance(value, str) or not Web3.is_address(value):
        raise ConfigError(f"'{key}' is not a valid address: {value!r}")
    return Web3.to_checksum_address(value)


def _optional_amount(value: Any, key: str) -> Optional[int]:
    return None if value is None else parse_amount(value, key)


def _load_yaml(path: Path) -> dict[str, Any]:
    if not path.exists():
        raise ConfigError(f"Configuration file not found: {path}")
    try:
        with open(path, "r") as f:
            data = yaml.safe_load(f)
    except yaml.YAMLError as e:
        raise ConfigError(f"Invalid YAML syntax in {path}: {e}") from e
    if not data:
        raise ConfigError(f"Configuration file is empty: {path}")
    if not isinstance(data, dict):
        raise ConfigError(f"Configuration file must contain a mapping: {path}")
    return data


def parse_target_config(target: DeploymentTarget, data: dict[str, Any]) -> TargetConfig:
    """
    Validate a raw YAML mapping into a TargetConfig.

    Relative paths (output_file, artifacts_dir) resolve against the
    current working directory, matching how the tool is run from a
    contracts checkout.

    Raises:
        ConfigError: If a required key is missing or malformed
    """
    network = data.get("network") or {}
    if not network.get("rpc_url"):
        raise ConfigError(f"{target.value}: missing 'network.rpc_url'")

    admins = data.get("admins") or {}
    explorer = data.get("explorer") or {}
    fees = data.get("fees") or {}

    if not data.get("output_file"):
        raise ConfigError(f"{target.value}: missing 'output_file'")

    confirmations = int(data.get("tx_confirmations", 1))
    attempts = int(data.get("deploy_attempts", 2))
    if confirmations < 1:
        raise ConfigError(f"{target.value}: tx_confirmations must be >= 1")
    if attempts < 1:
        raise ConfigError(f"{target.value}: deploy_attempts must be >= 1")

    upgrades_admin = _require_address(
        admins.get("contract_upgrades_admin"), "admins.contract_upgrades_admin", required=False
    )
    if upgrades_admin == Web3.to_checksum_address(ZERO_ADDRESS):
        upgrades_admin = None

    return TargetConfig(
        target=target,
        network=NetworkConfig(
            rpc_url=os.path.expandvars(network["rpc_url"]),
            chain_id=int(network["chain_id"]) if network.get("chain_id") is not None else None,
            request_timeout=float(network.get("request_timeout", 60.0)),
            wait_timeout=float(network.get("wait_timeout", 300.0)),
            poll_interval=float(network.get("poll_interval", 2.0)),
        ),
        admins=AdminAddresses(
            contract_upgrades_admin=upgrades_admin,
            system_params_admin=_require_address(admins.get("system_params_admin"), "admins.system_params_admin"),
            treasury_wallet=_require_address(admins.get("treasury_wallet"), "admins.treasury_wallet"),
        ),
        output_file=Path(data["output_file"]).expanduser(),
        artifacts_dir=Path(data.get("artifacts_dir", "artifacts")).expanduser(),
        tx_confirmations=confirmations,
        deploy_attempts=attempts,
        retry_backoff_seconds=float(data.get("retry_backoff_seconds", 5.0)),
        fees=FeeConfig(
            max_fee_per_gas=_optional_amount(fees.get("max_fee_per_gas"), "fees.max_fee_per_gas"),
            max_priority_fee_per_gas=_optional_amount(
                fees.get("max_priority_fee_per_gas"), "fees.max_priority_fee_per_gas"
            ),
        ),
        explorer=ExplorerConfig(
            base_url=(explorer.get("base_url") or "").strip().rstrip("/") or None,
            api_url=explorer.get("api_url") or None,
            api_key_env=explorer.get("api_key_env") or None,
        ),
        debt_token_address=_require_address(data.get("debt_token_address"), "debt_token_address", required=False),
        redemption_softening_param=int(data.get("redemption_softening_param", 9950)),
        collateral=tuple(ResourceItem.from_dict(item) for item in data.get("collateral") or []),
    )


def load_config(target: "str | DeploymentTarget", targets_dir: Optional[Path] = None) -> TargetConfig:
    """
    Load the configuration bundle for a deployment target.

    Args:
        target: Target name or enum member
        targets_dir: Directory of target YAML files. Defaults to get_targets_dir()

    Returns:
        TargetConfig instance

    Raises:
        ConfigError: If the target is unknown or its bundle is invalid
    """
    target = DeploymentTarget.parse(target)
    base_dir = targets_dir or get_targets_dir()
    data = _load_yaml(base_dir / f"{target.value}.yaml")
    return parse_target_config(target, data)


def load_credentials() -> str:
    """
    Return the deployer private key from DEPLOYER_PRIVATEKEY.

    Raises:
        ConfigError: If the variable is unset or empty
    """
    key = os.environ.get("DEPLOYER_PRIVATEKEY", "").strip()
    if not key:
        raise ConfigError("Provide a value for DEPLOYER_PRIVATEKEY in your .env file")
    return key
