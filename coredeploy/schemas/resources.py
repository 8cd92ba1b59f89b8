"""
ResourceItem schema - one collateral entry from the target configuration.

Amounts may be given in wei (integers) or as "<decimal> ether" strings,
e.g. "1.1 ether" for a 110% collateral ratio.
"""

import os
from dataclasses import dataclass
from decimal import Decimal, InvalidOperation
from typing import Any, Optional

from web3 import Web3

from coredeploy.errors import ConfigError, ResourceConfigWarning


def parse_amount(value: Any, field_name: str = "amount") -> int:
    """
    Parse an on-chain amount into wei.

    Args:
        value: int (wei), or str like "0.025 ether", "10 gwei" or "1000"
        field_name: Used in error messages

    Returns:
        Amount in wei

    Raises:
        ConfigError: If the value cannot be parsed
    """
    if isinstance(value, bool):
        raise ConfigError(f"{field_name}: expected an amount, got {value!r}")
    if isinstance(value, int):
        return value
    if isinstance(value, str):
        parts = value.strip().split()
        try:
            if len(parts) == 1:
                return int(parts[0].replace("_", ""))
            if len(parts) == 2:
                return int(Web3.to_wei(Decimal(parts[0].replace("_", "")), parts[1].lower()))
        except (ValueError, InvalidOperation) as e:
            raise ConfigError(f"{field_name}: invalid amount {value!r}: {e}") from e
    raise ConfigError(f"{field_name}: invalid amount {value!r}")


def _optional_address(value: Any, field_name: str) -> Optional[str]:
    """Checksum an address from the config; missing values stay None."""
    if value in (None, ""):
        return None
    if isinstance(value, str):
        value = os.path.expandvars(value.strip())
    if not isinstance(value, str) or not Web3.is_address(value):
        raise ConfigError(f"{field_name}: invalid address {value!r}")
    return Web3.to_checksum_address(value)


@dataclass(frozen=True)
class ResourceItem:
    """
    A supported collateral and its risk parameters.

    Attributes:
        name: Display name used in log lines (e.g. "WBTC")
        address: Collateral token address
        oracle_address: Price feed aggregator address
        oracle_provider_type: 0 = Chainlink, 1 = API3, ...
        oracle_timeout_seconds: Staleness timeout for the oracle
        oracle_is_eth_indexed: Whether the oracle quotes in ETH
        borrowing_fee: Borrowing fee (wei-scaled), None uses the contract default
        ccr: Critical collateral ratio (wei-scaled)
        mcr: Minimum collateral ratio (wei-scaled)
        min_net_debt: Minimum debt per position
        mint_cap: Debt mint cap for this collateral
        gas_compensation: Gas compensation reserve
        decimals: Token decimals
        native_oracle: Also register the same oracle for the native coin
    """
    name: str
    address: Optional[str]
    oracle_address: Optional[str]
    oracle_provider_type: int = 0
    oracle_timeout_seconds: int = 0
    oracle_is_eth_indexed: bool = False
    borrowing_fee: Optional[int] = None
    ccr: int = 0
    mcr: int = 0
    min_net_debt: int = 0
    mint_cap: int = 0
    gas_compensation: int = 0
    decimals: int = 18
    native_oracle: bool = False

    def validate(self) -> None:
        """Raise ResourceConfigWarning if the item cannot be registered."""
        if not self.address:
            raise ResourceConfigWarning(self.name, "No address setup for collateral")
        if not self.oracle_address:
            raise ResourceConfigWarning(self.name, "No price feed oracle address setup for collateral")

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "ResourceItem":
        """Build an item from a YAML mapping."""
        name = data.get("name") or "?"
        borrowing_fee = data.get("borrowing_fee")
        return cls(
            name=name,
            address=_optional_address(data.get("address"), f"{name}.address"),
            oracle_address=_optional_address(data.get("oracle_address"), f"{name}.oracle_address"),
            oracle_provider_type=int(data.get("oracle_provider_type", 0)),
            oracle_timeout_seconds=int(data.get("oracle_timeout_seconds", 0)),
            oracle_is_eth_indexed=bool(data.get("oracle_is_eth_indexed", False)),
            borrowing_fee=parse_amount(borrowing_fee, f"{name}.borrowing_fee") if borrowing_fee is not None else None,
            ccr=parse_amount(data.get("ccr", 0), f"{name}.ccr"),
            mcr=parse_amount(data.get("mcr", 0), f"{name}.mcr"),
            min_net_debt=parse_amount(data.get("min_net_debt", 0), f"{name}.min_net_debt"),
            mint_cap=parse_amount(data.get("mint_cap", 0), f"{name}.mint_cap"),
            gas_compensation=parse_amount(data.get("gas_compensation", 0), f"{name}.gas_compensation"),
            decimals=int(data.get("decimals", 18)),
            native_oracle=bool(data.get("native_oracle", name == "wETH")),
        )
