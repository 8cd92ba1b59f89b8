"""
Unit schemas - the closed table of contracts a deployment provisions.

A UnitSpec describes one unit statically: its state key, its role in the
system, whether it is freshly constructed or attached to a known address,
whether it sits behind an ERC-1967 proxy, and which capabilities the
orchestrator may use on it. Capabilities come from this table; handles are
never inspected at runtime.
"""

from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Optional, TYPE_CHECKING

if TYPE_CHECKING:
    from coredeploy.config import TargetConfig


TESTNET_TIMELOCK_DELAY = 5 * 60  # 5 minutes
TIMELOCK_DELAY = 2 * 86_400  # 2 days


class UnitKind(str, Enum):
    """Whether a unit must be created or may reuse a deployed instance."""
    FRESH = "fresh"
    ATTACHABLE = "attachable"


class UnitRole(str, Enum):
    """Logical slot a unit fills in the system."""
    ACTIVE_POOL = "active_pool"
    ADMIN_CONTRACT = "admin_contract"
    BORROWER_OPERATIONS = "borrower_operations"
    COLL_SURPLUS_POOL = "coll_surplus_pool"
    DEBT_TOKEN = "debt_token"
    DEFAULT_POOL = "default_pool"
    FEE_COLLECTOR = "fee_collector"
    GAS_POOL = "gas_pool"
    PRICE_FEED = "price_feed"
    SORTED_TROVES = "sorted_troves"
    STABILITY_POOL = "stability_pool"
    TIMELOCK = "timelock"
    TROVE_MANAGER = "trove_manager"
    TROVE_MANAGER_OPERATIONS = "trove_manager_operations"


class Capability(str, Enum):
    """Optional call surfaces a unit exposes."""
    # setAddresses(address[]) + isAddressSetupInitialized()
    ADDRESS_SETUP = "address_setup"
    # owner() + transferOwnership(address)
    OWNABLE = "ownable"
    # isSetupInitialized() (+ setSetupIsInitialized() where applicable)
    SETUP_FLAG = "setup_flag"
    # addWhitelist(address) + whitelistedContracts(address)
    ALLOW_LIST = "allow_list"


@dataclass(frozen=True)
class UnitSpec:
    """
    Static descriptor for one unit.

    Attributes:
        name: Unique state key, also the artifact name (e.g. "ActivePool")
        role: Logical slot this unit fills
        kind: FRESH (construct) or ATTACHABLE (may reuse `address`)
        upgradeable: Deployed behind an ERC-1967 proxy
        params: Constructor parameters
        initializer: Initializer called through the proxy after construction
        address: Known address for an ATTACHABLE unit
        capabilities: Call surfaces the orchestrator may use
    """
    name: str
    role: UnitRole
    kind: UnitKind = UnitKind.FRESH
    upgradeable: bool = False
    params: tuple[Any, ...] = ()
    initializer: Optional[str] = None
    address: Optional[str] = None
    capabilities: frozenset[Capability] = field(default_factory=frozenset)

    def __post_init__(self):
        if self.kind == UnitKind.ATTACHABLE and not self.address:
            raise ValueError(f"Attachable unit {self.name} needs an address")
        if self.initializer and not self.upgradeable:
            raise ValueError(f"Initializer on {self.name} requires an upgradeable unit")

    def has(self, capability: Capability) -> bool:
        return capability in self.capabilities


def _upgradeable(name: str, role: UnitRole, *capabilities: Capability) -> UnitSpec:
    return UnitSpec(
        name=name,
        role=role,
        upgradeable=True,
        initializer="initialize",
        capabilities=frozenset((Capability.OWNABLE,) + capabilities),
    )


def build_unit_specs(config: "TargetConfig") -> tuple[UnitSpec, ...]:
    """
    Build the ordered unit table for a target.

    The order is fixed so that an interrupted run always resumes at the
    same unit.
    """
    target = config.target
    addr = Capability.ADDRESS_SETUP

    specs = [
        _upgradeable("ActivePool", UnitRole.ACTIVE_POOL, addr),
        _upgradeable("AdminContract", UnitRole.ADMIN_CONTRACT, addr, Capability.SETUP_FLAG),
        _upgradeable("BorrowerOperations", UnitRole.BORROWER_OPERATIONS, addr),
        _upgradeable("CollSurplusPool", UnitRole.COLL_SURPLUS_POOL, addr),
        _upgradeable("DefaultPool", UnitRole.DEFAULT_POOL, addr),
        _upgradeable("FeeCollector", UnitRole.FEE_COLLECTOR, addr),
        _upgradeable("SortedTroves", UnitRole.SORTED_TROVES, addr),
        _upgradeable("StabilityPool", UnitRole.STABILITY_POOL, addr),
        _upgradeable("TroveManager", UnitRole.TROVE_MANAGER, addr),
        _upgradeable("TroveManagerOperations", UnitRole.TROVE_MANAGER_OPERATIONS, addr),
        UnitSpec(name="GasPool", role=UnitRole.GAS_POOL),
    ]

    if target.is_localhost:
        specs.append(UnitSpec(
            name="PriceFeedTestnet",
            role=UnitRole.PRICE_FEED,
            capabilities=frozenset({Capability.OWNABLE}),
        ))
    else:
        specs.append(_upgradeable("PriceFeed", UnitRole.PRICE_FEED, addr))

    if target.is_testnet:
        timelock_name, delay = "TimelockTester", TESTNET_TIMELOCK_DELAY
    else:
        timelock_name, delay = "Timelock", TIMELOCK_DELAY
    specs.append(UnitSpec(
        name=timelock_name,
        role=UnitRole.TIMELOCK,
        params=(delay, config.admins.system_params_admin),
    ))

    debt_capabilities = frozenset({Capability.OWNABLE, Capability.SETUP_FLAG, Capability.ALLOW_LIST})
    if config.debt_token_address:
        specs.append(UnitSpec(
            name="DebtToken",
            role=UnitRole.DEBT_TOKEN,
            kind=UnitKind.ATTACHABLE,
            address=config.debt_token_address,
            capabilities=debt_capabilities,
        ))
    else:
        specs.append(UnitSpec(name="DebtToken", role=UnitRole.DEBT_TOKEN, capabilities=debt_capabilities))

    return tuple(specs)
