"""
coredeploy.schemas - Data model for deployment runs.

UnitSpec -> DeploymentRecord -> RunState

Lifecycle:
1. UnitSpec: Static, per-target descriptor of a unit (closed table)
2. DeploymentRecord: Durable facts about a provisioned unit (state file)
3. RunState: In-memory state of one run, threaded through every phase
4. ResourceItem: One collateral entry from the target configuration
5. CoreAddresses: Ordered address bundle for setAddresses()
"""

from .units import (
    Capability,
    UnitKind,
    UnitRole,
    UnitSpec,
    build_unit_specs,
)
from .record import DeploymentRecord
from .resources import ResourceItem, parse_amount
from .addresses import CoreAddresses, ZERO_ADDRESS
from .run_state import RunPhase, RunState

__all__ = [
    # Units
    "Capability",
    "UnitKind",
    "UnitRole",
    "UnitSpec",
    "build_unit_specs",
    # Records
    "DeploymentRecord",
    # Resources
    "ResourceItem",
    "parse_amount",
    # Addresses
    "CoreAddresses",
    "ZERO_ADDRESS",
    # Run state
    "RunPhase",
    "RunState",
]
