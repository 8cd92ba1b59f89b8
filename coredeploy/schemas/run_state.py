"""
RunState - everything one deployment run knows, owned by the orchestrator.

The orchestrator creates a RunState at the start of a run and passes it
explicitly to each phase. Records are append/update-only: once a unit is
recorded as deployed it is never removed within a run.
"""

from dataclasses import dataclass, field
from enum import Enum
from typing import Optional, TYPE_CHECKING

from .record import DeploymentRecord
from .units import UnitRole, UnitSpec

if TYPE_CHECKING:
    from coredeploy.chain.base import UnitHandle
    from coredeploy.config import TargetConfig


class RunPhase(str, Enum):
    """Orchestrator lifecycle. Transitions are forward-only within a run."""
    INIT = "init"
    PROVISIONING = "provisioning"
    WIRING = "wiring"
    RESOURCE_CONFIG = "resource_config"
    FINALIZE = "finalize"
    DONE = "done"
    FAILED = "failed"

    @property
    def terminal(self) -> bool:
        return self in (RunPhase.DONE, RunPhase.FAILED)


_PHASE_ORDER = [
    RunPhase.INIT,
    RunPhase.PROVISIONING,
    RunPhase.WIRING,
    RunPhase.RESOURCE_CONFIG,
    RunPhase.FINALIZE,
    RunPhase.DONE,
]


@dataclass
class RunState:
    """
    In-memory state of one run.

    Attributes:
        config: Resolved target configuration
        specs: Ordered unit table for the target
        records: name -> DeploymentRecord, mirrored to the state file
        handles: role -> live handle, filled during provisioning
        phase: Current lifecycle phase
    """
    config: "TargetConfig"
    specs: tuple[UnitSpec, ...]
    records: dict[str, DeploymentRecord] = field(default_factory=dict)
    handles: dict[UnitRole, "UnitHandle"] = field(default_factory=dict)
    phase: RunPhase = RunPhase.INIT

    def advance(self, phase: RunPhase) -> None:
        """Move to a later phase, or to FAILED from any non-terminal phase."""
        if self.phase.terminal:
            raise RuntimeError(f"Run already finished in phase {self.phase.value}")
        if phase != RunPhase.FAILED and _PHASE_ORDER.index(phase) <= _PHASE_ORDER.index(self.phase):
            raise RuntimeError(f"Cannot move from {self.phase.value} back to {phase.value}")
        self.phase = phase

    def spec_for(self, role: UnitRole) -> UnitSpec:
        for spec in self.specs:
            if spec.role == role:
                return spec
        raise KeyError(f"No unit with role {role.value}")

    def handle_for(self, role: UnitRole) -> "UnitHandle":
        if role not in self.handles:
            raise KeyError(f"Unit {role.value} has not been provisioned")
        return self.handles[role]

    def get_record(self, name: str) -> Optional[DeploymentRecord]:
        return self.records.get(name)

    def record(self, name: str, record: DeploymentRecord) -> None:
        existing = self.records.get(name)
        if existing is not None and existing.deployed and not record.deployed:
            raise ValueError(f"Refusing to un-record deployed unit {name}")
        self.records[name] = record
