"""
DeploymentRecord schema - durable facts about one provisioned unit.

Serialized keys match the deployment output files written by earlier
tooling (address, implAddress, txHash, verification) so existing state
files can be resumed as-is.
"""

from dataclasses import dataclass, field
from typing import Any, Optional


@dataclass
class DeploymentRecord:
    """
    A record of one provisioned unit.

    Attributes:
        address: Canonical address of the unit (proxy address when upgradeable)
        secondary_address: Implementation address behind a proxy, best-effort
        creation_tx: Hash of the transaction that created the unit
        verification: Explorer URL once the unit has been verified
        extra: Unknown keys carried through untouched
    """
    address: Optional[str] = None
    secondary_address: Optional[str] = None
    creation_tx: Optional[str] = None
    verification: Optional[str] = None
    extra: dict[str, Any] = field(default_factory=dict)

    @property
    def deployed(self) -> bool:
        return bool(self.address)

    @property
    def verified(self) -> bool:
        return bool(self.verification)

    def to_dict(self) -> dict[str, Any]:
        """Serialize to dictionary for JSON output."""
        result: dict[str, Any] = dict(self.extra)
        if self.address is not None:
            result["address"] = self.address
        if self.creation_tx is not None:
            result["txHash"] = self.creation_tx
        if self.secondary_address is not None:
            result["implAddress"] = self.secondary_address
        if self.verification is not None:
            result["verification"] = self.verification
        return result

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "DeploymentRecord":
        """Deserialize from dictionary."""
        known = {"address", "txHash", "implAddress", "verification"}
        return cls(
            address=data.get("address") or None,
            secondary_address=data.get("implAddress") or None,
            creation_tx=data.get("txHash") or None,
            verification=data.get("verification") or None,
            extra={k: v for k, v in data.items() if k not in known},
        )
