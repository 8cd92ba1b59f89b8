"""
CoreAddresses - the address bundle passed to every setAddresses() call.

Contracts receive the bundle as a positional address[]; the field order
below is that on-chain order and must not be rearranged.
"""

from dataclasses import astuple, dataclass, fields

ZERO_ADDRESS = "0x0000000000000000000000000000000000000000"


@dataclass(frozen=True)
class CoreAddresses:
    active_pool: str
    admin_contract: str
    borrower_operations: str
    coll_surplus_pool: str
    debt_token: str
    default_pool: str
    fee_collector: str
    gas_pool: str
    price_feed: str
    sorted_troves: str
    stability_pool: str
    timelock: str
    treasury: str
    trove_manager: str
    trove_manager_operations: str

    def as_ordered_list(self) -> list[str]:
        return list(astuple(self))

    def validate(self) -> None:
        """Raise ValueError naming the first empty or zero entry."""
        for index, f in enumerate(fields(self)):
            value = getattr(self, f.name)
            if not value or value.lower() == ZERO_ADDRESS:
                raise ValueError(f"setAddresses :: Invalid address for index {index} ({f.name})")
