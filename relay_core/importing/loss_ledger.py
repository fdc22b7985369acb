"""Ledger of losses that are known and attributable during an import.

Objects that could not be placed take their contents with them, and an
inventory that is smaller on the destination accepts fewer items than were
exported. Both are recorded here so validation can subtract them from the
expected counts instead of reporting them as unexplained loss.
"""

from collections import defaultdict
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional

from relay_core.config.validation import MAX_FAILED_ENTITY_DETAILS
from relay_core.keys import quality_key
from relay_core.verification import Verification, count_record, count_stack


@dataclass
class FailedPlacementLedger:
    """Totals of everything the destination could not receive.

    Attributes:
        entity_count: Objects that failed to place
        items: Item key -> count lost with failed objects or short inserts
        fluids: Fluid key -> amount lost with failed objects
        entities: First few failed objects, for the report
        insertion_losses: Item key -> count cut short by destination capacity
    """

    entity_count: int = 0
    items: Dict[str, int] = field(default_factory=dict)
    fluids: Dict[str, float] = field(default_factory=dict)
    entities: List[Dict[str, Any]] = field(default_factory=list)
    insertion_losses: Dict[str, int] = field(default_factory=dict)

    def record_failed_object(self, record: Dict[str, Any], reason: str) -> None:
        items: Dict[str, int] = defaultdict(int, self.items)
        fluids: Dict[str, float] = defaultdict(float, self.fluids)
        count_record(record, items, fluids)
        self.items = dict(items)
        self.fluids = dict(fluids)
        self.entity_count += 1
        if len(self.entities) < MAX_FAILED_ENTITY_DETAILS:
            self.entities.append(
                {
                    "id": record.get("id"),
                    "name": record.get("name"),
                    "position": record.get("position"),
                    "reason": reason,
                }
            )

    def record_insert_shortfall(self, stack: Dict[str, Any], inserted: int) -> None:
        """Record the part of *stack* that did not fit."""
        lost: Dict[str, int] = defaultdict(int)
        if inserted <= 0:
            count_stack(stack, lost)
        else:
            missing = int(stack.get("count", 1)) - inserted
            if missing <= 0:
                return
            lost[quality_key(stack["name"], stack.get("quality"))] += missing
        for key, count in lost.items():
            self.items[key] = self.items.get(key, 0) + count
            self.insertion_losses[key] = self.insertion_losses.get(key, 0) + count

    @property
    def is_empty(self) -> bool:
        return not (self.entity_count or self.items or self.fluids)

    def as_verification(self) -> Verification:
        return Verification(item_counts=dict(self.items), fluid_counts=dict(self.fluids))

    def summary(self) -> Dict[str, Any]:
        return {
            "entityCount": self.entity_count,
            "itemCounts": dict(self.items),
            "fluidCounts": dict(self.fluids),
            "insertionLosses": dict(self.insertion_losses),
            "entities": list(self.entities),
        }

    def to_dict(self) -> Dict[str, Any]:
        return {
            "entity_count": self.entity_count,
            "items": dict(self.items),
            "fluids": dict(self.fluids),
            "entities": list(self.entities),
            "insertion_losses": dict(self.insertion_losses),
        }

    @classmethod
    def from_dict(cls, data: Optional[Dict[str, Any]]) -> "FailedPlacementLedger":
        if not data:
            return cls()
        return cls(
            entity_count=int(data.get("entity_count", 0)),
            items={k: int(v) for k, v in (data.get("items") or {}).items()},
            fluids={k: float(v) for k, v in (data.get("fluids") or {}).items()},
            entities=list(data.get("entities") or []),
            insertion_losses={k: int(v) for k, v in (data.get("insertion_losses") or {}).items()},
        )
