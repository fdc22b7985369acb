"""Item and fluid totals derived from object records.

The verification block of a manifest is a cache of ``aggregate(objects)``;
``verify_manifest`` recomputes it and reports any drift.
"""

import logging
from collections import defaultdict
from dataclasses import dataclass, field
from typing import Any, Dict, Iterable, List, Tuple

from relay_core.keys import fluid_key, quality_key

logger = logging.getLogger(__name__)


@dataclass
class Verification:
    """Quality-keyed item counts and temperature-keyed fluid amounts."""

    item_counts: Dict[str, int] = field(default_factory=dict)
    fluid_counts: Dict[str, float] = field(default_factory=dict)

    @property
    def total_items(self) -> int:
        return sum(self.item_counts.values())

    @property
    def total_fluids(self) -> float:
        return sum(self.fluid_counts.values())

    def to_dict(self) -> Dict[str, Any]:
        return {"item_counts": dict(self.item_counts), "fluid_counts": dict(self.fluid_counts)}

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "Verification":
        return cls(
            item_counts={k: int(v) for k, v in (data.get("item_counts") or {}).items()},
            fluid_counts={k: float(v) for k, v in (data.get("fluid_counts") or {}).items()},
        )


def count_stack(stack: Dict[str, Any], counts: Dict[str, int]) -> None:
    """Add one stack (and any nested inventory) to *counts*."""
    key = quality_key(stack["name"], stack.get("quality"))
    counts[key] += int(stack.get("count", 1))
    for nested in stack.get("nested_inventory") or ():
        count_stack(nested, counts)


def count_fluid(fluid: Dict[str, Any], counts: Dict[str, float]) -> None:
    counts[fluid_key(fluid["name"], fluid.get("temperature"))] += float(fluid["amount"])


def count_record(record: Dict[str, Any], items: Dict[str, int], fluids: Dict[str, float]) -> None:
    payload = record.get("payload") or {}
    for inventory in payload.get("inventories") or ():
        for stack in inventory.get("items") or ():
            count_stack(stack, items)
    for lane in payload.get("belt") or ():
        for item in lane.get("items") or ():
            count_stack(item, items)
    if payload.get("held_item"):
        count_stack(payload["held_item"], items)
    if payload.get("stack"):
        count_stack(payload["stack"], items)
    for fluid in payload.get("fluids") or ():
        if fluid.get("amount", 0) > 0:
            count_fluid(fluid, fluids)


def aggregate(records: Iterable[Dict[str, Any]]) -> Verification:
    """Pure aggregation of item and fluid totals over *records*."""
    items: Dict[str, int] = defaultdict(int)
    fluids: Dict[str, float] = defaultdict(float)
    for record in records:
        count_record(record, items, fluids)
    return Verification(
        item_counts={k: v for k, v in items.items() if v},
        fluid_counts={k: v for k, v in fluids.items() if v},
    )


def verify_manifest(manifest: Dict[str, Any]) -> Tuple[bool, List[str]]:
    """Check that a manifest's verification block matches its objects exactly.

    Returns:
        (consistent, mismatches) where mismatches lists ``kind:key`` entries
    """
    recomputed = aggregate(manifest.get("objects") or [])
    stored = Verification.from_dict(manifest.get("verification") or {})
    mismatches = []
    for key in sorted(set(recomputed.item_counts) | set(stored.item_counts)):
        if recomputed.item_counts.get(key, 0) != stored.item_counts.get(key, 0):
            mismatches.append(f"item:{key}")
    for key in sorted(set(recomputed.fluid_counts) | set(stored.fluid_counts)):
        if recomputed.fluid_counts.get(key, 0.0) != stored.fluid_counts.get(key, 0.0):
            mismatches.append(f"fluid:{key}")
    if mismatches:
        logger.warning("Manifest verification drift: %s", ", ".join(mismatches[:10]))
    return not mismatches, mismatches
