"""Inventory and item-stack serialization."""

import copy
from typing import Any, Dict, List

from relay_core.keys import NORMAL_QUALITY


def serialize_stack(stack: Dict[str, Any]) -> Dict[str, Any]:
    """Normalize one item stack, keeping optional sub-payloads as-is.

    Sub-payloads (durability, ammo, spoil_percent, nested_inventory, grid,
    label, health) are copied verbatim; nested inventories are normalized
    recursively.
    """
    data = {
        "name": stack["name"],
        "count": int(stack.get("count", 1)),
        "quality": stack.get("quality") or NORMAL_QUALITY,
    }
    for key, value in stack.items():
        if key in data:
            continue
        if key == "nested_inventory" and isinstance(value, list):
            data[key] = [serialize_stack(s) for s in value]
        else:
            data[key] = copy.deepcopy(value)
    return data


def scan_inventories(obj: Any) -> List[Dict[str, Any]]:
    """Serialize every non-empty inventory of *obj*."""
    result = []
    for inv_type, inventory in sorted(obj.get_inventories().items()):
        items = [serialize_stack(stack) for stack in inventory.contents()]
        if items:
            result.append({"type": inv_type, "items": items})
    return result
