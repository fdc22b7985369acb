"""Per-object record construction and surface ordering."""

import logging
from typing import Any, Dict, List, Optional

from relay_core.capabilities import object_id, orientation_of, safe_get
from relay_core.host import ObjectId, Surface
from relay_core.keys import NORMAL_QUALITY, round_position, stable_object_id
from relay_core.scanning.handlers import DEFAULT_REGISTRY, ExtractorRegistry, ObjectRecord

logger = logging.getLogger(__name__)

GROUND_ITEM_TYPE = "item-on-ground"

RAIL_TYPES = frozenset(
    {"straight-rail", "curved-rail-a", "curved-rail-b", "half-diagonal-rail", "legacy-straight-rail"}
)


def scan_object(
    obj: Any,
    *,
    defer_conveyors: bool = False,
    registry: Optional[ExtractorRegistry] = None,
) -> ObjectRecord:
    """Build the serialized record for one object.

    Args:
        obj: A live simulation object
        defer_conveyors: Skip conveyor lanes (captured later in one tick)
        registry: Payload extractors (defaults to the standard set)

    Returns:
        The object record; sub-payloads that could not be read are omitted
    """
    registry = registry or DEFAULT_REGISTRY
    position = round_position(obj.position)
    record: ObjectRecord = {
        "id": object_id(obj),
        "name": obj.name,
        "type": obj.type,
        "position": position,
        "direction": safe_get(obj, "direction", 0) or 0,
    }
    orientation = orientation_of(obj)
    if orientation is not None:
        record["orientation"] = orientation
    quality = safe_get(obj, "quality")
    if quality and quality != NORMAL_QUALITY:
        record["quality"] = quality

    skip = frozenset({"belt"}) if defer_conveyors else frozenset()
    payload = registry.extract_all(obj, skip=skip)
    if payload:
        record["payload"] = payload
    return record


def scan_ground_items(surface: Surface) -> List[ObjectRecord]:
    """Loose items on the floor, one record per stack."""
    records = []
    seen: Dict[str, int] = {}
    for stack in surface.find_ground_items():
        position = round_position(stack["position"])
        base_id = stable_object_id(GROUND_ITEM_TYPE, position, 0)
        ordinal = seen.get(base_id, 0)
        seen[base_id] = ordinal + 1
        records.append(
            {
                "id": base_id if ordinal == 0 else f"{base_id}~{ordinal}",
                "name": GROUND_ITEM_TYPE,
                "type": GROUND_ITEM_TYPE,
                "position": position,
                "direction": 0,
                "payload": {
                    "stack": {
                        "name": stack["name"],
                        "count": int(stack.get("count", 1)),
                        "quality": stack.get("quality") or NORMAL_QUALITY,
                    }
                },
            }
        )
    return records


def _scan_sort_key(obj: Any):
    unit_number = safe_get(obj, "unit_number")
    position = round_position(obj.position)
    if unit_number is not None:
        return (0, unit_number, "", 0.0, 0.0, 0)
    return (1, 0, obj.name, position["x"], position["y"], safe_get(obj, "direction") or 0)


def ordered_objects(surface: Surface) -> List[Any]:
    """Objects in scan order: native ids ascending, then name, position and direction."""
    return sorted((obj for obj in surface.find_objects() if obj.valid), key=_scan_sort_key)


def ordered_object_ids(surface: Surface) -> List[ObjectId]:
    return [object_id(obj) for obj in ordered_objects(surface)]


def scan_surface(surface: Surface, *, defer_conveyors: bool = False) -> List[ObjectRecord]:
    """Scan every object plus ground items in one pass."""
    records = [scan_object(obj, defer_conveyors=defer_conveyors) for obj in ordered_objects(surface)]
    records.extend(scan_ground_items(surface))
    return records


def _placement_priority(record: ObjectRecord) -> int:
    record_type = record.get("type")
    if record_type in RAIL_TYPES:
        return 1
    if record_type == "underground-belt":
        kind = record.get("payload", {}).get("belt_to_ground_type")
        return 3 if kind == "output" else 2
    if record_type == "pipe-to-ground":
        return 4
    if record_type == GROUND_ITEM_TYPE:
        return 6
    return 5


def sort_for_placement(records: List[ObjectRecord]) -> List[ObjectRecord]:
    """Order records so structural objects exist before the ones that reference them.

    Rails first, underground entrances before exits, then pipe-to-ground,
    then everything else; ground items last. Ties break on x then y.
    """
    return sorted(
        records,
        key=lambda r: (_placement_priority(r), r["position"]["x"], r["position"]["y"]),
    )
