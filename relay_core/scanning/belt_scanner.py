"""Conveyor lane capture.

Conveyor contents keep moving while a platform is locked, so they are never
read during the batched structural scan. ``AtomicBeltScan`` reads every
deferred conveyor inside one call, which the processor runs within a single
tick: the snapshot matches the live state of exactly one tick, with no item
counted twice or missed as it crosses from one conveyor to the next.
"""

import logging
from dataclasses import dataclass, field
from typing import Any, Dict, Iterable, List

from relay_core.capabilities import is_conveyor
from relay_core.host import ObjectId, Surface
from relay_core.keys import NORMAL_QUALITY

logger = logging.getLogger(__name__)


def scan_lanes(obj: Any) -> List[Dict[str, Any]]:
    """Serialize the non-empty lanes of one conveyor."""
    lanes = []
    for line, lane in enumerate(obj.get_lanes(), start=1):
        items = [
            {
                "name": item["name"],
                "count": int(item.get("count", 1)),
                "quality": item.get("quality") or NORMAL_QUALITY,
                "position": float(item["position"]),
            }
            for item in lane.items()
        ]
        if items:
            lanes.append({"line": line, "items": items})
    return lanes


@dataclass
class AtomicScanResult:
    tick: int
    lanes: Dict[ObjectId, List[Dict[str, Any]]] = field(default_factory=dict)
    missing: List[ObjectId] = field(default_factory=list)
    failed: List[ObjectId] = field(default_factory=list)

    @property
    def item_count(self) -> int:
        return sum(
            item["count"]
            for lanes in self.lanes.values()
            for lane in lanes
            for item in lane["items"]
        )


class AtomicBeltScan:
    """Single-pass capture of conveyor lanes for a set of object ids."""

    def __init__(self, surface: Surface) -> None:
        self._surface = surface

    def capture(self, object_ids: Iterable[ObjectId], tick: int = 0) -> AtomicScanResult:
        result = AtomicScanResult(tick=tick)
        for object_id in object_ids:
            obj = self._surface.get_object(object_id)
            if obj is None or not obj.valid or not is_conveyor(obj):
                result.missing.append(object_id)
                continue
            try:
                result.lanes[object_id] = scan_lanes(obj)
            except Exception:
                logger.debug("Lane capture failed for %s", object_id, exc_info=True)
                result.failed.append(object_id)
        logger.debug(
            "Atomic conveyor scan at tick %d: %d conveyors, %d items, %d missing",
            tick,
            len(result.lanes),
            result.item_count,
            len(result.missing),
        )
        return result
