"""Payload extractors, one per object capability.

Each extractor reads one sub-payload of an object record and writes it back
during import. Extraction and restoration are independently fallible: a
failure is logged and the field is omitted (or reported as not restored),
never aborting the rest of the object.
"""

import logging
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, List, Optional, Protocol

from relay_core import capabilities as caps
from relay_core.keys import NORMAL_QUALITY
from relay_core.scanning.belt_scanner import scan_lanes
from relay_core.scanning.inventory_scanner import scan_inventories

logger = logging.getLogger(__name__)

ObjectRecord = Dict[str, Any]


@dataclass(frozen=True)
class RestoreContext:
    """What an extractor may need while writing a payload back.

    Attributes:
        resolve: Maps a source object id to the destination object (or None)
        on_insert_shortfall: Called with (stack, inserted) when an inventory
            accepted fewer items than requested
    """

    resolve: Callable[[Any], Optional[Any]] = lambda object_id: None
    on_insert_shortfall: Optional[Callable[[Dict[str, Any], int], None]] = None


class PayloadExtractor(Protocol):
    """Interface for one sub-payload of an object record."""

    key: str

    def applies(self, obj: Any) -> bool:
        """Return True if *obj* has the capability this extractor handles."""

    def extract(self, obj: Any) -> Any:
        """Return the payload value, or None/empty to omit it."""

    def restore(self, obj: Any, value: Any, ctx: RestoreContext) -> bool:
        """Write *value* back onto *obj*; returns True on success."""


class InventoryExtractor:
    key = "inventories"

    def applies(self, obj: Any) -> bool:
        return caps.has_inventories(obj)

    def extract(self, obj: Any) -> Any:
        return scan_inventories(obj)

    def restore(self, obj: Any, value: Any, ctx: RestoreContext) -> bool:
        inventories = obj.get_inventories()
        complete = True
        for entry in value:
            inventory = inventories.get(entry["type"])
            if inventory is None:
                logger.debug("Inventory %s missing on %r", entry["type"], obj)
                complete = False
                for stack in entry["items"]:
                    if ctx.on_insert_shortfall:
                        ctx.on_insert_shortfall(stack, 0)
                continue
            for stack in entry["items"]:
                inserted = inventory.insert(stack)
                if inserted < stack["count"]:
                    complete = False
                    if ctx.on_insert_shortfall:
                        ctx.on_insert_shortfall(stack, inserted)
        return complete


class FluidExtractor:
    """Captures fluidbox contents. Restoration is done by the fluid phase."""

    key = "fluids"

    def applies(self, obj: Any) -> bool:
        return caps.has_fluidbox(obj)

    def extract(self, obj: Any) -> Any:
        fluids = []
        for index in range(obj.fluidbox_count()):
            fluid = obj.get_fluid(index)
            if fluid and fluid.get("amount", 0) > 0:
                fluids.append(
                    {
                        "index": index,
                        "name": fluid["name"],
                        "amount": float(fluid["amount"]),
                        "temperature": float(fluid.get("temperature", 15.0)),
                    }
                )
        return fluids

    def restore(self, obj: Any, value: Any, ctx: RestoreContext) -> bool:
        return True


class BeltExtractor:
    """Conveyor lanes; restored by the conveyor phase in a single tick."""

    key = "belt"

    def applies(self, obj: Any) -> bool:
        return caps.is_conveyor(obj)

    def extract(self, obj: Any) -> Any:
        return scan_lanes(obj)

    def restore(self, obj: Any, value: Any, ctx: RestoreContext) -> bool:
        return True


class HeldItemExtractor:
    key = "held_item"

    def applies(self, obj: Any) -> bool:
        return caps.has_held_item(obj)

    def extract(self, obj: Any) -> Any:
        stack = obj.held_stack
        if not stack:
            return None
        return {
            "name": stack["name"],
            "count": int(stack.get("count", 1)),
            "quality": stack.get("quality") or NORMAL_QUALITY,
        }

    def restore(self, obj: Any, value: Any, ctx: RestoreContext) -> bool:
        return bool(obj.set_held_stack(value))


class RecipeExtractor:
    key = "recipe"

    def applies(self, obj: Any) -> bool:
        return caps.has_recipe(obj)

    def extract(self, obj: Any) -> Any:
        return obj.get_recipe()

    def restore(self, obj: Any, value: Any, ctx: RestoreContext) -> bool:
        return bool(obj.set_recipe(value))


class ControlExtractor:
    key = "control"

    def applies(self, obj: Any) -> bool:
        return caps.has_control_state(obj)

    def extract(self, obj: Any) -> Any:
        return obj.get_control() or None

    def restore(self, obj: Any, value: Any, ctx: RestoreContext) -> bool:
        obj.set_control(value)
        return True


class FilterExtractor:
    key = "filters"

    def applies(self, obj: Any) -> bool:
        return caps.has_filters(obj)

    def extract(self, obj: Any) -> Any:
        filters = obj.get_filters()
        return filters if any(f is not None for f in filters) else None

    def restore(self, obj: Any, value: Any, ctx: RestoreContext) -> bool:
        obj.set_filters(value)
        return True


class CircuitExtractor:
    key = "circuit_connections"

    def applies(self, obj: Any) -> bool:
        return caps.has_circuit_connections(obj)

    def extract(self, obj: Any) -> Any:
        return [dict(c) for c in obj.get_circuit_connections()]

    def restore(self, obj: Any, value: Any, ctx: RestoreContext) -> bool:
        complete = True
        for connection in value:
            target = ctx.resolve(connection["target_id"])
            if target is None:
                logger.debug("Circuit target %s not found", connection["target_id"])
                complete = False
                continue
            if not obj.connect_circuit(
                connection["wire"],
                target,
                connection.get("source_circuit", 1),
                connection.get("target_circuit", 1),
            ):
                complete = False
        return complete


class UndergroundTypeExtractor:
    key = "belt_to_ground_type"

    def applies(self, obj: Any) -> bool:
        return caps.safe_get(obj, "type") == "underground-belt"

    def extract(self, obj: Any) -> Any:
        return caps.safe_get(obj, "belt_to_ground_type")

    def restore(self, obj: Any, value: Any, ctx: RestoreContext) -> bool:
        # Applied at creation time through the create_object extras.
        return True


@dataclass
class ExtractorRegistry:
    """Ordered set of payload extractors keyed by payload field."""

    extractors: List[PayloadExtractor] = field(default_factory=list)
    by_key: Dict[str, PayloadExtractor] = field(default_factory=dict)

    def __post_init__(self) -> None:
        if not self.by_key and self.extractors:
            self.by_key = {e.key: e for e in self.extractors}

    def register(self, extractor: PayloadExtractor) -> None:
        existing = self.by_key.get(extractor.key)
        if existing is not None and existing is not extractor:
            self.extractors.remove(existing)
            logger.warning("Overriding payload extractor for key=%r", extractor.key)
        self.extractors.append(extractor)
        self.by_key[extractor.key] = extractor

    def extract_all(self, obj: Any, skip: frozenset = frozenset()) -> Dict[str, Any]:
        """Collect every applicable, non-empty sub-payload of *obj*."""
        payload: Dict[str, Any] = {}
        for extractor in self.extractors:
            if extractor.key in skip:
                continue
            try:
                if not extractor.applies(obj):
                    continue
                value = extractor.extract(obj)
            except Exception:
                logger.debug(
                    "Extractor %s failed on %r; field omitted", extractor.key, obj, exc_info=True
                )
                continue
            if value is None or value == [] or value == {}:
                continue
            payload[extractor.key] = value
        return payload

    def restore_all(
        self,
        obj: Any,
        payload: Dict[str, Any],
        ctx: RestoreContext,
        only: Optional[frozenset] = None,
    ) -> List[str]:
        """Write payload fields back; returns the keys that were not fully restored."""
        failed = []
        for key, value in payload.items():
            if only is not None and key not in only:
                continue
            extractor = self.by_key.get(key)
            if extractor is None:
                continue
            try:
                if not extractor.applies(obj):
                    failed.append(key)
                    continue
                if not extractor.restore(obj, value, ctx):
                    failed.append(key)
            except Exception:
                logger.debug("Restoring %s failed on %r", key, obj, exc_info=True)
                failed.append(key)
        return failed


def default_registry() -> ExtractorRegistry:
    return ExtractorRegistry(
        [
            InventoryExtractor(),
            FluidExtractor(),
            BeltExtractor(),
            HeldItemExtractor(),
            RecipeExtractor(),
            ControlExtractor(),
            FilterExtractor(),
            CircuitExtractor(),
            UndergroundTypeExtractor(),
        ]
    )


DEFAULT_REGISTRY = default_registry()
