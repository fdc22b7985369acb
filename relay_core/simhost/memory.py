"""In-memory simulation host.

A small tick-driven world that implements the ``relay_core.host`` protocols
closely enough to exercise the whole relay pipeline:

- conveyors keep moving every unpaused tick, whether or not the platform is
  locked, and hand items to the conveyor they point at;
- grabbers (inserters) move one item per swing between their pickup and
  drop neighbours while active;
- fluid network members report a capacity-proportional share of the pooled
  network contents;
- an object created and deactivated within the same tick is detached from
  its fluid network: writes to it land in a transient buffer that is
  discarded when the object is first activated;
- inventories enforce slot counts and stack sizes, so inserts can come up
  short.

Capabilities are composed per prototype from small mixins, so an object
that lacks a capability has no attribute for it.
"""

import copy
import logging
import math
from functools import lru_cache
from typing import Any, Dict, Iterable, List, Optional, Tuple

from relay_core.keys import NORMAL_QUALITY, round_position, stable_object_id
from relay_core.simhost.prototypes import (
    FOUNDATION_TILE,
    KNOWN_TILES,
    ObjectPrototype,
    lookup,
    stack_size,
)

logger = logging.getLogger(__name__)

DIRECTION_VECTORS = {0: (0, -1), 4: (1, 0), 8: (0, 1), 12: (-1, 0)}
ITEM_SPACING = 0.25
POSITION_EPSILON = 1e-6
_STACK_CORE_FIELDS = ("name", "count", "quality")


def _grid_key(position: Dict[str, float]) -> Tuple[float, float]:
    return (round(position["x"], 2), round(position["y"], 2))


def _tile_key(position: Dict[str, float]) -> Tuple[int, int]:
    return (math.floor(position["x"]), math.floor(position["y"]))


def _offset(position: Dict[str, float], direction: int, sign: int = 1) -> Dict[str, float]:
    dx, dy = DIRECTION_VECTORS.get(direction - direction % 4, (0, -1))
    return {"x": position["x"] + sign * dx, "y": position["y"] + sign * dy}


def _extras(stack: Dict[str, Any]) -> Dict[str, Any]:
    return {k: v for k, v in stack.items() if k not in _STACK_CORE_FIELDS}


# =============================================================================
# Inventories and lanes
# =============================================================================


class MemoryInventory:
    """Slot-limited inventory. Stacks only merge when their extras match."""

    def __init__(self, slots: int) -> None:
        self.slots = slots
        self._stacks: List[Optional[Dict[str, Any]]] = [None] * slots

    def contents(self) -> List[Dict[str, Any]]:
        return [copy.deepcopy(s) for s in self._stacks if s]

    def item_count(self) -> int:
        return sum(s["count"] for s in self._stacks if s)

    def is_empty(self) -> bool:
        return not any(self._stacks)

    def insert(self, stack: Dict[str, Any]) -> int:
        name = stack["name"]
        count = int(stack.get("count", 1))
        quality = stack.get("quality") or NORMAL_QUALITY
        extras = _extras(stack)
        limit = stack_size(name)
        remaining = count

        for existing in self._stacks:
            if remaining <= 0:
                break
            if (
                existing
                and existing["name"] == name
                and existing["quality"] == quality
                and _extras(existing) == extras
            ):
                take = min(limit - existing["count"], remaining)
                if take > 0:
                    existing["count"] += take
                    remaining -= take

        for i, existing in enumerate(self._stacks):
            if remaining <= 0:
                break
            if existing is None:
                take = min(limit, remaining)
                new_stack = {"name": name, "count": take, "quality": quality}
                new_stack.update(copy.deepcopy(extras))
                self._stacks[i] = new_stack
                remaining -= take

        return count - remaining

    def take_one(self) -> Optional[Dict[str, Any]]:
        for i in range(len(self._stacks) - 1, -1, -1):
            existing = self._stacks[i]
            if existing:
                taken = copy.deepcopy(existing)
                taken["count"] = 1
                existing["count"] -= 1
                if existing["count"] <= 0:
                    self._stacks[i] = None
                return taken
        return None

    def clear(self) -> None:
        self._stacks = [None] * self.slots


class MemoryLane:
    """One conveyor lane; items keep ITEM_SPACING between them."""

    def __init__(self) -> None:
        self._items: List[Dict[str, Any]] = []

    def items(self) -> List[Dict[str, Any]]:
        return [dict(item) for item in sorted(self._items, key=lambda i: i["position"])]

    def item_count(self) -> int:
        return sum(item["count"] for item in self._items)

    def fits(self, position: float) -> bool:
        if position < -POSITION_EPSILON or position > 1.0 + POSITION_EPSILON:
            return False
        return all(
            abs(item["position"] - position) >= ITEM_SPACING - POSITION_EPSILON
            for item in self._items
        )

    def insert_at(self, position: float, stack: Dict[str, Any]) -> bool:
        position = float(position)
        if not self.fits(position):
            return False
        self._items.append(
            {
                "name": stack["name"],
                "count": int(stack.get("count", 1)),
                "quality": stack.get("quality") or NORMAL_QUALITY,
                "position": position,
            }
        )
        return True

    def insert_at_back(self, stack: Dict[str, Any]) -> bool:
        for step in range(int(1.0 / ITEM_SPACING) + 1):
            if self.insert_at(step * ITEM_SPACING, stack):
                return True
        return False

    def take_front(self) -> Optional[Dict[str, Any]]:
        if not self._items:
            return None
        front = max(self._items, key=lambda i: i["position"])
        taken = {"name": front["name"], "count": 1, "quality": front["quality"]}
        front["count"] -= 1
        if front["count"] <= 0:
            self._items.remove(front)
        return taken

    def clear(self) -> None:
        self._items = []


# =============================================================================
# Object capability mixins
# =============================================================================


class MemoryObject:
    """Base object: identity, health and destruction."""

    def __init__(
        self,
        surface: "MemorySurface",
        prototype: ObjectPrototype,
        name: str,
        position: Dict[str, float],
        direction: int,
        force: str,
        quality: Optional[str],
        unit_number: Optional[int],
    ) -> None:
        self._surface = surface
        self._prototype = prototype
        self.name = name
        self.type = prototype.type
        self.position = round_position(position)
        self.direction = direction
        self.force = force
        self.quality = quality or NORMAL_QUALITY
        self.unit_number = unit_number
        self.health = prototype.health
        self.valid = True
        self._init_capabilities()

    def _init_capabilities(self) -> None:
        """Hook for mixins; each calls super()."""

    def _tick(self, tick: int) -> None:
        """Per-tick behaviour hook for mixins."""

    @property
    def prototype(self) -> ObjectPrototype:
        return self._prototype

    @property
    def stable_id(self):
        if self.unit_number is not None:
            return self.unit_number
        return stable_object_id(
            self.name, self.position, self.direction, getattr(self, "orientation", None)
        )

    def destroy(self) -> None:
        if self.valid:
            self.valid = False
            self._surface._remove(self)

    def __repr__(self) -> str:
        return f"<{self.name} #{self.unit_number} at {self.position['x']},{self.position['y']}>"


class ActivityMixin:
    def _init_capabilities(self) -> None:
        super()._init_capabilities()
        self._active = True
        # pending -> attached on the next tick unless deactivated first
        self._attach_state = "pending"

    @property
    def active(self) -> bool:
        return self._active

    @active.setter
    def active(self, value: bool) -> None:
        value = bool(value)
        self._active = value
        if value and self._attach_state != "attached":
            if self._attach_state == "detached" and hasattr(self, "_discard_transient_fluids"):
                self._discard_transient_fluids()
            self._attach_state = "attached"
        elif not value and self._attach_state == "pending":
            self._attach_state = "detached"

    def _resolve_attach(self) -> None:
        if self._attach_state == "pending":
            self._attach_state = "attached"

    @property
    def fluid_attached(self) -> bool:
        return self._attach_state != "detached"


class InventoryMixin:
    def _init_capabilities(self) -> None:
        super()._init_capabilities()
        self._inventories = {
            inv_type: MemoryInventory(slots)
            for inv_type, slots in self._prototype.inventories.items()
        }

    def get_inventories(self) -> Dict[str, MemoryInventory]:
        return dict(self._inventories)

    def get_inventory(self, inv_type: str) -> Optional[MemoryInventory]:
        return self._inventories.get(inv_type)


class FluidMixin:
    def _init_capabilities(self) -> None:
        super()._init_capabilities()
        count = len(self._prototype.fluidboxes)
        self._boxes: List[Optional[Dict[str, Any]]] = [None] * count
        self._transient: List[Optional[Dict[str, Any]]] = [None] * count

    def _is_detached(self) -> bool:
        return not getattr(self, "fluid_attached", True)

    def _discard_transient_fluids(self) -> None:
        dropped = [f for f in self._transient if f]
        if dropped:
            logger.debug("Discarding transient fluid buffer on %r: %s", self, dropped)
        self._transient = [None] * len(self._transient)

    def fluidbox_count(self) -> int:
        return len(self._boxes)

    def fluidbox_capacity(self, index: int) -> float:
        return self._prototype.fluidboxes[index]

    def get_fluid_network_id(self, index: int) -> Optional[int]:
        if index != 0 or not self._prototype.networked or self._is_detached():
            return None
        return self._surface._network_id(self)

    def get_fluid(self, index: int) -> Optional[Dict[str, Any]]:
        if self._is_detached():
            fluid = self._transient[index]
            return dict(fluid) if fluid else None
        network_id = self.get_fluid_network_id(index)
        if network_id is None:
            fluid = self._boxes[index]
            return dict(fluid) if fluid else None
        return self._surface._network_share(network_id, self)

    def set_fluid(self, index: int, fluid: Optional[Dict[str, Any]]) -> float:
        """Write one box (clamped to its capacity); returns the amount stored."""
        stored = None
        if fluid and fluid.get("amount", 0) > 0:
            amount = min(float(fluid["amount"]), self.fluidbox_capacity(index))
            stored = {
                "name": fluid["name"],
                "amount": amount,
                "temperature": float(fluid.get("temperature", 15.0)),
            }
        if self._is_detached():
            self._transient[index] = stored
        else:
            self._boxes[index] = stored
        return stored["amount"] if stored else 0.0

    def set_network_fluid(self, index: int, fluid: Dict[str, Any]) -> float:
        """Write a whole network segment, spreading by capacity."""
        network_id = self.get_fluid_network_id(index)
        if network_id is None:
            return self.set_fluid(index, fluid)
        members = self._surface._network_members(network_id)
        capacity = sum(m.fluidbox_capacity(0) for m in members)
        amount = min(float(fluid["amount"]), capacity)
        for member in members:
            share = amount * member.fluidbox_capacity(0) / capacity if capacity else 0.0
            member._boxes[0] = {
                "name": fluid["name"],
                "amount": share,
                "temperature": float(fluid.get("temperature", 15.0)),
            }
        return amount

    def insert_fluid(self, fluid: Dict[str, Any]) -> float:
        """Add fluid to the first compatible box; temperatures mix by amount."""
        remaining = float(fluid["amount"])
        temperature = float(fluid.get("temperature", 15.0))
        for index in range(len(self._boxes)):
            current = self.get_fluid(index)
            if current and current["name"] != fluid["name"]:
                continue
            existing = current["amount"] if current else 0.0
            room = self.fluidbox_capacity(index) - existing
            if room <= 0:
                continue
            added = min(room, remaining)
            total = existing + added
            mixed = (
                (existing * current["temperature"] + added * temperature) / total
                if current
                else temperature
            )
            self.set_fluid(index, {"name": fluid["name"], "amount": total, "temperature": mixed})
            return added
        return 0.0


class ConveyorMixin:
    def _init_capabilities(self) -> None:
        super()._init_capabilities()
        lane_count = 4 if self._prototype.type == "splitter" else 2
        self._lanes = [MemoryLane() for _ in range(lane_count)]
        self.belt_to_ground_type: Optional[str] = None

    def get_lanes(self) -> List[MemoryLane]:
        return list(self._lanes)

    def item_count(self) -> int:
        return sum(lane.item_count() for lane in self._lanes)


class GrabberMixin:
    def _init_capabilities(self) -> None:
        super()._init_capabilities()
        self._held: Optional[Dict[str, Any]] = None

    @property
    def held_stack(self) -> Optional[Dict[str, Any]]:
        return dict(self._held) if self._held else None

    def set_held_stack(self, stack: Optional[Dict[str, Any]]) -> bool:
        if stack is None:
            self._held = None
            return True
        self._held = {
            "name": stack["name"],
            "count": int(stack.get("count", 1)),
            "quality": stack.get("quality") or NORMAL_QUALITY,
        }
        return True

    def _tick(self, tick: int) -> None:
        super()._tick(tick)
        if not self.active or tick % self._prototype.swing_ticks:
            return
        if self._held:
            target = self._surface.object_at(_offset(self.position, self.direction))
            if target is not None and _deliver(target, self._held):
                self._held = None
        else:
            source = self._surface.object_at(_offset(self.position, self.direction, -1))
            if source is not None:
                self._held = _pick_up(source)


def _pick_up(source: MemoryObject) -> Optional[Dict[str, Any]]:
    if isinstance(source, ConveyorMixin):
        for lane in source._lanes:
            taken = lane.take_front()
            if taken:
                return taken
        return None
    if isinstance(source, InventoryMixin):
        for inv_type in sorted(source._inventories, key=lambda t: ("output" not in t and "result" not in t, t)):
            taken = source._inventories[inv_type].take_one()
            if taken:
                return taken
    return None


def _deliver(target: MemoryObject, stack: Dict[str, Any]) -> bool:
    if isinstance(target, ConveyorMixin):
        return any(lane.insert_at_back(stack) for lane in reversed(target._lanes))
    if isinstance(target, InventoryMixin):
        for inv_type in sorted(target._inventories, key=lambda t: ("output" in t or "result" in t, t)):
            if target._inventories[inv_type].insert(stack) == stack["count"]:
                return True
    return False


class RecipeMixin:
    def _init_capabilities(self) -> None:
        super()._init_capabilities()
        self._recipe: Optional[str] = None

    def get_recipe(self) -> Optional[str]:
        return self._recipe

    def set_recipe(self, recipe: Optional[str]) -> bool:
        self._recipe = recipe or None
        return True


class ControlMixin:
    def _init_capabilities(self) -> None:
        super()._init_capabilities()
        self._control: Dict[str, Any] = {}

    def get_control(self) -> Dict[str, Any]:
        return copy.deepcopy(self._control)

    def set_control(self, control: Dict[str, Any]) -> None:
        self._control = copy.deepcopy(control or {})


class FilterMixin:
    def _init_capabilities(self) -> None:
        super()._init_capabilities()
        self._filters: List[Optional[str]] = []

    def get_filters(self) -> List[Optional[str]]:
        return list(self._filters)

    def set_filters(self, filters: List[Optional[str]]) -> None:
        self._filters = list(filters or [])


class CircuitMixin:
    def _init_capabilities(self) -> None:
        super()._init_capabilities()
        self._wires: List[Dict[str, Any]] = []

    def get_circuit_connections(self) -> List[Dict[str, Any]]:
        return [
            {
                "wire": w["wire"],
                "target_id": w["target"].stable_id,
                "source_circuit": w["source_circuit"],
                "target_circuit": w["target_circuit"],
            }
            for w in self._wires
            if w["target"].valid
        ]

    def connect_circuit(
        self,
        wire: str,
        target: MemoryObject,
        source_circuit: int = 1,
        target_circuit: int = 1,
    ) -> bool:
        if not isinstance(target, CircuitMixin) or not target.valid:
            return False
        for w in self._wires:
            if (
                w["target"] is target
                and w["wire"] == wire
                and w["source_circuit"] == source_circuit
                and w["target_circuit"] == target_circuit
            ):
                return True
        self._wires.append(
            {
                "wire": wire,
                "target": target,
                "source_circuit": source_circuit,
                "target_circuit": target_circuit,
            }
        )
        target._wires.append(
            {
                "wire": wire,
                "target": self,
                "source_circuit": target_circuit,
                "target_circuit": source_circuit,
            }
        )
        return True


class OrientationMixin:
    def _init_capabilities(self) -> None:
        super()._init_capabilities()
        self.orientation = 0.0


@lru_cache(maxsize=None)
def _object_class(prototype_name: str) -> type:
    prototype = lookup(prototype_name)
    mixins: List[type] = []
    if prototype.activity:
        mixins.append(ActivityMixin)
    if prototype.fluidboxes:
        mixins.append(FluidMixin)
    if prototype.inventories:
        mixins.append(InventoryMixin)
    if prototype.belt_speed:
        mixins.append(ConveyorMixin)
    if prototype.swing_ticks:
        mixins.append(GrabberMixin)
    if prototype.recipe:
        mixins.append(RecipeMixin)
    if prototype.control:
        mixins.append(ControlMixin)
    if prototype.filters:
        mixins.append(FilterMixin)
    if prototype.circuit:
        mixins.append(CircuitMixin)
    if prototype.orientation:
        mixins.append(OrientationMixin)
    class_name = "Memory_" + prototype_name.replace("-", "_")
    return type(class_name, tuple(mixins) + (MemoryObject,), {})


# =============================================================================
# Cargo pods
# =============================================================================


class MemoryCargoPod:
    def __init__(self, platform: "MemoryPlatform", state: str, slots: int = 10) -> None:
        self._platform = platform
        self.state = state
        self.valid = True
        self._inventory = MemoryInventory(slots)
        self.delivered: List[Dict[str, Any]] = []

    def get_inventory(self) -> MemoryInventory:
        return self._inventory

    def finish(self) -> None:
        self.delivered = self._inventory.contents()
        self._retire()

    def destroy(self) -> None:
        self._retire()

    def _retire(self) -> None:
        if self.valid:
            self.valid = False
            self._platform._pods.remove(self)


# =============================================================================
# Surface, platform, host
# =============================================================================


class MemorySurface:
    """Objects, tiles and ground items of one platform."""

    def __init__(self, host: "MemoryHost", index: int, force: str) -> None:
        self._host = host
        self.index = index
        self.force = force
        self.valid = True
        self._objects: Dict[int, MemoryObject] = {}
        self._by_position: Dict[Tuple[float, float], MemoryObject] = {}
        self._tiles: Dict[Tuple[int, int], str] = {}
        self._ground: List[Dict[str, Any]] = []
        self._serial = 0

    # --- objects ---------------------------------------------------------

    def find_objects(self) -> List[MemoryObject]:
        return [obj for _, obj in sorted(self._objects.items())]

    def get_object(self, object_id) -> Optional[MemoryObject]:
        if isinstance(object_id, int):
            for obj in self._objects.values():
                if obj.unit_number == object_id:
                    return obj
            return None
        for obj in self._objects.values():
            if obj.unit_number is None and obj.stable_id == object_id:
                return obj
        return None

    def object_at(self, position: Dict[str, float]) -> Optional[MemoryObject]:
        return self._by_position.get(_grid_key(round_position(position)))

    def create_object(
        self,
        name: str,
        position: Dict[str, float],
        direction: int = 0,
        *,
        force: str,
        quality: Optional[str] = None,
        orientation: Optional[float] = None,
        extra: Optional[Dict[str, Any]] = None,
    ) -> Optional[MemoryObject]:
        prototype = lookup(name)
        if prototype is None:
            logger.debug("Unknown prototype %s", name)
            return None
        position = round_position(position)
        tile = self._tiles.get(_tile_key(position))
        if tile is None or tile == "empty-space":
            logger.debug("No floor under %s at %s", name, position)
            return None
        if _grid_key(position) in self._by_position:
            logger.debug("Position %s already occupied", position)
            return None

        unit_number = self._host._next_unit_number() if prototype.unit_numbered else None
        cls = _object_class(name)
        obj = cls(self, prototype, name, position, direction, force, quality, unit_number)
        if orientation is not None and prototype.orientation:
            obj.orientation = float(orientation)
        if extra and isinstance(obj, ConveyorMixin):
            obj.belt_to_ground_type = extra.get("belt_to_ground_type")

        self._serial += 1
        self._objects[self._serial] = obj
        obj._serial = self._serial
        self._by_position[_grid_key(position)] = obj
        return obj

    def _remove(self, obj: MemoryObject) -> None:
        self._objects.pop(getattr(obj, "_serial", None), None)
        if self._by_position.get(_grid_key(obj.position)) is obj:
            del self._by_position[_grid_key(obj.position)]

    # --- tiles and ground items -------------------------------------------

    def get_tiles(self) -> List[Dict[str, Any]]:
        return [
            {"name": name, "position": {"x": x, "y": y}}
            for (x, y), name in sorted(self._tiles.items())
        ]

    def set_tiles(self, tiles: Iterable[Dict[str, Any]]) -> List[Dict[str, Any]]:
        failed = []
        for tile in tiles:
            if tile.get("name") not in KNOWN_TILES:
                failed.append(tile)
                continue
            pos = tile["position"]
            self._tiles[(int(pos["x"]), int(pos["y"]))] = tile["name"]
        return failed

    def find_ground_items(self) -> List[Dict[str, Any]]:
        return [copy.deepcopy(item) for item in self._ground]

    def spill_item(self, stack: Dict[str, Any], position: Dict[str, float]) -> bool:
        if self._tiles.get(_tile_key(position)) in (None, "empty-space"):
            return False
        item = {
            "name": stack["name"],
            "count": int(stack.get("count", 1)),
            "quality": stack.get("quality") or NORMAL_QUALITY,
            "position": round_position(position),
        }
        self._ground.append(item)
        return True

    # --- fluid networks ----------------------------------------------------

    def _networked(self, obj: MemoryObject) -> bool:
        return (
            isinstance(obj, FluidMixin)
            and obj.valid
            and obj._prototype.networked
            and not obj._is_detached()
        )

    def _components(self) -> List[List[MemoryObject]]:
        seen = set()
        components = []
        for obj in self.find_objects():
            if id(obj) in seen or not self._networked(obj):
                continue
            component = []
            stack = [obj]
            seen.add(id(obj))
            while stack:
                current = stack.pop()
                component.append(current)
                for direction in DIRECTION_VECTORS:
                    neighbour = self.object_at(_offset(current.position, direction))
                    if neighbour is not None and id(neighbour) not in seen and self._networked(neighbour):
                        seen.add(id(neighbour))
                        stack.append(neighbour)
            components.append(component)
        return components

    def _network_id(self, obj: MemoryObject) -> Optional[int]:
        for component in self._components():
            if any(member is obj for member in component):
                return min(member._serial for member in component)
        return None

    def _network_members(self, network_id: int) -> List[MemoryObject]:
        for component in self._components():
            if min(member._serial for member in component) == network_id:
                return component
        return []

    def _network_share(self, network_id: int, obj: MemoryObject) -> Optional[Dict[str, Any]]:
        members = self._network_members(network_id)
        contents = [m._boxes[0] for m in members if m._boxes[0]]
        if not contents:
            return None
        names = {c["name"] for c in contents}
        if len(names) > 1:
            own = obj._boxes[0]
            return dict(own) if own else None
        total = sum(c["amount"] for c in contents)
        if total <= 0:
            return None
        temperature = sum(c["amount"] * c["temperature"] for c in contents) / total
        capacity = sum(m.fluidbox_capacity(0) for m in members)
        return {
            "name": contents[0]["name"],
            "amount": total * obj.fluidbox_capacity(0) / capacity,
            "temperature": temperature,
        }

    # --- simulation ----------------------------------------------------------

    def step(self, tick: int) -> None:
        self._move_conveyors()
        for obj in self.find_objects():
            obj._tick(tick)

    def _move_conveyors(self) -> None:
        transfers = []
        for obj in self.find_objects():
            if not isinstance(obj, ConveyorMixin):
                continue
            speed = obj._prototype.belt_speed
            downstream = self.object_at(_offset(obj.position, obj.direction))
            if not isinstance(downstream, ConveyorMixin):
                downstream = None
            for lane_index, lane in enumerate(obj._lanes):
                limit = 1.0
                kept = []
                for item in sorted(lane._items, key=lambda i: i["position"], reverse=True):
                    new_position = item["position"] + speed
                    if new_position >= 1.0 and limit >= 1.0 and downstream is not None:
                        transfers.append((lane, downstream, lane_index, item, new_position - 1.0))
                        limit = 1.0 - ITEM_SPACING
                        continue
                    item["position"] = max(item["position"], min(new_position, limit))
                    kept.append(item)
                    limit = item["position"] - ITEM_SPACING
                lane._items = kept

        for source_lane, downstream, lane_index, item, position in transfers:
            target_lane = downstream._lanes[min(lane_index, len(downstream._lanes) - 1)]
            existing = [i["position"] for i in target_lane._items]
            if existing:
                position = min(position, min(existing) - ITEM_SPACING)
            if position >= 0.0 and target_lane.fits(position):
                item["position"] = position
                target_lane._items.append(item)
            else:
                item["position"] = 1.0
                source_lane._items.append(item)

    def _resolve_pending(self) -> None:
        for obj in self._objects.values():
            if isinstance(obj, ActivityMixin):
                obj._resolve_attach()


class MemoryPlatform:
    def __init__(self, host: "MemoryHost", name: str, index: int, force: str) -> None:
        self._host = host
        self.name = name
        self.index = index
        self.force = force
        self.valid = True
        self.surface = MemorySurface(host, index, force)
        self.hidden = False
        self.schedule: Optional[Dict[str, Any]] = None
        self.paused = False
        self._pods: List[MemoryCargoPod] = []
        self.surface.set_tiles(
            {"name": FOUNDATION_TILE, "position": {"x": x, "y": y}}
            for x in range(-1, 2)
            for y in range(-1, 2)
        )
        self.hub = self.surface.create_object(
            "space-platform-hub", {"x": 0.0, "y": 0.0}, force=force
        )

    def cargo_pods(self) -> List[MemoryCargoPod]:
        return list(self._pods)

    def add_cargo_pod(self, state: str, contents: Iterable[Dict[str, Any]] = ()) -> MemoryCargoPod:
        pod = MemoryCargoPod(self, state)
        for stack in contents:
            pod.get_inventory().insert(stack)
        self._pods.append(pod)
        return pod

    def _invalidate(self) -> None:
        self.valid = False
        self.surface.valid = False
        for obj in self.surface.find_objects():
            obj.valid = False

    def __repr__(self) -> str:
        return f"<MemoryPlatform {self.name!r} #{self.index}>"


class MemoryHost:
    """Reference host keeping every platform in process memory."""

    def __init__(self, version: str = "2.0.72") -> None:
        self.version = version
        self.tick = 0
        self._platforms: Dict[int, MemoryPlatform] = {}
        self._platform_counter = 0
        self._unit_counter = 0

    def _next_unit_number(self) -> int:
        self._unit_counter += 1
        return self._unit_counter

    def step(self, ticks: int = 1) -> None:
        for _ in range(ticks):
            self.tick += 1
            for platform in list(self._platforms.values()):
                if platform.valid and not platform.paused:
                    platform.surface.step(self.tick)
            for platform in list(self._platforms.values()):
                platform.surface._resolve_pending()

    def get_platform(self, name: str, force: str) -> Optional[MemoryPlatform]:
        for platform in self._platforms.values():
            if platform.name == name and platform.force == force and platform.valid:
                return platform
        return None

    def list_platforms(self, force: Optional[str] = None) -> List[MemoryPlatform]:
        return [
            p
            for _, p in sorted(self._platforms.items())
            if p.valid and (force is None or p.force == force)
        ]

    def create_platform(self, name: str, force: str) -> MemoryPlatform:
        self._platform_counter += 1
        platform = MemoryPlatform(self, name, self._platform_counter, force)
        self._platforms[platform.index] = platform
        logger.debug("Created platform %s (#%d) for %s", name, platform.index, force)
        return platform

    def delete_platform(self, platform: MemoryPlatform) -> None:
        self._platforms.pop(platform.index, None)
        platform._invalidate()
        logger.debug("Deleted platform %s (#%d)", platform.name, platform.index)
