"""Object prototypes known to the in-memory host.

Each prototype declares the capabilities its objects expose. A name that is
not registered cannot be placed, which is how a destination missing a
prototype shows up during import.
"""

from dataclasses import dataclass, field
from typing import Dict, FrozenSet, Optional, Tuple

DEFAULT_STACK_SIZE = 50

STACK_SIZES: Dict[str, int] = {
    "iron-plate": 100,
    "copper-plate": 100,
    "steel-plate": 100,
    "iron-gear-wheel": 100,
    "copper-cable": 200,
    "electronic-circuit": 200,
    "advanced-circuit": 200,
    "processing-unit": 100,
    "carbon": 50,
    "ice": 50,
    "metallic-asteroid-chunk": 1,
    "carbonic-asteroid-chunk": 1,
    "firearm-magazine": 100,
    "repair-pack": 100,
    "transport-belt": 100,
    "inserter": 50,
    "solar-panel": 50,
    "spidertron": 1,
    "construction-robot": 50,
    "nutrients": 50,
    "yumako": 50,
}

FOUNDATION_TILE = "space-platform-foundation"
KNOWN_TILES: FrozenSet[str] = frozenset(
    {FOUNDATION_TILE, "empty-space", "refined-concrete", "concrete"}
)


@dataclass(frozen=True)
class ObjectPrototype:
    """Capabilities of one placeable object name.

    Attributes:
        type: Engine object type (e.g. "inserter", "pipe")
        inventories: Inventory type -> slot count
        fluidboxes: Capacity per fluidbox
        networked: Whether fluidbox 0 joins adjacent networked boxes
        activity: Whether the object has an activity flag
        belt_speed: Lane travel per tick for conveyors (0 = not a conveyor)
        swing_ticks: Ticks per pickup/drop cycle for grabbers (0 = not a grabber)
    """

    type: str
    inventories: Dict[str, int] = field(default_factory=dict)
    fluidboxes: Tuple[float, ...] = ()
    networked: bool = False
    activity: bool = False
    belt_speed: float = 0.0
    swing_ticks: int = 0
    recipe: bool = False
    control: bool = False
    circuit: bool = False
    filters: bool = False
    orientation: bool = False
    unit_numbered: bool = True
    health: float = 100.0


PROTOTYPES: Dict[str, ObjectPrototype] = {
    "space-platform-hub": ObjectPrototype(
        "space-platform-hub", inventories={"hub_main": 65}, activity=True, control=True, circuit=True
    ),
    "cargo-bay": ObjectPrototype("cargo-bay", activity=True),
    "wooden-chest": ObjectPrototype("container", inventories={"chest": 16}, circuit=True),
    "iron-chest": ObjectPrototype("container", inventories={"chest": 32}, circuit=True),
    "steel-chest": ObjectPrototype("container", inventories={"chest": 48}, circuit=True),
    "transport-belt": ObjectPrototype("transport-belt", belt_speed=0.03125, control=True, circuit=True),
    "fast-transport-belt": ObjectPrototype("transport-belt", belt_speed=0.0625, control=True, circuit=True),
    "underground-belt": ObjectPrototype("underground-belt", belt_speed=0.03125),
    "splitter": ObjectPrototype("splitter", belt_speed=0.03125, filters=True),
    "inserter": ObjectPrototype(
        "inserter", activity=True, swing_ticks=20, control=True, circuit=True, filters=True
    ),
    "fast-inserter": ObjectPrototype(
        "inserter", activity=True, swing_ticks=10, control=True, circuit=True, filters=True
    ),
    "assembling-machine-1": ObjectPrototype(
        "assembling-machine",
        inventories={"assembling_machine_input": 6, "assembling_machine_output": 1},
        activity=True,
        recipe=True,
    ),
    "assembling-machine-2": ObjectPrototype(
        "assembling-machine",
        inventories={
            "assembling_machine_input": 6,
            "assembling_machine_output": 1,
            "assembling_machine_modules": 2,
        },
        activity=True,
        recipe=True,
        circuit=True,
    ),
    "chemical-plant": ObjectPrototype(
        "assembling-machine",
        inventories={"assembling_machine_output": 1},
        fluidboxes=(100.0, 100.0),
        activity=True,
        recipe=True,
    ),
    "electric-furnace": ObjectPrototype(
        "furnace", inventories={"furnace_source": 1, "furnace_result": 1}, activity=True
    ),
    "crusher": ObjectPrototype(
        "assembling-machine",
        inventories={"assembling_machine_input": 1, "assembling_machine_output": 2},
        activity=True,
        recipe=True,
    ),
    "pipe": ObjectPrototype("pipe", fluidboxes=(100.0,), networked=True, unit_numbered=False),
    "pipe-to-ground": ObjectPrototype(
        "pipe-to-ground", fluidboxes=(100.0,), networked=True, unit_numbered=False
    ),
    "storage-tank": ObjectPrototype(
        "storage-tank", fluidboxes=(25000.0,), networked=True, circuit=True
    ),
    "pump": ObjectPrototype("pump", fluidboxes=(100.0,), networked=True, activity=True, control=True),
    "fusion-reactor": ObjectPrototype(
        "fusion-reactor", fluidboxes=(1000.0,), networked=True, activity=True
    ),
    "fusion-generator": ObjectPrototype(
        "fusion-generator", fluidboxes=(1000.0,), networked=True, activity=True
    ),
    "thruster": ObjectPrototype("thruster", fluidboxes=(1000.0, 1000.0), activity=True),
    "asteroid-collector": ObjectPrototype(
        "asteroid-collector", inventories={"asteroid_collector_output": 39}, activity=True,
        control=True, circuit=True,
    ),
    "constant-combinator": ObjectPrototype("constant-combinator", control=True, circuit=True),
    "radar": ObjectPrototype("radar", activity=True),
    "beacon": ObjectPrototype("beacon", inventories={"beacon_modules": 2}, activity=True),
    "roboport": ObjectPrototype(
        "roboport", inventories={"roboport_robot": 7, "roboport_material": 7}, activity=True
    ),
    "solar-panel": ObjectPrototype("solar-panel", unit_numbered=False),
    "accumulator": ObjectPrototype("accumulator", circuit=True),
    "small-lamp": ObjectPrototype("lamp", control=True, circuit=True),
    "straight-rail": ObjectPrototype("straight-rail", unit_numbered=False),
    "curved-rail-a": ObjectPrototype("curved-rail-a", unit_numbered=False),
    "car": ObjectPrototype("car", inventories={"car_trunk": 80}, orientation=True),
}


def stack_size(name: str) -> int:
    return STACK_SIZES.get(name, DEFAULT_STACK_SIZE)


def lookup(name: str) -> Optional[ObjectPrototype]:
    return PROTOTYPES.get(name)
