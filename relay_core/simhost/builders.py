"""Seed layouts for the in-memory host."""

import logging
from typing import Optional

from relay_core.simhost.memory import MemoryHost, MemoryPlatform
from relay_core.simhost.prototypes import FOUNDATION_TILE

logger = logging.getLogger(__name__)

DEMO_FORCE = "player"


def lay_foundation(platform: MemoryPlatform, radius: int = 6) -> None:
    platform.surface.set_tiles(
        {"name": FOUNDATION_TILE, "position": {"x": x, "y": y}}
        for x in range(-radius, radius)
        for y in range(-radius, radius)
    )


def _place(platform: MemoryPlatform, name: str, x: float, y: float, direction: int = 0, **kwargs):
    obj = platform.surface.create_object(
        name, {"x": x, "y": y}, direction, force=platform.force, **kwargs
    )
    if obj is None:
        raise RuntimeError(f"Demo layout could not place {name} at ({x}, {y})")
    return obj


def build_demo_platform(
    host: MemoryHost,
    name: str = "Alpha",
    force: str = DEMO_FORCE,
    *,
    with_cargo_pods: bool = False,
    belt_items: bool = True,
) -> MemoryPlatform:
    """Create a platform exercising every capability the relay handles.

    The layout has a stocked hub, chests with extras-bearing stacks, a moving
    belt line feeding an inserter, an assembler, a water network, an isolated
    high-temperature reactor, a two-box thruster, a wired combinator, an object
    without a native id, a vehicle with an orientation and loose ground items.
    """
    platform = host.create_platform(name, force)
    lay_foundation(platform)
    platform.schedule = {"current": 1, "records": [{"station": "nauvis"}, {"station": "vulcanus"}]}

    hub_inventory = platform.hub.get_inventory("hub_main")
    hub_inventory.insert({"name": "iron-plate", "count": 500})
    hub_inventory.insert({"name": "copper-cable", "count": 400})
    hub_inventory.insert({"name": "electronic-circuit", "count": 50, "quality": "uncommon"})
    hub_inventory.insert({"name": "repair-pack", "count": 3, "durability": 0.5})

    chest = _place(platform, "steel-chest", -3.5, 0.5)
    chest_inventory = chest.get_inventory("chest")
    chest_inventory.insert({"name": "iron-gear-wheel", "count": 120})
    chest_inventory.insert({"name": "firearm-magazine", "count": 7, "ammo": 4})
    chest_inventory.insert({"name": "yumako", "count": 20, "spoil_percent": 0.25})

    combinator = _place(platform, "constant-combinator", -3.5, -0.5)
    combinator.set_control(
        {"enabled": True, "sections": [{"filters": [{"name": "iron-plate", "count": 10}]}]}
    )
    combinator.connect_circuit("red", chest)

    for x in (-2.5, -1.5, -0.5, 0.5):
        belt = _place(platform, "transport-belt", x, 2.5, 4)
        if belt_items:
            lanes = belt.get_lanes()
            lanes[0].insert_at(0.2, {"name": "iron-plate"})
            lanes[0].insert_at(0.7, {"name": "iron-plate"})
            lanes[1].insert_at(0.45, {"name": "copper-cable", "count": 2})

    inserter = _place(platform, "inserter", 1.5, 2.5, 4)
    inserter.set_held_stack({"name": "iron-plate", "count": 1})
    inserter.set_filters(["iron-plate", None])
    _place(platform, "iron-chest", 2.5, 2.5)

    assembler = _place(platform, "assembling-machine-2", 3.5, -1.5)
    assembler.set_recipe("iron-gear-wheel")
    assembler.get_inventory("assembling_machine_input").insert({"name": "iron-plate", "count": 40})
    assembler.get_inventory("assembling_machine_output").insert({"name": "iron-gear-wheel", "count": 5})

    tank = _place(platform, "storage-tank", -2.5, -2.5)
    _place(platform, "pipe", -1.5, -2.5)
    _place(platform, "pipe", -0.5, -2.5)
    tank.set_network_fluid(0, {"name": "water", "amount": 5000.0, "temperature": 15.0})

    reactor = _place(platform, "fusion-reactor", 2.5, -3.5)
    reactor.set_fluid(0, {"name": "fusion-plasma", "amount": 400.0, "temperature": 1_000_000.0})

    thruster = _place(platform, "thruster", 4.5, 0.5)
    thruster.set_fluid(0, {"name": "thruster-fuel", "amount": 800.0, "temperature": 15.0})
    thruster.set_fluid(1, {"name": "thruster-oxidizer", "amount": 600.0, "temperature": 15.0})

    _place(platform, "solar-panel", -4.5, 3.5)

    car = _place(platform, "car", 4.5, 3.5, orientation=0.25)
    car.get_inventory("car_trunk").insert({"name": "solar-panel", "count": 2})

    platform.surface.spill_item({"name": "iron-plate", "count": 3}, {"x": 1.5, "y": -0.5})

    if with_cargo_pods:
        platform.add_cargo_pod("descending", [{"name": "carbon", "count": 30}])
        platform.add_cargo_pod("ascending", [{"name": "ice", "count": 10}])
        platform.add_cargo_pod("awaiting_launch", [{"name": "copper-plate", "count": 12}])

    # Let freshly placed objects attach to their fluid networks.
    host.step()
    logger.debug("Built demo platform %s with %d objects", name, len(platform.surface.find_objects()))
    return platform


def build_belt_line(
    host: MemoryHost,
    name: str = "Belts",
    force: str = DEMO_FORCE,
    length: int = 2,
    platform: Optional[MemoryPlatform] = None,
) -> MemoryPlatform:
    """A bare east-facing belt line starting at (0.5, 2.5)."""
    if platform is None:
        platform = host.create_platform(name, force)
        lay_foundation(platform)
    for i in range(length):
        _place(platform, "transport-belt", 0.5 + i, 2.5, 4)
    return platform
