"""Command interface between the relay pipeline and a simulation engine.

The pipeline never imports an engine. It scans and mutates the world only
through the protocols below, and checks optional capabilities with the
helpers in ``relay_core.capabilities``. Objects are polymorphic over an
open set of capabilities: a capability an object lacks is simply absent
(attribute lookup raises ``AttributeError``).

Value conventions:
    position: ``{"x": float, "y": float}``
    item stack: ``{"name", "count", "quality", ...extras}``
    fluid: ``{"name", "amount", "temperature"}``
    tile: ``{"name", "position": {"x", "y"}}``
"""

from typing import Any, Dict, Iterable, List, Optional, Protocol, Union

ObjectId = Union[int, str]
ItemStack = Dict[str, Any]
Fluid = Dict[str, Any]
Tile = Dict[str, Any]


class Inventory(Protocol):
    slots: int

    def contents(self) -> List[ItemStack]:
        """Non-empty stacks in slot order (copies)."""

    def insert(self, stack: ItemStack) -> int:
        """Insert a stack; returns the count actually inserted."""

    def clear(self) -> None: ...


class Lane(Protocol):
    def items(self) -> List[ItemStack]:
        """Items on the lane with their fractional ``position`` (0..1)."""

    def insert_at(self, position: float, stack: ItemStack) -> bool: ...

    def insert_at_back(self, stack: ItemStack) -> bool: ...

    def clear(self) -> None: ...


class SimObject(Protocol):
    """A placed simulation object.

    Required attributes are listed here. Optional capabilities (``active``,
    ``orientation``, ``get_inventories``, ``fluidbox_count``/``get_fluid``/
    ``set_fluid``/``set_network_fluid``/``get_fluid_network_id``,
    ``get_lanes``, ``held_stack``, ``get_recipe``/``set_recipe``,
    ``get_control``/``set_control``, ``get_filters``/``set_filters``,
    ``get_circuit_connections``/``connect_circuit``) may be missing.
    """

    unit_number: Optional[int]
    name: str
    type: str
    position: Dict[str, float]
    direction: int
    quality: str
    valid: bool

    def destroy(self) -> None: ...


class CargoPod(Protocol):
    state: str
    valid: bool

    def get_inventory(self) -> Inventory: ...

    def finish(self) -> None:
        """Complete the pod's flight immediately and remove it."""

    def destroy(self) -> None: ...


class Surface(Protocol):
    index: int
    valid: bool

    def find_objects(self) -> List[SimObject]: ...

    def get_object(self, object_id: ObjectId) -> Optional[SimObject]: ...

    def get_tiles(self) -> List[Tile]: ...

    def set_tiles(self, tiles: Iterable[Tile]) -> List[Tile]:
        """Place tiles; returns the tiles that could not be placed."""

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
    ) -> Optional[SimObject]:
        """Create an object; returns None when placement fails."""

    def find_ground_items(self) -> List[ItemStack]: ...

    def spill_item(self, stack: ItemStack, position: Dict[str, float]) -> bool: ...


class Platform(Protocol):
    name: str
    index: int
    force: str
    valid: bool
    surface: Surface
    hidden: bool
    schedule: Optional[Dict[str, Any]]
    paused: bool
    hub: Optional[SimObject]

    def cargo_pods(self) -> List[CargoPod]: ...


class SimulationHost(Protocol):
    tick: int
    version: str

    def step(self, ticks: int = 1) -> None:
        """Advance the engine clock."""

    def get_platform(self, name: str, force: str) -> Optional[Platform]: ...

    def list_platforms(self, force: Optional[str] = None) -> List[Platform]: ...

    def create_platform(self, name: str, force: str) -> Platform:
        """Create an empty platform (floor under the hub only) with its hub."""

    def delete_platform(self, platform: Platform) -> None: ...
