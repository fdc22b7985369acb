"""Capability checks for simulation objects.

One check per optional capability. Checks never raise: an object that
errors while being inspected is treated as lacking the capability.
"""

import logging
from typing import Any, Optional

from relay_core.config.locking import ACTIVATABLE_TYPES, CONVEYOR_TYPES
from relay_core.keys import round_position, stable_object_id

logger = logging.getLogger(__name__)

_MISSING = object()


def safe_get(obj: Any, attr: str, default: Any = None) -> Any:
    """Read an attribute, returning *default* if it is absent or raises."""
    try:
        return getattr(obj, attr, default)
    except Exception:
        logger.debug("Attribute %s unavailable on %r", attr, obj, exc_info=True)
        return default


def _has(obj: Any, attr: str) -> bool:
    return safe_get(obj, attr, _MISSING) is not _MISSING


def supports_activity(obj: Any) -> bool:
    return _has(obj, "active")


def is_freezable(obj: Any) -> bool:
    """Activity-capable objects of a type the lock freezes."""
    return safe_get(obj, "type") in ACTIVATABLE_TYPES and supports_activity(obj)


def is_conveyor(obj: Any) -> bool:
    return safe_get(obj, "type") in CONVEYOR_TYPES and _has(obj, "get_lanes")


def has_inventories(obj: Any) -> bool:
    return _has(obj, "get_inventories")


def has_fluidbox(obj: Any) -> bool:
    if not _has(obj, "fluidbox_count"):
        return False
    try:
        return obj.fluidbox_count() > 0
    except Exception:
        logger.debug("fluidbox_count failed on %r", obj, exc_info=True)
        return False


def has_held_item(obj: Any) -> bool:
    return _has(obj, "held_stack")


def has_recipe(obj: Any) -> bool:
    return _has(obj, "get_recipe")


def has_control_state(obj: Any) -> bool:
    return _has(obj, "get_control")


def has_filters(obj: Any) -> bool:
    return _has(obj, "get_filters")


def has_circuit_connections(obj: Any) -> bool:
    return _has(obj, "get_circuit_connections")


def orientation_of(obj: Any) -> Optional[float]:
    value = safe_get(obj, "orientation")
    return None if value is None else float(value)


def object_id(obj: Any):
    """Native id if the object has one, else its deterministic stable id."""
    unit_number = safe_get(obj, "unit_number")
    if unit_number is not None:
        return unit_number
    return stable_object_id(
        obj.name,
        round_position(obj.position),
        safe_get(obj, "direction", 0),
        orientation_of(obj),
    )
