"""Key formats for quality-keyed and temperature-keyed quantities.

Item totals are bucketed by ``(name, quality)`` and fluid totals by
``(name, temperature)``. The string forms are what appear in manifests,
verification blocks and reconciliation reports.
"""

import re
from typing import Any, Dict, Optional, Tuple

from relay_core.config.validation import DEFAULT_FLUID_TEMPERATURE

NORMAL_QUALITY = "normal"

_FLUID_KEY_RE = re.compile(r"^(.+)@([\d.\-]+)C$")


def quality_key(name: str, quality: Optional[str] = None) -> str:
    """Build an item key. Normal quality uses the bare name."""
    if not quality or quality == NORMAL_QUALITY:
        return name
    return f"{name}:{quality}"


def parse_quality_key(key: str) -> Tuple[str, str]:
    """Split an item key into ``(name, quality)``."""
    name, sep, quality = key.rpartition(":")
    if not sep or not name:
        return key, NORMAL_QUALITY
    return name, quality


def fluid_key(name: str, temperature: Optional[float]) -> str:
    """Build a fluid key, e.g. ``steam@165.0C``."""
    if temperature is None:
        temperature = DEFAULT_FLUID_TEMPERATURE
    return f"{name}@{float(temperature):.1f}C"


def parse_fluid_key(key: str) -> Tuple[str, float]:
    """Split a fluid key into ``(name, temperature)``.

    Keys without a temperature suffix parse at the default temperature.
    """
    match = _FLUID_KEY_RE.match(key)
    if match is None:
        return key, DEFAULT_FLUID_TEMPERATURE
    try:
        return match.group(1), float(match.group(2))
    except ValueError:
        return match.group(1), DEFAULT_FLUID_TEMPERATURE


def round_position(position: Any) -> Dict[str, float]:
    """Normalize a position (dict or ``(x, y)`` pair) to two decimals."""
    if isinstance(position, dict):
        x, y = position.get("x", 0.0), position.get("y", 0.0)
    else:
        x, y = position
    return {"x": round(float(x), 2), "y": round(float(y), 2)}


def stable_object_id(
    name: str,
    position: Dict[str, float],
    direction: Optional[int] = None,
    orientation: Optional[float] = None,
) -> str:
    """Deterministic id for objects that never receive a native identifier."""
    base = f"{name}@{float(position['x']):.3f},{float(position['y']):.3f}#{direction or 0}"
    if orientation is not None:
        base += f":{float(orientation):.3f}"
    return base


def sanitize_name(name: str) -> str:
    """Collapse a platform name to characters that are safe in ids and filenames."""
    cleaned = re.sub(r"[^A-Za-z0-9_\-]+", "_", name).strip("_")
    return cleaned or "platform"
