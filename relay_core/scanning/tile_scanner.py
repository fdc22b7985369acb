"""Floor tile capture."""

from typing import Any, Dict, List

from relay_core.host import Surface


def scan_tiles(surface: Surface) -> List[Dict[str, Any]]:
    return [
        {"name": tile["name"], "position": {"x": tile["position"]["x"], "y": tile["position"]["y"]}}
        for tile in surface.get_tiles()
    ]
