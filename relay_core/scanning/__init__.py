"""Surface scanning: object records, conveyor capture and tiles."""

from relay_core.scanning.belt_scanner import AtomicBeltScan, AtomicScanResult, scan_lanes
from relay_core.scanning.handlers import DEFAULT_REGISTRY, ExtractorRegistry, RestoreContext
from relay_core.scanning.object_scanner import (
    GROUND_ITEM_TYPE,
    ordered_object_ids,
    scan_ground_items,
    scan_object,
    scan_surface,
    sort_for_placement,
)
from relay_core.scanning.tile_scanner import scan_tiles

__all__ = [
    "AtomicBeltScan",
    "AtomicScanResult",
    "DEFAULT_REGISTRY",
    "ExtractorRegistry",
    "GROUND_ITEM_TYPE",
    "RestoreContext",
    "ordered_object_ids",
    "scan_ground_items",
    "scan_lanes",
    "scan_object",
    "scan_surface",
    "scan_tiles",
    "sort_for_placement",
]
