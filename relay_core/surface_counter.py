"""Live totals for a surface, recomputed from a fresh record scan."""

from relay_core.host import Surface
from relay_core.scanning.object_scanner import scan_surface
from relay_core.verification import Verification, aggregate


def count_surface(surface: Surface) -> Verification:
    """Scan *surface* in one pass and aggregate its item and fluid totals.

    Uses the same record builder and aggregation as export, so an unchanged
    surface counts exactly what its manifest verification says.
    """
    return aggregate(scan_surface(surface))


def count_objects(surface: Surface) -> int:
    return sum(1 for obj in surface.find_objects() if obj.valid)
