"""Post-activation loss report.

Runs after fluids are injected and the platform is live. The result is a
report only: by the time it runs the transfer has already been accepted.
"""

from collections import defaultdict
from typing import Any, Dict, Iterable, List, Optional

from relay_core.reconciliation import ReconciliationReport, reconcile_fluids
from relay_core.verification import count_record

__all__ = ["analyze_losses", "breakdown_by_type", "reconcile_fluids"]


def breakdown_by_type(records: Iterable[Dict[str, Any]]) -> Dict[str, Dict[str, float]]:
    """Item and fluid totals per object type."""
    totals: Dict[str, Dict[str, float]] = {}
    for record in records:
        items: Dict[str, int] = defaultdict(int)
        fluids: Dict[str, float] = defaultdict(float)
        count_record(record, items, fluids)
        if not items and not fluids:
            continue
        entry = totals.setdefault(record["type"], {"items": 0, "fluids": 0.0})
        entry["items"] += sum(items.values())
        entry["fluids"] += sum(fluids.values())
    return totals


def analyze_losses(
    expected_records: List[Dict[str, Any]],
    actual_records: List[Dict[str, Any]],
    report: ReconciliationReport,
    fluid_injection: Optional[Dict[str, Any]] = None,
) -> Dict[str, Any]:
    expected_by_type = breakdown_by_type(expected_records)
    actual_by_type = breakdown_by_type(actual_records)
    by_type = {}
    for object_type in sorted(set(expected_by_type) | set(actual_by_type)):
        want = expected_by_type.get(object_type, {"items": 0, "fluids": 0.0})
        have = actual_by_type.get(object_type, {"items": 0, "fluids": 0.0})
        by_type[object_type] = {
            "expectedItems": want["items"],
            "actualItems": have["items"],
            "expectedFluids": round(want["fluids"], 3),
            "actualFluids": round(have["fluids"], 3),
        }

    return {
        "passed": report.passed,
        "itemsExpected": report.expected.total_items,
        "itemsActual": report.actual.total_items,
        "itemLoss": max(0, report.expected.total_items - report.actual.total_items),
        "fluidReconciliation": report.fluids.to_dict() if report.fluids is not None else {},
        "failedPlacementLoss": report.failed_placement,
        "fluidInjection": fluid_injection or {},
        "byType": by_type,
        "mismatchDetails": report.mismatch_details(),
    }
