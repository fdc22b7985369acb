"""Expected-vs-actual reconciliation with documented tolerance rules.

Comparison is per key (``name`` / ``name:quality`` for items,
``name@T.TC`` for fluids) so every mismatch is attributable. Tolerances:

1. Ordinary fluid buckets match within an absolute epsilon.
2. Buckets at or above the high-temperature threshold drift between
   temperatures when the engine merges packets, so they are reconciled per
   fluid name: the per-bucket deltas are reported but only the aggregate
   decides pass/fail.
3. Items: known losses (objects that failed to place, inventory inserts cut
   short by capacity) are recorded in a ledger and subtracted from the
   expected counts before comparison. A residual shortfall is accepted up to
   ``accepted_loss_fraction`` of the expected total; any gain fails.
"""

import logging
import math
from collections import defaultdict
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional

from relay_core.config.relay_config import ReconciliationConfig
from relay_core.keys import parse_fluid_key
from relay_core.verification import Verification

logger = logging.getLogger(__name__)


@dataclass
class ItemDelta:
    key: str
    expected: int
    actual: int

    @property
    def delta(self) -> int:
        return self.actual - self.expected

    def to_dict(self) -> Dict[str, Any]:
        return {"key": self.key, "expected": self.expected, "actual": self.actual, "delta": self.delta}


@dataclass
class FluidBucketDelta:
    key: str
    expected: float
    actual: float
    high_temperature: bool
    within_tolerance: bool

    @property
    def delta(self) -> float:
        return self.actual - self.expected

    def to_dict(self) -> Dict[str, Any]:
        return {
            "key": self.key,
            "expected": round(self.expected, 3),
            "actual": round(self.actual, 3),
            "delta": round(self.delta, 3),
            "highTemperature": self.high_temperature,
            "withinTolerance": self.within_tolerance,
        }


@dataclass
class FluidReconciliation:
    """Outcome of comparing two fluid count maps."""

    buckets: List[FluidBucketDelta] = field(default_factory=list)
    high_temp_aggregates: Dict[str, Dict[str, Any]] = field(default_factory=dict)
    expected_total: float = 0.0
    actual_total: float = 0.0
    low_temp_match: bool = True
    high_temp_match: bool = True

    @property
    def matched(self) -> bool:
        return self.low_temp_match and self.high_temp_match

    @property
    def preserved_pct(self) -> float:
        if self.expected_total <= 0:
            return 100.0
        return round(100.0 * self.actual_total / self.expected_total, 3)

    @property
    def total_loss(self) -> float:
        return max(0.0, self.expected_total - self.actual_total)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "matched": self.matched,
            "lowTempMatch": self.low_temp_match,
            "highTempMatch": self.high_temp_match,
            "expectedTotal": round(self.expected_total, 3),
            "actualTotal": round(self.actual_total, 3),
            "totalLoss": round(self.total_loss, 3),
            "fluidPreservedPct": self.preserved_pct,
            "highTempAggregates": self.high_temp_aggregates,
            "bucketMismatches": [b.to_dict() for b in self.buckets if b.delta != 0],
        }


def reconcile_fluids(
    expected: Dict[str, float],
    actual: Dict[str, float],
    config: Optional[ReconciliationConfig] = None,
) -> FluidReconciliation:
    """Compare fluid maps under the epsilon and high-temperature rules."""
    config = config or ReconciliationConfig()
    result = FluidReconciliation(
        expected_total=sum(expected.values()), actual_total=sum(actual.values())
    )
    high_expected: Dict[str, float] = defaultdict(float)
    high_actual: Dict[str, float] = defaultdict(float)

    for key in sorted(set(expected) | set(actual)):
        want = expected.get(key, 0.0)
        have = actual.get(key, 0.0)
        name, temperature = parse_fluid_key(key)
        high = temperature >= config.high_temp_threshold
        within = abs(have - want) <= config.fluid_epsilon
        result.buckets.append(FluidBucketDelta(key, want, have, high, within))
        if high:
            high_expected[name] += want
            high_actual[name] += have
        elif not within:
            result.low_temp_match = False

    for name in sorted(set(high_expected) | set(high_actual)):
        want = high_expected[name]
        have = high_actual[name]
        reconciled = abs(have - want) <= config.high_temp_tolerance
        result.high_temp_aggregates[name] = {
            "expected": round(want, 3),
            "actual": round(have, 3),
            "delta": round(have - want, 3),
            "loss": round(max(0.0, want - have), 3),
            "reconciled": reconciled,
        }
        if not reconciled:
            result.high_temp_match = False

    return result


@dataclass
class ReconciliationReport:
    """Everything a reviewer needs to attribute a pass or a failure."""

    raw_expected: Verification
    expected: Verification
    actual: Verification
    item_deltas: List[ItemDelta]
    item_count_match: bool
    fluids: Optional[FluidReconciliation]
    entity_count: int
    failed_placement: Dict[str, Any]
    accepted_loss: Dict[str, Any]

    @property
    def fluids_checked(self) -> bool:
        return self.fluids is not None

    @property
    def fluid_count_match(self) -> bool:
        return self.fluids.matched if self.fluids is not None else True

    @property
    def passed(self) -> bool:
        return self.item_count_match and self.fluid_count_match

    def mismatch_details(self) -> List[str]:
        details = [
            f"item {d.key}: expected {d.expected}, got {d.actual} ({d.delta:+d})"
            for d in self.item_deltas
            if d.delta != 0
        ]
        if self.fluids is not None:
            for bucket in self.fluids.buckets:
                if not bucket.high_temperature and not bucket.within_tolerance:
                    details.append(
                        f"fluid {bucket.key}: expected {bucket.expected:.1f}, got {bucket.actual:.1f}"
                    )
            for name, agg in self.fluids.high_temp_aggregates.items():
                if not agg["reconciled"]:
                    details.append(
                        f"fluid {name} (high temperature total): expected {agg['expected']}, got {agg['actual']}"
                    )
        return details

    def to_validation_result(self) -> Dict[str, Any]:
        return {
            "passed": self.passed,
            "itemCountMatch": self.item_count_match,
            "fluidCountMatch": self.fluid_count_match,
            "fluidsChecked": self.fluids_checked,
            "entityCount": self.entity_count,
            "expectedItemCounts": dict(self.expected.item_counts),
            "actualItemCounts": dict(self.actual.item_counts),
            "expectedFluidCounts": dict(self.expected.fluid_counts),
            "actualFluidCounts": dict(self.actual.fluid_counts),
            "rawExpectedItemCounts": dict(self.raw_expected.item_counts),
            "fluidReconciliation": self.fluids.to_dict() if self.fluids is not None else {},
            "failedPlacementLoss": self.failed_placement,
            "acceptedLoss": self.accepted_loss,
            "mismatchDetails": self.mismatch_details(),
        }


class ReconciliationEngine:
    def __init__(self, config: Optional[ReconciliationConfig] = None) -> None:
        self.config = config or ReconciliationConfig()

    def reconcile(
        self,
        expected: Verification,
        actual: Verification,
        *,
        include_fluids: bool = True,
        failed_placement: Optional[Verification] = None,
        failed_placement_summary: Optional[Dict[str, Any]] = None,
        entity_count: int = 0,
    ) -> ReconciliationReport:
        """Compare *actual* against *expected* minus known losses.

        Args:
            expected: Source verification totals
            actual: Totals recomputed from a destination re-scan
            include_fluids: False before fluids have been injected
            failed_placement: Known losses to subtract from *expected*
            failed_placement_summary: Ledger details surfaced in the report
            entity_count: Objects present on the destination
        """
        losses = failed_placement or Verification()
        adjusted_items = {
            key: max(0, count - losses.item_counts.get(key, 0))
            for key, count in expected.item_counts.items()
        }
        adjusted_fluids = {
            key: max(0.0, amount - losses.fluid_counts.get(key, 0.0))
            for key, amount in expected.fluid_counts.items()
        }
        adjusted = Verification(
            item_counts={k: v for k, v in adjusted_items.items() if v},
            fluid_counts={k: v for k, v in adjusted_fluids.items() if v},
        )

        deltas = []
        gained = 0
        shortfall = 0
        for key in sorted(set(adjusted.item_counts) | set(actual.item_counts)):
            want = adjusted.item_counts.get(key, 0)
            have = actual.item_counts.get(key, 0)
            deltas.append(ItemDelta(key, want, have))
            if have > want:
                gained += have - want
            else:
                shortfall += want - have

        allowance = math.floor(self.config.accepted_loss_fraction * adjusted.total_items)
        item_match = gained == 0 and shortfall <= allowance

        fluids = None
        if include_fluids:
            fluids = reconcile_fluids(adjusted.fluid_counts, actual.fluid_counts, self.config)

        report = ReconciliationReport(
            raw_expected=expected,
            expected=adjusted,
            actual=actual,
            item_deltas=deltas,
            item_count_match=item_match,
            fluids=fluids,
            entity_count=entity_count,
            failed_placement=dict(failed_placement_summary or {}),
            accepted_loss={
                "fraction": self.config.accepted_loss_fraction,
                "allowance": allowance,
                "residualShortfall": shortfall,
                "gained": gained,
                "withinAllowance": shortfall <= allowance,
            },
        )
        if not report.passed:
            logger.warning("Reconciliation failed: %s", "; ".join(report.mismatch_details()[:10]))
        elif shortfall:
            logger.info(
                "Reconciliation passed with %d unexplained missing items (allowance %d)",
                shortfall,
                allowance,
            )
        return report
