"""Tests for the reconciliation tolerance rules."""

from relay_core.config.relay_config import ReconciliationConfig
from relay_core.importing.loss_ledger import FailedPlacementLedger
from relay_core.reconciliation import ReconciliationEngine, reconcile_fluids
from relay_core.verification import Verification


class TestFluidRules:
    def test_ordinary_bucket_within_epsilon(self):
        result = reconcile_fluids({"water@15.0C": 1000.0}, {"water@15.0C": 999.95})
        assert result.matched

    def test_ordinary_bucket_outside_epsilon(self):
        result = reconcile_fluids({"water@15.0C": 1000.0}, {"water@15.0C": 999.0})
        assert not result.low_temp_match
        assert not result.matched

    def test_high_temperature_drift_reconciles_on_aggregate(self):
        expected = {"fusion-plasma@1000000.0C": 400.0}
        actual = {"fusion-plasma@999000.0C": 150.0, "fusion-plasma@1000000.0C": 249.5}

        result = reconcile_fluids(expected, actual)

        assert result.matched
        aggregate = result.high_temp_aggregates["fusion-plasma"]
        assert aggregate["reconciled"] is True
        assert aggregate["loss"] == 0.5
        # Per-bucket deltas are still reported.
        assert len(result.to_dict()["bucketMismatches"]) == 2

    def test_high_temperature_aggregate_loss_fails(self):
        result = reconcile_fluids({"fusion-plasma@1000000.0C": 400.0}, {"fusion-plasma@1000000.0C": 390.0})
        assert not result.high_temp_match
        assert result.total_loss == 10.0

    def test_threshold_is_configurable(self):
        config = ReconciliationConfig(high_temp_threshold=100.0)
        result = reconcile_fluids({"steam@500.0C": 100.0}, {"steam@499.0C": 100.0}, config)
        assert result.matched


class TestItemRules:
    def test_exact_match_passes(self):
        engine = ReconciliationEngine()
        counts = Verification({"iron-plate": 100})
        report = engine.reconcile(counts, counts)
        assert report.passed
        assert report.mismatch_details() == []

    def test_shortfall_within_allowance_passes(self):
        engine = ReconciliationEngine()
        report = engine.reconcile(Verification({"iron-plate": 1000}), Verification({"iron-plate": 995}))
        assert report.passed
        assert report.accepted_loss["allowance"] == 5
        assert report.accepted_loss["residualShortfall"] == 5

    def test_shortfall_beyond_allowance_fails(self):
        engine = ReconciliationEngine()
        report = engine.reconcile(Verification({"iron-plate": 1000}), Verification({"iron-plate": 994}))
        assert not report.passed
        assert report.mismatch_details() == ["item iron-plate: expected 1000, got 994 (-6)"]

    def test_any_gain_fails(self):
        engine = ReconciliationEngine()
        report = engine.reconcile(
            Verification({"iron-plate": 1000}),
            Verification({"iron-plate": 999, "copper-plate": 1}),
        )
        assert not report.passed
        assert report.accepted_loss["gained"] == 1

    def test_known_losses_are_subtracted(self):
        ledger = FailedPlacementLedger()
        ledger.record_failed_object(
            {
                "id": 9,
                "name": "steel-chest",
                "payload": {"inventories": [{"type": "chest", "items": [{"name": "iron-plate", "count": 300}]}]},
            },
            "blocked",
        )
        ledger.record_insert_shortfall({"name": "copper-cable", "count": 50}, 20)
        engine = ReconciliationEngine()

        report = engine.reconcile(
            Verification({"iron-plate": 500, "copper-cable": 100}),
            Verification({"iron-plate": 200, "copper-cable": 70}),
            failed_placement=ledger.as_verification(),
            failed_placement_summary=ledger.summary(),
        )

        assert report.passed
        assert report.expected.item_counts == {"iron-plate": 200, "copper-cable": 70}
        assert report.raw_expected.item_counts["iron-plate"] == 500
        result = report.to_validation_result()
        assert result["failedPlacementLoss"]["entityCount"] == 1
        assert result["failedPlacementLoss"]["insertionLosses"] == {"copper-cable": 30}

    def test_fluids_excluded_before_injection(self):
        engine = ReconciliationEngine()
        report = engine.reconcile(
            Verification({}, {"water@15.0C": 5000.0}), Verification(), include_fluids=False
        )
        assert report.passed
        assert report.to_validation_result()["fluidsChecked"] is False


class TestLedger:
    def test_full_shortfall_counts_nested_items(self):
        ledger = FailedPlacementLedger()
        ledger.record_insert_shortfall(
            {"name": "spidertron", "count": 1, "nested_inventory": [{"name": "ammo", "count": 4}]}, 0
        )
        assert ledger.items == {"spidertron": 1, "ammo": 4}

    def test_complete_insert_records_nothing(self):
        ledger = FailedPlacementLedger()
        ledger.record_insert_shortfall({"name": "iron-plate", "count": 10}, 10)
        assert ledger.is_empty

    def test_dict_conversion(self):
        ledger = FailedPlacementLedger()
        ledger.record_failed_object({"id": 1, "name": "tank", "payload": {"fluids": [
            {"index": 0, "name": "water", "amount": 10.0, "temperature": 15.0}
        ]}}, "no room")
        restored = FailedPlacementLedger.from_dict(ledger.to_dict())
        assert restored == ledger
        assert restored.fluids == {"water@15.0C": 10.0}
