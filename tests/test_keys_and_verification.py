"""Tests for key formats, verification totals and the envelope format."""

import pytest

from relay_core.exceptions import StructuralError
from relay_core.keys import (
    fluid_key,
    parse_fluid_key,
    parse_quality_key,
    quality_key,
    round_position,
    sanitize_name,
    stable_object_id,
)
from relay_core.serializer import (
    SCHEMA_VERSION,
    build_manifest,
    decode_envelope,
    encode_envelope,
    is_envelope,
)
from relay_core.verification import Verification, aggregate, verify_manifest


class TestKeys:
    def test_normal_quality_uses_bare_name(self):
        assert quality_key("iron-plate") == "iron-plate"
        assert quality_key("iron-plate", "normal") == "iron-plate"
        assert quality_key("iron-plate", "legendary") == "iron-plate:legendary"

    def test_parse_quality_key(self):
        assert parse_quality_key("iron-plate:rare") == ("iron-plate", "rare")
        assert parse_quality_key("iron-plate") == ("iron-plate", "normal")

    def test_fluid_key_formats_one_decimal(self):
        assert fluid_key("steam", 165) == "steam@165.0C"
        assert fluid_key("water", None) == "water@15.0C"
        assert fluid_key("fusion-plasma", 1_000_000.0) == "fusion-plasma@1000000.0C"

    def test_parse_fluid_key(self):
        assert parse_fluid_key("steam@165.0C") == ("steam", 165.0)
        assert parse_fluid_key("ammonia@-33.5C") == ("ammonia", -33.5)

    def test_unparsed_fluid_key_defaults_temperature(self):
        assert parse_fluid_key("water") == ("water", 15.0)

    def test_stable_object_id_is_deterministic(self):
        position = round_position((1.5, -2.5))
        first = stable_object_id("pipe", position)
        assert first == "pipe@1.500,-2.500#0"
        assert stable_object_id("pipe", position) == first
        assert stable_object_id("car", position, 0, 0.25) == "car@1.500,-2.500#0:0.250"

    def test_sanitize_name(self):
        assert sanitize_name("Alpha") == "Alpha"
        assert sanitize_name("My Platform!") == "My_Platform"
        assert sanitize_name("!!!") == "platform"


def _record(payload, record_type="container", record_id=1):
    return {
        "id": record_id,
        "name": record_type,
        "type": record_type,
        "position": {"x": 0.5, "y": 0.5},
        "direction": 0,
        "payload": payload,
    }


class TestAggregate:
    def test_counts_every_item_location(self):
        records = [
            _record(
                {
                    "inventories": [
                        {
                            "type": "chest",
                            "items": [
                                {"name": "iron-plate", "count": 10, "quality": "normal"},
                                {"name": "iron-plate", "count": 5, "quality": "rare"},
                                {
                                    "name": "spidertron",
                                    "count": 1,
                                    "quality": "normal",
                                    "nested_inventory": [{"name": "ammo", "count": 4}],
                                },
                            ],
                        }
                    ]
                }
            ),
            _record(
                {
                    "belt": [
                        {"line": 1, "items": [{"name": "iron-plate", "count": 1, "quality": "normal", "position": 0.2}]},
                        {"line": 2, "items": [{"name": "copper-cable", "count": 2, "quality": "normal", "position": 0.5}]},
                    ]
                },
                record_type="transport-belt",
                record_id=2,
            ),
            _record({"held_item": {"name": "iron-plate", "count": 1}}, record_type="inserter", record_id=3),
            _record({"stack": {"name": "ice", "count": 3}}, record_type="item-on-ground", record_id="g"),
        ]

        totals = aggregate(records)

        assert totals.item_counts == {
            "iron-plate": 12,
            "iron-plate:rare": 5,
            "spidertron": 1,
            "ammo": 4,
            "copper-cable": 2,
            "ice": 3,
        }
        assert totals.total_items == 27
        assert totals.fluid_counts == {}

    def test_fluids_bucketed_by_temperature(self):
        records = [
            _record(
                {
                    "fluids": [
                        {"index": 0, "name": "steam", "amount": 100.0, "temperature": 165.0},
                        {"index": 1, "name": "steam", "amount": 50.0, "temperature": 500.0},
                        {"index": 2, "name": "water", "amount": 0.0, "temperature": 15.0},
                    ]
                },
                record_type="boiler",
            ),
            _record(
                {"fluids": [{"index": 0, "name": "steam", "amount": 25.0, "temperature": 165.0}]},
                record_type="pipe",
                record_id="pipe@0",
            ),
        ]

        totals = aggregate(records)

        assert totals.fluid_counts == {"steam@165.0C": 125.0, "steam@500.0C": 50.0}
        assert totals.total_fluids == 175.0

    def test_verification_dict_conversion(self):
        original = Verification({"a": 1}, {"water@15.0C": 2.5})
        assert Verification.from_dict(original.to_dict()) == original


class TestVerifyManifest:
    def test_consistent_manifest(self):
        records = [_record({"stack": {"name": "ice", "count": 3}}, record_type="item-on-ground")]
        manifest = {"objects": records, "verification": aggregate(records).to_dict()}
        assert verify_manifest(manifest) == (True, [])

    def test_reports_drift_per_key(self):
        records = [_record({"stack": {"name": "ice", "count": 3}}, record_type="item-on-ground")]
        manifest = {
            "objects": records,
            "verification": {"item_counts": {"ice": 4, "carbon": 1}, "fluid_counts": {"water@15.0C": 1.0}},
        }
        consistent, mismatches = verify_manifest(manifest)
        assert not consistent
        assert mismatches == ["item:carbon", "item:ice", "fluid:water@15.0C"]


class TestEnvelope:
    def _manifest(self):
        objects = [_record({"stack": {"name": "ice", "count": 3}}, record_type="item-on-ground")]
        return build_manifest(
            platform={"name": "Alpha", "force": "player", "index": 1},
            objects=objects,
            tiles=[{"name": "space-platform-foundation", "position": {"x": 0, "y": 0}}],
            tick=42,
            source_version="2.0.72",
            frozen_states={7: True},
        )

    def test_manifest_header(self):
        manifest = self._manifest()
        assert manifest["schema_version"] == SCHEMA_VERSION
        assert manifest["metadata"]["item_total"] == 3
        assert manifest["frozen_states"] == {"7": True}
        assert manifest["verification"]["item_counts"] == {"ice": 3}

    def test_envelope_keeps_verification_uncompressed(self):
        manifest = self._manifest()
        envelope = encode_envelope(manifest)

        assert is_envelope(envelope)
        assert envelope["compressed"] is True
        assert envelope["platform_name"] == "Alpha"
        assert envelope["verification"] == manifest["verification"]
        assert envelope["stats"]["items"] == 3
        assert decode_envelope(envelope) == manifest

    def test_uncompressed_envelope(self):
        manifest = self._manifest()
        envelope = encode_envelope(manifest, compress=False)
        assert envelope["compression"] == "none"
        assert decode_envelope(envelope)["objects"] == manifest["objects"]

    def test_bare_manifest_is_accepted(self):
        manifest = self._manifest()
        assert decode_envelope(manifest) is manifest

    def test_manifest_without_objects_is_rejected(self):
        with pytest.raises(StructuralError):
            decode_envelope({"platform": {"name": "Alpha"}})

    def test_corrupt_payload_is_rejected(self):
        envelope = encode_envelope(self._manifest())
        envelope["payload"] = "not-base64-deflate!"
        with pytest.raises(StructuralError):
            decode_envelope(envelope)

    def test_unknown_compression_is_rejected(self):
        envelope = encode_envelope(self._manifest())
        envelope["compression"] = "zstd"
        with pytest.raises(StructuralError):
            decode_envelope(envelope)
