"""Tests for object records, conveyor capture and placement ordering."""

from types import SimpleNamespace

from relay_core.capabilities import is_conveyor, is_freezable, object_id
from relay_core.scanning import (
    AtomicBeltScan,
    ExtractorRegistry,
    GROUND_ITEM_TYPE,
    RestoreContext,
    ordered_object_ids,
    scan_ground_items,
    scan_object,
    scan_surface,
    sort_for_placement,
)
from relay_core.scanning.handlers import RecipeExtractor, default_registry
from relay_core.scanning.object_scanner import ordered_objects
from relay_core.simhost import build_belt_line
from relay_core.verification import aggregate


def _find(platform, name):
    return next(obj for obj in platform.surface.find_objects() if obj.name == name)


class TestScanObject:
    def test_inserter_record(self, demo_platform):
        inserter = _find(demo_platform, "inserter")
        record = scan_object(inserter)

        assert record["id"] == inserter.unit_number
        assert record["type"] == "inserter"
        assert record["direction"] == 4
        assert record["payload"]["held_item"] == {"name": "iron-plate", "count": 1, "quality": "normal"}
        assert record["payload"]["filters"] == ["iron-plate", None]

    def test_object_without_native_id_gets_stable_id(self, demo_platform):
        panel = _find(demo_platform, "solar-panel")
        record = scan_object(panel)
        assert record["id"] == "solar-panel@-4.500,3.500#0"
        assert "payload" not in record

    def test_vehicle_orientation_recorded(self, demo_platform):
        record = scan_object(_find(demo_platform, "car"))
        assert record["orientation"] == 0.25
        assert record["payload"]["inventories"][0]["type"] == "car_trunk"

    def test_item_extras_survive(self, demo_platform):
        chest = _find(demo_platform, "steel-chest")
        items = scan_object(chest)["payload"]["inventories"][0]["items"]
        by_name = {item["name"]: item for item in items}
        assert by_name["firearm-magazine"]["ammo"] == 4
        assert by_name["yumako"]["spoil_percent"] == 0.25

    def test_deferred_conveyor_has_no_lanes(self, demo_platform):
        belt = _find(demo_platform, "transport-belt")
        assert "belt" in scan_object(belt)["payload"]
        deferred = scan_object(belt, defer_conveyors=True)
        assert "belt" not in deferred.get("payload", {})

    def test_fluid_network_member_reports_share(self, demo_platform):
        tank = _find(demo_platform, "storage-tank")
        fluids = scan_object(tank)["payload"]["fluids"]
        assert fluids[0]["name"] == "water"
        # Tank holds 25000 of the 25200 network capacity.
        assert abs(fluids[0]["amount"] - 5000.0 * 25000 / 25200) < 1e-6

    def test_failing_extractor_omits_only_its_field(self, demo_platform):
        class BrokenRecipe(RecipeExtractor):
            def extract(self, obj):
                raise RuntimeError("boom")

        registry = default_registry()
        registry.register(BrokenRecipe())
        assembler = _find(demo_platform, "assembling-machine-2")

        record = scan_object(assembler, registry=registry)

        assert "recipe" not in record["payload"]
        assert record["payload"]["inventories"]


class TestGroundItems:
    def test_ground_item_ids(self, demo_platform):
        demo_platform.surface.spill_item({"name": "ice", "count": 1}, {"x": 1.5, "y": -0.5})
        records = scan_ground_items(demo_platform.surface)

        assert [r["id"] for r in records] == [
            "item-on-ground@1.500,-0.500#0",
            "item-on-ground@1.500,-0.500#0~1",
        ]
        assert records[0]["type"] == GROUND_ITEM_TYPE
        assert records[0]["payload"]["stack"] == {"name": "iron-plate", "count": 3, "quality": "normal"}


class TestOrdering:
    def test_native_ids_before_stable_ids(self, demo_platform):
        ids = ordered_object_ids(demo_platform.surface)
        native = [i for i in ids if isinstance(i, int)]
        assert ids[: len(native)] == sorted(native)
        assert all(isinstance(i, str) for i in ids[len(native):])

    def test_stable_ids_tie_break_on_direction(self):
        class FakeSurface:
            def __init__(self, objects):
                self._objects = objects

            def find_objects(self):
                return list(self._objects)

        def wall(direction):
            return SimpleNamespace(name="wall", position={"x": 1.5, "y": 2.5}, direction=direction, valid=True)

        objects = [wall(4), wall(0), wall(2)]
        forward = ordered_objects(FakeSurface(objects))
        backward = ordered_objects(FakeSurface(list(reversed(objects))))

        assert [o.direction for o in forward] == [0, 2, 4]
        assert [o.direction for o in backward] == [0, 2, 4]

    def test_sort_for_placement_priorities(self):
        def rec(record_type, x, payload=None):
            record = {"id": f"{record_type}-{x}", "type": record_type, "position": {"x": x, "y": 0.0}}
            if payload:
                record["payload"] = payload
            return record

        records = [
            rec(GROUND_ITEM_TYPE, 0.5),
            rec("container", 2.5),
            rec("underground-belt", 0.5, {"belt_to_ground_type": "output"}),
            rec("pipe-to-ground", 0.5),
            rec("container", 1.5),
            rec("underground-belt", 3.5, {"belt_to_ground_type": "input"}),
            rec("straight-rail", 9.5),
        ]

        ordered = [r["id"] for r in sort_for_placement(records)]

        assert ordered == [
            "straight-rail-9.5",
            "underground-belt-3.5",
            "underground-belt-0.5",
            "pipe-to-ground-0.5",
            "container-1.5",
            "container-2.5",
            f"{GROUND_ITEM_TYPE}-0.5",
        ]


class TestAtomicBeltScan:
    def test_captures_all_lanes_in_one_pass(self, demo_host, demo_platform):
        belts = [o for o in demo_platform.surface.find_objects() if is_conveyor(o)]
        capture = AtomicBeltScan(demo_platform.surface).capture(
            [object_id(b) for b in belts] + [999_999], tick=demo_host.tick
        )

        assert len(capture.lanes) == 4
        assert capture.item_count == 16
        assert capture.missing == [999_999]
        assert capture.tick == demo_host.tick

    def test_items_are_conserved_while_belts_move(self, host):
        platform = build_belt_line(host, length=3)
        first = platform.surface.find_objects()[1]
        first.get_lanes()[0].insert_at(0.9, {"name": "iron-plate"})
        ids = [object_id(o) for o in platform.surface.find_objects() if is_conveyor(o)]

        for _ in range(100):
            host.step()
            assert AtomicBeltScan(platform.surface).capture(ids).item_count == 1


class TestSurfaceScan:
    def test_scan_surface_matches_live_totals(self, demo_platform):
        totals = aggregate(scan_surface(demo_platform.surface))
        assert totals.item_counts["iron-plate"] >= 500
        assert totals.item_counts["electronic-circuit:uncommon"] == 50
        assert totals.fluid_counts["fusion-plasma@1000000.0C"] == 400.0
        assert totals.fluid_counts["thruster-fuel@15.0C"] == 800.0


class TestRestore:
    def test_restore_all_reports_unrestorable_keys(self, demo_platform):
        panel = _find(demo_platform, "solar-panel")
        registry = default_registry()
        failed = registry.restore_all(
            panel, {"recipe": "iron-gear-wheel", "unknown": 1}, RestoreContext()
        )
        assert failed == ["recipe"]

    def test_inventory_shortfall_is_reported(self, demo_platform):
        chest = _find(demo_platform, "iron-chest")
        shortfalls = []
        registry = ExtractorRegistry(default_registry().extractors)
        payload = {"inventories": [{"type": "chest", "items": [{"name": "iron-plate", "count": 5000}]}]}

        failed = registry.restore_all(
            chest, payload, RestoreContext(on_insert_shortfall=lambda s, n: shortfalls.append((s["count"], n)))
        )

        assert failed == ["inventories"]
        # 32 slots of 100, less whatever the inserter already dropped in.
        assert shortfalls and shortfalls[0][0] == 5000
        assert shortfalls[0][1] <= 3200


def test_capability_checks(demo_platform):
    assert is_freezable(_find(demo_platform, "inserter"))
    assert is_freezable(_find(demo_platform, "space-platform-hub"))
    assert not is_freezable(_find(demo_platform, "steel-chest"))
    assert is_conveyor(_find(demo_platform, "transport-belt"))
