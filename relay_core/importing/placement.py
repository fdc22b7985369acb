"""Structural import steps: tiles, objects, object state and conveyors."""

import logging
from typing import Any, Dict, Optional

from relay_core.capabilities import is_conveyor, is_freezable
from relay_core.importing.context import ImportContext
from relay_core.scanning.object_scanner import GROUND_ITEM_TYPE

logger = logging.getLogger(__name__)

HUB_TYPE = "space-platform-hub"

# Payload fields written back by the state step. Fluids and conveyor lanes
# have their own steps; underground belt type is applied at creation.
STATE_KEYS = frozenset(
    {"inventories", "held_item", "recipe", "control", "filters", "circuit_connections"}
)


def place_tiles(ctx: ImportContext, quota: int) -> bool:
    tiles = ctx.manifest.get("tiles") or []
    failed = ctx.surface.set_tiles(tiles)
    ctx.job.metrics["tiles_placed"] = len(tiles) - len(failed)
    ctx.job.metrics["tiles_failed"] = len(failed)
    if failed:
        logger.warning("Import %s: %d tiles could not be placed", ctx.job.id, len(failed))
    return True


def _creation_extras(record: Dict[str, Any]) -> Optional[Dict[str, Any]]:
    kind = (record.get("payload") or {}).get("belt_to_ground_type")
    return {"belt_to_ground_type": kind} if kind else None


def _place_one(ctx: ImportContext, record: Dict[str, Any]) -> Optional[Any]:
    if record["type"] == HUB_TYPE:
        hub = ctx.platform.hub
        if hub is not None and hub.valid:
            return hub
    return ctx.surface.create_object(
        record["name"],
        record["position"],
        record.get("direction", 0),
        force=ctx.job.force_name,
        quality=record.get("quality"),
        orientation=record.get("orientation"),
        extra=_creation_extras(record),
    )


def place_objects(ctx: ImportContext, quota: int) -> bool:
    """Create up to *quota* objects, deactivating each as soon as it exists.

    A failed placement is tallied in the ledger with everything the record
    carried; the batch carries on with the next record.
    """
    job = ctx.job
    objects = ctx.objects
    end = min(job.cursor + quota, len(objects))
    for record in objects[job.cursor:end]:
        if record["type"] == GROUND_ITEM_TYPE:
            stack = (record.get("payload") or {}).get("stack")
            if stack and not ctx.surface.spill_item(stack, record["position"]):
                ctx.ledger.record_failed_object(record, "no floor for ground item")
            continue
        try:
            obj = _place_one(ctx, record)
        except Exception as e:
            logger.debug("Creating %s raised", record["name"], exc_info=True)
            ctx.ledger.record_failed_object(record, f"creation error: {e}")
            continue
        if obj is None:
            ctx.ledger.record_failed_object(record, "placement refused")
            continue
        if is_freezable(obj):
            obj.active = False
        ctx.map_object(record["id"], obj)

    job.cursor = end
    job.metrics["objects_placed"] = len(ctx.id_map)
    job.metrics["objects_failed"] = ctx.ledger.entity_count
    if job.cursor >= len(objects):
        if ctx.ledger.entity_count:
            logger.warning(
                "Import %s: %d objects failed to place", job.id, ctx.ledger.entity_count
            )
        return True
    return False


def restore_state(ctx: ImportContext, quota: int) -> bool:
    job = ctx.job
    objects = ctx.objects
    restore_ctx = ctx.restore_context()
    end = min(job.cursor + quota, len(objects))
    for record in objects[job.cursor:end]:
        payload = record.get("payload")
        if not payload or record["type"] == GROUND_ITEM_TYPE:
            continue
        obj = ctx.resolve(record["id"])
        if obj is None:
            continue
        failed = ctx.registry.restore_all(obj, payload, restore_ctx, only=STATE_KEYS)
        if "held_item" in failed:
            ctx.ledger.record_insert_shortfall(payload["held_item"], 0)
        if failed:
            job.metrics["state_failures"] = job.metrics.get("state_failures", 0) + 1
            logger.debug("Import %s: %s not fully restored on %s", job.id, failed, record["id"])
    job.cursor = end
    return job.cursor >= len(objects)


def restore_conveyors(ctx: ImportContext, quota: int) -> bool:
    """Re-insert every conveyor lane in one tick, at the recorded positions."""
    job = ctx.job
    restored = 0
    for record in ctx.objects:
        lanes = (record.get("payload") or {}).get("belt")
        if not lanes:
            continue
        obj = ctx.resolve(record["id"])
        if obj is None:
            continue
        live_lanes = obj.get_lanes() if is_conveyor(obj) else []
        for lane in lanes:
            index = int(lane["line"]) - 1
            target = live_lanes[index] if 0 <= index < len(live_lanes) else None
            for item in lane["items"]:
                stack = {"name": item["name"], "count": item["count"], "quality": item["quality"]}
                placed = target is not None and (
                    target.insert_at(item["position"], stack) or target.insert_at_back(stack)
                )
                if placed:
                    restored += item["count"]
                else:
                    ctx.ledger.record_insert_shortfall(stack, 0)
    job.cursor = job.total
    job.metrics["conveyor_items_restored"] = restored
    return True
