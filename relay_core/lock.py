"""Quiescence lock: drive a platform into a stable state for scanning.

Locking hides the platform, force-completes in-flight cargo pods and turns
off every freezable object, recording what it changed so that ``unlock``
can put it back. Conveyors have no activity flag and keep running; freezing
the grabbers and loaders around them is enough to stop net flow.

The lock store is the mutual-exclusion primitive for transfers: a platform
with a lock record is under transfer, and a second lock attempt fails
immediately.
"""

import copy
import logging
from dataclasses import asdict, dataclass, field
from pathlib import Path
from typing import Any, Dict, List, Optional

import orjson

from relay_core.capabilities import is_freezable, object_id, safe_get
from relay_core.config.locking import (
    POD_DISCARD_STATES,
    POD_DRAIN_STATES,
    POD_FINISH_STATES,
    STALE_LOCK_MAX_AGE_TICKS,
)
from relay_core.exceptions import LockConflictError, RelayError, StructuralError
from relay_core.host import Platform, SimulationHost, Surface
from relay_core.result import Err, Ok, Result

logger = logging.getLogger(__name__)

HUB_INVENTORY = "hub_main"


@dataclass
class LockRecord:
    """Pre-lock state of one platform. The only copy of what lock changed."""

    platform_name: str
    platform_index: int
    force_name: str
    original_hidden: bool
    original_schedule: Optional[Dict[str, Any]]
    locked_at_tick: int
    owner: Optional[str] = None
    frozen_states: List[Dict[str, Any]] = field(default_factory=list)
    pods_completed: Dict[str, int] = field(default_factory=dict)

    @property
    def frozen_count(self) -> int:
        return len(self.frozen_states)

    def frozen_map(self) -> Dict[str, bool]:
        return {str(entry["id"]): entry["was_active"] for entry in self.frozen_states}

    def to_dict(self) -> Dict[str, Any]:
        data = asdict(self)
        data["frozen_count"] = self.frozen_count
        return data

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "LockRecord":
        data = dict(data)
        data.pop("frozen_count", None)
        return cls(**data)


class LockStore:
    """Keyed store of lock records, optionally persisted to a JSON file."""

    def __init__(self, path: Optional[Path] = None) -> None:
        self._path = Path(path) if path else None
        self._records: Dict[str, LockRecord] = {}
        if self._path and self._path.exists():
            self._load()

    def _load(self) -> None:
        try:
            data = orjson.loads(self._path.read_bytes())
        except (OSError, orjson.JSONDecodeError) as e:
            logger.error("Failed to load lock store %s: %s", self._path, e)
            return
        for entry in data.get("locks", []):
            record = LockRecord.from_dict(entry)
            self._records[record.platform_name] = record
        logger.info("Loaded %d lock records from %s", len(self._records), self._path)

    def _save(self) -> None:
        if not self._path:
            return
        self._path.parent.mkdir(parents=True, exist_ok=True)
        tmp = self._path.with_suffix(".tmp")
        tmp.write_bytes(orjson.dumps({"locks": [r.to_dict() for r in self._records.values()]}))
        tmp.replace(self._path)

    def get(self, platform_name: str) -> Optional[LockRecord]:
        return self._records.get(platform_name)

    def put(self, record: LockRecord) -> None:
        self._records[record.platform_name] = record
        self._save()

    def pop(self, platform_name: str) -> Optional[LockRecord]:
        record = self._records.pop(platform_name, None)
        if record is not None:
            self._save()
        return record

    def __contains__(self, platform_name: str) -> bool:
        return platform_name in self._records

    def __len__(self) -> int:
        return len(self._records)

    def values(self) -> List[LockRecord]:
        return list(self._records.values())


class QuiescenceLock:
    """Lock, unlock and activation operations over a simulation host."""

    def __init__(self, host: SimulationHost, store: Optional[LockStore] = None) -> None:
        self._host = host
        self._store = store if store is not None else LockStore()

    @property
    def store(self) -> LockStore:
        return self._store

    def is_locked(self, platform_name: str) -> bool:
        return platform_name in self._store

    def get(self, platform_name: str) -> Optional[LockRecord]:
        return self._store.get(platform_name)

    def list_locks(self) -> List[LockRecord]:
        return self._store.values()

    def lock(
        self, platform_name: str, force_name: str, owner: Optional[str] = None
    ) -> Result[LockRecord, RelayError]:
        """Lock a platform for transfer.

        Returns:
            Ok(LockRecord) on success; Err(StructuralError) for an invalid
            platform or surface, Err(LockConflictError) if already locked.
            On error nothing on the platform has been changed.
        """
        platform = self._host.get_platform(platform_name, force_name)
        if platform is None or not platform.valid:
            return Err(StructuralError(f"Platform '{platform_name}' not valid"))
        if platform.surface is None or not platform.surface.valid:
            return Err(StructuralError(f"Platform '{platform_name}' surface not valid"))
        existing = self._store.get(platform_name)
        if existing is not None:
            return Err(
                LockConflictError(
                    f"Platform '{platform_name}' already locked",
                    counters={"locked_at_tick": existing.locked_at_tick, "owner": existing.owner},
                )
            )

        record = LockRecord(
            platform_name=platform_name,
            platform_index=platform.index,
            force_name=force_name,
            original_hidden=bool(platform.hidden),
            original_schedule=copy.deepcopy(platform.schedule),
            locked_at_tick=self._host.tick,
            owner=owner,
        )

        try:
            platform.hidden = True
            record.pods_completed = self._complete_cargo_pods(platform)
            self._freeze(platform.surface, record.frozen_states)
        except Exception as e:
            logger.error("Lock of %s failed mid-way, rolling back: %s", platform_name, e, exc_info=True)
            self._restore(platform, record)
            return Err(RelayError(f"Lock of '{platform_name}' failed: {e}"))

        self._store.put(record)
        logger.info(
            "Locked platform %s: froze %d objects, completed pods %s",
            platform_name,
            record.frozen_count,
            record.pods_completed,
        )
        return Ok(record)

    def unlock(self, platform_name: str) -> Result[int, RelayError]:
        """Restore visibility, schedule and captured activity flags.

        The lock record is removed even when the platform no longer exists.

        Returns:
            Ok(number of objects restored) or Err if there was nothing to unlock
        """
        record = self._store.pop(platform_name)
        if record is None:
            return Err(StructuralError(f"Platform '{platform_name}' is not locked"))
        platform = self._host.get_platform(record.platform_name, record.force_name)
        if platform is None or not platform.valid:
            logger.warning("Unlock of %s: platform no longer exists, lock discarded", platform_name)
            return Err(StructuralError(f"Platform '{platform_name}' no longer exists"))
        restored = self._restore(platform, record)
        logger.info("Unlocked platform %s: restored %d objects", platform_name, restored)
        return Ok(restored)

    def release(self, platform_name: str) -> Optional[LockRecord]:
        """Drop a lock record without touching the platform (it was deleted)."""
        return self._store.pop(platform_name)

    def activate_all(self, surface: Surface) -> int:
        """Set every freezable object active, ignoring any captured pre-lock state."""
        activated = 0
        for obj in surface.find_objects():
            if not is_freezable(obj):
                continue
            try:
                obj.active = True
                activated += 1
            except Exception:
                logger.debug("Could not activate %r", obj, exc_info=True)
        return activated

    def reap_stale(self, max_age_ticks: int = STALE_LOCK_MAX_AGE_TICKS) -> List[str]:
        """Unlock locks whose platform is gone or whose age exceeds the bound."""
        reaped = []
        now = self._host.tick
        for record in self._store.values():
            platform = self._host.get_platform(record.platform_name, record.force_name)
            age = now - record.locked_at_tick
            if platform is not None and platform.valid and age <= max_age_ticks:
                continue
            reason = "platform missing" if platform is None else f"age {age} ticks"
            logger.warning("Reaping stale lock on %s (%s)", record.platform_name, reason)
            self.unlock(record.platform_name)
            reaped.append(record.platform_name)
        return reaped

    # ------------------------------------------------------------------

    def _complete_cargo_pods(self, platform: Platform) -> Dict[str, int]:
        completed = {"drained": 0, "finished": 0, "discarded": 0, "items_drained": 0, "items_spilled": 0}
        hub = platform.hub
        hub_inventory = None
        if hub is not None:
            inventories = safe_get(hub, "get_inventories")
            if inventories is not None:
                hub_inventory = hub.get_inventories().get(HUB_INVENTORY)

        for pod in platform.cargo_pods():
            if not pod.valid:
                continue
            if pod.state in POD_DRAIN_STATES:
                inventory = pod.get_inventory()
                for stack in inventory.contents():
                    inserted = hub_inventory.insert(stack) if hub_inventory is not None else 0
                    completed["items_drained"] += inserted
                    leftover = stack["count"] - inserted
                    if leftover > 0:
                        spilled = dict(stack, count=leftover)
                        if hub is not None and platform.surface.spill_item(spilled, hub.position):
                            completed["items_spilled"] += leftover
                        else:
                            logger.warning(
                                "Lost %d x %s draining cargo pod on %s", leftover, stack["name"], platform.name
                            )
                inventory.clear()
                pod.finish()
                completed["drained"] += 1
            elif pod.state in POD_FINISH_STATES:
                pod.finish()
                completed["finished"] += 1
            elif pod.state in POD_DISCARD_STATES:
                pod.destroy()
                completed["discarded"] += 1
            else:
                logger.debug("Leaving cargo pod in state %s", pod.state)
        return completed

    def _freeze(self, surface: Surface, frozen: List[Dict[str, Any]]) -> None:
        # Each entry is recorded before the object is touched so a failure
        # part-way through leaves a complete undo list.
        for obj in surface.find_objects():
            if not is_freezable(obj):
                continue
            frozen.append({"id": object_id(obj), "was_active": bool(obj.active)})
            obj.active = False

    def _restore(self, platform: Platform, record: LockRecord) -> int:
        restored = 0
        surface = platform.surface
        for entry in record.frozen_states:
            obj = surface.get_object(entry["id"])
            if obj is None or not obj.valid:
                continue
            try:
                obj.active = entry["was_active"]
                restored += 1
            except Exception:
                logger.debug("Could not restore activity on %s", entry["id"], exc_info=True)
        platform.hidden = record.original_hidden
        platform.schedule = copy.deepcopy(record.original_schedule)
        return restored
