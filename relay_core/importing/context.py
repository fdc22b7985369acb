"""Per-step view of an import job."""

import logging
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional

from relay_core.capabilities import object_id
from relay_core.exceptions import StructuralError
from relay_core.host import Platform, SimulationHost, Surface
from relay_core.importing.loss_ledger import FailedPlacementLedger
from relay_core.jobs.job import Job
from relay_core.lock import QuiescenceLock
from relay_core.reconciliation import ReconciliationEngine
from relay_core.scanning.handlers import DEFAULT_REGISTRY, ExtractorRegistry, RestoreContext

logger = logging.getLogger(__name__)


@dataclass
class ImportContext:
    """Live objects plus the job's durable state, for one pipeline step.

    ``completed``, ``trace`` and the manifest are the job's own lists and
    dicts, so mutations land in the job directly. The ledger and id map are
    copied back by ``save``.
    """

    job: Job
    host: SimulationHost
    platform: Platform
    lock: QuiescenceLock
    engine: ReconciliationEngine
    registry: ExtractorRegistry = field(default_factory=lambda: DEFAULT_REGISTRY)
    ledger: FailedPlacementLedger = field(default_factory=FailedPlacementLedger)
    id_map: Dict[Any, Any] = field(default_factory=dict)

    @classmethod
    def from_job(
        cls,
        job: Job,
        host: SimulationHost,
        lock: QuiescenceLock,
        engine: ReconciliationEngine,
        registry: Optional[ExtractorRegistry] = None,
    ) -> "ImportContext":
        platform = host.get_platform(job.platform_name, job.force_name)
        if platform is None or not platform.valid or platform.surface is None:
            raise StructuralError(f"Import target '{job.platform_name}' no longer exists")
        return cls(
            job=job,
            host=host,
            platform=platform,
            lock=lock,
            engine=engine,
            registry=registry or DEFAULT_REGISTRY,
            ledger=FailedPlacementLedger.from_dict(job.state.get("ledger")),
            id_map={src: dest for src, dest in job.state.get("id_map", [])},
        )

    @property
    def surface(self) -> Surface:
        return self.platform.surface

    @property
    def tick(self) -> int:
        return self.host.tick

    @property
    def manifest(self) -> Dict[str, Any]:
        return self.job.state["manifest"]

    @property
    def objects(self) -> List[Dict[str, Any]]:
        return self.job.state["objects"]

    @property
    def completed(self) -> List[str]:
        return self.job.state.setdefault("completed", [])

    @property
    def trace(self) -> List[Dict[str, Any]]:
        return self.job.state.setdefault("trace", [])

    def map_object(self, source_id: Any, obj: Any) -> None:
        self.id_map[source_id] = object_id(obj)

    def resolve(self, source_id: Any) -> Optional[Any]:
        """Destination object created for *source_id*, if it exists."""
        dest_id = self.id_map.get(source_id)
        if dest_id is None:
            return None
        obj = self.surface.get_object(dest_id)
        return obj if obj is not None and obj.valid else None

    def restore_context(self) -> RestoreContext:
        return RestoreContext(
            resolve=self.resolve,
            on_insert_shortfall=self.ledger.record_insert_shortfall,
        )

    def save(self) -> None:
        self.job.state["ledger"] = self.ledger.to_dict()
        self.job.state["id_map"] = [[src, dest] for src, dest in self.id_map.items()]
