"""Import pipeline: rebuild a platform from a manifest in dependency order."""

from relay_core.importing.context import ImportContext
from relay_core.importing.loss_ledger import FailedPlacementLedger
from relay_core.importing.pipeline import ImportPipeline, PipelineStep, default_pipeline

__all__ = [
    "FailedPlacementLedger",
    "ImportContext",
    "ImportPipeline",
    "PipelineStep",
    "default_pipeline",
]
