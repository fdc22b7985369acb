"""Ordered import pipeline with an execution trace.

Each step names the steps it depends on. Running a step whose
prerequisites are not in the completed trace raises ``PhaseOrderError``
instead of silently producing a platform that loses state (fluids written
before activation, for instance, are discarded when the object attaches to
its network).
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Callable

from relay_core.exceptions import PhaseOrderError
from relay_core.importing import activation, fluids, placement, validation
from relay_core.importing.context import ImportContext

logger = logging.getLogger(__name__)


@dataclass
class PipelineStep:
    """A single import step.

    Attributes:
        name: Step identifier, also the job phase name while it runs
        fn: Receives the context and a per-tick object quota; returns True
            once the step has finished
        requires: Steps that must have completed first
    """

    name: str
    fn: Callable[[ImportContext, int], bool]
    requires: tuple[str, ...] = field(default_factory=tuple)


class ImportPipeline:
    """Ordered sequence of import steps."""

    def __init__(self, steps: list[PipelineStep]) -> None:
        self._steps = steps
        self._by_name = {step.name: step for step in steps}

    @property
    def steps(self) -> list[PipelineStep]:
        return self._steps

    @property
    def step_names(self) -> list[str]:
        return [step.name for step in self._steps]

    def get(self, name: str) -> PipelineStep:
        return self._by_name[name]

    def next_step(self, name: str) -> str | None:
        names = self.step_names
        index = names.index(name)
        return names[index + 1] if index + 1 < len(names) else None

    def run_step(self, ctx: ImportContext, name: str, quota: int) -> bool:
        """Run (part of) step *name*; returns True when the step is complete."""
        step = self._by_name.get(name)
        if step is None:
            raise PhaseOrderError(f"Unknown import step '{name}'")
        missing = [req for req in step.requires if req not in ctx.completed]
        if missing:
            raise PhaseOrderError(
                f"Import step '{name}' cannot run before {', '.join(missing)}",
                counters={"step": name, "missing": missing, "completed": list(ctx.completed)},
            )
        done = step.fn(ctx, quota)
        if done:
            ctx.completed.append(name)
            ctx.trace.append({"step": name, "tick": ctx.tick})
            logger.debug("Import step %s complete at tick %d", name, ctx.tick)
        return done


def default_pipeline() -> ImportPipeline:
    """Build the canonical import pipeline.

    Phase Order:
        1. tiles: Floor tiles
        2. objects: Create and immediately deactivate objects
        3. state: Inventories, recipes, control, filters, circuits
        4. conveyors: All conveyor lanes in one tick
        5. validation: Item reconciliation (fluids not yet present)
        6. activation: Activate everything, unpause, unhide
        7. fluids: Network-aware fluid injection
        8. loss_analysis: Full post-activation reconciliation
    """
    return ImportPipeline(
        [
            PipelineStep("tiles", placement.place_tiles),
            PipelineStep("objects", placement.place_objects, ("tiles",)),
            PipelineStep("state", placement.restore_state, ("objects",)),
            PipelineStep("conveyors", placement.restore_conveyors, ("objects",)),
            PipelineStep("validation", validation.validate_items, ("state", "conveyors")),
            PipelineStep("activation", activation.activate_platform, ("validation",)),
            PipelineStep("fluids", fluids.inject_fluids, ("activation",)),
            PipelineStep("loss_analysis", validation.analyze_post_activation, ("fluids",)),
        ]
    )
