"""Validation and post-activation loss analysis steps."""

import logging

from relay_core.importing.context import ImportContext
from relay_core.loss_analysis import analyze_losses
from relay_core.scanning.object_scanner import scan_surface
from relay_core.surface_counter import count_objects, count_surface
from relay_core.verification import Verification, aggregate

logger = logging.getLogger(__name__)


def _expected(ctx: ImportContext) -> Verification:
    return Verification.from_dict(ctx.manifest.get("verification") or {})


def validate_items(ctx: ImportContext, quota: int) -> bool:
    """Reconcile items on the still-inactive platform.

    Fluids are not injected yet, so they are excluded from this check.
    """
    report = ctx.engine.reconcile(
        _expected(ctx),
        count_surface(ctx.surface),
        include_fluids=False,
        failed_placement=ctx.ledger.as_verification(),
        failed_placement_summary=ctx.ledger.summary(),
        entity_count=count_objects(ctx.surface),
    )
    ctx.job.state["validation"] = report.to_validation_result()
    ctx.job.state["validation_passed"] = report.passed
    ctx.job.metrics["validation_passed"] = report.passed
    logger.info(
        "Import %s validation %s: %d expected items, %d present",
        ctx.job.id,
        "passed" if report.passed else "FAILED",
        report.expected.total_items,
        report.actual.total_items,
    )
    return True


def analyze_post_activation(ctx: ImportContext, quota: int) -> bool:
    """Full reconciliation, fluids included, after the platform is running."""
    live_records = scan_surface(ctx.surface)
    report = ctx.engine.reconcile(
        _expected(ctx),
        aggregate(live_records),
        include_fluids=True,
        failed_placement=ctx.ledger.as_verification(),
        failed_placement_summary=ctx.ledger.summary(),
        entity_count=count_objects(ctx.surface),
    )
    ctx.job.state["loss_analysis"] = analyze_losses(
        ctx.objects,
        live_records,
        report,
        fluid_injection=ctx.job.state.get("fluid_injection"),
    )
    return True
