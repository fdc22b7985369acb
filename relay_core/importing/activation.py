"""Activation step: bring an imported platform to life."""

import logging

from relay_core.importing.context import ImportContext

logger = logging.getLogger(__name__)


def activate_platform(ctx: ImportContext, quota: int) -> bool:
    """Activate every freezable object, then unpause and unhide the platform.

    Captured pre-lock activity is deliberately not replayed: the source
    values describe a platform that has since been rebuilt.
    """
    activated = ctx.lock.activate_all(ctx.surface)
    ctx.platform.paused = False
    ctx.platform.hidden = False
    ctx.job.metrics["objects_activated"] = activated
    logger.info("Import %s: activated %d objects on %s", ctx.job.id, activated, ctx.platform.name)
    return True
