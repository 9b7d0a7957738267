"""Startup and shutdown for the security layer.

Startup loads the origin registry, applies configured seed origins and
starts the maintenance loops. Shutdown cancels the loops and waits for
pending origin usage updates.
"""

import asyncio
import logging
from collections.abc import Coroutine
from typing import Any

from app.core.config import settings
from app.core.container import SecurityContainer
from app.core.logging import get_logger, setup_logging
from app.middleware.rate_limit import rate_limit_cleanup_loop
from app.services.alert_system import violation_reset_loop
from app.services.session_revocation import revocation_purge_loop

_logger = get_logger("lifespan")


def task_done_callback(task: asyncio.Task[None]) -> None:
    """Log unhandled exceptions from background tasks."""
    if task.cancelled():
        return
    exc = task.exception()
    if exc is not None:
        _logger.error(f"Background task {task.get_name()} failed: {exc}")


def _start(coro: Coroutine[Any, Any, None], name: str) -> asyncio.Task[None]:
    task = asyncio.create_task(coro, name=name)
    task.add_done_callback(task_done_callback)
    return task


async def security_startup(
    container: SecurityContainer, logger: logging.Logger
) -> list[asyncio.Task[None]]:
    """Bring the security layer up.

    Returns the managed background tasks that must be cancelled on shutdown
    via ``security_shutdown``.
    """
    setup_logging(
        level=settings.log_level,
        format_type="structured" if not settings.debug else "dev",
    )

    for warning in container.settings.check_security_configuration():
        logger.warning(f"SECURITY: {warning}")

    await container.registry.load()
    seeded = await container.registry.seed(container.settings.origin_seeds)
    if seeded:
        logger.info(f"Seeded {seeded} allowed origins from configuration")
    if container.registry.stale:
        logger.error("Origin registry is serving seeds from memory; storage writes failed")

    return [
        _start(rate_limit_cleanup_loop(container.rate_limiter), "rate-limit-cleanup"),
        _start(
            revocation_purge_loop(
                container.revocations, container.settings.revocation_purge_interval_seconds
            ),
            "revocation-purge",
        ),
        _start(violation_reset_loop(container.alerts), "violation-reset"),
    ]


async def security_shutdown(
    container: SecurityContainer,
    logger: logging.Logger,
    tasks: list[asyncio.Task[None]],
) -> None:
    """Cancel maintenance loops and flush pending usage updates."""
    for task in tasks:
        task.cancel()
    await asyncio.gather(*tasks, return_exceptions=True)

    await container.gate.drain()
    logger.info("Security layer stopped")
