"""Best-effort background side calls.

Anything scheduled here runs after the notification rows are committed. A
failure is logged and counted; it never touches what was already scheduled.
"""

import asyncio
from typing import Any, Coroutine

import httpx

from notifyflow.common.config import settings
from notifyflow.common.logging import logger
from notifyflow.common.metrics import side_task_failures_total


_background_tasks: set[asyncio.Task] = set()


def _on_done(task: asyncio.Task) -> None:
    _background_tasks.discard(task)
    if task.cancelled():
        return
    exc = task.exception()
    if exc is not None:
        side_task_failures_total.labels(service=settings.service_name, task=task.get_name()).inc()
        logger.warning("side_task_failed task=%s error=%s", task.get_name(), exc)


def fire_and_forget(coro: Coroutine[Any, Any, Any], name: str) -> asyncio.Task | None:
    """Schedule `coro` without awaiting it; returns `None` outside an event loop."""

    try:
        loop = asyncio.get_running_loop()
    except RuntimeError:
        coro.close()
        logger.debug("side_task_skipped task=%s reason=no_running_loop", name)
        return None
    task = loop.create_task(coro, name=name)
    # Keep a strong reference until the task finishes.
    _background_tasks.add(task)
    task.add_done_callback(_on_done)
    return task


async def wake_delivery_worker(tenant_id: str, notification_count: int) -> None:
    """Poke the external delivery worker so due notifications go out sooner."""

    if not settings.delivery_worker_url:
        return
    async with httpx.AsyncClient(timeout=5.0) as client:
        resp = await client.post(
            settings.delivery_worker_url,
            json={"tenant_id": tenant_id, "scheduled": notification_count},
        )
    resp.raise_for_status()
