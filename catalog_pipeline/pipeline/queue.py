"""
Work Queue Module
=================

arq/Redis-backed work queue for pipeline items. Each item is enqueued
with its item ID as the arq job ID, so a job that is already waiting in
Redis is never duplicated. The worker task runs process_item with queue
refill enabled, which keeps a run flowing without an external driver.
"""

from __future__ import annotations

import asyncio
import logging
import os
from typing import Any

from arq import create_pool
from arq.connections import ArqRedis, RedisSettings

from catalog_pipeline.config import env_flag
from catalog_pipeline.core.enums import PipelineKind
from catalog_pipeline.core.errors import QueueDisabledError, QueueEnqueueError
from catalog_pipeline.pipeline.processor import process_item

logger = logging.getLogger(__name__)

TASK_NAME = "process_pipeline_item"


def get_redis_settings() -> RedisSettings | None:
    """Redis connection settings from REDIS_URL, or None when unset."""
    url = os.environ.get("REDIS_URL")
    if not url:
        return None
    return RedisSettings.from_dsn(url)


class WorkQueue:
    """
    Enqueues pipeline items for asynchronous workers.

    The queue is disabled when REDIS_URL is unset or
    <KIND>_QUEUE_DISABLED=true.
    """

    def __init__(
        self,
        kind: PipelineKind | str,
        redis: ArqRedis | None = None,
        redis_settings: RedisSettings | None = None,
    ) -> None:
        self.kind = PipelineKind(kind)
        self._redis = redis
        self._redis_settings = redis_settings

    def is_enabled(self) -> bool:
        """Check whether jobs can be enqueued for this kind."""
        if env_flag(f"{self.kind.value.upper()}_QUEUE_DISABLED"):
            return False
        return self._redis is not None or (self._redis_settings or get_redis_settings()) is not None

    async def _get_redis(self) -> ArqRedis:
        if self._redis is None:
            settings = self._redis_settings or get_redis_settings()
            if settings is None:
                raise QueueDisabledError("REDIS_URL is not configured")
            self._redis = await create_pool(settings)
        return self._redis

    async def _enqueue_one(self, redis: ArqRedis, item_id: str) -> bool:
        job = await redis.enqueue_job(TASK_NAME, self.kind.value, item_id, _job_id=item_id)
        return job is not None

    async def enqueue(self, item_ids: list[str]) -> int:
        """
        Enqueue one job per item.

        Jobs already present in Redis (same job ID) are skipped. If the
        concurrent bulk attempt fails, each job is retried one at a time.

        Returns:
            Number of jobs newly enqueued

        Raises:
            QueueDisabledError: If the queue is disabled
            QueueEnqueueError: If any job could not be enqueued
        """
        if not item_ids:
            return 0
        if not self.is_enabled():
            raise QueueDisabledError(f"{self.kind.value} queue is disabled")
        redis = await self._get_redis()

        try:
            results = await asyncio.gather(
                *(self._enqueue_one(redis, item_id) for item_id in item_ids)
            )
            enqueued = sum(1 for created in results if created)
        except Exception as e:
            logger.warning(f"Bulk enqueue of {len(item_ids)} {self.kind.value} jobs failed: {e}")
            enqueued = failed = 0
            for item_id in item_ids:
                try:
                    if await self._enqueue_one(redis, item_id):
                        enqueued += 1
                except Exception as job_error:
                    failed += 1
                    logger.warning(f"Enqueue of {self.kind.value} item {item_id} failed: {job_error}")
            if failed:
                raise QueueEnqueueError(failed) from e

        logger.info(f"Enqueued {enqueued}/{len(item_ids)} {self.kind.value} jobs")
        return enqueued

    async def close(self) -> None:
        if self._redis is not None:
            await self._redis.close()
            self._redis = None


# ============================================================================
# Worker
# ============================================================================


async def process_pipeline_item(ctx: dict[str, Any], kind: str, item_id: str) -> dict[str, Any]:
    """
    arq task: process one item and refill the queue for its run.

    Args:
        ctx: arq context (contains the Redis connection)
        kind: Pipeline kind
        item_id: Item ID

    Returns:
        ItemResult as dictionary
    """
    from catalog_pipeline.pipeline.factory import get_pipeline

    pipelines = ctx.setdefault("pipelines", {})
    if kind not in pipelines:
        pipelines[kind] = get_pipeline(kind)
    queue = WorkQueue(kind, redis=ctx.get("redis"))

    result = await process_item(pipelines[kind], item_id, queue=queue, enqueue_more=True)
    return result.model_dump()


async def shutdown(ctx: dict[str, Any]) -> None:
    """arq shutdown hook: close the pipelines' HTTP clients."""
    for pipeline in ctx.get("pipelines", {}).values():
        await pipeline.handler.aclose()


class WorkerSettings:
    """arq worker settings."""

    functions = [process_pipeline_item]
    on_shutdown = shutdown
    redis_settings = get_redis_settings() or RedisSettings()
    max_jobs = 5
    job_timeout = 300  # 5 minutes
    keep_result = 3600  # 1 hour
