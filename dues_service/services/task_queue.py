"""Notification outbox on Redis lists.

Receipts, failure notices and eligibility announcements are decided by
the billing code and handed off here; sending them is somebody else's
job. API handlers ``enqueue`` and return immediately, a delivery worker
elsewhere ``dequeue``s.

LPUSH onto the head, BRPOP from the tail: FIFO. Delivery is at-most-once;
a consumer that crashes mid-task loses that task.
"""

from __future__ import annotations

import json
import logging
import uuid
from dataclasses import dataclass
from typing import Any, Protocol, runtime_checkable

from dues_service.core.metrics import QUEUE_DEPTH
from dues_service.db.redis import redis_pool

logger = logging.getLogger(__name__)

NOTIFICATIONS_QUEUE = "notifications"


@dataclass(frozen=True, slots=True)
class Task:
    """A unit of outbound work.

    id:      Unique identifier for tracking and logging.
    queue:   Which queue this task belongs to.
    payload: JSON-serializable data for the consumer.
    """

    id: str
    queue: str
    payload: dict


@runtime_checkable
class TaskQueue(Protocol):
    async def enqueue(self, queue: str, payload: dict) -> Task: ...
    async def dequeue(self, queue: str, timeout: int = 0) -> Task | None: ...
    async def queue_length(self, queue: str) -> int: ...


class InMemoryTaskQueue:
    """In-process queue used when REDIS_URL is unset, and in tests."""

    def __init__(self) -> None:
        self._queues: dict[str, list[Task]] = {}

    async def enqueue(self, queue: str, payload: dict) -> Task:
        task = Task(id=str(uuid.uuid4()), queue=queue, payload=payload)
        self._queues.setdefault(queue, []).append(task)
        return task

    async def dequeue(self, queue: str, timeout: int = 0) -> Task | None:
        tasks = self._queues.get(queue, [])
        if tasks:
            return tasks.pop(0)
        return None

    async def queue_length(self, queue: str) -> int:
        return len(self._queues.get(queue, []))


class RedisTaskQueue:
    """Redis-backed queue using LPUSH/BRPOP."""

    _PREFIX = "tasks:"

    def __init__(self, redis_client) -> None:
        self._redis = redis_client

    async def enqueue(self, queue: str, payload: dict) -> Task:
        task = Task(id=str(uuid.uuid4()), queue=queue, payload=payload)
        task_json = json.dumps(
            {"id": task.id, "queue": task.queue, "payload": task.payload}
        )
        await self._redis.lpush(f"{self._PREFIX}{queue}", task_json)
        return task

    async def dequeue(self, queue: str, timeout: int = 5) -> Task | None:
        result = await self._redis.brpop(f"{self._PREFIX}{queue}", timeout=timeout)
        if result is None:
            return None
        _, task_json = result
        data = json.loads(task_json)
        return Task(**data)

    async def queue_length(self, queue: str) -> int:
        return await self._redis.llen(f"{self._PREFIX}{queue}")


async def enqueue_notification(
    queue: TaskQueue, kind: str, payload: dict[str, Any]
) -> Task:
    """Put one notification on the outbox and refresh the depth gauge."""
    task = await queue.enqueue(NOTIFICATIONS_QUEUE, {"kind": kind, **payload})
    QUEUE_DEPTH.labels(queue_name=NOTIFICATIONS_QUEUE).set(
        await queue.queue_length(NOTIFICATIONS_QUEUE)
    )
    logger.debug("Queued %s notification %s", kind, task.id)
    return task


if redis_pool is not None:
    task_queue: TaskQueue = RedisTaskQueue(redis_pool)
else:
    task_queue = InMemoryTaskQueue()
