from __future__ import annotations

from typing import Protocol


class ProcessedEventRepo(Protocol):
    async def mark_processed(self, event_id: str, event_type: str) -> bool: ...
    async def is_processed(self, event_id: str) -> bool: ...


class InMemoryProcessedEventRepo:
    def __init__(self) -> None:
        self._seen: dict[str, str] = {}

    async def mark_processed(self, event_id: str, event_type: str) -> bool:
        """Record the event. Returns False if it was already recorded."""
        if event_id in self._seen:
            return False
        self._seen[event_id] = event_type
        return True

    async def is_processed(self, event_id: str) -> bool:
        return event_id in self._seen
