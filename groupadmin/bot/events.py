# Copyright (c) 2025 sprowii
"""Внутренняя шина событий: у каждого подписчика своя очередь.

Переполненная очередь подписчика теряет событие, остальные подписчики
и издатель не блокируются.
"""
import asyncio
from dataclasses import dataclass
from typing import Any, Dict, List, Set

from groupadmin.logging_config import log

DEFAULT_QUEUE_SIZE = 1000


@dataclass(frozen=True)
class BusEvent:
    kind: str
    payload: Any


class EventBus:
    def __init__(self, queue_size: int = DEFAULT_QUEUE_SIZE):
        self.queue_size = queue_size
        self._subscribers: Dict[str, List[asyncio.Queue]] = {}

    def subscribe(self, *kinds: str) -> asyncio.Queue:
        """Подписаться на один или несколько типов событий."""
        queue: asyncio.Queue = asyncio.Queue(maxsize=self.queue_size)
        for kind in kinds:
            self._subscribers.setdefault(kind, []).append(queue)
        return queue

    def unsubscribe(self, queue: asyncio.Queue) -> None:
        for kind in list(self._subscribers):
            queues = [q for q in self._subscribers[kind] if q is not queue]
            if queues:
                self._subscribers[kind] = queues
            else:
                del self._subscribers[kind]

    def publish(self, kind: str, payload: Any) -> int:
        """Разослать событие подписчикам. Возвращает число получивших."""
        event = BusEvent(kind=kind, payload=payload)
        delivered = 0
        seen: Set[int] = set()
        for queue in self._subscribers.get(kind, []):
            if id(queue) in seen:
                continue
            seen.add(id(queue))
            try:
                queue.put_nowait(event)
                delivered += 1
            except asyncio.QueueFull:
                log.warning(f"Event bus subscriber queue full, dropping {kind}")
        return delivered

    def subscriber_count(self, kind: str) -> int:
        return len(self._subscribers.get(kind, []))
