"""
Audit Log
=========
Append-only trail of checkout decisions, keyed by correlation id.
"""

import asyncio
from abc import ABC, abstractmethod
from collections import defaultdict
from typing import Dict, List

from schemas.order_definitions import AuditEventType, AuditLogEntry


class IAuditLog(ABC):
    """Audit log interface"""

    @abstractmethod
    async def append(self, entry: AuditLogEntry) -> None:
        pass

    @abstractmethod
    async def get_by_correlation_id(self, correlation_id: str) -> List[AuditLogEntry]:
        pass

    @abstractmethod
    async def get_by_entity(self, entity_id: str) -> List[AuditLogEntry]:
        pass


class InMemoryAuditLog(IAuditLog):
    """Append-only audit log"""

    def __init__(self):
        self._logs: List[AuditLogEntry] = []
        self._by_correlation: Dict[str, List[AuditLogEntry]] = defaultdict(list)
        self._lock = asyncio.Lock()

    async def append(self, entry: AuditLogEntry) -> None:
        async with self._lock:
            self._logs.append(entry)
            self._by_correlation[entry.correlation_id].append(entry)

    async def get_by_correlation_id(self, correlation_id: str) -> List[AuditLogEntry]:
        async with self._lock:
            return list(self._by_correlation.get(correlation_id, []))

    async def get_by_entity(self, entity_id: str) -> List[AuditLogEntry]:
        async with self._lock:
            return [e for e in self._logs if e.entity_id == entity_id]

    async def get_by_type(self, event_type: AuditEventType) -> List[AuditLogEntry]:
        async with self._lock:
            return [e for e in self._logs if e.event_type == event_type]
