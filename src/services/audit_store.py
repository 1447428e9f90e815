"""
AuditStore : stockage durable des AuditRecord.

Contrat :
  - append(records) est idempotent sur l'id (upsert)
    → la livraison at-least-once de l'AuditLogger est sûre
  - append() lève AuditWriteFailure en cas d'échec
  - query()/count() ne lèvent pas pour un filtre valide
  - delete_before() n'est appelé QUE par l'opération de rétention

Implémentations :
  - MemoryAuditStore   → tests, dev, mode dégradé
  - SupabaseAuditStore → production (services/supabase.py)
"""

from __future__ import annotations

import asyncio
from datetime import datetime
from typing import Protocol

from models.audit import AuditFilter, AuditRecord


class AuditStore(Protocol):
    """Interface du store d'audit."""

    async def append(self, records: list[AuditRecord]) -> None: ...
    async def query(self, audit_filter: AuditFilter) -> list[AuditRecord]: ...
    async def count(self, audit_filter: AuditFilter) -> int: ...
    async def delete_before(self, cutoff: datetime) -> int: ...


class MemoryAuditStore:
    """
    Store d'audit en mémoire.

    Clé = id de l'enregistrement. Un second append du même id
    remplace l'entrée, sans doublon.
    """

    def __init__(self) -> None:
        self._records: dict[str, AuditRecord] = {}
        self._lock = asyncio.Lock()
        self.append_calls: int = 0

    async def append(self, records: list[AuditRecord]) -> None:
        async with self._lock:
            self.append_calls += 1
            for record in records:
                self._records[record.id] = record

    def _matching(self, audit_filter: AuditFilter) -> list[AuditRecord]:
        matched = [r for r in self._records.values() if audit_filter.matches(r)]
        matched.sort(key=lambda r: r.timestamp, reverse=True)
        return matched

    async def query(self, audit_filter: AuditFilter) -> list[AuditRecord]:
        """Enregistrements filtrés, du plus récent au plus ancien, paginés."""
        matched = self._matching(audit_filter)
        start = audit_filter.offset
        return matched[start:start + audit_filter.limit]

    async def count(self, audit_filter: AuditFilter) -> int:
        return len(self._matching(audit_filter))

    async def delete_before(self, cutoff: datetime) -> int:
        async with self._lock:
            stale = [rid for rid, r in self._records.items() if r.timestamp < cutoff]
            for rid in stale:
                del self._records[rid]
        return len(stale)

    def __len__(self) -> int:
        return len(self._records)

    def __contains__(self, record_id: object) -> bool:
        return record_id in self._records
