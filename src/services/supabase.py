"""
SupabaseAuditStore : store d'audit durable sur Supabase.

Table (par défaut "audit_logs") :
  id (pk), actor, action, input, result, category, level,
  session_id, execution_id, timestamp, metadata, ip_address, user_agent

Écriture par upsert sur id → idempotent, donc compatible
avec les retries at-least-once de l'AuditLogger.

Usage :
    from services.supabase import SupabaseAuditStore

    store = SupabaseAuditStore()
    await store.append(records)
    rows = await store.query(AuditFilter(actor="han"))
"""

from __future__ import annotations

import asyncio
import logging
from datetime import datetime
from typing import Any

from supabase import Client, create_client

from models.audit import AuditFilter, AuditRecord
from models.errors import AuditWriteFailure
from services.config import Settings, get_settings


logger = logging.getLogger("actiongate.services.supabase")


class SupabaseAuditStore:
    """
    Store d'audit adossé à une table Supabase.

    Encapsule la librairie supabase-py (synchrone) :
    chaque appel réseau part dans un thread.
    """

    def __init__(
        self,
        settings: Settings | None = None,
        client: Any | None = None,
    ) -> None:
        settings = settings or get_settings()
        self._table = settings.audit_table
        self._client: Any | None = client

        if self._client is None and settings.has_supabase:
            self._init_client(settings)

    def _init_client(self, settings: Settings) -> None:
        """Initialise le client Supabase."""
        try:
            self._client: Client = create_client(
                settings.supabase_url, settings.supabase_service_key
            )
        except Exception as e:
            logger.error(f"Supabase client init failed: {e}")
            self._client = None

    @property
    def is_connected(self) -> bool:
        return self._client is not None

    # ──────────────────────────────────────────────────────
    # ÉCRITURE
    # ──────────────────────────────────────────────────────

    async def append(self, records: list[AuditRecord]) -> None:
        """UPSERT par lot. Lève AuditWriteFailure si l'écriture échoue."""
        if not records:
            return
        if not self.is_connected:
            raise AuditWriteFailure(len(records))

        rows = [r.to_row() for r in records]
        try:
            await asyncio.to_thread(
                lambda: self._client.table(self._table)
                .upsert(rows, on_conflict="id")
                .execute()
            )
        except Exception as e:
            raise AuditWriteFailure(len(records), raw_error=e) from e

    async def delete_before(self, cutoff: datetime) -> int:
        """DELETE des enregistrements antérieurs à cutoff."""
        if not self.is_connected:
            return 0

        result = await asyncio.to_thread(
            lambda: self._client.table(self._table)
            .delete()
            .lt("timestamp", cutoff.isoformat())
            .execute()
        )
        return len(result.data or [])

    # ──────────────────────────────────────────────────────
    # LECTURE
    # ──────────────────────────────────────────────────────

    def _apply_filter(self, query: Any, audit_filter: AuditFilter) -> Any:
        if audit_filter.actor:
            query = query.eq("actor", audit_filter.actor)
        if audit_filter.action:
            query = query.ilike("action", f"%{audit_filter.action}%")
        if audit_filter.category:
            query = query.eq("category", audit_filter.category.value)
        if audit_filter.level:
            query = query.eq("level", audit_filter.level.value)
        if audit_filter.session_id:
            query = query.eq("session_id", audit_filter.session_id)
        if audit_filter.execution_id:
            query = query.eq("execution_id", audit_filter.execution_id)
        if audit_filter.start_date:
            query = query.gte("timestamp", audit_filter.start_date.isoformat())
        if audit_filter.end_date:
            query = query.lte("timestamp", audit_filter.end_date.isoformat())
        return query

    async def query(self, audit_filter: AuditFilter) -> list[AuditRecord]:
        """SELECT filtré, trié par timestamp décroissant, paginé."""
        if not self.is_connected:
            return []

        def _run() -> Any:
            query = self._client.table(self._table).select("*")
            query = self._apply_filter(query, audit_filter)
            start = audit_filter.offset
            return (
                query.order("timestamp", desc=True)
                .range(start, start + audit_filter.limit - 1)
                .execute()
            )

        try:
            result = await asyncio.to_thread(_run)
        except Exception as e:
            logger.error(f"Audit query failed: {e}")
            return []

        records: list[AuditRecord] = []
        for row in result.data or []:
            try:
                records.append(AuditRecord.from_row(row))
            except Exception as e:
                logger.warning(f"Skipping malformed audit row {row.get('id')}: {e}")
        return records

    async def count(self, audit_filter: AuditFilter) -> int:
        """SELECT count exact."""
        if not self.is_connected:
            return 0

        def _run() -> Any:
            query = self._client.table(self._table).select("id", count="exact")
            return self._apply_filter(query, audit_filter).execute()

        try:
            result = await asyncio.to_thread(_run)
        except Exception as e:
            logger.error(f"Audit count failed: {e}")
            return 0
        return result.count or 0
