"""
AuditLogger : journal d'audit append-only du pipeline.

CHAQUE décision d'autorisation et CHAQUE résultat d'exécution
passe par ici. Les enregistrements sont bufferisés en mémoire
puis écrits par lots dans l'AuditStore.

Usage :
    audit = AuditLogger(settings, store=SupabaseAuditStore(settings))
    audit.start()                       # worker de flush périodique

    record_id = await audit.log_action(
        actor="han",
        action="command_clearCache",
        result={"success": True},
        session_id="sess_1",
        execution_id=result.execution_id,
    )

    page = await audit.get_audit_logs(AuditFilter(actor="han"))
    health = await audit.get_system_health()

    await audit.close()                 # flush final

Design decisions :
  - Flush périodique (audit_flush_interval_seconds) par un worker dédié
  - Niveau error/critical → flush immédiat avant de rendre la main
  - Échec d'écriture → les enregistrements retournent EN TÊTE du buffer
    (at-least-once, le store fait un upsert sur l'id)
  - Une erreur de store n'est JAMAIS remontée à l'appelant
  - Le logger "actiongate.audit" sert de trace locale synchrone
"""

from __future__ import annotations

import asyncio
import json
import logging
from collections import Counter, deque
from datetime import datetime, timedelta
from typing import Any

from models.audit import (
    ActionCount,
    AuditCategory,
    AuditExport,
    AuditFilter,
    AuditLevel,
    AuditPage,
    AuditRecord,
    AuditStats,
    HealthStatus,
    SystemHealth,
)
from models.errors import AuditWriteFailure
from services.audit_store import AuditStore, MemoryAuditStore
from services.config import Settings, get_settings


_LOG_LEVELS = {
    AuditLevel.INFO: logging.INFO,
    AuditLevel.WARNING: logging.WARNING,
    AuditLevel.ERROR: logging.ERROR,
    AuditLevel.CRITICAL: logging.CRITICAL,
}

_CATEGORY_PREFIXES: list[tuple[str, AuditCategory]] = [
    ("plugin_", AuditCategory.PLUGIN),
    ("command_", AuditCategory.COMMAND),
    ("external_api_", AuditCategory.EXTERNAL_API),
    ("security_", AuditCategory.SECURITY),
]


def infer_category(action: str) -> AuditCategory:
    """Catégorie déduite du préfixe du nom d'action."""
    for prefix, category in _CATEGORY_PREFIXES:
        if action.startswith(prefix):
            return category
    if action == "chat" or action.startswith("chat_"):
        return AuditCategory.CHAT
    return AuditCategory.SYSTEM


def infer_level(action: str, result: Any = None) -> AuditLevel:
    """Niveau déduit du nom d'action et du résultat."""
    if action.startswith("security_"):
        return AuditLevel.WARNING
    if isinstance(result, dict) and result.get("success") is False:
        return AuditLevel.ERROR
    lowered = action.lower()
    if "restart" in lowered or "clear" in lowered:
        return AuditLevel.WARNING
    return AuditLevel.INFO


class AuditLogger:
    """
    Journal d'audit bufferisé.

    Le buffer est une deque : append() à droite pour les nouveaux
    enregistrements, extendleft() pour remettre un lot en échec
    devant, dans son ordre d'origine.
    """

    def __init__(
        self,
        settings: Settings | None = None,
        store: AuditStore | None = None,
    ) -> None:
        self._settings = settings or get_settings()
        self._store: AuditStore = store if store is not None else MemoryAuditStore()
        self._pending: deque[AuditRecord] = deque()
        self._flush_lock = asyncio.Lock()
        self._flush_now = asyncio.Event()
        self._worker: asyncio.Task | None = None
        self._closing = False

        self._written_count: int = 0
        self._failed_flushes: int = 0

        self.logger = logging.getLogger("actiongate.audit")

    @property
    def pending_count(self) -> int:
        return len(self._pending)

    @property
    def is_running(self) -> bool:
        return self._worker is not None and not self._worker.done()

    @property
    def stats(self) -> dict[str, Any]:
        return {
            "pending": len(self._pending),
            "written": self._written_count,
            "failed_flushes": self._failed_flushes,
            "running": self.is_running,
        }

    # ──────────────────────────────────────────────────────
    # ÉCRITURE
    # ──────────────────────────────────────────────────────

    def record(
        self,
        actor: str,
        action: str,
        result: Any = None,
        *,
        input: Any = None,
        session_id: str | None = None,
        execution_id: str | None = None,
        category: AuditCategory | None = None,
        level: AuditLevel | None = None,
        metadata: dict[str, Any] | None = None,
        ip_address: str | None = None,
        user_agent: str | None = None,
    ) -> AuditRecord:
        """
        Ajoute un enregistrement au buffer (synchrone).

        Utilisable depuis du code non-async (PermissionGate).
        Un niveau error/critical réveille le worker, mais seul
        log_action() attend l'écriture effective.
        """
        entry = AuditRecord(
            actor=actor,
            action=action,
            input=input,
            result=result,
            category=category or infer_category(action),
            level=level or infer_level(action, result),
            session_id=session_id,
            execution_id=execution_id,
            metadata=metadata or {},
            ip_address=ip_address,
            user_agent=user_agent,
        )
        self._pending.append(entry)

        self.logger.log(
            _LOG_LEVELS[entry.level],
            f"[{entry.category.value}] {actor} → {action} ({entry.id})",
        )

        if entry.level.needs_immediate_flush and self.is_running:
            self._flush_now.set()

        return entry

    async def log_action(
        self,
        actor: str,
        action: str,
        result: Any = None,
        *,
        input: Any = None,
        session_id: str | None = None,
        execution_id: str | None = None,
        category: AuditCategory | None = None,
        level: AuditLevel | None = None,
        metadata: dict[str, Any] | None = None,
        ip_address: str | None = None,
        user_agent: str | None = None,
    ) -> str:
        """
        Enregistre une action. Retourne l'id de l'AuditRecord.

        Pour error/critical, le buffer est flushé AVANT le retour :
        l'enregistrement est durable dès que l'appel rend la main
        (sauf si le store est indisponible, auquel cas il reste en tête
        du buffer pour le prochain essai).
        """
        entry = self.record(
            actor,
            action,
            result,
            input=input,
            session_id=session_id,
            execution_id=execution_id,
            category=category,
            level=level,
            metadata=metadata,
            ip_address=ip_address,
            user_agent=user_agent,
        )
        if entry.level.needs_immediate_flush:
            await self.flush()
        return entry.id

    async def log_chat(
        self,
        user: str,
        message: str,
        response: str,
        session_id: str | None = None,
        metadata: dict[str, Any] | None = None,
    ) -> str:
        return await self.log_action(
            user,
            "chat",
            {"response": response},
            input={"message": message},
            session_id=session_id,
            category=AuditCategory.CHAT,
            level=AuditLevel.INFO,
            metadata=metadata,
        )

    async def log_plugin_execution(
        self,
        user: str,
        plugin_name: str,
        input: Any,
        result: Any,
        session_id: str | None = None,
        execution_id: str | None = None,
    ) -> str:
        success = not (isinstance(result, dict) and result.get("success") is False)
        return await self.log_action(
            user,
            f"plugin_{plugin_name}",
            result,
            input=input,
            session_id=session_id,
            execution_id=execution_id,
            category=AuditCategory.PLUGIN,
            level=AuditLevel.INFO if success else AuditLevel.ERROR,
        )

    async def log_api_execution(
        self,
        user: str,
        api_action: str,
        input: Any,
        result: Any,
        session_id: str | None = None,
        execution_id: str | None = None,
    ) -> str:
        success = not (isinstance(result, dict) and result.get("success") is False)
        return await self.log_action(
            user,
            f"external_api_{api_action}",
            result,
            input=input,
            session_id=session_id,
            execution_id=execution_id,
            category=AuditCategory.EXTERNAL_API,
            level=AuditLevel.INFO if success else AuditLevel.ERROR,
        )

    async def log_security_event(
        self,
        user: str,
        event: str,
        details: Any = None,
        level: AuditLevel = AuditLevel.WARNING,
        session_id: str | None = None,
    ) -> str:
        return await self.log_action(
            user,
            f"security_{event}",
            details,
            session_id=session_id,
            category=AuditCategory.SECURITY,
            level=level,
        )

    # ──────────────────────────────────────────────────────
    # FLUSH
    # ──────────────────────────────────────────────────────

    async def flush(self) -> int:
        """
        Écrit le buffer dans le store, par lots de audit_batch_size.

        S'arrête au premier lot en échec (remis en tête du buffer).
        Retourne le nombre d'enregistrements écrits. Ne lève jamais.
        """
        written = 0
        batch_size = self._settings.audit_batch_size

        async with self._flush_lock:
            while self._pending:
                batch: list[AuditRecord] = []
                while self._pending and len(batch) < batch_size:
                    batch.append(self._pending.popleft())

                try:
                    await self._store.append(batch)
                except AuditWriteFailure as e:
                    self._requeue(batch)
                    self.logger.error(
                        f"Audit flush failed, {len(batch)} records re-queued: {e.message}"
                    )
                    break
                except Exception as e:
                    self._requeue(batch)
                    self.logger.exception(
                        f"Unexpected audit store error, {len(batch)} records re-queued: {e}"
                    )
                    break

                written += len(batch)

        self._written_count += written
        return written

    def _requeue(self, batch: list[AuditRecord]) -> None:
        self._pending.extendleft(reversed(batch))
        self._failed_flushes += 1

    def start(self) -> None:
        """Démarre le worker de flush périodique (dans la boucle courante)."""
        if self.is_running:
            return
        self._closing = False
        self._flush_now = asyncio.Event()
        self._worker = asyncio.create_task(self._run(), name="actiongate-audit-flush")
        self.logger.debug("Audit flush worker started")

    async def _run(self) -> None:
        interval = self._settings.audit_flush_interval_seconds
        while not self._closing:
            try:
                await asyncio.wait_for(self._flush_now.wait(), timeout=interval)
            except asyncio.TimeoutError:
                pass
            self._flush_now.clear()
            await self.flush()

    async def close(self) -> None:
        """Arrête le worker et tente un dernier flush."""
        self._closing = True
        if self._worker is not None:
            self._flush_now.set()
            await self._worker
            self._worker = None
        await self.flush()
        if self._pending:
            self.logger.error(
                f"Audit logger closed with {len(self._pending)} unwritten records"
            )

    # ──────────────────────────────────────────────────────
    # LECTURE
    # ──────────────────────────────────────────────────────

    async def get_audit_logs(self, audit_filter: AuditFilter | None = None) -> AuditPage:
        """Page filtrée, du plus récent au plus ancien."""
        audit_filter = audit_filter or AuditFilter()
        await self.flush()

        total = await self._store.count(audit_filter)
        logs = await self._store.query(audit_filter)
        return AuditPage(
            logs=logs,
            total=total,
            has_more=audit_filter.offset + len(logs) < total,
        )

    async def get_user_actions(self, user: str, limit: int = 100) -> list[AuditRecord]:
        page = await self.get_audit_logs(AuditFilter(actor=user, limit=limit))
        return page.logs

    async def get_session_logs(self, session_id: str, limit: int = 100) -> list[AuditRecord]:
        page = await self.get_audit_logs(AuditFilter(session_id=session_id, limit=limit))
        return page.logs

    async def get_audit_stats(self, days: int = 7) -> AuditStats:
        """
        Statistiques sur les N derniers jours.

        Analyse au plus audit_stats_window enregistrements
        (les plus récents).
        """
        end = datetime.utcnow()
        start = end - timedelta(days=days)
        await self.flush()

        records = await self._store.query(
            AuditFilter(start_date=start, limit=self._settings.audit_stats_window)
        )

        by_category = Counter(r.category.value for r in records)
        by_level = Counter(r.level.value for r in records)
        by_actor = Counter(r.actor for r in records)
        by_action = Counter(r.action for r in records)

        return AuditStats(
            total_logs=len(records),
            logs_by_category=dict(by_category),
            logs_by_level=dict(by_level),
            logs_by_actor=dict(by_actor),
            top_actions=[
                ActionCount(action=action, count=count)
                for action, count in by_action.most_common(10)
            ],
            recent_activity=records[:10],
            start=start,
            end=end,
        )

    async def search_audit_logs(self, query: str, limit: int = 20) -> list[AuditRecord]:
        """Recherche texte sur action, acteur et metadata."""
        await self.flush()
        needle = query.lower()
        candidates = await self._store.query(
            AuditFilter(limit=self._settings.audit_stats_window)
        )

        matches: list[AuditRecord] = []
        for record in candidates:
            haystack = " ".join([
                record.action,
                record.actor,
                json.dumps(record.metadata, default=str),
            ]).lower()
            if needle in haystack:
                matches.append(record)
                if len(matches) >= limit:
                    break
        return matches

    async def export_audit_logs(self, audit_filter: AuditFilter | None = None) -> AuditExport:
        """Export complet d'un ensemble filtré (plafonné à audit_export_limit)."""
        audit_filter = audit_filter or AuditFilter()
        page = await self.get_audit_logs(
            audit_filter.model_copy(
                update={"limit": self._settings.audit_export_limit, "offset": 0}
            )
        )
        return AuditExport(
            data=page.logs,
            filter=audit_filter,
            total_count=page.total,
        )

    # ──────────────────────────────────────────────────────
    # RÉTENTION
    # ──────────────────────────────────────────────────────

    async def cleanup_old_logs(
        self,
        days_to_keep: int | None = None,
        requested_by: str = "system",
    ) -> int:
        """
        Supprime les enregistrements plus anciens que days_to_keep.

        SEULE opération qui supprime de l'audit. Elle est elle-même
        auditée (system_audit_cleanup), succès comme échec.
        """
        days = days_to_keep or self._settings.audit_retention_days
        cutoff = datetime.utcnow() - timedelta(days=days)
        await self.flush()

        try:
            deleted = await self._store.delete_before(cutoff)
        except Exception as e:
            self.logger.error(f"Audit cleanup failed: {e}")
            await self.log_action(
                requested_by,
                "system_audit_cleanup",
                {"success": False, "error": str(e)},
                category=AuditCategory.SYSTEM,
                level=AuditLevel.ERROR,
                metadata={"days_to_keep": days, "cutoff": cutoff.isoformat()},
            )
            return 0

        self.logger.info(f"Cleaned up {deleted} audit records older than {days} days")
        await self.log_action(
            requested_by,
            "system_audit_cleanup",
            {"success": True, "deleted": deleted},
            category=AuditCategory.SYSTEM,
            level=AuditLevel.WARNING,
            metadata={"days_to_keep": days, "cutoff": cutoff.isoformat()},
        )
        return deleted

    # ──────────────────────────────────────────────────────
    # SANTÉ
    # ──────────────────────────────────────────────────────

    async def get_system_health(self) -> SystemHealth:
        """
        Signal de santé sur les dernières 24 heures.

        critical : événements critiques ou taux d'erreur > seuil critique
        warning  : au moins un problème détecté
        healthy  : sinon
        """
        try:
            await self.flush()
            now = datetime.utcnow()
            window = AuditFilter(start_date=now - timedelta(hours=24))

            total = await self._store.count(window)
            errors = await self._store.count(
                window.model_copy(update={"level": AuditLevel.ERROR})
            )
            critical = await self._store.count(
                window.model_copy(update={"level": AuditLevel.CRITICAL})
            )
            latest = await self._store.query(window.model_copy(update={"limit": 1}))

            last_activity = latest[0].timestamp if latest else None
            idle = last_activity is None or now - last_activity > timedelta(hours=1)
        except Exception as e:
            self.logger.error(f"System health analysis failed: {e}")
            return SystemHealth(
                status=HealthStatus.CRITICAL,
                issues=["Failed to analyze system health"],
                error_rate=100,
                critical_events=1,
            )

        error_rate = round((errors + critical) / total * 100, 2) if total else 0.0

        issues: list[str] = []
        if error_rate > self._settings.health_error_rate_warning:
            issues.append(f"High error rate: {error_rate:.2f}%")
        if critical > 0:
            issues.append(f"{critical} critical events in last 24 hours")
        if idle:
            issues.append("No system activity in the last hour")

        if critical > 0 or error_rate > self._settings.health_error_rate_critical:
            status = HealthStatus.CRITICAL
        elif issues:
            status = HealthStatus.WARNING
        else:
            status = HealthStatus.HEALTHY

        return SystemHealth(
            status=status,
            issues=issues,
            last_activity=last_activity,
            error_rate=error_rate,
            critical_events=critical,
        )
