"""
Database Adapter — Sauvegardes du store clé/valeur.

Plugin : pluginDatabaseManager
  {action: backup, type?(manual|auto)}
  {action: restore, backupId}
  {action: list}
  {action: delete, backupId}
  {action: stats}

Une sauvegarde = un snapshot des entrées non expirées,
stocké dans le même store sous la catégorie "backup".
Au-delà de max_backups, les plus anciennes sont supprimées.
"""

from __future__ import annotations

import logging
from collections import Counter
from datetime import datetime
from typing import Any
from uuid import uuid4

from executor.registry import Capability
from models.action import ActionKind, ImpactLevel
from models.errors import ExecutionError
from services.store import KeyValueStore


logger = logging.getLogger("actiongate.executor.database")

ACTION_NAME = "pluginDatabaseManager"
BACKUP_CATEGORY = "backup"
DATABASE_ACTIONS = {"backup", "restore", "list", "delete", "stats"}


def validate_database_params(params: dict[str, Any]) -> bool:
    action = params.get("action")
    if action not in DATABASE_ACTIONS:
        return False
    if action in ("restore", "delete"):
        return isinstance(params.get("backupId"), str) and bool(params["backupId"])
    if action == "backup":
        return params.get("type", "manual") in ("manual", "auto", "system")
    return True


class DatabaseManagerAdapter:
    """Sauvegarde / restauration du KeyValueStore."""

    def __init__(self, store: KeyValueStore, max_backups: int = 10) -> None:
        self._store = store
        self.max_backups = max_backups

    async def execute(self, params: dict[str, Any]) -> dict[str, Any]:
        action = params["action"]
        if action == "backup":
            return await self.backup(params.get("type", "manual"))
        if action == "restore":
            return await self.restore(params["backupId"])
        if action == "list":
            return {"action": "list", "backups": await self.list_backups()}
        if action == "delete":
            return await self.delete(params["backupId"])
        return await self.stats()

    async def _backups(self) -> dict[str, dict[str, Any]]:
        entries = await self._store.snapshot()
        return {
            key: item["value"]
            for key, item in entries.items()
            if item["category"] == BACKUP_CATEGORY
        }

    async def backup(self, backup_type: str = "manual") -> dict[str, Any]:
        snapshot = await self._store.snapshot(exclude_categories={BACKUP_CATEGORY})
        backup_id = f"backup_{uuid4().hex[:12]}"
        created_at = datetime.utcnow().isoformat()

        await self._store.set(
            backup_id,
            {
                "id": backup_id,
                "type": backup_type,
                "timestamp": created_at,
                "entries": len(snapshot),
                "snapshot": snapshot,
            },
            category=BACKUP_CATEGORY,
        )
        removed = await self._prune()

        logger.info(f"Backup {backup_id} created ({len(snapshot)} entries, {backup_type})")
        return {
            "action": "backup",
            "backup_id": backup_id,
            "type": backup_type,
            "entries": len(snapshot),
            "timestamp": created_at,
            "pruned": removed,
        }

    async def _prune(self) -> int:
        backups = await self._backups()
        if len(backups) <= self.max_backups:
            return 0
        ordered = sorted(backups.values(), key=lambda b: b["timestamp"], reverse=True)
        for stale in ordered[self.max_backups:]:
            await self._store.delete(stale["id"])
        return len(ordered) - self.max_backups

    async def restore(self, backup_id: str) -> dict[str, Any]:
        backup = await self._store.get(backup_id)
        if not backup or "snapshot" not in backup:
            raise ExecutionError(ACTION_NAME, f"Backup '{backup_id}' not found")
        restored = await self._store.restore(backup["snapshot"])
        logger.info(f"Restored {restored} entries from {backup_id}")
        return {
            "action": "restore",
            "backup_id": backup_id,
            "restored_entries": restored,
            "restored_at": datetime.utcnow().isoformat(),
        }

    async def list_backups(self) -> list[dict[str, Any]]:
        backups = await self._backups()
        listing = [
            {k: v for k, v in b.items() if k != "snapshot"}
            for b in backups.values()
        ]
        return sorted(listing, key=lambda b: b["timestamp"], reverse=True)

    async def delete(self, backup_id: str) -> dict[str, Any]:
        backup = await self._store.get(backup_id)
        if not backup or "snapshot" not in backup:
            raise ExecutionError(ACTION_NAME, f"Backup '{backup_id}' not found")
        await self._store.delete(backup_id)
        return {"action": "delete", "backup_id": backup_id}

    async def stats(self) -> dict[str, Any]:
        entries = await self._store.snapshot()
        backups = await self.list_backups()
        return {
            "action": "stats",
            "entries_by_category": dict(Counter(e["category"] for e in entries.values())),
            "total_entries": len(entries),
            "backups": len(backups),
            "last_backup": backups[0]["timestamp"] if backups else None,
        }

    def capabilities(self) -> list[Capability]:
        return [
            Capability(
                name=ACTION_NAME,
                validate=validate_database_params,
                execute=self.execute,
                description="Back up, restore and inspect the local key-value store",
                kind=ActionKind.PLUGIN,
                impact=ImpactLevel.MEDIUM,
                category="database",
                probe={"action": "stats"},
            ),
        ]
