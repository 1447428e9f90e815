"""
CommandRouter — Registre des commandes système privilégiées.

Même contrat que le CapabilityRegistry (validate / execute),
avec en plus :
  - kind = system_command obligatoire
  - services affectés déclarés par commande (reporting)
  - statut système (dernier redémarrage, uptime)

Une commande n'est JAMAIS exécutée sans approbation explicite :
c'est le GovernanceEngine qui l'impose, pas ce routeur.
"""

from __future__ import annotations

from collections import defaultdict
from datetime import datetime
from typing import Any

from executor.registry import Capability, CapabilityRegistry
from models.action import ActionKind
from services.config import Settings
from services.store import KeyValueStore


UNKNOWN_SERVICE = "Unknown Service"


def format_uptime(since: datetime, now: datetime | None = None) -> str:
    """'3h 12m', ou '2d 4h 12m' au-delà de 24 heures."""
    delta = (now or datetime.utcnow()) - since
    total_minutes = max(int(delta.total_seconds() // 60), 0)
    hours, minutes = divmod(total_minutes, 60)
    if hours > 24:
        days, hours = divmod(hours, 24)
        return f"{days}d {hours}h {minutes}m"
    return f"{hours}h {minutes}m"


class CommandRouter(CapabilityRegistry):
    """
    Usage :
        router = CommandRouter(settings, store=kv_store)
        router.register_command(clear_cache)
        router.affected_services("clearCache")
        await router.get_system_status()
    """

    def __init__(
        self,
        settings: Settings | None = None,
        store: KeyValueStore | None = None,
        commands: list[Capability] | None = None,
    ) -> None:
        super().__init__(settings, label="command")
        self._store = store
        for command in commands or []:
            self.register_command(command)

    def register_command(self, command: Capability) -> bool:
        if command.kind != ActionKind.SYSTEM_COMMAND:
            self.logger.warning(
                f"Refusing '{command.name}': kind {command.kind.value} is not a system command"
            )
            return False
        return self.register(command)

    def affected_services(self, name: str) -> list[str]:
        command = self.get(name)
        if command is None or not command.affected_services:
            return [UNKNOWN_SERVICE]
        return list(command.affected_services)

    def get_stats(self) -> dict[str, Any]:
        stats = super().get_stats()

        by_category: dict[str, dict[str, int]] = defaultdict(lambda: {"total": 0, "successful": 0})
        for result in self.get_execution_history(limit=self._settings.execution_history_max):
            command = self.get(result.action)
            category = command.category if command else "unknown"
            by_category[category]["total"] += 1
            if result.success:
                by_category[category]["successful"] += 1

        stats["category_stats"] = dict(by_category)
        return stats

    async def get_system_status(self) -> dict[str, Any]:
        """Statut système déduit des traces laissées par les commandes."""
        if self._store is None:
            return {"status": "active", "last_restart": None, "uptime": "Unknown"}

        try:
            status = await self._store.get("system_status") or {}
            completed = await self._store.get("agent_restart_completed") or {}
        except Exception as e:
            self.logger.error(f"System status lookup failed: {e}")
            return {"status": "unknown", "last_restart": None, "uptime": "Unknown"}

        last_restart = completed.get("timestamp") or status.get("last_restart")
        uptime = "Unknown"
        if last_restart:
            uptime = format_uptime(datetime.fromisoformat(last_restart))

        return {
            "status": status.get("status", "active"),
            "last_restart": last_restart,
            "uptime": uptime,
        }
