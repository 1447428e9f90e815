"""
Diagnostics Adapter — Actions internes de diagnostic.

Plugins :
  - systemDiagnostic  santé de l'audit + health_check de chaque registre
  - healthCheck       santé dérivée de l'audit uniquement
"""

from __future__ import annotations

from datetime import datetime
from typing import Any

from executor.registry import Capability, CapabilityRegistry
from models.action import ActionKind, ImpactLevel
from services.audit import AuditLogger


class DiagnosticsAdapter:

    def __init__(
        self,
        audit_logger: AuditLogger,
        registries: list[CapabilityRegistry] | None = None,
    ) -> None:
        self._audit = audit_logger
        self._registries = registries or []

    async def system_diagnostic(self, params: dict[str, Any]) -> dict[str, Any]:
        health = await self._audit.get_system_health()
        registries = {
            registry.label: await registry.health_check()
            for registry in self._registries
        }
        return {
            "status": health.status.value,
            "issues": health.issues,
            "error_rate": health.error_rate,
            "registries": registries,
            "audit": self._audit.stats,
            "timestamp": datetime.utcnow().isoformat(),
        }

    async def health_check(self, params: dict[str, Any]) -> dict[str, Any]:
        health = await self._audit.get_system_health()
        return {
            "status": health.status.value,
            "issues": health.issues,
            "timestamp": datetime.utcnow().isoformat(),
        }

    def capabilities(self) -> list[Capability]:
        return [
            Capability(
                name="systemDiagnostic",
                validate=lambda p: True,
                execute=self.system_diagnostic,
                description="Run a full system diagnostic",
                kind=ActionKind.PLUGIN,
                impact=ImpactLevel.MEDIUM,
                category="diagnostics",
            ),
            Capability(
                name="healthCheck",
                validate=lambda p: True,
                execute=self.health_check,
                description="Report system health from the audit trail",
                kind=ActionKind.PLUGIN,
                impact=ImpactLevel.LOW,
                category="diagnostics",
            ),
        ]
