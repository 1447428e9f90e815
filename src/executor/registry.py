"""
CapabilityRegistry — Routeur des capabilities.

Reçoit un nom d'action + des paramètres, trouve la capability,
valide, exécute avec timeout, enregistre le résultat.

Design decisions :
  - UN point d'entrée : execute_action()
  - Chaque capability fournit SA validation (allow-lists, champs requis)
  - Aucune exception ne sort : tout devient un ExecutionResult
  - Timeout borné, l'exécution continue si l'appelant abandonne
  - Historique borné (execution_history_max → execution_history_keep)
"""

from __future__ import annotations

import asyncio
import logging
import threading
import time
from collections import Counter
from dataclasses import dataclass, field
from typing import Any, Awaitable, Callable

from models.action import ActionKind, ExecutionResult, FailureReason, ImpactLevel, new_execution_id
from models.errors import ActionTimeoutError, ActionValidationError, ExecutionError, UnknownActionError
from services.config import Settings, get_settings


Validator = Callable[[dict[str, Any]], bool]
Handler = Callable[[dict[str, Any]], Awaitable[Any]]


@dataclass(frozen=True)
class Capability:
    """
    Une action exécutable : (validate, execute) + métadonnées.

    validate() est synchrone et ne fait aucun I/O.
    execute() peut lever ActionValidationError / ExecutionError.
    probe : paramètres sans effet de bord pour health_check(),
    None si la capability ne doit pas être sondée.
    """
    name: str
    validate: Validator
    execute: Handler
    description: str = ""
    kind: ActionKind = ActionKind.PLUGIN
    impact: ImpactLevel = ImpactLevel.LOW
    category: str = "general"
    version: str = "1.0.0"
    affected_services: tuple[str, ...] = ()
    probe: dict[str, Any] | None = field(default=None, hash=False, compare=False)

    def describe(self) -> dict[str, Any]:
        return {
            "name": self.name,
            "description": self.description,
            "kind": self.kind.value,
            "impact": self.impact.value,
            "category": self.category,
            "version": self.version,
        }


class CapabilityRegistry:
    """
    Table nom → Capability.

    Usage :
        registry = CapabilityRegistry(settings, label="plugin")
        registry.register(summarizer)
        result = await registry.execute_action("pluginSummarizer", {"text": "..."})
    """

    def __init__(
        self,
        settings: Settings | None = None,
        label: str = "plugin",
        capabilities: list[Capability] | None = None,
    ) -> None:
        self._settings = settings or get_settings()
        self.label = label
        self._capabilities: dict[str, Capability] = {}
        self._history: list[ExecutionResult] = []
        self._lock = threading.Lock()
        self._inflight: set[asyncio.Future] = set()

        self.logger = logging.getLogger(f"actiongate.executor.{label}")

        for capability in capabilities or []:
            self.register(capability)

    # ──────────────────────────────────────────────────────
    # TABLE
    # ──────────────────────────────────────────────────────

    def register(self, capability: Capability) -> bool:
        """Ajoute une capability. False si le nom est déjà pris."""
        with self._lock:
            if capability.name in self._capabilities:
                self.logger.warning(f"{self.label} '{capability.name}' already registered")
                return False
            self._capabilities[capability.name] = capability
        self.logger.debug(f"Registered {self.label} '{capability.name}'")
        return True

    def unregister(self, name: str) -> bool:
        with self._lock:
            return self._capabilities.pop(name, None) is not None

    def has(self, name: str) -> bool:
        return name in self._capabilities

    def get(self, name: str) -> Capability | None:
        return self._capabilities.get(name)

    def available(self) -> list[str]:
        return sorted(self._capabilities)

    def describe_all(self) -> list[dict[str, Any]]:
        return [c.describe() for c in self._capabilities.values()]

    @property
    def inflight_count(self) -> int:
        return len(self._inflight)

    # ──────────────────────────────────────────────────────
    # EXECUTE
    # ──────────────────────────────────────────────────────

    async def execute_action(
        self,
        name: str,
        parameters: dict[str, Any] | None = None,
        execution_id: str | None = None,
        timeout: float | None = None,
    ) -> ExecutionResult:
        """
        Exécute une capability.

        Séquence :
          1. Trouver la capability     → not_found
          2. Valider les paramètres    → invalid_parameters
          3. Exécuter sous timeout     → timeout / execution_failed
          4. Ajouter à l'historique

        Ne lève jamais.
        """
        result = await self._invoke(
            name,
            parameters or {},
            execution_id or new_execution_id(),
            timeout or self._settings.execution_timeout_seconds,
        )
        self._remember(result)
        return result

    async def _invoke(
        self,
        name: str,
        parameters: dict[str, Any],
        execution_id: str,
        timeout: float,
    ) -> ExecutionResult:
        capability = self.get(name)
        if capability is None:
            error = UnknownActionError(name, self.label)
            self.logger.warning(error.message)
            return ExecutionResult.failure(
                name, error.reason, error.message, execution_id=execution_id
            )

        services = list(capability.affected_services)

        try:
            valid = bool(capability.validate(parameters))
        except Exception as e:
            self.logger.warning(f"Validator of '{name}' raised: {e}")
            valid = False

        if not valid:
            return ExecutionResult.failure(
                name,
                FailureReason.INVALID_PARAMETERS,
                f"Invalid parameters for {self.label} '{name}'",
                execution_id=execution_id,
                affected_services=services,
            )

        start = time.monotonic()
        try:
            output = await self._run(capability, parameters, timeout)
        except ActionValidationError as e:
            return self._failed(name, FailureReason.INVALID_PARAMETERS, e.message, execution_id, start, services)
        except ExecutionError as e:
            self.logger.error(f"{self.label} '{name}' failed: {e.message}")
            return self._failed(name, e.reason, e.message, execution_id, start, services)
        except Exception as e:
            self.logger.exception(f"{self.label} '{name}' raised unexpectedly")
            return self._failed(
                name,
                FailureReason.EXECUTION_FAILED,
                f"{type(e).__name__}: {e}",
                execution_id,
                start,
                services,
            )

        elapsed = (time.monotonic() - start) * 1000
        self.logger.info(f"{self.label} '{name}' executed in {elapsed:.1f}ms")
        return ExecutionResult(
            action=name,
            success=True,
            output=output,
            execution_id=execution_id,
            execution_time_ms=round(elapsed, 1),
            affected_services=services,
        )

    async def _run(
        self,
        capability: Capability,
        parameters: dict[str, Any],
        timeout: float,
    ) -> Any:
        """
        Lance execute() dans sa propre tâche.

        shield() : si l'appelant est annulé, la tâche continue.
        Au timeout, la tâche est annulée et l'échec est remonté.
        """
        task = asyncio.ensure_future(capability.execute(dict(parameters)))
        self._inflight.add(task)
        task.add_done_callback(self._on_task_done)

        try:
            return await asyncio.wait_for(asyncio.shield(task), timeout)
        except asyncio.TimeoutError:
            task.cancel()
            raise ActionTimeoutError(capability.name, timeout) from None

    def _on_task_done(self, task: asyncio.Future) -> None:
        self._inflight.discard(task)
        if not task.cancelled() and task.exception() is not None:
            self.logger.debug(f"Background {self.label} task ended with: {task.exception()}")

    def _failed(
        self,
        name: str,
        reason: FailureReason,
        error: str,
        execution_id: str,
        start: float,
        services: list[str],
    ) -> ExecutionResult:
        return ExecutionResult.failure(
            name,
            reason,
            error,
            execution_id=execution_id,
            execution_time_ms=round((time.monotonic() - start) * 1000, 1),
            affected_services=services,
        )

    # ──────────────────────────────────────────────────────
    # HISTORIQUE & STATS
    # ──────────────────────────────────────────────────────

    def _remember(self, result: ExecutionResult) -> None:
        with self._lock:
            self._history.append(result)
            if len(self._history) > self._settings.execution_history_max:
                self._history = self._history[-self._settings.execution_history_keep:]

    def get_execution_history(self, limit: int = 20) -> list[ExecutionResult]:
        with self._lock:
            return self._history[-limit:]

    def clear_history(self) -> None:
        with self._lock:
            self._history.clear()

    def get_stats(self) -> dict[str, Any]:
        with self._lock:
            history = list(self._history)

        total = len(history)
        successful = sum(1 for r in history if r.success)
        avg_time = sum(r.execution_time_ms for r in history) / total if total else 0.0

        return {
            f"total_{self.label}s": len(self._capabilities),
            "total_executions": total,
            "successful_executions": successful,
            "failed_executions": total - successful,
            "success_rate": round(successful / total * 100, 2) if total else 0.0,
            "average_execution_time_ms": round(avg_time, 1),
            "usage": dict(Counter(r.action for r in history)),
        }

    async def health_check(self) -> dict[str, Any]:
        """
        Sonde chaque capability qui déclare un probe.

        healthy   : toutes passent
        degraded  : plus de la moitié passent
        unhealthy : sinon
        """
        checks: dict[str, dict[str, Any]] = {}
        for capability in list(self._capabilities.values()):
            if capability.probe is None:
                checks[capability.name] = {"healthy": True, "skipped": True}
                continue
            result = await self._invoke(
                capability.name,
                dict(capability.probe),
                new_execution_id(),
                self._settings.execution_timeout_seconds,
            )
            checks[capability.name] = {"healthy": result.success, "error": result.error}

        probed = [c for c in checks.values() if not c.get("skipped")]
        passed = sum(1 for c in probed if c["healthy"])

        if passed == len(probed):
            status = "healthy"
        elif passed > len(probed) / 2:
            status = "degraded"
        else:
            status = "unhealthy"

        return {"status": status, "checks": checks}
