"""
GovernanceEngine — Le cœur du pipeline.

Cycle d'une requête :
  ANALYZE → PREVIEW → {AUTO_EXECUTE | AWAIT_APPROVAL} → EXECUTE → RECORD → DONE

  1. ANALYZE   le détecteur propose des ActionDescriptor
  2. PREVIEW   chaque action reçoit requires_approval + impact estimé
  3. EXECUTE   uniquement les noms présents dans approved_actions,
               après re-vérification par le PermissionGate
  4. RECORD    chaque issue (exécutée, refusée, en échec) est auditée
               AVANT le retour à l'appelant

Design decisions :
  - L'engine ne connaît PAS l'implémentation des capabilities
  - Il délègue l'autorisation au PermissionGate
  - Il délègue l'exécution aux registres (plugin, commande, API externe)
  - Il délègue la traçabilité à l'AuditLogger
  - Pas de rollback : les actions d'un lot sont indépendantes
  - Une action dispatchée va au bout même si l'appelant abandonne
"""

from __future__ import annotations

import asyncio
import logging
from enum import Enum
from typing import Any, Awaitable, Callable
from uuid import uuid4

from pydantic import BaseModel, Field

from executor.adapters import (
    DatabaseManagerAdapter,
    DiagnosticsAdapter,
    GitHubStorageAdapter,
    PersonaApiAdapter,
    SystemCommands,
    TextAdapter,
)
from executor.commands import CommandRouter
from executor.registry import CapabilityRegistry
from models.action import (
    HIGH_IMPACT_LEVELS,
    ActionDescriptor,
    ActionKind,
    ExecutionPreview,
    ExecutionRequest,
    ExecutionResult,
    FailureReason,
    PreviewResponse,
    new_execution_id,
)
from models.audit import (
    AuditCategory,
    AuditExport,
    AuditFilter,
    AuditLevel,
    AuditPage,
    AuditRecord,
    AuditStats,
    SystemHealth,
)
from models.errors import AuthorizationError
from orchestrator.detector import ActionDetector, KeywordActionDetector
from security.permissions import PermissionGate
from services.audit import AuditLogger
from services.audit_store import AuditStore, MemoryAuditStore
from services.config import Settings, get_settings
from services.llm.client import ConversationModel, LLMClient
from services.store import KeyValueStore, MemoryKeyValueStore
from services.supabase import SupabaseAuditStore


logger = logging.getLogger("actiongate.orchestrator")

FALLBACK_REPLY = "Sorry, I can't answer right now. Please try again in a moment."

_CATEGORY_BY_KIND = {
    ActionKind.PLUGIN: AuditCategory.PLUGIN,
    ActionKind.SYSTEM_COMMAND: AuditCategory.COMMAND,
    ActionKind.EXTERNAL_API: AuditCategory.EXTERNAL_API,
}

# Seules ces classes peuvent être admises par auto_approve
_AUTO_APPROVABLE = frozenset({ActionKind.PLUGIN, ActionKind.EXTERNAL_API})


# ══════════════════════════════════════════════════════════════
# MODÈLES
# ══════════════════════════════════════════════════════════════


class TurnMode(str, Enum):
    """Branche prise par handle_turn()."""
    PREVIEW = "preview"
    EXECUTE = "execute"
    CHAT = "chat"


class TurnResponse(BaseModel):
    """Réponse d'un tour de conversation."""
    mode: TurnMode
    response: str
    previews: list[ExecutionPreview] = Field(default_factory=list)
    requires_approval: bool = False
    results: list[ExecutionResult] = Field(default_factory=list)

    @property
    def success(self) -> bool:
        return all(r.success for r in self.results)


def summarize_results(results: list[ExecutionResult]) -> str:
    """Message lisible pour un lot exécuté."""
    if not results:
        return "No approved action could be executed."
    succeeded = [r.action for r in results if r.success]
    failed = [r.action for r in results if not r.success]
    parts = []
    if succeeded:
        parts.append(f"{len(succeeded)} succeeded ({', '.join(succeeded)})")
    if failed:
        parts.append(f"{len(failed)} failed ({', '.join(failed)})")
    return f"Executed {len(results)} action(s): " + ", ".join(parts) + "."


# ══════════════════════════════════════════════════════════════
# ENGINE
# ══════════════════════════════════════════════════════════════


class GovernanceEngine:
    """
    Orchestrateur : preview, approbation, exécution, audit.

    Usage :
        engine = build_engine(settings)
        await engine.startup()

        request = ExecutionRequest(input="please clear cache", user="admin")
        preview = engine.create_preview(request)
        # preview.requires_approval → True

        results = await engine.execute(request, approved_actions=["clearCache"])
        # [ExecutionResult(action="clearCache", success=True, audit_id=...)]

        await engine.shutdown()
    """

    def __init__(
        self,
        gate: PermissionGate,
        audit_logger: AuditLogger,
        plugins: CapabilityRegistry,
        commands: CommandRouter,
        external_apis: CapabilityRegistry,
        detector: ActionDetector | None = None,
        model: ConversationModel | None = None,
        settings: Settings | None = None,
        closers: list[Callable[[], Awaitable[None]]] | None = None,
    ) -> None:
        self._settings = settings or get_settings()
        self.gate = gate
        self.audit = audit_logger
        self.plugins = plugins
        self.commands = commands
        self.external_apis = external_apis
        self._detector: ActionDetector = detector or KeywordActionDetector()
        self._model = model
        self._closers = closers or []

        # Exécutions dispatchées, gardées en vie si l'appelant abandonne
        self._inflight: set[asyncio.Task] = set()

    # ──────────────────────────────────────────────────────
    # LIFECYCLE
    # ──────────────────────────────────────────────────────

    async def startup(self) -> None:
        self.audit.start()
        logger.info(
            f"Engine started: {len(self.plugins.available())} plugins, "
            f"{len(self.commands.available())} commands, "
            f"{len(self.external_apis.available())} external APIs"
        )

    async def shutdown(self) -> None:
        if self._inflight:
            await asyncio.gather(*self._inflight, return_exceptions=True)
        for close in self._closers:
            try:
                await close()
            except Exception:
                logger.exception("Error while closing an adapter")
        await self.audit.close()
        logger.info("Engine stopped")

    # ──────────────────────────────────────────────────────
    # ANALYZE + PREVIEW
    # ──────────────────────────────────────────────────────

    def _analyze(self, request: ExecutionRequest) -> list[ActionDescriptor]:
        try:
            return self._detector.detect(request.input, request.context)
        except Exception:
            logger.exception(f"Action detection failed for {request.user}")
            return []

    def _requires_approval(self, action: ActionDescriptor) -> bool:
        return (
            self.gate.requires_approval(action.name)
            or action.is_high_impact
            or self.gate.get_action_risk_level(action.name) in HIGH_IMPACT_LEVELS
            or action.kind == ActionKind.SYSTEM_COMMAND
        )

    def _estimate_impact(self, action: ActionDescriptor) -> str:
        level = action.impact_level.value.capitalize()
        if action.kind == ActionKind.SYSTEM_COMMAND:
            services = self.commands.affected_services(action.name)
            return f"{level} - affects {', '.join(services)}"
        if action.description:
            return f"{level} - {action.description}"
        return level

    def create_preview(self, request: ExecutionRequest) -> PreviewResponse:
        """
        Aperçu sans effet de bord : ni audit, ni vérification de droits.

        Deux appels avec la même entrée donnent les mêmes previews.
        """
        previews: list[ExecutionPreview] = []
        seen: set[str] = set()
        for action in self._analyze(request):
            if action.name in seen:
                continue
            seen.add(action.name)
            previews.append(
                ExecutionPreview(
                    action=action,
                    requires_approval=self._requires_approval(action),
                    estimated_impact=self._estimate_impact(action),
                )
            )
        return PreviewResponse(
            previews=previews,
            requires_approval=any(p.requires_approval for p in previews),
        )

    # ──────────────────────────────────────────────────────
    # EXECUTE + RECORD
    # ──────────────────────────────────────────────────────

    async def execute(
        self,
        request: ExecutionRequest,
        approved_actions: list[str],
        auto_approve: bool = False,
    ) -> list[ExecutionResult]:
        """
        Exécute les actions approuvées, dans l'ordre de approved_actions.

        Un nom inconnu (non détecté) est ignoré. Un refus du gate ou
        un échec d'exécution produit un résultat en échec, jamais une
        exception. Chaque résultat porte l'audit_id de son enregistrement.
        """
        batch_id = f"batch_{uuid4().hex[:12]}"
        previews = {p.name: p for p in self.create_preview(request).previews}

        ordered = list(dict.fromkeys(approved_actions))
        if auto_approve:
            ordered.extend(
                name
                for name, preview in previews.items()
                if name not in ordered and preview.kind in _AUTO_APPROVABLE
            )

        skipped = [name for name in ordered if name not in previews]
        selected = [previews[name] for name in ordered if name in previews]
        if skipped:
            logger.warning(f"[{batch_id}] Skipping unknown actions: {', '.join(skipped)}")

        await self.audit.log_action(
            request.user,
            "execution_start",
            {"actions": [p.name for p in selected]},
            input={"message": request.input},
            session_id=request.session_id or None,
            category=AuditCategory.SYSTEM,
            level=AuditLevel.INFO,
            metadata={
                "batch_id": batch_id,
                "approved_actions": approved_actions,
                "skipped": skipped,
                "auto_approve": auto_approve,
            },
        )

        results: list[ExecutionResult] = []
        for preview in selected:
            task = asyncio.ensure_future(self._execute_one(request, preview.action, batch_id))
            self._inflight.add(task)
            task.add_done_callback(self._inflight.discard)
            results.append(await asyncio.shield(task))

        logger.info(
            f"[{batch_id}] {request.user}: "
            f"{sum(r.success for r in results)}/{len(results)} actions succeeded"
        )
        return results

    def _registry_for(self, kind: ActionKind) -> CapabilityRegistry:
        if kind == ActionKind.SYSTEM_COMMAND:
            return self.commands
        if kind == ActionKind.EXTERNAL_API:
            return self.external_apis
        return self.plugins

    async def _execute_one(
        self,
        request: ExecutionRequest,
        action: ActionDescriptor,
        batch_id: str,
    ) -> ExecutionResult:
        execution_id = new_execution_id()

        if not self.gate.is_authorized(action.name, request.user):
            denial = AuthorizationError(action.name, request.user)
            logger.warning(f"[{batch_id}] {denial.message}")
            result = ExecutionResult.failure(
                action.name,
                FailureReason.UNAUTHORIZED,
                denial.message,
                execution_id=execution_id,
            )
            level = AuditLevel.WARNING
        else:
            registry = self._registry_for(action.kind)
            result = await registry.execute_action(
                action.name,
                dict(action.parameters),
                execution_id=execution_id,
            )
            level = AuditLevel.INFO if result.success else AuditLevel.ERROR

        audit_id = await self.audit.log_action(
            request.user,
            action.name,
            result.summary(),
            input=action.parameters,
            session_id=request.session_id or None,
            execution_id=execution_id,
            category=_CATEGORY_BY_KIND[action.kind],
            level=level,
            metadata={
                "batch_id": batch_id,
                "kind": action.kind.value,
                "impact": action.impact_level.value,
            },
        )
        return result.model_copy(update={"audit_id": audit_id})

    # ──────────────────────────────────────────────────────
    # CHAT
    # ──────────────────────────────────────────────────────

    async def chat(self, request: ExecutionRequest) -> str:
        """Réponse conversationnelle hors pipeline. Jamais d'exception."""
        history = request.context.get("history", [])
        messages = [*history, {"role": "user", "content": request.input}]
        reply = FALLBACK_REPLY
        metadata: dict[str, Any] = {"success": False}

        if self._model is not None:
            try:
                response = await self._model.complete(
                    messages,
                    session_id=request.session_id or None,
                    system=self._settings.chat_system_prompt,
                )
            except Exception:
                logger.exception(f"Conversation model failed for {request.user}")
            else:
                if response.success and response.text:
                    reply = response.text
                    metadata = {"success": True, "usage": response.usage}
                else:
                    metadata["error"] = response.error

        await self.audit.log_chat(
            request.user,
            request.input,
            reply,
            session_id=request.session_id or None,
            metadata=metadata,
        )
        return reply

    async def handle_turn(
        self,
        request: ExecutionRequest,
        execute_actions: bool = False,
        approved_actions: list[str] | None = None,
    ) -> TurnResponse:
        """
        Un tour de conversation.

          - approbation requise, pas d'exécution demandée → preview
          - exécution demandée avec des actions approuvées → execute
          - sinon → chat, les previews servent d'actions disponibles
        """
        preview = self.create_preview(request)

        if preview.requires_approval and not execute_actions:
            await self.audit.log_action(
                request.user,
                "preview_requested",
                {"actions": preview.action_names},
                input={"message": request.input},
                session_id=request.session_id or None,
                category=AuditCategory.CHAT,
                level=AuditLevel.INFO,
                metadata={"preview_count": len(preview.previews)},
            )
            return TurnResponse(
                mode=TurnMode.PREVIEW,
                response="Some actions need your approval before they run.",
                previews=preview.previews,
                requires_approval=True,
            )

        if execute_actions and approved_actions:
            results = await self.execute(request, approved_actions)
            return TurnResponse(
                mode=TurnMode.EXECUTE,
                response=summarize_results(results),
                previews=preview.previews,
                results=results,
            )

        reply = await self.chat(request)
        return TurnResponse(mode=TurnMode.CHAT, response=reply, previews=preview.previews)

    # ──────────────────────────────────────────────────────
    # INTROSPECTION
    # ──────────────────────────────────────────────────────

    def get_available_actions(self) -> dict[str, list[str]]:
        return {
            "plugins": self.plugins.available(),
            "commands": self.commands.available(),
            "external_apis": self.external_apis.available(),
        }

    async def get_execution_history(self, user: str, limit: int = 10) -> list[AuditRecord]:
        return await self.audit.get_user_actions(user, limit=limit)

    async def get_status(self) -> dict[str, Any]:
        health = await self.audit.get_system_health()
        return {
            "health": health.model_dump(mode="json"),
            "available_actions": self.get_available_actions(),
            "system": await self.commands.get_system_status(),
            "permissions": self.gate.get_system_stats(),
            "audit": self.audit.stats,
        }

    # ──────────────────────────────────────────────────────
    # PERMISSIONS
    # ──────────────────────────────────────────────────────

    def grant_permission(self, user: str, action: str, acting_user: str) -> bool:
        return self.gate.grant_permission(user, action, acting_user)

    def revoke_permission(self, user: str, action: str, acting_user: str) -> bool:
        return self.gate.revoke_permission(user, action, acting_user)

    def assign_role(self, user: str, role: str, acting_user: str) -> bool:
        return self.gate.assign_role(user, role, acting_user)

    # ──────────────────────────────────────────────────────
    # AUDIT
    # ──────────────────────────────────────────────────────

    async def get_audit_logs(self, audit_filter: AuditFilter | None = None) -> AuditPage:
        return await self.audit.get_audit_logs(audit_filter)

    async def get_audit_stats(self, days: int = 7) -> AuditStats:
        return await self.audit.get_audit_stats(days)

    async def export_audit_logs(self, audit_filter: AuditFilter | None = None) -> AuditExport:
        return await self.audit.export_audit_logs(audit_filter)

    async def get_system_health(self) -> SystemHealth:
        return await self.audit.get_system_health()


# ══════════════════════════════════════════════════════════════
# WIRING
# ══════════════════════════════════════════════════════════════


def build_engine(
    settings: Settings | None = None,
    *,
    audit_store: AuditStore | None = None,
    kv_store: KeyValueStore | None = None,
    model: ConversationModel | None = None,
    detector: ActionDetector | None = None,
) -> GovernanceEngine:
    """
    Construit un engine avec ses collaborateurs par défaut.

    Store d'audit Supabase si configuré, sinon en mémoire.
    Chaque collaborateur peut être injecté (tests).
    """
    settings = settings or get_settings()

    if audit_store is None:
        audit_store = SupabaseAuditStore(settings) if settings.has_supabase else MemoryAuditStore()
    kv_store = kv_store if kv_store is not None else MemoryKeyValueStore()
    model = model if model is not None else LLMClient(settings)

    audit_logger = AuditLogger(settings, store=audit_store)
    gate = PermissionGate(settings, audit_logger=audit_logger)

    plugins = CapabilityRegistry(settings, label="plugin")
    commands = CommandRouter(settings, store=kv_store)
    external_apis = CapabilityRegistry(settings, label="external_api")

    database = DatabaseManagerAdapter(kv_store)
    storage = GitHubStorageAdapter(settings)
    persona = PersonaApiAdapter(kv_store, settings)
    system = SystemCommands(
        kv_store,
        audit_logger=audit_logger,
        models=model if isinstance(model, LLMClient) else None,
        database=database,
    )
    diagnostics = DiagnosticsAdapter(audit_logger, [plugins, commands, external_apis])

    for capability in (
        TextAdapter(model).capabilities()
        + storage.capabilities()
        + database.capabilities()
        + diagnostics.capabilities()
    ):
        plugins.register(capability)
    for command in system.capabilities():
        commands.register_command(command)
    for capability in persona.capabilities():
        external_apis.register(capability)

    return GovernanceEngine(
        gate=gate,
        audit_logger=audit_logger,
        plugins=plugins,
        commands=commands,
        external_apis=external_apis,
        detector=detector,
        model=model,
        settings=settings,
        closers=[storage.close, persona.close],
    )
