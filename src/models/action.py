"""
Action : proposition, aperçu, résultat.

Le cycle de vie d'une action :
  - Détectée à partir du texte (ActionDescriptor, immuable)
  - Présentée avant exécution (ExecutionPreview)
  - Exécutée ou refusée (ExecutionResult)

Un ActionDescriptor et son ExecutionPreview vivent le temps d'une
requête. Un ExecutionResult est final dès qu'il est produit.
"""

from __future__ import annotations

from datetime import datetime
from enum import Enum
from typing import Any
from uuid import uuid4

from pydantic import BaseModel, Field


class ImpactLevel(str, Enum):
    """Niveau d'impact d'une action.

    low / medium → approbation selon la table statique
    high / critical → approbation TOUJOURS requise
    """
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"
    CRITICAL = "critical"


HIGH_IMPACT_LEVELS = frozenset({ImpactLevel.HIGH, ImpactLevel.CRITICAL})


def new_execution_id() -> str:
    return f"exec_{uuid4().hex}"


class ActionKind(str, Enum):
    """Classe de dispatch d'une action."""
    PLUGIN = "plugin"
    SYSTEM_COMMAND = "system_command"
    EXTERNAL_API = "external_api"


class FailureReason(str, Enum):
    """Code de raison attaché à un résultat en échec."""
    NOT_FOUND = "not_found"
    INVALID_PARAMETERS = "invalid_parameters"
    UNAUTHORIZED = "unauthorized"
    TIMEOUT = "timeout"
    EXECUTION_FAILED = "execution_failed"


class ActionDescriptor(BaseModel):
    """
    Action candidate produite par l'ActionDetector.

    Le détecteur ne fait que PROPOSER.
    Le GovernanceEngine décide, l'exécuteur FAIT.
    """
    name: str = Field(..., description="Ex: restartAgent, pluginSummarizer")
    kind: ActionKind = ActionKind.PLUGIN
    parameters: dict[str, Any] = Field(default_factory=dict)
    description: str = ""
    impact_level: ImpactLevel = ImpactLevel.LOW

    model_config = {"frozen": True}

    @property
    def is_high_impact(self) -> bool:
        return self.impact_level in HIGH_IMPACT_LEVELS


class ExecutionPreview(BaseModel):
    """Ce qui se passerait si l'action était approuvée puis exécutée."""
    action: ActionDescriptor
    requires_approval: bool
    estimated_impact: str = ""

    @property
    def name(self) -> str:
        return self.action.name

    @property
    def kind(self) -> ActionKind:
        return self.action.kind

    @property
    def description(self) -> str:
        return self.action.description


class ExecutionResult(BaseModel):
    """
    Résultat d'UNE action dans UNE requête.

    Produit exactement une fois par action approuvée.
    Chaque résultat a son AuditRecord (audit_id).
    """
    action: str
    success: bool
    output: Any = None
    error: str | None = None
    reason: FailureReason | None = None
    timestamp: datetime = Field(default_factory=datetime.utcnow)
    execution_id: str = Field(default_factory=new_execution_id)
    execution_time_ms: float = Field(default=0, ge=0)
    affected_services: list[str] = Field(default_factory=list)
    audit_id: str | None = None

    @classmethod
    def failure(
        cls,
        action: str,
        reason: FailureReason,
        error: str,
        execution_id: str | None = None,
        **extra: Any,
    ) -> ExecutionResult:
        """Construit un résultat en échec."""
        data: dict[str, Any] = {
            "action": action,
            "success": False,
            "error": error,
            "reason": reason,
            **extra,
        }
        if execution_id:
            data["execution_id"] = execution_id
        return cls(**data)

    def summary(self) -> dict[str, Any]:
        """Format compact pour le logging et l'audit."""
        return {
            "action": self.action,
            "success": self.success,
            "error": self.error,
            "reason": self.reason.value if self.reason else None,
            "execution_id": self.execution_id,
            "execution_time_ms": self.execution_time_ms,
        }


class ExecutionRequest(BaseModel):
    """Requête entrante : un message d'un utilisateur dans une session."""
    input: str
    user: str
    session_id: str = ""
    context: dict[str, Any] = Field(default_factory=dict)


class PreviewResponse(BaseModel):
    """Sortie de create_preview()."""
    previews: list[ExecutionPreview] = Field(default_factory=list)
    requires_approval: bool = False

    @property
    def action_names(self) -> list[str]:
        return [p.name for p in self.previews]