"""
AuditRecord : la trace immuable.

CHAQUE décision d'autorisation, CHAQUE exécution,
CHAQUE changement de permission est enregistré ici.
C'est la source de vérité absolue.

Un AuditRecord n'est jamais modifié ni supprimé,
sauf par l'opération de rétention (elle-même auditée).
"""

from __future__ import annotations

from datetime import datetime, timezone
from enum import Enum
from typing import Any
from uuid import uuid4

from pydantic import BaseModel, Field, field_validator


class AuditLevel(str, Enum):
    """Sévérité d'un enregistrement d'audit."""
    INFO = "info"
    WARNING = "warning"
    ERROR = "error"
    CRITICAL = "critical"

    @property
    def needs_immediate_flush(self) -> bool:
        return self in (AuditLevel.ERROR, AuditLevel.CRITICAL)


class AuditCategory(str, Enum):
    """Catégorie fonctionnelle d'un enregistrement."""
    CHAT = "chat"
    PLUGIN = "plugin"
    COMMAND = "command"
    EXTERNAL_API = "external_api"
    SECURITY = "security"
    SYSTEM = "system"


class HealthStatus(str, Enum):
    HEALTHY = "healthy"
    WARNING = "warning"
    CRITICAL = "critical"


def new_audit_id() -> str:
    return f"audit_{uuid4().hex}"


def to_naive_utc(value: datetime | None) -> datetime | None:
    """Horodatages stockés en UTC naïf (Postgres timestamptz renvoie un offset)."""
    if value is None or value.tzinfo is None:
        return value
    return value.astimezone(timezone.utc).replace(tzinfo=None)


class AuditRecord(BaseModel):
    """
    Enregistrement d'audit.

    L'id est unique et jamais réutilisé : le store
    peut donc faire un upsert idempotent sur l'id.
    """
    id: str = Field(default_factory=new_audit_id)
    actor: str
    action: str
    input: Any = None
    result: Any = None
    category: AuditCategory = AuditCategory.SYSTEM
    level: AuditLevel = AuditLevel.INFO
    session_id: str | None = None
    execution_id: str | None = None
    timestamp: datetime = Field(default_factory=datetime.utcnow)
    metadata: dict[str, Any] = Field(default_factory=dict)
    ip_address: str | None = None
    user_agent: str | None = None

    model_config = {"frozen": True}

    @field_validator("timestamp")
    @classmethod
    def normalize_timestamp(cls, v: datetime) -> datetime:
        return to_naive_utc(v)

    def to_row(self) -> dict[str, Any]:
        """Format ligne pour le store (JSON-compatible)."""
        return self.model_dump(mode="json")

    @classmethod
    def from_row(cls, row: dict[str, Any]) -> AuditRecord:
        return cls.model_validate(row)


class AuditFilter(BaseModel):
    """Filtre de requête sur les enregistrements d'audit."""
    actor: str | None = None
    action: str | None = Field(
        default=None, description="Sous-chaîne recherchée dans le nom d'action"
    )
    category: AuditCategory | None = None
    level: AuditLevel | None = None
    session_id: str | None = None
    execution_id: str | None = None
    start_date: datetime | None = None
    end_date: datetime | None = None
    limit: int = Field(default=50, ge=1)
    offset: int = Field(default=0, ge=0)

    @field_validator("start_date", "end_date")
    @classmethod
    def normalize_dates(cls, v: datetime | None) -> datetime | None:
        return to_naive_utc(v)

    def matches(self, record: AuditRecord) -> bool:
        """Vrai si l'enregistrement passe tous les critères (hors pagination)."""
        if self.actor and record.actor != self.actor:
            return False
        if self.action and self.action not in record.action:
            return False
        if self.category and record.category != self.category:
            return False
        if self.level and record.level != self.level:
            return False
        if self.session_id and record.session_id != self.session_id:
            return False
        if self.execution_id and record.execution_id != self.execution_id:
            return False
        if self.start_date and record.timestamp < self.start_date:
            return False
        if self.end_date and record.timestamp > self.end_date:
            return False
        return True


class AuditPage(BaseModel):
    """Une page de résultats."""
    logs: list[AuditRecord] = Field(default_factory=list)
    total: int = Field(default=0, ge=0)
    has_more: bool = False


class ActionCount(BaseModel):
    action: str
    count: int


class AuditStats(BaseModel):
    """Statistiques sur une fenêtre glissante."""
    total_logs: int = 0
    logs_by_category: dict[str, int] = Field(default_factory=dict)
    logs_by_level: dict[str, int] = Field(default_factory=dict)
    logs_by_actor: dict[str, int] = Field(default_factory=dict)
    top_actions: list[ActionCount] = Field(default_factory=list)
    recent_activity: list[AuditRecord] = Field(default_factory=list)
    start: datetime = Field(default_factory=datetime.utcnow)
    end: datetime = Field(default_factory=datetime.utcnow)


class AuditExport(BaseModel):
    """Export complet d'un ensemble filtré (backup externe)."""
    data: list[AuditRecord] = Field(default_factory=list)
    exported_at: datetime = Field(default_factory=datetime.utcnow)
    filter: AuditFilter
    total_count: int = 0


class SystemHealth(BaseModel):
    """Signal de santé dérivé du store d'audit (24 dernières heures)."""
    status: HealthStatus
    issues: list[str] = Field(default_factory=list)
    last_activity: datetime | None = None
    error_rate: float = Field(default=0, ge=0, description="Pourcentage")
    critical_events: int = Field(default=0, ge=0)

    @property
    def is_healthy(self) -> bool:
        return self.status == HealthStatus.HEALTHY
