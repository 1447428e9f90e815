"""
actiongate Models : pipeline d'actions gouverné.

Modèles universels :
  ActionDescriptor  → action candidate (sortie du détecteur)
  ExecutionPreview  → ce qui se passerait si l'action était approuvée
  ExecutionResult   → ce qui s'est passé
  AuditRecord       → trace immuable de chaque décision
  Role / PermissionCheck → qui a le droit de faire quoi

+ taxonomie d'erreurs
"""

from models.action import (
    ActionDescriptor,
    ActionKind,
    ExecutionPreview,
    ExecutionRequest,
    ExecutionResult,
    FailureReason,
    HIGH_IMPACT_LEVELS,
    ImpactLevel,
    PreviewResponse,
    new_execution_id,
)
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
    new_audit_id,
)
from models.permission import SUPER_ADMIN, PermissionCheck, PermissionExport, Role
from models.errors import (
    ActionTimeoutError,
    ActionValidationError,
    AuditWriteFailure,
    AuthorizationError,
    ExecutionError,
    GovernanceError,
    UnknownActionError,
)

__all__ = [
    # Actions
    "ActionDescriptor",
    "ActionKind",
    "ExecutionPreview",
    "ExecutionRequest",
    "ExecutionResult",
    "FailureReason",
    "HIGH_IMPACT_LEVELS",
    "ImpactLevel",
    "PreviewResponse",
    "new_execution_id",
    # Audit
    "ActionCount",
    "AuditCategory",
    "AuditExport",
    "AuditFilter",
    "AuditLevel",
    "AuditPage",
    "AuditRecord",
    "AuditStats",
    "HealthStatus",
    "SystemHealth",
    "new_audit_id",
    # Permissions
    "SUPER_ADMIN",
    "PermissionCheck",
    "PermissionExport",
    "Role",
    # Errors
    "ActionTimeoutError",
    "ActionValidationError",
    "AuditWriteFailure",
    "AuthorizationError",
    "ExecutionError",
    "GovernanceError",
    "UnknownActionError",
]
