"""
PermissionGate : QUI a le droit de faire QUOI.

Source de vérité unique pour les autorisations.
Chaque vérification est tracée dans un buffer circulaire local,
chaque modification (grant / revoke / assign / import) est
enregistrée dans l'AuditLogger.

Usage :
    gate = PermissionGate(settings, audit_logger=audit)

    gate.is_authorized("clearCache", "han")              # True
    gate.assign_role("alice", "admin", assigned_by="han")
    gate.grant_permission("bob", "getPersona", granted_by="han")
    gate.requires_approval("restartAgent")               # True
    gate.get_action_risk_level("restartAgent")           # ImpactLevel.CRITICAL

Design decisions :
  - Utilisateur inconnu → refus, jamais d'exception
  - Seul un super_admin peut modifier les permissions
  - Tentative non autorisée → False + warning, jamais d'exception
  - Un RLock protège les tables (lectures concurrentes, écritures sérialisées)
"""

from __future__ import annotations

import logging
import threading
from collections import deque
from typing import Any

from models.action import ImpactLevel
from models.audit import AuditCategory, AuditLevel
from models.permission import SUPER_ADMIN, PermissionCheck, PermissionExport, Role
from services.audit import AuditLogger
from services.config import Settings, get_settings


# ══════════════════════════════════════════════════════════════
# TABLES STATIQUES
# ══════════════════════════════════════════════════════════════

_USER_ACTIONS = [
    "pluginSummarizer",
    "pluginTranslator",
    "pluginGitHubStorage",
    "getPersona",
]

_ADMIN_ACTIONS = _USER_ACTIONS + [
    "clearCache",
    "systemDiagnostic",
    "healthCheck",
]

_SUPER_ADMIN_ACTIONS = _ADMIN_ACTIONS + [
    "pluginDatabaseManager",
    "restartAgent",
    "restartModels",
    "updateConfig",
    "backupSystem",
    "cleanupLogs",
    "runShellCommand",
    "updateMemory",
    "getUserPreferences",
    "setUserPreferences",
    "getAnalytics",
    "createPersona",
    "systemConfiguration",
    "userManagement",
    "auditAccess",
    "apiManagement",
]

DEFAULT_ROLES: dict[str, Role] = {
    SUPER_ADMIN: Role(
        key=SUPER_ADMIN,
        name="Super Admin",
        permissions=frozenset(_SUPER_ADMIN_ACTIONS),
        description="Full system access",
    ),
    "admin": Role(
        key="admin",
        name="Administrator",
        permissions=frozenset(_ADMIN_ACTIONS),
        description="Administrative access, limited permissions",
    ),
    "user": Role(
        key="user",
        name="User",
        permissions=frozenset(_USER_ACTIONS),
        description="Basic user access, read-only plugins",
    ),
    "guest": Role(
        key="guest",
        name="Guest",
        permissions=frozenset(),
        description="No execution permissions, chat only",
    ),
}

APPROVAL_REQUIRED: frozenset[str] = frozenset({
    "restartAgent",
    "clearCache",
    "updateMemory",
    "systemConfiguration",
    "userManagement",
    "apiManagement",
})

RISK_LEVELS: dict[str, ImpactLevel] = {
    "restartAgent": ImpactLevel.CRITICAL,
    "clearCache": ImpactLevel.HIGH,
    "updateMemory": ImpactLevel.HIGH,
    "userManagement": ImpactLevel.HIGH,
    "systemDiagnostic": ImpactLevel.MEDIUM,
    "systemConfiguration": ImpactLevel.MEDIUM,
}


# ══════════════════════════════════════════════════════════════
# GATE
# ══════════════════════════════════════════════════════════════


class PermissionGate:
    """
    Table utilisateur → permissions, et rôles système.

    Les utilisateurs de settings.super_admin_users reçoivent
    le rôle super_admin à la construction.
    """

    def __init__(
        self,
        settings: Settings | None = None,
        audit_logger: AuditLogger | None = None,
        roles: dict[str, Role] | None = None,
    ) -> None:
        self._settings = settings or get_settings()
        self._audit = audit_logger
        self._lock = threading.RLock()

        self._roles: dict[str, Role] = dict(roles or DEFAULT_ROLES)
        self._permissions: dict[str, set[str]] = {}
        self._checks: deque[PermissionCheck] = deque()

        self.logger = logging.getLogger("actiongate.security")

        super_admin = self._roles.get(SUPER_ADMIN)
        if super_admin is not None:
            for user in self._settings.super_admin_users:
                self._permissions[user] = set(super_admin.permissions)

    # ──────────────────────────────────────────────────────
    # VÉRIFICATIONS
    # ──────────────────────────────────────────────────────

    def is_authorized(self, action: str, user: str) -> bool:
        """Vrai si user possède la permission action. Trace CHAQUE appel."""
        with self._lock:
            perms = self._permissions.get(user)
            if perms is None:
                granted = False
                reason = "User not found in permission system"
            else:
                granted = action in perms
                reason = "Action authorized" if granted else "Action not in user permissions"
            self._log_check(action, user, granted, reason)
        return granted

    def has_role(self, user: str, role: str) -> bool:
        """Vrai si les permissions de user couvrent toutes celles du rôle."""
        with self._lock:
            perms = self._permissions.get(user)
            role_data = self._roles.get(role)
            if perms is None or role_data is None:
                return False
            return role_data.permissions <= perms

    def requires_approval(self, action: str) -> bool:
        return action in APPROVAL_REQUIRED

    def get_action_risk_level(self, action: str) -> ImpactLevel:
        return RISK_LEVELS.get(action, ImpactLevel.LOW)

    def _log_check(self, action: str, user: str, granted: bool, reason: str) -> None:
        self._checks.append(
            PermissionCheck(action=action, user=user, granted=granted, reason=reason)
        )
        if len(self._checks) > self._settings.permission_history_max:
            keep = self._settings.permission_history_keep
            while len(self._checks) > keep:
                self._checks.popleft()

        status = "granted" if granted else "denied"
        self.logger.debug(
            f"Permission check {status}: {user} -> {action} "
            f"({self.get_action_risk_level(action).value}) - {reason}"
        )

    # ──────────────────────────────────────────────────────
    # MODIFICATIONS (super_admin uniquement)
    # ──────────────────────────────────────────────────────

    def grant_permission(self, user: str, action: str, granted_by: str) -> bool:
        with self._lock:
            if not self.has_role(granted_by, SUPER_ADMIN):
                self._deny("grant_permission", granted_by, {"user": user, "permission": action})
                return False
            self._permissions.setdefault(user, set()).add(action)

        self.logger.info(f"Permission '{action}' granted to {user} by {granted_by}")
        self._audit_change("grant_permission", granted_by, {"user": user, "permission": action})
        return True

    def revoke_permission(self, user: str, action: str, revoked_by: str) -> bool:
        with self._lock:
            if not self.has_role(revoked_by, SUPER_ADMIN):
                self._deny("revoke_permission", revoked_by, {"user": user, "permission": action})
                return False
            perms = self._permissions.get(user)
            if perms is None or action not in perms:
                return False
            perms.discard(action)

        self.logger.info(f"Permission '{action}' revoked from {user} by {revoked_by}")
        self._audit_change("revoke_permission", revoked_by, {"user": user, "permission": action})
        return True

    def assign_role(self, user: str, role: str, assigned_by: str) -> bool:
        """Remplace les permissions de user par celles du rôle."""
        with self._lock:
            if not self.has_role(assigned_by, SUPER_ADMIN):
                self._deny("assign_role", assigned_by, {"user": user, "role": role})
                return False
            role_data = self._roles.get(role)
            if role_data is None:
                self.logger.warning(f"Role '{role}' not found")
                return False
            self._permissions[user] = set(role_data.permissions)

        self.logger.info(f"Role '{role}' assigned to {user} by {assigned_by}")
        self._audit_change("assign_role", assigned_by, {"user": user, "role": role})
        return True

    def import_permissions(self, data: PermissionExport | dict[str, Any], imported_by: str) -> bool:
        """Restaure les permissions utilisateurs d'une sauvegarde."""
        try:
            backup = (
                data if isinstance(data, PermissionExport)
                else PermissionExport.model_validate(data)
            )
        except ValueError as e:
            self.logger.error(f"Invalid permission backup from {imported_by}: {e}")
            return False

        with self._lock:
            if not self.has_role(imported_by, SUPER_ADMIN):
                self._deny("import_permissions", imported_by, {"users": len(backup.users)})
                return False
            for user, perms in backup.users.items():
                self._permissions[user] = set(perms)

        self.logger.info(f"Permissions imported by {imported_by} ({len(backup.users)} users)")
        self._audit_change(
            "import_permissions", imported_by, {"users": sorted(backup.users)}
        )
        return True

    def _deny(self, operation: str, actor: str, details: dict[str, Any]) -> None:
        self.logger.warning(f"{actor} attempted {operation} without super admin role")
        if self._audit is not None:
            self._audit.record(
                actor,
                f"security_{operation}_denied",
                {"success": False, **details},
                category=AuditCategory.SECURITY,
                level=AuditLevel.WARNING,
            )

    def _audit_change(self, operation: str, actor: str, details: dict[str, Any]) -> None:
        if self._audit is not None:
            self._audit.record(
                actor,
                f"security_{operation}",
                {"success": True, **details},
                category=AuditCategory.SECURITY,
                level=AuditLevel.INFO,
            )

    # ──────────────────────────────────────────────────────
    # INTROSPECTION
    # ──────────────────────────────────────────────────────

    def get_user_permissions(self, user: str) -> list[str]:
        with self._lock:
            return sorted(self._permissions.get(user, set()))

    def get_available_roles(self) -> list[Role]:
        return list(self._roles.values())

    def get_user_role(self, user: str) -> str | None:
        """Premier rôle (ordre de déclaration) entièrement couvert par user."""
        with self._lock:
            perms = self._permissions.get(user)
            if perms is None:
                return None
            for key, role in self._roles.items():
                if role.permissions <= perms:
                    return key
        return None

    def get_permission_audit(self, limit: int = 50) -> list[PermissionCheck]:
        with self._lock:
            return list(self._checks)[-limit:]

    def get_system_stats(self) -> dict[str, Any]:
        with self._lock:
            users = list(self._permissions)
            return {
                "total_users": len(users),
                "total_roles": len(self._roles),
                "total_permissions": sum(len(p) for p in self._permissions.values()),
                "recent_checks": len(self._checks),
                "user_breakdown": {u: self.get_user_role(u) or "custom" for u in users},
            }

    def export_permissions(self) -> PermissionExport:
        with self._lock:
            return PermissionExport(
                users={u: sorted(p) for u, p in self._permissions.items()},
                roles=dict(self._roles),
            )
