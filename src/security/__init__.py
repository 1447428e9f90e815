"""
actiongate Security — Autorisations.

  PermissionGate → rôles, permissions, classification d'approbation
"""

from security.permissions import (
    APPROVAL_REQUIRED,
    DEFAULT_ROLES,
    RISK_LEVELS,
    PermissionGate,
)

__all__ = [
    "APPROVAL_REQUIRED",
    "DEFAULT_ROLES",
    "RISK_LEVELS",
    "PermissionGate",
]
