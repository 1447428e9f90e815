"""
Permission : rôles et traces de vérification.

Un Role est un ensemble nommé de permissions (noms d'actions).
Un PermissionCheck est la trace locale d'UN appel à is_authorized().
"""

from __future__ import annotations

from datetime import datetime

from pydantic import BaseModel, Field


SUPER_ADMIN = "super_admin"


class Role(BaseModel):
    """Rôle système."""
    key: str = Field(..., description="Identifiant : super_admin, admin, user, guest")
    name: str
    permissions: frozenset[str] = Field(default_factory=frozenset)
    description: str = ""

    model_config = {"frozen": True}


class PermissionCheck(BaseModel):
    """Trace d'une vérification d'autorisation (buffer circulaire)."""
    action: str
    user: str
    granted: bool
    timestamp: datetime = Field(default_factory=datetime.utcnow)
    reason: str | None = None


class PermissionExport(BaseModel):
    """Sauvegarde des permissions."""
    users: dict[str, list[str]] = Field(default_factory=dict)
    roles: dict[str, Role] = Field(default_factory=dict)
    timestamp: datetime = Field(default_factory=datetime.utcnow)
