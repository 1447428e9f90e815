"""Tests for the permission gate."""

from __future__ import annotations

from models.action import ImpactLevel
from models.audit import AuditCategory, AuditLevel
from security.permissions import APPROVAL_REQUIRED, DEFAULT_ROLES, PermissionGate


class TestAuthorization:

    def test_unknown_user_is_denied(self, gate):
        assert gate.is_authorized("pluginSummarizer", "nobody") is False

    def test_unknown_user_produces_exactly_one_check(self, gate):
        before = len(gate.get_permission_audit(limit=1000))
        gate.is_authorized("restartAgent", "guest")

        checks = gate.get_permission_audit(limit=1000)
        assert len(checks) == before + 1
        assert checks[-1].granted is False
        assert checks[-1].reason == "User not found in permission system"

    def test_super_admin_bootstrap(self, gate):
        assert gate.is_authorized("restartAgent", "han") is True
        assert gate.has_role("han", "super_admin")
        assert gate.get_user_role("han") == "super_admin"

    def test_assigned_role_permissions(self, gate):
        assert gate.assign_role("bob", "user", "han")
        assert gate.is_authorized("pluginSummarizer", "bob")
        assert not gate.is_authorized("clearCache", "bob")
        assert gate.get_user_role("bob") == "user"

    def test_guest_role_has_no_permissions(self, gate):
        gate.assign_role("visitor", "guest", "han")
        assert gate.get_user_permissions("visitor") == []
        assert not gate.is_authorized("pluginSummarizer", "visitor")

    def test_check_ring_buffer_is_trimmed(self, gate, settings):
        for i in range(settings.permission_history_max + 1):
            gate.is_authorized("pluginSummarizer", f"user{i}")
        assert len(gate.get_permission_audit(limit=1000)) == settings.permission_history_keep


class TestClassification:

    def test_requires_approval_table(self, gate):
        for action in APPROVAL_REQUIRED:
            assert gate.requires_approval(action)
        assert not gate.requires_approval("pluginSummarizer")

    def test_risk_levels(self, gate):
        assert gate.get_action_risk_level("restartAgent") == ImpactLevel.CRITICAL
        assert gate.get_action_risk_level("clearCache") == ImpactLevel.HIGH
        assert gate.get_action_risk_level("systemDiagnostic") == ImpactLevel.MEDIUM
        assert gate.get_action_risk_level("pluginTranslator") == ImpactLevel.LOW


class TestAdministration:

    def test_grant_revoke_round_trip(self, gate):
        assert gate.grant_permission("carol", "backupSystem", "han")
        assert gate.is_authorized("backupSystem", "carol")

        assert gate.revoke_permission("carol", "backupSystem", "han")
        assert not gate.is_authorized("backupSystem", "carol")

    def test_revoke_missing_permission_returns_false(self, gate):
        assert gate.revoke_permission("carol", "backupSystem", "han") is False

    def test_non_super_admin_cannot_grant(self, gate):
        gate.assign_role("admin", "admin", "han")
        assert gate.grant_permission("carol", "restartAgent", "admin") is False
        assert not gate.is_authorized("restartAgent", "carol")

    def test_unknown_role_is_rejected(self, gate):
        assert gate.assign_role("carol", "wizard", "han") is False

    async def test_changes_are_audited(self, gate, audit_logger):
        gate.grant_permission("carol", "backupSystem", "han")
        gate.grant_permission("carol", "restartAgent", "carol")

        page = await audit_logger.get_audit_logs()
        actions = {r.action: r for r in page.logs}

        granted = actions["security_grant_permission"]
        assert granted.category == AuditCategory.SECURITY
        assert granted.level == AuditLevel.INFO
        assert granted.actor == "han"

        denied = actions["security_grant_permission_denied"]
        assert denied.level == AuditLevel.WARNING
        assert denied.actor == "carol"

    def test_export_import(self, settings, gate):
        gate.assign_role("bob", "admin", "han")
        backup = gate.export_permissions()
        assert "bob" in backup.users

        restored = PermissionGate(settings)
        assert restored.import_permissions(backup.model_dump(), "han")
        assert restored.get_user_role("bob") == "admin"

    def test_import_requires_super_admin(self, settings, gate):
        backup = gate.export_permissions()
        restored = PermissionGate(settings)
        assert restored.import_permissions(backup, "bob") is False

    def test_import_rejects_malformed_data(self, gate):
        assert gate.import_permissions({"users": "not-a-mapping"}, "han") is False

    def test_system_stats(self, gate):
        gate.assign_role("bob", "user", "han")
        gate.grant_permission("dave", "getPersona", "han")

        stats = gate.get_system_stats()
        assert stats["total_users"] == 3
        assert stats["total_roles"] == len(DEFAULT_ROLES)
        assert stats["user_breakdown"]["bob"] == "user"
        assert stats["user_breakdown"]["dave"] == "guest"
