"""Tests for the audit logger and audit stores."""

from __future__ import annotations

import asyncio
from datetime import datetime, timedelta

from models.audit import AuditCategory, AuditFilter, AuditLevel, AuditRecord, HealthStatus
from services.audit import AuditLogger, infer_category, infer_level
from services.audit_store import MemoryAuditStore
from tests.conftest import FlakyAuditStore


def old_record(days: int, **kwargs) -> AuditRecord:
    return AuditRecord(
        actor=kwargs.pop("actor", "han"),
        action=kwargs.pop("action", "chat"),
        timestamp=datetime.utcnow() - timedelta(days=days),
        **kwargs,
    )


class TestInference:

    def test_category_from_prefix(self):
        assert infer_category("plugin_pluginSummarizer") == AuditCategory.PLUGIN
        assert infer_category("command_clearCache") == AuditCategory.COMMAND
        assert infer_category("external_api_getPersona") == AuditCategory.EXTERNAL_API
        assert infer_category("security_grant_permission") == AuditCategory.SECURITY
        assert infer_category("chat") == AuditCategory.CHAT
        assert infer_category("execution_start") == AuditCategory.SYSTEM

    def test_level_from_action_and_result(self):
        assert infer_level("security_login", None) == AuditLevel.WARNING
        assert infer_level("plugin_x", {"success": False}) == AuditLevel.ERROR
        assert infer_level("command_clearCache", {"success": True}) == AuditLevel.WARNING
        assert infer_level("chat", None) == AuditLevel.INFO


class TestBuffering:

    async def test_info_is_buffered(self, audit_logger, audit_store):
        await audit_logger.log_action("han", "chat", {"ok": True})
        assert audit_logger.pending_count == 1
        assert len(audit_store) == 0

    async def test_critical_is_flushed_before_return(self, audit_logger, audit_store):
        record_id = await audit_logger.log_action(
            "han", "command_restartAgent", level=AuditLevel.CRITICAL
        )
        assert record_id in audit_store
        assert audit_logger.pending_count == 0

    async def test_error_flushes_earlier_records_too(self, audit_logger, audit_store):
        first = await audit_logger.log_action("han", "chat")
        second = await audit_logger.log_action("han", "plugin_x", {"success": False})
        assert first in audit_store
        assert second in audit_store

    async def test_failed_flush_requeues_in_order(self, settings):
        store = FlakyAuditStore(failures=1)
        audit = AuditLogger(settings, store=store)
        ids = [await audit.log_action("han", f"chat_{i}") for i in range(3)]

        assert await audit.flush() == 0
        assert audit.pending_count == 3
        assert audit.stats["failed_flushes"] == 1

        assert await audit.flush() == 3
        assert all(record_id in store for record_id in ids)

    async def test_critical_with_store_down_stays_pending(self, settings):
        store = FlakyAuditStore(failures=1)
        audit = AuditLogger(settings, store=store)
        record_id = await audit.log_action("han", "chat", level=AuditLevel.CRITICAL)

        assert record_id not in store
        assert audit.pending_count == 1

    async def test_duplicate_delivery_is_idempotent(self, audit_store):
        record = AuditRecord(actor="han", action="chat")
        await audit_store.append([record])
        await audit_store.append([record])
        assert len(audit_store) == 1

    async def test_batches(self, settings, audit_store):
        audit = AuditLogger(settings.model_copy(update={"audit_batch_size": 2}), store=audit_store)
        for i in range(5):
            audit.record("han", f"chat_{i}")
        assert await audit.flush() == 5
        assert audit_store.append_calls == 3

    async def test_worker_flushes_on_critical(self, audit_logger, audit_store):
        audit_logger.start()
        try:
            entry = audit_logger.record("han", "chat", level=AuditLevel.CRITICAL)
            for _ in range(50):
                if entry.id in audit_store:
                    break
                await asyncio.sleep(0.01)
            assert entry.id in audit_store
        finally:
            await audit_logger.close()
        assert not audit_logger.is_running

    async def test_close_flushes_pending(self, audit_logger, audit_store):
        audit_logger.start()
        await audit_logger.log_action("han", "chat")
        await audit_logger.close()
        assert len(audit_store) == 1


class TestQueries:

    async def test_pagination(self, audit_logger):
        for i in range(5):
            await audit_logger.log_action("han", f"chat_{i}")

        page = await audit_logger.get_audit_logs(AuditFilter(limit=2))
        assert page.total == 5
        assert len(page.logs) == 2
        assert page.has_more

        last = await audit_logger.get_audit_logs(AuditFilter(limit=2, offset=4))
        assert len(last.logs) == 1
        assert not last.has_more

    async def test_filters(self, audit_logger):
        await audit_logger.log_chat("alice", "hi", "hello", session_id="s1")
        await audit_logger.log_security_event("bob", "login_failed")
        await audit_logger.log_plugin_execution("alice", "pluginSummarizer", {}, {"success": True})

        assert len(await audit_logger.get_user_actions("alice")) == 2
        assert len(await audit_logger.get_session_logs("s1")) == 1

        page = await audit_logger.get_audit_logs(AuditFilter(category=AuditCategory.SECURITY))
        assert [r.action for r in page.logs] == ["security_login_failed"]

        page = await audit_logger.get_audit_logs(AuditFilter(action="Summarizer"))
        assert page.total == 1

    async def test_stats(self, audit_logger):
        await audit_logger.log_chat("alice", "hi", "hello")
        await audit_logger.log_chat("alice", "again", "hello")
        await audit_logger.log_api_execution("bob", "getPersona", {}, {"success": False})

        stats = await audit_logger.get_audit_stats(days=7)
        assert stats.total_logs == 3
        assert stats.logs_by_category == {"chat": 2, "external_api": 1}
        assert stats.logs_by_level == {"info": 2, "error": 1}
        assert stats.logs_by_actor == {"alice": 2, "bob": 1}
        assert stats.top_actions[0].action == "chat"
        assert stats.top_actions[0].count == 2

    async def test_search(self, audit_logger):
        await audit_logger.log_action("han", "chat", metadata={"topic": "weather"})
        await audit_logger.log_action("han", "chat", metadata={"topic": "billing"})
        results = await audit_logger.search_audit_logs("WEATHER")
        assert len(results) == 1

    async def test_export(self, audit_logger):
        for i in range(3):
            await audit_logger.log_action("han", f"chat_{i}")
        export = await audit_logger.export_audit_logs(AuditFilter(limit=1))
        assert export.total_count == 3
        assert len(export.data) == 3
        assert export.filter.limit == 1


class TestRetention:

    async def test_cleanup_deletes_old_records_and_audits_itself(self, audit_logger, audit_store):
        await audit_store.append([old_record(40), old_record(10)])

        deleted = await audit_logger.cleanup_old_logs(30, requested_by="han")
        assert deleted == 1

        page = await audit_logger.get_audit_logs(AuditFilter(action="system_audit_cleanup"))
        (entry,) = page.logs
        assert entry.actor == "han"
        assert entry.level == AuditLevel.WARNING
        assert entry.metadata["days_to_keep"] == 30

    async def test_cleanup_failure_is_audited(self, settings):
        class BrokenDeleteStore(MemoryAuditStore):
            async def delete_before(self, cutoff):
                raise RuntimeError("table locked")

        store = BrokenDeleteStore()
        audit = AuditLogger(settings, store=store)
        assert await audit.cleanup_old_logs(30) == 0

        (entry,) = await store.query(AuditFilter(action="system_audit_cleanup"))
        assert entry.level == AuditLevel.ERROR


class TestHealth:

    async def test_healthy(self, audit_logger):
        await audit_logger.log_action("han", "chat")
        health = await audit_logger.get_system_health()
        assert health.status == HealthStatus.HEALTHY
        assert health.issues == []
        assert health.error_rate == 0.0

    async def test_no_activity(self, audit_logger):
        health = await audit_logger.get_system_health()
        assert health.status == HealthStatus.WARNING
        assert health.issues == ["No system activity in the last hour"]

    async def test_critical_events(self, audit_logger):
        await audit_logger.log_action("han", "chat")
        await audit_logger.log_action("han", "command_restartAgent", level=AuditLevel.CRITICAL)

        health = await audit_logger.get_system_health()
        assert health.status == HealthStatus.CRITICAL
        assert health.critical_events == 1
        assert health.error_rate == 50.0
        assert "1 critical events in last 24 hours" in health.issues
        assert "High error rate: 50.00%" in health.issues

    async def test_error_rate_warning(self, audit_logger):
        for _ in range(7):
            await audit_logger.log_action("han", "chat")
        await audit_logger.log_action("han", "plugin_x", level=AuditLevel.ERROR)

        health = await audit_logger.get_system_health()
        assert health.error_rate == 12.5
        assert health.status == HealthStatus.WARNING

    async def test_store_failure_reports_critical(self, settings):
        class BrokenCountStore(MemoryAuditStore):
            async def count(self, audit_filter):
                raise RuntimeError("connection reset")

        audit = AuditLogger(settings, store=BrokenCountStore())
        health = await audit.get_system_health()
        assert health.status == HealthStatus.CRITICAL
        assert health.issues == ["Failed to analyze system health"]
        assert health.error_rate == 100
