"""Shared fixtures for actiongate tests."""

from __future__ import annotations

from typing import Any

import pytest

from executor.commands import CommandRouter
from executor.registry import Capability, CapabilityRegistry
from models.action import ActionKind, ExecutionRequest, ImpactLevel
from models.errors import AuditWriteFailure
from orchestrator.engine import GovernanceEngine, build_engine
from security.permissions import PermissionGate
from services.audit import AuditLogger
from services.audit_store import MemoryAuditStore
from services.config import LLMProvider, Settings
from services.llm.client import LLMResponse
from services.store import MemoryKeyValueStore


class FakeModel:
    """ConversationModel scripted for tests."""

    def __init__(self, reply: str = "Hello from the model", success: bool = True):
        self.reply = reply
        self.success = success
        self.calls: list[dict[str, Any]] = []

    async def complete(self, messages, session_id=None, system=None, max_tokens=None):
        self.calls.append(
            {"messages": messages, "session_id": session_id, "system": system}
        )
        return LLMResponse(
            provider=LLMProvider.CLAUDE,
            model="fake-model",
            content=self.reply if self.success else "",
            session_id=session_id,
            input_tokens=12,
            output_tokens=8,
            success=self.success,
            error=None if self.success else "provider down",
        )


class FlakyAuditStore(MemoryAuditStore):
    """Fails the first `failures` appends, then behaves normally."""

    def __init__(self, failures: int = 1):
        super().__init__()
        self.failures = failures

    async def append(self, records):
        if self.failures > 0:
            self.failures -= 1
            raise AuditWriteFailure(len(records))
        await super().append(records)


def make_capability(
    name: str,
    handler=None,
    validate=None,
    kind: ActionKind = ActionKind.PLUGIN,
    impact: ImpactLevel = ImpactLevel.LOW,
    **kwargs: Any,
) -> Capability:
    async def echo(params: dict[str, Any]) -> dict[str, Any]:
        return {"echo": params}

    return Capability(
        name=name,
        validate=validate or (lambda p: True),
        execute=handler or echo,
        kind=kind,
        impact=impact,
        **kwargs,
    )


@pytest.fixture
def settings() -> Settings:
    return Settings(
        _env_file=None,
        super_admin_users=["han"],
        execution_timeout_seconds=1.0,
        execution_history_max=5,
        execution_history_keep=3,
        permission_history_max=10,
        permission_history_keep=5,
        audit_flush_interval_seconds=60.0,
    )


@pytest.fixture
def audit_store() -> MemoryAuditStore:
    return MemoryAuditStore()


@pytest.fixture
def audit_logger(settings, audit_store) -> AuditLogger:
    return AuditLogger(settings, store=audit_store)


@pytest.fixture
def kv_store() -> MemoryKeyValueStore:
    return MemoryKeyValueStore()


@pytest.fixture
def gate(settings, audit_logger) -> PermissionGate:
    return PermissionGate(settings, audit_logger=audit_logger)


@pytest.fixture
def registry(settings) -> CapabilityRegistry:
    return CapabilityRegistry(settings, label="plugin")


@pytest.fixture
def router(settings, kv_store) -> CommandRouter:
    return CommandRouter(settings, store=kv_store)


@pytest.fixture
def model() -> FakeModel:
    return FakeModel()


@pytest.fixture
def engine(settings, audit_store, kv_store, model) -> GovernanceEngine:
    engine = build_engine(settings, audit_store=audit_store, kv_store=kv_store, model=model)
    engine.gate.assign_role("admin", "admin", "han")
    engine.gate.assign_role("alice", "user", "han")
    return engine


@pytest.fixture
def make_request():
    def _make(text: str, user: str = "admin", **kwargs: Any) -> ExecutionRequest:
        return ExecutionRequest(input=text, user=user, session_id="sess_test", **kwargs)

    return _make
