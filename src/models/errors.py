"""
Erreurs du pipeline de gouvernance.

Aucune de ces erreurs ne traverse une frontière de composant :
le registre, le gate, le logger et l'engine les capturent et les
transforment en ExecutionResult ou en AuditRecord.
"""

from __future__ import annotations

from typing import Optional

from models.action import FailureReason


class GovernanceError(Exception):
    """Erreur générique du pipeline."""

    def __init__(
        self,
        message: str,
        recoverable: bool = True,
        raw_error: Optional[Exception] = None,
    ):
        self.message = message
        self.recoverable = recoverable
        self.raw_error = raw_error
        super().__init__(message)


class ActionValidationError(GovernanceError):
    """Paramètres mal formés. Retourné immédiatement, jamais retenté."""

    def __init__(self, action: str, detail: str = "Invalid parameters"):
        self.action = action
        super().__init__(message=f"[{action}] {detail}", recoverable=False)


class AuthorizationError(GovernanceError):
    """Refus du PermissionGate."""

    def __init__(self, action: str, user: str):
        self.action = action
        self.user = user
        super().__init__(
            message=f"User '{user}' is not authorized for '{action}'",
            recoverable=False,
        )


class ExecutionError(GovernanceError):
    """Échec d'une capability (timeout inclus)."""

    reason: FailureReason = FailureReason.EXECUTION_FAILED

    def __init__(
        self,
        action: str,
        message: str,
        raw_error: Optional[Exception] = None,
    ):
        self.action = action
        super().__init__(message=message, recoverable=True, raw_error=raw_error)


class UnknownActionError(ExecutionError):
    reason = FailureReason.NOT_FOUND

    def __init__(self, action: str, kind: str = "action"):
        super().__init__(action=action, message=f"{kind.capitalize()} '{action}' not found")


class ActionTimeoutError(ExecutionError):
    reason = FailureReason.TIMEOUT

    def __init__(self, action: str, timeout_seconds: float):
        self.timeout_seconds = timeout_seconds
        super().__init__(
            action=action,
            message=f"Action '{action}' timed out after {timeout_seconds:g}s",
        )


class AuditWriteFailure(GovernanceError):
    """Écriture du store d'audit en échec. Bufferisé et retenté, jamais remonté."""

    def __init__(self, count: int, raw_error: Optional[Exception] = None):
        self.count = count
        super().__init__(
            message=f"Failed to write {count} audit records",
            recoverable=True,
            raw_error=raw_error,
        )
