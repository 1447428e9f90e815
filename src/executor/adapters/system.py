"""
System Adapter — Commandes système privilégiées.

Commandes (kind = system_command) :
  - restartAgent     critical   {reason?, initiatedBy?}
  - clearCache       medium     {clearedBy?}
  - restartModels    high       {}
  - updateConfig     medium     {config: {...}}
  - backupSystem     low        {}
  - cleanupLogs      low        {days?: int}
  - runShellCommand  high       {command, type: system|file|network}

Les traces d'état (statut, dernier redémarrage, config) sont
écrites dans le KeyValueStore, catégorie "system" ou "config".
"""

from __future__ import annotations

import asyncio
import logging
import shlex
from datetime import datetime
from typing import Any

from executor.adapters.database import DatabaseManagerAdapter
from executor.registry import Capability
from models.action import ActionKind, ImpactLevel
from models.errors import ActionTimeoutError, ExecutionError
from services.audit import AuditLogger
from services.llm import LLMClient
from services.store import KeyValueStore


logger = logging.getLogger("actiongate.executor.system")


# ══════════════════════════════════════════════════════════════
# SHELL : ALLOW-LISTS
# ══════════════════════════════════════════════════════════════

DANGEROUS_PATTERNS = (
    "rm -rf",
    "sudo rm",
    "format",
    "del /f",
    "shutdown",
    "reboot",
    "passwd",
    "su ",
    "sudo su",
    "chmod 777",
    "chown",
    "dd if=",
    "mkfs",
    "fdisk",
    "iptables",
    "crontab",
    "systemctl",
    "service",
    "init ",
    "killall",
    "pkill",
)

ALLOWED_COMMANDS: dict[str, frozenset[str]] = {
    "system": frozenset({"ls", "ps", "whoami", "pwd", "date", "uptime", "df", "free", "uname"}),
    "file": frozenset({"cat", "echo", "mkdir", "touch", "head", "tail", "grep", "find"}),
    "network": frozenset({"ping", "curl", "wget", "nslookup", "dig"}),
}

# Options qui exécutent du code ou écrivent des fichiers.
# find : préfixes (-fprint couvre -fprint0 et -fprintf).
# curl / wget : options exactes, forme --opt=valeur, et lettres d'un groupe court (-sSo).
DENIED_FLAGS: dict[str, tuple[str, ...]] = {
    "find": ("-exec", "-execdir", "-ok", "-okdir", "-delete", "-fprint", "-fls"),
    "curl": (
        "-o", "--output", "-O", "--remote-name", "--remote-name-all",
        "-T", "--upload-file", "-K", "--config",
    ),
    "wget": (
        "-o", "--output-file", "-O", "--output-document", "-a", "--append-output",
        "--post-file", "--body-file", "-i", "--input-file",
    ),
}

# Options curl dont la valeur "@fichier" (ou "champ=@fichier") lit un fichier local
CURL_DATA_FLAGS = (
    "-d", "--data", "--data-binary", "--data-urlencode", "--json", "-F", "--form",
)

SHELL_TIMEOUT_SECONDS = 30.0
SHELL_MAX_OUTPUT_BYTES = 1024 * 1024


def _reads_local_file(value: str) -> bool:
    return value.startswith(("@", "<")) or "=@" in value or "=<" in value


def find_denied_flag(argv: list[str]) -> str | None:
    """Première option interdite de argv, ou None."""
    program, args = argv[0], argv[1:]
    denied = DENIED_FLAGS.get(program, ())

    for i, token in enumerate(args):
        if program == "find":
            for flag in denied:
                if token.startswith(flag):
                    return token
            continue

        if not token.startswith("-"):
            continue
        option = token.split("=", 1)[0]
        if option in denied:
            return option
        if not token.startswith("--"):
            for flag in denied:
                if len(flag) == 2 and flag[1] in token[1:]:
                    return flag

        if program == "curl":
            for flag in CURL_DATA_FLAGS:
                if token == flag:
                    value = args[i + 1] if i + 1 < len(args) else ""
                elif token.startswith(flag + "=") or (len(flag) == 2 and token.startswith(flag)):
                    value = token[len(flag):].lstrip("=")
                else:
                    continue
                if _reads_local_file(value):
                    return flag
    return None


def check_shell_command(command: str, command_type: str) -> tuple[bool, str | None]:
    """(safe, reason). Refuse tout ce qui n'est pas explicitement autorisé."""
    lowered = command.lower()
    for pattern in DANGEROUS_PATTERNS:
        if pattern in lowered:
            return False, f"Command contains potentially dangerous operation: {pattern}"

    if command_type == "database":
        return False, "Database operations must go through the database plugin, not the shell"

    allowed = ALLOWED_COMMANDS.get(command_type)
    if allowed is None:
        return False, f"Unknown command type '{command_type}'"

    try:
        argv = shlex.split(command)
    except ValueError as e:
        return False, f"Unparseable command: {e}"
    if not argv:
        return False, "Empty command"
    if argv[0] not in allowed:
        return False, f"{command_type.capitalize()} command '{argv[0]}' is not in the allowed list"

    flag = find_denied_flag(argv)
    if flag is not None:
        return False, f"Option '{flag}' is not allowed for '{argv[0]}'"
    return True, None


def _validate_shell(params: dict[str, Any]) -> bool:
    command = params.get("command")
    if not isinstance(command, str):
        return False
    safe, reason = check_shell_command(command, params.get("type", "system"))
    if not safe:
        logger.warning(f"Shell command refused: {reason}")
    return safe


def _validate_cleanup(params: dict[str, Any]) -> bool:
    days = params.get("days", 30)
    return isinstance(days, int) and not isinstance(days, bool) and days >= 1


def _validate_config(params: dict[str, Any]) -> bool:
    config = params.get("config")
    return isinstance(config, dict) and bool(config)


def _now() -> str:
    return datetime.utcnow().isoformat()


# ══════════════════════════════════════════════════════════════
# COMMANDES
# ══════════════════════════════════════════════════════════════


class SystemCommands:
    """
    Implémentations des commandes système.

    Usage :
        commands = SystemCommands(store, audit_logger=audit, models=llm)
        for command in commands.capabilities():
            router.register_command(command)
    """

    def __init__(
        self,
        store: KeyValueStore,
        audit_logger: AuditLogger | None = None,
        models: LLMClient | None = None,
        database: DatabaseManagerAdapter | None = None,
    ) -> None:
        self._store = store
        self._audit = audit_logger
        self._models = models
        self._database = database

    async def restart_agent(self, params: dict[str, Any]) -> dict[str, Any]:
        logger.warning("Agent restart initiated")
        await self._store.set(
            "agent_restart_initiated",
            {
                "timestamp": _now(),
                "reason": params.get("reason", "Manual restart requested"),
                "initiated_by": params.get("initiatedBy", "system"),
            },
            category="system",
        )
        await self._store.set(
            "system_status", {"status": "restarting", "timestamp": _now()}, category="system"
        )

        temp_cleared = await self._store.clear("temp")
        services = ["Local Storage", "Cache System"]
        if self._models is not None:
            self._models.reset()
            services.insert(0, "AI Models")

        restarted_at = _now()
        await self._store.set(
            "agent_restart_completed",
            {"timestamp": restarted_at, "success": True},
            category="system",
        )
        await self._store.set(
            "system_status",
            {"status": "active", "timestamp": restarted_at, "last_restart": restarted_at},
            category="system",
        )
        return {
            "message": "Agent restarted successfully",
            "timestamp": restarted_at,
            "services_restarted": services,
            "temp_entries_cleared": temp_cleared,
        }

    async def clear_cache(self, params: dict[str, Any]) -> dict[str, Any]:
        expired = await self._store.cleanup()
        cleared = await self._store.clear("cache")
        await self._store.set(
            "cache_cleared",
            {
                "timestamp": _now(),
                "cleared_entries": expired + cleared,
                "cleared_by": params.get("clearedBy", "system"),
            },
            category="system",
        )
        logger.info(f"Cache cleared: {cleared} cached, {expired} expired")
        return {
            "message": "Cache cleared successfully",
            "cleared_entries": expired + cleared,
            "expired_entries": expired,
            "cache_entries": cleared,
        }

    async def restart_models(self, params: dict[str, Any]) -> dict[str, Any]:
        if self._models is None:
            raise ExecutionError("restartModels", "No conversation model configured")
        providers = self._models.reset()
        await self._store.set(
            "models_restarted",
            {"timestamp": _now(), "providers": providers},
            category="system",
        )
        return {"message": "AI models restarted successfully", "providers": providers}

    async def update_config(self, params: dict[str, Any]) -> dict[str, Any]:
        config = dict(params["config"])
        current = await self._store.get("system_config") or {}
        current.update(config)
        current["last_updated"] = _now()
        current["updated_by"] = params.get("updatedBy", "system")
        await self._store.set("system_config", current, category="config")
        return {
            "message": "Configuration updated successfully",
            "updated_keys": sorted(config),
            "config": current,
        }

    async def backup_system(self, params: dict[str, Any]) -> dict[str, Any]:
        if self._database is not None:
            backup = await self._database.backup("system")
            return {"message": "System backup created successfully", **backup}
        snapshot = await self._store.snapshot(exclude_categories={"backup"})
        return {
            "message": "System snapshot taken (no backup target configured)",
            "entries": len(snapshot),
            "timestamp": _now(),
        }

    async def cleanup_logs(self, params: dict[str, Any]) -> dict[str, Any]:
        days = params.get("days", 30)
        if self._audit is None:
            raise ExecutionError("cleanupLogs", "No audit logger configured")
        deleted = await self._audit.cleanup_old_logs(
            days, requested_by=params.get("requestedBy", "system")
        )
        return {
            "message": "System logs cleaned up successfully",
            "days": days,
            "deleted_entries": deleted,
        }

    async def run_shell_command(self, params: dict[str, Any]) -> dict[str, Any]:
        """Exécute SANS shell (pas d'interprétation de ; | && $)."""
        argv = shlex.split(params["command"])
        process = await asyncio.create_subprocess_exec(
            *argv,
            stdout=asyncio.subprocess.PIPE,
            stderr=asyncio.subprocess.PIPE,
        )
        try:
            stdout, stderr = await asyncio.wait_for(
                process.communicate(), timeout=SHELL_TIMEOUT_SECONDS
            )
        except asyncio.TimeoutError:
            process.kill()
            await process.wait()
            raise ActionTimeoutError("runShellCommand", SHELL_TIMEOUT_SECONDS) from None

        output = stdout[:SHELL_MAX_OUTPUT_BYTES].decode("utf-8", errors="replace")
        errors = stderr[:SHELL_MAX_OUTPUT_BYTES].decode("utf-8", errors="replace")
        if process.returncode != 0:
            raise ExecutionError(
                "runShellCommand",
                f"Command exited with status {process.returncode}: {errors.strip()}",
            )
        return {
            "command": params["command"],
            "exit_code": process.returncode,
            "output": output,
            "stderr": errors,
            "truncated": len(stdout) > SHELL_MAX_OUTPUT_BYTES,
        }

    def capabilities(self) -> list[Capability]:
        command = ActionKind.SYSTEM_COMMAND
        return [
            Capability(
                name="restartAgent",
                validate=lambda p: True,
                execute=self.restart_agent,
                description="Restart the agent and its services",
                kind=command,
                impact=ImpactLevel.CRITICAL,
                category="system",
                affected_services=("AI Models", "Local Storage", "Cache System", "API Endpoints"),
            ),
            Capability(
                name="clearCache",
                validate=lambda p: True,
                execute=self.clear_cache,
                description="Clear cached and expired entries",
                kind=command,
                impact=ImpactLevel.MEDIUM,
                category="maintenance",
                affected_services=("Local Storage", "Memory Cache", "API Response Cache"),
            ),
            Capability(
                name="restartModels",
                validate=lambda p: True,
                execute=self.restart_models,
                description="Reconnect the conversation model providers",
                kind=command,
                impact=ImpactLevel.HIGH,
                category="ai",
                affected_services=("AI Models", "Chat API", "Completion API"),
            ),
            Capability(
                name="updateConfig",
                validate=_validate_config,
                execute=self.update_config,
                description="Update the stored system configuration",
                kind=command,
                impact=ImpactLevel.MEDIUM,
                category="config",
                affected_services=("Configuration Service", "All Services"),
            ),
            Capability(
                name="backupSystem",
                validate=lambda p: True,
                execute=self.backup_system,
                description="Create a system backup",
                kind=command,
                impact=ImpactLevel.LOW,
                category="maintenance",
                affected_services=("Local Storage", "Database", "File System"),
            ),
            Capability(
                name="cleanupLogs",
                validate=_validate_cleanup,
                execute=self.cleanup_logs,
                description="Delete audit records older than N days",
                kind=command,
                impact=ImpactLevel.LOW,
                category="maintenance",
                affected_services=("Database", "Audit System", "Log Storage"),
            ),
            Capability(
                name="runShellCommand",
                validate=_validate_shell,
                execute=self.run_shell_command,
                description="Run an allow-listed diagnostic command",
                kind=command,
                impact=ImpactLevel.HIGH,
                category="system",
                affected_services=("Host System",),
            ),
        ]
