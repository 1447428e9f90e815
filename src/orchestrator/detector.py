"""
ActionDetector : texte libre → actions candidates.

Le détecteur PROPOSE, il ne décide rien.
Fonction pure de (input, context) : même entrée → mêmes candidats.

KeywordActionDetector : règles par mots-clés (anglais + indonésien),
dans l'ordre plugins → commandes → API externes.
"""

from __future__ import annotations

import re
from dataclasses import dataclass
from typing import Any, Callable, Protocol

from models.action import ActionDescriptor, ActionKind, ImpactLevel


class ActionDetector(Protocol):
    def detect(self, input: str, context: dict[str, Any]) -> list[ActionDescriptor]: ...


ParameterBuilder = Callable[[str, dict[str, Any]], dict[str, Any]]


@dataclass(frozen=True)
class KeywordRule:
    """Une action déclenchée si le texte contient l'un des mots-clés."""
    name: str
    kind: ActionKind
    keywords: tuple[str, ...]
    description: str
    impact: ImpactLevel = ImpactLevel.LOW
    parameters: ParameterBuilder | None = None

    def matches(self, lowered: str) -> bool:
        return any(keyword in lowered for keyword in self.keywords)


# ──────────────────────────────────────────────────────
# PARAMÈTRES
# ──────────────────────────────────────────────────────

_LANGUAGE_PATTERN = re.compile(r"\b(?:to|into|ke)\s+([A-Za-z]+)", re.IGNORECASE)
_DATASET_PATTERN = re.compile(r"dataset\s+([\w\-]+)", re.IGNORECASE)
_DAYS_PATTERN = re.compile(r"(\d+)\s*(?:days|day|hari)")

_STORAGE_KEYWORDS = (
    "simpan dataset", "save dataset", "github", "repository",
    "load dataset", "muat dataset", "list dataset", "daftar dataset",
    "delete dataset", "hapus dataset", "search dataset", "cari dataset",
)

_STORAGE_ACTIONS = (
    (("simpan", "save"), "save", "Save a dataset to GitHub"),
    (("muat", "load"), "load", "Load a dataset from GitHub"),
    (("hapus", "delete"), "delete", "Delete a dataset from GitHub"),
    (("cari", "search"), "search", "Search datasets on GitHub"),
)


def _text_params(text: str, context: dict[str, Any]) -> dict[str, Any]:
    return {"text": context.get("text", text)}


def _translate_params(text: str, context: dict[str, Any]) -> dict[str, Any]:
    target = context.get("targetLanguage")
    if not target:
        matches = _LANGUAGE_PATTERN.findall(text)
        target = matches[-1] if matches else None
    return {"text": context.get("text", text), "targetLanguage": target or "English"}


def storage_action(text: str) -> tuple[str, str]:
    """Sous-action GitHub déduite du texte (list par défaut)."""
    lowered = text.lower()
    for keywords, action, description in _STORAGE_ACTIONS:
        if any(k in lowered for k in keywords):
            return action, description
    return "list", "Manage datasets in the GitHub repository"


def _storage_params(text: str, context: dict[str, Any]) -> dict[str, Any]:
    action, _ = storage_action(text)
    params: dict[str, Any] = {"action": action}
    match = _DATASET_PATTERN.search(text)
    name = context.get("datasetName") or (match.group(1) if match else None)

    if action in ("save", "load", "delete") and name:
        params["name"] = name
    if action == "save" and "data" in context:
        params["data"] = context["data"]
        if "format" in context:
            params["format"] = context["format"]
    if action == "search":
        params["query"] = name or text
    return params


def _cleanup_params(text: str, context: dict[str, Any]) -> dict[str, Any]:
    match = _DAYS_PATTERN.search(text.lower())
    return {"days": int(match.group(1))} if match else {}


def _memory_params(text: str, context: dict[str, Any]) -> dict[str, Any]:
    return {"updates": dict(context.get("updates", {}))}


DEFAULT_RULES: tuple[KeywordRule, ...] = (
    # Plugins
    KeywordRule(
        "pluginSummarizer", ActionKind.PLUGIN, ("summarize", "ringkas"),
        "Summarize the text", parameters=_text_params,
    ),
    KeywordRule(
        "pluginTranslator", ActionKind.PLUGIN, ("translate", "terjemah"),
        "Translate the text", parameters=_translate_params,
    ),
    KeywordRule(
        "pluginGitHubStorage", ActionKind.PLUGIN, _STORAGE_KEYWORDS,
        "Manage datasets in the GitHub repository", parameters=_storage_params,
    ),
    # Commandes système
    KeywordRule(
        "restartAgent", ActionKind.SYSTEM_COMMAND, ("restart agent", "restart sistem"),
        "Restart the agent", impact=ImpactLevel.CRITICAL,
    ),
    KeywordRule(
        "clearCache", ActionKind.SYSTEM_COMMAND, ("clear cache", "bersihkan cache"),
        "Clear the system cache", impact=ImpactLevel.MEDIUM,
    ),
    KeywordRule(
        "restartModels", ActionKind.SYSTEM_COMMAND, ("restart models", "restart model"),
        "Reconnect the AI models", impact=ImpactLevel.HIGH,
    ),
    KeywordRule(
        "backupSystem", ActionKind.SYSTEM_COMMAND, ("backup system", "backup sistem"),
        "Create a system backup", impact=ImpactLevel.LOW,
    ),
    KeywordRule(
        "cleanupLogs", ActionKind.SYSTEM_COMMAND, ("cleanup logs", "clean up logs", "bersihkan log"),
        "Delete old audit records", impact=ImpactLevel.LOW, parameters=_cleanup_params,
    ),
    # API externes
    KeywordRule(
        "getPersona", ActionKind.EXTERNAL_API, ("get persona", "lihat persona"),
        "Fetch the active persona",
    ),
    KeywordRule(
        "updateMemory", ActionKind.EXTERNAL_API, ("update memory", "perbarui memori"),
        "Update the assistant memory", impact=ImpactLevel.HIGH, parameters=_memory_params,
    ),
)


class KeywordActionDetector:
    """
    Usage :
        detector = KeywordActionDetector()
        detector.detect("please clear cache", {})
        # [ActionDescriptor(name="clearCache", kind=system_command, ...)]
    """

    def __init__(self, rules: tuple[KeywordRule, ...] | list[KeywordRule] = DEFAULT_RULES) -> None:
        self.rules = tuple(rules)

    def detect(self, input: str, context: dict[str, Any] | None = None) -> list[ActionDescriptor]:
        context = context or {}
        lowered = input.lower()
        found: list[ActionDescriptor] = []

        for rule in self.rules:
            if not rule.matches(lowered):
                continue
            description = rule.description
            if rule.name == "pluginGitHubStorage":
                _, description = storage_action(input)
            found.append(
                ActionDescriptor(
                    name=rule.name,
                    kind=rule.kind,
                    parameters=rule.parameters(input, context) if rule.parameters else {},
                    description=description,
                    impact_level=rule.impact,
                )
            )
        return found
