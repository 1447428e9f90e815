"""
actiongate Executor Adapters — Capabilities concrètes.

Chaque adapter encapsule UNE famille d'actions et expose
ses Capability via capabilities() :
  - text.py      → pluginSummarizer, pluginTranslator (LLM)
  - storage.py   → pluginGitHubStorage (API GitHub)
  - database.py  → pluginDatabaseManager (snapshots du store)
  - system.py    → commandes système privilégiées
  - persona.py   → API persona externe
  - diagnostics.py → systemDiagnostic, healthCheck
"""

from executor.adapters.text import TextAdapter
from executor.adapters.storage import GitHubStorageAdapter
from executor.adapters.database import DatabaseManagerAdapter
from executor.adapters.system import SystemCommands, check_shell_command
from executor.adapters.persona import PersonaApiAdapter
from executor.adapters.diagnostics import DiagnosticsAdapter

__all__ = [
    "TextAdapter",
    "GitHubStorageAdapter",
    "DatabaseManagerAdapter",
    "SystemCommands",
    "check_shell_command",
    "PersonaApiAdapter",
    "DiagnosticsAdapter",
]
