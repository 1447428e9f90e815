"""
actiongate Services — Clients partagés.

UN client, UNE config, injectés partout.
Aucun composant ne crée sa propre connexion.

Modules :
  - config.py        → Settings centralisés (.env → Pydantic) + logging
  - audit.py         → AuditLogger (buffer, flush, requêtes, santé)
  - audit_store.py   → AuditStore + implémentation mémoire
  - supabase.py      → AuditStore durable (Supabase)
  - store.py         → KeyValueStore (cache, état système, backups)
  - llm/client.py    → Modèle conversationnel (Claude, GPT, Gemini)
"""

from services.config import Settings, configure_logging, get_settings
from services.audit import AuditLogger
from services.audit_store import AuditStore, MemoryAuditStore
from services.llm import ConversationModel, LLMClient, LLMResponse
from services.store import KeyValueStore, MemoryKeyValueStore
from services.supabase import SupabaseAuditStore

__all__ = [
    "Settings",
    "configure_logging",
    "get_settings",
    "AuditLogger",
    "AuditStore",
    "MemoryAuditStore",
    "SupabaseAuditStore",
    "ConversationModel",
    "LLMClient",
    "LLMResponse",
    "KeyValueStore",
    "MemoryKeyValueStore",
]
