"""
KeyValueStore : stockage clé/valeur local par catégorie.

Utilisé pour :
  - Cacher les réponses des APIs externes (persona, préférences)
    avec fallback "dernière valeur connue" si l'API tombe
  - L'état système (statut, dernier redémarrage, config)
  - Les snapshots de backup

Usage :
    store = MemoryKeyValueStore()
    await store.set("current_persona", persona, category="cache", ttl=86400)
    persona = await store.get("current_persona")
"""

from __future__ import annotations

import asyncio
import copy
import logging
import time
from typing import Any, Protocol

from pydantic import BaseModel, Field


logger = logging.getLogger("actiongate.services.store")


class KeyValueStore(Protocol):
    """Contrat minimal d'un store clé/valeur."""

    async def get(self, key: str, include_expired: bool = False) -> Any | None: ...
    async def set(
        self,
        key: str,
        value: Any,
        category: str = "general",
        ttl: float | None = None,
    ) -> None: ...
    async def delete(self, key: str) -> bool: ...
    async def clear(self, category: str | None = None) -> int: ...
    async def cleanup(self) -> int: ...
    async def snapshot(self, exclude_categories: set[str] | None = None) -> dict[str, Any]: ...
    async def restore(self, snapshot: dict[str, Any]) -> int: ...


class StoreEntry(BaseModel):
    value: Any = None
    category: str = "general"
    expires_at: float | None = Field(
        default=None, description="Horodatage monotonic d'expiration"
    )

    def is_expired(self, now: float) -> bool:
        return self.expires_at is not None and now >= self.expires_at


class MemoryKeyValueStore:
    """
    Store en mémoire avec expiration par entrée.

    Les entrées expirées ne sont pas retournées par get(),
    sauf avec include_expired=True (fallback last-known-good).
    Elles restent en place jusqu'au prochain cleanup().
    """

    def __init__(self) -> None:
        self._entries: dict[str, StoreEntry] = {}
        self._lock = asyncio.Lock()

    @staticmethod
    def _now() -> float:
        return time.monotonic()

    async def get(self, key: str, include_expired: bool = False) -> Any | None:
        entry = self._entries.get(key)
        if entry is None:
            return None
        if entry.is_expired(self._now()) and not include_expired:
            return None
        return copy.deepcopy(entry.value)

    async def set(
        self,
        key: str,
        value: Any,
        category: str = "general",
        ttl: float | None = None,
    ) -> None:
        expires_at = self._now() + ttl if ttl is not None else None
        async with self._lock:
            self._entries[key] = StoreEntry(
                value=copy.deepcopy(value),
                category=category,
                expires_at=expires_at,
            )

    async def delete(self, key: str) -> bool:
        async with self._lock:
            return self._entries.pop(key, None) is not None

    async def clear(self, category: str | None = None) -> int:
        """Vide une catégorie (ou tout). Retourne le nombre d'entrées supprimées."""
        async with self._lock:
            if category is None:
                count = len(self._entries)
                self._entries.clear()
                return count
            keys = [k for k, e in self._entries.items() if e.category == category]
            for k in keys:
                del self._entries[k]
            return len(keys)

    async def cleanup(self) -> int:
        """Supprime les entrées expirées."""
        now = self._now()
        async with self._lock:
            keys = [k for k, e in self._entries.items() if e.is_expired(now)]
            for k in keys:
                del self._entries[k]
        if keys:
            logger.debug(f"Cleaned up {len(keys)} expired entries")
        return len(keys)

    async def snapshot(self, exclude_categories: set[str] | None = None) -> dict[str, Any]:
        """Copie {key: {value, category}} des entrées non expirées."""
        exclude = exclude_categories or set()
        now = self._now()
        return {
            key: {"value": copy.deepcopy(e.value), "category": e.category}
            for key, e in self._entries.items()
            if e.category not in exclude and not e.is_expired(now)
        }

    async def restore(self, snapshot: dict[str, Any]) -> int:
        """Réinjecte un snapshot (sans TTL). Retourne le nombre de clés restaurées."""
        async with self._lock:
            for key, item in snapshot.items():
                self._entries[key] = StoreEntry(
                    value=copy.deepcopy(item.get("value")),
                    category=item.get("category", "general"),
                )
        return len(snapshot)

    def __len__(self) -> int:
        return len(self._entries)
