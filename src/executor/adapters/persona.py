"""
Persona Adapter — API externe de persona / mémoire / préférences.

Actions (kind = external_api) :
  - getPersona           GET  /persona/current     (cache 24h)
  - updateMemory         POST /memory/update       {updates: {...}}
  - getUserPreferences   GET  /preferences         {userId}  (cache 1h)
  - setUserPreferences   POST /preferences         {userId, preferences: {...}}
  - getAnalytics         GET  /analytics           {period?}
  - createPersona        POST /persona/create      {name, traits: {...}}

Les lectures sont mises en cache dans le KeyValueStore.
Si l'API tombe, la dernière valeur connue (même expirée) est servie.
"""

from __future__ import annotations

import logging
from datetime import datetime
from typing import Any

import httpx

from executor.registry import Capability
from models.action import ActionKind, ImpactLevel
from models.errors import ExecutionError
from services.config import Settings, get_settings
from services.store import KeyValueStore


logger = logging.getLogger("actiongate.executor.persona")

PERSONA_CACHE_KEY = "current_persona"


def preferences_cache_key(user_id: str) -> str:
    return f"user_prefs_{user_id}"


def _is_mapping(value: Any) -> bool:
    return isinstance(value, dict)


def _is_name(value: Any) -> bool:
    return isinstance(value, str) and bool(value.strip())


class PersonaApiAdapter:
    """
    Adapter de l'API persona.

    Authentification Bearer. Chaque méthode reçoit les paramètres
    de l'action et retourne un dict résultat.
    """

    def __init__(
        self,
        store: KeyValueStore,
        settings: Settings | None = None,
        client: httpx.AsyncClient | None = None,
    ) -> None:
        self._settings = settings or get_settings()
        self._store = store
        self._client: httpx.AsyncClient | None = client

        if self._client is None and self._settings.has_persona_api:
            self._init_client()

    def _init_client(self) -> None:
        """Initialise le client HTTP de l'API persona."""
        self._client = httpx.AsyncClient(
            base_url=self._settings.persona_api_url,
            headers={
                "Authorization": f"Bearer {self._settings.persona_api_key}",
                "Content-Type": "application/json",
            },
            timeout=self._settings.persona_api_timeout_seconds,
        )

    @property
    def is_connected(self) -> bool:
        return self._client is not None

    async def _request(self, action: str, method: str, path: str, **kwargs: Any) -> Any:
        if not self.is_connected:
            raise ExecutionError(action, "Persona API not configured")
        try:
            response = await self._client.request(method, path, **kwargs)
        except httpx.HTTPError as e:
            raise ExecutionError(action, f"Persona API unreachable: {e}", raw_error=e) from e
        if response.status_code >= 400:
            raise ExecutionError(
                action, f"Persona API error: {response.status_code} {response.reason_phrase}"
            )
        return response.json() if response.content else {}

    async def _cached_get(
        self,
        action: str,
        path: str,
        cache_key: str,
        ttl: float,
        params: dict[str, Any] | None = None,
    ) -> tuple[Any, str, str | None]:
        """GET avec cache. Retourne (données, source, warning)."""
        try:
            data = await self._request(action, "GET", path, params=params)
        except ExecutionError as e:
            cached = await self._store.get(cache_key, include_expired=True)
            if cached is None:
                raise
            logger.warning(f"{action}: serving cached value ({e.message})")
            return cached, "cache", f"Using cached value - {e.message}"

        await self._store.set(cache_key, data, category="cache", ttl=ttl)
        return data, "api", None

    # ──────────────────────────────────────────────────────
    # PERSONA
    # ──────────────────────────────────────────────────────

    async def get_persona(self, params: dict[str, Any]) -> dict[str, Any]:
        persona, source, warning = await self._cached_get(
            "getPersona",
            "/persona/current",
            PERSONA_CACHE_KEY,
            self._settings.persona_cache_ttl_seconds,
        )
        result: dict[str, Any] = {"persona": persona, "source": source}
        if warning:
            result["warning"] = warning
        return result

    async def create_persona(self, params: dict[str, Any]) -> dict[str, Any]:
        persona = await self._request(
            "createPersona",
            "POST",
            "/persona/create",
            json={"name": params["name"], "traits": params["traits"]},
        )
        return {"persona": persona, "message": f"Persona '{params['name']}' created"}

    async def update_memory(self, params: dict[str, Any]) -> dict[str, Any]:
        updates = params["updates"]
        response = await self._request(
            "updateMemory", "POST", "/memory/update", json={"updates": updates}
        )
        await self._store.set(
            "memory_update",
            {
                "updates": updates,
                "timestamp": datetime.utcnow().isoformat(),
                "response": response,
            },
            category="system",
        )
        return {"updated": sorted(updates), "response": response}

    # ──────────────────────────────────────────────────────
    # PRÉFÉRENCES
    # ──────────────────────────────────────────────────────

    async def get_user_preferences(self, params: dict[str, Any]) -> dict[str, Any]:
        user_id = params["userId"]
        preferences, source, warning = await self._cached_get(
            "getUserPreferences",
            "/preferences",
            preferences_cache_key(user_id),
            self._settings.preferences_cache_ttl_seconds,
            params={"userId": user_id},
        )
        result: dict[str, Any] = {"user_id": user_id, "preferences": preferences, "source": source}
        if warning:
            result["warning"] = warning
        return result

    async def set_user_preferences(self, params: dict[str, Any]) -> dict[str, Any]:
        user_id = params["userId"]
        preferences = params["preferences"]
        response = await self._request(
            "setUserPreferences",
            "POST",
            "/preferences",
            json={"userId": user_id, "preferences": preferences},
        )
        await self._store.set(
            preferences_cache_key(user_id),
            preferences,
            category="cache",
            ttl=self._settings.preferences_cache_ttl_seconds,
        )
        return {"user_id": user_id, "saved_preferences": preferences, "response": response}

    async def get_analytics(self, params: dict[str, Any]) -> dict[str, Any]:
        period = params.get("period", "7d")
        analytics = await self._request(
            "getAnalytics", "GET", "/analytics", params={"period": period}
        )
        return {"period": period, "analytics": analytics}

    # ──────────────────────────────────────────────────────
    # CAPABILITIES
    # ──────────────────────────────────────────────────────

    def capabilities(self) -> list[Capability]:
        api = ActionKind.EXTERNAL_API
        return [
            Capability(
                name="getPersona",
                validate=lambda p: True,
                execute=self.get_persona,
                description="Fetch the active persona",
                kind=api,
                category="persona",
            ),
            Capability(
                name="updateMemory",
                validate=lambda p: _is_mapping(p.get("updates")),
                execute=self.update_memory,
                description="Update the assistant memory",
                kind=api,
                impact=ImpactLevel.HIGH,
                category="memory",
            ),
            Capability(
                name="getUserPreferences",
                validate=lambda p: _is_name(p.get("userId")),
                execute=self.get_user_preferences,
                description="Fetch a user's preferences",
                kind=api,
                category="preferences",
            ),
            Capability(
                name="setUserPreferences",
                validate=lambda p: _is_name(p.get("userId")) and _is_mapping(p.get("preferences")),
                execute=self.set_user_preferences,
                description="Save a user's preferences",
                kind=api,
                impact=ImpactLevel.MEDIUM,
                category="preferences",
            ),
            Capability(
                name="getAnalytics",
                validate=lambda p: True,
                execute=self.get_analytics,
                description="Fetch usage analytics",
                kind=api,
                category="analytics",
            ),
            Capability(
                name="createPersona",
                validate=lambda p: _is_name(p.get("name")) and _is_mapping(p.get("traits")),
                execute=self.create_persona,
                description="Create a new persona",
                kind=api,
                impact=ImpactLevel.MEDIUM,
                category="persona",
            ),
        ]

    async def close(self) -> None:
        if self._client is not None:
            await self._client.aclose()
