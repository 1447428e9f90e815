"""
LLMClient — Modèle conversationnel multi-fournisseur.

UN client, TROIS providers, MÊME interface.
Utilisé UNIQUEMENT pour les réponses de chat et les plugins texte
(résumé, traduction) : jamais pour décider d'une action.

Usage :
    from services.llm import LLMClient

    client = LLMClient()

    response = await client.complete(
        [{"role": "user", "content": "Bonjour"}],
        session_id="sess_1",
    )
    response.text
    response.usage     # {"input_tokens": ..., "output_tokens": ..., "total_tokens": ...}

Design decisions :
  - Async par défaut (les appels LLM sont I/O bound)
  - Retry avec backoff exponentiel
  - Fallback automatique si un provider échoue
  - Un échec final est un LLMResponse(success=False), jamais une exception
"""

from __future__ import annotations

import asyncio
import logging
import time
from dataclasses import dataclass
from datetime import datetime
from typing import Any, Protocol
from uuid import uuid4

from pydantic import BaseModel, Field

from services.config import LLMProvider, Settings, get_settings


logger = logging.getLogger("actiongate.services.llm")

Message = dict[str, str]


# ══════════════════════════════════════════════════════════════
# RESPONSE MODEL
# ══════════════════════════════════════════════════════════════


class LLMResponse(BaseModel):
    """Réponse unifiée de n'importe quel provider."""
    id: str = Field(default_factory=lambda: str(uuid4()))
    provider: LLMProvider
    model: str
    content: str
    session_id: str | None = None
    input_tokens: int = Field(default=0, ge=0)
    output_tokens: int = Field(default=0, ge=0)
    latency_ms: float = Field(default=0, ge=0)
    created_at: datetime = Field(default_factory=datetime.utcnow)
    error: str | None = None
    success: bool = True

    @property
    def text(self) -> str:
        return self.content

    @property
    def usage(self) -> dict[str, int]:
        return {
            "input_tokens": self.input_tokens,
            "output_tokens": self.output_tokens,
            "total_tokens": self.input_tokens + self.output_tokens,
        }


class ConversationModel(Protocol):
    """Ce dont le pipeline a besoin d'un modèle conversationnel."""

    async def complete(
        self,
        messages: list[Message],
        session_id: str | None = None,
        system: str | None = None,
        max_tokens: int | None = None,
    ) -> LLMResponse: ...


@dataclass(frozen=True)
class _Completion:
    """Paramètres d'un appel, communs à tous les providers."""
    messages: list[Message]
    system: str | None
    temperature: float
    max_tokens: int

    def transcript(self) -> str:
        """Conversation aplatie (providers sans format messages)."""
        lines = "\n".join(f"{m['role']}: {m['content']}" for m in self.messages)
        return f"{self.system}\n\n{lines}" if self.system else lines


# ══════════════════════════════════════════════════════════════
# CLIENT
# ══════════════════════════════════════════════════════════════


class LLMClient:
    """
    Client LLM multi-fournisseur.

    Gère :
      - Connexion à Claude, OpenAI, Gemini (clients créés si la clé existe)
      - Retry avec backoff exponentiel
      - Fallback automatique entre providers
    """

    def __init__(
        self,
        settings: Settings | None = None,
        clients: dict[LLMProvider, Any] | None = None,
    ) -> None:
        self._settings = settings or get_settings()
        self._clients: dict[LLMProvider, Any] = dict(clients or {})
        self._total_tokens: int = 0
        self._call_count: int = 0

        if clients is None:
            self._init_clients()

    def _init_clients(self) -> None:
        """Initialise les clients pour chaque provider configuré."""
        if self._settings.has_claude:
            import anthropic
            self._clients[LLMProvider.CLAUDE] = anthropic.AsyncAnthropic(
                api_key=self._settings.claude_api_key,
                timeout=self._settings.llm_timeout_seconds,
            )

        if self._settings.has_openai:
            import openai
            self._clients[LLMProvider.OPENAI] = openai.AsyncOpenAI(
                api_key=self._settings.openai_api_key,
                timeout=self._settings.llm_timeout_seconds,
            )

        if self._settings.has_gemini:
            import google.genai as genai
            self._clients[LLMProvider.GEMINI] = genai.Client(
                api_key=self._settings.gemini_api_key,
            )

    def reset(self) -> list[str]:
        """Recrée les clients des providers configurés. Retourne leurs noms."""
        self._clients.clear()
        self._init_clients()
        logger.info(f"LLM clients reset: {[p.value for p in self._clients]}")
        return [p.value for p in self._clients]

    @property
    def available_providers(self) -> list[LLMProvider]:
        """Providers initialisés et prêts."""
        return list(self._clients.keys())

    @property
    def stats(self) -> dict[str, Any]:
        return {
            "total_calls": self._call_count,
            "total_tokens": self._total_tokens,
            "available_providers": [p.value for p in self.available_providers],
        }

    # ──────────────────────────────────────────────────────
    # MAIN API
    # ──────────────────────────────────────────────────────

    async def complete(
        self,
        messages: list[Message],
        session_id: str | None = None,
        system: str | None = None,
        provider: LLMProvider | None = None,
        model: str | None = None,
        temperature: float | None = None,
        max_tokens: int | None = None,
        fallback: bool = True,
    ) -> LLMResponse:
        """
        Complète une conversation.

        Le provider demandé (ou celui par défaut) est essayé en premier,
        puis, si fallback, chaque autre provider initialisé avec son
        modèle par défaut. Ne lève jamais.
        """
        first = provider or self._settings.default_llm_provider
        request = _Completion(
            messages=messages,
            system=system,
            temperature=(
                temperature if temperature is not None else self._settings.llm_default_temperature
            ),
            max_tokens=max_tokens or self._settings.llm_default_max_tokens,
        )

        candidates = [(first, model or self._settings.get_default_model(first))]
        if fallback:
            candidates += [
                (p, self._settings.get_default_model(p))
                for p in self.available_providers
                if p != first
            ]

        response: LLMResponse | None = None
        for candidate, candidate_model in candidates:
            response = await self._attempt(candidate, candidate_model, request)
            if response.success:
                break
            logger.info(f"{candidate.value} unavailable, trying next provider")

        response.session_id = session_id
        self._call_count += 1
        self._total_tokens += response.input_tokens + response.output_tokens

        if not response.success:
            logger.warning(f"LLM call failed (session={session_id}): {response.error}")
        return response

    async def _attempt(
        self,
        provider: LLMProvider,
        model: str,
        request: _Completion,
    ) -> LLMResponse:
        """Un provider, llm_max_retries essais, backoff exponentiel."""
        call = self._callers[provider]
        retries = self._settings.llm_max_retries
        error = ""

        for attempt in range(1, retries + 1):
            started = time.monotonic()
            try:
                response = await call(model, request)
            except Exception as e:
                error = f"{type(e).__name__}: {e}"
                logger.debug(f"{provider.value} attempt {attempt}/{retries} failed: {error}")
                if attempt < retries:
                    await asyncio.sleep(self._settings.llm_retry_delay_seconds * 2 ** (attempt - 1))
                continue
            response.latency_ms = round((time.monotonic() - started) * 1000, 1)
            return response

        return LLMResponse(
            provider=provider,
            model=model,
            content="",
            success=False,
            error=f"{provider.value} failed after {retries} attempts: {error}",
        )

    @property
    def _callers(self) -> dict[LLMProvider, Any]:
        return {
            LLMProvider.CLAUDE: self._claude,
            LLMProvider.OPENAI: self._openai,
            LLMProvider.GEMINI: self._gemini,
        }

    def _client_for(self, provider: LLMProvider) -> Any:
        client = self._clients.get(provider)
        if client is None:
            raise ConnectionError(f"{provider.value} client not initialized")
        return client

    # ──────────────────────────────────────────────────────
    # PROVIDERS
    # ──────────────────────────────────────────────────────

    async def _claude(self, model: str, request: _Completion) -> LLMResponse:
        client = self._client_for(LLMProvider.CLAUDE)
        kwargs: dict[str, Any] = {
            "model": model,
            "messages": request.messages,
            "max_tokens": request.max_tokens,
            "temperature": request.temperature,
        }
        if request.system:
            kwargs["system"] = request.system

        raw = await client.messages.create(**kwargs)
        return LLMResponse(
            provider=LLMProvider.CLAUDE,
            model=model,
            content="".join(getattr(block, "text", "") for block in raw.content or []),
            input_tokens=raw.usage.input_tokens,
            output_tokens=raw.usage.output_tokens,
        )

    async def _openai(self, model: str, request: _Completion) -> LLMResponse:
        client = self._client_for(LLMProvider.OPENAI)
        system = [{"role": "system", "content": request.system}] if request.system else []

        raw = await client.chat.completions.create(
            model=model,
            messages=system + list(request.messages),
            max_tokens=request.max_tokens,
            temperature=request.temperature,
        )
        usage = raw.usage
        return LLMResponse(
            provider=LLMProvider.OPENAI,
            model=model,
            content=(raw.choices[0].message.content or "") if raw.choices else "",
            input_tokens=usage.prompt_tokens if usage else 0,
            output_tokens=usage.completion_tokens if usage else 0,
        )

    async def _gemini(self, model: str, request: _Completion) -> LLMResponse:
        """Le SDK Gemini est synchrone : l'appel part dans un thread."""
        client = self._client_for(LLMProvider.GEMINI)

        raw = await asyncio.to_thread(
            client.models.generate_content,
            model=model,
            contents=request.transcript(),
            config={
                "temperature": request.temperature,
                "max_output_tokens": request.max_tokens,
            },
        )
        usage = raw.usage_metadata
        return LLMResponse(
            provider=LLMProvider.GEMINI,
            model=model,
            content=raw.text or "",
            input_tokens=getattr(usage, "prompt_token_count", 0) or 0,
            output_tokens=getattr(usage, "candidates_token_count", 0) or 0,
        )
