"""
Text Adapter — Résumé et traduction via le modèle conversationnel.

Plugins :
  - pluginSummarizer  {text}
  - pluginTranslator  {text, targetLanguage}
"""

from __future__ import annotations

from typing import Any

from executor.registry import Capability
from models.action import ActionKind, ImpactLevel
from models.errors import ExecutionError
from services.llm import ConversationModel


LANGUAGE_ALIASES: dict[str, str] = {
    "inggris": "English",
    "english": "English",
    "mandarin": "Chinese",
    "cina": "Chinese",
    "chinese": "Chinese",
    "jepang": "Japanese",
    "japanese": "Japanese",
    "korea": "Korean",
    "korean": "Korean",
    "arab": "Arabic",
    "arabic": "Arabic",
    "spanyol": "Spanish",
    "spanish": "Spanish",
    "prancis": "French",
    "french": "French",
    "jerman": "German",
    "german": "German",
}


def resolve_language(name: str) -> str:
    return LANGUAGE_ALIASES.get(name.strip().lower(), name.strip())


def _has_text(params: dict[str, Any]) -> bool:
    text = params.get("text")
    return isinstance(text, str) and bool(text.strip())


class TextAdapter:
    """Plugins texte adossés à un ConversationModel."""

    def __init__(self, model: ConversationModel) -> None:
        self._model = model

    async def _ask(self, action: str, system: str, prompt: str, max_tokens: int) -> str:
        response = await self._model.complete(
            [{"role": "user", "content": prompt}],
            system=system,
            max_tokens=max_tokens,
        )
        if not response.success:
            raise ExecutionError(action, f"Language model call failed: {response.error}")
        return response.text.strip()

    async def summarize(self, params: dict[str, Any]) -> dict[str, Any]:
        text = params["text"]
        summary = await self._ask(
            "pluginSummarizer",
            "You write accurate, informative summaries.",
            f"Write a clear, concise summary of the following text.\n\nText:\n{text}\n\nSummary:",
            max_tokens=500,
        )
        return {
            "summary": summary,
            "original_length": len(text),
            "summary_length": len(summary),
            "compression_ratio": f"{len(summary) / len(text) * 100:.2f}%",
        }

    async def translate(self, params: dict[str, Any]) -> dict[str, Any]:
        text = params["text"]
        target = resolve_language(params["targetLanguage"])
        translation = await self._ask(
            "pluginTranslator",
            f"You are a professional translator into {target}.",
            f"Translate the following text into {target}.\n\nText:\n{text}\n\nTranslation:",
            max_tokens=1000,
        )
        return {
            "translated_text": translation,
            "target_language": target,
            "original_length": len(text),
            "translated_length": len(translation),
        }

    def capabilities(self) -> list[Capability]:
        return [
            Capability(
                name="pluginSummarizer",
                validate=_has_text,
                execute=self.summarize,
                description="Summarize a text",
                kind=ActionKind.PLUGIN,
                impact=ImpactLevel.LOW,
                category="text",
                probe={"text": "This is a short probe text for the summarizer plugin."},
            ),
            Capability(
                name="pluginTranslator",
                validate=lambda p: _has_text(p)
                and isinstance(p.get("targetLanguage"), str)
                and bool(p["targetLanguage"].strip()),
                execute=self.translate,
                description="Translate a text into a target language",
                kind=ActionKind.PLUGIN,
                impact=ImpactLevel.LOW,
                category="text",
                probe={"text": "Probe text for the translator.", "targetLanguage": "English"},
            ),
        ]
