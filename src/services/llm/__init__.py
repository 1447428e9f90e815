"""
actiongate LLM — Modèle conversationnel multi-fournisseur.

Supporte Claude (Anthropic), GPT (OpenAI), Gemini (Google).
Sert aux réponses de chat et aux plugins texte, jamais
à la décision d'exécuter une action.
"""

from services.llm.client import ConversationModel, LLMClient, LLMResponse

__all__ = [
    "ConversationModel",
    "LLMClient",
    "LLMResponse",
]
