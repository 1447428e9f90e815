"""
Settings : Configuration centralisée.

Toutes les variables d'environnement sont validées ICI.
Aucun os.getenv() ailleurs dans le code.

Usage :
    from services.config import get_settings

    settings = get_settings()
    settings.execution_timeout_seconds
    settings.audit_flush_interval_seconds
    settings.super_admin_users
"""

from __future__ import annotations

import logging
from enum import Enum
from functools import lru_cache

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings


class LLMProvider(str, Enum):
    """Fournisseurs LLM supportés."""
    CLAUDE = "claude"
    OPENAI = "openai"
    GEMINI = "gemini"


class Environment(str, Enum):
    """Environnement d'exécution."""
    DEVELOPMENT = "development"
    STAGING = "staging"
    PRODUCTION = "production"


class Settings(BaseSettings):
    """
    Configuration centralisée d'actiongate.

    Charge depuis .env ou variables d'environnement.
    Chaque champ a une valeur par défaut raisonnable pour le dev.
    """

    # ── Environnement ──
    environment: Environment = Environment.DEVELOPMENT
    debug: bool = False
    app_name: str = "actiongate"
    app_version: str = "0.1.0"

    # ── LLM : Claude ──
    claude_api_key: str = Field(default="", description="Clé API Anthropic")
    claude_default_model: str = Field(default="claude-sonnet-4-20250514")

    # ── LLM : OpenAI ──
    openai_api_key: str = Field(default="", description="Clé API OpenAI")
    openai_default_model: str = Field(default="gpt-4o")

    # ── LLM : Gemini ──
    gemini_api_key: str = Field(default="", description="Clé API Google Gemini")
    gemini_default_model: str = Field(default="gemini-2.5-flash")

    # ── LLM : Global ──
    default_llm_provider: LLMProvider = Field(
        default=LLMProvider.CLAUDE,
        description="Fournisseur LLM par défaut",
    )
    llm_max_retries: int = Field(default=3, ge=1, le=10)
    llm_retry_delay_seconds: float = Field(default=1.0, ge=0.0, le=30.0)
    llm_timeout_seconds: float = Field(default=60.0, ge=1, le=600)
    llm_default_temperature: float = Field(default=0.3, ge=0, le=1.0)
    llm_default_max_tokens: int = Field(default=1024, ge=64, le=32768)
    chat_system_prompt: str = Field(
        default="You are the operations assistant. Answer briefly, in one sentence.",
    )

    # ── Gouvernance : permissions ──
    super_admin_users: list[str] = Field(
        default_factory=lambda: ["han", "Han"],
        description="Utilisateurs initialisés avec le rôle super_admin",
    )
    permission_history_max: int = Field(default=1000, ge=10)
    permission_history_keep: int = Field(default=500, ge=1)

    # ── Gouvernance : exécution ──
    execution_timeout_seconds: float = Field(
        default=30.0,
        gt=0,
        le=600,
        description="Timeout par action (plugin, commande, API externe)",
    )
    execution_history_max: int = Field(default=100, ge=2)
    execution_history_keep: int = Field(default=50, ge=1)

    # ── Audit ──
    audit_flush_interval_seconds: float = Field(default=5.0, gt=0, le=300)
    audit_batch_size: int = Field(default=100, ge=1, le=10000)
    audit_retention_days: int = Field(default=90, ge=1)
    audit_stats_window: int = Field(
        default=1000, ge=1, description="Nombre max d'enregistrements analysés"
    )
    audit_export_limit: int = Field(default=10000, ge=1)
    audit_table: str = Field(default="audit_logs")
    health_error_rate_warning: float = Field(default=10.0, ge=0, le=100)
    health_error_rate_critical: float = Field(default=20.0, ge=0, le=100)

    # ── Supabase (store d'audit durable) ──
    supabase_url: str = Field(default="", description="URL du projet Supabase")
    supabase_service_key: str = Field(
        default="",
        description="Clé service Supabase (privée, accès complet)",
    )

    # ── API persona (externe) ──
    persona_api_url: str = Field(default="https://api.persona.example/v1")
    persona_api_key: str = Field(default="")
    persona_api_timeout_seconds: float = Field(default=15.0, gt=0, le=120)
    persona_cache_ttl_seconds: int = Field(default=24 * 3600, ge=0)
    preferences_cache_ttl_seconds: int = Field(default=3600, ge=0)

    # ── Stockage de datasets (GitHub) ──
    github_token: str = Field(default="")
    github_owner: str = Field(default="")
    github_repository: str = Field(default="ai-dataset-storage")
    github_branch: str = Field(default="main")
    github_data_path: str = Field(default="datasets")

    # ── Logging ──
    log_level: str = Field(default="INFO")
    log_format: str = Field(default="text")

    # ── Validators ──

    @field_validator("log_level")
    @classmethod
    def validate_log_level(cls, v: str) -> str:
        allowed = {"DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"}
        v_upper = v.upper()
        if v_upper not in allowed:
            raise ValueError(f"log_level must be one of {allowed}")
        return v_upper

    @field_validator("log_format")
    @classmethod
    def validate_log_format(cls, v: str) -> str:
        v_lower = v.lower()
        if v_lower not in {"text", "json"}:
            raise ValueError("log_format must be 'text' or 'json'")
        return v_lower

    # ── Properties ──

    @property
    def is_production(self) -> bool:
        return self.environment == Environment.PRODUCTION

    @property
    def has_claude(self) -> bool:
        return bool(self.claude_api_key)

    @property
    def has_openai(self) -> bool:
        return bool(self.openai_api_key)

    @property
    def has_gemini(self) -> bool:
        return bool(self.gemini_api_key)

    @property
    def has_supabase(self) -> bool:
        return bool(self.supabase_url and self.supabase_service_key)

    @property
    def has_persona_api(self) -> bool:
        return bool(self.persona_api_url and self.persona_api_key)

    @property
    def has_github(self) -> bool:
        return bool(self.github_token and self.github_owner)

    def get_llm_api_key(self, provider: LLMProvider) -> str:
        """Récupère la clé API pour un fournisseur donné."""
        mapping = {
            LLMProvider.CLAUDE: self.claude_api_key,
            LLMProvider.OPENAI: self.openai_api_key,
            LLMProvider.GEMINI: self.gemini_api_key,
        }
        return mapping.get(provider, "")

    def get_default_model(self, provider: LLMProvider) -> str:
        """Récupère le modèle par défaut pour un fournisseur."""
        mapping = {
            LLMProvider.CLAUDE: self.claude_default_model,
            LLMProvider.OPENAI: self.openai_default_model,
            LLMProvider.GEMINI: self.gemini_default_model,
        }
        return mapping.get(provider, "")

    model_config = {
        "env_file": ".env",
        "env_file_encoding": "utf-8",
        "env_prefix": "ACTIONGATE_",
        "case_sensitive": False,
        "extra": "ignore",
    }


@lru_cache()
def get_settings() -> Settings:
    """
    Singleton des settings.

    Chargé une seule fois, mis en cache.
    Usage : from services.config import get_settings
    """
    return Settings()


_TEXT_FORMAT = "%(asctime)s %(levelname)-8s %(name)s: %(message)s"
_JSON_FORMAT = (
    '{"ts": "%(asctime)s", "level": "%(levelname)s", '
    '"logger": "%(name)s", "message": "%(message)s"}'
)


def configure_logging(settings: Settings | None = None) -> None:
    """Configure le logging racine selon log_level / log_format."""
    settings = settings or get_settings()
    fmt = _JSON_FORMAT if settings.log_format == "json" else _TEXT_FORMAT
    logging.basicConfig(level=settings.log_level, format=fmt, force=True)
    logging.getLogger("httpx").setLevel(logging.WARNING)
