# helpdesk_app/config.py
"""
Central configuration for the helpdesk bot.

Everything is read from environment variables (a local .env is loaded by
run.py). A handful of keys can also be changed at runtime from WhatsApp
(`!set_greeting`, `!toggle_ai_on`, `!set_tech_group`, ...); those live in the
`config` table and take precedence over the env value, see settings_value().
"""

from __future__ import annotations

import os
from dataclasses import dataclass
from typing import Any, List


def _as_bool(value: str | None, default: bool = False) -> bool:
    if value is None:
        return default
    return value.strip().lower() in {"1", "true", "yes", "on"}


def _as_list(value: str | None) -> List[str]:
    if not value:
        return []
    return [item.strip() for item in value.split(",") if item.strip()]


@dataclass
class Config:
    # Flask / runtime
    ENV: str = os.getenv("FLASK_ENV", "production")
    DEBUG: bool = _as_bool(os.getenv("DEBUG"), False)
    TESTING: bool = _as_bool(os.getenv("TESTING"), False)
    SECRET_KEY: str = os.getenv("SECRET_KEY", "dev-change-me")
    LOG_LEVEL: str = os.getenv("LOG_LEVEL", "")

    # Database (postgres://... or sqlite:///./helpdesk.db)
    DATABASE_URL: str = os.getenv("DATABASE_URL", "sqlite:///./helpdesk.db")

    # WhatsApp
    BOT_NUMBER: str = os.getenv("BOT_NUMBER", "")
    ROOT_NUMBERS: str = os.getenv("ROOT_NUMBERS", "")
    TECH_GROUP_ID: str = os.getenv("TECH_GROUP_ID", "")
    WHATSAPP_BRIDGE_URL: str = os.getenv("WHATSAPP_BRIDGE_URL", "")
    WHATSAPP_BRIDGE_TOKEN: str = os.getenv("WHATSAPP_BRIDGE_TOKEN", "")
    WEBHOOK_TOKEN: str = os.getenv("WEBHOOK_TOKEN", "")

    # Local LLM (Ollama, OpenAI-compatible endpoint)
    OLLAMA_BASE_URL: str = os.getenv("OLLAMA_BASE_URL", "http://localhost:11434")
    OLLAMA_MODEL: str = os.getenv("OLLAMA_MODEL", "llama3.2:3b")
    AI_TIMEOUT_SECONDS: float = float(os.getenv("AI_TIMEOUT_SECONDS", "30"))

    # E-mail
    EMAIL_ENABLED: bool = _as_bool(os.getenv("EMAIL_ENABLED"), True)
    SMTP_HOST: str = os.getenv("SMTP_HOST", "")
    SMTP_PORT: int = int(os.getenv("SMTP_PORT", "587"))
    SMTP_USER: str = os.getenv("SMTP_USER", "")
    SMTP_PASS: str = os.getenv("SMTP_PASS", "")
    SMTP_SECURE: bool = _as_bool(os.getenv("SMTP_SECURE"), False)
    EMAIL_FROM: str = os.getenv("EMAIL_FROM", "bot@empresa.com")
    ADMIN_EMAILS: str = os.getenv("ADMIN_EMAILS", "")

    # Maintenance
    RETENTION_DAYS: int = int(os.getenv("RETENTION_DAYS", "365"))
    BACKUP_PATH: str = os.getenv("BACKUP_PATH", "./backups")
    EXPORT_PATH: str = os.getenv("EXPORT_PATH", "./exports")
    BACKUP_INTERVAL_HOURS: int = int(os.getenv("BACKUP_INTERVAL_HOURS", "24"))
    AUTO_BACKUP: bool = _as_bool(os.getenv("AUTO_BACKUP"), True)
    SCHEDULER_ENABLED: bool = _as_bool(os.getenv("SCHEDULER_ENABLED"), True)

    # Conversation
    DIALOGUE_TTL_SECONDS: int = int(os.getenv("DIALOGUE_TTL_SECONDS", "1800"))
    NOTIFY_ASYNC: bool = _as_bool(os.getenv("NOTIFY_ASYNC"), True)

    # Web credentials bootstrap (seeds the "root" web user when set)
    WEB_ROOT_PASSWORD: str = os.getenv("WEB_ROOT_PASSWORD", "")

    def root_numbers(self) -> List[str]:
        return _as_list(self.ROOT_NUMBERS)

    def admin_emails(self) -> List[str]:
        return _as_list(self.ADMIN_EMAILS)


cfg = Config()


# Persisted config keys and the Config attribute each one overrides.
SETTING_ENV_FALLBACK = {
    "tech_group_id": "TECH_GROUP_ID",
    "retention_days": "RETENTION_DAYS",
    "backup_path": "BACKUP_PATH",
    "export_path": "EXPORT_PATH",
    "backup_interval_hours": "BACKUP_INTERVAL_HOURS",
    "auto_backup": "AUTO_BACKUP",
}


def settings_value(repo, key: str, default: Any = None) -> Any:
    """
    Resolve a runtime setting: config table row first, then env (cfg), then default.

    Values coming from the table are strings; booleans and ints are coerced
    to the type of the env fallback so callers get the same shape either way.
    """
    env_attr = SETTING_ENV_FALLBACK.get(key)
    env_value = getattr(cfg, env_attr) if env_attr else None

    stored = repo.get_config(key)
    if stored is None or stored == "":
        if env_value not in (None, ""):
            return env_value
        return default

    if isinstance(env_value, bool) or isinstance(default, bool):
        return _as_bool(stored)
    if isinstance(env_value, int) or isinstance(default, int):
        try:
            return int(stored)
        except ValueError:
            return env_value if env_value is not None else default
    return stored
