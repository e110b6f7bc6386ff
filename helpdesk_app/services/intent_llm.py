# helpdesk_app/services/intent_llm.py
"""
Intent classifier backed by a local Ollama model.

Ollama exposes an OpenAI-compatible API under /v1, so the regular `openai`
SDK is used with base_url pointed at it. Three calls are made:

- classify_message(text) -> "greeting" | "question" | "problem" | "other"
- analyze_problem(text)  -> ProblemAnalysis (category / priority / analysis)
- welcome_message(name)  -> first-contact greeting

Every call has a deterministic fallback. When the model is disabled (config
key ai_enabled = "false"), unreachable, or answers garbage, the classifier
returns "other"; it must never fall back to "problem", otherwise a broken LLM
would open tickets on its own.
"""

from __future__ import annotations

import json
import logging
from typing import Any, Dict, Optional

from openai import OpenAI

from helpdesk_app.config import cfg
from helpdesk_app.core.models import ProblemAnalysis
from helpdesk_app.services.ai.prompt_loader import (
    get_analyze_prompt,
    get_classify_prompt,
    get_welcome_prompt,
)

logger = logging.getLogger(__name__)

INTENT_GREETING = "greeting"
INTENT_QUESTION = "question"
INTENT_PROBLEM = "problem"
INTENT_OTHER = "other"

ALLOWED_INTENTS = {INTENT_GREETING, INTENT_QUESTION, INTENT_PROBLEM, INTENT_OTHER}

# Labels small models tend to answer with despite the JSON instruction.
_INTENT_ALIASES = {
    "saudacao": INTENT_GREETING,
    "saudação": INTENT_GREETING,
    "duvida": INTENT_QUESTION,
    "dúvida": INTENT_QUESTION,
    "problema": INTENT_PROBLEM,
    "outro": INTENT_OTHER,
}

FALLBACK_WELCOME = (
    "👋 Olá! Sou seu assistente técnico de TI.\n\n"
    "🔧 Para abrir um chamado, descreva seu problema técnico\n"
    "📋 Use !ajuda para ver todos os comandos disponíveis\n"
    "💬 Estou aqui para ajudar com questões de TI!"
)


class IntentClassifier:
    def __init__(
        self,
        repo,
        *,
        client: Optional[Any] = None,
        model: Optional[str] = None,
        base_url: Optional[str] = None,
        timeout: Optional[float] = None,
    ) -> None:
        self.repo = repo
        self.model = model or cfg.OLLAMA_MODEL
        self.base_url = (base_url or cfg.OLLAMA_BASE_URL).rstrip("/")
        self.timeout = timeout if timeout is not None else cfg.AI_TIMEOUT_SECONDS
        self._client = client
        # None = not tried yet; updated after every call / connection check
        self.available: Optional[bool] = None

    @property
    def client(self):
        if self._client is None:
            self._client = OpenAI(
                base_url=f"{self.base_url}/v1",
                api_key="ollama",
                timeout=self.timeout,
                max_retries=0,
            )
        return self._client

    # ------------------------------------------------------------------
    # State
    # ------------------------------------------------------------------

    def enabled(self) -> bool:
        return (self.repo.get_config("ai_enabled") or "true").lower() != "false"

    def set_enabled(self, flag: bool) -> None:
        self.repo.set_config("ai_enabled", "true" if flag else "false")
        logger.info("[AI] Toggled", extra={"enabled": flag})

    def check_connection(self) -> bool:
        try:
            self.client.models.list()
            self.available = True
        except Exception as e:
            logger.warning("[AI] Ollama not reachable: %s", e, extra={"base_url": self.base_url})
            self.available = False
        return self.available

    def status(self) -> Dict[str, Any]:
        return {
            "enabled": self.enabled(),
            "available": bool(self.available),
            "base_url": self.base_url,
            "model": self.model,
        }

    # ------------------------------------------------------------------
    # LLM plumbing
    # ------------------------------------------------------------------

    def _chat(self, system_prompt: str, user_prompt: str, *, json_mode: bool, max_tokens: int = 200) -> Optional[str]:
        logger.info(
            "[AI] 🤖 Sending request to LLM",
            extra={"model": self.model, "prompt_length": len(user_prompt), "json_mode": json_mode},
        )
        kwargs: Dict[str, Any] = {
            "model": self.model,
            "messages": [
                {"role": "system", "content": system_prompt},
                {"role": "user", "content": user_prompt},
            ],
            "max_tokens": max_tokens,
            "temperature": 0.2,
        }
        if json_mode:
            kwargs["response_format"] = {"type": "json_object"}

        try:
            resp = self.client.chat.completions.create(**kwargs)
            content = (resp.choices[0].message.content or "").strip()
        except Exception as e:
            self.available = False
            logger.error(
                "[AI] ❌ LLM call failed",
                extra={"model": self.model, "error": str(e), "error_type": type(e).__name__},
            )
            return None

        self.available = True
        logger.debug("[AI] 📥 LLM response received", extra={"raw": content[:300]})
        return content or None

    def _chat_json(self, system_prompt: str, user_prompt: str, max_tokens: int = 200) -> Optional[Dict[str, Any]]:
        content = self._chat(system_prompt, user_prompt, json_mode=True, max_tokens=max_tokens)
        if content is None:
            return None
        try:
            parsed = json.loads(content)
        except json.JSONDecodeError:
            logger.warning("[AI] ⚠️ JSON parsing failed", extra={"raw_content": content[:300]})
            return None
        return parsed if isinstance(parsed, dict) else None

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------

    def classify_message(self, text: str) -> str:
        if not text or not text.strip() or not self.enabled():
            return INTENT_OTHER

        data = self._chat_json(get_classify_prompt(), text, max_tokens=30)
        if not data:
            return INTENT_OTHER

        raw = str(data.get("intent") or "").strip().lower()
        intent = _INTENT_ALIASES.get(raw, raw)
        if intent not in ALLOWED_INTENTS:
            logger.warning("[AI] ⚠️ Invalid intent from LLM → other", extra={"intent": raw})
            return INTENT_OTHER

        logger.info("[AI] ✅ Classified", extra={"intent": intent})
        return intent

    def analyze_problem(self, text: str) -> ProblemAnalysis:
        if not self.enabled():
            return ProblemAnalysis()
        data = self._chat_json(get_analyze_prompt(), text, max_tokens=150)
        if not data:
            return ProblemAnalysis()
        return ProblemAnalysis.from_dict(data)

    def welcome_message(self, name: Optional[str] = None) -> str:
        if not self.enabled():
            return FALLBACK_WELCOME
        content = self._chat(
            get_welcome_prompt(),
            f"Criar mensagem de boas-vindas para {name or 'usuário'}",
            json_mode=False,
            max_tokens=150,
        )
        return content or FALLBACK_WELCOME
