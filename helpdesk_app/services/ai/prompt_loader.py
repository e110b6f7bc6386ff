# helpdesk_app/services/ai/prompt_loader.py
"""
Loads LLM system prompts from the prompts/ directory.

Prompts are versioned by filename suffix (classify_system_v1.txt, ...) so a
new wording can be tried without touching code.
"""
from __future__ import annotations

import logging
from functools import lru_cache
from pathlib import Path

logger = logging.getLogger(__name__)

PROMPTS_DIR = Path(__file__).parent / "prompts"


@lru_cache(maxsize=None)
def load_prompt(filename: str) -> str:
    """
    Read a prompt file. Raises FileNotFoundError if it does not exist.
    """
    prompt_path = PROMPTS_DIR / filename

    if not prompt_path.exists():
        logger.error(
            "[PROMPT LOADER] Prompt file not found: %s",
            prompt_path,
            extra={"prompt_file": filename},
        )
        raise FileNotFoundError(f"Prompt file not found: {filename}")

    content = prompt_path.read_text(encoding="utf-8")
    logger.debug(
        "[PROMPT LOADER] Loaded prompt from %s",
        filename,
        extra={"prompt_file": filename, "length": len(content)},
    )
    return content


def get_classify_prompt(version: str = "v1") -> str:
    return load_prompt(f"classify_system_{version}.txt")


def get_analyze_prompt(version: str = "v1") -> str:
    return load_prompt(f"analyze_system_{version}.txt")


def get_welcome_prompt(version: str = "v1") -> str:
    return load_prompt(f"welcome_system_{version}.txt")
