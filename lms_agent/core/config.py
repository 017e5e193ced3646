"""
Application configuration (env, settings, constants).

Responsibility: Centralize config loading, environment variables, and app-wide
constants. Keeps the rest of the app decoupled from how config is sourced.
"""

import os

from dotenv import load_dotenv

load_dotenv()


def _int_env(name: str, default: int) -> int:
    raw = os.getenv(name, "").strip()
    return int(raw) if raw else default


def _float_env(name: str, default: float) -> float:
    raw = os.getenv(name, "").strip()
    return float(raw) if raw else default


LOG_LEVEL: str = os.getenv("LOG_LEVEL", "INFO").strip().upper() or "INFO"

# SQLite persistence (relative paths resolve against the project root)
DB_PATH: str = os.getenv("LMS_AGENT_DB_PATH", "data/lms_agent.db").strip() or "data/lms_agent.db"

# OpenAI (primary chat model). When unset, the gateway falls back to Hugging Face.
OPENAI_API_KEY: str = os.getenv("OPENAI_API_KEY", "").strip()
OPENAI_LLM_MODEL: str = (
    os.getenv("OPENAI_LLM_MODEL", "gpt-4-turbo").strip() or "gpt-4-turbo"
)

# Hugging Face router chat completions (OpenAI-compatible, supports tools)
HF_API_KEY: str = os.getenv("HF_API_KEY", "").strip()
HF_CHAT_URL: str = (
    os.getenv("HF_CHAT_URL", "https://router.huggingface.co/v1/chat/completions").strip()
    or "https://router.huggingface.co/v1/chat/completions"
)
HF_LLM_MODEL: str = (
    os.getenv("HF_LLM_MODEL", "meta-llama/Llama-3.1-8B-Instruct").strip()
    or "meta-llama/Llama-3.1-8B-Instruct"
)

# Chat completion request settings (seconds for timeout)
LLM_API_TIMEOUT: float = _float_env("LLM_API_TIMEOUT", 60.0)
# Each SDK retry gets the full timeout again, so a call can take (retries + 1) * LLM_API_TIMEOUT
LLM_MAX_RETRIES: int = _int_env("LLM_MAX_RETRIES", 0)
LLM_TEMPERATURE: float = _float_env("LLM_TEMPERATURE", 0.7)
LLM_MAX_TOKENS: int = _int_env("LLM_MAX_TOKENS", 2000)

# Retrieval: whitespace tokens shorter than this are dropped as stop words
MIN_KEYWORD_LENGTH: int = _int_env("MIN_KEYWORD_LENGTH", 4)
MATCH_SCORE: float = 1.0

# Rough prompt budgeting for context policies
CHARS_PER_TOKEN: int = _int_env("CHARS_PER_TOKEN", 4)

# Prior messages replayed into each turn (most recent, oldest-first)
HISTORY_WINDOW: int = _int_env("HISTORY_WINDOW", 10)

# search_course_content tool
SEARCH_RESULT_LIMIT: int = _int_env("SEARCH_RESULT_LIMIT", 3)
SNIPPET_RADIUS: int = _int_env("SNIPPET_RADIUS", 100)
SNIPPET_FALLBACK_LENGTH: int = 200

NO_CONTENT_SENTINEL: str = "No course content available for context."
