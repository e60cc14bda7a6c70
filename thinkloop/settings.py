"""Configuration settings for the thinkloop agent engine."""

import logging
import os
from dotenv import load_dotenv

load_dotenv()

# Logging setup
LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO")
logging.basicConfig(
    level=getattr(logging, LOG_LEVEL),
    format="%(asctime)s | %(name)s | %(levelname)s | %(message)s",
    datefmt="%H:%M:%S",
)

# OpenRouter (OpenAI-compatible)
# Models with reliable tool calling:
# - openai/gpt-4o-mini (fast, cheap)
# - anthropic/claude-3.5-sonnet (balanced)
OPENROUTER_API_KEY = os.getenv("OPENROUTER_API_KEY")
OPENROUTER_BASE_URL = "https://openrouter.ai/api/v1"
OPENROUTER_DEFAULT_MODEL = os.getenv("OPENROUTER_DEFAULT_MODEL", "openai/gpt-4o-mini")

# OpenAI (direct API)
OPENAI_API_KEY = os.getenv("OPENAI_API_KEY")
OPENAI_DEFAULT_MODEL = os.getenv("OPENAI_DEFAULT_MODEL", "gpt-4o-mini")

# Anthropic (direct API)
ANTHROPIC_API_KEY = os.getenv("ANTHROPIC_API_KEY")
ANTHROPIC_DEFAULT_MODEL = os.getenv("ANTHROPIC_DEFAULT_MODEL", "claude-3-5-haiku-20241022")

# Client settings
LLM_MAX_RETRIES = int(os.getenv("LLM_MAX_RETRIES", "3"))
LLM_TIMEOUT_SECONDS = float(os.getenv("LLM_TIMEOUT_SECONDS", "120"))

# Loop limits (non-positive values passed at runtime fall back to these)
DEFAULT_MAX_ITERATIONS = 10
DEFAULT_MAX_ROUNDS = 5

# Event publishing (optional)
EVENTS_URL = os.getenv("THINKLOOP_EVENTS_URL", "")
