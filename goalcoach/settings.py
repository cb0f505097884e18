# goalcoach/settings.py

import os

from dotenv import load_dotenv

load_dotenv()

# --- Configuration ---
DEEPSEEK_API_URL    = os.getenv("DEEPSEEK_API_URL", "https://api.deepseek.com/v1")
DEEPSEEK_API_KEY    = os.getenv("DEEPSEEK_API_KEY")
DEEPSEEK_MODEL      = os.getenv("DEEPSEEK_MODEL", "deepseek-chat")

OPENAI_API_KEY      = os.getenv("OPENAI_API_KEY")
OPENAI_BASE_URL     = os.getenv("OPENAI_BASE_URL")

PROJECT_ID          = os.getenv("GOOGLE_CLOUD_PROJECT", "your-project-id")
REGION              = os.getenv("GOOGLE_CLOUD_REGION", "us-central1")

DEFAULT_MODEL       = os.getenv("GOALCOACH_MODEL", DEEPSEEK_MODEL)
LLM_TIMEOUT         = float(os.getenv("LLM_TIMEOUT", "60"))
LLM_RETRIES         = int(os.getenv("LLM_RETRIES", "3"))
DEFAULT_TEMPERATURE = float(os.getenv("DEFAULT_TEMPERATURE", "0.7"))
DEFAULT_MAX_TOKENS  = int(os.getenv("DEFAULT_MAX_TOKENS", "1000"))

CONTEXT_CHAR_BUDGET = int(os.getenv("CONTEXT_CHAR_BUDGET", "1000"))
SESSION_TTL_SECONDS = int(os.getenv("SESSION_TTL_SECONDS", str(24 * 3600)))

SIMULATE            = os.getenv("GOALCOACH_SIMULATE", "").strip().lower() in ("1", "true", "yes")
LOG_LEVEL           = os.getenv("LOG_LEVEL", "INFO").upper()

# Completeness is 0-100, confidence is 0-1.
PLANNING_COMPLETENESS_THRESHOLD = 80
CONFIDENCE_TARGET = 0.8
