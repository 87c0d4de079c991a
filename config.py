"""
Runtime configuration, read once from the environment.

Server-side secrets (Webflow token, provider keys) never leave the proxy;
the CLI only needs PROXY_URL.
"""

import os

# --- Webflow ---
WEBFLOW_API_TOKEN = os.environ.get("WEBFLOW_API_TOKEN")
WEBFLOW_API_BASE_URL = os.environ.get("WEBFLOW_API_BASE_URL", "https://api.webflow.com/v2")

# --- AI providers ---
OPENAI_API_KEY = os.environ.get("OPENAI_API_KEY")
OPENAI_API_BASE_URL = os.environ.get("OPENAI_API_BASE_URL", "https://api.openai.com/v1")
GEMINI_API_KEY = os.environ.get("GEMINI_API_KEY")
GEMINI_API_BASE_URL = os.environ.get("GEMINI_API_BASE_URL", "https://generativelanguage.googleapis.com")

# "provider:model" as sent by the client
DEFAULT_MODEL = os.environ.get("DEFAULT_MODEL", "gemini:gemini-2.5-flash")
SERVER_DEFAULT_MODEL = "openai:gpt-4o-mini"

# OpenAI rate-limit retry: 3 attempts, 2s then 4s
RATE_LIMIT_MAX_RETRIES = int(os.environ.get("RATE_LIMIT_MAX_RETRIES", "3"))
RATE_LIMIT_BASE_DELAY_S = float(os.environ.get("RATE_LIMIT_BASE_DELAY_S", "2"))

# --- HTTP ---
PROXY_URL = os.environ.get("PROXY_URL", "http://127.0.0.1:8000/api")
HTTP_TIMEOUT_S = float(os.environ.get("HTTP_TIMEOUT_S", "60"))
GEMINI_TIMEOUT_S = float(os.environ.get("GEMINI_TIMEOUT_S", "30"))
CORS_ORIGINS = [o.strip() for o in os.environ.get("CORS_ORIGINS", "*").split(",") if o.strip()]

LOG_LEVEL = os.environ.get("LOG_LEVEL", "INFO")
