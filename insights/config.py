"""
config.py -- Environment configuration and logging setup.

Values are read once from the process environment (and a project-level
.env file, if present). Entry points call configure_logging() exactly once.
"""

import logging
import os
import sys

from dotenv import load_dotenv

load_dotenv(os.path.join(os.path.dirname(__file__), "..", ".env"))

ANTHROPIC_API_KEY: str = os.getenv("ANTHROPIC_API_KEY", "")
INSIGHTS_MODEL: str = os.getenv("INSIGHTS_MODEL", "claude-haiku-4-5-20251001")
SIGNALS_MODEL: str = os.getenv("SIGNALS_MODEL", "claude-sonnet-4-5-20250929")
INSIGHTS_MAX_TOKENS: int = int(os.getenv("INSIGHTS_MAX_TOKENS", "1024"))
REQUEST_TIMEOUT_SECONDS: float = float(os.getenv("REQUEST_TIMEOUT_SECONDS", "60"))

SUPABASE_URL: str = os.getenv("SUPABASE_URL", "")
SUPABASE_SERVICE_ROLE_KEY: str = os.getenv("SUPABASE_SERVICE_ROLE_KEY", "")

ENGINE_PORT: int = int(os.getenv("ENGINE_PORT", "3002"))
RATE_LIMIT_PER_MINUTE: int = int(os.getenv("RATE_LIMIT_PER_MINUTE", "30"))
CORS_ORIGINS: list[str] = [
    origin.strip()
    for origin in os.getenv("CORS_ORIGINS", "http://localhost:3000,http://127.0.0.1:3000").split(",")
    if origin.strip()
]
LOG_LEVEL: str = os.getenv("LOG_LEVEL", "INFO")


def configure_logging(level: str = LOG_LEVEL) -> None:
    logging.basicConfig(
        level=getattr(logging, level.upper(), logging.INFO),
        format="%(asctime)s [%(name)s] %(levelname)s: %(message)s",
        handlers=[logging.StreamHandler(sys.stdout)],
    )
