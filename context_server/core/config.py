"""
Runtime configuration for the context server.

Every setting is read from the environment at import time; scripts/run_server.py
loads a .env file before anything imports this module.
"""

import os
from pathlib import Path

# Database path configuration
DB_PATH = os.getenv("DB_PATH", "./data/context.db")

DEBUG = os.getenv("DEBUG", "false").lower() == "true"
LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO").upper()

# HTTP server
HOST = os.getenv("HOST", "127.0.0.1")
PORT = int(os.getenv("PORT", "3000"))
CORS_ORIGINS = [o.strip() for o in os.getenv("CORS_ORIGINS", "*").split(",") if o.strip()]

# Live updates
PING_INTERVAL_SEC = float(os.getenv("PING_INTERVAL_SEC", "30"))
SUBSCRIBER_QUEUE_SIZE = int(os.getenv("SUBSCRIBER_QUEUE_SIZE", "100"))

# Payload limits
MAX_BATCH_SIZE = int(os.getenv("MAX_BATCH_SIZE", "100"))
MAX_VALUE_SIZE = int(os.getenv("MAX_VALUE_SIZE", str(1024 * 1024)))  # 1MB

# Token header presence check (never verified, only required to be present)
REQUIRE_TOKEN_HEADER = os.getenv("REQUIRE_TOKEN_HEADER", "false").lower() == "true"
TOKEN_HEADER = os.getenv("TOKEN_HEADER", "X-Auth-Token")

# Version string
VERSION = "1.0.0"


def debug_enabled():
    """Check if debug mode is enabled."""
    return os.getenv("DEBUG", "false").lower() == "true"


def ensure_db_directory(db_path: str = None):
    """Ensure the database directory exists."""
    path = db_path or DB_PATH
    if path == ":memory:":
        return
    Path(path).parent.mkdir(parents=True, exist_ok=True)


def validate_config():
    """Validate configuration and return any issues."""
    issues = []

    if PING_INTERVAL_SEC <= 0:
        issues.append("PING_INTERVAL_SEC must be > 0")

    if SUBSCRIBER_QUEUE_SIZE < 1:
        issues.append("SUBSCRIBER_QUEUE_SIZE must be >= 1")

    if MAX_BATCH_SIZE < 1:
        issues.append("MAX_BATCH_SIZE must be >= 1")

    if MAX_VALUE_SIZE < 1:
        issues.append("MAX_VALUE_SIZE must be >= 1")

    if REQUIRE_TOKEN_HEADER and not TOKEN_HEADER.strip():
        issues.append("REQUIRE_TOKEN_HEADER requires a non-empty TOKEN_HEADER")

    if LOG_LEVEL not in ["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"]:
        issues.append(f"Invalid LOG_LEVEL: {LOG_LEVEL}")

    return issues
