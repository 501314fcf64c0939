"""Configuration for juggler."""

import os
from pathlib import Path
from dotenv import load_dotenv

# Load environment variables
load_dotenv()


def _env_or_default(name: str, default: str | None) -> str | None:
    """
    Get environment variable value or default, treating empty string as unset.

    docker-compose and shell wrappers often pass empty values (AGENT_MODEL=""),
    which should behave the same as not setting the variable at all.
    """
    value = os.getenv(name, None)
    if value is None or value == "":
        return default
    return value


def _env_bool(name: str, default: bool = False) -> bool:
    return os.getenv(name, "true" if default else "false").lower() == "true"


# Project whose .juggle directory holds balls and sessions
PROJECT_DIR = Path(os.getenv("PROJECT_DIR", ".")).resolve()
JUGGLE_DIR = os.getenv("JUGGLE_DIR", ".juggle")

# Agent Configuration
AGENT_BACKEND = os.getenv("AGENT_BACKEND", "claude")
AGENT_COMMAND = os.getenv("AGENT_COMMAND", "claude")
AGENT_MODEL = _env_or_default("AGENT_MODEL", None)  # None = use the CLI default
AGENT_PERMISSION = os.getenv("AGENT_PERMISSION", "acceptEdits")  # acceptEdits, plan, bypass
AGENT_MODE = os.getenv("AGENT_MODE", "headless")  # headless or interactive

# Main Loop Configuration
MAX_ITERATIONS = int(os.getenv("MAX_ITERATIONS", "10"))
ITERATION_TIMEOUT_MINUTES = float(os.getenv("ITERATION_TIMEOUT_MINUTES", "0"))  # 0 = no timeout
ITERATION_DELAY_MINUTES = float(os.getenv("ITERATION_DELAY_MINUTES", "0"))
ITERATION_DELAY_FUZZ = float(os.getenv("ITERATION_DELAY_FUZZ", "0"))  # +/- minutes

# Rate Limit Configuration
MAX_WAIT_MINUTES = float(os.getenv("MAX_WAIT_MINUTES", "0"))  # 0 = unlimited
OVERLOAD_RETRY_MINUTES = float(os.getenv("OVERLOAD_RETRY_MINUTES", "10"))

# Logging Configuration
LOG_DIR = os.getenv("LOG_DIR", "logs")
LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO")
LOG_FSYNC = _env_bool("LOG_FSYNC")
