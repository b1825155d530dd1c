"""
Environment-driven settings for the finance agent.

Values are read on every call rather than cached at import time, so a
changed .env (or monkeypatched env var in tests) takes effect immediately.
"""

import os

from dotenv import load_dotenv

load_dotenv()

DEFAULT_MODEL = "claude-sonnet-4-20250514"
DEFAULT_BUDGET_VND = 10_000_000
DEFAULT_HISTORY_EXCHANGES = 10
DEFAULT_MAX_SESSIONS = 1000
DEFAULT_SESSION_IDLE_SECONDS = 1800


def _int_env(name: str, default: int) -> int:
    raw = os.getenv(name)
    if raw is None or not raw.strip():
        return default
    try:
        return int(raw)
    except ValueError:
        return default


def _float_env(name: str, default: float) -> float:
    raw = os.getenv(name)
    if raw is None or not raw.strip():
        return default
    try:
        return float(raw)
    except ValueError:
        return default


def anthropic_api_key() -> str | None:
    return os.getenv("ANTHROPIC_API_KEY")


def agent_model() -> str:
    return os.getenv("AGENT_MODEL", DEFAULT_MODEL)


def agent_max_tokens() -> int:
    return _int_env("AGENT_MAX_TOKENS", 1024)


def agent_temperature() -> float:
    return _float_env("AGENT_TEMPERATURE", 0.3)


def agent_timeout() -> float:
    return _float_env("AGENT_TIMEOUT", 25.0)


def history_exchanges() -> int:
    """Number of user/assistant exchanges kept per session (minimum 1)."""
    return max(1, _int_env("CHAT_HISTORY_EXCHANGES", DEFAULT_HISTORY_EXCHANGES))


def max_sessions() -> int:
    return max(1, _int_env("MAX_SESSIONS", DEFAULT_MAX_SESSIONS))


def session_idle_seconds() -> float:
    """Seconds without a request after which a session is evicted."""
    seconds = _float_env("SESSION_IDLE_SECONDS", DEFAULT_SESSION_IDLE_SECONDS)
    return seconds if seconds > 0 else DEFAULT_SESSION_IDLE_SECONDS


def default_budget() -> int:
    budget = _int_env("DEFAULT_MONTHLY_BUDGET", DEFAULT_BUDGET_VND)
    return budget if budget > 0 else DEFAULT_BUDGET_VND


def ledger_db_path() -> str:
    """SQLite path for the ledger (LEDGER_DB_PATH, ':memory:' allowed)."""
    env_path = os.getenv("LEDGER_DB_PATH")
    if env_path:
        return env_path
    agent_dir = os.path.dirname(os.path.abspath(__file__))
    data_dir = os.path.join(agent_dir, "data")
    os.makedirs(data_dir, exist_ok=True)
    return os.path.join(data_dir, "ledger.db")


def market_timeout() -> float:
    return _float_env("MARKET_TIMEOUT", 5.0)


def cors_origins() -> list[str]:
    origins = os.getenv("CORS_ORIGINS", "*")
    return [o.strip() for o in origins.split(",") if o.strip()]


def log_level() -> str:
    return os.getenv("LOG_LEVEL", "INFO").upper()
