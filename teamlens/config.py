# teamlens/config.py

import os
from dataclasses import dataclass
from typing import Optional

from dotenv import load_dotenv


def _int_env(name: str, default: int) -> int:
    try:
        return int(os.getenv(name, str(default)))
    except (TypeError, ValueError):
        return default


def _float_env(name: str, default: float) -> float:
    try:
        return float(os.getenv(name, str(default)))
    except (TypeError, ValueError):
        return default


def _clamp(value: int, low: int, high: int) -> int:
    return max(low, min(high, value))


@dataclass
class Settings:
    """Runtime configuration, read from the environment (and .env if present)."""

    llm_provider: str = "groq"
    groq_api_key: Optional[str] = None
    groq_model: str = "llama-3.1-8b-instant"
    groq_max_tokens: int = 1000
    ollama_base_url: str = "http://127.0.0.1:11434"
    ollama_model: str = "llama3.1:8b"
    llm_temperature: float = 0.1
    llm_timeout_seconds: float = 30.0

    database_backend: str = "duckdb"
    duckdb_path: str = "data/teamlens.duckdb"
    pg_host: Optional[str] = None
    pg_port: int = 5432
    pg_db: str = "postgres"
    pg_user: Optional[str] = None
    pg_password: Optional[str] = None
    pg_sslmode: str = "prefer"

    statement_timeout_ms: int = 15000
    max_result_rows: int = 400
    history_limit: int = 5
    sql_variant: str = "simple"
    default_app_type: str = "pioneer"
    max_llm_calls: int = 3
    log_level: str = "INFO"

    @classmethod
    def from_env(cls) -> "Settings":
        load_dotenv()
        return cls(
            llm_provider=os.getenv("LLM_PROVIDER", "groq").strip().lower(),
            groq_api_key=os.getenv("GROQ_API_KEY"),
            groq_model=os.getenv("GROQ_MODEL", "llama-3.1-8b-instant"),
            groq_max_tokens=_int_env("GROQ_MAX_TOKENS", 1000),
            ollama_base_url=os.getenv("OLLAMA_BASE_URL", "http://127.0.0.1:11434"),
            ollama_model=os.getenv("OLLAMA_MODEL", "llama3.1:8b"),
            llm_temperature=_float_env("LLM_TEMPERATURE", 0.1),
            llm_timeout_seconds=_float_env("LLM_TIMEOUT_SECONDS", 30.0),
            database_backend=os.getenv("DATABASE_BACKEND", "duckdb").strip().lower(),
            duckdb_path=os.getenv("DUCKDB_PATH", "data/teamlens.duckdb"),
            pg_host=os.getenv("PG_HOST"),
            pg_port=_int_env("PG_PORT", 5432),
            pg_db=os.getenv("PG_DB", "postgres"),
            pg_user=os.getenv("PG_USER"),
            pg_password=os.getenv("PG_PASSWORD"),
            pg_sslmode=os.getenv("PG_SSLMODE", "prefer"),
            # Statement timeout stays inside the 10-15s window
            statement_timeout_ms=_clamp(_int_env("STATEMENT_TIMEOUT_MS", 15000), 10000, 15000),
            max_result_rows=max(1, _int_env("MAX_RESULT_ROWS", 400)),
            history_limit=_clamp(_int_env("HISTORY_LIMIT", 5), 3, 5),
            sql_variant=os.getenv("SQL_VARIANT", "simple").strip().lower(),
            default_app_type=os.getenv("DEFAULT_APP_TYPE", "pioneer").strip().lower(),
            max_llm_calls=max(1, _int_env("MAX_LLM_CALLS", 3)),
            log_level=os.getenv("LOG_LEVEL", "INFO").upper(),
        )
