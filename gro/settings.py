from __future__ import annotations

import os
from dataclasses import dataclass


def _env_bool(name: str, default: bool = False) -> bool:
    raw = os.getenv(name)
    if raw is None:
        return default
    return raw.strip().lower() in {"1", "true", "yes", "y", "on"}


def _env_int(name: str, default: int) -> int:
    raw = os.getenv(name)
    if raw is None:
        return default
    try:
        return int(raw)
    except ValueError:
        return default


def _env_float(name: str, default: float) -> float:
    raw = os.getenv(name)
    if raw is None:
        return default
    try:
        return float(raw)
    except ValueError:
        return default


@dataclass(frozen=True)
class Settings:
    # Core
    db_path: str = os.getenv("GRO_DB_PATH", "gro.db")
    poll_interval_s: float = _env_float("GRO_POLL_INTERVAL_S", 5.0)
    runtime: str = os.getenv("GRO_RUNTIME", "docker")  # docker|memory
    docker_network: str = os.getenv("GRO_DOCKER_NETWORK", "gro")

    # Rollout policy defaults
    max_surge: int = _env_int("GRO_MAX_SURGE", 1)
    max_unavailable: int = _env_int("GRO_MAX_UNAVAILABLE", 0)
    health_retry_budget: int = _env_int("GRO_HEALTH_RETRY_BUDGET", 3)
    batch_timeout_s: float = _env_float("GRO_BATCH_TIMEOUT_S", 60.0)
    rollout_timeout_s: float = _env_float("GRO_ROLLOUT_TIMEOUT_S", 600.0)

    # Observation
    observe_timeout_s: float = _env_float("GRO_OBSERVE_TIMEOUT_S", 5.0)
    observe_retries: int = _env_int("GRO_OBSERVE_RETRIES", 3)
    observe_backoff_s: float = _env_float("GRO_OBSERVE_BACKOFF_S", 0.5)
    probe_timeout_s: float = _env_float("GRO_PROBE_TIMEOUT_S", 2.0)

    # Email alerting (optional)
    enable_email: bool = _env_bool("GRO_ENABLE_EMAIL", False)
    smtp_host: str = os.getenv("GRO_SMTP_HOST", "smtp.gmail.com")
    smtp_port: int = _env_int("GRO_SMTP_PORT", 587)
    smtp_user: str | None = os.getenv("GRO_SMTP_USER")
    smtp_password: str | None = os.getenv("GRO_SMTP_PASSWORD")
    email_from: str | None = os.getenv("GRO_EMAIL_FROM")
    email_to: str | None = os.getenv("GRO_EMAIL_TO")


settings = Settings()
