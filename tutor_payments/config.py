"""Runtime settings read from environment variables."""

from __future__ import annotations

import os
from dataclasses import dataclass
from typing import Mapping, Optional

from .data_models import DEFAULT_PAYMENT_THRESHOLD

DEFAULT_DATABASE_URL = "sqlite:///tutor_payments.sqlite3"


def _positive_int(env: Mapping[str, str], name: str, default: int) -> int:
    raw = env.get(name)
    if raw is None or not raw.strip():
        return default
    try:
        value = int(raw)
    except ValueError as exc:
        raise ValueError(f"{name} must be an integer; got {raw!r}") from exc
    if value <= 0:
        raise ValueError(f"{name} must be positive; got {value}")
    return value


@dataclass(frozen=True)
class Settings:
    database_url: str = DEFAULT_DATABASE_URL
    default_threshold: int = DEFAULT_PAYMENT_THRESHOLD
    grace_days: int = 30  # days before a PENDING payment is overdue
    log_level: str = "WARNING"

    @classmethod
    def from_env(cls, env: Optional[Mapping[str, str]] = None) -> "Settings":
        env = os.environ if env is None else env
        return cls(
            database_url=env.get("TUTOR_PAYMENTS_DATABASE_URL") or DEFAULT_DATABASE_URL,
            default_threshold=_positive_int(env, "TUTOR_PAYMENTS_DEFAULT_THRESHOLD", DEFAULT_PAYMENT_THRESHOLD),
            grace_days=_positive_int(env, "TUTOR_PAYMENTS_GRACE_DAYS", 30),
            log_level=(env.get("TUTOR_PAYMENTS_LOG_LEVEL") or "WARNING").upper(),
        )
