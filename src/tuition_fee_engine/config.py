# config.py

import os
from dataclasses import dataclass, replace
from decimal import Decimal
from typing import Mapping, Optional

from dotenv import load_dotenv

# GST is a flat rate baked into the domain, not a tunable setting.
GST_RATE_PERCENT = Decimal("18")

# Smallest currency unit we keep (paise).
MONEY_QUANTUM = Decimal("0.01")


@dataclass(frozen=True)
class EngineSettings:
    """
    Tunables for schedule generation and status derivation.

    These describe how the institution runs its payment calendar, not
    anything about a particular student.
    """
    pending_threshold_days: int = 10     # due this far out or more -> "pending_10_plus_days"
    semester_length_months: int = 6      # spacing between semester due dates
    max_partial_payments: int = 2        # partial submissions allowed per instalment
    log_level: str = "INFO"
    cache_enabled: bool = True


DEFAULT_ENGINE_SETTINGS = EngineSettings()


_ENV_PREFIX = "FEE_ENGINE_"


def _truthy(val: Optional[str]) -> bool:
    if not val:
        return False
    return val.strip().lower() in {"1", "true", "yes", "on", "y"}


def _int_from_env(env: Mapping[str, str], key: str, default: int) -> int:
    raw = env.get(_ENV_PREFIX + key)
    if raw is None or not raw.strip():
        return default
    try:
        value = int(raw)
    except ValueError:
        raise ValueError(f"{_ENV_PREFIX + key} must be an integer, got {raw!r}")
    if value < 0:
        raise ValueError(f"{_ENV_PREFIX + key} must not be negative, got {value}")
    return value


def load_settings(env: Optional[Mapping[str, str]] = None) -> EngineSettings:
    """
    Build settings from FEE_ENGINE_* environment variables.

    When no mapping is passed, a local .env file is loaded first and the
    process environment is used. Unset variables keep the defaults.
    """
    if env is None:
        load_dotenv()
        env = os.environ

    base = DEFAULT_ENGINE_SETTINGS
    cache_raw = env.get(_ENV_PREFIX + "CACHE_ENABLED")

    return replace(
        base,
        pending_threshold_days=_int_from_env(env, "PENDING_THRESHOLD_DAYS", base.pending_threshold_days),
        semester_length_months=_int_from_env(env, "SEMESTER_LENGTH_MONTHS", base.semester_length_months) or base.semester_length_months,
        max_partial_payments=_int_from_env(env, "MAX_PARTIAL_PAYMENTS", base.max_partial_payments),
        log_level=(env.get(_ENV_PREFIX + "LOG_LEVEL") or base.log_level).upper(),
        cache_enabled=base.cache_enabled if cache_raw is None else _truthy(cache_raw),
    )
