import logging
import os
from pathlib import Path

logger = logging.getLogger(__name__)


def env_int(name: str, default: int, *, minimum: int = 0) -> int:
    raw = os.getenv(name)
    if raw is None or not raw.strip():
        return default
    try:
        value = int(raw)
    except ValueError:
        logger.warning("Ignoring invalid integer for %s: %r", name, raw)
        return default
    if value < minimum:
        logger.warning("Ignoring out-of-range value for %s: %r", name, raw)
        return default
    return value


def env_float(name: str, default: float, *, minimum: float, maximum: float) -> float:
    raw = os.getenv(name)
    if raw is None or not raw.strip():
        return default
    try:
        value = float(raw)
    except ValueError:
        logger.warning("Ignoring invalid float for %s: %r", name, raw)
        return default
    if not minimum <= value <= maximum:
        logger.warning("Ignoring out-of-range value for %s: %r", name, raw)
        return default
    return value


def env_choice(name: str, default: str, choices: set[str]) -> str:
    raw = os.getenv(name, default).strip().lower()
    if raw not in choices:
        logger.warning("Ignoring unsupported value for %s: %r", name, raw)
        return default
    return raw


def parse_csv_env(name: str, default: str) -> list[str]:
    raw = os.getenv(name, default)
    return [item.strip() for item in raw.split(",") if item.strip()]


default_db = str(Path(__file__).resolve().parents[1] / "data" / "scheduling.sqlite3")
SCHEDULING_DB_PATH = os.getenv("SCHEDULING_DB_PATH", default_db)

PLATFORM_FEE_PERCENTAGE = env_float("PLATFORM_FEE_PERCENTAGE", 0.10, minimum=0.0, maximum=1.0)
DEFAULT_CURRENCY = os.getenv("DEFAULT_CURRENCY", "CHF").strip().upper() or "CHF"
DEFAULT_SLOT_MINUTES = env_int("DEFAULT_SLOT_MINUTES", 60, minimum=1)
ALTERNATIVE_EXPIRY_HOURS = env_int("ALTERNATIVE_EXPIRY_HOURS", 24, minimum=1)
DEFAULT_CONFLICT_SCOPE = env_choice("DEFAULT_CONFLICT_SCOPE", "service", {"service", "vendor"})
BOOKING_PAGE_SIZE_MAX = env_int("BOOKING_PAGE_SIZE_MAX", 100, minimum=1)

LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO").strip().upper() or "INFO"
