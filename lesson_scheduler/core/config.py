import os

from dotenv import load_dotenv


load_dotenv()


def _get_bool(value: str | None, default: bool = False) -> bool:
    if value is None:
        return default
    return value.strip().lower() in {"1", "true", "yes", "on"}


def _get_int(value: str | None, default: int) -> int:
    if value is None or not value.strip():
        return default
    return int(value)


def _get_list(value: str | None, default: list[str]) -> list[str]:
    if value is None:
        return default
    return [item.strip() for item in value.split(",") if item.strip()]

APP_ENV = os.getenv("APP_ENV", "development")

DATABASE_URL = os.getenv("DATABASE_URL", "sqlite:///./scheduling.db")
CORS_ORIGINS = _get_list(os.getenv("CORS_ORIGINS"), ["http://localhost:3000"])


RESERVATION_TTL_MINUTES = _get_int(os.getenv("RESERVATION_TTL_MINUTES"), 5)
RESERVATION_RENEWAL_LEAD_SECONDS = _get_int(os.getenv("RESERVATION_RENEWAL_LEAD_SECONDS"), 60)
RESERVATION_TIMERS_ENABLED = _get_bool(os.getenv("RESERVATION_TIMERS_ENABLED"), default=True)

SLOT_DURATION_MINUTES = _get_int(os.getenv("SLOT_DURATION_MINUTES"), 30)
MIN_WINDOW_MINUTES = _get_int(os.getenv("MIN_WINDOW_MINUTES"), 30)
MIN_BOOKING_LEAD_HOURS = _get_int(os.getenv("MIN_BOOKING_LEAD_HOURS"), 24)
MIN_CANCELLATION_LEAD_HOURS = _get_int(os.getenv("MIN_CANCELLATION_LEAD_HOURS"), 24)

FALLBACK_TIMEZONE = os.getenv("FALLBACK_TIMEZONE", "Etc/UTC")

REFRESH_INTERVAL_SECONDS = _get_int(os.getenv("REFRESH_INTERVAL_SECONDS"), 10)
REFRESH_DEBOUNCE_SECONDS = _get_int(os.getenv("REFRESH_DEBOUNCE_SECONDS"), 2)

JWT_SECRET_KEY = os.getenv("JWT_SECRET_KEY", "change-me")
JWT_ALGORITHM = os.getenv("JWT_ALGORITHM", "HS256")
JWT_EXPIRES_MINUTES = int(os.getenv("JWT_EXPIRES_MINUTES", "60"))

def validate_runtime_config() -> None:
    if APP_ENV.lower() == "production" and JWT_SECRET_KEY == "change-me":
        raise RuntimeError("JWT_SECRET_KEY must be set in production.")
    if RESERVATION_TTL_MINUTES <= 0:
        raise RuntimeError("RESERVATION_TTL_MINUTES must be positive.")
    if RESERVATION_RENEWAL_LEAD_SECONDS >= RESERVATION_TTL_MINUTES * 60:
        raise RuntimeError("RESERVATION_RENEWAL_LEAD_SECONDS must be shorter than the reservation lifetime.")
    if SLOT_DURATION_MINUTES <= 0:
        raise RuntimeError("SLOT_DURATION_MINUTES must be positive.")
    if MIN_CANCELLATION_LEAD_HOURS < 0:
        raise RuntimeError("MIN_CANCELLATION_LEAD_HOURS must not be negative.")
