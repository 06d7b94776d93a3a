import os
from dataclasses import dataclass
from pathlib import Path
from typing import Optional

from dotenv import load_dotenv

from orders_service.errors import ConfigurationError

# Force-load .env (Windows-safe, reload-safe)
BASE_DIR = Path(__file__).resolve().parent.parent
ENV_PATH = BASE_DIR / ".env"
load_dotenv(dotenv_path=ENV_PATH)

DEFAULT_DATABASE_URL = "sqlite:///./orders.db"

_ENV_NAMES = {
    "razorpay_key_id": "RAZORPAY_KEY_ID",
    "razorpay_key_secret": "RAZORPAY_KEY_SECRET",
    "razorpay_webhook_secret": "RAZORPAY_WEBHOOK_SECRET",
    "jwt_secret": "JWT_SECRET",
}


@dataclass
class Settings:
    database_url: str
    razorpay_key_id: Optional[str]
    razorpay_key_secret: Optional[str]
    razorpay_webhook_secret: Optional[str]
    jwt_secret: Optional[str]
    log_level: str
    log_json: bool

    def require(self, name: str) -> str:
        """Return a secret, raising ConfigurationError when it is unset."""
        value = getattr(self, name)
        if not value or not value.strip():
            raise ConfigurationError(
                "Server configuration error",
                detail=f"{_ENV_NAMES.get(name, name.upper())} is not set",
            )
        return value


def _flag(value: Optional[str], default: bool) -> bool:
    if value is None:
        return default
    return value.strip().lower() in ("1", "true", "yes", "on")


def get_settings() -> Settings:
    # Read on every call so tests can patch os.environ.
    return Settings(
        database_url=os.getenv("DATABASE_URL", DEFAULT_DATABASE_URL),
        razorpay_key_id=os.getenv("RAZORPAY_KEY_ID"),
        razorpay_key_secret=os.getenv("RAZORPAY_KEY_SECRET"),
        razorpay_webhook_secret=os.getenv("RAZORPAY_WEBHOOK_SECRET"),
        jwt_secret=os.getenv("JWT_SECRET"),
        log_level=os.getenv("LOG_LEVEL", "INFO").upper(),
        log_json=_flag(os.getenv("LOG_JSON"), True),
    )


def mask_key(key: Optional[str]) -> str:
    """Mask a credential for logging: rzp_test_RxmPZiwRq35bGo -> rzp_t***...5bGo."""
    if not key:
        return ""
    if len(key) <= 9:
        return "*" * len(key)
    return key[:5] + "*" * (len(key) - 9) + key[-4:]
