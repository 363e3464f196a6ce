from typing import Any, Dict
from slowapi import Limiter, _rate_limit_exceeded_handler
from slowapi.util import get_remote_address
from app.core.auth_config import load_auth_config

limiter = Limiter(key_func=get_remote_address)

# effectively unlimited when rate limiting is switched off in config
DISABLED_LIMIT = 1000


def _rate_limit_config() -> Dict[str, Any]:
    return load_auth_config().get("auth", {}).get("rate_limit", {})


def _limit(key: str, default: int, period: str) -> str:
    config = _rate_limit_config()
    if not config.get("enabled", True):
        return f"{DISABLED_LIMIT}/{period}"
    return f"{config.get(key, default)}/{period}"


def get_login_rate_limit() -> str:
    return _limit("login_per_minute", 5, "minute")


def get_signup_rate_limit() -> str:
    return _limit("signup_per_hour", 20, "hour")


rate_limit_handler = _rate_limit_exceeded_handler
