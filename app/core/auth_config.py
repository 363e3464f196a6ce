import yaml
import logging
from dataclasses import dataclass
from datetime import timedelta
from pathlib import Path
from typing import Dict, Any, Optional

logger = logging.getLogger(__name__)

_config_cache: Dict[str, Any] = None


def load_auth_config(path: Optional[str] = None) -> Dict[str, Any]:
    """
    Load auth configuration from YAML file.
    Caches the configuration for subsequent calls.
    """
    global _config_cache
    if _config_cache is None:
        if path is None:
            from app.core.config import settings
            path = settings.AUTH_CONFIG_PATH
        config_file = Path(path)
        if config_file.exists():
            try:
                with open(config_file) as f:
                    _config_cache = yaml.safe_load(f) or {}
                logger.info(f"Loaded auth configuration from {config_file}")
            except Exception as e:
                logger.error(f"Error loading auth configuration: {e}")
                _config_cache = {}
        else:
            logger.warning(f"Auth configuration file not found at {config_file}, using defaults")
            _config_cache = {}
    return _config_cache


def reset_auth_config_cache() -> None:
    global _config_cache
    _config_cache = None


@dataclass(frozen=True)
class AuthOptions:
    """Typed view over the ``auth`` section of the YAML config."""

    algorithm: str = "HS256"
    access_token_expire_minutes: int = 15
    refresh_token_expire_days: int = 7
    bcrypt_rounds: int = 12
    rotate_refresh_tokens: bool = False
    sweep_interval_minutes: int = 60

    @property
    def access_token_ttl(self) -> timedelta:
        return timedelta(minutes=self.access_token_expire_minutes)

    @property
    def refresh_token_ttl(self) -> timedelta:
        return timedelta(days=self.refresh_token_expire_days)

    @classmethod
    def from_config(cls, config: Dict[str, Any]) -> "AuthOptions":
        auth_config = config.get("auth", {})
        return cls(
            algorithm=auth_config.get("algorithm", "HS256"),
            access_token_expire_minutes=auth_config.get("access_token_expire_minutes", 15),
            refresh_token_expire_days=auth_config.get("refresh_token_expire_days", 7),
            bcrypt_rounds=auth_config.get("bcrypt_rounds", 12),
            rotate_refresh_tokens=bool(auth_config.get("rotate_refresh_tokens", False)),
            sweep_interval_minutes=auth_config.get("sweep_interval_minutes", 60),
        )
