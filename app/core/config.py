from pydantic_settings import BaseSettings
from typing import List
import json
import os

DEV_SECRET_KEY = "dev-secret-key-change-in-production"
MIN_SECRET_KEY_LENGTH = 32


def parse_cors_origins(value: str) -> List[str]:
    parsed = json.loads(value)
    if not isinstance(parsed, list):
        raise ValueError(f"CORS_ORIGINS must be a JSON array, got: {type(parsed).__name__}")

    if not all(isinstance(item, str) for item in parsed):
        raise ValueError("CORS_ORIGINS array must contain only strings")

    return parsed


class Settings(BaseSettings):
    # Infrastructure
    DATABASE_URL: str = "sqlite:///./notes_auth.db"

    # Credentials (sensitive, from environment)
    SECRET_KEY: str = DEV_SECRET_KEY

    # Environment
    ENVIRONMENT: str = "development"
    SERVICE_NAME: str = "notes-auth-service"
    SERVICE_VERSION: str = "1.0.0"
    LOG_LEVEL: str = "INFO"

    # Auth behavior configuration is loaded from config/auth.yaml
    # See app.core.auth_config.load_auth_config()
    AUTH_CONFIG_PATH: str = "config/auth.yaml"

    class Config:
        env_file = ".env"
        case_sensitive = True

    @property
    def IS_PRODUCTION(self) -> bool:
        return self.ENVIRONMENT == "production"

    @property
    def CORS_ORIGINS(self) -> List[str]:
        raw_value = os.getenv("CORS_ORIGINS")
        if not raw_value:
            return ["http://localhost:3000"]
        return parse_cors_origins(raw_value)

    def check_secret_key(self) -> None:
        """Refuse to run a production service with a guessable signing key."""
        if not self.IS_PRODUCTION:
            return
        if self.SECRET_KEY == DEV_SECRET_KEY:
            raise RuntimeError("SECRET_KEY must be set in production")
        if len(self.SECRET_KEY) < MIN_SECRET_KEY_LENGTH:
            raise RuntimeError(
                f"SECRET_KEY must be at least {MIN_SECRET_KEY_LENGTH} characters in production"
            )


settings = Settings()
