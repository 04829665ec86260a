from __future__ import annotations

from typing import List

from pydantic import AnyUrl, Field, Json, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    model_config = SettingsConfigDict(env_prefix="AUTH_RELAY_", env_file=".env", extra="ignore")

    # Service
    SERVICE_NAME: str = Field(default="auth-relay-service")
    ENV: str = Field(default="local")
    LOG_LEVEL: str = Field(default="INFO")
    HOST: str = Field(default="0.0.0.0")
    PORT: int = Field(default=3000)
    CERT_DIR: str = Field(default="cert")

    # One-time codes
    CODE_TTL_SECONDS: float = Field(default=300, gt=0)
    CODE_GRACE_SECONDS: float = Field(default=1, gt=0)
    LOGIN_WINDOW_SECONDS: float = Field(default=600, gt=0)

    # Who may receive the postMessage carrying the code
    # defaults are validated too, so the empty default must be JSON text
    ALLOWED_ORIGINS: Json[List[str]] = Field(default="[]")
    BIND_CODE_TO_ORIGIN: bool = Field(default=True)

    # Rate limiting (per client IP)
    RATE_LIMIT_MAX_CALLS: int = Field(default=30)
    RATE_LIMIT_WINDOW_SECONDS: int = Field(default=60)

    # Riot auth (unofficial endpoints)
    RIOT_AUTH_URL: AnyUrl = Field(default="https://auth.riotgames.com/api/v1/authorization")
    RIOT_ENTITLEMENTS_URL: AnyUrl = Field(default="https://entitlements.auth.riotgames.com/api/token/v1")
    RIOT_USERINFO_URL: AnyUrl = Field(default="https://auth.riotgames.com/userinfo")
    RIOT_CLIENT_ID: str = Field(default="play-valorant-web-prod")
    RIOT_REDIRECT_URI: str = Field(default="https://playvalorant.com/opt_in")
    RIOT_TIMEOUT_SECONDS: float = Field(default=10)

    @model_validator(mode="after")
    def _no_wildcard_outside_local(self) -> "Settings":
        if "*" in self.ALLOWED_ORIGINS and self.ENV.lower() != "local":
            raise ValueError("ALLOWED_ORIGINS may only contain '*' when ENV=local")
        return self

    @property
    def allows_any_origin(self) -> bool:
        return "*" in self.ALLOWED_ORIGINS


settings = Settings()
