from __future__ import annotations

from functools import lru_cache
from typing import List, Literal, Optional

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    model_config = SettingsConfigDict(env_file=".env", case_sensitive=True, extra="ignore")

    # Supabase
    SUPABASE_URL: Optional[str] = None
    SUPABASE_KEY: Optional[str] = None

    # JWT / Auth
    JWT_SECRET: Optional[str] = Field(None, description="JWT verification secret")
    JWT_ALGO: str = Field("HS256", description="JWT signing algorithm")
    API_KEYS_PATH: Optional[str] = Field(None, description="YAML mapping of API keys to identities")

    # Authorization backend
    RBAC_BACKEND: Literal["supabase", "static"] = "static"
    RBAC_CONFIG_PATH: str = Field("config/rbac.yaml", description="YAML config for the static backend")

    # Transition rule cache
    RULE_CACHE_TTL_SECONDS: float = Field(600.0, gt=0)
    RULE_FETCH_TIMEOUT_MS: int = Field(250, gt=0)
    RULE_FALLBACK_RETRY_SECONDS: float = Field(30.0, gt=0)

    # Full-module bypass
    FULL_ACCESS_MODULE: str = "documents"
    FULL_ACCESS_ACTIONS: str = "read,create,update,approve,delete"

    LOG_LEVEL: str = "INFO"

    @field_validator("JWT_ALGO")
    @classmethod
    def _jwt_algo_upper(cls, v: str) -> str:
        return (v or "HS256").upper()

    @field_validator("LOG_LEVEL")
    @classmethod
    def _log_level_upper(cls, v: str) -> str:
        return (v or "INFO").upper()

    @property
    def full_access_actions(self) -> List[str]:
        return [a.strip() for a in self.FULL_ACCESS_ACTIONS.split(",") if a.strip()]


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    return Settings()
