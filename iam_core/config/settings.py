# iam_core/config/settings.py

from functools import lru_cache
from typing import Literal, Optional

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class IamSettings(BaseSettings):
    model_config = SettingsConfigDict(
        env_prefix="IAM_",
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    # --- Application ---
    app_name: str = "iam-core"
    environment: Literal["dev", "test", "prod"] = "dev"
    version: str = "0.1.0"

    # --- Database (SQL store is optional; in-memory store is used when unset) ---
    database_url: Optional[str] = None
    database_echo: bool = False

    # --- Audit ---
    audit_page_limit: int = Field(100, ge=1)
    audit_export_limit: int = Field(10000, ge=1)
    sensitive_audit_keys: tuple[str, ...] = (
        "password",
        "passwordhash",
        "mfasecret",
        "keyhash",
        "token",
        "apikey",
        "api_key",
        "secret",
        "ssn",
    )

    # --- Campaigns ---
    campaign_write_retries: int = Field(5, ge=1)

    # --- Observability ---
    log_level: Literal["DEBUG", "INFO", "WARNING", "ERROR"] = "INFO"


@lru_cache
def get_settings() -> IamSettings:
    return IamSettings()
