from __future__ import annotations

from typing import Optional

from pydantic import Field, SecretStr, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

_ENV_PREFIX = "AW3D30_STORAGE_"


class StorageSettings(BaseSettings):
    """Environment-only storage settings; secrets never come from YAML."""

    endpoint_url: Optional[str] = None
    region_name: Optional[str] = None
    access_key_id: Optional[SecretStr] = Field(default=None, repr=False)
    secret_access_key: Optional[SecretStr] = Field(default=None, repr=False)
    session_token: Optional[SecretStr] = Field(default=None, repr=False)

    model_config = SettingsConfigDict(env_prefix=_ENV_PREFIX, extra="ignore")

    @model_validator(mode="after")
    def _validate_credentials_pair(self) -> "StorageSettings":
        access = (
            self.access_key_id.get_secret_value().strip() if self.access_key_id else ""
        )
        secret = (
            self.secret_access_key.get_secret_value().strip()
            if self.secret_access_key
            else ""
        )

        if (access and not secret) or (secret and not access):
            raise ValueError(
                f"Both {_ENV_PREFIX}ACCESS_KEY_ID and "
                f"{_ENV_PREFIX}SECRET_ACCESS_KEY must be set together"
            )
        if self.access_key_id is not None and access == "":
            raise ValueError(f"{_ENV_PREFIX}ACCESS_KEY_ID must not be empty")
        if self.secret_access_key is not None and secret == "":
            raise ValueError(f"{_ENV_PREFIX}SECRET_ACCESS_KEY must not be empty")
        return self

    @property
    def has_credentials(self) -> bool:
        return self.access_key_id is not None and self.secret_access_key is not None
