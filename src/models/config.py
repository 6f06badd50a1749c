"""Configuration models for the sync agent YAML file.

The file is validated into SyncConfig. Secrets are referenced as ${VAR}
placeholders and substituted from the environment by ConfigManager.
"""

from enum import Enum
from pathlib import Path
from typing import Optional

from pydantic import BaseModel, Field, HttpUrl, SecretStr, field_validator

from src.models.sync import AgentConfig, Credentials


class LogLevel(str, Enum):
    DEBUG = "DEBUG"
    INFO = "INFO"
    WARNING = "WARNING"
    ERROR = "ERROR"


class CatalogSettings(BaseModel):
    """Remote catalog endpoint"""

    base_url: HttpUrl = Field(..., description="Catalog API root")
    videos_path: str = Field(default="/videos", description="Listing endpoint path")
    timeout_seconds: float = Field(default=30.0, gt=0, le=600)
    max_retries: int = Field(default=3, ge=1, le=10)

    @field_validator("videos_path")
    @classmethod
    def validate_path(cls, v: str) -> str:
        if not v.startswith("/"):
            raise ValueError("videos_path must start with '/'")
        return v


class DownloadSettings(BaseModel):
    """Downloader limits"""

    timeout_seconds: float = Field(default=600.0, gt=0)
    chunk_size_bytes: int = Field(default=64 * 1024, ge=1024)
    max_file_size_mb: int = Field(default=4096, ge=1)


class StateSettings(BaseModel):
    """Where the checkpoint is persisted"""

    state_file: Path = Path("./state/sync_state.json")


def _drop_unresolved(v):
    # "${VAR}" left in place by safe_substitute means the variable is unset
    if isinstance(v, str) and v.startswith("${") and v.endswith("}"):
        return None
    return v


class CredentialSettings(BaseModel):
    token: Optional[SecretStr] = Field(
        default=None, description="Catalog token from ${CATALOG_API_TOKEN}"
    )
    username: Optional[str] = None

    @field_validator("token", mode="before")
    @classmethod
    def drop_unresolved_token(cls, v):
        return _drop_unresolved(v)

    def to_credentials(self) -> Optional[Credentials]:
        """Return credentials, or None when no token is configured."""
        if self.token is None or not self.token.get_secret_value():
            return None
        return Credentials(token=self.token, username=self.username)


class WebhookSettings(BaseModel):
    """Optional webhook observer for cycle events"""

    enabled: bool = False
    url: Optional[HttpUrl] = Field(
        default=None, description="Webhook URL from ${SYNC_WEBHOOK_URL}"
    )
    notify_on_success: bool = Field(
        default=False, description="Also post completed cycles"
    )
    timeout_seconds: float = Field(default=10.0, ge=1.0, le=60.0)

    @field_validator("url", mode="before")
    @classmethod
    def drop_unresolved_url(cls, v):
        return _drop_unresolved(v)


class NotificationSettings(BaseModel):
    webhook: WebhookSettings = Field(default_factory=WebhookSettings)


class LoggingSettings(BaseModel):
    level: LogLevel = LogLevel.INFO
    json_output: bool = True


class SyncConfig(BaseModel):
    """Root of the sync configuration file"""

    agent: AgentConfig
    catalog: CatalogSettings
    download: DownloadSettings = Field(default_factory=DownloadSettings)
    state: StateSettings = Field(default_factory=StateSettings)
    credentials: CredentialSettings = Field(default_factory=CredentialSettings)
    notifications: NotificationSettings = Field(default_factory=NotificationSettings)
    logging: LoggingSettings = Field(default_factory=LoggingSettings)
