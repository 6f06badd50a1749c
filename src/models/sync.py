"""Data models for the video sync agent.

Provides Pydantic models for:
- Checkpoint: persisted "synced up to" marker
- AgentConfig: enable flag, cadence and output folder of the agent
- Credentials: opaque catalog credentials
- SyncEvent: lifecycle event published through the notification hub

Usage:
    from src.models.sync import AgentConfig, Checkpoint

    config = AgentConfig(output_folder="./downloads", interval_seconds=120)
    checkpoint = Checkpoint.epoch()
"""

from datetime import datetime, timezone
from enum import Enum
from pathlib import Path
from typing import Any, Dict, Optional

from pydantic import (
    BaseModel,
    ConfigDict,
    Field,
    SecretStr,
    ValidationError,
    field_validator,
)

from src.utils.exceptions import ConfigurationError

# remote item id -> item locator
CatalogPage = Dict[str, str]

EPOCH = datetime(1970, 1, 1, tzinfo=timezone.utc)


class Checkpoint(BaseModel):
    """Everything up to and including this instant has been synced."""

    model_config = ConfigDict(frozen=True)

    timestamp: datetime = Field(default=EPOCH)

    @field_validator("timestamp")
    @classmethod
    def ensure_utc(cls, v: datetime) -> datetime:
        if v.tzinfo is None:
            return v.replace(tzinfo=timezone.utc)
        return v.astimezone(timezone.utc)

    @classmethod
    def epoch(cls) -> "Checkpoint":
        """Sentinel checkpoint used before the first successful cycle."""
        return cls(timestamp=EPOCH)

    @classmethod
    def now(cls) -> "Checkpoint":
        return cls(timestamp=datetime.now(timezone.utc))

    @classmethod
    def parse(cls, value: str) -> "Checkpoint":
        """Parse an ISO-8601 token (``Z`` suffix accepted)."""
        return cls(timestamp=datetime.fromisoformat(value.replace("Z", "+00:00")))

    @property
    def is_epoch(self) -> bool:
        return self.timestamp == EPOCH

    @property
    def token(self) -> str:
        """Query value sent to the catalog."""
        return self.timestamp.isoformat().replace("+00:00", "Z")

    def later_of(self, other: "Checkpoint") -> "Checkpoint":
        """Return whichever checkpoint is further ahead."""
        return other if other.timestamp > self.timestamp else self

    def __str__(self) -> str:
        return self.token


class AgentConfig(BaseModel):
    """Runtime configuration of the sync agent.

    Attributes:
        enabled: Whether timer fires run a cycle or are skipped.
        interval_seconds: Seconds between the end of one cycle and the next fire.
        output_folder: Root folder receiving one timestamped folder per cycle.
        call_timeout_seconds: Upper bound for any single collaborator call.
        max_pages: Catalog pages enumerated per cycle before giving up.
    """

    model_config = ConfigDict(validate_assignment=True)

    enabled: bool = Field(default=True, description="Run cycles on timer fires")
    interval_seconds: int = Field(
        default=60, gt=0, description="Seconds between cycles"
    )
    output_folder: Path = Field(..., description="Download root folder")
    call_timeout_seconds: float = Field(
        default=300.0, gt=0, description="Timeout for catalog/download calls"
    )
    max_pages: int = Field(
        default=1000, ge=1, description="Page limit for one enumeration"
    )

    @field_validator("output_folder")
    @classmethod
    def validate_output_folder(cls, v: Path) -> Path:
        if not str(v).strip() or str(v) == ".":
            raise ValueError("output_folder must name a directory")
        return v

    @classmethod
    def create(cls, **values: Any) -> "AgentConfig":
        """Build a config, reporting invalid values as ConfigurationError."""
        try:
            return cls(**values)
        except ValidationError as e:
            raise ConfigurationError(f"Invalid agent configuration: {e}") from e


class Credentials(BaseModel):
    """Catalog credentials. The token never appears in repr or logs."""

    model_config = ConfigDict(frozen=True)

    token: SecretStr
    username: Optional[str] = None

    def auth_headers(self) -> Dict[str, str]:
        return {"Authorization": f"Bearer {self.token.get_secret_value()}"}


class EventType(str, Enum):
    CYCLE_SKIPPED = "cycle.skipped"
    CYCLE_COMPLETED = "cycle.completed"
    CYCLE_ERROR = "cycle.error"


class SyncEvent(BaseModel):
    """Lifecycle event delivered to hub subscribers."""

    type: EventType
    payload: Dict[str, Any] = Field(default_factory=dict)
    timestamp: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))
    correlation_id: Optional[str] = None

    @classmethod
    def skipped(cls, **kwargs: Any) -> "SyncEvent":
        return cls(type=EventType.CYCLE_SKIPPED, **kwargs)

    @classmethod
    def completed(
        cls,
        items_attempted: int,
        items_succeeded: int,
        failed: bool,
        **kwargs: Any,
    ) -> "SyncEvent":
        return cls(
            type=EventType.CYCLE_COMPLETED,
            payload={
                "items_attempted": items_attempted,
                "items_succeeded": items_succeeded,
                "failed": failed,
            },
            **kwargs,
        )

    @classmethod
    def error(cls, reason: str, **kwargs: Any) -> "SyncEvent":
        return cls(type=EventType.CYCLE_ERROR, payload={"reason": reason}, **kwargs)
