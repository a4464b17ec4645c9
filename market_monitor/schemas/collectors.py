from datetime import datetime, timezone
from enum import Enum

from pydantic import BaseModel, ConfigDict, Field

from market_monitor.schemas.market import WireModel, format_uptime


class CollectorRecord(WireModel):
    """Collector process as reported by the backend. The client only mirrors it."""

    model_config = ConfigDict(frozen=True)

    pid: int
    timeframe: str
    symbol: str
    status: str
    started_at: datetime = Field(alias="startedAt")
    uptime: float | None = None

    @property
    def uptime_label(self) -> str:
        return format_uptime(self.uptime)


class CollectorStatusResponse(WireModel):
    collectors: list[CollectorRecord] = Field(default_factory=list)
    # False when the backend predates the status endpoint (404).
    available: bool = True


class CollectorStartResponse(WireModel):
    message: str
    pid: int | None = None


class CollectorStopResponse(WireModel):
    message: str
    pid: int


class ActivityOutcome(str, Enum):
    STARTED = "started"
    STOPPED = "stopped"
    ERROR = "error"


class ActivityEntry(BaseModel):
    """Client-side record of one start/stop attempt. Never sent to the backend."""

    model_config = ConfigDict(frozen=True)

    timeframe: str | None
    symbol: str | None
    outcome: ActivityOutcome
    message: str
    pid: int | None = None
    created_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))
