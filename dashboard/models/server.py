"""Server models — the game-server instance as mirrored from the control plane."""

from __future__ import annotations

from datetime import datetime, timezone
from enum import Enum
from typing import Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator


class ServerStatus(str, Enum):
    PENDING = "PENDING"
    RUNNING = "RUNNING"
    STOPPING = "STOPPING"
    STOPPED = "STOPPED"


class CommandKind(str, Enum):
    START = "START"
    STOP = "STOP"


class NoticeLevel(str, Enum):
    SUCCESS = "success"
    INFO = "info"
    ERROR = "error"


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class ServerConfig(BaseModel):
    """Software variant requested at creation. Immutable for the server's lifetime."""

    model_config = ConfigDict(frozen=True)

    type: str = ""
    version: str = ""


class ServerSnapshot(BaseModel):
    """Last-known ground truth for one server, read-only on the client.

    Parsed from the control plane's camelCase payload; timestamps arrive
    as epoch milliseconds.
    """

    model_config = ConfigDict(frozen=True, populate_by_name=True)

    server_id: str = Field(..., alias="serverId", min_length=1)
    status: ServerStatus = Field(..., alias="serverStatus")
    config: ServerConfig = Field(default_factory=ServerConfig, alias="serverConfig")
    started_at: Optional[datetime] = Field(default=None, alias="startedAt")
    ended_at: Optional[datetime] = Field(default=None, alias="endedAt")
    public_ip: Optional[str] = Field(default=None, alias="publicIp")

    @field_validator("started_at", "ended_at", mode="before")
    @classmethod
    def parse_epoch_millis(cls, v):
        if isinstance(v, (int, float)) and not isinstance(v, bool):
            return datetime.fromtimestamp(v / 1000, tz=timezone.utc)
        return v


class ServerPage(BaseModel):
    """One page of the owner's servers, most recent first."""

    items: list[ServerSnapshot] = Field(default_factory=list)
    after_key: Optional[str] = Field(default=None, alias="afterKey")


class StartServerRequest(BaseModel):
    """Request body for ``POST /servers``."""

    model_config = ConfigDict(populate_by_name=True)

    user_id: str = Field(..., alias="userId", min_length=1)
    type: Optional[str] = Field(default=None, min_length=1)
    version: Optional[str] = Field(default=None, min_length=1)


class PendingCommand(BaseModel):
    """A user-issued command that the control plane has not confirmed yet."""

    model_config = ConfigDict(frozen=True)

    kind: CommandKind
    issued_at: datetime = Field(default_factory=_utcnow)
    # Poller sequence number current when the command was issued
    issued_seq: int = 0
    target_server_id: Optional[str] = None
    config: Optional[ServerConfig] = None

    @property
    def override_status(self) -> ServerStatus:
        if self.kind == CommandKind.START:
            return ServerStatus.PENDING
        return ServerStatus.STOPPING

    def accepted(self, server_id: str) -> PendingCommand:
        return self.model_copy(update={"target_server_id": server_id})


class PollResult(BaseModel):
    """A describe response as applied by the poller, tagged with its request."""

    model_config = ConfigDict(frozen=True)

    snapshot: ServerSnapshot
    seq: int
    requested_at: datetime


class CommandOutcome(BaseModel):
    """The most recently completed command and how it ended."""

    kind: CommandKind
    server_id: Optional[str] = None
    succeeded: bool
    error_message: Optional[str] = None
    completed_at: datetime = Field(default_factory=_utcnow)


class DerivedView(BaseModel):
    """The single status object the UI renders. Recomputed, never stored."""

    model_config = ConfigDict(frozen=True)

    status: ServerStatus = ServerStatus.STOPPED
    config: ServerConfig = Field(default_factory=ServerConfig)
    public_ip: Optional[str] = None
    server_id: Optional[str] = None
    has_active_server: bool = False


class Notice(BaseModel):
    """A dismissible user notification (toast equivalent)."""

    level: NoticeLevel
    title: str
    description: str = ""
