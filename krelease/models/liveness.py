"""Heartbeat and liveness data structures."""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from enum import StrEnum


class LivenessStatus(StrEnum):
    """Connectivity classification of a tenant's collector."""

    NEVER = "never"
    ONLINE = "online"
    WARNING = "warning"
    OFFLINE = "offline"
    UNKNOWN = "unknown"


@dataclass(frozen=True)
class Heartbeat:
    """A heartbeat as received from a collector."""

    client_name: str
    env_name: str
    agent_version: str = ""
    sent_at: datetime | None = None


@dataclass(frozen=True)
class LivenessReport:
    """Status derived at read time; never stored."""

    status: LivenessStatus
    last_heartbeat_at: datetime | None = None
    agent_version: str = ""
