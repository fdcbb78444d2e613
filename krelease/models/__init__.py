"""Core data structures for krelease."""

from krelease.models.access import AccessKey, AdminKey, Principal, TenantKey
from krelease.models.config import ReleaseTrackerConfig, RunMode
from krelease.models.liveness import Heartbeat, LivenessReport, LivenessStatus
from krelease.models.releases import (
    Component,
    ImageRef,
    OutboxEntry,
    ReleaseFact,
    Tenant,
    parse_image_path,
)

__all__ = [
    "AccessKey",
    "AdminKey",
    "Component",
    "Heartbeat",
    "ImageRef",
    "LivenessReport",
    "LivenessStatus",
    "OutboxEntry",
    "Principal",
    "ReleaseFact",
    "ReleaseTrackerConfig",
    "RunMode",
    "Tenant",
    "TenantKey",
    "parse_image_path",
]
