"""Release ledger data structures."""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime


@dataclass(frozen=True)
class Component:
    """Identity of a container inside a workload."""

    namespace: str
    workload_kind: str
    workload_name: str
    container_name: str

    def __str__(self) -> str:
        return f"{self.namespace}/{self.workload_kind}/{self.workload_name}/{self.container_name}"


@dataclass(frozen=True)
class Tenant:
    """A (client, environment) pair scoping all data."""

    client_name: str
    env_name: str

    def __str__(self) -> str:
        return f"{self.client_name}/{self.env_name}"


@dataclass(frozen=True)
class ImageRef:
    """Image identity.  The digest, not the tag, is the trust anchor."""

    repo: str
    name: str
    tag: str
    digest: str

    @property
    def full_path(self) -> str:
        if not self.repo:
            return f"{self.name}:{self.tag}"
        return f"{self.repo}/{self.name}:{self.tag}"


@dataclass(frozen=True)
class ReleaseFact:
    """An observed (component, tenant, image) record.

    Natural key is ``(component, tenant, image.digest)``.
    """

    component: Component
    tenant: Tenant
    image: ImageRef
    first_seen: datetime
    last_seen: datetime

    @property
    def natural_key(self) -> tuple[str, ...]:
        c, t = self.component, self.tenant
        return (
            c.namespace,
            c.workload_kind,
            c.workload_name,
            c.container_name,
            t.client_name,
            t.env_name,
            self.image.digest,
        )


@dataclass(frozen=True)
class OutboxEntry:
    """Transit-only copy of a fact awaiting delivery to the aggregator."""

    id: int
    fact: ReleaseFact
    created_at: datetime


def parse_image_path(image_path: str) -> tuple[str, str, str]:
    """Split ``repo/name:tag`` into ``(repo, name, tag)``.

    The tag defaults to ``latest``.  Only the last ``:`` and the last ``/``
    are significant, so registry ports survive (``host:5000/app:1.0``).
    A pinned ``@sha256:...`` suffix is dropped; digests come from pod status.
    """
    tag = "latest"
    path = image_path.split("@", 1)[0]
    head, sep, tail = path.rpartition(":")
    if sep and "/" not in tail:
        path, tag = head, tail

    repo, sep, name = path.rpartition("/")
    if not sep:
        return "", path, tag
    return repo, name, tag
