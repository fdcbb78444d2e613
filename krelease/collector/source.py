"""Observation source contract consumed by the release collector."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Protocol

from krelease.models.releases import Component


@dataclass(frozen=True)
class Observation:
    """One running container seen by a source.

    ``image`` is the image path from the workload spec (``repo/name:tag``);
    ``digest`` is the bare sha256 hex of the image actually running, empty
    when no ready container reported one.
    """

    component: Component
    image: str
    digest: str = ""


class ObservationSource(Protocol):
    """Anything able to list the containers currently running."""

    async def observe(self) -> list[Observation]: ...
