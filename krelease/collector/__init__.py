"""Release collection: observation sources and the collector loop body."""

from krelease.collector.collector import CollectionResult, ReleaseCollector
from krelease.collector.kubernetes import KubernetesObservationSource, extract_digest
from krelease.collector.source import Observation, ObservationSource

__all__ = [
    "CollectionResult",
    "KubernetesObservationSource",
    "Observation",
    "ObservationSource",
    "ReleaseCollector",
    "extract_digest",
]
