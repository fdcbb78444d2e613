"""Prometheus metrics for krelease."""

from __future__ import annotations

from prometheus_client import Counter

facts_upserted_total = Counter(
    "krelease_facts_upserted_total",
    "Release facts written to the ledger.",
    ["source"],
)

retention_pruned_total = Counter(
    "krelease_retention_pruned_total",
    "Release facts removed by retention.",
)

collection_cycles_total = Counter(
    "krelease_collection_cycles_total",
    "Collection cycles by outcome.",
    ["outcome"],
)

outbox_pushes_total = Counter(
    "krelease_outbox_pushes_total",
    "Outbox entry deliveries to the aggregator by outcome.",
    ["outcome"],
)

heartbeats_sent_total = Counter(
    "krelease_heartbeats_sent_total",
    "Heartbeats sent to the aggregator by outcome.",
    ["outcome"],
)

heartbeats_received_total = Counter(
    "krelease_heartbeats_received_total",
    "Heartbeats recorded from collectors.",
)
