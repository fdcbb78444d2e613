"""Heartbeat-derived liveness of tenant collectors."""

from krelease.liveness.tracker import LivenessTracker, classify

__all__ = ["LivenessTracker", "classify"]
