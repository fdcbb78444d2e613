from krelease.runtime.periodic import PeriodicTask

__all__ = ["PeriodicTask"]
