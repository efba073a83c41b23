"""Activity monitoring driven by the cache pulse stream."""

from tierpulse.observability.monitor import DataPulseMonitor

__all__ = ["DataPulseMonitor"]
