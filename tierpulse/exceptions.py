"""
TierPulse exception hierarchy.

All custom exceptions inherit from TierPulseException so callers can
catch a single base type when they want a broad safety net.
"""

from typing import Optional


class TierPulseException(Exception):
    """Base exception for all TierPulse errors."""


class ConfigurationError(TierPulseException, ValueError):
    """Raised when configuration is invalid or cannot be loaded."""


class InvalidCacheInputError(TierPulseException, ValueError):
    """Raised when a cache key or value is rejected before any mutation."""


class LayerWriteError(TierPulseException):
    """Raised when a cache layer fails during a write-through.

    Writes already applied to faster layers are left in place.

    Args:
        layer_name: Name of the layer that failed.
        message: Optional human-readable description.
    """

    def __init__(self, layer_name: str, message: Optional[str] = None) -> None:
        self.layer_name = layer_name
        super().__init__(message or f"Cache layer '{layer_name}' failed during write")


class OrchestratorClosedError(TierPulseException, RuntimeError):
    """Raised when an operation is attempted on a closed orchestrator."""
