"""Route group exports."""

from . import deliveries, health, location

__all__ = ["deliveries", "health", "location"]
