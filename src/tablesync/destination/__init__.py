"""Destinations receiving record batches."""

from .base import Destination
from .memory import MemoryDestination

__all__ = [
    "Destination",
    "MemoryDestination"
]
