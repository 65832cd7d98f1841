"""External tool adapters."""

from .system import SystemTools

__all__ = ["SystemTools"]
