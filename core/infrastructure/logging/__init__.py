from .base import setup_logging
from .context import ConnectionContextLogger

__all__ = ["setup_logging", "ConnectionContextLogger"]
