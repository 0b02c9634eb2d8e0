"""Convenience exports for raisecheck telemetry utilities."""

from . import logger

__all__ = ["logger"]
