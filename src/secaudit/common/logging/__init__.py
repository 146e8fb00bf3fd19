"""Logging helpers."""

from secaudit.common.logging.logger import get_logger

__all__ = ["get_logger"]
