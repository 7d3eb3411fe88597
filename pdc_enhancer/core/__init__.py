"""Core configuration and logging setup."""

from pdc_enhancer.core.config import get_settings, Settings
from pdc_enhancer.core.logging import setup_logging

__all__ = ["get_settings", "Settings", "setup_logging"]
