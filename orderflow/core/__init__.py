"""
Core module initialization.
Exports configuration, logging and credential utilities.
"""

from orderflow.core.config import get_settings, Settings, EnvironmentMode

__all__ = ["get_settings", "Settings", "EnvironmentMode"]
