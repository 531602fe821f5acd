"""
Perception module - sample and screenshot sources

Uses factory pattern to select the platform-specific foreground-window query

Main components:
- WindowMonitor: foreground window metadata (sample source)
- ScreenCapture: primary-monitor screenshot (screenshot source)
- PerceptionFactory: creates platform-specific implementations
"""

from .base import BaseActiveWindowCapture
from .factory import PerceptionFactory, create_active_window_capture
from .screen_capture import ScreenCapture
from .window_monitor import WindowMonitor

__all__ = [
    "BaseActiveWindowCapture",
    "PerceptionFactory",
    "create_active_window_capture",
    "ScreenCapture",
    "WindowMonitor",
]
