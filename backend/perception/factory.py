"""
Perception layer platform factory
Creates the platform-specific foreground-window query

Callers only depend on BaseActiveWindowCapture; the implementation is
picked from sys.platform.
"""

import sys
from typing import Optional

from core.logger import get_logger

from .base import BaseActiveWindowCapture
from .platforms import (
    LinuxActiveWindowCapture,
    MacOSActiveWindowCapture,
    WindowsActiveWindowCapture,
)

logger = get_logger(__name__)


class PerceptionFactory:
    """Perception layer component factory class"""

    @staticmethod
    def get_platform() -> str:
        """
        Returns:
            str: 'darwin' (macOS), 'win32' (Windows), 'linux' (Linux)
        """
        return sys.platform

    @staticmethod
    def create_active_window_capture() -> Optional[BaseActiveWindowCapture]:
        """
        Create the foreground-window query for the current platform

        Returns:
            Implementation instance, or None when the platform libraries
            are missing (the sample source then reports empty metadata)
        """
        platform = PerceptionFactory.get_platform()

        try:
            if platform == "darwin":
                logger.debug("Creating macOS active window capture (NSWorkspace + Quartz)")
                return MacOSActiveWindowCapture()

            elif platform == "win32":
                logger.debug("Creating Windows active window capture (Win32 API)")
                return WindowsActiveWindowCapture()

            elif platform.startswith("linux"):
                logger.debug("Creating Linux active window capture (X11 / xdotool)")
                return LinuxActiveWindowCapture()

        except RuntimeError as e:
            logger.error(f"Active window capture unavailable: {e}")
            return None

        logger.warning(f"Unsupported platform: {platform}")
        return None


def create_active_window_capture() -> Optional[BaseActiveWindowCapture]:
    return PerceptionFactory.create_active_window_capture()
