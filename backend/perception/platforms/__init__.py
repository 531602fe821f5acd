"""
Platform-specific implementation package
Provides the foreground-window query for each operating system
"""

from .linux import LinuxActiveWindowCapture
from .macos import MacOSActiveWindowCapture
from .windows import WindowsActiveWindowCapture

__all__ = [
    "LinuxActiveWindowCapture",
    "MacOSActiveWindowCapture",
    "WindowsActiveWindowCapture",
]
