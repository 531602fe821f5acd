"""
Windows platform-specific implementation
Queries the foreground window via Win32 API and psutil
"""

from .active_window import WindowsActiveWindowCapture

__all__ = ["WindowsActiveWindowCapture"]
