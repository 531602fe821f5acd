"""
MacOS platform-specific implementation
Queries the foreground window via NSWorkspace and Quartz
"""

from .active_window import MacOSActiveWindowCapture

__all__ = ["MacOSActiveWindowCapture"]
