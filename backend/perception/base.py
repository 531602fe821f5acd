"""
Perception base classes
"""

from abc import ABC, abstractmethod
from typing import Any, Dict, Optional


class BaseActiveWindowCapture(ABC):
    """Platform query for the foreground window"""

    def __init__(self):
        self.is_running = False

    @abstractmethod
    def get_active_window_info(self) -> Optional[Dict[str, Any]]:
        """
        Returns:
            {"app_name", "window_title", "process_id"} for the foreground
            window, or None when nothing can be determined
        """

    def close(self) -> None:
        """Release platform resources"""
