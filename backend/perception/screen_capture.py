"""
Screenshot source

Grabs the primary monitor with mss and returns PNG bytes, downscaled to a
maximum width. Storage and encryption are handled elsewhere.
"""

import asyncio
import io
from typing import Optional

import mss
from PIL import Image

from core.logger import get_logger
from models.tracking import WindowMetadata

logger = get_logger(__name__)


class ScreenCapture:
    def __init__(self, max_width: int = 1280, monitor_index: int = 1):
        self.max_width = max_width
        self.monitor_index = monitor_index

    def _grab(self) -> bytes:
        with mss.mss() as sct:
            monitors = sct.monitors
            # monitors[0] is the union of all screens
            monitor = monitors[self.monitor_index] if len(monitors) > self.monitor_index else monitors[0]
            shot = sct.grab(monitor)
            image = Image.frombytes("RGB", shot.size, shot.bgra, "raw", "BGRX")

        if image.width > self.max_width:
            height = round(image.height * self.max_width / image.width)
            image = image.resize((self.max_width, height), Image.Resampling.LANCZOS)

        buffer = io.BytesIO()
        image.save(buffer, format="PNG", optimize=True)
        return buffer.getvalue()

    async def capture(
        self, entry_id: Optional[str] = None, metadata: Optional[WindowMetadata] = None
    ) -> bytes:
        """
        Raises:
            mss.exception.ScreenShotError: no display or missing permission
        """
        data = await asyncio.to_thread(self._grab)
        logger.debug(
            f"Captured screenshot for entry {entry_id} "
            f"({metadata.app_name if metadata else 'unknown app'}, {len(data)} bytes)"
        )
        return data
