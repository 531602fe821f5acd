"""
OCR engine backed by Tesseract (pytesseract)
"""

import asyncio
import io

import pytesseract
from PIL import Image

from core.logger import get_logger

logger = get_logger(__name__)


class OCREngine:
    """
    Args:
        languages: Tesseract language codes, e.g. "eng" or "jpn+eng"
        timeout: seconds before Tesseract is killed (0 = no limit)
    """

    def __init__(self, languages: str = "eng", timeout: float = 5.0):
        self.languages = languages
        self.timeout = timeout

    def _recognize_sync(self, image_bytes: bytes) -> str:
        with Image.open(io.BytesIO(image_bytes)) as image:
            text = pytesseract.image_to_string(
                image.convert("L"), lang=self.languages, timeout=self.timeout
            )
        return text.strip()

    async def recognize(self, image_bytes: bytes) -> str:
        """Recognised text, stripped; runs Tesseract off the event loop"""
        text = await asyncio.to_thread(self._recognize_sync, image_bytes)
        logger.debug(f"OCR recognised {len(text)} characters")
        return text
