"""
Password-screen detection

Login, 2FA and password-entry screens are recognised from the window title,
URL, optional OCR text and user-defined exclude keywords. The engine skips
screenshot capture on such screens.
"""

import re
from typing import List, Optional, Sequence, Tuple

from core.logger import get_logger
from models.tracking import PasswordDetectionResult, WindowMetadata

logger = get_logger(__name__)

# (pattern, weight)
TITLE_PATTERNS: List[Tuple[re.Pattern, float]] = [
    (re.compile(r"\bpassword\b", re.I), 0.9),
    (re.compile(r"\blogin\b", re.I), 0.8),
    (re.compile(r"\bsign\s*in\b", re.I), 0.8),
    (re.compile(r"\bsign\s*up\b", re.I), 0.7),
    (re.compile(r"\bauthentication\b", re.I), 0.9),
    (re.compile(r"\bauthenticate\b", re.I), 0.9),
    (re.compile(r"\b2fa\b", re.I), 0.9),
    (re.compile(r"\btwo.?factor\b", re.I), 0.9),
    (re.compile(r"\bverification\s*code\b", re.I), 0.85),
    (re.compile(r"\bverify\s*(your)?\s*(identity|account)\b", re.I), 0.85),
    (re.compile(r"\bsecurity\s*question\b", re.I), 0.9),
    (re.compile(r"\benter\s*(your)?\s*pin\b", re.I), 0.9),
    (re.compile(r"\bunlock\b", re.I), 0.6),
    (re.compile(r"\bcredentials\b", re.I), 0.85),
    (re.compile(r"ログイン"), 0.8),
    (re.compile(r"サインイン"), 0.8),
    (re.compile(r"パスワード"), 0.9),
    (re.compile(r"二段階認証"), 0.95),
    (re.compile(r"認証"), 0.85),
    (re.compile(r"暗証番号"), 0.95),
]

URL_PATTERNS: List[Tuple[re.Pattern, float]] = [
    (re.compile(r"/login\b", re.I), 0.85),
    (re.compile(r"/signin\b", re.I), 0.85),
    (re.compile(r"/sign-in\b", re.I), 0.85),
    (re.compile(r"/auth\b", re.I), 0.8),
    (re.compile(r"/authenticate\b", re.I), 0.85),
    (re.compile(r"/password\b", re.I), 0.9),
    (re.compile(r"/2fa\b", re.I), 0.95),
    (re.compile(r"/mfa\b", re.I), 0.95),
    (re.compile(r"/verify\b", re.I), 0.7),
    (re.compile(r"/security\b", re.I), 0.6),
    (re.compile(r"/oauth\b", re.I), 0.75),
    (re.compile(r"/sso\b", re.I), 0.8),
    (re.compile(r"accounts\.google\.com", re.I), 0.85),
    (re.compile(r"login\.microsoftonline\.com|login\.microsoft\.com", re.I), 0.85),
    (re.compile(r"(?:appleid|id)\.apple\.com", re.I), 0.85),
    (re.compile(r"signin\.aws\.amazon\.com", re.I), 0.9),
    (re.compile(r"github\.com/login", re.I), 0.85),
    (re.compile(r"gitlab\.com/users/sign_in", re.I), 0.85),
]

OCR_PATTERNS: List[re.Pattern] = [
    re.compile(r"type\s*=\s*[\"']password[\"']", re.I),
    re.compile(r"●{4,}"),
    re.compile(r"\*{4,}"),
    re.compile(r"•{4,}"),
    re.compile(r"enter\s*(your)?\s*password", re.I),
    re.compile(r"forgot\s*(your)?\s*password", re.I),
    re.compile(r"stay\s*signed\s*in", re.I),
    re.compile(r"remember\s*me", re.I),
    re.compile(r"パスワードを入力"),
]
OCR_CONFIDENCE = 0.85
KEYWORD_CONFIDENCE = 1.0
MULTI_MATCH_BONUS = 0.1

_NO_MATCH = PasswordDetectionResult()


class PasswordDetector:
    def __init__(self, exclude_keywords: Optional[Sequence[str]] = None, enabled: bool = True):
        self.exclude_keywords: List[str] = list(exclude_keywords or [])
        self.enabled = enabled

    def update_settings(
        self,
        exclude_keywords: Optional[Sequence[str]] = None,
        enabled: Optional[bool] = None,
    ) -> None:
        if exclude_keywords is not None:
            self.exclude_keywords = list(exclude_keywords)
        if enabled is not None:
            self.enabled = enabled

    def detect(
        self, metadata: WindowMetadata, ocr_text: Optional[str] = None
    ) -> PasswordDetectionResult:
        """Best match wins; each additional matching source adds 0.1, capped at 1.0"""
        if not self.enabled:
            return _NO_MATCH

        results = [
            result
            for result in (
                self._check_keywords(metadata, ocr_text),
                self._check_patterns(metadata.window_title, TITLE_PATTERNS, "title"),
                self._check_patterns(metadata.url, URL_PATTERNS, "url"),
                self._check_ocr(ocr_text),
            )
            if result.is_password_screen
        ]
        if not results:
            return _NO_MATCH

        best = max(results, key=lambda r: r.confidence)
        confidence = min(1.0, best.confidence + MULTI_MATCH_BONUS * (len(results) - 1))
        detected = best.model_copy(update={"confidence": confidence})
        logger.debug(
            f"Password screen detected via {detected.match_type} "
            f"({detected.matched_pattern}, confidence={confidence:.2f})"
        )
        return detected

    def quick_check(self, metadata: WindowMetadata) -> bool:
        return self.detect(metadata).is_password_screen

    def _check_keywords(
        self, metadata: WindowMetadata, ocr_text: Optional[str]
    ) -> PasswordDetectionResult:
        sources = [metadata.window_title, metadata.url, ocr_text]
        for keyword in self.exclude_keywords:
            needle = keyword.strip().lower()
            if not needle:
                continue
            if any(source and needle in source.lower() for source in sources):
                return PasswordDetectionResult(
                    is_password_screen=True,
                    matched_pattern=keyword,
                    match_type="keyword",
                    confidence=KEYWORD_CONFIDENCE,
                )
        return _NO_MATCH

    @staticmethod
    def _check_patterns(
        text: Optional[str], patterns: List[Tuple[re.Pattern, float]], match_type: str
    ) -> PasswordDetectionResult:
        if not text:
            return _NO_MATCH
        for pattern, weight in patterns:
            if pattern.search(text):
                return PasswordDetectionResult(
                    is_password_screen=True,
                    matched_pattern=pattern.pattern,
                    match_type=match_type,
                    confidence=weight,
                )
        return _NO_MATCH

    @staticmethod
    def _check_ocr(ocr_text: Optional[str]) -> PasswordDetectionResult:
        if not ocr_text:
            return _NO_MATCH
        for pattern in OCR_PATTERNS:
            if pattern.search(ocr_text):
                return PasswordDetectionResult(
                    is_password_screen=True,
                    matched_pattern=pattern.pattern,
                    match_type="ocr",
                    confidence=OCR_CONFIDENCE,
                )
        return _NO_MATCH
