"""
Change Detector - five-layer cascade, cheapest first

Layer 1: structural diff of app / title / URL (free)
Layer 2: OCR text similarity (needs a screenshot)
Layer 3: perceptual image hash (needs a screenshot)
Layer 4: rule match
Layer 5: AI judgment

The first layer reporting a change wins and the remaining layers are
skipped. A byte-identical app/title/URL is decisive "no change" for the
context layers (4, 5); only the pixel layers (2, 3) can still fire.
"""

import re
import time
from typing import Any, NamedTuple, Optional
from urllib.parse import urlparse

from core.logger import get_logger
from core.settings import DetectorSettings
from models.tracking import (
    AIJudgmentEvidence,
    ChangeDetectionResult,
    ChangeType,
    MatchedRuleEvidence,
    ScreenSample,
)

from .image_hash import compute_image_hash, hash_distance

logger = get_logger(__name__)

_DIGITS = re.compile(r"\d+")
_TRAILING_NUMBER_SEGMENT = re.compile(r"/\d+/?$")


class StructuralDiff(NamedTuple):
    has_change: bool
    change_type: ChangeType
    identical: bool
    reasoning: str


def is_minor_title_change(previous: Optional[str], current: Optional[str]) -> bool:
    """True when the titles differ only in digit runs (clocks, counters)"""
    if not previous or not current:
        return False
    return _DIGITS.sub("#", previous) == _DIGITS.sub("#", current)


def is_minor_path_change(previous: str, current: str) -> bool:
    """True when only a trailing numeric segment differs (pagination)"""
    return _TRAILING_NUMBER_SEGMENT.sub("/#", previous) == _TRAILING_NUMBER_SEGMENT.sub(
        "/#", current
    )


def structural_diff(
    previous: Optional[ScreenSample], current: ScreenSample
) -> StructuralDiff:
    """Layer 1, also used on its own by the engine's metadata loop"""
    if previous is None:
        return StructuralDiff(True, ChangeType.INITIAL, False, "First observation")

    if previous.app_name != current.app_name:
        return StructuralDiff(
            True,
            ChangeType.APP,
            False,
            f"Application changed: {previous.app_name} -> {current.app_name}",
        )

    if previous.window_title != current.window_title and not is_minor_title_change(
        previous.window_title, current.window_title
    ):
        return StructuralDiff(True, ChangeType.TITLE, False, "Window title changed")

    if previous.url and current.url:
        try:
            before = urlparse(previous.url)
            after = urlparse(current.url)
        except ValueError:
            before = after = None
        if before is not None and after is not None:
            if before.hostname != after.hostname:
                return StructuralDiff(True, ChangeType.URL, False, "Site changed")
            if before.path != after.path and not is_minor_path_change(before.path, after.path):
                return StructuralDiff(True, ChangeType.URL, False, "Page changed")
    elif previous.url != current.url:
        return StructuralDiff(True, ChangeType.URL, False, "URL appeared or disappeared")

    identical = (
        previous.window_title == current.window_title
        and previous.url == current.url
    )
    return StructuralDiff(False, ChangeType.NONE, identical, "No structural change")


def text_similarity(first: str, second: str) -> float:
    """Jaccard index over lower-cased word sets"""
    if first == second:
        return 1.0
    if not first or not second:
        return 0.0
    words_a = set(first.lower().split())
    words_b = set(second.lower().split())
    union = words_a | words_b
    if not union:
        return 1.0
    return len(words_a & words_b) / len(union)


class ChangeDetector:
    """
    Stateful cascade; remembers the previous sample, OCR text and image hash

    Args:
        options: DetectorSettings (layer toggles and thresholds)
        ocr_engine: object with async recognize(image_bytes) -> str
        rule_matcher: RuleMatcher for layer 4
        ai_service: AIJudgmentService for layer 5
    """

    def __init__(
        self,
        options: Optional[DetectorSettings] = None,
        ocr_engine: Optional[Any] = None,
        rule_matcher: Optional[Any] = None,
        ai_service: Optional[Any] = None,
    ):
        self.options = options.model_copy() if options else DetectorSettings()
        self.ocr_engine = ocr_engine
        self.rule_matcher = rule_matcher
        self.ai_service = ai_service

        self.previous_sample: Optional[ScreenSample] = None
        self.previous_ocr_text: Optional[str] = None
        self.previous_image_hash: Optional[str] = None

    def set_options(self, **options: Any) -> None:
        """Toggle layers or thresholds at runtime"""
        for key, value in options.items():
            if not hasattr(self.options, key):
                raise ValueError(f"Unknown detector option: {key}")
            setattr(self.options, key, value)
        logger.debug(f"Change detector options updated: {options}")

    def get_options(self) -> DetectorSettings:
        return self.options.model_copy()

    def reset(self) -> None:
        self.previous_sample = None
        self.previous_ocr_text = None
        self.previous_image_hash = None
        logger.debug("Change detector state reset")

    def _remember(
        self,
        sample: ScreenSample,
        ocr_text: Optional[str] = None,
        image_hash: Optional[str] = None,
    ) -> None:
        self.previous_sample = sample
        if ocr_text is not None:
            self.previous_ocr_text = ocr_text
        if image_hash is not None:
            self.previous_image_hash = image_hash

    async def detect(
        self, sample: ScreenSample, image: Optional[bytes] = None
    ) -> ChangeDetectionResult:
        started = time.perf_counter()
        previous = self.previous_sample

        def _finish(**fields: Any) -> ChangeDetectionResult:
            result = ChangeDetectionResult(
                previous_sample=previous,
                processing_time_ms=(time.perf_counter() - started) * 1000,
                **fields,
            )
            if result.has_change:
                logger.debug(
                    f"Change detected at layer {result.layer} ({result.change_type.value}, "
                    f"confidence={result.confidence}): {result.reasoning}"
                )
            return result

        # Layer 1
        diff = structural_diff(previous, sample)
        if diff.has_change:
            self._remember(sample)
            return _finish(
                has_change=True,
                change_type=diff.change_type,
                layer=1,
                confidence=100,
                reasoning=diff.reasoning,
                current_sample=sample,
            )

        # Layer 2
        ocr_text: Optional[str] = None
        if image is not None and self.options.enable_ocr and self.ocr_engine is not None:
            ocr_text = await self._recognize(image)
            if ocr_text is not None:
                sample = sample.model_copy(update={"ocr_text": ocr_text})
                if self.previous_ocr_text:
                    similarity = text_similarity(self.previous_ocr_text, ocr_text)
                    if similarity < self.options.ocr_similarity_threshold:
                        self._remember(sample, ocr_text=ocr_text)
                        return _finish(
                            has_change=True,
                            change_type=ChangeType.OCR,
                            layer=2,
                            confidence=round((1 - similarity) * 100),
                            reasoning=f"Screen text changed (similarity {similarity:.2f})",
                            current_sample=sample,
                            ocr_text=ocr_text,
                        )

        # Layer 3
        image_hash: Optional[str] = None
        if image is not None and self.options.enable_image_hash:
            image_hash = self._hash(image)
            if image_hash is not None and self.previous_image_hash:
                distance = hash_distance(self.previous_image_hash, image_hash)
                if distance > self.options.image_hash_threshold:
                    max_distance = self.options.image_hash_size ** 2
                    self._remember(sample, ocr_text=ocr_text, image_hash=image_hash)
                    return _finish(
                        has_change=True,
                        change_type=ChangeType.IMAGE,
                        layer=3,
                        confidence=min(100, round(distance / max_distance * 100)),
                        reasoning=f"Screen image changed (distance {distance})",
                        current_sample=sample,
                        ocr_text=ocr_text,
                        image_hash=image_hash,
                    )

        if diff.identical:
            self._remember(sample, ocr_text=ocr_text, image_hash=image_hash)
            return _finish(
                reasoning="Context unchanged",
                current_sample=sample,
                ocr_text=ocr_text,
                image_hash=image_hash,
            )

        # Layer 4
        if self.options.enable_rule_matching and self.rule_matcher is not None:
            try:
                match = await self.rule_matcher.match(sample)
            except Exception as e:
                logger.error(f"Rule matching failed: {e}", exc_info=True)
                match = None
            if match is not None and match.matched and match.project_id:
                self._remember(sample, ocr_text=ocr_text, image_hash=image_hash)
                return _finish(
                    has_change=True,
                    change_type=ChangeType.RULE,
                    layer=4,
                    confidence=match.confidence,
                    reasoning=f"Rule matched: {match.matched_text}",
                    current_sample=sample,
                    ocr_text=ocr_text,
                    image_hash=image_hash,
                    matched_rule=MatchedRuleEvidence(
                        project_id=match.project_id,
                        project_name=match.project_name,
                        rule_id=match.rule.id if match.rule else None,
                        confidence=match.confidence,
                    ),
                )

        # Layer 5
        if (
            self.options.enable_ai_judgment
            and self.ai_service is not None
            and self.ai_service.has_credential()
        ):
            try:
                judgment = await self.ai_service.detect_change(sample, previous)
            except Exception as e:
                logger.error(f"AI change detection failed: {e}", exc_info=True)
                judgment = None
            if judgment is not None and judgment.has_change:
                self._remember(sample, ocr_text=ocr_text, image_hash=image_hash)
                return _finish(
                    has_change=True,
                    change_type=ChangeType.AI,
                    layer=5,
                    confidence=judgment.confidence,
                    reasoning=judgment.reasoning,
                    current_sample=sample,
                    ocr_text=ocr_text,
                    image_hash=image_hash,
                    ai_judgment=AIJudgmentEvidence(
                        confidence=judgment.confidence, reasoning=judgment.reasoning
                    ),
                )

        self._remember(sample, ocr_text=ocr_text, image_hash=image_hash)
        return _finish(
            reasoning="No layer reported a change",
            current_sample=sample,
            ocr_text=ocr_text,
            image_hash=image_hash,
        )

    async def _recognize(self, image: bytes) -> Optional[str]:
        try:
            return await self.ocr_engine.recognize(image)
        except Exception as e:
            logger.error(f"OCR failed: {e}", exc_info=True)
            return None

    def _hash(self, image: bytes) -> Optional[str]:
        try:
            return compute_image_hash(image, self.options.image_hash_size)
        except Exception as e:
            logger.error(f"Image hashing failed: {e}", exc_info=True)
            return None
