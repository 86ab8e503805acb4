"""Area resolver — proposes a single area code from text or vision hints.

Signal priority: explicit op area (handled by the orchestrator), then
text via the area detector, then the top vision hint. Detection here only
ever produces a *suggestion*; committing is the caller's decision.
"""

import logging
from dataclasses import dataclass

from vicebot.domain.areas import normalize_area_code

logger = logging.getLogger(__name__)


@dataclass
class AreaSuggestion:
    area: str
    source: str  # text, vision


class AreaResolver:
    def __init__(self, detector):
        self.detector = detector

    async def detect_from_text(self, text: str | None) -> str | None:
        """Area inferred from text; None on no signal or collaborator failure."""
        if not text or not text.strip():
            return None
        try:
            detection = await self.detector.detect(text)
        except Exception as exc:
            logger.error("Area detector raised: %s", exc)
            return None
        return normalize_area_code(detection.area) if detection and detection.area else None

    async def suggest(self, text: str | None, vision_hints: list[str] | None = None) -> AreaSuggestion | None:
        """Text detection first, then the most confident vision hint."""
        area = await self.detect_from_text(text)
        if area:
            return AreaSuggestion(area=area, source="text")
        for hint in vision_hints or []:
            code = normalize_area_code(hint)
            if code:
                return AreaSuggestion(area=code, source="vision")
        return None
