"""Area Detector — keyword scoring first, LLM classification as fallback."""

import logging

from vicebot.agents.base import BaseAgent
from vicebot.app.config import get_settings
from vicebot.domain.areas import AREA_LABELS, normalize_area_code, score_area_hints

from .contracts import AreaDetection

logger = logging.getLogger(__name__)

AREA_PROMPT_TEMPLATE = """\
Clasifica a qué área operativa de un hotel corresponde el siguiente reporte.

Áreas válidas:
{areas}

Reporte: "{text}"

Devuelve SOLO JSON: {{"area": "<código>" or null, "confidence": 0.0 a 1.0}}
Si el reporte no describe un problema operativo, devuelve area null.
"""

# LLM answers below this confidence are discarded
MIN_AI_CONFIDENCE = 0.6


class AreaDetectorAgent(BaseAgent):
    def __init__(self, use_ai: bool = True):
        super().__init__(
            agent_name="area_detector",
            model_name=get_settings().classifier_model,
            temperature=0.0,
        )
        self.use_ai = use_ai

    async def detect(self, text: str) -> AreaDetection:
        """Return the single most likely area for ``text``, or an empty detection."""
        if not text or not text.strip():
            return AreaDetection()

        explicit = normalize_area_code(text)
        if explicit:
            return AreaDetection(area=explicit, confidence=1.0)

        scores = score_area_hints(text)
        if scores:
            ranked = sorted(scores.items(), key=lambda kv: kv[1], reverse=True)
            if len(ranked) == 1 or ranked[0][1] > ranked[1][1]:
                best, hits = ranked[0]
                return AreaDetection(area=best, confidence=min(0.6 + 0.1 * hits, 0.95))
            logger.debug("Area keyword tie: %s", ranked[:2])

        if not self.use_ai:
            return AreaDetection()

        prompt = AREA_PROMPT_TEMPLATE.format(
            areas="\n".join(f"- {code}: {label}" for code, label in AREA_LABELS.items()),
            text=text.replace('"', "'"),
        )
        result = await self.generate_json(prompt=prompt)
        if not result.ok:
            logger.warning("Area detector failed: %s", result.error)
            return AreaDetection()

        data = result.data if isinstance(result.data, dict) else {}
        area = normalize_area_code(data.get("area"))
        try:
            confidence = float(data.get("confidence") or 0.0)
        except (TypeError, ValueError):
            confidence = 0.0

        if not area or confidence < MIN_AI_CONFIDENCE:
            return AreaDetection()
        return AreaDetection(area=area, confidence=confidence)
