"""Vision Analyzer — multimodal LLM read of a guest photo."""

import logging

from pydantic import ValidationError

from vicebot.agents.base import BaseAgent, image_part
from vicebot.app.config import get_settings
from vicebot.domain.schemas import VisionResponse

from .contracts import VisionAnalysis

logger = logging.getLogger(__name__)

VISION_PROMPT = """\
Analiza SOLO la imagen para entender un posible problema en un hotel
(IT, Mantenimiento, HSKP, Room Service, Seguridad).
Devuelve una interpretación breve y neutral en español. No inventes lugar ni área:
si no es evidente, mantenla genérica.
"""

VISION_SCHEMA = VisionResponse.model_json_schema()


class VisionAnalyzerAgent(BaseAgent):
    def __init__(self):
        super().__init__(
            agent_name="vision_analyzer",
            model_name=get_settings().vision_model,
            temperature=0.2,
            timeout_seconds=45.0,
        )

    async def analyze(self, image_bytes: bytes, mimetype: str, context_text: str | None = None) -> VisionAnalysis:
        if not image_bytes:
            return VisionAnalysis()

        text = VISION_PROMPT
        if context_text:
            text += f'\nContexto del mensaje: "{context_text}" (solo para afinar la interpretación).'

        result = await self.generate_json(
            prompt=[text, image_part(image_bytes, mimetype)],
            response_schema=VISION_SCHEMA,
        )
        if not result.ok:
            logger.warning("Vision analyzer failed: %s", result.error)
            return VisionAnalysis()

        try:
            validated = VisionResponse.model_validate(result.data)
        except ValidationError as exc:
            logger.warning("Vision response failed validation: %s", exc)
            return VisionAnalysis()

        return VisionAnalysis(
            interpretation=(validated.interpretacion or "").strip() or None,
            tags=list(validated.tags),
            safety=list(validated.safety),
            area_hints=list(dict.fromkeys(validated.area_hints)),
            confidence=validated.confidence,
        )
