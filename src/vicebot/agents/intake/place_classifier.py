"""Informal Place Classifier — maps colloquial place names onto catalog labels.

Consulted only after exact, phrase and fuzzy catalog matching fail. The
caller still checks that the returned label exists in the catalog.
"""

import json
import logging

from pydantic import ValidationError

from vicebot.agents.base import BaseAgent
from vicebot.app.config import get_settings
from vicebot.domain.schemas import InformalPlaceResponse

from .contracts import InformalPlaceMatch

logger = logging.getLogger(__name__)

PLACE_PROMPT_TEMPLATE = """\
Un huésped o colaborador de un hotel mencionó un lugar de manera informal.
Elige el lugar del catálogo al que se refiere, SOLO si es claro.

Texto: "{text}"
Catálogo (etiquetas exactas):
{candidates}

Devuelve SOLO JSON: {{"found": true|false, "canonical_label": "<etiqueta exacta>" or null, "confidence": 0.0 a 1.0}}
"""

INFORMAL_PLACE_SCHEMA = InformalPlaceResponse.model_json_schema()

# Cap on catalog labels sent in the prompt
MAX_CANDIDATES = 150


class InformalPlaceClassifierAgent(BaseAgent):
    def __init__(self):
        super().__init__(
            agent_name="informal_place_classifier",
            model_name=get_settings().classifier_model,
            temperature=0.0,
        )

    async def classify(self, text: str, candidates: list[str]) -> InformalPlaceMatch:
        if not text or not candidates:
            return InformalPlaceMatch()

        prompt = PLACE_PROMPT_TEMPLATE.format(
            text=text.replace('"', "'"),
            candidates=json.dumps(candidates[:MAX_CANDIDATES], ensure_ascii=False),
        )
        result = await self.generate_json(prompt=prompt, response_schema=INFORMAL_PLACE_SCHEMA)
        if not result.ok:
            logger.warning("Informal place classifier failed: %s", result.error)
            return InformalPlaceMatch()

        try:
            validated = InformalPlaceResponse.model_validate(result.data)
        except ValidationError as exc:
            logger.warning("Informal place response failed validation: %s", exc)
            return InformalPlaceMatch()

        return InformalPlaceMatch(
            found=validated.found and bool(validated.canonical_label),
            canonical_label=validated.canonical_label,
            confidence=validated.confidence,
        )
