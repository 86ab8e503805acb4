"""Turn Interpreter — LLM that turns a guest message into draft operations."""

import json
import logging

from vicebot.agents.base import BaseAgent
from vicebot.app.config import get_settings

from .contracts import TurnInterpretation, parse_operation

logger = logging.getLogger(__name__)

# ---------------------------------------------------------------------------
# System prompt template
# ---------------------------------------------------------------------------

TURN_PROMPT_TEMPLATE = """\
Eres el intérprete de turnos de un bot de reportes de un hotel.
Recibes el mensaje del huésped o colaborador y el borrador actual del ticket.
Devuelves operaciones (ops) para modificar el borrador. NO usas catálogos; solo lenguaje natural.

## REGLAS DE SALIDA
1. Devuelve SOLO JSON válido, sin texto antes o después
2. No envuelvas en bloques de código
3. Si no entiendes el mensaje, devuelve ops: [] y explica en analysis

## CONTEXTO
Modo actual: {focus}
Mensaje: "{text}"
Borrador actual: {draft_ctx}

## OPERACIONES
- confirm / cancel / show_preview -> field=null, value=null, values=null
- set_field {{field, value}} -> field es "lugar", "descripcion" o "area_destino"
- replace_areas {{values: [...]}} -> reemplaza las áreas (códigos: it, man, ama, rs, seg)
- add_area {{value}} -> agrega un área
- remove_area {{value}} -> quita un área
- append_detail {{value}} -> agrega un detalle sustancial y breve a la descripción

## LUGAR
- "en ___", "es en ___", "perdón, en ___", "cámbialo a ___" -> set_field lugar con el texto breve
- Un número de 4 dígitos solo, con modo ask_place -> set_field lugar con ese número

## ÁREA
- "es para IT / pásalo a HSKP / Mantenimiento / Room Service / Seguridad" -> replace_areas
- "también HSKP" -> add_area ama
- "quita Seguridad" -> remove_area seg
- Solo emite operaciones de área cuando el usuario NOMBRA el área

## CONFIRMACIÓN
- Solo con modo confirm. Si hay un cambio y un "sí" juntos, prioriza el cambio.
- Si el usuario aporta información nueva, emite append_detail en lugar de confirm.

## META
- is_new_incident_candidate: TRUE si el mensaje describe un incidente distinto al del borrador
  (otro problema, o el mismo tipo de problema en otro lugar, redactado como reporte completo).
- is_place_correction_only: TRUE si el mensaje solo corrige el lugar del mismo ticket
  ("perdón, era en 1203", "no es la villa 12, es la 14").
- Nunca ambos TRUE. Si dudas, marca is_place_correction_only.

## ESQUEMA JSON
{{
  "ops": [{{"op": "set_field|add_area|remove_area|replace_areas|append_detail|show_preview|confirm|cancel",
            "field": "lugar|descripcion|area_destino" or null,
            "value": "texto" or null,
            "values": ["it", "man"] or null}}],
  "analysis": "breve explicación de lo que entendiste",
  "meta": {{"is_new_incident_candidate": false, "is_place_correction_only": false}}
}}
"""


def _draft_context(draft) -> str:
    if draft is None:
        return "{}"
    return json.dumps(
        {
            "descripcion": draft.descripcion,
            "lugar": draft.lugar,
            "area_destino": draft.area_destino,
            "areas": sorted(draft.areas),
            "details": list(draft.details)[-5:],
        },
        ensure_ascii=False,
    )


def parse_interpretation(data) -> TurnInterpretation:
    """Build a TurnInterpretation from raw interpreter JSON, dropping junk."""
    if not isinstance(data, dict):
        return TurnInterpretation()

    ops = []
    for raw in data.get("ops") or []:
        op = parse_operation(raw)
        if op is not None:
            ops.append(op)

    meta = data.get("meta") if isinstance(data.get("meta"), dict) else {}
    is_new = bool(meta.get("is_new_incident_candidate"))
    is_correction = bool(meta.get("is_place_correction_only"))
    if is_new and is_correction:
        # Both flags set: treat as a correction, never as a second ticket
        is_new = False

    return TurnInterpretation(
        ops=ops,
        analysis=str(data.get("analysis") or ""),
        is_new_incident_candidate=is_new,
        is_place_correction_only=is_correction,
    )


class TurnInterpreterAgent(BaseAgent):
    def __init__(self):
        super().__init__(
            agent_name="turn_interpreter",
            model_name=get_settings().interpreter_model,
            temperature=0.1,
        )

    async def interpret(self, text: str, focus_mode: str, draft) -> TurnInterpretation:
        """Return ops + analysis + meta flags for one turn."""
        prompt = TURN_PROMPT_TEMPLATE.format(
            focus=focus_mode,
            text=(text or "").replace('"', "'"),
            draft_ctx=_draft_context(draft),
        )

        result = await self.generate_json(prompt=prompt)
        if not result.ok:
            logger.warning("Turn interpreter failed: %s", result.error)
            return TurnInterpretation()

        interpretation = parse_interpretation(result.data)
        logger.info(
            "Turn interpreted: ops=%s new=%s correction=%s",
            [op.kind for op in interpretation.ops],
            interpretation.is_new_incident_candidate,
            interpretation.is_place_correction_only,
        )
        return interpretation
