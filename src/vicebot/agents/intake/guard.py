"""Guard — deterministic smalltalk / non-incident filter.

Runs before any draft mutation. The orchestrator only honours a blocking
verdict while the session draft is bare, so a greeting in the middle of
a report never discards it.
"""

import logging

from vicebot.domain.enums import GuardVerdict

from .contracts import GuardResult
from .vocabulary import find_strong_place_signal, looks_incident_like, normalize

logger = logging.getLogger(__name__)

# ---------------------------------------------------------------------------
# Vocabularies
# ---------------------------------------------------------------------------

GREETING_PATTERNS = (
    "hola",
    "buen dia",
    "buenos dias",
    "buenas tardes",
    "buenas noches",
    "buenas",
    "que tal",
    "que onda",
    "como estas",
    "como te va",
    "como andas",
    "hello",
    "hi",
)

NON_INCIDENT_PATTERNS = (
    "solo te saludo",
    "solo los saludo",
    "solo saludando",
    "te estoy saludando",
    "nada mas saludando",
    "no es reporte",
    "no es un reporte",
    "no es incidencia",
    "no es una incidencia",
    "no estoy reportando",
    "no quiero reportar nada",
    "no hay problema",
    "era prueba",
    "es una prueba",
)

# Phrases the interpreter uses in its analysis when nothing actionable was said
_AI_SMALLTALK_MARKERS = (
    "smalltalk",
    "solo esta saludando",
    "solo ha saludado",
    "esta saludando",
    "no hay cambios necesarios en el borrador",
    "no hay cambios ni informacion adicional",
    "pregunta por el nombre del bot",
)

_GREETING_EMOJI = ("👋", "🤝")

GREETING_REPLY = "👋 ¡Hola! Si necesitas reportar algo, cuéntame qué pasa y dónde."
NON_INCIDENT_REPLY = "👌 Entendido, no registro nada. Aquí estoy si necesitas reportar algo."


# ---------------------------------------------------------------------------
# Checks
# ---------------------------------------------------------------------------

def _is_plain_greeting(t: str) -> bool:
    words = t.split(" ")
    if len(words) > 4:
        return False
    for pat in GREETING_PATTERNS:
        if t == pat or t.startswith(pat + " ") or t.endswith(" " + pat):
            return True
    return any(e in t for e in _GREETING_EMOJI)


def _has_explicit_non_incident(t: str) -> bool:
    return any(pat in t for pat in NON_INCIDENT_PATTERNS)


def _ai_says_smalltalk(analysis: str | None) -> bool:
    a = normalize(analysis)
    if not a:
        return False
    if any(marker in a for marker in _AI_SMALLTALK_MARKERS):
        return True
    return "saludo" in a and "no hay accion requerida" in a


def classify_guard(text: str, ai_analysis: str | None = None) -> GuardResult:
    """Decide whether a turn is a greeting / explicit non-report / smalltalk.

    Args:
        text: Raw guest text.
        ai_analysis: Optional free-text analysis returned by the turn
            interpreter, used as the weakest signal.

    Returns:
        ``GuardResult`` with ``blocked`` True when the turn should bypass
        intake (subject to the caller's bare-draft check).
    """
    t = normalize(text)
    incident_like = looks_incident_like(t) or find_strong_place_signal(t) is not None

    if t and _has_explicit_non_incident(t):
        verdict = GuardVerdict.NON_INCIDENT
        reply = NON_INCIDENT_REPLY
    elif t and _is_plain_greeting(t) and not incident_like:
        verdict = GuardVerdict.GREETING
        reply = GREETING_REPLY
    elif _ai_says_smalltalk(ai_analysis) and not incident_like:
        verdict = GuardVerdict.SMALLTALK
        reply = GREETING_REPLY
    else:
        return GuardResult(blocked=False)

    logger.debug("Guard blocked turn: verdict=%s text=%.80s", verdict.value, text)
    return GuardResult(blocked=True, verdict=verdict.value, reply=reply)
