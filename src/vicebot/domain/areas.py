"""Operational area catalogue: codes, labels, aliases and keyword hints."""

import re

from vicebot.agents.intake.vocabulary import normalize
from vicebot.domain.enums import AreaCode

AREA_LABELS: dict[str, str] = {
    AreaCode.MAN.value: "Mantenimiento",
    AreaCode.IT.value: "IT",
    AreaCode.AMA.value: "HSKP",
    AreaCode.RS.value: "Room Service",
    AreaCode.SEG.value: "Seguridad",
}

# Folio prefixes per area; anything else gets GEN
AREA_FOLIO_PREFIX: dict[str, str] = {
    AreaCode.MAN.value: "MAN",
    AreaCode.IT.value: "IT",
    AreaCode.AMA.value: "AMA",
    AreaCode.RS.value: "RS",
    AreaCode.SEG.value: "SEG",
}
DEFAULT_FOLIO_PREFIX = "GEN"

AREA_ALIASES: dict[str, str] = {
    # man
    "man": "man", "mantenimiento": "man", "mant": "man", "mantto": "man", "manto": "man",
    "maintenance": "man", "ingenieria": "man",
    # it
    "it": "it", "sistemas": "it", "sistema": "it", "tech": "it",
    "tecnologia": "it", "soporte": "it", "informatica": "it",
    # ama
    "ama": "ama", "hskp": "ama", "housekeeping": "ama", "limpieza": "ama",
    "ama de llaves": "ama", "camarista": "ama", "camaristas": "ama",
    # rs
    "rs": "rs", "room service": "rs", "roomservice": "rs", "ird": "rs",
    "alimentos": "rs", "ayb": "rs", "a&b": "rs", "servicio a cuarto": "rs",
    # seg
    "seg": "seg", "seguridad": "seg", "vigilancia": "seg", "security": "seg", "guardia": "seg",
}

# Keyword hints used by the deterministic first pass of area detection
AREA_HINTS: dict[str, tuple[str, ...]] = {
    "it": (
        "computadora", "pc", "laptop", "impresora", "toner", "internet", "wifi", "wi fi",
        "modem", "router", "red", "correo", "tv", "tele", "television", "proyector",
        "telefono", "extension", "conmutador",
    ),
    "man": (
        "fuga", "gotera", "gotea", "tuberia", "plomeria", "foco", "lampara", "luz",
        "apagador", "contacto", "puerta", "bisagra", "chapa", "cerradura", "pintura",
        "pared", "aire", "clima", "termostato", "a/c", "regadera", "wc", "excusado",
        "lavabo", "drenaje", "caja de seguridad", "caja fuerte",
    ),
    "ama": (
        "toalla", "toallas", "sabanas", "blancos", "amenities", "shampoo", "jabon",
        "cama", "basura", "papel", "sucio", "sucia", "aseo",
    ),
    "rs": (
        "desayuno", "comida", "cena", "bebida", "hielo", "hielos", "menu", "orden",
        "pedido", "platillo", "postre",
    ),
    "seg": (
        "incendio", "fuego", "alarma", "robo", "extravio", "accidente", "emergencia",
        "cctv", "camara", "intruso", "pelea", "disturbio",
    ),
}


# Longer replies mention area names in passing ("la caja de seguridad no abre")
MAX_EXPLICIT_WORDS = 4

# Longest alias first so "ama de llaves" beats "ama"
_ALIASES_BY_LENGTH = sorted(AREA_ALIASES, key=len, reverse=True)


def _word_re(term: str) -> re.Pattern:
    return re.compile(r"(?<![a-z0-9])" + re.escape(term) + r"(?![a-z0-9])")


def _word_in(term: str, text: str) -> bool:
    return _word_re(term).search(text) is not None


def normalize_area_code(text: str | None) -> str | None:
    """Map a code, label or alias to its area code, or None.

    Besides exact values, a short reply naming an area ("mejor a seguridad")
    counts. Aliases inside longer sentences are left to ``score_area_hints``.
    """
    t = normalize(text)
    if not t:
        return None
    if t in AREA_ALIASES:
        return AREA_ALIASES[t]
    if len(t.split()) > MAX_EXPLICIT_WORDS:
        return None
    for alias in _ALIASES_BY_LENGTH:
        if _word_in(alias, t):
            return AREA_ALIASES[alias]
    return None


def area_label(code: str | None) -> str:
    if not code:
        return "—"
    return AREA_LABELS.get(code, code.upper())


def area_list_label(codes) -> str:
    return ", ".join(area_label(c) for c in codes) if codes else "—"


def score_area_hints(text: str | None) -> dict[str, int]:
    """Count keyword hints per area; only areas with at least one hit.

    An area name mentioned in the text is one more hint for that area,
    unless it is part of a matched keyword ("caja de seguridad").
    """
    t = normalize(text)
    scores: dict[str, int] = {}
    if not t:
        return scores
    rest = t
    for code, hints in AREA_HINTS.items():
        for hint in hints:
            pattern = _word_re(hint)
            if pattern.search(t):
                scores[code] = scores.get(code, 0) + 1
                rest = pattern.sub(" ", rest)
    for alias in _ALIASES_BY_LENGTH:
        pattern = _word_re(alias)
        if pattern.search(rest):
            code = AREA_ALIASES[alias]
            scores[code] = scores.get(code, 0) + 1
            rest = pattern.sub(" ", rest)
    return scores
