"""Deterministic vocabulary checks for guest replies.

Pure functions only: no LLM, no session access. Every check runs on the
``normalize``-d form so accents, casing and spacing never matter.
"""

import re
import unicodedata

# ---------------------------------------------------------------------------
# Normalization
# ---------------------------------------------------------------------------

_WS_RE = re.compile(r"\s+")
_EDGE_PUNCT_RE = re.compile(r"^[\s.,;:!¡?¿]+|[\s.,;:!¡?¿]+$")


def normalize(text: str | None) -> str:
    """Strip accents, lowercase and collapse whitespace."""
    if not text:
        return ""
    decomposed = unicodedata.normalize("NFD", str(text))
    stripped = "".join(ch for ch in decomposed if unicodedata.category(ch) != "Mn")
    return _WS_RE.sub(" ", stripped.lower()).strip()


def _reply_token(text: str | None) -> str:
    """Normalized reply with surrounding punctuation removed ("Sí!" -> "si")."""
    return _EDGE_PUNCT_RE.sub("", normalize(text))


# ---------------------------------------------------------------------------
# Yes / no
# ---------------------------------------------------------------------------

YES_TOKENS = frozenset({
    "si", "yes", "ok", "okay", "vale", "va", "dale", "listo", "correcto",
    "enviar", "envialo", "mandalo", "confirmo", "confirmar", "afirmativo",
    "send", "simon", "claro", "sale", "si por favor", "si, envialo",
})
YES_EMOJI = frozenset({"👍", "✅", "✔️", "✔"})

NO_TOKENS = frozenset({
    "no", "nop", "nope", "nopes", "nel", "cancelar", "cancela", "negativo", "ninguno",
})
NO_EMOJI = frozenset({"❌", "✖️", "✖"})


def is_yes(text: str | None) -> bool:
    """True only for an exact affirmative token or emoji."""
    raw = (text or "").strip()
    if raw in YES_EMOJI:
        return True
    return _reply_token(raw) in YES_TOKENS


def is_no(text: str | None) -> bool:
    """True only for an exact negative token or emoji."""
    raw = (text or "").strip()
    if raw in NO_EMOJI:
        return True
    return _reply_token(raw) in NO_TOKENS


# ---------------------------------------------------------------------------
# Ambiguous numbers
# ---------------------------------------------------------------------------

_AMBIGUOUS_NUMBER_RE = re.compile(r"^\d{1,3}$")


def is_ambiguous_number(text: str | None) -> bool:
    """A bare 1-3 digit string: never a yes/no, never a room number."""
    return bool(_AMBIGUOUS_NUMBER_RE.match((text or "").strip()))


# ---------------------------------------------------------------------------
# Reset
# ---------------------------------------------------------------------------

RESET_TOKENS = frozenset({
    "reiniciar", "reinicia", "reset", "/reset", "empezar de nuevo",
    "borrar todo", "cancelar todo", "/nuevo",
})


def is_reset_command(text: str | None) -> bool:
    return _reply_token(text) in RESET_TOKENS or normalize(text) in RESET_TOKENS


# ---------------------------------------------------------------------------
# Incident version choice
# ---------------------------------------------------------------------------

KEEP_CURRENT = "keep"
USE_CANDIDATE = "replace"

_KEEP_TOKENS = frozenset({
    "1", "primero", "el primero", "primera", "la primera", "actual", "el actual",
    "mantener", "conservar",
})
_REPLACE_TOKENS = frozenset({
    "2", "segundo", "el segundo", "segunda", "la segunda", "nuevo", "el nuevo",
})


def parse_version_choice(text: str | None) -> str | None:
    """Map a reply to KEEP_CURRENT, USE_CANDIDATE, or None when unclear."""
    token = _reply_token(text)
    if token in _KEEP_TOKENS:
        return KEEP_CURRENT
    if token in _REPLACE_TOKENS:
        return USE_CANDIDATE
    return None


# ---------------------------------------------------------------------------
# Incident hints
# ---------------------------------------------------------------------------

INCIDENT_HINTS = (
    "no sirve", "no funciona", "no enciende", "no prende", "fuga", "gotea",
    "se descompuso", "se desconfiguro", "tirando agua", "apagado", "fallando",
    "roto", "rota", "tapado", "tapada", "se cayo", "no jala", "no hay agua",
    "no hay luz", "no hay internet", "huele", "ruido",
)
_INCIDENT_VERB_RE = re.compile(r"\bno\s+(sirve|funciona|enciende|prende|jala|hay)\b")


def looks_incident_like(text: str | None) -> bool:
    """Cheap lexical check for a malfunction description."""
    t = normalize(text)
    if not t:
        return False
    if any(hint in t for hint in INCIDENT_HINTS):
        return True
    return bool(_INCIDENT_VERB_RE.search(t))


# ---------------------------------------------------------------------------
# Strong place signals
# ---------------------------------------------------------------------------

_ROOM_TOKEN_RE = re.compile(r"(?<!\d)(\d{4})(?!\d)")
_VILLA_RE = re.compile(r"\bvilla\s*#?\s*(\d{1,3})\b")


def find_strong_place_signal(text: str | None) -> str | None:
    """Return the room key ("1311") or villa key ("villa 6") named in text.

    A villa mention wins over a bare four-digit token when both appear.
    """
    t = normalize(text)
    if not t:
        return None
    villa = _VILLA_RE.search(t)
    if villa:
        return f"villa {int(villa.group(1))}"
    room = _ROOM_TOKEN_RE.search(t)
    if room:
        return room.group(1)
    return None
