"""Place resolver — free text to a catalog place (or a safe verbatim label).

Resolution order, highest first:

1. Strong signal (4-digit room, "Villa N") found in the room index
2. Sanitized candidate matched exactly against labels/aliases
3. Phrase scan over labels/aliases (only without a strong signal)
4. Verbatim strong signal ("Habitación 1311", "Villa 6")
5. Fuzzy catalog match (auto-accept rules in place_catalog)
6. Informal place classifier, accepted only if it maps onto the catalog
7. Verbatim sanitized candidate, when the caller allows it
"""

import logging
import re
from dataclasses import dataclass, field
from typing import Callable

from vicebot.agents.intake.vocabulary import (
    find_strong_place_signal,
    is_ambiguous_number,
    is_no,
    is_yes,
    looks_incident_like,
    normalize,
)

from .place_catalog import PlaceCatalogIndex, PlaceEntry, catalog_key

logger = logging.getLogger(__name__)

# Bare qualifiers that name no place on their own
GENERIC_QUALIFIERS = frozenset({"principal", "general", "central", "main"})

# Leading filler stripped before catalog lookup, longest first
_LEADING_FILLER = (
    "cambia el lugar por", "cambia el lugar a", "cambiar lugar a", "el lugar es",
    "cambialo a", "perdon era en", "perdon es en", "perdon en", "ahora en",
    "era en", "es en", "esta en", "en la", "en el", "en los", "en las",
    "por favor", "perdon", "lugar", "en", "es",
)
_QUOTES_RE = re.compile(r"[\"'“”‘’«»\[\]\(\)\{\}<>*_]")
_TRAILING_PUNCT_RE = re.compile(r"[\s.,;:!¡?¿\-]+$")
_LEADING_PUNCT_RE = re.compile(r"^[\s.,;:!¡?¿\-]+")
_HAS_LETTER_RE = re.compile(r"[a-zA-ZÀ-ÿ]")

# A verbatim place answer is short
MAX_VERBATIM_WORDS = 5


@dataclass
class PlaceResolution:
    """Outcome of resolving a place from text."""
    label: str | None = None
    building: str | None = None
    floor: str | None = None
    room: str | None = None
    entry_id: str | None = None
    via: str = "none"  # room, exact, phrase, strong_signal, fuzzy, informal, verbatim, suggestion, none
    score: float = 0.0
    suggestions: list[str] = field(default_factory=list)

    @property
    def found(self) -> bool:
        return bool(self.label)

    @classmethod
    def from_entry(cls, entry: PlaceEntry, via: str, score: float = 1.0) -> "PlaceResolution":
        return cls(
            label=entry.label,
            building=entry.building,
            floor=entry.floor,
            room=entry.room,
            entry_id=entry.id,
            via=via,
            score=score,
        )


# ---------------------------------------------------------------------------
# Pure helpers
# ---------------------------------------------------------------------------

def sanitize_place_candidate(text: str | None) -> str:
    """Strip quotes/brackets, leading filler and trailing punctuation."""
    if not text:
        return ""
    t = _QUOTES_RE.sub(" ", str(text))
    t = _LEADING_PUNCT_RE.sub("", _TRAILING_PUNCT_RE.sub("", t))
    t = re.sub(r"\s+", " ", t).strip()

    changed = True
    while changed and t:
        changed = False
        lowered = normalize(t)
        for filler in _LEADING_FILLER:
            if lowered == filler:
                return ""
            if lowered.startswith(filler + " "):
                # normalize() never changes length except for accents/whitespace
                t = " ".join(t.split(" ")[len(filler.split(" ")):]).strip()
                t = _LEADING_PUNCT_RE.sub("", t)
                changed = True
                break
    return t


def is_generic_qualifier(text: str | None) -> bool:
    return catalog_key(text) in GENERIC_QUALIFIERS


def strong_signal_label(signal: str) -> str:
    """Human label for a strong signal that is not in the catalog."""
    if signal.startswith("villa "):
        return f"Villa {signal.split(' ', 1)[1]}"
    return f"Habitación {signal}"


def looks_like_place_answer(candidate: str | None) -> bool:
    """Short, letter-bearing text that is not a yes/no or an incident description."""
    if not candidate or len(candidate.strip()) < 3:
        return False
    if not _HAS_LETTER_RE.search(candidate):
        return False
    if is_yes(candidate) or is_no(candidate) or is_ambiguous_number(candidate):
        return False
    if len(candidate.split()) > MAX_VERBATIM_WORDS:
        return False
    return not looks_incident_like(candidate)


def same_place(a: str | None, b: str | None) -> bool:
    return bool(a) and bool(b) and catalog_key(a) == catalog_key(b)


# ---------------------------------------------------------------------------
# Resolver
# ---------------------------------------------------------------------------

class PlaceResolver:
    """Resolves places against the current catalog index.

    Args:
        index_provider: Callable returning the current PlaceCatalogIndex, so
            a reload is picked up on the next call.
        classifier: Optional informal place classifier with an async
            ``classify(text, candidates)`` method.
    """

    def __init__(self, index_provider: Callable[[], PlaceCatalogIndex], classifier=None):
        self._index_provider = index_provider
        self.classifier = classifier

    @property
    def index(self) -> PlaceCatalogIndex:
        return self._index_provider()

    async def resolve(
        self,
        text: str | None,
        *,
        allow_verbatim: bool = True,
        use_classifier: bool = True,
    ) -> PlaceResolution:
        index = self.index
        raw = (text or "").strip()
        if not raw:
            return PlaceResolution()

        # 1. Strong signal in the room index
        signal = find_strong_place_signal(raw)
        if signal:
            entry = index.lookup_room(signal)
            if entry:
                return PlaceResolution.from_entry(entry, via="room")

        candidate = sanitize_place_candidate(raw)

        # 2. Exact label/alias
        if candidate:
            entry = index.lookup_exact(candidate)
            if entry and not (signal and is_generic_qualifier(candidate)):
                return PlaceResolution.from_entry(entry, via="exact")

        # 3. Phrase scan; a strong signal outranks any contained phrase
        if not signal:
            phrase = index.scan_phrases(candidate or raw)
            if phrase:
                return PlaceResolution.from_entry(phrase.entry, via="phrase", score=phrase.score)

        # 4. Verbatim strong signal
        if signal:
            return PlaceResolution(
                label=strong_signal_label(signal),
                room=signal.split(" ", 1)[-1],
                via="strong_signal",
            )

        if not candidate or is_generic_qualifier(candidate):
            return PlaceResolution()

        # 5. Fuzzy
        outcome = index.fuzzy(candidate)
        if outcome.match:
            return PlaceResolution.from_entry(outcome.match.entry, via="fuzzy", score=outcome.match.score)
        suggestions = [s.entry.label for s in outcome.suggestions]

        # 6. Informal classifier, only when it lands on a catalog entry
        if use_classifier and self.classifier is not None and len(index):
            try:
                informal = await self.classifier.classify(candidate, index.labels())
            except Exception as exc:
                logger.error("Informal place classifier raised: %s", exc)
                informal = None
            if informal is not None and informal.found:
                entry = index.find_by_label(informal.canonical_label)
                if entry:
                    return PlaceResolution.from_entry(entry, via="informal", score=informal.confidence)
                logger.info("Informal place %r not in catalog; ignored", informal.canonical_label)

        # 7. Verbatim candidate; a near miss on the catalog is offered instead
        if allow_verbatim and not suggestions and looks_like_place_answer(candidate):
            return PlaceResolution(label=candidate, via="verbatim", score=0.5)

        return PlaceResolution(suggestions=suggestions)

    def choose_suggestion(self, label: str) -> PlaceResolution:
        """Resolution for a suggestion the user picked by number."""
        entry = self.index.find_by_label(label)
        if entry:
            return PlaceResolution.from_entry(entry, via="suggestion")
        return PlaceResolution(label=label, via="suggestion")

    async def detect_in_text(self, text: str | None) -> PlaceResolution:
        """Conservative auto-detection for back-fill: catalog and strong signals only."""
        return await self.resolve(text, allow_verbatim=False, use_classifier=False)
