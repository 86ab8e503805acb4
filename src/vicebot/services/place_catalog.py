"""Place catalog index — room lookup, phrase scan and fuzzy matching.

Built once from a list of place records and read-only afterwards. The
loader swaps in a fresh index object on reload, so readers holding the
previous index are never affected by a rebuild.
"""

import json
import logging
import re
from dataclasses import dataclass, field
from pathlib import Path

from rapidfuzz.distance import Levenshtein

from vicebot.agents.intake.vocabulary import normalize

logger = logging.getLogger(__name__)

# ---------------------------------------------------------------------------
# Thresholds
# ---------------------------------------------------------------------------

FUZZY_AUTO_ACCEPT = 0.90      # accept outright
FUZZY_UNIQUE_MIN = 0.80       # accept a unique best at or above this...
FUZZY_UNIQUE_MARGIN = 0.10    # ...when it leads the runner-up by this much
FUZZY_SUGGEST_MIN = 0.60
MAX_SUGGESTIONS = 3

# Phrases this short only match on word boundaries
SHORT_PHRASE_MAX_LEN = 4
# Fuzzy windows shorter than this are noise ("la", "de", ...)
FUZZY_MIN_LEN = 4

_NON_ALNUM_RE = re.compile(r"[^a-z0-9#\s]")
_WS_RE = re.compile(r"\s+")
_ROOM_LABEL_RE = re.compile(r"^(?:hab(?:itacion)?|room|cuarto)?\s*#?\s*(\d{4})$")
_VILLA_LABEL_RE = re.compile(r"^villa\s*#?\s*(\d{1,3})$")


def catalog_key(text: str | None) -> str:
    """Normalized form used for every catalog comparison."""
    t = _NON_ALNUM_RE.sub(" ", normalize(text))
    return _WS_RE.sub(" ", t).strip()


def villa_key(number) -> str:
    return f"villa {int(number)}"


# ---------------------------------------------------------------------------
# Entries
# ---------------------------------------------------------------------------

@dataclass(frozen=True)
class PlaceEntry:
    """One catalog place."""
    id: str
    label: str
    aliases: tuple[str, ...] = ()
    room_number: str | None = None
    villa_number: str | None = None
    building: str | None = None
    floor: str | None = None
    type: str | None = None

    @property
    def room(self) -> str | None:
        return self.room_number or self.villa_number


def _opt_str(value) -> str | None:
    if value is None:
        return None
    text = str(value).strip()
    return text or None


def entry_from_record(raw: dict) -> PlaceEntry | None:
    """Build a PlaceEntry from one catalog record; None if unusable."""
    if not isinstance(raw, dict) or raw.get("active") is False:
        return None
    label = _opt_str(raw.get("label") or raw.get("name"))
    if not label:
        return None

    aliases = raw.get("aliases") or []
    if not isinstance(aliases, list):
        aliases = [aliases]

    room_number = _opt_str(raw.get("room_number"))
    villa_number = _opt_str(raw.get("villa_number"))
    key = catalog_key(label)
    if not room_number and not villa_number:
        room_match = _ROOM_LABEL_RE.match(key)
        villa_match = _VILLA_LABEL_RE.match(key)
        if room_match:
            room_number = room_match.group(1)
        elif villa_match:
            villa_number = villa_match.group(1)

    return PlaceEntry(
        id=_opt_str(raw.get("id")) or key.replace(" ", "-"),
        label=label,
        aliases=tuple(a for a in (_opt_str(x) for x in aliases) if a),
        room_number=room_number if room_number and re.fullmatch(r"\d{4}", room_number) else None,
        villa_number=villa_number,
        building=_opt_str(raw.get("building") or raw.get("tower") or raw.get("structure")),
        floor=_opt_str(raw.get("floor")),
        type=_opt_str(raw.get("type")),
    )


@dataclass
class PlaceMatch:
    entry: PlaceEntry
    score: float
    via: str  # room, exact, phrase, fuzzy, informal


@dataclass
class FuzzyOutcome:
    match: PlaceMatch | None = None
    suggestions: list[PlaceMatch] = field(default_factory=list)


# ---------------------------------------------------------------------------
# Index
# ---------------------------------------------------------------------------

class PlaceCatalogIndex:
    """Room map plus a longest-first phrase index over labels and aliases."""

    def __init__(self, entries: list[PlaceEntry], source_path: str | None = None):
        self.entries = list(entries)
        self.source_path = source_path
        self.rooms: dict[str, PlaceEntry] = {}
        self._exact: dict[str, PlaceEntry] = {}
        self._by_label: dict[str, PlaceEntry] = {}
        self._phrases: list[tuple[str, PlaceEntry, re.Pattern | None]] = []

        for entry in self.entries:
            if entry.room_number:
                self.rooms.setdefault(entry.room_number, entry)
            if entry.villa_number:
                self.rooms.setdefault(villa_key(entry.villa_number), entry)
            self._by_label.setdefault(catalog_key(entry.label), entry)

            seen: set[str] = set()
            for phrase in (entry.label, *entry.aliases):
                term = catalog_key(phrase)
                if not term or term in seen:
                    continue
                seen.add(term)
                self._exact.setdefault(term, entry)
                pattern = None
                if len(term) <= SHORT_PHRASE_MAX_LEN:
                    pattern = re.compile(r"(?<![a-z0-9])" + re.escape(term) + r"(?![a-z0-9])")
                self._phrases.append((term, entry, pattern))

        # Longest (most specific) phrase first
        self._phrases.sort(key=lambda p: len(p[0]), reverse=True)

    def __len__(self) -> int:
        return len(self.entries)

    def labels(self) -> list[str]:
        return [e.label for e in self.entries]

    # ------------------------------------------------------------------
    # Lookups
    # ------------------------------------------------------------------

    def lookup_room(self, key: str | None) -> PlaceEntry | None:
        """O(1) lookup by "1311" or "villa 6"."""
        if not key:
            return None
        return self.rooms.get(key)

    def lookup_exact(self, text: str | None) -> PlaceEntry | None:
        """Exact normalized label/alias match."""
        return self._exact.get(catalog_key(text))

    def find_by_label(self, label: str | None) -> PlaceEntry | None:
        key = catalog_key(label)
        return self._by_label.get(key) or self._exact.get(key)

    def scan_phrases(self, text: str | None) -> PlaceMatch | None:
        """First (longest) label/alias contained in ``text``."""
        t = catalog_key(text)
        if not t:
            return None
        for term, entry, pattern in self._phrases:
            if pattern is not None:
                if pattern.search(t):
                    return PlaceMatch(entry=entry, score=1.0, via="phrase")
            elif term in t:
                return PlaceMatch(entry=entry, score=1.0, via="phrase")
        return None

    # ------------------------------------------------------------------
    # Fuzzy
    # ------------------------------------------------------------------

    @staticmethod
    def _windows(text: str, max_words: int) -> list[str]:
        tokens = text.split(" ")
        windows = {text}
        for size in range(1, min(max_words, len(tokens)) + 1):
            for start in range(len(tokens) - size + 1):
                windows.add(" ".join(tokens[start:start + size]))
        return [w for w in windows if len(w) >= FUZZY_MIN_LEN]

    def fuzzy(self, text: str | None) -> FuzzyOutcome:
        """Best normalized edit-distance similarity per entry.

        Accepts the top entry at FUZZY_AUTO_ACCEPT or above, or when it is
        the unique best at FUZZY_UNIQUE_MIN with FUZZY_UNIQUE_MARGIN over
        the runner-up. Otherwise returns ranked suggestions only.
        """
        t = catalog_key(text)
        if len(t) < FUZZY_MIN_LEN:
            return FuzzyOutcome()

        best_by_entry: dict[str, tuple[float, PlaceEntry]] = {}
        for term, entry, _pattern in self._phrases:
            if len(term) < FUZZY_MIN_LEN:
                continue
            term_words = term.count(" ") + 1
            for window in self._windows(t, term_words + 1):
                score = Levenshtein.normalized_similarity(window, term)
                current = best_by_entry.get(entry.id)
                if current is None or score > current[0]:
                    best_by_entry[entry.id] = (score, entry)

        ranked = sorted(best_by_entry.values(), key=lambda se: se[0], reverse=True)
        if not ranked:
            return FuzzyOutcome()

        top_score, top_entry = ranked[0]
        runner_up = ranked[1][0] if len(ranked) > 1 else 0.0

        accepted = top_score >= FUZZY_AUTO_ACCEPT or (
            top_score >= FUZZY_UNIQUE_MIN
            and top_score > runner_up
            and (top_score - runner_up) >= FUZZY_UNIQUE_MARGIN
        )
        if accepted:
            logger.debug("Fuzzy place accepted: %s (%.2f)", top_entry.label, top_score)
            return FuzzyOutcome(match=PlaceMatch(entry=top_entry, score=top_score, via="fuzzy"))

        suggestions = [
            PlaceMatch(entry=entry, score=score, via="fuzzy")
            for score, entry in ranked[:MAX_SUGGESTIONS]
            if score >= FUZZY_SUGGEST_MIN
        ]
        return FuzzyOutcome(suggestions=suggestions)


# ---------------------------------------------------------------------------
# Loading
# ---------------------------------------------------------------------------

def load_place_records(path: str) -> list[PlaceEntry]:
    """Read a JSON catalog (a list, or {"places": [...]}) into entries."""
    raw = json.loads(Path(path).read_text(encoding="utf-8"))
    if isinstance(raw, dict):
        raw = raw.get("places") or []
    if not isinstance(raw, list):
        raise ValueError(f"Place catalog at {path} is not a list")

    entries = [e for e in (entry_from_record(r) for r in raw) if e is not None]
    logger.info("Place catalog loaded: path=%s entries=%d", path, len(entries))
    return entries


class PlaceCatalogLoader:
    """Holds the current index; rebuilds only when the path changes."""

    def __init__(self):
        self._index: PlaceCatalogIndex | None = None

    @property
    def index(self) -> PlaceCatalogIndex:
        if self._index is None:
            return PlaceCatalogIndex([])
        return self._index

    def load(self, path: str) -> PlaceCatalogIndex:
        if self._index is not None and self._index.source_path == path:
            return self._index
        index = PlaceCatalogIndex(load_place_records(path), source_path=path)
        self._index = index
        logger.info("Place index ready: rooms=%d phrases=%d", len(index.rooms), len(index._phrases))
        return index
