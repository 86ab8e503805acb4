"""Per-conversation intake sessions and the incident draft under construction.

A session belongs to exactly one conversation id and is only mutated by
the turn pipeline processing that conversation. The store is injected
into the orchestrator; nothing here is module-global.
"""

import logging
import time
from collections import deque
from dataclasses import dataclass, field
from typing import Callable, Optional

from vicebot.agents.intake.vocabulary import normalize
from vicebot.domain.areas import normalize_area_code
from vicebot.domain.enums import SessionMode

logger = logging.getLogger(__name__)


class InvalidTransitionError(Exception):
    """Raised when a session mode change is not allowed."""

    def __init__(self, current_mode: SessionMode, target_mode: SessionMode, reason: str):
        self.current_mode = current_mode
        self.target_mode = target_mode
        self.reason = reason
        super().__init__(
            f"Invalid transition from {current_mode.value} to {target_mode.value}: {reason}"
        )


# ---------------------------------------------------------------------------
# Draft
# ---------------------------------------------------------------------------

@dataclass
class IncidentDraft:
    """The incident record under construction for one conversation."""

    descripcion: str | None = None
    descripcion_original: str | None = None
    interpretacion: str | None = None
    lugar: str | None = None
    building: str | None = None
    floor: str | None = None
    room: str | None = None
    area_destino: str | None = None
    areas: list[str] = field(default_factory=list)
    details: list[str] = field(default_factory=list)
    notes: list[str] = field(default_factory=list)

    def is_dispatch_eligible(self) -> bool:
        return self.lugar is not None and self.area_destino is not None

    def has_content(self) -> bool:
        return bool(self.lugar or self.area_destino or self.details or self.descripcion)

    # -- description / details ------------------------------------------

    def set_description(self, text: str) -> None:
        self.descripcion = text
        if not self.descripcion_original:
            self.descripcion_original = text

    def append_detail(self, text: str | None) -> bool:
        """Append a fragment unless an equal (normalized) one is already present."""
        key = normalize(text)
        if not key:
            return False
        if key == normalize(self.descripcion):
            return False
        if any(normalize(d) == key for d in self.details):
            return False
        self.details.append(text.strip())
        return True

    def append_interpretation(self, text: str | None) -> None:
        """Additive: vision output never overwrites earlier interpretation."""
        if not text or not text.strip():
            return
        if not self.interpretacion:
            self.interpretacion = text.strip()
        elif normalize(text) not in normalize(self.interpretacion):
            self.interpretacion = f"{self.interpretacion} | {text.strip()}"

    def add_note(self, text: str) -> None:
        if text and text not in self.notes:
            self.notes.append(text)

    # -- place ----------------------------------------------------------

    def set_place(self, label: str, building: str | None = None, floor: str | None = None,
                  room: str | None = None) -> None:
        self.lugar = label
        self.building = building
        self.floor = floor
        self.room = room

    def clear_place(self) -> None:
        self.set_place(None, None, None, None)

    # -- areas ----------------------------------------------------------

    def set_primary_area(self, area: str) -> bool:
        code = normalize_area_code(area)
        if not code:
            return False
        self.area_destino = code
        if code in self.areas:
            self.areas.remove(code)
        self.areas.insert(0, code)
        return True

    def add_area(self, area: str) -> bool:
        code = normalize_area_code(area)
        if not code:
            return False
        if code not in self.areas:
            self.areas.append(code)
        if self.area_destino is None:
            self.area_destino = code
        return True

    def remove_area(self, area: str) -> bool:
        code = normalize_area_code(area)
        if not code or code not in self.areas and code != self.area_destino:
            return False
        if code in self.areas:
            self.areas.remove(code)
        if self.area_destino == code:
            self.area_destino = self.areas[0] if self.areas else None
        return True

    def replace_areas(self, areas) -> bool:
        codes = []
        for area in areas:
            code = normalize_area_code(area)
            if code and code not in codes:
                codes.append(code)
        if not codes:
            return False
        self.areas = codes
        self.area_destino = codes[0]
        return True

    def to_dict(self) -> dict:
        return {
            "descripcion": self.descripcion,
            "descripcion_original": self.descripcion_original,
            "interpretacion": self.interpretacion,
            "lugar": self.lugar,
            "building": self.building,
            "floor": self.floor,
            "room": self.room,
            "area_destino": self.area_destino,
            "areas": list(self.areas),
            "details": list(self.details),
            "notes": list(self.notes),
        }


# ---------------------------------------------------------------------------
# Session
# ---------------------------------------------------------------------------

@dataclass
class PendingMedia:
    data: bytes
    mimetype: str
    filename: str | None = None
    received_at: float = 0.0


# target mode -> (precondition on session, reason when it fails)
_MODE_PRECONDITIONS: dict[SessionMode, tuple[Callable[["IntakeSession"], bool], str]] = {
    SessionMode.CONFIRM: (
        lambda s: s.draft.is_dispatch_eligible(),
        "both place and area are required",
    ),
    SessionMode.CHOOSE_INCIDENT_VERSION: (
        lambda s: s.draft.has_content() and bool(s.candidate_incident_text),
        "needs a current draft and a candidate incident",
    ),
    SessionMode.CONFIRM_AREA_SUGGESTION: (
        lambda s: s.suggested_area is not None and s.draft.area_destino is None,
        "needs a suggestion and no standing area",
    ),
    SessionMode.ASK_AREA: (
        lambda s: s.draft.area_destino is None,
        "area already set",
    ),
    SessionMode.ASK_PLACE: (
        lambda s: s.draft.lugar is None,
        "place already set",
    ),
}


class IntakeSession:
    """Mutable intake state for one conversation."""

    def __init__(self, conversation_id: str, now: float, history_limit: int = 50):
        self.conversation_id = conversation_id
        self.mode = SessionMode.NEUTRAL
        self.draft = IncidentDraft()
        self.history: deque = deque(maxlen=history_limit)
        self.pending_media: list[PendingMedia] = []
        self.vision_area_hints: list[str] = []
        self._vision_confidence: dict[str, float] = {}
        self.suggested_area: Optional[str] = None
        self.declined_areas: set[str] = set()
        self.candidate_incident_text: Optional[str] = None
        self.place_suggestions: list[str] = []
        self.last_place_prompt_at: Optional[float] = None
        self.last_media_at: Optional[float] = None
        self.media_prompt_sent = False
        self.created_at = now
        self.last_activity_at = now

    # -- mode -----------------------------------------------------------

    def set_mode(self, target: SessionMode) -> None:
        rule = _MODE_PRECONDITIONS.get(target)
        if rule is not None:
            check, reason = rule
            if not check(self):
                raise InvalidTransitionError(self.mode, target, reason)
        if target != self.mode:
            logger.debug("Session %s mode %s -> %s", self.conversation_id, self.mode.value, target.value)
        self.mode = target

    # -- content --------------------------------------------------------

    def has_structured_content(self) -> bool:
        """True once there is anything a greeting must not discard."""
        return (
            self.draft.has_content()
            or bool(self.pending_media)
            or bool(self.vision_area_hints)
        )

    def record_turn(self, role: str, text: str, at: float) -> None:
        self.history.append({"role": role, "text": text, "at": at})

    # -- media ----------------------------------------------------------

    def add_pending_media(self, media: PendingMedia, max_items: int) -> bool:
        if len(self.pending_media) >= max_items:
            logger.warning(
                "Session %s pending media full (%d); dropping image",
                self.conversation_id, max_items,
            )
            return False
        self.pending_media.append(media)
        return True

    def add_vision_hints(self, hints: list[str], confidence: float) -> None:
        """Merge hints, keeping the list ordered most-confident first."""
        for rank, hint in enumerate(hints):
            code = normalize_area_code(hint)
            if not code:
                continue
            # later hints in one answer rank slightly below earlier ones
            score = confidence - rank * 0.01
            if score > self._vision_confidence.get(code, -1.0):
                self._vision_confidence[code] = score
        self.vision_area_hints = sorted(
            self._vision_confidence, key=lambda c: self._vision_confidence[c], reverse=True,
        )

    def clear_media(self) -> None:
        self.pending_media = []
        self.vision_area_hints = []
        self._vision_confidence = {}
        self.last_media_at = None
        self.media_prompt_sent = False

    def in_media_batch(self, now: float, window_seconds: float) -> bool:
        return self.last_media_at is not None and (now - self.last_media_at) <= window_seconds

    # -- prompts --------------------------------------------------------

    def place_prompt_allowed(self, now: float, cooldown_seconds: float) -> bool:
        return self.last_place_prompt_at is None or (now - self.last_place_prompt_at) >= cooldown_seconds

    # -- branching ------------------------------------------------------

    def replace_draft(self, draft: IncidentDraft | None = None) -> None:
        """Swap in a new draft and drop per-ticket transient state."""
        self.draft = draft or IncidentDraft()
        self.suggested_area = None
        self.candidate_incident_text = None
        self.last_place_prompt_at = None
        self.place_suggestions = []
        self.declined_areas = set()


# ---------------------------------------------------------------------------
# Store
# ---------------------------------------------------------------------------

class InMemorySessionStore:
    """Session map keyed by conversation id, with idle expiry.

    Args:
        ttl_seconds: Idle time after which a session is discarded on access.
        history_limit: Max turns kept per session history.
        clock: Wall-clock source in seconds; injectable for tests.
    """

    def __init__(self, ttl_seconds: float = 900, history_limit: int = 50,
                 clock: Callable[[], float] = time.time):
        self.ttl_seconds = ttl_seconds
        self.history_limit = history_limit
        self.clock = clock
        self._sessions: dict[str, IntakeSession] = {}

    def __len__(self) -> int:
        return len(self._sessions)

    def get(self, conversation_id: str) -> IntakeSession | None:
        session = self._sessions.get(conversation_id)
        if session is None:
            return None
        if self.clock() - session.last_activity_at > self.ttl_seconds:
            logger.info("Session %s expired after inactivity", conversation_id)
            del self._sessions[conversation_id]
            return None
        return session

    def get_or_create(self, conversation_id: str) -> IntakeSession:
        session = self.get(conversation_id)
        if session is None:
            session = IntakeSession(conversation_id, now=self.clock(), history_limit=self.history_limit)
            self._sessions[conversation_id] = session
        return session

    def touch(self, session: IntakeSession) -> None:
        session.last_activity_at = self.clock()

    def clear(self, conversation_id: str) -> bool:
        """Drop the session entirely (draft, media, hints, cooldowns)."""
        return self._sessions.pop(conversation_id, None) is not None
