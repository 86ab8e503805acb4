"""Intake Orchestrator — the per-turn incident intake pipeline.

For each guest turn, in order:

0. Reset command (bypasses everything)
1. Guard (greeting / non-incident / smalltalk) while the draft is bare
2. Media ingestion (vision, additive notes, batch-window prompting)
3. Mode fast-paths (ask_place, ask_area, confirm_area_suggestion,
   choose_incident_version)
4. Strict confirmation gate (confirm mode)
5. General interpretation (turn interpreter ops + meta flags)
6. New-incident vs. continuation disambiguation
7. Op application
8. Automatic place back-fill (area is only ever offered)
9. Next-action selection

Turns for one conversation must be serialized by the caller; this class
holds no per-conversation locks.
"""

import logging
import re
from dataclasses import dataclass, field

from vicebot.agents.intake.contracts import (
    OPERATION_TYPES,
    AddArea,
    AppendDetail,
    Cancel,
    Confirm,
    RemoveArea,
    ReplaceAreas,
    SetField,
    ShowPreview,
    TurnInterpretation,
    dedupe_operations,
    order_operations,
)
from vicebot.agents.intake.guard import classify_guard
from vicebot.agents.intake.vocabulary import (
    KEEP_CURRENT,
    USE_CANDIDATE,
    find_strong_place_signal,
    is_ambiguous_number,
    is_no,
    is_reset_command,
    is_yes,
    looks_incident_like,
    parse_version_choice,
)
from vicebot.domain.areas import normalize_area_code
from vicebot.domain.enums import SessionMode

from . import intake_messages as msg
from .place_resolver import same_place, sanitize_place_candidate
from .session_store import IncidentDraft, PendingMedia

logger = logging.getLogger(__name__)

M = SessionMode


@dataclass
class IncomingImage:
    data: bytes
    mimetype: str = "image/jpeg"
    filename: str | None = None


@dataclass
class TurnResult:
    """Outcome of one processed turn."""
    mode: str | None = None  # None once the session has been cleared
    folio: str | None = None
    handled_by: str = "pipeline"
    replies: list[str] = field(default_factory=list)


@dataclass
class _TurnFlags:
    preview_requested: bool = False
    cancelled: bool = False


class _SafeReply:
    """Reply channel wrapper: records replies, never raises."""

    def __init__(self, reply, clock):
        self._reply = reply
        self._clock = clock
        self.sent: list[str] = []
        self.session = None

    async def __call__(self, text: str) -> None:
        self.sent.append(text)
        if self.session is not None:
            self.session.record_turn("bot", text, self._clock())
        try:
            await self._reply(text)
        except Exception as exc:
            logger.warning("Reply channel failed: %s", exc)


# ---------------------------------------------------------------------------
# Description cleanup
# ---------------------------------------------------------------------------

_LEADING_ROOM_RE = re.compile(r"^\d{3,4}\s*[,.:;-]?\s*")
_INTRO_RES = (
    re.compile(r"^(por\s+favor|pf|porfa|please)[,.]?\s*", re.IGNORECASE),
    re.compile(r"^(hola|buen[oa]s?\s+(d[ií]as?|tardes?|noches?))[,.!]?\s*", re.IGNORECASE),
    re.compile(r"^(reporta|reporto|dice)\s+(que\s+)?", re.IGNORECASE),
)


def clean_description(text: str) -> str:
    """Strip greetings, a leading room number and edge punctuation; capitalize."""
    t = (text or "").strip()
    previous = None
    while previous != t:
        previous = t
        for pattern in _INTRO_RES:
            t = pattern.sub("", t).strip()
    t = _LEADING_ROOM_RE.sub("", t)
    t = re.sub(r"^[,.:;!¡¿?\-]+\s*", "", t)
    t = re.sub(r"\s*[,.:;]+$", "", t)
    t = re.sub(r"\s+", " ", t).strip()
    return t[:1].upper() + t[1:] if t else (text or "").strip()


# ---------------------------------------------------------------------------
# Orchestrator
# ---------------------------------------------------------------------------

class IntakeOrchestrator:
    """Runs the intake pipeline over an injected session store.

    Args:
        store: InMemorySessionStore (its clock is the pipeline clock).
        place_resolver: PlaceResolver.
        area_resolver: AreaResolver.
        interpreter: Turn interpreter with async ``interpret(text, focus_mode, draft)``.
        vision: Vision analyzer with async ``analyze(image_bytes, mimetype, context_text)``.
        finalizer: IncidentFinalizer.
        media_batch_window: Seconds after an image during which further
            images do not trigger another prompt.
        place_prompt_cooldown: Minimum seconds between place prompts.
        max_pending_media: Cap on images kept per draft.
    """

    def __init__(
        self,
        store,
        place_resolver,
        area_resolver,
        interpreter,
        vision,
        finalizer,
        media_batch_window: float = 8.0,
        place_prompt_cooldown: float = 15.0,
        max_pending_media: int = 10,
    ):
        self.store = store
        self.places = place_resolver
        self.areas = area_resolver
        self.interpreter = interpreter
        self.vision = vision
        self.finalizer = finalizer
        self.media_batch_window = media_batch_window
        self.place_prompt_cooldown = place_prompt_cooldown
        self.max_pending_media = max_pending_media

        self._op_handlers = {
            SetField: self._apply_set_field,
            AddArea: self._apply_add_area,
            RemoveArea: self._apply_remove_area,
            ReplaceAreas: self._apply_replace_areas,
            AppendDetail: self._apply_append_detail,
            ShowPreview: self._apply_show_preview,
            Confirm: self._apply_confirm,
            Cancel: self._apply_cancel,
        }
        unhandled = set(OPERATION_TYPES) - set(self._op_handlers)
        if unhandled:
            raise TypeError(f"No handler for operations: {sorted(t.__name__ for t in unhandled)}")

    @property
    def clock(self):
        return self.store.clock

    # ------------------------------------------------------------------
    # Entry point
    # ------------------------------------------------------------------

    async def process_turn(self, conversation_id: str, text: str | None, reply, images=None) -> TurnResult:
        """Process one guest turn end to end."""
        text = (text or "").strip()
        images = list(images or [])
        say = _SafeReply(reply, self.clock)

        # == 0. Reset ==
        if text and is_reset_command(text):
            self.store.clear(conversation_id)
            await say(msg.RESET_DONE)
            logger.info("Session %s reset by command", conversation_id)
            return TurnResult(mode=None, handled_by="reset", replies=say.sent)

        session = self.store.get_or_create(conversation_id)
        say.session = session
        self.store.touch(session)
        now = self.clock()
        session.record_turn("user", text or f"[{len(images)} imagen(es)]", now)

        result = await self._run(session, text, images, now, say)
        result.replies = say.sent
        if result.mode is None and self.store.get(conversation_id) is not None:
            result.mode = session.mode.value
        return result

    async def _run(self, session, text: str, images: list, now: float, say) -> TurnResult:
        # == 1. Guard (lexical) ==
        if text and not images and not session.has_structured_content():
            guard = classify_guard(text)
            if guard.blocked:
                await say(guard.reply)
                return TurnResult(mode=session.mode.value, handled_by="guard")

        # == 2. Media ==
        if images:
            await self._ingest_media(session, images, text, now)
            if not text:
                return await self._media_only_turn(session, now, say)
            session.media_prompt_sent = True

        if not text:
            return TurnResult(mode=session.mode.value, handled_by="empty")

        # == 3. Mode fast-paths ==
        fast = None
        if session.mode == M.ASK_PLACE:
            fast = await self._fast_ask_place(session, text, now, say)
        elif session.mode == M.ASK_AREA:
            fast = await self._fast_ask_area(session, text, now, say)
        elif session.mode == M.CONFIRM_AREA_SUGGESTION:
            fast = await self._fast_area_suggestion(session, text, now, say)
        elif session.mode == M.CHOOSE_INCIDENT_VERSION:
            fast = await self._fast_choose_version(session, text, now, say)
        # == 4. Strict confirmation gate ==
        elif session.mode == M.CONFIRM:
            fast = await self._confirm_gate(session, text, now, say)
        if fast is not None:
            return fast

        # == 5-9. General pipeline ==
        return await self._general_turn(session, text, images, now, say)

    # ------------------------------------------------------------------
    # Media
    # ------------------------------------------------------------------

    async def _ingest_media(self, session, images: list, text: str, now: float) -> None:
        if not session.in_media_batch(now, self.media_batch_window):
            session.media_prompt_sent = False
        session.last_media_at = now

        context = text or session.draft.descripcion
        for image in images:
            media = PendingMedia(data=image.data, mimetype=image.mimetype, filename=image.filename, received_at=now)
            if not session.add_pending_media(media, self.max_pending_media):
                continue
            try:
                analysis = await self.vision.analyze(image.data, image.mimetype, context)
            except Exception as exc:
                logger.error("Vision analyzer raised for %s: %s", session.conversation_id, exc)
                continue
            session.draft.append_interpretation(analysis.interpretation)
            for tag in analysis.tags:
                session.draft.add_note(f"tag: {tag}")
            for concern in analysis.safety:
                session.draft.add_note(f"safety: {concern}")
            session.add_vision_hints(analysis.area_hints, analysis.confidence)

    async def _media_only_turn(self, session, now: float, say) -> TurnResult:
        """Image without text: at most one prompt per media batch."""
        if session.media_prompt_sent:
            logger.debug("Media batch prompt already sent for %s", session.conversation_id)
            return TurnResult(mode=session.mode.value, handled_by="media")
        session.media_prompt_sent = True

        draft = session.draft
        if draft.descripcion is None:
            await say(msg.MEDIA_ASK_WHAT if draft.lugar else msg.MEDIA_ASK_WHAT_AND_WHERE)
            return TurnResult(mode=session.mode.value, handled_by="media")

        await say(msg.format_pending_media_ack(len(session.pending_media)))
        if session.mode in (M.NEUTRAL, M.CONFIRM):
            await self._next_action(session, "", now, say, force_place_prompt=True)
        return TurnResult(mode=session.mode.value, handled_by="media")

    # ------------------------------------------------------------------
    # Fast paths
    # ------------------------------------------------------------------

    async def _fast_ask_place(self, session, text: str, now: float, say) -> TurnResult | None:
        if classify_guard(text).blocked:
            await say(msg.ASK_PLACE)
            session.last_place_prompt_at = now
            return TurnResult(mode=session.mode.value, handled_by="ask_place")

        # A number picks one of the listed suggestions
        if session.place_suggestions and is_ambiguous_number(text):
            choice = int(text.strip())
            if 1 <= choice <= len(session.place_suggestions):
                resolution = self.places.choose_suggestion(session.place_suggestions[choice - 1])
                session.place_suggestions = []
                self._commit_place(session.draft, resolution)
                await self._next_action(session, text, now, say)
                return TurnResult(mode=session.mode.value, handled_by="ask_place")

        resolution = await self.places.resolve(text)
        if resolution.found:
            session.place_suggestions = []
            self._commit_place(session.draft, resolution)
            if looks_incident_like(text):
                self._absorb_text(session.draft, text)
            await self._next_action(session, text, now, say)
            return TurnResult(mode=session.mode.value, handled_by="ask_place")

        if resolution.suggestions:
            session.place_suggestions = list(resolution.suggestions)
        if is_yes(text) or is_no(text) or is_ambiguous_number(text) or resolution.suggestions:
            await say(msg.format_place_prompt(session.place_suggestions))
            session.last_place_prompt_at = now
            return TurnResult(mode=session.mode.value, handled_by="ask_place")

        # Not a place answer; let the interpreter look at it
        return None

    async def _fast_ask_area(self, session, text: str, now: float, say) -> TurnResult | None:
        code = normalize_area_code(text)
        if code:
            session.draft.set_primary_area(code)
            session.suggested_area = None
            await self._next_action(session, text, now, say)
            return TurnResult(mode=session.mode.value, handled_by="ask_area")

        if is_yes(text) or is_no(text) or is_ambiguous_number(text):
            await say(msg.ASK_AREA)
            return TurnResult(mode=session.mode.value, handled_by="ask_area")
        return None

    async def _fast_area_suggestion(self, session, text: str, now: float, say) -> TurnResult | None:
        suggested = session.suggested_area
        if is_yes(text) and suggested:
            session.draft.set_primary_area(suggested)
            session.suggested_area = None
            await self._next_action(session, text, now, say)
            return TurnResult(mode=session.mode.value, handled_by="area_suggestion")

        if is_no(text):
            if suggested:
                session.declined_areas.add(suggested)
            session.suggested_area = None
            session.set_mode(M.ASK_AREA)
            await say(msg.ASK_AREA)
            return TurnResult(mode=session.mode.value, handled_by="area_suggestion")

        # "no, es para IT" / "mejor seguridad": the user named an area
        code = normalize_area_code(text)
        if code and len(text.split()) <= 5:
            session.draft.set_primary_area(code)
            session.suggested_area = None
            await self._next_action(session, text, now, say)
            return TurnResult(mode=session.mode.value, handled_by="area_suggestion")

        if is_ambiguous_number(text):
            await say(msg.format_area_suggestion(suggested) if suggested else msg.ASK_AREA)
            return TurnResult(mode=session.mode.value, handled_by="area_suggestion")
        return None

    async def _fast_choose_version(self, session, text: str, now: float, say) -> TurnResult | None:
        choice = parse_version_choice(text)
        candidate = session.candidate_incident_text

        if choice == KEEP_CURRENT:
            session.candidate_incident_text = None
            session.set_mode(M.NEUTRAL)
            await say(msg.VERSION_KEEP_ACK)
            await self._next_action(session, "", now, say, force_place_prompt=True)
            return TurnResult(mode=session.mode.value, handled_by="choose_version")

        if choice == USE_CANDIDATE and candidate:
            await self._rebuild_from_candidate(session, candidate)
            await self._next_action(session, candidate, now, say, force_place_prompt=True)
            return TurnResult(mode=session.mode.value, handled_by="choose_version")

        await say(msg.VERSION_REPROMPT)
        return TurnResult(mode=session.mode.value, handled_by="choose_version")

    async def _rebuild_from_candidate(self, session, candidate: str) -> None:
        """Discard the current draft and rebuild it from the candidate text."""
        logger.info("Session %s: replacing draft with candidate incident", session.conversation_id)
        draft = IncidentDraft()
        draft.set_description(clean_description(candidate))
        draft.descripcion_original = candidate

        resolution = await self.places.resolve(candidate, allow_verbatim=False)
        if resolution.found:
            self._commit_place(draft, resolution)

        # Picking the new version is the user's explicit choice of its area
        area = await self.areas.detect_from_text(candidate)
        if area:
            draft.set_primary_area(area)

        session.replace_draft(draft)
        session.clear_media()
        session.set_mode(M.NEUTRAL)

    async def _confirm_gate(self, session, text: str, now: float, say) -> TurnResult:
        if is_yes(text):
            return await self._finalize(session, now, say)

        if is_no(text):
            self.store.clear(session.conversation_id)
            await say(msg.CANCELLED)
            return TurnResult(mode=None, handled_by="confirm")

        # A different report or a corrected place may still branch off;
        # bare numbers and anything else change nothing
        if not is_ambiguous_number(text) and (find_strong_place_signal(text) or looks_incident_like(text)):
            interpretation = await self._interpret(session, text)
            signal_only = find_strong_place_signal(text) is not None and not looks_incident_like(text)
            outcome = await self._disambiguate(
                session, text, interpretation, [], now, say,
                place_correction=interpretation.is_place_correction_only or signal_only,
                fold_same_incident=False,
            )
            if isinstance(outcome, TurnResult):
                return outcome

        await say(msg.CONFIRM_REPROMPT)
        return TurnResult(mode=session.mode.value, handled_by="confirm")

    async def _finalize(self, session, now: float, say) -> TurnResult:
        result = await self.finalizer.finalize(session, say)
        if result.missing:
            session.set_mode(M.NEUTRAL)
            await self._next_action(session, "", now, say, force_place_prompt=True)
            return TurnResult(mode=session.mode.value, handled_by="finalize_detour")
        return TurnResult(mode=None, folio=result.folio, handled_by="finalize")

    # ------------------------------------------------------------------
    # General pipeline
    # ------------------------------------------------------------------

    async def _general_turn(self, session, text: str, images: list, now: float, say) -> TurnResult:
        draft = session.draft
        had_content = draft.has_content()

        # == 5. Interpretation ==
        interpretation = await self._interpret(session, text)

        # Second guard pass with the interpreter's own reading
        if not images and not interpretation.ops and not session.has_structured_content():
            guard = classify_guard(text, interpretation.analysis)
            if guard.blocked:
                await say(guard.reply)
                return TurnResult(mode=session.mode.value, handled_by="guard")

        ops = order_operations(dedupe_operations(interpretation.ops))

        # == 6. Disambiguation ==
        if had_content:
            outcome = await self._disambiguate(session, text, interpretation, ops, now, say)
            if isinstance(outcome, TurnResult):
                return outcome
            ops = outcome

        # == 7. Ops ==
        flags = _TurnFlags()
        for op in ops:
            await self._op_handlers[type(op)](session, op, text, flags)
            if flags.cancelled:
                await say(msg.CANCELLED)
                return TurnResult(mode=None, handled_by="cancel")

        # First incident text becomes the description
        if draft.descripcion is None and self._can_describe(text):
            draft.set_description(clean_description(text))
            draft.descripcion_original = text
        elif had_content and not ops and looks_incident_like(text):
            draft.append_detail(text)

        # == 8. Place back-fill ==
        if draft.lugar is None:
            resolution = await self.places.detect_in_text(text)
            if resolution.found:
                self._commit_place(draft, resolution)

        # == 9. Next action ==
        await self._next_action(session, text, now, say, force_place_prompt=flags.preview_requested)
        return TurnResult(mode=session.mode.value)

    async def _interpret(self, session, text: str) -> TurnInterpretation:
        try:
            return await self.interpreter.interpret(text, session.mode.value, session.draft)
        except Exception as exc:
            logger.error("Turn interpreter raised for %s: %s", session.conversation_id, exc)
            return TurnInterpretation()

    async def _disambiguate(self, session, text: str, interpretation, ops: list, now: float, say,
                            place_correction: bool | None = None, fold_same_incident: bool = True):
        """Return a TurnResult when the turn was consumed, else the ops to apply.

        ``place_correction`` overrides the interpreter's flag. With
        ``fold_same_incident`` off, text about the current incident leaves
        the draft untouched.
        """
        draft = session.draft
        signal = find_strong_place_signal(text)
        if place_correction is None:
            place_correction = interpretation.is_place_correction_only

        if place_correction:
            place_text = text
            for op in ops:
                if isinstance(op, SetField) and op.field == "lugar" and op.value and not signal:
                    place_text = op.value
            resolution = await self.places.resolve(place_text)
            if resolution.found and not same_place(resolution.label, draft.lugar):
                self._commit_place(draft, resolution)
                await say(msg.format_place_updated(resolution.label))
                await self._next_action(session, text, now, say)
                return TurnResult(mode=session.mode.value, handled_by="place_correction")
            return [op for op in ops if not (isinstance(op, SetField) and op.field == "lugar")]

        heuristic_new = signal is not None and looks_incident_like(text)
        if not (interpretation.is_new_incident_candidate or heuristic_new):
            return ops

        new_place = await self.places.detect_in_text(text)
        new_area = await self.areas.detect_from_text(text)

        different_place = new_place.found and draft.lugar is not None and not same_place(new_place.label, draft.lugar)
        same_place_other_area = (
            new_place.found
            and same_place(new_place.label, draft.lugar)
            and new_area is not None
            and draft.area_destino is not None
            and new_area != draft.area_destino
        )

        if different_place or same_place_other_area:
            session.candidate_incident_text = text
            session.set_mode(M.CHOOSE_INCIDENT_VERSION)
            await say(msg.format_version_choice(draft, text))
            logger.info(
                "Session %s: competing incident (different_place=%s other_area=%s)",
                session.conversation_id, different_place, same_place_other_area,
            )
            return TurnResult(mode=session.mode.value, handled_by="disambiguation")

        # Same incident: fold the text in as a detail
        if fold_same_incident:
            draft.append_detail(text)
        return [op for op in ops if not (isinstance(op, SetField) and op.field == "descripcion")]

    # ------------------------------------------------------------------
    # Op handlers
    # ------------------------------------------------------------------

    async def _apply_set_field(self, session, op: SetField, text: str, flags: _TurnFlags) -> None:
        draft = session.draft
        if op.field == "lugar":
            # A strong signal anywhere in the turn outranks the op's value
            source = text if find_strong_place_signal(text) else op.value
            resolution = await self.places.resolve(source)
            if not resolution.found and source != op.value:
                resolution = await self.places.resolve(op.value)
            if resolution.found:
                self._commit_place(draft, resolution)
            else:
                logger.info("set_field lugar %r did not resolve", op.value)
        elif op.field == "descripcion":
            if op.value:
                draft.set_description(op.value)
        elif op.field == "area_destino":
            if op.value and draft.set_primary_area(op.value):
                session.suggested_area = None

    async def _apply_add_area(self, session, op: AddArea, text: str, flags: _TurnFlags) -> None:
        if session.draft.add_area(op.area):
            session.suggested_area = None

    async def _apply_remove_area(self, session, op: RemoveArea, text: str, flags: _TurnFlags) -> None:
        session.draft.remove_area(op.area)

    async def _apply_replace_areas(self, session, op: ReplaceAreas, text: str, flags: _TurnFlags) -> None:
        if session.draft.replace_areas(op.areas):
            session.suggested_area = None

    async def _apply_append_detail(self, session, op: AppendDetail, text: str, flags: _TurnFlags) -> None:
        draft = session.draft
        if draft.descripcion is None:
            draft.set_description(op.text)
        else:
            draft.append_detail(op.text)

    async def _apply_show_preview(self, session, op: ShowPreview, text: str, flags: _TurnFlags) -> None:
        flags.preview_requested = True

    async def _apply_confirm(self, session, op: Confirm, text: str, flags: _TurnFlags) -> None:
        # Outside confirm mode a "confirm" only earns a preview
        flags.preview_requested = True

    async def _apply_cancel(self, session, op: Cancel, text: str, flags: _TurnFlags) -> None:
        self.store.clear(session.conversation_id)
        flags.cancelled = True

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    @staticmethod
    def _commit_place(draft, resolution) -> None:
        draft.set_place(resolution.label, resolution.building, resolution.floor, resolution.room)

    @staticmethod
    def _absorb_text(draft, text: str) -> None:
        if draft.descripcion is None:
            draft.set_description(clean_description(text))
            draft.descripcion_original = text
        else:
            draft.append_detail(text)

    def _can_describe(self, text: str) -> bool:
        """Whether a turn may become the draft description."""
        if is_yes(text) or is_no(text) or is_ambiguous_number(text):
            return False
        if classify_guard(text).blocked:
            return False
        return not self._is_place_only(text)

    def _is_place_only(self, text: str) -> bool:
        """True when the whole turn is just a place (room, villa, catalog label)."""
        candidate = sanitize_place_candidate(text)
        if not candidate:
            return True
        signal = find_strong_place_signal(candidate)
        if signal and len(candidate.split()) <= 3 and not looks_incident_like(candidate):
            return True
        return self.places.index.lookup_exact(candidate) is not None

    def _area_context(self, session, text: str) -> str:
        draft = session.draft
        parts = [draft.descripcion_original or draft.descripcion or "", *draft.details]
        if text and text not in parts:
            parts.append(text)
        return " ".join(p for p in parts if p).strip()

    async def _next_action(self, session, text: str, now: float, say, force_place_prompt: bool = False) -> None:
        draft = session.draft

        # Both slots: preview and wait for a strict yes/no
        if draft.is_dispatch_eligible():
            session.suggested_area = None
            session.set_mode(M.CONFIRM)
            await say(msg.format_confirm_prompt(draft))
            return

        # Place gates everything else
        if draft.lugar is None:
            if session.mode != M.ASK_PLACE:
                session.set_mode(M.ASK_PLACE)
            if force_place_prompt or session.place_prompt_allowed(now, self.place_prompt_cooldown):
                session.last_place_prompt_at = now
                await say(msg.format_preview(draft) + "\n\n" + msg.ASK_PLACE)
            else:
                logger.debug("Place prompt suppressed by cooldown for %s", session.conversation_id)
            return

        # Only area missing: offer a candidate, never assign it
        suggestion = await self.areas.suggest(
            self._area_context(session, text),
            [h for h in session.vision_area_hints if h not in session.declined_areas],
        )
        if suggestion and suggestion.area in session.declined_areas:
            suggestion = None
        if suggestion:
            session.suggested_area = suggestion.area
            session.set_mode(M.CONFIRM_AREA_SUGGESTION)
            await say(msg.format_area_suggestion(suggestion.area))
            return

        session.suggested_area = None
        session.set_mode(M.ASK_AREA)
        await say(msg.ASK_AREA)
