"""Tests for the incident draft, intake session and session store."""

import pytest

from vicebot.domain.enums import SessionMode
from vicebot.services.session_store import (
    IncidentDraft,
    InMemorySessionStore,
    IntakeSession,
    InvalidTransitionError,
    PendingMedia,
)

M = SessionMode


def _eligible_draft(**kwargs) -> IncidentDraft:
    draft = IncidentDraft(descripcion="No prende el aire", lugar="Habitación 1311")
    draft.set_primary_area("man")
    for key, value in kwargs.items():
        setattr(draft, key, value)
    return draft


# ---------------------------------------------------------------------------
# Draft
# ---------------------------------------------------------------------------


class TestDraftEligibility:
    def test_requires_place_and_area(self):
        draft = IncidentDraft(descripcion="algo")
        assert not draft.is_dispatch_eligible()
        draft.set_place("Lobby")
        assert not draft.is_dispatch_eligible()
        draft.set_primary_area("it")
        assert draft.is_dispatch_eligible()

    def test_area_alone_not_eligible(self):
        draft = IncidentDraft()
        draft.set_primary_area("seg")
        assert not draft.is_dispatch_eligible()


class TestAppendDetail:
    def test_idempotent_on_normalized_text(self):
        draft = IncidentDraft(descripcion="Fuga")
        assert draft.append_detail("leak in bathroom")
        assert not draft.append_detail("Leak in  Bathroom ")
        assert draft.details == ["leak in bathroom"]

    def test_skips_description_echo(self):
        draft = IncidentDraft(descripcion="No prende el aire")
        assert not draft.append_detail("no prende el aire")
        assert draft.details == []

    def test_empty_ignored(self):
        assert not IncidentDraft().append_detail("   ")


class TestInterpretation:
    def test_additive(self):
        draft = IncidentDraft()
        draft.append_interpretation("Mancha de agua en el techo")
        draft.append_interpretation("Lámpara rota")
        draft.append_interpretation("mancha de agua en el techo")
        assert draft.interpretacion == "Mancha de agua en el techo | Lámpara rota"


class TestAreas:
    def test_set_primary_moves_to_front(self):
        draft = IncidentDraft()
        draft.add_area("it")
        draft.add_area("ama")
        draft.set_primary_area("ama")
        assert draft.area_destino == "ama"
        assert draft.areas == ["ama", "it"]

    def test_add_area_sets_primary_only_when_empty(self):
        draft = IncidentDraft()
        draft.add_area("Sistemas")
        draft.add_area("seguridad")
        assert draft.area_destino == "it"
        assert draft.areas == ["it", "seg"]

    def test_remove_primary_promotes_next(self):
        draft = IncidentDraft()
        draft.replace_areas(["man", "ama"])
        draft.remove_area("man")
        assert draft.area_destino == "ama"
        draft.remove_area("ama")
        assert draft.area_destino is None

    def test_unknown_area_rejected(self):
        draft = IncidentDraft()
        assert not draft.set_primary_area("cocina molecular")
        assert not draft.replace_areas(["", "xyz"])
        assert draft.area_destino is None


# ---------------------------------------------------------------------------
# Session
# ---------------------------------------------------------------------------


class TestModeTransitions:
    def test_confirm_requires_both_slots(self):
        session = IntakeSession("c1", now=0)
        session.draft.set_place("Lobby")
        with pytest.raises(InvalidTransitionError) as exc:
            session.set_mode(M.CONFIRM)
        assert exc.value.target_mode == M.CONFIRM
        assert session.mode == M.NEUTRAL

    def test_confirm_allowed_when_eligible(self):
        session = IntakeSession("c1", now=0)
        session.draft = _eligible_draft()
        session.set_mode(M.CONFIRM)
        assert session.mode == M.CONFIRM

    def test_choose_version_needs_candidate(self):
        session = IntakeSession("c1", now=0)
        session.draft = _eligible_draft()
        with pytest.raises(InvalidTransitionError):
            session.set_mode(M.CHOOSE_INCIDENT_VERSION)
        session.candidate_incident_text = "se cayó el internet en la villa 6"
        session.set_mode(M.CHOOSE_INCIDENT_VERSION)

    def test_area_suggestion_needs_suggestion(self):
        session = IntakeSession("c1", now=0)
        with pytest.raises(InvalidTransitionError):
            session.set_mode(M.CONFIRM_AREA_SUGGESTION)
        session.suggested_area = "it"
        session.set_mode(M.CONFIRM_AREA_SUGGESTION)

    def test_ask_place_rejected_when_place_set(self):
        session = IntakeSession("c1", now=0)
        session.draft.set_place("Lobby")
        with pytest.raises(InvalidTransitionError):
            session.set_mode(M.ASK_PLACE)

    def test_neutral_always_allowed(self):
        session = IntakeSession("c1", now=0)
        session.draft = _eligible_draft()
        session.set_mode(M.CONFIRM)
        session.set_mode(M.NEUTRAL)
        assert session.mode == M.NEUTRAL


class TestSessionState:
    def test_structured_content(self):
        session = IntakeSession("c1", now=0)
        assert not session.has_structured_content()
        session.add_vision_hints(["it"], 0.7)
        assert session.has_structured_content()

    def test_vision_hints_ordered_by_confidence(self):
        session = IntakeSession("c1", now=0)
        session.add_vision_hints(["man", "ama"], 0.5)
        session.add_vision_hints(["it"], 0.9)
        session.add_vision_hints(["bogus"], 1.0)
        assert session.vision_area_hints == ["it", "man", "ama"]

    def test_pending_media_bounded(self):
        session = IntakeSession("c1", now=0)
        media = PendingMedia(data=b"x", mimetype="image/jpeg")
        assert session.add_pending_media(media, max_items=2)
        assert session.add_pending_media(media, max_items=2)
        assert not session.add_pending_media(media, max_items=2)
        assert len(session.pending_media) == 2

    def test_history_bounded(self):
        session = IntakeSession("c1", now=0, history_limit=3)
        for i in range(5):
            session.record_turn("user", f"m{i}", i)
        assert [h["text"] for h in session.history] == ["m2", "m3", "m4"]

    def test_media_batch_window(self):
        session = IntakeSession("c1", now=0)
        assert not session.in_media_batch(10, 8)
        session.last_media_at = 10
        assert session.in_media_batch(17, 8)
        assert not session.in_media_batch(19, 8)

    def test_place_prompt_cooldown(self):
        session = IntakeSession("c1", now=0)
        assert session.place_prompt_allowed(0, 15)
        session.last_place_prompt_at = 100
        assert not session.place_prompt_allowed(110, 15)
        assert session.place_prompt_allowed(115, 15)

    def test_replace_draft_drops_transients(self):
        session = IntakeSession("c1", now=0)
        session.suggested_area = "it"
        session.candidate_incident_text = "otra cosa"
        session.declined_areas.add("man")
        session.last_place_prompt_at = 5
        session.replace_draft()
        assert session.draft == IncidentDraft()
        assert session.suggested_area is None
        assert session.candidate_incident_text is None
        assert session.declined_areas == set()
        assert session.last_place_prompt_at is None


# ---------------------------------------------------------------------------
# Store
# ---------------------------------------------------------------------------


class TestStore:
    def test_get_or_create_is_per_conversation(self, clock):
        store = InMemorySessionStore(clock=clock)
        a = store.get_or_create("a")
        assert store.get_or_create("a") is a
        assert store.get_or_create("b") is not a
        assert len(store) == 2

    def test_clear(self, clock):
        store = InMemorySessionStore(clock=clock)
        store.get_or_create("a")
        assert store.clear("a")
        assert not store.clear("a")
        assert store.get("a") is None

    def test_idle_sessions_expire(self, clock):
        store = InMemorySessionStore(ttl_seconds=900, clock=clock)
        session = store.get_or_create("a")
        clock.advance(600)
        store.touch(session)
        clock.advance(600)
        assert store.get("a") is session
        clock.advance(901)
        assert store.get("a") is None
        assert len(store) == 0
