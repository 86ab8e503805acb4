"""Tests for the deterministic reply vocabulary."""

import pytest

from vicebot.agents.intake.vocabulary import (
    KEEP_CURRENT,
    USE_CANDIDATE,
    find_strong_place_signal,
    is_ambiguous_number,
    is_no,
    is_reset_command,
    is_yes,
    looks_incident_like,
    normalize,
    parse_version_choice,
)


class TestNormalize:
    def test_strips_accents_and_case(self):
        assert normalize("  Habitación   ÚNICA ") == "habitacion unica"

    def test_none_is_empty(self):
        assert normalize(None) == ""


# ---------------------------------------------------------------------------
# Yes / no
# ---------------------------------------------------------------------------


class TestYesNo:
    @pytest.mark.parametrize("text", ["sí", "Si", "SI!", "ok", "dale", "Listo.", "👍", "✅", "mándalo"])
    def test_affirmatives(self, text):
        assert is_yes(text)
        assert not is_no(text)

    @pytest.mark.parametrize("text", ["no", "No.", "nel", "cancelar", "❌", "negativo"])
    def test_negatives(self, text):
        assert is_no(text)
        assert not is_yes(text)

    @pytest.mark.parametrize("text", ["1", "15", "999", "si pero luego", "tal vez", "", "sip creo"])
    def test_neither(self, text):
        assert not is_yes(text)
        assert not is_no(text)


class TestAmbiguousNumber:
    @pytest.mark.parametrize("text", ["1", "15", "999", " 42 "])
    def test_one_to_three_digits(self, text):
        assert is_ambiguous_number(text)

    @pytest.mark.parametrize("text", ["1311", "", "15a", "villa 6", "1 5"])
    def test_other_text(self, text):
        assert not is_ambiguous_number(text)


class TestResetCommand:
    @pytest.mark.parametrize("text", ["reiniciar", "RESET", "/reset", "Empezar de nuevo", "borrar todo!"])
    def test_reset_tokens(self, text):
        assert is_reset_command(text)

    @pytest.mark.parametrize("text", ["reiniciar el aire", "cancelar", "no"])
    def test_not_reset(self, text):
        assert not is_reset_command(text)


class TestVersionChoice:
    @pytest.mark.parametrize("text", ["primero", "1", "El primero", "actual"])
    def test_keep(self, text):
        assert parse_version_choice(text) == KEEP_CURRENT

    @pytest.mark.parametrize("text", ["segundo", "2", "la segunda", "nuevo"])
    def test_replace(self, text):
        assert parse_version_choice(text) == USE_CANDIDATE

    def test_unclear(self):
        assert parse_version_choice("el de la villa") is None


# ---------------------------------------------------------------------------
# Signals
# ---------------------------------------------------------------------------


class TestStrongPlaceSignal:
    def test_room_token(self):
        assert find_strong_place_signal("1311 no prende el aire") == "1311"

    def test_villa(self):
        assert find_strong_place_signal("se cayó el internet en la Villa 6") == "villa 6"

    def test_villa_wins_over_room(self):
        assert find_strong_place_signal("villa #06 cerca de la 1311") == "villa 6"

    def test_longer_numbers_are_not_rooms(self):
        assert find_strong_place_signal("folio 123456") is None

    def test_three_digits_are_not_rooms(self):
        assert find_strong_place_signal("15") is None


class TestIncidentLike:
    @pytest.mark.parametrize("text", ["no prende el aire", "hay una fuga", "Se cayó el internet", "no sirve la tele"])
    def test_incident_text(self, text):
        assert looks_incident_like(text)

    @pytest.mark.parametrize("text", ["hola", "Lobby", "gracias", ""])
    def test_plain_text(self, text):
        assert not looks_incident_like(text)
