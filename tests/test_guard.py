"""Tests for the greeting / non-incident guard."""

import pytest

from vicebot.agents.intake.guard import GREETING_REPLY, NON_INCIDENT_REPLY, classify_guard
from vicebot.domain.enums import GuardVerdict


class TestGreetings:
    @pytest.mark.parametrize("text", ["hola", "Buenos días", "hola, buenas tardes", "qué tal", "👋"])
    def test_plain_greetings_block(self, text):
        result = classify_guard(text)
        assert result.blocked
        assert result.verdict == GuardVerdict.GREETING.value
        assert result.reply == GREETING_REPLY

    def test_greeting_with_incident_passes(self):
        assert not classify_guard("hola, no prende el aire").blocked

    def test_greeting_with_room_passes(self):
        assert not classify_guard("hola 1311").blocked

    def test_long_message_starting_with_greeting_passes(self):
        assert not classify_guard("hola quería pedir que revisen la regadera del cuarto").blocked


class TestNonIncident:
    @pytest.mark.parametrize("text", ["no es reporte", "solo te saludo jaja", "era prueba"])
    def test_explicit_non_incident_blocks(self, text):
        result = classify_guard(text)
        assert result.blocked
        assert result.verdict == GuardVerdict.NON_INCIDENT.value
        assert result.reply == NON_INCIDENT_REPLY


class TestInterpreterSmalltalk:
    def test_analysis_marks_smalltalk(self):
        result = classify_guard("¿cómo te llamas?", ai_analysis="El usuario solo está saludando.")
        assert result.blocked
        assert result.verdict == GuardVerdict.SMALLTALK.value

    def test_analysis_ignored_for_incident_text(self):
        assert not classify_guard("gotea la regadera", ai_analysis="smalltalk").blocked

    def test_no_analysis_no_block(self):
        assert not classify_guard("¿cómo te llamas?").blocked
