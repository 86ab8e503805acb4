"""Tests for interpreter operation parsing, de-duplication and ordering."""

from vicebot.agents.intake.contracts import (
    AddArea,
    AppendDetail,
    Cancel,
    Confirm,
    ReplaceAreas,
    SetField,
    ShowPreview,
    dedupe_operations,
    order_operations,
    parse_operation,
)
from vicebot.agents.intake.turn_interpreter import parse_interpretation


class TestParseOperation:
    def test_set_field(self):
        assert parse_operation({"op": "set_field", "field": "lugar", "value": " Villa 6 "}) == SetField(
            field="lugar", value="Villa 6",
        )

    def test_set_field_unknown_field_dropped(self):
        assert parse_operation({"op": "set_field", "field": "folio", "value": "X"}) is None

    def test_replace_areas_from_values(self):
        op = parse_operation({"op": "replace_areas", "values": ["it", "", "man"]})
        assert op == ReplaceAreas(areas=("it", "man"))

    def test_append_detail_requires_text(self):
        assert parse_operation({"op": "append_detail", "value": "   "}) is None

    def test_unknown_kind_dropped(self):
        assert parse_operation({"op": "launch_rocket"}) is None
        assert parse_operation("confirm") is None

    def test_bare_ops(self):
        assert parse_operation({"op": "CONFIRM"}) == Confirm()
        assert parse_operation({"op": "cancel"}) == Cancel()
        assert parse_operation({"op": "show_preview"}) == ShowPreview()


class TestDedupe:
    def test_identical_details_collapse(self):
        ops = [AppendDetail("leak in bathroom"), AppendDetail("Leak  in bathroom"), AppendDetail("otra cosa")]
        assert dedupe_operations(ops) == [AppendDetail("leak in bathroom"), AppendDetail("otra cosa")]

    def test_area_case_insensitive(self):
        assert dedupe_operations([AddArea("IT"), AddArea("it")]) == [AddArea("IT")]

    def test_replace_areas_order_insensitive(self):
        ops = [ReplaceAreas(("it", "man")), ReplaceAreas(("man", "it"))]
        assert len(dedupe_operations(ops)) == 1


class TestOrdering:
    def test_slot_edits_before_preview_and_confirm(self):
        ops = [Confirm(), ShowPreview(), AppendDetail("x"), SetField("lugar", "Lobby"), AddArea("it")]
        ordered = order_operations(ops)
        assert ordered[:2] == [SetField("lugar", "Lobby"), AddArea("it")]
        assert ordered[2] == AppendDetail("x")
        assert ordered[3] == ShowPreview()
        assert ordered[4] == Confirm()


class TestParseInterpretation:
    def test_full_payload(self):
        result = parse_interpretation({
            "ops": [{"op": "set_field", "field": "lugar", "value": "1311"}, {"op": "bogus"}],
            "analysis": "Reporta aire acondicionado",
            "meta": {"is_new_incident_candidate": True},
        })
        assert result.ops == [SetField("lugar", "1311")]
        assert result.analysis == "Reporta aire acondicionado"
        assert result.is_new_incident_candidate
        assert not result.is_place_correction_only

    def test_both_flags_keep_only_correction(self):
        result = parse_interpretation({
            "ops": [],
            "meta": {"is_new_incident_candidate": True, "is_place_correction_only": True},
        })
        assert result.is_place_correction_only
        assert not result.is_new_incident_candidate

    def test_garbage_is_empty(self):
        result = parse_interpretation(["not", "a", "dict"])
        assert result.ops == []
        assert result.analysis == ""
