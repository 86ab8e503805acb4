"""Typed dataclasses for intake agent I/O contracts.

Draft edits emitted by the turn interpreter are a closed set of frozen
operation classes. ``parse_operation`` is the only way raw interpreter
JSON becomes an ``Operation``; anything it does not recognise is dropped.
"""

import logging
from dataclasses import dataclass, field
from typing import ClassVar, Union

from .vocabulary import normalize

logger = logging.getLogger(__name__)


# ---------------------------------------------------------------------------
# Draft operations
# ---------------------------------------------------------------------------

# Fields the interpreter may set directly on the draft
SETTABLE_FIELDS = frozenset({"descripcion", "lugar", "area_destino"})


@dataclass(frozen=True)
class SetField:
    kind: ClassVar[str] = "set_field"
    field: str
    value: str | None


@dataclass(frozen=True)
class AddArea:
    kind: ClassVar[str] = "add_area"
    area: str


@dataclass(frozen=True)
class RemoveArea:
    kind: ClassVar[str] = "remove_area"
    area: str


@dataclass(frozen=True)
class ReplaceAreas:
    kind: ClassVar[str] = "replace_areas"
    areas: tuple[str, ...]


@dataclass(frozen=True)
class AppendDetail:
    kind: ClassVar[str] = "append_detail"
    text: str


@dataclass(frozen=True)
class ShowPreview:
    kind: ClassVar[str] = "show_preview"


@dataclass(frozen=True)
class Confirm:
    kind: ClassVar[str] = "confirm"


@dataclass(frozen=True)
class Cancel:
    kind: ClassVar[str] = "cancel"


Operation = Union[SetField, AddArea, RemoveArea, ReplaceAreas, AppendDetail, ShowPreview, Confirm, Cancel]

OPERATION_TYPES: tuple[type, ...] = (
    SetField, AddArea, RemoveArea, ReplaceAreas, AppendDetail, ShowPreview, Confirm, Cancel,
)

# Application order: slot edits, then details, then terminal/preview ops
_OP_PRIORITY: dict[type, int] = {
    SetField: 0,
    AddArea: 0,
    RemoveArea: 0,
    ReplaceAreas: 0,
    AppendDetail: 1,
    ShowPreview: 2,
    Cancel: 3,
    Confirm: 3,
}


def _clean(value) -> str | None:
    if value is None:
        return None
    text = str(value).strip()
    return text or None


def parse_operation(raw: dict) -> Operation | None:
    """Convert one interpreter op dict into a typed operation, or None."""
    if not isinstance(raw, dict):
        return None
    kind = str(raw.get("op") or "").strip().lower()

    if kind == SetField.kind:
        name = _clean(raw.get("field"))
        if not name or name not in SETTABLE_FIELDS:
            logger.debug("Dropping set_field for unsupported field %r", name)
            return None
        return SetField(field=name, value=_clean(raw.get("value")))

    if kind in (AddArea.kind, RemoveArea.kind):
        area = _clean(raw.get("value"))
        if not area:
            return None
        return AddArea(area=area) if kind == AddArea.kind else RemoveArea(area=area)

    if kind == ReplaceAreas.kind:
        values = raw.get("values")
        if not isinstance(values, list):
            values = [raw.get("value")] if raw.get("value") else []
        cleaned = tuple(v for v in (_clean(x) for x in values) if v)
        return ReplaceAreas(areas=cleaned)

    if kind == AppendDetail.kind:
        text = _clean(raw.get("value"))
        return AppendDetail(text=text) if text else None

    if kind == ShowPreview.kind:
        return ShowPreview()
    if kind == Confirm.kind:
        return Confirm()
    if kind == Cancel.kind:
        return Cancel()

    logger.debug("Dropping unknown op kind %r", kind)
    return None


def _dedupe_key(op: Operation) -> tuple:
    if isinstance(op, AppendDetail):
        return (AppendDetail, normalize(op.text))
    if isinstance(op, (AddArea, RemoveArea)):
        return (type(op), normalize(op.area))
    if isinstance(op, ReplaceAreas):
        return (ReplaceAreas, tuple(sorted(normalize(a) for a in op.areas)))
    return (type(op), op)


def dedupe_operations(ops: list[Operation]) -> list[Operation]:
    """Collapse identical operations, keeping the first occurrence."""
    seen: set[tuple] = set()
    result: list[Operation] = []
    for op in ops:
        key = _dedupe_key(op)
        if key in seen:
            continue
        seen.add(key)
        result.append(op)
    return result


def order_operations(ops: list[Operation]) -> list[Operation]:
    """Stable sort so field and area changes land before preview/confirm."""
    return sorted(ops, key=lambda op: _OP_PRIORITY[type(op)])


# ---------------------------------------------------------------------------
# Collaborator outputs
# ---------------------------------------------------------------------------

@dataclass
class TurnInterpretation:
    """Output of the turn interpreter (LLM)."""
    ops: list = field(default_factory=list)
    analysis: str = ""
    is_new_incident_candidate: bool = False
    is_place_correction_only: bool = False


@dataclass
class AreaDetection:
    """Output of the area detector (LLM)."""
    area: str | None = None
    confidence: float = 0.0


@dataclass
class VisionAnalysis:
    """Output of the vision analyzer (LLM)."""
    interpretation: str | None = None
    tags: list[str] = field(default_factory=list)
    safety: list[str] = field(default_factory=list)
    area_hints: list[str] = field(default_factory=list)
    confidence: float = 0.0


@dataclass
class InformalPlaceMatch:
    """Output of the informal place classifier (LLM)."""
    found: bool = False
    canonical_label: str | None = None
    confidence: float = 0.0


@dataclass
class GuardResult:
    """Result of the smalltalk / non-incident guard."""
    blocked: bool = False
    verdict: str | None = None  # greeting, non_incident, smalltalk
    reply: str | None = None
