"""Incident intake agents.

Deterministic:
1. Vocabulary (yes/no, reset, version choice, strong place signals)
2. Guard (greeting / non-incident / smalltalk filter)

LLM collaborators (all degrade to empty results on failure):
3. TurnInterpreterAgent (draft operations + meta flags)
4. AreaDetectorAgent (keyword scoring, LLM fallback)
5. VisionAnalyzerAgent (photo interpretation + area hints)
6. InformalPlaceClassifierAgent (colloquial place names)
"""

from .contracts import (
    AddArea,
    AppendDetail,
    AreaDetection,
    Cancel,
    Confirm,
    GuardResult,
    InformalPlaceMatch,
    Operation,
    RemoveArea,
    ReplaceAreas,
    SetField,
    ShowPreview,
    TurnInterpretation,
    VisionAnalysis,
)

__all__ = [
    "AddArea",
    "AppendDetail",
    "AreaDetection",
    "Cancel",
    "Confirm",
    "GuardResult",
    "InformalPlaceMatch",
    "Operation",
    "RemoveArea",
    "ReplaceAreas",
    "SetField",
    "ShowPreview",
    "TurnInterpretation",
    "VisionAnalysis",
]
