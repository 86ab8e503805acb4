"""Domain enumerations for incident intake.

All enums use the (str, Enum) pattern to ensure JSON serialization compatibility.
"""

from enum import Enum


class SessionMode(str, Enum):
    """Conversation state of an intake session."""

    NEUTRAL = "neutral"
    ASK_PLACE = "ask_place"
    ASK_AREA = "ask_area"
    CONFIRM_AREA_SUGGESTION = "confirm_area_suggestion"
    CHOOSE_INCIDENT_VERSION = "choose_incident_version"
    CONFIRM = "confirm"


class AreaCode(str, Enum):
    """Operational team that receives an incident."""

    MAN = "man"
    IT = "it"
    AMA = "ama"
    RS = "rs"
    SEG = "seg"


class IncidentStatus(str, Enum):
    """Lifecycle of a persisted incident."""

    OPEN = "open"
    IN_PROGRESS = "in_progress"
    DONE = "done"
    CANCELED = "canceled"


class IncidentEventType(str, Enum):
    """Audit events appended to an incident."""

    CREATED = "created"
    ATTACHMENTS_ADDED = "attachments_added"
    DISPATCHED = "dispatched"
    DISPATCH_FAILED = "dispatch_failed"


class GuardVerdict(str, Enum):
    """Why the guard short-circuited a turn."""

    GREETING = "greeting"
    NON_INCIDENT = "non_incident"
    SMALLTALK = "smalltalk"
