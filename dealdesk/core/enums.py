"""Enums for the DealDesk application."""

from enum import Enum, IntEnum


class OpportunityStage(IntEnum):
    """Pipeline position of an opportunity. Codes match the record store."""

    PROSPECTING = 1
    QUALIFICATION = 2
    NEEDS_ANALYSIS = 3
    PROPOSAL = 4
    NEGOTIATION = 5
    CLOSED_WON = 6
    CLOSED_LOST = 7


class StageClass(Enum):
    """Classification of a stage code."""

    OPEN = "open"
    CLOSED_WON = "closed_won"
    CLOSED_LOST = "closed_lost"


class FieldRule(Enum):
    """Presence rule for a close-metadata field at a given stage."""

    FORBIDDEN = "forbidden"
    OPTIONAL = "optional"
    REQUIRED = "required"
    DEFAULTS_TO_OWNER = "defaults_to_owner"


class MoveState(Enum):
    """Lifecycle of a single board move."""

    IDLE = "idle"
    OPTIMISTIC = "optimistic"
    CONFIRMED = "confirmed"
    ROLLED_BACK = "rolled_back"


class MoveOutcome(Enum):
    """Result reported to the caller of a board move."""

    NOOP = "noop"
    CONFIRMED = "confirmed"
    ROLLED_BACK = "rolled_back"


OPEN_STAGES = tuple(stage for stage in OpportunityStage if stage < OpportunityStage.CLOSED_WON)
FIRST_OPEN_STAGE = OPEN_STAGES[0]

CLOSE_FIELDS = ("ClosedAt", "CloseReason", "ClosedByEmployeeID")
