"""Stage classification and close-metadata rules for opportunities.

Every function here is pure: transitions take the current draft close state
and a target stage and return the next state without touching the record
store.
"""

from __future__ import annotations

import re
from collections.abc import Mapping
from dataclasses import dataclass, replace
from datetime import datetime
from typing import Any

from dealdesk.core.enums import CLOSE_FIELDS, FieldRule, OpportunityStage, StageClass
from dealdesk.core.exceptions import InvalidStageError, ValidationError
from dealdesk.utils.validators import is_blank

CLOSE_REASON_REQUIRED = "Close reason is required when an opportunity is closed lost."


@dataclass(frozen=True)
class StageOption:
    value: int
    label: str


@dataclass(frozen=True)
class CloseState:
    """Stage plus the close metadata whose presence depends on it."""

    stage: int
    closed_at: datetime | None = None
    close_reason: str | None = None
    closed_by_employee_id: int | None = None

    @property
    def has_close_metadata(self) -> bool:
        return any(
            value is not None for value in (self.closed_at, self.close_reason, self.closed_by_employee_id)
        )


DEFAULT_STAGE_OPTIONS: tuple[StageOption, ...] = (
    StageOption(1, "Prospecting"),
    StageOption(2, "Qualification"),
    StageOption(3, "Needs Analysis"),
    StageOption(4, "Proposal"),
    StageOption(5, "Negotiation"),
    StageOption(6, "Closed Won"),
    StageOption(7, "Closed Lost"),
)

_OPEN_RULES = {name: FieldRule.FORBIDDEN for name in CLOSE_FIELDS}
_CLOSED_WON_RULES = {
    "ClosedAt": FieldRule.OPTIONAL,
    "CloseReason": FieldRule.OPTIONAL,
    "ClosedByEmployeeID": FieldRule.DEFAULTS_TO_OWNER,
}
_CLOSED_LOST_RULES = {**_CLOSED_WON_RULES, "CloseReason": FieldRule.REQUIRED}


def coerce_stage(stage: Any) -> OpportunityStage:
    """Return the enum member for a stage code or raise ``InvalidStageError``."""
    if isinstance(stage, bool) or not isinstance(stage, int):
        raise InvalidStageError(stage)
    try:
        return OpportunityStage(stage)
    except ValueError:
        raise InvalidStageError(stage) from None


def is_valid_stage(stage: Any) -> bool:
    try:
        coerce_stage(stage)
    except InvalidStageError:
        return False
    return True


def classify(stage: Any) -> StageClass:
    code = coerce_stage(stage)
    if code == OpportunityStage.CLOSED_WON:
        return StageClass.CLOSED_WON
    if code == OpportunityStage.CLOSED_LOST:
        return StageClass.CLOSED_LOST
    return StageClass.OPEN


def is_closed(stage: Any) -> bool:
    return classify(stage) is not StageClass.OPEN


def required_fields_for(stage: Any) -> dict[str, FieldRule]:
    """Presence rule for each close-metadata field at ``stage``."""
    stage_class = classify(stage)
    if stage_class is StageClass.CLOSED_LOST:
        return dict(_CLOSED_LOST_RULES)
    if stage_class is StageClass.CLOSED_WON:
        return dict(_CLOSED_WON_RULES)
    return dict(_OPEN_RULES)


def transition(state: CloseState, new_stage: Any, owner_employee_id: int | None = None) -> CloseState:
    """Compute the draft close state after moving to ``new_stage``.

    Moving to an open stage clears all close metadata, whatever the caller
    supplied. Moving to a closed stage keeps existing metadata and fills the
    closer from the owner when it is unset.
    """
    code = coerce_stage(new_stage)
    if classify(code) is StageClass.OPEN:
        return CloseState(stage=int(code))
    closed_by = state.closed_by_employee_id
    if closed_by is None:
        closed_by = owner_employee_id
    return replace(state, stage=int(code), closed_by_employee_id=closed_by)


def apply_field_rules(state: CloseState, owner_employee_id: int | None = None) -> CloseState:
    """Normalize a close state for saving: strip forbidden fields, fill defaults, enforce required ones."""
    rules = required_fields_for(state.stage)
    if rules["CloseReason"] is FieldRule.FORBIDDEN:
        return CloseState(stage=state.stage)
    if rules["CloseReason"] is FieldRule.REQUIRED and is_blank(state.close_reason):
        raise ValidationError(CLOSE_REASON_REQUIRED, field="CloseReason")
    normalized = state
    if is_blank(state.close_reason):
        normalized = replace(normalized, close_reason=None)
    if normalized.closed_by_employee_id is None and owner_employee_id is not None:
        normalized = replace(normalized, closed_by_employee_id=owner_employee_id)
    return normalized


def format_enum_label(name: str) -> str:
    """``ClosedWon`` -> ``Closed Won``, ``Needs_Analysis`` -> ``Needs Analysis``."""
    label = name.replace("_", " ")
    label = re.sub(r"([a-z])([A-Z])", r"\1 \2", label)
    return re.sub(r"\s+", " ", label).strip()


def stage_options_from_metadata(metadata: Mapping[str, Any] | None) -> list[StageOption]:
    """Read the ``OpportunityStage`` enum from an OData CSDL JSON document.

    Falls back to ``DEFAULT_STAGE_OPTIONS`` when the document has no usable
    definition. Members outside the known enumeration are ignored.
    """
    if not isinstance(metadata, Mapping):
        return list(DEFAULT_STAGE_OPTIONS)

    for namespace, types in metadata.items():
        if namespace.startswith("$") or not isinstance(types, Mapping):
            continue
        definition = types.get("OpportunityStage")
        if not isinstance(definition, Mapping) or definition.get("$Kind") != "EnumType":
            continue
        options = [
            StageOption(value=value, label=format_enum_label(name))
            for name, value in definition.items()
            if not name.startswith("$") and is_valid_stage(value)
        ]
        if options:
            return sorted(options, key=lambda option: option.value)

    return list(DEFAULT_STAGE_OPTIONS)
