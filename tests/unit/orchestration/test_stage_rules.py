from __future__ import annotations

from datetime import datetime, timezone

import pytest

from dealdesk.core.enums import FieldRule, StageClass
from dealdesk.core.exceptions import InvalidStageError, ValidationError
from dealdesk.orchestration.stage_rules import (
    DEFAULT_STAGE_OPTIONS,
    CloseState,
    apply_field_rules,
    classify,
    format_enum_label,
    is_closed,
    is_valid_stage,
    required_fields_for,
    stage_options_from_metadata,
    transition,
)

CLOSED_AT = datetime(2026, 3, 1, tzinfo=timezone.utc)


@pytest.mark.parametrize("stage", [1, 2, 3, 4, 5])
def test_open_stages_classify_as_open(stage):
    assert classify(stage) is StageClass.OPEN
    assert is_closed(stage) is False


def test_closed_stages_classify():
    assert classify(6) is StageClass.CLOSED_WON
    assert classify(7) is StageClass.CLOSED_LOST


@pytest.mark.parametrize("stage", [0, 8, -1, 99, "3", 3.0, None, True])
def test_invalid_stage_values_are_rejected(stage):
    assert is_valid_stage(stage) is False
    with pytest.raises(InvalidStageError):
        classify(stage)


def test_required_fields_by_stage():
    assert set(required_fields_for(2).values()) == {FieldRule.FORBIDDEN}
    won = required_fields_for(6)
    assert won["CloseReason"] is FieldRule.OPTIONAL
    assert won["ClosedByEmployeeID"] is FieldRule.DEFAULTS_TO_OWNER
    lost = required_fields_for(7)
    assert lost["CloseReason"] is FieldRule.REQUIRED
    assert lost["ClosedAt"] is FieldRule.OPTIONAL


@pytest.mark.parametrize("closed_stage", [6, 7])
@pytest.mark.parametrize("open_stage", [1, 2, 3, 4, 5])
def test_reopening_clears_close_metadata(closed_stage, open_stage):
    state = CloseState(stage=closed_stage, closed_at=CLOSED_AT, close_reason="Budget", closed_by_employee_id=4)
    reopened = transition(state, open_stage)
    assert reopened == CloseState(stage=open_stage)
    assert reopened.has_close_metadata is False


def test_closing_defaults_closer_to_owner():
    closed = transition(CloseState(stage=3), 6, owner_employee_id=11)
    assert closed.stage == 6
    assert closed.closed_by_employee_id == 11


def test_closing_keeps_explicit_closer_and_reason():
    state = CloseState(stage=6, close_reason="Price", closed_by_employee_id=2)
    lost = transition(state, 7, owner_employee_id=11)
    assert lost.closed_by_employee_id == 2
    assert lost.close_reason == "Price"


def test_transition_rejects_invalid_stage():
    with pytest.raises(InvalidStageError):
        transition(CloseState(stage=1), 9)


def test_closed_lost_requires_reason_at_save():
    with pytest.raises(ValidationError) as excinfo:
        apply_field_rules(CloseState(stage=7, close_reason="   "))
    assert excinfo.value.field == "CloseReason"

    normalized = apply_field_rules(CloseState(stage=7, close_reason="Chose competitor"), owner_employee_id=5)
    assert normalized.close_reason == "Chose competitor"
    assert normalized.closed_by_employee_id == 5


def test_open_state_is_stripped_for_save():
    stripped = apply_field_rules(CloseState(stage=2, close_reason="stale", closed_at=CLOSED_AT))
    assert stripped == CloseState(stage=2)


def test_closed_won_blank_reason_is_dropped():
    normalized = apply_field_rules(CloseState(stage=6, close_reason=""))
    assert normalized.close_reason is None


def test_format_enum_label():
    assert format_enum_label("ClosedWon") == "Closed Won"
    assert format_enum_label("Needs_Analysis") == "Needs Analysis"


def test_stage_options_from_metadata():
    metadata = {
        "$Version": "4.0",
        "CRM": {
            "Account": {"$Kind": "EntityType"},
            "OpportunityStage": {
                "$Kind": "EnumType",
                "$UnderlyingType": "Edm.Int32",
                "Negotiation": 5,
                "Prospecting": 1,
                "ClosedLost": 7,
                "Bogus": 42,
            },
        },
    }
    options = stage_options_from_metadata(metadata)
    assert [(option.value, option.label) for option in options] == [
        (1, "Prospecting"),
        (5, "Negotiation"),
        (7, "Closed Lost"),
    ]


@pytest.mark.parametrize("metadata", [None, {}, {"CRM": {"OpportunityStage": {"$Kind": "EntityType"}}}, []])
def test_stage_options_fall_back_to_defaults(metadata):
    assert stage_options_from_metadata(metadata) == list(DEFAULT_STAGE_OPTIONS)
