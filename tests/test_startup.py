from __future__ import annotations

import pytest

import dealdesk.core.startup as startup_module
from dealdesk.core.exceptions import TransportError
from dealdesk.orchestration.stage_rules import DEFAULT_STAGE_OPTIONS


class _Cfg:
    def __init__(self, required: bool) -> None:
        self.RECORD_STORE_REQUIRED = required
        self.ENV = "development"
        self.RECORD_STORE_URL = "http://records.invalid/api"

    @property
    def is_production(self) -> bool:
        return False


class _UnreachableClient:
    def get_metadata(self):
        raise TransportError("GET $metadata failed after 3 attempt(s): refused")


class _MetadataClient:
    def get_metadata(self):
        return {
            "$Version": "4.0",
            "CRM": {
                "OpportunityStage": {"$Kind": "EnumType", "Prospecting": 1, "ClosedWon": 6, "Archived": 99},
            },
        }


def test_startup_falls_back_when_record_store_optional_and_unreachable(monkeypatch):
    monkeypatch.setattr(startup_module, "get_config", lambda: _Cfg(required=False))

    options = startup_module.validate_startup_config(_UnreachableClient())

    assert options == list(DEFAULT_STAGE_OPTIONS)


def test_startup_raises_when_record_store_required_and_unreachable(monkeypatch):
    monkeypatch.setattr(startup_module, "get_config", lambda: _Cfg(required=True))

    with pytest.raises(RuntimeError, match="Record store connectivity check failed"):
        startup_module.validate_startup_config(_UnreachableClient())


def test_startup_reads_stage_options_from_metadata(monkeypatch):
    monkeypatch.setattr(startup_module, "get_config", lambda: _Cfg(required=True))

    options = startup_module.validate_startup_config(_MetadataClient())

    assert [(option.value, option.label) for option in options] == [(1, "Prospecting"), (6, "Closed Won")]
