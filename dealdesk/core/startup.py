"""Startup validation and bootstrap helpers."""

from __future__ import annotations

import logging

from dealdesk.core.config import get_config
from dealdesk.core.exceptions import TransportError
from dealdesk.core.logging_config import configure_logging
from dealdesk.orchestration.stage_rules import DEFAULT_STAGE_OPTIONS, StageOption, stage_options_from_metadata
from dealdesk.services.record_store import RecordStoreClient

logger = logging.getLogger(__name__)


def validate_startup_config(client: RecordStoreClient | None = None) -> list[StageOption]:
    """Fail-fast config and connectivity checks. Returns the stage options to use."""
    config = get_config()
    client = client or RecordStoreClient()
    try:
        metadata = client.get_metadata()
    except TransportError as exc:
        if config.RECORD_STORE_REQUIRED:
            raise RuntimeError("Record store connectivity check failed.") from exc
        logger.warning(
            "startup.record_store.connectivity_optional_failed",
            extra={"event": "startup.record_store.connectivity_optional_failed", "error": str(exc)},
        )
        return list(DEFAULT_STAGE_OPTIONS)

    logger.info(
        "startup.config.validated",
        extra={"event": "startup.config.validated", "path": config.RECORD_STORE_URL},
    )
    return stage_options_from_metadata(metadata)


def bootstrap(client: RecordStoreClient | None = None) -> list[StageOption]:
    """Initialize logging and validate runtime configuration."""
    configure_logging()
    return validate_startup_config(client)
