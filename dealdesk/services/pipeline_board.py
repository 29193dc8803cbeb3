"""Kanban pipeline board: stage columns with optimistic stage moves."""

from __future__ import annotations

import itertools
import logging
from collections.abc import Callable, Iterable, Mapping
from dataclasses import dataclass, field
from datetime import datetime, timezone
from decimal import Decimal
from typing import Any

from dealdesk.core.config import get_config
from dealdesk.core.enums import MoveOutcome, MoveState
from dealdesk.core.exceptions import StaleReferenceError, TransportError
from dealdesk.orchestration.query_cache import BOARD_KEY, QueryCache
from dealdesk.orchestration.stage_rules import DEFAULT_STAGE_OPTIONS, StageOption, coerce_stage
from dealdesk.schemas.opportunities import Opportunity
from dealdesk.services.pricing import round_money
from dealdesk.services.record_store import OpportunityStore
from dealdesk.utils.odata import BOARD_QUERY
from dealdesk.utils.validators import ZERO, format_currency

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class BoardColumn:
    stage: int
    title: str
    items: tuple[Opportunity, ...]
    subtotal: Decimal
    summary: str

    @property
    def count(self) -> int:
        return len(self.items)


@dataclass
class PendingMove:
    opportunity_id: int
    from_stage: int
    target_stage: int
    token: int = 0
    state: MoveState = MoveState.IDLE
    error: Exception | None = None

    @property
    def outcome(self) -> MoveOutcome | None:
        """Caller-facing result; None while the write is still pending."""
        if self.state is MoveState.IDLE:
            return MoveOutcome.NOOP
        if self.state is MoveState.OPTIMISTIC:
            return None
        return MoveOutcome(self.state.value)


@dataclass
class _MoveTrack:
    """Per-opportunity bookkeeping while at least one move is in flight."""

    last_good: Opportunity
    latest: int
    confirmed: int = 0
    rolled_back: int = 0
    in_flight: set[int] = field(default_factory=set)


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def _default_option(value: int) -> StageOption:
    return next((option for option in DEFAULT_STAGE_OPTIONS if option.value == value), StageOption(value, str(value)))


class PipelineBoardController:
    """Render-agnostic board over the shared opportunity collection.

    The collection lives in the injected cache under ``BOARD_KEY``. While a
    move is in flight only this controller writes to that key. Rollback
    snapshots are kept per opportunity id, so a failed move never reverts an
    unrelated move on another card.
    """

    def __init__(
        self,
        store: OpportunityStore,
        cache: QueryCache | None = None,
        stage_options: Iterable[StageOption] | None = None,
        currency_code: str | None = None,
        formatter: Callable[[Decimal, str], str] = format_currency,
        clock: Callable[[], datetime] = _utcnow,
    ) -> None:
        self.store = store
        self.cache = cache if cache is not None else QueryCache()
        self.stage_options: list[StageOption] = list(stage_options or DEFAULT_STAGE_OPTIONS)
        self.currency_code = currency_code or get_config().DEFAULT_CURRENCY_CODE
        self.formatter = formatter
        self.clock = clock
        self._tracks: dict[int, _MoveTrack] = {}
        self._tokens = itertools.count(1)

    # -- collection ----------------------------------------------------

    @property
    def opportunities(self) -> list[Opportunity]:
        return list(self.cache.get(BOARD_KEY) or [])

    def load_columns(
        self,
        stage_options: Iterable[StageOption | int] | None,
        opportunities: Iterable[Opportunity | Mapping[str, Any]],
    ) -> list[BoardColumn]:
        """Store the collection and partition it into ordered stage columns."""
        if stage_options is not None:
            self.stage_options = [
                option if isinstance(option, StageOption) else _default_option(int(option)) for option in stage_options
            ]
        records = [
            item if isinstance(item, Opportunity) else Opportunity.model_validate(item) for item in opportunities
        ]
        self.cache.set(BOARD_KEY, records)
        return self.columns()

    def columns(self) -> list[BoardColumn]:
        records = self.opportunities
        columns = []
        for option in self.stage_options:
            items = tuple(record for record in records if record.stage == option.value)
            subtotal = round_money(sum((record.amount for record in items), ZERO))
            summary = f"{self.formatter(subtotal, self.currency_code)} pipeline" if items else "No deals"
            columns.append(
                BoardColumn(stage=option.value, title=option.label, items=items, subtotal=subtotal, summary=summary)
            )
        return columns

    async def refresh(self) -> list[BoardColumn]:
        """Refetch the collection. Skipped while moves are in flight."""
        result = await self.store.list_opportunities(BOARD_QUERY)
        if self._tracks:
            logger.info(
                "pipeline_board.refresh.deferred",
                extra={"event": "pipeline_board.refresh.deferred"},
            )
            return self.columns()
        return self.load_columns(None, result.items)

    def _find(self, opportunity_id: int) -> Opportunity | None:
        return next((record for record in self.opportunities if record.id == opportunity_id), None)

    def _write(self, record: Opportunity) -> None:
        records = [record if existing.id == record.id else existing for existing in self.opportunities]
        self.cache.set(BOARD_KEY, records)

    # -- moves ---------------------------------------------------------

    @property
    def moves_in_flight(self) -> int:
        return sum(len(track.in_flight) for track in self._tracks.values())

    async def move_item(self, opportunity_id: int, target_stage: Any) -> PendingMove:
        """Move a card to ``target_stage`` optimistically, then persist it.

        On failure the card is restored to its last confirmed state and the
        transport error is re-raised.
        """
        current = self._find(opportunity_id)
        if current is None:
            raise StaleReferenceError(f"Opportunity {opportunity_id} is not on the board.")

        if target_stage == current.stage and not isinstance(target_stage, bool):
            return PendingMove(opportunity_id, current.stage, current.stage)

        stage = int(coerce_stage(target_stage))
        move = PendingMove(opportunity_id, current.stage, stage, token=next(self._tokens))

        track = self._tracks.get(opportunity_id)
        if track is None:
            track = _MoveTrack(last_good=current.model_copy(deep=True), latest=move.token)
            self._tracks[opportunity_id] = track
        track.latest = move.token
        track.in_flight.add(move.token)

        optimistic = current.model_copy(update={"stage": stage, "updated_at": self.clock()})
        self._write(optimistic)
        move.state = MoveState.OPTIMISTIC
        logger.debug(
            "pipeline_board.move.optimistic",
            extra={"event": "pipeline_board.move.optimistic", "opportunity_id": opportunity_id, "target_stage": stage},
        )

        try:
            await self.store.update_opportunity(opportunity_id, {"Stage": stage})
        except TransportError as exc:
            self._roll_back(track, move, exc)
            raise
        else:
            self._confirm(track, move, optimistic)
            return move
        finally:
            track.in_flight.discard(move.token)
            if not track.in_flight:
                self._tracks.pop(opportunity_id, None)

    def _confirm(self, track: _MoveTrack, move: PendingMove, confirmed: Opportunity) -> None:
        move.state = MoveState.CONFIRMED
        if move.token > track.confirmed:
            track.confirmed = move.token
            track.last_good = confirmed.model_copy(deep=True)
            # The newest move already rolled back; the server now holds this stage.
            if track.rolled_back == track.latest:
                self._write(confirmed)
        self.cache.invalidate(BOARD_KEY)
        logger.info(
            "pipeline_board.move.confirmed",
            extra={
                "event": "pipeline_board.move.confirmed",
                "opportunity_id": move.opportunity_id,
                "target_stage": move.target_stage,
            },
        )

    def _roll_back(self, track: _MoveTrack, move: PendingMove, exc: TransportError) -> None:
        move.state = MoveState.ROLLED_BACK
        move.error = exc
        if move.token == track.latest:
            track.rolled_back = move.token
            self._write(track.last_good.model_copy(deep=True))
        logger.warning(
            "pipeline_board.move.rolled_back",
            extra={
                "event": "pipeline_board.move.rolled_back",
                "opportunity_id": move.opportunity_id,
                "target_stage": move.target_stage,
                "error": str(exc),
            },
        )
