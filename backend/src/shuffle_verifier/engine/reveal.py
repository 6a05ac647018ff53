from __future__ import annotations

import asyncio
import logging
from collections.abc import Callable, Sequence
from datetime import datetime, timezone

from shuffle_verifier.engine.models import (
    ActionLogEntry,
    GamePhaseSignal,
    PlayerId,
    RevealEvent,
    SeatInfo,
    Stage,
)
from shuffle_verifier.utils.hashing import stable_hash


logger = logging.getLogger(__name__)

DEFAULT_REVEAL_DELAY_MS = 1500


def _table_size(seats: Sequence[SeatInfo]) -> int:
    if not seats:
        return 0
    return max(len(seats), max(seat.seat_index for seat in seats) + 1)


def last_aggressor(
    action_log: Sequence[ActionLogEntry],
    seats: Sequence[SeatInfo],
    contestants: Sequence[PlayerId],
) -> PlayerId | None:
    """Contestant with the last bet/raise/all-in on the final betting round."""
    betting = [entry for entry in action_log if entry.stage is not Stage.SHOWDOWN]
    if not betting:
        return None
    final_stage = max((entry.stage for entry in betting), key=lambda stage: stage.order)
    by_seat = {seat.seat_index: seat.player_id for seat in seats}
    for entry in reversed(betting):
        if entry.stage is not final_stage or not entry.action.is_aggressive:
            continue
        player = entry.player_id or by_seat.get(entry.seat_index)
        if player in contestants:
            return player
    return None


def compute_reveal_order(
    contestants: Sequence[PlayerId],
    seats: Sequence[SeatInfo],
    dealer_seat_index: int,
    action_log: Sequence[ActionLogEntry] = (),
    aggressor: PlayerId | None = None,
) -> tuple[PlayerId, ...]:
    if len(contestants) < 2:
        return ()
    table_size = _table_size(seats)
    seat_of = {seat.player_id: seat.seat_index for seat in seats if seat.player_id is not None}
    seated = [player for player in contestants if player in seat_of]
    if not seated:
        return ()

    first = aggressor if aggressor in seated else last_aggressor(action_log, seats, seated)
    if first is None:
        first = min(
            seated,
            key=lambda player: (seat_of[player] - dealer_seat_index - 1) % table_size,
        )

    start = seat_of[first]
    return tuple(
        sorted(seated, key=lambda player: (seat_of[player] - start) % table_size),
    )


class RevealOrderCache:
    """Holds the reveal order of a single round; computed once, then fixed."""

    def __init__(self, round_id: int) -> None:
        self.round_id = round_id
        self._order: tuple[PlayerId, ...] | None = None
        self._inputs_key: str | None = None

    @property
    def order(self) -> tuple[PlayerId, ...] | None:
        return self._order

    def get_or_compute(self, signal: GamePhaseSignal) -> tuple[PlayerId, ...]:
        inputs = {
            "contestants": list(signal.contestants),
            "seats": [seat.model_dump(mode="json") for seat in signal.seats],
            "dealer": signal.dealer_seat_index,
            "actions": [entry.model_dump(mode="json") for entry in signal.action_log],
            "aggressor": signal.last_aggressor,
        }
        key = stable_hash(inputs)
        if self._order is not None:
            if key != self._inputs_key:
                logger.warning(
                    "round %s: reveal inputs changed after the order was fixed; keeping %s",
                    self.round_id,
                    self._order,
                )
            return self._order

        self._order = compute_reveal_order(
            signal.contestants,
            signal.seats,
            signal.dealer_seat_index,
            signal.action_log,
            aggressor=signal.last_aggressor,
        )
        self._inputs_key = key
        return self._order


class RevealScheduler:
    """Staged disclosure of showdown hands, one contestant per delay.

    Each round gets one ``asyncio.Task``. Scheduling a round cancels every
    other round's task, so no disclosure outlives the round it belongs to.
    """

    def __init__(
        self,
        delay_ms: int = DEFAULT_REVEAL_DELAY_MS,
        on_disclose: Callable[[RevealEvent], None] | None = None,
    ) -> None:
        self._delay_s = delay_ms / 1000
        self._on_disclose = on_disclose
        self._tasks: dict[int, asyncio.Task[None]] = {}
        self._orders: dict[int, tuple[PlayerId, ...]] = {}
        self._disclosed: dict[int, list[PlayerId]] = {}

    def schedule(self, round_id: int, order: Sequence[PlayerId]) -> None:
        for other in list(self._orders):
            if other != round_id:
                self.cancel(other)

        if round_id in self._orders:
            if tuple(order) != self._orders[round_id]:
                logger.warning("round %s: ignoring a different reveal order", round_id)
            return

        self._orders[round_id] = tuple(order)
        self._disclosed[round_id] = []
        if order:
            loop = asyncio.get_running_loop()
            self._tasks[round_id] = loop.create_task(
                self._run(round_id),
                name=f"reveal-round-{round_id}",
            )

    def order(self, round_id: int) -> tuple[PlayerId, ...]:
        return self._orders.get(round_id, ())

    def disclosed(self, round_id: int) -> tuple[PlayerId, ...]:
        return tuple(self._disclosed.get(round_id, ()))

    def is_scheduled(self, round_id: int) -> bool:
        return round_id in self._orders

    def pending_rounds(self) -> list[int]:
        return [round_id for round_id, task in self._tasks.items() if not task.done()]

    def cancel(self, round_id: int) -> None:
        task = self._tasks.pop(round_id, None)
        if task is not None and not task.done():
            task.cancel()
        self._orders.pop(round_id, None)
        self._disclosed.pop(round_id, None)

    def cancel_all(self) -> None:
        for round_id in list(self._orders):
            self.cancel(round_id)

    async def wait(self, round_id: int) -> None:
        task = self._tasks.get(round_id)
        if task is not None:
            await asyncio.wait({task})

    async def _run(self, round_id: int) -> None:
        order = self._orders[round_id]
        for index, player_id in enumerate(order):
            await asyncio.sleep(self._delay_s)
            disclosed = self._disclosed.get(round_id)
            if disclosed is None:
                return
            disclosed.append(player_id)
            logger.info("round %s: disclosed %s (%d/%d)", round_id, player_id, index + 1, len(order))
            if self._on_disclose is not None:
                self._on_disclose(
                    RevealEvent(
                        round_id=round_id,
                        player_id=player_id,
                        index=index,
                        ts=datetime.now(timezone.utc).isoformat(),
                    ),
                )
