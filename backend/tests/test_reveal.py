from __future__ import annotations

import asyncio

import pytest
from hypothesis import given, settings
from hypothesis import strategies as st

from shuffle_verifier.engine.models import ActionType, RevealEvent, Stage
from shuffle_verifier.engine.reveal import RevealOrderCache, RevealScheduler, compute_reveal_order, last_aggressor

from .test_utils import DEFAULT_PLAYERS, aggressive, build_round, passive


SYNTHETIC = build_round()


def test_without_aggression_first_seat_after_dealer_goes_first() -> None:
    order = compute_reveal_order(list(DEFAULT_PLAYERS), SYNTHETIC.seats, dealer_seat_index=0)
    assert order == ("p1", "p2", "p3", "p0")


def test_dealer_reveals_last_when_contesting() -> None:
    order = compute_reveal_order(["p0", "p2"], SYNTHETIC.seats, dealer_seat_index=2)
    assert order == ("p0", "p2")


def test_last_river_aggressor_reveals_first() -> None:
    log = [
        aggressive("p1", Stage.FLOP),
        passive("p2", Stage.RIVER),
        aggressive("p3", Stage.RIVER, ActionType.BET),
        passive("p0", Stage.RIVER, ActionType.CALL),
    ]
    order = compute_reveal_order(list(DEFAULT_PLAYERS), SYNTHETIC.seats, 0, action_log=log)
    assert order == ("p3", "p0", "p1", "p2")


def test_aggression_on_an_earlier_street_does_not_count() -> None:
    log = [aggressive("p3", Stage.TURN), passive("p1", Stage.RIVER)]
    assert last_aggressor(log, SYNTHETIC.seats, list(DEFAULT_PLAYERS)) is None


def test_explicit_aggressor_wins_over_action_log() -> None:
    log = [aggressive("p3", Stage.RIVER)]
    order = compute_reveal_order(list(DEFAULT_PLAYERS), SYNTHETIC.seats, 0, action_log=log, aggressor="p2")
    assert order[0] == "p2"


def test_fewer_than_two_contestants_means_no_reveal() -> None:
    assert compute_reveal_order(["p1"], SYNTHETIC.seats, 0) == ()
    assert compute_reveal_order([], SYNTHETIC.seats, 0) == ()


@settings(max_examples=30, deadline=None)
@given(contestants=st.lists(st.sampled_from(DEFAULT_PLAYERS), min_size=2, unique=True))
def test_order_does_not_depend_on_contestant_listing(contestants: list[str]) -> None:
    forward = compute_reveal_order(contestants, SYNTHETIC.seats, 1)
    backward = compute_reveal_order(list(reversed(contestants)), SYNTHETIC.seats, 1)
    assert forward == backward
    assert sorted(forward) == sorted(contestants)


def test_cached_order_is_fixed_for_the_round() -> None:
    cache = RevealOrderCache(SYNTHETIC.round_id)
    first = cache.get_or_compute(SYNTHETIC.signal(Stage.SHOWDOWN, concluded=True))
    later_signal = SYNTHETIC.signal(
        Stage.SHOWDOWN,
        concluded=True,
        action_log=[aggressive("p3", Stage.RIVER)],
    )
    assert cache.get_or_compute(later_signal) == first
    assert cache.order == first


@pytest.mark.asyncio
async def test_scheduler_discloses_one_contestant_per_tick() -> None:
    events: list[RevealEvent] = []
    scheduler = RevealScheduler(delay_ms=5, on_disclose=events.append)
    scheduler.schedule(7, ("p1", "p2", "p3"))
    assert scheduler.disclosed(7) == ()
    await scheduler.wait(7)
    assert scheduler.disclosed(7) == ("p1", "p2", "p3")
    assert [(event.player_id, event.index) for event in events] == [("p1", 0), ("p2", 1), ("p3", 2)]
    assert scheduler.pending_rounds() == []


@pytest.mark.asyncio
async def test_scheduling_is_idempotent_per_round() -> None:
    scheduler = RevealScheduler(delay_ms=5)
    scheduler.schedule(7, ("p1", "p2"))
    scheduler.schedule(7, ("p2", "p1"))
    assert scheduler.order(7) == ("p1", "p2")
    await scheduler.wait(7)
    assert scheduler.disclosed(7) == ("p1", "p2")


@pytest.mark.asyncio
async def test_new_round_cancels_pending_reveal() -> None:
    events: list[RevealEvent] = []
    scheduler = RevealScheduler(delay_ms=50, on_disclose=events.append)
    scheduler.schedule(7, ("p1", "p2"))
    scheduler.schedule(8, ())
    await asyncio.sleep(0.12)
    assert events == []
    assert not scheduler.is_scheduled(7)
    assert scheduler.disclosed(7) == ()


@pytest.mark.asyncio
async def test_cancel_all_stops_every_timer() -> None:
    scheduler = RevealScheduler(delay_ms=50)
    scheduler.schedule(3, ("p1", "p2"))
    scheduler.cancel_all()
    assert scheduler.pending_rounds() == []
    assert not scheduler.is_scheduled(3)
