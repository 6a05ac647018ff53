"""Best-effort seat attribution for hole cards the server did not tag.

The server deals from the end of the committed deck, one card per dealt-in
seat per round, clockwise from the first seat after the dealer. Knowing where
the viewer's own hole cards sit in the deck order is therefore enough to guess
where everybody else's went. The guess is for display only; the server's deal
is the source of truth.
"""

from __future__ import annotations

from collections.abc import Iterable, Sequence

from shuffle_verifier.engine.models import (
    CardProvenance,
    Confidence,
    DealInference,
    InferenceSource,
    InferredCard,
    PlayerId,
    SeatInference,
    SeatInfo,
    Stage,
)
from shuffle_verifier.engine.provenance import ProvenanceStore
from shuffle_verifier.utils.cards import DECK_SIZE, Card


DEFAULT_SEARCH_RADIUS = 10


def deal_order(seats: Sequence[SeatInfo], dealer_seat_index: int) -> list[SeatInfo]:
    """Dealt-in seats, clockwise from the first one after the dealer button."""
    if not seats:
        return []
    table_size = max(len(seats), max(seat.seat_index for seat in seats) + 1)
    dealt_in = [seat for seat in seats if seat.dealt_in]
    return sorted(
        dealt_in,
        key=lambda seat: (seat.seat_index - dealer_seat_index - 1) % table_size,
    )


def _candidate_pool(snapshot: Sequence[CardProvenance | None], assigned: list[bool]) -> list[bool]:
    untagged = [
        record is not None
        and record.recipient is None
        and not (record.dealt_at_stage is not None and record.dealt_at_stage.is_community)
        and not assigned[record.position]
        for record in snapshot
    ]
    opening_only = [
        flag and snapshot[position].dealt_at_stage is Stage.OPENING
        for position, flag in enumerate(untagged)
    ]
    # Prefer positions the server marked as dealt at Opening when it marks any.
    return opening_only if any(opening_only) else untagged


def _take(
    target: int,
    primary: Iterable[int],
    pool: list[bool],
    assigned: list[bool],
    radius: int,
) -> InferredCard | None:
    def free(position: int) -> bool:
        return 0 <= position < DECK_SIZE and pool[position] and not assigned[position]

    for position in primary:
        if free(position):
            return InferredCard(position=position, source=InferenceSource.OFFSET)

    for distance in range(1, radius + 1):
        for position in (target - distance, target + distance):
            if free(position):
                return InferredCard(position=position, source=InferenceSource.LOCAL_SEARCH)

    remaining = [position for position in range(DECK_SIZE) if free(position)]
    if not remaining:
        return None
    closest = min(remaining, key=lambda position: (abs(position - target), position))
    return InferredCard(position=closest, source=InferenceSource.FALLBACK, verified=False)


def _confidence(cards: Sequence[InferredCard], complete: bool) -> Confidence:
    if not complete or any(not card.verified for card in cards):
        return Confidence.LOW
    if all(card.source is InferenceSource.TAGGED for card in cards):
        return Confidence.EXACT
    return Confidence.INFERRED


def infer_deal_order(
    viewer: PlayerId,
    store: ProvenanceStore,
    seats: Sequence[SeatInfo],
    dealer_seat_index: int,
    *,
    viewer_cards: Iterable[Card] = (),
    hole_cards_per_player: int | None = None,
    search_radius: int = DEFAULT_SEARCH_RADIUS,
) -> DealInference:
    snapshot = store.snapshot()

    viewer_positions = set(store.positions_for(viewer))
    for card in viewer_cards:
        record = store.lookup_by_card(card)
        if record is not None:
            viewer_positions.add(record.position)
    # Deal order walks the deck from the end, so the first round sits highest.
    ordered_viewer = sorted(viewer_positions, reverse=True)
    expected = len(ordered_viewer) or hole_cards_per_player or 0

    assigned = [False] * DECK_SIZE
    for position in ordered_viewer:
        assigned[position] = True
    for record in snapshot:
        if record is None:
            continue
        if record.recipient is not None:
            assigned[record.position] = True
        elif record.dealt_at_stage is not None and record.dealt_at_stage.is_community:
            assigned[record.position] = True
    pool = _candidate_pool(snapshot, assigned)

    order = deal_order(seats, dealer_seat_index)
    viewer_index = next(
        (index for index, seat in enumerate(order) if seat.player_id == viewer),
        None,
    )

    cards_by_seat: dict[int, list[InferredCard]] = {}
    offsets: dict[int, int] = {}
    for index, seat in enumerate(order):
        if seat.player_id == viewer:
            continue
        tagged = sorted(store.positions_for(seat.player_id), reverse=True)
        cards_by_seat[seat.seat_index] = [
            InferredCard(position=position, source=InferenceSource.TAGGED) for position in tagged
        ]
        offsets[seat.seat_index] = index - viewer_index if viewer_index is not None else 0

    if viewer_index is not None:
        for round_index, anchor in enumerate(ordered_viewer[:expected]):
            for seat in order:
                if seat.player_id == viewer:
                    continue
                held = cards_by_seat[seat.seat_index]
                if len(held) > round_index:
                    continue
                offset = offsets[seat.seat_index]
                target = anchor - offset
                picked = _take(target, (anchor - offset, anchor + offset), pool, assigned, search_radius)
                if picked is None:
                    continue
                assigned[picked.position] = True
                held.append(picked)

    results: list[SeatInference] = []
    for seat in order:
        if seat.player_id == viewer:
            continue
        held = cards_by_seat[seat.seat_index]
        complete = expected > 0 and len(held) >= expected
        results.append(
            SeatInference(
                seat_index=seat.seat_index,
                player_id=seat.player_id,
                deal_offset=offsets[seat.seat_index],
                cards=held,
                complete=complete,
                confidence=_confidence(held, complete),
            ),
        )

    return DealInference(
        round_id=store.round_id,
        viewer=viewer,
        hole_cards_per_player=expected,
        viewer_positions=ordered_viewer,
        seats=results,
    )
