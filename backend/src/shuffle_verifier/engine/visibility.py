from __future__ import annotations

import logging
from collections.abc import Iterable, Mapping

from shuffle_verifier.engine.errors import DomainFault
from shuffle_verifier.engine.models import (
    CardKind,
    GamePhaseSignal,
    PlayerId,
    VisibilityView,
    VisibleCard,
)
from shuffle_verifier.engine.provenance import ProvenanceStore
from shuffle_verifier.utils.cards import DECK_SIZE, Card


logger = logging.getLogger(__name__)


def own_positions(
    viewer: PlayerId,
    store: ProvenanceStore,
    signal: GamePhaseSignal,
) -> dict[int, Card | None]:
    found: dict[int, Card | None] = {}
    for position in store.positions_for(viewer):
        record = store.lookup(position)
        found[position] = record.card if record else None
    for card in signal.viewer_hole_cards.get(viewer, []):
        record = store.lookup_by_card(card)
        if record is not None:
            found[record.position] = card
    return found


def community_positions(store: ProvenanceStore, signal: GamePhaseSignal) -> dict[int, Card | None]:
    found: dict[int, Card | None] = {}
    for position in store.community_positions():
        record = store.lookup(position)
        found[position] = record.card if record else None
    for card in signal.board_cards:
        record = store.lookup_by_card(card)
        if record is not None:
            found[record.position] = card
    return found


def showdown_positions(
    store: ProvenanceStore,
    signal: GamePhaseSignal,
) -> dict[PlayerId, dict[int, Card | None]]:
    """Positions of each showdown contestant's hole cards that the server has identified."""
    result: dict[PlayerId, dict[int, Card | None]] = {}
    for player_id in signal.contestants:
        found: dict[int, Card | None] = {}
        for position in store.positions_for(player_id):
            record = store.lookup(position)
            found[position] = record.card if record else None
        for card in signal.showdown_hands.get(player_id, []):
            record = store.lookup_by_card(card)
            if record is not None:
                found[record.position] = card
        result[player_id] = found
    return result


def resolve_visibility(
    viewer: PlayerId,
    store: ProvenanceStore,
    signal: GamePhaseSignal,
    disclosed: Iterable[PlayerId] = (),
    contestant_positions: Mapping[PlayerId, Mapping[int, Card | None]] | None = None,
) -> VisibilityView:
    """Work out which deck positions ``viewer`` may see right now.

    Pure: the same inputs always give the same view, and nothing here is
    cached. Rules, first match wins:

    * round over with a single contestant left: own hole cards and dealt
      community cards only, no showdown;
    * round over with two or more contestants: own and community cards, plus
      the hole cards of contestants already disclosed by the reveal
      scheduler, but only when the viewer is a contestant too;
    * round running: own hole cards, and community cards for the stage;
    * everything else is hidden behind its committed hash.
    """
    faults: list[str] = []
    revealed: dict[int, tuple[CardKind, Card | None, PlayerId | None]] = {}

    community = community_positions(store, signal)
    if not signal.round_over:
        expected = signal.stage.expected_community_cards
        if len(community) != expected:
            fault = DomainFault(
                f"stage {signal.stage.value} expects {expected} community cards, found {len(community)}",
                code="COMMUNITY_COUNT_MISMATCH",
            )
            logger.warning("round %s: %s", store.round_id, fault.message)
            faults.append(fault.message)
    for position, card in community.items():
        revealed[position] = (CardKind.COMMUNITY, card, None)

    if signal.is_showdown and viewer in signal.contestants:
        positions_by_player = (
            contestant_positions
            if contestant_positions is not None
            else showdown_positions(store, signal)
        )
        for player_id in disclosed:
            if player_id == viewer or player_id not in signal.contestants:
                continue
            for position, card in positions_by_player.get(player_id, {}).items():
                revealed[position] = (CardKind.SHOWDOWN, card, player_id)

    for position, card in own_positions(viewer, store, signal).items():
        revealed[position] = (CardKind.OWN, card, viewer)

    slots: dict[int, VisibleCard] = {}
    for position in range(DECK_SIZE):
        record = store.lookup(position)
        committed = record.committed_hash if record else ""
        if position in revealed:
            kind, card, owner = revealed[position]
            if card is None and record is not None:
                card = record.card
            slots[position] = VisibleCard(
                position=position,
                committed_hash=committed,
                card=card,
                visible=True,
                kind=kind,
                owner=owner,
            )
        else:
            slots[position] = VisibleCard(position=position, committed_hash=committed)

    return VisibilityView(round_id=store.round_id, viewer=viewer, positions=slots, faults=faults)
