from __future__ import annotations

import pytest

from shuffle_verifier.engine.errors import IntegrityFault, PositionOutOfRange, RoundScopeError
from shuffle_verifier.engine.models import CardProvenance, Stage
from shuffle_verifier.engine.provenance import ProvenanceStore
from shuffle_verifier.utils.hashing import card_hash

from .test_utils import build_round


def _record(round_id: int, position: int, committed_card, **extra) -> CardProvenance:
    return CardProvenance(
        round_id=round_id,
        position=position,
        committed_hash=card_hash(round_id, committed_card, position),
        **extra,
    )


def test_populated_store_tracks_every_position() -> None:
    synthetic = build_round()
    store = ProvenanceStore.populated_from(synthetic.round_id, synthetic.provenance())
    assert len(store) == 52
    assert store.positions_for("p1") == [47, 51]
    assert store.community_positions() == [36, 38, 40, 41, 42]
    assert store.committed_hashes()[0] == card_hash(synthetic.round_id, synthetic.deck[0], 0)


def test_records_are_enriched_not_replaced() -> None:
    synthetic = build_round()
    card = synthetic.deck[10]
    store = ProvenanceStore(synthetic.round_id)
    store.upsert(_record(synthetic.round_id, 10, card))
    store.upsert(_record(synthetic.round_id, 10, card, recipient="p2"))
    merged = store.upsert(_record(synthetic.round_id, 10, card, card=card, dealt_at_stage=Stage.OPENING))
    assert merged.recipient == "p2"
    assert merged.card == card
    assert merged.dealt_at_stage is Stage.OPENING


def test_withheld_card_is_found_by_its_commitment() -> None:
    synthetic = build_round()
    store = ProvenanceStore.populated_from(synthetic.round_id, synthetic.provenance(tagged=False))
    hidden = synthetic.hole_cards("p3")[0]
    record = store.lookup_by_card(hidden)
    assert record is not None
    assert record.position == synthetic.hole["p3"][0]
    assert record.card is None


def test_wrong_hash_for_revealed_card_is_integrity_fault() -> None:
    synthetic = build_round()
    record = CardProvenance(
        round_id=synthetic.round_id,
        position=3,
        card=synthetic.deck[3],
        committed_hash=card_hash(synthetic.round_id, synthetic.deck[4], 3),
    )
    store = ProvenanceStore(synthetic.round_id)
    with pytest.raises(IntegrityFault) as exc_info:
        store.upsert(record)
    assert exc_info.value.code == "CARD_HASH_MISMATCH"
    assert store.lookup(3) is None


def test_changed_commitment_is_rejected() -> None:
    synthetic = build_round()
    store = ProvenanceStore(synthetic.round_id)
    store.upsert(_record(synthetic.round_id, 5, synthetic.deck[5]))
    with pytest.raises(IntegrityFault) as exc_info:
        store.upsert(_record(synthetic.round_id, 5, synthetic.deck[6]))
    assert exc_info.value.code == "COMMITMENT_CHANGED"


def test_conflicting_recipient_is_rejected() -> None:
    synthetic = build_round()
    card = synthetic.deck[51]
    store = ProvenanceStore(synthetic.round_id)
    store.upsert(_record(synthetic.round_id, 51, card, recipient="p1"))
    with pytest.raises(IntegrityFault) as exc_info:
        store.upsert(_record(synthetic.round_id, 51, card, recipient="p2"))
    assert exc_info.value.code == "RECIPIENT_CONFLICT"
    assert store.lookup(51).recipient == "p1"


def test_duplicate_card_is_a_logged_domain_fault() -> None:
    synthetic = build_round()
    card = synthetic.deck[0]
    store = ProvenanceStore(synthetic.round_id)
    store.upsert(_record(synthetic.round_id, 0, card, card=card))
    store.upsert(_record(synthetic.round_id, 1, card, card=card))
    assert [fault.code for fault in store.faults] == ["DUPLICATE_CARD"]


def test_store_is_scoped_to_one_round() -> None:
    synthetic = build_round(round_id=4)
    store = ProvenanceStore(5)
    with pytest.raises(RoundScopeError):
        store.upsert(_record(4, 0, synthetic.deck[0]))


def test_lookup_out_of_range() -> None:
    store = ProvenanceStore(1)
    with pytest.raises(PositionOutOfRange):
        store.lookup(52)
