from __future__ import annotations

import logging

from shuffle_verifier.engine.errors import UnavailableFault
from shuffle_verifier.engine.models import (
    ProofExport,
    RngMetadata,
    VerificationReport,
    VerificationStatus,
)
from shuffle_verifier.engine.provenance import ProvenanceStore
from shuffle_verifier.engine.shuffle import reconstruct_deck
from shuffle_verifier.utils.cards import DECK_SIZE
from shuffle_verifier.utils.hashing import card_hash, deck_hash, shorten_hash


logger = logging.getLogger(__name__)

ROUND_NOT_CONCLUDED = "round not concluded"


def _pending(round_id: int, expected: str, reason: str) -> VerificationReport:
    return VerificationReport(
        round_id=round_id,
        status=VerificationStatus.PENDING,
        expected_deck_hash=expected,
        reason=reason,
    )


def verify_round(
    metadata: RngMetadata,
    store: ProvenanceStore | None,
    concluded: bool,
) -> VerificationReport:
    """Replay the shuffle and check it against every commitment the server made.

    The round verifies only when the replayed deck hashes to the committed
    ``deck_hash``, equals the revealed ``shuffled_deck`` card for card, and
    reproduces every per-position hash in ``store``.
    """
    round_id = metadata.round_id
    if not concluded:
        return _pending(round_id, metadata.deck_hash, ROUND_NOT_CONCLUDED)
    try:
        deck = reconstruct_deck(metadata.raw_random_bytes, metadata.time_seed)
    except UnavailableFault as exc:
        return _pending(round_id, metadata.deck_hash, exc.message)
    if not metadata.deck_revealed:
        return _pending(round_id, metadata.deck_hash, "shuffled deck has not been revealed")

    calculated = deck_hash(deck)
    deck_mismatch = [
        position
        for position in range(DECK_SIZE)
        if deck[position] != metadata.shuffled_deck[position]
    ]
    hash_mismatch: list[int] = []
    if store is not None:
        for record in store.records():
            position = record.position
            if card_hash(round_id, deck[position], position) != record.committed_hash:
                hash_mismatch.append(position)
            elif record.card is not None and record.card != deck[position]:
                hash_mismatch.append(position)

    reasons = []
    if calculated != metadata.deck_hash:
        reasons.append("replayed deck does not match the committed deck hash")
    if deck_mismatch:
        reasons.append(f"revealed deck differs at {len(deck_mismatch)} position(s)")
    if hash_mismatch:
        reasons.append(f"{len(hash_mismatch)} card commitment(s) do not match the replayed deck")

    status = VerificationStatus.FAILED if reasons else VerificationStatus.VERIFIED
    report = VerificationReport(
        round_id=round_id,
        status=status,
        expected_deck_hash=metadata.deck_hash,
        calculated_deck_hash=calculated,
        mismatched_card_hashes=hash_mismatch,
        deck_mismatch_positions=deck_mismatch,
        reason="; ".join(reasons) or None,
    )
    if status is VerificationStatus.FAILED:
        logger.error("round %s FAILED verification: %s", round_id, report.reason)
    else:
        logger.info("round %s verified (deck hash %s)", round_id, shorten_hash(calculated))
    return report


def verify_proof(proof: ProofExport) -> VerificationReport:
    metadata = RngMetadata(
        round_id=proof.round_id,
        raw_random_bytes=proof.raw_random_bytes,
        time_seed=proof.time_seed,
        deck_hash=proof.deck_hash,
        shuffled_deck=proof.shuffled_deck,
    )
    return verify_round(metadata, None, concluded=True)


def build_proof(metadata: RngMetadata, concluded: bool) -> ProofExport:
    if not concluded or not metadata.is_revealed:
        raise UnavailableFault(ROUND_NOT_CONCLUDED)
    return ProofExport(
        round_id=metadata.round_id,
        raw_random_bytes=list(metadata.raw_random_bytes),
        time_seed=metadata.time_seed,
        deck_hash=metadata.deck_hash,
        shuffled_deck=list(metadata.shuffled_deck),
    )
