"""Deterministic replay of the dealer's shuffle.

The dealer commits to ``deck_hash`` before dealing, publishing the raw entropy
bytes alongside it. Once the round ends it reveals ``time_seed``; with both
inputs the deck is rebuilt here bit-for-bit and hashed again. Any divergence
from the dealer's algorithm makes every verdict meaningless, so nothing in
this module approximates.
"""

from __future__ import annotations

import hashlib
from collections.abc import Sequence

from shuffle_verifier.engine.errors import UnavailableFault
from shuffle_verifier.utils.cards import Card, build_sorted_deck
from shuffle_verifier.utils.hashing import check_u64


def seeded_index_hash(time_seed: int, index: int) -> int:
    check_u64("time_seed", time_seed)
    check_u64("index", index)
    raw = time_seed.to_bytes(8, byteorder="little", signed=False) + index.to_bytes(
        8,
        byteorder="little",
        signed=False,
    )
    digest = hashlib.sha256(raw).digest()
    return int.from_bytes(digest[:8], byteorder="little", signed=False)


def reshuffle_bytes(raw_random_bytes: Sequence[int], time_seed: int) -> list[int]:
    """Permute the entropy bytes with a seeded descending index swap."""
    data = list(raw_random_bytes)
    if len(data) <= 1:
        return data

    indices = list(range(len(data)))
    for i in range(len(indices) - 1, 0, -1):
        j = seeded_index_hash(time_seed, i) % (i + 1)
        indices[i], indices[j] = indices[j], indices[i]
    return [data[source] for source in indices]


def fisher_yates(deck: list[Card], entropy: Sequence[int]) -> list[Card]:
    """One entropy byte per step, each draw modulo the remaining length."""
    cards = list(deck)
    n = len(cards)
    for i in range(n - 1):
        remaining = n - i
        j = i + entropy[i % len(entropy)] % remaining
        cards[i], cards[j] = cards[j], cards[i]
    return cards


def reconstruct_deck(raw_random_bytes: Sequence[int], time_seed: int | None) -> list[Card]:
    if not raw_random_bytes:
        raise UnavailableFault("raw random bytes are not available")
    if not time_seed:
        raise UnavailableFault("time seed has not been revealed")
    check_u64("time_seed", time_seed)

    derived = reshuffle_bytes(raw_random_bytes, time_seed)
    return fisher_yates(build_sorted_deck(), derived)
