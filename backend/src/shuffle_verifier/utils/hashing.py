from __future__ import annotations

import hashlib
import json
from collections.abc import Iterable
from typing import Any

from shuffle_verifier.engine.errors import ValueOutOfRange
from shuffle_verifier.utils.cards import Card, check_position


ROUND_ID_BYTES = 8
U64_MAX = 2**64 - 1


def stable_hash(payload: Any) -> str:
    encoded = json.dumps(payload, sort_keys=True, separators=(",", ":")).encode(
        "utf-8",
    )
    return hashlib.sha256(encoded).hexdigest()


def check_u64(name: str, value: int) -> int:
    if not 0 <= value <= U64_MAX:
        raise ValueOutOfRange(name, value)
    return value


def card_hash(round_id: int, card: Card, position: int) -> str:
    """Commitment for one card: SHA-256(round_id LE u64 || "Rank:Suit" || position u8)."""
    check_position(position)
    check_u64("round_id", round_id)
    digest = hashlib.sha256()
    digest.update(round_id.to_bytes(ROUND_ID_BYTES, byteorder="little", signed=False))
    digest.update(card.encode().encode("utf-8"))
    digest.update(bytes([position]))
    return digest.hexdigest()


def deck_hash(ordered_cards: Iterable[Card]) -> str:
    combined = "".join(card.encode() for card in ordered_cards)
    return hashlib.sha256(combined.encode("utf-8")).hexdigest()


def shorten_hash(value: str, prefix_length: int = 8, suffix_length: int = 4) -> str:
    if len(value) <= prefix_length + suffix_length:
        return value
    return f"{value[:prefix_length]}...{value[-suffix_length:]}"
