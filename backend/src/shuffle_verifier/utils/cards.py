from __future__ import annotations

from enum import Enum

from pokerkit import Card as PokerkitCard
from pydantic import BaseModel, ConfigDict

from shuffle_verifier.engine.errors import CardEncodingError, PositionOutOfRange


DECK_SIZE = 52


class Rank(str, Enum):
    TWO = "Two"
    THREE = "Three"
    FOUR = "Four"
    FIVE = "Five"
    SIX = "Six"
    SEVEN = "Seven"
    EIGHT = "Eight"
    NINE = "Nine"
    TEN = "Ten"
    JACK = "Jack"
    QUEEN = "Queen"
    KING = "King"
    ACE = "Ace"


class Suit(str, Enum):
    SPADE = "Spade"
    CLUB = "Club"
    HEART = "Heart"
    DIAMOND = "Diamond"


# Sort order of the server's unshuffled deck: rank-major, then suit.
RANKS: tuple[Rank, ...] = tuple(Rank)
SUITS: tuple[Suit, ...] = tuple(Suit)

_SHORT_RANKS = dict(zip("23456789TJQKA", RANKS))
_SHORT_SUITS = {"s": Suit.SPADE, "c": Suit.CLUB, "h": Suit.HEART, "d": Suit.DIAMOND}


class Card(BaseModel):
    rank: Rank
    suit: Suit

    model_config = ConfigDict(extra="forbid", frozen=True)

    def encode(self) -> str:
        return f"{self.rank.value}:{self.suit.value}"

    @classmethod
    def decode(cls, raw: str) -> "Card":
        rank_text, sep, suit_text = raw.partition(":")
        if not sep:
            raise CardEncodingError(f"card encoding {raw!r} is missing ':'")
        try:
            return cls(rank=Rank(rank_text), suit=Suit(suit_text))
        except ValueError as exc:
            raise CardEncodingError(f"unknown card encoding {raw!r}") from exc

    def __str__(self) -> str:
        return self.encode()


def parse_short_cards(raw: str) -> list[Card]:
    """Parse short notation such as ``"AsKd"`` used by the rules engine."""
    try:
        parsed = list(PokerkitCard.parse(raw))
    except ValueError as exc:
        raise CardEncodingError(f"cannot parse cards {raw!r}") from exc

    cards: list[Card] = []
    for item in parsed:
        rank = _SHORT_RANKS.get(str(item.rank.value))
        suit = _SHORT_SUITS.get(str(item.suit.value))
        if rank is None or suit is None:
            raise CardEncodingError(f"unknown card {item!r} in {raw!r}")
        cards.append(Card(rank=rank, suit=suit))
    return cards


def coerce_card(raw: Card | str | dict) -> Card:
    if isinstance(raw, Card):
        return raw
    if isinstance(raw, dict):
        return Card.model_validate(raw)
    if ":" in raw:
        return Card.decode(raw)
    cards = parse_short_cards(raw)
    if len(cards) != 1:
        raise CardEncodingError(f"expected exactly one card in {raw!r}")
    return cards[0]


def build_sorted_deck() -> list[Card]:
    return [Card(rank=rank, suit=suit) for rank in RANKS for suit in SUITS]


def check_position(position: int) -> int:
    if not 0 <= position < DECK_SIZE:
        raise PositionOutOfRange(position)
    return position
