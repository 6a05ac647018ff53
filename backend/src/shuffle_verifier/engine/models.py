from __future__ import annotations

from enum import Enum

from pydantic import BaseModel, ConfigDict, Field, field_validator

from shuffle_verifier.utils.cards import DECK_SIZE, Card, coerce_card
from shuffle_verifier.utils.hashing import U64_MAX


ENGINE_VERSION = "0.1.0"

PlayerId = str


class Stage(str, Enum):
    OPENING = "opening"
    FLOP = "flop"
    TURN = "turn"
    RIVER = "river"
    SHOWDOWN = "showdown"

    @property
    def order(self) -> int:
        return _STAGE_ORDER.index(self)

    @property
    def is_community(self) -> bool:
        return self in (Stage.FLOP, Stage.TURN, Stage.RIVER)

    @property
    def expected_community_cards(self) -> int:
        return _EXPECTED_COMMUNITY[self]


_STAGE_ORDER = (Stage.OPENING, Stage.FLOP, Stage.TURN, Stage.RIVER, Stage.SHOWDOWN)
_EXPECTED_COMMUNITY = {
    Stage.OPENING: 0,
    Stage.FLOP: 3,
    Stage.TURN: 4,
    Stage.RIVER: 5,
    Stage.SHOWDOWN: 5,
}


class SeatStatus(str, Enum):
    ACTIVE = "active"
    FOLDED = "folded"
    SITTING_OUT = "sitting_out"
    JOINING = "joining"
    EMPTY = "empty"


class ActionType(str, Enum):
    FOLD = "fold"
    CHECK = "check"
    CALL = "call"
    BET = "bet"
    RAISE = "raise"
    ALL_IN = "all_in"

    @property
    def is_aggressive(self) -> bool:
        return self in (ActionType.BET, ActionType.RAISE, ActionType.ALL_IN)


class VerificationStatus(str, Enum):
    PENDING = "pending"
    VERIFIED = "verified"
    FAILED = "failed"


class CardKind(str, Enum):
    OWN = "own"
    COMMUNITY = "community"
    SHOWDOWN = "showdown"
    HIDDEN = "hidden"


class InferenceSource(str, Enum):
    TAGGED = "tagged"
    OFFSET = "offset"
    LOCAL_SEARCH = "local_search"
    FALLBACK = "fallback"


class Confidence(str, Enum):
    EXACT = "exact"
    INFERRED = "inferred"
    LOW = "low"


def _check_byte_values(value: list[int]) -> list[int]:
    if any(not 0 <= item <= 255 for item in value):
        raise ValueError("raw_random_bytes must hold values in [0, 255]")
    return value


class CardProvenance(BaseModel):
    round_id: int = Field(ge=0, le=U64_MAX)
    position: int = Field(ge=0, lt=DECK_SIZE)
    card: Card | None = None
    committed_hash: str
    original_position: int | None = Field(default=None, ge=0, lt=DECK_SIZE)
    recipient: PlayerId | None = None
    dealt_at_stage: Stage | None = None

    model_config = ConfigDict(extra="forbid", frozen=True)

    @field_validator("card", mode="before")
    @classmethod
    def coerce_card_value(cls, value):
        if value is None:
            return None
        return coerce_card(value)


class RngMetadata(BaseModel):
    round_id: int = Field(ge=0, le=U64_MAX)
    raw_random_bytes: list[int] = Field(default_factory=list)
    time_seed: int = Field(default=0, ge=0, le=U64_MAX)
    timestamp_ns: int = Field(default=0, ge=0)
    deck_hash: str
    transaction_id: str | None = None
    shuffled_deck: list[Card] = Field(default_factory=list)

    model_config = ConfigDict(extra="forbid")

    @field_validator("raw_random_bytes")
    @classmethod
    def check_bytes(cls, value: list[int]) -> list[int]:
        return _check_byte_values(value)

    @field_validator("shuffled_deck", mode="before")
    @classmethod
    def coerce_deck(cls, value):
        return [coerce_card(item) for item in value or []]

    @property
    def seed_revealed(self) -> bool:
        return self.time_seed != 0

    @property
    def deck_revealed(self) -> bool:
        return len(self.shuffled_deck) == DECK_SIZE

    @property
    def is_revealed(self) -> bool:
        return self.seed_revealed and self.deck_revealed and bool(self.raw_random_bytes)


class SeatInfo(BaseModel):
    seat_index: int = Field(ge=0)
    player_id: PlayerId | None = None
    status: SeatStatus = SeatStatus.ACTIVE

    model_config = ConfigDict(extra="forbid")

    @property
    def dealt_in(self) -> bool:
        return self.player_id is not None and self.status in (
            SeatStatus.ACTIVE,
            SeatStatus.FOLDED,
        )


class ActionLogEntry(BaseModel):
    player_id: PlayerId | None = None
    seat_index: int | None = None
    action: ActionType
    stage: Stage

    model_config = ConfigDict(extra="forbid")


class GamePhaseSignal(BaseModel):
    round_id: int = Field(ge=0, le=U64_MAX)
    stage: Stage = Stage.OPENING
    concluded: bool = False
    seats: list[SeatInfo] = Field(default_factory=list)
    dealer_seat_index: int = 0
    action_log: list[ActionLogEntry] = Field(default_factory=list)
    last_aggressor: PlayerId | None = None
    showdown_contestants: list[PlayerId] = Field(default_factory=list)
    board_cards: list[Card] = Field(default_factory=list)
    showdown_hands: dict[PlayerId, list[Card]] = Field(default_factory=dict)
    viewer_hole_cards: dict[PlayerId, list[Card]] = Field(default_factory=dict)

    model_config = ConfigDict(extra="forbid")

    @field_validator("board_cards", mode="before")
    @classmethod
    def coerce_board(cls, value):
        return [coerce_card(item) for item in value or []]

    @field_validator("showdown_hands", "viewer_hole_cards", mode="before")
    @classmethod
    def coerce_hands(cls, value):
        return {
            player: [coerce_card(item) for item in cards]
            for player, cards in (value or {}).items()
        }

    @property
    def non_folded_players(self) -> list[PlayerId]:
        return [
            seat.player_id
            for seat in self.seats
            if seat.player_id is not None and seat.status is SeatStatus.ACTIVE
        ]

    @property
    def contestants(self) -> list[PlayerId]:
        return list(self.showdown_contestants) or self.non_folded_players

    @property
    def round_over(self) -> bool:
        return self.concluded or self.stage is Stage.SHOWDOWN

    @property
    def is_showdown(self) -> bool:
        return self.round_over and len(self.contestants) >= 2


class VisibleCard(BaseModel):
    position: int
    committed_hash: str
    card: Card | None = None
    visible: bool = False
    kind: CardKind = CardKind.HIDDEN
    owner: PlayerId | None = None

    model_config = ConfigDict(extra="forbid")


class VisibilityView(BaseModel):
    round_id: int
    viewer: PlayerId
    positions: dict[int, VisibleCard]
    faults: list[str] = Field(default_factory=list)

    model_config = ConfigDict(extra="forbid")

    @property
    def visible_positions(self) -> set[int]:
        return {position for position, slot in self.positions.items() if slot.visible}


class InferredCard(BaseModel):
    position: int
    source: InferenceSource
    verified: bool = True

    model_config = ConfigDict(extra="forbid", frozen=True)


class SeatInference(BaseModel):
    seat_index: int
    player_id: PlayerId
    deal_offset: int
    cards: list[InferredCard] = Field(default_factory=list)
    complete: bool = False
    confidence: Confidence = Confidence.LOW

    model_config = ConfigDict(extra="forbid")

    @property
    def positions(self) -> list[int]:
        return [card.position for card in self.cards]


class DealInference(BaseModel):
    round_id: int
    viewer: PlayerId
    hole_cards_per_player: int
    viewer_positions: list[int]
    seats: list[SeatInference] = Field(default_factory=list)

    model_config = ConfigDict(extra="forbid")

    def for_player(self, player_id: PlayerId) -> SeatInference | None:
        return next((seat for seat in self.seats if seat.player_id == player_id), None)


class VerificationReport(BaseModel):
    round_id: int
    status: VerificationStatus
    expected_deck_hash: str | None = None
    calculated_deck_hash: str | None = None
    mismatched_card_hashes: list[int] = Field(default_factory=list)
    deck_mismatch_positions: list[int] = Field(default_factory=list)
    reason: str | None = None

    model_config = ConfigDict(extra="forbid")


class ProofExport(BaseModel):
    round_id: int = Field(ge=0, le=U64_MAX)
    raw_random_bytes: list[int]
    time_seed: int = Field(ge=0, le=U64_MAX)
    deck_hash: str
    shuffled_deck: list[Card]

    model_config = ConfigDict(extra="forbid")

    @field_validator("raw_random_bytes")
    @classmethod
    def check_bytes(cls, value: list[int]) -> list[int]:
        return _check_byte_values(value)

    @field_validator("shuffled_deck", mode="before")
    @classmethod
    def coerce_deck(cls, value):
        return [coerce_card(item) for item in value or []]


class RevealProgress(BaseModel):
    round_id: int
    order: list[PlayerId]
    disclosed: list[PlayerId]

    model_config = ConfigDict(extra="forbid")

    @property
    def complete(self) -> bool:
        return len(self.disclosed) == len(self.order)


class RevealEvent(BaseModel):
    round_id: int
    player_id: PlayerId
    index: int
    ts: str

    model_config = ConfigDict(extra="forbid")


class AttestationResult(BaseModel):
    round_id: int
    local_status: VerificationStatus
    server_verified: bool
    agrees: bool

    model_config = ConfigDict(extra="forbid")


class SyncResult(BaseModel):
    round_id: int
    records: int
    round_changed: bool
    faults: list[str] = Field(default_factory=list)

    model_config = ConfigDict(extra="forbid")
