from __future__ import annotations

import asyncio
from dataclasses import dataclass, field

from shuffle_verifier.engine.models import (
    GamePhaseSignal,
    PlayerId,
    RngMetadata,
    VerificationReport,
)
from shuffle_verifier.engine.provenance import ProvenanceStore
from shuffle_verifier.engine.reveal import RevealOrderCache, RevealScheduler
from shuffle_verifier.utils.cards import Card


@dataclass
class RoundRuntime:
    round_id: int
    metadata: RngMetadata
    store: ProvenanceStore
    reveal_cache: RevealOrderCache
    signal: GamePhaseSignal | None = None
    report: VerificationReport | None = None
    known_hands: dict[PlayerId, list[Card]] = field(default_factory=dict)

    @property
    def concluded(self) -> bool:
        return self.signal is not None and self.signal.concluded

    def absorb_signal(self, signal: GamePhaseSignal) -> None:
        """Record ``signal`` as current, keeping every hole card seen so far this round.

        Signals are snapshots and may omit a viewer's hand; what a viewer
        is known to hold only accumulates until the round changes.
        """
        for player_id, cards in signal.viewer_hole_cards.items():
            known = self.known_hands.setdefault(player_id, [])
            for card in cards:
                if card not in known:
                    known.append(card)
        self.signal = signal.model_copy(
            update={"viewer_hole_cards": {player: list(cards) for player, cards in self.known_hands.items()}},
        )


@dataclass
class TableRuntime:
    table_id: str
    scheduler: RevealScheduler
    current_round: RoundRuntime | None = None
    pending_signal: GamePhaseSignal | None = None
    lock: asyncio.Lock = field(default_factory=asyncio.Lock)
