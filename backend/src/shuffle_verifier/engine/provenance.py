from __future__ import annotations

import logging
from collections.abc import Iterable

from shuffle_verifier.engine.errors import DomainFault, IntegrityFault, RoundScopeError
from shuffle_verifier.engine.models import CardProvenance, PlayerId
from shuffle_verifier.utils.cards import DECK_SIZE, Card, check_position
from shuffle_verifier.utils.hashing import card_hash


logger = logging.getLogger(__name__)


class ProvenanceStore:
    """Per-position provenance records for exactly one round.

    Records only ever gain information. A record that contradicts what is
    already known (different card, different committed hash, different
    recipient) means the server sent corrupted or malicious data and raises
    ``IntegrityFault`` instead of overwriting.
    """

    def __init__(self, round_id: int) -> None:
        self.round_id = round_id
        self._slots: list[CardProvenance | None] = [None] * DECK_SIZE
        self._faults: list[DomainFault] = []

    @classmethod
    def populated_from(cls, round_id: int, records: Iterable[CardProvenance]) -> "ProvenanceStore":
        store = cls(round_id)
        store.upsert_many(records)
        return store

    def __len__(self) -> int:
        return sum(1 for slot in self._slots if slot is not None)

    @property
    def faults(self) -> list[DomainFault]:
        return list(self._faults)

    def upsert(self, provenance: CardProvenance) -> CardProvenance:
        if provenance.round_id != self.round_id:
            raise RoundScopeError(
                f"record for round {provenance.round_id} offered to store for round {self.round_id}",
            )
        position = provenance.position

        if provenance.card is not None:
            expected = card_hash(self.round_id, provenance.card, position)
            if expected != provenance.committed_hash:
                raise IntegrityFault(
                    f"committed hash at position {position} does not match {provenance.card}",
                    code="CARD_HASH_MISMATCH",
                )

        current = self._slots[position]
        merged = provenance if current is None else self._merge(current, provenance)
        if merged.card is not None and (current is None or current.card is None):
            self._check_duplicate(merged)
        self._slots[position] = merged
        return merged

    def upsert_many(self, records: Iterable[CardProvenance]) -> None:
        for record in records:
            self.upsert(record)

    def lookup(self, position: int) -> CardProvenance | None:
        return self._slots[check_position(position)]

    def lookup_by_card(self, card: Card) -> CardProvenance | None:
        for slot in self._slots:
            if slot is not None and slot.card == card:
                return slot
        # Card values may be withheld; the commitment still identifies the slot.
        for position, slot in enumerate(self._slots):
            if slot is not None and slot.card is None:
                if card_hash(self.round_id, card, position) == slot.committed_hash:
                    return slot
        return None

    def positions_for(self, player_id: PlayerId) -> list[int]:
        return [
            slot.position
            for slot in self._slots
            if slot is not None and slot.recipient == player_id
        ]

    def community_positions(self) -> list[int]:
        return [
            slot.position
            for slot in self._slots
            if slot is not None
            and slot.recipient is None
            and slot.dealt_at_stage is not None
            and slot.dealt_at_stage.is_community
        ]

    def committed_hashes(self) -> dict[int, str]:
        return {slot.position: slot.committed_hash for slot in self._slots if slot is not None}

    def records(self) -> list[CardProvenance]:
        return [slot for slot in self._slots if slot is not None]

    def snapshot(self) -> tuple[CardProvenance | None, ...]:
        return tuple(self._slots)

    def _merge(self, current: CardProvenance, incoming: CardProvenance) -> CardProvenance:
        position = current.position
        if current.committed_hash != incoming.committed_hash:
            raise IntegrityFault(
                f"committed hash at position {position} changed after commit",
                code="COMMITMENT_CHANGED",
            )
        if current.card is not None and incoming.card is not None and current.card != incoming.card:
            raise IntegrityFault(
                f"position {position} already holds {current.card}, got {incoming.card}",
                code="CARD_CONFLICT",
            )
        if (
            current.recipient is not None
            and incoming.recipient is not None
            and current.recipient != incoming.recipient
        ):
            raise IntegrityFault(
                f"position {position} already dealt to {current.recipient}, got {incoming.recipient}",
                code="RECIPIENT_CONFLICT",
            )

        return current.model_copy(
            update={
                "card": current.card or incoming.card,
                "original_position": _first_set(current.original_position, incoming.original_position),
                "recipient": current.recipient or incoming.recipient,
                "dealt_at_stage": current.dealt_at_stage or incoming.dealt_at_stage,
            },
        )

    def _check_duplicate(self, record: CardProvenance) -> None:
        for slot in self._slots:
            if slot is None or slot.position == record.position:
                continue
            if slot.card == record.card:
                fault = DomainFault(
                    f"{record.card} committed at positions {slot.position} and {record.position}",
                    code="DUPLICATE_CARD",
                )
                logger.warning("round %s: %s", self.round_id, fault.message)
                self._faults.append(fault)
                return


def _first_set(current: int | None, incoming: int | None) -> int | None:
    return current if current is not None else incoming

