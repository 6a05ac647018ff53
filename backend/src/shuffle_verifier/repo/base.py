from __future__ import annotations

from abc import ABC, abstractmethod

from shuffle_verifier.engine.internal import TableRuntime
from shuffle_verifier.engine.models import CardProvenance, RngMetadata


class TableRepository(ABC):
    @abstractmethod
    def create(self, table: TableRuntime) -> None:
        raise NotImplementedError

    @abstractmethod
    def get(self, table_id: str) -> TableRuntime:
        raise NotImplementedError

    @abstractmethod
    def all(self) -> list[TableRuntime]:
        raise NotImplementedError


class ProvenanceSource(ABC):
    """The dealer backend, as seen from the verifying client."""

    @abstractmethod
    async def get_rng_metadata(self, round_id: int) -> RngMetadata:
        raise NotImplementedError

    @abstractmethod
    async def get_card_provenance(self, round_id: int) -> list[CardProvenance]:
        raise NotImplementedError

    @abstractmethod
    async def request_server_verification(self, round_id: int) -> bool:
        raise NotImplementedError
