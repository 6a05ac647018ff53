from __future__ import annotations

from shuffle_verifier.engine.errors import TableNotFound, TransportFault
from shuffle_verifier.engine.internal import TableRuntime
from shuffle_verifier.engine.models import CardProvenance, RngMetadata
from shuffle_verifier.repo.base import ProvenanceSource, TableRepository


class InMemoryTableRepository(TableRepository):
    def __init__(self) -> None:
        self._tables: dict[str, TableRuntime] = {}

    def create(self, table: TableRuntime) -> None:
        self._tables[table.table_id] = table

    def get(self, table_id: str) -> TableRuntime:
        if table_id not in self._tables:
            raise TableNotFound(f"table {table_id} not found")
        return self._tables[table_id]

    def all(self) -> list[TableRuntime]:
        return list(self._tables.values())


class InMemoryProvenanceSource(ProvenanceSource):
    """Serves rounds published in-process; handy for tests and local demos."""

    def __init__(self) -> None:
        self._metadata: dict[int, RngMetadata] = {}
        self._provenance: dict[int, list[CardProvenance]] = {}
        self._server_verdicts: dict[int, bool] = {}
        self.failures_remaining = 0
        self.calls = 0

    def publish(
        self,
        metadata: RngMetadata,
        provenance: list[CardProvenance],
        server_verified: bool = True,
    ) -> None:
        self._metadata[metadata.round_id] = metadata
        self._provenance[metadata.round_id] = list(provenance)
        self._server_verdicts[metadata.round_id] = server_verified

    def fail_next(self, count: int = 1) -> None:
        self.failures_remaining = count

    def _maybe_fail(self) -> None:
        self.calls += 1
        if self.failures_remaining > 0:
            self.failures_remaining -= 1
            raise TransportFault("simulated transport failure")

    async def get_rng_metadata(self, round_id: int) -> RngMetadata:
        self._maybe_fail()
        if round_id not in self._metadata:
            raise TransportFault(f"round {round_id} not published", code="ROUND_NOT_FOUND")
        return self._metadata[round_id]

    async def get_card_provenance(self, round_id: int) -> list[CardProvenance]:
        self._maybe_fail()
        return list(self._provenance.get(round_id, []))

    async def request_server_verification(self, round_id: int) -> bool:
        self._maybe_fail()
        return self._server_verdicts.get(round_id, False)
