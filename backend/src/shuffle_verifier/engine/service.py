from __future__ import annotations

import asyncio
import logging
from collections import defaultdict
from collections.abc import Awaitable, Callable
from typing import TypeVar
from uuid import uuid4

from shuffle_verifier.config import VerifierConfig
from shuffle_verifier.engine.errors import (
    IntegrityFault,
    RoundScopeError,
    TransportFault,
    UnavailableFault,
)
from shuffle_verifier.engine.inference import infer_deal_order
from shuffle_verifier.engine.internal import RoundRuntime, TableRuntime
from shuffle_verifier.engine.models import (
    AttestationResult,
    CardProvenance,
    DealInference,
    GamePhaseSignal,
    PlayerId,
    ProofExport,
    RevealEvent,
    RevealProgress,
    RngMetadata,
    SyncResult,
    VerificationReport,
    VerificationStatus,
    VisibilityView,
)
from shuffle_verifier.engine.provenance import ProvenanceStore
from shuffle_verifier.engine.reveal import RevealOrderCache, RevealScheduler
from shuffle_verifier.engine.verification import ROUND_NOT_CONCLUDED, build_proof, verify_round
from shuffle_verifier.engine.visibility import resolve_visibility, showdown_positions
from shuffle_verifier.repo.base import ProvenanceSource, TableRepository
from shuffle_verifier.repo.in_memory import InMemoryTableRepository
from shuffle_verifier.utils.cards import Card


logger = logging.getLogger(__name__)

T = TypeVar("T")


class VerificationService:
    def __init__(
        self,
        source: ProvenanceSource,
        repository: TableRepository | None = None,
        config: VerifierConfig | None = None,
    ) -> None:
        self._source = source
        self._repo = repository or InMemoryTableRepository()
        self._config = config or VerifierConfig()
        self._subscriptions: dict[str, set[asyncio.Queue[RevealEvent]]] = defaultdict(set)

    @property
    def config(self) -> VerifierConfig:
        return self._config

    async def open_table(self, table_id: str | None = None) -> str:
        table_id = table_id or f"tbl_{uuid4().hex[:12]}"
        scheduler = RevealScheduler(
            delay_ms=self._config.reveal_delay_ms,
            on_disclose=lambda event: self._emit_event(table_id, event),
        )
        self._repo.create(TableRuntime(table_id=table_id, scheduler=scheduler))
        return table_id

    async def close_table(self, table_id: str) -> None:
        table = self._repo.get(table_id)
        async with table.lock:
            table.scheduler.cancel_all()
            table.current_round = None
            table.pending_signal = None

    async def shutdown(self) -> None:
        for table in self._repo.all():
            table.scheduler.cancel_all()

    async def sync_round(self, table_id: str, round_id: int) -> SyncResult:
        """Pull metadata and provenance for ``round_id`` and fold them in.

        Network reads happen before the lock is taken and are retried; a
        transport failure leaves the cached round untouched. A new round id
        replaces the whole round runtime in one assignment.
        """
        table = self._repo.get(table_id)
        metadata = await self._with_retry(
            f"rng metadata for round {round_id}",
            lambda: self._source.get_rng_metadata(round_id),
        )
        records = await self._with_retry(
            f"provenance for round {round_id}",
            lambda: self._source.get_card_provenance(round_id),
        )

        async with table.lock:
            current = table.current_round
            if current is not None and round_id < current.round_id:
                raise RoundScopeError(
                    f"round {round_id} is older than current round {current.round_id}",
                )
            if metadata.round_id != round_id:
                raise RoundScopeError(
                    f"asked for round {round_id}, backend answered with round {metadata.round_id}",
                )

            if current is None or current.round_id != round_id:
                runtime = self._start_round(table, metadata, records)
                return SyncResult(
                    round_id=round_id,
                    records=len(runtime.store),
                    round_changed=True,
                    faults=[fault.message for fault in runtime.store.faults],
                )

            self._enrich_round(current, metadata, records)
            return SyncResult(
                round_id=round_id,
                records=len(current.store),
                round_changed=False,
                faults=[fault.message for fault in current.store.faults],
            )

    async def apply_phase_signal(self, table_id: str, signal: GamePhaseSignal) -> RevealProgress:
        table = self._repo.get(table_id)
        async with table.lock:
            runtime = table.current_round
            if runtime is not None and signal.round_id < runtime.round_id:
                raise RoundScopeError(
                    f"phase signal for round {signal.round_id} is older than round {runtime.round_id}",
                )
            if runtime is None or runtime.round_id != signal.round_id:
                # Held until the round is synced; the old round's reveal stops now.
                if runtime is not None:
                    table.scheduler.cancel(runtime.round_id)
                table.pending_signal = signal
                return RevealProgress(round_id=signal.round_id, order=[], disclosed=[])

            runtime.absorb_signal(signal)
            self._schedule_reveal(table, runtime)
            return self._progress(table, runtime)

    async def visible_positions(self, table_id: str, viewer: PlayerId) -> VisibilityView:
        table = self._repo.get(table_id)
        async with table.lock:
            runtime = self._require_round(table)
            signal = runtime.signal or GamePhaseSignal(round_id=runtime.round_id)
            disclosed = table.scheduler.disclosed(runtime.round_id)

            contestants = showdown_positions(runtime.store, signal)
            if signal.is_showdown and any(not found for found in contestants.values()):
                inference = self._infer(runtime, signal, viewer)
                for player_id, found in contestants.items():
                    seat = inference.for_player(player_id)
                    if found or seat is None or not seat.complete:
                        continue
                    cards = {position: self._card_at(runtime, position) for position in seat.positions}
                    # Inferred slots without a known value stay hidden.
                    if all(card is not None for card in cards.values()):
                        contestants[player_id] = cards

            view = resolve_visibility(viewer, runtime.store, signal, disclosed, contestants)
            for fault in view.faults:
                logger.warning("table %s round %s: %s", table_id, runtime.round_id, fault)
            return view

    async def infer_seats(self, table_id: str, viewer: PlayerId) -> DealInference:
        table = self._repo.get(table_id)
        async with table.lock:
            runtime = self._require_round(table)
            signal = runtime.signal or GamePhaseSignal(round_id=runtime.round_id)
            return self._infer(runtime, signal, viewer)

    async def verify(self, table_id: str) -> VerificationReport:
        table = self._repo.get(table_id)
        async with table.lock:
            runtime = self._require_round(table)
            return self._verify_locked(runtime)

    async def verification_status(self, table_id: str) -> VerificationStatus:
        report = await self.verify(table_id)
        return report.status

    async def reveal_progress(self, table_id: str) -> RevealProgress:
        table = self._repo.get(table_id)
        async with table.lock:
            runtime = self._require_round(table)
            return self._progress(table, runtime)

    async def export_proof(self, table_id: str) -> ProofExport:
        table = self._repo.get(table_id)
        async with table.lock:
            runtime = self._require_round(table)
            return build_proof(runtime.metadata, runtime.concluded)

    async def cross_check_server(self, table_id: str) -> AttestationResult:
        """Compare our own verdict with the server's attestation.

        The two are never reconciled: a disagreement is reported as such.
        """
        table = self._repo.get(table_id)
        async with table.lock:
            runtime = self._require_round(table)
            report = self._verify_locked(runtime)
        if report.status is VerificationStatus.PENDING:
            raise UnavailableFault(ROUND_NOT_CONCLUDED)

        server_verified = await self._with_retry(
            f"server verification for round {report.round_id}",
            lambda: self._source.request_server_verification(report.round_id),
        )
        local_verified = report.status is VerificationStatus.VERIFIED
        agrees = server_verified == local_verified
        if not agrees:
            logger.error(
                "table %s round %s: server attestation (%s) disagrees with local verdict (%s)",
                table_id,
                report.round_id,
                server_verified,
                report.status.value,
            )
        return AttestationResult(
            round_id=report.round_id,
            local_status=report.status,
            server_verified=server_verified,
            agrees=agrees,
        )

    async def subscribe(self, table_id: str) -> asyncio.Queue[RevealEvent]:
        table = self._repo.get(table_id)
        queue: asyncio.Queue[RevealEvent] = asyncio.Queue(maxsize=256)
        async with table.lock:
            self._subscriptions[table_id].add(queue)
        return queue

    async def unsubscribe(self, table_id: str, queue: asyncio.Queue[RevealEvent]) -> None:
        table = self._repo.get(table_id)
        async with table.lock:
            self._subscriptions[table_id].discard(queue)

    async def wait_for_reveal(self, table_id: str) -> RevealProgress:
        table = self._repo.get(table_id)
        runtime = self._require_round(table)
        await table.scheduler.wait(runtime.round_id)
        return await self.reveal_progress(table_id)

    def _start_round(
        self,
        table: TableRuntime,
        metadata: RngMetadata,
        records: list[CardProvenance],
    ) -> RoundRuntime:
        round_id = metadata.round_id
        previous = table.current_round
        table.scheduler.cancel_all()

        runtime = RoundRuntime(
            round_id=round_id,
            metadata=metadata,
            store=ProvenanceStore(round_id),
            reveal_cache=RevealOrderCache(round_id),
        )
        if table.pending_signal is not None and table.pending_signal.round_id == round_id:
            runtime.absorb_signal(table.pending_signal)
        table.pending_signal = None

        try:
            runtime.store = ProvenanceStore.populated_from(round_id, records)
        except IntegrityFault as exc:
            table.current_round = runtime
            self._fail_round(runtime, exc)
            raise

        table.current_round = runtime
        logger.info(
            "table %s: round %s -> %s (%d provenance records)",
            table.table_id,
            previous.round_id if previous else None,
            round_id,
            len(runtime.store),
        )
        if runtime.signal is not None:
            self._schedule_reveal(table, runtime)
        return runtime

    def _enrich_round(
        self,
        runtime: RoundRuntime,
        metadata: RngMetadata,
        records: list[CardProvenance],
    ) -> None:
        known = runtime.metadata
        try:
            if metadata.deck_hash != known.deck_hash:
                raise IntegrityFault(
                    f"deck hash commitment for round {runtime.round_id} changed",
                    code="COMMITMENT_CHANGED",
                )
            if known.raw_random_bytes and metadata.raw_random_bytes != known.raw_random_bytes:
                raise IntegrityFault(
                    f"raw random bytes for round {runtime.round_id} changed",
                    code="COMMITMENT_CHANGED",
                )
            store = ProvenanceStore.populated_from(
                runtime.round_id,
                [*runtime.store.records(), *records],
            )
        except IntegrityFault as exc:
            self._fail_round(runtime, exc)
            raise

        runtime.store = store
        runtime.metadata = metadata

    def _fail_round(self, runtime: RoundRuntime, exc: IntegrityFault) -> None:
        logger.error("round %s integrity fault [%s]: %s", runtime.round_id, exc.code, exc.message)
        runtime.report = VerificationReport(
            round_id=runtime.round_id,
            status=VerificationStatus.FAILED,
            expected_deck_hash=runtime.metadata.deck_hash,
            reason=exc.message,
        )

    def _verify_locked(self, runtime: RoundRuntime) -> VerificationReport:
        # A failed round stays failed; nothing re-runs it into a pass.
        if runtime.report is not None and runtime.report.status is VerificationStatus.FAILED:
            return runtime.report
        report = verify_round(runtime.metadata, runtime.store, runtime.concluded)
        runtime.report = report
        return report

    def _schedule_reveal(self, table: TableRuntime, runtime: RoundRuntime) -> None:
        signal = runtime.signal
        if signal is None or not signal.round_over:
            return
        order = runtime.reveal_cache.get_or_compute(signal)
        table.scheduler.schedule(runtime.round_id, order)

    def _progress(self, table: TableRuntime, runtime: RoundRuntime) -> RevealProgress:
        order = runtime.reveal_cache.order or ()
        return RevealProgress(
            round_id=runtime.round_id,
            order=list(order),
            disclosed=list(table.scheduler.disclosed(runtime.round_id)),
        )

    def _infer(self, runtime: RoundRuntime, signal: GamePhaseSignal, viewer: PlayerId) -> DealInference:
        return infer_deal_order(
            viewer,
            runtime.store,
            signal.seats,
            signal.dealer_seat_index,
            viewer_cards=signal.viewer_hole_cards.get(viewer, []),
            hole_cards_per_player=self._config.default_hole_cards,
            search_radius=self._config.local_search_radius,
        )

    def _card_at(self, runtime: RoundRuntime, position: int) -> Card | None:
        record = runtime.store.lookup(position)
        if record is not None and record.card is not None:
            return record.card
        if runtime.metadata.deck_revealed:
            return runtime.metadata.shuffled_deck[position]
        return None

    def _require_round(self, table: TableRuntime) -> RoundRuntime:
        if table.current_round is None:
            raise UnavailableFault(f"table {table.table_id} has no synced round", code="NO_ROUND")
        return table.current_round

    async def _with_retry(self, label: str, call: Callable[[], Awaitable[T]]) -> T:
        attempts = self._config.retry_attempts
        for attempt in range(1, attempts + 1):
            try:
                return await call()
            except TransportFault as exc:
                if attempt == attempts:
                    logger.error("fetching %s failed after %d attempts: %s", label, attempts, exc.message)
                    raise
                delay = self._config.retry_backoff_s * (2 ** (attempt - 1))
                logger.warning(
                    "fetching %s failed (%s); retrying in %.2fs (attempt %d/%d)",
                    label,
                    exc.message,
                    delay,
                    attempt,
                    attempts,
                )
                await asyncio.sleep(delay)
        raise TransportFault(f"fetching {label} was not attempted")

    def _emit_event(self, table_id: str, event: RevealEvent) -> None:
        for queue in list(self._subscriptions.get(table_id, set())):
            try:
                queue.put_nowait(event)
            except asyncio.QueueFull:
                continue
