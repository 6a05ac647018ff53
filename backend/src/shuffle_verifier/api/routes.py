from __future__ import annotations

from typing import NoReturn

from fastapi import APIRouter, Depends, HTTPException, Path, Query, WebSocket, WebSocketDisconnect
from pydantic import BaseModel, ConfigDict

from shuffle_verifier.api.deps import get_service
from shuffle_verifier.engine.errors import (
    RoundScopeError,
    TableNotFound,
    TransportFault,
    UnavailableFault,
    VerifierError,
)
from shuffle_verifier.engine.models import (
    AttestationResult,
    DealInference,
    GamePhaseSignal,
    ProofExport,
    RevealProgress,
    SyncResult,
    VerificationReport,
    VisibilityView,
)
from shuffle_verifier.engine.service import VerificationService
from shuffle_verifier.utils.hashing import U64_MAX


router = APIRouter(prefix="/api")


class OpenTableRequest(BaseModel):
    table_id: str | None = None

    model_config = ConfigDict(extra="forbid")


class OpenTableResponse(BaseModel):
    table_id: str


def _status_for(exc: VerifierError) -> int:
    if isinstance(exc, TableNotFound):
        return 404
    if isinstance(exc, (UnavailableFault, RoundScopeError)):
        return 409
    if isinstance(exc, TransportFault):
        return 502
    return 422


def _reject(exc: VerifierError) -> NoReturn:
    raise HTTPException(
        status_code=_status_for(exc),
        detail={"code": exc.code, "message": exc.message},
    ) from exc


@router.post("/tables", response_model=OpenTableResponse)
async def open_table(
    request: OpenTableRequest | None = None,
    service: VerificationService = Depends(get_service),
) -> OpenTableResponse:
    table_id = await service.open_table(request.table_id if request else None)
    return OpenTableResponse(table_id=table_id)


@router.post("/tables/{table_id}/rounds/{round_id}/sync", response_model=SyncResult)
async def sync_round(
    table_id: str,
    round_id: int = Path(ge=0, le=U64_MAX),
    service: VerificationService = Depends(get_service),
) -> SyncResult:
    try:
        return await service.sync_round(table_id, round_id)
    except VerifierError as exc:
        _reject(exc)


@router.post("/tables/{table_id}/phase", response_model=RevealProgress)
async def apply_phase(
    table_id: str,
    signal: GamePhaseSignal,
    service: VerificationService = Depends(get_service),
) -> RevealProgress:
    try:
        return await service.apply_phase_signal(table_id, signal)
    except VerifierError as exc:
        _reject(exc)


@router.get("/tables/{table_id}/visible", response_model=VisibilityView)
async def visible_positions(
    table_id: str,
    viewer: str = Query(...),
    service: VerificationService = Depends(get_service),
) -> VisibilityView:
    try:
        return await service.visible_positions(table_id, viewer)
    except VerifierError as exc:
        _reject(exc)


@router.get("/tables/{table_id}/seats", response_model=DealInference)
async def infer_seats(
    table_id: str,
    viewer: str = Query(...),
    service: VerificationService = Depends(get_service),
) -> DealInference:
    try:
        return await service.infer_seats(table_id, viewer)
    except VerifierError as exc:
        _reject(exc)


@router.get("/tables/{table_id}/verification", response_model=VerificationReport)
async def verification_status(
    table_id: str,
    service: VerificationService = Depends(get_service),
) -> VerificationReport:
    try:
        return await service.verify(table_id)
    except VerifierError as exc:
        _reject(exc)


@router.post("/tables/{table_id}/attestation", response_model=AttestationResult)
async def cross_check(
    table_id: str,
    service: VerificationService = Depends(get_service),
) -> AttestationResult:
    try:
        return await service.cross_check_server(table_id)
    except VerifierError as exc:
        _reject(exc)


@router.get("/tables/{table_id}/reveal", response_model=RevealProgress)
async def reveal_progress(
    table_id: str,
    service: VerificationService = Depends(get_service),
) -> RevealProgress:
    try:
        return await service.reveal_progress(table_id)
    except VerifierError as exc:
        _reject(exc)


@router.get("/tables/{table_id}/proof", response_model=ProofExport)
async def export_proof(
    table_id: str,
    service: VerificationService = Depends(get_service),
) -> ProofExport:
    try:
        return await service.export_proof(table_id)
    except VerifierError as exc:
        _reject(exc)


async def _initial_progress(service: VerificationService, table_id: str) -> RevealProgress | None:
    try:
        return await service.reveal_progress(table_id)
    except UnavailableFault:
        # No round synced yet; events will follow once one is.
        return None


@router.websocket("/ws/tables/{table_id}")
async def table_socket(
    websocket: WebSocket,
    table_id: str,
    service: VerificationService = Depends(get_service),
) -> None:
    await websocket.accept()
    try:
        queue = await service.subscribe(table_id)
    except TableNotFound:
        await websocket.close(code=1008)
        return

    try:
        progress = await _initial_progress(service, table_id)
        if progress is not None:
            await websocket.send_json({"type": "REVEAL_PROGRESS", "payload": progress.model_dump(mode="json")})
        while True:
            event = await queue.get()
            await websocket.send_json({"type": "REVEAL", "payload": event.model_dump(mode="json")})
    except WebSocketDisconnect:
        pass
    finally:
        await service.unsubscribe(table_id, queue)
