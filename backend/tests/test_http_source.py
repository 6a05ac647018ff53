from __future__ import annotations

import httpx
import pytest

from shuffle_verifier.config import VerifierConfig
from shuffle_verifier.engine.errors import TransportFault, VerifierError
from shuffle_verifier.engine.service import VerificationService
from shuffle_verifier.repo.http import HttpProvenanceSource

from .test_utils import build_round


SYNTHETIC = build_round()


def _backend(failures: int = 0, verified: bool = True):
    state = {"failures": failures, "hits": 0}

    def handler(request: httpx.Request) -> httpx.Response:
        state["hits"] += 1
        if state["failures"] > 0:
            state["failures"] -= 1
            return httpx.Response(503, json={"detail": "unavailable"})
        path = request.url.path
        if path == f"/rounds/{SYNTHETIC.round_id}/rng":
            return httpx.Response(200, json=SYNTHETIC.metadata(revealed=False).model_dump(mode="json"))
        if path == f"/rounds/{SYNTHETIC.round_id}/provenance":
            return httpx.Response(
                200,
                json=[record.model_dump(mode="json") for record in SYNTHETIC.provenance()],
            )
        if path == f"/rounds/{SYNTHETIC.round_id}/verify" and request.method == "POST":
            return httpx.Response(200, json={"verified": verified})
        return httpx.Response(404, json={"detail": "not found"})

    return httpx.MockTransport(handler), state


@pytest.mark.asyncio
async def test_reads_metadata_and_provenance() -> None:
    transport, _ = _backend()
    source = HttpProvenanceSource("http://dealer.test/", transport=transport)

    metadata = await source.get_rng_metadata(SYNTHETIC.round_id)
    assert metadata.deck_hash == SYNTHETIC.deck_hash
    assert not metadata.is_revealed

    records = await source.get_card_provenance(SYNTHETIC.round_id)
    assert len(records) == 52
    assert records[51].recipient == "p1"

    assert await source.request_server_verification(SYNTHETIC.round_id) is True


@pytest.mark.asyncio
async def test_http_errors_become_transport_faults() -> None:
    transport, _ = _backend()
    source = HttpProvenanceSource("http://dealer.test", transport=transport)
    with pytest.raises(TransportFault):
        await source.get_rng_metadata(999)


@pytest.mark.asyncio
async def test_connection_errors_become_transport_faults() -> None:
    def refuse(request: httpx.Request) -> httpx.Response:
        raise httpx.ConnectError("connection refused", request=request)

    source = HttpProvenanceSource("http://dealer.test", transport=httpx.MockTransport(refuse))
    with pytest.raises(TransportFault):
        await source.get_card_provenance(1)


@pytest.mark.asyncio
async def test_malformed_payload_is_rejected() -> None:
    transport = httpx.MockTransport(lambda request: httpx.Response(200, json={"verified": "yes"}))
    source = HttpProvenanceSource("http://dealer.test", transport=transport)
    with pytest.raises(VerifierError) as exc_info:
        await source.request_server_verification(1)
    assert exc_info.value.code == "MALFORMED_RESPONSE"

    with pytest.raises(VerifierError) as exc_info:
        await source.get_rng_metadata(1)
    assert exc_info.value.code == "MALFORMED_RESPONSE"


@pytest.mark.asyncio
async def test_service_retries_flaky_backend() -> None:
    transport, state = _backend(failures=2)
    source = HttpProvenanceSource("http://dealer.test", transport=transport)
    service = VerificationService(source, config=VerifierConfig(retry_attempts=3, retry_backoff_s=0))
    table_id = await service.open_table()

    result = await service.sync_round(table_id, SYNTHETIC.round_id)
    assert result.records == 52
    assert state["hits"] == 4
