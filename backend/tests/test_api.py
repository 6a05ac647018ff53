from __future__ import annotations

import pytest
from fastapi.testclient import TestClient

from shuffle_verifier.api.deps import get_service
from shuffle_verifier.engine.models import Stage
from shuffle_verifier.engine.service import VerificationService
from shuffle_verifier.main import app
from shuffle_verifier.repo.in_memory import InMemoryProvenanceSource

from .test_utils import build_round


SYNTHETIC = build_round()


@pytest.fixture
def client(service: VerificationService, source: InMemoryProvenanceSource):
    source.publish(SYNTHETIC.metadata(revealed=False), SYNTHETIC.provenance())
    app.dependency_overrides[get_service] = lambda: service
    with TestClient(app) as test_client:
        yield test_client
    app.dependency_overrides.clear()


def _open(client: TestClient) -> str:
    response = client.post("/api/tables", json={"table_id": "t1"})
    assert response.status_code == 200
    table_id = response.json()["table_id"]
    response = client.post(f"/api/tables/{table_id}/rounds/{SYNTHETIC.round_id}/sync")
    assert response.status_code == 200
    assert response.json()["records"] == 52
    return table_id


def test_healthz(client: TestClient) -> None:
    assert client.get("/healthz").json() == {"status": "ok"}


def test_visible_positions_for_viewer(client: TestClient) -> None:
    table_id = _open(client)
    signal = SYNTHETIC.signal(Stage.OPENING, viewer="p2")
    assert client.post(f"/api/tables/{table_id}/phase", json=signal.model_dump(mode="json")).status_code == 200

    response = client.get(f"/api/tables/{table_id}/visible", params={"viewer": "p2"})
    assert response.status_code == 200
    positions = response.json()["positions"]
    visible = sorted(int(position) for position, slot in positions.items() if slot["visible"])
    assert visible == sorted(SYNTHETIC.hole["p2"])


def test_pending_round_refuses_proof(client: TestClient) -> None:
    table_id = _open(client)
    assert client.get(f"/api/tables/{table_id}/verification").json()["status"] == "pending"

    response = client.get(f"/api/tables/{table_id}/proof")
    assert response.status_code == 409
    assert response.json()["detail"] == {"code": "UNAVAILABLE", "message": "round not concluded"}

    assert client.post(f"/api/tables/{table_id}/attestation").status_code == 409


def test_concluded_round_verifies_over_http(
    client: TestClient,
    source: InMemoryProvenanceSource,
) -> None:
    table_id = _open(client)
    signal = SYNTHETIC.signal(Stage.SHOWDOWN, concluded=True, show_hands=True)
    response = client.post(f"/api/tables/{table_id}/phase", json=signal.model_dump(mode="json"))
    assert response.json()["order"] == ["p1", "p2", "p3", "p0"]

    source.publish(SYNTHETIC.metadata(), SYNTHETIC.provenance())
    client.post(f"/api/tables/{table_id}/rounds/{SYNTHETIC.round_id}/sync")

    report = client.get(f"/api/tables/{table_id}/verification").json()
    assert report["status"] == "verified"
    assert report["calculated_deck_hash"] == SYNTHETIC.deck_hash

    proof = client.get(f"/api/tables/{table_id}/proof").json()
    assert proof["time_seed"] == SYNTHETIC.time_seed
    assert len(proof["shuffled_deck"]) == 52

    attestation = client.post(f"/api/tables/{table_id}/attestation").json()
    assert attestation["agrees"] is True

    assert client.get(f"/api/tables/{table_id}/reveal").json()["order"] == ["p1", "p2", "p3", "p0"]


def test_seat_inference_route(client: TestClient) -> None:
    table_id = _open(client)
    client.post(f"/api/tables/{table_id}/phase", json=SYNTHETIC.signal(Stage.OPENING).model_dump(mode="json"))
    response = client.get(f"/api/tables/{table_id}/seats", params={"viewer": "p2"})
    assert response.status_code == 200
    seats = {seat["player_id"]: seat for seat in response.json()["seats"]}
    assert seats["p1"]["confidence"] == "exact"


def test_error_mapping(client: TestClient, source: InMemoryProvenanceSource) -> None:
    missing = client.get("/api/tables/missing/verification")
    assert missing.status_code == 404
    assert missing.json()["detail"]["code"] == "TABLE_NOT_FOUND"

    table_id = _open(client)
    source.fail_next(10)
    response = client.post(f"/api/tables/{table_id}/rounds/{SYNTHETIC.round_id}/sync")
    assert response.status_code == 502
    assert response.json()["detail"]["code"] == "TRANSPORT_FAULT"

    stale = client.post(f"/api/tables/{table_id}/phase", json={"round_id": 1})
    assert stale.status_code == 409


def test_round_ids_outside_u64_are_rejected(client: TestClient) -> None:
    table_id = _open(client)
    assert client.post(f"/api/tables/{table_id}/rounds/{2**64}/sync").status_code == 422
    assert client.post(f"/api/tables/{table_id}/rounds/-1/sync").status_code == 422
    assert client.post(f"/api/tables/{table_id}/phase", json={"round_id": 2**64}).status_code == 422


def test_websocket_sends_reveal_progress(client: TestClient) -> None:
    table_id = _open(client)
    with client.websocket_connect(f"/api/ws/tables/{table_id}") as websocket:
        message = websocket.receive_json()
    assert message["type"] == "REVEAL_PROGRESS"
    assert message["payload"]["round_id"] == SYNTHETIC.round_id
