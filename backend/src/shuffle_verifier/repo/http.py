"""HTTP client for the dealer backend's provenance endpoints."""

from __future__ import annotations

import logging
from typing import Any

import httpx
from pydantic import TypeAdapter, ValidationError

from shuffle_verifier.engine.errors import TransportFault, VerifierError
from shuffle_verifier.engine.models import CardProvenance, RngMetadata
from shuffle_verifier.repo.base import ProvenanceSource


logger = logging.getLogger(__name__)

_PROVENANCE_LIST = TypeAdapter(list[CardProvenance])


class HttpProvenanceSource(ProvenanceSource):
    def __init__(
        self,
        base_url: str,
        *,
        timeout: float = 10.0,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self._base_url = base_url.rstrip("/")
        self._timeout = timeout
        self._transport = transport

    async def _request(self, method: str, path: str) -> Any:
        url = f"{self._base_url}{path}"
        try:
            async with httpx.AsyncClient(timeout=self._timeout, transport=self._transport) as client:
                response = await client.request(method, url)
                response.raise_for_status()
                return response.json()
        except httpx.HTTPError as exc:
            logger.debug("request %s %s failed: %s", method, url, exc)
            raise TransportFault(f"{method} {url} failed: {exc}") from exc
        except ValueError as exc:
            raise TransportFault(f"{method} {url} returned invalid JSON") from exc

    async def get_rng_metadata(self, round_id: int) -> RngMetadata:
        payload = await self._request("GET", f"/rounds/{round_id}/rng")
        try:
            return RngMetadata.model_validate(payload)
        except ValidationError as exc:
            raise VerifierError(f"malformed rng metadata for round {round_id}: {exc}", code="MALFORMED_RESPONSE") from exc

    async def get_card_provenance(self, round_id: int) -> list[CardProvenance]:
        payload = await self._request("GET", f"/rounds/{round_id}/provenance")
        try:
            return _PROVENANCE_LIST.validate_python(payload)
        except ValidationError as exc:
            raise VerifierError(f"malformed provenance for round {round_id}: {exc}", code="MALFORMED_RESPONSE") from exc

    async def request_server_verification(self, round_id: int) -> bool:
        payload = await self._request("POST", f"/rounds/{round_id}/verify")
        if not isinstance(payload, dict) or not isinstance(payload.get("verified"), bool):
            raise VerifierError(
                f"malformed verification response for round {round_id}",
                code="MALFORMED_RESPONSE",
            )
        return payload["verified"]
