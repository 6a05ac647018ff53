from __future__ import annotations

from shuffle_verifier.config import VerifierConfig
from shuffle_verifier.engine.service import VerificationService
from shuffle_verifier.repo.http import HttpProvenanceSource
from shuffle_verifier.repo.in_memory import InMemoryTableRepository


config = VerifierConfig.from_env()
repository = InMemoryTableRepository()
provenance_source = HttpProvenanceSource(config.backend_url, timeout=config.request_timeout_s)
verification_service = VerificationService(provenance_source, repository, config)


def get_service() -> VerificationService:
    return verification_service
