from __future__ import annotations

import pytest

from shuffle_verifier.config import VerifierConfig
from shuffle_verifier.engine.service import VerificationService
from shuffle_verifier.repo.in_memory import InMemoryProvenanceSource, InMemoryTableRepository


@pytest.fixture
def source() -> InMemoryProvenanceSource:
    return InMemoryProvenanceSource()


@pytest.fixture
def config() -> VerifierConfig:
    return VerifierConfig(reveal_delay_ms=5, retry_attempts=3, retry_backoff_s=0)


@pytest.fixture
def service(source: InMemoryProvenanceSource, config: VerifierConfig) -> VerificationService:
    return VerificationService(source, InMemoryTableRepository(), config)
