from __future__ import annotations

import argparse
import json
import logging
import sys
from pathlib import Path

from pydantic import ValidationError

from shuffle_verifier.engine.models import ProofExport, VerificationStatus
from shuffle_verifier.engine.verification import verify_proof


logger = logging.getLogger(__name__)


def main(argv: list[str] | None = None) -> int:
    parser = argparse.ArgumentParser(description="Recompute the shuffle of an exported proof.json offline")
    parser.add_argument("proof_file", type=Path)
    parser.add_argument("--log-level", default="WARNING", help="Logging level (default: WARNING)")
    args = parser.parse_args(argv)

    logging.basicConfig(
        level=getattr(logging, args.log_level.upper(), logging.WARNING),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )

    try:
        proof = ProofExport.model_validate(json.loads(args.proof_file.read_text()))
    except (OSError, ValueError, ValidationError) as exc:
        logger.error("cannot read proof %s: %s", args.proof_file, exc)
        return 2

    report = verify_proof(proof)
    print(json.dumps(report.model_dump(mode="json"), indent=2))
    return 0 if report.status is VerificationStatus.VERIFIED else 1


if __name__ == "__main__":
    sys.exit(main())
