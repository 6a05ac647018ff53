from __future__ import annotations


class VerifierError(Exception):
    code = "VERIFIER_ERROR"

    def __init__(self, message: str, code: str | None = None) -> None:
        super().__init__(message)
        self.code = code or self.code
        self.message = message


class DomainFault(VerifierError):
    """Server-declared state disagrees with what the client expects.

    Logged and tolerated: the server's state is trusted over local inference.
    """

    code = "DOMAIN_FAULT"


class IntegrityFault(VerifierError):
    """A committed hash does not match the data it commits to. Never retried."""

    code = "INTEGRITY_FAULT"


class UnavailableFault(VerifierError):
    """Secret material has not been revealed yet; callers treat it as pending."""

    code = "UNAVAILABLE"


class TransportFault(VerifierError):
    code = "TRANSPORT_FAULT"


class CardEncodingError(VerifierError, ValueError):
    code = "BAD_CARD_ENCODING"


class PositionOutOfRange(VerifierError, ValueError):
    code = "POSITION_OUT_OF_RANGE"

    def __init__(self, position: int) -> None:
        super().__init__(f"position {position} is outside [0, 52)")
        self.position = position


class ValueOutOfRange(VerifierError, ValueError):
    code = "VALUE_OUT_OF_RANGE"

    def __init__(self, name: str, value: int) -> None:
        super().__init__(f"{name} {value} does not fit in an unsigned 64-bit integer")
        self.name = name
        self.value = value


class RoundScopeError(VerifierError):
    code = "ROUND_SCOPE"


class TableNotFound(VerifierError, KeyError):
    code = "TABLE_NOT_FOUND"

    def __str__(self) -> str:
        return self.message
