# authentichain/errors.py
"""
Failure taxonomy of the certificate core.

Every error raised by this package derives from AuthentiChainError and
belongs to exactly one of five families. The ``kind`` attribute names the
family so callers (and the HTTP layer) can map it without isinstance chains.
"""


class AuthentiChainError(Exception):
    kind = "unknown"

    def __init__(self, message: str = "", **context):
        super().__init__(message or self.__class__.__name__)
        self.context = context


# ---------- VALIDATION: local input problems, never retried ----------
class ValidationError(AuthentiChainError):
    kind = "validation"


class IncompleteCertificate(ValidationError):
    pass


class InvalidTimestamp(ValidationError):
    pass


class InvalidIdentity(ValidationError):
    pass


class InvalidNominee(InvalidIdentity):
    pass


class MalformedTransferCode(ValidationError):
    pass


class MalformedPayload(ValidationError):
    pass


class MetadataHashMismatch(ValidationError):
    pass


class DuplicateCertificate(ValidationError):
    pass


# ---------- SIGNING: capability declined or missing ----------
class SigningError(AuthentiChainError):
    kind = "signing"


class SigningRejected(SigningError):
    pass


class SigningUnavailable(SigningError):
    pass


# ---------- VERIFICATION: surfaced as "not authentic" ----------
class VerificationError(AuthentiChainError):
    kind = "verification"


class MalformedSignature(VerificationError):
    pass


class NotAuthentic(VerificationError):
    pass


# ---------- LEDGER: submission or lookup failed ----------
class LedgerError(AuthentiChainError):
    kind = "ledger"


class LedgerRejected(LedgerError):
    """The ledger evaluated the request and refused it."""


class NotOwner(LedgerRejected):
    pass


class CodeNotFound(LedgerRejected):
    pass


class NomineeMismatch(LedgerRejected):
    pass


class ItemAlreadyClaimed(LedgerRejected):
    pass


class AlreadyRegistered(LedgerRejected):
    pass


class LedgerUnavailable(LedgerError):
    """The ledger could not be reached or did not confirm in time."""


class LookupUnavailable(LedgerUnavailable):
    pass


# ---------- CONSISTENCY: fatal to the operation ----------
class ConsistencyError(AuthentiChainError):
    kind = "consistency"


class SignatureIntegrityFailure(ConsistencyError):
    pass
