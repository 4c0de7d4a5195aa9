# authentichain/classify.py
"""
Normalize failures from wallets, web3 and the ledger into the error taxonomy.

classify() answers "which family is this", normalize() turns a third-party
exception into the matching AuthentiChainError so it can be re-raised with
`raise normalize(e) from e`, describe() gives the short reason a UI shows.
"""
import asyncio
import enum
import re

import aiohttp
from web3.exceptions import ContractLogicError, TimeExhausted, Web3Exception

from .errors import (
    AlreadyRegistered,
    AuthentiChainError,
    CodeNotFound,
    ItemAlreadyClaimed,
    LedgerError,
    LedgerRejected,
    LedgerUnavailable,
    NomineeMismatch,
    NotAuthentic,
    NotOwner,
    SigningRejected,
)


class ErrorKind(str, enum.Enum):
    VALIDATION = "validation"
    SIGNING = "signing"
    VERIFICATION = "verification"
    LEDGER = "ledger"
    CONSISTENCY = "consistency"
    UNKNOWN = "unknown"


# revert reason (normalized) -> typed rejection; first match wins
_REVERT_REASONS = (
    ("notowner", NotOwner),
    ("notitemowner", NotOwner),
    ("invalidcode", CodeNotFound),
    ("codenotfound", CodeNotFound),
    ("codeused", CodeNotFound),
    ("notnominee", NomineeMismatch),
    ("notnewowner", NomineeMismatch),
    ("alreadyclaimed", ItemAlreadyClaimed),
    ("itemclaimed", ItemAlreadyClaimed),
    ("alreadyregistered", AlreadyRegistered),
    ("invalidsignature", NotAuthentic),
    ("notmanufacturer", NotAuthentic),
)

_REJECTION_CODES = (4001, "ACTION_REJECTED")
_REJECTION_TEXT = ("user rejected", "user denied", "rejected by user")

_TRANSPORT_ERRORS = (TimeExhausted, aiohttp.ClientError, asyncio.TimeoutError, ConnectionError)


def _error_code(exc):
    code = getattr(exc, "code", None)
    if code is None and exc.args and isinstance(exc.args[0], dict):
        code = exc.args[0].get("code")
    return code


def is_user_rejection(exc: BaseException) -> bool:
    if _error_code(exc) in _REJECTION_CODES:
        return True
    text = str(exc).lower()
    return any(marker in text for marker in _REJECTION_TEXT)


def describe(exc: BaseException) -> str:
    """Short human-readable reason, with web3 and RPC wrapping stripped."""
    message = getattr(exc, "message", None)
    if not isinstance(message, str) or not message:
        if exc.args and isinstance(exc.args[0], dict):
            message = str(exc.args[0].get("message", ""))
        else:
            message = str(exc)
    message = re.sub(r"^(execution reverted:?\s*)", "", message.strip(), flags=re.IGNORECASE)
    return message or exc.__class__.__name__


def _revert_error(reason: str):
    key = re.sub(r"[^a-z0-9]", "", reason.lower())
    for marker, error in _REVERT_REASONS:
        if marker in key:
            return error
    return LedgerRejected


def classify(exc: BaseException) -> ErrorKind:
    if isinstance(exc, AuthentiChainError):
        return ErrorKind(exc.kind)
    if is_user_rejection(exc):
        return ErrorKind.SIGNING
    if isinstance(exc, (ContractLogicError, Web3Exception) + _TRANSPORT_ERRORS):
        return ErrorKind.LEDGER
    return ErrorKind.UNKNOWN


def normalize(exc: BaseException) -> AuthentiChainError:
    """
    Map an exception raised while talking to a wallet or the ledger to the taxonomy.

    Anything not recognized is reported as a generic LedgerError: this is only
    called around ledger and wallet calls.
    """
    if isinstance(exc, AuthentiChainError):
        return exc
    if is_user_rejection(exc):
        return SigningRejected(describe(exc))
    if isinstance(exc, ContractLogicError):
        reason = describe(exc)
        return _revert_error(reason)(reason)
    if isinstance(exc, _TRANSPORT_ERRORS):
        return LedgerUnavailable(describe(exc))
    return LedgerError(describe(exc))
