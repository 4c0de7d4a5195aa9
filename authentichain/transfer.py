# authentichain/transfer.py
"""
Ownership transfer between holders.

Per item:  Owned(owner) -> CodeIssued(owner, nominee, code) -> Owned(nominee)

The current owner asks the ledger for a code bound to a nominee and hands
it over out of band; the nominee redeems it exactly once. The ledger owns
the state and enforces ownership, this module validates inputs before they
are submitted and checks what comes back.
"""
import logging
import re
from typing import Optional

from .codec import normalize_address
from .errors import (
    CodeNotFound,
    InvalidNominee,
    LedgerError,
    MalformedTransferCode,
    NomineeMismatch,
    NotAuthentic,
    ValidationError,
)
from .schemas import Certificate, TransferCode
from .typed_data import check_authenticity

log = logging.getLogger("authentichain.transfer")

TRANSFER_CODE_BYTES = 32
_CODE_RE = re.compile(r"^0x[0-9a-f]{%d}$" % (TRANSFER_CODE_BYTES * 2))


def validate_transfer_code(code) -> str:
    """Return the canonical (lowercase 0x-hex, 32 bytes) form of a transfer code."""
    if not isinstance(code, str):
        raise MalformedTransferCode("transfer code must be text")
    canonical = code.strip().lower()
    if not _CODE_RE.match(canonical):
        raise MalformedTransferCode("transfer code must be 0x followed by 64 hex characters")
    return canonical


def _short(code: str) -> str:
    return code[:10] + "..."


async def generate_code(registry, item_id: str, current_owner: str, nominee: str) -> TransferCode:
    if not isinstance(item_id, str) or not item_id.strip():
        raise ValidationError("item id is required")
    owner = normalize_address(current_owner)
    nominee = normalize_address(nominee, error=InvalidNominee)
    if nominee == owner:
        raise InvalidNominee("nominee must differ from the current owner")

    code, outcome = await registry.submit_transfer_code_generation(item_id, owner, nominee)
    try:
        code = validate_transfer_code(code)
    except MalformedTransferCode as e:
        raise LedgerError(f"ledger returned a malformed transfer code: {e}") from e

    log.info("Transfer code %s issued for item %s to %s", _short(code), item_id, nominee)
    return TransferCode(item_id=outcome.item_id or item_id, nominee=nominee, code=code)


async def claim_with_code(registry, code: str, claimant: str) -> str:
    """
    Redeem a transfer code; returns the id of the item now owned by `claimant`.

    Unknown or spent codes raise CodeNotFound, a claimant other than the
    nominee raises NomineeMismatch. Both leave ownership untouched.
    """
    code = validate_transfer_code(code)
    claimant = normalize_address(claimant)
    try:
        outcome = await registry.submit_transfer_code_claim(code, claimant)
    except (CodeNotFound, NomineeMismatch) as e:
        log.warning("Transfer code %s rejected for %s: %s", _short(code), claimant, e)
        raise
    log.info("Item %s claimed by %s with transfer code", outcome.item_id, claimant)
    return outcome.item_id


async def claim_with_certificate(
    registry,
    cert: Certificate,
    signature: str,
    claimant: str,
    domain_id: int,
    verifying_contract: Optional[str] = None,
) -> str:
    """First claim of a freshly manufactured item by presenting its signed certificate."""
    claimant = normalize_address(claimant)
    result = await check_authenticity(cert, signature, registry, domain_id, verifying_contract)
    if not result.authentic:
        raise NotAuthentic(result.reason or "certificate is not authentic", signer=result.signer)

    outcome = await registry.submit_certificate_claim(cert, signature, claimant)
    log.info("Item %s claimed by %s with certificate from %s", outcome.item_id, claimant, result.signer_label)
    return outcome.item_id
