# authentichain/typed_data.py
"""
EIP-712 signing and verification of product certificates.

A certificate is signed as the `Certificate` struct under a domain made of a
fixed protocol name and version, the caller's chain id and the Authenticity
contract address. Signatures therefore cannot be replayed on another chain,
another deployment or another protocol version, and the signer can be
recovered from (message, signature) alone.
"""
import copy
import logging
from dataclasses import dataclass, field
from typing import Optional, Tuple

from eth_abi.exceptions import EncodingError
from eth_account import Account
from eth_account.messages import SignableMessage, encode_typed_data
from eth_keys.exceptions import BadSignature, ValidationError as KeysValidationError
from hexbytes import HexBytes
from web3 import Web3

from .classify import describe, is_user_rejection
from .codec import build_certificate, canonicalize_metadata, hash_metadata, normalize_address
from .errors import (
    LedgerError,
    LookupUnavailable,
    MalformedSignature,
    MetadataHashMismatch,
    SignatureIntegrityFailure,
    SigningRejected,
    SigningUnavailable,
    ValidationError,
)
from .schemas import AuthenticityResult, Certificate
from .settings import settings

log = logging.getLogger("authentichain.typed_data")

PROTOCOL_NAME = "AuthentiChain"
PROTOCOL_VERSION = "1"
PRIMARY_TYPE = "Certificate"

DOMAIN_TYPE = [
    {"name": "name", "type": "string"},
    {"name": "version", "type": "string"},
    {"name": "chainId", "type": "uint256"},
    {"name": "verifyingContract", "type": "address"},
]

CERTIFICATE_TYPES = {
    PRIMARY_TYPE: [
        {"name": "name", "type": "string"},
        {"name": "uniqueId", "type": "string"},
        {"name": "serial", "type": "string"},
        {"name": "date", "type": "uint256"},
        {"name": "owner", "type": "address"},
        {"name": "metadataHash", "type": "bytes32"},
        {"name": "metadata", "type": "string[]"},
    ]
}

SIGNATURE_LENGTH = 65
SECP256K1_N = 0xFFFFFFFFFFFFFFFFFFFFFFFFFFFFFFFEBAAEDCE6AF48A03BBFD25E8CD0364141


@dataclass(frozen=True)
class TypedMessage:
    domain: dict
    types: dict
    value: dict
    primary_type: str = field(default=PRIMARY_TYPE)

    def signable(self) -> SignableMessage:
        return encode_typed_data(self.domain, self.types, self.value)

    @property
    def encoded(self) -> bytes:
        """EIP-191 version 0x01 bytes: 0x19 0x01 || domainSeparator || hashStruct(value)."""
        signable = self.signable()
        return b"\x19" + bytes(signable.version) + bytes(signable.header) + bytes(signable.body)

    @property
    def digest(self) -> bytes:
        return bytes(Web3.keccak(self.encoded))

    def to_eip712(self) -> dict:
        """JSON-ready object for eth_signTypedData_v4."""
        value = dict(self.value)
        value["metadataHash"] = "0x" + bytes(value["metadataHash"]).hex()
        value["metadata"] = list(value["metadata"])
        types = {"EIP712Domain": copy.deepcopy(DOMAIN_TYPE)}
        types.update(copy.deepcopy(self.types))
        return {
            "types": types,
            "domain": dict(self.domain),
            "primaryType": self.primary_type,
            "message": value,
        }


def build_domain(domain_id: int, verifying_contract: Optional[str] = None) -> dict:
    if isinstance(domain_id, bool) or not isinstance(domain_id, int) or domain_id < 0:
        raise ValidationError(f"domain id must be a non-negative integer, got {domain_id!r}")
    return {
        "name": PROTOCOL_NAME,
        "version": PROTOCOL_VERSION,
        "chainId": domain_id,
        "verifyingContract": normalize_address(verifying_contract or settings.CONTRACT_ADDRESS),
    }


def build_signing_message(
    cert: Certificate, domain_id: int, verifying_contract: Optional[str] = None
) -> TypedMessage:
    metadata = canonicalize_metadata(cert.metadata)
    value = {
        "name": cert.name,
        "uniqueId": cert.unique_id,
        "serial": cert.serial,
        "date": int(cert.date),
        "owner": normalize_address(cert.owner),
        "metadataHash": hash_metadata(metadata),
        "metadata": list(metadata),
    }
    return TypedMessage(
        domain=build_domain(domain_id, verifying_contract),
        types=copy.deepcopy(CERTIFICATE_TYPES),
        value=value,
    )


def typed_data_payload(message: TypedMessage) -> dict:
    return message.to_eip712()


def sign(message: TypedMessage, identity) -> str:
    if identity is None or not callable(getattr(identity, "sign_typed_data", None)):
        raise SigningUnavailable("no signing capability is available")
    try:
        signature = identity.sign_typed_data(
            copy.deepcopy(message.domain), copy.deepcopy(message.types), copy.deepcopy(message.value)
        )
    except (SigningRejected, SigningUnavailable):
        raise
    except Exception as e:
        if is_user_rejection(e):
            raise SigningRejected(describe(e)) from e
        raise
    if not signature:
        raise SigningRejected("signing capability returned no signature")
    if isinstance(signature, (bytes, bytearray)):
        signature = "0x" + bytes(signature).hex()
    return signature


def _signature_bytes(signature) -> bytes:
    try:
        raw = bytes(HexBytes(signature))
    except (TypeError, ValueError) as e:
        raise MalformedSignature(f"signature is not hex: {e}")
    if len(raw) != SIGNATURE_LENGTH:
        raise MalformedSignature(f"signature must be {SIGNATURE_LENGTH} bytes, got {len(raw)}")
    r = int.from_bytes(raw[:32], "big")
    s = int.from_bytes(raw[32:64], "big")
    if raw[64] not in (0, 1, 27, 28):
        raise MalformedSignature(f"signature recovery id {raw[64]} is out of range")
    if not (0 < r < SECP256K1_N and 0 < s < SECP256K1_N):
        raise MalformedSignature("signature r/s values are out of range")
    return raw


def verify(message: TypedMessage, signature) -> str:
    """Recover the checksummed address that produced `signature` over `message`."""
    raw = _signature_bytes(signature)
    try:
        recovered = Account.recover_message(message.signable(), signature=raw)
    except (ValueError, BadSignature, KeysValidationError, EncodingError) as e:
        raise MalformedSignature(f"signature could not be recovered: {e}") from e
    return Web3.to_checksum_address(recovered)


def _revalidate(cert: Certificate) -> None:
    rebuilt = build_certificate(cert.name, cert.unique_id, cert.serial, cert.date, cert.owner, cert.metadata)
    if bytes(cert.metadata_hash) != rebuilt.metadata_hash or tuple(cert.metadata) != rebuilt.metadata:
        raise MetadataHashMismatch("certificate metadata is not in canonical, hashed form")


def sign_and_self_check(
    cert: Certificate, domain_id: int, identity, verifying_contract: Optional[str] = None
) -> Tuple[str, str]:
    """
    Sign a certificate and recover the signer from the result before returning it.

    A certificate must only be exposed after this check passed. Raises
    SignatureIntegrityFailure if the signature does not recover to the identity
    that produced it.
    """
    _revalidate(cert)
    message = build_signing_message(cert, domain_id, verifying_contract)
    signature = sign(message, identity)

    expected = normalize_address(identity.address)
    try:
        recovered = verify(message, signature)
    except MalformedSignature as e:
        raise SignatureIntegrityFailure(f"signer produced an unusable signature: {e}") from e
    if recovered != expected:
        raise SignatureIntegrityFailure(
            "recovered signer does not match signing identity", expected=expected, recovered=recovered
        )

    log.info("Signed certificate %s as %s", cert.unique_id, recovered)
    return signature, recovered


async def check_authenticity(
    cert: Certificate,
    signature,
    registry,
    domain_id: int,
    verifying_contract: Optional[str] = None,
) -> AuthenticityResult:
    """
    Decide whether a certificate was signed by a currently registered manufacturer.

    Registration is looked up live on every call. A ledger that cannot answer
    raises LookupUnavailable rather than reporting the certificate as fake.
    """
    try:
        _revalidate(cert)
    except ValidationError as e:
        log.warning("Certificate %s failed validation: %s", cert.unique_id, e)
        return AuthenticityResult(authentic=False, reason=str(e))

    message = build_signing_message(cert, domain_id, verifying_contract)
    try:
        signer = verify(message, signature)
    except MalformedSignature as e:
        log.warning("Certificate %s carries a malformed signature: %s", cert.unique_id, e)
        return AuthenticityResult(authentic=False, reason=str(e))

    try:
        status = await registry.lookup_manufacturer(signer)
    except LookupUnavailable:
        raise
    except LedgerError as e:
        raise LookupUnavailable(f"manufacturer lookup failed: {e}", signer=signer) from e

    if not status.registered:
        log.warning("Certificate %s signed by unregistered %s", cert.unique_id, signer)
        return AuthenticityResult(
            authentic=False, signer=signer, reason="signer is not a registered manufacturer"
        )
    return AuthenticityResult(authentic=True, signer=signer, signer_label=status.name)
