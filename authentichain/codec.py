# authentichain/codec.py
"""
Canonical encoding of product certificates.

The metadata list is the only part of a certificate that is hashed before it
reaches the typed-data layer, so its canonical form decides what counts as
"the same" metadata: items are trimmed, empty items dropped, order kept.
The hash is keccak256(abi.encode(string[])), the encoding the Authenticity
contract recomputes on-chain.
"""
import json
from typing import Iterable, Tuple

from eth_abi import encode
from hexbytes import HexBytes
from web3 import Web3

from .errors import (
    IncompleteCertificate,
    InvalidIdentity,
    InvalidTimestamp,
    MalformedPayload,
    MetadataHashMismatch,
)
from .schemas import Certificate, SignedCertificate

METADATA_ENCODING = "abi:string[]:v1"

# dates are signed as EIP-712 uint256
MAX_DATE = 2 ** 256 - 1

_PAYLOAD_FIELDS = ("name", "uniqueId", "serial", "date", "owner", "metadata", "metadataHash")


def canonicalize_metadata(items: Iterable[str]) -> Tuple[str, ...]:
    if isinstance(items, (str, bytes)):
        raise TypeError("metadata must be a sequence of strings, use split_metadata() for text")
    return tuple(item.strip() for item in items if item.strip())


def split_metadata(text: str) -> Tuple[str, ...]:
    """Parse the comma-separated metadata text used by the issuing form."""
    return canonicalize_metadata(text.split(","))


def hash_metadata(items: Iterable[str]) -> bytes:
    canonical = list(canonicalize_metadata(items))
    return bytes(Web3.keccak(encode(["string[]"], [canonical])))


def normalize_address(value, error=InvalidIdentity) -> str:
    """Return the EIP-55 form of an address or raise `error`."""
    if not isinstance(value, str) or not Web3.is_address(value):
        raise error(f"not a well-formed address: {value!r}")
    return Web3.to_checksum_address(value)


def build_certificate(name, unique_id, serial, date, owner, metadata) -> Certificate:
    """
    Validate certificate fields and derive the metadata hash.

    Raises IncompleteCertificate for an empty field (metadata included, after
    canonicalization), InvalidTimestamp for a date that is not a non-negative
    uint256 and InvalidIdentity for a malformed owner address.
    """
    for field, value in (("name", name), ("uniqueId", unique_id), ("serial", serial), ("owner", owner)):
        if not isinstance(value, str) or not value.strip():
            raise IncompleteCertificate(f"certificate field '{field}' is required", field=field)

    if isinstance(date, bool) or not isinstance(date, int) or not 0 <= date <= MAX_DATE:
        raise InvalidTimestamp(f"date must be a non-negative integer below 2**256, got {date!r}")

    owner = normalize_address(owner)

    if isinstance(metadata, str):
        canonical = split_metadata(metadata)
    else:
        canonical = canonicalize_metadata(metadata or ())
    if not canonical:
        raise IncompleteCertificate("certificate field 'metadata' is required", field="metadata")

    return Certificate(
        name=name,
        unique_id=unique_id,
        serial=serial,
        date=date,
        owner=owner,
        metadata=canonical,
        metadata_hash=hash_metadata(canonical),
    )


def verify_metadata_hash(cert: Certificate) -> None:
    expected = hash_metadata(cert.metadata)
    if bytes(cert.metadata_hash) != expected:
        raise MetadataHashMismatch(
            "metadata hash does not match metadata",
            expected="0x" + expected.hex(),
            found="0x" + bytes(cert.metadata_hash).hex(),
        )


# ---------- Scannable payload ----------
def encode_payload(signed: SignedCertificate) -> str:
    """Serialize {cert, signature} to the compact JSON carried by the QR code."""
    data = signed.model_dump(mode="json", by_alias=True)
    return json.dumps(data, separators=(",", ":"), sort_keys=True)


def decode_payload(text: str) -> SignedCertificate:
    """
    Parse a scannable payload and rebuild its certificate from the carried fields.

    The carried metadataHash is compared against the recomputed one and never
    trusted on its own.
    """
    try:
        raw = json.loads(text)
    except (TypeError, ValueError) as e:
        raise MalformedPayload(f"payload is not valid JSON: {e}")

    if not isinstance(raw, dict) or not isinstance(raw.get("cert"), dict):
        raise MalformedPayload("payload must be an object with a 'cert' object")
    if not isinstance(raw.get("signature"), str):
        raise MalformedPayload("payload must carry a 'signature' string")

    fields = raw["cert"]
    missing = [k for k in _PAYLOAD_FIELDS if k not in fields]
    if missing:
        raise MalformedPayload(f"certificate is missing fields: {', '.join(missing)}")
    if not isinstance(fields["metadata"], list) or not all(isinstance(m, str) for m in fields["metadata"]):
        raise MalformedPayload("certificate metadata must be a list of strings")

    cert = build_certificate(
        fields["name"],
        fields["uniqueId"],
        fields["serial"],
        fields["date"],
        fields["owner"],
        fields["metadata"],
    )

    try:
        carried = bytes(HexBytes(fields["metadataHash"]))
    except (TypeError, ValueError) as e:
        raise MalformedPayload(f"metadataHash is not hex: {e}")
    if carried != cert.metadata_hash:
        raise MetadataHashMismatch(
            "payload metadataHash does not match its metadata",
            expected="0x" + cert.metadata_hash.hex(),
            found="0x" + carried.hex(),
        )

    return SignedCertificate(certificate=cert, signature=raw["signature"])
