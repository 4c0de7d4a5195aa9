"""
EIP-712 signer/verifier tests.

Signing uses real secp256k1 keys (eth-account LocalAccount); the ledger is the
in-memory registry so registration state can be changed between checks.
"""
import pytest

from authentichain.errors import (
    LookupUnavailable,
    MalformedSignature,
    MetadataHashMismatch,
    SignatureIntegrityFailure,
    SigningRejected,
    SigningUnavailable,
    ValidationError,
)
from authentichain.settings import settings
from authentichain.typed_data import (
    PROTOCOL_NAME,
    PROTOCOL_VERSION,
    build_signing_message,
    check_authenticity,
    sign,
    sign_and_self_check,
    verify,
)

CHAIN_ID = 31337
OTHER_CONTRACT = "0x" + "12" * 20


class _RejectingWallet:
    address = "0x" + "00" * 19 + "01"

    def sign_typed_data(self, domain, types, value):
        raise RuntimeError({"code": 4001, "message": "User rejected the request."})


class _SilentWallet:
    address = "0x" + "00" * 19 + "01"

    def sign_typed_data(self, domain, types, value):
        return ""


class _ImpostorWallet:
    """Claims one address but signs with another key."""

    def __init__(self, claimed, actual):
        self.address = claimed
        self._actual = actual

    def sign_typed_data(self, domain, types, value):
        return self._actual.sign_typed_data(domain, types, value)


# ---------------------------------------------------------------------------
# Message construction
# ---------------------------------------------------------------------------

def test_message_is_deterministic(widget):
    first = build_signing_message(widget, CHAIN_ID)
    second = build_signing_message(widget, CHAIN_ID)
    assert first.encoded == second.encoded
    assert first.encoded[:2] == b"\x19\x01"
    assert len(first.encoded) == 66


def test_domain_separates_chains_and_contracts(widget):
    base = build_signing_message(widget, CHAIN_ID).digest
    assert build_signing_message(widget, 1).digest != base
    assert build_signing_message(widget, CHAIN_ID, OTHER_CONTRACT).digest != base


def test_domain_uses_fixed_protocol_constants(widget):
    message = build_signing_message(widget, CHAIN_ID)
    assert message.domain["name"] == PROTOCOL_NAME
    assert message.domain["version"] == PROTOCOL_VERSION
    assert message.domain["chainId"] == CHAIN_ID
    assert message.domain["verifyingContract"].lower() == settings.CONTRACT_ADDRESS.lower()


def test_value_follows_type_schema_order(widget):
    message = build_signing_message(widget, CHAIN_ID)
    field_names = [f["name"] for f in message.types["Certificate"]]
    assert list(message.value) == field_names
    assert message.value["metadataHash"] == widget.metadata_hash


def test_wallet_payload_is_json_ready(widget):
    payload = build_signing_message(widget, CHAIN_ID).to_eip712()
    assert payload["primaryType"] == "Certificate"
    assert "EIP712Domain" in payload["types"]
    assert payload["message"]["metadataHash"] == "0x" + widget.metadata_hash.hex()
    assert payload["message"]["metadata"] == ["Red", "128GB"]


@pytest.mark.parametrize("domain_id", [-1, "31337", True])
def test_bad_domain_id(widget, domain_id):
    with pytest.raises(ValidationError):
        build_signing_message(widget, domain_id)


# ---------------------------------------------------------------------------
# sign / verify
# ---------------------------------------------------------------------------

def test_sign_then_verify_recovers_signer(widget, manufacturer):
    message = build_signing_message(widget, CHAIN_ID)
    signature = sign(message, manufacturer)
    assert verify(message, signature) == manufacturer.address


def test_sign_without_capability():
    with pytest.raises(SigningUnavailable):
        sign(None, None)


def test_user_rejection_is_signing_rejected(widget):
    with pytest.raises(SigningRejected):
        sign(build_signing_message(widget, CHAIN_ID), _RejectingWallet())


def test_empty_signature_is_signing_rejected(widget):
    with pytest.raises(SigningRejected):
        sign(build_signing_message(widget, CHAIN_ID), _SilentWallet())


@pytest.mark.parametrize(
    "signature",
    [
        "0x1234",
        "not-hex",
        "0x" + "11" * 64 + "05",
        "0x" + "00" * 64 + "1b",
    ],
)
def test_malformed_signatures(widget, signature):
    with pytest.raises(MalformedSignature):
        verify(build_signing_message(widget, CHAIN_ID), signature)


def test_self_check_returns_signer(widget, manufacturer):
    signature, recovered = sign_and_self_check(widget, CHAIN_ID, manufacturer)
    assert recovered == manufacturer.address
    assert verify(build_signing_message(widget, CHAIN_ID), signature) == recovered


def test_self_check_catches_wrong_signer(widget, manufacturer, rogue):
    with pytest.raises(SignatureIntegrityFailure):
        sign_and_self_check(widget, CHAIN_ID, _ImpostorWallet(manufacturer.address, rogue))


def test_self_check_refuses_inconsistent_certificate(widget, manufacturer):
    stale = widget.model_copy(update={"metadata": ("Blue",)})
    with pytest.raises(MetadataHashMismatch):
        sign_and_self_check(stale, CHAIN_ID, manufacturer)


# ---------------------------------------------------------------------------
# Authenticity
# ---------------------------------------------------------------------------

@pytest.mark.anyio
async def test_registered_manufacturer_is_authentic(widget, manufacturer, registry):
    await registry.register_manufacturer(manufacturer.address, "Acme")
    signature, _ = sign_and_self_check(widget, CHAIN_ID, manufacturer)

    result = await check_authenticity(widget, signature, registry, CHAIN_ID)

    assert result.authentic is True
    assert result.signer_label == "Acme"
    assert result.signer == manufacturer.address


@pytest.mark.anyio
async def test_unregistered_signer_is_not_authentic(widget, manufacturer, rogue, registry):
    await registry.register_manufacturer(manufacturer.address, "Acme")
    signature, _ = sign_and_self_check(widget, CHAIN_ID, rogue)

    result = await check_authenticity(widget, signature, registry, CHAIN_ID)

    assert result.authentic is False
    assert result.signer == rogue.address
    assert result.signer_label is None


@pytest.mark.anyio
@pytest.mark.parametrize(
    "update",
    [
        {"name": "Widget Pro"},
        {"unique_id": "W-2"},
        {"serial": "S-2"},
        {"date": 1700000001},
        {"owner": "0x" + "77" * 20},
        {"metadata": ("Red", "256GB")},
    ],
)
async def test_any_field_tamper_breaks_authenticity(widget, manufacturer, registry, update):
    await registry.register_manufacturer(manufacturer.address, "Acme")
    signature, _ = sign_and_self_check(widget, CHAIN_ID, manufacturer)
    tampered = widget.model_copy(update=update)
    result = await check_authenticity(tampered, signature, registry, CHAIN_ID)

    assert result.authentic is False


@pytest.mark.anyio
async def test_revocation_is_seen_immediately(widget, manufacturer, registry):
    await registry.register_manufacturer(manufacturer.address, "Acme")
    signature, _ = sign_and_self_check(widget, CHAIN_ID, manufacturer)
    assert (await check_authenticity(widget, signature, registry, CHAIN_ID)).authentic

    await registry.revoke_manufacturer(manufacturer.address)

    assert not (await check_authenticity(widget, signature, registry, CHAIN_ID)).authentic


@pytest.mark.anyio
async def test_date_outside_uint256_is_not_authentic(widget, manufacturer, registry):
    await registry.register_manufacturer(manufacturer.address, "Acme")
    signature, _ = sign_and_self_check(widget, CHAIN_ID, manufacturer)
    oversized = widget.model_copy(update={"date": 2 ** 256})

    result = await check_authenticity(oversized, signature, registry, CHAIN_ID)

    assert result.authentic is False
    assert "2**256" in result.reason


@pytest.mark.anyio
async def test_malformed_signature_is_not_authentic(widget, registry):
    result = await check_authenticity(widget, "0xdeadbeef", registry, CHAIN_ID)
    assert result.authentic is False
    assert "65 bytes" in result.reason


@pytest.mark.anyio
async def test_unreachable_registry_is_not_conflated_with_unregistered(widget, manufacturer, registry):
    signature, _ = sign_and_self_check(widget, CHAIN_ID, manufacturer)
    registry.available = False
    with pytest.raises(LookupUnavailable):
        await check_authenticity(widget, signature, registry, CHAIN_ID)
