# authentichain/main.py
import logging
import time
from functools import lru_cache
from typing import List, Optional

from fastapi import Depends, FastAPI, HTTPException, Request
from fastapi.responses import JSONResponse

from .blockchain import ContractRegistry
from .codec import build_certificate, decode_payload, normalize_address
from .crud import get_issued_certificate, init_db, list_issued_certificates, record_issued_certificate
from .errors import (
    AuthentiChainError,
    LedgerRejected,
    LedgerUnavailable,
    SignatureIntegrityFailure,
    SigningUnavailable,
)
from .identity import IdentityEvents, LocalAccountIdentity, RegistrationDirectory
from .registry import InMemoryRegistry
from .schemas import (
    AuthenticityResult,
    CertificateFieldsIn,
    ClaimCertificateIn,
    ClaimCodeIn,
    GenerateCodeIn,
    IdentityChangedIn,
    ItemRecord,
    PayloadIn,
    PayloadOut,
    RegisterIn,
    RegistrationStatus,
    SignedCertificate,
    SubmitCertificateIn,
    TransferCode,
)
from .settings import settings
from .transfer import claim_with_certificate, claim_with_code, generate_code
from .typed_data import build_signing_message, check_authenticity, sign_and_self_check, verify

log = logging.getLogger("authentichain.api")

app = FastAPI(title="AuthentiChain Certificate Core")

_STATUS_BY_KIND = {
    "validation": 422,
    "signing": 403,
    "verification": 400,
    "ledger": 502,
    "consistency": 500,
}


# ---------- Dependencies ----------
@lru_cache(maxsize=1)
def get_registry():
    if settings.REGISTRY_BACKEND == "memory":
        return InMemoryRegistry(domain_id=settings.CHAIN_ID)
    return ContractRegistry.from_settings(settings)


@lru_cache(maxsize=1)
def get_identity_events() -> IdentityEvents:
    return IdentityEvents()


@lru_cache(maxsize=1)
def get_directory() -> RegistrationDirectory:
    directory = RegistrationDirectory(
        get_registry(), ttl=settings.LOOKUP_CACHE_TTL, maxsize=settings.LOOKUP_CACHE_SIZE
    )
    directory.attach(get_identity_events())
    return directory


def get_issuer() -> Optional[LocalAccountIdentity]:
    if not settings.MANUFACTURER_PK:
        return None
    return LocalAccountIdentity.from_key(settings.MANUFACTURER_PK)


@app.on_event("startup")
def startup():
    init_db()


@app.exception_handler(AuthentiChainError)
async def taxonomy_error_handler(request: Request, exc: AuthentiChainError):
    if isinstance(exc, LedgerRejected):
        status = 409
    elif isinstance(exc, LedgerUnavailable):
        status = 503
    else:
        status = _STATUS_BY_KIND.get(exc.kind, 500)
    return JSONResponse(
        status_code=status,
        content={"error": exc.kind, "type": exc.__class__.__name__, "detail": str(exc)},
    )


def _fields_to_certificate(data: CertificateFieldsIn, owner: Optional[str] = None):
    date = data.date if data.date is not None else int(time.time())
    return build_certificate(data.name, data.unique_id, data.serial, date, data.owner or owner, data.metadata)


def _issue(signed: SignedCertificate, signer: str) -> PayloadOut:
    row = record_issued_certificate(signed, signer)
    log.info("Issued certificate %s signed by %s", row.unique_id, row.signer)
    return PayloadOut(unique_id=row.unique_id, signer=row.signer, signature=row.signature, payload=row.payload)


# ---------- Certificates ----------
@app.post("/certificates/sign-payload")
async def create_sign_payload(data: CertificateFieldsIn):
    """
    Build the EIP-712 object a wallet signs for these certificate fields.

    The certificate's date is fixed here; the wallet must sign exactly this object.
    """
    cert = _fields_to_certificate(data)
    message = build_signing_message(cert, settings.CHAIN_ID)
    return {
        "certificate": cert.model_dump(mode="json", by_alias=True),
        "typed_data": message.to_eip712(),
    }


@app.post("/certificates/submit", response_model=PayloadOut)
async def submit_certificate(data: SubmitCertificateIn):
    """Accept a wallet-signed certificate after recovering its signer."""
    cert = _fields_to_certificate(data)
    signer = normalize_address(data.signer)
    recovered = verify(build_signing_message(cert, settings.CHAIN_ID), data.signature)
    if recovered != signer:
        raise SignatureIntegrityFailure("signature does not recover to the submitting signer")
    return _issue(SignedCertificate(certificate=cert, signature=data.signature), signer)


@app.post("/certificates/issue", response_model=PayloadOut)
async def issue_certificate(data: CertificateFieldsIn, issuer=Depends(get_issuer)):
    """Sign with the configured manufacturer key, self-check and log the certificate."""
    if issuer is None:
        raise SigningUnavailable("no manufacturer key is configured")
    cert = _fields_to_certificate(data, owner=issuer.address)
    signature, recovered = sign_and_self_check(cert, settings.CHAIN_ID, issuer)
    return _issue(SignedCertificate(certificate=cert, signature=signature), recovered)


@app.get("/certificates/{unique_id}", response_model=PayloadOut)
def get_certificate(unique_id: str, signer: Optional[str] = None):
    row = get_issued_certificate(unique_id, signer)
    if row is None:
        raise HTTPException(status_code=404, detail="certificate not found")
    return PayloadOut(unique_id=row.unique_id, signer=row.signer, signature=row.signature, payload=row.payload)


@app.get("/manufacturers/{address}/certificates", response_model=List[PayloadOut])
def list_certificates(address: str, limit: int = 50):
    return [
        PayloadOut(unique_id=r.unique_id, signer=r.signer, signature=r.signature, payload=r.payload)
        for r in list_issued_certificates(address, limit)
    ]


@app.post("/certificates/verify", response_model=AuthenticityResult)
async def verify_certificate(data: PayloadIn, registry=Depends(get_registry)):
    signed = decode_payload(data.payload)
    return await check_authenticity(signed.certificate, signed.signature, registry, settings.CHAIN_ID)


@app.post("/certificates/claim")
async def claim_certificate(data: ClaimCertificateIn, registry=Depends(get_registry)):
    signed = decode_payload(data.payload)
    item_id = await claim_with_certificate(
        registry, signed.certificate, signed.signature, data.claimant, settings.CHAIN_ID
    )
    return {"item_id": item_id}


# ---------- Transfer codes ----------
@app.post("/transfer-codes", response_model=TransferCode)
async def create_transfer_code(data: GenerateCodeIn, registry=Depends(get_registry)):
    return await generate_code(registry, data.item_id, data.owner, data.nominee)


@app.post("/transfer-codes/claim")
async def redeem_transfer_code(data: ClaimCodeIn, registry=Depends(get_registry)):
    item_id = await claim_with_code(registry, data.code, data.claimant)
    return {"item_id": item_id}


# ---------- Items and registrations ----------
@app.get("/items/{owner}", response_model=List[ItemRecord])
async def list_items(owner: str, registry=Depends(get_registry)):
    return await registry.list_items_owned_by(normalize_address(owner))


@app.get("/manufacturers/{address}", response_model=RegistrationStatus)
async def get_manufacturer(address: str, directory=Depends(get_directory)):
    return await directory.manufacturer(address)


@app.post("/manufacturers/{address}", response_model=RegistrationStatus)
async def register_manufacturer(address: str, data: RegisterIn, registry=Depends(get_registry), directory=Depends(get_directory)):
    await registry.register_manufacturer(address, data.name)
    directory.invalidate(address)
    return await directory.manufacturer(address)


@app.get("/users/{address}", response_model=RegistrationStatus)
async def get_user(address: str, directory=Depends(get_directory)):
    return await directory.user(address)


@app.post("/users/{address}", response_model=RegistrationStatus)
async def register_user(address: str, data: RegisterIn, registry=Depends(get_registry), directory=Depends(get_directory)):
    await registry.register_user(address, data.name)
    directory.invalidate(address)
    return await directory.user(address)


@app.post("/identity/changed", status_code=204)
def identity_changed(data: IdentityChangedIn, events=Depends(get_identity_events)):
    """Wallet reported an account switch or disconnect."""
    events.account_changed(data.previous, data.current)


def run():
    import uvicorn

    uvicorn.run("authentichain.main:app", host=settings.HOST, port=settings.PORT)
