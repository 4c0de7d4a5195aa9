# authentichain/schemas.py
from typing import List, Optional, Tuple, Union

from hexbytes import HexBytes
from pydantic import BaseModel, ConfigDict, Field, field_serializer, field_validator


# ---------- Core values ----------
class Certificate(BaseModel):
    """
    One manufactured item's authenticity claim.

    Build instances with codec.build_certificate(); it validates the fields and
    derives metadata_hash. The camelCase aliases are the scannable payload shape.
    """
    model_config = ConfigDict(frozen=True, populate_by_name=True)

    name: str
    unique_id: str = Field(alias="uniqueId")
    serial: str
    date: int
    owner: str
    metadata: Tuple[str, ...]
    metadata_hash: bytes = Field(alias="metadataHash")

    @field_validator("metadata_hash", mode="before")
    @classmethod
    def _parse_hash(cls, value):
        if isinstance(value, str):
            return bytes(HexBytes(value))
        return value

    @field_serializer("metadata_hash")
    def _hex_hash(self, value: bytes) -> str:
        return "0x" + bytes(value).hex()


class SignedCertificate(BaseModel):
    model_config = ConfigDict(frozen=True, populate_by_name=True)

    certificate: Certificate = Field(alias="cert")
    signature: str


class TransferCode(BaseModel):
    model_config = ConfigDict(frozen=True, populate_by_name=True)

    item_id: str = Field(alias="itemId")
    nominee: str
    code: str


class ItemRecord(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    item_id: str = Field(alias="itemId")
    owner: str
    name: str
    unique_id: str = Field(alias="uniqueId")
    serial: str
    manufacturer: str
    claimed_at: int = Field(default=0, alias="claimedAt")


class RegistrationStatus(BaseModel):
    registered: bool
    name: str = ""


class EventOutcome(BaseModel):
    item_id: str
    event: str
    transaction: Optional[str] = None


class AuthenticityResult(BaseModel):
    authentic: bool
    signer_label: Optional[str] = None
    signer: Optional[str] = None
    reason: Optional[str] = None


# ---------- HTTP payloads ----------
class CertificateFieldsIn(BaseModel):
    name: str
    unique_id: str
    serial: str
    owner: Optional[str] = None
    # list of items, or the dashboard's comma-separated text
    metadata: Union[List[str], str]
    date: Optional[int] = None


class SubmitCertificateIn(CertificateFieldsIn):
    date: int
    owner: str
    signer: str
    signature: str


class PayloadIn(BaseModel):
    payload: str


class ClaimCertificateIn(PayloadIn):
    claimant: str


class GenerateCodeIn(BaseModel):
    item_id: str
    owner: str
    nominee: str


class ClaimCodeIn(BaseModel):
    code: str
    claimant: str


class PayloadOut(BaseModel):
    unique_id: str
    signer: str
    signature: str
    payload: str


class RegisterIn(BaseModel):
    name: str


class IdentityChangedIn(BaseModel):
    previous: Optional[str] = None
    current: Optional[str] = None
