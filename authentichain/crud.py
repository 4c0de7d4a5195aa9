# authentichain/crud.py

from typing import List, Optional

from sqlalchemy.exc import IntegrityError
from sqlmodel import SQLModel, Session, select, create_engine

from .codec import encode_payload, normalize_address
from .errors import DuplicateCertificate
from .models import IssuedCertificate
from .schemas import SignedCertificate
from .settings import settings


# ---------- Database Setup ----------
engine = create_engine(settings.DATABASE_URL, echo=False)


def init_db():
    """Initialize all SQLModel tables."""
    SQLModel.metadata.create_all(engine)


# ---------- ISSUED CERTIFICATES ----------
def record_issued_certificate(signed: SignedCertificate, signer: str) -> IssuedCertificate:
    """
    Store a certificate that passed its signing self-check.

    A manufacturer's uniqueId names exactly one item, so issuing it twice is rejected.
    """
    signer = normalize_address(signer)
    cert = signed.certificate
    with Session(engine) as s:
        q = select(IssuedCertificate).where(
            IssuedCertificate.signer == signer,
            IssuedCertificate.unique_id == cert.unique_id,
        )
        if s.exec(q).first() is not None:
            raise DuplicateCertificate(f"certificate '{cert.unique_id}' was already issued by {signer}")
        row = IssuedCertificate(
            unique_id=cert.unique_id,
            signer=signer,
            name=cert.name,
            serial=cert.serial,
            owner=cert.owner,
            metadata_hash="0x" + bytes(cert.metadata_hash).hex(),
            signature=signed.signature,
            payload=encode_payload(signed),
            issued_at=cert.date,
        )
        s.add(row)
        try:
            s.commit()
        except IntegrityError as e:
            # another worker inserted the same (signer, unique_id) first
            s.rollback()
            raise DuplicateCertificate(
                f"certificate '{cert.unique_id}' was already issued by {signer}"
            ) from e
        s.refresh(row)
        return row


def get_issued_certificate(unique_id: str, signer: Optional[str] = None) -> Optional[IssuedCertificate]:
    """Fetch an issued certificate by uniqueId, optionally for one signer."""
    with Session(engine) as s:
        q = select(IssuedCertificate).where(IssuedCertificate.unique_id == unique_id)
        if signer:
            q = q.where(IssuedCertificate.signer == normalize_address(signer))
        return s.exec(q.order_by(IssuedCertificate.id.desc())).first()


def list_issued_certificates(signer: str, limit: int = 50) -> List[IssuedCertificate]:
    """List a manufacturer's most recent certificates."""
    with Session(engine) as s:
        q = (
            select(IssuedCertificate)
            .where(IssuedCertificate.signer == normalize_address(signer))
            .order_by(IssuedCertificate.id.desc())
            .limit(limit)
        )
        return s.exec(q).all()
