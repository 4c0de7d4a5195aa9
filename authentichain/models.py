# authentichain/models.py
from datetime import datetime, timezone
from typing import Optional

from sqlalchemy import UniqueConstraint
from sqlmodel import Field, SQLModel


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class IssuedCertificate(SQLModel, table=True):
    __table_args__ = (UniqueConstraint("signer", "unique_id"),)

    id: Optional[int] = Field(default=None, primary_key=True)
    unique_id: str = Field(index=True)
    signer: str = Field(index=True)
    name: str
    serial: str
    owner: str
    metadata_hash: str
    signature: str
    payload: str
    issued_at: int
    created_at: datetime = Field(default_factory=_utcnow)
