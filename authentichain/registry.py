# authentichain/registry.py
"""
The ledger as seen by the certificate core.

Registry is the contract every ledger backend fulfils; all calls are
awaitable because each one is a round trip to the system of record.
InMemoryRegistry is a single-process ledger with the same rules as the
Authenticity contract, used for development and tests.
"""
import asyncio
import logging
import secrets
import time
from typing import Dict, List, Optional, Protocol, Tuple

from eth_abi import encode
from web3 import Web3

from .codec import normalize_address
from .errors import (
    AlreadyRegistered,
    CodeNotFound,
    ItemAlreadyClaimed,
    LedgerUnavailable,
    LookupUnavailable,
    MalformedSignature,
    NomineeMismatch,
    NotAuthentic,
    NotOwner,
    ValidationError,
)
from .schemas import Certificate, EventOutcome, ItemRecord, RegistrationStatus
from .settings import settings
from .typed_data import build_signing_message, verify

log = logging.getLogger("authentichain.registry")


class Registry(Protocol):
    async def lookup_manufacturer(self, identity: str) -> RegistrationStatus:
        ...

    async def lookup_user(self, identity: str) -> RegistrationStatus:
        ...

    async def register_manufacturer(self, identity: str, name: str) -> EventOutcome:
        ...

    async def register_user(self, identity: str, name: str) -> EventOutcome:
        ...

    async def submit_certificate_claim(
        self, cert: Certificate, signature: str, claimant: str
    ) -> EventOutcome:
        ...

    async def submit_transfer_code_generation(
        self, item_id: str, owner: str, nominee: str
    ) -> Tuple[str, EventOutcome]:
        ...

    async def submit_transfer_code_claim(self, code: str, claimant: str) -> EventOutcome:
        ...

    async def list_items_owned_by(self, identity: str) -> List[ItemRecord]:
        ...


def derive_item_id(manufacturer: str, unique_id: str) -> str:
    """keccak256(abi.encode(address manufacturer, string uniqueId)) as 0x-hex."""
    digest = Web3.keccak(encode(["address", "string"], [normalize_address(manufacturer), unique_id]))
    return "0x" + bytes(digest).hex()


class InMemoryRegistry:
    """
    Ledger kept in process memory.

    State transitions run under one asyncio.Lock, which gives the single
    global order per item that callers rely on. Transfer codes are 32 random
    bytes from `secrets`; at most one code is outstanding per item and any
    ownership change voids it.
    """

    def __init__(self, domain_id: Optional[int] = None, verifying_contract: Optional[str] = None):
        self.domain_id = settings.CHAIN_ID if domain_id is None else domain_id
        self.verifying_contract = verifying_contract
        self.available = True
        self._manufacturers: Dict[str, str] = {}
        self._users: Dict[str, str] = {}
        self._items: Dict[str, ItemRecord] = {}
        # code -> (item_id, nominee, owner when issued)
        self._codes: Dict[str, Tuple[str, str, str]] = {}
        self._lock = asyncio.Lock()

    def _ensure_available(self, lookup=False):
        if not self.available:
            raise (LookupUnavailable if lookup else LedgerUnavailable)("ledger is unreachable")

    # ---------- Registration ----------
    async def lookup_manufacturer(self, identity: str) -> RegistrationStatus:
        self._ensure_available(lookup=True)
        name = self._manufacturers.get(normalize_address(identity), "")
        return RegistrationStatus(registered=bool(name.strip()), name=name)

    async def lookup_user(self, identity: str) -> RegistrationStatus:
        self._ensure_available(lookup=True)
        name = self._users.get(normalize_address(identity), "")
        return RegistrationStatus(registered=bool(name.strip()), name=name)

    async def register_manufacturer(self, identity: str, name: str) -> EventOutcome:
        return await self._register(self._manufacturers, identity, name, "ManufacturerRegistered")

    async def register_user(self, identity: str, name: str) -> EventOutcome:
        return await self._register(self._users, identity, name, "UserRegistered")

    async def _register(self, table, identity, name, event) -> EventOutcome:
        self._ensure_available()
        if not isinstance(name, str) or not name.strip():
            raise ValidationError("a registration name is required")
        address = normalize_address(identity)
        async with self._lock:
            if address in table:
                raise AlreadyRegistered(f"{address} is already registered")
            table[address] = name.strip()
        log.info("%s: %s as %r", event, address, name.strip())
        return EventOutcome(item_id="", event=event)

    async def revoke_manufacturer(self, identity: str) -> None:
        async with self._lock:
            self._manufacturers.pop(normalize_address(identity), None)

    # ---------- Items ----------
    def put_item(self, record: ItemRecord) -> None:
        """Seed an item record directly (fixtures, migrations)."""
        record = record.model_copy(update={"owner": normalize_address(record.owner)})
        self._items[record.item_id] = record

    async def submit_certificate_claim(
        self, cert: Certificate, signature: str, claimant: str
    ) -> EventOutcome:
        self._ensure_available()
        claimant = normalize_address(claimant)
        try:
            signer = verify(build_signing_message(cert, self.domain_id, self.verifying_contract), signature)
        except MalformedSignature as e:
            raise NotAuthentic(f"InvalidSignature: {e}") from e

        async with self._lock:
            if signer not in self._manufacturers:
                raise NotAuthentic("NotManufacturer: certificate signer is not registered")
            item_id = derive_item_id(signer, cert.unique_id)
            existing = self._items.get(item_id)
            if existing is not None:
                # only the declared owner, still holding it, may replay
                if existing.owner != claimant or normalize_address(cert.owner) != claimant:
                    raise ItemAlreadyClaimed(f"item {item_id} is already claimed")
                return EventOutcome(item_id=item_id, event="OwnershipClaimed")

            self._items[item_id] = ItemRecord(
                item_id=item_id,
                owner=claimant,
                name=cert.name,
                unique_id=cert.unique_id,
                serial=cert.serial,
                manufacturer=signer,
                claimed_at=int(time.time()),
            )
        log.info("Item %s claimed by %s", item_id, claimant)
        return EventOutcome(item_id=item_id, event="OwnershipClaimed")

    async def submit_transfer_code_generation(
        self, item_id: str, owner: str, nominee: str
    ) -> Tuple[str, EventOutcome]:
        self._ensure_available()
        owner = normalize_address(owner)
        nominee = normalize_address(nominee)
        async with self._lock:
            item = self._items.get(item_id)
            if item is None or item.owner != owner:
                raise NotOwner(f"{owner} does not own item {item_id}")
            self._void_codes(item_id)
            code = "0x" + secrets.token_hex(32)
            self._codes[code] = (item_id, nominee, owner)
        log.info("Ownership code generated for item %s", item_id)
        return code, EventOutcome(item_id=item_id, event="OwnershipCodeGenerated")

    async def submit_transfer_code_claim(self, code: str, claimant: str) -> EventOutcome:
        self._ensure_available()
        claimant = normalize_address(claimant)
        async with self._lock:
            entry = self._codes.get(code)
            if entry is None:
                raise CodeNotFound("transfer code is unknown or already used")
            item_id, nominee, issued_by = entry
            item = self._items.get(item_id)
            if item is None or item.owner != issued_by:
                del self._codes[code]
                raise CodeNotFound("transfer code is no longer valid")
            if claimant != nominee:
                raise NomineeMismatch(f"{claimant} is not the nominee of this code")

            self._items[item_id] = item.model_copy(update={"owner": claimant})
            self._void_codes(item_id)
        log.info("Item %s transferred to %s", item_id, claimant)
        return EventOutcome(item_id=item_id, event="OwnershipTransferred")

    def _void_codes(self, item_id: str) -> None:
        for code in [c for c, entry in self._codes.items() if entry[0] == item_id]:
            del self._codes[code]

    async def list_items_owned_by(self, identity: str) -> List[ItemRecord]:
        self._ensure_available(lookup=True)
        owner = normalize_address(identity)
        items = [i.model_copy() for i in self._items.values() if i.owner == owner]
        return sorted(items, key=lambda i: (i.claimed_at, i.item_id))
