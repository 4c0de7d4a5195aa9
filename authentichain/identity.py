# authentichain/identity.py
import logging
import time
from typing import Callable, Dict, List, Optional, Protocol, Tuple

from eth_account import Account
from eth_account.signers.local import LocalAccount

from .codec import normalize_address
from .schemas import RegistrationStatus

log = logging.getLogger("authentichain.identity")


class SigningIdentity(Protocol):
    """Anything that can sign an EIP-712 message on behalf of `address`."""

    address: str

    def sign_typed_data(self, domain: dict, types: dict, value: dict) -> str:
        ...


class LocalAccountIdentity:
    """Signing identity backed by a private key held in process."""

    def __init__(self, account: LocalAccount):
        self._account = account

    @classmethod
    def from_key(cls, private_key: str) -> "LocalAccountIdentity":
        return cls(Account.from_key(private_key))

    @classmethod
    def create(cls) -> "LocalAccountIdentity":
        return cls(Account.create())

    @property
    def address(self) -> str:
        return self._account.address

    @property
    def account(self) -> LocalAccount:
        return self._account

    def sign_typed_data(self, domain: dict, types: dict, value: dict) -> str:
        signed = self._account.sign_typed_data(domain, types, value)
        return "0x" + bytes(signed.signature).hex()

    def __repr__(self):
        return f"LocalAccountIdentity({self.address})"


IdentityListener = Callable[[Optional[str], Optional[str]], None]


class IdentityEvents:
    """
    Account-changed notifications from the wallet layer.

    The wallet collaborator calls account_changed() when the active account
    switches or disconnects (current is None).
    """

    def __init__(self):
        self._listeners: List[IdentityListener] = []

    def subscribe(self, listener: IdentityListener) -> Callable[[], None]:
        self._listeners.append(listener)

        def unsubscribe():
            if listener in self._listeners:
                self._listeners.remove(listener)

        return unsubscribe

    def account_changed(self, previous: Optional[str], current: Optional[str]) -> None:
        for listener in list(self._listeners):
            listener(previous, current)


class RegistrationDirectory:
    """
    Cached registration lookups for display purposes (dashboard greetings).

    Entries expire after `ttl` seconds and are dropped whenever the wallet
    reports an identity change. Expired entries are purged on every miss and
    at most `maxsize` entries are kept, oldest first out. Authenticity checks
    never read from here.
    """

    def __init__(
        self,
        registry,
        ttl: int = 300,
        clock: Callable[[], float] = time.monotonic,
        maxsize: int = 1024,
    ):
        self._registry = registry
        self._ttl = ttl
        self._maxsize = maxsize
        self._clock = clock
        self._cache: Dict[Tuple[str, str], Tuple[float, RegistrationStatus]] = {}

    def attach(self, events: IdentityEvents) -> Callable[[], None]:
        return events.subscribe(self.on_identity_changed)

    def on_identity_changed(self, previous: Optional[str], current: Optional[str]) -> None:
        log.info("Identity changed, dropping cached registrations")
        for identity in (previous, current):
            if identity:
                self.invalidate(identity)

    def invalidate(self, identity: Optional[str] = None) -> None:
        if identity is None:
            self._cache.clear()
            return
        address = normalize_address(identity)
        for key in [k for k in self._cache if k[1] == address]:
            del self._cache[key]

    async def manufacturer(self, identity: str) -> RegistrationStatus:
        return await self._lookup("manufacturer", identity, self._registry.lookup_manufacturer)

    async def user(self, identity: str) -> RegistrationStatus:
        return await self._lookup("user", identity, self._registry.lookup_user)

    async def _lookup(self, role, identity, fetch) -> RegistrationStatus:
        address = normalize_address(identity)
        key = (role, address)
        now = self._clock()
        hit = self._cache.get(key)
        if hit and hit[0] > now:
            return hit[1]
        status = await fetch(address)
        self._purge(now)
        self._cache.pop(key, None)
        while len(self._cache) >= self._maxsize:
            del self._cache[next(iter(self._cache))]
        self._cache[key] = (now + self._ttl, status)
        return status

    def _purge(self, now: float) -> None:
        for key in [k for k, (expires, _) in self._cache.items() if expires <= now]:
            del self._cache[key]

    @property
    def size(self) -> int:
        return len(self._cache)
