from unittest.mock import AsyncMock

import pytest
from eth_account import Account

from authentichain.identity import IdentityEvents, LocalAccountIdentity, RegistrationDirectory
from authentichain.schemas import RegistrationStatus

pytestmark = pytest.mark.anyio


class _Clock:
    def __init__(self):
        self.now = 1000.0

    def __call__(self):
        return self.now


def _ledger(name="Acme"):
    ledger = AsyncMock()
    ledger.lookup_manufacturer.return_value = RegistrationStatus(registered=True, name=name)
    ledger.lookup_user.return_value = RegistrationStatus(registered=False)
    return ledger


async def test_local_identity_address_matches_key():
    key = "0x" + "22" * 32
    assert LocalAccountIdentity.from_key(key).address == Account.from_key(key).address


async def test_lookups_are_cached(manufacturer):
    ledger = _ledger()
    directory = RegistrationDirectory(ledger)

    first = await directory.manufacturer(manufacturer.address)
    second = await directory.manufacturer(manufacturer.address.lower())

    assert first == second == RegistrationStatus(registered=True, name="Acme")
    assert ledger.lookup_manufacturer.await_count == 1


async def test_roles_are_cached_separately(manufacturer):
    ledger = _ledger()
    directory = RegistrationDirectory(ledger)

    assert (await directory.manufacturer(manufacturer.address)).registered
    assert not (await directory.user(manufacturer.address)).registered
    ledger.lookup_user.assert_awaited_once()


async def test_entries_expire(manufacturer):
    ledger = _ledger()
    clock = _Clock()
    directory = RegistrationDirectory(ledger, ttl=60, clock=clock)

    await directory.manufacturer(manufacturer.address)
    clock.now += 61
    await directory.manufacturer(manufacturer.address)

    assert ledger.lookup_manufacturer.await_count == 2


async def test_identity_change_invalidates(manufacturer, alice):
    ledger = _ledger()
    events = IdentityEvents()
    directory = RegistrationDirectory(ledger)
    directory.attach(events)

    await directory.manufacturer(manufacturer.address)
    await directory.manufacturer(alice.address)
    events.account_changed(manufacturer.address, None)
    await directory.manufacturer(manufacturer.address)
    await directory.manufacturer(alice.address)

    # only the identity that changed was fetched again
    assert ledger.lookup_manufacturer.await_count == 3


async def test_unsubscribe_stops_notifications():
    seen = []
    events = IdentityEvents()
    unsubscribe = events.subscribe(lambda prev, cur: seen.append((prev, cur)))

    events.account_changed(None, "0x" + "01" * 20)
    unsubscribe()
    events.account_changed("0x" + "01" * 20, None)

    assert seen == [(None, "0x" + "01" * 20)]


def _address(i: int) -> str:
    return "0x" + format(i + 1, "040x")


async def test_expired_entries_are_purged():
    clock = _Clock()
    directory = RegistrationDirectory(_ledger(), ttl=1, clock=clock)
    for i in range(200):
        await directory.manufacturer(_address(i))
    assert directory.size == 200

    clock.now += 10000
    await directory.manufacturer(_address(500))

    assert directory.size == 1


async def test_cache_is_bounded():
    ledger = _ledger()
    directory = RegistrationDirectory(ledger, ttl=3600, clock=_Clock(), maxsize=10)
    for i in range(50):
        await directory.manufacturer(_address(i))

    assert directory.size == 10
    # the oldest entries were dropped first
    await directory.manufacturer(_address(0))
    assert ledger.lookup_manufacturer.await_count == 51
    await directory.manufacturer(_address(49))
    assert ledger.lookup_manufacturer.await_count == 51
