import os
import tempfile

_DB_DIR = tempfile.mkdtemp(prefix="authentichain-tests-")

MANUFACTURER_KEY = "0x" + "11" * 32

os.environ.setdefault("DATABASE_URL", f"sqlite:///{_DB_DIR}/test.db")
os.environ.setdefault("REGISTRY_BACKEND", "memory")
os.environ.setdefault("CHAIN_ID", "31337")
os.environ.setdefault("MANUFACTURER_PK", MANUFACTURER_KEY)

import pytest  # noqa: E402

from authentichain.codec import build_certificate  # noqa: E402
from authentichain.identity import LocalAccountIdentity  # noqa: E402
from authentichain.registry import InMemoryRegistry  # noqa: E402

CHAIN_ID = 31337


@pytest.fixture
def anyio_backend():
    return "asyncio"


@pytest.fixture
def manufacturer():
    return LocalAccountIdentity.from_key(MANUFACTURER_KEY)


@pytest.fixture
def rogue():
    return LocalAccountIdentity.from_key("0x" + "55" * 32)


@pytest.fixture
def alice():
    return LocalAccountIdentity.from_key("0x" + "22" * 32)


@pytest.fixture
def bob():
    return LocalAccountIdentity.from_key("0x" + "33" * 32)


@pytest.fixture
def carol():
    return LocalAccountIdentity.from_key("0x" + "44" * 32)


@pytest.fixture
def registry():
    return InMemoryRegistry(domain_id=CHAIN_ID)


@pytest.fixture
def widget(alice):
    return build_certificate("Widget", "W-1", "S-1", 1700000000, alice.address, ["Red", "128GB"])
