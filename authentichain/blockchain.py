# authentichain/blockchain.py
import json
import logging
import os
from typing import Dict, Iterable, List, Optional, Tuple

from eth_account import Account
from eth_account.signers.local import LocalAccount
from hexbytes import HexBytes
from web3 import AsyncHTTPProvider, AsyncWeb3, Web3
from web3.exceptions import ContractLogicError
from web3.logs import DISCARD

from .classify import describe, normalize
from .codec import normalize_address
from .errors import (
    AuthentiChainError,
    LedgerError,
    LedgerRejected,
    LookupUnavailable,
    SigningUnavailable,
    ValidationError,
)
from .schemas import Certificate, EventOutcome, ItemRecord, RegistrationStatus
from .settings import Settings, settings as default_settings

log = logging.getLogger("authentichain.blockchain")

HERE = os.path.dirname(__file__)
ABI_PATH = os.path.join(HERE, "artifacts", "Authenticity.json")


def load_abi(path: str = ABI_PATH) -> list:
    with open(path) as f:
        artifact = json.load(f)
    return artifact.get("abi", artifact) if isinstance(artifact, dict) else artifact


def _bytes32(value, what: str = "value") -> bytes:
    """
    Accepts bytes, HexBytes or a '0x...' hex string holding exactly 32 bytes.
    """
    try:
        b = bytes(HexBytes(value))
    except (TypeError, ValueError) as e:
        raise ValidationError(f"{what} is not hex: {e}")
    if len(b) != 32:
        raise ValidationError(f"{what} must be 32 bytes, got {len(b)}")
    return b


def _hex(value) -> str:
    return "0x" + bytes(HexBytes(value)).hex()


def _registration(result) -> RegistrationStatus:
    # struct outputs come back as (name, address), sometimes wrapped once more
    if isinstance(result, (list, tuple)) and result and isinstance(result[0], (list, tuple)):
        result = result[0]
    name = result[0] if isinstance(result, (list, tuple)) else (result or "")
    name = str(name)
    return RegistrationStatus(registered=bool(name.strip()), name=name)


def _certificate_struct(cert: Certificate) -> tuple:
    return (
        cert.name,
        cert.unique_id,
        cert.serial,
        int(cert.date),
        Web3.to_checksum_address(cert.owner),
        bytes(cert.metadata_hash),
        list(cert.metadata),
    )


class ContractRegistry:
    """
    Registry backed by the Authenticity contract.

    Reads are eth_call; writes are signed locally with the key configured for
    the submitting address and awaited until mined. Every write is dry-run with
    eth_call first so a revert surfaces with its reason instead of as a failed
    receipt.
    """

    def __init__(self, w3, contract, accounts: Iterable[LocalAccount] = (), gas: int = 500000, timeout: int = 120):
        self.w3 = w3
        self.contract = contract
        self.gas = gas
        self.timeout = timeout
        self._accounts: Dict[str, LocalAccount] = {a.address: a for a in accounts}

    @classmethod
    def from_settings(cls, s: Optional[Settings] = None) -> "ContractRegistry":
        s = s or default_settings
        w3 = AsyncWeb3(AsyncHTTPProvider(s.RPC_URL))
        contract = w3.eth.contract(address=Web3.to_checksum_address(s.CONTRACT_ADDRESS), abi=load_abi())
        accounts = [Account.from_key(pk) for pk in s.submitter_keys()]
        return cls(w3, contract, accounts, gas=s.TX_GAS, timeout=s.TX_TIMEOUT)

    def _account_for(self, sender: str) -> LocalAccount:
        address = normalize_address(sender)
        acct = self._accounts.get(address)
        if acct is None:
            raise SigningUnavailable(f"no transaction key configured for {address}")
        return acct

    # ---------- Reads ----------
    async def _lookup(self, fn_name: str, identity: str) -> RegistrationStatus:
        address = normalize_address(identity)
        try:
            result = await getattr(self.contract.functions, fn_name)(address).call()
        except ContractLogicError:
            # the contract reverts for unknown addresses
            return RegistrationStatus(registered=False)
        except Exception as e:
            log.warning("%s(%s) failed: %s", fn_name, address, describe(e))
            raise LookupUnavailable(describe(e)) from e
        return _registration(result)

    async def lookup_manufacturer(self, identity: str) -> RegistrationStatus:
        return await self._lookup("getManufacturer", identity)

    async def lookup_user(self, identity: str) -> RegistrationStatus:
        return await self._lookup("getUser", identity)

    async def list_items_owned_by(self, identity: str) -> List[ItemRecord]:
        address = normalize_address(identity)
        try:
            rows = await self.contract.functions.getAllItemsOwnedBy(address).call()
        except Exception as e:
            raise LookupUnavailable(describe(e)) from e
        return [
            ItemRecord(
                item_id=_hex(row[0]),
                name=row[1],
                unique_id=row[2],
                serial=row[3],
                owner=Web3.to_checksum_address(row[4]),
                manufacturer=Web3.to_checksum_address(row[5]),
                claimed_at=int(row[6]),
            )
            for row in rows
        ]

    # ---------- Writes ----------
    async def _send_signed_transaction_and_wait(self, signed_tx):
        """
        Send a signed transaction and wait for its receipt.

        Works with both eth-account return shapes (raw_transaction, rawTransaction).
        """
        raw = getattr(signed_tx, "raw_transaction", None) or getattr(signed_tx, "rawTransaction", None)
        if raw is None:
            raise LedgerError("signed transaction does not contain raw tx bytes")
        tx_hash = await self.w3.eth.send_raw_transaction(raw)
        return await self.w3.eth.wait_for_transaction_receipt(tx_hash, timeout=self.timeout)

    async def _transact(self, sender: str, fn, label: str):
        acct = self._account_for(sender)
        try:
            await fn.call({"from": acct.address})
            tx = await fn.build_transaction({
                "from": acct.address,
                "nonce": await self.w3.eth.get_transaction_count(acct.address),
                "gas": self.gas,
                "gasPrice": await self.w3.eth.gas_price,
            })
            signed = acct.sign_transaction(tx)
            receipt = await self._send_signed_transaction_and_wait(signed)
        except AuthentiChainError:
            raise
        except Exception as e:
            err = normalize(e)
            log.warning("%s from %s failed: %s", label, acct.address, err)
            raise err from e

        if receipt["status"] != 1:
            raise LedgerRejected(f"{label} transaction reverted", transaction=_hex(receipt["transactionHash"]))
        log.info("%s mined in %s", label, _hex(receipt["transactionHash"]))
        return receipt

    def _event(self, receipt, name: str) -> dict:
        events = getattr(self.contract.events, name)().process_receipt(receipt, errors=DISCARD)
        if not events:
            raise LedgerError(f"transaction did not emit {name}", transaction=_hex(receipt["transactionHash"]))
        return events[0]["args"]

    async def register_manufacturer(self, identity: str, name: str) -> EventOutcome:
        receipt = await self._transact(identity, self.contract.functions.manufacturerRegisters(name), "manufacturerRegisters")
        return EventOutcome(item_id="", event="ManufacturerRegistered", transaction=_hex(receipt["transactionHash"]))

    async def register_user(self, identity: str, name: str) -> EventOutcome:
        receipt = await self._transact(identity, self.contract.functions.userRegisters(name), "userRegisters")
        return EventOutcome(item_id="", event="UserRegistered", transaction=_hex(receipt["transactionHash"]))

    async def submit_certificate_claim(self, cert: Certificate, signature: str, claimant: str) -> EventOutcome:
        fn = self.contract.functions.claimOwnership(_certificate_struct(cert), HexBytes(signature))
        receipt = await self._transact(claimant, fn, "claimOwnership")
        args = self._event(receipt, "OwnershipClaimed")
        return EventOutcome(
            item_id=_hex(args["itemId"]), event="OwnershipClaimed", transaction=_hex(receipt["transactionHash"])
        )

    async def submit_transfer_code_generation(self, item_id: str, owner: str, nominee: str) -> Tuple[str, EventOutcome]:
        fn = self.contract.functions.generateChangeOfOwnershipCode(
            _bytes32(item_id, "item id"), Web3.to_checksum_address(nominee)
        )
        receipt = await self._transact(owner, fn, "generateChangeOfOwnershipCode")
        args = self._event(receipt, "OwnershipCodeGenerated")
        outcome = EventOutcome(
            item_id=_hex(args["itemId"]), event="OwnershipCodeGenerated", transaction=_hex(receipt["transactionHash"])
        )
        return _hex(args["code"]), outcome

    async def submit_transfer_code_claim(self, code: str, claimant: str) -> EventOutcome:
        fn = self.contract.functions.newOwnerClaimOwnership(_bytes32(code, "transfer code"))
        receipt = await self._transact(claimant, fn, "newOwnerClaimOwnership")
        args = self._event(receipt, "OwnershipTransferred")
        return EventOutcome(
            item_id=_hex(args["itemId"]), event="OwnershipTransferred", transaction=_hex(receipt["transactionHash"])
        )
