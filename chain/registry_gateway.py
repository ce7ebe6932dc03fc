# app/chain/registry_gateway.py
"""
What the claim client talks to.

Web3RegistryGateway drives the deployed TwitterVerification contract.
LocalRegistryGateway drives an in-process ClaimRegistry; its "transaction
hashes" are the references the registry records its events under.
"""
from __future__ import annotations

import abc
import logging
from typing import Callable, List, Optional

from sqlalchemy import text as sql_text
from web3 import Web3
from web3.exceptions import TransactionNotFound

from errors import ChainConnectionError, TransactionNotFoundError, classify_chain_error
from models import ClaimDetails
from registry import ClaimRegistry, new_tx_ref
from util import normalize_address, normalize_bytes32
from .abi import TWITTER_VERIFICATION_ABI
from .oracle import AssertionRecord
from .receipts import find_assertion_id

logger = logging.getLogger(__name__)


class RegistryGateway(abc.ABC):
    backend = ""

    @abc.abstractmethod
    def ensure_ready(self) -> None:
        """Raise ChainConnectionError if writes cannot be sent."""

    @abc.abstractmethod
    def submit_claim(self, handle: str, text: str) -> str:
        """Send the claim; returns the transaction hash."""

    @abc.abstractmethod
    def wait_for_assertion_id(self, tx_hash: str) -> Optional[str]:
        """Wait for the transaction to be mined and scan it for the assertion id."""

    @abc.abstractmethod
    def find_assertion_id(self, tx_hash: str) -> Optional[str]:
        """Scan an already-mined transaction; TransactionNotFoundError if unknown."""

    @abc.abstractmethod
    def settle(self, assertion_id: str) -> str:
        ...

    @abc.abstractmethod
    def get_claim_details(self, assertion_id: str) -> ClaimDetails:
        ...

    @abc.abstractmethod
    def get_assertion(self, assertion_id: str) -> AssertionRecord:
        ...

    @abc.abstractmethod
    def get_assertion_result(self, assertion_id: str) -> bool:
        ...

    @abc.abstractmethod
    def can_be_settled(self, assertion_id: str) -> bool:
        ...

    @abc.abstractmethod
    def is_claim_verified(self, assertion_id: str) -> bool:
        ...

    @abc.abstractmethod
    def balance(self) -> int:
        ...

    @abc.abstractmethod
    def deposit(self, amount_wei: int) -> str:
        ...

    @abc.abstractmethod
    def claims_by_claimer(self, claimer: str) -> List[str]:
        ...


# ────────────────────────────────────────────────────────────
# Deployed contract
# ────────────────────────────────────────────────────────────

def _raw_id(assertion_id: str) -> bytes:
    return bytes.fromhex(normalize_bytes32(assertion_id)[2:])


class Web3RegistryGateway(RegistryGateway):
    backend = "web3"

    def __init__(
        self,
        w3: Web3,
        address: str,
        chain_id: int,
        get_account: Callable,
        send: Callable[[dict], str],
        wait: Callable,
        submit_gas: int = 1_000_000,
        settle_gas: int = 500_000,
        session_factory: Optional[Callable] = None,
    ):
        self.w3 = w3
        self.chain_id = chain_id
        self._get_account = get_account
        self._send = send
        self._wait = wait
        self.submit_gas = submit_gas
        self.settle_gas = settle_gas
        self._session_factory = session_factory
        self.contract = w3.eth.contract(
            address=Web3.to_checksum_address(address),
            abi=TWITTER_VERIFICATION_ABI,
        )

    def ensure_ready(self):
        try:
            connected = self.w3.is_connected()
            chain_id = self.w3.eth.chain_id if connected else None
        except Exception as e:
            raise ChainConnectionError(f"Chain connection failed: {e}") from e
        if not connected:
            raise ChainConnectionError("Web3 RPC not connected")
        if chain_id != self.chain_id:
            raise ChainConnectionError("Please connect to Sepolia testnet")
        try:
            self._get_account()
        except RuntimeError as e:
            raise ChainConnectionError(str(e)) from e

    def _call(self, fn):
        try:
            return fn.call()
        except Exception as e:
            raise classify_chain_error(e) from e

    def _transact(self, fn, gas: int, value: int = 0) -> str:
        account = self._get_account()
        # dry run first so the revert reason reaches the caller
        try:
            fn.call({"from": account.address, "value": value})
            tx = fn.build_transaction({"from": account.address, "gas": gas, "value": value})
            return self._send(tx)
        except Exception as e:
            raise classify_chain_error(e) from e

    def submit_claim(self, handle, text):
        tx_hash = self._transact(self.contract.functions.submitClaim(handle, text), self.submit_gas)
        logger.info("Submitted claim: handle=%s tx=%s", handle, tx_hash)
        return tx_hash

    def wait_for_assertion_id(self, tx_hash):
        try:
            receipt = self._wait(tx_hash)
        except Exception as e:
            raise classify_chain_error(e) from e
        return find_assertion_id(receipt, self.contract)

    def find_assertion_id(self, tx_hash):
        tx_hash = normalize_bytes32(tx_hash, "transaction hash")
        try:
            receipt = self.w3.eth.get_transaction_receipt(tx_hash)
        except TransactionNotFound:
            receipt = None
        except Exception as e:
            raise classify_chain_error(e) from e
        if receipt is None:
            raise TransactionNotFoundError()
        return find_assertion_id(receipt, self.contract)

    def settle(self, assertion_id):
        tx_hash = self._transact(
            self.contract.functions.settleAndGetAssertionResult(_raw_id(assertion_id)),
            self.settle_gas,
        )
        logger.info("Submitted settlement: assertion=%s tx=%s", assertion_id, tx_hash)
        try:
            self._wait(tx_hash)
        except Exception as e:
            raise classify_chain_error(e) from e
        return tx_hash

    def get_claim_details(self, assertion_id):
        claimer, handle, tweet, resolved, rewarded = self._call(
            self.contract.functions.getClaimDetails(_raw_id(assertion_id))
        )
        return ClaimDetails(
            claimer=str(claimer),
            twitter_handle=str(handle),
            tweet_text=str(tweet),
            is_resolved=bool(resolved),
            is_rewarded=bool(rewarded),
        )

    def get_assertion(self, assertion_id):
        return AssertionRecord.from_tuple(
            self._call(self.contract.functions.getAssertion(_raw_id(assertion_id)))
        )

    def get_assertion_result(self, assertion_id):
        return bool(self._call(self.contract.functions.getAssertionResult(_raw_id(assertion_id))))

    def can_be_settled(self, assertion_id):
        return bool(self._call(self.contract.functions.canBeSettled(_raw_id(assertion_id))))

    def is_claim_verified(self, assertion_id):
        return bool(self._call(self.contract.functions.isClaimVerified(_raw_id(assertion_id))))

    def balance(self):
        try:
            return int(self.w3.eth.get_balance(self.contract.address))
        except Exception as e:
            raise classify_chain_error(e) from e

    def deposit(self, amount_wei):
        account = self._get_account()
        tx = {"from": account.address, "to": self.contract.address, "value": amount_wei, "gas": 60_000}
        try:
            tx_hash = self._send(tx)
            self._wait(tx_hash)
        except Exception as e:
            raise classify_chain_error(e) from e
        logger.info("Funded registry with %d wei: tx=%s", amount_wei, tx_hash)
        return tx_hash

    def claims_by_claimer(self, claimer):
        """Served from the claim_index table kept by chain.indexer."""
        if self._session_factory is None:
            return []
        db = self._session_factory()
        try:
            rows = db.execute(
                sql_text(
                    "SELECT assertion_id FROM claim_index WHERE lower(claimer) = :c "
                    "ORDER BY block_number, log_index"
                ),
                {"c": normalize_address(claimer).lower()},
            ).fetchall()
            return [r[0] for r in rows]
        except Exception as e:
            logger.warning("claim_index lookup failed: %s", e)
            return []
        finally:
            db.close()


# ────────────────────────────────────────────────────────────
# In-process registry
# ────────────────────────────────────────────────────────────

class LocalRegistryGateway(RegistryGateway):
    backend = "local"

    def __init__(self, registry: ClaimRegistry, sender: str):
        self.registry = registry
        self.sender = sender

    def ensure_ready(self):
        return None

    def submit_claim(self, handle, text):
        tx_ref = new_tx_ref()
        self.registry.submit_claim(self.sender, handle, text, tx_ref=tx_ref)
        return tx_ref

    def wait_for_assertion_id(self, tx_hash):
        # writes are synchronous: already "mined"
        return self.registry.assertion_id_for_tx(tx_hash)

    def find_assertion_id(self, tx_hash):
        tx_hash = normalize_bytes32(tx_hash, "transaction hash")
        if not self.registry.store.events_for_tx(tx_hash):
            raise TransactionNotFoundError()
        return self.registry.assertion_id_for_tx(tx_hash)

    def settle(self, assertion_id):
        tx_ref = new_tx_ref()
        self.registry.settle_and_get_assertion_result(assertion_id, tx_ref=tx_ref)
        return tx_ref

    def get_claim_details(self, assertion_id):
        return self.registry.get_claim_details(assertion_id)

    def get_assertion(self, assertion_id):
        return self.registry.get_assertion(assertion_id)

    def get_assertion_result(self, assertion_id):
        return self.registry.get_assertion_result(assertion_id)

    def can_be_settled(self, assertion_id):
        return self.registry.can_be_settled(assertion_id)

    def is_claim_verified(self, assertion_id):
        return self.registry.is_claim_verified(assertion_id)

    def balance(self):
        return self.registry.balance()

    def deposit(self, amount_wei):
        tx_ref = new_tx_ref()
        self.registry.deposit(self.sender, amount_wei, tx_ref=tx_ref)
        return tx_ref

    def claims_by_claimer(self, claimer):
        return self.registry.claims_by_claimer(claimer)
