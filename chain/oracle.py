# app/chain/oracle.py
"""
Optimistic-oracle boundary.

The registry only ever needs four calls from the oracle, so they are the
whole interface. UmaOptimisticOracle binds them to UMA's Optimistic
Oracle V3; tests supply their own implementation.
"""
from __future__ import annotations

import abc
import logging
from dataclasses import dataclass, asdict
from typing import Dict, Any

from web3 import Web3
from web3.logs import DISCARD

from errors import classify_chain_error
from util import ZERO_ADDRESS, normalize_bytes32
from .abi import OPTIMISTIC_ORACLE_V3_ABI

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class AssertionRecord:
    validated: bool = False
    resolved: bool = False
    settlement_resolution: bool = False
    asserter: str = ZERO_ADDRESS
    challenger: str = ZERO_ADDRESS
    settlement_timestamp: int = 0
    expiration_time: int = 0
    settled: bool = False

    @classmethod
    def from_tuple(cls, raw) -> "AssertionRecord":
        """Decode the registry contract's getAssertion() tuple."""
        return cls(
            validated=bool(raw[0]),
            resolved=bool(raw[1]),
            settlement_resolution=bool(raw[2]),
            asserter=str(raw[3]),
            challenger=str(raw[4]),
            settlement_timestamp=int(raw[5]),
            expiration_time=int(raw[6]),
            settled=bool(raw[7]),
        )

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


class OptimisticOracle(abc.ABC):
    @abc.abstractmethod
    def assert_with_defaults(self, claim: bytes, asserter: str) -> str:
        """Assert `claim` with default bond/liveness; returns the assertion id."""

    @abc.abstractmethod
    def settle_and_get_assertion_result(self, assertion_id: str) -> bool:
        ...

    @abc.abstractmethod
    def get_assertion_result(self, assertion_id: str) -> bool:
        ...

    @abc.abstractmethod
    def get_assertion(self, assertion_id: str) -> AssertionRecord:
        ...


class UmaOptimisticOracle(OptimisticOracle):
    """
    UMA OOv3 over web3.py. Writes are dry-run with .call() first so a
    revert comes back with its reason before any gas is spent.
    """

    def __init__(self, w3: Web3, address: str, account, send, wait):
        self.w3 = w3
        self.account = account
        self._send = send
        self._wait = wait
        self.contract = w3.eth.contract(
            address=Web3.to_checksum_address(address),
            abi=OPTIMISTIC_ORACLE_V3_ABI,
        )

    def _transact(self, fn, gas: int):
        try:
            fn.call({"from": self.account.address})
        except Exception as e:
            raise classify_chain_error(e) from e
        tx = fn.build_transaction({"from": self.account.address, "gas": gas})
        tx_hash = self._send(tx)
        logger.info("Submitted oracle tx=%s", tx_hash)
        return self._wait(tx_hash)

    def assert_with_defaults(self, claim: bytes, asserter: str) -> str:
        fn = self.contract.functions.assertTruthWithDefaults(
            claim, Web3.to_checksum_address(asserter)
        )
        receipt = self._transact(fn, gas=600_000)
        events = self.contract.events.AssertionMade().process_receipt(receipt, errors=DISCARD)
        if not events:
            raise RuntimeError("assertTruthWithDefaults succeeded but no AssertionMade event found")
        return normalize_bytes32(events[0].args.assertionId)

    def settle_and_get_assertion_result(self, assertion_id: str) -> bool:
        raw_id = bytes.fromhex(normalize_bytes32(assertion_id)[2:])
        self._transact(self.contract.functions.settleAndGetAssertionResult(raw_id), gas=400_000)
        return self.get_assertion_result(assertion_id)

    def get_assertion_result(self, assertion_id: str) -> bool:
        raw_id = bytes.fromhex(normalize_bytes32(assertion_id)[2:])
        try:
            return bool(self.contract.functions.getAssertionResult(raw_id).call())
        except Exception as e:
            raise classify_chain_error(e) from e

    def get_assertion(self, assertion_id: str) -> AssertionRecord:
        raw_id = bytes.fromhex(normalize_bytes32(assertion_id)[2:])
        try:
            a = self.contract.functions.getAssertion(raw_id).call()
        except Exception as e:
            raise classify_chain_error(e) from e
        # Assertion struct (by index):
        #   0: escalationManagerSettings, 1: asserter, 2: assertionTime,
        #   3: settled, 4: currency, 5: expirationTime, 6: settlementResolution,
        #   7: domainId, 8: identifier, 9: bond, 10: callbackRecipient, 11: disputer
        settled = bool(a[3])
        resolution = bool(a[6])
        expiration = int(a[5])
        return AssertionRecord(
            validated=settled and resolution,
            resolved=settled,
            settlement_resolution=resolution,
            asserter=str(a[1]),
            challenger=str(a[11]),
            settlement_timestamp=expiration if settled else 0,
            expiration_time=expiration,
            settled=settled,
        )
