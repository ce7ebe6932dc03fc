# app/registry.py
"""
Tweet claim registry.

A claim says "Twitter user @handle posted exactly this text". The registry
does not judge that itself: it asserts the sentence on an optimistic oracle,
keeps the claim metadata keyed by the oracle's assertion id, and pays a
fixed reward to the claimer once the oracle settles the assertion as true.

The claim sentence is read by the oracle's disputers, so its format must
stay byte-for-byte identical to what the deployed contract produces.
"""
from __future__ import annotations

import logging
import secrets
import time
from typing import Callable, List, Optional

from web3 import Web3

from chain.oracle import AssertionRecord, OptimisticOracle
from errors import (
    AlreadyResolvedError,
    ClaimNotFoundError,
    ClaimRegistryError,
    ClaimValidationError,
    InsufficientRewardBalanceError,
)
from models import (
    Claim,
    ClaimDetails,
    ClaimResolved,
    ClaimSubmitted,
    Deposited,
    RegistryEvent,
    RewardPaid,
)
from store import ClaimStore
from util import normalize_address, normalize_bytes32

logger = logging.getLogger(__name__)

REWARD_AMOUNT_WEI = Web3.to_wei(0.01, "ether")

CLAIM_TEMPLATE = (
    "Twitter user @{handle} posted a tweet with the exact text: '{text}' "
    "as of timestamp {timestamp}"
)


def build_claim_text(handle: str, text: str, timestamp: int) -> bytes:
    return CLAIM_TEMPLATE.format(handle=handle, text=text, timestamp=timestamp).encode("utf-8")


def new_tx_ref() -> str:
    return "0x" + secrets.token_hex(32)


class ClaimRegistry:
    def __init__(
        self,
        store: ClaimStore,
        oracle: OptimisticOracle,
        address: str,
        clock: Callable[[], float] = time.time,
    ):
        self.store = store
        self.oracle = oracle
        self.address = normalize_address(address)
        self.clock = clock

    def _now(self) -> int:
        return int(self.clock())

    def _emit(self, tx_ref: str, event: RegistryEvent):
        self.store.record_event(tx_ref, event)
        logger.info("%s tx=%s %s", event.name, tx_ref, event.to_dict())

    # ────────────────────────────────────────────────────────
    # Writes
    # ────────────────────────────────────────────────────────

    def submit_claim(self, sender: str, handle: str, text: str, tx_ref: Optional[str] = None) -> str:
        claimer = normalize_address(sender)
        tx_ref = tx_ref or new_tx_ref()
        timestamp = self._now()
        claim_text = build_claim_text(handle, text, timestamp)

        with self.store.transaction():
            assertion_id = normalize_bytes32(
                self.oracle.assert_with_defaults(claim_text, self.address)
            )
            if self.store.get_claim(assertion_id, for_update=True) is not None:
                raise ClaimRegistryError(f"Assertion {assertion_id} already has a claim")

            self.store.insert_claim(Claim(
                assertion_id=assertion_id,
                claimer=claimer,
                twitter_handle=handle,
                tweet_text=text,
                asserted_claim_text=claim_text,
                submitted_at=timestamp,
            ))
            self._emit(tx_ref, ClaimSubmitted(
                assertion_id=assertion_id,
                claimer=claimer,
                twitter_handle=handle,
                tweet_text=text,
            ))
        return assertion_id

    def settle_and_get_assertion_result(self, assertion_id: str, tx_ref: Optional[str] = None) -> bool:
        assertion_id = normalize_bytes32(assertion_id)
        tx_ref = tx_ref or new_tx_ref()

        with self.store.transaction():
            claim = self.store.get_claim(assertion_id, for_update=True)
            if claim is None:
                raise ClaimNotFoundError()
            if claim.is_resolved:
                raise AlreadyResolvedError()

            # Idempotent on the oracle side: a retry after a rolled-back
            # settlement reads back the same result.
            result = bool(self.oracle.settle_and_get_assertion_result(assertion_id))

            # another settlement may have committed while the oracle call ran
            if not self.store.mark_resolved(assertion_id):
                raise AlreadyResolvedError()
            claim.is_resolved = True
            self._emit(tx_ref, ClaimResolved(assertion_id=assertion_id, is_truthful=result))

            if result and not claim.is_rewarded:
                balance = self.store.get_balance(for_update=True)
                if balance < REWARD_AMOUNT_WEI:
                    logger.warning(
                        "Reward for %s blocked: balance %d < %d", assertion_id, balance, REWARD_AMOUNT_WEI
                    )
                    raise InsufficientRewardBalanceError()
                claim.is_rewarded = True
                self.store.set_balance(balance - REWARD_AMOUNT_WEI)
                self.store.credit(claim.claimer, REWARD_AMOUNT_WEI)
                self._emit(tx_ref, RewardPaid(
                    assertion_id=assertion_id,
                    claimer=claim.claimer,
                    amount=REWARD_AMOUNT_WEI,
                ))

            self.store.set_flags(
                assertion_id, is_resolved=claim.is_resolved, is_rewarded=claim.is_rewarded
            )
        return result

    def deposit(self, sender: str, amount_wei: int, tx_ref: Optional[str] = None) -> int:
        if amount_wei <= 0:
            raise ClaimValidationError("Deposit amount must be positive")
        sender = normalize_address(sender)
        tx_ref = tx_ref or new_tx_ref()
        with self.store.transaction():
            balance = self.store.get_balance(for_update=True) + amount_wei
            self.store.set_balance(balance)
            self._emit(tx_ref, Deposited(sender=sender, amount=amount_wei))
        return balance

    # ────────────────────────────────────────────────────────
    # Reads
    # ────────────────────────────────────────────────────────

    def get_assertion_result(self, assertion_id: str) -> bool:
        return bool(self.oracle.get_assertion_result(normalize_bytes32(assertion_id)))

    def get_assertion(self, assertion_id: str) -> AssertionRecord:
        return self.oracle.get_assertion(normalize_bytes32(assertion_id))

    def get_claim_details(self, assertion_id: str) -> ClaimDetails:
        claim = self.store.get_claim(normalize_bytes32(assertion_id))
        if claim is None:
            return ClaimDetails()
        return ClaimDetails(
            claimer=claim.claimer,
            twitter_handle=claim.twitter_handle,
            tweet_text=claim.tweet_text,
            is_resolved=claim.is_resolved,
            is_rewarded=claim.is_rewarded,
        )

    def is_claim_verified(self, assertion_id: str) -> bool:
        details = self.get_claim_details(assertion_id)
        return details.is_resolved and details.is_rewarded

    def can_be_settled(self, assertion_id: str) -> bool:
        assertion_id = normalize_bytes32(assertion_id)
        claim = self.store.get_claim(assertion_id)
        if claim is None or claim.is_resolved:
            return False
        record = self.oracle.get_assertion(assertion_id)
        return not record.settled and self._now() >= record.expiration_time

    def balance(self) -> int:
        return self.store.get_balance()

    def claims_by_claimer(self, claimer: str) -> List[str]:
        return self.store.claim_ids_for(normalize_address(claimer))

    def assertion_id_for_tx(self, tx_ref: str) -> Optional[str]:
        for event in self.store.events_for_tx(normalize_bytes32(tx_ref, "transaction hash")):
            if isinstance(event, ClaimSubmitted):
                return event.assertion_id
        return None
