# app/claim_client.py
"""
Form-driven claim controller.

One user action runs at a time: submit, find-by-hash, check-status or
settle. Nothing polls in the background; every state change is the result
of an action. The registry is the final authority on settlement, so the
locally computed settleability is advisory only.
"""
from __future__ import annotations

import enum
import logging
import threading
from contextlib import contextmanager
from dataclasses import dataclass, field, asdict
from typing import Any, Dict, Optional

from chain.oracle import AssertionRecord
from chain.registry_gateway import RegistryGateway
from errors import (
    AlreadyResolvedError,
    AssertionIdNotFoundError,
    ClaimValidationError,
    ClientBusyError,
    classify_chain_error,
)
from models import ClaimDetails
from util import clean_handle, normalize_bytes32

logger = logging.getLogger(__name__)


class ClientState(str, enum.Enum):
    IDLE = "idle"
    SUBMITTING = "submitting"
    SUBMITTED = "submitted"
    ID_KNOWN = "id_known"
    CHECKING_STATUS = "checking_status"
    SETTLEABLE = "settleable"
    NOT_YET = "not_yet"
    SETTLING = "settling"
    SETTLED = "settled"


@dataclass
class ClientResult:
    status: str
    message: str
    tx_hash: Optional[str] = None
    assertion_id: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


@dataclass
class ClaimStatus:
    assertion_id: str
    claim: ClaimDetails
    assertion: Optional[AssertionRecord] = None
    can_settle: bool = False
    warnings: list = field(default_factory=list)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "assertion_id": self.assertion_id,
            "claim": self.claim.to_dict(),
            "assertion": self.assertion.to_dict() if self.assertion else None,
            "can_settle": self.can_settle,
            "verified": self.claim.is_resolved and self.claim.is_rewarded,
            "warnings": list(self.warnings),
        }


class ClaimClient:
    def __init__(self, gateway: RegistryGateway, lock: Optional[threading.Lock] = None):
        self.gateway = gateway
        self.state = ClientState.IDLE
        self.assertion_id: Optional[str] = None
        self.last_status: Optional[ClaimStatus] = None
        # the HTTP layer shares one lock across per-request clients
        self._lock = lock or threading.Lock()

    @contextmanager
    def _action(self):
        # one request in flight; duplicates are rejected, not queued
        if not self._lock.acquire(blocking=False):
            raise ClientBusyError()
        try:
            yield
        finally:
            self._lock.release()

    # ────────────────────────────────────────────────────────
    # Submit
    # ────────────────────────────────────────────────────────

    def submit(self, handle: str, text: str) -> ClientResult:
        if not handle or not handle.strip() or not text or not text.strip():
            raise ClaimValidationError("Please enter both Twitter handle and tweet text")
        handle = clean_handle(handle)
        if not handle:
            raise ClaimValidationError("Please enter both Twitter handle and tweet text")

        with self._action():
            self.gateway.ensure_ready()
            self.state = ClientState.SUBMITTING
            try:
                tx_hash = self.gateway.submit_claim(handle, text)
            except Exception as e:
                self.state = ClientState.IDLE
                raise classify_chain_error(e) from e

            self.state = ClientState.SUBMITTED
            logger.info("Claim transaction sent: %s", tx_hash)
            try:
                assertion_id = self.gateway.wait_for_assertion_id(tx_hash)
            except Exception as e:
                raise classify_chain_error(e) from e

            if not assertion_id:
                return ClientResult(
                    status="Claim processed",
                    message=(
                        "Your claim has been submitted, but we could not automatically extract "
                        "the assertion ID. Use \"Find Assertion ID\" with the transaction hash."
                    ),
                    tx_hash=tx_hash,
                )

            self.assertion_id = assertion_id
            self.state = ClientState.ID_KNOWN
            return ClientResult(
                status="Claim processed",
                message=(
                    "Your claim has been submitted. The verification will be completed once "
                    "the UMA challenge period ends."
                ),
                tx_hash=tx_hash,
                assertion_id=assertion_id,
            )

    # ────────────────────────────────────────────────────────
    # Recover by transaction hash
    # ────────────────────────────────────────────────────────

    def find_by_tx_hash(self, tx_hash: str) -> ClaimStatus:
        if not tx_hash or not tx_hash.strip():
            raise ClaimValidationError("Please enter a transaction hash")
        tx_hash = normalize_bytes32(tx_hash, "transaction hash")

        with self._action():
            assertion_id = self.gateway.find_assertion_id(tx_hash)
            if not assertion_id:
                raise AssertionIdNotFoundError()
            logger.info("Found assertion ID %s in tx %s", assertion_id, tx_hash)
            self.assertion_id = assertion_id
            self.state = ClientState.ID_KNOWN
            return self._check_status(assertion_id)

    # ────────────────────────────────────────────────────────
    # Status
    # ────────────────────────────────────────────────────────

    def check_status(self, assertion_id: Optional[str] = None) -> ClaimStatus:
        assertion_id = assertion_id or self.assertion_id
        if not assertion_id:
            raise ClaimValidationError("Please enter an assertion ID")
        assertion_id = normalize_bytes32(assertion_id)
        with self._action():
            return self._check_status(assertion_id)

    def _check_status(self, assertion_id: str) -> ClaimStatus:
        self.state = ClientState.CHECKING_STATUS
        try:
            details = self.gateway.get_claim_details(assertion_id)
        except Exception as e:
            self.state = ClientState.ID_KNOWN
            raise classify_chain_error(e) from e

        status = ClaimStatus(assertion_id=assertion_id, claim=details)

        # Secondary reads: degrade, never block. If settleability is unknown
        # let the user try and have the registry reject it.
        try:
            status.assertion = self.gateway.get_assertion(assertion_id)
            try:
                status.can_settle = bool(self.gateway.can_be_settled(assertion_id))
            except Exception as e:
                logger.warning("canBeSettled(%s) failed: %s", assertion_id, e)
                status.warnings.append(f"Could not determine settleability: {e}")
                status.can_settle = True
        except Exception as e:
            logger.warning("getAssertion(%s) failed: %s", assertion_id, e)
            status.warnings.append(f"Could not load assertion details: {e}")
            status.can_settle = True

        self.assertion_id = assertion_id
        self.last_status = status
        if details.is_resolved:
            self.state = ClientState.SETTLED
        elif status.can_settle:
            self.state = ClientState.SETTLEABLE
        else:
            self.state = ClientState.NOT_YET
        return status

    # ────────────────────────────────────────────────────────
    # Settle
    # ────────────────────────────────────────────────────────

    def settle(self, assertion_id: Optional[str] = None) -> Dict[str, Any]:
        assertion_id = assertion_id or self.assertion_id
        if not assertion_id:
            raise ClaimValidationError("Please enter an assertion ID")
        assertion_id = normalize_bytes32(assertion_id)

        with self._action():
            self.gateway.ensure_ready()
            previous = self.state
            self.state = ClientState.SETTLING
            try:
                tx_hash = self.gateway.settle(assertion_id)
            except Exception as e:
                err = classify_chain_error(e)
                if isinstance(err, AlreadyResolvedError):
                    logger.info("Settlement of %s: already resolved, refreshing", assertion_id)
                    try:
                        self._check_status(assertion_id)
                    except Exception as refresh_err:
                        logger.warning("Status refresh after settle failed: %s", refresh_err)
                else:
                    self.state = previous
                raise err from e

            status = self._check_status(assertion_id)
            result = ClientResult(
                status="Claim settled",
                message="The claim has been settled. Check the claim status for details.",
                tx_hash=tx_hash,
                assertion_id=assertion_id,
            )
            return {"result": result.to_dict(), "status": status.to_dict()}
