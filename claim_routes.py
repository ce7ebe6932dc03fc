# app/claim_routes.py
"""
HTTP surface of the claim client: submit, find-by-hash, check-status,
settle, plus registry funding and the per-claimer lookup.
"""
from __future__ import annotations

import logging
import threading

from fastapi import APIRouter, HTTPException, Depends
from pydantic import BaseModel, Field
from sqlalchemy.orm import Session

import config
from claim_client import ClaimClient
from chain.oracle import UmaOptimisticOracle
from chain.registry_gateway import LocalRegistryGateway, RegistryGateway, Web3RegistryGateway
from db import get_db, get_session_factory
from errors import (
    AlreadyResolvedError,
    AssertionIdNotFoundError,
    ChainConnectionError,
    ChallengePeriodNotElapsedError,
    ClaimNotFoundError,
    ClaimRegistryError,
    ClaimValidationError,
    ClientBusyError,
    InsufficientRewardBalanceError,
    TransactionNotFoundError,
)
from registry import ClaimRegistry
from store import SqlClaimStore
from wallet import get_account, get_w3, sign_and_send, wait_for_receipt

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api", tags=["claims"])

_ACTION_LOCK = threading.Lock()
_web3_gateway = None
_uma_oracle = None
_schema_ready = False


# ────────────────────────────────────────────────────────────
# Wiring
# ────────────────────────────────────────────────────────────

def _get_web3_gateway():
    global _web3_gateway
    if _web3_gateway is None:
        _web3_gateway = Web3RegistryGateway(
            w3=get_w3(),
            address=config.TWITTER_VERIFICATION_ADDRESS,
            chain_id=config.CHAIN_ID,
            get_account=get_account,
            send=sign_and_send,
            wait=wait_for_receipt,
            submit_gas=config.SUBMIT_GAS_LIMIT,
            settle_gas=config.SETTLE_GAS_LIMIT,
            session_factory=get_session_factory(),
        )
    return _web3_gateway


def _get_uma_oracle():
    global _uma_oracle
    if _uma_oracle is None:
        _uma_oracle = UmaOptimisticOracle(
            w3=get_w3(),
            address=config.OPTIMISTIC_ORACLE_ADDRESS,
            account=get_account(),
            send=sign_and_send,
            wait=wait_for_receipt,
        )
    return _uma_oracle


def _get_local_gateway(db: Session):
    global _schema_ready
    store = SqlClaimStore(db)
    if not _schema_ready:
        store.ensure_schema()
        _schema_ready = True
    try:
        account = get_account()
    except RuntimeError as e:
        raise ChainConnectionError(str(e)) from e
    registry = ClaimRegistry(store, _get_uma_oracle(), address=account.address)
    return LocalRegistryGateway(registry, sender=account.address)


def get_gateway(db: Session = Depends(get_db)) -> RegistryGateway:
    try:
        if config.REGISTRY_BACKEND == "local":
            return _get_local_gateway(db)
        return _get_web3_gateway()
    except ClaimRegistryError as e:
        raise _to_http(e)


def get_client(gateway: RegistryGateway = Depends(get_gateway)) -> ClaimClient:
    return ClaimClient(gateway, lock=_ACTION_LOCK)


_STATUS_CODES = (
    (ClaimValidationError, 400),
    (ClaimNotFoundError, 404),
    (TransactionNotFoundError, 404),
    (AssertionIdNotFoundError, 404),
    (AlreadyResolvedError, 409),
    (ChallengePeriodNotElapsedError, 425),
    (ClientBusyError, 429),
    (InsufficientRewardBalanceError, 503),
    (ChainConnectionError, 503),
)


def _to_http(err: ClaimRegistryError, extra: dict = None) -> HTTPException:
    code = 500
    for cls, status in _STATUS_CODES:
        if isinstance(err, cls):
            code = status
            break
    detail = {"error": type(err).__name__, "message": str(err), "retryable": err.retryable}
    if extra:
        detail.update(extra)
    if code == 500:
        logger.error("Claim request failed: %s", err)
    return HTTPException(code, detail)


# ────────────────────────────────────────────────────────────
# Claims
# ────────────────────────────────────────────────────────────

class SubmitClaimRequest(BaseModel):
    handle: str
    text: str


class FindByTxRequest(BaseModel):
    tx_hash: str


class DepositRequest(BaseModel):
    amount_wei: int = Field(..., gt=0)


@router.post("/claims/submit")
def submit_claim(req: SubmitClaimRequest, client: ClaimClient = Depends(get_client)):
    try:
        return client.submit(req.handle, req.text).to_dict()
    except ClaimRegistryError as e:
        raise _to_http(e)


@router.post("/claims/find-by-tx")
def find_by_tx(req: FindByTxRequest, client: ClaimClient = Depends(get_client)):
    try:
        status = client.find_by_tx_hash(req.tx_hash)
        return {
            "message": f"Found assertion ID: {status.assertion_id}",
            "assertion_id": status.assertion_id,
            "status": status.to_dict(),
        }
    except ClaimRegistryError as e:
        raise _to_http(e)


@router.get("/claims/by-claimer/{address}")
def claims_by_claimer(address: str, gateway: RegistryGateway = Depends(get_gateway)):
    try:
        return {"claimer": address, "assertion_ids": gateway.claims_by_claimer(address)}
    except ClaimRegistryError as e:
        raise _to_http(e)


@router.get("/claims/{assertion_id}/status")
def claim_status(assertion_id: str, client: ClaimClient = Depends(get_client)):
    try:
        return client.check_status(assertion_id).to_dict()
    except ClaimRegistryError as e:
        raise _to_http(e)


@router.post("/claims/{assertion_id}/settle")
def settle_claim(assertion_id: str, client: ClaimClient = Depends(get_client)):
    try:
        return client.settle(assertion_id)
    except AlreadyResolvedError as e:
        refreshed = client.last_status.to_dict() if client.last_status else None
        raise _to_http(e, {"status": refreshed})
    except ClaimRegistryError as e:
        raise _to_http(e)


# ────────────────────────────────────────────────────────────
# Registry funding
# ────────────────────────────────────────────────────────────

@router.get("/registry/balance")
def registry_balance(gateway: RegistryGateway = Depends(get_gateway)):
    try:
        wei = gateway.balance()
        return {"balance_wei": str(wei), "balance_eth": wei / 1e18}
    except ClaimRegistryError as e:
        raise _to_http(e)


@router.post("/registry/deposit")
def registry_deposit(req: DepositRequest, gateway: RegistryGateway = Depends(get_gateway)):
    try:
        gateway.ensure_ready()
        tx_hash = gateway.deposit(req.amount_wei)
        return {"tx_hash": tx_hash, "balance_wei": str(gateway.balance())}
    except ClaimRegistryError as e:
        raise _to_http(e)
