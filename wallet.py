# app/wallet.py
"""
Shared web3 connection and the service signer.

Both are created lazily so that importing the API (and the tests) does not
require a reachable RPC endpoint or a private key.
"""
import logging

from web3 import Web3
from web3.middleware import ExtraDataToPOAMiddleware
from eth_account import Account

from config import RPC_URL, SIGNER_PRIVATE_KEY, SIGNER_ADDRESS, RECEIPT_TIMEOUT

logger = logging.getLogger(__name__)

_w3 = None
_account = None


def get_w3() -> Web3:
    global _w3
    if _w3 is None:
        _w3 = Web3(Web3.HTTPProvider(RPC_URL))
        # POA chains (e.g. some L2 testnets) put extra bytes in the header
        _w3.middleware_onion.inject(ExtraDataToPOAMiddleware, layer=0)
    return _w3


def get_account():
    global _account
    if _account is None:
        if not SIGNER_PRIVATE_KEY:
            raise RuntimeError("SIGNER_PRIVATE_KEY not set")
        account = Account.from_key(SIGNER_PRIVATE_KEY)
        if SIGNER_ADDRESS and account.address.lower() != SIGNER_ADDRESS.lower():
            raise RuntimeError("SIGNER_PRIVATE_KEY does not match SIGNER_ADDRESS")
        _account = account
    return _account


def sign_and_send(tx: dict) -> str:
    w3 = get_w3()
    account = get_account()

    tx = dict(tx)
    tx.pop("gasPrice", None)
    tx.setdefault("from", account.address)

    try:
        base_fee = w3.eth.get_block("latest").baseFeePerGas
        priority = w3.eth.max_priority_fee * 150 // 100
        tx["type"] = 2
        tx["maxFeePerGas"] = base_fee * 2 + priority
        tx["maxPriorityFeePerGas"] = priority
    except Exception:
        tx["gasPrice"] = w3.eth.gas_price * 120 // 100

    tx["nonce"] = w3.eth.get_transaction_count(account.address, "pending")
    tx["chainId"] = w3.eth.chain_id

    if "gas" not in tx:
        try:
            tx["gas"] = w3.eth.estimate_gas(tx)
        except Exception:
            tx["gas"] = 250_000

    signed = account.sign_transaction(tx)
    tx_hash = w3.eth.send_raw_transaction(signed.raw_transaction)
    return Web3.to_hex(tx_hash)


def wait_for_receipt(tx_hash: str):
    """Block until mined. Raises if the transaction reverted."""
    w3 = get_w3()
    receipt = w3.eth.wait_for_transaction_receipt(tx_hash, timeout=RECEIPT_TIMEOUT)
    if receipt.status == 0:
        logger.warning("Transaction REVERTED: tx=%s gasUsed=%d", tx_hash, receipt.gasUsed)
        raise RuntimeError(f"Transaction {tx_hash} reverted on-chain")
    logger.info("Transaction confirmed: tx=%s gasUsed=%d", tx_hash, receipt.gasUsed)
    return receipt
