# app/chain/abi.py
"""
Contract ABIs.

The registry ABI is read from the Hardhat build artifact when it exists
(`npx hardhat compile` writes artifacts/contracts/<Name>.sol/<Name>.json);
otherwise the inline copy below is used. UMA's OOv3 ABI is external and
only the parts we call are kept inline.
"""
from __future__ import annotations

import json
import logging
from typing import List, Dict, Any, Optional

from web3 import Web3

from config import ARTIFACTS_DIR

logger = logging.getLogger(__name__)


def load_abi(contract_name: str) -> Optional[List[Dict[str, Any]]]:
    """
    Load ABI for a contract from the Hardhat build output.

    Returns None if the artifact is missing so callers can fall back
    to an inline ABI.
    """
    artifact = ARTIFACTS_DIR / f"{contract_name}.sol" / f"{contract_name}.json"
    if not artifact.exists():
        return None

    with artifact.open() as f:
        data = json.load(f)

    abi = data.get("abi")
    if not abi:
        logger.warning("No 'abi' key in %s, using inline ABI", artifact)
        return None
    return abi


_ASSERTION_RECORD = {
    "name": "",
    "type": "tuple",
    "components": [
        {"name": "validated", "type": "bool"},
        {"name": "resolved", "type": "bool"},
        {"name": "settlementResolution", "type": "bool"},
        {"name": "asserter", "type": "address"},
        {"name": "challenger", "type": "address"},
        {"name": "settlementTimestamp", "type": "uint64"},
        {"name": "expirationTime", "type": "uint64"},
        {"name": "settled", "type": "bool"},
    ],
}

_ID_INPUT = [{"name": "assertionId", "type": "bytes32"}]

TWITTER_VERIFICATION_ABI = load_abi("TwitterVerification") or [
    {
        "type": "function",
        "name": "submitClaim",
        "inputs": [
            {"name": "twitterHandle", "type": "string"},
            {"name": "tweetText", "type": "string"},
        ],
        "outputs": [{"name": "", "type": "bytes32"}],
        "stateMutability": "nonpayable",
    },
    {
        "type": "function",
        "name": "settleAndGetAssertionResult",
        "inputs": _ID_INPUT,
        "outputs": [{"name": "", "type": "bool"}],
        "stateMutability": "nonpayable",
    },
    {
        "type": "function",
        "name": "getAssertionResult",
        "inputs": _ID_INPUT,
        "outputs": [{"name": "", "type": "bool"}],
        "stateMutability": "view",
    },
    {
        "type": "function",
        "name": "getAssertion",
        "inputs": _ID_INPUT,
        "outputs": [_ASSERTION_RECORD],
        "stateMutability": "view",
    },
    {
        "type": "function",
        "name": "getClaimDetails",
        "inputs": _ID_INPUT,
        "outputs": [
            {"name": "claimer", "type": "address"},
            {"name": "twitterHandle", "type": "string"},
            {"name": "tweetText", "type": "string"},
            {"name": "isResolved", "type": "bool"},
            {"name": "isRewarded", "type": "bool"},
        ],
        "stateMutability": "view",
    },
    {
        "type": "function",
        "name": "isClaimVerified",
        "inputs": _ID_INPUT,
        "outputs": [{"name": "", "type": "bool"}],
        "stateMutability": "view",
    },
    {
        "type": "function",
        "name": "canBeSettled",
        "inputs": _ID_INPUT,
        "outputs": [{"name": "", "type": "bool"}],
        "stateMutability": "view",
    },
    {"type": "receive", "stateMutability": "payable"},
    {"type": "event", "name": "ClaimSubmitted", "anonymous": False, "inputs": [
        {"name": "assertionId", "type": "bytes32", "indexed": True},
        {"name": "claimer", "type": "address", "indexed": True},
        {"name": "twitterHandle", "type": "string", "indexed": False},
        {"name": "tweetText", "type": "string", "indexed": False},
    ]},
    {"type": "event", "name": "ClaimResolved", "anonymous": False, "inputs": [
        {"name": "assertionId", "type": "bytes32", "indexed": True},
        {"name": "isTruthful", "type": "bool", "indexed": False},
    ]},
    {"type": "event", "name": "RewardPaid", "anonymous": False, "inputs": [
        {"name": "assertionId", "type": "bytes32", "indexed": True},
        {"name": "claimer", "type": "address", "indexed": True},
        {"name": "amount", "type": "uint256", "indexed": False},
    ]},
]

OPTIMISTIC_ORACLE_V3_ABI = [
    {
        "type": "function",
        "name": "assertTruthWithDefaults",
        "inputs": [
            {"name": "claim", "type": "bytes"},
            {"name": "asserter", "type": "address"},
        ],
        "outputs": [{"name": "", "type": "bytes32"}],
        "stateMutability": "nonpayable",
    },
    {
        "type": "function",
        "name": "settleAndGetAssertionResult",
        "inputs": _ID_INPUT,
        "outputs": [{"name": "", "type": "bool"}],
        "stateMutability": "nonpayable",
    },
    {
        "type": "function",
        "name": "getAssertionResult",
        "inputs": _ID_INPUT,
        "outputs": [{"name": "", "type": "bool"}],
        "stateMutability": "view",
    },
    {
        "type": "function",
        "name": "getAssertion",
        "inputs": _ID_INPUT,
        "outputs": [
            {
                "name": "",
                "type": "tuple",
                "components": [
                    {
                        "name": "escalationManagerSettings",
                        "type": "tuple",
                        "components": [
                            {"name": "arbitrateViaEscalationManager", "type": "bool"},
                            {"name": "discardOracle", "type": "bool"},
                            {"name": "validateDisputers", "type": "bool"},
                            {"name": "assertingCaller", "type": "address"},
                            {"name": "escalationManager", "type": "address"},
                        ],
                    },
                    {"name": "asserter", "type": "address"},
                    {"name": "assertionTime", "type": "uint64"},
                    {"name": "settled", "type": "bool"},
                    {"name": "currency", "type": "address"},
                    {"name": "expirationTime", "type": "uint64"},
                    {"name": "settlementResolution", "type": "bool"},
                    {"name": "domainId", "type": "bytes32"},
                    {"name": "identifier", "type": "bytes32"},
                    {"name": "bond", "type": "uint256"},
                    {"name": "callbackRecipient", "type": "address"},
                    {"name": "disputer", "type": "address"},
                ],
            }
        ],
        "stateMutability": "view",
    },
    {"type": "event", "name": "AssertionMade", "anonymous": False, "inputs": [
        {"name": "assertionId", "type": "bytes32", "indexed": True},
        {"name": "domainId", "type": "bytes32", "indexed": False},
        {"name": "claim", "type": "bytes", "indexed": False},
        {"name": "asserter", "type": "address", "indexed": True},
        {"name": "callbackRecipient", "type": "address", "indexed": False},
        {"name": "escalationManager", "type": "address", "indexed": False},
        {"name": "caller", "type": "address", "indexed": False},
        {"name": "expirationTime", "type": "uint64", "indexed": False},
        {"name": "currency", "type": "address", "indexed": False},
        {"name": "bond", "type": "uint256", "indexed": False},
        {"name": "identifier", "type": "bytes32", "indexed": True},
    ]},
]

ASSERTION_MADE_SIGNATURE = (
    "AssertionMade(bytes32,bytes32,bytes,address,address,address,address,uint64,address,uint256,bytes32)"
)
ASSERTION_MADE_TOPIC = Web3.keccak(text=ASSERTION_MADE_SIGNATURE)
