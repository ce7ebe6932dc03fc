# app/chain/receipts.py
"""
Recover an assertion id from a mined transaction's logs.

The registry has no query-by-submitter view, so the id is read back from
the transaction that created the claim.
"""
from __future__ import annotations

import logging
from typing import Optional

from web3.logs import DISCARD

from util import normalize_bytes32
from .abi import ASSERTION_MADE_TOPIC

logger = logging.getLogger(__name__)


def _topic_bytes(topic) -> bytes:
    if isinstance(topic, str):
        return bytes.fromhex(topic.removeprefix("0x"))
    return bytes(topic)


def find_assertion_id(receipt, registry_contract) -> Optional[str]:
    """
    1) the registry's own ClaimSubmitted event
    2) UMA's AssertionMade event: topics[1] is the assertion id
    """
    try:
        events = registry_contract.events.ClaimSubmitted().process_receipt(receipt, errors=DISCARD)
    except Exception as e:
        logger.warning("ClaimSubmitted decoding failed: %s", e)
        events = ()

    for ev in events:
        return normalize_bytes32(ev.args.assertionId)

    expected = bytes(ASSERTION_MADE_TOPIC)
    for log in receipt["logs"]:
        topics = log["topics"]
        if len(topics) > 1 and _topic_bytes(topics[0]) == expected:
            return normalize_bytes32(_topic_bytes(topics[1]))

    return None
