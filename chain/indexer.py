# app/chain/indexer.py
"""
Background indexer for TwitterVerification.
Scans ClaimSubmitted logs in block windows and keeps claim_index, the
submitter -> assertion id lookup the contract itself does not offer.
"""

import asyncio
import logging
from web3 import Web3
from sqlalchemy import text as sql_text

from config import (
    TWITTER_VERIFICATION_ADDRESS,
    RPC_URL,
    INDEXER_POLL_INTERVAL,
    INDEXER_BLOCK_WINDOW,
    INDEXER_START_BLOCK,
)
from db import get_session_factory
from util import normalize_bytes32
from .abi import TWITTER_VERIFICATION_ABI

logger = logging.getLogger(__name__)


def ensure_index_tables(db):
    db.execute(sql_text(
        "CREATE TABLE IF NOT EXISTS indexer_state "
        "(key TEXT PRIMARY KEY, value BIGINT NOT NULL DEFAULT 0)"
    ))
    db.execute(sql_text(
        "INSERT INTO indexer_state (key, value) VALUES ('last_block', :b) "
        "ON CONFLICT (key) DO NOTHING"
    ), {"b": max(INDEXER_START_BLOCK - 1, 0)})
    db.execute(sql_text(
        "CREATE TABLE IF NOT EXISTS claim_index ("
        " assertion_id TEXT PRIMARY KEY,"
        " claimer TEXT NOT NULL,"
        " twitter_handle TEXT NOT NULL,"
        " tweet_text TEXT NOT NULL,"
        " tx_hash TEXT NOT NULL,"
        " block_number BIGINT NOT NULL,"
        " log_index INTEGER NOT NULL)"
    ))
    db.commit()


def _get_last_block(db):
    row = db.execute(sql_text(
        "SELECT value FROM indexer_state WHERE key = 'last_block'"
    )).fetchone()
    return int(row[0]) if row else 0


def _set_last_block(db, block):
    db.execute(sql_text(
        "UPDATE indexer_state SET value = :v WHERE key = 'last_block'"
    ), {"v": block})


def _upsert_claim(db, ev):
    db.execute(sql_text(
        "INSERT INTO claim_index "
        "(assertion_id, claimer, twitter_handle, tweet_text, tx_hash, block_number, log_index) "
        "VALUES (:id, :c, :h, :t, :tx, :b, :l) "
        "ON CONFLICT (assertion_id) DO NOTHING"
    ), {
        "id": normalize_bytes32(ev.args.assertionId),
        "c": ev.args.claimer,
        "h": ev.args.twitterHandle,
        "t": ev.args.tweetText,
        "tx": Web3.to_hex(ev.transactionHash),
        "b": ev.blockNumber,
        "l": ev.logIndex,
    })


def sync_claims(w3, contract, db):
    """Index one window of blocks. Returns True while the head is still ahead."""
    try:
        head = w3.eth.block_number
    except Exception as e:
        logger.warning("Failed to read block number: %s", e)
        return False

    last = _get_last_block(db)
    if head <= last:
        return False

    from_block = last + 1
    to_block = min(head, last + INDEXER_BLOCK_WINDOW)

    events = contract.events.ClaimSubmitted().get_logs(from_block=from_block, to_block=to_block)
    for ev in events:
        _upsert_claim(db, ev)
    _set_last_block(db, to_block)
    db.commit()

    if events:
        logger.info("Indexed %d claims (blocks %d..%d)", len(events), from_block, to_block)
    return to_block < head


async def run_indexer():
    if not TWITTER_VERIFICATION_ADDRESS or not RPC_URL:
        logger.warning("Indexer disabled: TWITTER_VERIFICATION_ADDRESS or RPC_URL not configured")
        return

    w3 = Web3(Web3.HTTPProvider(RPC_URL))
    contract = w3.eth.contract(
        address=Web3.to_checksum_address(TWITTER_VERIFICATION_ADDRESS),
        abi=TWITTER_VERIFICATION_ABI,
    )

    SessionLocal = get_session_factory()
    db = SessionLocal()

    try:
        ensure_index_tables(db)
        logger.info("Indexer running (polling ClaimSubmitted every %ds)", INDEXER_POLL_INTERVAL)

        while True:
            try:
                # catch up without sleeping while whole windows remain
                while await asyncio.to_thread(sync_claims, w3, contract, db):
                    pass
            except Exception as e:
                db.rollback()
                logger.exception("Indexer error: %s", e)
            await asyncio.sleep(INDEXER_POLL_INTERVAL)
    finally:
        db.close()
