# app/store.py
"""
Storage for the claim registry.

The registry never holds state itself; it is handed a ClaimStore. Every
state-changing registry operation runs inside store.transaction(), which
is all-or-nothing: claim rows, flags, balance, payouts and recorded
events either all commit or none do.
"""
from __future__ import annotations

import abc
import copy
import json
import logging
from contextlib import contextmanager
from typing import Dict, Iterator, List, Optional, Tuple

from sqlalchemy import text
from sqlalchemy.orm import Session

from db import supports_row_locks
from models import Claim, RegistryEvent, event_from_dict

logger = logging.getLogger(__name__)


class ClaimStore(abc.ABC):
    @abc.abstractmethod
    def transaction(self):
        """Context manager; commit on success, roll back on any exception."""

    @abc.abstractmethod
    def get_claim(self, assertion_id: str, *, for_update: bool = False) -> Optional[Claim]:
        ...

    @abc.abstractmethod
    def insert_claim(self, claim: Claim) -> None:
        ...

    @abc.abstractmethod
    def set_flags(self, assertion_id: str, *, is_resolved: bool, is_rewarded: bool) -> None:
        ...

    @abc.abstractmethod
    def mark_resolved(self, assertion_id: str) -> bool:
        """Flip is_resolved from false to true. False if it was already set."""

    @abc.abstractmethod
    def get_balance(self, *, for_update: bool = False) -> int:
        ...

    @abc.abstractmethod
    def set_balance(self, value: int) -> None:
        ...

    @abc.abstractmethod
    def credit(self, account: str, amount: int) -> None:
        ...

    @abc.abstractmethod
    def credited(self, account: str) -> int:
        ...

    @abc.abstractmethod
    def record_event(self, tx_ref: str, event: RegistryEvent) -> None:
        ...

    @abc.abstractmethod
    def events_for_tx(self, tx_ref: str) -> List[RegistryEvent]:
        ...

    @abc.abstractmethod
    def claim_ids_for(self, claimer: str) -> List[str]:
        ...


# ────────────────────────────────────────────────────────────
# In-memory
# ────────────────────────────────────────────────────────────

class MemoryClaimStore(ClaimStore):
    def __init__(self):
        self._claims: Dict[str, Claim] = {}
        self._balance = 0
        self._payouts: Dict[str, int] = {}
        self._events: List[Tuple[str, RegistryEvent]] = []
        self._depth = 0

    def _snapshot(self):
        return (copy.deepcopy(self._claims), self._balance, dict(self._payouts), list(self._events))

    @contextmanager
    def transaction(self) -> Iterator["MemoryClaimStore"]:
        # nested blocks join the outer transaction
        if self._depth:
            self._depth += 1
            try:
                yield self
            finally:
                self._depth -= 1
            return

        snapshot = self._snapshot()
        self._depth = 1
        try:
            yield self
        except BaseException:
            self._claims, self._balance, self._payouts, self._events = snapshot
            raise
        finally:
            self._depth = 0

    def get_claim(self, assertion_id, *, for_update=False):
        claim = self._claims.get(assertion_id)
        return copy.deepcopy(claim) if claim else None

    def insert_claim(self, claim):
        if claim.assertion_id in self._claims:
            raise KeyError(claim.assertion_id)
        self._claims[claim.assertion_id] = copy.deepcopy(claim)

    def set_flags(self, assertion_id, *, is_resolved, is_rewarded):
        claim = self._claims[assertion_id]
        claim.is_resolved = is_resolved
        claim.is_rewarded = is_rewarded

    def mark_resolved(self, assertion_id):
        claim = self._claims[assertion_id]
        if claim.is_resolved:
            return False
        claim.is_resolved = True
        return True

    def get_balance(self, *, for_update=False):
        return self._balance

    def set_balance(self, value):
        self._balance = value

    def credit(self, account, amount):
        self._payouts[account] = self._payouts.get(account, 0) + amount

    def credited(self, account):
        return self._payouts.get(account, 0)

    def record_event(self, tx_ref, event):
        self._events.append((tx_ref, event))

    def events_for_tx(self, tx_ref):
        return [ev for ref, ev in self._events if ref == tx_ref]

    def claim_ids_for(self, claimer):
        return [c.assertion_id for c in self._claims.values() if c.claimer.lower() == claimer.lower()]


# ────────────────────────────────────────────────────────────
# SQL (SQLAlchemy session, raw SQL)
# ────────────────────────────────────────────────────────────

# Wei amounts are stored as decimal text: sqlite INTEGER tops out at 2**63.
_SCHEMA = (
    "CREATE TABLE IF NOT EXISTS tweet_claim ("
    " assertion_id TEXT PRIMARY KEY,"
    " claimer TEXT NOT NULL,"
    " twitter_handle TEXT NOT NULL,"
    " tweet_text TEXT NOT NULL,"
    " asserted_claim_text TEXT NOT NULL,"
    " submitted_at BIGINT NOT NULL,"
    " is_resolved BOOLEAN NOT NULL DEFAULT FALSE,"
    " is_rewarded BOOLEAN NOT NULL DEFAULT FALSE)",
    "CREATE INDEX IF NOT EXISTS tweet_claim_claimer_idx ON tweet_claim (claimer)",
    "CREATE TABLE IF NOT EXISTS registry_state ("
    " key TEXT PRIMARY KEY,"
    " value TEXT NOT NULL)",
    "CREATE TABLE IF NOT EXISTS registry_payout ("
    " account TEXT PRIMARY KEY,"
    " amount TEXT NOT NULL)",
    "CREATE TABLE IF NOT EXISTS registry_event ("
    " tx_ref TEXT NOT NULL,"
    " seq INTEGER NOT NULL,"
    " name TEXT NOT NULL,"
    " payload TEXT NOT NULL,"
    " PRIMARY KEY (tx_ref, seq))",
)


class SqlClaimStore(ClaimStore):
    def __init__(self, db: Session):
        self.db = db
        self._locks = supports_row_locks(db)
        self._depth = 0

    def ensure_schema(self):
        for stmt in _SCHEMA:
            self.db.execute(text(stmt))
        self.db.execute(text(
            "INSERT INTO registry_state (key, value) VALUES ('balance', '0') "
            "ON CONFLICT (key) DO NOTHING"
        ))
        self.db.commit()

    def _suffix(self, for_update: bool) -> str:
        return " FOR UPDATE" if for_update and self._locks else ""

    @contextmanager
    def transaction(self) -> Iterator["SqlClaimStore"]:
        if self._depth:
            self._depth += 1
            try:
                yield self
            finally:
                self._depth -= 1
            return

        self._depth = 1
        try:
            yield self
            self.db.commit()
        except BaseException:
            self.db.rollback()
            raise
        finally:
            self._depth = 0

    def get_claim(self, assertion_id, *, for_update=False):
        row = self.db.execute(
            text(
                "SELECT assertion_id, claimer, twitter_handle, tweet_text, asserted_claim_text, "
                "submitted_at, is_resolved, is_rewarded "
                f"FROM tweet_claim WHERE assertion_id = :id{self._suffix(for_update)}"
            ),
            {"id": assertion_id},
        ).first()
        if not row:
            return None
        return Claim(
            assertion_id=row[0],
            claimer=row[1],
            twitter_handle=row[2],
            tweet_text=row[3],
            asserted_claim_text=row[4].encode("utf-8"),
            submitted_at=int(row[5]),
            is_resolved=bool(row[6]),
            is_rewarded=bool(row[7]),
        )

    def insert_claim(self, claim):
        self.db.execute(
            text(
                "INSERT INTO tweet_claim "
                "(assertion_id, claimer, twitter_handle, tweet_text, asserted_claim_text, "
                " submitted_at, is_resolved, is_rewarded) "
                "VALUES (:id, :claimer, :handle, :tweet, :asserted, :ts, :res, :rew)"
            ),
            {
                "id": claim.assertion_id,
                "claimer": claim.claimer,
                "handle": claim.twitter_handle,
                "tweet": claim.tweet_text,
                "asserted": claim.asserted_claim_text.decode("utf-8"),
                "ts": claim.submitted_at,
                "res": claim.is_resolved,
                "rew": claim.is_rewarded,
            },
        )

    def set_flags(self, assertion_id, *, is_resolved, is_rewarded):
        self.db.execute(
            text(
                "UPDATE tweet_claim SET is_resolved = :res, is_rewarded = :rew "
                "WHERE assertion_id = :id"
            ),
            {"id": assertion_id, "res": is_resolved, "rew": is_rewarded},
        )

    def mark_resolved(self, assertion_id):
        # conditional update: of two concurrent settlements only one matches
        res = self.db.execute(
            text(
                "UPDATE tweet_claim SET is_resolved = TRUE "
                "WHERE assertion_id = :id AND is_resolved = FALSE"
            ),
            {"id": assertion_id},
        )
        return res.rowcount == 1

    def get_balance(self, *, for_update=False):
        if for_update and not self._locks:
            # sqlite has no FOR UPDATE; a no-op write takes the database write lock
            self.db.execute(text("UPDATE registry_state SET value = value WHERE key = 'balance'"))
        row = self.db.execute(
            text(f"SELECT value FROM registry_state WHERE key = 'balance'{self._suffix(for_update)}")
        ).first()
        return int(row[0]) if row else 0

    def set_balance(self, value):
        self.db.execute(
            text("UPDATE registry_state SET value = :v WHERE key = 'balance'"),
            {"v": str(value)},
        )

    def credited(self, account):
        row = self.db.execute(
            text("SELECT amount FROM registry_payout WHERE account = :a"),
            {"a": account},
        ).first()
        return int(row[0]) if row else 0

    def credit(self, account, amount):
        total = self.credited(account) + amount
        self.db.execute(
            text(
                "INSERT INTO registry_payout (account, amount) VALUES (:a, :v) "
                "ON CONFLICT (account) DO UPDATE SET amount = :v"
            ),
            {"a": account, "v": str(total)},
        )

    def record_event(self, tx_ref, event):
        seq = self.db.execute(
            text("SELECT COUNT(*) FROM registry_event WHERE tx_ref = :r"),
            {"r": tx_ref},
        ).scalar_one()
        self.db.execute(
            text(
                "INSERT INTO registry_event (tx_ref, seq, name, payload) "
                "VALUES (:r, :s, :n, :p)"
            ),
            {"r": tx_ref, "s": int(seq), "n": event.name, "p": json.dumps(event.to_dict())},
        )

    def events_for_tx(self, tx_ref):
        rows = self.db.execute(
            text("SELECT name, payload FROM registry_event WHERE tx_ref = :r ORDER BY seq"),
            {"r": tx_ref},
        ).fetchall()
        return [event_from_dict(name, json.loads(payload)) for name, payload in rows]

    def claim_ids_for(self, claimer):
        rows = self.db.execute(
            text(
                "SELECT assertion_id FROM tweet_claim WHERE lower(claimer) = :c "
                "ORDER BY submitted_at"
            ),
            {"c": claimer.lower()},
        ).fetchall()
        return [r[0] for r in rows]
