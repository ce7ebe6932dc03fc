# app/tests/conftest.py
import hashlib

import pytest
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

from chain.oracle import AssertionRecord, OptimisticOracle
from errors import ChallengePeriodNotElapsedError
from registry import ClaimRegistry
from store import MemoryClaimStore, SqlClaimStore

REGISTRY_ADDRESS = "0x" + "aa" * 20
ALICE = "0x" + "11" * 20
BOB = "0x" + "22" * 20
FUNDER = "0x" + "33" * 20

LIVENESS = 7200
START_TIME = 1_700_000_000


class FakeClock:
    def __init__(self, now=START_TIME):
        self.now = now

    def __call__(self):
        return self.now

    def advance(self, seconds):
        self.now += seconds


class FakeOracle(OptimisticOracle):
    """
    Behaves like OOv3 for the parts the registry uses: ids derive from the
    claim bytes, settlement is only possible after liveness, and settling
    twice returns the stored result.
    """

    def __init__(self, clock, liveness=LIVENESS):
        self.clock = clock
        self.liveness = liveness
        self.claims = {}
        self.records = {}
        self.outcome = True
        self.outcomes = {}
        self.fail_assert = None
        self.settle_calls = []

    def assert_with_defaults(self, claim, asserter):
        if self.fail_assert is not None:
            raise self.fail_assert
        assertion_id = "0x" + hashlib.sha256(claim + asserter.encode()).hexdigest()
        self.claims[assertion_id] = claim
        self.records[assertion_id] = AssertionRecord(
            asserter=asserter,
            expiration_time=int(self.clock()) + self.liveness,
        )
        return assertion_id

    def settle_and_get_assertion_result(self, assertion_id):
        self.settle_calls.append(assertion_id)
        record = self.records[assertion_id]
        if not record.settled:
            if self.clock() < record.expiration_time:
                raise ChallengePeriodNotElapsedError()
            result = self.outcomes.get(assertion_id, self.outcome)
            self.records[assertion_id] = AssertionRecord(
                validated=result,
                resolved=True,
                settlement_resolution=result,
                asserter=record.asserter,
                challenger=record.challenger,
                settlement_timestamp=int(self.clock()),
                expiration_time=record.expiration_time,
                settled=True,
            )
        return self.records[assertion_id].settlement_resolution

    def get_assertion_result(self, assertion_id):
        record = self.records[assertion_id]
        if not record.settled:
            raise RuntimeError("Assertion not settled")
        return record.settlement_resolution

    def get_assertion(self, assertion_id):
        return self.records.get(assertion_id, AssertionRecord())

    def mark_settled(self, assertion_id, result=True):
        record = self.records[assertion_id]
        self.records[assertion_id] = AssertionRecord(
            validated=result,
            resolved=True,
            settlement_resolution=result,
            asserter=record.asserter,
            expiration_time=record.expiration_time,
            settlement_timestamp=int(self.clock()),
            settled=True,
        )


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def oracle(clock):
    return FakeOracle(clock)


@pytest.fixture
def sql_session():
    engine = create_engine(
        "sqlite://",
        future=True,
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    session = sessionmaker(bind=engine, autoflush=False, autocommit=False, future=True)()
    try:
        yield session
    finally:
        session.close()
        engine.dispose()


@pytest.fixture(params=["memory", "sql"])
def store(request):
    if request.param == "memory":
        return MemoryClaimStore()
    session = request.getfixturevalue("sql_session")
    s = SqlClaimStore(session)
    s.ensure_schema()
    return s


@pytest.fixture
def registry(store, oracle, clock):
    return ClaimRegistry(store, oracle, address=REGISTRY_ADDRESS, clock=clock)
