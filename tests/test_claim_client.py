# app/tests/test_claim_client.py
from unittest.mock import MagicMock

import pytest

from chain.registry_gateway import LocalRegistryGateway, RegistryGateway
from claim_client import ClaimClient, ClientState
from errors import (
    AlreadyResolvedError,
    AssertionIdNotFoundError,
    ChainConnectionError,
    ChallengePeriodNotElapsedError,
    ClaimValidationError,
    ClientBusyError,
    TransactionNotFoundError,
)
from registry import REWARD_AMOUNT_WEI
from store import MemoryClaimStore

from conftest import ALICE, LIVENESS, REGISTRY_ADDRESS

HANDLE = "drextron"
TEXT = "Life is short, test in prod"


@pytest.fixture
def gateway(oracle, clock):
    from registry import ClaimRegistry
    registry = ClaimRegistry(MemoryClaimStore(), oracle, address=REGISTRY_ADDRESS, clock=clock)
    return LocalRegistryGateway(registry, sender=ALICE)


@pytest.fixture
def client(gateway):
    return ClaimClient(gateway)


def _wrapped(gateway):
    """A mock that forwards to the real gateway unless told otherwise."""
    return MagicMock(spec=RegistryGateway, wraps=gateway)


class TestSubmit:
    @pytest.mark.parametrize("handle,text", [("", TEXT), (HANDLE, ""), ("   ", TEXT), ("@", TEXT)])
    def test_blank_fields_rejected_before_network(self, gateway, handle, text):
        spy = _wrapped(gateway)
        with pytest.raises(ClaimValidationError):
            ClaimClient(spy).submit(handle, text)
        spy.submit_claim.assert_not_called()

    def test_strips_leading_at(self, client, gateway):
        result = client.submit("@" + HANDLE, TEXT)
        assert gateway.get_claim_details(result.assertion_id).twitter_handle == HANDLE

    def test_returns_tx_and_assertion_id(self, client, gateway):
        result = client.submit(HANDLE, TEXT)
        assert result.tx_hash.startswith("0x") and len(result.tx_hash) == 66
        assert result.assertion_id == gateway.find_assertion_id(result.tx_hash)
        assert client.state == ClientState.ID_KNOWN
        assert client.assertion_id == result.assertion_id

    def test_missing_id_is_reported_not_raised(self, gateway):
        spy = _wrapped(gateway)
        spy.wait_for_assertion_id.side_effect = None
        spy.wait_for_assertion_id.return_value = None
        client = ClaimClient(spy)

        result = client.submit(HANDLE, TEXT)
        assert result.assertion_id is None
        assert "could not automatically extract" in result.message
        assert client.state == ClientState.SUBMITTED

    def test_not_ready_blocks_write(self, gateway):
        spy = _wrapped(gateway)
        spy.ensure_ready.side_effect = ChainConnectionError("Please connect to Sepolia testnet")
        with pytest.raises(ChainConnectionError):
            ClaimClient(spy).submit(HANDLE, TEXT)
        spy.submit_claim.assert_not_called()

    def test_duplicate_action_rejected(self, client):
        client._lock.acquire()
        try:
            with pytest.raises(ClientBusyError):
                client.submit(HANDLE, TEXT)
        finally:
            client._lock.release()


class TestFindByTxHash:
    def test_recovers_id_and_status(self, client):
        submitted = client.submit(HANDLE, TEXT)
        fresh = ClaimClient(client.gateway)

        status = fresh.find_by_tx_hash(submitted.tx_hash)
        assert status.assertion_id == submitted.assertion_id
        assert status.claim.twitter_handle == HANDLE
        assert fresh.assertion_id == submitted.assertion_id

    def test_unknown_transaction(self, client):
        with pytest.raises(TransactionNotFoundError):
            client.find_by_tx_hash("0x" + "01" * 32)

    def test_transaction_without_claim(self, client, gateway):
        tx = gateway.deposit(REWARD_AMOUNT_WEI)
        with pytest.raises(AssertionIdNotFoundError):
            client.find_by_tx_hash(tx)

    def test_blank_hash(self, client):
        with pytest.raises(ClaimValidationError):
            client.find_by_tx_hash("  ")


class TestCheckStatus:
    def test_not_yet_settleable(self, client, clock):
        aid = client.submit(HANDLE, TEXT).assertion_id
        status = client.check_status(aid)
        assert status.can_settle is False
        assert status.assertion.expiration_time == clock.now + LIVENESS
        assert client.state == ClientState.NOT_YET

    def test_settleable_after_window(self, client, clock):
        aid = client.submit(HANDLE, TEXT).assertion_id
        clock.advance(LIVENESS)
        assert client.check_status(aid).can_settle is True
        assert client.state == ClientState.SETTLEABLE

    def test_uses_remembered_id(self, client):
        aid = client.submit(HANDLE, TEXT).assertion_id
        assert client.check_status().assertion_id == aid

    def test_requires_some_id(self, client):
        with pytest.raises(ClaimValidationError):
            client.check_status()

    def test_settleability_failure_degrades_to_allowed(self, gateway):
        spy = _wrapped(gateway)
        client = ClaimClient(spy)
        aid = client.submit(HANDLE, TEXT).assertion_id
        spy.can_be_settled.side_effect = RuntimeError("rpc hiccup")

        status = client.check_status(aid)
        assert status.assertion is not None
        assert status.can_settle is True
        assert status.warnings

    def test_assertion_failure_degrades_to_allowed(self, gateway):
        spy = _wrapped(gateway)
        client = ClaimClient(spy)
        aid = client.submit(HANDLE, TEXT).assertion_id
        spy.get_assertion.side_effect = RuntimeError("rpc hiccup")

        status = client.check_status(aid)
        assert status.assertion is None
        assert status.can_settle is True
        assert status.claim.twitter_handle == HANDLE

    def test_claim_read_failure_is_raised(self, gateway):
        spy = _wrapped(gateway)
        spy.get_claim_details.side_effect = ConnectionError("connection refused")
        with pytest.raises(ChainConnectionError):
            ClaimClient(spy).check_status("0x" + "ab" * 32)


class TestSettle:
    def test_settle_success_refreshes_status(self, client, gateway, clock):
        gateway.deposit(REWARD_AMOUNT_WEI)
        aid = client.submit(HANDLE, TEXT).assertion_id
        clock.advance(LIVENESS)

        out = client.settle(aid)
        assert out["result"]["status"] == "Claim settled"
        assert out["status"]["verified"] is True
        assert out["status"]["claim"]["is_rewarded"] is True
        assert client.state == ClientState.SETTLED

    def test_settle_ignores_local_flag(self, client, clock):
        aid = client.submit(HANDLE, TEXT).assertion_id
        client.check_status(aid)
        assert client.state == ClientState.NOT_YET
        # the registry is the one to refuse
        with pytest.raises(ChallengePeriodNotElapsedError):
            client.settle(aid)
        assert client.state == ClientState.NOT_YET

    def test_already_resolved_refreshes_status(self, client, gateway, clock):
        gateway.deposit(REWARD_AMOUNT_WEI)
        aid = client.submit(HANDLE, TEXT).assertion_id
        clock.advance(LIVENESS)
        client.settle(aid)
        client.last_status = None

        with pytest.raises(AlreadyResolvedError):
            client.settle(aid)
        assert client.last_status is not None
        assert client.last_status.claim.is_resolved is True
        assert client.state == ClientState.SETTLED

    def test_revert_text_is_classified(self, gateway):
        spy = _wrapped(gateway)
        spy.settle.side_effect = ValueError("execution reverted: Assertion not expired")
        with pytest.raises(ChallengePeriodNotElapsedError):
            ClaimClient(spy).settle("0x" + "ab" * 32)
