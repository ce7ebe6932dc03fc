# app/tests/test_chain.py
"""
web3 adapters: receipt scanning, UMA struct mapping, gateway error mapping.
No RPC is contacted; contracts are either offline web3 objects or mocks.
"""
from types import SimpleNamespace
from unittest.mock import MagicMock

import pytest
from hexbytes import HexBytes
from web3 import Web3
from web3.exceptions import TransactionNotFound

from chain.abi import ASSERTION_MADE_TOPIC, TWITTER_VERIFICATION_ABI
from chain.oracle import AssertionRecord, UmaOptimisticOracle
from chain.receipts import find_assertion_id
from chain.registry_gateway import Web3RegistryGateway
from errors import (
    ChainConnectionError,
    ChallengePeriodNotElapsedError,
    ClaimNotFoundError,
    TransactionNotFoundError,
)

REGISTRY = Web3.to_checksum_address("0x" + "5a" * 20)
CLAIMER = Web3.to_checksum_address("0x" + "11" * 20)
AID = bytes.fromhex("cd" * 32)
TX = "0x" + "ef" * 32


def _offline_contract():
    return Web3().eth.contract(address=REGISTRY, abi=TWITTER_VERIFICATION_ABI)


def _log(address, topics, data=b"", index=0):
    return {
        "address": address,
        "topics": [HexBytes(t) for t in topics],
        "data": HexBytes(data),
        "logIndex": index,
        "transactionIndex": 0,
        "transactionHash": HexBytes(TX),
        "blockHash": HexBytes("0x" + "00" * 32),
        "blockNumber": 1,
        "removed": False,
    }


def _claim_submitted_log(index=0):
    w3 = Web3()
    topic0 = Web3.keccak(text="ClaimSubmitted(bytes32,address,string,string)")
    claimer_topic = b"\x00" * 12 + bytes.fromhex(CLAIMER[2:])
    data = w3.codec.encode(["string", "string"], ["drextron", "Life is short, test in prod"])
    return _log(REGISTRY, [topic0, AID, claimer_topic], data, index)


def _assertion_made_log(index=0):
    oracle = "0x" + "fd" * 20
    return _log(oracle, [ASSERTION_MADE_TOPIC, AID, b"\x00" * 32, b"\x00" * 32], b"", index)


class TestReceiptScanning:
    def test_registry_event_decoded(self):
        receipt = {"logs": [_claim_submitted_log()]}
        assert find_assertion_id(receipt, _offline_contract()) == "0x" + "cd" * 32

    def test_falls_back_to_oracle_topic(self):
        contract = MagicMock()
        contract.events.ClaimSubmitted.return_value.process_receipt.return_value = []
        receipt = {"logs": [_log(REGISTRY, [b"\x01" * 32]), _assertion_made_log(1)]}
        assert find_assertion_id(receipt, contract) == "0x" + "cd" * 32

    def test_fallback_accepts_hex_string_topics(self):
        contract = MagicMock()
        contract.events.ClaimSubmitted.return_value.process_receipt.return_value = []
        receipt = {"logs": [{"topics": [Web3.to_hex(ASSERTION_MADE_TOPIC), "0x" + "cd" * 32]}]}
        assert find_assertion_id(receipt, contract) == "0x" + "cd" * 32

    def test_registry_event_preferred(self):
        contract = MagicMock()
        contract.events.ClaimSubmitted.return_value.process_receipt.return_value = [
            SimpleNamespace(args=SimpleNamespace(assertionId=bytes.fromhex("aa" * 32)))
        ]
        receipt = {"logs": [_assertion_made_log()]}
        assert find_assertion_id(receipt, contract) == "0x" + "aa" * 32

    def test_nothing_found(self):
        contract = MagicMock()
        contract.events.ClaimSubmitted.return_value.process_receipt.return_value = []
        assert find_assertion_id({"logs": [_log(REGISTRY, [b"\x02" * 32])]}, contract) is None


def _uma(assertion_tuple=None, call_error=None):
    w3 = MagicMock()
    contract = w3.eth.contract.return_value
    fn = contract.functions.getAssertion.return_value
    if call_error:
        fn.call.side_effect = call_error
        contract.functions.settleAndGetAssertionResult.return_value.call.side_effect = call_error
    else:
        fn.call.return_value = assertion_tuple
    account = SimpleNamespace(address=CLAIMER)
    send = MagicMock(return_value=TX)
    wait = MagicMock()
    return UmaOptimisticOracle(w3, "0x" + "fd" * 20, account, send, wait), send


class TestUmaOracle:
    def _struct(self, settled, resolution, disputer="0x" + "00" * 20):
        ems = (False, False, False, "0x" + "00" * 20, "0x" + "00" * 20)
        return (ems, CLAIMER, 100, settled, "0x" + "ee" * 20, 7300, resolution,
                b"\x00" * 32, b"\x00" * 32, 0, "0x" + "00" * 20, disputer)

    def test_pending_assertion_mapping(self):
        oracle, _ = _uma(self._struct(False, False))
        record = oracle.get_assertion("0x" + "cd" * 32)
        assert record == AssertionRecord(
            validated=False, resolved=False, settlement_resolution=False,
            asserter=CLAIMER, challenger="0x" + "00" * 20,
            settlement_timestamp=0, expiration_time=7300, settled=False,
        )

    def test_settled_true_mapping(self):
        disputer = "0x" + "44" * 20
        oracle, _ = _uma(self._struct(True, True, disputer))
        record = oracle.get_assertion("0x" + "cd" * 32)
        assert record.validated and record.resolved and record.settled
        assert record.challenger == disputer
        assert record.settlement_timestamp == 7300

    def test_settle_revert_is_classified_before_sending(self):
        oracle, send = _uma(call_error=ValueError("execution reverted: Assertion not expired"))
        with pytest.raises(ChallengePeriodNotElapsedError):
            oracle.settle_and_get_assertion_result("0x" + "cd" * 32)
        send.assert_not_called()


def _gateway(chain_id=11155111, connected=True):
    w3 = MagicMock()
    w3.is_connected.return_value = connected
    w3.eth.chain_id = chain_id
    account = SimpleNamespace(address=CLAIMER)
    gw = Web3RegistryGateway(
        w3=w3,
        address=REGISTRY,
        chain_id=11155111,
        get_account=lambda: account,
        send=MagicMock(return_value=TX),
        wait=MagicMock(),
    )
    return gw, w3


class TestWeb3Gateway:
    def test_wrong_network(self):
        gw, _ = _gateway(chain_id=1)
        with pytest.raises(ChainConnectionError, match="Sepolia"):
            gw.ensure_ready()

    def test_not_connected(self):
        gw, _ = _gateway(connected=False)
        with pytest.raises(ChainConnectionError):
            gw.ensure_ready()

    def test_ready(self):
        gw, _ = _gateway()
        gw.ensure_ready()

    def test_claim_details_decoded(self):
        gw, w3 = _gateway()
        fn = w3.eth.contract.return_value.functions.getClaimDetails.return_value
        fn.call.return_value = (CLAIMER, "drextron", "hi", True, False)
        details = gw.get_claim_details("0x" + "cd" * 32)
        assert details.claimer == CLAIMER
        assert details.is_resolved and not details.is_rewarded

    def test_unknown_receipt(self):
        gw, w3 = _gateway()
        w3.eth.get_transaction_receipt.side_effect = TransactionNotFound("not found")
        with pytest.raises(TransactionNotFoundError):
            gw.find_assertion_id(TX)

    def test_settle_revert_maps_to_not_found(self):
        gw, w3 = _gateway()
        fn = w3.eth.contract.return_value.functions.settleAndGetAssertionResult.return_value
        fn.call.side_effect = ValueError("execution reverted: Claim does not exist")
        with pytest.raises(ClaimNotFoundError):
            gw.settle("0x" + "cd" * 32)
        gw._send.assert_not_called()
