"""Tests for raw log decoding.

Logs are built with eth_abi the way the node would return them: topic0 is the
event signature hash, indexed params follow as 32-byte topics and the rest is
ABI-encoded into the data field.
"""

from dataclasses import replace

import pytest
from eth_abi import encode
from hexbytes import HexBytes

from conftest import BORROWER, CONTRACT, LENDER, TOKEN, hex0x, make_log, unknown_log
from lendex.domain.decoding import decode_fields, decode_log, decode_logs
from lendex.domain.errors import DecodeError, UnknownSignatureError
from lendex.domain.signatures import DEFAULT_TABLE
from lendex.domain.value_types import UNKNOWN_EVENT


class TestDecodeLog:
    """Test decoding of known event layouts."""

    def test_loan_created_fields(self):
        lg = make_log(
            "LoanCreated", block=7_039_900, log_index=3, ts=1_700_000_123,
            loanId=1, lender=LENDER, tokenAddress=TOKEN, amount=1_000, interestRate=500, duration=86_400,
        )
        ev = decode_log(lg)

        assert ev.name == "LoanCreated"
        assert ev.block_number == 7_039_900
        assert ev.block_timestamp == 1_700_000_123
        assert ev.log_index == 3
        assert ev.contract_address == CONTRACT
        assert ev.loan_id == "1"
        assert ev.decoded_fields["lender"] == LENDER
        assert ev.decoded_fields["tokenAddress"] == TOKEN
        assert ev.decoded_fields["amount"] == "1000"
        assert ev.decoded_fields["interestRate"] == "500"
        assert list(ev.decoded_fields)[:4] == ["loanId", "lender", "tokenAddress", "amount"]

    def test_amounts_beyond_64_bits_survive(self):
        big = 2**100 + 7
        ev = decode_log(make_log("LoanRepaid", loanId=9, borrower=BORROWER, repaymentAmount=big))
        assert ev.decoded_fields["repaymentAmount"] == str(big)

    def test_explicit_timestamp_wins(self):
        ev = decode_log(make_log("LoanAccepted", loanId=1, ts=5), block_timestamp=42)
        assert ev.block_timestamp == 42

    def test_indexed_addresses(self):
        ev = decode_log(make_log("OwnershipTransferred", previousOwner=LENDER, newOwner=BORROWER))
        assert ev.decoded_fields == {"previousOwner": LENDER, "newOwner": BORROWER}
        assert ev.loan_id is None

    def test_string_and_bytes32_fields(self):
        removed = decode_log(make_log("LoanOfferRemoved", loanId=4, reason="expired"))
        assert removed.decoded_fields == {"loanId": "4", "reason": "expired"}

        feed = b"\x01" * 32
        ev = decode_log(make_log("PriceFeedSet", tokenAddress=TOKEN, feedId=feed))
        assert ev.decoded_fields["feedId"] == "0x" + "01" * 32

    def test_raw_payload_is_kept(self):
        lg = make_log("LoanAccepted", loanId=1, borrower=BORROWER)
        ev = decode_log(lg)
        assert ev.topics == lg.topics
        assert ev.raw_data == lg.data_hex
        assert ev.raw_bytes == bytes(HexBytes(lg.data_hex))

    def test_decode_fields_rejects_missing_indexed_topic(self):
        spec = DEFAULT_TABLE.by_name("LoanRepaid")
        with pytest.raises(DecodeError):
            decode_fields(spec, [spec.topic0], b"")


class TestUnknownAndMalformed:
    """Test the unknown-signature policy and malformed payloads."""

    def test_unknown_dropped_by_default(self):
        with pytest.raises(UnknownSignatureError) as exc:
            decode_log(unknown_log())
        assert exc.value.code == "UNKNOWN_SIGNATURE"

    def test_unknown_retained(self):
        ev = decode_log(unknown_log(), unknown="retain")
        assert ev.name == UNKNOWN_EVENT
        assert ev.decoded_fields is None
        assert ev.raw_data == "0x" + "00" * 32

    def test_log_without_topics_is_never_retained(self):
        lg = replace(unknown_log(), topics=())
        with pytest.raises(DecodeError):
            decode_log(lg, unknown="retain")

    def test_truncated_payload(self):
        lg = make_log("LoanRepaid", loanId=1, borrower=BORROWER, repaymentAmount=5)
        short = replace(lg, data_hex=lg.data_hex[:40])

        with pytest.raises(DecodeError):
            decode_log(short)

        ev = decode_log(short, unknown="retain")
        assert ev.name == "LoanRepaid"
        assert ev.decoded_fields is None

    def test_missing_indexed_topic(self):
        lg = make_log("LoanRepaid", loanId=1)
        bare = replace(lg, topics=lg.topics[:1])
        with pytest.raises(DecodeError):
            decode_log(bare)
        assert decode_log(bare, unknown="retain").decoded_fields is None


class TestDecodeLogs:
    """Test batch decoding."""

    def test_keeps_node_order_and_drops_undecodable(self):
        logs = [
            make_log("LoanCreated", loanId=1, log_index=0),
            unknown_log(log_index=1),
            make_log("LoanAccepted", loanId=1, log_index=2),
            replace(unknown_log(log_index=3), topics=()),
        ]
        events = decode_logs(logs)
        assert [(e.name, e.log_index) for e in events] == [("LoanCreated", 0), ("LoanAccepted", 2)]

    def test_retain_policy(self):
        logs = [unknown_log(log_index=0), make_log("LoanRepaid", loanId=2, log_index=1)]
        events = decode_logs(logs, unknown="retain")
        assert [e.name for e in events] == [UNKNOWN_EVENT, "LoanRepaid"]

    def test_hand_encoded_log(self):
        spec = DEFAULT_TABLE.by_name("PriceUpdatePaid")
        lg = replace(
            make_log("PriceUpdatePaid"),
            topics=(spec.topic0.upper().replace("0X", "0x"), hex0x(HexBytes(encode(["uint256"], [77])))),
            data_hex=hex0x(HexBytes(encode(["uint256", "uint256"], [10, 1_700_000_000]))),
        )
        (ev,) = decode_logs([lg])
        assert ev.decoded_fields == {"loanId": "77", "updateFee": "10", "timestamp": "1700000000"}
        assert ev.topics[0] == spec.topic0
