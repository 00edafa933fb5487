"""Tests for loading stored records and the in-memory EventStore."""

import json
import threading

from conftest import BORROWER, LENDER, tx_hash
from lendex.adapters.json_source import JsonEventSource
from lendex.application.event_store import EventStore
from lendex.application.locking import RWLock
from lendex.domain.value_types import LoanStatus


def record(name, *, block, log_index=0, ts=None, **decoded):
    return {
        "event_name": name,
        "transaction_hash": tx_hash(block, log_index),
        "block_number": block,
        "block_timestamp": ts if ts is not None else 1_700_000_000 + block,
        "log_index": log_index,
        "contract_address": "0x" + "ab" * 20,
        "topics": [],
        "data": "0x",
        "decoded_data": decoded,
    }


def write(path, obj):
    path.write_text(json.dumps(obj))


class TestJsonEventSource:
    """Test the three accepted file layouts and what gets skipped."""

    def test_object_array_and_ndjson(self, tmp_path):
        write(tmp_path / "a.json", record("LoanCreated", block=1, loanId="1", lender=LENDER))
        write(tmp_path / "b.json", [record("LoanAccepted", block=2, loanId="1"), record("LoanRepaid", block=3, loanId="1")])
        (tmp_path / "c.ndjson").write_text(
            json.dumps(record("CollateralAdded", block=4, loanId="1", amount="5")) + "\n"
            + "{not json\n"
            + json.dumps(record("LoanLiquidated", block=5, loanId="2")) + "\n"
        )

        events = JsonEventSource(str(tmp_path)).load_all()
        assert [e.name for e in events] == [
            "LoanCreated", "LoanAccepted", "LoanRepaid", "CollateralAdded", "LoanLiquidated",
        ]

    def test_malformed_records_are_skipped(self, tmp_path):
        good = record("LoanCreated", block=1, loanId="1")
        no_block = record("LoanRepaid", block=2, loanId="1")
        del no_block["block_number"]
        write(tmp_path / "mixed.json", [good, no_block, "just a string"])
        (tmp_path / "scalar.json").write_text("42")
        (tmp_path / "garbage.json").write_text("this is not json at all")

        events = JsonEventSource(str(tmp_path)).load_all()
        assert len(events) == 1
        assert events[0].name == "LoanCreated"

    def test_ignores_dotfiles_other_extensions_and_subdirs(self, tmp_path):
        write(tmp_path / ".hidden.json", record("LoanCreated", block=1, loanId="1"))
        write(tmp_path / "notes.txt", record("LoanCreated", block=2, loanId="2"))
        (tmp_path / "manifests").mkdir()
        write(tmp_path / "manifests" / "x.json", record("LoanCreated", block=3, loanId="3"))
        write(tmp_path / "ok.json", record("LoanCreated", block=4, loanId="4"))

        events = JsonEventSource(str(tmp_path)).load_all()
        assert [e.loan_id for e in events] == ["4"]

    def test_duplicates_keep_file_order(self, tmp_path):
        write(tmp_path / "1.json", record("LoanRepaid", block=9, loanId="1"))
        write(tmp_path / "2.json", [record("LoanCreated", block=3, log_index=2, loanId="1"),
                                    record("LoanCreated", block=3, log_index=1, loanId="2")])
        write(tmp_path / "3.json", record("LoanRepaid", block=9, loanId="1"))

        events = JsonEventSource(str(tmp_path)).load_all()
        assert [(e.block_number, e.log_index) for e in events] == [(9, 0), (3, 2), (3, 1)]
        store = EventStore.from_dir(str(tmp_path))
        assert [(e.block_number, e.log_index) for e in store.events()] == [(3, 1), (3, 2), (9, 0)]

    def test_legacy_key_aliases_and_hex_numbers(self, tmp_path):
        rec = {
            "name": "LoanAccepted",
            "transaction_hash": "0xABCD",
            "block_number": "0x10",
            "block_timestamp": "1700000000",
            "log_index": 0,
            "decoded_fields": {"loanId": 7, "borrower": "0xABC", "ratio": None},
        }
        write(tmp_path / "legacy.json", rec)

        (ev,) = JsonEventSource(str(tmp_path)).load_all()
        assert ev.block_number == 16
        assert ev.block_timestamp == 1_700_000_000
        assert ev.transaction_hash == "0xabcd"
        assert dict(ev.decoded_fields) == {"loanId": "7", "borrower": "0xABC"}

    def test_missing_directory(self, tmp_path):
        assert JsonEventSource(str(tmp_path / "nope")).load_all() == []


class TestEventStore:
    """Test the store snapshot and refresh."""

    def test_refresh_rebuilds_loans(self, tmp_path):
        write(tmp_path / "a.json", record("LoanCreated", block=1, loanId="1", amount="100"))
        store = EventStore.from_dir(str(tmp_path))
        assert store.loans()["1"].status == LoanStatus.CREATED

        write(tmp_path / "b.json", record("LoanAccepted", block=2, loanId="1", borrower=BORROWER))
        assert store.refresh() == 2
        loan = store.loans()["1"]
        assert loan.status == LoanStatus.ACTIVE
        assert loan.borrower == BORROWER
        assert loan.event_count == 2

    def test_fold_order(self, tmp_path):
        write(tmp_path / "loan1.json", [record("LoanRepaid", block=12, loanId="1"),
                                        record("LoanCreated", block=10, loanId="1", amount="100")])

        assert EventStore.from_dir(str(tmp_path)).loans()["1"].status == LoanStatus.CREATED
        loan = EventStore.from_dir(str(tmp_path), chronological=True).loans()["1"]
        assert loan.status == LoanStatus.REPAID
        assert loan.principal_amount == "100"

    def test_returns_copies(self, tmp_path):
        write(tmp_path / "a.json", record("LoanCreated", block=1, loanId="1"))
        store = EventStore.from_dir(str(tmp_path))

        store.loans()["1"].status = LoanStatus.LIQUIDATED
        store.events().clear()

        assert store.loans()["1"].status == LoanStatus.CREATED
        assert len(store.events()) == 1

    def test_empty_store(self, tmp_path):
        store = EventStore.from_dir(str(tmp_path / "missing"))
        with store.snapshot() as (events, loans):
            assert events == ()
            assert dict(loans) == {}


class TestRWLock:
    """Test reader/writer exclusion."""

    def test_readers_share(self):
        lock = RWLock()
        with lock.read():
            with lock.read():
                pass

    def test_writer_waits_for_readers(self):
        lock = RWLock()
        order = []
        reading = threading.Event()

        def writer():
            reading.wait()
            with lock.write():
                order.append("write")

        t = threading.Thread(target=writer)
        t.start()
        with lock.read():
            reading.set()
            t.join(timeout=0.2)
            assert t.is_alive()
            order.append("read")
        t.join(timeout=5)
        assert order == ["read", "write"]

    def test_readers_proceed_after_writer(self):
        lock = RWLock()
        with lock.write():
            pass
        with lock.read():
            pass
