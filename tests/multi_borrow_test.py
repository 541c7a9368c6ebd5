import sys
import pathlib
sys.path.insert(0, str(pathlib.Path(__file__).resolve().parent.parent))

import pytest

from lending_ledger import BookBorrowed, LendingLedger, NoCopiesAvailable


def test_1984_session():
    lib = LendingLedger("owner")
    for _ in range(3):
        lib.add_book("owner", "1984")
    assert lib.count() == 1
    assert lib.get_book("1984")["total_copies"] == 3

    lib.borrow_book("alice", "1984")
    assert lib.borrow_book("bob", "1984") == 1
    assert lib.borrow_book("carol", "1984") == 0
    with pytest.raises(NoCopiesAvailable):
        lib.borrow_book("dave", "1984")
    lib.check_invariants()

    assert lib.return_book("bob", "1984") == 1
    assert lib.borrow_book("bob", "1984") == 0
    lib.check_invariants()


def test_append_once_records_distinct_borrowers():
    lib = LendingLedger("owner")
    lib.add_book("owner", "Emma")
    for who in ["alice", "bob", "alice"]:
        lib.borrow_book(who, "Emma")
        lib.return_book(who, "Emma")
    assert lib.get_borrowers("Emma") == ["alice", "bob"]


def test_append_every_records_each_borrow():
    lib = LendingLedger("owner", borrower_policy="append-every")
    lib.add_book("owner", "Emma")
    for who in ["alice", "bob", "alice"]:
        lib.borrow_book(who, "Emma")
        lib.return_book(who, "Emma")
    assert lib.get_borrowers("Emma") == ["alice", "bob", "alice"]


def test_holders_report():
    lib = LendingLedger("owner")
    lib.add_book("owner", "Dune")
    lib.add_book("owner", "Emma")
    lib.borrow_book("alice", "Dune")
    lib.borrow_book("alice", "Emma")
    lib.borrow_book("bob", "Emma")
    lib.return_book("bob", "Emma")
    assert lib.holders_report() == [{"identity": "alice", "titles": ["Dune", "Emma"]}]


def test_subscribers_see_committed_events_only():
    lib = LendingLedger("owner")
    seen = []
    lib.subscribe(seen.append)
    lib.add_book("owner", "Dune")
    lib.borrow_book("alice", "Dune")
    with pytest.raises(NoCopiesAvailable):
        lib.borrow_book("bob", "Dune")
    assert [type(e).__name__ for e in seen] == ["NewBookAdded", "BookBorrowed"]
    assert lib.event_log_df["event"].tolist() == ["NewBookAdded", "BookBorrowed"]
    assert lib.event_log_df["identity"].tolist() == ["", "alice"]


def test_failing_subscriber_does_not_undo_the_borrow():
    lib = LendingLedger("owner")
    lib.add_book("owner", "Dune", copies=2)

    def on_event(event):
        if isinstance(event, BookBorrowed):
            raise RuntimeError("mailer down")

    lib.subscribe(on_event)
    with pytest.raises(RuntimeError):
        lib.borrow_book("alice", "Dune")
    assert lib.get_book("Dune")["borrowed_copies"] == 1
    assert lib.is_borrowing("Dune", "alice")
    assert lib.events[-1] == BookBorrowed("Dune", "alice", 1)
    assert lib.event_log_df["event"].tolist() == ["NewBookAdded", "BookBorrowed"]
    lib.check_invariants()
