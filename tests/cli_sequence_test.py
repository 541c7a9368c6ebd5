import sys
import pathlib
sys.path.insert(0, str(pathlib.Path(__file__).resolve().parent.parent))

import lending_ledger
from lending_ledger import LendingLedger


def run_session(monkeypatch, ledger, answers):
    feed = iter(answers)

    def fake_input(prompt):
        try:
            return next(feed)
        except StopIteration:
            raise EOFError

    monkeypatch.setattr("builtins.input", fake_input)
    lending_ledger.cli_loop(ledger)


def test_cli_add_borrow_return(monkeypatch, capsys):
    lib = LendingLedger("owner")
    run_session(monkeypatch, lib, [
        "2", "1984", "2",      # add two copies as owner
        "8", "alice",          # act as alice
        "3", "1984",           # borrow
        "3", "1984",           # borrow again -> rejected
        "2", "Emma", "",       # alice cannot add books
        "6",
        "4", "1984",           # return
        "0",
    ])
    out = capsys.readouterr().out
    assert "Borrowed. 1 copies left." in out
    assert "You have already borrowed this book." in out
    assert "Caller is not the owner." in out
    assert "alice -> ['1984']" in out
    assert "Returned. 2 copies available." in out
    assert lib.count() == 1
    assert lib.get_borrowers("1984") == ["alice"]


def test_cli_unknown_book_and_event_log(monkeypatch, capsys):
    lib = LendingLedger("owner")
    run_session(monkeypatch, lib, ["7", "5", "Dune", "2", "Dune", "", "7", "1"])
    out = capsys.readouterr().out
    assert "No events yet." in out
    assert "The requested book does not exist." in out
    assert "NewBookAdded" in out
    assert "Total books: 1" in out
    assert "Exiting." in out


def test_cli_sequential_ids(monkeypatch, capsys):
    lib = LendingLedger("owner", key_mode="sequential")
    run_session(monkeypatch, lib, ["2", "Dune", "1", "3", "x", "3", "0", "0"])
    out = capsys.readouterr().out
    assert "Book id is not valid" in out
    assert "Borrowed. 0 copies left." in out


def test_cli_rejects_bad_copy_counts(monkeypatch, capsys):
    lib = LendingLedger("owner")
    run_session(monkeypatch, lib, ["2", "Dune", "abc", "2", "Dune", "-2", "2", "Dune", "", "0"])
    out = capsys.readouterr().out
    assert out.count("Number of copies is not valid") == 2
    assert lib.count() == 1
    assert lib.get_book("Dune")["total_copies"] == 1
