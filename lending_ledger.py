#!/usr/bin/env python3
"""
lending_ledger.py
"""

from __future__ import annotations
import contextlib
import dataclasses
import datetime
import hashlib
import logging
import numbers
import threading
from dataclasses import dataclass
from typing import Callable, List, Dict, Optional, Tuple, Union

import pandas as pd

# Configuration
KEY_MODES = ("title", "sequential")
BORROWER_POLICIES = ("append-once", "append-every")
DEFAULT_KEY_MODE = "title"
DEFAULT_BORROWER_POLICY = "append-once"

STATUS_COLUMNS = ["book_key", "identity", "borrowing", "ever_borrowed"]
BORROWER_COLUMNS = ["book_key", "identity"]
EVENT_COLUMNS = ["timestamp", "event", "title", "identity", "copies"]

# Logging
logging.basicConfig(level=logging.INFO, format="%(levelname)s: %(message)s")
logger = logging.getLogger("LendingLedger")

BookId = Union[str, int]


# ---------------- Errors ----------------
class LedgerError(Exception):
    """Base class for rejected ledger requests; str(exc) is the user-visible reason."""

    default_reason = "The request was rejected."

    def __init__(self, reason: Optional[str] = None):
        self.reason = reason or self.default_reason
        super().__init__(self.reason)


class Unauthorized(LedgerError):
    default_reason = "Caller is not the owner."


class InvalidInput(LedgerError):
    default_reason = "Title is not valid"


class NotFound(LedgerError):
    default_reason = "The requested book does not exist."


class NoCopiesAvailable(LedgerError):
    default_reason = "There are no more available copies of this book."


class AlreadyBorrowing(LedgerError):
    default_reason = "You have already borrowed this book."


class NotBorrowing(LedgerError):
    default_reason = "You have not borrowed this book."


# ---------------- Domain events ----------------
@dataclass(frozen=True)
class NewBookAdded:
    title: str


@dataclass(frozen=True)
class BookCopyAdded:
    title: str
    total_copies: int


@dataclass(frozen=True)
class BookBorrowed:
    title: str
    identity: str
    available_copies: int


@dataclass(frozen=True)
class BookReturned:
    title: str
    identity: str
    available_copies: int


LedgerEvent = Union[NewBookAdded, BookCopyAdded, BookBorrowed, BookReturned]


# ---------------- Access control ----------------
class AccessControl:
    """Holds the single owner identity allowed to register stock."""

    def __init__(self, owner: str):
        if not isinstance(owner, str) or owner == "":
            raise InvalidInput("Owner is not valid")
        self._owner = owner

    @property
    def owner(self) -> str:
        return self._owner

    def is_owner(self, caller: str) -> bool:
        return caller == self._owner

    def require_owner(self, caller: str) -> None:
        if not self.is_owner(caller):
            logger.debug("Rejected owner-only request from %s", caller)
            raise Unauthorized()

    def transfer_ownership(self, caller: str, new_owner: str) -> None:
        self.require_owner(caller)
        if not isinstance(new_owner, str) or new_owner == "":
            raise InvalidInput("Owner is not valid")
        logger.info("Ownership transferred from %s to %s", self._owner, new_owner)
        self._owner = new_owner


# ---------------- Key derivation ----------------
def derive_key(title: str) -> str:
    """
    Map a title to its registry key.

    The key is the SHA-256 hex digest of the UTF-8 encoded title. Titles are not
    normalized, so any difference in spelling or whitespace is a different book.
    """
    if not isinstance(title, str) or title == "":
        raise InvalidInput("Title is not valid")
    return hashlib.sha256(title.encode("utf-8")).hexdigest()


def _check_book_id(book_id: int) -> int:
    # bool is an int subclass but never a valid id
    if isinstance(book_id, bool) or not isinstance(book_id, numbers.Integral) or book_id < 0:
        raise InvalidInput("Book id is not valid")
    return int(book_id)


def _check_identity(caller: str) -> str:
    if not isinstance(caller, str) or caller == "":
        raise InvalidInput("Caller is not valid")
    return caller


def _check_copies(copies: int, minimum: int) -> int:
    if isinstance(copies, bool) or not isinstance(copies, int) or copies < minimum:
        raise InvalidInput("Number of copies is not valid")
    return copies


def _empty_books_df() -> pd.DataFrame:
    df = pd.DataFrame({
        "Title": pd.Series(dtype="object"),
        "Total Copies": pd.Series(dtype="int64"),
        "Borrowed Copies": pd.Series(dtype="int64"),
    })
    df.index = pd.Index([], dtype="object", name="Book Key")
    return df


class LendingLedger:
    """
    LendingLedger keeps the book registry and the borrow ledger in pandas DataFrames.

    Rows of `books_df` are keyed by book key and kept in first-registration order.
    `status_df` tracks, per (book key, identity), whether the identity holds a copy now
    and whether it ever did; `borrowers_df` is the ordered borrower history. Every
    mutating request runs in a critical section that restores all frames on failure.
    """

    def __init__(self,
                 owner: str,
                 key_mode: str = DEFAULT_KEY_MODE,
                 borrower_policy: str = DEFAULT_BORROWER_POLICY):
        """
        Initialize an empty ledger.

        Args:
            owner: identity allowed to register stock.
            key_mode: "title" merges repeat registrations of a title into one record;
                "sequential" gives every registration its own integer id.
            borrower_policy: "append-once" records each distinct borrower once per book;
                "append-every" records every borrow, duplicates included.
        """
        if key_mode not in KEY_MODES:
            raise ValueError(f"Unknown key mode: {key_mode!r}")
        if borrower_policy not in BORROWER_POLICIES:
            raise ValueError(f"Unknown borrower policy: {borrower_policy!r}")
        self.access = AccessControl(owner)
        self.key_mode = key_mode
        self.borrower_policy = borrower_policy

        self.books_df = _empty_books_df()
        self.status_df = pd.DataFrame(columns=STATUS_COLUMNS)
        self.borrowers_df = pd.DataFrame(columns=BORROWER_COLUMNS)
        self.event_log_df = pd.DataFrame(columns=EVENT_COLUMNS)

        self.events: List[LedgerEvent] = []
        self._subscribers: List[Callable[[LedgerEvent], None]] = []
        self._lock = threading.RLock()

    # ---------------- Transactions ----------------
    @contextlib.contextmanager
    def _transaction(self):
        """
        Run one request under the ledger lock, restoring every frame if it fails.
        """
        with self._lock:
            snapshot = (self.books_df.copy(), self.status_df.copy(), self.borrowers_df.copy())
            try:
                yield
            except Exception:
                self.books_df, self.status_df, self.borrowers_df = snapshot
                logger.warning("Request rolled back")
                raise

    def subscribe(self, callback: Callable[[LedgerEvent], None]) -> None:
        """Register a callback invoked with every event after its request commits."""
        self._subscribers.append(callback)

    def _publish(self, event: LedgerEvent) -> None:
        self.events.append(event)
        fields = dataclasses.asdict(event)
        copies = fields.get("total_copies", fields.get("available_copies", ""))
        self.event_log_df.loc[len(self.event_log_df)] = [
            datetime.datetime.now(datetime.timezone.utc).isoformat(),
            type(event).__name__,
            event.title,
            fields.get("identity", ""),
            copies,
        ]
        for callback in list(self._subscribers):
            callback(event)

    # -------------- Internal helpers ----------------
    def _resolve(self, identifier: BookId) -> BookId:
        """
        Turn a caller-supplied identifier into the key of an existing book.

        Raises InvalidInput for malformed identifiers and NotFound for unknown books.
        """
        if self.key_mode == "title":
            key = derive_key(identifier)
            if key not in self.books_df.index:
                logger.warning("Book not found: %s", identifier)
                raise NotFound()
            return key
        book_id = _check_book_id(identifier)
        if book_id >= len(self.books_df):
            logger.warning("Book not found: %s", book_id)
            raise NotFound()
        return book_id

    def _find(self, key: BookId) -> Optional[Dict]:
        if key not in self.books_df.index:
            return None
        return self._record(key)

    def _record(self, key: BookId) -> Dict:
        row = self.books_df.loc[key]
        total = int(row["Total Copies"])
        borrowed = int(row["Borrowed Copies"])
        return {
            "key": key if self.key_mode == "title" else int(key),
            "title": str(row["Title"]),
            "total_copies": total,
            "borrowed_copies": borrowed,
            "available_copies": total - borrowed,
            "borrowers": self._borrowers_of(key),
            "exists": True,
        }

    def _available(self, key: BookId) -> int:
        return int(self.books_df.at[key, "Total Copies"]) - int(self.books_df.at[key, "Borrowed Copies"])

    def _borrowers_of(self, key: BookId) -> List[str]:
        mask = self.borrowers_df["book_key"] == key
        return [str(i) for i in self.borrowers_df.loc[mask, "identity"].tolist()]

    def _status_row(self, key: BookId, identity: str) -> Optional[int]:
        mask = (self.status_df["book_key"] == key) & (self.status_df["identity"] == identity)
        rows = self.status_df.index[mask]
        return rows[0] if len(rows) else None

    def _is_borrowing(self, key: BookId, identity: str) -> bool:
        row = self._status_row(key, identity)
        return row is not None and bool(self.status_df.at[row, "borrowing"])

    def _append_borrower(self, key: BookId, identity: str) -> None:
        self.borrowers_df.loc[len(self.borrowers_df)] = [key, identity]

    def _insert(self, key: BookId, title: str, copies: int) -> None:
        self.books_df.loc[key] = [title, copies, 0]

    # ---------------- Core operations ----------------
    def add_book(self, caller: str, title: str, copies: int = 1) -> BookId:
        """
        Register stock for a title. Owner only.

        In title mode a known title gains `copies` more copies; otherwise a new record
        is appended. In sequential mode every call appends a new record and the
        returned id is its position in the registry.
        """
        with self._lock:
            self.access.require_owner(caller)
            if self.key_mode == "title":
                key = derive_key(title)
                copies = _check_copies(copies, minimum=1)
                existing = self._find(key)
            else:
                if not isinstance(title, str) or title == "":
                    raise InvalidInput("Title is not valid")
                copies = _check_copies(copies, minimum=0)
                key = len(self.books_df)
                existing = None

            with self._transaction():
                if existing is None:
                    self._insert(key, title, copies)
                    event = NewBookAdded(title)
                    logger.info("Added book '%s' with %d copies", title, copies)
                else:
                    total = existing["total_copies"] + copies
                    self.books_df.at[key, "Total Copies"] = total
                    event = BookCopyAdded(title, total)
                    logger.info("Added %d copies of '%s' (total %d)", copies, title, total)
            self._publish(event)
            return key

    def borrow_book(self, caller: str, identifier: BookId) -> int:
        """
        Lend one copy of a book to `caller`.

        Returns the number of copies still available.
        """
        with self._lock:
            _check_identity(caller)
            key = self._resolve(identifier)
            record = self._record(key)
            if record["borrowed_copies"] >= record["total_copies"]:
                logger.debug("No copies of '%s' left for %s", record["title"], caller)
                raise NoCopiesAvailable()
            if self._is_borrowing(key, caller):
                logger.debug("%s already holds '%s'", caller, record["title"])
                raise AlreadyBorrowing()

            with self._transaction():
                self.books_df.at[key, "Borrowed Copies"] = record["borrowed_copies"] + 1
                row = self._status_row(key, caller)
                first_borrow = row is None or not bool(self.status_df.at[row, "ever_borrowed"])
                if row is None:
                    self.status_df.loc[len(self.status_df)] = [key, caller, True, True]
                else:
                    self.status_df.at[row, "borrowing"] = True
                    self.status_df.at[row, "ever_borrowed"] = True
                if first_borrow or self.borrower_policy == "append-every":
                    self._append_borrower(key, caller)
                available = self._available(key)
            logger.info("Borrowed '%s' to %s (%d left)", record["title"], caller, available)
            self._publish(BookBorrowed(record["title"], caller, available))
            return available

    def return_book(self, caller: str, identifier: BookId) -> int:
        """
        Take back the copy `caller` holds.

        Returns the number of copies available afterwards.
        """
        with self._lock:
            _check_identity(caller)
            key = self._resolve(identifier)
            record = self._record(key)
            if not self._is_borrowing(key, caller):
                logger.debug("%s does not hold '%s'", caller, record["title"])
                raise NotBorrowing()

            with self._transaction():
                self.books_df.at[key, "Borrowed Copies"] = record["borrowed_copies"] - 1
                self.status_df.at[self._status_row(key, caller), "borrowing"] = False
                available = self._available(key)
            logger.info("Book '%s' returned by %s (%d left)", record["title"], caller, available)
            self._publish(BookReturned(record["title"], caller, available))
            return available

    def transfer_ownership(self, caller: str, new_owner: str) -> None:
        with self._lock:
            self.access.transfer_ownership(caller, new_owner)

    # ---------------- Reports / Queries ----------------
    def count(self) -> int:
        return len(self.books_df)

    def get_book(self, identifier: BookId) -> Dict:
        """
        Retrieve a book by title (title mode) or id (sequential mode).

        Raises NotFound when the book is unknown.
        """
        return self._record(self._resolve(identifier))

    def get_book_by_key(self, key: BookId) -> Dict:
        """
        Direct key lookup. Unlike the other queries an unknown key is not an error:
        it yields a zero-valued record with `exists` set to False.
        """
        record = self._find(key)
        if record is None:
            return {"key": key, "title": "", "total_copies": 0, "borrowed_copies": 0,
                    "available_copies": 0, "borrowers": [], "exists": False}
        return record

    def get_book_by_title(self, title: str) -> Dict:
        """
        Retrieve a book by its title. In sequential mode the first record carrying
        the title is returned.
        """
        if self.key_mode == "title":
            return self.get_book(title)
        if not isinstance(title, str) or title == "":
            raise InvalidInput("Title is not valid")
        matches = self.books_df.index[self.books_df["Title"] == title]
        if len(matches) == 0:
            raise NotFound()
        return self._record(int(matches[0]))

    def list_all(self) -> List[Dict]:
        """Return every record in registration order."""
        return [self._record(key) for key in self.books_df.index]

    def list_availability(self) -> Tuple[List[str], List[int]]:
        """Return parallel lists of titles and available copies, in registration order."""
        titles = [str(t) for t in self.books_df["Title"].tolist()]
        available = (self.books_df["Total Copies"].astype(int) - self.books_df["Borrowed Copies"].astype(int))
        return titles, [int(a) for a in available.tolist()]

    def get_borrowers(self, identifier: BookId) -> List[str]:
        return self._borrowers_of(self._resolve(identifier))

    def is_borrowing(self, identifier: BookId, identity: str) -> bool:
        return self._is_borrowing(self._resolve(identifier), identity)

    def has_borrowed(self, identifier: BookId, identity: str) -> bool:
        row = self._status_row(self._resolve(identifier), identity)
        return row is not None and bool(self.status_df.at[row, "ever_borrowed"])

    def holders_report(self) -> List[Dict]:
        """
        Return identities that currently hold at least one book.

        Each entry contains the identity and the titles held, in registration order of
        the first borrow.
        """
        holding = self.status_df[self.status_df["borrowing"].astype(bool)]
        holders: Dict[str, List[str]] = {}
        for _, row in holding.iterrows():
            title = str(self.books_df.at[row["book_key"], "Title"])
            holders.setdefault(str(row["identity"]), []).append(title)
        return [{"identity": who, "titles": titles} for who, titles in holders.items()]

    def export_report_books(self) -> pd.DataFrame:
        """
        Produce a DataFrame suitable for reporting the inventory.

        Columns: Book Key, Title, Total Copies, Borrowed Copies, Available Copies.
        """
        out = self.books_df.copy()
        out["Available Copies"] = out["Total Copies"].astype(int) - out["Borrowed Copies"].astype(int)
        out = out.rename_axis("Book Key").reset_index()
        return out[["Book Key", "Title", "Total Copies", "Borrowed Copies", "Available Copies"]]

    def check_invariants(self) -> None:
        """
        Verify copy accounting for every book.

        borrowed copies must lie within [0, total] and equal the number of identities
        currently holding the book.
        """
        holding = self.status_df[self.status_df["borrowing"].astype(bool)]
        for key, row in self.books_df.iterrows():
            total = int(row["Total Copies"])
            borrowed = int(row["Borrowed Copies"])
            holders = int((holding["book_key"] == key).sum())
            if not 0 <= borrowed <= total:
                raise AssertionError(f"'{row['Title']}': {borrowed} borrowed of {total}")
            if borrowed != holders:
                raise AssertionError(f"'{row['Title']}': {borrowed} borrowed but {holders} holders")


# ---------------- CLI ----------------
def input_prompt(prompt: str) -> str:
    """
    Wrapper around built-in input() that returns a stripped string and handles interrupts.

    Returns an empty string on EOF/KeyboardInterrupt.
    """
    try:
        return input(prompt).strip()
    except (EOFError, KeyboardInterrupt):
        print()
        return ""


def print_menu(identity: str):
    """
    Print the interactive CLI menu to stdout, including the acting identity.
    """
    print(f"\n--- Lending Ledger (acting as {identity}) ---")
    print("1. List all books")
    print("2. Add book (owner only)")
    print("3. Borrow book")
    print("4. Return book")
    print("5. Show borrowers of a book")
    print("6. Show current holders")
    print("7. Show event log")
    print("8. Switch identity")
    print("0. Exit")


def _read_identifier(ledger: LendingLedger) -> Optional[BookId]:
    if ledger.key_mode == "title":
        return input_prompt("Title: ")
    raw = input_prompt("Book id: ")
    if not raw.isdigit():
        print("Book id is not valid")
        return None
    return int(raw)


def cli_loop(ledger: LendingLedger, identity: Optional[str] = None):
    """
    Interactive command-loop for the lending ledger.

    Presents a text menu, accepts user input and invokes `LendingLedger` methods on
    behalf of the acting identity (the owner by default).
    """
    identity = identity or ledger.access.owner
    while True:
        print_menu(identity)
        choice = input_prompt("Choose (0-8): ")
        try:
            if choice == "0" or choice == "":
                print("Exiting.")
                break
            elif choice == "1":
                print(f"\nTotal books: {ledger.count()}")
                for b in ledger.list_all():
                    print(f"{b['key']}: {b['title']} | {b['available_copies']}/{b['total_copies']} available")
            elif choice == "2":
                title = input_prompt("Title: ")
                copies_raw = input_prompt("Copies (default 1): ")
                if copies_raw == "":
                    copies = 1
                elif copies_raw.isdigit() or (copies_raw[:1] == "-" and copies_raw[1:].isdigit()):
                    copies = int(copies_raw)
                else:
                    print("Number of copies is not valid")
                    continue
                key = ledger.add_book(identity, title, copies)
                print(f"Added '{title}' ({key}).")
            elif choice == "3":
                ident = _read_identifier(ledger)
                if ident is not None:
                    left = ledger.borrow_book(identity, ident)
                    print(f"Borrowed. {left} copies left.")
            elif choice == "4":
                ident = _read_identifier(ledger)
                if ident is not None:
                    left = ledger.return_book(identity, ident)
                    print(f"Returned. {left} copies available.")
            elif choice == "5":
                ident = _read_identifier(ledger)
                if ident is not None:
                    print("Borrowers:", ", ".join(ledger.get_borrowers(ident)) or "none")
            elif choice == "6":
                holders = ledger.holders_report()
                print(f"\nCurrent holders: {len(holders)}")
                for h in holders:
                    print(f"{h['identity']} -> {h['titles']}")
            elif choice == "7":
                if ledger.event_log_df.empty:
                    print("No events yet.")
                else:
                    print(ledger.event_log_df.tail(20).to_string(index=False))
            elif choice == "8":
                who = input_prompt("Identity: ")
                if who:
                    identity = who
            else:
                print("Unknown choice. Try again.")
        except LedgerError as exc:
            print(exc.reason)


def demo_run():
    """
    Start an interactive session on an empty ledger owned by "owner".
    """
    ledger = LendingLedger("owner")
    print("Welcome. The ledger is empty; you are acting as the owner.")
    cli_loop(ledger)
    print("Goodbye.")


if __name__ == "__main__":
    demo_run()
