"""SQLite persistence layer for the brokerage_ledger backend.

The repository provides a small, well-typed API that hides SQL details from the
rest of the code.  It relies on the standard library :mod:`sqlite3` module.
Money is stored as TEXT so Decimal values survive the round trip exactly.

The connection runs in autocommit mode; every write goes through
:meth:`SQLiteRepository.transaction`, which takes SQLite's write lock up front
(``BEGIN IMMEDIATE``) and serialises writers inside the process with a lock.
"""
from __future__ import annotations

import sqlite3
import threading
from contextlib import contextmanager
from datetime import date, datetime
from decimal import Decimal
from pathlib import Path
from typing import Iterable, Iterator, Optional

from .aggregation import party_outstanding
from .errors import NotFoundError, ValidationError
from .models import Activity, FxRate, Invoice, InvoiceItem, Party, Transaction

_INVOICE_SELECT = """
    SELECT i.*, s.name AS party_name, b.name AS buyer_name
    FROM invoices i
    LEFT JOIN parties s ON s.id = i.party_id
    LEFT JOIN parties b ON b.id = i.buyer_id
"""


class SQLiteRepository:
    """Encapsulates all SQLite access for the application."""

    def __init__(self, database_path: Path | str) -> None:
        self._database_path = database_path
        self._connection = sqlite3.connect(
            database_path,
            isolation_level=None,
            check_same_thread=False,
        )
        self._connection.execute("PRAGMA foreign_keys = ON;")
        self._connection.row_factory = sqlite3.Row
        self._lock = threading.RLock()
        self._depth = 0

    def close(self) -> None:
        """Close the underlying SQLite connection."""

        self._connection.close()

    @contextmanager
    def transaction(self) -> Iterator[None]:
        """Run the enclosed block as one atomic, write-locked unit.

        Nested calls join the outer transaction.
        """

        with self._lock:
            if self._depth:
                self._depth += 1
                try:
                    yield
                finally:
                    self._depth -= 1
                return

            self._connection.execute("BEGIN IMMEDIATE")
            self._depth = 1
            try:
                yield
            except BaseException:
                self._connection.execute("ROLLBACK")
                raise
            else:
                self._connection.execute("COMMIT")
            finally:
                self._depth = 0

    # ------------------------------------------------------------------
    # Schema management
    # ------------------------------------------------------------------
    def initialise_schema(self) -> None:
        """Create all tables required by the application if they do not exist."""

        self._connection.executescript(
            """
            CREATE TABLE IF NOT EXISTS parties (
                id INTEGER PRIMARY KEY AUTOINCREMENT,
                name TEXT NOT NULL UNIQUE COLLATE NOCASE,
                contact_person TEXT NOT NULL,
                phone TEXT NOT NULL,
                email TEXT,
                address TEXT,
                gstin TEXT,
                notes TEXT,
                created_at TEXT NOT NULL,
                updated_at TEXT NOT NULL
            );

            CREATE TABLE IF NOT EXISTS invoices (
                id INTEGER PRIMARY KEY AUTOINCREMENT,
                invoice_number TEXT NOT NULL UNIQUE,
                invoice_no TEXT,
                invoice_date TEXT NOT NULL,
                due_days INTEGER NOT NULL DEFAULT 0,
                terms TEXT NOT NULL DEFAULT 'Days',
                due_date TEXT NOT NULL,
                currency TEXT NOT NULL DEFAULT 'INR',
                exchange_rate TEXT NOT NULL DEFAULT '1.00',
                brokerage_rate TEXT NOT NULL DEFAULT '0.00',
                subtotal TEXT NOT NULL,
                tax TEXT NOT NULL,
                total TEXT NOT NULL,
                brokerage_in_inr TEXT NOT NULL DEFAULT '0.00',
                received_brokerage TEXT NOT NULL DEFAULT '0.00',
                balance_brokerage TEXT NOT NULL DEFAULT '0.00',
                status TEXT NOT NULL DEFAULT 'pending',
                remarks TEXT,
                notes TEXT,
                payment_date TEXT,
                party_id INTEGER NOT NULL REFERENCES parties(id),
                buyer_id INTEGER NOT NULL REFERENCES parties(id),
                created_at TEXT NOT NULL,
                updated_at TEXT NOT NULL
            );

            CREATE TABLE IF NOT EXISTS invoice_items (
                id INTEGER PRIMARY KEY AUTOINCREMENT,
                invoice_id INTEGER NOT NULL REFERENCES invoices(id) ON DELETE CASCADE,
                description TEXT NOT NULL,
                quantity INTEGER NOT NULL,
                rate TEXT NOT NULL
            );

            CREATE TABLE IF NOT EXISTS transactions (
                id INTEGER PRIMARY KEY AUTOINCREMENT,
                amount TEXT NOT NULL,
                date TEXT NOT NULL,
                type TEXT NOT NULL,
                notes TEXT,
                party_id INTEGER NOT NULL REFERENCES parties(id),
                invoice_id INTEGER REFERENCES invoices(id) ON DELETE SET NULL,
                created_at TEXT NOT NULL
            );

            CREATE TABLE IF NOT EXISTS activities (
                id INTEGER PRIMARY KEY AUTOINCREMENT,
                type TEXT NOT NULL,
                title TEXT NOT NULL,
                description TEXT NOT NULL,
                timestamp TEXT NOT NULL,
                party_id INTEGER REFERENCES parties(id),
                invoice_id INTEGER REFERENCES invoices(id) ON DELETE CASCADE
            );

            CREATE TABLE IF NOT EXISTS fx_rates (
                id INTEGER PRIMARY KEY AUTOINCREMENT,
                base TEXT NOT NULL,
                quote TEXT NOT NULL,
                valuation_date TEXT NOT NULL,
                rate TEXT NOT NULL,
                source TEXT NOT NULL,
                UNIQUE(base, quote, valuation_date, source)
            );

            CREATE TABLE IF NOT EXISTS settings (
                key TEXT PRIMARY KEY,
                value TEXT NOT NULL
            );

            CREATE INDEX IF NOT EXISTS idx_invoices_party ON invoices(party_id);
            CREATE INDEX IF NOT EXISTS idx_invoices_buyer ON invoices(buyer_id);
            CREATE INDEX IF NOT EXISTS idx_transactions_party ON transactions(party_id);
            """
        )

    # ------------------------------------------------------------------
    # Parties
    # ------------------------------------------------------------------
    def list_parties(self) -> list[Party]:
        """Return every party ordered by name with outstanding totals filled in."""

        rows = self._connection.execute("SELECT * FROM parties ORDER BY name COLLATE NOCASE").fetchall()
        invoices = self.list_invoices()
        last_dates = self._last_transaction_dates()
        parties = []
        for row in rows:
            party = _row_to_party(row)
            party.outstanding = party_outstanding(invoices, party.id)
            party.last_transaction_date = last_dates.get(party.id)
            parties.append(party)
        return parties

    def get_party(self, party_id: int) -> Party:
        row = self._connection.execute("SELECT * FROM parties WHERE id = ?", (party_id,)).fetchone()
        if row is None:
            raise NotFoundError("party", party_id)
        party = _row_to_party(row)
        party.outstanding = party_outstanding(self.list_invoices(party_id=party_id), party_id)
        party.last_transaction_date = self._last_transaction_dates(party_id).get(party_id)
        return party

    def party_name_exists(self, name: str, exclude_id: Optional[int] = None) -> bool:
        row = self._connection.execute(
            "SELECT id FROM parties WHERE name = ? COLLATE NOCASE AND id IS NOT ?",
            (name.strip(), exclude_id),
        ).fetchone()
        return row is not None

    def create_party(self, party: Party) -> Party:
        with self.transaction():
            try:
                cursor = self._connection.execute(
                    """
                    INSERT INTO parties (
                        name, contact_person, phone, email, address, gstin, notes, created_at, updated_at
                    ) VALUES (
                        :name, :contact_person, :phone, :email, :address, :gstin, :notes, :created_at, :updated_at
                    )
                    """,
                    _party_params(party),
                )
            except sqlite3.IntegrityError as exc:
                raise ValidationError(f"A party named {party.name!r} already exists") from exc
        return self.get_party(cursor.lastrowid)

    def update_party(self, party: Party) -> Party:
        with self.transaction():
            try:
                cursor = self._connection.execute(
                    """
                    UPDATE parties SET
                        name = :name, contact_person = :contact_person, phone = :phone,
                        email = :email, address = :address, gstin = :gstin, notes = :notes,
                        updated_at = :updated_at
                    WHERE id = :id
                    """,
                    {**_party_params(party), "id": party.id},
                )
            except sqlite3.IntegrityError as exc:
                raise ValidationError(f"A party named {party.name!r} already exists") from exc
            if cursor.rowcount == 0:
                raise NotFoundError("party", party.id)
        return self.get_party(party.id)

    def delete_party(self, party_id: int) -> None:
        """Delete a party that no invoice or transaction refers to."""

        with self.transaction():
            self.get_party(party_id)
            invoice_count = self._connection.execute(
                "SELECT COUNT(*) FROM invoices WHERE party_id = ? OR buyer_id = ?",
                (party_id, party_id),
            ).fetchone()[0]
            transaction_count = self._connection.execute(
                "SELECT COUNT(*) FROM transactions WHERE party_id = ?",
                (party_id,),
            ).fetchone()[0]
            if invoice_count or transaction_count:
                raise ValidationError("Cannot delete party with related invoices or transactions.")
            self._connection.execute("DELETE FROM activities WHERE party_id = ?", (party_id,))
            self._connection.execute("DELETE FROM parties WHERE id = ?", (party_id,))

    def _last_transaction_dates(self, party_id: Optional[int] = None) -> dict[int, datetime]:
        query = "SELECT party_id, MAX(date) AS last_date FROM transactions"
        params: tuple[object, ...] = ()
        if party_id is not None:
            query += " WHERE party_id = ?"
            params = (party_id,)
        rows = self._connection.execute(query + " GROUP BY party_id", params).fetchall()
        return {row["party_id"]: datetime.fromisoformat(row["last_date"]) for row in rows if row["last_date"]}

    # ------------------------------------------------------------------
    # Invoices
    # ------------------------------------------------------------------
    def list_invoices(self, party_id: Optional[int] = None) -> list[Invoice]:
        """Return invoices newest first, optionally those involving one party."""

        query = _INVOICE_SELECT
        params: tuple[object, ...] = ()
        if party_id is not None:
            query += " WHERE i.party_id = ? OR i.buyer_id = ?"
            params = (party_id, party_id)
        rows = self._connection.execute(query + " ORDER BY i.invoice_date DESC, i.id DESC", params).fetchall()
        return [_row_to_invoice(row) for row in rows]

    def get_invoice(self, invoice_id: int) -> Invoice:
        row = self._connection.execute(_INVOICE_SELECT + " WHERE i.id = ?", (invoice_id,)).fetchone()
        if row is None:
            raise NotFoundError("invoice", invoice_id)
        invoice = _row_to_invoice(row)
        invoice.items = self.list_invoice_items(invoice_id)
        return invoice

    def list_invoice_items(self, invoice_id: int) -> list[InvoiceItem]:
        rows = self._connection.execute(
            "SELECT * FROM invoice_items WHERE invoice_id = ? ORDER BY id",
            (invoice_id,),
        ).fetchall()
        return [
            InvoiceItem(
                id=row["id"],
                invoice_id=row["invoice_id"],
                description=row["description"],
                quantity=row["quantity"],
                rate=Decimal(row["rate"]),
            )
            for row in rows
        ]

    def invoice_numbers(self) -> list[str]:
        return [row[0] for row in self._connection.execute("SELECT invoice_number FROM invoices").fetchall()]

    def create_invoice(self, invoice: Invoice) -> Invoice:
        """Insert ``invoice`` and its items as one unit."""

        with self.transaction():
            try:
                cursor = self._connection.execute(
                    """
                    INSERT INTO invoices (
                        invoice_number, invoice_no, invoice_date, due_days, terms, due_date,
                        currency, exchange_rate, brokerage_rate, subtotal, tax, total,
                        brokerage_in_inr, received_brokerage, balance_brokerage, status,
                        remarks, notes, payment_date, party_id, buyer_id, created_at, updated_at
                    ) VALUES (
                        :invoice_number, :invoice_no, :invoice_date, :due_days, :terms, :due_date,
                        :currency, :exchange_rate, :brokerage_rate, :subtotal, :tax, :total,
                        :brokerage_in_inr, :received_brokerage, :balance_brokerage, :status,
                        :remarks, :notes, :payment_date, :party_id, :buyer_id, :created_at, :updated_at
                    )
                    """,
                    _invoice_params(invoice),
                )
            except sqlite3.IntegrityError as exc:
                raise ValidationError(
                    f"Invoice number {invoice.invoice_number!r} already exists or references an unknown party"
                ) from exc
            invoice_id = cursor.lastrowid
            self._insert_items(invoice_id, invoice.items)
        return self.get_invoice(invoice_id)

    def update_invoice(self, invoice: Invoice, replace_items: bool = False) -> Invoice:
        """Persist every column of ``invoice``; optionally replace its items."""

        with self.transaction():
            params = _invoice_params(invoice)
            params["id"] = invoice.id
            cursor = self._connection.execute(
                """
                UPDATE invoices SET
                    invoice_no = :invoice_no, invoice_date = :invoice_date, due_days = :due_days,
                    terms = :terms, due_date = :due_date, currency = :currency,
                    exchange_rate = :exchange_rate, brokerage_rate = :brokerage_rate,
                    subtotal = :subtotal, tax = :tax, total = :total,
                    brokerage_in_inr = :brokerage_in_inr, received_brokerage = :received_brokerage,
                    balance_brokerage = :balance_brokerage, status = :status, remarks = :remarks,
                    notes = :notes, payment_date = :payment_date, updated_at = :updated_at
                WHERE id = :id
                """,
                params,
            )
            if cursor.rowcount == 0:
                raise NotFoundError("invoice", invoice.id)
            if replace_items:
                self._connection.execute("DELETE FROM invoice_items WHERE invoice_id = ?", (invoice.id,))
                self._insert_items(invoice.id, invoice.items)
        return self.get_invoice(invoice.id)

    def delete_invoice(self, invoice_id: int) -> None:
        """Delete an invoice; items and activities go with it."""

        with self.transaction():
            cursor = self._connection.execute("DELETE FROM invoices WHERE id = ?", (invoice_id,))
            if cursor.rowcount == 0:
                raise NotFoundError("invoice", invoice_id)

    def _insert_items(self, invoice_id: int, items: Iterable[InvoiceItem]) -> None:
        self._connection.executemany(
            "INSERT INTO invoice_items (invoice_id, description, quantity, rate) VALUES (?, ?, ?, ?)",
            [(invoice_id, item.description, item.quantity, str(item.rate)) for item in items],
        )

    # ------------------------------------------------------------------
    # Transactions and activities
    # ------------------------------------------------------------------
    def add_transaction(self, transaction: Transaction) -> Transaction:
        with self.transaction():
            cursor = self._connection.execute(
                """
                INSERT INTO transactions (amount, date, type, notes, party_id, invoice_id, created_at)
                VALUES (?, ?, ?, ?, ?, ?, ?)
                """,
                (
                    str(transaction.amount),
                    transaction.date.isoformat(timespec="seconds"),
                    transaction.type,
                    transaction.notes,
                    transaction.party_id,
                    transaction.invoice_id,
                    transaction.created_at.isoformat(timespec="seconds"),
                ),
            )
        return self._get_transaction(cursor.lastrowid)

    def list_transactions(self, party_id: Optional[int] = None, invoice_id: Optional[int] = None) -> list[Transaction]:
        """Return transactions newest first with their invoice numbers."""

        clauses = []
        params: list[object] = []
        if party_id is not None:
            clauses.append("t.party_id = ?")
            params.append(party_id)
        if invoice_id is not None:
            clauses.append("t.invoice_id = ?")
            params.append(invoice_id)
        where = f"WHERE {' AND '.join(clauses)}" if clauses else ""
        rows = self._connection.execute(
            f"""
            SELECT t.*, i.invoice_number AS invoice_number
            FROM transactions t
            LEFT JOIN invoices i ON i.id = t.invoice_id
            {where}
            ORDER BY t.date DESC, t.id DESC
            """,
            params,
        ).fetchall()
        return [_row_to_transaction(row) for row in rows]

    def _get_transaction(self, transaction_id: int) -> Transaction:
        row = self._connection.execute(
            """
            SELECT t.*, i.invoice_number AS invoice_number
            FROM transactions t
            LEFT JOIN invoices i ON i.id = t.invoice_id
            WHERE t.id = ?
            """,
            (transaction_id,),
        ).fetchone()
        if row is None:
            raise NotFoundError("transaction", transaction_id)
        return _row_to_transaction(row)

    def add_activity(self, activity: Activity) -> Activity:
        with self.transaction():
            cursor = self._connection.execute(
                """
                INSERT INTO activities (type, title, description, timestamp, party_id, invoice_id)
                VALUES (?, ?, ?, ?, ?, ?)
                """,
                (
                    activity.type,
                    activity.title,
                    activity.description,
                    activity.timestamp.isoformat(timespec="seconds"),
                    activity.party_id,
                    activity.invoice_id,
                ),
            )
        activity.id = cursor.lastrowid
        return activity

    def recent_activities(self, limit: int = 5) -> list[Activity]:
        rows = self._connection.execute(
            "SELECT * FROM activities ORDER BY timestamp DESC, id DESC LIMIT ?",
            (limit,),
        ).fetchall()
        return [
            Activity(
                id=row["id"],
                type=row["type"],
                title=row["title"],
                description=row["description"],
                timestamp=datetime.fromisoformat(row["timestamp"]),
                party_id=row["party_id"],
                invoice_id=row["invoice_id"],
            )
            for row in rows
        ]

    # ------------------------------------------------------------------
    # FX rates
    # ------------------------------------------------------------------
    def upsert_fx_rates(self, rates: Iterable[FxRate]) -> None:
        with self.transaction():
            for rate in rates:
                self._connection.execute(
                    """
                    INSERT OR REPLACE INTO fx_rates (base, quote, valuation_date, rate, source)
                    VALUES (:base, :quote, :valuation_date, :rate, :source)
                    """,
                    {
                        "base": rate.base.upper(),
                        "quote": rate.quote.upper(),
                        "valuation_date": rate.valuation_date.isoformat(),
                        "rate": str(rate.rate),
                        "source": rate.source,
                    },
                )

    def get_latest_fx_rate(self, base: str, quote: str) -> Optional[Decimal]:
        row = self._connection.execute(
            """
            SELECT rate
            FROM fx_rates
            WHERE base = ? AND quote = ?
            ORDER BY date(valuation_date) DESC
            LIMIT 1
            """,
            (base.upper(), quote.upper()),
        ).fetchone()
        if row is None:
            return None
        return Decimal(row["rate"])

    # ------------------------------------------------------------------
    # Settings helpers
    # ------------------------------------------------------------------
    def set_setting(self, key: str, value: str) -> None:
        with self.transaction():
            self._connection.execute(
                "INSERT OR REPLACE INTO settings (key, value) VALUES (?, ?)",
                (key, value),
            )

    def all_settings(self) -> dict[str, str]:
        rows = self._connection.execute("SELECT key, value FROM settings").fetchall()
        return {row["key"]: row["value"] for row in rows}


# ---------------------------------------------------------------------------
# Row mapping helpers
# ---------------------------------------------------------------------------

def _party_params(party: Party) -> dict[str, object]:
    return {
        "name": party.name.strip(),
        "contact_person": party.contact_person,
        "phone": party.phone,
        "email": party.email,
        "address": party.address,
        "gstin": party.gstin,
        "notes": party.notes,
        "created_at": party.created_at.isoformat(timespec="seconds"),
        "updated_at": party.updated_at.isoformat(timespec="seconds"),
    }


def _row_to_party(row: sqlite3.Row) -> Party:
    return Party(
        id=row["id"],
        name=row["name"],
        contact_person=row["contact_person"],
        phone=row["phone"],
        email=row["email"],
        address=row["address"],
        gstin=row["gstin"],
        notes=row["notes"],
        created_at=datetime.fromisoformat(row["created_at"]),
        updated_at=datetime.fromisoformat(row["updated_at"]),
    )


def _invoice_params(invoice: Invoice) -> dict[str, object]:
    return {
        "invoice_number": invoice.invoice_number,
        "invoice_no": invoice.invoice_no,
        "invoice_date": invoice.invoice_date.isoformat(),
        "due_days": invoice.due_days,
        "terms": invoice.terms,
        "due_date": invoice.due_date.isoformat(),
        "currency": invoice.currency,
        "exchange_rate": str(invoice.exchange_rate),
        "brokerage_rate": str(invoice.brokerage_rate),
        "subtotal": str(invoice.subtotal),
        "tax": str(invoice.tax),
        "total": str(invoice.total),
        "brokerage_in_inr": str(invoice.brokerage_in_inr),
        "received_brokerage": str(invoice.received_brokerage),
        "balance_brokerage": str(invoice.balance_brokerage),
        "status": invoice.status,
        "remarks": invoice.remarks,
        "notes": invoice.notes,
        "payment_date": _datetime_to_iso(invoice.payment_date),
        "party_id": invoice.party_id,
        "buyer_id": invoice.buyer_id,
        "created_at": invoice.created_at.isoformat(timespec="seconds"),
        "updated_at": invoice.updated_at.isoformat(timespec="seconds"),
    }


def _row_to_invoice(row: sqlite3.Row) -> Invoice:
    return Invoice(
        id=row["id"],
        invoice_number=row["invoice_number"],
        invoice_no=row["invoice_no"],
        invoice_date=date.fromisoformat(row["invoice_date"]),
        due_days=row["due_days"],
        terms=row["terms"],
        due_date=date.fromisoformat(row["due_date"]),
        currency=row["currency"],
        exchange_rate=Decimal(row["exchange_rate"]),
        brokerage_rate=Decimal(row["brokerage_rate"]),
        subtotal=Decimal(row["subtotal"]),
        tax=Decimal(row["tax"]),
        total=Decimal(row["total"]),
        brokerage_in_inr=Decimal(row["brokerage_in_inr"]),
        received_brokerage=Decimal(row["received_brokerage"]),
        balance_brokerage=Decimal(row["balance_brokerage"]),
        status=row["status"],
        remarks=row["remarks"],
        notes=row["notes"],
        payment_date=datetime.fromisoformat(row["payment_date"]) if row["payment_date"] else None,
        party_id=row["party_id"],
        buyer_id=row["buyer_id"],
        party_name=row["party_name"],
        buyer_name=row["buyer_name"],
        created_at=datetime.fromisoformat(row["created_at"]),
        updated_at=datetime.fromisoformat(row["updated_at"]),
    )


def _row_to_transaction(row: sqlite3.Row) -> Transaction:
    return Transaction(
        id=row["id"],
        amount=Decimal(row["amount"]),
        date=datetime.fromisoformat(row["date"]),
        type=row["type"],
        notes=row["notes"],
        party_id=row["party_id"],
        invoice_id=row["invoice_id"],
        invoice_number=row["invoice_number"],
        created_at=datetime.fromisoformat(row["created_at"]),
    )


def _datetime_to_iso(value: Optional[datetime]) -> Optional[str]:
    if value is None:
        return None
    return value.isoformat(timespec="seconds")
