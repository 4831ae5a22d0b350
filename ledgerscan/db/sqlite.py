"""SQLite database operations for ledgerscan."""

import json
import sqlite3
from collections.abc import Generator
from contextlib import contextmanager
from datetime import datetime
from functools import lru_cache
from pathlib import Path
from typing import Any
from uuid import UUID

from ledgerscan.config import settings
from ledgerscan.models import (
    CategoryRule,
    Document,
    DocumentStatus,
    ExtractedTransactionCandidate,
    LedgerTransaction,
    TransactionSource,
)

# SQL schema
SCHEMA = """
CREATE TABLE IF NOT EXISTS documents (
    id TEXT PRIMARY KEY,
    household_id TEXT NOT NULL,
    account_id TEXT NOT NULL,
    file_name TEXT NOT NULL,
    mime_type TEXT NOT NULL,
    storage_path TEXT NOT NULL,
    file_size INTEGER NOT NULL DEFAULT 0,
    ocr_text TEXT,
    status TEXT NOT NULL,
    error_message TEXT,
    extracted_json TEXT,
    uploaded_at TEXT NOT NULL,
    processed_at TEXT
);

CREATE INDEX IF NOT EXISTS idx_documents_household ON documents(household_id, uploaded_at);

CREATE TABLE IF NOT EXISTS transactions (
    id TEXT PRIMARY KEY,
    household_id TEXT NOT NULL,
    account_id TEXT NOT NULL,
    date TEXT NOT NULL,
    description TEXT NOT NULL,
    amount REAL NOT NULL,
    category_slug TEXT,
    total_amount REAL,
    installment_current INTEGER,
    installment_total INTEGER,
    source TEXT NOT NULL,
    document_id TEXT,
    created_at TEXT DEFAULT CURRENT_TIMESTAMP
);

CREATE INDEX IF NOT EXISTS idx_transactions_lookup
    ON transactions(household_id, account_id, date);
CREATE INDEX IF NOT EXISTS idx_transactions_document ON transactions(document_id);

CREATE TABLE IF NOT EXISTS category_rules (
    id TEXT PRIMARY KEY,
    household_id TEXT NOT NULL,
    pattern TEXT NOT NULL,
    category_slug TEXT NOT NULL,
    created_at TEXT DEFAULT CURRENT_TIMESTAMP
);

CREATE INDEX IF NOT EXISTS idx_category_rules_household ON category_rules(household_id);
"""

DOCUMENT_COLUMNS = {
    "account_id",
    "ocr_text",
    "status",
    "error_message",
    "extracted_json",
    "processed_at",
}

TRANSACTION_COLUMNS = """
    id, household_id, account_id, date, description, amount, category_slug,
    total_amount, installment_current, installment_total, source, document_id, created_at
"""


class Database:
    """SQLite database manager."""

    def __init__(self, db_path: Path | None = None):
        self.db_path = Path(db_path or settings.db_path)
        self.db_path.parent.mkdir(parents=True, exist_ok=True)
        self._init_db()

    def _init_db(self) -> None:
        """Initialize the database schema."""
        with self._get_connection() as conn:
            conn.executescript(SCHEMA)
            conn.commit()

    @contextmanager
    def _get_connection(self) -> Generator[sqlite3.Connection, None, None]:
        """Get a database connection."""
        conn = sqlite3.connect(self.db_path)
        conn.row_factory = sqlite3.Row
        try:
            yield conn
        finally:
            conn.close()

    # ==================== DOCUMENTS ====================

    def create_document(self, document: Document) -> Document:
        """Insert a new document row."""
        with self._get_connection() as conn:
            conn.execute(
                """
                INSERT INTO documents (id, household_id, account_id, file_name, mime_type,
                storage_path, file_size, ocr_text, status, error_message, extracted_json,
                uploaded_at, processed_at) VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
                """,
                (
                    str(document.id),
                    document.household_id,
                    document.account_id,
                    document.file_name,
                    document.mime_type,
                    document.storage_path,
                    document.file_size,
                    document.ocr_text,
                    document.status.value,
                    document.error_message,
                    self._dump_candidates(document.extracted_json),
                    document.uploaded_at.isoformat(),
                    document.processed_at.isoformat() if document.processed_at else None,
                ),
            )
            conn.commit()
        return document

    def get_document(self, household_id: str, document_id: UUID | str) -> Document | None:
        """Get a document scoped to its household."""
        with self._get_connection() as conn:
            cursor = conn.execute(
                "SELECT * FROM documents WHERE id = ? AND household_id = ?",
                (str(document_id), household_id),
            )
            row = cursor.fetchone()
            return self._row_to_document(row) if row else None

    def list_documents(self, household_id: str, limit: int = 100) -> list[Document]:
        """Most recent documents first."""
        with self._get_connection() as conn:
            cursor = conn.execute(
                """
                SELECT * FROM documents WHERE household_id = ?
                ORDER BY uploaded_at DESC LIMIT ?
                """,
                (household_id, limit),
            )
            return [self._row_to_document(row) for row in cursor.fetchall()]

    def update_document(self, household_id: str, document_id: UUID | str, **fields: Any) -> None:
        """Update non-status document fields."""
        if not fields:
            return
        assignments, params = self._document_assignments(fields)
        with self._get_connection() as conn:
            conn.execute(
                f"UPDATE documents SET {assignments} WHERE id = ? AND household_id = ?",
                [*params, str(document_id), household_id],
            )
            conn.commit()

    def transition_document(
        self,
        household_id: str,
        document_id: UUID | str,
        from_status: DocumentStatus,
        to_status: DocumentStatus,
        transactions: list[LedgerTransaction] | None = None,
        **fields: Any,
    ) -> bool:
        """
        Move a document from one status to another, atomically.

        The status change is a compare-and-set: it only applies if the row is
        still in from_status. Ledger rows, when given, are inserted in the
        same SQLite transaction, so a losing caller writes nothing.

        Returns:
            True if the transition happened
        """
        assignments, params = self._document_assignments({**fields, "status": to_status})
        with self._get_connection() as conn:
            try:
                cursor = conn.execute(
                    f"UPDATE documents SET {assignments} WHERE id = ? AND household_id = ? AND status = ?",
                    [*params, str(document_id), household_id, from_status.value],
                )
                if cursor.rowcount != 1:
                    conn.rollback()
                    return False
                if transactions:
                    self._insert_transactions(conn, transactions)
                conn.commit()
                return True
            except sqlite3.Error:
                conn.rollback()
                raise

    # ==================== LEDGER ====================

    def add_transactions_batch(self, transactions: list[LedgerTransaction]) -> int:
        """Insert ledger rows. Returns the number added."""
        if not transactions:
            return 0
        with self._get_connection() as conn:
            self._insert_transactions(conn, transactions)
            conn.commit()
        return len(transactions)

    def find_matching_transaction(
        self,
        household_id: str,
        account_id: str,
        txn_date: str,
        amount: float,
        description: str,
    ) -> LedgerTransaction | None:
        """Exact match on household, account, date, amount (to the cent) and description."""
        with self._get_connection() as conn:
            cursor = conn.execute(
                f"""
                SELECT {TRANSACTION_COLUMNS} FROM transactions
                WHERE household_id = ? AND account_id = ? AND date = ?
                  AND ROUND(amount, 2) = ROUND(?, 2) AND description = ?
                LIMIT 1
                """,
                (household_id, account_id, txn_date, amount, description),
            )
            row = cursor.fetchone()
            return self._row_to_transaction(row) if row else None

    def get_recent_transactions(self, household_id: str, limit: int = 50) -> list[LedgerTransaction]:
        """Latest ledger rows by date."""
        with self._get_connection() as conn:
            cursor = conn.execute(
                f"""
                SELECT {TRANSACTION_COLUMNS} FROM transactions
                WHERE household_id = ? ORDER BY date DESC, created_at DESC LIMIT ?
                """,
                (household_id, limit),
            )
            return [self._row_to_transaction(row) for row in cursor.fetchall()]

    def get_transactions_for_document(self, household_id: str, document_id: UUID | str) -> list[LedgerTransaction]:
        """Ledger rows imported from one document."""
        with self._get_connection() as conn:
            cursor = conn.execute(
                f"""
                SELECT {TRANSACTION_COLUMNS} FROM transactions
                WHERE household_id = ? AND document_id = ? ORDER BY date
                """,
                (household_id, str(document_id)),
            )
            return [self._row_to_transaction(row) for row in cursor.fetchall()]

    def get_transaction_count(self, household_id: str | None = None) -> int:
        """Get total number of transactions."""
        with self._get_connection() as conn:
            if household_id is None:
                cursor = conn.execute("SELECT COUNT(*) as count FROM transactions")
            else:
                cursor = conn.execute(
                    "SELECT COUNT(*) as count FROM transactions WHERE household_id = ?", (household_id,)
                )
            return cursor.fetchone()["count"]

    # ==================== CATEGORY RULES ====================

    def add_category_rule(self, rule: CategoryRule) -> None:
        """Record a learned categorization rule."""
        with self._get_connection() as conn:
            conn.execute(
                "INSERT INTO category_rules (id, household_id, pattern, category_slug) VALUES (?, ?, ?, ?)",
                (str(rule.id), rule.household_id, rule.pattern, rule.category_slug),
            )
            conn.commit()

    def list_category_rules(self, household_id: str, limit: int = 30) -> list[CategoryRule]:
        with self._get_connection() as conn:
            cursor = conn.execute(
                """
                SELECT id, household_id, pattern, category_slug FROM category_rules
                WHERE household_id = ? ORDER BY created_at DESC LIMIT ?
                """,
                (household_id, limit),
            )
            return [
                CategoryRule(
                    id=UUID(row["id"]),
                    household_id=row["household_id"],
                    pattern=row["pattern"],
                    category_slug=row["category_slug"],
                )
                for row in cursor.fetchall()
            ]

    # ==================== HELPERS ====================

    def _document_assignments(self, fields: dict[str, Any]) -> tuple[str, list[Any]]:
        unknown = set(fields) - DOCUMENT_COLUMNS
        if unknown:
            raise ValueError(f"Unknown document fields: {sorted(unknown)}")

        params = []
        for name, value in fields.items():
            if name == "extracted_json":
                value = self._dump_candidates(value)
            elif isinstance(value, DocumentStatus):
                value = value.value
            elif isinstance(value, datetime):
                value = value.isoformat()
            params.append(value)
        return ", ".join(f"{name} = ?" for name in fields), params

    def _insert_transactions(self, conn: sqlite3.Connection, transactions: list[LedgerTransaction]) -> None:
        conn.executemany(
            f"INSERT INTO transactions ({TRANSACTION_COLUMNS}) VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)",
            [
                (
                    str(txn.id),
                    txn.household_id,
                    txn.account_id,
                    txn.date,
                    txn.description,
                    txn.amount,
                    txn.category_slug,
                    txn.total_amount,
                    txn.installment_current,
                    txn.installment_total,
                    txn.source.value,
                    str(txn.document_id) if txn.document_id else None,
                    txn.created_at.isoformat(),
                )
                for txn in transactions
            ],
        )

    @staticmethod
    def _dump_candidates(candidates: list[ExtractedTransactionCandidate] | None) -> str | None:
        if candidates is None:
            return None
        return json.dumps(
            [c.model_dump(mode="json", by_alias=True, exclude_none=True) for c in candidates],
            ensure_ascii=False,
        )

    def _row_to_document(self, row: sqlite3.Row) -> Document:
        """Convert a database row to a Document model."""
        extracted = None
        if row["extracted_json"] is not None:
            extracted = [ExtractedTransactionCandidate.model_validate(c) for c in json.loads(row["extracted_json"])]
        return Document(
            id=UUID(row["id"]),
            household_id=row["household_id"],
            account_id=row["account_id"],
            file_name=row["file_name"],
            mime_type=row["mime_type"],
            storage_path=row["storage_path"],
            file_size=row["file_size"],
            ocr_text=row["ocr_text"],
            status=DocumentStatus(row["status"]),
            error_message=row["error_message"],
            extracted_json=extracted,
            uploaded_at=datetime.fromisoformat(row["uploaded_at"]),
            processed_at=datetime.fromisoformat(row["processed_at"]) if row["processed_at"] else None,
        )

    def _row_to_transaction(self, row: sqlite3.Row) -> LedgerTransaction:
        """Convert a database row to a LedgerTransaction model."""
        return LedgerTransaction(
            id=UUID(row["id"]),
            household_id=row["household_id"],
            account_id=row["account_id"],
            date=row["date"],
            description=row["description"],
            amount=row["amount"],
            category_slug=row["category_slug"],
            total_amount=row["total_amount"],
            installment_current=row["installment_current"],
            installment_total=row["installment_total"],
            source=TransactionSource(row["source"]),
            document_id=UUID(row["document_id"]) if row["document_id"] else None,
            created_at=datetime.fromisoformat(row["created_at"]),
        )


@lru_cache(maxsize=1)
def get_database() -> Database:
    """Process-wide database at the configured path."""
    settings.ensure_directories()
    return Database(settings.db_path)
