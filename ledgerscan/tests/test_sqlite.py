"""Tests for the SQLite document and ledger store."""

import json
import sqlite3
from datetime import datetime

import pytest

from ledgerscan.models import Document, DocumentStatus, ExtractedTransactionCandidate, TransactionSource

HOUSEHOLD = "household-1"
ACCOUNT = "account-1"


def _document(**overrides) -> Document:
    fields = {
        "household_id": HOUSEHOLD,
        "account_id": ACCOUNT,
        "file_name": "march.csv",
        "mime_type": "text/csv",
        "storage_path": "/tmp/march.csv",
        "file_size": 10,
    }
    fields.update(overrides)
    return Document(**fields)


class TestDocuments:
    """Test document persistence."""

    def test_create_and_get(self, database):
        """A stored document reads back unchanged."""
        doc = database.create_document(_document())
        loaded = database.get_document(HOUSEHOLD, doc.id)
        assert loaded.id == doc.id
        assert loaded.status == DocumentStatus.PENDING
        assert loaded.extracted_json is None

    def test_get_is_household_scoped(self, database):
        """Another household cannot see the document."""
        doc = database.create_document(_document())
        assert database.get_document("someone-else", doc.id) is None

    def test_candidates_round_trip_in_camel_case(self, database):
        """Candidates persist with the review UI's key names."""
        doc = database.create_document(_document())
        candidates = [
            ExtractedTransactionCandidate(
                date="2025-03-05", description="חנות", amount=-650.0, total_amount=1950.0, installment_total=3
            )
        ]
        database.update_document(HOUSEHOLD, doc.id, extracted_json=candidates)

        with sqlite3.connect(database.db_path) as conn:
            raw = conn.execute("SELECT extracted_json FROM documents WHERE id = ?", (str(doc.id),)).fetchone()[0]
        stored = json.loads(raw)
        assert stored[0]["totalAmount"] == 1950.0
        assert stored[0]["installmentTotal"] == 3
        assert "חנות" in raw

        assert database.get_document(HOUSEHOLD, doc.id).extracted_json == candidates

    def test_list_newest_first(self, database):
        """Documents are listed by upload time, newest first."""
        first = database.create_document(_document(file_name="a.csv", uploaded_at=datetime(2025, 3, 1, 9, 0)))
        second = database.create_document(_document(file_name="b.csv", uploaded_at=datetime(2025, 3, 2, 9, 0)))
        assert [d.id for d in database.list_documents(HOUSEHOLD)] == [second.id, first.id]

    def test_update_rejects_unknown_fields(self, database):
        """Only known columns can be written."""
        doc = database.create_document(_document())
        with pytest.raises(ValueError, match="Unknown document fields"):
            database.update_document(HOUSEHOLD, doc.id, household_id="x")


class TestTransitionDocument:
    """Test the status compare-and-set."""

    def test_transition_from_expected_status(self, database):
        """A matching from-status moves the document."""
        doc = database.create_document(_document())
        assert database.transition_document(HOUSEHOLD, doc.id, DocumentStatus.PENDING, DocumentStatus.PROCESSING)
        assert database.get_document(HOUSEHOLD, doc.id).status == DocumentStatus.PROCESSING

    def test_transition_from_wrong_status_is_refused(self, database):
        """A stale from-status changes nothing."""
        doc = database.create_document(_document())
        assert not database.transition_document(
            HOUSEHOLD, doc.id, DocumentStatus.PROCESSING, DocumentStatus.COMPLETED
        )
        assert database.get_document(HOUSEHOLD, doc.id).status == DocumentStatus.PENDING

    def test_ledger_rows_written_with_transition(self, database, ledger_row):
        """Rows land together with the status change."""
        doc = database.create_document(_document(status=DocumentStatus.PENDING_REVIEW))
        rows = [ledger_row(source=TransactionSource.UPLOAD, document_id=doc.id)]

        assert database.transition_document(
            HOUSEHOLD, doc.id, DocumentStatus.PENDING_REVIEW, DocumentStatus.COMPLETED, transactions=rows
        )
        stored = database.get_transactions_for_document(HOUSEHOLD, doc.id)
        assert len(stored) == 1
        assert stored[0].source == TransactionSource.UPLOAD
        assert stored[0].document_id == doc.id

    def test_losing_transition_writes_no_rows(self, database, ledger_row):
        """The second of two identical transitions inserts nothing."""
        doc = database.create_document(_document(status=DocumentStatus.PENDING_REVIEW))
        args = (HOUSEHOLD, doc.id, DocumentStatus.PENDING_REVIEW, DocumentStatus.COMPLETED)

        assert database.transition_document(*args, transactions=[ledger_row(document_id=doc.id)])
        assert not database.transition_document(*args, transactions=[ledger_row(document_id=doc.id)])
        assert database.get_transaction_count(HOUSEHOLD) == 1


class TestLedger:
    """Test ledger queries."""

    def test_recent_transactions_by_date(self, database, ledger_row):
        """Newest dates first, limited."""
        database.add_transactions_batch([ledger_row(date=f"2025-03-0{d}") for d in range(1, 6)])
        recent = database.get_recent_transactions(HOUSEHOLD, limit=2)
        assert [t.date for t in recent] == ["2025-03-05", "2025-03-04"]

    def test_transaction_count(self, database, ledger_row):
        """Counts are per household or global."""
        database.add_transactions_batch([ledger_row(), ledger_row(household_id="other")])
        assert database.get_transaction_count(HOUSEHOLD) == 1
        assert database.get_transaction_count() == 2

    def test_empty_batch(self, database):
        assert database.add_transactions_batch([]) == 0
