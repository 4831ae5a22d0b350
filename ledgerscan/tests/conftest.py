"""Shared fixtures: a throwaway database and a workflow without a model."""

from unittest.mock import patch

import pytest

from ledgerscan.db.sqlite import Database
from ledgerscan.models import LedgerTransaction, TransactionSource
from ledgerscan.parsers.vocabulary import ExtractionVocabulary
from ledgerscan.services.documents import DocumentWorkflow
from ledgerscan.services.jobs import DocumentJobQueue

HOUSEHOLD = "household-1"  # Mirrored in the test modules that need it
ACCOUNT = "account-1"


@pytest.fixture(autouse=True)
def no_llm():
    """Tests never reach a real model unless they patch one in."""
    with patch("ledgerscan.parsers.extractor.is_llm_configured", return_value=False):
        yield


@pytest.fixture
def database(tmp_path):
    return Database(tmp_path / "ledgerscan_test.db")


@pytest.fixture
def workflow(database, tmp_path):
    return DocumentWorkflow(
        database,
        DocumentJobQueue(),
        vocabulary=ExtractionVocabulary(),
        upload_dir=tmp_path / "uploads",
    )


@pytest.fixture
def ledger_row():
    """Factory for ledger rows in the default household and account."""

    def make(**overrides) -> LedgerTransaction:
        fields = {
            "household_id": HOUSEHOLD,
            "account_id": ACCOUNT,
            "date": "2025-03-01",
            "description": "Coffee Shop",
            "amount": -45.0,
            "category_slug": "dining",
            "source": TransactionSource.MANUAL,
        }
        fields.update(overrides)
        return LedgerTransaction(**fields)

    return make
