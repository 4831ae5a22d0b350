"""Duplicate detection against the ledger."""

import asyncio
import hashlib
import logging

from ledgerscan.db.sqlite import Database
from ledgerscan.models import ExistingTransactionRef, ExtractedTransactionCandidate
from ledgerscan.parsers.validation import is_iso_date

logger = logging.getLogger(__name__)


def compute_file_hash(contents: bytes) -> str:
    """Compute SHA256 hash of file contents."""
    return hashlib.sha256(contents).hexdigest()


async def _check_candidate(
    candidate: ExtractedTransactionCandidate,
    database: Database,
    household_id: str,
    account_id: str,
) -> ExtractedTransactionCandidate:
    # Malformed dates can never match a ledger row
    if not is_iso_date(candidate.date):
        return candidate

    existing = await asyncio.to_thread(
        database.find_matching_transaction,
        household_id,
        account_id,
        candidate.date,
        candidate.amount,
        candidate.description,
    )
    if existing is None:
        return candidate

    return candidate.model_copy(
        update={
            "is_duplicate": True,
            "existing_transaction": ExistingTransactionRef(
                id=str(existing.id),
                date=existing.date,
                amount=existing.amount,
                description=existing.description,
            ),
        }
    )


async def mark_duplicates(
    candidates: list[ExtractedTransactionCandidate],
    database: Database,
    household_id: str,
    account_id: str,
) -> list[ExtractedTransactionCandidate]:
    """
    Flag candidates that already exist in the ledger.

    A duplicate has the same household, account, date, amount (to the cent)
    and description as a stored row. Order is preserved.
    """
    if not candidates:
        return []

    checked = await asyncio.gather(
        *(_check_candidate(c, database, household_id, account_id) for c in candidates)
    )
    duplicates = sum(1 for c in checked if c.is_duplicate)
    if duplicates:
        logger.info(f"Found {duplicates} duplicate(s) among {len(checked)} candidate(s)")
    return list(checked)
