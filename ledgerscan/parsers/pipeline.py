"""End-to-end text -> candidate pipeline (everything before duplicate checks)."""

import logging

from ledgerscan.config import settings
from ledgerscan.models import ExtractedTransactionCandidate
from ledgerscan.parsers.corrections import apply_sign_overlay, fix_installment_amounts, sanitize_description
from ledgerscan.parsers.extractor import extract_transactions
from ledgerscan.parsers.sign_hints import annotate_sign_hints, build_annotated_text
from ledgerscan.parsers.vocabulary import ExtractionVocabulary, get_vocabulary

logger = logging.getLogger(__name__)


async def extract_candidates(
    text: str,
    user_context: str | None = None,
    vocabulary: ExtractionVocabulary | None = None,
) -> list[ExtractedTransactionCandidate]:
    """
    Turn statement text into vetted transaction candidates.

    Steps: sign hints -> annotated text -> extraction (LLM or regex) ->
    sign overlay -> installment fix -> description cleanup -> noise filter.
    """
    vocab = vocabulary or get_vocabulary()
    if not text or not text.strip():
        return []

    hints = annotate_sign_hints(text, vocab)
    annotated = build_annotated_text(text, hints)
    logger.info(
        f"Sign hints: {len(hints.lines)} lines, {len(hints.two_amounts_by_line)} dual-column, "
        f"{len(hints.resolved_lines())} resolved"
    )

    candidates = await extract_transactions(text, annotated, hints, user_context, vocab)
    candidates = apply_sign_overlay(candidates, hints)
    candidates = fix_installment_amounts(candidates)
    candidates = [
        c.model_copy(update={"description": sanitize_description(c.description, vocab)})
        for c in candidates
    ]

    kept = [c for c in candidates if abs(c.amount) >= settings.min_abs_amount]
    if len(kept) < len(candidates):
        logger.info(f"Discarded {len(candidates) - len(kept)} near-zero row(s)")
    return kept
