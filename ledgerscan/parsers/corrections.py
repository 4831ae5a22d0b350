"""Deterministic corrections applied to extracted candidates."""

import logging
import re
from decimal import ROUND_HALF_UP, Decimal

from ledgerscan.config import settings
from ledgerscan.models import ExtractedTransactionCandidate
from ledgerscan.parsers.document_types import LineSign, SignHints
from ledgerscan.parsers.sign_hints import ANNOTATION_TAG_RE
from ledgerscan.parsers.validation import amounts_match, parse_statement_date
from ledgerscan.parsers.vocabulary import ExtractionVocabulary, get_vocabulary

logger = logging.getLogger(__name__)

# Threshold above which a reported installment amount is taken to be the full price
FULL_PRICE_RATIO = 0.99
CENT = Decimal("0.01")

LATIN_RUN_RE = re.compile(r"[A-Za-z]{2,}")


def _flip(candidate: ExtractedTransactionCandidate, positive: bool) -> ExtractedTransactionCandidate:
    amount = abs(candidate.amount) if positive else -abs(candidate.amount)
    return candidate.model_copy(update={"amount": amount})


def apply_sign_overlay(
    candidates: list[ExtractedTransactionCandidate], hints: SignHints
) -> list[ExtractedTransactionCandidate]:
    """
    Force candidate signs to agree with strong deterministic hints.

    The model is told to obey the inline tags but nothing guarantees it does.
    Each candidate is corrected at most once. Returns a new list.
    """
    result = list(candidates)
    touched: set[int] = set()
    flipped = 0

    def find(predicate) -> int | None:
        for idx, cand in enumerate(result):
            if idx not in touched and predicate(cand):
                return idx
        return None

    # Dual-column rows
    for line_idx in sorted(hints.two_amounts_by_line):
        income, expense = hints.two_amounts_by_line[line_idx]
        if amounts_match(income, expense):
            continue

        idx = find(lambda c: amounts_match(c.amount, income) and c.amount < 0)
        if idx is not None:
            result[idx] = _flip(result[idx], positive=True)
            touched.add(idx)
            flipped += 1

        idx = find(lambda c: amounts_match(c.amount, expense) and c.amount > 0)
        if idx is not None:
            result[idx] = _flip(result[idx], positive=False)
            touched.add(idx)
            flipped += 1

    # Single-amount rows, matched by running date
    resolved = set(hints.resolved_lines())
    single_hints = []
    running_date = None
    for line_idx, line in enumerate(hints.lines):
        running_date = parse_statement_date(line) or running_date
        if line_idx not in resolved or running_date is None:
            continue
        want_positive = hints.by_line[line_idx] == LineSign.INCOME
        single_hints.append((running_date, hints.amount_by_line[line_idx], want_positive))

    # Rows already carrying the hinted sign are claimed first so a
    # same-date, same-amount line of the opposite kind cannot flip them
    unclaimed = []
    for hint_date, amount, want_positive in single_hints:
        idx = find(
            lambda c: c.date == hint_date
            and amounts_match(c.amount, amount)
            and (c.amount > 0) == want_positive
        )
        if idx is None:
            unclaimed.append((hint_date, amount, want_positive))
        else:
            touched.add(idx)

    for hint_date, amount, want_positive in unclaimed:
        idx = find(
            lambda c: c.date == hint_date
            and amounts_match(c.amount, amount)
            and (c.amount > 0) != want_positive
        )
        if idx is not None:
            result[idx] = _flip(result[idx], positive=want_positive)
            touched.add(idx)
            flipped += 1

    if flipped:
        logger.info(f"Sign overlay corrected {flipped} candidate(s)")
    return result


def fix_installment_amounts(
    candidates: list[ExtractedTransactionCandidate],
) -> list[ExtractedTransactionCandidate]:
    """
    Replace a reported full purchase price with the per-payment amount.

    If |amount| >= 99% of totalAmount the extractor reported the total, so
    amount becomes -round(totalAmount / installmentTotal, 2). Idempotent.
    """
    fixed = []
    for cand in candidates:
        total = cand.total_amount
        payments = cand.installment_total
        if total is None or total <= 0 or payments is None or payments < 1:
            fixed.append(cand)
            continue
        if abs(cand.amount) < total * FULL_PRICE_RATIO:
            fixed.append(cand)  # Already the per-payment figure
            continue
        fixed.append(cand.model_copy(update={"amount": -_per_payment(total, payments)}))
    return fixed


def _per_payment(total: float, payments: int) -> float:
    """total / payments in cents, halves rounded up."""
    share = Decimal(str(total)) / Decimal(payments)
    return float(share.quantize(CENT, rounding=ROUND_HALF_UP))


def sanitize_description(description: str, vocabulary: ExtractionVocabulary | None = None) -> str:
    """
    Clean OCR and model artifacts out of a description.

    Known misreadings are replaced first. When the text is in the native
    script, any remaining run of two or more Latin letters is noise and is
    removed; purely Latin descriptions are left alone.
    """
    vocab = vocabulary or get_vocabulary()
    text = ANNOTATION_TAG_RE.sub(" ", description or "")

    for wrong, right in vocab.description_fixes.items():
        text = re.sub(re.escape(wrong), right, text, flags=re.IGNORECASE)

    if re.search(vocab.native_script_pattern, text):
        text = LATIN_RUN_RE.sub(" ", text)

    text = " ".join(text.split())
    text = text[: settings.description_max_chars].strip()
    return text or "Unknown"
