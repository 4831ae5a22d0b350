"""Regex-based transaction extraction used when the LLM is unavailable or fails."""

import re
from datetime import date

from ledgerscan.config import settings
from ledgerscan.models import ExtractedTransactionCandidate
from ledgerscan.parsers.document_types import LineSign, SignHints
from ledgerscan.parsers.sign_hints import annotate_sign_hints
from ledgerscan.parsers.validation import (
    AMOUNT_RE,
    ParseResult,
    find_amounts,
    installment_index_pairs,
    installment_money_pairs,
    log_parse_result,
    normalize_description,
    parse_statement_date,
    remove_installment_constructions,
    strip_dates,
)
from ledgerscan.parsers.vocabulary import ExtractionVocabulary, get_vocabulary

FALLBACK_DESCRIPTION_MAX = 200


def _line_description(line: str, vocabulary: ExtractionVocabulary) -> str:
    """Line text minus dates, amounts, "X of Y" constructions and stray digits."""
    text = strip_dates(line)
    text = remove_installment_constructions(text, vocabulary)
    text = AMOUNT_RE.sub(" ", text)
    text = re.sub(vocabulary.separator_pattern(), " ", text, flags=re.IGNORECASE)
    text = re.sub(r"\d+", " ", text)
    return normalize_description(text)[:FALLBACK_DESCRIPTION_MAX] or "Unknown"


def extract_with_regex(
    text: str,
    hints: SignHints | None = None,
    vocabulary: ExtractionVocabulary | None = None,
) -> list[ExtractedTransactionCandidate]:
    """
    Extract one candidate per line that carries a usable amount.

    Dates carry forward from the previous dated line. Dual-column lines yield
    an income row and an expense row. Everything else is an expense unless
    the line hint says income.
    """
    vocab = vocabulary or get_vocabulary()
    if hints is None:
        hints = annotate_sign_hints(text, vocab)

    result = ParseResult(transactions=[])
    last_date = date.today().isoformat()

    for i, line in enumerate(hints.lines):
        result.total_rows_processed += 1
        last_date = parse_statement_date(line) or last_date
        description = _line_description(line, vocab)
        category = vocab.guess_category(line)

        if i in hints.two_amounts_by_line:
            income, expense = hints.two_amounts_by_line[i]
            result.dual_column_rows += 1
            result.transactions.append(
                ExtractedTransactionCandidate(
                    date=last_date,
                    description=description,
                    amount=income,
                    category_slug=category,
                )
            )
            result.transactions.append(
                ExtractedTransactionCandidate(
                    date=last_date,
                    description=description,
                    amount=-expense,
                    category_slug=category,
                )
            )
            continue

        body = strip_dates(line)
        amount = 0.0
        total_amount = None
        installment_current = None
        installment_total = None

        money_pairs = installment_money_pairs(body, vocab)
        if money_pairs:
            amount, total_amount = money_pairs[0]

        index_pairs = installment_index_pairs(line, vocab)
        if index_pairs:
            installment_current, installment_total = index_pairs[0]

        if amount <= 0:
            has_marker = vocab.has_installment_marker(line)
            tokens = find_amounts(remove_installment_constructions(body, vocab) if has_marker else body)
            priced = [t for t in tokens if t.price_like]
            values = [t.value for t in (priced or tokens)]
            if values:
                # With an installment marker the smaller figure is the payment, not the total
                amount = min(values) if has_marker else max(values)

        if amount <= 0:
            result.rows_skipped += 1
            continue

        if total_amount is not None or installment_total is not None:
            result.installment_rows += 1

        is_income = hints.by_line.get(i) == LineSign.INCOME
        result.transactions.append(
            ExtractedTransactionCandidate(
                date=last_date,
                description=description,
                amount=abs(amount) if is_income else -abs(amount),
                category_slug=category,
                total_amount=total_amount,
                installment_current=installment_current,
                installment_total=installment_total,
            )
        )

    log_parse_result(result, "Regex fallback")
    return [
        t
        for t in result.transactions
        if settings.min_abs_amount <= abs(t.amount) <= settings.max_abs_amount
    ]
