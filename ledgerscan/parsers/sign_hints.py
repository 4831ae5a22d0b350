"""Deterministic income/expense hints and the annotated text handed to the LLM.

A model reading OCR text cannot see that a bank printed charges in red and
credits in green, or that a row has separate debit and credit columns. These
helpers recover what they can from layout and keywords and spell it out as
inline tags the model is told to obey.
"""

import re

from ledgerscan.parsers.document_types import LineSign, SignHints
from ledgerscan.parsers.validation import (
    AMOUNT_RE,
    find_amounts,
    installment_money_pairs,
    remove_installment_constructions,
    split_lines,
    strip_dates,
)
from ledgerscan.parsers.vocabulary import ExtractionVocabulary, get_vocabulary

# Matches any tag emitted by build_annotated_text
ANNOTATION_TAG_RE = re.compile(r"\[(?:INCOME|EXPENSE|UNKNOWN)\s+[\d.]+(?:\s*\|\s*EXPENSE\s+[\d.]+)?\]\s*")


def line_amount_candidates(line: str, vocabulary: ExtractionVocabulary) -> list[float]:
    """
    Money amounts worth considering on one line, in order of appearance.

    An "X of Y" money construction collapses to its payment side so the
    purchase total is never read as a second column. Price-like values
    (with a fraction or above 100) win over small integers.
    """
    body = strip_dates(line)

    money_pairs = installment_money_pairs(body, vocabulary)
    if money_pairs:
        payment, _total = money_pairs[0]
        return [payment]

    tokens = find_amounts(remove_installment_constructions(body, vocabulary))
    priced = [t for t in tokens if t.price_like]
    return [t.value for t in (priced or tokens)]


def residual_text(line: str) -> str:
    """The line without dates and numbers, for keyword tests."""
    text = AMOUNT_RE.sub(" ", strip_dates(line))
    return " ".join(text.split())


def classify_residual(residual: str, vocabulary: ExtractionVocabulary) -> LineSign:
    is_income = vocabulary.matches_income(residual)
    is_expense = vocabulary.matches_expense(residual)
    if is_income and not is_expense:
        return LineSign.INCOME
    if is_expense and not is_income:
        return LineSign.EXPENSE
    return LineSign.UNKNOWN


def annotate_sign_hints(text: str, vocabulary: ExtractionVocabulary | None = None) -> SignHints:
    """
    Scan text line by line and record sign hints.

    - Two amounts on a line: dual-column row, (first=income, second=expense)
      unless only expense keywords are present, in which case the pair swaps.
    - One amount: income/expense by keywords, else unknown.
    - Zero or three-plus amounts: no hint.

    Pure function of its input.
    """
    vocab = vocabulary or get_vocabulary()
    hints = SignHints(lines=split_lines(text))

    for i, line in enumerate(hints.lines):
        amounts = line_amount_candidates(line, vocab)

        if len(amounts) == 2:
            income, expense = amounts
            if classify_residual(residual_text(line), vocab) == LineSign.EXPENSE:
                income, expense = expense, income
            hints.two_amounts_by_line[i] = (income, expense)
            hints.by_line[i] = LineSign.UNKNOWN
        elif len(amounts) == 1:
            hints.amount_by_line[i] = amounts[0]
            hints.by_line[i] = classify_residual(residual_text(line), vocab)

    return hints


def build_annotated_text(text: str, hints: SignHints | None = None) -> str:
    """Rewrite text with each line's hint inlined as a tag prefix."""
    if hints is None:
        hints = annotate_sign_hints(text)

    annotated = []
    for i, line in enumerate(hints.lines):
        if i in hints.two_amounts_by_line:
            income, expense = hints.two_amounts_by_line[i]
            annotated.append(f"[INCOME {income:.2f} | EXPENSE {expense:.2f}] {line}")
        elif i in hints.amount_by_line:
            sign = hints.by_line.get(i, LineSign.UNKNOWN)
            annotated.append(f"[{sign.value.upper()} {hints.amount_by_line[i]:.2f}] {line}")
        else:
            annotated.append(line)
    return "\n".join(annotated)
