"""LLM-based transaction extraction with a regex fallback."""

import logging
import math
from datetime import date

from ledgerscan.config import settings
from ledgerscan.models import ExtractedTransactionCandidate
from ledgerscan.parsers.document_types import RawCandidate, RawCandidateList, SignHints
from ledgerscan.parsers.fallback import extract_with_regex
from ledgerscan.parsers.llm_client import ParsingError, is_llm_configured, llm_extract_json
from ledgerscan.parsers.validation import is_iso_date, parse_amount_safe, parse_statement_date
from ledgerscan.parsers.vocabulary import ExtractionVocabulary, get_vocabulary

logger = logging.getLogger(__name__)


def build_system_prompt(vocabulary: ExtractionVocabulary) -> str:
    """System instruction for the extraction model."""
    slugs = ", ".join(vocabulary.category_slugs)
    separators = " / ".join(f'"{s}"' for s in vocabulary.installment_separators)
    income_words = ", ".join(vocabulary.income_keywords[:8])
    expense_words = ", ".join(vocabulary.expense_keywords[:8])

    return f"""You extract transactions from credit card and bank statement text (OCR or spreadsheet export, often Hebrew).

RULES (strict):

1) SIGN TAGS - Some lines start with a machine-generated tag. They encode layout cues (red/green, debit/credit columns) you cannot see. Obey them exactly, never override them:
   - [INCOME 45.00] -> that row's amount is POSITIVE 45.00
   - [EXPENSE 45.00] -> that row's amount is NEGATIVE -45.00
   - [INCOME 40.00 | EXPENSE 120.00] -> the line holds two rows: +40.00 and -120.00
   - [UNKNOWN 45.00] -> decide from context. Income words: {income_words}. Expense words: {expense_words}. When unsure, it is an expense.
   Never copy the tags into the description.

2) DATE - Each transaction row has its own date (DD/MM/YY or DD.MM.YY, e.g. 28/01/26 -> 2026-01-28). Output YYYY-MM-DD. Ignore dates in page headers and date-range filters. If a row has no date, use the date of the PREVIOUS transaction row. Never use one fixed date for all rows.

3) CATEGORY - Set categorySlug on every row, exactly one of: {slugs}. Use "other" only if nothing fits. If user preferences are given below, prefer them when the description matches.

4) INSTALLMENTS - Patterns like "650.00 {vocabulary.installment_separators[0]} 1,950.00" and "2 {vocabulary.installment_separators[0]} 3" (separators: {separators}) mean one payment of a multi-payment purchase: amount = the single payment, NEGATIVE (-650.00); totalAmount = full price (1950.00); installmentCurrent = 2; installmentTotal = 3.

5) DESCRIPTION - The merchant or business name, copied as it appears in its original script. Do not mix scripts, do not transliterate, do not add Latin fragments to Hebrew text.

Output a JSON object: {{"transactions": [{{"date": "YYYY-MM-DD", "description": "...", "amount": -45.00, "categorySlug": "dining", "totalAmount": null, "installmentCurrent": null, "installmentTotal": null}}]}}
Skip rows you cannot parse. Respond with JSON only."""


def _optional_positive_int(value) -> int | None:
    number, ok = parse_amount_safe(value)
    if not ok:
        return None
    return max(1, math.floor(number))


def normalize_raw_candidate(
    raw: RawCandidate,
    vocabulary: ExtractionVocabulary,
    previous_date: str | None = None,
) -> ExtractedTransactionCandidate | None:
    """
    Validate one untrusted model row.

    Returns None for rows without a usable amount. Amounts must be finite,
    non-zero and inside the configured range; slugs outside the allow-list
    become the default; strings are clamped.
    """
    amount, ok = parse_amount_safe(raw.amount)
    if not ok or not math.isfinite(amount):
        return None
    if not settings.min_abs_amount <= abs(amount) <= settings.max_abs_amount:
        return None

    raw_date = str(raw.date).strip() if raw.date is not None else ""
    if is_iso_date(raw_date):
        txn_date = raw_date
    elif parsed := parse_statement_date(raw_date):
        txn_date = parsed
    elif raw_date:
        txn_date = raw_date[:32]  # Malformed, kept for review but never auto-matched
    else:
        txn_date = previous_date or date.today().isoformat()

    slug = str(raw.category_slug).strip().lower() if raw.category_slug else ""
    if slug not in vocabulary.category_slugs:
        slug = vocabulary.default_category

    total_amount, total_ok = parse_amount_safe(raw.total_amount)
    total = abs(total_amount) if total_ok and total_amount != 0 else None

    installment_current = _optional_positive_int(raw.installment_current)
    installment_total = _optional_positive_int(raw.installment_total)
    if installment_current is not None and installment_total is not None:
        installment_current = min(installment_current, installment_total)

    description = str(raw.description).strip() if raw.description is not None else ""

    return ExtractedTransactionCandidate(
        date=txn_date,
        description=description[: settings.description_max_chars],
        amount=round(amount, 2),
        category_slug=slug,
        total_amount=total,
        installment_current=installment_current,
        installment_total=installment_total,
    )


async def extract_with_llm(
    annotated_text: str,
    user_context: str | None = None,
    vocabulary: ExtractionVocabulary | None = None,
) -> list[ExtractedTransactionCandidate]:
    """
    Ask the model for transactions in the annotated text.

    Raises:
        ParsingError: If the model is unavailable, fails, or returns nothing usable
    """
    vocab = vocabulary or get_vocabulary()

    prompt = f"Extract transactions from this text:\n\n{annotated_text[: settings.max_prompt_chars]}"
    if user_context and user_context.strip():
        context = user_context.strip()[: settings.user_context_max_chars]
        prompt += (
            "\n\n---\nUser preferences and history (use when categorizing or deciding income vs expense):\n"
            f"{context}"
        )

    result = await llm_extract_json(prompt, RawCandidateList, system=build_system_prompt(vocab))

    candidates = []
    previous_date = None
    for raw in result.transactions:
        candidate = normalize_raw_candidate(raw, vocab, previous_date)
        if candidate is None:
            continue
        previous_date = candidate.date
        candidates.append(candidate)

    dropped = len(result.transactions) - len(candidates)
    if dropped:
        logger.info(f"Dropped {dropped} unusable row(s) from LLM response")
    if not candidates:
        raise ParsingError("LLM returned no usable transactions")
    return candidates


async def extract_transactions(
    raw_text: str,
    annotated_text: str,
    hints: SignHints,
    user_context: str | None = None,
    vocabulary: ExtractionVocabulary | None = None,
) -> list[ExtractedTransactionCandidate]:
    """
    Extract candidates with the LLM, falling back to regex parsing.

    The fallback runs when no model is configured or when the model call
    fails for any reason (transport, timeout, bad JSON, empty result).
    """
    vocab = vocabulary or get_vocabulary()

    if is_llm_configured():
        try:
            candidates = await extract_with_llm(annotated_text, user_context, vocab)
            logger.info(f"LLM extracted {len(candidates)} candidate(s)")
            return candidates
        except Exception as e:
            logger.warning(f"LLM extraction failed, using regex fallback: {e!r}")
    else:
        logger.info("No LLM configured, using regex fallback")

    return extract_with_regex(raw_text, hints, vocab)
