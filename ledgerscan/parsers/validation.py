"""Shared validation and token utilities for statement parsing."""

import logging
import math
import re
from dataclasses import dataclass, field
from datetime import date
from typing import Any, NamedTuple

from ledgerscan.config import settings
from ledgerscan.parsers.vocabulary import ExtractionVocabulary

# Configure logging for parsers
logger = logging.getLogger("ledgerscan.parsers")

# DD/MM/YY, DD.MM.YY, DD/MM/YYYY
DATE_RE = re.compile(r"(?<!\d)(\d{1,2})[/.](\d{1,2})[/.](\d{4}|\d{2})(?!\d)")
ISO_DATE_RE = re.compile(r"^\d{4}-\d{2}-\d{2}$")

# Digit groups with optional thousands separators and an optional 2-digit fraction
MONEY = r"(?:\d{1,3}(?:,\d{3})+|\d+)(?:\.\d{2})?"
AMOUNT_RE = re.compile(rf"(?<![\d.]){MONEY}(?!\d)")

MAX_INSTALLMENTS = 120


@dataclass
class ParseResult:
    """Result of parsing a statement text."""

    transactions: list[Any]
    total_rows_processed: int = 0
    rows_skipped: int = 0
    dual_column_rows: int = 0
    installment_rows: int = 0
    errors: list[str] = field(default_factory=list)
    warnings: list[str] = field(default_factory=list)

    @property
    def success_rate(self) -> float:
        """Calculate the parsing success rate."""
        if self.total_rows_processed == 0:
            return 0.0
        parsed = self.total_rows_processed - self.rows_skipped
        return (parsed / self.total_rows_processed) * 100


class ValidationError(Exception):
    """Raised when validation fails."""

    pass


class AmountToken(NamedTuple):
    """A currency-like number found in a line."""

    text: str
    value: float

    @property
    def has_fraction(self) -> bool:
        return "." in self.text

    @property
    def price_like(self) -> bool:
        # Small bare integers are usually installment indices ("2 of 3"), not money
        return self.has_fraction or self.value > 100


def validate_file_contents(contents: bytes, min_size: int = 1) -> None:
    """
    Validate file contents before storing.

    Args:
        contents: Raw file bytes
        min_size: Minimum expected file size in bytes

    Raises:
        ValidationError: If validation fails
    """
    if not contents:
        raise ValidationError("File is empty")

    if len(contents) < min_size:
        raise ValidationError(f"File too small ({len(contents)} bytes), minimum {min_size} bytes expected")


def decode_csv_contents(contents: bytes) -> str:
    """
    Decode CSV bytes to text with normalized line endings.

    No structural checks: title lines, single-column exports and blank files
    are all passed through, and blank input gives an empty string.

    Args:
        contents: Raw CSV file bytes

    Returns:
        Decoded text content
    """
    # Hebrew bank exports are frequently cp1255; latin-1 accepts any byte
    encodings = ["utf-8-sig", "utf-8", "cp1255", "latin-1"]
    text = ""

    for encoding in encodings:
        try:
            text = contents.decode(encoding)
            break
        except UnicodeDecodeError:
            continue

    return text.replace("\r\n", "\n").replace("\r", "\n").strip()


def validate_amount(amount: float, min_val: float = -1_000_000, max_val: float = 1_000_000) -> bool:
    """
    Validate that an amount is within reasonable bounds.

    Returns:
        True if valid, False otherwise
    """
    if amount is None:
        return False

    # Check for NaN or infinity
    if not math.isfinite(amount):
        return False

    return min_val <= amount <= max_val


def is_plausible_amount(value: float) -> bool:
    """Absolute value inside the configured money range."""
    if value is None or not math.isfinite(value):
        return False
    return settings.min_abs_amount <= abs(value) <= settings.max_abs_amount


def clean_amount_string(amount_str: str) -> str:
    """
    Clean an amount string for parsing.

    Args:
        amount_str: Raw amount string

    Returns:
        Cleaned amount string ready for float conversion
    """
    if not amount_str:
        return "0"

    # Remove currency symbols and whitespace
    cleaned = amount_str.replace("$", "").replace("₪", "").replace("ILS", "").replace(" ", "").strip()

    # Remove thousand separators
    cleaned = cleaned.replace(",", "")

    # Handle parentheses for negative numbers
    if cleaned.startswith("(") and cleaned.endswith(")"):
        cleaned = "-" + cleaned[1:-1]

    # Handle trailing minus sign
    if cleaned.endswith("-"):
        cleaned = "-" + cleaned[:-1]

    return cleaned


def parse_amount_safe(value: Any, default: float = 0.0) -> tuple[float, bool]:
    """
    Safely parse an amount that may be a number or a string.

    Returns:
        Tuple of (parsed amount, success flag)
    """
    if isinstance(value, bool) or value is None:
        return default, False
    try:
        if isinstance(value, (int, float)):
            amount = float(value)
        else:
            cleaned = clean_amount_string(str(value))
            if not cleaned or cleaned == "-":
                return default, False
            amount = float(cleaned)

        if not validate_amount(amount):
            return default, False

        return amount, True
    except (ValueError, TypeError):
        return default, False


def split_lines(text: str) -> list[str]:
    """Non-blank, stripped lines. Every pipeline stage indexes lines this way."""
    if not text:
        return []
    return [line.strip() for line in text.splitlines() if line.strip()]


def parse_statement_date(text: str) -> str | None:
    """
    Find the first DD/MM/YY(YY) date in text and return it as YYYY-MM-DD.

    Impossible dates (31/02/25) are ignored.
    """
    for match in DATE_RE.finditer(text or ""):
        day, month, year = match.groups()
        full_year = int(year) + 2000 if len(year) == 2 else int(year)
        try:
            return date(full_year, int(month), int(day)).isoformat()
        except ValueError:
            continue
    return None


def is_iso_date(value: str | None) -> bool:
    """YYYY-MM-DD shape and a real calendar date."""
    if not value or not ISO_DATE_RE.match(value):
        return False
    try:
        date.fromisoformat(value)
    except ValueError:
        return False
    return True


def strip_dates(text: str) -> str:
    return DATE_RE.sub(" ", text)


def find_amounts(text: str) -> list[AmountToken]:
    """Currency-like numbers in text, limited to the plausible money range."""
    tokens = []
    for match in AMOUNT_RE.finditer(text):
        raw = match.group(0)
        value = float(raw.replace(",", ""))
        if is_plausible_amount(value):
            tokens.append(AmountToken(raw, value))
    return tokens


def amounts_match(a: float, b: float) -> bool:
    """Equal to the cent."""
    return abs(abs(a) - abs(b)) < 0.005


def _money_pair_regex(vocabulary: ExtractionVocabulary) -> re.Pattern[str]:
    sep = vocabulary.separator_pattern()
    return re.compile(rf"(?<![\d.])({MONEY})\s*{sep}\s*({MONEY})(?!\d)", re.IGNORECASE)


def _index_pair_regex(vocabulary: ExtractionVocabulary) -> re.Pattern[str]:
    sep = vocabulary.separator_pattern()
    return re.compile(rf"(?<![\d.])(\d{{1,3}})\s*{sep}\s*(\d{{1,3}})(?!\d|\.\d)", re.IGNORECASE)


def installment_money_pairs(text: str, vocabulary: ExtractionVocabulary) -> list[tuple[float, float]]:
    """
    "650.00 of 1,950.00" constructions, as (payment, total) pairs.

    A pair only counts as money when at least one side looks like a price;
    "2 of 3" is an installment index, not an amount.
    """
    pairs = []
    for match in _money_pair_regex(vocabulary).finditer(text):
        left = AmountToken(match.group(1), float(match.group(1).replace(",", "")))
        right = AmountToken(match.group(2), float(match.group(2).replace(",", "")))
        if not (left.price_like or right.price_like):
            continue
        if not (is_plausible_amount(left.value) and is_plausible_amount(right.value)):
            continue
        pairs.append((min(left.value, right.value), max(left.value, right.value)))
    return pairs


def installment_index_pairs(text: str, vocabulary: ExtractionVocabulary) -> list[tuple[int, int]]:
    """"2 of 3" constructions as (current, total), with 1 <= current <= total."""
    pairs = []
    for match in _index_pair_regex(vocabulary).finditer(text):
        current, total = int(match.group(1)), int(match.group(2))
        if 1 <= current <= total <= MAX_INSTALLMENTS:
            pairs.append((current, total))
    return pairs


def remove_installment_constructions(text: str, vocabulary: ExtractionVocabulary) -> str:
    """Drop "X of Y" money and index constructions from text."""
    text = _money_pair_regex(vocabulary).sub(" ", text)
    return _index_pair_regex(vocabulary).sub(" ", text)


def normalize_description(description: str) -> str:
    """
    Normalize a transaction description.

    Args:
        description: Raw description

    Returns:
        Normalized description
    """
    if not description:
        return ""

    # Remove extra whitespace
    description = " ".join(description.split())

    # Remove common noise patterns
    noise_patterns = [
        r"^[\s\-|*:,]+",  # Leading separators
        r"[\s\-|*:,]+$",  # Trailing separators
        r"\s+X{2,}\d+$",  # Masked card numbers
    ]

    for pattern in noise_patterns:
        description = re.sub(pattern, "", description)

    return description.strip()


def log_parse_result(result: ParseResult, parser_name: str) -> None:
    """
    Log parsing results for debugging.

    Args:
        result: The parse result
        parser_name: Name of the parser
    """
    logger.info(
        f"{parser_name}: Parsed {len(result.transactions)} transactions "
        f"(processed {result.total_rows_processed}, "
        f"skipped {result.rows_skipped}, "
        f"dual-column {result.dual_column_rows}, "
        f"installments {result.installment_rows}, "
        f"success {result.success_rate:.1f}%)"
    )

    if result.errors:
        for error in result.errors[:5]:  # Log first 5 errors
            logger.warning(f"{parser_name}: {error}")

    if result.warnings:
        for warning in result.warnings[:5]:  # Log first 5 warnings
            logger.debug(f"{parser_name}: {warning}")
