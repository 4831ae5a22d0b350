"""Keyword vocabulary used by the sign annotator, extractor and sanitizer.

Everything language-specific lives here so a deployment can swap it for
another locale by pointing ``VOCABULARY_PATH`` at a JSON file with the same
fields.
"""

import logging
import re
from functools import lru_cache
from pathlib import Path

from pydantic import BaseModel, Field

from ledgerscan.config import settings

logger = logging.getLogger(__name__)

DEFAULT_INCOME_KEYWORDS = [
    # Hebrew
    "זיכוי", "הפקדה", "משכורת", "שכר", "החזר", "הכנסה", "קצבה", "מענק", "ריבית זכות", "העברה נכנסת",
    # English
    "salary", "deposit", "refund", "income", "benefit", "payroll", "cashback", "reimbursement",
]

DEFAULT_EXPENSE_KEYWORDS = [
    # Hebrew
    "חיוב", "הוצאה", "משיכה", "תשלום", "הוראת קבע", "עמלה", "רכישה",
    "ישראכרט", "מקס", "שכר דירה", "לאומי קארד", "אמריקן אקספרס", "ויזה", "מאסטרקארד",
    # English
    "charge", "withdrawal", "payment", "fee", "debit", "purchase",
    "visa", "mastercard", "isracard", "amex", "paypal",
]

DEFAULT_CATEGORY_SLUGS = [
    "groceries", "transport", "utilities", "rent", "insurance", "healthcare",
    "dining", "shopping", "entertainment", "salary", "other",
]

DEFAULT_CATEGORY_KEYWORDS = {
    "groceries": ["סופר", "מכולת", "שופרסל", "רמי לוי", "ירקות", "grocery", "supermarket"],
    "dining": ["מסעדה", "קפה", "פיצה", "המבורגר", "סושי", "וולט", "restaurant", "coffee", "cafe", "pizza"],
    "transport": ["דלק", "בנזין", "רכבת", "אוטובוס", "מונית", "חניה", "fuel", "taxi", "parking"],
    "utilities": ["חשמל", "מים", "ארנונה", "בזק", "electricity", "water"],
    "healthcare": ["רופא", "תרופות", "מרפאה", "בית מרקחת", "סופר-פארם", "pharmacy", "doctor"],
    "shopping": ["בגדים", "נעליים", "קניות", "clothes", "shoes", "shopping"],
    "entertainment": ["קולנוע", "סרט", "הופעה", "נטפליקס", "ספוטיפיי", "cinema", "netflix", "spotify"],
    "rent": ["שכירות", "שכר דירה", "rent"],
    "insurance": ["ביטוח", "insurance"],
    "salary": ["משכורת", "שכר", "salary", "payroll"],
}

# Known OCR/model misreadings and Latin brand names with their native spelling
DEFAULT_DESCRIPTION_FIXES = {
    "בע''מ": 'בע"מ',
    "בע'מ": 'בע"מ',
    "ש''ח": 'ש"ח',
    "חו''ל": 'חו"ל',
    "חו'ל": 'חו"ל',
    "paypal": "פייפאל",
    "google": "גוגל",
    "netflix": "נטפליקס",
    "spotify": "ספוטיפיי",
    "amazon": "אמזון",
    "aliexpress": "עליאקספרס",
    "wolt": "וולט",
}


class ExtractionVocabulary(BaseModel):
    """Locale-specific keyword configuration for the extraction pipeline."""

    income_keywords: list[str] = Field(default_factory=lambda: list(DEFAULT_INCOME_KEYWORDS))
    expense_keywords: list[str] = Field(default_factory=lambda: list(DEFAULT_EXPENSE_KEYWORDS))
    installment_separators: list[str] = Field(default_factory=lambda: ["מתוך", "of"])
    category_slugs: list[str] = Field(default_factory=lambda: list(DEFAULT_CATEGORY_SLUGS))
    category_keywords: dict[str, list[str]] = Field(
        default_factory=lambda: {k: list(v) for k, v in DEFAULT_CATEGORY_KEYWORDS.items()}
    )
    description_fixes: dict[str, str] = Field(default_factory=lambda: dict(DEFAULT_DESCRIPTION_FIXES))
    native_script_pattern: str = r"[\u0590-\u05FF]"
    default_category: str = "other"

    def separator_pattern(self) -> str:
        """Regex alternation matching any installment separator word."""
        parts = [
            rf"(?<![A-Za-z]){re.escape(s)}(?![A-Za-z])" if s.isascii() else re.escape(s)
            for s in self.installment_separators
        ]
        return "(?:" + "|".join(parts) + ")"

    def matches_income(self, text: str) -> bool:
        return keyword_regex(tuple(self.income_keywords)).search(text) is not None

    def matches_expense(self, text: str) -> bool:
        return keyword_regex(tuple(self.expense_keywords)).search(text) is not None

    def guess_category(self, text: str) -> str:
        """First category whose keywords appear in text, else the default."""
        for slug, keywords in self.category_keywords.items():
            if slug in self.category_slugs and keyword_regex(tuple(keywords)).search(text):
                return slug
        return self.default_category

    def has_installment_marker(self, text: str) -> bool:
        """True when text holds a "<number> of <number>" construction."""
        pattern = rf"\d\s*{self.separator_pattern()}\s*\d"
        return re.search(pattern, text, re.IGNORECASE) is not None


@lru_cache(maxsize=256)
def keyword_regex(keywords: tuple[str, ...]) -> re.Pattern[str]:
    """
    Compile keywords into one case-insensitive alternation.

    ASCII keywords must match whole words ("fee" must not hit "coffee").
    Hebrew keywords match as substrings because prefixes such as ה/ב/ל
    attach directly to the word.
    """
    parts = []
    for kw in keywords:
        kw = kw.strip()
        if not kw:
            continue
        if kw.isascii():
            parts.append(rf"(?<![A-Za-z]){re.escape(kw)}(?![A-Za-z])")
        else:
            parts.append(re.escape(kw))
    if not parts:
        return re.compile(r"(?!x)x")  # Never matches
    return re.compile("|".join(parts), re.IGNORECASE)


def load_vocabulary(path: Path | None = None) -> ExtractionVocabulary:
    """Load a vocabulary from JSON, or the built-in defaults when no path is given."""
    if path is None:
        return ExtractionVocabulary()
    logger.info(f"Loading extraction vocabulary from {path}")
    return ExtractionVocabulary.model_validate_json(Path(path).read_text(encoding="utf-8"))


@lru_cache(maxsize=1)
def get_vocabulary() -> ExtractionVocabulary:
    """Process-wide vocabulary selected by settings."""
    return load_vocabulary(settings.vocabulary_path)
