"""Intermediate types for document parsing."""

from dataclasses import dataclass, field
from enum import Enum
from typing import Any

from pydantic import BaseModel, ConfigDict, model_validator
from pydantic.alias_generators import to_camel


class LineSign(str, Enum):
    """Deterministic judgment for one statement line."""

    INCOME = "income"
    EXPENSE = "expense"
    UNKNOWN = "unknown"


@dataclass
class SignHints:
    """Line-indexed sign hints computed before the model sees the text."""

    lines: list[str] = field(default_factory=list)
    by_line: dict[int, LineSign] = field(default_factory=dict)
    two_amounts_by_line: dict[int, tuple[float, float]] = field(default_factory=dict)  # (income, expense)
    amount_by_line: dict[int, float] = field(default_factory=dict)

    def resolved_lines(self) -> list[int]:
        """Indices of single-amount lines with an income or expense verdict."""
        return [
            i
            for i, sign in sorted(self.by_line.items())
            if sign != LineSign.UNKNOWN and i in self.amount_by_line
        ]


class RawCandidate(BaseModel):
    """
    One row as returned by the model. Nothing here is trusted.

    Every field is loosely typed so a single malformed row cannot fail
    validation of the whole response; normalize_raw_candidate does the real
    checking.
    """

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, extra="ignore")

    date: Any = None
    description: Any = None
    amount: Any = None
    category_slug: Any = None
    total_amount: Any = None
    installment_current: Any = None
    installment_total: Any = None


class RawCandidateList(BaseModel):
    """Model response envelope: {"transactions": [...]}."""

    transactions: list[RawCandidate] = []

    @model_validator(mode="before")
    @classmethod
    def _accept_bare_list(cls, data: Any) -> Any:
        if isinstance(data, list):
            return {"transactions": data}
        if isinstance(data, dict) and not isinstance(data.get("transactions"), list):
            return {"transactions": []}
        return data
