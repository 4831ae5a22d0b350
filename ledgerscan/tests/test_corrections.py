"""Tests for sign overlay, installment normalization and description cleanup."""

import pytest

from ledgerscan.models import ExtractedTransactionCandidate
from ledgerscan.parsers.corrections import apply_sign_overlay, fix_installment_amounts, sanitize_description
from ledgerscan.parsers.document_types import LineSign
from ledgerscan.parsers.sign_hints import annotate_sign_hints
from ledgerscan.parsers.vocabulary import ExtractionVocabulary

VOCAB = ExtractionVocabulary()


def _candidate(amount: float, txn_date: str = "2025-03-15", description: str = "Row", **kwargs):
    return ExtractedTransactionCandidate(date=txn_date, description=description, amount=amount, **kwargs)


class TestApplySignOverlay:
    """Test deterministic sign corrections."""

    def test_dual_column_signs_are_forced(self):
        """A model that got both signs wrong is corrected."""
        hints = annotate_sign_hints("15/03/25 עמלה 120.00 40.00", VOCAB)
        result = apply_sign_overlay([_candidate(-40.0), _candidate(120.0)], hints)
        assert [c.amount for c in result] == [40.0, -120.0]

    def test_correct_dual_column_is_untouched(self):
        """Already-correct signs stay."""
        hints = annotate_sign_hints("15/03/25 עמלה 120.00 40.00", VOCAB)
        result = apply_sign_overlay([_candidate(40.0), _candidate(-120.0)], hints)
        assert [c.amount for c in result] == [40.0, -120.0]

    def test_equal_dual_amounts_are_skipped(self):
        """No way to tell which side is which."""
        hints = annotate_sign_hints("50.00 50.00", VOCAB)
        result = apply_sign_overlay([_candidate(-50.0), _candidate(-50.0)], hints)
        assert [c.amount for c in result] == [-50.0, -50.0]

    def test_single_income_line_flips_to_positive(self):
        """An income line reported negative becomes positive."""
        hints = annotate_sign_hints("10/03/25 salary 9,000.00", VOCAB)
        result = apply_sign_overlay([_candidate(-9000.0, "2025-03-10")], hints)
        assert result[0].amount == 9000.0

    def test_single_expense_line_flips_to_negative(self):
        """An expense line reported positive becomes negative."""
        hints = annotate_sign_hints("10/03/25 bank fee 15.00", VOCAB)
        result = apply_sign_overlay([_candidate(15.0, "2025-03-10")], hints)
        assert result[0].amount == -15.0

    def test_single_line_requires_matching_date(self):
        """A same-amount row from another day is not touched."""
        hints = annotate_sign_hints("10/03/25 bank fee 15.00", VOCAB)
        result = apply_sign_overlay([_candidate(15.0, "2025-03-11")], hints)
        assert result[0].amount == 15.0

    def test_running_date_carries_forward(self):
        """An undated line uses the previous line's date."""
        hints = annotate_sign_hints("10/03/25 Coffee 12.00\nbank fee 15.00", VOCAB)
        result = apply_sign_overlay([_candidate(15.0, "2025-03-10")], hints)
        assert result[0].amount == -15.0

    def test_undated_lines_before_any_date_are_skipped(self):
        """No running date means no correction."""
        hints = annotate_sign_hints("bank fee 15.00", VOCAB)
        result = apply_sign_overlay([_candidate(15.0)], hints)
        assert result[0].amount == 15.0

    def test_unknown_lines_never_change_signs(self):
        """Unknown verdicts leave the model's choice."""
        hints = annotate_sign_hints("01/03/25 Coffee Shop 45.00", VOCAB)
        assert hints.by_line[0] == LineSign.UNKNOWN
        result = apply_sign_overlay([_candidate(45.0, "2025-03-01")], hints)
        assert result[0].amount == 45.0

    def test_each_candidate_corrected_at_most_once(self):
        """Two hints for the same amount touch two different candidates."""
        text = "15/03/25 fee 15.00\n15/03/25 charge 15.00"
        hints = annotate_sign_hints(text, VOCAB)
        candidates = [_candidate(15.0, description="a"), _candidate(15.0, description="b")]
        result = apply_sign_overlay(candidates, hints)
        assert [c.amount for c in result] == [-15.0, -15.0]

    def test_same_day_same_amount_income_and_expense_keep_signs(self):
        """Correct rows are matched to their own lines, not flipped by the opposite one."""
        text = "01/03/25 salary 50.00\n01/03/25 bank fee 50.00"
        hints = annotate_sign_hints(text, VOCAB)
        candidates = [
            _candidate(50.0, "2025-03-01", description="salary"),
            _candidate(-50.0, "2025-03-01", description="bank fee"),
        ]
        result = apply_sign_overlay(candidates, hints)
        assert [(c.description, c.amount) for c in result] == [("salary", 50.0), ("bank fee", -50.0)]

    def test_same_day_same_amount_with_one_wrong_sign(self):
        """Only the row with the wrong sign is flipped."""
        text = "01/03/25 salary 50.00\n01/03/25 bank fee 50.00"
        hints = annotate_sign_hints(text, VOCAB)
        candidates = [
            _candidate(50.0, "2025-03-01", description="salary"),
            _candidate(50.0, "2025-03-01", description="bank fee"),
        ]
        result = apply_sign_overlay(candidates, hints)
        assert [c.amount for c in result] == [50.0, -50.0]

    def test_input_list_is_not_mutated(self):
        """Returns a new list."""
        hints = annotate_sign_hints("10/03/25 bank fee 15.00", VOCAB)
        original = [_candidate(15.0, "2025-03-10")]
        apply_sign_overlay(original, hints)
        assert original[0].amount == 15.0

    def test_overlay_is_idempotent(self):
        """Applying twice equals applying once."""
        text = "15/03/25 עמלה 120.00 40.00\n16/03/25 salary 900.00"
        hints = annotate_sign_hints(text, VOCAB)
        candidates = [_candidate(-40.0), _candidate(120.0), _candidate(-900.0, "2025-03-16")]
        once = apply_sign_overlay(candidates, hints)
        twice = apply_sign_overlay(once, hints)
        assert [c.amount for c in once] == [c.amount for c in twice]


class TestFixInstallmentAmounts:
    """Test per-payment amount normalization."""

    def test_full_price_becomes_payment(self):
        """1950 in 3 payments is -650 each."""
        cand = _candidate(-1950.0, total_amount=1950.0, installment_current=2, installment_total=3)
        assert fix_installment_amounts([cand])[0].amount == -650.0

    def test_near_full_price_is_fixed(self):
        """Within 1% of the total counts as the total."""
        cand = _candidate(1940.0, total_amount=1950.0, installment_total=3)
        assert fix_installment_amounts([cand])[0].amount == -650.0

    def test_payment_amount_is_kept(self):
        """A per-payment figure is already right."""
        cand = _candidate(-650.0, total_amount=1950.0, installment_total=3)
        assert fix_installment_amounts([cand])[0].amount == -650.0

    def test_rounds_to_cents(self):
        """100 in 3 payments is 33.33."""
        cand = _candidate(-100.0, total_amount=100.0, installment_total=3)
        assert fix_installment_amounts([cand])[0].amount == -33.33

    def test_half_cent_rounds_up(self):
        """100.25 in 2 payments is 50.13, not the banker's 50.12."""
        cand = _candidate(-100.25, total_amount=100.25, installment_total=2)
        assert fix_installment_amounts([cand])[0].amount == -50.13

    def test_missing_installment_total_is_untouched(self):
        """Without a payment count nothing can be divided."""
        cand = _candidate(-1950.0, total_amount=1950.0)
        assert fix_installment_amounts([cand])[0].amount == -1950.0

    def test_is_idempotent(self):
        """Applying twice equals applying once."""
        cand = _candidate(-1950.0, total_amount=1950.0, installment_total=3)
        once = fix_installment_amounts([cand])
        assert fix_installment_amounts(once) == once


class TestSanitizeDescription:
    """Test description cleanup."""

    def test_latin_description_is_kept(self):
        """Purely Latin text is not noise."""
        assert sanitize_description("Coffee Shop", VOCAB) == "Coffee Shop"

    def test_latin_fragments_removed_from_hebrew(self):
        """Latin runs inside Hebrew text are OCR noise."""
        assert sanitize_description("סופר abc שכונתי", VOCAB) == "סופר שכונתי"

    def test_known_brand_is_transliterated(self):
        """Brand fixes apply before Latin stripping."""
        assert sanitize_description("תשלום PayPal", VOCAB) == "תשלום פייפאל"

    def test_gershayim_fix(self):
        """Doubled apostrophes become gershayim."""
        assert sanitize_description("חברה בע''מ", VOCAB) == 'חברה בע"מ'

    def test_strips_annotation_tags(self):
        """Tags leaked by the model are removed."""
        assert sanitize_description("[EXPENSE 45.00] Coffee Shop", VOCAB) == "Coffee Shop"

    def test_empty_becomes_unknown(self):
        """Never returns an empty string."""
        assert sanitize_description("", VOCAB) == "Unknown"
        assert sanitize_description("[UNKNOWN 3.00]", VOCAB) == "Unknown"

    @pytest.mark.parametrize("length", [300, 301, 1000])
    def test_truncates(self, length):
        """Descriptions are clamped."""
        assert len(sanitize_description("x" * length, VOCAB)) <= 300
