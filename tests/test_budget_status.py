"""
Tests for the budget status classifier.
"""
from budget_ledger.domain.entities.budget_status import BudgetStatusLevel
from budget_ledger.domain.services import BudgetStatusClassifier, classify


class TestBudgetStatusClassifier:

    def test_warning_when_under_ten_percent_left(self):
        status = classify(1_000_000, 920_000, warning_ratio=0.10)
        assert status.status == BudgetStatusLevel.WARNING
        assert status.message == "Only 800 remaining"
        assert status.remaining_cents == 80_000

    def test_critical_when_over_budget(self):
        status = classify(1_000_000, 1_050_000, warning_ratio=0.10)
        assert status.status == BudgetStatusLevel.CRITICAL
        assert status.message == "Exceeds budget by 500"
        assert status.remaining_cents == -50_000

    def test_ok(self):
        status = classify(1_000_000, 500_000, warning_ratio=0.10)
        assert status.status == BudgetStatusLevel.OK
        assert status.message == "5,000 available"

    def test_exactly_at_threshold_is_ok(self):
        assert classify(1_000_000, 900_000, warning_ratio=0.10).status == BudgetStatusLevel.OK

    def test_exactly_spent_is_warning(self):
        """Zero remaining is below any positive share of a positive budget."""
        assert classify(1_000_000, 1_000_000, warning_ratio=0.10).status == BudgetStatusLevel.WARNING

    def test_zero_budget_nothing_committed_is_ok(self):
        assert classify(0, 0, warning_ratio=0.10).status == BudgetStatusLevel.OK

    def test_fractional_cents_in_message(self):
        status = classify(100_000, 95_050, warning_ratio=0.10)
        assert status.message == "Only 49.50 remaining"

    def test_ratio_from_configuration(self):
        classifier = BudgetStatusClassifier()
        assert classifier.warning_ratio == 0.10

    def test_to_dict(self):
        data = classify(1_000_000, 920_000, warning_ratio=0.10).to_dict()
        assert data == {"status": "warning", "message": "Only 800 remaining", "remaining_cents": 80_000}
