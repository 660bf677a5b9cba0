"""
Tests for money helpers: formatting, parsing and exact-cent splitting.
"""
import random
import pytest

from budget_ledger.modules.money import (
    allocate_largest_remainder,
    cents_to_display,
    format_amount,
    line_amount_cents,
    parse_cents,
    split_cumulative,
)


class TestFormatting:

    def test_format_amount_drops_whole_decimals(self):
        assert format_amount(80_000) == "800"
        assert format_amount(1_050_000) == "10,500"

    def test_format_amount_keeps_cents(self):
        assert format_amount(80_050) == "800.50"
        assert format_amount(-5) == "-0.05"

    def test_cents_to_display(self):
        assert cents_to_display(123_456) == "$1,234.56"
        assert cents_to_display(-100) == "-$1.00"

    def test_parse_cents(self):
        assert parse_cents("$1,234.56") == 123_456
        assert parse_cents(19.99) == 1_999
        assert parse_cents("") == 0

    def test_line_amount(self):
        assert line_amount_cents(3, 1_001) == 3_003
        assert line_amount_cents(None, 500) == 0


class TestLargestRemainder:

    def test_proportional_split(self):
        assert allocate_largest_remainder(500, [600, 400]) == [300, 200]

    def test_sum_is_exact(self):
        result = allocate_largest_remainder(100, [1, 1, 1])
        assert sum(result) == 100
        assert sorted(result) == [33, 33, 34]

    def test_zero_weights_split_evenly(self):
        assert allocate_largest_remainder(10, [0, 0, 0]) == [4, 3, 3]

    def test_empty(self):
        assert allocate_largest_remainder(10, []) == []


class TestSplitCumulative:

    def test_two_halves(self):
        assert split_cumulative(500, [600, 400], [0, 0]) == [300, 200]
        assert split_cumulative(500, [600, 400], [300, 200]) == [300, 200]

    def test_exceeding_headroom_rejected(self):
        with pytest.raises(ValueError):
            split_cumulative(501, [600, 400], [300, 200])

    def test_mismatched_lengths_rejected(self):
        with pytest.raises(ValueError):
            split_cumulative(1, [1, 2], [0])

    @pytest.mark.parametrize("seed", range(25))
    def test_random_installments_converge_on_weights(self, seed):
        rng = random.Random(seed)
        weights = [rng.randint(0, 50_000) for _ in range(rng.randint(1, 6))]
        weights[0] += 1
        total = sum(weights)
        received = [0] * len(weights)

        while sum(received) < total:
            amount = rng.randint(1, total - sum(received))
            shares = split_cumulative(amount, weights, received)

            assert sum(shares) == amount
            assert all(s >= 0 for s in shares)
            received = [r + s for r, s in zip(received, shares)]
            assert all(r <= w for r, w in zip(received, weights))

        assert received == weights
