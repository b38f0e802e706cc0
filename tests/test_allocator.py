"""
Unit tests for key allocation.

Tests cover:
- Midpoint between two keys
- Appending / prepending with the configured step
- Empty container
- Precision exhaustion (adjacent floats, ties, inverted bounds, float limits)
- PositionKey ordering with tie-break
"""

import math
import sys

import pytest

from app.boards.modules.positioning import Allocator, PositionKey, PrecisionExhausted, between


def k(value, item_id=0):
    return PositionKey(value, item_id)


class TestBetween:
    def test_midpoint(self):
        assert between(k(0.0, 1), k(1000.0, 2)) == 500.0
        assert between(k(-3.0, 1), k(1.0, 2)) == -1.0

    def test_append_after_last(self):
        assert between(k(2000.0), None) == 2001.0

    def test_prepend_before_first(self):
        assert between(None, k(0.0)) == -1.0

    def test_empty_container(self):
        assert between(None, None) == 0.0

    def test_deterministic(self):
        lo, hi = k(0.1, 1), k(0.7, 2)
        assert between(lo, hi) == between(lo, hi)

    def test_custom_step(self):
        alloc = Allocator(step=1000.0)
        assert alloc.between(k(5.0), None) == 1005.0
        assert alloc.between(None, k(5.0)) == -995.0


class TestPrecisionExhausted:
    def test_adjacent_floats(self):
        lo = 1.0
        hi = math.nextafter(1.0, 2.0)
        with pytest.raises(PrecisionExhausted) as exc:
            between(k(lo, 1), k(hi, 2))
        assert exc.value.lower == lo
        assert exc.value.upper == hi

    def test_tie(self):
        with pytest.raises(PrecisionExhausted):
            between(k(7.0, 1), k(7.0, 2))

    def test_inverted_bounds(self):
        with pytest.raises(PrecisionExhausted):
            between(k(8.0, 1), k(7.0, 2))

    def test_append_past_integer_precision(self):
        # 2**53 + 1 is not representable
        with pytest.raises(PrecisionExhausted):
            between(k(2.0 ** 53), None)

    def test_prepend_at_float_limit(self):
        with pytest.raises(PrecisionExhausted):
            Allocator(step=sys.float_info.max).between(None, k(-sys.float_info.max))

    def test_midpoint_of_huge_keys_does_not_overflow(self):
        big = sys.float_info.max
        value = between(k(big / 2, 1), k(big, 2))
        assert big / 2 < value < big

    def test_repeated_halving_toward_upper_exhausts_after_about_52_steps(self):
        lo, hi = 0.0, 1.0
        steps = 0
        with pytest.raises(PrecisionExhausted):
            while True:
                lo = between(k(lo, 1), k(hi, 2))
                steps += 1
        assert 50 <= steps <= 54

    def test_min_gap_triggers_early(self):
        alloc = Allocator(min_gap=1.0)
        assert alloc.between(k(0.0, 1), k(4.0, 2)) == 2.0
        with pytest.raises(PrecisionExhausted):
            alloc.between(k(0.0, 1), k(1.0, 2))


class TestAllocatorConfig:
    @pytest.mark.parametrize("step", [0.0, -1.0, float("inf"), float("nan")])
    def test_rejects_bad_step(self, step):
        with pytest.raises(ValueError):
            Allocator(step=step)

    def test_rejects_negative_min_gap(self):
        with pytest.raises(ValueError):
            Allocator(min_gap=-0.5)


class TestPositionKeyOrder:
    def test_orders_by_value_first(self):
        assert k(1.0, 99) < k(2.0, 1)

    def test_tie_break_on_equal_value(self):
        assert k(1.0, 1) < k(1.0, 2)
        assert sorted([k(1.0, 3), k(0.5, 9), k(1.0, 2)]) == [k(0.5, 9), k(1.0, 2), k(1.0, 3)]
