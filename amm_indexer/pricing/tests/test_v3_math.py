"""
Tests for concentrated-liquidity fixed-point helpers.
"""

import pytest

from ...models import WAD
from ..v3_math import MAX_TICK, MIN_TICK, Q96, get_sqrt_ratio_at_tick, price_from_sqrt, virtual_reserves


class TestTickMath:

    def test_tick_zero(self):
        assert get_sqrt_ratio_at_tick(0) == Q96

    def test_bounds_match_on_chain_constants(self):
        assert get_sqrt_ratio_at_tick(MIN_TICK) == 4295128739
        assert get_sqrt_ratio_at_tick(MAX_TICK) == 1461446703485210103287273052203988822378723970342

    def test_monotonic(self):
        assert get_sqrt_ratio_at_tick(-1) < get_sqrt_ratio_at_tick(0) < get_sqrt_ratio_at_tick(1)

    def test_out_of_range(self):
        with pytest.raises(ValueError):
            get_sqrt_ratio_at_tick(MAX_TICK + 1)


class TestPrices:

    def test_unit_price(self):
        assert price_from_sqrt(Q96, base_is_token0=True) == WAD
        assert price_from_sqrt(Q96, base_is_token0=False) == WAD

    def test_orientation(self):
        """token1/token0 is 4 at twice the unit sqrt price; inverted when base is token1."""
        assert price_from_sqrt(2 * Q96, base_is_token0=True) == 4 * WAD
        assert price_from_sqrt(2 * Q96, base_is_token0=False) == WAD // 4

    def test_zero_sqrt_price(self):
        with pytest.raises(ValueError):
            price_from_sqrt(0, True)

    def test_virtual_reserves(self):
        assert virtual_reserves(10**18, Q96) == (10**18, 10**18)
        assert virtual_reserves(10**18, 2 * Q96) == (10**18 // 2, 2 * 10**18)
