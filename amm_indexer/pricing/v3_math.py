"""
Fixed-point helpers for concentrated-liquidity pools.

- sqrtPriceX96: square root of token1/token0 in Q96 fixed point
- Tick: logarithmic price, price = 1.0001^tick
- Prices returned here are quote per base, WAD-scaled
"""

from ..models import WAD

Q96 = 2**96
Q192 = 2**192

MIN_TICK = -887272
MAX_TICK = 887272


def get_sqrt_ratio_at_tick(tick: int) -> int:
    """
    Calculate sqrtPriceX96 from tick.

    Integer port of TickMath.getSqrtRatioAtTick, rounded up like the
    on-chain version.

    Raises:
        ValueError: If the tick is outside [MIN_TICK, MAX_TICK]
    """
    abs_tick = abs(tick)
    if abs_tick > MAX_TICK:
        raise ValueError(f"Tick {tick} out of range")

    # Start with Q128 representation
    ratio = 0xFFFCB933BD6FAD37AA2D162D1A594001 if abs_tick & 0x1 else 1 << 128

    if abs_tick & 0x2:
        ratio = (ratio * 0xFFF97272373D413259A46990580E213A) >> 128
    if abs_tick & 0x4:
        ratio = (ratio * 0xFFF2E50F5F656932EF12357CF3C7FDCC) >> 128
    if abs_tick & 0x8:
        ratio = (ratio * 0xFFE5CACA7E10E4E61C3624EAA0941CD0) >> 128
    if abs_tick & 0x10:
        ratio = (ratio * 0xFFCB9843D60F6159C9DB58835C926644) >> 128
    if abs_tick & 0x20:
        ratio = (ratio * 0xFF973B41FA98C081472E6896DFB254C0) >> 128
    if abs_tick & 0x40:
        ratio = (ratio * 0xFF2EA16466C96A3843EC78B326B52861) >> 128
    if abs_tick & 0x80:
        ratio = (ratio * 0xFE5DEE046A99A2A811C461F1969C3053) >> 128
    if abs_tick & 0x100:
        ratio = (ratio * 0xFCBE86C7900A88AEDCFFC83B479AA3A4) >> 128
    if abs_tick & 0x200:
        ratio = (ratio * 0xF987A7253AC413176F2B074CF7815E54) >> 128
    if abs_tick & 0x400:
        ratio = (ratio * 0xF3392B0822B70005940C7A398E4B70F3) >> 128
    if abs_tick & 0x800:
        ratio = (ratio * 0xE7159475A2C29B7443B29C7FA6E889D9) >> 128
    if abs_tick & 0x1000:
        ratio = (ratio * 0xD097F3BDFD2022B8845AD8F792AA5825) >> 128
    if abs_tick & 0x2000:
        ratio = (ratio * 0xA9F746462D870FDF8A65DC1F90E061E5) >> 128
    if abs_tick & 0x4000:
        ratio = (ratio * 0x70D869A156D2A1B890BB3DF62BAF32F7) >> 128
    if abs_tick & 0x8000:
        ratio = (ratio * 0x31BE135F97D08FD981231505542FCFA6) >> 128
    if abs_tick & 0x10000:
        ratio = (ratio * 0x9AA508B5B7A84E1C677DE54F3E99BC9) >> 128
    if abs_tick & 0x20000:
        ratio = (ratio * 0x5D6AF8DEDB81196699C329225EE604) >> 128
    if abs_tick & 0x40000:
        ratio = (ratio * 0x2216E584F5FA1EA926041BEDFE98) >> 128
    if abs_tick & 0x80000:
        ratio = (ratio * 0x48A170391F7DC42444E8FA2) >> 128

    if tick > 0:
        ratio = ((1 << 256) - 1) // ratio

    # Q128 -> Q96, rounding up
    return (ratio >> 32) + (0 if ratio % (1 << 32) == 0 else 1)


def price_from_sqrt(sqrt_price_x96: int, base_is_token0: bool) -> int:
    """
    Quote-per-base price, WAD-scaled, from sqrtPriceX96.

    sqrtPriceX96^2 / 2^192 is token1 per token0; invert when base is token1.
    """
    if sqrt_price_x96 <= 0:
        raise ValueError("sqrtPriceX96 must be positive")
    squared = sqrt_price_x96 * sqrt_price_x96
    if base_is_token0:
        return squared * WAD // Q192
    return Q192 * WAD // squared


def virtual_reserves(liquidity: int, sqrt_price_x96: int):
    """
    Token amounts equivalent to active liquidity at the current price.

    amount0 = L / sqrtP, amount1 = L * sqrtP (both in raw token units).
    """
    if sqrt_price_x96 <= 0:
        raise ValueError("sqrtPriceX96 must be positive")
    amount0 = liquidity * Q96 // sqrt_price_x96
    amount1 = liquidity * sqrt_price_x96 // Q96
    return amount0, amount1
