from decimal import ROUND_FLOOR, Decimal, localcontext

Q96 = Decimal(2) ** 96


def sqrt_price_at_tick(tick: int) -> Decimal:
    """sqrt(1.0001 ** tick), the price boundary of a tick"""
    return Decimal("1.0001") ** (Decimal(tick) / Decimal(2))


def _floor(value: Decimal) -> int:
    return int(value.to_integral_value(rounding=ROUND_FLOOR))


def amounts_for_liquidity(
    liquidity: int,
    sqrt_price_x96: int,
    tick_lower: int,
    tick_upper: int,
) -> tuple[int, int]:
    """
    Underlying token0/token1 amounts of a concentrated position at the current pool price.
    Amounts are in each token's smallest unit and floored, so shares never exceed reserves.
    """
    if liquidity <= 0 or tick_lower >= tick_upper:
        return 0, 0

    with localcontext() as ctx:
        ctx.prec = 80
        L = Decimal(liquidity)
        current = Decimal(sqrt_price_x96) / Q96
        lower = sqrt_price_at_tick(tick_lower)
        upper = sqrt_price_at_tick(tick_upper)

        if current <= lower:
            # price is below the range, position is entirely in token0
            return _floor(L * (upper - lower) / (lower * upper)), 0
        if current >= upper:
            # price is above the range, position is entirely in token1
            return 0, _floor(L * (upper - lower))
        amount0 = L * (upper - current) / (current * upper)
        amount1 = L * (current - lower)
        return _floor(amount0), _floor(amount1)
