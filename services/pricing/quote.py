"""
报价换算：USDT <-> BRL，两位小数
"""
from decimal import Decimal, ROUND_HALF_UP

CENTS = Decimal("0.01")


def usdt_to_brl(amount: Decimal, price: Decimal) -> Decimal:
    """USDT 数量换算为 BRL 总额"""
    return (Decimal(str(amount)) * Decimal(str(price))).quantize(CENTS, rounding=ROUND_HALF_UP)


def brl_to_usdt(total: Decimal, price: Decimal) -> Decimal:
    """BRL 总额换算为 USDT 数量"""
    price = Decimal(str(price))
    if price <= 0:
        raise ValueError("价格必须大于 0")
    return (Decimal(str(total)) / price).quantize(CENTS, rounding=ROUND_HALF_UP)
