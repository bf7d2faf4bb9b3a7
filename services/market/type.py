from dataclasses import dataclass
from datetime import datetime
from decimal import Decimal
from typing import Optional


@dataclass(frozen=True)
class PriceTick:
    """一次行情快照，不可变；下一次轮询产生新的 tick"""
    base_price: Decimal     # 交易所价格
    client_price: Decimal   # 加价后的客户价格
    observed_at: datetime
    daily_change_percent: Optional[Decimal] = None
    volume: Optional[Decimal] = None
    high_24h: Optional[Decimal] = None
    low_24h: Optional[Decimal] = None


@dataclass(frozen=True)
class CustomerQuote:
    """按客户加价计算的报价，附带与标准加价的对比"""
    base_price: Decimal
    client_price: Decimal       # 客户加价后的价格（锁价使用）
    standard_price: Decimal     # 标准加价价格
    markup: Decimal             # 客户加价比例，0.004 表示 0.4%
    savings: Decimal            # 每 USDT 比标准价便宜多少（BRL）
    savings_percent: Decimal
    observed_at: datetime
    is_custom: bool = False     # 是否使用了客户专属加价
