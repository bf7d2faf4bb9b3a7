import ccxt
from decimal import Decimal
from typing import Optional
from services.order.errors import TransientUpstreamError
from utils.logger import logger

class APIClient:
    """REST API 客户端（CCXT）"""
    #固定使用binance的API，USDT/BRL 现货
    def __init__(self, exchange: Optional[ccxt.Exchange] = None):
        self.exchange = exchange or ccxt.binance()
        logger.info(f"APIClient initialized")

    def fetch_ticker(self, symbol: str) -> dict:
        """获取最新 ticker（价格 + 24h 统计）

        Returns:
            {'last': Decimal, 'change_percent': Decimal, 'volume': Decimal,
             'high': Decimal, 'low': Decimal}

        Raises:
            TransientUpstreamError: 网络或交易所暂时不可用
            ValueError: 价格无效
        """
        try:
            ticker = self.exchange.fetch_ticker(symbol)
        except (ccxt.NetworkError, ccxt.ExchangeNotAvailable) as e:
            raise TransientUpstreamError(f"获取 {symbol} ticker 失败: {e}") from e
        last = ticker.get('last') or ticker.get('close')
        if last is None or float(last) <= 0:
            raise ValueError(f"{symbol} ticker 价格无效: {last}")

        return {
            'last': Decimal(str(last)),
            'change_percent': self._to_decimal(ticker.get('percentage')),
            'volume': self._to_decimal(ticker.get('baseVolume')),
            'high': self._to_decimal(ticker.get('high')),
            'low': self._to_decimal(ticker.get('low')),
        }

    @staticmethod
    def _to_decimal(value) -> Optional[Decimal]:
        if value is None:
            return None
        return Decimal(str(value))
