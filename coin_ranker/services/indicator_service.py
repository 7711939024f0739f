"""
技术指标计算：RSI（Wilder 平滑）
"""
from typing import Optional, Sequence

from coin_ranker.models.market import Candle

# avg_loss 为 0 时使用的 RS 值，RSI ≈ 99.5 而不是 100
ZERO_LOSS_RS: float = 200.0


def calculate_rsi(candles: Sequence[Candle], period: int = 14) -> Optional[float]:
    """计算最后一根 K 线的 RSI

    1. 前 period 个收盘价变化求平均涨幅 / 平均跌幅（跌幅取正值）
    2. 之后每个变化按 Wilder 平滑更新:
       avg = (avg * (period - 1) + 当前值) / period
    3. RS = avg_gain / avg_loss，avg_loss 为 0 时 RS = 200
    4. RSI = 100 - 100 / (1 + RS)

    Args:
        candles: K线序列，最旧在前
        period: RSI 周期

    Returns:
        RSI 值；K 线少于 period + 1 根时返回 None
    """
    if period < 1:
        raise ValueError(f"RSI 周期必须为正整数: {period}")
    if candles is None or len(candles) < period + 1:
        return None

    closes = [c.close for c in candles]
    gains = 0.0
    losses = 0.0
    for i in range(1, period + 1):
        change = closes[i] - closes[i - 1]
        if change > 0:
            gains += change
        else:
            losses -= change

    avg_gain = gains / period
    avg_loss = losses / period

    for i in range(period + 1, len(closes)):
        change = closes[i] - closes[i - 1]
        gain = change if change > 0 else 0.0
        loss = -change if change < 0 else 0.0
        avg_gain = (avg_gain * (period - 1) + gain) / period
        avg_loss = (avg_loss * (period - 1) + loss) / period

    rs = ZERO_LOSS_RS if avg_loss == 0 else avg_gain / avg_loss
    return 100 - (100 / (1 + rs))
