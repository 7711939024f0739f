"""
行情服务异常

只有 UpstreamUnavailable 会传递给调用方；单个币种的 K 线失败
（SymbolFetchFailed 及其子类）在编排层被吸收，表现为结果中缺失该币种。
"""


class MarketDataError(Exception):
    """行情服务异常基类"""


class UpstreamUnavailable(MarketDataError):
    """24小时行情快照获取失败，整个查询无法继续"""


class SymbolFetchFailed(MarketDataError):
    """单个交易对 K 线获取失败（网络错误、非 200 状态等临时性错误）"""

    def __init__(self, symbol: str, reason: str):
        self.symbol = symbol
        self.reason = reason
        super().__init__(f"{symbol}: {reason}")


class NoDataAvailable(SymbolFetchFailed):
    """上游返回空 K 线"""


class MalformedPayload(SymbolFetchFailed):
    """上游返回的数据结构或数值无法解析"""
