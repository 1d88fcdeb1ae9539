from typing import Literal

from pydantic import BaseModel, ConfigDict

TradingStatus = Literal["TRADING", "HALT", "BREAK", "UNKNOWN"]


class SourceQuote(BaseModel):
    source: str
    symbol: str
    price: float
    volume: float = 0.0
    change_pct: float = 0.0
    high_24h: float = 0.0
    low_24h: float = 0.0
    volume_24h: float = 0.0
    open_price: float | None = None
    price_change: float | None = None
    bid_price: float = 0.0
    ask_price: float = 0.0
    trade_count: int | None = None
    status: TradingStatus = "UNKNOWN"
    trading_enabled: bool = True
    synthetic: bool = False
    ts: int


class ConsensusSnapshot(BaseModel):
    model_config = ConfigDict(frozen=True)

    symbol: str
    timestamp: int
    exchanges: dict[str, SourceQuote | None]
    average_price: float
    change_24h: float
    degraded: bool = False


class PriceUpdate(BaseModel):
    symbol: str
    snapshot: ConsensusSnapshot
