from pydantic import BaseModel


class Candle(BaseModel):
    open_time: int
    open: float
    high: float
    low: float
    close: float
    volume: float


class PricePoint(BaseModel):
    timestamp: int
    price: float
    volume: float
