from pydantic import BaseModel, field_validator


class Token(BaseModel):
    id: str
    symbol: str
    name: str | None = None
    exchanges: list[str] = []
    added_at: int
    all_time_high: float | None = None
    all_time_low: float | None = None
    ath_last_updated: int | None = None


class TokenCreate(BaseModel):
    symbol: str
    name: str | None = None
    exchanges: list[str] = []

    @field_validator("symbol")
    @classmethod
    def normalize_symbol(cls, value: str) -> str:
        normalized = value.strip().upper()
        if not normalized:
            raise ValueError("symbol must not be empty")
        return normalized


class ExtremumRecord(BaseModel):
    symbol: str
    all_time_high: float
    all_time_low: float
    last_computed_at: int
