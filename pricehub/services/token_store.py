from __future__ import annotations

import threading
import uuid

from pricehub.schemas.token import Token, TokenCreate
from pricehub.services.timeutil import now_ms


class InMemoryTokenStore:
    """Tracked-token registry keyed by symbol.

    Stand-in for the persistent store; only ``update_extremum`` is used by
    the extremum calculator, everything else serves the HTTP surface.
    """

    def __init__(self, symbols: list[str] | None = None) -> None:
        self._lock = threading.Lock()
        self._rows: dict[str, Token] = {}
        for symbol in symbols or []:
            self.add_token(TokenCreate(symbol=symbol))

    def get_token(self, symbol: str) -> Token | None:
        with self._lock:
            row = self._rows.get(symbol.upper())
            return row.model_copy(deep=True) if row else None

    def get_all_tokens(self) -> list[Token]:
        with self._lock:
            return [row.model_copy(deep=True) for row in self._rows.values()]

    def add_token(self, req: TokenCreate) -> Token:
        with self._lock:
            existing = self._rows.get(req.symbol)
            if existing is not None:
                raise ValueError("TOKEN_ALREADY_EXISTS")
            token = Token(
                id=f"tok_{uuid.uuid4().hex[:8]}",
                symbol=req.symbol,
                name=req.name,
                exchanges=list(req.exchanges),
                added_at=now_ms(),
            )
            self._rows[req.symbol] = token
            return token.model_copy(deep=True)

    def delete_token(self, symbol: str) -> bool:
        with self._lock:
            return self._rows.pop(symbol.upper(), None) is not None

    def update_extremum(self, symbol: str, high: float, low: float, computed_at: int) -> Token | None:
        with self._lock:
            token = self._rows.get(symbol.upper())
            if token is None:
                return None
            token.all_time_high = float(high)
            token.all_time_low = float(low)
            token.ath_last_updated = int(computed_at)
            return token.model_copy(deep=True)
