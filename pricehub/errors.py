from __future__ import annotations


class PriceHubError(Exception):
    """Base class for pricehub errors."""


class FetchError(PriceHubError):
    """One exchange call failed (transport, timeout, HTTP status or payload)."""

    def __init__(
        self,
        message: str,
        *,
        source: str = "unknown",
        endpoint: str = "",
        kind: str = "API_ERROR",
        status_code: int | None = None,
    ) -> None:
        super().__init__(message)
        self.source = source
        self.endpoint = endpoint
        self.kind = kind
        self.status_code = status_code

    def __str__(self) -> str:
        base = super().__str__()
        return f"{self.source}{self.endpoint} {self.kind}: {base}"


class NoDataError(PriceHubError):
    """A historical query produced no candles."""


class RecordNotFoundError(PriceHubError):
    """The symbol is not present in the token store."""


class SchedulerActionError(PriceHubError):
    """The scheduled collection action failed."""


class SourceUnavailable(PriceHubError):
    """Unexpected (non-fetch) failure while building a consensus price."""
