from __future__ import annotations

import threading
import time
from typing import Any, Callable, Dict, Literal, Optional

import requests

from pricehub.errors import FetchError

CallKind = Literal["quote", "history"]

_STATUS_KINDS = {
    401: "INVALID_CREDENTIALS",
    403: "INSUFFICIENT_PERMISSIONS",
    429: "RATE_LIMIT_EXCEEDED",
    502: "SERVICE_UNAVAILABLE",
    503: "SERVICE_UNAVAILABLE",
    504: "SERVICE_UNAVAILABLE",
}


class RateLimitedFetcher:
    """Public market-data GETs against one exchange base URL.

    Every call sleeps ``delay_sec`` first, holds one of ``max_concurrency``
    slots while on the wire and uses the timeout of its kind. Anything that
    goes wrong comes back as ``FetchError``; there are no retries here.
    """

    def __init__(
        self,
        base_url: str,
        *,
        source: str,
        session: Optional[Any] = None,
        delay_sec: float = 0.25,
        quote_timeout_sec: float = 10.0,
        history_timeout_sec: float = 15.0,
        max_concurrency: int = 4,
        sleep_fn: Callable[[float], None] = time.sleep,
    ) -> None:
        if max_concurrency < 1:
            raise ValueError("max_concurrency must be >= 1")

        self.base_url = base_url.rstrip("/")
        self.source = source
        self.session = session or requests
        self.delay_sec = delay_sec
        self.timeouts: Dict[str, float] = {
            "quote": quote_timeout_sec,
            "history": history_timeout_sec,
        }
        self._sleep = sleep_fn
        self._slots = threading.BoundedSemaphore(max_concurrency)
        self._lock = threading.Lock()
        self._metrics = {"calls": 0, "failures": 0}

    def _inc(self, key: str) -> None:
        with self._lock:
            self._metrics[key] = self._metrics.get(key, 0) + 1

    def _fail(self, path: str, kind: str, message: str, status_code: int | None = None) -> FetchError:
        self._inc("failures")
        print(
            f"[FETCH][error] source={self.source} endpoint={path} kind={kind} "
            f"status={status_code} message={message}",
            flush=True,
        )
        return FetchError(
            message,
            source=self.source,
            endpoint=path,
            kind=kind,
            status_code=status_code,
        )

    def fetch(
        self,
        path: str,
        params: Optional[Dict[str, Any]] = None,
        *,
        kind: CallKind = "quote",
    ) -> Any:
        timeout = self.timeouts[kind]
        self._sleep(self.delay_sec)

        with self._slots:
            self._inc("calls")
            try:
                response = self.session.get(
                    f"{self.base_url}{path}",
                    params=params or {},
                    timeout=timeout,
                )
                response.raise_for_status()
            except requests.Timeout as exc:
                raise self._fail(path, "TIMEOUT", f"request timed out after {timeout}s") from exc
            except requests.HTTPError as exc:
                code = getattr(exc.response, "status_code", None)
                raise self._fail(path, _STATUS_KINDS.get(code, "API_ERROR"), str(exc), code) from exc
            except requests.ConnectionError as exc:
                raise self._fail(path, "NETWORK_ERROR", str(exc)) from exc
            except requests.RequestException as exc:
                raise self._fail(path, "API_ERROR", str(exc)) from exc

            try:
                return response.json()
            except ValueError as exc:
                raise self._fail(path, "MALFORMED_PAYLOAD", "response body is not valid JSON") from exc

    def metrics(self) -> dict[str, int]:
        with self._lock:
            return dict(self._metrics)
