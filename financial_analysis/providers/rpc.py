"""Asynchronous client handle for the remote analysis service.

The handle is cheap to clone: clones share the endpoint and one pooled
``httpx.AsyncClient``, and each clone may issue calls concurrently from
different tasks. Calls are JSON posts to ``/api/<method>``; the service
answers ``{"data": ...}`` on success or ``{"error": "..."}`` on failure.
"""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING, Any, Mapping, Optional, Sequence

import httpx
from pydantic import TypeAdapter, ValidationError

from financial_analysis.providers.base import (
    AuthToken,
    Granularity,
    RemoteCallError,
    RemoteConfigurationError,
    StockIssue,
    StockSummary,
    TradingBar,
    TradingHistoryItem,
)

if TYPE_CHECKING:  # pragma: no cover - typing only
    from financial_analysis.core.config import ClientConfig

LOGGER = logging.getLogger(__name__)

_STOCK_LIST = TypeAdapter(list[StockSummary])
_HISTORY = TypeAdapter(list[TradingHistoryItem])
_FLOATS = TypeAdapter(list[float])


class _SharedTransport:
    """Pooled HTTP client shared by a handle and all of its clones."""

    def __init__(
        self,
        base_url: str,
        *,
        timeout: float,
        connect_timeout: float,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self.base_url = base_url
        self.timeout = httpx.Timeout(timeout, connect=connect_timeout)
        self.transport = transport
        self._client: httpx.AsyncClient | None = None
        self.closed = False

    @property
    def client(self) -> httpx.AsyncClient:
        if self.closed:
            raise RemoteConfigurationError(f"client for {self.base_url} has been closed")
        if self._client is None:
            self._client = httpx.AsyncClient(
                base_url=self.base_url,
                timeout=self.timeout,
                transport=self.transport,
            )
        return self._client

    async def aclose(self) -> None:
        self.closed = True
        if self._client is not None and not self._client.is_closed:
            await self._client.aclose()


class RemoteClient:
    """Handle exposing the service operations used by the client core."""

    def __init__(
        self,
        base_url: str,
        *,
        token: str = "",
        timeout: float = 30.0,
        connect_timeout: float = 5.0,
        transport: httpx.AsyncBaseTransport | None = None,
        shared: _SharedTransport | None = None,
    ) -> None:
        self._shared = shared or _SharedTransport(
            base_url,
            timeout=timeout,
            connect_timeout=connect_timeout,
            transport=transport,
        )
        self.token = token

    @classmethod
    def from_config(
        cls,
        config: "ClientConfig",
        *,
        token: str = "",
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> "RemoteClient":
        return cls(
            config.base_url,
            token=token,
            timeout=config.request_timeout,
            connect_timeout=config.connect_timeout,
            transport=transport,
        )

    @property
    def base_url(self) -> str:
        return self._shared.base_url

    def clone(self) -> "RemoteClient":
        return RemoteClient(self.base_url, token=self.token, shared=self._shared)

    def with_token(self, token: str) -> "RemoteClient":
        """Return a clone that attaches ``token`` to every call."""

        return RemoteClient(self.base_url, token=token, shared=self._shared)

    def __repr__(self) -> str:
        return f"RemoteClient({self.base_url!r}, authenticated={bool(self.token)})"

    async def aclose(self) -> None:
        """Close the pooled transport shared with every clone."""

        await self._shared.aclose()

    async def __aenter__(self) -> "RemoteClient":
        return self

    async def __aexit__(self, *exc_info: Any) -> None:
        await self.aclose()

    def _headers(self) -> dict[str, str]:
        if not self.token:
            return {}
        return {"Authorization": f"Bearer {self.token}"}

    async def _call(self, method: str, payload: Mapping[str, Any] | None = None) -> Any:
        http = self._shared.client
        try:
            response = await http.post(
                f"/api/{method}",
                json=dict(payload or {}),
                headers=self._headers(),
            )
            response.raise_for_status()
            body = response.json()
        except httpx.HTTPStatusError as exc:
            raise RemoteCallError(method, f"HTTP {exc.response.status_code}") from exc
        except httpx.TimeoutException as exc:
            raise RemoteCallError(method, f"timed out ({type(exc).__name__})") from exc
        except httpx.HTTPError as exc:
            raise RemoteCallError(method, str(exc) or type(exc).__name__) from exc
        except ValueError as exc:
            raise RemoteCallError(method, "response is not valid JSON") from exc

        if not isinstance(body, dict):
            raise RemoteCallError(method, "unexpected response shape")
        if body.get("error"):
            raise RemoteCallError(method, str(body["error"]))
        return body.get("data")

    @staticmethod
    def _decode(method: str, adapter: TypeAdapter[Any], data: Any) -> Any:
        try:
            return adapter.validate_python(data)
        except ValidationError as exc:
            raise RemoteCallError(method, f"malformed payload: {exc.error_count()} error(s)") from exc

    async def ping(self) -> str:
        return str(await self._call("ping") or "")

    async def stock_list(self) -> list[StockSummary]:
        data = await self._call("stock_list")
        return self._decode("stock_list", _STOCK_LIST, data or [])

    async def trading_history(self, symbol: str, granularity: Granularity) -> list[TradingBar]:
        """Fetch bars for ``symbol``; malformed decimals become invalid bars."""

        data = await self._call(
            "trading_history",
            {"symbol": symbol, "typ": Granularity(granularity).wire_code},
        )
        items = self._decode("trading_history", _HISTORY, data or [])
        return [TradingBar.from_wire(item) for item in items]

    async def predict_data(self, data: Sequence[float], length: int) -> list[float]:
        """Predict up to ``length`` values continuing the numeric channel ``data``."""

        if length <= 0:
            raise RemoteConfigurationError("prediction length must be positive")
        result = await self._call("predict_data", {"data": list(data), "length": int(length)})
        values = self._decode("predict_data", _FLOATS, result or [])
        return values[:length]

    async def stock_issue(self, symbol: str) -> StockIssue:
        data = await self._call("stock_issue", {"symbol": symbol})
        return self._decode("stock_issue", TypeAdapter(StockIssue), data or {})

    async def login(self, username: str, password: str) -> str:
        data = await self._call("login", {"username": username, "password": password})
        return self._decode("login", TypeAdapter(AuthToken), data or {}).token

    async def register(self, username: str, password: str) -> None:
        await self._call("register", {"username": username, "password": password})


async def connect(
    config: "ClientConfig",
    *,
    token: str = "",
    transport: Optional[httpx.AsyncBaseTransport] = None,
) -> RemoteClient:
    """Open a handle for the configured endpoint and verify it answers."""

    client = RemoteClient.from_config(config, token=token, transport=transport)
    try:
        await client.ping()
    except Exception:
        await client.aclose()
        raise
    LOGGER.info("Connected to %s", client.base_url)
    return client


__all__ = ["RemoteClient", "connect"]
