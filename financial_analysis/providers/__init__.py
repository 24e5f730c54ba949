"""Remote service client and the records it exchanges."""

from __future__ import annotations

from typing import Any

__all__ = [
    "RemoteClient",
    "RemoteError",
    "StockIssue",
    "StockSummary",
    "TradingBar",
    "connect",
]


def __getattr__(name: str) -> Any:  # pragma: no cover - trivial passthrough
    if name in {"RemoteClient", "connect"}:
        from financial_analysis.providers import rpc as _rpc

        return getattr(_rpc, name)
    if name in {"RemoteError", "StockIssue", "StockSummary", "TradingBar"}:
        from financial_analysis.providers import base as _base

        return getattr(_base, name)
    raise AttributeError(name)
