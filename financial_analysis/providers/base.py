"""Wire records and shared errors for the remote analysis service."""

from __future__ import annotations

from typing import Any

try:  # Python 3.11+
    from enum import StrEnum as _BaseStrEnum
except ImportError:  # pragma: no cover - fallback for older interpreters
    from enum import Enum as _Enum

    class _BaseStrEnum(str, _Enum):
        """Fallback StrEnum implementation for Python < 3.11."""

        pass

from pydantic import BaseModel, ConfigDict, Field

# Sentinels used when the service sends a value that is not a decimal.
INVALID_PRICE = -1.0
INVALID_VOLUME = 0


class RemoteError(RuntimeError):
    """Base class for remote service failures."""


class RemoteConfigurationError(RemoteError):
    """Raised when the caller selects an unsupported endpoint or parameter."""


class RemoteCallError(RemoteError):
    """Raised when a remote call fails in transport, decoding or on the server."""

    def __init__(self, method: str, message: str) -> None:
        super().__init__(f"{method}: {message}")
        self.method = method


class Granularity(_BaseStrEnum):
    """Bar period of a trading history request."""

    DAILY = "daily"
    WEEK = "week"
    MONTH = "month"

    @property
    def wire_code(self) -> int:
        return _GRANULARITY_CODES[self]

    @property
    def label(self) -> str:
        return _GRANULARITY_LABELS[self]


_GRANULARITY_CODES = {
    Granularity.DAILY: 0,
    Granularity.WEEK: 1,
    Granularity.MONTH: 2,
}

_GRANULARITY_LABELS = {
    Granularity.DAILY: "Daily",
    Granularity.WEEK: "Weekly",
    Granularity.MONTH: "Monthly",
}


class RecordModel(BaseModel):
    """Base class for immutable service payloads."""

    model_config = ConfigDict(
        frozen=True,
        validate_by_name=True,
        populate_by_name=True,
    )


class StockSummary(RecordModel):
    """One row of the listed-company index."""

    code: str
    symbol: str
    name: str

    def matches(self, predicate: Any) -> bool:
        return bool(predicate(self.code) or predicate(self.symbol) or predicate(self.name))


class TradingHistoryItem(RecordModel):
    """Bar exactly as the service sends it, with decimal strings."""

    date: str
    open: str = ""
    close: str = ""
    high: str = ""
    low: str = ""
    volume: str = ""


def _parse_price(raw: str) -> float:
    try:
        return float(raw)
    except (TypeError, ValueError):
        return INVALID_PRICE


def _parse_volume(raw: str) -> int:
    try:
        volume = int(raw)
    except (TypeError, ValueError):
        return INVALID_VOLUME
    return volume if volume > 0 else INVALID_VOLUME


class TradingBar(RecordModel):
    """Typed OHLCV bar used by the views and the chart."""

    date: str = ""
    open: float = 0.0
    high: float = 0.0
    low: float = 0.0
    close: float = 0.0
    volume: int = 0

    @classmethod
    def from_wire(cls, item: TradingHistoryItem) -> "TradingBar":
        """Parse a wire bar; malformed numbers become invalid sentinels."""

        return cls(
            date=item.date,
            open=_parse_price(item.open),
            close=_parse_price(item.close),
            high=_parse_price(item.high),
            low=_parse_price(item.low),
            volume=_parse_volume(item.volume),
        )

    def is_valid(self) -> bool:
        return (
            self.volume != 0
            and self.low > 0.0
            and self.open > 0.0
            and self.close > 0.0
            and self.high > 0.0
            and self.high >= self.low
        )

    def force_valid(self) -> "TradingBar":
        """Return a copy whose high and low bound open and close."""

        volume = max(self.volume, 1)
        if self.low > 0.0:
            low = min(self.low, self.open, self.close)
        else:
            low = min(self.high, self.open, self.close)
        high = max(self.high, low, self.open, self.close)
        return self.model_copy(update={"volume": volume, "low": low, "high": high})

    def as_frame_row(self) -> dict[str, Any]:
        return {
            "Date": self.date,
            "Open": self.open,
            "High": self.high,
            "Low": self.low,
            "Close": self.close,
            "Volume": self.volume,
        }


class StockIssue(RecordModel):
    """Issue (IPO) details shown next to a stock's chart."""

    market: str = Field(default="", title="Listing market")
    consignee: str = Field(default="", title="Lead underwriter")
    underwriting: str = Field(default="", title="Underwriting method")
    sponsor: str = Field(default="", title="Listing sponsor")
    issue_price: str = Field(default="", title="Issue price per share")
    issue_mode: str = Field(default="", title="Issue method")
    issue_pe: str = Field(default="", title="Issue P/E (post-issue capital)")
    pre_capital: str = Field(default="", title="Shares before issue (10k)")
    capital: str = Field(default="", title="Shares after issue (10k)")
    issue_volume: str = Field(default="", title="Shares issued (10k)")
    expected_fundraising: str = Field(default="", title="Expected proceeds (10k)")
    fundraising: str = Field(default="", title="Actual proceeds (10k)")
    issue_cost: str = Field(default="", title="Issue costs (10k)")
    net_amount_raised: str = Field(default="", title="Net proceeds (10k)")
    underwriting_fee: str = Field(default="", title="Underwriting fee (10k)")
    announcement_date: str = Field(default="", title="Prospectus date")
    launch_date: str = Field(default="", title="Listing date")

    def display_rows(self) -> list[tuple[str, str]]:
        """Return ``(label, value)`` pairs in declaration order."""

        return [
            (field.title or name, getattr(self, name))
            for name, field in type(self).model_fields.items()
        ]


class AuthToken(RecordModel):
    """Token returned by a successful login."""

    token: str = Field(min_length=1)


__all__ = [
    "AuthToken",
    "Granularity",
    "INVALID_PRICE",
    "INVALID_VOLUME",
    "RecordModel",
    "RemoteCallError",
    "RemoteConfigurationError",
    "RemoteError",
    "StockIssue",
    "StockSummary",
    "TradingBar",
    "TradingHistoryItem",
]
