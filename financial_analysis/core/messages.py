"""Events passed from background work to the UI-owned application state.

Every event is a frozen dataclass holding immutable data (strings, tuples of
frozen pydantic records, or a client handle that is itself safe to share), so
an event may be handed from a worker thread to the render loop as is.

Events that report a fallible outcome carry either a payload or a non-empty
``error`` string, never both.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import TYPE_CHECKING, Optional, Union

from financial_analysis.providers.base import (
    Granularity,
    StockIssue,
    StockSummary,
    TradingBar,
)

if TYPE_CHECKING:  # pragma: no cover - typing only
    from financial_analysis.providers.rpc import RemoteClient


def _check_outcome(event: object, has_payload: bool) -> None:
    error = getattr(event, "error")
    if has_payload and error:
        raise ValueError(f"{type(event).__name__} carries both a payload and an error.")


@dataclass(frozen=True, slots=True)
class ConnectRequested:
    """Ask the dispatch service to open a client for an endpoint."""

    host: str
    port: int


@dataclass(frozen=True, slots=True)
class ClientReady:
    """Outcome of a connection attempt to the endpoint at ``endpoint``."""

    client: Optional["RemoteClient"] = None
    error: str = ""
    endpoint: str = ""

    def __post_init__(self) -> None:
        _check_outcome(self, self.client is not None)

    @property
    def ok(self) -> bool:
        return self.client is not None and not self.error


@dataclass(frozen=True, slots=True)
class LoginRequested:
    username: str
    password: str

    def __repr__(self) -> str:
        return f"LoginRequested(username={self.username!r}, password='***')"


@dataclass(frozen=True, slots=True)
class RegisterRequested:
    username: str
    password: str

    def __repr__(self) -> str:
        return f"RegisterRequested(username={self.username!r}, password='***')"


# Session events carry the endpoint that produced them; an empty endpoint
# means the outcome was decided locally.
@dataclass(frozen=True, slots=True)
class AuthenticationSucceeded:
    token: str
    endpoint: str = ""


@dataclass(frozen=True, slots=True)
class AuthenticationFailed:
    reason: str
    endpoint: str = ""


@dataclass(frozen=True, slots=True)
class RegistrationFinished:
    username: str
    error: str = ""
    endpoint: str = ""

    @property
    def ok(self) -> bool:
        return not self.error


@dataclass(frozen=True, slots=True)
class EntityListReady:
    stocks: tuple[StockSummary, ...] = ()
    error: str = ""

    def __post_init__(self) -> None:
        _check_outcome(self, bool(self.stocks))

    @property
    def ok(self) -> bool:
        return not self.error


@dataclass(frozen=True, slots=True)
class SeriesReady:
    """Trading history for one stock at one granularity."""

    symbol: str
    granularity: Granularity
    bars: tuple[TradingBar, ...] = ()
    error: str = ""

    def __post_init__(self) -> None:
        _check_outcome(self, bool(self.bars))

    @property
    def entity_id(self) -> str:
        return self.symbol

    @property
    def ok(self) -> bool:
        return not self.error


@dataclass(frozen=True, slots=True)
class PredictionReady:
    """Predicted extension bars assembled from the four channel calls."""

    symbol: str
    granularity: Granularity
    bars: tuple[TradingBar, ...] = ()
    error: str = ""

    def __post_init__(self) -> None:
        _check_outcome(self, bool(self.bars))

    @property
    def entity_id(self) -> str:
        return self.symbol

    @property
    def ok(self) -> bool:
        return not self.error


@dataclass(frozen=True, slots=True)
class MetadataReady:
    symbol: str
    issue: Optional[StockIssue] = None
    error: str = ""

    def __post_init__(self) -> None:
        _check_outcome(self, self.issue is not None)

    @property
    def entity_id(self) -> str:
        return self.symbol

    @property
    def ok(self) -> bool:
        return self.issue is not None and not self.error


EntityEvent = Union[SeriesReady, PredictionReady, MetadataReady]

Event = Union[
    ConnectRequested,
    ClientReady,
    LoginRequested,
    RegisterRequested,
    AuthenticationSucceeded,
    AuthenticationFailed,
    RegistrationFinished,
    EntityListReady,
    SeriesReady,
    PredictionReady,
    MetadataReady,
]

ENTITY_EVENTS = (SeriesReady, PredictionReady, MetadataReady)


__all__ = [
    "AuthenticationFailed",
    "AuthenticationSucceeded",
    "ClientReady",
    "ConnectRequested",
    "ENTITY_EVENTS",
    "EntityEvent",
    "EntityListReady",
    "Event",
    "LoginRequested",
    "MetadataReady",
    "PredictionReady",
    "RegisterRequested",
    "RegistrationFinished",
    "SeriesReady",
]
