"""Per-stock fetch state machine driven once per frame by the render loop.

A :class:`StockView` never blocks. When it needs data it spawns a unit of
work on the injected executor; the unit eventually sends exactly one event on
the bus, and the application routes it back through :meth:`handle_event`.
All mutation happens on the render loop, so no locking is required.

Series states::

    EMPTY -> REQUESTING -> LOADED | FAILED
    LOADED | FAILED --(granularity change)--> EMPTY
    FAILED --(retry)--> EMPTY

The prediction sub-state is independent: ``IDLE -> PREDICTING -> IDLE``.

Results are keyed by ``(symbol, granularity)``. A result for a granularity
that is no longer selected, or one that arrives when nothing is in flight,
is ignored. The remote call behind it is not cancelled.
"""

from __future__ import annotations

import enum
import logging
from typing import TYPE_CHECKING, Optional

from financial_analysis.core.bus import ChannelClosedError, Sender
from financial_analysis.core.executor import TaskExecutor
from financial_analysis.core.messages import (
    Event,
    MetadataReady,
    PredictionReady,
    SeriesReady,
)
from financial_analysis.core.prediction import fan_out_prediction
from financial_analysis.providers.base import (
    Granularity,
    RemoteError,
    StockIssue,
    StockSummary,
    TradingBar,
)

if TYPE_CHECKING:  # pragma: no cover - typing only
    from financial_analysis.providers.rpc import RemoteClient

LOGGER = logging.getLogger(__name__)

# Longest prediction allowed, as a fraction of the loaded series.
PREDICTION_FRACTION = 4


class FetchState(enum.Enum):
    EMPTY = "empty"
    REQUESTING = "requesting"
    LOADED = "loaded"
    FAILED = "failed"


class PredictionState(enum.Enum):
    IDLE = "idle"
    PREDICTING = "predicting"


def _deliver(tx: Sender[Event], event: Event) -> None:
    try:
        tx.send(event)
    except ChannelClosedError:
        LOGGER.debug("Dropping %s: application bus closed", type(event).__name__)


async def _fetch_series(
    client: "RemoteClient",
    tx: Sender[Event],
    symbol: str,
    granularity: Granularity,
) -> None:
    try:
        bars = await client.trading_history(symbol, granularity)
    except RemoteError as exc:
        LOGGER.error("Trading history for %s failed: %s", symbol, exc)
        _deliver(tx, SeriesReady(symbol, granularity, error=str(exc)))
        return
    LOGGER.info("Got trading history for %s: %s bars", symbol, len(bars))
    _deliver(tx, SeriesReady(symbol, granularity, bars=tuple(bars)))


async def _fetch_issue(client: "RemoteClient", tx: Sender[Event], symbol: str) -> None:
    try:
        issue = await client.stock_issue(symbol)
    except RemoteError as exc:
        LOGGER.warning("Issue details for %s failed: %s", symbol, exc)
        _deliver(tx, MetadataReady(symbol, error=str(exc)))
        return
    _deliver(tx, MetadataReady(symbol, issue=issue))


async def _predict(
    client: "RemoteClient",
    tx: Sender[Event],
    symbol: str,
    granularity: Granularity,
    bars: tuple[TradingBar, ...],
    length: int,
) -> None:
    outcome = await fan_out_prediction(client, bars, length)
    _deliver(tx, PredictionReady(symbol, granularity, bars=outcome.bars, error=outcome.error))


class StockView:
    """Fetch controller and display state for one open stock."""

    def __init__(
        self,
        stock: StockSummary,
        client: Optional["RemoteClient"],
        tx: Sender[Event],
        executor: TaskExecutor,
        *,
        granularity: Granularity = Granularity.WEEK,
    ) -> None:
        self.stock = stock
        self.client = client
        self.tx = tx
        self.executor = executor
        self.granularity = Granularity(granularity)
        self.is_open = True

        self.state = FetchState.EMPTY
        self.bars: tuple[TradingBar, ...] = ()
        self.error = ""

        self.prediction_state = PredictionState.IDLE
        self.predicted: tuple[TradingBar, ...] = ()
        self.predict_error = ""
        self.predict_len = 0

        self.issue: Optional[StockIssue] = None
        self.issue_error = ""
        self.requesting_issue = False

    def __repr__(self) -> str:
        return (
            f"StockView({self.symbol!r}, state={self.state.value}, "
            f"prediction={self.prediction_state.value}, bars={len(self.bars)})"
        )

    @property
    def symbol(self) -> str:
        return self.stock.symbol

    @property
    def title(self) -> str:
        return f"[{self.stock.code}]{self.stock.name}"

    @property
    def requesting(self) -> bool:
        return self.state is FetchState.REQUESTING

    @property
    def predicting(self) -> bool:
        return self.prediction_state is PredictionState.PREDICTING

    @property
    def max_prediction_length(self) -> int:
        return len(self.bars) // PREDICTION_FRACTION

    def combined_bars(self) -> tuple[TradingBar, ...]:
        """Loaded bars followed by the predicted extension."""

        return self.bars + self.predicted

    # ------------------------------------------------------------------
    # Per-frame scheduling
    # ------------------------------------------------------------------
    def update(self) -> None:
        """Spawn whatever fetch the current state calls for."""

        if not self.is_open or self.client is None:
            return
        if self.issue is None and not self.requesting_issue and not self.issue_error:
            self.requesting_issue = True
            self.executor.spawn(
                _fetch_issue(self.client.clone(), self.tx.clone(), self.symbol),
                name=f"issue:{self.symbol}",
            )
        if self.state is FetchState.EMPTY:
            self.state = FetchState.REQUESTING
            LOGGER.debug("Requesting %s history for %s", self.granularity.value, self.symbol)
            self.executor.spawn(
                _fetch_series(self.client.clone(), self.tx.clone(), self.symbol, self.granularity),
                name=f"history:{self.symbol}:{self.granularity.value}",
            )

    # ------------------------------------------------------------------
    # User input
    # ------------------------------------------------------------------
    def set_granularity(self, granularity: Granularity) -> bool:
        """Select a bar period; a change discards every derived result."""

        granularity = Granularity(granularity)
        if granularity == self.granularity:
            return False
        LOGGER.info("%s granularity %s -> %s", self.symbol, self.granularity.value, granularity.value)
        self.granularity = granularity
        self.bars = ()
        self.error = ""
        self.predicted = ()
        self.predict_error = ""
        self.predict_len = 0
        self.prediction_state = PredictionState.IDLE
        self.state = FetchState.EMPTY
        return True

    def set_prediction_length(self, length: int) -> int:
        """Clamp ``length`` into ``[0, len(bars) // 4]`` and remember it."""

        self.predict_len = max(0, min(int(length), self.max_prediction_length))
        return self.predict_len

    def can_predict(self, length: int | None = None) -> bool:
        length = self.predict_len if length is None else length
        return (
            self.client is not None
            and self.state is FetchState.LOADED
            and not self.predicting
            and 0 < length <= self.max_prediction_length
        )

    def request_prediction(self, length: int | None = None) -> bool:
        """Start the four-channel prediction; returns ``False`` when not allowed."""

        length = self.predict_len if length is None else int(length)
        client = self.client
        if client is None or not self.can_predict(length):
            LOGGER.debug(
                "Prediction of %s bars for %s refused (state=%s, predicting=%s, max=%s)",
                length,
                self.symbol,
                self.state.value,
                self.predicting,
                self.max_prediction_length,
            )
            return False
        self.predict_len = length
        self.prediction_state = PredictionState.PREDICTING
        self.predict_error = ""
        self.executor.spawn(
            _predict(
                client,
                self.tx.clone(),
                self.symbol,
                self.granularity,
                self.bars,
                self.predict_len,
            ),
            name=f"predict:{self.symbol}",
        )
        return True

    def retry(self) -> bool:
        """Clear a failure and re-arm the series fetch for the next frame."""

        if self.state is not FetchState.FAILED:
            return False
        self.error = ""
        self.predict_error = ""
        self.state = FetchState.EMPTY
        return True

    def close(self) -> None:
        self.is_open = False

    # ------------------------------------------------------------------
    # Event delivery
    # ------------------------------------------------------------------
    def handle_event(self, event: Event) -> bool:
        """Apply ``event`` when it belongs to this view; stale events are ignored."""

        if getattr(event, "symbol", None) != self.symbol:
            return False
        if isinstance(event, SeriesReady):
            return self._on_series(event)
        if isinstance(event, PredictionReady):
            return self._on_prediction(event)
        if isinstance(event, MetadataReady):
            return self._on_issue(event)
        return False

    def _on_series(self, event: SeriesReady) -> bool:
        if event.granularity != self.granularity or self.state is not FetchState.REQUESTING:
            LOGGER.debug("Ignoring stale %s history for %s", event.granularity, self.symbol)
            return False
        if event.ok:
            self.bars = event.bars
            self.error = ""
            self.state = FetchState.LOADED
        else:
            self.bars = ()
            self.error = event.error
            self.state = FetchState.FAILED
        return True

    def _on_prediction(self, event: PredictionReady) -> bool:
        if event.granularity != self.granularity or not self.predicting:
            LOGGER.debug("Ignoring stale prediction for %s", self.symbol)
            return False
        LOGGER.info("%s set %s predicted bars", self.symbol, len(event.bars))
        self.predicted = event.bars
        self.predict_error = event.error
        self.prediction_state = PredictionState.IDLE
        return True

    def _on_issue(self, event: MetadataReady) -> bool:
        if not self.requesting_issue:
            return False
        self.requesting_issue = False
        self.issue = event.issue
        self.issue_error = event.error
        return True


__all__ = [
    "FetchState",
    "PREDICTION_FRACTION",
    "PredictionState",
    "StockView",
]
