"""Tests for the per-stock fetch state machine."""

from __future__ import annotations

import asyncio
import sys
from pathlib import Path
from typing import Sequence

PROJECT_ROOT = Path(__file__).resolve().parents[1]
if str(PROJECT_ROOT) not in sys.path:
    sys.path.insert(0, str(PROJECT_ROOT))

from financial_analysis.core.bus import Receiver, channel
from financial_analysis.core.executor import CooperativeTaskExecutor
from financial_analysis.core.messages import Event, PredictionReady, SeriesReady
from financial_analysis.core.stock_view import FetchState, PredictionState, StockView
from financial_analysis.providers.base import (
    Granularity,
    RemoteCallError,
    StockIssue,
    StockSummary,
    TradingBar,
)

STOCK = StockSummary(code="600000", symbol="sh600000", name="Pudong Bank")


def _bars(count: int) -> list[TradingBar]:
    return [
        TradingBar(date=f"d{i}", open=10 + i, high=12 + i, low=9 + i, close=11 + i, volume=100)
        for i in range(count)
    ]


class DummyClient:
    """In-memory stand-in for the remote client."""

    def __init__(self, *, bars: int = 20, history_error: str = "", issue_error: str = "") -> None:
        self.bars = bars
        self.history_error = history_error
        self.issue_error = issue_error
        self.history_calls: list[tuple[str, Granularity]] = []
        self.issue_calls = 0
        self.predict_calls = 0

    def clone(self) -> "DummyClient":
        return self

    async def trading_history(self, symbol: str, granularity: Granularity) -> list[TradingBar]:
        self.history_calls.append((symbol, granularity))
        await asyncio.sleep(0)
        if self.history_error:
            raise RemoteCallError("trading_history", self.history_error)
        return _bars(self.bars)

    async def stock_issue(self, symbol: str) -> StockIssue:
        self.issue_calls += 1
        if self.issue_error:
            raise RemoteCallError("stock_issue", self.issue_error)
        return StockIssue(market="SSE")

    async def predict_data(self, data: Sequence[float], length: int) -> list[float]:
        self.predict_calls += 1
        await asyncio.sleep(0)
        return [data[-1] + step + 1 for step in range(length)]


def _deliver_all(view: StockView, rx: Receiver[Event]) -> list[bool]:
    return [view.handle_event(event) for event in rx.try_receive_all()]


def _make_view(client: DummyClient, executor: CooperativeTaskExecutor):
    tx, rx = channel()
    view = StockView(STOCK, client, tx, executor, granularity=Granularity.WEEK)
    return view, rx


def test_load_then_predict_end_to_end() -> None:
    """Twenty loaded bars allow a five-bar prediction appended to the chart."""

    async def _runner():
        executor = CooperativeTaskExecutor()
        client = DummyClient(bars=20)
        view, rx = _make_view(client, executor)

        view.update()
        assert view.state is FetchState.REQUESTING
        view.update()
        await executor.join()
        assert client.history_calls == [("sh600000", Granularity.WEEK)]

        assert all(_deliver_all(view, rx))
        assert view.state is FetchState.LOADED
        assert len(view.bars) == 20
        assert view.issue == StockIssue(market="SSE")
        assert view.max_prediction_length == 5

        assert view.set_prediction_length(9) == 5
        assert view.request_prediction()
        assert view.prediction_state is PredictionState.PREDICTING
        assert not view.request_prediction()
        await executor.join()
        _deliver_all(view, rx)
        return view, client

    view, client = asyncio.run(_runner())

    assert view.prediction_state is PredictionState.IDLE
    assert client.predict_calls == 4
    assert len(view.predicted) == 5
    assert view.predict_error == ""
    combined = view.combined_bars()
    assert len(combined) == 25
    assert combined[20].high == 32.0


def test_prediction_length_is_bounded_by_a_quarter_of_the_series() -> None:
    """Requests above ``len(bars) // 4`` or of zero bars are refused."""

    async def _runner():
        executor = CooperativeTaskExecutor()
        view, rx = _make_view(DummyClient(bars=10), executor)
        view.update()
        await executor.join()
        _deliver_all(view, rx)
        return view

    view = asyncio.run(_runner())

    assert view.max_prediction_length == 2
    assert not view.can_predict(3)
    assert not view.request_prediction(3)
    assert not view.request_prediction(0)
    assert view.predict_len == 0
    assert view.prediction_state is PredictionState.IDLE


def test_prediction_refused_before_series_loaded() -> None:
    """Nothing is predicted while the history is missing."""

    tx, _ = channel()
    view = StockView(STOCK, DummyClient(), tx, CooperativeTaskExecutor())

    assert view.state is FetchState.EMPTY
    assert not view.request_prediction(1)


def test_failed_fetch_is_retryable() -> None:
    """A failure is kept until retry re-arms the fetch."""

    async def _runner():
        executor = CooperativeTaskExecutor()
        client = DummyClient(history_error="HTTP 502")
        view, rx = _make_view(client, executor)
        view.update()
        await executor.join()
        _deliver_all(view, rx)
        assert view.state is FetchState.FAILED
        assert view.error == "trading_history: HTTP 502"

        view.update()
        await executor.join()
        assert len(client.history_calls) == 1

        client.history_error = ""
        assert view.retry()
        assert not view.retry()
        view.update()
        await executor.join()
        _deliver_all(view, rx)
        return view, client

    view, client = asyncio.run(_runner())

    assert len(client.history_calls) == 2
    assert view.state is FetchState.LOADED
    assert view.error == ""


def test_granularity_change_discards_in_flight_result() -> None:
    """A result for the previous period is ignored and the new one fetched."""

    async def _runner():
        executor = CooperativeTaskExecutor()
        client = DummyClient(bars=12)
        view, rx = _make_view(client, executor)
        view.update()
        assert view.set_granularity(Granularity.MONTH)
        assert not view.set_granularity(Granularity.MONTH)
        assert view.state is FetchState.EMPTY
        await executor.join()

        stale = [event for event in rx.try_receive_all() if isinstance(event, SeriesReady)]
        assert [event.granularity for event in stale] == [Granularity.WEEK]
        assert not view.handle_event(stale[0])
        assert view.bars == ()

        view.update()
        await executor.join()
        _deliver_all(view, rx)
        return view, client

    view, client = asyncio.run(_runner())

    assert client.history_calls[-1] == ("sh600000", Granularity.MONTH)
    assert view.state is FetchState.LOADED
    assert view.granularity is Granularity.MONTH


def test_granularity_change_resets_prediction() -> None:
    """Switching period mid-prediction drops the pending result."""

    async def _runner():
        executor = CooperativeTaskExecutor()
        view, rx = _make_view(DummyClient(bars=8), executor)
        view.update()
        await executor.join()
        _deliver_all(view, rx)
        assert view.request_prediction(2)
        view.set_granularity(Granularity.DAILY)
        assert view.prediction_state is PredictionState.IDLE
        assert view.predict_len == 0
        await executor.join()
        stale = [event for event in rx.try_receive_all() if isinstance(event, PredictionReady)]
        return view, stale

    view, stale = asyncio.run(_runner())

    assert len(stale) == 1
    assert not view.handle_event(stale[0])
    assert view.predicted == ()


def test_events_for_other_symbols_are_not_consumed() -> None:
    """Routing matches on the stock symbol."""

    tx, _ = channel()
    view = StockView(STOCK, DummyClient(), tx, CooperativeTaskExecutor())
    view.state = FetchState.REQUESTING

    other = SeriesReady("sz000001", Granularity.WEEK, bars=tuple(_bars(2)))
    assert not view.handle_event(other)
    assert view.state is FetchState.REQUESTING

    unexpected = PredictionReady("sh600000", Granularity.WEEK, bars=tuple(_bars(1)))
    assert not view.handle_event(unexpected)
    assert view.predicted == ()


def test_issue_failure_is_not_refetched_every_frame() -> None:
    """Issue details are requested once and a failure is shown, not retried."""

    async def _runner():
        executor = CooperativeTaskExecutor()
        client = DummyClient(issue_error="not found")
        view, rx = _make_view(client, executor)
        for _ in range(3):
            view.update()
            await executor.join()
            _deliver_all(view, rx)
        return view, client

    view, client = asyncio.run(_runner())

    assert client.issue_calls == 1
    assert view.issue is None
    assert view.issue_error == "stock_issue: not found"


def test_closed_or_disconnected_view_spawns_nothing() -> None:
    """Updates are no-ops without a client or after closing."""

    tx, _ = channel()
    executor = CooperativeTaskExecutor()
    view = StockView(STOCK, None, tx, executor)
    view.update()
    assert view.state is FetchState.EMPTY

    view.client = DummyClient()
    view.close()
    view.update()
    assert view.state is FetchState.EMPTY
    assert executor.pending == 0


def test_granularity_change_from_failed_clears_error() -> None:
    """Leaving a failed period forgets the failure and re-arms the fetch."""

    async def _runner():
        executor = CooperativeTaskExecutor()
        view, rx = _make_view(DummyClient(history_error="HTTP 500"), executor)
        view.update()
        await executor.join()
        _deliver_all(view, rx)
        assert view.state is FetchState.FAILED
        assert view.error
        assert view.set_granularity(Granularity.DAILY)
        return view

    view = asyncio.run(_runner())

    assert view.state is FetchState.EMPTY
    assert view.error == ""
    assert view.bars == ()
    assert view.predicted == ()


def test_granularity_change_from_loaded_clears_predicted_bars() -> None:
    """Loaded bars and a finished prediction are both discarded."""

    async def _runner():
        executor = CooperativeTaskExecutor()
        view, rx = _make_view(DummyClient(bars=12), executor)
        view.update()
        await executor.join()
        _deliver_all(view, rx)
        assert view.request_prediction(3)
        await executor.join()
        _deliver_all(view, rx)
        assert view.state is FetchState.LOADED
        assert len(view.predicted) == 3
        assert view.set_granularity(Granularity.MONTH)
        return view

    view = asyncio.run(_runner())

    assert view.state is FetchState.EMPTY
    assert view.bars == ()
    assert view.predicted == ()
    assert view.predict_len == 0
    assert view.error == ""
    assert view.combined_bars() == ()


def test_prediction_refused_after_client_is_dropped() -> None:
    """A loaded view that lost its client does not start a prediction."""

    async def _runner():
        executor = CooperativeTaskExecutor()
        client = DummyClient(bars=12)
        view, rx = _make_view(client, executor)
        view.update()
        await executor.join()
        _deliver_all(view, rx)
        view.client = None
        started = view.request_prediction(2)
        await executor.join()
        return view, client, started

    view, client, started = asyncio.run(_runner())

    assert started is False
    assert client.predict_calls == 0
    assert view.state is FetchState.LOADED
    assert view.prediction_state is PredictionState.IDLE
