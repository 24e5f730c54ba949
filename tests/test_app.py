"""Tests for the frame-driven application state."""

from __future__ import annotations

import asyncio
import sys
from pathlib import Path
from typing import Callable, Optional

import pytest

PROJECT_ROOT = Path(__file__).resolve().parents[1]
if str(PROJECT_ROOT) not in sys.path:
    sys.path.insert(0, str(PROJECT_ROOT))

from financial_analysis.app import SEARCH_HINT, SEARCH_INVALID, FinancialAnalysisApp, filter_stocks
from financial_analysis.core.config import ClientConfig, build_config
from financial_analysis.core.executor import CooperativeTaskExecutor
from financial_analysis.core.messages import (
    AuthenticationFailed,
    AuthenticationSucceeded,
    ClientReady,
    SeriesReady,
)
from financial_analysis.core.stock_view import FetchState
from financial_analysis.providers.base import (
    Granularity,
    RemoteCallError,
    RemoteConfigurationError,
    StockIssue,
    StockSummary,
    TradingBar,
)

STOCKS = (
    StockSummary(code="600000", symbol="sh600000", name="Pudong Bank"),
    StockSummary(code="000001", symbol="sz000001", name="Ping An Bank"),
    StockSummary(code="600519", symbol="sh600519", name="Kweichow Moutai"),
)


class DummyClient:
    """Remote client stand-in recording the calls the app makes."""

    def __init__(self, base_url: str, *, stock_list_error: str = "") -> None:
        self.base_url = base_url
        self.token = ""
        self.stock_list_error = stock_list_error
        self.stock_list_calls = 0
        self.logins: list[str] = []
        self.registered: list[str] = []
        self.closed = False

    def clone(self) -> "DummyClient":
        return self

    def with_token(self, token: str) -> "DummyClient":
        self.token = token
        return self

    async def aclose(self) -> None:
        self.closed = True

    async def login(self, username: str, password: str) -> str:
        self.logins.append(username)
        if password != "secret":
            raise RemoteCallError("login", "bad credentials")
        return f"token-{username}"

    async def register(self, username: str, password: str) -> None:
        self.registered.append(username)

    async def stock_list(self) -> list[StockSummary]:
        self.stock_list_calls += 1
        if self.stock_list_error:
            raise RemoteCallError("stock_list", self.stock_list_error)
        return list(STOCKS)

    async def trading_history(self, symbol: str, granularity: Granularity) -> list[TradingBar]:
        return [
            TradingBar(date=f"d{i}", open=10, high=12, low=9, close=11, volume=5)
            for i in range(8)
        ]

    async def stock_issue(self, symbol: str) -> StockIssue:
        return StockIssue(market="SSE")


def _make_app(
    clients: list[DummyClient],
    delays: Optional[dict[str, float]] = None,
    **client_kwargs,
) -> FinancialAnalysisApp:
    async def _factory(config: ClientConfig) -> DummyClient:
        await asyncio.sleep((delays or {}).get(config.api_host, 0.0))
        client = DummyClient(config.base_url, **client_kwargs)
        clients.append(client)
        return client

    config = build_config(poll_interval=0.001, environ={})
    return FinancialAnalysisApp(config, CooperativeTaskExecutor(), client_factory=_factory)


async def _frames_until(app: FinancialAnalysisApp, predicate: Callable[[], bool], limit: int = 400) -> None:
    for _ in range(limit):
        app.on_frame()
        if predicate():
            return
        await asyncio.sleep(0.005)
    raise AssertionError("condition not reached")


async def _close(app: FinancialAnalysisApp) -> None:
    app.shutdown()
    assert isinstance(app.executor, CooperativeTaskExecutor)
    await asyncio.wait_for(app.executor.join(), timeout=2)


def test_filter_stocks_by_regex_and_plain_text() -> None:
    """Valid expressions search all fields; invalid ones fall back to substrings."""

    matches, valid = filter_stocks(STOCKS, "^sh")
    assert valid
    assert [s.code for s in matches] == ["600000", "600519"]

    matches, valid = filter_stocks(STOCKS, "bank")
    assert valid
    assert len(matches) == 2

    matches, valid = filter_stocks(STOCKS, "(600")
    assert not valid
    assert matches == ()

    assert filter_stocks(STOCKS, "") == (STOCKS, True)


def test_login_unlocks_stock_list_and_views() -> None:
    """Connect, log in, load the list and open a stock view."""

    clients: list[DummyClient] = []

    async def _runner():
        app = _make_app(clients)
        app.start()
        await _frames_until(app, lambda: app.connected)
        assert not app.enabled
        app.on_frame()
        assert clients[0].stock_list_calls == 0

        app.login("alice", "secret")
        await _frames_until(app, lambda: app.stock_list_loaded)
        assert app.enabled
        assert app.token == "token-alice"
        assert clients[0].token == "token-alice"

        app.set_search_text("moutai")
        visible = app.visible_stocks
        view = app.open_view(visible[0])
        assert app.open_view(visible[0]) is view
        await _frames_until(app, lambda: view.state is FetchState.LOADED and view.issue is not None)
        await _close(app)
        return app, view

    app, view = asyncio.run(_runner())

    assert [s.symbol for s in app.stocks] == [s.symbol for s in STOCKS]
    assert view.symbol == "sh600519"
    assert view.granularity is Granularity.WEEK
    assert len(view.bars) == 8
    assert clients[0].stock_list_calls == 1
    assert clients[0].closed


def test_rejected_login_keeps_app_disabled() -> None:
    """A failed login is shown and nothing else is fetched."""

    clients: list[DummyClient] = []

    async def _runner():
        app = _make_app(clients)
        app.start()
        await _frames_until(app, lambda: app.connected)
        app.login("alice", "wrong")
        await _frames_until(app, lambda: bool(app.login_error))
        for _ in range(5):
            app.on_frame()
            await asyncio.sleep(0.005)
        await _close(app)
        return app

    app = asyncio.run(_runner())

    assert app.login_error == "login: bad credentials"
    assert not app.enabled
    assert clients[0].stock_list_calls == 0


def test_stock_list_failure_waits_for_refresh() -> None:
    """A failed list is not refetched until the user refreshes."""

    clients: list[DummyClient] = []

    async def _runner():
        app = _make_app(clients, stock_list_error="timeout")
        app.start()
        await _frames_until(app, lambda: app.connected)
        app.login("alice", "secret")
        await _frames_until(app, lambda: bool(app.stock_list_error))
        for _ in range(5):
            app.on_frame()
            await asyncio.sleep(0.005)
        calls_before = clients[0].stock_list_calls
        clients[0].stock_list_error = ""
        app.refresh_stock_list()
        await _frames_until(app, lambda: app.stock_list_loaded)
        await _close(app)
        return app, calls_before

    app, calls_before = asyncio.run(_runner())

    assert calls_before == 1
    assert clients[0].stock_list_calls == 2
    assert len(app.stocks) == 3


def test_select_host_reconnects_and_resets_state() -> None:
    """Switching endpoint drops the session and connects to the new host."""

    clients: list[DummyClient] = []

    async def _runner():
        app = _make_app(clients)
        app.start()
        await _frames_until(app, lambda: app.connected)
        app.login("alice", "secret")
        await _frames_until(app, lambda: app.stock_list_loaded)
        view = app.open_view(STOCKS[0])

        assert not app.select_host("localhost")
        with pytest.raises(RemoteConfigurationError):
            app.select_host("example.com")

        assert app.select_host("a.chiro.work")
        assert not app.connected
        assert not app.enabled
        assert app.stocks == ()
        assert not view.is_open
        await _frames_until(app, lambda: app.connected)
        await _close(app)
        return app

    app = asyncio.run(_runner())

    assert clients[0].closed
    assert clients[-1].base_url == "http://a.chiro.work:51411"
    assert app.client is clients[-1]
    assert app.views == []


def test_client_for_previous_endpoint_is_discarded() -> None:
    """A late connection to an old host is closed rather than adopted."""

    async def _runner():
        app = _make_app([])
        stale = DummyClient("http://a.chiro.work:51411")
        handled = app.handle_event(ClientReady(client=stale))
        await app.executor.join()  # type: ignore[attr-defined]
        return app, stale, handled

    app, stale, handled = asyncio.run(_runner())

    assert not handled
    assert app.client is None
    assert stale.closed


def test_entity_event_without_view_is_dropped() -> None:
    """Results for a stock with no open view are ignored."""

    app = _make_app([])
    event = SeriesReady("sh600000", Granularity.WEEK, error="late")

    assert not app.handle_event(event)


def test_search_status_and_run_mode() -> None:
    """Search hints and frame pacing reflect the current settings."""

    app = _make_app([])
    assert app.search_status == SEARCH_HINT
    app.set_search_text("[")
    assert app.search_status == SEARCH_INVALID

    assert app.next_frame_delay() == pytest.approx(app.config.repaint_after_seconds)
    app.set_run_mode("continuous")
    assert app.next_frame_delay() == 0.0
    with pytest.raises(ValueError):
        app.set_run_mode("sometimes")


def test_frame_history_tracks_frames() -> None:
    """Each frame is recorded for the debug panel."""

    app = _make_app([])
    app.on_frame(now=1.0)
    app.on_frame(now=1.1)
    app.on_frame(now=1.2)

    assert len(app.frame_history) == 3
    assert app.frame_history.fps() == pytest.approx(10.0)
    assert app.frame_history.mean_frame_time() == pytest.approx(0.1)


def test_login_after_host_switch_reaches_the_new_host() -> None:
    """A slow connection to the old host never receives the credentials."""

    clients: list[DummyClient] = []

    async def _runner():
        app = _make_app(clients, delays={"localhost": 0.2, "a.chiro.work": 0.01})
        app.start()
        app.on_frame()
        assert app.select_host("a.chiro.work")
        await _frames_until(app, lambda: app.connected)
        await _frames_until(
            app, lambda: any(c.base_url == "http://localhost:51411" and c.closed for c in clients)
        )
        app.login("alice", "secret")
        await _frames_until(app, lambda: app.enabled)
        service_client = app.service.client
        await _close(app)
        return app, service_client

    app, service_client = asyncio.run(_runner())

    by_url = {client.base_url: client for client in clients}
    old = by_url["http://localhost:51411"]
    new = by_url["http://a.chiro.work:51411"]
    assert service_client is new
    assert app.client is new
    assert old.logins == []
    assert new.logins == ["alice"]
    assert old.closed
    assert app.token == "token-alice"


def test_session_events_from_previous_endpoint_are_ignored() -> None:
    """Login outcomes produced by a host the user left are dropped."""

    app = _make_app([])
    old = "http://a.chiro.work:51411"

    assert not app.handle_event(AuthenticationSucceeded("stale-token", endpoint=old))
    assert not app.handle_event(AuthenticationFailed("denied", endpoint=old))
    assert not app.handle_event(ClientReady(error="refused", endpoint=old))
    assert app.token == ""
    assert app.login_error == ""
    assert app.connect_error == ""

    assert app.handle_event(AuthenticationSucceeded("fresh", endpoint=app.config.base_url))
    assert app.token == "fresh"
    assert app.enabled


def test_register_reports_outcome() -> None:
    """Registration goes through the service and its result is shown."""

    clients: list[DummyClient] = []

    async def _runner():
        app = _make_app(clients)
        app.start()
        await _frames_until(app, lambda: app.connected)
        app.register("bob", "pw")
        await _frames_until(app, lambda: bool(app.register_status))
        await _close(app)
        return app

    app = asyncio.run(_runner())

    assert clients[0].registered == ["bob"]
    assert app.register_status == "Registered bob"
    assert not app.enabled
