"""UI-owned application state driven once per frame by the desktop shell."""

from __future__ import annotations

import dataclasses
import logging
import re
import time
from typing import Callable, Optional, Sequence

from financial_analysis.core.bus import ChannelClosedError, Sender, channel
from financial_analysis.core.config import AVAILABLE_API_HOSTS, ClientConfig
from financial_analysis.core.executor import TaskExecutor
from financial_analysis.core.frame_history import FrameHistory
from financial_analysis.core.messages import (
    ENTITY_EVENTS,
    AuthenticationFailed,
    AuthenticationSucceeded,
    ClientReady,
    ConnectRequested,
    EntityListReady,
    Event,
    LoginRequested,
    RegisterRequested,
    RegistrationFinished,
)
from financial_analysis.core.service import ClientFactory, DispatchService
from financial_analysis.core.stock_view import StockView
from financial_analysis.providers.base import RemoteConfigurationError, RemoteError, StockSummary
from financial_analysis.providers.rpc import RemoteClient

LOGGER = logging.getLogger(__name__)

SEARCH_HINT = "Regular expressions are supported"
SEARCH_VALID = "Valid regular expression"
SEARCH_INVALID = "Invalid regular expression, matching plain text"


async def _fetch_stock_list(client: RemoteClient, tx: Sender[Event]) -> None:
    try:
        stocks = await client.stock_list()
    except RemoteError as exc:
        LOGGER.error("Stock list failed: %s", exc)
        event = EntityListReady(error=str(exc))
    else:
        LOGGER.info("got stock_list: %s", len(stocks))
        event = EntityListReady(stocks=tuple(stocks))
    try:
        tx.send(event)
    except ChannelClosedError:
        LOGGER.debug("Dropping stock list: service queue closed")


def filter_stocks(stocks: Sequence[StockSummary], text: str) -> tuple[tuple[StockSummary, ...], bool]:
    """Filter by regular expression over code, symbol and name.

    Returns the matches and whether ``text`` compiled. An invalid expression
    falls back to a plain case-insensitive substring match.
    """

    if not text:
        return tuple(stocks), True
    try:
        pattern = re.compile(text, re.IGNORECASE)
    except re.error:
        needle = text.lower()
        return tuple(s for s in stocks if s.matches(lambda value: needle in value.lower())), False
    return tuple(s for s in stocks if s.matches(pattern.search)), True


class FinancialAnalysisApp:
    """Everything the render loop reads and mutates.

    Background work reaches this object only through the bus drained in
    :meth:`on_frame`; nothing here is touched from another thread.
    """

    def __init__(
        self,
        config: ClientConfig,
        executor: TaskExecutor,
        *,
        wake: Optional[Callable[[], None]] = None,
        client_factory: Optional[ClientFactory] = None,
    ) -> None:
        self.config = config
        self.executor = executor
        self.tx, self.rx = channel(wake=wake)
        self.service_tx, service_rx = channel()
        self.service = DispatchService(
            service_rx,
            self.tx.clone(),
            executor,
            config,
            client_factory=client_factory,
        )

        self.client: Optional[RemoteClient] = None
        self.connect_error = ""
        self.token = ""
        self.login_done = False
        self.login_error = ""
        self.register_status = ""

        self.stocks: tuple[StockSummary, ...] = ()
        self.stock_list_requesting = False
        self.stock_list_loaded = False
        self.stock_list_error = ""
        self.search_text = ""
        self.search_valid = True
        self._visible: tuple[StockSummary, ...] = ()
        self._filter_key: Optional[str] = None

        self.views: list[StockView] = []
        self.frame_history = FrameHistory()
        self.enable_debug_panel = False
        self._last_frame: Optional[float] = None

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------
    def start(self) -> None:
        self.service.start()
        self._request_connect()

    def shutdown(self) -> None:
        self.service.stop()
        if self.client is not None:
            self.executor.spawn(self.client.aclose(), name="close-client")
        self.rx.close()
        self.executor.shutdown(wait=True)

    def _request_connect(self) -> None:
        self.connect_error = ""
        self.service_tx.send(ConnectRequested(self.config.api_host, self.config.api_port))

    @property
    def connected(self) -> bool:
        return self.client is not None

    @property
    def enabled(self) -> bool:
        """Whether the stock list and views accept input."""

        return self.login_done and bool(self.token)

    @property
    def run_mode(self) -> str:
        return self.config.run_mode

    def set_run_mode(self, mode: str) -> None:
        self.config = dataclasses.replace(self.config, run_mode=mode)

    def next_frame_delay(self) -> float:
        """Seconds until the shell should run the next frame."""

        if self.run_mode == "continuous":
            return 0.0
        return self.config.repaint_after_seconds

    # ------------------------------------------------------------------
    # Frame loop
    # ------------------------------------------------------------------
    def on_frame(self, now: Optional[float] = None) -> int:
        """Drain the bus, apply events and schedule whatever fetches are due.

        Returns the number of events drained this frame.
        """

        now = time.monotonic() if now is None else now
        previous = None if self._last_frame is None else now - self._last_frame
        self.frame_history.on_new_frame(now, previous)
        self._last_frame = now

        events = self.rx.try_receive_all()
        for event in events:
            self.handle_event(event)

        if self.client is not None and self._stock_list_due():
            self.stock_list_requesting = True
            self.executor.spawn(
                _fetch_stock_list(self.client.clone(), self.service_tx.clone()),
                name="stock-list",
            )

        self.views = [view for view in self.views if view.is_open]
        if self.enabled:
            for view in self.views:
                view.update()
        return len(events)

    def _stock_list_due(self) -> bool:
        return (
            bool(self.token)
            and not self.stock_list_loaded
            and not self.stock_list_requesting
            and not self.stock_list_error
        )

    def handle_event(self, event: Event) -> bool:
        """Apply one drained event; unmatched entity events are dropped."""

        if isinstance(event, ClientReady):
            return self._on_client_ready(event)
        if isinstance(event, (AuthenticationSucceeded, AuthenticationFailed, RegistrationFinished)):
            if event.endpoint and event.endpoint != self.config.base_url:
                LOGGER.debug("Ignoring %s from previous endpoint %s", type(event).__name__, event.endpoint)
                return False
        if isinstance(event, RegistrationFinished):
            if event.ok:
                self.register_status = f"Registered {event.username}"
            else:
                self.register_status = f"Registration failed: {event.error}"
            return True
        if isinstance(event, AuthenticationSucceeded):
            self.token = event.token
            self.login_done = True
            self.login_error = ""
            if self.client is not None:
                self._set_client(self.client.with_token(event.token))
            return True
        if isinstance(event, AuthenticationFailed):
            self.login_done = False
            self.login_error = event.reason
            return True
        if isinstance(event, EntityListReady):
            self.stock_list_requesting = False
            self._set_stocks(event.stocks)
            self.stock_list_loaded = event.ok
            self.stock_list_error = event.error
            return True
        if isinstance(event, ENTITY_EVENTS):
            for view in self.views:
                if view.handle_event(event):
                    return True
            LOGGER.debug("No open view for %s from %s", type(event).__name__, event.entity_id)
            return False
        LOGGER.debug("Ignoring %s on the UI bus", type(event).__name__)
        return False

    def _on_client_ready(self, event: ClientReady) -> bool:
        if event.endpoint and event.endpoint != self.config.base_url:
            LOGGER.debug("Ignoring connection outcome for previous endpoint %s", event.endpoint)
            return False
        if event.client is None or event.error:
            self.connect_error = event.error
            return True
        if event.client.base_url != self.config.base_url:
            LOGGER.debug("Ignoring client for previous endpoint %s", event.client.base_url)
            self.executor.spawn(event.client.aclose(), name="close-stale-client")
            return False
        client = event.client.with_token(self.token) if self.token else event.client
        self._set_client(client)
        return True

    def _set_client(self, client: Optional[RemoteClient]) -> None:
        self.client = client
        for view in self.views:
            view.client = None if client is None else client.clone()

    # ------------------------------------------------------------------
    # User input
    # ------------------------------------------------------------------
    def select_host(self, host: str) -> bool:
        """Point the client at another known endpoint and reconnect."""

        if host not in AVAILABLE_API_HOSTS:
            raise RemoteConfigurationError(f"Unknown API host {host!r}")
        if host == self.config.api_host:
            return False
        LOGGER.info("Switching API host %s -> %s", self.config.api_host, host)
        self.config = dataclasses.replace(self.config, api_host=host)
        if self.client is not None:
            self.executor.spawn(self.client.aclose(), name="close-client")
        self._set_client(None)
        self.token = ""
        self.login_done = False
        self.login_error = ""
        self.register_status = ""
        self._set_stocks(())
        self.stock_list_loaded = False
        self.stock_list_requesting = False
        self.stock_list_error = ""
        for view in self.views:
            view.close()
        self._request_connect()
        return True

    def reconnect(self) -> None:
        if self.client is None:
            self._request_connect()

    def login(self, username: str, password: str) -> None:
        self.login_error = ""
        self.service_tx.send(LoginRequested(username, password))

    def register(self, username: str, password: str) -> None:
        self.register_status = ""
        self.service_tx.send(RegisterRequested(username, password))

    def refresh_stock_list(self) -> None:
        """Clear the cached list (and any error) so the next frame refetches it."""

        if self.stock_list_requesting:
            return
        self._set_stocks(())
        self.stock_list_loaded = False
        self.stock_list_error = ""

    def set_search_text(self, text: str) -> None:
        self.search_text = text

    def _refresh_filter(self) -> None:
        if self._filter_key != self.search_text:
            self._visible, self.search_valid = filter_stocks(self.stocks, self.search_text)
            self._filter_key = self.search_text

    def _set_stocks(self, stocks: tuple[StockSummary, ...]) -> None:
        self.stocks = stocks
        self._filter_key = None

    @property
    def visible_stocks(self) -> tuple[StockSummary, ...]:
        self._refresh_filter()
        return self._visible

    @property
    def search_status(self) -> str:
        if not self.search_text:
            return SEARCH_HINT
        self._refresh_filter()
        return SEARCH_VALID if self.search_valid else SEARCH_INVALID

    def open_view(self, stock: StockSummary) -> StockView:
        """Open a view for ``stock`` unless one is already open."""

        for view in self.views:
            if view.symbol == stock.symbol and view.is_open:
                return view
        view = StockView(
            stock,
            None if self.client is None else self.client.clone(),
            self.tx.clone(),
            self.executor,
            granularity=self.config.default_granularity,
        )
        self.views.append(view)
        LOGGER.info("Opened view for %s", stock.symbol)
        return view


__all__ = ["FinancialAnalysisApp", "filter_stocks"]
