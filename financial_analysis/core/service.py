"""Long-lived background service between upstream requests and the UI bus."""

from __future__ import annotations

import asyncio
import dataclasses
import logging
from typing import Awaitable, Callable, Optional

from financial_analysis.core.bus import ChannelClosedError, Receiver, Sender, channel
from financial_analysis.core.config import ClientConfig
from financial_analysis.core.executor import TaskExecutor
from financial_analysis.core.messages import (
    AuthenticationFailed,
    AuthenticationSucceeded,
    ClientReady,
    ConnectRequested,
    Event,
    LoginRequested,
    RegisterRequested,
    RegistrationFinished,
)
from financial_analysis.providers.base import RemoteError
from financial_analysis.providers.rpc import RemoteClient, connect

LOGGER = logging.getLogger(__name__)

ClientFactory = Callable[[ClientConfig], Awaitable[RemoteClient]]


class DispatchService:
    """Poll the inbound and self-loop queues and forward results to the UI.

    Connection, login and registration requests are consumed here: the
    service spawns the remote call and the outcome comes back through its own
    self-loop queue before being forwarded. Only the client for the most
    recently requested endpoint is kept; a connection that completes for a
    superseded endpoint is closed and never forwarded. Every other event is
    forwarded unchanged.
    """

    def __init__(
        self,
        inbound: Receiver[Event],
        ui_tx: Sender[Event],
        executor: TaskExecutor,
        config: ClientConfig,
        *,
        client_factory: Optional[ClientFactory] = None,
    ) -> None:
        self.inbound = inbound
        self.ui_tx = ui_tx
        self.executor = executor
        self.config = config
        self.client_factory: ClientFactory = client_factory or connect
        self.loop_tx, self.loop_rx = channel()
        self.client: Optional[RemoteClient] = None
        self.endpoint = ""
        self.running = False
        self._stop_requested = False
        self._started = False

    def start(self) -> None:
        """Spawn :meth:`run` on the executor. Calling it twice is a no-op."""

        if self._started:
            return
        self._started = True
        LOGGER.debug("starting service...")
        self.executor.spawn(self.run(), name="dispatch-service")
        LOGGER.debug("service started")

    def stop(self) -> None:
        self._stop_requested = True

    async def run(self) -> None:
        self.running = True
        LOGGER.info("service starts")
        try:
            while not self._stop_requested:
                await asyncio.sleep(self.config.poll_interval)
                if self._poll(self.inbound, "service"):
                    break
                if self._poll(self.loop_rx, "service loop"):
                    break
        finally:
            self.running = False
            LOGGER.info("service stopped")

    def _poll(self, receiver: Receiver[Event], label: str) -> bool:
        event = receiver.try_receive()
        if event is None:
            return False
        try:
            return self.handle(event)
        except ChannelClosedError as exc:
            LOGGER.error("%s run error: %s", label, exc)
            return True

    def handle(self, event: Event) -> bool:
        """Process one event; returns ``True`` when the loop should end."""

        LOGGER.debug("service handle msg: %r", event)
        if isinstance(event, ConnectRequested):
            self.client = None
            self.endpoint = f"{self.config.scheme}://{event.host}:{event.port}"
            self.executor.spawn(self._connect(event, self.endpoint), name=f"connect:{event.host}")
            return False
        if isinstance(event, LoginRequested):
            if self.client is None:
                self.ui_tx.send(AuthenticationFailed("Not connected to the service"))
                return False
            self.executor.spawn(self._login(self.client.clone(), event), name="login")
            return False
        if isinstance(event, RegisterRequested):
            if self.client is None:
                self.ui_tx.send(RegistrationFinished(event.username, error="Not connected to the service"))
                return False
            self.executor.spawn(self._register(self.client.clone(), event), name="register")
            return False
        if isinstance(event, ClientReady):
            if event.endpoint != self.endpoint:
                LOGGER.debug("Discarding connection to superseded endpoint %s", event.endpoint)
                if event.client is not None:
                    self.executor.spawn(event.client.aclose(), name="close-superseded-client")
                return False
            if event.client is not None:
                self.client = event.client
        self.ui_tx.send(event)
        return False

    async def _connect(self, request: ConnectRequested, endpoint: str) -> None:
        try:
            config = dataclasses.replace(self.config, api_host=request.host, api_port=request.port)
            client = await self.client_factory(config)
        except (RemoteError, ValueError) as exc:
            LOGGER.error("Connecting to %s:%s failed: %s", request.host, request.port, exc)
            self.loop_tx.send(ClientReady(error=str(exc), endpoint=endpoint))
            return
        self.loop_tx.send(ClientReady(client=client, endpoint=endpoint))

    async def _login(self, client: RemoteClient, request: LoginRequested) -> None:
        try:
            token = await client.login(request.username, request.password)
        except RemoteError as exc:
            LOGGER.warning("Login for %s failed: %s", request.username, exc)
            self.loop_tx.send(AuthenticationFailed(str(exc), endpoint=client.base_url))
            return
        LOGGER.info("Login for %s succeeded", request.username)
        self.loop_tx.send(AuthenticationSucceeded(token, endpoint=client.base_url))

    async def _register(self, client: RemoteClient, request: RegisterRequested) -> None:
        try:
            await client.register(request.username, request.password)
        except RemoteError as exc:
            LOGGER.warning("Registration of %s failed: %s", request.username, exc)
            self.loop_tx.send(RegistrationFinished(request.username, error=str(exc), endpoint=client.base_url))
            return
        LOGGER.info("Registered %s", request.username)
        self.loop_tx.send(RegistrationFinished(request.username, endpoint=client.base_url))


__all__ = ["ClientFactory", "DispatchService"]
