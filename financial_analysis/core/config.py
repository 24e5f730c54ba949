"""Configuration utilities for the financial analysis client."""

from __future__ import annotations

import os
from dataclasses import dataclass, fields
from typing import Any, Mapping, Optional

from dotenv import load_dotenv

from financial_analysis.providers.base import Granularity

APP_NAME = "Listed Company Financial Analysis"

# Known service endpoints. The first entry is the default.
AVAILABLE_API_HOSTS: tuple[str, ...] = ("localhost", "a.chiro.work")
DEFAULT_API_PORT = 51411
DEFAULT_SCHEME = "http"

DEFAULT_REQUEST_TIMEOUT = 30.0
DEFAULT_CONNECT_TIMEOUT = 5.0
DEFAULT_POLL_INTERVAL = 0.02
REPAINT_AFTER_SECONDS = 0.1

RUN_MODES: tuple[str, ...] = ("reactive", "continuous")

ENV_PREFIX = "FINANCIAL_ANALYSIS_"


def _coerce_positive_float(name: str, value: Any) -> float:
    try:
        parsed = float(value)
    except (TypeError, ValueError) as exc:
        raise ValueError(f"{name} must be a number.") from exc
    if parsed <= 0:
        raise ValueError(f"{name} must be positive.")
    return parsed


def _coerce_port(value: Any) -> int:
    try:
        parsed = int(value)
    except (TypeError, ValueError) as exc:
        raise ValueError("api_port must be an integer.") from exc
    if not 0 < parsed < 65536:
        raise ValueError("api_port must be between 1 and 65535.")
    return parsed


@dataclass
class ClientConfig:
    """Runtime configuration for the desktop client and its background work."""

    api_host: str = AVAILABLE_API_HOSTS[0]
    api_port: int = DEFAULT_API_PORT
    scheme: str = DEFAULT_SCHEME
    request_timeout: float = DEFAULT_REQUEST_TIMEOUT
    connect_timeout: float = DEFAULT_CONNECT_TIMEOUT
    poll_interval: float = DEFAULT_POLL_INTERVAL
    repaint_after_seconds: float = REPAINT_AFTER_SECONDS
    default_granularity: Granularity = Granularity.WEEK
    run_mode: str = "reactive"

    def __post_init__(self) -> None:
        self.api_host = str(self.api_host).strip()
        if self.api_host not in AVAILABLE_API_HOSTS:
            raise ValueError(
                f"Unknown API host {self.api_host!r}; expected one of {', '.join(AVAILABLE_API_HOSTS)}."
            )
        self.api_port = _coerce_port(self.api_port)
        self.scheme = str(self.scheme).strip().lower()
        if self.scheme not in {"http", "https"}:
            raise ValueError("scheme must be 'http' or 'https'.")
        self.request_timeout = _coerce_positive_float("request_timeout", self.request_timeout)
        self.connect_timeout = _coerce_positive_float("connect_timeout", self.connect_timeout)
        self.poll_interval = _coerce_positive_float("poll_interval", self.poll_interval)
        self.repaint_after_seconds = _coerce_positive_float(
            "repaint_after_seconds", self.repaint_after_seconds
        )
        granularity = self.default_granularity
        if not isinstance(granularity, Granularity):
            granularity = str(granularity).strip().lower()
        try:
            self.default_granularity = Granularity(granularity)
        except ValueError as exc:
            raise ValueError(
                f"default_granularity must be one of {', '.join(g.value for g in Granularity)}."
            ) from exc
        self.run_mode = str(self.run_mode).strip().lower()
        if self.run_mode not in RUN_MODES:
            raise ValueError(f"run_mode must be one of {', '.join(RUN_MODES)}.")

    @property
    def base_url(self) -> str:
        return f"{self.scheme}://{self.api_host}:{self.api_port}"


def load_environment() -> None:
    """Load configuration from an optional ``.env`` file."""

    load_dotenv()


def _environment_overrides(environ: Mapping[str, str]) -> dict[str, Any]:
    overrides: dict[str, Any] = {}
    for item in fields(ClientConfig):
        raw = environ.get(f"{ENV_PREFIX}{item.name.upper()}")
        if raw is not None and raw.strip():
            overrides[item.name] = raw.strip()
    return overrides


def build_config(
    api_host: Optional[str] = None,
    api_port: Optional[int] = None,
    scheme: Optional[str] = None,
    request_timeout: Optional[float] = None,
    connect_timeout: Optional[float] = None,
    poll_interval: Optional[float] = None,
    repaint_after_seconds: Optional[float] = None,
    default_granularity: Optional[str] = None,
    run_mode: Optional[str] = None,
    environ: Optional[Mapping[str, str]] = None,
) -> ClientConfig:
    """Build a :class:`ClientConfig` from the environment and explicit overrides.

    Explicit arguments win over ``FINANCIAL_ANALYSIS_*`` environment variables,
    which win over the dataclass defaults.
    """

    params = _environment_overrides(os.environ if environ is None else environ)
    explicit = {
        "api_host": api_host,
        "api_port": api_port,
        "scheme": scheme,
        "request_timeout": request_timeout,
        "connect_timeout": connect_timeout,
        "poll_interval": poll_interval,
        "repaint_after_seconds": repaint_after_seconds,
        "default_granularity": default_granularity,
        "run_mode": run_mode,
    }
    params.update({key: value for key, value in explicit.items() if value is not None})
    return ClientConfig(**params)


__all__ = [
    "APP_NAME",
    "AVAILABLE_API_HOSTS",
    "ClientConfig",
    "DEFAULT_API_PORT",
    "REPAINT_AFTER_SECONDS",
    "RUN_MODES",
    "build_config",
    "load_environment",
]
