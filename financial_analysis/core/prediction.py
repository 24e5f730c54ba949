"""Fan-out/fan-in prediction of the four OHLC channels of a series."""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass
from typing import TYPE_CHECKING, Sequence

from financial_analysis.providers.base import TradingBar

if TYPE_CHECKING:  # pragma: no cover - typing only
    from financial_analysis.providers.rpc import RemoteClient

LOGGER = logging.getLogger(__name__)

# Order of the channels sent to the service and reassembled afterwards.
CHANNELS: tuple[str, ...] = ("high", "low", "open", "close")


@dataclass(frozen=True, slots=True)
class PredictionOutcome:
    """Joined result of the four channel calls."""

    bars: tuple[TradingBar, ...] = ()
    error: str = ""

    @property
    def ok(self) -> bool:
        return not self.error


def split_channels(bars: Sequence[TradingBar]) -> dict[str, list[float]]:
    """Decompose ``bars`` into independent numeric channels."""

    return {name: [float(getattr(bar, name)) for bar in bars] for name in CHANNELS}


def assemble_bars(results: dict[str, Sequence[float]]) -> tuple[TradingBar, ...]:
    """Rebuild composite bars index by index, truncated to the shortest channel."""

    length = min(len(results[name]) for name in CHANNELS)
    return tuple(
        TradingBar(volume=1, **{name: results[name][index] for name in CHANNELS})
        for index in range(length)
    )


async def fan_out_prediction(
    client: "RemoteClient",
    bars: Sequence[TradingBar],
    length: int,
) -> PredictionOutcome:
    """Predict ``length`` bars past ``bars`` with one remote call per channel.

    All four calls start before any is awaited. The join is all-or-nothing:
    any failed channel, or a shortest result of zero values, fails the whole
    prediction with an error naming every failed channel.
    """

    channels = split_channels(bars)
    calls = []
    for index, name in enumerate(CHANNELS):
        LOGGER.info("Requesting prediction channel %s (%s/%s)", name, index + 1, len(CHANNELS))
        calls.append(client.clone().predict_data(channels[name], length))

    outcomes = await asyncio.gather(*calls, return_exceptions=True)

    results: dict[str, Sequence[float]] = {}
    errors: list[str] = []
    for name, outcome in zip(CHANNELS, outcomes):
        if isinstance(outcome, asyncio.CancelledError):
            raise outcome
        if isinstance(outcome, BaseException):
            errors.append(f"{name}: {outcome}")
            continue
        results[name] = outcome

    if errors:
        message = "Prediction failed: " + "; ".join(errors)
        LOGGER.warning(message)
        return PredictionOutcome(error=message)

    predicted = assemble_bars(results)
    if not predicted:
        message = "Prediction failed: service returned no values"
        LOGGER.warning(message)
        return PredictionOutcome(error=message)

    LOGGER.info("Assembled %s predicted bars", len(predicted))
    return PredictionOutcome(bars=predicted)


__all__ = [
    "CHANNELS",
    "PredictionOutcome",
    "assemble_bars",
    "fan_out_prediction",
    "split_channels",
]
