"""Candlestick rendering of a view's loaded and predicted bars."""

from __future__ import annotations

from typing import Sequence

import pandas as pd
from matplotlib.axes import Axes
from matplotlib.patches import Rectangle

from financial_analysis.providers.base import TradingBar

COLOR_GAIN = "#dc2626"
COLOR_LOSS = "#15803d"
COLOR_PREDICTED = "#f97316"
COLOR_INVALID = "#9ca3af"

CANDLE_WIDTH = 0.6


def bars_to_frame(bars: Sequence[TradingBar], predicted: Sequence[TradingBar] = ()) -> pd.DataFrame:
    """Tabulate real and predicted bars with ``Valid`` and ``Predicted`` flags.

    Predicted bars are drawn even when structurally invalid, so they are
    normalized first; real bars keep their values and are flagged instead.
    """

    rows = []
    for bar in bars:
        row = bar.as_frame_row()
        row["Valid"] = bar.is_valid()
        row["Predicted"] = False
        rows.append(row)
    for bar in predicted:
        row = bar.force_valid().as_frame_row()
        row["Valid"] = True
        row["Predicted"] = True
        rows.append(row)
    columns = ["Date", "Open", "High", "Low", "Close", "Volume", "Valid", "Predicted"]
    return pd.DataFrame(rows, columns=columns)


def draw_candles(ax: Axes, frame: pd.DataFrame, *, title: str = "") -> int:
    """Draw one candle per valid row on ``ax``; returns the number drawn.

    Invalid rows are marked with a grey ``x`` at the series midpoint so gaps
    in the history stay visible.
    """

    ax.clear()
    ax.grid(True, linestyle="--", linewidth=0.5, alpha=0.5)
    if title:
        ax.set_title(title)
    if frame.empty:
        ax.text(0.5, 0.5, "No data", ha="center", va="center", transform=ax.transAxes)
        return 0

    valid = frame[frame["Valid"]]
    midpoint = float((valid["High"].max() + valid["Low"].min()) / 2) if not valid.empty else 0.0

    drawn = 0
    for x, row in enumerate(frame.itertuples(index=False)):
        if not row.Valid:
            ax.plot([x], [midpoint], marker="x", color=COLOR_INVALID)
            continue
        if row.Predicted:
            color = COLOR_PREDICTED
        else:
            color = COLOR_GAIN if row.Close >= row.Open else COLOR_LOSS
        ax.plot([x, x], [row.Low, row.High], color=color, linewidth=1.2)
        body_bottom = min(row.Open, row.Close)
        body_height = max(abs(row.Close - row.Open), 0.01)
        ax.add_patch(
            Rectangle(
                (x - CANDLE_WIDTH / 2, body_bottom),
                CANDLE_WIDTH,
                body_height,
                facecolor=color,
                edgecolor=color,
                alpha=0.8,
            )
        )
        drawn += 1

    step = max(1, len(frame) // 8)
    ticks = list(range(0, len(frame), step))
    ax.set_xticks(ticks)
    ax.set_xticklabels([str(frame["Date"].iloc[i]) for i in ticks], rotation=30, ha="right")
    ax.set_xlim(-1, len(frame))
    return drawn


__all__ = ["bars_to_frame", "draw_candles"]
