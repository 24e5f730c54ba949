"""Background execution, messaging and per-stock fetch state."""

from financial_analysis.core.bus import ChannelClosedError, Receiver, Sender, channel
from financial_analysis.core.config import (
    AVAILABLE_API_HOSTS,
    ClientConfig,
    build_config,
    load_environment,
)
from financial_analysis.core.executor import (
    CooperativeTaskExecutor,
    TaskExecutor,
    ThreadedTaskExecutor,
    select_executor,
)
from financial_analysis.core.frame_history import FrameHistory
from financial_analysis.core.prediction import PredictionOutcome, fan_out_prediction
from financial_analysis.core.service import DispatchService
from financial_analysis.core.stock_view import FetchState, PredictionState, StockView

__all__ = [
    "AVAILABLE_API_HOSTS",
    "ChannelClosedError",
    "ClientConfig",
    "CooperativeTaskExecutor",
    "DispatchService",
    "FetchState",
    "FrameHistory",
    "PredictionOutcome",
    "PredictionState",
    "Receiver",
    "Sender",
    "StockView",
    "TaskExecutor",
    "ThreadedTaskExecutor",
    "build_config",
    "channel",
    "fan_out_prediction",
    "load_environment",
    "select_executor",
]
