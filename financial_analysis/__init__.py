"""Desktop client for browsing listed companies and their price predictions."""

from financial_analysis.app import FinancialAnalysisApp, filter_stocks
from financial_analysis.core import (
    ClientConfig,
    DispatchService,
    StockView,
    build_config,
    load_environment,
    select_executor,
)

__all__ = [
    "ClientConfig",
    "DispatchService",
    "FinancialAnalysisApp",
    "StockView",
    "build_config",
    "filter_stocks",
    "load_environment",
    "select_executor",
]
