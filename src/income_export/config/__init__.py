"""Configuration loading for income-export."""

from .settings import (
    Account,
    BinanceConfig,
    ExportSettings,
    LoggingConfig,
    PaginationConfig,
    ReportConfig,
    load_settings,
)

__all__ = [
    "Account",
    "BinanceConfig",
    "ExportSettings",
    "LoggingConfig",
    "PaginationConfig",
    "ReportConfig",
    "load_settings",
]
