"""Configuration settings using Pydantic for validation."""

import os
import re
from datetime import datetime
from typing import Any, List, Optional
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

from pydantic import BaseModel, ConfigDict, Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


DEFAULT_CONFIG_FILE = "config/local.yaml"


class Account(BaseModel):
    """Credentials of one exchange account."""
    model_config = ConfigDict(frozen=True)

    name: str = Field(..., min_length=1, description="Account name, used in report file names")
    api_key: str = Field(..., description="Binance API key")
    api_secret: str = Field(..., repr=False, description="Binance API secret")


class BinanceConfig(BaseModel):
    """Binance futures REST API configuration."""
    rest_base_url: str = Field(default="https://fapi.binance.com", description="USD-M futures REST base URL")
    request_timeout_seconds: int = Field(default=30, gt=0, description="HTTP request timeout")

    @field_validator('rest_base_url')
    @classmethod
    def strip_trailing_slash(cls, v):
        return v.rstrip('/')


class PaginationConfig(BaseModel):
    """Income feed pagination behaviour."""
    page_limit: int = Field(default=1000, gt=0, le=1000, description="Records requested per page")
    page_delay_seconds: float = Field(default=0.5, ge=0, description="Delay after a full page")
    empty_page_delay_seconds: float = Field(default=2.0, ge=0, description="Delay after an empty or failed page")
    rewind_step_ms: int = Field(default=100, gt=0, description="Window start rewind after an empty page")
    max_empty_retries: Optional[int] = Field(
        default=20, ge=0,
        description="Consecutive empty pages tolerated per account; null retries forever"
    )


class ReportConfig(BaseModel):
    """CSV report configuration."""
    output_dir: str = Field(default=".", description="Directory receiving the report files")
    date_format: str = Field(default="%Y-%m-%d", description="strftime format of the spreadsheet date column")
    timezone: Optional[str] = Field(default=None, description="IANA zone for calendar days; local time if unset")

    @field_validator('date_format')
    @classmethod
    def validate_date_format(cls, v):
        sample = datetime(2001, 12, 31)
        try:
            parsed = datetime.strptime(sample.strftime(v), v)
        except ValueError as e:
            raise ValueError(f"Date format '{v}' cannot be parsed back: {e}")
        if parsed.date() != sample.date():
            raise ValueError(f"Date format '{v}' must identify a calendar day")
        return v

    @field_validator('timezone')
    @classmethod
    def validate_timezone(cls, v):
        if v:
            try:
                ZoneInfo(v)
            except (ZoneInfoNotFoundError, ValueError):
                raise ValueError(f"Unknown timezone: {v}")
        return v or None

    @property
    def tzinfo(self) -> Optional[ZoneInfo]:
        return ZoneInfo(self.timezone) if self.timezone else None


class LoggingConfig(BaseModel):
    """Logging configuration."""
    level: str = Field(default="INFO", description="Log level")
    format: str = Field(default="text", description="Log format: json or text")
    output: str = Field(default="stdout", description="Log output destination")

    @field_validator('level')
    @classmethod
    def validate_level(cls, v):
        v = v.upper()
        if v not in ['DEBUG', 'INFO', 'WARNING', 'ERROR', 'CRITICAL']:
            raise ValueError(f"Invalid log level: {v}")
        return v

    @field_validator('format')
    @classmethod
    def validate_format(cls, v):
        if v.lower() not in ['json', 'text']:
            raise ValueError("Log format must be 'json' or 'text'")
        return v.lower()


class ExportSettings(BaseSettings):
    """Main income export settings."""

    service_name: str = Field(default="income-export", description="Service name")

    accounts: List[Account] = Field(default_factory=list, description="Accounts to export, in order")

    binance: BinanceConfig = Field(default_factory=BinanceConfig)
    pagination: PaginationConfig = Field(default_factory=PaginationConfig)
    report: ReportConfig = Field(default_factory=ReportConfig)
    logging: LoggingConfig = Field(default_factory=LoggingConfig)

    @field_validator('accounts')
    @classmethod
    def validate_unique_names(cls, v):
        names = [account.name for account in v]
        duplicates = sorted({name for name in names if names.count(name) > 1})
        if duplicates:
            raise ValueError(f"Duplicate account names: {', '.join(duplicates)}")
        return v

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        env_nested_delimiter="__",
        case_sensitive=False,
        extra="ignore",
    )


def substitute_env_vars(obj: Any) -> Any:
    """
    Recursively substitute environment variables in configuration objects.

    Supports syntax:
    - ${VAR_NAME} - Required variable (raises error if not found)
    - ${VAR_NAME:-default} - Optional variable with default value

    Raises:
        ValueError: If required environment variable is not found
    """
    if isinstance(obj, dict):
        return {key: substitute_env_vars(value) for key, value in obj.items()}
    elif isinstance(obj, list):
        return [substitute_env_vars(item) for item in obj]
    elif isinstance(obj, str):
        def replace_env_var(match):
            var_expr = match.group(1)

            if ':-' in var_expr:
                var_name, default_value = var_expr.split(':-', 1)
                return os.getenv(var_name.strip(), default_value)
            else:
                var_name = var_expr.strip()
                value = os.getenv(var_name)
                if value is None:
                    raise ValueError(f"Required environment variable '{var_name}' is not set")
                return value

        return re.sub(r'\$\{([^}]+)\}', replace_env_var, obj)
    else:
        return obj


def load_settings(config_file: Optional[str] = None) -> ExportSettings:
    """
    Load settings from config file and environment variables.

    The config file supports environment variable substitution using ${VAR_NAME} syntax.

    Args:
        config_file: Path to YAML configuration file

    Returns:
        ExportSettings: Validated configuration object

    Raises:
        ValueError: If required environment variables are missing
        FileNotFoundError: If config file doesn't exist
    """
    if config_file and os.path.exists(config_file):
        import yaml

        with open(config_file, 'r') as f:
            raw_config = yaml.safe_load(f) or {}

        config_data = substitute_env_vars(raw_config)
        return ExportSettings(**config_data)

    elif config_file:
        raise FileNotFoundError(f"Configuration file not found: {config_file}")

    return ExportSettings()
