"""Runtime configuration definitions."""

from __future__ import annotations

from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

from pydantic import Field, field_validator, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Engine settings loaded once from env and .env files, then passed explicitly."""

    # market
    pair: str = "XXBTZGBP"
    display_pair: str = "XBT/GBP"
    quote_asset_codes: tuple[str, ...] = ("ZGBP", "GBP")
    base_asset_code: str = "XXBT"
    timezone: str = "Europe/London"

    # schedule and sizing
    check_every_hours: float = Field(default=4.0, gt=0)
    min_order: float = Field(default=25.0, ge=0)
    fee_buffer: float = Field(default=0.0015, ge=0, lt=1)
    cooldown_hours: float = Field(default=24.0, ge=0)
    max_buys_per_week: int = Field(default=2, ge=1)

    # regime
    regime_fast_ma: int = Field(default=50, gt=0)
    regime_slow_ma: int = Field(default=200, gt=0)
    regime_band: float = Field(default=0.02, ge=0, lt=1)
    massive_bear_factor: float = Field(default=0.90, gt=0, le=1)
    max_wait_days: float = Field(default=30.0, gt=0)

    # indicators
    rsi_period: int = Field(default=14, gt=0)
    bb_period: int = Field(default=20, gt=1)
    bb_std_dev: float = Field(default=2.0, gt=0)
    fast_ema: int = Field(default=9, gt=0)
    slow_ema: int = Field(default=21, gt=0)
    bull_lookback_days: int = Field(default=10, gt=0)

    # trigger thresholds
    bull_rsi_max: float = Field(default=55.0, ge=0, le=100)
    bull_pullback_pct: float = Field(default=0.015, ge=0, lt=1)
    sideways_rsi_max: float = Field(default=45.0, ge=0, le=100)
    bear_rsi_max: float = Field(default=55.0, ge=0, le=100)
    bear_rsi_early: float = Field(default=50.0, ge=0, le=100)
    bear_allow_rsi_only: bool = True
    bear_allow_lower_bb_only: bool = True
    bear_below_sma_pct: float = Field(default=0.07, ge=0, lt=1)

    # history buffers
    daily_history: int = Field(default=400, gt=0)
    four_hour_history: int = Field(default=800, gt=0)

    # collaborators
    dry_run: bool = False
    dry_balance: float = Field(default=50.0, ge=0)
    db_url: str = "sqlite:///./regime_dca_state.db"
    kraken_base_url: str = "https://api.kraken.com"
    kraken_api_key: str = ""
    kraken_api_secret: str = ""
    http_timeout_s: float = Field(default=10.0, gt=0)
    webhook_url: str = ""
    log_level: str = Field(default="INFO", pattern="^(DEBUG|INFO|WARNING|ERROR)$")

    model_config = SettingsConfigDict(env_file=".env", env_prefix="DCA_", extra="ignore")

    @field_validator("timezone")
    @classmethod
    def _known_timezone(cls, value: str) -> str:
        try:
            ZoneInfo(value)
        except (ZoneInfoNotFoundError, ValueError) as exc:
            raise ValueError(f"unknown timezone: {value}") from exc
        return value

    @model_validator(mode="after")
    def _consistent_periods(self) -> Settings:
        if self.fast_ema >= self.slow_ema:
            raise ValueError("fast_ema must be shorter than slow_ema")
        if self.regime_fast_ma >= self.regime_slow_ma:
            raise ValueError("regime_fast_ma must be shorter than regime_slow_ma")
        return self

    @property
    def tz(self) -> ZoneInfo:
        return ZoneInfo(self.timezone)


class BacktestSettings(BaseSettings):
    """Replay window and deposit schedule for strategy comparison."""

    years: float = Field(default=2.0, gt=0)
    deposit: float = Field(default=100.0, gt=0)
    buy_day: int = Field(default=25, ge=1, le=28)
    buy_time: str = Field(default="12:00", pattern=r"^([01]\d|2[0-3]):[0-5]\d$")

    model_config = SettingsConfigDict(env_file=".env", env_prefix="DCA_BACKTEST_", extra="ignore")

    @property
    def buy_hour_minute(self) -> tuple[int, int]:
        hour, minute = self.buy_time.split(":")
        return int(hour), int(minute)
