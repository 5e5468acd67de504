"""Pydantic configuration schemas with comprehensive validation.

All engine parameters are defined here with cross-field validation rules.
Historical strategy variants (stricter volume gates, relaxed RRR, tighter stop
bands) are expressed as overrides of these models, not as separate code paths.
"""

from datetime import date, time
from typing import Dict, List

from pydantic import BaseModel, Field, field_validator, model_validator


class SessionConfig(BaseModel):
    """Trading session, opening range window and calendar."""

    timezone: str = Field("America/New_York", description="Exchange timezone")
    session_start: time = Field(time(9, 30), description="Regular session open")
    session_end: time = Field(time(16, 0), description="Regular session close")
    reset_time: time = Field(time(9, 28), description="Pre-market daily reset")
    range_start: time = Field(time(9, 30), description="Opening range window start")
    range_end: time = Field(time(9, 45), description="Opening range window end (inclusive)")
    entry_cutoff: time = Field(time(14, 0), description="No new entries after this time")
    early_close_cutoff_buffer_minutes: int = Field(
        60, ge=0, le=240, description="Cutoff distance before an early close"
    )
    low_liquidity_start: time = Field(time(11, 0), description="Midday lull start")
    low_liquidity_end: time = Field(time(13, 0), description="Midday lull end (exclusive)")
    bar_timeframe: str = Field("5Min", description="Timeframe for range and breakout bars")
    retest_timeframe: str = Field("1Min", description="Timeframe for retest bars")
    holidays: List[date] = Field(default_factory=list, description="Full-day market closures")
    early_closes: Dict[date, time] = Field(
        default_factory=dict, description="Early close date -> close time"
    )

    @field_validator("timezone")
    @classmethod
    def validate_timezone(cls, v: str) -> str:
        """Validate timezone string."""
        try:
            import pytz
            pytz.timezone(v)
        except Exception:
            raise ValueError(f"Invalid timezone: {v}")
        return v

    @model_validator(mode="after")
    def validate_session(self) -> "SessionConfig":
        """Validate window ordering."""
        if self.session_start >= self.session_end:
            raise ValueError(
                f"session_start ({self.session_start}) must be < session_end ({self.session_end})"
            )
        if self.range_start >= self.range_end:
            raise ValueError(
                f"range_start ({self.range_start}) must be < range_end ({self.range_end})"
            )
        if self.range_start < self.session_start or self.range_end > self.session_end:
            raise ValueError("Opening range window must lie inside the session")
        if self.entry_cutoff <= self.range_end:
            raise ValueError(
                f"entry_cutoff ({self.entry_cutoff}) must be after range_end ({self.range_end})"
            )
        if self.low_liquidity_start >= self.low_liquidity_end:
            raise ValueError("low_liquidity_start must be < low_liquidity_end")

        for day in self.holidays:
            if day.weekday() >= 5:
                raise ValueError(f"Holiday {day} falls on a weekend")
        for day, close in self.early_closes.items():
            if day.weekday() >= 5:
                raise ValueError(f"Early close {day} falls on a weekend")
            if day in self.holidays:
                raise ValueError(f"{day} is listed both as a holiday and as an early close")
            if not self.range_end < close < self.session_end:
                raise ValueError(
                    f"Early close {close} on {day} must fall between range_end "
                    f"({self.range_end}) and session_end ({self.session_end})"
                )
        return self


class VolumeConfig(BaseModel):
    """Volume gates. Ratios are bar volume / baseline volume."""

    confirm_multiplier: float = Field(1.2, ge=0.5, le=5.0, description="Retest confirmation")
    confirm_multiplier_low_liquidity: float = Field(1.1, ge=0.5, le=5.0)
    breakout_multiplier: float = Field(1.4, ge=0.5, le=5.0, description="Standard breakout gate")
    breakout_multiplier_low_liquidity: float = Field(1.25, ge=0.5, le=5.0)
    immediate_multiplier: float = Field(1.5, ge=0.5, le=5.0, description="Immediate breakout gate")
    early_close_factor: float = Field(
        1.15, ge=1.0, le=3.0, description="Strictness factor on pre-holiday/early-close days"
    )
    baseline_lookback: int = Field(3, ge=1, le=20, description="Bars in the volume baseline")
    exclude_initial_bars: int = Field(
        2, ge=0, le=5, description="Post-range bars excluded from the baseline"
    )


class MarketConditionConfig(BaseModel):
    """Thresholds for the excellent/good/poor/dangerous market label."""

    min_bars: int = Field(6, ge=3, le=100, description="Bars needed before classifying")
    excellent_volatility: float = Field(0.003, gt=0.0, description="Max return stdev for excellent")
    poor_volatility: float = Field(0.01, gt=0.0, description="Return stdev above this is poor")
    dangerous_volatility: float = Field(0.02, gt=0.0, description="Return stdev above this is dangerous")
    excellent_choppiness: float = Field(0.3, gt=0.0, le=1.0)
    max_choppiness: float = Field(0.6, gt=0.0, le=1.0, description="Choppiness above this is poor")

    @model_validator(mode="after")
    def validate_thresholds(self) -> "MarketConditionConfig":
        """Ensure thresholds increase with severity."""
        if not self.excellent_volatility < self.poor_volatility < self.dangerous_volatility:
            raise ValueError(
                "volatility thresholds must satisfy excellent < poor < dangerous"
            )
        if self.excellent_choppiness >= self.max_choppiness:
            raise ValueError("excellent_choppiness must be < max_choppiness")
        return self


class ConfirmationConfig(BaseModel):
    """Breakout candle, sustainability and confirmation-score rules."""

    atr_period: int = Field(5, ge=2, le=50, description="ATR lookback (bars)")
    default_atr: float = Field(0.5, gt=0.0, description="ATR used with insufficient history")
    max_body_atr_mult: float = Field(1.5, gt=0.0, description="Reject bodies above this x ATR")
    min_breakout_atr_mult: float = Field(0.3, ge=0.0, description="Min distance beyond level x ATR")
    outer_close_pct: float = Field(0.2, gt=0.0, le=0.5, description="Close in outer pct of bar")
    min_close_strength: float = Field(0.4, ge=0.0, le=1.0, description="Held share of excursion")
    max_wick_to_body: float = Field(1.0, gt=0.0, description="Max total wick / body")
    required_score: int = Field(4, ge=0, le=5, description="Confirmation points required")
    excellent_required_score: int = Field(3, ge=0, le=5, description="Required when excellent")
    immediate_max_distance: float = Field(0.30, ge=0.0, description="Max close distance beyond level")
    immediate_min_body_pct: float = Field(0.3, ge=0.0, le=1.0, description="Body / range minimum")
    immediate_close_position: float = Field(
        0.8, ge=0.5, le=1.0, description="Close position within bar on breakout side"
    )
    trend_filter: bool = Field(True, description="Require short trend alignment")
    structure_filter: bool = Field(True, description="Require market structure alignment")
    market: MarketConditionConfig = Field(default_factory=MarketConditionConfig)

    @model_validator(mode="after")
    def validate_scores(self) -> "ConfirmationConfig":
        """Excellent markets may only relax the requirement."""
        if self.excellent_required_score > self.required_score:
            raise ValueError(
                f"excellent_required_score ({self.excellent_required_score}) must not exceed "
                f"required_score ({self.required_score})"
            )
        return self


class PriceTier(BaseModel):
    """Sizing parameters for instruments priced at or above ``min_price``."""

    min_price: float = Field(..., ge=0.0)
    exposure_pct: float = Field(..., gt=0.0, le=1.0, description="Share of equity per position")
    max_shares: int = Field(..., ge=1, description="Liquidity share ceiling")


class EquityTier(BaseModel):
    """Dollar ceiling per position for accounts with equity up to ``max_equity``."""

    max_equity: float = Field(..., gt=0.0)
    max_position_value: float = Field(..., gt=0.0)


def _default_price_tiers() -> List[PriceTier]:
    return [
        PriceTier(min_price=200.0, exposure_pct=0.05, max_shares=200),
        PriceTier(min_price=100.0, exposure_pct=0.045, max_shares=150),
        PriceTier(min_price=50.0, exposure_pct=0.04, max_shares=100),
        PriceTier(min_price=20.0, exposure_pct=0.035, max_shares=75),
        PriceTier(min_price=10.0, exposure_pct=0.03, max_shares=50),
        PriceTier(min_price=0.0, exposure_pct=0.02, max_shares=25),
    ]


def _default_equity_tiers() -> List[EquityTier]:
    return [
        EquityTier(max_equity=25_000.0, max_position_value=1_000.0),
        EquityTier(max_equity=50_000.0, max_position_value=2_500.0),
        EquityTier(max_equity=100_000.0, max_position_value=5_000.0),
        EquityTier(max_equity=250_000.0, max_position_value=12_500.0),
    ]


class SizingConfig(BaseModel):
    """Dollar-based position sizing with price and equity tiers."""

    risk_percent: float = Field(0.01, gt=0.0, le=0.1, description="Equity risked per trade")
    volatility_scaling: bool = Field(True, description="Scale size by inverse ATR")
    min_volatility_adjustment: float = Field(0.5, gt=0.0)
    max_volatility_adjustment: float = Field(1.5, gt=0.0)
    price_tiers: List[PriceTier] = Field(default_factory=_default_price_tiers)
    equity_tiers: List[EquityTier] = Field(default_factory=_default_equity_tiers)
    max_position_value: float = Field(
        25_000.0, gt=0.0, description="Ceiling above the largest equity tier"
    )
    pdt_equity_threshold: float = Field(25_000.0, ge=0.0, description="PDT account boundary")
    pdt_share_factor: float = Field(0.6, gt=0.0, le=1.0, description="Share ceiling factor for PDT")

    @model_validator(mode="after")
    def validate_tiers(self) -> "SizingConfig":
        """Sort tiers and check the volatility band."""
        if not self.price_tiers:
            raise ValueError("At least one price tier is required")
        if not any(t.min_price == 0.0 for t in self.price_tiers):
            raise ValueError("A price tier with min_price 0 is required")
        if self.min_volatility_adjustment >= self.max_volatility_adjustment:
            raise ValueError("min_volatility_adjustment must be < max_volatility_adjustment")
        self.price_tiers = sorted(self.price_tiers, key=lambda t: t.min_price, reverse=True)
        self.equity_tiers = sorted(self.equity_tiers, key=lambda t: t.max_equity)
        return self


class RiskConfig(BaseModel):
    """Stop/target placement and risk/reward floors."""

    atr_multiplier: float = Field(0.5, gt=0.0, le=5.0, description="Raw stop = ATR x this")
    min_stop_distance: float = Field(0.50, gt=0.0, description="Minimum stop distance ($)")
    max_stop_distance: float = Field(2.00, gt=0.0, description="Maximum stop distance ($)")
    min_target_distance: float = Field(0.25, gt=0.0, description="Minimum target distance ($)")
    max_target_distance: float = Field(3.00, gt=0.0, description="Maximum target distance ($)")
    target_atr_mult: float = Field(2.0, gt=0.0, description="ATR extension target candidate")
    min_rrr: float = Field(1.5, gt=0.0, description="Risk/reward floor")
    immediate_min_rrr: float = Field(1.3, gt=0.0, description="Floor for immediate breakouts")
    sizing: SizingConfig = Field(default_factory=SizingConfig)

    @model_validator(mode="after")
    def validate_bands(self) -> "RiskConfig":
        """Validate min/max distance bands."""
        if self.min_stop_distance >= self.max_stop_distance:
            raise ValueError(
                f"min_stop_distance ({self.min_stop_distance}) must be < "
                f"max_stop_distance ({self.max_stop_distance})"
            )
        if self.min_target_distance >= self.max_target_distance:
            raise ValueError(
                f"min_target_distance ({self.min_target_distance}) must be < "
                f"max_target_distance ({self.max_target_distance})"
            )
        if self.immediate_min_rrr > self.min_rrr:
            raise ValueError("immediate_min_rrr must not exceed min_rrr")
        return self


class RetestConfig(BaseModel):
    """Retest wait and timeout parameters."""

    max_bars_without_retest: int = Field(5, ge=1, le=60, description="Ticks before timeout entry")
    stale_after_ticks: int = Field(30, ge=1, le=390, description="Pending retest sweep age")
    lookback_minutes: int = Field(4, ge=2, le=30, description="Retest bar window")

    @model_validator(mode="after")
    def validate_retest(self) -> "RetestConfig":
        """Stale sweep must not pre-empt the timeout."""
        if self.stale_after_ticks <= self.max_bars_without_retest:
            raise ValueError(
                f"stale_after_ticks ({self.stale_after_ticks}) must exceed "
                f"max_bars_without_retest ({self.max_bars_without_retest})"
            )
        return self


class RetryConfig(BaseModel):
    """Fixed-delay retry policy for transient broker failures."""

    max_retries: int = Field(2, ge=0, le=10)
    delay_seconds: float = Field(1.0, ge=0.0, le=60.0)


class ExecutionConfig(BaseModel):
    """Order submission parameters."""

    pre_submit_delay_seconds: float = Field(1.5, ge=0.0, le=30.0)
    stop_limit_offset: float = Field(0.20, ge=0.0, description="Limit offset above/below stop entry")
    time_in_force: str = Field("gtc", description="Time in force for bracket orders")
    trade_cooldown_minutes: int = Field(5, ge=0, le=390)
    retry: RetryConfig = Field(default_factory=RetryConfig)

    @field_validator("time_in_force")
    @classmethod
    def validate_tif(cls, v: str) -> str:
        """Validate time in force."""
        valid = ["day", "gtc"]
        if v.lower() not in valid:
            raise ValueError(f"time_in_force must be one of {valid}")
        return v.lower()


class EngineConfig(BaseModel):
    """Root engine configuration with full validation."""

    name: str = Field("ORB_Engine", description="Engine name")
    version: str = Field("1.0", description="Configuration version")

    symbols: List[str] = Field(
        default_factory=lambda: ["SPY", "QQQ", "TSLA", "NVDA", "AMD"],
        description="Symbols traded each session",
    )
    session: SessionConfig = Field(default_factory=SessionConfig)
    volume: VolumeConfig = Field(default_factory=VolumeConfig)
    confirmation: ConfirmationConfig = Field(default_factory=ConfirmationConfig)
    risk: RiskConfig = Field(default_factory=RiskConfig)
    retest: RetestConfig = Field(default_factory=RetestConfig)
    execution: ExecutionConfig = Field(default_factory=ExecutionConfig)

    # Logging
    log_level: str = Field("INFO", description="Logging level")
    log_to_file: bool = Field(False, description="Write logs to file")
    trade_log_path: str = Field("logs/trade_events.log", description="Trade event record")

    @field_validator("symbols")
    @classmethod
    def validate_symbols(cls, v: List[str]) -> List[str]:
        """Uppercase, strip and de-duplicate symbols."""
        cleaned: List[str] = []
        for symbol in v:
            if not symbol or not symbol.strip():
                raise ValueError("Symbol cannot be empty")
            s = symbol.upper().strip()
            if s not in cleaned:
                cleaned.append(s)
        if not cleaned:
            raise ValueError("At least one symbol is required")
        return cleaned

    @field_validator("log_level")
    @classmethod
    def validate_log_level(cls, v: str) -> str:
        """Validate log level."""
        valid_levels = ["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"]
        v_upper = v.upper()
        if v_upper not in valid_levels:
            raise ValueError(f"log_level must be one of {valid_levels}")
        return v_upper
