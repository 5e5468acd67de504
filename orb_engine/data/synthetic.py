"""Synthetic minute bars with deterministic, reproducible output."""

from datetime import datetime
from typing import Dict

import numpy as np
import pandas as pd
from loguru import logger

REGIMES = ("trend_up", "trend_down", "mean_revert", "choppy")


class SyntheticSession:
    """Synthetic session generator for simulations and tests.

    Generates deterministic minute bars with configurable:
    - Price regime (trend, mean reversion, chop)
    - Volume profile
    - Volatility scale
    """

    def __init__(self) -> None:
        self.name = "synthetic"

    def generate(
        self,
        seed: int,
        session_open: datetime,
        regime: str = "trend_up",
        minutes: int = 390,
        base_price: float = 100.0,
        vol_profile: str = "u_shape",
        volatility_mult: float = 1.0,
    ) -> pd.DataFrame:
        """Generate deterministic minute bars for one session.

        Args:
            seed: Random seed for reproducibility.
            session_open: Timestamp of the first bar (tz-aware).
            regime: Price regime - 'trend_up', 'trend_down', 'mean_revert', 'choppy'.
            minutes: Number of minutes to generate (default 390 = full session).
            base_price: Starting price level.
            vol_profile: Volume profile - 'u_shape', 'flat', 'morning_spike'.
            volatility_mult: Volatility multiplier (>1 = wider range).

        Returns:
            Bar frame with timestamp, open, high, low, close, volume.

        Examples:
            >>> df1 = SyntheticSession().generate(42, open_ts, regime='trend_up')
            >>> df2 = SyntheticSession().generate(42, open_ts, regime='trend_up')
            >>> assert df1.equals(df2)
        """
        if regime not in REGIMES:
            raise ValueError(f"Unknown regime: {regime}. Must be one of {REGIMES}")
        if session_open.tzinfo is None:
            raise ValueError("session_open must be timezone-aware")

        rng = np.random.default_rng(seed)

        timestamps = pd.date_range(
            start=pd.Timestamp(session_open).tz_convert("UTC"), periods=minutes, freq="1min"
        )
        closes = self._generate_prices(rng, minutes, base_price, regime, volatility_mult)
        ohlc = self._generate_ohlc(rng, closes, volatility_mult)
        volume = self._generate_volume(rng, minutes, vol_profile)

        df = pd.DataFrame(
            {
                "timestamp": timestamps,
                "open": ohlc["open"],
                "high": ohlc["high"],
                "low": ohlc["low"],
                "close": ohlc["close"],
                "volume": np.round(volume),
            }
        )

        logger.debug(f"Generated {len(df)} synthetic bars for {regime} regime (seed={seed})")
        return df

    def _generate_prices(
        self,
        rng: np.random.Generator,
        n_bars: int,
        base_price: float,
        regime: str,
        volatility_mult: float,
    ) -> np.ndarray:
        base_vol = 0.0015 * volatility_mult  # ~0.15% per minute

        if regime == "trend_up":
            returns = rng.normal(0.0002, base_vol, n_bars)
        elif regime == "trend_down":
            returns = rng.normal(-0.0002, base_vol, n_bars)
        elif regime == "mean_revert":
            returns = rng.normal(0, base_vol, n_bars)
            prices_temp = base_price * np.exp(np.cumsum(returns))
            returns -= 0.002 * (prices_temp - base_price) / base_price
        else:
            returns = rng.normal(0, base_vol * 1.5, n_bars)

        return base_price * np.exp(np.cumsum(returns))

    def _generate_ohlc(
        self,
        rng: np.random.Generator,
        closes: np.ndarray,
        volatility_mult: float,
    ) -> Dict[str, np.ndarray]:
        """Build OHLC around the close path; open is the previous close."""
        n = len(closes)
        opens = np.concatenate([[closes[0]], closes[:-1]])

        avg_range_pct = 0.001 * volatility_mult
        ranges = np.abs(rng.normal(avg_range_pct, avg_range_pct / 3, n))

        highs = np.maximum(opens, closes) * (1 + ranges / 2)
        lows = np.minimum(opens, closes) * (1 - ranges / 2)

        return {
            "open": np.round(opens, 2),
            "high": np.round(np.maximum(highs, np.maximum(opens, closes)), 2),
            "low": np.round(np.minimum(lows, np.minimum(opens, closes)), 2),
            "close": np.round(closes, 2),
        }

    def _generate_volume(
        self,
        rng: np.random.Generator,
        n_bars: int,
        vol_profile: str,
    ) -> np.ndarray:
        base_volume = 10000.0
        volume = rng.lognormal(np.log(base_volume), 0.4, n_bars)

        if vol_profile == "u_shape":
            time_factor = np.linspace(0, 1, n_bars)
            volume *= 1 + 0.5 * (time_factor**2 + (1 - time_factor) ** 2)
        elif vol_profile == "morning_spike":
            decay = np.exp(-np.arange(n_bars) / (n_bars * 0.2))
            volume *= 1 + 0.8 * decay

        return volume
