"""Risk management: stop/target placement, RRR floor and position sizing.

Stops are anchored at the entry price and clamped into the configured
distance band; targets take the tightest of an ATR extension, the opening
range width and the RRR objective, then are clamped into the target band.
"""

import math
from dataclasses import dataclass
from typing import Optional

from loguru import logger

from ..config.schema import EquityTier, PriceTier, RiskConfig
from .state import Direction

RRR_EPSILON = 1e-9


def round_price(price: float) -> float:
    """Round to cents."""
    return round(price, 2)


def clamp(value: float, lower: float, upper: float) -> float:
    return max(lower, min(value, upper))


@dataclass(frozen=True)
class RiskPlan:
    """Stop/target levels for a candidate entry.

    Attributes:
        direction: Trade direction.
        entry: Entry price (cents).
        stop: Protective stop price (cents).
        target: Take-profit price (cents).
        risk_reward: |target - entry| / |entry - stop|.
        min_rrr: Floor the plan was checked against.
        approved: Whether the floor is met.
        reason: ``risk_reward`` when rejected.
    """

    direction: Direction
    entry: float
    stop: float
    target: float
    risk_reward: float
    min_rrr: float
    approved: bool
    reason: Optional[str] = None

    @property
    def risk_per_share(self) -> float:
        return abs(self.entry - self.stop)


@dataclass(frozen=True)
class TradeDecision:
    """Fully risk-checked instruction handed to the executor."""

    symbol: str
    direction: Direction
    entry: float
    stop: float
    target: float
    quantity: int
    risk_reward: float
    is_immediate: bool
    entry_type: str

    def __repr__(self) -> str:
        return (
            f"TradeDecision({self.symbol} {self.direction.value.upper()} x{self.quantity} "
            f"entry={self.entry:.2f} stop={self.stop:.2f} target={self.target:.2f} "
            f"RR={self.risk_reward:.2f})"
        )


class RiskEngine:
    """Plan stops/targets and size positions.

    Example:
        >>> engine = RiskEngine(RiskConfig())
        >>> plan = engine.plan(Direction.LONG, 102.25, atr=0.4, range_width=2.0, is_immediate=True)
        >>> (plan.stop, plan.target)
        (101.75, 102.9)
    """

    def __init__(self, config: Optional[RiskConfig] = None) -> None:
        self.config = config or RiskConfig()

    def plan(
        self,
        direction: Direction,
        entry: float,
        atr: float,
        range_width: float,
        is_immediate: bool = False,
    ) -> RiskPlan:
        """Compute stop, target and realized RRR.

        Args:
            direction: Trade direction.
            entry: Intended entry price.
            atr: Current ATR.
            range_width: Opening range width.
            is_immediate: Apply the relaxed immediate-breakout floor.

        Returns:
            RiskPlan, rejected with reason ``risk_reward`` below the floor.
        """
        cfg = self.config
        sign = direction.sign
        entry = round_price(entry)

        stop_distance = clamp(atr * cfg.atr_multiplier, cfg.min_stop_distance, cfg.max_stop_distance)
        stop = round_price(entry - sign * stop_distance)
        risk = abs(entry - stop)

        min_rrr = cfg.immediate_min_rrr if is_immediate else cfg.min_rrr
        target_distance = min(cfg.target_atr_mult * atr, range_width, risk * min_rrr)
        target_distance = clamp(target_distance, cfg.min_target_distance, cfg.max_target_distance)
        # cents, rounded away from entry
        target_distance = math.ceil(round(target_distance * 100, 6)) / 100
        target = round_price(entry + sign * target_distance)

        risk_reward = abs(target - entry) / risk if risk > 0 else 0.0
        approved = risk_reward + RRR_EPSILON >= min_rrr

        if not approved:
            logger.info(
                f"{direction.value.upper()} plan rejected: RR={risk_reward:.2f} < {min_rrr:.2f} "
                f"(entry={entry:.2f}, stop={stop:.2f}, target={target:.2f})"
            )

        return RiskPlan(
            direction=direction,
            entry=entry,
            stop=stop,
            target=target,
            risk_reward=risk_reward,
            min_rrr=min_rrr,
            approved=approved,
            reason=None if approved else "risk_reward",
        )

    def _price_tier(self, price: float) -> PriceTier:
        for tier in self.config.sizing.price_tiers:
            if price >= tier.min_price:
                return tier
        return self.config.sizing.price_tiers[-1]

    def _equity_ceiling(self, equity: float) -> float:
        tiers = self.config.sizing.equity_tiers
        tier: Optional[EquityTier] = next((t for t in tiers if equity <= t.max_equity), None)
        return tier.max_position_value if tier else self.config.sizing.max_position_value

    def target_position_value(self, equity: float, price: float) -> float:
        """Dollar value per position: price-tier exposure capped by the equity tier."""
        tier = self._price_tier(price)
        return min(equity * tier.exposure_pct, self._equity_ceiling(equity))

    def max_shares(self, equity: float, price: float) -> int:
        """Share ceiling from the dollar target and the per-tier liquidity limit."""
        sizing = self.config.sizing
        liquidity_limit = self._price_tier(price).max_shares
        if equity < sizing.pdt_equity_threshold:
            liquidity_limit = min(liquidity_limit, math.floor(liquidity_limit * sizing.pdt_share_factor))
        by_dollar = math.floor(self.target_position_value(equity, price) / price)
        return min(by_dollar, liquidity_limit)

    def position_size(
        self,
        equity: float,
        entry: float,
        stop: float,
        atr: Optional[float] = None,
    ) -> int:
        """Shares to trade.

        Smaller of dollar-based and ``risk_percent`` risk-based sizing, scaled
        by inverse ATR within the configured band, capped by ``max_shares``.
        Never less than one share.

        Examples:
            >>> RiskEngine().position_size(100_000, 102.25, 101.75, atr=0.4)
            44
        """
        sizing = self.config.sizing
        if entry <= 0:
            raise ValueError(f"Entry price must be positive, got {entry}")

        base_shares = math.floor(self.target_position_value(equity, entry) / entry)
        per_share_risk = abs(entry - stop)
        if per_share_risk < 0.01:
            return 1

        by_risk = math.floor(equity * sizing.risk_percent / per_share_risk)
        size = min(base_shares, by_risk)

        if sizing.volatility_scaling and atr is not None and atr > 0:
            adjustment = clamp(
                1.0 / atr,
                sizing.min_volatility_adjustment,
                sizing.max_volatility_adjustment,
            )
            size = math.floor(size * adjustment)

        size = min(size, self.max_shares(equity, entry))
        size = max(size, 1)

        logger.debug(
            f"Position sizing: price={entry:.2f} equity={equity:.0f} base={base_shares} "
            f"risk_limited={by_risk} final={size}"
        )
        return size
