"""Session calendar: exchange times, cutoffs, holidays and volume-gate strictness.

Holiday and early-close dates are consumed from configuration; nothing here
computes a market calendar.
"""

from datetime import date, datetime, time, timedelta
from typing import Optional, Tuple

from ..config.schema import SessionConfig, VolumeConfig
from ..utils.timezones import exchange_datetime, localize_time


class SessionCalendar:
    """Resolve session-relative times for a given instant or exchange date.

    Example:
        >>> session = SessionConfig(early_closes={date(2025, 11, 28): time(13, 0)})
        >>> cal = SessionCalendar(session, VolumeConfig())
        >>> cal.entry_cutoff(date(2025, 11, 28)).time()
        datetime.time(12, 0)
    """

    def __init__(self, session: SessionConfig, volume: VolumeConfig) -> None:
        self.session = session
        self.volume = volume
        self.tz_name = session.timezone

    def local(self, now: datetime) -> datetime:
        """Express ``now`` in exchange time."""
        return localize_time(now, self.tz_name)

    def session_date(self, now: datetime) -> date:
        return self.local(now).date()

    def at(self, session_date: date, wall_time: time) -> datetime:
        return exchange_datetime(session_date, wall_time, self.tz_name)

    def range_window(self, session_date: date) -> Tuple[datetime, datetime]:
        """Opening range window bounds, both inclusive."""
        return (
            self.at(session_date, self.session.range_start),
            self.at(session_date, self.session.range_end),
        )

    def session_open(self, session_date: date) -> datetime:
        return self.at(session_date, self.session.session_start)

    def is_holiday(self, session_date: date) -> bool:
        return session_date in self.session.holidays

    def is_trading_day(self, session_date: date) -> bool:
        return session_date.weekday() < 5 and not self.is_holiday(session_date)

    def early_close_time(self, session_date: date) -> Optional[time]:
        return self.session.early_closes.get(session_date)

    def is_early_close(self, session_date: date) -> bool:
        return session_date in self.session.early_closes

    def next_trading_day(self, session_date: date) -> date:
        day = session_date + timedelta(days=1)
        while not self.is_trading_day(day):
            day += timedelta(days=1)
        return day

    def is_pre_holiday(self, session_date: date) -> bool:
        """True when the next weekday is a configured holiday."""
        day = session_date + timedelta(days=1)
        while day.weekday() >= 5:
            day += timedelta(days=1)
        return self.is_holiday(day)

    def session_close(self, session_date: date) -> datetime:
        close = self.early_close_time(session_date) or self.session.session_end
        return self.at(session_date, close)

    def entry_cutoff(self, session_date: date) -> datetime:
        """Latest time for new entries; pulled earlier on early-close days."""
        cutoff = self.at(session_date, self.session.entry_cutoff)
        early_close = self.early_close_time(session_date)
        if early_close is not None:
            buffer = timedelta(minutes=self.session.early_close_cutoff_buffer_minutes)
            cutoff = min(cutoff, self.at(session_date, early_close) - buffer)
        return cutoff

    def is_after_cutoff(self, now: datetime) -> bool:
        return now > self.entry_cutoff(self.session_date(now))

    def in_low_liquidity(self, now: datetime) -> bool:
        """Midday lull, start inclusive and end exclusive."""
        t = self.local(now).time()
        return self.session.low_liquidity_start <= t < self.session.low_liquidity_end

    def strictness_factor(self, session_date: date) -> float:
        """Volume-gate multiplier for thin sessions around holidays."""
        if self.is_early_close(session_date) or self.is_pre_holiday(session_date):
            return self.volume.early_close_factor
        return 1.0

    def breakout_multiplier(self, now: datetime) -> float:
        base = (
            self.volume.breakout_multiplier_low_liquidity
            if self.in_low_liquidity(now)
            else self.volume.breakout_multiplier
        )
        return base * self.strictness_factor(self.session_date(now))

    def immediate_multiplier(self, now: datetime) -> float:
        return self.volume.immediate_multiplier * self.strictness_factor(self.session_date(now))

    def confirm_multiplier(self, now: datetime) -> float:
        base = (
            self.volume.confirm_multiplier_low_liquidity
            if self.in_low_liquidity(now)
            else self.volume.confirm_multiplier
        )
        return base * self.strictness_factor(self.session_date(now))

    def entry_block_reason(self, now: datetime) -> Optional[str]:
        """Calendar reason no entry may be taken at ``now``, or None."""
        session_date = self.session_date(now)
        if not self.is_trading_day(session_date):
            return "holiday" if self.is_holiday(session_date) else "weekend"
        if self.is_after_cutoff(now):
            return "after_cutoff"
        return None
