"""Command-line interface: config checks and synthetic session replays."""

import argparse
import asyncio
import sys
from datetime import date, timedelta
from pathlib import Path
from typing import Any, Dict, Optional

from loguru import logger

from .config import EngineConfig, load_config, parse_overrides, resolved_config_hash
from .data import PaperBroker, SyntheticSession
from .data.synthetic import REGIMES
from .engine import Coordinator, SessionScheduler
from .strategy.calendar import SessionCalendar
from .utils import setup_logger


async def _no_sleep(_: float) -> None:
    return None


async def simulate_session(
    config: EngineConfig,
    session_date: date,
    seed: int = 42,
    regime: str = "trend_up",
    equity: float = 100_000.0,
) -> Dict[str, Any]:
    """Replay one synthetic session minute by minute through the scheduler.

    Args:
        config: Engine configuration.
        session_date: Exchange date to simulate (must be a trading day).
        seed: Base seed; each symbol gets ``seed + index``.
        regime: Synthetic price regime.
        equity: Starting paper equity.

    Returns:
        Daily summary plus paper PnL.
    """
    calendar = SessionCalendar(config.session, config.volume)
    if not calendar.is_trading_day(session_date):
        raise ValueError(f"{session_date} is not a trading day")

    session_open = calendar.session_open(session_date)
    close = calendar.session_close(session_date)
    minutes = int((close - session_open).total_seconds() // 60)

    generator = SyntheticSession()
    minute_bars = {
        symbol: generator.generate(
            seed + i, session_open, regime=regime, minutes=minutes, base_price=100.0 + 50.0 * i
        )
        for i, symbol in enumerate(config.symbols)
    }
    broker = PaperBroker(minute_bars, equity=equity)

    now = calendar.at(session_date, config.session.reset_time)
    broker.advance(now)
    coordinator = Coordinator(config, broker, broker, clock=lambda: broker.now, sleep=_no_sleep)
    scheduler = SessionScheduler(coordinator, sleep=_no_sleep)

    end = close + scheduler.summary_delay
    while now <= end:
        broker.advance(now)
        tasks = scheduler.dispatch(now)
        if tasks:
            await asyncio.gather(*tasks)
        now += timedelta(minutes=1)

    summary = dict(scheduler.last_summary or coordinator.daily_summary())
    summary["realized_pnl"] = round(broker.realized_pnl, 2)
    return summary


def _print_summary(summary: Dict[str, Any]) -> None:
    print("\n" + "=" * 60)
    print("SESSION SUMMARY")
    print("=" * 60)
    print(f"Date:             {summary['date']}")
    print(f"Breakouts:        {summary['breakouts_detected']}")
    print(f"Total Trades:     {summary['total_trades']}")
    print(f"By Type:          {summary['trades_by_type']}")
    print(f"Filtered:         {summary['filtered_by_reason']}")
    print(f"Failures:         {summary['failures_by_reason']}")
    print(f"Realized PnL:     {summary['realized_pnl']:+.2f}")
    print("-" * 60)
    for symbol, info in summary["symbols"].items():
        entry = info["entry_kind"] or "-"
        print(f"{symbol:<8} {info['phase']:<16} {info['trade_type']:<10} {entry}")
    print("=" * 60)


def _load(args: argparse.Namespace) -> EngineConfig:
    overrides = parse_overrides(args.overrides)
    if getattr(args, "log_level", None):
        overrides["log_level"] = args.log_level
    return load_config(args.config, overrides=overrides)


def _cmd_check_config(args: argparse.Namespace) -> int:
    config = _load(args)
    print(f"{config.name} v{config.version}")
    print(f"Symbols:     {', '.join(config.symbols)}")
    print(f"Config hash: {resolved_config_hash(config)}")
    return 0


def _cmd_simulate(args: argparse.Namespace) -> int:
    config = _load(args)
    setup_logger(
        log_level=config.log_level,
        log_to_file=config.log_to_file,
        log_dir=Path("logs"),
        trade_log_path=Path(config.trade_log_path) if config.log_to_file else None,
        run_id=f"sim_{args.seed}",
    )

    calendar = SessionCalendar(config.session, config.volume)
    session_date = args.date or date.today()
    if not calendar.is_trading_day(session_date):
        session_date = calendar.next_trading_day(session_date)

    logger.info(
        f"Simulating {session_date} ({args.regime}, seed={args.seed}) "
        f"for {len(config.symbols)} symbols"
    )
    summary = asyncio.run(simulate_session(config, session_date, args.seed, args.regime))
    _print_summary(summary)
    return 0


def _add_override_argument(parser: argparse.ArgumentParser) -> None:
    parser.add_argument(
        "--set",
        dest="overrides",
        action="append",
        default=[],
        metavar="SECTION.FIELD=VALUE",
        help="Override a config value (repeatable), e.g. --set risk.min_rrr=1.6",
    )


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="orb-engine",
        description="Opening Range Breakout signal and trade-decision engine",
    )
    sub = parser.add_subparsers(dest="command", required=True)

    check = sub.add_parser("check-config", help="Validate configuration and print its hash")
    check.add_argument(
        "--config", "-c", type=Path, default=None, help="Path to configuration YAML file"
    )
    _add_override_argument(check)
    check.set_defaults(func=_cmd_check_config)

    sim = sub.add_parser("simulate", help="Replay one synthetic session against a paper broker")
    sim.add_argument(
        "--config", "-c", type=Path, default=None, help="Path to configuration YAML file"
    )
    _add_override_argument(sim)
    sim.add_argument("--seed", type=int, default=42, help="Random seed")
    sim.add_argument("--regime", choices=REGIMES, default="trend_up", help="Price regime")
    sim.add_argument(
        "--date",
        type=date.fromisoformat,
        default=None,
        help="Session date (YYYY-MM-DD); defaults to the next trading day",
    )
    sim.add_argument("--log-level", default=None, help="Override the configured log level")
    sim.set_defaults(func=_cmd_simulate)

    return parser


def main(argv: Optional[list] = None) -> int:
    """Main CLI entry point.

    Returns:
        Exit code (0 for success, 1 for error).
    """
    args = build_parser().parse_args(argv)

    if args.config is not None and not args.config.exists():
        print(f"Error: Config file not found: {args.config}", file=sys.stderr)
        return 1

    try:
        return args.func(args)
    except Exception as e:
        logger.error(f"{args.command} failed: {e}")
        print(f"\nError: {e}", file=sys.stderr)
        return 1


if __name__ == "__main__":
    sys.exit(main())
