"""ORB Engine - intraday Opening Range Breakout signal and execution engine.

Computes the opening range, detects confirmed breakouts, waits for a retest
(or times out into a market entry), sizes risk-bounded bracket orders and
tracks per-symbol daily state across a scheduled polling cadence.
"""

__version__ = "1.0.0"
