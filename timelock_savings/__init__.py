"""
Time-Locked Savings Ledger

Accepts fungible-token deposits, locks each one for a minimum period,
accrues a time-dependent reward and releases principal plus reward (or
principal minus an early-exit penalty) on withdrawal. All amounts are
integer token units.
"""

__version__ = "1.0.0"
