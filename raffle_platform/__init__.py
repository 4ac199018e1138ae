"""Raffle platform: round lifecycle, entry ledger and provably fair draws."""

__version__ = "1.0.0"
