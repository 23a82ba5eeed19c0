"""Risk-gated launch sniper pipeline for Solana tokens."""

__version__ = "0.1.0"
