"""LMDB store, time-ordered scanners, relay access control, rate limiting and bench helpers."""

__version__ = "0.1.0"
__all__ = ["store", "scanner", "bench", "auth", "rate_limiter"]