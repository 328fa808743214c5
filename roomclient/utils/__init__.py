"""Utilities module."""

from roomclient.utils.retry import RetryConfig, RetryExhausted, with_retry

__all__ = [
    "RetryConfig",
    "RetryExhausted",
    "with_retry",
]
