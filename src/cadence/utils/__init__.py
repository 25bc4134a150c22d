"""
Utility modules for Cadence.
"""

from .retry import retry_with_backoff, RetryConfig, is_retryable_error

__all__ = ["retry_with_backoff", "RetryConfig", "is_retryable_error"]
