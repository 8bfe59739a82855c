"""Utility modules for logging, retries and auditing."""
from .logging_config import (
    setup_logging,
    timed,
    timed_section,
    perf_logger,
)
from .retry import call_with_retry, is_transient, RETRYABLE_EXCEPTIONS

__all__ = [
    "setup_logging",
    "timed",
    "timed_section",
    "perf_logger",
    "call_with_retry",
    "is_transient",
    "RETRYABLE_EXCEPTIONS",
]
