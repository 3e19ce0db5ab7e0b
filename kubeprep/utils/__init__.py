"""Utility functions and helpers for the kubeprep application."""
import logging
from typing import Any, Callable, Optional

from tenacity import (
    Retrying,
    before_sleep_log,
    retry_if_exception,
    stop_after_attempt,
    wait_exponential,
)

from ..config import Config

logger = logging.getLogger("kubeprep.utils")


def redact_sensitive_data(data: Any) -> Any:
    """Recursively redact sensitive data from dictionaries and lists.

    Args:
        data: Input data that might contain sensitive information

    Returns:
        Data with sensitive values redacted
    """
    if isinstance(data, dict):
        return {
            k: "[REDACTED]" if any(
                redact_key.lower() in str(k).lower()
                for redact_key in Config.REDACT_KEYS
            ) else redact_sensitive_data(v)
            for k, v in data.items()
        }
    elif isinstance(data, (list, tuple)):
        return [redact_sensitive_data(item) for item in data]
    return data


def retrying(
    should_retry: Callable[[BaseException], bool],
    max_retries: Optional[int] = None,
    delay: Optional[float] = None,
    max_delay: float = 30.0,
) -> Retrying:
    """Build a retry controller with exponential backoff.

    Args:
        should_retry: Predicate deciding whether an exception is transient
        max_retries: Maximum number of retry attempts after the first call
        delay: Initial delay between retries in seconds
        max_delay: Upper bound for a single wait

    Returns:
        A tenacity ``Retrying`` that re-raises the last exception when exhausted
    """
    if max_retries is None:
        max_retries = Config.MAX_RETRIES
    if delay is None:
        delay = Config.RETRY_DELAY

    return Retrying(
        stop=stop_after_attempt(max_retries + 1),
        wait=wait_exponential(multiplier=delay, max=max_delay),
        retry=retry_if_exception(should_retry),
        before_sleep=before_sleep_log(logger, logging.WARNING),
        reraise=True,
    )
